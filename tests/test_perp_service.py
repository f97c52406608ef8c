"""Tests for ledger reads."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from maker.helper import to_wei
from maker.perp_service import AmountType, OpenOrder, PerpService, Side, swap_flags

from conftest import TRADER, make_contracts


def _service():
    contract = MagicMock()
    eth = MagicMock()
    eth.create_contract.return_value = contract
    return PerpService(eth, make_contracts()), contract


@pytest.mark.parametrize(
    "side, amount_type, expected",
    [
        (Side.SHORT, AmountType.BASE, (True, True)),
        (Side.SHORT, AmountType.QUOTE, (True, False)),
        (Side.LONG, AmountType.BASE, (False, False)),
        (Side.LONG, AmountType.QUOTE, (False, True)),
    ],
)
def test_swap_flags(side, amount_type, expected):
    assert swap_flags(side, amount_type) == expected


def test_side_opposite():
    assert Side.LONG.opposite is Side.SHORT
    assert Side.SHORT.opposite is Side.LONG


def test_open_order_rejects_inverted_range():
    with pytest.raises(ValueError):
        OpenOrder(liquidity=1, lower_tick=10, upper_tick=10)


class TestReads:
    def test_market_price_from_slot0(self):
        service, contract = _service()
        contract.functions.slot0.return_value.call.return_value = (2 * 2**96, 13862, 0, 0, 0, 0, True)

        assert service.get_market_price("0xpool") == Decimal("4")

    def test_margin_ratio_is_none_when_flat(self):
        service, contract = _service()
        contract.functions.getTotalAbsPositionValue.return_value.call.return_value = 0

        assert service.get_margin_ratio(TRADER) is None

    def test_margin_ratio(self):
        service, contract = _service()
        contract.functions.getTotalAbsPositionValue.return_value.call.return_value = to_wei(Decimal("1000"))
        contract.functions.getAccountValue.return_value.call.return_value = to_wei(Decimal("50"))

        assert service.get_margin_ratio(TRADER) == Decimal("0.05")

    def test_collateral_values_use_token_decimals(self):
        service, contract = _service()
        contract.functions.decimals.return_value.call.return_value = 6
        contract.functions.getFreeCollateral.return_value.call.return_value = 2_500_000

        assert service.get_free_collateral(TRADER) == Decimal("2.5")
        assert service.get_buying_power(TRADER, Decimal("10")) == Decimal("25")
        contract.functions.decimals.return_value.call.assert_called_once()

    def test_open_order_with_zero_liquidity_is_none(self):
        service, contract = _service()
        contract.functions.getOpenOrder.return_value.call.return_value = (0, -60, 60, 0, 0, 0, 0, 0, 0)

        assert service.get_open_order(TRADER, "0xbase", -60, 60) is None

    def test_open_orders_by_id(self):
        service, contract = _service()
        contract.functions.getOpenOrderIds.return_value.call.return_value = [b"\x01", b"\x02"]
        contract.functions.getOpenOrderById.return_value.call.side_effect = [
            (10, -60, 60, 0, 0, 0, 0, to_wei(Decimal("1")), to_wei(Decimal("2"))),
            (20, 0, 120, 0, 0, 0, 0, 0, 0),
        ]

        orders = service.get_open_orders(TRADER, "0xbase")

        assert [(o.liquidity, o.lower_tick, o.upper_tick) for o in orders] == [(10, -60, 60), (20, 0, 120)]
        assert orders[0].base_debt == Decimal("1")
