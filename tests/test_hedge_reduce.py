"""Tests for the hedge and normal reduce routines."""

from decimal import Decimal

import pytest

from maker.errors import SlippageTooHighError
from maker.perp_service import AmountType, Side

from conftest import Harness, make_market_config


def _positions(h, onchain, venue, name="vETH"):
    market = h.market(name)
    h.perp.position_size[market.base_token] = Decimal(onchain)
    h.venue.position_size[market.config.venue_market] = Decimal(venue)
    return market


class TestHedge:
    def test_gap_is_closed_in_capped_orders_with_delay(self, harness):
        market = _positions(harness, "3.5", "0")

        hedged = harness.maker.hedge(market)

        assert hedged == Decimal("3.5")
        assert [o[2] for o in harness.venue.orders] == [Decimal("1"), Decimal("1"), Decimal("1"), Decimal("0.5")]
        assert all(o[1] is Side.SHORT for o in harness.venue.orders)
        assert harness.sleeps == [1.5, 1.5, 1.5]

    def test_short_onchain_is_hedged_long(self, harness):
        market = _positions(harness, "-0.5", "0")

        harness.maker.hedge(market)

        assert harness.venue.orders == [("ETH-PERP", Side.LONG, Decimal("0.5"), False)]

    def test_gap_below_trigger_ratio_is_ignored(self, harness):
        market = _positions(harness, "10", "-9.5")

        assert harness.maker.hedge(market) == Decimal("0")
        assert harness.venue.orders == []

    def test_force_hedges_below_trigger_ratio(self, harness):
        market = _positions(harness, "10", "-9.5")

        assert harness.maker.hedge(market, force=True) == Decimal("0.5")
        assert harness.venue.orders == [("ETH-PERP", Side.SHORT, Decimal("0.5"), False)]

    def test_gap_below_min_order_size_is_not_traded(self, harness):
        market = _positions(harness, "10", "-9.995")

        assert harness.maker.hedge(market, force=True) == Decimal("0")
        assert harness.venue.orders == []

    def test_already_hedged_does_nothing(self, harness):
        market = _positions(harness, "2", "-2")

        assert harness.maker.hedge(market, force=True) == Decimal("0")
        assert harness.venue.orders == []

    def test_market_mid_hedge_is_skipped(self, harness):
        market = _positions(harness, "3", "0")
        market.is_in_hedging_process = True

        assert harness.maker.hedge(market) == Decimal("0")
        assert harness.venue.orders == []
        assert market.is_in_hedging_process is True

    def test_hedging_flag_is_released_after_failure(self, harness):
        market = _positions(harness, "3", "0")

        def reject(*_):
            raise RuntimeError("venue down")

        harness.venue.on_order = reject
        with pytest.raises(RuntimeError):
            harness.maker.hedge(market)
        assert market.is_in_hedging_process is False

    def test_hedge_tick_is_skipped_in_emergency_mode(self, harness):
        _positions(harness, "3", "0")
        harness.maker._enter_emergency()

        harness.maker.hedge_tick()

        assert harness.venue.orders == []

    def test_emergency_interrupts_running_hedge(self, harness):
        market = _positions(harness, "3", "0")
        harness.venue.on_order = lambda *_: harness.maker._enter_emergency()

        assert harness.maker.hedge(market) == Decimal("1")
        assert len(harness.venue.orders) == 1

    def test_uncapped_hedge_is_single_order(self):
        h = Harness([make_market_config(hedge_max_order_size=Decimal("0"))])
        market = _positions(h, "3", "0")

        h.maker.hedge(market)

        assert [o[2] for o in h.venue.orders] == [Decimal("3")]
        assert h.sleeps == []


class TestNormalReduce:
    def _long(self, h, price, index, value="1000"):
        market = h.market()
        h.set_price("vETH", price, index)
        h.perp.position_size[market.base_token] = Decimal("5")
        h.perp.position_value[market.base_token] = Decimal(value)
        return market

    def test_long_above_index_is_trimmed_by_selling(self, harness):
        market = self._long(harness, "1.01", "1")

        amount = harness.maker.normal_reduce(market)

        name, token, side, amount_type, sent = harness.bot.calls[0]
        assert (name, token, side, amount_type) == ("open_position", market.base_token, Side.SHORT, AmountType.QUOTE)
        assert sent == amount
        # random draw in [90, 110], capped by the 0.1% slippage estimate (100)
        assert Decimal("90") <= amount <= Decimal("100")

    def test_short_below_index_is_trimmed_by_buying(self, harness):
        market = harness.market()
        harness.set_price("vETH", "0.99", "1")
        harness.perp.position_size[market.base_token] = Decimal("-5")
        harness.perp.position_value[market.base_token] = Decimal("-1000")

        harness.maker.normal_reduce(market)

        assert harness.bot.calls[0][2] is Side.LONG

    def test_spread_on_wrong_side_is_ignored(self, harness):
        market = self._long(harness, "0.99", "1")

        assert harness.maker.normal_reduce(market) is None
        assert harness.bot.calls == []

    @pytest.mark.parametrize("price", ["1.001", "1.06"])
    def test_spread_outside_band_is_ignored(self, harness, price):
        market = self._long(harness, price, "1")

        assert harness.maker.normal_reduce(market) is None
        assert harness.bot.calls == []

    def test_small_position_is_closed(self, harness):
        market = self._long(harness, "1.01", "1", value="50")

        assert harness.maker.normal_reduce(market) == Decimal("50")
        assert harness.bot.calls == [("close_position", market.base_token)]

    def test_no_position_does_nothing(self, harness):
        market = harness.market()
        harness.set_price("vETH", "1.01", "1")

        assert harness.maker.normal_reduce(market) is None
        assert harness.perp.quote_calls == []

    def test_slippage_above_cap_aborts(self, harness):
        market = self._long(harness, "1.01", "1")
        harness.perp.impact_per_quote = Decimal("0.01")

        with pytest.raises(SlippageTooHighError):
            harness.maker.normal_reduce(market)
        assert harness.bot.calls == []

    def test_reduce_tick_logs_and_continues_on_slippage(self, harness):
        self._long(harness, "1.01", "1")
        harness.perp.impact_per_quote = Decimal("0.01")

        harness.maker.reduce_tick()

        assert harness.bot.calls == []
        assert harness.halts == []

    def test_reduce_tick_is_skipped_in_emergency_mode(self, harness):
        self._long(harness, "1.01", "1")
        harness.maker._enter_emergency()

        harness.maker.reduce_tick()

        assert harness.bot.calls == []
