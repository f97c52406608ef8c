"""Shared fakes for maker tests."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from maker.maker import EngineSettings, Maker
from maker.maker_config import ContractAddresses, MakerConfig, MarketConfig
from maker.perp_service import SwapResponse
from maker.venue_client import VenueMarket, VenueOrderResult

TRADER = "0x1111111111111111111111111111111111111111"


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


def make_contracts() -> ContractAddresses:
    return ContractAddresses(
        clearing_house=addr(1),
        vault=addr(2),
        account_balance=addr(3),
        order_book=addr(4),
        quoter=addr(5),
        collateral_token=addr(6),
    )


def make_market_config(name="vETH", index=0, **overrides) -> MarketConfig:
    params = dict(
        name=name,
        base_token=addr(100 + index),
        pool=addr(200 + index),
        liquidity_amount=Decimal("1000"),
        liquidity_range_offset=Decimal("0.1"),
        liquidity_adjust_threshold=Decimal("0.1"),
        hedge_enabled=True,
        venue_market=f"{name[1:]}-PERP",
        hedge_trigger_ratio=Decimal("0.1"),
        hedge_max_order_size=Decimal("1"),
        reduce_enabled=True,
        reduce_min_spread=Decimal("0.005"),
        reduce_max_spread=Decimal("0.05"),
        reduce_amount=Decimal("100"),
        reduce_amount_offset=Decimal("10"),
        reduce_target_slippage=Decimal("0.001"),
        max_slippage=Decimal("0.01"),
        max_order_amount=Decimal("500"),
        emergency_enabled=True,
        emergency_reduce_amount=Decimal("300"),
    )
    params.update(overrides)
    return MarketConfig(**params)


class FakeEthService:
    def __init__(self, gas_price=Decimal("0.001")):
        self.gas_price = gas_price

    def get_gas_price(self):
        return self.gas_price

    def private_key_to_account(self, private_key):
        return SimpleNamespace(address=TRADER, key=private_key)


class FakePerpService:
    """In-memory ledger keyed by base token."""

    def __init__(self):
        self.contracts = make_contracts()
        self.market_price = {}
        self.index_price = {}
        self.position_size = {}
        self.position_value = {}
        self.open_orders = {}
        self.tick_spacing = {}
        self.buying_power = Decimal("10000")
        self.collateral_balance = Decimal("0")
        self.margin_ratio = None
        # price impact per unit of quote
        self.impact_per_quote = Decimal("0.00001")
        self.quote_price = {}
        self.quote_calls = []

    def get_market_price(self, pool):
        return self.market_price.get(pool, Decimal("1"))

    def get_tick_spacing(self, pool):
        return self.tick_spacing.get(pool, 1)

    def get_index_price(self, base_token, interval=0):
        return self.index_price.get(base_token, Decimal("1"))

    def get_buying_power(self, trader, leverage):
        return self.buying_power

    def get_collateral_balance(self, trader):
        return self.collateral_balance

    def get_position_size(self, trader, base_token):
        return self.position_size.get(base_token, Decimal("0"))

    def get_position_value(self, trader, base_token):
        return self.position_value.get(base_token, Decimal("0"))

    def get_margin_ratio(self, trader):
        return self.margin_ratio

    def get_open_orders(self, trader, base_token):
        return list(self.open_orders.get(base_token, []))

    def get_open_order(self, trader, base_token, lower_tick, upper_tick):
        for order in self.open_orders.get(base_token, []):
            if (order.lower_tick, order.upper_tick) == (lower_tick, upper_tick):
                return order
        return None

    def quote(self, base_token, side, amount_type, amount):
        self.quote_calls.append(amount)
        impact = min(self.impact_per_quote * amount, Decimal("0.99"))
        price = self.quote_price.get(base_token, Decimal("1"))
        after = price * (1 - impact) if side.value == "SHORT" else price * (1 + impact)
        # sqrtPriceX96 for the post-swap price
        sqrt_price_x96 = int(after.sqrt() * (Decimal(2) ** 96))
        return SwapResponse(Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0"), sqrt_price_x96)


class FakeSequencer:
    def __init__(self):
        self.addresses = []

    def setup(self, addresses):
        self.addresses.extend(addresses)

    def current_nonce(self, address):
        return 7


class FakeBotService:
    """Records every write.

    ``fail`` maps a method name to ``f(*args)`` returning an exception to
    raise, or None to let that call through.
    """

    def __init__(self, perp: FakePerpService):
        self.perp = perp
        self.sequencer = FakeSequencer()
        self.calls = []
        self.fail = {}
        self.referral_codes = []

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail:
            exc = self.fail[name](*args)
            if exc is not None:
                raise exc

    def names(self):
        return [c[0] for c in self.calls]

    def approve(self, trader, spender, amount):
        self._record("approve", spender, amount)

    def deposit(self, trader, amount):
        self._record("deposit", amount)

    def add_liquidity(self, trader, base_token, lower_tick, upper_tick, base, quote):
        self._record("add_liquidity", base_token, lower_tick, upper_tick, base, quote)

    def remove_liquidity(self, trader, base_token, lower_tick, upper_tick, liquidity):
        self._record("remove_liquidity", base_token, lower_tick, upper_tick, liquidity)

    def open_position(self, trader, base_token, side, amount_type, amount, referral_code=None):
        self.referral_codes.append(referral_code)
        self._record("open_position", base_token, side, amount_type, amount)

    def close_position(self, trader, base_token, referral_code=None):
        self.referral_codes.append(referral_code)
        self._record("close_position", base_token)


class FakeVenue:
    def __init__(self):
        self.position_size = {}
        self.margin_fraction = None
        self.price = Decimal("1")
        self.min_order_size = Decimal("0.01")
        self.orders = []
        self.on_order = None

    def get_market(self, market):
        return VenueMarket(name=market, price=self.price, min_order_size=self.min_order_size)

    def get_position_size(self, market):
        return self.position_size.get(market, Decimal("0"))

    def get_margin_fraction(self):
        return self.margin_fraction

    def place_market_order(self, market, side, size, reduce_only=False, min_order_size=None):
        self.orders.append((market, side, size, reduce_only))
        if self.on_order:
            self.on_order(market, side, size)
        return VenueOrderResult(success=True, order_id=str(len(self.orders)), market=market, size=size)


class Harness:
    def __init__(self, markets, settings=None):
        self.eth = FakeEthService()
        self.perp = FakePerpService()
        self.bot = FakeBotService(self.perp)
        self.venue = FakeVenue()
        self.halts = []
        self.sleeps = []
        self.maker_config = MakerConfig(contracts=self.perp.contracts, markets={m.name: m for m in markets})
        self.maker = Maker(
            self.eth,
            self.perp,
            self.bot,
            self.venue,
            self.maker_config,
            settings=settings
            or EngineSettings(
                emergency_margin_ratio=Decimal("0.05"),
                emergency_cooldown=60,
                hedge_order_delay=1.5,
                adjust_max_gas_price_gwei=Decimal("1"),
            ),
            halt=self.halts.append,
            sleep=self.sleeps.append,
        )
        self.maker.setup(private_key="0x" + "11" * 32)

    def market(self, name="vETH"):
        return self.maker.market_map[name]

    def set_price(self, name, price, index_price=None):
        market = self.market(name)
        self.perp.market_price[market.pool] = Decimal(price)
        self.perp.quote_price[market.base_token] = Decimal(price)
        if index_price is not None:
            self.perp.index_price[market.base_token] = Decimal(index_price)


@pytest.fixture
def harness():
    return Harness([make_market_config()])


@pytest.fixture
def two_market_harness():
    return Harness([make_market_config("vETH", 0), make_market_config("vBTC", 1)])
