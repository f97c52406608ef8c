"""
Maker - range liquidity rebalancing and hedging engine

Four independent loops, each on its own daemon thread:

1. Order maintenance (every PRICE_CHECK_INTERVAL_SEC)
   Keep exactly one current-range order per market. Re-center it (remove
   liquidity, close the resulting position, add a new range around the
   market price) once the price leaves the validity band.
2. Hedge (every HEDGE_INTERVAL_SEC)
   Offset the on-chain position on the hedge venue when the two drift apart.
3. Normal reduce (every REDUCE_INTERVAL_SEC)
   Trim the on-chain position in small randomized chunks while the market
   price sits on the favorable side of the index price.
4. Emergency reduce (every EMERGENCY_INTERVAL_SEC)
   When either venue's margin ratio breaches EMERGENCY_MARGIN_RATIO, switch
   to EMERGENCY risk mode, cut every emergency-enabled market on both venues,
   cool down, then switch back.

Within a tick, markets are processed concurrently. Each market carries an
RLock that serializes everything that mutates its order or position. A
failure in one market is logged and never stops the others, except a
FatalInconsistencyError which halts the whole process.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import config
from maker.bot_service import BotService, referral_code_bytes
from maker.errors import (
    FatalInconsistencyError,
    NoBuyingPowerError,
    SlippageTooHighError,
)
from maker.eth_service import EthService
from maker.helper import price_to_tick, random_decimal, tick_to_price
from maker.log import log_event
from maker.maker_config import MakerConfig, MarketConfig
from maker.perp_service import AmountType, OpenOrder, PerpService, Side
from maker.slippage import SlippageEstimator
from maker.venue_client import VenueClient

logger = logging.getLogger(__name__)

# More open orders than this on one market is never repaired automatically
MAX_RECONCILABLE_ORDERS = 2

DEFAULT_REFERRAL_CODE = "perpmaker"


class RiskMode(str, Enum):
    NORMAL = "NORMAL"
    EMERGENCY = "EMERGENCY"


@dataclass(frozen=True)
class EngineSettings:
    """Global loop intervals and risk thresholds."""

    price_check_interval: float = config.PRICE_CHECK_INTERVAL_SEC
    hedge_interval: float = config.HEDGE_INTERVAL_SEC
    hedge_order_delay: float = config.HEDGE_ORDER_DELAY_SEC
    reduce_interval: float = config.REDUCE_INTERVAL_SEC
    emergency_interval: float = config.EMERGENCY_INTERVAL_SEC
    emergency_cooldown: float = config.EMERGENCY_COOLDOWN_SEC
    buying_power_leverage: Decimal = Decimal(str(config.BUYING_POWER_LEVERAGE))
    emergency_margin_ratio: Decimal = Decimal(str(config.EMERGENCY_MARGIN_RATIO))
    adjust_max_gas_price_gwei: Decimal = Decimal(str(config.ADJUST_MAX_GAS_PRICE_GWEI))
    enable_hedge: bool = config.ENABLE_HEDGE
    enable_reduce: bool = config.ENABLE_REDUCE
    enable_emergency_reduce: bool = config.ENABLE_EMERGENCY_REDUCE
    max_workers: int = 8
    referral_code: str = config.REFERRAL_CODE


@dataclass
class Market:
    name: str
    base_token: str
    pool: str
    tick_spacing: int
    config: MarketConfig
    is_in_hedging_process: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self):
        if self.tick_spacing <= 0:
            raise ValueError(f"{self.name}: tick spacing must be > 0, got {self.tick_spacing}")


def is_order_valid(order: OpenOrder, market_price: Decimal, threshold: Decimal, band: str = "center") -> bool:
    """Whether ``market_price`` is still inside the order's keep band.

    ``center``: within a factor of (1 + threshold) of the range's geometric
    center. ``edge``: at least ``threshold`` away from both range edges.

    The symmetric example (range 90..110, threshold 0.1, price 100 stays
    valid) holds only for ``center``. Under ``edge`` the same order keeps
    just 99..99, so price 100 is already out.
    """
    upper_price = tick_to_price(order.upper_tick)
    lower_price = tick_to_price(order.lower_tick)
    one = Decimal(1)
    if band == "edge":
        return lower_price * (one + threshold) < market_price < upper_price * (one - threshold)
    central_price = (upper_price * lower_price).sqrt()
    return central_price / (one + threshold) < market_price < central_price * (one + threshold)


def _halt_process(reason: str) -> None:
    logger.critical("[Maker] halting: %s", reason)
    logging.shutdown()
    # os._exit so a halt raised on a worker thread still ends the process
    os._exit(1)


class Maker:
    def __init__(
        self,
        eth_service: EthService,
        perp_service: PerpService,
        bot_service: BotService,
        venue: VenueClient,
        maker_config: MakerConfig,
        settings: Optional[EngineSettings] = None,
        slippage: Optional[SlippageEstimator] = None,
        halt: Callable[[str], None] = _halt_process,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.eth_service = eth_service
        self.perp_service = perp_service
        self.bot_service = bot_service
        self.venue = venue
        self.maker_config = maker_config
        self.settings = settings or EngineSettings()
        self.slippage = slippage or SlippageEstimator(perp_service)
        self.halt = halt
        self._sleep = sleep

        self.wallet = None
        self.referral_code = DEFAULT_REFERRAL_CODE
        self.market_map: Dict[str, Market] = {}
        self.current_orders: Dict[str, OpenOrder] = {}

        self._risk_lock = threading.Lock()
        self._risk_mode = RiskMode.NORMAL
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def address(self) -> str:
        return self.wallet.address

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def setup(self, private_key: Optional[str] = None) -> None:
        log_event(logger, "SetupMaker")
        private_key = private_key or config.PRIVATE_KEY
        if not private_key:
            raise ValueError("no env PRIVATE_KEY is provided")
        self.wallet = self.eth_service.private_key_to_account(private_key)
        self.bot_service.sequencer.setup([self.wallet.address])
        self.referral_code = self.resolve_referral_code()
        self.create_market_map()
        log_event(
            logger,
            "Maker",
            address=self.wallet.address,
            nextNonce=self.bot_service.sequencer.current_nonce(self.wallet.address),
            referralCode=self.referral_code,
            markets=sorted(self.market_map),
        )

    def resolve_referral_code(self) -> str:
        code = self.settings.referral_code
        if not code:
            log_event(logger, "NoReferralCode")
            return DEFAULT_REFERRAL_CODE
        try:
            referral_code_bytes(code)
        except ValueError as e:
            log_event(logger, "InvalidReferralCode", logging.ERROR, code=code, error=str(e))
            return DEFAULT_REFERRAL_CODE
        return code

    def create_market_map(self) -> None:
        for name, market_config in self.maker_config.enabled_markets().items():
            self.market_map[name] = Market(
                name=name,
                base_token=market_config.base_token,
                pool=market_config.pool,
                tick_spacing=self.perp_service.get_tick_spacing(market_config.pool),
                config=market_config,
            )

    def start(self) -> None:
        balance = self.perp_service.get_collateral_balance(self.address)
        log_event(logger, "CheckCollateralBalance", balance=balance)
        if balance > 0:
            self.bot_service.approve(self.wallet, self.perp_service.contracts.vault, balance)
            self.bot_service.deposit(self.wallet, balance)

        s = self.settings
        self._spawn("maker", self.maker_tick, s.price_check_interval)
        if s.enable_hedge and self._markets(lambda m: m.hedge_enabled):
            self._spawn("hedge", self.hedge_tick, s.hedge_interval)
        if s.enable_reduce and self._markets(lambda m: m.reduce_enabled):
            self._spawn("reduce", self.reduce_tick, s.reduce_interval)
        if s.enable_emergency_reduce and self._markets(lambda m: m.emergency_enabled):
            self._spawn("emergency", self.emergency_tick, s.emergency_interval)

    def _spawn(self, name: str, tick: Callable[[], object], interval: float) -> None:
        thread = threading.Thread(target=self._run_loop, args=(name, tick, interval), name=f"maker-{name}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def _run_loop(self, name: str, tick: Callable[[], object], interval: float) -> None:
        logger.info("[Maker] %s loop started (every %ss)", name, interval)
        while not self._stop.is_set():
            try:
                tick()
            except FatalInconsistencyError as e:
                self.halt(str(e))
            except Exception as e:
                log_event(logger, "RoutineError", logging.ERROR, routine=name, err=repr(e))
            self._stop.wait(interval)

    def stop(self) -> None:
        self._stop.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``stop()``; True once stopped."""
        return self._stop.wait(timeout)

    def _markets(self, predicate: Callable[[MarketConfig], bool]) -> List[Market]:
        return [m for m in self.market_map.values() if predicate(m.config)]

    def _fan_out(self, event: str, fn: Callable[[Market], object], markets: Iterable[Market]) -> None:
        """Run ``fn`` on every market concurrently, isolating failures."""
        markets = list(markets)
        if not markets:
            return

        def run(market: Market):
            try:
                fn(market)
            except FatalInconsistencyError as e:
                log_event(logger, f"{event}Fatal", logging.CRITICAL, market=market.name, err=str(e))
                self.halt(str(e))
            except Exception as e:
                log_event(logger, f"{event}Error", logging.ERROR, market=market.name, err=repr(e))

        with ThreadPoolExecutor(max_workers=min(self.settings.max_workers, len(markets))) as pool:
            list(pool.map(run, markets))

    # ─────────────────────────────────────────────────────────────
    # Risk mode
    # ─────────────────────────────────────────────────────────────

    @property
    def risk_mode(self) -> RiskMode:
        with self._risk_lock:
            return self._risk_mode

    @property
    def is_in_emergency_mode(self) -> bool:
        return self.risk_mode is RiskMode.EMERGENCY

    def _enter_emergency(self) -> bool:
        with self._risk_lock:
            if self._risk_mode is RiskMode.EMERGENCY:
                return False
            self._risk_mode = RiskMode.EMERGENCY
            return True

    def _clear_emergency(self) -> None:
        with self._risk_lock:
            self._risk_mode = RiskMode.NORMAL

    # ─────────────────────────────────────────────────────────────
    # Order maintenance
    # ─────────────────────────────────────────────────────────────

    def maker_tick(self) -> None:
        self._fan_out("AdjustCurrentRangeLiquidity", self.maintain_market, self.market_map.values())

    def maintain_market(self, market: Market) -> None:
        gas_price = self.eth_service.get_gas_price()
        max_gas_price = self.settings.adjust_max_gas_price_gwei
        if gas_price > max_gas_price:
            log_event(logger, "GasPriceExceed", logging.WARNING, gasPrice=gas_price, maxGasPrice=max_gas_price)
            return
        with market.lock:
            self.refresh_current_range_orders(market)
            self.adjust_current_range_liquidity(market)

    def refresh_current_range_orders(self, market: Market) -> OpenOrder:
        with market.lock:
            open_orders = self.perp_service.get_open_orders(self.address, market.base_token)
            for order in open_orders:
                log_event(
                    logger,
                    "GetOpenOrders",
                    market=market.name,
                    lowerPrice=tick_to_price(order.lower_tick),
                    upperPrice=tick_to_price(order.upper_tick),
                    liquidity=order.liquidity,
                )

            if len(open_orders) > MAX_RECONCILABLE_ORDERS:
                log_event(
                    logger,
                    "RefreshCurrentRangeOrderError",
                    logging.CRITICAL,
                    market=market.name,
                    openOrders=[(o.lower_tick, o.upper_tick, o.liquidity) for o in open_orders],
                )
                raise FatalInconsistencyError(f"{market.name} has {len(open_orders)} open orders")

            if not open_orders:
                order = self.create_current_range_order(market)
            elif len(open_orders) == 1:
                order = open_orders[0]
            else:
                order = self.reconcile_duplicate_orders(market, open_orders)
            self.current_orders[market.name] = order
            return order

    def reconcile_duplicate_orders(self, market: Market, open_orders: List[OpenOrder]) -> OpenOrder:
        """Keep the order inside the validity band and tear down the other.

        When both or neither are valid, the first one is kept.
        """
        market_price = self.perp_service.get_market_price(market.pool)
        valid = [self.is_valid_current_range_order(market, o, market_price) for o in open_orders]
        keep_index = valid.index(True) if valid.count(True) == 1 else 0
        kept = open_orders[keep_index]
        log_event(
            logger,
            "ReconcileDuplicateOrders",
            logging.WARNING,
            market=market.name,
            valid=valid,
            keepIndex=keep_index,
        )
        for index, order in enumerate(open_orders):
            if index != keep_index:
                self.remove_current_range_order(market, order)
        return kept

    def is_valid_current_range_order(
        self, market: Market, order: OpenOrder, market_price: Optional[Decimal] = None
    ) -> bool:
        if market_price is None:
            market_price = self.perp_service.get_market_price(market.pool)
        return is_order_valid(
            order,
            market_price,
            market.config.liquidity_adjust_threshold,
            market.config.adjust_band,
        )

    def create_current_range_order(self, market: Market) -> OpenOrder:
        buying_power = self.perp_service.get_buying_power(self.address, self.settings.buying_power_leverage)
        amount = min(market.config.liquidity_amount, buying_power)
        if amount <= 0:
            log_event(logger, "NoBuyingPowerToCreateCurrentRangeOrder", logging.WARNING, buyingPower=buying_power)
            raise NoBuyingPowerError(f"{market.name}: no buying power (buying power {buying_power})")

        market_price = self.perp_service.get_market_price(market.pool)
        offset = market.config.liquidity_range_offset
        upper_price = market_price * (1 + offset)
        lower_price = market_price * (1 - offset)
        upper_tick = price_to_tick(upper_price, market.tick_spacing)
        lower_tick = price_to_tick(lower_price, market.tick_spacing)
        if lower_tick >= upper_tick:
            upper_tick = lower_tick + market.tick_spacing
        log_event(
            logger,
            "CreateCurrentRangeOrder",
            market=market.name,
            marketPrice=market_price,
            upperPrice=upper_price,
            lowerPrice=lower_price,
            upperTick=upper_tick,
            lowerTick=lower_tick,
        )

        quote = amount / 2
        base = amount / 2 / market_price
        with market.lock:
            self.bot_service.add_liquidity(self.wallet, market.base_token, lower_tick, upper_tick, base, quote)
            new_order = self.perp_service.get_open_order(self.address, market.base_token, lower_tick, upper_tick)
        return OpenOrder(
            liquidity=new_order.liquidity if new_order else 0,
            lower_tick=lower_tick,
            upper_tick=upper_tick,
        )

    def remove_current_range_order(self, market: Market, order: OpenOrder) -> None:
        log_event(
            logger,
            "RemoveCurrentRangeOrder",
            market=market.name,
            upperPrice=tick_to_price(order.upper_tick),
            lowerPrice=tick_to_price(order.lower_tick),
            liquidity=order.liquidity,
        )
        with market.lock:
            self.bot_service.remove_liquidity(
                self.wallet, market.base_token, order.lower_tick, order.upper_tick, order.liquidity
            )
            self.bot_service.close_position(self.wallet, market.base_token, referral_code=self.referral_code)

    def adjust_current_range_liquidity(self, market: Market) -> None:
        with market.lock:
            current = self.current_orders[market.name]
            log_event(
                logger,
                "AdjustCurrentRangeOrder",
                logging.DEBUG,
                market=market.name,
                upperPrice=tick_to_price(current.upper_tick),
                lowerPrice=tick_to_price(current.lower_tick),
            )
            if self.is_valid_current_range_order(market, current):
                return
            self.remove_current_range_order(market, current)
            self.current_orders.pop(market.name, None)
            self.current_orders[market.name] = self.create_current_range_order(market)

    # ─────────────────────────────────────────────────────────────
    # Hedge
    # ─────────────────────────────────────────────────────────────

    def hedge_tick(self, force: bool = False) -> None:
        if self.is_in_emergency_mode:
            log_event(logger, "HedgeSkippedEmergency", logging.DEBUG)
            return
        self._fan_out("Hedge", lambda m: self.hedge(m, force=force), self._markets(lambda c: c.hedge_enabled))

    def hedge(self, market: Market, force: bool = False) -> Decimal:
        """Offset the on-chain position on the venue. Returns the size hedged."""
        if self.is_in_emergency_mode:
            return Decimal("0")
        with market.lock:
            if market.is_in_hedging_process:
                log_event(logger, "HedgeSkippedInProgress", logging.DEBUG, market=market.name)
                return Decimal("0")
            market.is_in_hedging_process = True
        try:
            return self._hedge(market, force)
        finally:
            with market.lock:
                market.is_in_hedging_process = False

    def _hedge(self, market: Market, force: bool) -> Decimal:
        cfg = market.config
        onchain_size = self.perp_service.get_position_size(self.address, market.base_token)
        venue_size = self.venue.get_position_size(cfg.venue_market)
        gap = onchain_size + venue_size
        if gap == 0:
            return Decimal("0")

        if onchain_size == 0:
            triggered = True
        else:
            triggered = abs(gap) / abs(onchain_size) > cfg.hedge_trigger_ratio
        if not (force or triggered):
            return Decimal("0")

        venue_market = self.venue.get_market(cfg.venue_market)
        min_size = venue_market.min_order_size
        side = Side.SHORT if gap > 0 else Side.LONG
        remaining = abs(gap)
        hedged = Decimal("0")
        log_event(
            logger,
            "HedgeStart",
            market=market.name,
            onchainSize=onchain_size,
            venueSize=venue_size,
            gap=gap,
            side=side.value,
            force=force,
        )

        while remaining > 0 and remaining >= min_size:
            if self.is_in_emergency_mode:
                log_event(logger, "HedgeInterruptedEmergency", logging.WARNING, market=market.name, remaining=remaining)
                break
            size = remaining
            if cfg.hedge_max_order_size > 0:
                size = min(size, cfg.hedge_max_order_size)
            self.venue.place_market_order(cfg.venue_market, side, size, min_order_size=min_size)
            remaining -= size
            hedged += size
            log_event(logger, "HedgeOrder", market=market.name, side=side.value, size=size, remaining=remaining)
            if remaining > 0 and remaining >= min_size:
                self._sleep(self.settings.hedge_order_delay)

        log_event(logger, "HedgeDone", market=market.name, hedged=hedged, remaining=remaining)
        return hedged

    # ─────────────────────────────────────────────────────────────
    # Normal reduce
    # ─────────────────────────────────────────────────────────────

    def reduce_tick(self) -> None:
        if self.is_in_emergency_mode:
            log_event(logger, "ReduceSkippedEmergency", logging.DEBUG)
            return
        self._fan_out("NormalReduce", self.normal_reduce, self._markets(lambda c: c.reduce_enabled))

    def normal_reduce(self, market: Market) -> Optional[Decimal]:
        """Trim the on-chain position while the spread favors it.

        Returns the quote amount reduced, or None when nothing was done.
        """
        cfg = market.config
        with market.lock:
            position_size = self.perp_service.get_position_size(self.address, market.base_token)
            if position_size == 0:
                return None

            market_price = self.perp_service.get_market_price(market.pool)
            index_price = self.perp_service.get_index_price(market.base_token)
            spread = (market_price - index_price) / index_price
            # Selling a long is favorable above index, buying back a short below it
            side = Side.SHORT if position_size > 0 else Side.LONG
            directional_spread = spread if side is Side.SHORT else -spread
            if not cfg.reduce_min_spread <= directional_spread <= cfg.reduce_max_spread:
                log_event(logger, "NormalReduceSkipped", logging.DEBUG, market=market.name, spread=spread)
                return None

            amount = random_decimal(
                cfg.reduce_amount - cfg.reduce_amount_offset,
                cfg.reduce_amount + cfg.reduce_amount_offset,
            )
            estimate = self.slippage.estimate(market, market_price, cfg.reduce_target_slippage, side)
            if estimate.ratio > cfg.max_slippage:
                raise SlippageTooHighError(
                    f"{market.name}: estimated slippage {estimate.ratio} above max {cfg.max_slippage}"
                )
            amount = min(amount, estimate.amount)
            if amount <= 0:
                return None

            position_value = abs(self.perp_service.get_position_value(self.address, market.base_token))
            if position_value <= amount:
                self.bot_service.close_position(self.wallet, market.base_token, referral_code=self.referral_code)
                log_event(logger, "NormalReduceClosed", market=market.name, spread=spread, positionValue=position_value)
                return position_value

            self.bot_service.open_position(
                self.wallet, market.base_token, side, AmountType.QUOTE, amount, referral_code=self.referral_code
            )
            log_event(
                logger,
                "NormalReduce",
                market=market.name,
                side=side.value,
                amount=amount,
                spread=spread,
                slippage=estimate.ratio,
            )
            return amount

    # ─────────────────────────────────────────────────────────────
    # Emergency reduce
    # ─────────────────────────────────────────────────────────────

    def emergency_tick(self) -> bool:
        """Check margin on both venues; run one emergency cycle on breach."""
        threshold = self.settings.emergency_margin_ratio
        onchain_ratio = self.perp_service.get_margin_ratio(self.address)
        venue_ratio = self.venue.get_margin_fraction()
        breached = any(r is not None and r < threshold for r in (onchain_ratio, venue_ratio))
        log_event(
            logger,
            "CheckMarginRatio",
            logging.DEBUG,
            onchain=onchain_ratio,
            venue=venue_ratio,
            threshold=threshold,
        )
        if not breached:
            return False
        if not self._enter_emergency():
            return False

        try:
            log_event(
                logger,
                "EnterEmergencyMode",
                logging.WARNING,
                onchain=onchain_ratio,
                venue=venue_ratio,
                threshold=threshold,
            )
            self._fan_out("EmergencyReduce", self.emergency_reduce, self._markets(lambda c: c.emergency_enabled))
            self._sleep(self.settings.emergency_cooldown)
        finally:
            self._clear_emergency()
            log_event(logger, "ExitEmergencyMode", logging.WARNING)
        return True

    def emergency_reduce(self, market: Market) -> None:
        """Cut the on-chain and venue positions of one market at the same time."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(self._emergency_reduce_onchain, market),
                pool.submit(self._emergency_reduce_venue, market),
            ]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]

    def _emergency_reduce_onchain(self, market: Market) -> None:
        amount = market.config.emergency_reduce_amount
        with market.lock:
            position_size = self.perp_service.get_position_size(self.address, market.base_token)
            if position_size == 0:
                return
            position_value = abs(self.perp_service.get_position_value(self.address, market.base_token))
            if position_value <= amount:
                self.bot_service.close_position(self.wallet, market.base_token, referral_code=self.referral_code)
                log_event(logger, "EmergencyReduceClosed", logging.WARNING, market=market.name, venue="onchain")
                return
            side = Side.SHORT if position_size > 0 else Side.LONG
            self.bot_service.open_position(
                self.wallet, market.base_token, side, AmountType.QUOTE, amount, referral_code=self.referral_code
            )
            log_event(logger, "EmergencyReduce", logging.WARNING, market=market.name, venue="onchain", amount=amount)

    def _emergency_reduce_venue(self, market: Market) -> None:
        cfg = market.config
        position_size = self.venue.get_position_size(cfg.venue_market)
        if position_size == 0:
            return
        venue_market = self.venue.get_market(cfg.venue_market)
        reduce_size = cfg.emergency_reduce_amount / venue_market.price
        # Round a tiny clip up to the venue minimum, never past the position
        size = min(abs(position_size), max(reduce_size, venue_market.min_order_size))
        side = Side.SHORT if position_size > 0 else Side.LONG
        self.venue.place_market_order(cfg.venue_market, side, size, reduce_only=True)
        log_event(
            logger,
            "EmergencyReduce",
            logging.WARNING,
            market=market.name,
            venue=cfg.venue_market,
            side=side.value,
            size=size,
        )
