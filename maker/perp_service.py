"""
Perp Service - typed reads against the perpetual protocol contracts

Every call goes through the EthService's *current* connection, so contract
handles are built per call and follow endpoint rotation. Scaled integers
are converted to Decimal here: 18 decimals for protocol values, the
collateral token's own decimals for vault values.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from maker.abis import (
    ACCOUNT_BALANCE_ABI,
    BASE_TOKEN_ABI,
    CLEARING_HOUSE_ABI,
    ERC20_ABI,
    ORDER_BOOK_ABI,
    POOL_ABI,
    QUOTER_ABI,
    VAULT_ABI,
)
from maker.eth_service import EthService
from maker.helper import from_wei, sqrt_price_x96_to_price, to_wei
from maker.maker_config import ContractAddresses

logger = logging.getLogger(__name__)


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class AmountType(str, Enum):
    BASE = "BASE"
    QUOTE = "QUOTE"


def swap_flags(side: Side, amount_type: AmountType):
    """(is_base_to_quote, is_exact_input) for a trade.

    Shorting sells base for quote. The amount is the exact input when it is
    denominated in the token being sold.
    """
    is_base_to_quote = side is Side.SHORT
    is_exact_input = (side is Side.SHORT and amount_type is AmountType.BASE) or (
        side is Side.LONG and amount_type is AmountType.QUOTE
    )
    return is_base_to_quote, is_exact_input


@dataclass(frozen=True)
class OpenOrder:
    liquidity: int
    lower_tick: int
    upper_tick: int
    base_debt: Decimal = Decimal("0")
    quote_debt: Decimal = Decimal("0")

    def __post_init__(self):
        if self.lower_tick >= self.upper_tick:
            raise ValueError(f"lower_tick {self.lower_tick} must be < upper_tick {self.upper_tick}")
        if self.liquidity < 0:
            raise ValueError("liquidity must be >= 0")


@dataclass(frozen=True)
class SwapResponse:
    delta_available_base: Decimal
    delta_available_quote: Decimal
    exchanged_position_size: Decimal
    exchanged_position_notional: Decimal
    sqrt_price_x96: int

    @property
    def price_after(self) -> Decimal:
        return sqrt_price_x96_to_price(self.sqrt_price_x96)


class PerpService:
    """Read-only views of pools, vault, balances and orders."""

    def __init__(self, eth_service: EthService, contracts: ContractAddresses):
        self.eth_service = eth_service
        self.contracts = contracts
        self._collateral_decimals: Optional[int] = None
        self._lock = threading.Lock()

    def _contract(self, address: str, abi: list):
        return self.eth_service.create_contract(address, abi)

    # ─────────────────────────────────────────────────────────────
    # Market
    # ─────────────────────────────────────────────────────────────

    def get_market_price(self, pool: str) -> Decimal:
        slot0 = self._contract(pool, POOL_ABI).functions.slot0().call()
        return sqrt_price_x96_to_price(slot0[0])

    def get_tick_spacing(self, pool: str) -> int:
        return int(self._contract(pool, POOL_ABI).functions.tickSpacing().call())

    def get_index_price(self, base_token: str, interval: int = 0) -> Decimal:
        raw = self._contract(base_token, BASE_TOKEN_ABI).functions.getIndexPrice(interval).call()
        return from_wei(raw)

    def quote(self, base_token: str, side: Side, amount_type: AmountType, amount: Decimal) -> SwapResponse:
        """Simulate a swap without sending a transaction."""
        is_base_to_quote, is_exact_input = swap_flags(side, amount_type)
        params = (base_token, is_base_to_quote, is_exact_input, to_wei(amount), 0)
        raw = self._contract(self.contracts.quoter, QUOTER_ABI).functions.swap(params).call()
        return SwapResponse(
            delta_available_base=from_wei(raw[0]),
            delta_available_quote=from_wei(raw[1]),
            exchanged_position_size=from_wei(raw[2]),
            exchanged_position_notional=from_wei(raw[3]),
            sqrt_price_x96=int(raw[4]),
        )

    # ─────────────────────────────────────────────────────────────
    # Collateral
    # ─────────────────────────────────────────────────────────────

    def get_collateral_decimals(self) -> int:
        with self._lock:
            if self._collateral_decimals is None:
                token = self._contract(self.contracts.collateral_token, ERC20_ABI)
                self._collateral_decimals = int(token.functions.decimals().call())
            return self._collateral_decimals

    def get_collateral_balance(self, trader: str) -> Decimal:
        """Wallet balance of the collateral token (not yet deposited)."""
        token = self._contract(self.contracts.collateral_token, ERC20_ABI)
        return from_wei(token.functions.balanceOf(trader).call(), self.get_collateral_decimals())

    def get_free_collateral(self, trader: str) -> Decimal:
        vault = self._contract(self.contracts.vault, VAULT_ABI)
        return from_wei(vault.functions.getFreeCollateral(trader).call(), self.get_collateral_decimals())

    def get_buying_power(self, trader: str, leverage: Decimal) -> Decimal:
        return self.get_free_collateral(trader) * Decimal(str(leverage))

    # ─────────────────────────────────────────────────────────────
    # Account
    # ─────────────────────────────────────────────────────────────

    def get_account_value(self, trader: str) -> Decimal:
        ch = self._contract(self.contracts.clearing_house, CLEARING_HOUSE_ABI)
        return from_wei(ch.functions.getAccountValue(trader).call())

    def get_position_size(self, trader: str, base_token: str) -> Decimal:
        ab = self._contract(self.contracts.account_balance, ACCOUNT_BALANCE_ABI)
        return from_wei(ab.functions.getTotalPositionSize(trader, base_token).call())

    def get_position_value(self, trader: str, base_token: str) -> Decimal:
        ab = self._contract(self.contracts.account_balance, ACCOUNT_BALANCE_ABI)
        return from_wei(ab.functions.getTotalPositionValue(trader, base_token).call())

    def get_total_abs_position_value(self, trader: str) -> Decimal:
        ab = self._contract(self.contracts.account_balance, ACCOUNT_BALANCE_ABI)
        return from_wei(ab.functions.getTotalAbsPositionValue(trader).call())

    def get_margin_ratio(self, trader: str) -> Optional[Decimal]:
        """Account value over total exposure, or None with no open position."""
        total = self.get_total_abs_position_value(trader)
        if total == 0:
            return None
        return self.get_account_value(trader) / total

    # ─────────────────────────────────────────────────────────────
    # Orders
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _to_order(raw) -> OpenOrder:
        return OpenOrder(
            liquidity=int(raw[0]),
            lower_tick=int(raw[1]),
            upper_tick=int(raw[2]),
            base_debt=from_wei(raw[7]),
            quote_debt=from_wei(raw[8]),
        )

    def get_open_order_ids(self, trader: str, base_token: str) -> List[bytes]:
        ob = self._contract(self.contracts.order_book, ORDER_BOOK_ABI)
        return list(ob.functions.getOpenOrderIds(trader, base_token).call())

    def get_open_orders(self, trader: str, base_token: str) -> List[OpenOrder]:
        ob = self._contract(self.contracts.order_book, ORDER_BOOK_ABI)
        return [
            self._to_order(ob.functions.getOpenOrderById(order_id).call())
            for order_id in self.get_open_order_ids(trader, base_token)
        ]

    def get_open_order(self, trader: str, base_token: str, lower_tick: int, upper_tick: int) -> Optional[OpenOrder]:
        ob = self._contract(self.contracts.order_book, ORDER_BOOK_ABI)
        raw = ob.functions.getOpenOrder(trader, base_token, lower_tick, upper_tick).call()
        if int(raw[0]) == 0:
            return None
        return self._to_order(raw)
