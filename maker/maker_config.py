"""
Maker Configuration - per-market strategy and contract addresses

Loaded once at startup from a YAML file and frozen. Every market has:
- Range liquidity sizing (amount, range offset, adjust threshold)
- Hedge settings (trigger ratio, per-order cap, venue market name)
- Normal reduce settings (spread band, randomized amount, slippage caps)
- Emergency reduce settings (enable flag, fixed reduce amount)

Unknown keys and out-of-range values are rejected here, not at first use.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from web3 import Web3

ADJUST_BANDS = ("center", "edge")

# Fields that must lie strictly between 0 and 1
RATIO_FIELDS = (
    "liquidity_range_offset",
    "liquidity_adjust_threshold",
    "hedge_trigger_ratio",
    "reduce_min_spread",
    "reduce_max_spread",
    "reduce_target_slippage",
    "max_slippage",
)

AMOUNT_FIELDS = (
    "liquidity_amount",
    "hedge_max_order_size",
    "reduce_amount",
    "reduce_amount_offset",
    "max_order_amount",
    "emergency_reduce_amount",
)


def _decimal(name: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}")


def _address(name: str, value: Any) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"{name} must be an address, got {value!r}")
    return Web3.to_checksum_address(value)


@dataclass(frozen=True)
class ContractAddresses:
    """Protocol deployment addresses (taken as given, never resolved)."""

    clearing_house: str
    vault: str
    account_balance: str
    order_book: str
    quoter: str
    collateral_token: str

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _address(f"contracts.{f.name}", getattr(self, f.name)))


@dataclass(frozen=True)
class MarketConfig:
    """Strategy parameters for one market."""

    name: str
    base_token: str
    pool: str
    is_enabled: bool = True

    # Range liquidity
    liquidity_amount: Decimal = Decimal("0")
    liquidity_range_offset: Decimal = Decimal("0.1")
    liquidity_adjust_threshold: Decimal = Decimal("0.05")
    adjust_band: str = "center"

    # Hedge on the secondary venue
    hedge_enabled: bool = False
    venue_market: str = ""
    hedge_trigger_ratio: Decimal = Decimal("0.1")
    hedge_max_order_size: Decimal = Decimal("0")

    # Normal reduce
    reduce_enabled: bool = False
    reduce_min_spread: Decimal = Decimal("0.005")
    reduce_max_spread: Decimal = Decimal("0.05")
    reduce_amount: Decimal = Decimal("0")
    reduce_amount_offset: Decimal = Decimal("0")
    reduce_target_slippage: Decimal = Decimal("0.001")
    max_slippage: Decimal = Decimal("0.01")
    max_order_amount: Decimal = Decimal("0")

    # Emergency reduce
    emergency_enabled: bool = False
    emergency_reduce_amount: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, "base_token", _address(f"{self.name}.base_token", self.base_token))
        object.__setattr__(self, "pool", _address(f"{self.name}.pool", self.pool))

        for name in RATIO_FIELDS + AMOUNT_FIELDS:
            object.__setattr__(self, name, _decimal(f"{self.name}.{name}", getattr(self, name)))

        for name in RATIO_FIELDS:
            value = getattr(self, name)
            if not Decimal(0) < value < Decimal(1):
                raise ValueError(f"{self.name}.{name} must be between 0 and 1, got {value}")
        for name in AMOUNT_FIELDS:
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{self.name}.{name} must be >= 0, got {value}")

        if self.adjust_band not in ADJUST_BANDS:
            raise ValueError(f"{self.name}.adjust_band must be one of {ADJUST_BANDS}, got {self.adjust_band!r}")
        if self.reduce_min_spread >= self.reduce_max_spread:
            raise ValueError(f"{self.name}.reduce_min_spread must be < reduce_max_spread")
        if self.reduce_amount_offset > self.reduce_amount:
            raise ValueError(f"{self.name}.reduce_amount_offset must be <= reduce_amount")
        if (self.hedge_enabled or self.emergency_enabled) and not self.venue_market:
            raise ValueError(f"{self.name}.venue_market is required when hedge or emergency reduce is enabled")
        if self.reduce_enabled and self.max_order_amount <= 0:
            raise ValueError(f"{self.name}.max_order_amount must be > 0 when reduce is enabled")


@dataclass(frozen=True)
class MakerConfig:
    contracts: ContractAddresses
    markets: Dict[str, MarketConfig] = field(default_factory=dict)

    def enabled_markets(self) -> Dict[str, MarketConfig]:
        return {name: m for name, m in self.markets.items() if m.is_enabled}


def _build(cls, data: Dict[str, Any], where: str, **extra):
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in {where}: {sorted(unknown)}")
    try:
        return cls(**data, **extra)
    except TypeError as e:
        raise ValueError(f"Invalid {where}: {e}")


def parse_config(data: Dict[str, Any]) -> MakerConfig:
    if not isinstance(data, dict):
        raise ValueError("Maker config must be a mapping")
    unknown = set(data) - {"contracts", "markets"}
    if unknown:
        raise ValueError(f"Unknown top-level keys: {sorted(unknown)}")

    contracts = _build(ContractAddresses, data.get("contracts") or {}, "contracts")

    markets: Dict[str, MarketConfig] = {}
    for name, raw in (data.get("markets") or {}).items():
        if not isinstance(raw, dict):
            raise ValueError(f"Market {name} must be a mapping")
        if "name" in raw:
            raise ValueError(f"Market {name} must not set 'name'; the key is the name")
        markets[name] = _build(MarketConfig, raw, f"markets.{name}", name=name)

    if not markets:
        raise ValueError("No markets configured")
    return MakerConfig(contracts=contracts, markets=markets)


def load_config(path: Union[str, Path]) -> MakerConfig:
    """Load and validate the YAML maker config."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Maker config not found: {path}")
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return parse_config(data or {})
