"""Process-wide configuration values.

Everything that is not per-market strategy (see ``maker/maker_config.py``)
lives here: RPC endpoints, credentials, loop intervals and global risk
thresholds. Values come from the environment, optionally seeded from a
``.env`` file at the project root.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

T = TypeVar("T")


def _unquote(value: str) -> str:
    """Drop a trailing ``  # comment`` outside quotes, then one pair of quotes."""
    quote: Optional[str] = None
    for i, ch in enumerate(value):
        if ch in "'\"" and quote in (None, ch):
            quote = None if quote else ch
        elif ch == "#" and quote is None and (i == 0 or value[i - 1].isspace()):
            value = value[:i]
            break
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return value


def _load_dotenv(path: Path) -> None:
    # Real environment variables win over the file
    if not path.exists():
        return
    with open(path, encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            if key.strip():
                os.environ.setdefault(key.strip(), _unquote(value.strip()))


_load_dotenv(Path(__file__).parent / ".env")


def _typed(name: str, default: T, cast: Callable[[str], T], kind: str) -> T:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be {kind}, got {value!r}")


def _float(name: str, default: float) -> float:
    return _typed(name, default, float, "a float")


def _int(name: str, default: int) -> int:
    return _typed(name, default, int, "an int")


def _list(name: str, default: List[str]) -> List[str]:
    return _typed(name, default, lambda v: [item.strip() for item in v.split(",") if item.strip()], "a list")


def _bool(name: str, default: bool) -> bool:
    return _typed(name, default, lambda v: v.strip().lower() in {"1", "true", "yes", "on"}, "a bool")


# ─────────────────────────────────────────────────────────────
# Chain access
# ─────────────────────────────────────────────────────────────

# Comma-separated, tried in order and rotated round-robin on failure
WEB3_ENDPOINTS = _list("L2_WEB3_ENDPOINTS", _list("L2_WEB3_ENDPOINT", []))
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "")

# Strategy file (markets, contract addresses)
MAKER_CONFIG_PATH = os.getenv("MAKER_CONFIG_PATH", str(Path(__file__).parent / "configs" / "config.yaml"))

# Default EIP-1559 overrides for every transaction
TX_GAS_LIMIT = _int("TX_GAS_LIMIT", 5_000_000)
TX_MAX_FEE_PER_GAS_GWEI = _float("TX_MAX_FEE_PER_GAS_GWEI", 10.0)
TX_MAX_PRIORITY_FEE_PER_GAS_GWEI = _float("TX_MAX_PRIORITY_FEE_PER_GAS_GWEI", 0.001)
TX_RECEIPT_TIMEOUT_SEC = _int("TX_RECEIPT_TIMEOUT_SEC", 120)

# Skip liquidity adjustments while gas is above this price
ADJUST_MAX_GAS_PRICE_GWEI = _float("ADJUST_MAX_GAS_PRICE_GWEI", 1.0)

# ─────────────────────────────────────────────────────────────
# Loop intervals (seconds)
# ─────────────────────────────────────────────────────────────

PRICE_CHECK_INTERVAL_SEC = _int("PRICE_CHECK_INTERVAL_SEC", 10)
HEDGE_INTERVAL_SEC = _int("HEDGE_INTERVAL_SEC", 30)
HEDGE_ORDER_DELAY_SEC = _float("HEDGE_ORDER_DELAY_SEC", 1.0)
REDUCE_INTERVAL_SEC = _int("REDUCE_INTERVAL_SEC", 30)
EMERGENCY_INTERVAL_SEC = _int("EMERGENCY_INTERVAL_SEC", 10)
EMERGENCY_COOLDOWN_SEC = _int("EMERGENCY_COOLDOWN_SEC", 60)

# ─────────────────────────────────────────────────────────────
# Global risk settings
# ─────────────────────────────────────────────────────────────

# Buying power = free collateral * this
BUYING_POWER_LEVERAGE = _float("BUYING_POWER_LEVERAGE", 10.0)

# Enter emergency mode when either venue's margin ratio drops below this
EMERGENCY_MARGIN_RATIO = _float("EMERGENCY_MARGIN_RATIO", 0.1)

ENABLE_HEDGE = _bool("ENABLE_HEDGE", True)
ENABLE_REDUCE = _bool("ENABLE_REDUCE", True)
ENABLE_EMERGENCY_REDUCE = _bool("ENABLE_EMERGENCY_REDUCE", True)

# ─────────────────────────────────────────────────────────────
# Secondary (hedge) venue
# ─────────────────────────────────────────────────────────────

VENUE_API_BASE = os.getenv("VENUE_API_BASE", "https://api.example-venue.com/api")
VENUE_API_KEY = os.getenv("VENUE_API_KEY", "")
VENUE_API_SECRET = os.getenv("VENUE_API_SECRET", "")
VENUE_SUBACCOUNT = os.getenv("VENUE_SUBACCOUNT", "")
VENUE_DRY_RUN = _bool("VENUE_DRY_RUN", True)

# ─────────────────────────────────────────────────────────────
# Referral
# ─────────────────────────────────────────────────────────────

# Sent with every position open and close; at most 32 bytes of UTF-8
REFERRAL_CODE = os.getenv("REFERRAL_CODE", "perpmaker")

# ─────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")
