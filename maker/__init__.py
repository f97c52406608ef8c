"""Perp v2 range liquidity maker with hedge venue offsetting."""

from maker.errors import (
    BelowMinOrderSizeError,
    FatalInconsistencyError,
    MakerError,
    NoBuyingPowerError,
    RetryBudgetExhaustedError,
    SlippageTooHighError,
    TxRevertedError,
    VenueError,
)

__all__ = [
    "BelowMinOrderSizeError",
    "FatalInconsistencyError",
    "MakerError",
    "NoBuyingPowerError",
    "RetryBudgetExhaustedError",
    "SlippageTooHighError",
    "TxRevertedError",
    "VenueError",
]
