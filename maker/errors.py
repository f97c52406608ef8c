"""Exception taxonomy for the maker.

Loops catch ``MakerError`` subclasses (and anything else) per market, log
them and move on to the next tick. ``FatalInconsistencyError`` is the one
exception that stops the process.
"""


class MakerError(Exception):
    """Base class for every error raised by the maker."""


class RetryBudgetExhaustedError(MakerError):
    """Raised when nonce conflicts persist for the whole retry budget."""

    def __init__(self, address: str, attempts: int):
        super().__init__(f"max retry count reached for {address} after {attempts} nonce conflicts")
        self.address = address
        self.attempts = attempts


class TxRevertedError(MakerError):
    """Raised when a mined transaction has status 0."""

    def __init__(self, tx_hash: str):
        super().__init__(f"transaction reverted: {tx_hash}")
        self.tx_hash = tx_hash


class NoBuyingPowerError(MakerError):
    """Raised when there is no buying power left to place liquidity."""


class BelowMinOrderSizeError(MakerError):
    """Raised when an order would be smaller than the venue accepts."""


class SlippageTooHighError(MakerError):
    """Raised when the best achievable slippage is above the configured cap."""


class VenueError(MakerError):
    """Raised when the hedge venue rejects a request or returns garbage."""


class FatalInconsistencyError(MakerError):
    """On-chain state the maker refuses to repair on its own."""
