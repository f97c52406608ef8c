"""
Transaction Sequencer - nonce-safe submission per address

Each address owns a NonceState: the next nonce to use and a lock. ``submit``
holds that lock for the whole attempt loop, so one address never has two
submissions racing for the same nonce. A nonce conflict reported by the node
resyncs the counter from the pending transaction count and retries; any
other failure propagates at once. After ``RetryPolicy.max_attempts``
conflicts in a row the submission fails with RetryBudgetExhaustedError.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional

from maker.errors import RetryBudgetExhaustedError, TxRevertedError
from maker.eth_service import EthService
from maker.log import log_event

logger = logging.getLogger(__name__)

NONCE_CONFLICT_CODES = {"NONCE_EXPIRED"}
NONCE_CONFLICT_MESSAGES = (
    "nonce expired",
    "invalid transaction nonce",
    "nonce too low",
)

BuildTx = Callable[[int], Any]


def _error_texts(exc: BaseException) -> Iterable[str]:
    yield str(exc)
    message = getattr(exc, "message", None)
    if message:
        yield str(message)
    # web3 keeps the raw JSON-RPC error on rpc_response
    response = getattr(exc, "rpc_response", None)
    if isinstance(response, dict):
        error = response.get("error")
        if isinstance(error, dict) and error.get("message"):
            yield str(error["message"])
    for arg in exc.args:
        if isinstance(arg, dict) and arg.get("message"):
            yield str(arg["message"])


def is_nonce_conflict(exc: BaseException) -> bool:
    """True when the node rejected the tx because its nonce is stale."""
    if getattr(exc, "code", None) in NONCE_CONFLICT_CODES:
        return True
    for text in _error_texts(exc):
        lowered = text.lower()
        if any(pattern in lowered for pattern in NONCE_CONFLICT_MESSAGES):
            return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    backoff_sec: float = 0.0
    is_retryable: Callable[[BaseException], bool] = is_nonce_conflict

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_sec < 0:
            raise ValueError("backoff_sec must be >= 0")

    def delay(self, attempt: int) -> float:
        """Linear backoff before retry number ``attempt`` (1-based)."""
        return self.backoff_sec * attempt


class Outcome(str, Enum):
    SENT = "sent"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class AttemptResult:
    outcome: Outcome
    nonce: int
    tx_hash: Any = None
    error: Optional[BaseException] = None


@dataclass
class NonceState:
    # None until loaded from the chain under ``lock``
    next_nonce: Optional[int] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class TxSequencer:
    """Serializes submissions per address and retries nonce conflicts."""

    def __init__(
        self,
        eth_service: EthService,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.eth_service = eth_service
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._states: Dict[str, NonceState] = {}
        self._registry_lock = threading.Lock()

    def fetch_nonce(self, address: str) -> int:
        return self.eth_service.w3.eth.get_transaction_count(address, "pending")

    def setup(self, addresses: Iterable[str]) -> None:
        for address in addresses:
            state = self._state(address)
            with state.lock:
                state.next_nonce = None
                self._load(address, state)

    def _state(self, address: str) -> NonceState:
        with self._registry_lock:
            return self._states.setdefault(address, NonceState())

    def _load(self, address: str, state: NonceState) -> None:
        """Fetch the pending nonce if missing. Caller holds ``state.lock``."""
        if state.next_nonce is None:
            state.next_nonce = self.fetch_nonce(address)
            log_event(logger, "SetupNonce", address=address, nonce=state.next_nonce)

    def current_nonce(self, address: str) -> int:
        state = self._state(address)
        with state.lock:
            self._load(address, state)
            return state.next_nonce

    def _attempt(self, build_tx: BuildTx, nonce: int) -> AttemptResult:
        try:
            tx_hash = build_tx(nonce)
        except Exception as e:
            outcome = Outcome.CONFLICT if self.policy.is_retryable(e) else Outcome.FAILED
            return AttemptResult(outcome=outcome, nonce=nonce, error=e)
        return AttemptResult(outcome=Outcome.SENT, nonce=nonce, tx_hash=tx_hash)

    def submit(self, address: str, build_tx: BuildTx):
        """Send one transaction built by ``build_tx(nonce)`` and return its hash.

        The caller waits for the receipt separately (see ``wait_for_receipt``).
        """
        state = self._state(address)
        with state.lock:
            self._load(address, state)
            for attempt in range(1, self.policy.max_attempts + 1):
                log_event(logger, "SubmitTxAttempt", logging.DEBUG, address=address, nonce=state.next_nonce, attempt=attempt)
                result = self._attempt(build_tx, state.next_nonce)

                if result.outcome is Outcome.SENT:
                    state.next_nonce = result.nonce + 1
                    log_event(logger, "SubmitTxSent", logging.DEBUG, address=address, nonce=result.nonce, attempt=attempt)
                    return result.tx_hash

                if result.outcome is Outcome.FAILED:
                    log_event(
                        logger,
                        "SubmitTxFailed",
                        logging.ERROR,
                        address=address,
                        nonce=result.nonce,
                        attempt=attempt,
                        error=repr(result.error),
                    )
                    raise result.error

                state.next_nonce = self.fetch_nonce(address)
                log_event(
                    logger,
                    "NonceConflict",
                    logging.WARNING,
                    address=address,
                    stale_nonce=result.nonce,
                    synced_nonce=state.next_nonce,
                    attempt=attempt,
                    error=str(result.error),
                )
                if attempt < self.policy.max_attempts:
                    delay = self.policy.delay(attempt)
                    if delay > 0:
                        self._sleep(delay)

        log_event(logger, "RetryBudgetExhausted", logging.ERROR, address=address, attempts=self.policy.max_attempts)
        raise RetryBudgetExhaustedError(address, self.policy.max_attempts)

    def wait_for_receipt(self, tx_hash, timeout: float = 120):
        receipt = self.eth_service.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        if receipt["status"] != 1:
            raise TxRevertedError(tx_hash_hex(tx_hash))
        return receipt


def tx_hash_hex(tx_hash) -> str:
    if isinstance(tx_hash, (bytes, bytearray)):
        return "0x" + bytes(tx_hash).hex()
    return str(tx_hash)
