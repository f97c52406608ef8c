"""
Eth Service - node connection with endpoint failover

Keeps exactly one live web3 connection, picked round-robin from the
configured endpoint list. A block listener thread polls for new heads and
stamps each block number above the last one seen as a "response". Polling
errors and repeated heads are not responses. A health
check thread rotates to the next endpoint when no response has been seen
for HEALTH_CHECK_THRESHOLD_SEC and re-subscribes the block callback there.

If every endpoint is down the service keeps rotating forever; the only
symptom is the lack of block progress.
"""

from __future__ import annotations

import logging
import threading
import time
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from eth_account import Account
from web3 import HTTPProvider, LegacyWebSocketProvider, Web3

from maker.helper import from_wei, to_wei
from maker.log import log_event

logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL_SEC = 5
HEALTH_CHECK_THRESHOLD_SEC = 180
BLOCK_POLL_INTERVAL_SEC = 1.0

BlockCallback = Callable[[int], None]


def build_web3(endpoint: str) -> Web3:
    if endpoint.startswith(("wss://", "ws://")):
        return Web3(LegacyWebSocketProvider(endpoint))
    if endpoint.startswith(("https://", "http://")):
        return Web3(HTTPProvider(endpoint))
    raise ValueError(f"Unsupported endpoint scheme: {endpoint}")


class _BlockListener:
    """Polls one web3 connection for new block numbers on a daemon thread."""

    def __init__(
        self,
        w3: Web3,
        callback: BlockCallback,
        on_response: Callable[[], None],
        poll_interval: float,
        name: str,
    ):
        self._w3 = w3
        self._callback = callback
        self._on_response = on_response
        self._poll_interval = poll_interval
        self._stop = threading.Event()
        self._last_block: Optional[int] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                block_number = self._w3.eth.block_number
            except Exception as e:
                # Errors are not progress; a node that only fails goes silent
                logger.warning("[EthService] block poll failed: %s", e)
            else:
                if self._last_block is None or block_number > self._last_block:
                    self._last_block = block_number
                    self._on_response()
                    try:
                        self._callback(block_number)
                    except Exception as e:
                        logger.error("[EthService] block callback failed at %s: %s", block_number, e)
            self._stop.wait(self._poll_interval)


class EthService:
    """Single active node connection with round-robin failover."""

    def __init__(
        self,
        layer: str,
        endpoints: Iterable[str],
        web3_factory: Callable[[str], Web3] = build_web3,
        clock: Callable[[], float] = time.monotonic,
        health_check_interval: float = HEALTH_CHECK_INTERVAL_SEC,
        health_check_threshold: float = HEALTH_CHECK_THRESHOLD_SEC,
        block_poll_interval: float = BLOCK_POLL_INTERVAL_SEC,
    ):
        self.endpoints: List[str] = [e for e in endpoints if e]
        if not self.endpoints:
            raise ValueError(f"No web3 endpoints configured for {layer}")
        self.layer = layer
        self._web3_factory = web3_factory
        self._clock = clock
        self.health_check_interval = health_check_interval
        self.health_check_threshold = health_check_threshold
        self.block_poll_interval = block_poll_interval

        self._lock = threading.RLock()
        self._index = 0
        self._w3 = self._web3_factory(self.endpoints[0])
        self._callback: Optional[BlockCallback] = None
        self._listener: Optional[_BlockListener] = None
        self._last_response = self._clock()

        self._stop = threading.Event()
        self._health_thread: Optional[threading.Thread] = None

    # ─────────────────────────────────────────────────────────────
    # Connection
    # ─────────────────────────────────────────────────────────────

    @property
    def w3(self) -> Web3:
        with self._lock:
            return self._w3

    @property
    def endpoint(self) -> str:
        with self._lock:
            return self.endpoints[self._index]

    @property
    def listener_count(self) -> int:
        with self._lock:
            return 1 if self._listener is not None and self._listener.alive else 0

    @property
    def last_response(self) -> float:
        return self._last_response

    def _mark_response(self) -> None:
        # Called from the listener thread; a plain float store, no lock needed
        self._last_response = self._clock()

    def _start_listener(self) -> None:
        self._listener = _BlockListener(
            self._w3,
            self._callback,
            self._mark_response,
            self.block_poll_interval,
            name=f"{self.layer}-blocks",
        )
        self._listener.start()

    def _detach(self) -> Tuple[Optional[_BlockListener], Web3, str]:
        """Unhook the current listener and connection. Caller holds the lock."""
        listener, self._listener = self._listener, None
        return listener, self._w3, self.endpoints[self._index]

    @staticmethod
    def _close(listener: Optional[_BlockListener], w3: Web3, endpoint: str) -> None:
        # Joined outside the lock so a listener waiting on it can finish
        if listener is not None:
            listener.stop()
        provider = getattr(w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if callable(disconnect):
            try:
                disconnect()
            except Exception as e:
                logger.warning("[EthService] failed to close %s: %s", endpoint, e)

    def rotate_endpoint(self) -> str:
        """Switch to the next endpoint, moving the block listener with it."""
        with self._lock:
            old = self._detach()
            self._index = (self._index + 1) % len(self.endpoints)
            current = self.endpoints[self._index]
            self._w3 = self._web3_factory(current)
            self._last_response = self._clock()
            if self._callback is not None:
                self._start_listener()
        self._close(*old)
        log_event(logger, "RotateEndpoint", logging.WARNING, layer=self.layer, previous=old[2], current=current)
        return current

    def subscribe_blocks(self, callback: BlockCallback) -> None:
        """Invoke ``callback(block_number)`` once per new block."""
        with self._lock:
            previous = self._listener
            self._callback = callback
            self._last_response = self._clock()
            self._start_listener()
        if previous is not None:
            previous.stop()
        self._start_health_check()

    def check_health(self) -> bool:
        """Rotate when the node has been silent too long. Returns True if healthy."""
        elapsed = self._clock() - self._last_response
        if elapsed <= self.health_check_threshold:
            return True
        log_event(
            logger,
            "EndpointUnresponsive",
            logging.WARNING,
            layer=self.layer,
            endpoint=self.endpoint,
            elapsed_sec=round(elapsed, 1),
        )
        self.rotate_endpoint()
        return False

    def _start_health_check(self) -> None:
        if self._health_thread and self._health_thread.is_alive():
            return
        self._stop.clear()
        self._health_thread = threading.Thread(target=self._health_loop, name=f"{self.layer}-health", daemon=True)
        self._health_thread.start()

    def _health_loop(self) -> None:
        while not self._stop.wait(self.health_check_interval):
            try:
                self.check_health()
            except Exception as e:
                logger.error("[EthService] health check failed: %s", e)

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            self._callback = None
            old = self._detach()
        self._close(*old)
        if self._health_thread and self._health_thread is not threading.current_thread():
            self._health_thread.join(timeout=self.health_check_interval + 1)

    # ─────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────

    def get_latest_block_number(self) -> int:
        return self.w3.eth.block_number

    def check_block_number_with_latency(self) -> Tuple[int, float]:
        """Latest block number and how long the call took, in seconds."""
        started = time.monotonic()
        block_number = self.get_latest_block_number()
        latency = time.monotonic() - started
        logger.debug("[EthService] %s block=%s latency=%.3fs", self.endpoint, block_number, latency)
        return block_number, latency

    def get_gas_price(self) -> Decimal:
        """Current gas price in gwei."""
        return from_wei(self.w3.eth.gas_price, 9)

    def create_contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    @staticmethod
    def private_key_to_account(private_key: str):
        return Account.from_key(private_key)

    @staticmethod
    def from_wei(value: int, decimals: int = 18) -> Decimal:
        return from_wei(value, decimals)

    @staticmethod
    def to_wei(value: Decimal, decimals: int = 18) -> int:
        return to_wei(value, decimals)
