"""Structured event logging.

Every state transition, submission attempt and error is emitted as a single
JSON line ``{"event": ..., "params": {...}}`` through the stdlib logger, so
an external sink can parse the stream without a custom handler.
"""

from __future__ import annotations

import json
import logging
import sys
from decimal import Decimal
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **params: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    record = {"event": event}
    if params:
        record["params"] = params
    logger.log(level, json.dumps(record, default=_default, sort_keys=False))


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once, at process start."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )
    # web3 and urllib3 are chatty at DEBUG
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
