"""Shared HTTP session for the hedge venue client.

One pooled ``requests.Session`` with conservative urllib3 retries so the
poll loops don't hammer a venue that is already struggling.
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (3.05, 10)  # (connect, read)

# Only idempotent methods are retried; a retried POST could double an order.
RETRY_METHODS = ("GET", "HEAD", "OPTIONS", "DELETE")


def _build_retry() -> Retry:
    return Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=0.4,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=RETRY_METHODS,
        raise_on_status=False,
        respect_retry_after_header=True,
    )


def build_session() -> requests.Session:
    s = requests.Session()
    adapter = HTTPAdapter(max_retries=_build_retry(), pool_connections=10, pool_maxsize=10)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


session = build_session()


def request(method: str, url: str, *, timeout: Any = None, **kwargs) -> requests.Response:
    """Perform an HTTP request with shared defaults."""
    if timeout is None:
        timeout = DEFAULT_TIMEOUT
    return session.request(method=method, url=url, timeout=timeout, **kwargs)

