"""
Venue Client - hedge venue REST API

Thin client for the centralized perp venue used to offset on-chain
exposure. Private endpoints are signed with HMAC-SHA256 over
``timestamp + METHOD + path + body``. With ``dry_run`` enabled, reads still
hit the API but orders are only logged.

Responses follow the ``{"success": bool, "result": ...}`` envelope.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import requests

import config
from maker.errors import BelowMinOrderSizeError, VenueError
from maker.log import log_event
from maker.perp_service import Side
from utils import http_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueMarket:
    name: str
    price: Decimal
    min_order_size: Decimal


@dataclass(frozen=True)
class VenueOrderResult:
    success: bool
    order_id: Optional[str] = None
    market: str = ""
    side: str = ""
    size: Decimal = Decimal("0")
    dry_run: bool = False


def _dec(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class VenueClient:
    def __init__(
        self,
        api_key: str = None,
        api_secret: str = None,
        subaccount: str = None,
        base_url: str = None,
        dry_run: bool = None,
        clock=time.time,
    ):
        self.api_key = api_key if api_key is not None else config.VENUE_API_KEY
        self.api_secret = api_secret if api_secret is not None else config.VENUE_API_SECRET
        self.subaccount = subaccount if subaccount is not None else config.VENUE_SUBACCOUNT
        self.base_url = (base_url or config.VENUE_API_BASE).rstrip("/")
        self.dry_run = config.VENUE_DRY_RUN if dry_run is None else dry_run
        self._clock = clock

    def _sign(self, ts: str, method: str, path: str, body: str) -> str:
        payload = f"{ts}{method.upper()}{path}{body}".encode()
        return hmac.new(self.api_secret.encode(), payload, hashlib.sha256).hexdigest()

    def _headers(self, method: str, path: str, body: str) -> Dict[str, str]:
        ts = str(int(self._clock() * 1000))
        headers = {
            "Content-Type": "application/json",
            "X-API-KEY": self.api_key,
            "X-API-TS": ts,
            "X-API-SIGN": self._sign(ts, method, path, body),
        }
        if self.subaccount:
            headers["X-API-SUBACCOUNT"] = self.subaccount
        return headers

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        # Sign the request path as the server sees it, including the API prefix
        path = urlsplit(url).path
        body = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
        try:
            resp = http_client.request(
                method,
                url,
                headers=self._headers(method, path, body),
                data=body or None,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise VenueError(f"{method} {endpoint} failed: {e}") from e

        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else data
            raise VenueError(f"{method} {endpoint} rejected: {error}")
        return data.get("result")

    # ─────────────────────────────────────────────────────────────────
    # Market Data
    # ─────────────────────────────────────────────────────────────────

    def get_market(self, market: str) -> VenueMarket:
        result = self._request("GET", f"/markets/{market}")
        price = result.get("price") or result.get("last")
        if price is None:
            raise VenueError(f"No price for {market}")
        return VenueMarket(
            name=result.get("name", market),
            price=_dec(price),
            min_order_size=_dec(result.get("minProvideSize") or result.get("sizeIncrement")),
        )

    # ─────────────────────────────────────────────────────────────────
    # Account & Positions
    # ─────────────────────────────────────────────────────────────────

    def get_account(self) -> dict:
        return self._request("GET", "/account")

    def get_margin_fraction(self) -> Optional[Decimal]:
        """Collateral over open notional; None when the account has no positions."""
        fraction = self.get_account().get("marginFraction")
        return None if fraction is None else _dec(fraction)

    def get_position_size(self, market: str) -> Decimal:
        """Signed position size: positive long, negative short."""
        for position in self._request("GET", "/positions") or []:
            if position.get("future") == market:
                return _dec(position.get("netSize"))
        return Decimal("0")

    # ─────────────────────────────────────────────────────────────────
    # Order Execution
    # ─────────────────────────────────────────────────────────────────

    def place_market_order(
        self,
        market: str,
        side: Side,
        size: Decimal,
        reduce_only: bool = False,
        min_order_size: Optional[Decimal] = None,
    ) -> VenueOrderResult:
        size = _dec(size)
        if size <= 0:
            raise ValueError(f"order size must be positive, got {size}")
        if min_order_size is not None and size < min_order_size:
            raise BelowMinOrderSizeError(f"{market} order {size} below minimum {min_order_size}")

        venue_side = "buy" if side is Side.LONG else "sell"
        params = dict(market=market, side=venue_side, size=size, reduce_only=reduce_only, dry_run=self.dry_run)

        if self.dry_run:
            log_event(logger, "VenueOrderDryRun", **params)
            return VenueOrderResult(
                success=True,
                order_id=f"dry_run_{int(self._clock())}",
                market=market,
                side=venue_side,
                size=size,
                dry_run=True,
            )

        result = self._request(
            "POST",
            "/orders",
            {
                "market": market,
                "side": venue_side,
                "price": None,
                "type": "market",
                "size": float(size),
                "reduceOnly": reduce_only,
            },
        )
        log_event(logger, "VenueOrderPlaced", order_id=result.get("id"), **params)
        return VenueOrderResult(
            success=True,
            order_id=str(result.get("id")),
            market=market,
            side=venue_side,
            size=size,
        )
