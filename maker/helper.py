"""Decimal, wei and tick helpers shared by the service layer and the engine."""

from __future__ import annotations

import math
import random
from decimal import ROUND_DOWN, Decimal, localcontext

TICK_BASE = Decimal("1.0001")
MAX_TICK = 887272
Q96 = Decimal(2) ** 96


def from_wei(value: int, decimals: int = 18) -> Decimal:
    return Decimal(int(value)).scaleb(-decimals)


def to_wei(value: Decimal, decimals: int = 18) -> int:
    """Scale a decimal amount to an on-chain integer, truncating dust."""
    with localcontext() as ctx:
        ctx.prec = 80
        return int(Decimal(value).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def get_min_tick(tick_spacing: int) -> int:
    return math.ceil(-MAX_TICK / tick_spacing) * tick_spacing


def get_max_tick(tick_spacing: int) -> int:
    return math.floor(MAX_TICK / tick_spacing) * tick_spacing


def tick_to_price(tick: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 40
        return +(TICK_BASE ** int(tick))


def price_to_tick(price: Decimal, tick_spacing: int) -> int:
    """Nearest tick to ``price`` that is a multiple of ``tick_spacing``.

    Halves round up, matching the usual Math.round convention so both ends
    of a symmetric range snap the same way.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    tick = math.log(float(price)) / math.log(float(TICK_BASE))
    snapped = math.floor(tick / tick_spacing + 0.5) * tick_spacing
    return max(get_min_tick(tick_spacing), min(get_max_tick(tick_spacing), snapped))


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 60
        return +((Decimal(int(sqrt_price_x96)) / Q96) ** 2)


def random_decimal(low: Decimal, high: Decimal) -> Decimal:
    """Uniform draw in [low, high)."""
    return Decimal(str(random.random())) * (high - low) + low
