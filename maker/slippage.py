"""
Slippage Estimator - trade size for a target price impact

Splits the market's max order amount (quote) into equal steps, quotes every
cumulative amount with a read-only swap simulation and returns the sample
whose price impact is closest to the target. Quotes run concurrently; the
reduction walks them in ascending amount so ties go to the smaller trade.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from maker.log import log_event
from maker.perp_service import AmountType, PerpService, Side

logger = logging.getLogger(__name__)

DEFAULT_STEPS = 100


@dataclass(frozen=True)
class SlippageSample:
    ratio: Decimal
    amount: Decimal


def closest_sample(samples: List[SlippageSample], target_ratio: Decimal) -> SlippageSample:
    """First sample (in the given order) minimizing ``|ratio - target|``."""
    if not samples:
        raise ValueError("no samples")
    best = samples[0]
    best_error = abs(best.ratio - target_ratio)
    for sample in samples[1:]:
        error = abs(sample.ratio - target_ratio)
        if error < best_error:
            best, best_error = sample, error
    return best


class SlippageEstimator:
    def __init__(self, perp_service: PerpService, steps: int = DEFAULT_STEPS, max_workers: int = 8):
        if steps < 1:
            raise ValueError("steps must be >= 1")
        self.perp_service = perp_service
        self.steps = steps
        self.max_workers = max_workers

    def _sample(self, base_token: str, side: Side, current_price: Decimal, amount: Decimal) -> SlippageSample:
        response = self.perp_service.quote(base_token, side, AmountType.QUOTE, amount)
        ratio = abs(current_price - response.price_after) / current_price
        return SlippageSample(ratio=ratio, amount=amount)

    def sample_amounts(self, max_order_amount: Decimal) -> List[Decimal]:
        step = Decimal(max_order_amount) / self.steps
        return [step * i for i in range(1, self.steps + 1)]

    def estimate(self, market, current_price: Decimal, target_ratio: Decimal, side: Side) -> SlippageSample:
        """Sample closest to ``target_ratio``.

        Falls back to the largest amount when every sample is below target.
        Callers compare the returned ratio against their own hard cap.
        """
        if current_price <= 0:
            raise ValueError(f"current_price must be positive, got {current_price}")
        amounts = self.sample_amounts(market.config.max_order_amount)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(amounts))) as pool:
            samples = list(
                pool.map(lambda amount: self._sample(market.base_token, side, current_price, amount), amounts)
            )

        if all(sample.ratio < target_ratio for sample in samples):
            best = samples[-1]
        else:
            best = closest_sample(samples, target_ratio)
        log_event(
            logger,
            "EstimateSlippage",
            logging.DEBUG,
            market=market.name,
            side=side.value,
            target=target_ratio,
            ratio=best.ratio,
            amount=best.amount,
        )
        return best
