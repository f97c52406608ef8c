"""Tests for the slippage estimator."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from maker.perp_service import Side
from maker.slippage import SlippageEstimator, SlippageSample, closest_sample

from conftest import FakePerpService, make_market_config


def _market(max_order_amount="500"):
    config = make_market_config(max_order_amount=Decimal(max_order_amount))
    return SimpleNamespace(name=config.name, base_token=config.base_token, config=config)


def _error(sample, target):
    return abs(sample.ratio - target)


class TestClosestSample:
    def test_picks_minimal_error(self):
        samples = [
            SlippageSample(Decimal("0.0002"), Decimal("10")),
            SlippageSample(Decimal("0.0009"), Decimal("20")),
            SlippageSample(Decimal("0.0030"), Decimal("30")),
        ]
        assert closest_sample(samples, Decimal("0.001")).amount == Decimal("20")

    def test_tie_goes_to_first_sample(self):
        samples = [
            SlippageSample(Decimal("0.0009"), Decimal("10")),
            SlippageSample(Decimal("0.0011"), Decimal("20")),
        ]
        assert closest_sample(samples, Decimal("0.001")).amount == Decimal("10")

    def test_empty_samples_rejected(self):
        with pytest.raises(ValueError):
            closest_sample([], Decimal("0.001"))


class TestEstimator:
    def test_sample_amounts_are_even_steps(self):
        estimator = SlippageEstimator(FakePerpService(), steps=4)
        assert estimator.sample_amounts(Decimal("100")) == [Decimal("25"), Decimal("50"), Decimal("75"), Decimal("100")]

    def test_rejects_zero_steps(self):
        with pytest.raises(ValueError):
            SlippageEstimator(FakePerpService(), steps=0)

    def test_finds_amount_for_target_impact(self):
        perp = FakePerpService()
        estimator = SlippageEstimator(perp)

        # impact is 0.00001 per unit of quote, so 0.1% lands on 100
        best = estimator.estimate(_market(), Decimal("1"), Decimal("0.001"), Side.SHORT)

        assert best.amount == Decimal("100")
        assert len(perp.quote_calls) == 100
        assert sorted(perp.quote_calls) == estimator.sample_amounts(Decimal("500"))

    def test_long_side_measures_upward_impact(self):
        estimator = SlippageEstimator(FakePerpService())
        best = estimator.estimate(_market(), Decimal("1"), Decimal("0.002"), Side.LONG)
        assert best.amount == Decimal("200")

    def test_all_samples_below_target_returns_largest(self):
        estimator = SlippageEstimator(FakePerpService(), steps=10)

        best = estimator.estimate(_market("50"), Decimal("1"), Decimal("0.001"), Side.SHORT)

        assert best.amount == Decimal("50")
        assert best.ratio < Decimal("0.001")

    def test_more_steps_never_increase_error(self):
        target = Decimal("0.00123")
        coarse = SlippageEstimator(FakePerpService(), steps=10).estimate(_market(), Decimal("1"), target, Side.SHORT)
        fine = SlippageEstimator(FakePerpService(), steps=20).estimate(_market(), Decimal("1"), target, Side.SHORT)
        assert _error(fine, target) <= _error(coarse, target)

    def test_non_positive_price_rejected(self):
        estimator = SlippageEstimator(FakePerpService())
        with pytest.raises(ValueError):
            estimator.estimate(_market(), Decimal("0"), Decimal("0.001"), Side.SHORT)
