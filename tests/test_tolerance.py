"""Tests for the amount tolerance band."""

from decimal import Decimal

import pytest

from goal_ledger_recon.config import ToleranceSettings
from goal_ledger_recon.matching.tolerance import ToleranceEvaluator


@pytest.fixture
def evaluator():
    return ToleranceEvaluator()


class TestToleranceEvaluator:
    def test_minimum_floor_applies_to_small_amounts(self, evaluator):
        assert evaluator.tolerance_for(Decimal("5000"), Decimal("5200")) == Decimal("1000")
        assert evaluator.within_tolerance(Decimal("5000"), Decimal("6000"))
        assert not evaluator.within_tolerance(Decimal("5000"), Decimal("6000.01"))

    def test_percent_of_larger_amount_applies_to_large_amounts(self, evaluator):
        # 1% of 100,300 is 1,003
        assert evaluator.tolerance_for(Decimal("100000"), Decimal("100300")) == Decimal("1003.00")
        assert evaluator.within_tolerance(Decimal("100000"), Decimal("101000"))
        assert not evaluator.within_tolerance(Decimal("100000"), Decimal("102000"))

    def test_boundary_is_inclusive(self, evaluator):
        assert evaluator.within_tolerance(Decimal("200000"), Decimal("202000"))
        assert not evaluator.within_tolerance(Decimal("200000"), Decimal("202020.21"))

    @pytest.mark.parametrize(
        "a, b",
        [
            ("500000", "500000"),
            ("100000", "100300"),
            ("0", "999"),
            ("-5000", "5000"),
            ("250000", "1"),
            ("12345.67", "13345.66"),
        ],
    )
    def test_symmetric(self, evaluator, a, b):
        assert evaluator.within_tolerance(Decimal(a), Decimal(b)) == evaluator.within_tolerance(
            Decimal(b), Decimal(a)
        )

    def test_uses_absolute_values(self, evaluator):
        assert evaluator.within_tolerance(Decimal("-100000"), Decimal("-100500"))
        assert not evaluator.within_tolerance(Decimal("-5000"), Decimal("5000"))

    def test_accepts_strings_and_ints(self, evaluator):
        assert evaluator.within_tolerance("100000", 100300)
        assert evaluator.difference(10, "7.5") == Decimal("2.5")

    def test_configurable_constants(self):
        strict = ToleranceEvaluator.from_settings(
            ToleranceSettings(percent=Decimal("0"), minimum=Decimal("0"))
        )
        assert strict.within_tolerance(Decimal("100"), Decimal("100"))
        assert not strict.within_tolerance(Decimal("100"), Decimal("100.01"))

        loose = ToleranceEvaluator(percent="0.05", minimum="10")
        assert loose.within_tolerance(Decimal("1000"), Decimal("1049"))
