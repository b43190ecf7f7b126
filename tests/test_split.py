"""Tests for same-day split detection."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import bank_txn, goal_txn
from goal_ledger_recon.matching.split import SplitDetector, split_confidence
from goal_ledger_recon.matching.tolerance import ToleranceEvaluator
from goal_ledger_recon.models.transaction import MatchType, TransactionType


@pytest.fixture
def detector():
    return SplitDetector(ToleranceEvaluator())


class TestSplitDetector:
    def test_bank_to_fund_split(self, detector):
        matches, skipped = detector.detect(
            [
                bank_txn("B1", 40000, on=date(2024, 3, 5)),
                bank_txn("B2", 60000, on=date(2024, 3, 5)),
            ],
            [goal_txn("T1", 100000, on=date(2024, 3, 5))],
        )

        assert skipped == []
        assert len(matches) == 1
        match = matches[0]
        assert match.match_type is MatchType.SPLIT_BANK_TO_FUND
        assert match.matched_bank_ids == {"B1", "B2"}
        assert match.matched_goal_txn_ids == {"T1"}
        assert match.bank_total == Decimal("100000")
        assert match.confidence == pytest.approx(0.7)

    def test_fund_to_bank_split(self, detector):
        matches, _ = detector.detect(
            [bank_txn("B1", 90000, on=date(2024, 3, 5))],
            [
                goal_txn("T1", 30000, on=date(2024, 3, 5)),
                goal_txn("T2", 59500, on=date(2024, 3, 5)),
            ],
        )

        assert len(matches) == 1
        match = matches[0]
        assert match.match_type is MatchType.SPLIT_FUND_TO_BANK
        assert match.matched_bank_ids == {"B1"}
        assert match.matched_goal_txn_ids == {"T1", "T2"}
        assert match.goal_txn_total == Decimal("89500")
        assert 0.5 <= match.confidence < 0.7

    def test_group_sum_is_within_tolerance_of_target(self, detector):
        evaluator = ToleranceEvaluator()
        matches, _ = detector.detect(
            [
                bank_txn("B1", 12000, on=date(2024, 3, 5)),
                bank_txn("B2", 25000, on=date(2024, 3, 5)),
                bank_txn("B3", 63500, on=date(2024, 3, 5)),
            ],
            [goal_txn("T1", 100000, on=date(2024, 3, 5))],
        )

        for match in matches:
            assert evaluator.within_tolerance(match.bank_total, match.goal_txn_total)

    def test_single_candidate_is_not_a_split(self, detector):
        matches, _ = detector.detect(
            [bank_txn("B1", 100000, on=date(2024, 3, 5))],
            [goal_txn("T1", 100000, on=date(2024, 3, 5))],
        )
        assert matches == []

    def test_different_days_are_not_combined(self, detector):
        matches, _ = detector.detect(
            [
                bank_txn("B1", 40000, on=date(2024, 3, 4)),
                bank_txn("B2", 60000, on=date(2024, 3, 5)),
            ],
            [goal_txn("T1", 100000, on=date(2024, 3, 5))],
        )
        assert matches == []

    def test_different_types_are_not_combined(self, detector):
        matches, _ = detector.detect(
            [
                bank_txn("B1", 40000, on=date(2024, 3, 5)),
                bank_txn("B2", 60000, on=date(2024, 3, 5), txn_type=TransactionType.WITHDRAWAL),
            ],
            [goal_txn("T1", 100000, on=date(2024, 3, 5))],
        )
        assert matches == []

    def test_groups_do_not_overlap(self, detector):
        matches, _ = detector.detect(
            [
                bank_txn("B1", 40000, on=date(2024, 3, 5)),
                bank_txn("B2", 60000, on=date(2024, 3, 5)),
                bank_txn("B3", 30000, on=date(2024, 3, 5)),
                bank_txn("B4", 70000, on=date(2024, 3, 5)),
            ],
            [
                goal_txn("T1", 100000, on=date(2024, 3, 5)),
                goal_txn("T2", 100000, on=date(2024, 3, 5)),
            ],
        )

        assert [m.matched_bank_ids for m in matches] == [{"B1", "B2"}, {"B3", "B4"}]
        used = [i for m in matches for i in m.matched_bank_ids]
        assert len(used) == len(set(used))

    def test_oversized_pool_is_skipped_and_reported(self):
        detector = SplitDetector(ToleranceEvaluator(), max_candidates=3)
        bank = [bank_txn(f"B{i}", 25000, on=date(2024, 3, 5)) for i in range(1, 5)]

        matches, skipped = detector.detect(bank, [goal_txn("T1", 50000, on=date(2024, 3, 5))])

        assert matches == []
        assert len(skipped) == 1
        assert skipped[0].target_id == "T1"
        assert skipped[0].match_type is MatchType.SPLIT_BANK_TO_FUND
        assert skipped[0].candidate_count == 4
        assert skipped[0].to_dict()["transactionDate"] == "2024-03-05"


def test_split_confidence_range():
    assert split_confidence(Decimal("0"), Decimal("1000")) == pytest.approx(0.7)
    assert split_confidence(Decimal("1000"), Decimal("1000")) == pytest.approx(0.5)
    assert split_confidence(Decimal("500"), Decimal("1000")) == pytest.approx(0.6)
