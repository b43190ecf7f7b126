"""Tests for the three-pass match engine."""

from datetime import date
from decimal import Decimal

import pytest

from conftest import bank_txn, goal_txn
from goal_ledger_recon.config import MatchingTier, ReconConfig
from goal_ledger_recon.matching.engine import MatchEngine
from goal_ledger_recon.matching.strategies import (
    AmountMatchStrategy,
    ExactMatchStrategy,
    amount_confidence,
)
from goal_ledger_recon.matching.tolerance import ToleranceEvaluator
from goal_ledger_recon.models.transaction import (
    MatchInfo,
    MatchType,
    ReconciliationStatus,
    TransactionType,
)


@pytest.fixture
def engine(config):
    return MatchEngine(config)


def _matched_ids(result):
    bank_ids, goal_ids = [], []
    for match in result.matches:
        bank_ids.extend(match.matched_bank_ids)
        goal_ids.extend(match.matched_goal_txn_ids)
    return bank_ids, goal_ids


class TestExactPass:
    def test_shared_transaction_id_matches_exactly(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 500000, ref="TXN1")],
            [goal_txn("T1", 500000, ref="TXN1")],
        )

        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.match_type is MatchType.EXACT
        assert match.confidence == 1.0
        assert match.matched_bank_ids == {"B1"}
        assert match.matched_goal_txn_ids == {"T1"}

    def test_id_comparison_is_case_sensitive(self):
        strategy = ExactMatchStrategy(ToleranceEvaluator())
        tier = strategy.find_matches(
            [bank_txn("B1", 500000, ref="txn1")],
            [goal_txn("T1", 500000, ref="TXN1")],
        )
        assert tier.matches == []

    def test_exact_pair_is_made_even_out_of_tolerance(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 500000, ref="TXN1")],
            [goal_txn("T1", 450000, ref="TXN1")],
        )
        assert result.matches[0].match_type is MatchType.EXACT
        assert result.matches[0].amount_difference == Decimal("50000")

    def test_exact_requires_same_type(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 500000, ref="TXN1", txn_type=TransactionType.WITHDRAWAL)],
            [goal_txn("T1", 500000, ref="TXN1")],
        )
        assert result.matches == []

    def test_exact_precedes_amount(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 500000, on=date(2024, 3, 1), ref="TXN1")],
            [
                goal_txn("T1", 500500, on=date(2024, 3, 20), ref="TXN1"),
                goal_txn("T2", 500000, on=date(2024, 3, 1)),
            ],
        )

        assert len(result.matches) == 1
        assert result.matches[0].match_type is MatchType.EXACT
        assert result.matches[0].matched_goal_txn_ids == {"T1"}
        assert [t.goal_transaction_code for t in result.unmatched_goal] == ["T2"]


class TestAmountPass:
    def test_amount_within_tolerance_and_window(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 100000, on=date(2024, 3, 1))],
            [goal_txn("T1", 100300, on=date(2024, 3, 10))],
        )

        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.match_type is MatchType.AMOUNT
        assert 0.5 <= match.confidence < 1.0

    def test_outside_window_is_not_matched(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 100000, on=date(2024, 3, 1))],
            [goal_txn("T1", 100000, on=date(2024, 4, 5))],
        )
        assert result.matches == []
        assert [t.id for t in result.unmatched_bank] == ["B1"]

    def test_nearest_date_wins(self):
        strategy = AmountMatchStrategy(ToleranceEvaluator())
        tier = strategy.find_matches(
            [bank_txn("B1", 100000, on=date(2024, 3, 10))],
            [
                goal_txn("T1", 100000, on=date(2024, 3, 1)),
                goal_txn("T2", 100200, on=date(2024, 3, 9)),
            ],
        )
        assert tier.matches[0].matched_goal_txn_ids == {"T2"}

    def test_smallest_amount_difference_breaks_date_ties(self):
        strategy = AmountMatchStrategy(ToleranceEvaluator())
        tier = strategy.find_matches(
            [bank_txn("B1", 100000, on=date(2024, 3, 10))],
            [
                goal_txn("T1", 100500, on=date(2024, 3, 12)),
                goal_txn("T2", 100100, on=date(2024, 3, 8)),
            ],
        )
        assert tier.matches[0].matched_goal_txn_ids == {"T2"}

    def test_confidence_is_monotonic(self):
        tolerance = Decimal("1000")
        same_day_exact = amount_confidence(0, 30, Decimal("0"), tolerance)
        later = amount_confidence(10, 30, Decimal("0"), tolerance)
        latest = amount_confidence(30, 30, Decimal("0"), tolerance)
        off = amount_confidence(10, 30, Decimal("500"), tolerance)
        edge = amount_confidence(30, 30, Decimal("1000"), tolerance)

        assert same_day_exact == 1.0
        assert same_day_exact > later > latest
        assert later > off
        assert edge == pytest.approx(0.5)

    def test_window_is_configurable(self):
        config = ReconConfig()
        config.matching.date_window_days = 5
        result = MatchEngine(config).match(
            "G1",
            [bank_txn("B1", 100000, on=date(2024, 3, 1))],
            [goal_txn("T1", 100000, on=date(2024, 3, 10))],
        )
        assert result.matches == []


class TestEngine:
    def test_unmatched_bank_is_reported(self, engine):
        result = engine.match(
            "G1",
            [bank_txn("B1", 250000, on=date(2024, 3, 1))],
            [goal_txn("T1", 90000, on=date(2024, 3, 1))],
        )
        assert result.matches == []
        assert [t.id for t in result.unmatched_bank] == ["B1"]
        assert [t.goal_transaction_code for t in result.unmatched_goal] == ["T1"]

    def test_no_transaction_is_matched_twice(self, engine):
        bank = [bank_txn(f"B{i}", 100000, on=date(2024, 3, i)) for i in range(1, 6)]
        goal = [goal_txn(f"T{i}", 100000, on=date(2024, 3, i)) for i in range(1, 8)]
        goal.append(goal_txn("T8", 100000, on=date(2024, 3, 2), ref="X"))
        bank.append(bank_txn("B9", 100000, on=date(2024, 3, 2), ref="X"))

        result = engine.match("G1", bank, goal)

        bank_ids, goal_ids = _matched_ids(result)
        assert len(bank_ids) == len(set(bank_ids)) == 6
        assert len(goal_ids) == len(set(goal_ids))

    def test_already_matched_and_terminal_rows_are_ignored(self, engine):
        existing = MatchInfo(
            match_type=MatchType.AMOUNT,
            confidence=0.9,
            matched_bank_ids=frozenset(["B1"]),
            matched_goal_txn_ids=frozenset(["T0"]),
            bank_total=Decimal("100000"),
            goal_txn_total=Decimal("100000"),
        )
        matched = bank_txn("B1", 100000)
        matched.match_info = existing
        approved = bank_txn("B2", 100000, status=ReconciliationStatus.APPROVED)
        linked = bank_txn("B3", 100000)
        linked.reversal_partner_id = "B4"

        result = engine.match("G1", [matched, approved, linked], [goal_txn("T1", 100000)])
        assert result.matches == []

    def test_other_goals_and_dates_are_filtered(self, engine):
        result = engine.match(
            "G1",
            [
                bank_txn("B1", 100000, goal="G2"),
                bank_txn("B2", 100000, on=date(2024, 2, 1)),
            ],
            [goal_txn("T1", 100000)],
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
        )
        assert result.matches == []
        assert result.unmatched_bank == []

    def test_disabled_tier_is_skipped(self):
        config = ReconConfig()
        config.matching.tiers = [
            MatchingTier(name="exact_transaction_id", priority=1),
            MatchingTier(name="amount_within_window", priority=2, enabled=False),
        ]
        result = MatchEngine(config).match(
            "G1",
            [bank_txn("B1", 100000)],
            [goal_txn("T1", 100000)],
        )
        assert result.matches == []

    def test_passes_consume_residue_in_order(self, engine):
        result = engine.match(
            "G1",
            [
                bank_txn("B1", 500000, ref="TXN1"),
                bank_txn("B2", 75000, on=date(2024, 3, 3)),
                bank_txn("B3", 40000, on=date(2024, 3, 5)),
                bank_txn("B4", 60000, on=date(2024, 3, 5)),
            ],
            [
                goal_txn("T1", 500000, ref="TXN1"),
                goal_txn("T2", 75200, on=date(2024, 3, 4)),
                goal_txn("T3", 100000, on=date(2024, 3, 5)),
            ],
        )

        assert result.breakdown.to_dict() == {"exact": 1, "amount": 1, "split": 1, "manual": 0}
        assert result.unmatched_bank == []
        assert result.unmatched_goal == []
