"""Tests for the reconciliation status machine."""

from decimal import Decimal

import pytest

from conftest import bank_txn, goal_txn
from goal_ledger_recon.models.transaction import (
    MatchInfo,
    MatchType,
    ReconciliationStatus,
    TransactionSide,
)
from goal_ledger_recon.storage.repository import LedgerRepository
from goal_ledger_recon.utils.exceptions import InvalidTransition
from goal_ledger_recon.workflow.status import TRANSITIONS, ReconciliationStatusMachine

S = ReconciliationStatus


@pytest.fixture
def machine():
    return ReconciliationStatusMachine()


def _match(match_type, bank_total, goal_total):
    return MatchInfo(
        match_type=match_type,
        confidence=1.0 if match_type is MatchType.EXACT else 0.6,
        matched_bank_ids=frozenset(["B1"]),
        matched_goal_txn_ids=frozenset(["T1"]),
        bank_total=Decimal(bank_total),
        goal_txn_total=Decimal(goal_total),
    )


class TestTransitionTable:
    @pytest.mark.parametrize(
        "current, requested",
        [(current, requested) for current, allowed in TRANSITIONS.items() for requested in allowed],
    )
    def test_allowed_moves(self, current, requested):
        assert ReconciliationStatusMachine.can_transition(current, requested)

    @pytest.mark.parametrize(
        "current, requested",
        [
            (S.PENDING, S.APPROVED),
            (S.PENDING, S.REJECTED),
            (S.MATCHED, S.VARIANCE_DETECTED),
            (S.MANUAL_REVIEW, S.AUTO_APPROVED),
            (S.APPROVED, S.PENDING),
            (S.REJECTED, S.MANUAL_REVIEW),
        ],
    )
    def test_refused_moves(self, current, requested):
        assert not ReconciliationStatusMachine.can_transition(current, requested)

    def test_terminal_statuses_have_no_exits(self):
        for status in S:
            if status.is_terminal:
                assert TRANSITIONS[status] == frozenset()


class TestTransition:
    def test_records_history(self, machine, database, seed):
        seed(bank=[bank_txn("B1", 100000)])

        with database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_bank_row("B1")
            change = machine.transition(repo, row, S.MANUAL_REVIEW, "alice", "looks odd")
            assert change.from_status is S.PENDING
            assert change.to_status is S.MANUAL_REVIEW

        with database.session_scope() as session:
            repo = LedgerRepository(session)
            assert repo.get_bank_row("B1").reconciliation_status is S.MANUAL_REVIEW
            history = repo.status_history(TransactionSide.BANK, "B1")

        assert len(history) == 1
        assert history[0].actor == "alice"
        assert history[0].reason == "looks odd"

    def test_same_status_is_a_noop(self, machine, database, seed):
        seed(goal=[goal_txn("T1", 100000)])

        with database.session_scope() as session:
            repo = LedgerRepository(session)
            assert machine.transition(repo, repo.get_goal_row("T1"), S.PENDING, "alice") is None
            assert repo.status_history(TransactionSide.GOAL, "T1") == []

    @pytest.mark.parametrize("terminal", [S.APPROVED, S.REJECTED])
    def test_terminal_row_is_never_moved(self, machine, database, seed, terminal):
        seed(bank=[bank_txn("B1", 100000, status=terminal)])

        with database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_bank_row("B1")
            for requested in S:
                with pytest.raises(InvalidTransition):
                    machine.transition(repo, row, requested, "alice")
            assert row.reconciliation_status is terminal

    def test_invalid_move_leaves_row_untouched(self, machine, database, seed):
        seed(bank=[bank_txn("B1", 100000)])

        with database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_bank_row("B1")
            with pytest.raises(InvalidTransition) as excinfo:
                machine.transition(repo, row, S.APPROVED, "alice")
            assert excinfo.value.transaction_id == "B1"
            assert row.reconciliation_status is S.PENDING


class TestStatusForMatch:
    @pytest.mark.parametrize(
        "match_type, bank_total, goal_total, expected",
        [
            (MatchType.EXACT, "500000", "500000", S.MATCHED),
            (MatchType.EXACT, "100000", "100500", S.AUTO_APPROVED),
            (MatchType.EXACT, "500000", "450000", S.VARIANCE_DETECTED),
            (MatchType.AMOUNT, "100000", "100300", S.AUTO_APPROVED),
            (MatchType.AMOUNT, "100000", "100000", S.MATCHED),
            (MatchType.SPLIT_BANK_TO_FUND, "100000", "100000", S.MATCHED),
            (MatchType.SPLIT_FUND_TO_BANK, "90000", "89500", S.AUTO_APPROVED),
            (MatchType.MANUAL, "100000", "80000", S.MATCHED),
        ],
    )
    def test_status_for_new_match(self, machine, match_type, bank_total, goal_total, expected):
        assert machine.status_for_match(_match(match_type, bank_total, goal_total)) is expected
