"""Tests for manual match creation and removal."""

from datetime import date

from sqlalchemy import select

from conftest import bank_txn, goal_txn
from goal_ledger_recon.models.transaction import MatchType, ReconciliationStatus, TransactionType
from goal_ledger_recon.storage.tables import MatchRow

S = ReconciliationStatus

MARCH = {"start_date": "2024-03-01", "end_date": "2024-03-31"}


class TestCreateManualMatch:
    def test_groups_both_ledgers(self, service, seed, fetch):
        seed(
            bank=[bank_txn("B1", 100000), bank_txn("B2", 50000, on=date(2024, 3, 9))],
            goal=[goal_txn("T1", 149000, on=date(2024, 3, 4))],
        )

        result = service.create_manual_match(["B1", "B2"], ["T1"], matched_by="alice")

        assert result["success"] is True
        assert result["matchedBankCount"] == 2
        assert result["matchedGoalCount"] == 1
        assert result["bankTotal"] == 150000.0
        assert result["goalTotal"] == 149000.0
        for side, key in (("BANK", "B1"), ("BANK", "B2"), ("GOAL", "T1")):
            txn = fetch(side, key)
            assert txn.reconciliation_status is S.MATCHED
            assert txn.match_info.match_type is MatchType.MANUAL
            assert txn.match_info.match_id == result["matchId"]
            assert txn.match_info.matched_by == "alice"

    def test_members_must_share_a_goal(self, service, seed, fetch):
        seed(bank=[bank_txn("B1", 100000)], goal=[goal_txn("T1", 100000, goal="G2")])

        result = service.create_manual_match(["B1"], ["T1"], matched_by="alice")

        assert result["errors"][0]["kind"] == "ValidationError"
        assert fetch("BANK", "B1").match_info is None

    def test_matched_rows_are_refused(self, service, seed, fetch):
        seed(
            bank=[bank_txn("B1", 500000, ref="TXN1")],
            goal=[goal_txn("T1", 500000, ref="TXN1"), goal_txn("T2", 1000)],
        )
        service.run_matching(**MARCH)

        result = service.create_manual_match(["B1"], ["T2"], matched_by="alice")

        assert "already matched" in result["errors"][0]["message"]
        assert fetch("GOAL", "T2").match_info is None

    def test_terminal_rows_are_refused(self, service, seed):
        seed(bank=[bank_txn("B1", 100000, status=S.REJECTED)], goal=[goal_txn("T1", 100000)])

        result = service.create_manual_match(["B1"], ["T1"], matched_by="alice")

        assert result["errors"][0]["kind"] == "InvalidTransition"

    def test_reversal_linked_rows_are_refused(self, service, seed):
        seed(
            bank=[
                bank_txn("B1", 100000),
                bank_txn("B2", 100000, txn_type=TransactionType.WITHDRAWAL),
            ],
            goal=[goal_txn("T1", 100000)],
        )
        service.link_reversal("B1", "B2", linked_by="alice")

        result = service.create_manual_match(["B1"], ["T1"], matched_by="alice")

        assert result["success"] is False

    def test_input_validation(self, service, seed):
        seed(bank=[bank_txn("B1", 100000)], goal=[goal_txn("T1", 100000)])

        assert service.create_manual_match(["B1"], [], matched_by="alice")["success"] is False
        assert service.create_manual_match(["B1", "B1"], ["T1"], matched_by="alice")["success"] is False
        assert service.create_manual_match(["B1"], ["T1"], matched_by="")["success"] is False
        unknown = service.create_manual_match(["B1"], ["T-404"], matched_by="alice")
        assert unknown["errors"][0]["kind"] == "TransactionNotFound"


class TestRemoveManualMatch:
    def test_returns_every_member_to_pending(self, service, seed, fetch, database):
        seed(
            bank=[bank_txn("B1", 100000), bank_txn("B2", 50000)],
            goal=[goal_txn("T1", 150000)],
        )
        match_id = service.create_manual_match(["B1", "B2"], ["T1"], matched_by="alice")["matchId"]

        result = service.remove_manual_match(["T1"], removed_by="bob")

        assert result == {"success": True, "unmatched": 3}
        for side, key in (("BANK", "B1"), ("BANK", "B2"), ("GOAL", "T1")):
            txn = fetch(side, key)
            assert txn.reconciliation_status is S.PENDING
            assert txn.match_info is None

        with database.session_scope() as session:
            match_row = session.scalar(select(MatchRow).where(MatchRow.id == match_id))
            assert match_row.removed_by == "bob"
            assert match_row.removed_at is not None

    def test_ids_of_the_same_match_count_once(self, service, seed):
        seed(bank=[bank_txn("B1", 100000)], goal=[goal_txn("T1", 100000)])
        service.create_manual_match(["B1"], ["T1"], matched_by="alice")

        result = service.remove_manual_match(["B1", "T1"], removed_by="bob")

        assert result["unmatched"] == 2

    def test_automatic_match_can_be_removed_and_rematched(self, service, seed, fetch):
        seed(
            bank=[bank_txn("B1", 500000, ref="TXN1")],
            goal=[goal_txn("T1", 500000, ref="TXN1")],
        )
        service.run_matching(**MARCH)

        service.remove_manual_match(["B1"], removed_by="bob")
        assert fetch("BANK", "B1").reconciliation_status is S.PENDING

        result = service.run_matching(**MARCH)
        assert result["totalMatches"] == 1
        assert fetch("BANK", "B1").reconciliation_status is S.MATCHED

    def test_unmatched_and_unknown_ids(self, service, seed):
        seed(bank=[bank_txn("B1", 100000)])

        unmatched = service.remove_manual_match(["B1"], removed_by="bob")
        unknown = service.remove_manual_match(["B-404"], removed_by="bob")

        assert unmatched["errors"][0]["kind"] == "ValidationError"
        assert unknown["errors"][0]["kind"] == "TransactionNotFound"
