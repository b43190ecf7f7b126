"""Tests for reversal pair detection and linking."""

from datetime import date

import pytest

from conftest import bank_txn, goal_txn
from goal_ledger_recon.models.transaction import ReconciliationStatus, ReviewTag, TransactionType

S = ReconciliationStatus
DEPOSIT = TransactionType.DEPOSIT
WITHDRAWAL = TransactionType.WITHDRAWAL


@pytest.fixture
def pair(seed):
    seed(
        bank=[
            bank_txn("B1", 200000, on=date(2024, 3, 1), status=S.MISSING_IN_FUND),
            bank_txn("B2", 200000, on=date(2024, 3, 5), txn_type=WITHDRAWAL),
            bank_txn("B3", 200000, on=date(2024, 3, 20), txn_type=WITHDRAWAL),
            bank_txn("B4", 199000, on=date(2024, 3, 2), txn_type=WITHDRAWAL),
            bank_txn("B5", 200000, on=date(2024, 3, 2), txn_type=WITHDRAWAL, goal="G2"),
            bank_txn("B6", 200000, on=date(2024, 3, 2)),
            bank_txn("B7", 200000, on=date(2024, 5, 1), txn_type=WITHDRAWAL),
        ]
    )


class TestCandidates:
    def test_ranked_by_distance(self, service, pair):
        result = service.find_reversal_candidates("B1")

        assert result["sourceTransaction"]["id"] == "B1"
        assert [c["id"] for c in result["candidates"]] == ["B2", "B3"]

    def test_explicit_range(self, service, pair):
        result = service.find_reversal_candidates("B1", "2024-03-01", "2024-05-31")

        assert [c["id"] for c in result["candidates"]] == ["B2", "B3", "B7"]

    def test_type_without_opposite(self, service, seed):
        seed(
            bank=[
                bank_txn("X1", 5000, txn_type=TransactionType.TRANSFER),
                bank_txn("X2", 5000, txn_type=TransactionType.TRANSFER),
            ]
        )
        assert service.find_reversal_candidates("X1")["candidates"] == []

    def test_unknown_source(self, service):
        assert service.find_reversal_candidates("B-404")["errors"][0]["kind"] == "TransactionNotFound"


class TestLinking:
    def test_link_nets_both_rows(self, service, pair, fetch):
        result = service.link_reversal("B1", "B2", linked_by="alice")

        assert result == {"success": True, "linked": ["B1", "B2"]}
        for key, partner in (("B1", "B2"), ("B2", "B1")):
            txn = fetch("BANK", key)
            assert txn.reversal_partner_id == partner
            assert txn.reconciliation_status is S.MATCHED
            assert txn.review_tag is ReviewTag.REVERSAL_NETTED

        info = service.get_reversal_pair_info("B2")["partner"]
        assert info["id"] == "B1"
        assert info["linkedBy"] == "alice"
        assert info["linkedAt"] is not None

    def test_linked_rows_leave_the_candidate_pool(self, service, pair):
        service.link_reversal("B1", "B2", linked_by="alice")

        assert [c["id"] for c in service.find_reversal_candidates("B3")["candidates"]] == ["B6"]

    def test_linked_rows_are_excluded_from_matching(self, service, seed, fetch):
        seed(
            bank=[
                bank_txn("B1", 200000, on=date(2024, 3, 1)),
                bank_txn("B2", 200000, on=date(2024, 3, 2), txn_type=WITHDRAWAL),
            ],
            goal=[goal_txn("T1", 200000, on=date(2024, 3, 1))],
        )
        service.link_reversal("B1", "B2", linked_by="alice")

        result = service.run_matching(start_date="2024-03-01", end_date="2024-03-31")

        assert result["totalMatches"] == 0
        assert fetch("BANK", "B1").match_info is None
        assert fetch("GOAL", "T1").reconciliation_status is S.PENDING

    def test_unlink_restores_previous_state(self, service, pair, fetch):
        service.link_reversal("B1", "B2", linked_by="alice")

        result = service.unlink_reversal("B2", unlinked_by="bob")

        assert result["unlinked"] == ["B2", "B1"]
        first, second = fetch("BANK", "B1"), fetch("BANK", "B2")
        assert first.reconciliation_status is S.MISSING_IN_FUND
        assert second.reconciliation_status is S.PENDING
        assert first.reversal_partner_id is None
        assert second.review_tag is None
        assert service.get_reversal_pair_info("B1")["partner"] is None

    def test_unlink_after_flagging_for_review(self, service, seed, fetch):
        seed(
            bank=[
                bank_txn("B1", 500000, on=date(2024, 3, 1), status=S.MISSING_IN_FUND),
                bank_txn("B2", 500000, on=date(2024, 3, 4), txn_type=WITHDRAWAL, status=S.MISSING_IN_FUND),
            ]
        )
        service.link_reversal("B1", "B2", linked_by="alice")
        service.flag_for_review("B1", "BANK", reviewer="carol")
        assert fetch("BANK", "B1").reconciliation_status is S.MANUAL_REVIEW

        result = service.unlink_reversal("B1", unlinked_by="bob")

        assert result == {"success": True, "unlinked": ["B1", "B2"]}
        for key in ("B1", "B2"):
            txn = fetch("BANK", key)
            assert txn.reconciliation_status is S.MISSING_IN_FUND
            assert txn.reversal_partner_id is None
        assert service.get_reversal_pair_info("B2")["partner"] is None

    def test_unlink_refused_once_a_side_is_approved(self, service, pair, fetch):
        service.link_reversal("B1", "B2", linked_by="alice")
        service.approve("B2", "BANK", reviewer="carol")

        result = service.unlink_reversal("B1", unlinked_by="bob")

        assert result["errors"][0]["kind"] == "InvalidTransition"
        assert fetch("BANK", "B1").reversal_partner_id == "B2"

    @pytest.mark.parametrize(
        "first, second, kind",
        [
            ("B1", "B1", "ValidationError"),
            ("B1", "B5", "ValidationError"),
            ("B1", "B-404", "TransactionNotFound"),
        ],
    )
    def test_link_validation(self, service, pair, first, second, kind):
        result = service.link_reversal(first, second, linked_by="alice")
        assert result["errors"][0]["kind"] == kind

    def test_already_linked(self, service, pair):
        service.link_reversal("B1", "B2", linked_by="alice")

        result = service.link_reversal("B3", "B1", linked_by="alice")

        assert "already has reversal partner" in result["errors"][0]["message"]

    def test_terminal_rows_cannot_be_linked(self, service, seed):
        seed(
            bank=[
                bank_txn("B1", 1000, status=S.APPROVED),
                bank_txn("B2", 1000, txn_type=WITHDRAWAL),
            ]
        )
        assert service.link_reversal("B1", "B2", linked_by="alice")["errors"][0]["kind"] == "InvalidTransition"

    def test_linked_by_is_required(self, service, pair):
        assert service.link_reversal("B1", "B2", linked_by="")["success"] is False

    def test_unlink_unpaired(self, service, pair):
        assert service.unlink_reversal("B1")["errors"][0]["kind"] == "ValidationError"
