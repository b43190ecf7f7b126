"""
Variance review workflow: tagging, bulk tagging, flagging and the human-only
approve/reject decisions.
"""

from collections import OrderedDict
from datetime import date
from typing import Iterable, Optional, Sequence, Union
import logging

from ..models.results import (
    BulkReviewResult,
    GoalReviewStatus,
    ReviewResult,
    VarianceListing,
)
from ..models.transaction import ReconciliationStatus, ReviewTag, TransactionSide
from ..storage.database import Database
from ..storage.repository import LedgerRepository, LedgerRow, row_key, row_side
from ..storage.tables import utc_now
from ..utils.exceptions import InvalidTransition, ValidationError
from .status import ReconciliationStatusMachine

logger = logging.getLogger(__name__)

# Spellings used by older call sites; rejected rather than mapped.
LEGACY_TAG_NAMES = {
    "AMOUNT_MISMATCH": ReviewTag.AMOUNT_DISCREPANCY,
    "MISSING_IN_GOAL": ReviewTag.MISSING_IN_FUND,
}

REVIEW_FILTERS = ("all", "pending", "reviewed")


def parse_side(value: Union[str, TransactionSide]) -> TransactionSide:
    """Parse ``BANK``/``GOAL`` (case-insensitive)."""
    if isinstance(value, TransactionSide):
        return value
    try:
        return TransactionSide(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid side {value!r}; expected BANK or GOAL") from None


def parse_review_tag(value: Union[str, ReviewTag]) -> ReviewTag:
    """
    Parse a review tag against the canonical tag set.

    Raises:
        ValidationError: For unknown or legacy tag names
    """
    if isinstance(value, ReviewTag):
        return value
    name = str(value).strip().upper()
    if name in LEGACY_TAG_NAMES:
        raise ValidationError(
            f"Review tag {name} is not part of the canonical tag set; "
            f"use {LEGACY_TAG_NAMES[name].value}"
        )
    try:
        return ReviewTag(name)
    except ValueError:
        allowed = ", ".join(t.value for t in ReviewTag)
        raise ValidationError(f"Unknown review tag {value!r}; expected one of: {allowed}") from None


class ReviewWorkflow:
    """Review actions on unresolved transactions, one database transaction per call."""

    def __init__(
        self,
        database: Database,
        status_machine: Optional[ReconciliationStatusMachine] = None,
    ):
        self.database = database
        self.status_machine = status_machine or ReconciliationStatusMachine()

    def tag(
        self,
        transaction_id: str,
        side: Union[str, TransactionSide],
        tag: Union[str, ReviewTag],
        notes: Optional[str] = None,
        reviewer: str = "system",
    ) -> ReviewResult:
        """
        Set the review tag of one transaction, overwriting any previous tag.

        The reconciliation status is left unchanged.
        """
        side = parse_side(side)
        review_tag = parse_review_tag(tag)

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_row(side, transaction_id)
            self._apply_tag(row, review_tag, notes, reviewer)
            result = ReviewResult(
                transaction_id=transaction_id,
                side=side.value,
                reconciliation_status=row.reconciliation_status,
                review_tag=review_tag.value,
            )

        logger.info(f"Tagged {side.value} {transaction_id} as {review_tag.value} by {reviewer}")
        return result

    def bulk_tag(
        self,
        bank_ids: Sequence[str],
        goal_codes: Sequence[str],
        tag: Union[str, ReviewTag],
        notes: Optional[str] = None,
        reviewer: str = "system",
    ) -> BulkReviewResult:
        """
        Apply one tag to a mixed set of transactions, all or nothing.

        Raises:
            ValidationError: If the set is empty, the tag is invalid or an id is unknown
            InvalidTransition: If any row is in a terminal status
        """
        review_tag = parse_review_tag(tag)
        return self.bulk_tag_groups([(review_tag, notes, bank_ids, goal_codes)], reviewer)

    def bulk_tag_groups(
        self,
        groups: Iterable[tuple],
        reviewer: str = "system",
    ) -> BulkReviewResult:
        """
        Apply several ``(tag, notes, bank_ids, goal_codes)`` groups in one transaction.
        """
        groups = [
            (parse_review_tag(tag), notes, list(bank_ids), list(goal_codes))
            for tag, notes, bank_ids, goal_codes in groups
        ]
        if not any(bank_ids or goal_codes for _, _, bank_ids, goal_codes in groups):
            raise ValidationError("No transactions supplied for bulk review")

        result = BulkReviewResult()
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            for review_tag, notes, bank_ids, goal_codes in groups:
                for bank_id in bank_ids:
                    self._apply_tag(repo.get_bank_row(bank_id), review_tag, notes, reviewer)
                    result.bank += 1
                for goal_code in goal_codes:
                    self._apply_tag(repo.get_goal_row(goal_code), review_tag, notes, reviewer)
                    result.goal += 1

        logger.info(
            f"Bulk review by {reviewer}: {result.bank} bank and {result.goal} goal transactions tagged"
        )
        return result

    def flag_for_review(
        self,
        transaction_id: str,
        side: Union[str, TransactionSide],
        reviewer: str = "system",
        notes: Optional[str] = None,
    ) -> ReviewResult:
        """Route a transaction to MANUAL_REVIEW."""
        return self._decide(
            transaction_id, side, ReconciliationStatus.MANUAL_REVIEW, reviewer, notes
        )

    def approve(
        self,
        transaction_id: str,
        side: Union[str, TransactionSide],
        reviewer: str,
        notes: Optional[str] = None,
    ) -> ReviewResult:
        return self._decide(transaction_id, side, ReconciliationStatus.APPROVED, reviewer, notes)

    def reject(
        self,
        transaction_id: str,
        side: Union[str, TransactionSide],
        reviewer: str,
        notes: Optional[str] = None,
    ) -> ReviewResult:
        return self._decide(transaction_id, side, ReconciliationStatus.REJECTED, reviewer, notes)

    def goal_review_status(
        self,
        goal_number: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> GoalReviewStatus:
        """Review progress over the goal's unmatched transactions."""
        if not goal_number:
            raise ValidationError("goal_number is required")

        with self.database.session_scope() as session:
            bank_rows, goal_rows = LedgerRepository(session).unmatched_rows(
                goal_number, start_date, end_date
            )
            rows: list[LedgerRow] = [*bank_rows, *goal_rows]

        total = len(rows)
        by_tag = _count_tags(rows)
        reviewed = sum(by_tag.values())

        if total == 0:
            status = "NO_VARIANCES"
        elif reviewed == 0:
            status = "PENDING"
        elif reviewed < total:
            status = "PARTIALLY_REVIEWED"
        else:
            status = "FULLY_REVIEWED"

        return GoalReviewStatus(
            goal_number=goal_number,
            status=status,
            total_unmatched=total,
            reviewed_count=reviewed,
            pending_count=total - reviewed,
            by_tag=by_tag,
        )

    def variance_transactions(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        review_status: str = "all",
        review_tag: Optional[Union[str, ReviewTag]] = None,
        goal_number: Optional[str] = None,
    ) -> VarianceListing:
        """
        Unmatched transactions from both ledgers for the review queue.

        Args:
            start_date: Inclusive lower date bound
            end_date: Inclusive upper date bound
            review_status: ``all``, ``pending`` (untagged) or ``reviewed`` (tagged)
            review_tag: Only rows carrying this tag
            goal_number: Only rows of this goal

        Returns:
            Rows sorted by date then id, with summary counts over the
            unfiltered unmatched set
        """
        review_status = (review_status or "all").lower()
        if review_status not in REVIEW_FILTERS:
            raise ValidationError(
                f"Invalid review status filter {review_status!r}; expected one of {REVIEW_FILTERS}"
            )
        tag_filter = parse_review_tag(review_tag) if review_tag else None

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            bank_rows, goal_rows = repo.unmatched_rows(goal_number, start_date, end_date)
            rows: list[LedgerRow] = [*bank_rows, *goal_rows]

            data = []
            for row in rows:
                if review_status == "pending" and row.review_tag is not None:
                    continue
                if review_status == "reviewed" and row.review_tag is None:
                    continue
                if tag_filter is not None and row.review_tag != tag_filter:
                    continue
                entry = repo.to_domain(row).to_dict()
                entry["source"] = row_side(row).value
                data.append(entry)

        data.sort(key=lambda e: (e["transactionDate"], e["source"], e.get("id") or e.get("goalTransactionCode")))
        by_tag = _count_tags(rows)
        reviewed = sum(by_tag.values())

        return VarianceListing(
            data=data,
            total_unmatched=len(rows),
            pending_review=len(rows) - reviewed,
            reviewed=reviewed,
            by_tag=by_tag,
        )

    def _apply_tag(
        self, row: LedgerRow, review_tag: ReviewTag, notes: Optional[str], reviewer: str
    ) -> None:
        if row.reconciliation_status.is_terminal:
            raise InvalidTransition(
                row.reconciliation_status.value, f"tag {review_tag.value}", row_key(row)
            )
        row.review_tag = review_tag
        row.review_notes = notes
        row.reviewed_by = reviewer
        row.reviewed_at = utc_now()

    def _decide(
        self,
        transaction_id: str,
        side: Union[str, TransactionSide],
        requested: ReconciliationStatus,
        reviewer: str,
        notes: Optional[str],
    ) -> ReviewResult:
        side = parse_side(side)
        if not reviewer:
            raise ValidationError("reviewer is required")

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_row(side, transaction_id)
            self.status_machine.transition(repo, row, requested, reviewer, notes)
            if notes is not None:
                row.review_notes = notes
            row.reviewed_by = reviewer
            row.reviewed_at = utc_now()
            result = ReviewResult(
                transaction_id=transaction_id,
                side=side.value,
                reconciliation_status=row.reconciliation_status,
                review_tag=row.review_tag.value if row.review_tag else None,
            )

        logger.info(f"{side.value} {transaction_id} moved to {requested.value} by {reviewer}")
        return result


def _count_tags(rows: Iterable[LedgerRow]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in rows:
        if row.review_tag is not None:
            counts[row.review_tag.value] = counts.get(row.review_tag.value, 0) + 1
    return counts


class PendingReviewChanges:
    """
    Caller-side staging of review tags.

    Changes accumulate locally and are written by ``flush`` in a single
    database transaction. Nothing is stored server side until then.
    """

    def __init__(self):
        self._changes: "OrderedDict[tuple[TransactionSide, str], tuple[ReviewTag, Optional[str]]]" = (
            OrderedDict()
        )

    def stage(
        self,
        side: Union[str, TransactionSide],
        transaction_id: str,
        tag: Union[str, ReviewTag],
        notes: Optional[str] = None,
    ) -> None:
        """Stage a tag; staging the same transaction again replaces the earlier change."""
        self._changes[(parse_side(side), transaction_id)] = (parse_review_tag(tag), notes)

    def discard(self, side: Union[str, TransactionSide], transaction_id: str) -> None:
        self._changes.pop((parse_side(side), transaction_id), None)

    def clear(self) -> None:
        self._changes.clear()

    def __len__(self) -> int:
        return len(self._changes)

    def __bool__(self) -> bool:
        return bool(self._changes)

    def groups(self) -> list[tuple[ReviewTag, Optional[str], list[str], list[str]]]:
        """Staged changes grouped by (tag, notes)."""
        grouped: "OrderedDict[tuple[ReviewTag, Optional[str]], tuple[list[str], list[str]]]" = OrderedDict()
        for (side, transaction_id), (tag, notes) in self._changes.items():
            bank_ids, goal_codes = grouped.setdefault((tag, notes), ([], []))
            if side is TransactionSide.BANK:
                bank_ids.append(transaction_id)
            else:
                goal_codes.append(transaction_id)
        return [(tag, notes, bank, goal) for (tag, notes), (bank, goal) in grouped.items()]

    def flush(self, workflow: ReviewWorkflow, reviewer: str) -> BulkReviewResult:
        """
        Write every staged change atomically.

        The staged set is cleared only when the write succeeds.
        """
        if not self._changes:
            return BulkReviewResult()
        result = workflow.bulk_tag_groups(self.groups(), reviewer)
        self._changes.clear()
        return result
