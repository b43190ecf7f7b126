"""
Queries and row mapping for the ledger store.

All reads and writes the workflows need go through ``LedgerRepository`` so
the rest of the package deals in domain dataclasses and ORM rows only.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union
import logging

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.orm import Session

from ..models.transaction import (
    BankTransaction,
    FundAmounts,
    GoalTransaction,
    MatchInfo,
    ProcessingStatus,
    ReconciliationBatch,
    ReconciliationStatus,
    ReviewTag,
    StatusChange,
    TransactionSide,
)
from ..utils.exceptions import ConcurrencyConflict, InvalidTransition, TransactionNotFound
from .tables import (
    BankTransactionRow,
    GoalLeaseRow,
    GoalTransactionRow,
    MatchRow,
    ReconciliationBatchRow,
    StatusHistoryRow,
    utc_now,
)

logger = logging.getLogger(__name__)

LedgerRow = Union[BankTransactionRow, GoalTransactionRow]

BATCH_PREFIX = "RECON-BATCH"

UNRESOLVED_BANK_STATUSES = (
    ReconciliationStatus.PENDING,
    ReconciliationStatus.MISSING_IN_FUND,
)


def row_key(row: LedgerRow) -> str:
    """Primary key of a ledger row regardless of side."""
    if isinstance(row, BankTransactionRow):
        return row.id
    return row.goal_transaction_code


def row_side(row: LedgerRow) -> TransactionSide:
    if isinstance(row, BankTransactionRow):
        return TransactionSide.BANK
    return TransactionSide.GOAL


def row_reference(row: LedgerRow) -> Optional[str]:
    """Upstream transaction id shared by both ledgers."""
    if isinstance(row, BankTransactionRow):
        return row.source_transaction_id
    return row.transaction_id


def _date_filters(column, start_date: Optional[date], end_date: Optional[date]) -> list:
    filters = []
    if start_date:
        filters.append(column >= start_date)
    if end_date:
        filters.append(column <= end_date)
    return filters


class LedgerRepository:
    """Data access for one session; callers own the transaction boundary."""

    def __init__(self, session: Session):
        self.session = session
        self._match_cache: dict[int, MatchInfo] = {}

    # ------------------------------------------------------------------
    # Row lookup
    # ------------------------------------------------------------------

    def get_bank_row(self, transaction_id: str) -> BankTransactionRow:
        row = self.session.get(BankTransactionRow, transaction_id)
        if row is None:
            raise TransactionNotFound(TransactionSide.BANK.value, transaction_id)
        return row

    def get_goal_row(self, goal_transaction_code: str) -> GoalTransactionRow:
        row = self.session.get(GoalTransactionRow, goal_transaction_code)
        if row is None:
            raise TransactionNotFound(TransactionSide.GOAL.value, goal_transaction_code)
        return row

    def get_row(self, side: TransactionSide, transaction_id: str) -> LedgerRow:
        if side is TransactionSide.BANK:
            return self.get_bank_row(transaction_id)
        return self.get_goal_row(transaction_id)

    def find_row(self, transaction_id: str) -> Optional[LedgerRow]:
        """Look an id up on the bank side first, then the goal side."""
        row = self.session.get(BankTransactionRow, transaction_id)
        if row is not None:
            return row
        return self.session.get(GoalTransactionRow, transaction_id)

    def bank_rows(
        self,
        goal_number: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[BankTransactionRow]:
        stmt = select(BankTransactionRow).where(
            *_date_filters(BankTransactionRow.transaction_date, start_date, end_date)
        )
        if goal_number:
            stmt = stmt.where(BankTransactionRow.goal_number == goal_number)
        stmt = stmt.order_by(BankTransactionRow.transaction_date, BankTransactionRow.id)
        return list(self.session.scalars(stmt))

    def goal_rows(
        self,
        goal_number: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[GoalTransactionRow]:
        stmt = select(GoalTransactionRow).where(
            *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date)
        )
        if goal_number:
            stmt = stmt.where(GoalTransactionRow.goal_number == goal_number)
        stmt = stmt.order_by(
            GoalTransactionRow.transaction_date, GoalTransactionRow.goal_transaction_code
        )
        return list(self.session.scalars(stmt))

    def match_members(self, match_id: int) -> tuple[list[BankTransactionRow], list[GoalTransactionRow]]:
        bank = self.session.scalars(
            select(BankTransactionRow)
            .where(BankTransactionRow.match_id == match_id)
            .order_by(BankTransactionRow.id)
        )
        goal = self.session.scalars(
            select(GoalTransactionRow)
            .where(GoalTransactionRow.match_id == match_id)
            .order_by(GoalTransactionRow.goal_transaction_code)
        )
        return list(bank), list(goal)

    # ------------------------------------------------------------------
    # Batch selection
    # ------------------------------------------------------------------

    def goal_numbers(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        goal_number: Optional[str] = None,
    ) -> list[str]:
        """
        Goal numbers with at least one transaction on either side in the range.

        The list is sorted so that batch offsets are repeatable across calls.
        """
        bank = select(BankTransactionRow.goal_number).where(
            *_date_filters(BankTransactionRow.transaction_date, start_date, end_date)
        )
        goal = select(GoalTransactionRow.goal_number).where(
            *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date)
        )
        if goal_number:
            bank = bank.where(BankTransactionRow.goal_number == goal_number)
            goal = goal.where(GoalTransactionRow.goal_number == goal_number)

        numbers = set(self.session.scalars(bank)) | set(self.session.scalars(goal))
        return sorted(numbers)

    def unresolved_bank_rows(
        self,
        goal_number: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[BankTransactionRow]:
        stmt = (
            select(BankTransactionRow)
            .where(
                BankTransactionRow.goal_number == goal_number,
                BankTransactionRow.match_id.is_(None),
                BankTransactionRow.reversal_partner_id.is_(None),
                BankTransactionRow.reconciliation_status.in_(UNRESOLVED_BANK_STATUSES),
                *_date_filters(BankTransactionRow.transaction_date, start_date, end_date),
            )
            .order_by(BankTransactionRow.id)
        )
        return list(self.session.scalars(stmt))

    def unresolved_goal_rows(
        self,
        goal_number: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[GoalTransactionRow]:
        stmt = (
            select(GoalTransactionRow)
            .where(
                GoalTransactionRow.goal_number == goal_number,
                GoalTransactionRow.match_id.is_(None),
                GoalTransactionRow.reconciliation_status == ReconciliationStatus.PENDING,
                *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date),
            )
            .order_by(GoalTransactionRow.goal_transaction_code)
        )
        return list(self.session.scalars(stmt))

    def pending_bank_rows(
        self,
        limit: int,
        transaction_ids: Optional[Sequence[str]] = None,
    ) -> list[BankTransactionRow]:
        stmt = select(BankTransactionRow).where(
            BankTransactionRow.reconciliation_status == ReconciliationStatus.PENDING,
            BankTransactionRow.match_id.is_(None),
            BankTransactionRow.reversal_partner_id.is_(None),
        )
        if transaction_ids is not None:
            stmt = stmt.where(BankTransactionRow.id.in_(list(transaction_ids)))
        stmt = stmt.order_by(BankTransactionRow.id).limit(limit)
        return list(self.session.scalars(stmt))

    def count_pending_bank(self, transaction_ids: Optional[Sequence[str]] = None) -> int:
        stmt = select(func.count()).select_from(BankTransactionRow).where(
            BankTransactionRow.reconciliation_status == ReconciliationStatus.PENDING,
            BankTransactionRow.match_id.is_(None),
            BankTransactionRow.reversal_partner_id.is_(None),
        )
        if transaction_ids is not None:
            stmt = stmt.where(BankTransactionRow.id.in_(list(transaction_ids)))
        return self.session.scalar(stmt) or 0

    def unmatched_rows(
        self,
        goal_number: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> tuple[list[BankTransactionRow], list[GoalTransactionRow]]:
        """Rows with no match on either side; reversal-linked bank rows count as resolved."""
        bank = select(BankTransactionRow).where(
            BankTransactionRow.match_id.is_(None),
            BankTransactionRow.reversal_partner_id.is_(None),
            *_date_filters(BankTransactionRow.transaction_date, start_date, end_date),
        )
        goal = select(GoalTransactionRow).where(
            GoalTransactionRow.match_id.is_(None),
            *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date),
        )
        if goal_number:
            bank = bank.where(BankTransactionRow.goal_number == goal_number)
            goal = goal.where(GoalTransactionRow.goal_number == goal_number)

        bank = bank.order_by(BankTransactionRow.transaction_date, BankTransactionRow.id)
        goal = goal.order_by(
            GoalTransactionRow.transaction_date, GoalTransactionRow.goal_transaction_code
        )
        return list(self.session.scalars(bank)), list(self.session.scalars(goal))

    def tagged_rows(
        self, tags: Iterable, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> tuple[list[BankTransactionRow], list[GoalTransactionRow]]:
        """Unresolved rows carrying one of ``tags``."""
        tags = list(tags)
        bank = (
            select(BankTransactionRow)
            .where(
                BankTransactionRow.review_tag.in_(tags),
                or_(
                    BankTransactionRow.variance_resolved.is_(False),
                    BankTransactionRow.variance_resolved.is_(None),
                ),
                *_date_filters(BankTransactionRow.transaction_date, start_date, end_date),
            )
            .order_by(BankTransactionRow.id)
        )
        goal = (
            select(GoalTransactionRow)
            .where(
                GoalTransactionRow.review_tag.in_(tags),
                or_(
                    GoalTransactionRow.variance_resolved.is_(False),
                    GoalTransactionRow.variance_resolved.is_(None),
                ),
                *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date),
            )
            .order_by(GoalTransactionRow.goal_transaction_code)
        )
        return list(self.session.scalars(bank)), list(self.session.scalars(goal))

    def resolved_rows(
        self,
        goal_number: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        review_tag: Optional[ReviewTag] = None,
    ) -> tuple[list[BankTransactionRow], list[GoalTransactionRow]]:
        """Rows marked as resolved variances, filtered on the transaction date."""
        bank = select(BankTransactionRow).where(
            BankTransactionRow.variance_resolved.is_(True),
            *_date_filters(BankTransactionRow.transaction_date, start_date, end_date),
        )
        goal = select(GoalTransactionRow).where(
            GoalTransactionRow.variance_resolved.is_(True),
            *_date_filters(GoalTransactionRow.transaction_date, start_date, end_date),
        )
        if goal_number:
            bank = bank.where(BankTransactionRow.goal_number == goal_number)
            goal = goal.where(GoalTransactionRow.goal_number == goal_number)
        if review_tag is not None:
            bank = bank.where(BankTransactionRow.review_tag == review_tag)
            goal = goal.where(GoalTransactionRow.review_tag == review_tag)

        bank = bank.order_by(BankTransactionRow.id)
        goal = goal.order_by(GoalTransactionRow.goal_transaction_code)
        return list(self.session.scalars(bank)), list(self.session.scalars(goal))

    def tag_resolution_counts(self, tags: Iterable[ReviewTag]) -> dict[ReviewTag, tuple[int, int]]:
        """``(tagged, resolved)`` counts per tag over both ledgers."""
        tags = list(tags)
        counts: dict[ReviewTag, tuple[int, int]] = {}
        for table in (BankTransactionRow, GoalTransactionRow):
            stmt = (
                select(
                    table.review_tag,
                    func.count(),
                    func.sum(case((table.variance_resolved.is_(True), 1), else_=0)),
                )
                .where(table.review_tag.in_(tags))
                .group_by(table.review_tag)
            )
            for tag, tagged, resolved in self.session.execute(stmt):
                prior_tagged, prior_resolved = counts.get(tag, (0, 0))
                counts[tag] = (prior_tagged + tagged, prior_resolved + int(resolved or 0))
        return counts

    # ------------------------------------------------------------------
    # Matches and audit
    # ------------------------------------------------------------------

    def create_match(self, goal_number: str, match: MatchInfo, matched_by: str) -> MatchRow:
        """Insert a match row and flush so its id is available."""
        match_row = MatchRow(
            goal_number=goal_number,
            match_type=match.match_type,
            confidence=match.confidence,
            bank_total=match.bank_total,
            goal_txn_total=match.goal_txn_total,
            bank_ids=sorted(match.matched_bank_ids),
            goal_codes=sorted(match.matched_goal_txn_ids),
            matched_by=matched_by,
            matched_at=utc_now(),
        )
        self.session.add(match_row)
        self.session.flush()
        return match_row

    def get_match(self, match_id: int) -> Optional[MatchRow]:
        return self.session.get(MatchRow, match_id)

    def match_info(self, match_id: Optional[int]) -> Optional[MatchInfo]:
        if match_id is None:
            return None
        if match_id not in self._match_cache:
            match_row = self.session.get(MatchRow, match_id)
            if match_row is None or match_row.removed_at is not None:
                return None
            self._match_cache[match_id] = MatchInfo(
                match_type=match_row.match_type,
                confidence=match_row.confidence,
                matched_bank_ids=frozenset(match_row.bank_ids or []),
                matched_goal_txn_ids=frozenset(match_row.goal_codes or []),
                bank_total=Decimal(match_row.bank_total),
                goal_txn_total=Decimal(match_row.goal_txn_total),
                match_id=match_row.id,
                matched_by=match_row.matched_by,
                matched_at=match_row.matched_at,
            )
        return self._match_cache[match_id]

    def add_history(self, change: StatusChange) -> None:
        self.session.add(
            StatusHistoryRow(
                side=change.side,
                transaction_id=change.transaction_id,
                from_status=change.from_status,
                to_status=change.to_status,
                actor=change.actor,
                reason=change.reason,
                changed_at=change.changed_at,
            )
        )

    def status_history(self, side: TransactionSide, transaction_id: str) -> list[StatusChange]:
        rows = self.session.scalars(
            select(StatusHistoryRow)
            .where(
                StatusHistoryRow.side == side,
                StatusHistoryRow.transaction_id == transaction_id,
            )
            .order_by(StatusHistoryRow.id)
        )
        return [
            StatusChange(
                side=r.side,
                transaction_id=r.transaction_id,
                from_status=r.from_status,
                to_status=r.to_status,
                actor=r.actor,
                changed_at=r.changed_at,
                reason=r.reason,
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Goal leases
    # ------------------------------------------------------------------

    def acquire_lease(self, goal_number: str, holder: str, timeout_seconds: int) -> None:
        """
        Take the lease for ``goal_number``.

        Leases older than ``timeout_seconds`` are treated as abandoned and
        reclaimed. Two workers racing for the same free goal collide on the
        primary key at flush time.

        Raises:
            ConcurrencyConflict: If another holder owns a live lease
        """
        cutoff = utc_now() - timedelta(seconds=timeout_seconds)
        self.session.execute(
            delete(GoalLeaseRow).where(
                GoalLeaseRow.goal_number == goal_number,
                GoalLeaseRow.acquired_at < cutoff,
            )
        )

        existing = self.session.get(GoalLeaseRow, goal_number)
        if existing is not None:
            raise ConcurrencyConflict(goal_number, existing.holder)

        self.session.add(GoalLeaseRow(goal_number=goal_number, holder=holder, acquired_at=utc_now()))
        self.session.flush()

    def release_lease(self, goal_number: str, holder: str) -> None:
        self.session.execute(
            delete(GoalLeaseRow).where(
                GoalLeaseRow.goal_number == goal_number,
                GoalLeaseRow.holder == holder,
            )
        )

    # ------------------------------------------------------------------
    # Reconciliation batches
    # ------------------------------------------------------------------

    def next_batch_number(self, on: Optional[date] = None) -> str:
        on = on or utc_now().date()
        prefix = f"{BATCH_PREFIX}-{on:%Y%m%d}-"
        count = self.session.scalar(
            select(func.count())
            .select_from(ReconciliationBatchRow)
            .where(ReconciliationBatchRow.batch_number.like(f"{prefix}%"))
        ) or 0
        return f"{prefix}{count + 1:05d}"

    def create_batch(self, uploaded_by: str) -> ReconciliationBatchRow:
        batch = ReconciliationBatchRow(
            batch_number=self.next_batch_number(),
            processing_status=ProcessingStatus.QUEUED,
            uploaded_by=uploaded_by,
            uploaded_at=utc_now(),
        )
        self.session.add(batch)
        self.session.flush()
        return batch

    def get_batch_row(self, batch_number: str) -> Optional[ReconciliationBatchRow]:
        return self.session.scalar(
            select(ReconciliationBatchRow).where(ReconciliationBatchRow.batch_number == batch_number)
        )

    def update_batch(self, batch_number: str, **fields) -> ReconciliationBatchRow:
        """
        Update counts or status of a batch.

        Raises:
            InvalidTransition: If the batch is already COMPLETED
        """
        batch = self.get_batch_row(batch_number)
        if batch is None:
            raise TransactionNotFound("BATCH", batch_number)
        if batch.processing_status is ProcessingStatus.COMPLETED:
            requested = fields.get("processing_status", ProcessingStatus.COMPLETED)
            raise InvalidTransition(
                ProcessingStatus.COMPLETED.value, requested.value, batch_number
            )

        for name, value in fields.items():
            setattr(batch, name, value)

        if batch.processed_records > batch.total_records:
            batch.total_records = batch.processed_records
        if batch.processing_status in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED):
            batch.completed_at = utc_now()
        return batch

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def to_bank(self, row: BankTransactionRow) -> BankTransaction:
        return BankTransaction(
            id=row.id,
            goal_number=row.goal_number,
            transaction_date=row.transaction_date,
            transaction_type=row.transaction_type,
            total_amount=Decimal(row.total_amount),
            account_number=row.account_number,
            source_transaction_id=row.source_transaction_id,
            fund_amounts=_fund_amounts(row),
            reconciliation_status=row.reconciliation_status,
            match_info=self.match_info(row.match_id),
            review_tag=row.review_tag,
            review_notes=row.review_notes,
            reviewed_by=row.reviewed_by,
            reviewed_at=row.reviewed_at,
            reversal_partner_id=row.reversal_partner_id,
            variance_resolved=bool(row.variance_resolved),
        )

    def to_goal(self, row: GoalTransactionRow) -> GoalTransaction:
        return GoalTransaction(
            goal_transaction_code=row.goal_transaction_code,
            goal_number=row.goal_number,
            transaction_date=row.transaction_date,
            transaction_type=row.transaction_type,
            total_amount=Decimal(row.total_amount),
            account_number=row.account_number,
            transaction_id=row.transaction_id,
            fund_amounts=_fund_amounts(row),
            fund_transaction_ids=list(row.fund_transaction_ids or []),
            reconciliation_status=row.reconciliation_status,
            match_info=self.match_info(row.match_id),
            review_tag=row.review_tag,
            review_notes=row.review_notes,
            reviewed_by=row.reviewed_by,
            reviewed_at=row.reviewed_at,
            variance_resolved=bool(row.variance_resolved),
        )

    def to_domain(self, row: LedgerRow) -> Union[BankTransaction, GoalTransaction]:
        if isinstance(row, BankTransactionRow):
            return self.to_bank(row)
        return self.to_goal(row)

    @staticmethod
    def to_batch(row: ReconciliationBatchRow) -> ReconciliationBatch:
        return ReconciliationBatch(
            batch_number=row.batch_number,
            processing_status=row.processing_status,
            total_records=row.total_records,
            processed_records=row.processed_records,
            total_matched=row.total_matched,
            total_unmatched=row.total_unmatched,
            auto_approved_count=row.auto_approved_count,
            manual_review_count=row.manual_review_count,
            failed_goals=row.failed_goals,
            uploaded_by=row.uploaded_by,
            uploaded_at=row.uploaded_at,
            completed_at=row.completed_at,
        )

    # ------------------------------------------------------------------
    # Ingestion helpers (upstream loaders and tests)
    # ------------------------------------------------------------------

    def add_bank_transaction(self, txn: BankTransaction) -> BankTransactionRow:
        row = BankTransactionRow(
            id=txn.id,
            goal_number=txn.goal_number,
            account_number=txn.account_number,
            source_transaction_id=txn.source_transaction_id,
            transaction_date=txn.transaction_date,
            transaction_type=txn.transaction_type,
            total_amount=txn.total_amount,
            xummf_amount=txn.fund_amounts.xummf,
            xubf_amount=txn.fund_amounts.xubf,
            xudef_amount=txn.fund_amounts.xudef,
            xuref_amount=txn.fund_amounts.xuref,
            reconciliation_status=txn.reconciliation_status,
        )
        self.session.add(row)
        return row

    def add_goal_transaction(self, txn: GoalTransaction) -> GoalTransactionRow:
        row = GoalTransactionRow(
            goal_transaction_code=txn.goal_transaction_code,
            goal_number=txn.goal_number,
            account_number=txn.account_number,
            transaction_id=txn.transaction_id,
            transaction_date=txn.transaction_date,
            transaction_type=txn.transaction_type,
            total_amount=txn.total_amount,
            xummf_amount=txn.fund_amounts.xummf,
            xubf_amount=txn.fund_amounts.xubf,
            xudef_amount=txn.fund_amounts.xudef,
            xuref_amount=txn.fund_amounts.xuref,
            fund_transaction_ids=list(txn.fund_transaction_ids),
            reconciliation_status=txn.reconciliation_status,
        )
        self.session.add(row)
        return row


def _fund_amounts(row: LedgerRow) -> FundAmounts:
    return FundAmounts(
        xummf=Decimal(row.xummf_amount or 0),
        xubf=Decimal(row.xubf_amount or 0),
        xudef=Decimal(row.xudef_amount or 0),
        xuref=Decimal(row.xuref_amount or 0),
    )
