"""
Detection of reviewed variances that newer ledger data has resolved.

A bank transaction tagged MISSING_IN_FUND is resolved once the goal ledger
records a counterpart; a goal transaction tagged MISSING_IN_BANK once the
bank ledger does. TIMING_DIFFERENCE rows are resolved when the counterpart
with the same id shows up within a few days.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence, Union
import logging

from ..matching.tolerance import ToleranceEvaluator
from ..models.results import (
    ResolutionDetail,
    ResolutionReport,
    ResolutionStats,
    ResolvedVariance,
    ResolvedVariancesReport,
    TagResolutionCounts,
)
from ..models.transaction import ReviewTag, TransactionSide
from ..storage.database import Database
from ..storage.repository import LedgerRepository, LedgerRow, row_key, row_reference, row_side
from ..storage.tables import utc_now
from .review import parse_review_tag

logger = logging.getLogger(__name__)

RESOLVABLE_TAGS = (
    ReviewTag.MISSING_IN_FUND,
    ReviewTag.MISSING_IN_BANK,
    ReviewTag.TIMING_DIFFERENCE,
)


class VarianceResolutionDetector:
    """Marks tagged variances as resolved when a counterpart now exists."""

    def __init__(
        self,
        database: Database,
        evaluator: Optional[ToleranceEvaluator] = None,
        date_window_days: int = 30,
        timing_tolerance_days: int = 3,
    ):
        self.database = database
        self.evaluator = evaluator or ToleranceEvaluator()
        self.date_window_days = date_window_days
        self.timing_tolerance_days = timing_tolerance_days

    def detect(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        triggered_by: Optional[str] = None,
    ) -> ResolutionReport:
        """
        Check every unresolved tagged variance in the date range.

        Args:
            start_date: Inclusive lower bound on the tagged row's date
            end_date: Inclusive upper bound on the tagged row's date
            triggered_by: Actor recorded as ``resolved_by`` (defaults to ``system``)

        Returns:
            One detail per newly resolved row
        """
        actor = triggered_by or "system"
        report = ResolutionReport()

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            bank_rows, goal_rows = repo.tagged_rows(RESOLVABLE_TAGS, start_date, end_date)

            for row in [*bank_rows, *goal_rows]:
                reason = self._resolution_reason(repo, row)
                if reason is None:
                    continue

                original_tag = row.review_tag.value
                row.variance_resolved = True
                row.resolved_at = utc_now()
                row.resolved_reason = reason
                row.resolved_by = actor

                report.details.append(
                    ResolutionDetail(
                        id=row_key(row),
                        side=row_side(row).value,
                        goal_number=row.goal_number,
                        transaction_id=row_reference(row),
                        amount=Decimal(row.total_amount),
                        original_tag=original_tag,
                        resolved_reason=reason,
                    )
                )

        logger.info(f"Variance resolution by {actor}: {report.resolved} resolved {report.by_tag}")
        return report

    def resolved_variances_report(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        goal_number: Optional[str] = None,
        original_tag: Optional[Union[str, ReviewTag]] = None,
    ) -> ResolvedVariancesReport:
        """
        Variances already marked resolved, most recently resolved first.

        Args:
            start_date: Inclusive lower bound on the transaction date
            end_date: Inclusive upper bound on the transaction date
            goal_number: Only rows of this goal
            original_tag: Only rows that were tagged with this review tag

        Returns:
            The rows with totals by original tag and by ledger
        """
        tag_filter = parse_review_tag(original_tag) if original_tag else None

        with self.database.session_scope() as session:
            bank_rows, goal_rows = LedgerRepository(session).resolved_rows(
                goal_number, start_date, end_date, tag_filter
            )
            entries = [_resolved_entry(row) for row in [*bank_rows, *goal_rows]]

        entries.sort(key=lambda e: (e.goal_number, e.id))
        entries.sort(key=lambda e: e.resolved_at or datetime.min, reverse=True)

        logger.debug(f"Resolved variance report: {len(entries)} rows")
        return ResolvedVariancesReport(data=entries)

    def resolution_stats(self) -> ResolutionStats:
        """Tagged, resolved and pending counts for each resolvable tag."""
        with self.database.session_scope() as session:
            counts = LedgerRepository(session).tag_resolution_counts(RESOLVABLE_TAGS)

        stats = ResolutionStats()
        for tag in RESOLVABLE_TAGS:
            tagged, resolved = counts.get(tag, (0, 0))
            stats.by_tag[tag.value] = TagResolutionCounts(tagged=tagged, resolved=resolved)
        return stats

    def _resolution_reason(self, repo: LedgerRepository, row: LedgerRow) -> Optional[str]:
        side = row_side(row)
        tag = row.review_tag

        if tag is ReviewTag.TIMING_DIFFERENCE:
            return self._timing_resolution(repo, row, side)
        if tag is ReviewTag.MISSING_IN_FUND and side is TransactionSide.BANK:
            return self._missing_resolution(repo, row, side)
        if tag is ReviewTag.MISSING_IN_BANK and side is TransactionSide.GOAL:
            return self._missing_resolution(repo, row, side)
        return None

    def _counterparts(self, repo: LedgerRepository, row: LedgerRow, side: TransactionSide) -> Sequence[LedgerRow]:
        if side is TransactionSide.BANK:
            return repo.goal_rows(goal_number=row.goal_number)
        return repo.bank_rows(goal_number=row.goal_number)

    def _missing_resolution(
        self, repo: LedgerRepository, row: LedgerRow, side: TransactionSide
    ) -> Optional[str]:
        other_ledger = "goal" if side is TransactionSide.BANK else "bank"
        reference = row_reference(row)
        counterparts = [
            c
            for c in self._counterparts(repo, row, side)
            if c.transaction_type == row.transaction_type
            and self.evaluator.within_tolerance(row.total_amount, c.total_amount)
        ]

        if reference:
            for candidate in counterparts:
                if row_reference(candidate) == reference:
                    return (
                        f"Found in {other_ledger} ledger: {row_key(candidate)} "
                        f"with transaction id {reference}"
                    )

        for candidate in counterparts:
            days = abs((candidate.transaction_date - row.transaction_date).days)
            if days <= self.date_window_days:
                return (
                    f"Found in {other_ledger} ledger: {row_key(candidate)} "
                    f"matching amount within {days} days"
                )
        return None

    def _timing_resolution(
        self, repo: LedgerRepository, row: LedgerRow, side: TransactionSide
    ) -> Optional[str]:
        reference = row_reference(row)
        if not reference:
            return None

        for candidate in self._counterparts(repo, row, side):
            if row_reference(candidate) != reference:
                continue
            if candidate.transaction_type != row.transaction_type:
                continue
            if not self.evaluator.within_tolerance(row.total_amount, candidate.total_amount):
                continue
            days = abs((candidate.transaction_date - row.transaction_date).days)
            if days <= self.timing_tolerance_days:
                return f"Timing difference cleared: {row_key(candidate)} posted {days} days apart"
        return None


def _resolved_entry(row: LedgerRow) -> ResolvedVariance:
    return ResolvedVariance(
        id=row_key(row),
        side=row_side(row).value,
        goal_number=row.goal_number,
        account_number=row.account_number,
        transaction_date=row.transaction_date,
        transaction_type=row.transaction_type.value,
        amount=Decimal(row.total_amount),
        transaction_id=row_reference(row),
        original_tag=row.review_tag.value if row.review_tag else None,
        review_notes=row.review_notes,
        resolved_at=row.resolved_at,
        resolved_reason=row.resolved_reason,
        resolved_by=row.resolved_by,
    )
