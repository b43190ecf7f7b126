"""
Goal-level comparison of bank and goal ledger totals.

For every goal with activity in the range the deposit and withdrawal totals
of both ledgers are compared against the amount tolerance. Goals outside
tolerance are reported as VARIANCE together with how far their unmatched
transactions have been reviewed.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional
import logging

from ..matching.tolerance import ToleranceEvaluator
from ..models.results import GoalComparison
from ..models.transaction import TransactionType
from ..storage.database import Database
from ..storage.repository import LedgerRepository, LedgerRow, row_reference
from ..utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

SUMMARY_FILTERS = ("ALL", "MATCHED", "VARIANCE", "REVIEWED")


def _is_unmatched(row: LedgerRow, counterpart_refs: set) -> bool:
    """
    No persisted match, no reversal partner and no counterpart carrying the
    same transaction id and type in the range.
    """
    if row.match_id is not None:
        return False
    if getattr(row, "reversal_partner_id", None) is not None:
        return False
    reference = row_reference(row)
    return not reference or (reference, row.transaction_type) not in counterpart_refs


class GoalSummaryBuilder:
    """Builds per-goal bank versus goal ledger comparisons."""

    def __init__(self, database: Database, evaluator: Optional[ToleranceEvaluator] = None):
        self.database = database
        self.evaluator = evaluator or ToleranceEvaluator()

    def summarize(
        self,
        start_date: date,
        end_date: date,
        goal_number: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[GoalComparison]:
        """
        Compare both ledgers goal by goal.

        Args:
            start_date: Inclusive lower date bound
            end_date: Inclusive upper date bound
            goal_number: Only this goal
            status: ``ALL``, ``MATCHED``, ``VARIANCE`` or ``REVIEWED``
                (variance goals whose unmatched rows are all tagged)

        Returns:
            Comparisons sorted by goal number

        Raises:
            ValidationError: Missing or inverted range, or unknown status filter
        """
        if start_date is None or end_date is None:
            raise ValidationError("start_date and end_date are required")
        if start_date > end_date:
            raise ValidationError(f"start_date {start_date} is after end_date {end_date}")
        status_filter = (status or "ALL").upper()
        if status_filter not in SUMMARY_FILTERS:
            raise ValidationError(
                f"Invalid summary status {status!r}; expected one of {SUMMARY_FILTERS}"
            )

        bank_by_goal: dict[str, list] = defaultdict(list)
        goal_by_goal: dict[str, list] = defaultdict(list)
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            for row in repo.bank_rows(goal_number, start_date, end_date):
                bank_by_goal[row.goal_number].append(row)
            for row in repo.goal_rows(goal_number, start_date, end_date):
                goal_by_goal[row.goal_number].append(row)

            comparisons = [
                self._compare(number, bank_by_goal[number], goal_by_goal[number])
                for number in sorted(set(bank_by_goal) | set(goal_by_goal))
            ]

        if status_filter == "REVIEWED":
            comparisons = [
                c for c in comparisons if c.status == "VARIANCE" and c.review_status == "REVIEWED"
            ]
        elif status_filter != "ALL":
            comparisons = [c for c in comparisons if c.status == status_filter]

        logger.debug(
            f"Goal summary {start_date}..{end_date}: {len(comparisons)} goals ({status_filter})"
        )
        return comparisons

    def _compare(self, goal_number: str, bank_rows: list, goal_rows: list) -> GoalComparison:
        comparison = GoalComparison(
            goal_number=goal_number,
            account_number=next(
                (r.account_number for r in [*bank_rows, *goal_rows] if r.account_number), None
            ),
        )

        for row in bank_rows:
            amount = Decimal(row.total_amount)
            if row.transaction_type is TransactionType.DEPOSIT:
                comparison.bank_deposits += amount
                comparison.bank_deposit_count += 1
            elif row.transaction_type is TransactionType.WITHDRAWAL:
                comparison.bank_withdrawals += amount
                comparison.bank_withdrawal_count += 1
        for row in goal_rows:
            amount = Decimal(row.total_amount)
            if row.transaction_type is TransactionType.DEPOSIT:
                comparison.goal_deposits += amount
                comparison.goal_deposit_count += 1
            elif row.transaction_type is TransactionType.WITHDRAWAL:
                comparison.goal_withdrawals += amount
                comparison.goal_withdrawal_count += 1

        comparison.has_deposit_variance = not self.evaluator.within_tolerance(
            comparison.bank_deposits, comparison.goal_deposits
        )
        comparison.has_withdrawal_variance = not self.evaluator.within_tolerance(
            comparison.bank_withdrawals, comparison.goal_withdrawals
        )

        bank_refs = {(row_reference(r), r.transaction_type) for r in bank_rows if row_reference(r)}
        goal_refs = {(row_reference(r), r.transaction_type) for r in goal_rows if row_reference(r)}
        unmatched = [r for r in bank_rows if _is_unmatched(r, goal_refs)]
        unmatched += [r for r in goal_rows if _is_unmatched(r, bank_refs)]
        comparison.reviewed_count = sum(1 for r in unmatched if r.review_tag is not None)
        comparison.unreviewed_count = len(unmatched) - comparison.reviewed_count
        return comparison
