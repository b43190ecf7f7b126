"""Human-created matches and their removal."""

from decimal import Decimal
from typing import Optional, Sequence
import logging

from ..models.results import ManualMatchResult
from ..models.transaction import MatchInfo, MatchType, ReconciliationStatus
from ..storage.database import Database
from ..storage.repository import LedgerRepository, LedgerRow, row_key
from ..storage.tables import MatchRow, utc_now
from ..utils.exceptions import InvalidTransition, TransactionNotFound, ValidationError
from .status import ReconciliationStatusMachine

logger = logging.getLogger(__name__)


def _require_unique(ids: Sequence[str], label: str) -> list[str]:
    ids = list(ids or [])
    if len(set(ids)) != len(ids):
        raise ValidationError(f"Duplicate {label} ids supplied")
    return ids


class ManualMatcher:
    """Creates and removes matches on behalf of a reviewer."""

    def __init__(
        self,
        database: Database,
        status_machine: Optional[ReconciliationStatusMachine] = None,
    ):
        self.database = database
        self.status_machine = status_machine or ReconciliationStatusMachine()

    def create_manual_match(
        self,
        bank_ids: Sequence[str],
        goal_codes: Sequence[str],
        matched_by: str,
    ) -> ManualMatchResult:
        """
        Match the given bank and goal transactions as one MANUAL group.

        Args:
            bank_ids: Bank transaction ids (at least one)
            goal_codes: Goal transaction codes (at least one)
            matched_by: Reviewer creating the match

        Returns:
            Member counts and the totals of each side

        Raises:
            ValidationError: Unknown ids, mixed goals, or rows already matched
                or reversal-linked
            InvalidTransition: If any member is in a terminal status
        """
        bank_ids = _require_unique(bank_ids, "bank")
        goal_codes = _require_unique(goal_codes, "goal transaction")
        if not bank_ids or not goal_codes:
            raise ValidationError("A manual match needs at least one bank and one goal transaction")
        if not matched_by:
            raise ValidationError("matched_by is required")

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            bank_rows = [repo.get_bank_row(i) for i in bank_ids]
            goal_rows = [repo.get_goal_row(c) for c in goal_codes]
            members: list[LedgerRow] = [*bank_rows, *goal_rows]

            goals = {row.goal_number for row in members}
            if len(goals) != 1:
                raise ValidationError(
                    f"Manual match members span several goals: {', '.join(sorted(goals))}"
                )
            for row in members:
                if row.reconciliation_status.is_terminal:
                    raise InvalidTransition(
                        row.reconciliation_status.value,
                        ReconciliationStatus.MATCHED.value,
                        row_key(row),
                    )
                if row.match_id is not None:
                    raise ValidationError(f"{row_key(row)} is already matched")
            for row in bank_rows:
                if row.reversal_partner_id is not None:
                    raise ValidationError(f"{row.id} is linked as a reversal")

            bank_total = sum((Decimal(r.total_amount) for r in bank_rows), Decimal("0"))
            goal_total = sum((Decimal(r.total_amount) for r in goal_rows), Decimal("0"))
            match = MatchInfo(
                match_type=MatchType.MANUAL,
                confidence=1.0,
                matched_bank_ids=frozenset(bank_ids),
                matched_goal_txn_ids=frozenset(goal_codes),
                bank_total=bank_total,
                goal_txn_total=goal_total,
                matched_by=matched_by,
            )
            match_row = repo.create_match(goals.pop(), match, matched_by)

            for row in members:
                attach_match(row, match_row)
                self.status_machine.transition(
                    repo, row, ReconciliationStatus.MATCHED, matched_by, "Manual match"
                )

            result = ManualMatchResult(
                match_id=match_row.id,
                matched_bank_count=len(bank_rows),
                matched_goal_count=len(goal_rows),
                bank_total=bank_total,
                goal_total=goal_total,
            )

        logger.info(
            f"Manual match {result.match_id} by {matched_by}: "
            f"{result.matched_bank_count} bank, {result.matched_goal_count} goal transactions"
        )
        return result

    def remove_manual_match(self, ids: Sequence[str], removed_by: str) -> int:
        """
        Dissolve the matches referenced by ``ids``.

        Ids may be bank ids or goal transaction codes. Every member of each
        referenced match returns to PENDING; the match row is kept, stamped
        with ``removed_at``/``removed_by``.

        Returns:
            Number of transactions unmatched
        """
        if not ids:
            raise ValidationError("No transaction ids supplied")
        if not removed_by:
            raise ValidationError("removed_by is required")

        unmatched = 0
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            match_ids: list[int] = []
            for transaction_id in ids:
                row = repo.find_row(transaction_id)
                if row is None:
                    raise TransactionNotFound("BANK/GOAL", transaction_id)
                if row.match_id is None:
                    raise ValidationError(f"{transaction_id} is not matched")
                if row.match_id not in match_ids:
                    match_ids.append(row.match_id)

            for match_id in match_ids:
                match_row = repo.get_match(match_id)
                bank_rows, goal_rows = repo.match_members(match_id)
                for row in [*bank_rows, *goal_rows]:
                    detach_match(row)
                    self.status_machine.transition(
                        repo,
                        row,
                        ReconciliationStatus.PENDING,
                        removed_by,
                        f"Match {match_id} removed",
                    )
                    unmatched += 1
                match_row.removed_by = removed_by
                match_row.removed_at = utc_now()

        logger.info(f"Removed {len(match_ids)} matches by {removed_by}: {unmatched} transactions unmatched")
        return unmatched


def attach_match(row: LedgerRow, match_row: MatchRow) -> None:
    row.match_id = match_row.id
    row.matched_at = match_row.matched_at
    row.match_score = round(match_row.confidence * 100)


def detach_match(row: LedgerRow) -> None:
    row.match_id = None
    row.matched_at = None
    row.match_score = None
