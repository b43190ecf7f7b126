"""
Reconciliation status state machine.

Every status change of a ledger row goes through
``ReconciliationStatusMachine.transition`` so that invalid moves are refused
before the row is touched and every accepted move lands in the audit trail.
"""

from typing import Optional
import logging

from ..models.transaction import (
    MatchInfo,
    MatchType,
    ReconciliationStatus,
    StatusChange,
)
from ..matching.tolerance import ToleranceEvaluator
from ..storage.repository import LedgerRepository, LedgerRow, row_key, row_side
from ..storage.tables import utc_now
from ..utils.exceptions import InvalidTransition

logger = logging.getLogger(__name__)

S = ReconciliationStatus

TRANSITIONS: dict[ReconciliationStatus, frozenset[ReconciliationStatus]] = {
    S.PENDING: frozenset(
        {S.MATCHED, S.AUTO_APPROVED, S.VARIANCE_DETECTED, S.MANUAL_REVIEW, S.MISSING_IN_FUND}
    ),
    S.MATCHED: frozenset({S.APPROVED, S.REJECTED, S.MANUAL_REVIEW, S.PENDING}),
    S.AUTO_APPROVED: frozenset({S.APPROVED, S.REJECTED, S.MANUAL_REVIEW, S.PENDING}),
    S.VARIANCE_DETECTED: frozenset({S.APPROVED, S.REJECTED, S.MANUAL_REVIEW, S.PENDING}),
    S.MISSING_IN_FUND: frozenset(
        {
            S.MATCHED,
            S.AUTO_APPROVED,
            S.VARIANCE_DETECTED,
            S.MANUAL_REVIEW,
            S.APPROVED,
            S.REJECTED,
            S.PENDING,
        }
    ),
    S.MANUAL_REVIEW: frozenset({S.MATCHED, S.APPROVED, S.REJECTED, S.PENDING}),
    S.APPROVED: frozenset(),
    S.REJECTED: frozenset(),
}


class ReconciliationStatusMachine:
    """Validates, applies and records status transitions."""

    def __init__(self, evaluator: Optional[ToleranceEvaluator] = None):
        self.evaluator = evaluator or ToleranceEvaluator()

    @staticmethod
    def can_transition(current: ReconciliationStatus, requested: ReconciliationStatus) -> bool:
        return requested in TRANSITIONS.get(current, frozenset())

    def transition(
        self,
        repo: LedgerRepository,
        row: LedgerRow,
        requested: ReconciliationStatus,
        actor: str,
        reason: Optional[str] = None,
    ) -> Optional[StatusChange]:
        """
        Move ``row`` to ``requested`` and write the audit record.

        Args:
            repo: Repository bound to the caller's session
            row: Bank or goal transaction row
            requested: Target status
            actor: User or process making the change
            reason: Free-text reason stored in the audit trail

        Returns:
            The recorded change, or None when the row is already in
            ``requested`` (no-op)

        Raises:
            InvalidTransition: If the move is not allowed; the row is untouched
        """
        current = row.reconciliation_status
        transaction_id = row_key(row)

        if current.is_terminal:
            raise InvalidTransition(current.value, requested.value, transaction_id)
        if current == requested:
            return None
        if not self.can_transition(current, requested):
            raise InvalidTransition(current.value, requested.value, transaction_id)

        change = StatusChange(
            side=row_side(row),
            transaction_id=transaction_id,
            from_status=current,
            to_status=requested,
            actor=actor,
            changed_at=utc_now(),
            reason=reason,
        )
        row.reconciliation_status = requested
        repo.add_history(change)

        logger.debug(
            f"{change.side.value} {transaction_id}: {current.value} -> {requested.value} by {actor}"
        )
        return change

    def status_for_match(self, match: MatchInfo) -> ReconciliationStatus:
        """
        Status given to every member of a new match.

        Zero difference is MATCHED; an EXACT pairing outside tolerance is a
        VARIANCE_DETECTED; any other nonzero difference is AUTO_APPROVED.
        """
        if match.match_type is MatchType.MANUAL:
            return S.MATCHED
        if match.amount_difference == 0:
            return S.MATCHED
        if match.match_type is MatchType.EXACT and not self.evaluator.within_tolerance(
            match.bank_total, match.goal_txn_total
        ):
            return S.VARIANCE_DETECTED
        return S.AUTO_APPROVED
