"""
Reversal pair detection and linking.

A reversal pair is two bank transactions on the same goal that cancel each
other out, typically a deposit and a later withdrawal of the same amount.
Linked pairs are taken out of fund-ledger matching.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import select

from ..models.results import ReversalCandidates
from ..models.transaction import ReconciliationStatus, ReviewTag
from ..storage.database import Database
from ..storage.repository import LedgerRepository
from ..storage.tables import BankTransactionRow, utc_now
from ..utils.exceptions import InvalidTransition, ValidationError
from .status import ReconciliationStatusMachine

logger = logging.getLogger(__name__)


class ReversalLinker:
    """Finds, links and unlinks reversal pairs among bank transactions."""

    def __init__(
        self,
        database: Database,
        status_machine: Optional[ReconciliationStatusMachine] = None,
        window_days: int = 30,
    ):
        self.database = database
        self.status_machine = status_machine or ReconciliationStatusMachine()
        self.window_days = window_days

    def find_candidates(
        self,
        transaction_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> ReversalCandidates:
        """
        Rank possible reversal partners for a bank transaction.

        Candidates are on the same goal, of the opposite type, with the same
        absolute amount, still unmatched and unpaired, and fall inside the
        window (``window_days`` either side of the source by default).
        Ranked by distance in days, then by id.
        """
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            source = repo.get_bank_row(transaction_id)
            source_txn = repo.to_bank(source)

            opposite = source.transaction_type.opposite
            if opposite is None:
                logger.debug(f"{transaction_id}: {source.transaction_type.value} has no opposite type")
                return ReversalCandidates(source_transaction=source_txn, candidates=[])

            window = timedelta(days=self.window_days)
            start_date = start_date or source.transaction_date - window
            end_date = end_date or source.transaction_date + window

            stmt = (
                select(BankTransactionRow)
                .where(
                    BankTransactionRow.goal_number == source.goal_number,
                    BankTransactionRow.id != source.id,
                    BankTransactionRow.transaction_type == opposite,
                    BankTransactionRow.match_id.is_(None),
                    BankTransactionRow.reversal_partner_id.is_(None),
                    BankTransactionRow.reconciliation_status.notin_(
                        [ReconciliationStatus.APPROVED, ReconciliationStatus.REJECTED]
                    ),
                    BankTransactionRow.transaction_date >= start_date,
                    BankTransactionRow.transaction_date <= end_date,
                )
                .order_by(BankTransactionRow.id)
            )

            amount = abs(Decimal(source.total_amount))
            rows = [
                row
                for row in session.scalars(stmt)
                if abs(Decimal(row.total_amount)) == amount
                and row.review_tag is not ReviewTag.REVERSAL_NETTED
            ]
            rows.sort(key=lambda r: (abs((r.transaction_date - source.transaction_date).days), r.id))
            candidates = [repo.to_bank(row) for row in rows]

        logger.debug(f"{transaction_id}: {len(candidates)} reversal candidates")
        return ReversalCandidates(source_transaction=source_txn, candidates=candidates)

    def link(self, first_id: str, second_id: str, linked_by: str) -> None:
        """
        Record a symmetric reversal pair.

        Both transactions keep their pre-link status for ``unlink``, are
        tagged REVERSAL_NETTED and move to MATCHED.

        Raises:
            ValidationError: Self-link, different goals, an existing partner
                or an existing match
            InvalidTransition: If either transaction is terminal
        """
        if first_id == second_id:
            raise ValidationError("A transaction cannot be linked to itself")
        if not linked_by:
            raise ValidationError("linked_by is required")

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            first = repo.get_bank_row(first_id)
            second = repo.get_bank_row(second_id)

            for row in (first, second):
                if row.reconciliation_status.is_terminal:
                    raise InvalidTransition(
                        row.reconciliation_status.value,
                        ReconciliationStatus.MATCHED.value,
                        row.id,
                    )
            if first.goal_number != second.goal_number:
                raise ValidationError(
                    f"Reversal pair must share a goal: {first.goal_number} != {second.goal_number}"
                )
            for row in (first, second):
                if row.reversal_partner_id is not None:
                    raise ValidationError(f"{row.id} already has reversal partner {row.reversal_partner_id}")
                if row.match_id is not None:
                    raise ValidationError(f"{row.id} is already matched")

            now = utc_now()
            for row, partner in ((first, second), (second, first)):
                row.pre_link_status = row.reconciliation_status
                row.reversal_partner_id = partner.id
                row.reversal_linked_by = linked_by
                row.reversal_linked_at = now
                row.review_tag = ReviewTag.REVERSAL_NETTED
                row.reviewed_by = linked_by
                row.reviewed_at = now
                self.status_machine.transition(
                    repo,
                    row,
                    ReconciliationStatus.MATCHED,
                    linked_by,
                    f"Reversal pair with {partner.id}",
                )

        logger.info(f"Linked reversal pair {first_id} <-> {second_id} by {linked_by}")

    def unlink(self, transaction_id: str, unlinked_by: str = "system") -> str:
        """
        Remove the pair ``transaction_id`` belongs to and restore both sides.

        Returns:
            The id of the former partner

        Raises:
            InvalidTransition: If either side was approved or rejected after linking
        """
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_bank_row(transaction_id)
            if row.reversal_partner_id is None:
                raise ValidationError(f"{transaction_id} has no reversal partner")
            partner = repo.get_bank_row(row.reversal_partner_id)

            for member in (row, partner):
                restore_to = member.pre_link_status or ReconciliationStatus.PENDING
                reason = f"Reversal pair with {member.reversal_partner_id} removed"

                member.reversal_partner_id = None
                member.reversal_linked_by = None
                member.reversal_linked_at = None
                member.pre_link_status = None
                if member.review_tag is ReviewTag.REVERSAL_NETTED:
                    member.review_tag = None
                    member.reviewed_by = None
                    member.reviewed_at = None

                # MATCHED and MANUAL_REVIEW only reach a pre-link status via PENDING
                if member.reconciliation_status not in (ReconciliationStatus.PENDING, restore_to):
                    self.status_machine.transition(
                        repo, member, ReconciliationStatus.PENDING, unlinked_by, reason
                    )
                self.status_machine.transition(repo, member, restore_to, unlinked_by, reason)

            partner_id = partner.id

        logger.info(f"Unlinked reversal pair {transaction_id} <-> {partner_id} by {unlinked_by}")
        return partner_id

    def pair_info(self, transaction_id: str) -> Optional[dict]:
        """Summary of the partner of ``transaction_id``, or None when unpaired."""
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_bank_row(transaction_id)
            if row.reversal_partner_id is None:
                return None
            partner = repo.get_bank_row(row.reversal_partner_id)
            info = repo.to_bank(partner).to_dict()
            info["linkedBy"] = row.reversal_linked_by
            info["linkedAt"] = row.reversal_linked_at.isoformat() if row.reversal_linked_at else None
            return info
