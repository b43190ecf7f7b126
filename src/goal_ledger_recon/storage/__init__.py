"""Ledger store: SQLAlchemy tables, sessions and repository."""

from .database import Base, Database
from .repository import LedgerRepository, row_key, row_reference, row_side
from .tables import (
    BankTransactionRow,
    GoalLeaseRow,
    GoalTransactionRow,
    MatchRow,
    ReconciliationBatchRow,
    StatusHistoryRow,
)

__all__ = [
    "Base",
    "Database",
    "LedgerRepository",
    "row_key",
    "row_reference",
    "row_side",
    "BankTransactionRow",
    "GoalLeaseRow",
    "GoalTransactionRow",
    "MatchRow",
    "ReconciliationBatchRow",
    "StatusHistoryRow",
]
