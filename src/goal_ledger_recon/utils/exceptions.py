"""Custom exceptions for the reconciliation engine."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class ValidationError(ReconciliationError):
    """Malformed input to a contract call (unknown tag, missing goal number)."""

    pass


class TransactionNotFound(ValidationError):
    """Referenced transaction does not exist in the ledger."""

    def __init__(self, side: str, transaction_id: str):
        super().__init__(f"{side} transaction not found: {transaction_id}")
        self.side = side
        self.transaction_id = transaction_id


class InvalidTransition(ReconciliationError):
    """Status change that violates the reconciliation state machine."""

    def __init__(
        self,
        current: str,
        requested: str,
        transaction_id: Optional[str] = None,
    ):
        target = f" for {transaction_id}" if transaction_id else ""
        super().__init__(f"Cannot move from {current} to {requested}{target}")
        self.current = current
        self.requested = requested
        self.transaction_id = transaction_id


class ConcurrencyConflict(ReconciliationError):
    """A goal lease is already held by another batch worker."""

    def __init__(self, goal_number: str, holder: Optional[str] = None):
        held_by = f" by {holder}" if holder else ""
        super().__init__(f"Goal {goal_number} is locked{held_by}")
        self.goal_number = goal_number
        self.holder = holder


class PersistenceFailure(ReconciliationError):
    """Committing a goal's match results failed."""

    def __init__(self, goal_number: str, reason: str):
        super().__init__(f"Failed to persist results for goal {goal_number}: {reason}")
        self.goal_number = goal_number
        self.reason = reason
