"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ConfigurationError,
    ValidationError,
    TransactionNotFound,
    InvalidTransition,
    ConcurrencyConflict,
    PersistenceFailure,
)

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "ValidationError",
    "TransactionNotFound",
    "InvalidTransition",
    "ConcurrencyConflict",
    "PersistenceFailure",
]
