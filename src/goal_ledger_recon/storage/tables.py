"""
Ledger store tables.

Tables:
- bank_transactions: bank-reported movements
- goal_transactions: goal-level aggregates of per-fund postings
- matches: match records (kept after removal for audit)
- status_history: immutable audit trail of status transitions
- goal_leases: goal-level mutual exclusion for batch workers
- reconciliation_batches: one row per batch run
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..models.transaction import (
    MatchType,
    ProcessingStatus,
    ReconciliationStatus,
    ReviewTag,
    TransactionSide,
    TransactionType,
)
from .database import Base


def utc_now() -> datetime:
    """Naive UTC timestamp; stored without zone so SQLite and PostgreSQL agree."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls, name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, native_enum=False, length=40)


AMOUNT = Numeric(18, 2)


class BankTransactionRow(Base):
    """One bank-reported money movement."""

    __tablename__ = "bank_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    goal_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source_transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(_enum(TransactionType, "transaction_type_enum"))
    total_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    xummf_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xubf_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xudef_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xuref_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))

    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        _enum(ReconciliationStatus, "reconciliation_status_enum"),
        default=ReconciliationStatus.PENDING,
        index=True,
    )
    match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("matches.id"), nullable=True, index=True)
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    match_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Review fields
    review_tag: Mapped[Optional[ReviewTag]] = mapped_column(_enum(ReviewTag, "review_tag_enum"), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Reversal pairing
    reversal_partner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bank_transactions.id"), nullable=True, unique=True
    )
    reversal_linked_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reversal_linked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    pre_link_status: Mapped[Optional[ReconciliationStatus]] = mapped_column(
        _enum(ReconciliationStatus, "reconciliation_status_enum"), nullable=True
    )

    # Variance resolution
    variance_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_bank_goal_date", "goal_number", "transaction_date"),
    )


class GoalTransactionRow(Base):
    """Goal transaction aggregated under a goal transaction code."""

    __tablename__ = "goal_transactions"

    goal_transaction_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    goal_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(_enum(TransactionType, "transaction_type_enum"))
    total_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    xummf_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xubf_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xudef_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    xuref_amount: Mapped[Decimal] = mapped_column(AMOUNT, default=Decimal("0"))
    fund_transaction_ids: Mapped[list] = mapped_column(JSON, default=list)

    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        _enum(ReconciliationStatus, "reconciliation_status_enum"),
        default=ReconciliationStatus.PENDING,
        index=True,
    )
    match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("matches.id"), nullable=True, index=True)
    matched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    match_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Review fields
    review_tag: Mapped[Optional[ReviewTag]] = mapped_column(_enum(ReviewTag, "review_tag_enum"), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Variance resolution
    variance_resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_goal_txn_goal_date", "goal_number", "transaction_date"),
    )


class MatchRow(Base):
    """
    Match record linking bank and goal transactions.

    Members point at the match through their ``match_id``; the id lists here
    are a snapshot kept for audit once a match is removed.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    goal_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    match_type: Mapped[MatchType] = mapped_column(_enum(MatchType, "match_type_enum"))
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    bank_total: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    goal_txn_total: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    bank_ids: Mapped[list] = mapped_column(JSON, default=list)
    goal_codes: Mapped[list] = mapped_column(JSON, default=list)
    matched_by: Mapped[str] = mapped_column(String(128), default="system")
    matched_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    removed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class StatusHistoryRow(Base):
    """Immutable audit trail of status transitions."""

    __tablename__ = "status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    side: Mapped[TransactionSide] = mapped_column(_enum(TransactionSide, "transaction_side_enum"))
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    from_status: Mapped[ReconciliationStatus] = mapped_column(
        _enum(ReconciliationStatus, "reconciliation_status_enum")
    )
    to_status: Mapped[ReconciliationStatus] = mapped_column(
        _enum(ReconciliationStatus, "reconciliation_status_enum")
    )
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class GoalLeaseRow(Base):
    """Lease held by a batch worker while it processes one goal."""

    __tablename__ = "goal_leases"

    goal_number: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class ReconciliationBatchRow(Base):
    """One run of the batch runner."""

    __tablename__ = "reconciliation_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        _enum(ProcessingStatus, "processing_status_enum"), default=ProcessingStatus.QUEUED
    )
    total_records: Mapped[int] = mapped_column(Integer, default=0)
    processed_records: Mapped[int] = mapped_column(Integer, default=0)
    total_matched: Mapped[int] = mapped_column(Integer, default=0)
    total_unmatched: Mapped[int] = mapped_column(Integer, default=0)
    auto_approved_count: Mapped[int] = mapped_column(Integer, default=0)
    manual_review_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_goals: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[list] = mapped_column(JSON, default=list)
    uploaded_by: Mapped[str] = mapped_column(String(128), default="system")
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
