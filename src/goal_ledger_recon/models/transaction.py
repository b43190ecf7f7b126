"""Data models for ledger transactions, matches and batches."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

FUND_CODES = ("XUMMF", "XUBF", "XUDEF", "XUREF")

REVIEW_TAG_SET_VERSION = 1


class TransactionSide(str, Enum):
    """Which ledger a transaction lives on."""

    BANK = "BANK"
    GOAL = "GOAL"


class TransactionType(str, Enum):
    """Transaction type as reported by both ledgers."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    REDEMPTION = "REDEMPTION"
    SWITCH = "SWITCH"

    @property
    def opposite(self) -> Optional["TransactionType"]:
        """Offsetting type used for reversal detection."""
        if self is TransactionType.DEPOSIT:
            return TransactionType.WITHDRAWAL
        if self is TransactionType.WITHDRAWAL:
            return TransactionType.DEPOSIT
        return None


class ReconciliationStatus(str, Enum):
    """Reconciliation status of a single transaction."""

    PENDING = "PENDING"
    MATCHED = "MATCHED"
    AUTO_APPROVED = "AUTO_APPROVED"
    VARIANCE_DETECTED = "VARIANCE_DETECTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    MISSING_IN_FUND = "MISSING_IN_FUND"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (ReconciliationStatus.APPROVED, ReconciliationStatus.REJECTED)


class MatchType(str, Enum):
    """How a match was found."""

    EXACT = "EXACT"
    AMOUNT = "AMOUNT"
    SPLIT_BANK_TO_FUND = "SPLIT_BANK_TO_FUND"
    SPLIT_FUND_TO_BANK = "SPLIT_FUND_TO_BANK"
    MANUAL = "MANUAL"

    @property
    def is_split(self) -> bool:
        return self in (MatchType.SPLIT_BANK_TO_FUND, MatchType.SPLIT_FUND_TO_BANK)


class ReviewTag(str, Enum):
    """Closed set of variance review classifications."""

    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    NO_ACTION_NEEDED = "NO_ACTION_NEEDED"
    MISSING_IN_BANK = "MISSING_IN_BANK"
    MISSING_IN_FUND = "MISSING_IN_FUND"
    TIMING_DIFFERENCE = "TIMING_DIFFERENCE"
    AMOUNT_DISCREPANCY = "AMOUNT_DISCREPANCY"
    DATA_ENTRY_ERROR = "DATA_ENTRY_ERROR"
    UNDER_INVESTIGATION = "UNDER_INVESTIGATION"
    REVERSAL_NETTED = "REVERSAL_NETTED"
    NEEDS_INVESTIGATION = "NEEDS_INVESTIGATION"


class ProcessingStatus(str, Enum):
    """Lifecycle of a reconciliation batch run."""

    QUEUED = "QUEUED"
    PARSING = "PARSING"
    VALIDATING = "VALIDATING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class FundAmounts:
    """Per-fund split of a transaction total."""

    xummf: Decimal = Decimal("0")
    xubf: Decimal = Decimal("0")
    xudef: Decimal = Decimal("0")
    xuref: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.xummf + self.xubf + self.xudef + self.xuref

    def as_dict(self) -> dict[str, Decimal]:
        """Amounts keyed by fund code, in ``FUND_CODES`` order."""
        return {code: getattr(self, code.lower()) for code in FUND_CODES}


@dataclass(frozen=True)
class MatchInfo:
    """
    Immutable record attached to matched transactions.

    For split matches ``bank_total`` and ``goal_txn_total`` carry the
    aggregated sums of each side.
    """

    match_type: MatchType
    confidence: float
    matched_bank_ids: frozenset[str]
    matched_goal_txn_ids: frozenset[str]
    bank_total: Decimal
    goal_txn_total: Decimal
    match_id: Optional[int] = None
    matched_by: str = "system"
    matched_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def amount_difference(self) -> Decimal:
        return abs(self.bank_total - self.goal_txn_total)

    def to_dict(self) -> dict:
        return {
            "matchId": self.match_id,
            "matchType": self.match_type.value,
            "confidence": round(self.confidence, 4),
            "matchedBankIds": sorted(self.matched_bank_ids),
            "matchedGoalTxnIds": sorted(self.matched_goal_txn_ids),
            "bankTotal": float(self.bank_total),
            "goalTxnTotal": float(self.goal_txn_total),
            "matchedBy": self.matched_by,
        }


@dataclass
class BankTransaction:
    """One bank-reported money movement."""

    id: str
    goal_number: str
    transaction_date: date
    transaction_type: TransactionType
    total_amount: Decimal
    account_number: Optional[str] = None
    source_transaction_id: Optional[str] = None
    fund_amounts: FundAmounts = field(default_factory=FundAmounts)

    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING
    match_info: Optional[MatchInfo] = None

    # Review fields
    review_tag: Optional[ReviewTag] = None
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    reversal_partner_id: Optional[str] = None
    variance_resolved: bool = False

    @property
    def key(self) -> str:
        return self.id

    @property
    def is_matched(self) -> bool:
        return self.match_info is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goalNumber": self.goal_number,
            "accountNumber": self.account_number,
            "sourceTransactionId": self.source_transaction_id,
            "transactionDate": self.transaction_date.isoformat(),
            "transactionType": self.transaction_type.value,
            "totalAmount": float(self.total_amount),
            "fundAmounts": {k: float(v) for k, v in self.fund_amounts.as_dict().items()},
            "reconciliationStatus": self.reconciliation_status.value,
            "matchInfo": self.match_info.to_dict() if self.match_info else None,
            "reviewTag": self.review_tag.value if self.review_tag else None,
            "reviewNotes": self.review_notes,
            "reviewedBy": self.reviewed_by,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reversalPartnerId": self.reversal_partner_id,
            "varianceResolved": self.variance_resolved,
        }


@dataclass
class GoalTransaction:
    """
    One internally recorded unit transaction, aggregated under a
    goal transaction code across the underlying per-fund postings.
    """

    goal_transaction_code: str
    goal_number: str
    transaction_date: date
    transaction_type: TransactionType
    total_amount: Decimal
    account_number: Optional[str] = None
    transaction_id: Optional[str] = None
    fund_amounts: FundAmounts = field(default_factory=FundAmounts)
    fund_transaction_ids: list[str] = field(default_factory=list)

    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING
    match_info: Optional[MatchInfo] = None

    # Review fields
    review_tag: Optional[ReviewTag] = None
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    variance_resolved: bool = False

    @property
    def key(self) -> str:
        return self.goal_transaction_code

    @property
    def is_matched(self) -> bool:
        return self.match_info is not None

    def to_dict(self) -> dict:
        return {
            "goalTransactionCode": self.goal_transaction_code,
            "goalNumber": self.goal_number,
            "accountNumber": self.account_number,
            "transactionId": self.transaction_id,
            "transactionDate": self.transaction_date.isoformat(),
            "transactionType": self.transaction_type.value,
            "totalAmount": float(self.total_amount),
            "fundAmounts": {k: float(v) for k, v in self.fund_amounts.as_dict().items()},
            "fundTransactionIds": list(self.fund_transaction_ids),
            "reconciliationStatus": self.reconciliation_status.value,
            "matchInfo": self.match_info.to_dict() if self.match_info else None,
            "reviewTag": self.review_tag.value if self.review_tag else None,
            "reviewNotes": self.review_notes,
            "reviewedBy": self.reviewed_by,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "varianceResolved": self.variance_resolved,
        }


@dataclass(frozen=True)
class ReversalPair:
    """Symmetric link between two offsetting bank transactions."""

    first_id: str
    second_id: str
    linked_by: str
    linked_at: datetime

    def partner_of(self, transaction_id: str) -> str:
        if transaction_id == self.first_id:
            return self.second_id
        if transaction_id == self.second_id:
            return self.first_id
        raise KeyError(transaction_id)


@dataclass(frozen=True)
class StatusChange:
    """Audit record of one status transition."""

    side: TransactionSide
    transaction_id: str
    from_status: ReconciliationStatus
    to_status: ReconciliationStatus
    actor: str
    changed_at: datetime
    reason: Optional[str] = None


@dataclass
class ReconciliationBatch:
    """One run of the batch runner."""

    batch_number: str
    processing_status: ProcessingStatus = ProcessingStatus.QUEUED
    total_records: int = 0
    processed_records: int = 0
    total_matched: int = 0
    total_unmatched: int = 0
    auto_approved_count: int = 0
    manual_review_count: int = 0
    failed_goals: int = 0
    uploaded_by: str = "system"
    uploaded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "batchNumber": self.batch_number,
            "processingStatus": self.processing_status.value,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "totalMatched": self.total_matched,
            "totalUnmatched": self.total_unmatched,
            "autoApprovedCount": self.auto_approved_count,
            "manualReviewCount": self.manual_review_count,
            "failedGoals": self.failed_goals,
            "uploadedBy": self.uploaded_by,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
