"""Structured result objects returned by the engine's contracts."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from .transaction import (
    REVIEW_TAG_SET_VERSION,
    BankTransaction,
    GoalTransaction,
    MatchInfo,
    MatchType,
    ReconciliationStatus,
)


@dataclass(frozen=True)
class BatchError:
    """One failure recorded while processing a batch."""

    kind: str  # ConcurrencyConflict, PersistenceFailure, ...
    message: str
    goal_number: Optional[str] = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "goalNumber": self.goal_number, "message": self.message}


@dataclass(frozen=True)
class SplitSkip:
    """A split target not searched because its candidate pool was too large."""

    target_id: str
    match_type: MatchType
    transaction_date: date
    candidate_count: int

    def to_dict(self) -> dict:
        return {
            "targetId": self.target_id,
            "matchType": self.match_type.value,
            "transactionDate": self.transaction_date.isoformat(),
            "candidateCount": self.candidate_count,
        }


@dataclass
class MatchBreakdown:
    """Match counts per pass."""

    exact: int = 0
    amount: int = 0
    split: int = 0
    manual: int = 0

    def add(self, match: MatchInfo) -> None:
        if match.match_type is MatchType.EXACT:
            self.exact += 1
        elif match.match_type is MatchType.AMOUNT:
            self.amount += 1
        elif match.match_type.is_split:
            self.split += 1
        else:
            self.manual += 1

    def merge(self, other: "MatchBreakdown") -> None:
        self.exact += other.exact
        self.amount += other.amount
        self.split += other.split
        self.manual += other.manual

    @property
    def total(self) -> int:
        return self.exact + self.amount + self.split + self.manual

    def to_dict(self) -> dict:
        return {
            "exact": self.exact,
            "amount": self.amount,
            "split": self.split,
            "manual": self.manual,
        }


@dataclass
class GoalMatchResult:
    """Outcome of the three matching passes over one goal."""

    goal_number: str
    matches: list[MatchInfo] = field(default_factory=list)
    unmatched_bank: list[BankTransaction] = field(default_factory=list)
    unmatched_goal: list[GoalTransaction] = field(default_factory=list)
    split_skipped: list[SplitSkip] = field(default_factory=list)

    @property
    def breakdown(self) -> MatchBreakdown:
        breakdown = MatchBreakdown()
        for match in self.matches:
            breakdown.add(match)
        return breakdown


@dataclass
class GoalApplyOutcome:
    """Counts written while committing one goal's results."""

    goal_number: str
    matches: int = 0
    updated: int = 0
    status_counts: dict[ReconciliationStatus, int] = field(default_factory=dict)
    breakdown: MatchBreakdown = field(default_factory=MatchBreakdown)
    records: int = 0
    split_skipped: list[SplitSkip] = field(default_factory=list)

    def count_status(self, status: ReconciliationStatus, n: int = 1) -> None:
        self.status_counts[status] = self.status_counts.get(status, 0) + n


@dataclass
class SmartMatchingResult:
    """Result of one run_batch / run_matching call."""

    total_goals: int
    processed_goals: int
    goals_in_batch: int
    has_more: bool
    next_offset: Optional[int]
    match_breakdown: MatchBreakdown
    total_matches: int = 0
    total_updated: int = 0
    goals_with_matches: int = 0
    failed_goals: list[str] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    split_skipped: list[SplitSkip] = field(default_factory=list)
    batch_number: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    applied: bool = True

    @property
    def success(self) -> bool:
        """False only when every goal of a non-empty window failed."""
        return not self.failed_goals or len(self.failed_goals) < self.goals_in_batch

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "partial": self.partial,
            "applied": self.applied,
            "totalGoals": self.total_goals,
            "processedGoals": self.processed_goals,
            "goalsInBatch": self.goals_in_batch,
            "goalsWithMatches": self.goals_with_matches,
            "hasMore": self.has_more,
            "nextOffset": self.next_offset,
            "totalMatches": self.total_matches,
            "totalUpdated": self.total_updated,
            "matchBreakdown": self.match_breakdown.to_dict(),
            "failedGoals": list(self.failed_goals),
            "errors": [e.to_dict() for e in self.errors],
            "splitSkipped": [s.to_dict() for s in self.split_skipped],
            "batchNumber": self.batch_number,
            "dateRange": {
                "startDate": self.start_date.isoformat() if self.start_date else None,
                "endDate": self.end_date.isoformat() if self.end_date else None,
            },
        }


@dataclass
class BankReconciliationResult:
    """Result of the bank-ledger-only reconciliation variant."""

    processed: int = 0
    matched: int = 0
    unmatched: int = 0
    auto_approved: int = 0
    manual_review: int = 0
    errors: list[BatchError] = field(default_factory=list)
    total_pending: int = 0
    has_more: bool = False
    batch_number: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "autoApproved": self.auto_approved,
            "manualReview": self.manual_review,
            "errors": [e.to_dict() for e in self.errors],
            "totalPending": self.total_pending,
            "hasMore": self.has_more,
            "batchNumber": self.batch_number,
        }


@dataclass
class GoalMatchingSummary:
    """Counts shown alongside one goal's transactions."""

    bank_count: int = 0
    goal_txn_count: int = 0
    matched_bank_count: int = 0
    unmatched_bank_count: int = 0
    matched_goal_txn_count: int = 0
    unmatched_goal_txn_count: int = 0
    exact_matches: int = 0
    amount_matches: int = 0
    split_matches: int = 0
    manual_matches: int = 0
    reviewed_count: int = 0
    pending_review_count: int = 0
    bank_total: Decimal = Decimal("0")
    goal_txn_total: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "bankCount": self.bank_count,
            "goalTxnCount": self.goal_txn_count,
            "matchedBankCount": self.matched_bank_count,
            "unmatchedBankCount": self.unmatched_bank_count,
            "matchedGoalTxnCount": self.matched_goal_txn_count,
            "unmatchedGoalTxnCount": self.unmatched_goal_txn_count,
            "exactMatches": self.exact_matches,
            "amountMatches": self.amount_matches,
            "splitMatches": self.split_matches,
            "manualMatches": self.manual_matches,
            "reviewedCount": self.reviewed_count,
            "pendingReviewCount": self.pending_review_count,
            "bankTotal": float(self.bank_total),
            "goalTxnTotal": float(self.goal_txn_total),
        }


@dataclass
class GoalTransactionsView:
    """Both ledgers for one goal with their match information."""

    goal_number: str
    bank_transactions: list[BankTransaction]
    goal_transactions: list[GoalTransaction]
    summary: GoalMatchingSummary
    preview_matches: list[MatchInfo] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "goalNumber": self.goal_number,
            "bankTransactions": [t.to_dict() for t in self.bank_transactions],
            "goalTransactions": [t.to_dict() for t in self.goal_transactions],
            "summary": self.summary.to_dict(),
            "previewMatches": [m.to_dict() for m in self.preview_matches],
        }


@dataclass
class ReversalCandidates:
    """Source transaction and ranked reversal candidates."""

    source_transaction: BankTransaction
    candidates: list[BankTransaction]

    def to_dict(self) -> dict:
        return {
            "sourceTransaction": self.source_transaction.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class GoalReviewStatus:
    """Review progress over one goal's unmatched transactions."""

    goal_number: str
    status: str  # NO_VARIANCES, PENDING, PARTIALLY_REVIEWED, FULLY_REVIEWED
    total_unmatched: int
    reviewed_count: int
    pending_count: int
    by_tag: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "goalNumber": self.goal_number,
            "status": self.status,
            "totalUnmatched": self.total_unmatched,
            "reviewedCount": self.reviewed_count,
            "pendingCount": self.pending_count,
            "byTag": dict(self.by_tag),
        }


@dataclass
class VarianceListing:
    """Unmatched transactions from both ledgers for the review queue."""

    data: list[dict[str, Any]]
    total_unmatched: int
    pending_review: int
    reviewed: int
    by_tag: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "data": list(self.data),
            "summary": {
                "totalUnmatched": self.total_unmatched,
                "pendingReview": self.pending_review,
                "reviewed": self.reviewed,
                "byTag": dict(self.by_tag),
                "tagSetVersion": REVIEW_TAG_SET_VERSION,
            },
        }


@dataclass(frozen=True)
class ResolutionDetail:
    """A reviewed variance found to be resolved by newer data."""

    id: str
    side: str
    goal_number: str
    transaction_id: Optional[str]
    amount: Decimal
    original_tag: str
    resolved_reason: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.side,
            "goalNumber": self.goal_number,
            "transactionId": self.transaction_id,
            "amount": float(self.amount),
            "originalTag": self.original_tag,
            "resolvedReason": self.resolved_reason,
        }


@dataclass
class ResolutionReport:
    """Result of a variance resolution detection run."""

    details: list[ResolutionDetail] = field(default_factory=list)

    @property
    def resolved(self) -> int:
        return len(self.details)

    @property
    def by_tag(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for detail in self.details:
            counts[detail.original_tag] = counts.get(detail.original_tag, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "resolved": self.resolved,
            "byTag": self.by_tag,
            "details": [d.to_dict() for d in self.details],
        }


@dataclass(frozen=True)
class ResolvedVariance:
    """A previously resolved variance as shown in the resolution report."""

    id: str
    side: str
    goal_number: str
    account_number: Optional[str]
    transaction_date: date
    transaction_type: str
    amount: Decimal
    transaction_id: Optional[str]
    original_tag: Optional[str]
    review_notes: Optional[str]
    resolved_at: Optional[datetime]
    resolved_reason: Optional[str]
    resolved_by: Optional[str]

    def to_dict(self) -> dict:
        return {
            "source": self.side,
            "id": self.id,
            "goalNumber": self.goal_number,
            "accountNumber": self.account_number,
            "transactionDate": self.transaction_date.isoformat(),
            "transactionType": self.transaction_type,
            "amount": float(self.amount),
            "sourceTransactionId": self.transaction_id,
            "originalTag": self.original_tag,
            "reviewNotes": self.review_notes,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolvedReason": self.resolved_reason,
            "resolvedBy": self.resolved_by,
        }


@dataclass
class ResolvedVariancesReport:
    """Resolved variances with totals by original tag and by ledger."""

    data: list[ResolvedVariance] = field(default_factory=list)

    @property
    def by_tag(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.data:
            if entry.original_tag:
                counts[entry.original_tag] = counts.get(entry.original_tag, 0) + 1
        return counts

    @property
    def by_source(self) -> dict[str, int]:
        bank = sum(1 for entry in self.data if entry.side == "BANK")
        return {"bank": bank, "goal": len(self.data) - bank}

    def to_dict(self) -> dict:
        return {
            "data": [entry.to_dict() for entry in self.data],
            "summary": {
                "totalResolved": len(self.data),
                "byTag": self.by_tag,
                "bySource": self.by_source,
            },
        }


@dataclass
class TagResolutionCounts:
    tagged: int = 0
    resolved: int = 0

    @property
    def pending(self) -> int:
        return self.tagged - self.resolved

    def to_dict(self) -> dict:
        return {"total": self.tagged, "resolved": self.resolved, "pending": self.pending}


@dataclass
class ResolutionStats:
    """Progress of automatic resolution per resolvable tag."""

    by_tag: dict[str, TagResolutionCounts] = field(default_factory=dict)

    @property
    def total_tagged(self) -> int:
        return sum(c.tagged for c in self.by_tag.values())

    @property
    def total_resolved(self) -> int:
        return sum(c.resolved for c in self.by_tag.values())

    def to_dict(self) -> dict:
        return {
            "totalTaggedForResolution": self.total_tagged,
            "totalResolved": self.total_resolved,
            "pendingResolution": self.total_tagged - self.total_resolved,
            "byTag": {tag: counts.to_dict() for tag, counts in self.by_tag.items()},
        }


@dataclass
class GoalComparison:
    """
    Bank versus goal ledger totals for one goal over a date range.

    ``status`` is MATCHED when both the deposit and the withdrawal totals
    agree within tolerance, VARIANCE otherwise. ``review_status`` tracks how
    far the goal's unmatched transactions have been tagged and is
    NOT_APPLICABLE for goals without a variance.
    """

    goal_number: str
    account_number: Optional[str] = None
    bank_deposits: Decimal = Decimal("0")
    goal_deposits: Decimal = Decimal("0")
    bank_deposit_count: int = 0
    goal_deposit_count: int = 0
    bank_withdrawals: Decimal = Decimal("0")
    goal_withdrawals: Decimal = Decimal("0")
    bank_withdrawal_count: int = 0
    goal_withdrawal_count: int = 0
    has_deposit_variance: bool = False
    has_withdrawal_variance: bool = False
    reviewed_count: int = 0
    unreviewed_count: int = 0

    @property
    def deposit_variance(self) -> Decimal:
        return self.bank_deposits - self.goal_deposits

    @property
    def withdrawal_variance(self) -> Decimal:
        return self.bank_withdrawals - self.goal_withdrawals

    @property
    def has_variance(self) -> bool:
        return self.has_deposit_variance or self.has_withdrawal_variance

    @property
    def status(self) -> str:
        return "VARIANCE" if self.has_variance else "MATCHED"

    @property
    def review_status(self) -> str:
        if not self.has_variance or self.reviewed_count + self.unreviewed_count == 0:
            return "NOT_APPLICABLE"
        if self.unreviewed_count == 0:
            return "REVIEWED"
        if self.reviewed_count > 0:
            return "PARTIALLY_REVIEWED"
        return "UNREVIEWED"

    def to_dict(self) -> dict:
        return {
            "goalNumber": self.goal_number,
            "accountNumber": self.account_number,
            "bankDeposits": float(self.bank_deposits),
            "goalTxnDeposits": float(self.goal_deposits),
            "depositVariance": float(self.deposit_variance),
            "depositBankCount": self.bank_deposit_count,
            "depositGoalTxnCount": self.goal_deposit_count,
            "bankWithdrawals": float(self.bank_withdrawals),
            "goalTxnWithdrawals": float(self.goal_withdrawals),
            "withdrawalVariance": float(self.withdrawal_variance),
            "withdrawalBankCount": self.bank_withdrawal_count,
            "withdrawalGoalTxnCount": self.goal_withdrawal_count,
            "status": self.status,
            "hasVariance": self.has_variance,
            "reviewStatus": self.review_status,
            "reviewedCount": self.reviewed_count,
            "unreviewedCount": self.unreviewed_count,
        }


@dataclass
class ReviewResult:
    """Outcome of tagging, flagging, approving or rejecting one transaction."""

    transaction_id: str
    side: str
    reconciliation_status: ReconciliationStatus
    review_tag: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "side": self.side,
            "reconciliationStatus": self.reconciliation_status.value,
            "reviewTag": self.review_tag,
        }


@dataclass
class BulkReviewResult:
    """Rows tagged by one atomic bulk review."""

    bank: int = 0
    goal: int = 0

    @property
    def total(self) -> int:
        return self.bank + self.goal

    def to_dict(self) -> dict:
        return {"updatedCounts": {"bank": self.bank, "goal": self.goal}}


@dataclass
class ManualMatchResult:
    """Totals of a human-created match."""

    match_id: int
    matched_bank_count: int
    matched_goal_count: int
    bank_total: Decimal
    goal_total: Decimal

    def to_dict(self) -> dict:
        return {
            "matchId": self.match_id,
            "matchedBankCount": self.matched_bank_count,
            "matchedGoalCount": self.matched_goal_count,
            "bankTotal": float(self.bank_total),
            "goalTotal": float(self.goal_total),
        }
