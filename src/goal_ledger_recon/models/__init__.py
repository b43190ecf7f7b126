"""Data models for reconciliation."""

from .transaction import (
    FUND_CODES,
    REVIEW_TAG_SET_VERSION,
    BankTransaction,
    FundAmounts,
    GoalTransaction,
    MatchInfo,
    MatchType,
    ProcessingStatus,
    ReconciliationBatch,
    ReconciliationStatus,
    ReversalPair,
    ReviewTag,
    StatusChange,
    TransactionSide,
    TransactionType,
)
from .results import (
    BankReconciliationResult,
    BatchError,
    BulkReviewResult,
    GoalMatchResult,
    GoalComparison,
    GoalMatchingSummary,
    GoalReviewStatus,
    GoalTransactionsView,
    ManualMatchResult,
    MatchBreakdown,
    ResolutionDetail,
    ResolutionReport,
    ResolutionStats,
    ResolvedVariance,
    ResolvedVariancesReport,
    ReversalCandidates,
    ReviewResult,
    SmartMatchingResult,
    SplitSkip,
    TagResolutionCounts,
    VarianceListing,
)

__all__ = [
    "FUND_CODES",
    "REVIEW_TAG_SET_VERSION",
    "BankTransaction",
    "FundAmounts",
    "GoalTransaction",
    "MatchInfo",
    "MatchType",
    "ProcessingStatus",
    "ReconciliationBatch",
    "ReconciliationStatus",
    "ReversalPair",
    "ReviewTag",
    "StatusChange",
    "TransactionSide",
    "TransactionType",
    "BankReconciliationResult",
    "BatchError",
    "BulkReviewResult",
    "GoalMatchResult",
    "GoalComparison",
    "GoalMatchingSummary",
    "GoalReviewStatus",
    "GoalTransactionsView",
    "ManualMatchResult",
    "MatchBreakdown",
    "ResolutionDetail",
    "ResolutionReport",
    "ResolutionStats",
    "ResolvedVariance",
    "ResolvedVariancesReport",
    "ReversalCandidates",
    "ReviewResult",
    "SmartMatchingResult",
    "SplitSkip",
    "TagResolutionCounts",
    "VarianceListing",
]
