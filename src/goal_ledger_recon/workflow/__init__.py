"""Status machine and human review workflows."""

from .manual import ManualMatcher
from .resolution import VarianceResolutionDetector
from .reversal import ReversalLinker
from .review import (
    PendingReviewChanges,
    ReviewWorkflow,
    parse_review_tag,
    parse_side,
)
from .status import ReconciliationStatusMachine, TRANSITIONS
from .summary import GoalSummaryBuilder

__all__ = [
    "ManualMatcher",
    "VarianceResolutionDetector",
    "ReversalLinker",
    "PendingReviewChanges",
    "ReviewWorkflow",
    "parse_review_tag",
    "parse_side",
    "ReconciliationStatusMachine",
    "TRANSITIONS",
    "GoalSummaryBuilder",
]
