"""Matching engine and strategies."""

from .engine import MatchEngine
from .split import SplitDetector
from .strategies import (
    MatchingStrategy,
    ExactMatchStrategy,
    AmountMatchStrategy,
    SplitMatchStrategy,
)
from .tolerance import ToleranceEvaluator

__all__ = [
    "MatchEngine",
    "SplitDetector",
    "MatchingStrategy",
    "ExactMatchStrategy",
    "AmountMatchStrategy",
    "SplitMatchStrategy",
    "ToleranceEvaluator",
]
