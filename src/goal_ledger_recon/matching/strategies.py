"""
Matching strategies for goal reconciliation.
Each strategy implements one pass of the smart matcher.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence

from ..models.results import SplitSkip
from ..models.transaction import BankTransaction, GoalTransaction, MatchInfo, MatchType
from .split import SplitDetector
from .tolerance import ToleranceEvaluator


@dataclass
class TierResult:
    """Matches produced by one strategy, plus any split targets it skipped."""

    matches: list[MatchInfo] = field(default_factory=list)
    skipped: list[SplitSkip] = field(default_factory=list)


def amount_confidence(
    date_diff: int,
    window_days: int,
    amount_diff: Decimal,
    tolerance: Decimal,
    floor: float = 0.5,
) -> float:
    """
    Confidence for a 1:1 amount match.

    Exact amount on the same day scores 1.0; each of the date and amount
    distances removes up to half of ``1 - floor`` linearly, so a pair at
    both boundaries scores ``floor``.
    """
    date_ratio = min(1.0, date_diff / window_days) if window_days > 0 else 0.0
    if tolerance > 0:
        amount_ratio = min(1.0, float(amount_diff / tolerance))
    else:
        amount_ratio = 0.0 if amount_diff == 0 else 1.0
    span = (1.0 - floor) / 2
    return 1.0 - span * date_ratio - span * amount_ratio


class MatchingStrategy(ABC):
    """Abstract base class for matching strategies."""

    @abstractmethod
    def find_matches(
        self,
        bank_txns: Sequence[BankTransaction],
        goal_txns: Sequence[GoalTransaction],
    ) -> TierResult:
        """
        Find matches among still-unmatched transactions of one goal.

        Args:
            bank_txns: Unmatched bank transactions
            goal_txns: Unmatched goal transactions

        Returns:
            Matches for this pass; no transaction appears in two of them
        """
        pass


class ExactMatchStrategy(MatchingStrategy):
    """
    Pass 1 - bank reference equals the goal transaction id.
    Highest confidence matching tier.
    """

    def __init__(self, evaluator: ToleranceEvaluator):
        self.evaluator = evaluator

    def find_matches(
        self,
        bank_txns: Sequence[BankTransaction],
        goal_txns: Sequence[GoalTransaction],
    ) -> TierResult:
        """Pair transactions sharing an id, case-sensitive, no normalisation."""
        goal_by_id: dict[str, list[GoalTransaction]] = {}
        for goal_txn in goal_txns:
            if goal_txn.transaction_id:
                goal_by_id.setdefault(goal_txn.transaction_id, []).append(goal_txn)

        result = TierResult()
        used_goal: set[str] = set()

        for bank_txn in sorted(bank_txns, key=lambda t: t.id):
            if not bank_txn.source_transaction_id:
                continue

            candidates = [
                g
                for g in goal_by_id.get(bank_txn.source_transaction_id, [])
                if g.goal_transaction_code not in used_goal
                and g.goal_number == bank_txn.goal_number
                and g.transaction_type == bank_txn.transaction_type
            ]
            if not candidates:
                continue

            best = min(
                candidates,
                key=lambda g: (
                    self.evaluator.difference(bank_txn.total_amount, g.total_amount),
                    abs((bank_txn.transaction_date - g.transaction_date).days),
                    g.goal_transaction_code,
                ),
            )
            used_goal.add(best.goal_transaction_code)
            result.matches.append(
                MatchInfo(
                    match_type=MatchType.EXACT,
                    confidence=1.0,
                    matched_bank_ids=frozenset([bank_txn.id]),
                    matched_goal_txn_ids=frozenset([best.goal_transaction_code]),
                    bank_total=bank_txn.total_amount,
                    goal_txn_total=best.total_amount,
                )
            )

        return result


class AmountMatchStrategy(MatchingStrategy):
    """
    Pass 2 - 1:1 amount within tolerance inside the date window.

    Candidate pairs are consumed greedily, nearest date first, then
    smallest amount difference.
    """

    def __init__(
        self,
        evaluator: ToleranceEvaluator,
        date_window_days: int = 30,
        confidence_floor: float = 0.5,
    ):
        self.evaluator = evaluator
        self.date_window_days = date_window_days
        self.confidence_floor = confidence_floor

    def find_matches(
        self,
        bank_txns: Sequence[BankTransaction],
        goal_txns: Sequence[GoalTransaction],
    ) -> TierResult:
        """Find 1:1 pairs by amount and date proximity."""
        pairs: list[tuple[int, Decimal, str, str, BankTransaction, GoalTransaction]] = []

        for bank_txn in bank_txns:
            for goal_txn in goal_txns:
                if goal_txn.transaction_type != bank_txn.transaction_type:
                    continue

                date_diff = abs((bank_txn.transaction_date - goal_txn.transaction_date).days)
                if date_diff > self.date_window_days:
                    continue

                if not self.evaluator.within_tolerance(
                    bank_txn.total_amount, goal_txn.total_amount
                ):
                    continue

                amount_diff = self.evaluator.difference(
                    bank_txn.total_amount, goal_txn.total_amount
                )
                pairs.append(
                    (
                        date_diff,
                        amount_diff,
                        bank_txn.id,
                        goal_txn.goal_transaction_code,
                        bank_txn,
                        goal_txn,
                    )
                )

        pairs.sort(key=lambda p: p[:4])

        result = TierResult()
        used_bank: set[str] = set()
        used_goal: set[str] = set()

        for date_diff, amount_diff, bank_id, goal_code, bank_txn, goal_txn in pairs:
            if bank_id in used_bank or goal_code in used_goal:
                continue
            used_bank.add(bank_id)
            used_goal.add(goal_code)

            tolerance = self.evaluator.tolerance_for(
                bank_txn.total_amount, goal_txn.total_amount
            )
            result.matches.append(
                MatchInfo(
                    match_type=MatchType.AMOUNT,
                    confidence=amount_confidence(
                        date_diff,
                        self.date_window_days,
                        amount_diff,
                        tolerance,
                        self.confidence_floor,
                    ),
                    matched_bank_ids=frozenset([bank_id]),
                    matched_goal_txn_ids=frozenset([goal_code]),
                    bank_total=bank_txn.total_amount,
                    goal_txn_total=goal_txn.total_amount,
                )
            )

        return result


class SplitMatchStrategy(MatchingStrategy):
    """
    Pass 3 - same-day N:1 and 1:N aggregates.
    Lowest confidence tier.
    """

    def __init__(self, detector: Optional[SplitDetector] = None, evaluator: Optional[ToleranceEvaluator] = None):
        if detector is None:
            detector = SplitDetector(evaluator or ToleranceEvaluator())
        self.detector = detector

    def find_matches(
        self,
        bank_txns: Sequence[BankTransaction],
        goal_txns: Sequence[GoalTransaction],
    ) -> TierResult:
        """Delegate to the split detector."""
        matches, skipped = self.detector.detect(bank_txns, goal_txns)
        return TierResult(matches=matches, skipped=skipped)
