"""
Same-day split detection.

Finds groups of two or more transactions on one ledger whose sum matches a
single transaction on the other ledger. The search is bounded: a day whose
candidate pool exceeds ``max_candidates`` is skipped and reported instead of
being searched.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from itertools import combinations
from typing import Sequence, TypeVar, Union
import logging

from ..models.results import SplitSkip
from ..models.transaction import (
    BankTransaction,
    GoalTransaction,
    MatchInfo,
    MatchType,
    TransactionType,
)
from .tolerance import ToleranceEvaluator

logger = logging.getLogger(__name__)

T = TypeVar("T", BankTransaction, GoalTransaction)


def split_confidence(
    difference: Decimal, tolerance: Decimal, ceiling: float = 0.7, floor: float = 0.5
) -> float:
    """Linear from ``ceiling`` at zero difference to ``floor`` at the tolerance edge."""
    if tolerance <= 0:
        ratio = 0.0 if difference == 0 else 1.0
    else:
        ratio = min(1.0, float(difference / tolerance))
    return ceiling - (ceiling - floor) * ratio


class SplitDetector:
    """Detects N:1 and 1:N same-day aggregates within one goal."""

    def __init__(
        self,
        evaluator: ToleranceEvaluator,
        max_candidates: int = 10,
        confidence_ceiling: float = 0.7,
        confidence_floor: float = 0.5,
    ):
        self.evaluator = evaluator
        self.max_candidates = max_candidates
        self.confidence_ceiling = confidence_ceiling
        self.confidence_floor = confidence_floor

    def detect(
        self,
        bank_txns: Sequence[BankTransaction],
        goal_txns: Sequence[GoalTransaction],
    ) -> tuple[list[MatchInfo], list[SplitSkip]]:
        """
        Run both split directions over the unmatched pools.

        Args:
            bank_txns: Unmatched bank transactions of one goal
            goal_txns: Unmatched goal transactions of the same goal

        Returns:
            Tuple of (split matches, skipped targets)
        """
        used_bank: set[str] = set()
        used_goal: set[str] = set()
        matches: list[MatchInfo] = []
        skipped: list[SplitSkip] = []

        # N bank -> 1 goal transaction
        bank_by_day = _group_by_day(bank_txns)
        for target in sorted(goal_txns, key=lambda t: t.goal_transaction_code):
            pool = [
                b
                for b in bank_by_day.get(_day_key(target), [])
                if b.id not in used_bank
            ]
            group = self._find_group(
                target.goal_transaction_code,
                target.transaction_date,
                target.total_amount,
                sorted(pool, key=lambda b: b.id),
                MatchType.SPLIT_BANK_TO_FUND,
                skipped,
            )
            if not group:
                continue
            bank_total = sum((b.total_amount for b in group), Decimal("0"))
            matches.append(
                self._build_match(
                    MatchType.SPLIT_BANK_TO_FUND,
                    bank_ids=[b.id for b in group],
                    goal_codes=[target.goal_transaction_code],
                    bank_total=bank_total,
                    goal_total=target.total_amount,
                )
            )
            used_bank.update(b.id for b in group)
            used_goal.add(target.goal_transaction_code)

        # N goal transactions -> 1 bank
        goal_by_day = _group_by_day(
            [g for g in goal_txns if g.goal_transaction_code not in used_goal]
        )
        for target in sorted(bank_txns, key=lambda t: t.id):
            if target.id in used_bank:
                continue
            pool = [
                g
                for g in goal_by_day.get(_day_key(target), [])
                if g.goal_transaction_code not in used_goal
            ]
            group = self._find_group(
                target.id,
                target.transaction_date,
                target.total_amount,
                sorted(pool, key=lambda g: g.goal_transaction_code),
                MatchType.SPLIT_FUND_TO_BANK,
                skipped,
            )
            if not group:
                continue
            goal_total = sum((g.total_amount for g in group), Decimal("0"))
            matches.append(
                self._build_match(
                    MatchType.SPLIT_FUND_TO_BANK,
                    bank_ids=[target.id],
                    goal_codes=[g.goal_transaction_code for g in group],
                    bank_total=target.total_amount,
                    goal_total=goal_total,
                )
            )
            used_bank.add(target.id)
            used_goal.update(g.goal_transaction_code for g in group)

        return matches, skipped

    def _find_group(
        self,
        target_id: str,
        target_date: date,
        target_amount: Decimal,
        candidates: list[T],
        match_type: MatchType,
        skipped: list[SplitSkip],
    ) -> list[T]:
        """Return the first candidate subset (size >= 2) whose sum matches the target."""
        if len(candidates) < 2:
            return []

        if len(candidates) > self.max_candidates:
            logger.warning(
                f"Split search skipped for {target_id} on {target_date}: "
                f"{len(candidates)} candidates exceeds cap of {self.max_candidates}"
            )
            skipped.append(
                SplitSkip(
                    target_id=target_id,
                    match_type=match_type,
                    transaction_date=target_date,
                    candidate_count=len(candidates),
                )
            )
            return []

        for size in range(2, len(candidates) + 1):
            for combo in combinations(candidates, size):
                subtotal = sum((c.total_amount for c in combo), Decimal("0"))
                if self.evaluator.within_tolerance(subtotal, target_amount):
                    return list(combo)
        return []

    def _build_match(
        self,
        match_type: MatchType,
        bank_ids: list[str],
        goal_codes: list[str],
        bank_total: Decimal,
        goal_total: Decimal,
    ) -> MatchInfo:
        difference = self.evaluator.difference(bank_total, goal_total)
        tolerance = self.evaluator.tolerance_for(bank_total, goal_total)
        return MatchInfo(
            match_type=match_type,
            confidence=split_confidence(
                difference, tolerance, self.confidence_ceiling, self.confidence_floor
            ),
            matched_bank_ids=frozenset(bank_ids),
            matched_goal_txn_ids=frozenset(goal_codes),
            bank_total=bank_total,
            goal_txn_total=goal_total,
        )


def _day_key(txn: Union[BankTransaction, GoalTransaction]) -> tuple[date, TransactionType]:
    return txn.transaction_date, txn.transaction_type


def _group_by_day(txns: Sequence[T]) -> dict[tuple[date, TransactionType], list[T]]:
    grouped: dict[tuple[date, TransactionType], list[T]] = defaultdict(list)
    for txn in txns:
        grouped[_day_key(txn)].append(txn)
    return grouped
