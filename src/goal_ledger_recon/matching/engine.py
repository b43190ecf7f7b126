"""
Three-pass matching engine for goal reconciliation.
Runs the configured matching tiers in priority order over one goal's
unresolved transactions.
"""

from datetime import date, datetime
from typing import Optional, Sequence
import logging

from ..config import ReconConfig
from ..models.results import GoalMatchResult
from ..models.transaction import BankTransaction, GoalTransaction
from .split import SplitDetector
from .strategies import (
    AmountMatchStrategy,
    ExactMatchStrategy,
    MatchingStrategy,
    SplitMatchStrategy,
)
from .tolerance import ToleranceEvaluator

logger = logging.getLogger(__name__)


class MatchEngine:
    """
    Orchestrates the matching passes for a single goal.

    Matching within a goal is strictly sequential: each pass only sees the
    residue left by the passes before it. The engine holds no per-run state,
    so one instance can serve several worker threads.
    """

    def __init__(self, config: ReconConfig, evaluator: Optional[ToleranceEvaluator] = None):
        """
        Initialize the matching engine.

        Args:
            config: Application configuration
            evaluator: Tolerance evaluator (built from config when omitted)
        """
        self.config = config
        self.evaluator = evaluator or ToleranceEvaluator.from_settings(config.matching.tolerance)
        self.strategies = self._build_strategies()

    def _build_strategies(self) -> list[tuple[str, MatchingStrategy]]:
        """
        Build matching strategies from configuration.

        Returns:
            List of (tier_name, strategy) tuples ordered by priority
        """
        strategies: list[tuple[str, MatchingStrategy]] = []

        matching_config = self.config.matching
        tiers = [t for t in matching_config.tiers if t.enabled]

        for tier in sorted(tiers, key=lambda t: t.priority):
            strategy = self._create_strategy(tier.name)
            if strategy:
                strategies.append((tier.name, strategy))
                logger.debug(f"Loaded matching tier: {tier.name}")
            else:
                logger.warning(f"Unknown matching tier ignored: {tier.name}")

        return strategies

    def _create_strategy(self, tier_name: str) -> Optional[MatchingStrategy]:
        """
        Create a matching strategy for a tier name.

        Args:
            tier_name: Name of the matching tier

        Returns:
            Matching strategy or None
        """
        name = tier_name.lower()
        matching = self.config.matching

        if "exact" in name:
            return ExactMatchStrategy(self.evaluator)

        if "amount" in name:
            return AmountMatchStrategy(
                self.evaluator,
                date_window_days=matching.date_window_days,
                confidence_floor=matching.confidence.amount_floor,
            )

        if "split" in name:
            detector = SplitDetector(
                self.evaluator,
                max_candidates=self.config.split.max_candidates,
                confidence_ceiling=matching.confidence.split_ceiling,
                confidence_floor=matching.confidence.split_floor,
            )
            return SplitMatchStrategy(detector)

        return None

    def match(
        self,
        goal_number: str,
        bank_transactions: Sequence[BankTransaction],
        goal_transactions: Sequence[GoalTransaction],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> GoalMatchResult:
        """
        Run every enabled pass over one goal's unresolved transactions.

        Already-matched, terminal or reversal-linked transactions are ignored,
        so calling this again on the same data yields no new matches.

        Args:
            goal_number: Goal whose transactions are matched
            bank_transactions: Candidate bank transactions
            goal_transactions: Candidate goal transactions
            start_date: Optional inclusive lower date bound
            end_date: Optional inclusive upper date bound

        Returns:
            Matches plus the unmatched residue on each side
        """
        start_time = datetime.now()

        unmatched_bank = {
            t.id: t
            for t in bank_transactions
            if t.goal_number == goal_number
            and _is_open(t)
            and t.reversal_partner_id is None
            and _in_window(t.transaction_date, start_date, end_date)
        }
        unmatched_goal = {
            t.goal_transaction_code: t
            for t in goal_transactions
            if t.goal_number == goal_number
            and _is_open(t)
            and _in_window(t.transaction_date, start_date, end_date)
        }

        result = GoalMatchResult(goal_number=goal_number)

        # Process each tier in priority order
        for tier_name, strategy in self.strategies:
            if not unmatched_bank or not unmatched_goal:
                break

            tier = strategy.find_matches(
                sorted(unmatched_bank.values(), key=lambda t: t.id),
                sorted(unmatched_goal.values(), key=lambda t: t.goal_transaction_code),
            )

            # Remove matched transactions from unmatched pools
            for match in tier.matches:
                for bank_id in match.matched_bank_ids:
                    del unmatched_bank[bank_id]
                for goal_code in match.matched_goal_txn_ids:
                    del unmatched_goal[goal_code]

            result.matches.extend(tier.matches)
            result.split_skipped.extend(tier.skipped)

            logger.debug(
                f"Goal {goal_number} tier {tier_name}: {len(tier.matches)} matches, "
                f"{len(unmatched_bank)} bank and {len(unmatched_goal)} goal remaining"
            )

        result.unmatched_bank = sorted(unmatched_bank.values(), key=lambda t: t.id)
        result.unmatched_goal = sorted(
            unmatched_goal.values(), key=lambda t: t.goal_transaction_code
        )

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.debug(
            f"Goal {goal_number} matched in {elapsed:.3f}s: {len(result.matches)} matches, "
            f"{len(result.unmatched_bank)} bank-only, {len(result.unmatched_goal)} goal-only"
        )

        return result


def _is_open(txn) -> bool:
    return txn.match_info is None and not txn.reconciliation_status.is_terminal


def _in_window(value: date, start: Optional[date], end: Optional[date]) -> bool:
    if start and value < start:
        return False
    if end and value > end:
        return False
    return True
