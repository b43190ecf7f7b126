"""
Reconciliation service facade.

Single entry point for callers (CLI, API layers). Every method returns a
plain dict; engine errors come back as ``{"success": False, "errors": [...]}``
instead of propagating.
"""

from datetime import date, datetime
from functools import wraps
from typing import Any, Optional, Sequence, Union
import logging

from sqlalchemy.exc import SQLAlchemyError

from .batch.runner import BatchRunner, MatchFilter
from .config import ReconConfig
from .matching.engine import MatchEngine
from .models.results import BatchError, GoalMatchingSummary, GoalTransactionsView
from .models.transaction import MatchType, ReconciliationStatus
from .storage.database import Database
from .storage.repository import LedgerRepository
from .utils.exceptions import ReconciliationError, ValidationError
from .workflow.manual import ManualMatcher
from .workflow.resolution import VarianceResolutionDetector
from .workflow.reversal import ReversalLinker
from .workflow.review import ReviewWorkflow
from .workflow.status import ReconciliationStatusMachine
from .workflow.summary import GoalSummaryBuilder

logger = logging.getLogger(__name__)

DateLike = Union[date, str, None]


def _coerce_date(value: DateLike, name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {name} {value!r}; expected YYYY-MM-DD") from None


def _failure(error: Exception) -> dict:
    return {
        "success": False,
        "errors": [BatchError(type(error).__name__, str(error)).to_dict()],
    }


def structured(method):
    """Turn engine and database errors into a failed result dict."""

    @wraps(method)
    def wrapper(self, *args, **kwargs) -> dict:
        try:
            payload = method(self, *args, **kwargs)
        except ReconciliationError as e:
            logger.warning(f"{method.__name__} rejected: {e}")
            return _failure(e)
        except SQLAlchemyError as e:
            logger.error(f"{method.__name__} failed in the ledger store: {e}")
            return _failure(e)

        result: dict[str, Any] = {"success": True}
        if payload:
            result.update(payload)
        return result

    return wrapper


class ReconciliationService:
    """Wires the engine, batch runner and workflows over one database."""

    def __init__(self, config: Optional[ReconConfig] = None, database: Optional[Database] = None):
        self.config = config or ReconConfig()
        self.database = database or Database.from_config(self.config.database)

        self.engine = MatchEngine(self.config)
        self.status_machine = ReconciliationStatusMachine(self.engine.evaluator)
        self.runner = BatchRunner(self.database, self.config, self.engine, self.status_machine)
        self.review = ReviewWorkflow(self.database, self.status_machine)
        self.manual = ManualMatcher(self.database, self.status_machine)
        self.reversals = ReversalLinker(
            self.database, self.status_machine, window_days=self.config.reversal.window_days
        )
        self.resolution = VarianceResolutionDetector(
            self.database,
            self.engine.evaluator,
            date_window_days=self.config.matching.date_window_days,
            timing_tolerance_days=self.config.matching.timing_tolerance_days,
        )
        self.summaries = GoalSummaryBuilder(self.database, self.engine.evaluator)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    @structured
    def run_matching(
        self,
        start_date: DateLike = None,
        end_date: DateLike = None,
        batch_size: Optional[int] = None,
        offset: int = 0,
        goal_number: Optional[str] = None,
        apply_updates: bool = True,
        run_by: str = "system",
    ) -> dict:
        match_filter = MatchFilter(
            start_date=_coerce_date(start_date, "start_date"),
            end_date=_coerce_date(end_date, "end_date"),
            goal_number=goal_number or None,
        )
        result = self.runner.run_batch(match_filter, batch_size, offset, apply_updates, run_by)
        return result.to_dict()

    @structured
    def run_bank_reconciliation(
        self,
        transaction_ids: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        run_by: str = "system",
    ) -> dict:
        return self.runner.run_bank_reconciliation(transaction_ids, batch_size, run_by).to_dict()

    @structured
    def get_transactions_with_matching(
        self,
        goal_number: str,
        start_date: DateLike = None,
        end_date: DateLike = None,
        preview: bool = False,
    ) -> dict:
        """
        Both ledgers of one goal with their persisted matches.

        With ``preview`` the engine also runs over the goal's unresolved rows
        and reports what it would match now, without writing anything.
        """
        if not goal_number:
            raise ValidationError("goal_number is required")
        start = _coerce_date(start_date, "start_date")
        end = _coerce_date(end_date, "end_date")

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            bank = [repo.to_bank(r) for r in repo.bank_rows(goal_number, start, end)]
            goal = [repo.to_goal(r) for r in repo.goal_rows(goal_number, start, end)]

        summary = GoalMatchingSummary(
            bank_count=len(bank),
            goal_txn_count=len(goal),
            matched_bank_count=sum(1 for t in bank if t.is_matched),
            matched_goal_txn_count=sum(1 for t in goal if t.is_matched),
            reviewed_count=sum(1 for t in [*bank, *goal] if not t.is_matched and t.review_tag),
        )
        summary.unmatched_bank_count = summary.bank_count - summary.matched_bank_count
        summary.unmatched_goal_txn_count = summary.goal_txn_count - summary.matched_goal_txn_count
        summary.pending_review_count = (
            summary.unmatched_bank_count + summary.unmatched_goal_txn_count - summary.reviewed_count
        )
        summary.bank_total = sum((t.total_amount for t in bank), summary.bank_total)
        summary.goal_txn_total = sum((t.total_amount for t in goal), summary.goal_txn_total)

        matches = {t.match_info.match_id: t.match_info for t in [*bank, *goal] if t.match_info}
        for match in matches.values():
            if match.match_type is MatchType.EXACT:
                summary.exact_matches += 1
            elif match.match_type is MatchType.AMOUNT:
                summary.amount_matches += 1
            elif match.match_type.is_split:
                summary.split_matches += 1
            else:
                summary.manual_matches += 1

        view = GoalTransactionsView(
            goal_number=goal_number,
            bank_transactions=bank,
            goal_transactions=goal,
            summary=summary,
        )
        if preview:
            unresolved_bank = [
                t
                for t in bank
                if t.reconciliation_status
                in (ReconciliationStatus.PENDING, ReconciliationStatus.MISSING_IN_FUND)
            ]
            unresolved_goal = [
                t for t in goal if t.reconciliation_status is ReconciliationStatus.PENDING
            ]
            view.preview_matches = self.engine.match(
                goal_number, unresolved_bank, unresolved_goal
            ).matches
        return view.to_dict()

    @structured
    def get_goal_summary(
        self,
        start_date: DateLike,
        end_date: DateLike,
        goal_number: Optional[str] = None,
        status: Optional[str] = None,
    ) -> dict:
        """Bank versus goal ledger totals per goal, with variance and review status."""
        comparisons = self.summaries.summarize(
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
            goal_number or None,
            status,
        )
        return {"data": [c.to_dict() for c in comparisons], "total": len(comparisons)}

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    @structured
    def review_transaction(
        self,
        transaction_id: str,
        side: str,
        tag: str,
        notes: Optional[str] = None,
        reviewer: str = "system",
    ) -> dict:
        return self.review.tag(transaction_id, side, tag, notes, reviewer).to_dict()

    @structured
    def bulk_review(
        self,
        bank_ids: Sequence[str],
        goal_codes: Sequence[str],
        tag: str,
        notes: Optional[str] = None,
        reviewer: str = "system",
    ) -> dict:
        return self.review.bulk_tag(bank_ids, goal_codes, tag, notes, reviewer).to_dict()

    @structured
    def flag_for_review(
        self, transaction_id: str, side: str, reviewer: str = "system", notes: Optional[str] = None
    ) -> dict:
        return self.review.flag_for_review(transaction_id, side, reviewer, notes).to_dict()

    @structured
    def approve(self, transaction_id: str, side: str, reviewer: str, notes: Optional[str] = None) -> dict:
        return self.review.approve(transaction_id, side, reviewer, notes).to_dict()

    @structured
    def reject(self, transaction_id: str, side: str, reviewer: str, notes: Optional[str] = None) -> dict:
        return self.review.reject(transaction_id, side, reviewer, notes).to_dict()

    @structured
    def get_goal_review_status(
        self, goal_number: str, start_date: DateLike = None, end_date: DateLike = None
    ) -> dict:
        return self.review.goal_review_status(
            goal_number,
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
        ).to_dict()

    @structured
    def get_variance_transactions(
        self,
        start_date: DateLike = None,
        end_date: DateLike = None,
        review_status: str = "all",
        review_tag: Optional[str] = None,
        goal_number: Optional[str] = None,
    ) -> dict:
        return self.review.variance_transactions(
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
            review_status,
            review_tag,
            goal_number,
        ).to_dict()

    @structured
    def detect_resolved_variances(
        self,
        start_date: DateLike = None,
        end_date: DateLike = None,
        triggered_by: Optional[str] = None,
    ) -> dict:
        return self.resolution.detect(
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
            triggered_by,
        ).to_dict()

    @structured
    def get_resolved_variances_report(
        self,
        start_date: DateLike = None,
        end_date: DateLike = None,
        goal_number: Optional[str] = None,
        original_tag: Optional[str] = None,
    ) -> dict:
        return self.resolution.resolved_variances_report(
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
            goal_number or None,
            original_tag,
        ).to_dict()

    @structured
    def get_resolution_stats(self) -> dict:
        return self.resolution.resolution_stats().to_dict()

    # ------------------------------------------------------------------
    # Manual matches
    # ------------------------------------------------------------------

    @structured
    def create_manual_match(
        self, bank_ids: Sequence[str], goal_codes: Sequence[str], matched_by: str
    ) -> dict:
        return self.manual.create_manual_match(bank_ids, goal_codes, matched_by).to_dict()

    @structured
    def remove_manual_match(self, ids: Sequence[str], removed_by: str = "system") -> dict:
        return {"unmatched": self.manual.remove_manual_match(ids, removed_by)}

    # ------------------------------------------------------------------
    # Reversals
    # ------------------------------------------------------------------

    @structured
    def find_reversal_candidates(
        self, transaction_id: str, start_date: DateLike = None, end_date: DateLike = None
    ) -> dict:
        return self.reversals.find_candidates(
            transaction_id,
            _coerce_date(start_date, "start_date"),
            _coerce_date(end_date, "end_date"),
        ).to_dict()

    @structured
    def link_reversal(self, first_id: str, second_id: str, linked_by: str) -> dict:
        self.reversals.link(first_id, second_id, linked_by)
        return {"linked": [first_id, second_id]}

    @structured
    def unlink_reversal(self, transaction_id: str, unlinked_by: str = "system") -> dict:
        partner_id = self.reversals.unlink(transaction_id, unlinked_by)
        return {"unlinked": [transaction_id, partner_id]}

    @structured
    def get_reversal_pair_info(self, transaction_id: str) -> dict:
        return {"partner": self.reversals.pair_info(transaction_id)}

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    @structured
    def get_batch(self, batch_number: str) -> dict:
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            row = repo.get_batch_row(batch_number)
            if row is None:
                raise ValidationError(f"Unknown batch {batch_number}")
            return {"batch": repo.to_batch(row).to_dict()}
