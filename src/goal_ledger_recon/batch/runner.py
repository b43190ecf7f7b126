"""
Resumable batch runner.

Walks the goals of a date range in a stable order, ``batch_size`` goals per
call starting at ``offset``, and commits each goal's match results in its own
database transaction. Callers continue with ``next_offset`` until
``has_more`` is false.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Optional, Sequence, Union
import logging
import os
import socket
import threading

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config import ReconConfig
from ..matching.engine import MatchEngine
from ..models.results import (
    BankReconciliationResult,
    BatchError,
    GoalApplyOutcome,
    GoalMatchResult,
    MatchBreakdown,
    SmartMatchingResult,
)
from ..models.transaction import ProcessingStatus, ReconciliationStatus
from ..storage.database import Database
from ..storage.repository import LedgerRepository
from ..utils.exceptions import (
    ConcurrencyConflict,
    PersistenceFailure,
    ReconciliationError,
    ValidationError,
)
from ..workflow.manual import attach_match
from ..workflow.status import ReconciliationStatusMachine

logger = logging.getLogger(__name__)

GoalOutcome = Union[GoalApplyOutcome, ReconciliationError]


@dataclass
class MatchFilter:
    """Selection of goals for a batch run."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    goal_number: Optional[str] = None


class BatchRunner:
    """
    Applies the match engine across many goals.

    Goals are the unit of concurrency: with ``batch.max_workers > 1`` goals
    of one batch run on a thread pool, and a lease row per goal keeps two
    workers (threads or processes) off the same goal.
    """

    def __init__(
        self,
        database: Database,
        config: ReconConfig,
        engine: Optional[MatchEngine] = None,
        status_machine: Optional[ReconciliationStatusMachine] = None,
        worker_id: Optional[str] = None,
    ):
        self.database = database
        self.config = config
        self.engine = engine or MatchEngine(config)
        self.status_machine = status_machine or ReconciliationStatusMachine(self.engine.evaluator)
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"

    # ------------------------------------------------------------------
    # Goal batches
    # ------------------------------------------------------------------

    def run_batch(
        self,
        match_filter: Optional[MatchFilter] = None,
        batch_size: Optional[int] = None,
        offset: int = 0,
        apply_updates: bool = True,
        run_by: str = "system",
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> SmartMatchingResult:
        """
        Match one window of goals.

        Args:
            match_filter: Date range and optional single goal
            batch_size: Goals per call (defaults to ``batch.batch_size``)
            offset: Index of the first goal of this window
            apply_updates: False computes and counts matches without writing
            run_by: Actor recorded on matches and status changes
            progress_callback: Called with each goal number once it is done

        Returns:
            Counts for this window plus the offset to continue from
        """
        match_filter = match_filter or MatchFilter()
        batch_size = batch_size or self.config.batch.batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        start_date, end_date = self._resolve_range(match_filter)

        with self.database.session_scope() as session:
            goals = LedgerRepository(session).goal_numbers(
                start_date, end_date, match_filter.goal_number
            )

        total_goals = len(goals)
        window = goals[offset : offset + batch_size]
        processed_goals = offset + len(window)
        has_more = processed_goals < total_goals

        result = SmartMatchingResult(
            total_goals=total_goals,
            processed_goals=processed_goals,
            goals_in_batch=len(window),
            has_more=has_more,
            next_offset=processed_goals if has_more else None,
            match_breakdown=MatchBreakdown(),
            start_date=start_date,
            end_date=end_date,
            applied=apply_updates,
        )

        logger.info(
            f"Batch at offset {offset}: {len(window)} of {total_goals} goals "
            f"({start_date} to {end_date}){'' if apply_updates else ' [preview]'}"
        )

        if apply_updates and window:
            result.batch_number = self._open_batch(run_by, len(window))

        status_counts: dict[ReconciliationStatus, int] = {}
        outcomes = self._run_goals(
            window,
            lambda goal: self._process_goal(goal, start_date, end_date, apply_updates, run_by),
            progress_callback,
        )

        for goal_number, outcome in outcomes:
            if isinstance(outcome, ReconciliationError):
                result.failed_goals.append(goal_number)
                result.errors.append(
                    BatchError(type(outcome).__name__, str(outcome), goal_number)
                )
                continue

            result.match_breakdown.merge(outcome.breakdown)
            result.total_matches += outcome.matches
            result.total_updated += outcome.updated
            result.split_skipped.extend(outcome.split_skipped)
            if outcome.matches:
                result.goals_with_matches += 1
            for status, count in outcome.status_counts.items():
                status_counts[status] = status_counts.get(status, 0) + count

        if result.batch_number:
            self._close_batch(
                result.batch_number,
                processed=len(window) - len(result.failed_goals),
                total=len(window),
                matched=result.total_matches,
                status_counts=status_counts,
                failed=len(result.failed_goals),
            )

        logger.info(
            f"Batch at offset {offset} done: {result.total_matches} matches "
            f"{result.match_breakdown.to_dict()}, {result.total_updated} updated, "
            f"{len(result.failed_goals)} failed, has_more={has_more}"
        )
        return result

    def run_all(
        self,
        match_filter: Optional[MatchFilter] = None,
        batch_size: Optional[int] = None,
        apply_updates: bool = True,
        run_by: str = "system",
    ) -> list[SmartMatchingResult]:
        """Call ``run_batch`` from offset 0 until no goals remain."""
        results = []
        offset = 0
        while True:
            result = self.run_batch(match_filter, batch_size, offset, apply_updates, run_by)
            results.append(result)
            if not result.has_more or result.next_offset is None:
                return results
            offset = result.next_offset

    def _resolve_range(self, match_filter: MatchFilter) -> tuple[date, date]:
        end_date = match_filter.end_date or date.today()
        start_date = match_filter.start_date or end_date - timedelta(
            days=self.config.batch.default_lookback_days
        )
        if start_date > end_date:
            raise ValidationError(f"start_date {start_date} is after end_date {end_date}")
        return start_date, end_date

    def _run_goals(
        self,
        goals: Sequence[str],
        process: Callable[[str], GoalApplyOutcome],
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> list[tuple[str, GoalOutcome]]:
        """Run ``process`` per goal, capturing engine errors as outcomes."""

        def guarded(goal_number: str) -> GoalOutcome:
            try:
                outcome: GoalOutcome = process(goal_number)
            except ReconciliationError as e:
                logger.error(f"Goal {goal_number} failed: {e}")
                outcome = e
            if progress_callback:
                progress_callback(goal_number)
            return outcome

        max_workers = self.config.batch.max_workers
        if max_workers <= 1 or len(goals) <= 1:
            return [(goal, guarded(goal)) for goal in goals]

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="goal-recon") as pool:
            return list(zip(goals, pool.map(guarded, goals)))

    def _process_goal(
        self,
        goal_number: str,
        start_date: Optional[date],
        end_date: Optional[date],
        apply_updates: bool,
        run_by: str,
    ) -> GoalApplyOutcome:
        if not apply_updates:
            return self._preview_goal(goal_number, start_date, end_date)

        holder = self._lease_holder()
        self._acquire_lease(goal_number, holder)
        try:
            try:
                with self.database.session_scope() as session:
                    repo = LedgerRepository(session)
                    bank_rows = repo.unresolved_bank_rows(goal_number, start_date, end_date)
                    goal_rows = repo.unresolved_goal_rows(goal_number, start_date, end_date)
                    match_result = self.engine.match(
                        goal_number,
                        [repo.to_bank(r) for r in bank_rows],
                        [repo.to_goal(r) for r in goal_rows],
                    )
                    outcome = self.apply_result(repo, match_result, run_by)
                    outcome.records = len(bank_rows) + len(goal_rows)
            except SQLAlchemyError as e:
                raise PersistenceFailure(goal_number, str(e)) from e
        finally:
            self._release_lease(goal_number, holder)

        return outcome

    def _preview_goal(
        self, goal_number: str, start_date: Optional[date], end_date: Optional[date]
    ) -> GoalApplyOutcome:
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            bank = [repo.to_bank(r) for r in repo.unresolved_bank_rows(goal_number, start_date, end_date)]
            goal = [repo.to_goal(r) for r in repo.unresolved_goal_rows(goal_number, start_date, end_date)]

        match_result = self.engine.match(goal_number, bank, goal)
        return GoalApplyOutcome(
            goal_number=goal_number,
            matches=len(match_result.matches),
            breakdown=match_result.breakdown,
            records=len(bank) + len(goal),
            split_skipped=list(match_result.split_skipped),
        )

    def apply_result(
        self, repo: LedgerRepository, match_result: GoalMatchResult, run_by: str
    ) -> GoalApplyOutcome:
        """
        Write one goal's matches and statuses through ``repo``.

        The caller owns the transaction, so a failure leaves nothing of the
        goal half-written.
        """
        goal_number = match_result.goal_number
        outcome = GoalApplyOutcome(
            goal_number=goal_number,
            matches=len(match_result.matches),
            breakdown=match_result.breakdown,
            split_skipped=list(match_result.split_skipped),
        )

        for match in match_result.matches:
            match_row = repo.create_match(goal_number, match, run_by)
            status = self.status_machine.status_for_match(match)
            members = [repo.get_bank_row(i) for i in sorted(match.matched_bank_ids)]
            members += [repo.get_goal_row(c) for c in sorted(match.matched_goal_txn_ids)]
            for row in members:
                attach_match(row, match_row)
                self.status_machine.transition(
                    repo, row, status, run_by, f"{match.match_type.value} match {match_row.id}"
                )
                outcome.updated += 1
            outcome.count_status(status, len(match.matched_bank_ids))

        for bank_txn in match_result.unmatched_bank:
            row = repo.get_bank_row(bank_txn.id)
            change = self.status_machine.transition(
                repo,
                row,
                ReconciliationStatus.MISSING_IN_FUND,
                run_by,
                "No counterpart after all matching passes",
            )
            if change is not None:
                outcome.updated += 1
            outcome.count_status(ReconciliationStatus.MISSING_IN_FUND)

        return outcome

    # ------------------------------------------------------------------
    # Bank-ledger-only variant
    # ------------------------------------------------------------------

    def run_bank_reconciliation(
        self,
        transaction_ids: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        run_by: str = "system",
    ) -> BankReconciliationResult:
        """
        Match the first ``batch_size`` PENDING bank transactions.

        Each affected goal is matched against its unresolved goal
        transactions within the date window around the bank dates and
        committed on its own.
        """
        batch_size = batch_size or self.config.batch.batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        ids = list(transaction_ids) if transaction_ids else None

        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            pending_before = repo.count_pending_bank(ids)
            window: dict[str, list[str]] = {}
            for row in repo.pending_bank_rows(batch_size, ids):
                window.setdefault(row.goal_number, []).append(row.id)

        result = BankReconciliationResult(has_more=pending_before > batch_size)
        logger.info(
            f"Bank reconciliation: {sum(len(v) for v in window.values())} "
            f"of {pending_before} pending transactions"
        )

        if window:
            result.batch_number = self._open_batch(run_by, sum(len(v) for v in window.values()))

        status_counts: dict[ReconciliationStatus, int] = {}
        outcomes = self._run_goals(
            sorted(window),
            lambda goal: self._process_bank_window(goal, window[goal], run_by),
        )
        for goal_number, outcome in outcomes:
            if isinstance(outcome, ReconciliationError):
                result.errors.append(BatchError(type(outcome).__name__, str(outcome), goal_number))
                continue
            result.processed += outcome.records
            for status, count in outcome.status_counts.items():
                status_counts[status] = status_counts.get(status, 0) + count

        result.matched = status_counts.get(ReconciliationStatus.MATCHED, 0) + status_counts.get(
            ReconciliationStatus.AUTO_APPROVED, 0
        )
        result.auto_approved = status_counts.get(ReconciliationStatus.AUTO_APPROVED, 0)
        result.manual_review = status_counts.get(ReconciliationStatus.VARIANCE_DETECTED, 0)
        result.unmatched = status_counts.get(ReconciliationStatus.MISSING_IN_FUND, 0)

        with self.database.session_scope() as session:
            result.total_pending = LedgerRepository(session).count_pending_bank(ids)

        if result.batch_number:
            self._close_batch(
                result.batch_number,
                processed=result.processed,
                total=sum(len(v) for v in window.values()),
                matched=result.matched + result.manual_review,
                status_counts=status_counts,
                failed=len(result.errors),
            )

        logger.info(
            f"Bank reconciliation done: {result.processed} processed, {result.matched} matched, "
            f"{result.unmatched} unmatched, {result.total_pending} still pending"
        )
        return result

    def _process_bank_window(self, goal_number: str, bank_ids: list[str], run_by: str) -> GoalApplyOutcome:
        holder = self._lease_holder()
        self._acquire_lease(goal_number, holder)
        try:
            try:
                with self.database.session_scope() as session:
                    repo = LedgerRepository(session)
                    bank_rows = [
                        r
                        for r in repo.unresolved_bank_rows(goal_number)
                        if r.id in bank_ids
                        and r.reconciliation_status is ReconciliationStatus.PENDING
                    ]
                    if not bank_rows:
                        return GoalApplyOutcome(goal_number=goal_number)

                    window = timedelta(days=self.config.matching.date_window_days)
                    start = min(r.transaction_date for r in bank_rows) - window
                    end = max(r.transaction_date for r in bank_rows) + window
                    goal_rows = repo.unresolved_goal_rows(goal_number, start, end)

                    match_result = self.engine.match(
                        goal_number,
                        [repo.to_bank(r) for r in bank_rows],
                        [repo.to_goal(r) for r in goal_rows],
                    )
                    outcome = self.apply_result(repo, match_result, run_by)
                    outcome.records = len(bank_rows)
                    # Only bank-side members count towards this variant's totals
                    outcome.status_counts = _bank_status_counts(bank_rows)
            except SQLAlchemyError as e:
                raise PersistenceFailure(goal_number, str(e)) from e
        finally:
            self._release_lease(goal_number, holder)

        return outcome

    # ------------------------------------------------------------------
    # Leases and batch bookkeeping
    # ------------------------------------------------------------------

    def _lease_holder(self) -> str:
        return f"{self.worker_id}:{threading.get_ident()}"

    def _acquire_lease(self, goal_number: str, holder: str) -> None:
        try:
            with self.database.session_scope() as session:
                LedgerRepository(session).acquire_lease(
                    goal_number, holder, self.config.batch.lease_timeout_seconds
                )
        except IntegrityError as e:
            raise ConcurrencyConflict(goal_number) from e
        except SQLAlchemyError as e:
            raise PersistenceFailure(goal_number, f"lease acquisition failed: {e}") from e

    def _release_lease(self, goal_number: str, holder: str) -> None:
        try:
            with self.database.session_scope() as session:
                LedgerRepository(session).release_lease(goal_number, holder)
        except SQLAlchemyError as e:
            # Left to expire through lease_timeout_seconds
            logger.warning(f"Could not release lease on goal {goal_number}: {e}")

    def _open_batch(self, run_by: str, total_records: int) -> str:
        with self.database.session_scope() as session:
            repo = LedgerRepository(session)
            batch = repo.create_batch(run_by)
            repo.update_batch(
                batch.batch_number,
                processing_status=ProcessingStatus.PROCESSING,
                total_records=total_records,
            )
            batch_number = batch.batch_number
        logger.debug(f"Opened batch {batch_number} for {total_records} records")
        return batch_number

    def _close_batch(
        self,
        batch_number: str,
        processed: int,
        total: int,
        matched: int,
        status_counts: dict[ReconciliationStatus, int],
        failed: int,
    ) -> None:
        status = ProcessingStatus.FAILED if total and failed >= total else ProcessingStatus.COMPLETED
        with self.database.session_scope() as session:
            LedgerRepository(session).update_batch(
                batch_number,
                processing_status=status,
                processed_records=processed,
                total_matched=matched,
                total_unmatched=status_counts.get(ReconciliationStatus.MISSING_IN_FUND, 0),
                auto_approved_count=status_counts.get(ReconciliationStatus.AUTO_APPROVED, 0),
                manual_review_count=status_counts.get(ReconciliationStatus.VARIANCE_DETECTED, 0),
                failed_goals=failed,
            )
        logger.info(f"Batch {batch_number} {status.value}: {processed}/{total} processed")


def _bank_status_counts(bank_rows) -> dict[ReconciliationStatus, int]:
    counts: dict[ReconciliationStatus, int] = {}
    for row in bank_rows:
        counts[row.reconciliation_status] = counts.get(row.reconciliation_status, 0) + 1
    return counts
