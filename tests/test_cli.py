"""Tests for the command-line interface."""

from datetime import date

import pytest
from click.testing import CliRunner

from conftest import bank_txn, goal_txn
from goal_ledger_recon.cli import main
from goal_ledger_recon.models.transaction import ReconciliationStatus, TransactionType
from goal_ledger_recon.storage.database import Database
from goal_ledger_recon.storage.repository import LedgerRepository


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_url(tmp_path, runner):
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    result = runner.invoke(main, ["init-db", "--database-url", url])
    assert result.exit_code == 0, result.output
    return url


@pytest.fixture
def file_db(db_url):
    database = Database(db_url)
    yield database
    database.dispose()


def _seed(database, bank=(), goal=()):
    with database.session_scope() as session:
        repo = LedgerRepository(session)
        for txn in bank:
            repo.add_bank_transaction(txn)
        for txn in goal:
            repo.add_goal_transaction(txn)


def _status(database, transaction_id):
    with database.session_scope() as session:
        return LedgerRepository(session).get_bank_row(transaction_id).reconciliation_status


def test_init_config(runner, tmp_path):
    output = tmp_path / "config.yaml"

    result = runner.invoke(main, ["init-config", "-o", str(output)])

    assert result.exit_code == 0
    assert "tolerance" in output.read_text()


def test_run_matching(runner, db_url, file_db):
    _seed(
        file_db,
        bank=[bank_txn("B1", 500000, ref="TXN1"), bank_txn("B2", 250000)],
        goal=[goal_txn("T1", 500000, ref="TXN1")],
    )

    result = runner.invoke(
        main,
        [
            "run-matching",
            "--database-url", db_url,
            "--start-date", "2024-03-01",
            "--end-date", "2024-03-31",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Smart Matching Summary" in result.output
    assert _status(file_db, "B1") is ReconciliationStatus.MATCHED
    assert _status(file_db, "B2") is ReconciliationStatus.MISSING_IN_FUND


def test_run_matching_preview(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 500000, ref="TXN1")], goal=[goal_txn("T1", 500000, ref="TXN1")])

    result = runner.invoke(
        main,
        ["run-matching", "--database-url", db_url, "--start-date", "2024-03-01",
         "--end-date", "2024-03-31", "--preview"],
    )

    assert result.exit_code == 0, result.output
    assert "Preview" in result.output
    assert _status(file_db, "B1") is ReconciliationStatus.PENDING


def test_run_matching_rejects_bad_tolerance(runner, db_url):
    result = runner.invoke(
        main, ["run-matching", "--database-url", db_url, "--tolerance-percent", "lots"]
    )
    assert result.exit_code == 1


def test_run_matching_rejects_inverted_range(runner, db_url):
    result = runner.invoke(
        main,
        ["run-matching", "--database-url", db_url, "--start-date", "2024-03-31",
         "--end-date", "2024-03-01"],
    )

    assert result.exit_code == 1
    assert "ValidationError" in result.output


def test_reconcile_bank(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 100000)], goal=[goal_txn("T1", 100000, on=date(2024, 3, 3))])

    result = runner.invoke(main, ["reconcile-bank", "--database-url", db_url])

    assert result.exit_code == 0, result.output
    assert "Bank Reconciliation" in result.output
    assert _status(file_db, "B1") is ReconciliationStatus.MATCHED


def test_goal_transactions(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 100000)], goal=[goal_txn("T1", 100000)])

    result = runner.invoke(main, ["goal-transactions", "G1", "--database-url", db_url, "--preview"])

    assert result.exit_code == 0, result.output
    assert "B1" in result.output
    assert "1 new matches" in result.output


def test_review_and_variances(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 100000)])

    tagged = runner.invoke(
        main,
        ["review", "B1", "--side", "bank", "--tag", "TIMING_DIFFERENCE",
         "--reviewer", "alice", "--database-url", db_url],
    )
    listed = runner.invoke(main, ["variances", "--status", "reviewed", "--database-url", db_url])

    assert tagged.exit_code == 0, tagged.output
    assert "TIMING_DIFFERENCE" in tagged.output
    assert listed.exit_code == 0, listed.output
    assert "B1" in listed.output


def test_review_rejects_legacy_tag(runner, db_url):
    result = runner.invoke(
        main,
        ["review", "B1", "--side", "BANK", "--tag", "AMOUNT_MISMATCH",
         "--reviewer", "alice", "--database-url", db_url],
    )
    assert result.exit_code == 2


def test_bulk_review_is_atomic(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 100000)])

    result = runner.invoke(
        main,
        ["bulk-review", "--bank-id", "B1", "--bank-id", "B-404", "--tag", "NO_ACTION_NEEDED",
         "--reviewer", "alice", "--database-url", db_url],
    )

    assert result.exit_code == 1
    assert "TransactionNotFound" in result.output


def test_reversal_commands(runner, db_url, file_db):
    _seed(
        file_db,
        bank=[
            bank_txn("B1", 200000),
            bank_txn("B2", 200000, on=date(2024, 3, 4), txn_type=TransactionType.WITHDRAWAL),
        ],
    )

    candidates = runner.invoke(main, ["reversal-candidates", "B1", "--database-url", db_url])
    linked = runner.invoke(main, ["link-reversal", "B1", "B2", "--linked-by", "alice", "--database-url", db_url])
    assert _status(file_db, "B1") is ReconciliationStatus.MATCHED
    unlinked = runner.invoke(main, ["unlink-reversal", "B1", "--database-url", db_url])

    assert candidates.exit_code == 0, candidates.output
    assert "B2" in candidates.output
    assert linked.exit_code == 0, linked.output
    assert unlinked.exit_code == 0, unlinked.output
    assert _status(file_db, "B1") is ReconciliationStatus.PENDING


def test_detect_resolved(runner, db_url, file_db):
    _seed(file_db, bank=[bank_txn("B1", 100000, ref="R1")], goal=[goal_txn("T1", 100000, ref="R1")])
    runner.invoke(
        main,
        ["review", "B1", "--side", "BANK", "--tag", "MISSING_IN_FUND",
         "--reviewer", "alice", "--database-url", db_url],
    )

    result = runner.invoke(main, ["detect-resolved", "--triggered-by", "ops", "--database-url", db_url])

    assert result.exit_code == 0, result.output
    assert "Resolved variances: 1" in result.output

    report = runner.invoke(main, ["resolved-report", "--database-url", db_url])
    stats = runner.invoke(main, ["resolution-stats", "--database-url", db_url])

    assert report.exit_code == 0, report.output
    assert "Resolved Variances: 1" in report.output
    assert "Bank: 1  goal: 0" in report.output
    assert stats.exit_code == 0, stats.output
    assert "MISSING_IN_FUND" in stats.output


def test_resolved_report_rejects_unknown_tag(runner, db_url):
    result = runner.invoke(main, ["resolved-report", "--tag", "SOMETHING_ELSE", "--database-url", db_url])

    assert result.exit_code == 1
    assert "ValidationError" in result.output


def test_goal_summary(runner, db_url, file_db):
    _seed(
        file_db,
        bank=[bank_txn("B1", 500000, ref="R1"), bank_txn("B2", 200000, goal="G2")],
        goal=[goal_txn("T1", 500000, ref="R1")],
    )

    result = runner.invoke(
        main,
        [
            "goal-summary",
            "--start-date", "2024-03-01",
            "--end-date", "2024-03-31",
            "--status", "variance",
            "--database-url", db_url,
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Goal Summary (1 goals)" in result.output
    assert "G2" in result.output


def test_goal_summary_requires_range(runner, db_url):
    result = runner.invoke(main, ["goal-summary", "--database-url", db_url])

    assert result.exit_code == 2
