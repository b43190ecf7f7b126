"""
Command-line interface for the goal ledger reconciliation engine.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import ReconConfig, generate_default_config, load_config
from .models.transaction import ReviewTag
from .service import ReconciliationService
from .storage.database import Database
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()

DATE = click.DateTime(formats=["%Y-%m-%d"])

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
database_option = click.option("--database-url", default=None, help="Override the database URL")
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Goal ledger reconciliation: bank ledger against fund/goal ledger."""
    pass


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


@main.command("init-db")
@config_option
@database_option
def init_db(config: Optional[Path], database_url: Optional[str]):
    """Create the ledger tables."""
    recon_config = _load(config, database_url)
    database = Database.from_config(recon_config.database)
    database.create_all()
    console.print(f"[green]Database ready: {recon_config.database.url}[/green]")


@main.command("run-matching")
@config_option
@database_option
@click.option("--start-date", type=DATE, default=None, help="First transaction date (YYYY-MM-DD)")
@click.option("--end-date", type=DATE, default=None, help="Last transaction date (YYYY-MM-DD)")
@click.option("--goal", "goal_number", default=None, help="Only match this goal")
@click.option("--batch-size", type=int, default=None, help="Goals per batch")
@click.option("--offset", type=int, default=0, show_default=True, help="Goal offset to start from")
@click.option("--single-batch", is_flag=True, help="Stop after one batch instead of continuing")
@click.option("--preview", is_flag=True, help="Compute matches without writing them")
@click.option("--tolerance-percent", default=None, help="Override tolerance percent (e.g. 0.01)")
@click.option("--tolerance-minimum", default=None, help="Override minimum tolerance amount")
@click.option("--date-window", type=int, default=None, help="Override the matching window in days")
@click.option("--run-by", default="system", show_default=True)
@verbose_option
def run_matching(
    config: Optional[Path],
    database_url: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    goal_number: Optional[str],
    batch_size: Optional[int],
    offset: int,
    single_batch: bool,
    preview: bool,
    tolerance_percent: Optional[str],
    tolerance_minimum: Optional[str],
    date_window: Optional[int],
    run_by: str,
    verbose: bool,
):
    """
    Run the three-pass smart matcher over goals in a date range.

    Continues through every batch unless --single-batch is given.
    """
    recon_config = _load(config, database_url)
    setup_logging(recon_config.logging, verbose)
    _apply_matching_overrides(recon_config, tolerance_percent, tolerance_minimum, date_window)
    service = ReconciliationService(recon_config)

    results = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Matching goals...", total=None)
        while True:
            result = service.run_matching(
                start_date=start_date.date() if start_date else None,
                end_date=end_date.date() if end_date else None,
                batch_size=batch_size,
                offset=offset,
                goal_number=goal_number,
                apply_updates=not preview,
                run_by=run_by,
            )
            _exit_on_failure(result)
            results.append(result)
            progress.update(
                task,
                description=f"Matched {result['processedGoals']}/{result['totalGoals']} goals",
            )
            if single_batch or not result["hasMore"]:
                break
            offset = result["nextOffset"]
        progress.update(task, completed=True)

    _display_matching_summary(results)
    if preview:
        console.print("\n[yellow]Preview - no changes written[/yellow]")
    elif results[-1]["hasMore"]:
        console.print(f"\nContinue with --offset {results[-1]['nextOffset']}")


@main.command("reconcile-bank")
@config_option
@database_option
@click.option("--batch-size", type=int, default=None, help="Pending bank transactions per run")
@click.option("--id", "transaction_ids", multiple=True, help="Restrict to these bank ids")
@click.option("--run-by", default="system", show_default=True)
@verbose_option
def reconcile_bank(
    config: Optional[Path],
    database_url: Optional[str],
    batch_size: Optional[int],
    transaction_ids: tuple,
    run_by: str,
    verbose: bool,
):
    """Match pending bank transactions against the goal ledger."""
    recon_config = _load(config, database_url)
    setup_logging(recon_config.logging, verbose)
    service = ReconciliationService(recon_config)

    result = service.run_bank_reconciliation(list(transaction_ids) or None, batch_size, run_by)
    _exit_on_failure(result)

    table = Table(title="Bank Reconciliation")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for label, key in (
        ("Processed", "processed"),
        ("Matched", "matched"),
        ("Auto Approved", "autoApproved"),
        ("Variance (manual review)", "manualReview"),
        ("Missing in Fund", "unmatched"),
        ("Still Pending", "totalPending"),
    ):
        table.add_row(label, str(result[key]))
    console.print(table)
    _print_errors(result["errors"])
    if result["hasMore"]:
        console.print("\nMore pending transactions remain; run again to continue")


@main.command("goal-transactions")
@click.argument("goal_number")
@config_option
@database_option
@click.option("--start-date", type=DATE, default=None)
@click.option("--end-date", type=DATE, default=None)
@click.option("--preview", is_flag=True, help="Also show what the matcher would match now")
def goal_transactions(
    goal_number: str,
    config: Optional[Path],
    database_url: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    preview: bool,
):
    """
    Show both ledgers of one goal with their matches.

    GOAL_NUMBER: Goal to display
    """
    service = ReconciliationService(_load(config, database_url))
    result = service.get_transactions_with_matching(
        goal_number,
        start_date.date() if start_date else None,
        end_date.date() if end_date else None,
        preview=preview,
    )
    _exit_on_failure(result)

    for title, key, id_key in (
        ("Bank Transactions", "bankTransactions", "id"),
        ("Goal Transactions", "goalTransactions", "goalTransactionCode"),
    ):
        table = Table(title=f"{title}: {goal_number}")
        table.add_column("Id")
        table.add_column("Date")
        table.add_column("Type")
        table.add_column("Amount", justify="right")
        table.add_column("Status")
        table.add_column("Match")
        table.add_column("Tag")
        for txn in result[key]:
            match = txn["matchInfo"]
            table.add_row(
                txn[id_key],
                txn["transactionDate"],
                txn["transactionType"],
                f"{txn['totalAmount']:,.2f}",
                txn["reconciliationStatus"],
                f"{match['matchType']} ({match['confidence']:.2f})" if match else "-",
                txn["reviewTag"] or "-",
            )
        console.print(table)

    summary = result["summary"]
    console.print(
        f"\nBank {summary['matchedBankCount']}/{summary['bankCount']} matched, "
        f"goal {summary['matchedGoalTxnCount']}/{summary['goalTxnCount']} matched "
        f"(exact {summary['exactMatches']}, amount {summary['amountMatches']}, "
        f"split {summary['splitMatches']}, manual {summary['manualMatches']})"
    )

    if preview:
        console.print(f"\n[yellow]Preview: {len(result['previewMatches'])} new matches available[/yellow]")
        for match in result["previewMatches"]:
            console.print(
                f"  {match['matchType']} {','.join(match['matchedBankIds'])} <-> "
                f"{','.join(match['matchedGoalTxnIds'])} ({match['confidence']:.2f})"
            )


@main.command()
@click.argument("transaction_id")
@click.option("--side", type=click.Choice(["BANK", "GOAL"], case_sensitive=False), required=True)
@click.option("--tag", type=click.Choice([t.value for t in ReviewTag], case_sensitive=False), required=True)
@click.option("--notes", default=None)
@click.option("--reviewer", required=True)
@config_option
@database_option
def review(
    transaction_id: str,
    side: str,
    tag: str,
    notes: Optional[str],
    reviewer: str,
    config: Optional[Path],
    database_url: Optional[str],
):
    """
    Tag one unresolved transaction.

    TRANSACTION_ID: Bank id or goal transaction code
    """
    service = ReconciliationService(_load(config, database_url))
    result = service.review_transaction(transaction_id, side, tag, notes, reviewer)
    _exit_on_failure(result)
    console.print(f"[green]{side.upper()} {transaction_id} tagged {result['reviewTag']}[/green]")


@main.command("bulk-review")
@click.option("--bank-id", "bank_ids", multiple=True, help="Bank transaction id (repeatable)")
@click.option("--goal-code", "goal_codes", multiple=True, help="Goal transaction code (repeatable)")
@click.option("--tag", type=click.Choice([t.value for t in ReviewTag], case_sensitive=False), required=True)
@click.option("--notes", default=None)
@click.option("--reviewer", required=True)
@config_option
@database_option
def bulk_review(
    bank_ids: tuple,
    goal_codes: tuple,
    tag: str,
    notes: Optional[str],
    reviewer: str,
    config: Optional[Path],
    database_url: Optional[str],
):
    """Tag many transactions at once; either all are tagged or none."""
    service = ReconciliationService(_load(config, database_url))
    result = service.bulk_review(list(bank_ids), list(goal_codes), tag, notes, reviewer)
    _exit_on_failure(result)
    counts = result["updatedCounts"]
    console.print(f"[green]Tagged {counts['bank']} bank and {counts['goal']} goal transactions[/green]")


@main.command("reversal-candidates")
@click.argument("transaction_id")
@click.option("--start-date", type=DATE, default=None)
@click.option("--end-date", type=DATE, default=None)
@config_option
@database_option
def reversal_candidates(
    transaction_id: str,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    config: Optional[Path],
    database_url: Optional[str],
):
    """
    List possible reversal partners of a bank transaction.

    TRANSACTION_ID: Bank transaction id
    """
    service = ReconciliationService(_load(config, database_url))
    result = service.find_reversal_candidates(
        transaction_id,
        start_date.date() if start_date else None,
        end_date.date() if end_date else None,
    )
    _exit_on_failure(result)

    source = result["sourceTransaction"]
    table = Table(
        title=f"Reversal candidates for {transaction_id} "
        f"({source['transactionType']} {source['totalAmount']:,.2f} on {source['transactionDate']})"
    )
    table.add_column("Id")
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    for txn in result["candidates"]:
        table.add_row(
            txn["id"],
            txn["transactionDate"],
            txn["transactionType"],
            f"{txn['totalAmount']:,.2f}",
            txn["reconciliationStatus"],
        )
    console.print(table)


@main.command("link-reversal")
@click.argument("first_id")
@click.argument("second_id")
@click.option("--linked-by", required=True)
@config_option
@database_option
def link_reversal(
    first_id: str,
    second_id: str,
    linked_by: str,
    config: Optional[Path],
    database_url: Optional[str],
):
    """Link two bank transactions as a reversal pair."""
    service = ReconciliationService(_load(config, database_url))
    _exit_on_failure(service.link_reversal(first_id, second_id, linked_by))
    console.print(f"[green]Linked {first_id} <-> {second_id}[/green]")


@main.command("unlink-reversal")
@click.argument("transaction_id")
@click.option("--unlinked-by", default="system", show_default=True)
@config_option
@database_option
def unlink_reversal(
    transaction_id: str,
    unlinked_by: str,
    config: Optional[Path],
    database_url: Optional[str],
):
    """Remove the reversal pair a bank transaction belongs to."""
    service = ReconciliationService(_load(config, database_url))
    result = service.unlink_reversal(transaction_id, unlinked_by)
    _exit_on_failure(result)
    console.print(f"[green]Unlinked {' <-> '.join(result['unlinked'])}[/green]")


@main.command("detect-resolved")
@click.option("--start-date", type=DATE, default=None)
@click.option("--end-date", type=DATE, default=None)
@click.option("--triggered-by", default=None)
@config_option
@database_option
def detect_resolved(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    triggered_by: Optional[str],
    config: Optional[Path],
    database_url: Optional[str],
):
    """Mark tagged variances that newer ledger data has resolved."""
    service = ReconciliationService(_load(config, database_url))
    result = service.detect_resolved_variances(
        start_date.date() if start_date else None,
        end_date.date() if end_date else None,
        triggered_by,
    )
    _exit_on_failure(result)

    table = Table(title=f"Resolved variances: {result['resolved']}")
    table.add_column("Source")
    table.add_column("Id")
    table.add_column("Goal")
    table.add_column("Tag")
    table.add_column("Reason")
    for detail in result["details"]:
        table.add_row(
            detail["source"],
            detail["id"],
            detail["goalNumber"],
            detail["originalTag"],
            detail["resolvedReason"],
        )
    console.print(table)


@main.command()
@click.option("--start-date", type=DATE, default=None)
@click.option("--end-date", type=DATE, default=None)
@click.option(
    "--status",
    "review_status",
    type=click.Choice(["all", "pending", "reviewed"]),
    default="all",
    show_default=True,
)
@click.option("--tag", default=None, help="Only rows carrying this review tag")
@click.option("--goal", "goal_number", default=None)
@config_option
@database_option
def variances(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    review_status: str,
    tag: Optional[str],
    goal_number: Optional[str],
    config: Optional[Path],
    database_url: Optional[str],
):
    """List unmatched transactions awaiting or past review."""
    service = ReconciliationService(_load(config, database_url))
    result = service.get_variance_transactions(
        start_date.date() if start_date else None,
        end_date.date() if end_date else None,
        review_status,
        tag,
        goal_number,
    )
    _exit_on_failure(result)

    table = Table(title="Variance Transactions")
    table.add_column("Source")
    table.add_column("Id")
    table.add_column("Goal")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Tag")
    for row in result["data"][:50]:  # Show first 50
        table.add_row(
            row["source"],
            row.get("id") or row.get("goalTransactionCode"),
            row["goalNumber"],
            row["transactionDate"],
            f"{row['totalAmount']:,.2f}",
            row["reconciliationStatus"],
            row["reviewTag"] or "-",
        )
    console.print(table)

    if len(result["data"]) > 50:
        console.print(f"\n... and {len(result['data']) - 50} more transactions")

    summary = result["summary"]
    console.print(
        f"\nUnmatched: {summary['totalUnmatched']}  "
        f"pending review: {summary['pendingReview']}  reviewed: {summary['reviewed']}"
    )


@main.command("goal-summary")
@click.option("--start-date", type=DATE, required=True)
@click.option("--end-date", type=DATE, required=True)
@click.option("--goal", "goal_number", default=None)
@click.option(
    "--status",
    type=click.Choice(["ALL", "MATCHED", "VARIANCE", "REVIEWED"], case_sensitive=False),
    default="ALL",
    show_default=True,
)
@config_option
@database_option
def goal_summary(
    start_date: datetime,
    end_date: datetime,
    goal_number: Optional[str],
    status: str,
    config: Optional[Path],
    database_url: Optional[str],
):
    """Compare bank and goal ledger totals goal by goal."""
    service = ReconciliationService(_load(config, database_url))
    result = service.get_goal_summary(start_date.date(), end_date.date(), goal_number, status)
    _exit_on_failure(result)

    table = Table(title=f"Goal Summary ({result['total']} goals)")
    table.add_column("Goal")
    table.add_column("Bank Deposits", justify="right")
    table.add_column("Goal Deposits", justify="right")
    table.add_column("Bank Withdrawals", justify="right")
    table.add_column("Goal Withdrawals", justify="right")
    table.add_column("Status")
    table.add_column("Review")
    for row in result["data"]:
        status_style = "green" if row["status"] == "MATCHED" else "red"
        table.add_row(
            row["goalNumber"],
            f"{row['bankDeposits']:,.2f}",
            f"{row['goalTxnDeposits']:,.2f}",
            f"{row['bankWithdrawals']:,.2f}",
            f"{row['goalTxnWithdrawals']:,.2f}",
            f"[{status_style}]{row['status']}[/{status_style}]",
            row["reviewStatus"],
        )
    console.print(table)


@main.command("resolved-report")
@click.option("--start-date", type=DATE, default=None)
@click.option("--end-date", type=DATE, default=None)
@click.option("--goal", "goal_number", default=None)
@click.option("--tag", "original_tag", default=None, help="Only rows originally tagged with this tag")
@config_option
@database_option
def resolved_report(
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    goal_number: Optional[str],
    original_tag: Optional[str],
    config: Optional[Path],
    database_url: Optional[str],
):
    """List variances that have been resolved by newer ledger data."""
    service = ReconciliationService(_load(config, database_url))
    result = service.get_resolved_variances_report(
        start_date.date() if start_date else None,
        end_date.date() if end_date else None,
        goal_number,
        original_tag,
    )
    _exit_on_failure(result)

    summary = result["summary"]
    table = Table(title=f"Resolved Variances: {summary['totalResolved']}")
    table.add_column("Source")
    table.add_column("Id")
    table.add_column("Goal")
    table.add_column("Tag")
    table.add_column("Resolved At")
    table.add_column("Reason")
    for row in result["data"]:
        table.add_row(
            row["source"],
            row["id"],
            row["goalNumber"],
            row["originalTag"] or "-",
            row["resolvedAt"] or "-",
            row["resolvedReason"] or "",
        )
    console.print(table)
    console.print(
        f"\nBank: {summary['bySource']['bank']}  goal: {summary['bySource']['goal']}"
    )


@main.command("resolution-stats")
@config_option
@database_option
def resolution_stats(config: Optional[Path], database_url: Optional[str]):
    """Show tagged, resolved and pending counts per resolvable tag."""
    service = ReconciliationService(_load(config, database_url))
    result = service.get_resolution_stats()
    _exit_on_failure(result)

    table = Table(title="Variance Resolution")
    table.add_column("Tag")
    table.add_column("Tagged", justify="right")
    table.add_column("Resolved", justify="right")
    table.add_column("Pending", justify="right")
    for tag, counts in result["byTag"].items():
        table.add_row(tag, str(counts["total"]), str(counts["resolved"]), str(counts["pending"]))
    table.add_row(
        "[bold]Total[/bold]",
        str(result["totalTaggedForResolution"]),
        str(result["totalResolved"]),
        str(result["pendingResolution"]),
    )
    console.print(table)


def _load(config: Optional[Path], database_url: Optional[str]) -> ReconConfig:
    """Load configuration, exiting with a message when it is invalid."""
    try:
        recon_config = load_config(config)
    except ReconciliationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    if database_url:
        recon_config.database.url = database_url
    return recon_config


def _exit_on_failure(result: dict) -> None:
    if result.get("success"):
        return
    _print_errors(result.get("errors", []))
    sys.exit(1)


def _print_errors(errors: list) -> None:
    for error in errors:
        goal = f" [{error['goalNumber']}]" if error.get("goalNumber") else ""
        console.print(f"[red]{error['kind']}{goal}: {error['message']}[/red]")


def _display_matching_summary(results: list[dict]) -> None:
    """Display smart matching summary in console."""
    last = results[-1]
    breakdown = {"exact": 0, "amount": 0, "split": 0, "manual": 0}
    for result in results:
        for key, value in result["matchBreakdown"].items():
            breakdown[key] += value

    table = Table(title="Smart Matching Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Date Range", f"{last['dateRange']['startDate']} to {last['dateRange']['endDate']}")
    table.add_row("Total Goals", str(last["totalGoals"]))
    table.add_row("Processed Goals", str(last["processedGoals"]))
    table.add_row("Goals With Matches", str(sum(r["goalsWithMatches"] for r in results)))
    table.add_row("Exact Matches", str(breakdown["exact"]))
    table.add_row("Amount Matches", str(breakdown["amount"]))
    table.add_row("Split Matches", str(breakdown["split"]))
    table.add_row("Transactions Updated", str(sum(r["totalUpdated"] for r in results)))
    table.add_row("Failed Goals", str(sum(len(r["failedGoals"]) for r in results)))

    console.print(table)

    for result in results:
        _print_errors(result["errors"])
        for skip in result["splitSkipped"]:
            console.print(
                f"[yellow]Split search skipped for {skip['targetId']} on "
                f"{skip['transactionDate']}: {skip['candidateCount']} candidates[/yellow]"
            )


def _apply_matching_overrides(
    config: ReconConfig,
    tolerance_percent: Optional[str],
    tolerance_minimum: Optional[str],
    date_window: Optional[int],
) -> None:
    """Apply command-line overrides to the matching configuration."""
    try:
        if tolerance_percent is not None:
            config.matching.tolerance.percent = Decimal(tolerance_percent)
        if tolerance_minimum is not None:
            config.matching.tolerance.minimum = Decimal(tolerance_minimum)
    except InvalidOperation:
        console.print("[red]Error: tolerance overrides must be decimal numbers[/red]")
        sys.exit(1)
    if date_window is not None:
        config.matching.date_window_days = date_window


if __name__ == "__main__":
    main()
