"""Reconciliation CLI command."""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from src.cli.import_cli import validate_file_path
from src.lib.errors import SnapshotParseError
from src.services.ledger_store import SymbolMappingRepository, TransactionRepository
from src.services.reconciliation_service import (
    Discrepancy,
    Severity,
    apply_transactions_to_portfolio,
    find_missing_transactions,
    flag_inconsistencies,
    prioritize_discrepancies,
)
from src.services.snapshot_parser import load_snapshot
from src.services.symbol_change_detector import diff_snapshots

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def _discrepancy_table(discrepancies: list[Discrepancy]) -> Table:
    table = Table(title=f"Discrepancies ({len(discrepancies)})")
    table.add_column("Severity")
    table.add_column("Type", style="cyan")
    table.add_column("Symbol", style="bold")
    table.add_column("Calculated", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Difference", justify="right")
    table.add_column("Description", style="dim")

    for d in discrepancies:
        style = SEVERITY_STYLES[d.severity]
        table.add_row(
            f"[{style}]{d.severity.value}[/{style}]",
            d.type.value,
            d.symbol,
            f"{d.calculated:,.4f}" if d.calculated is not None else "-",
            f"{d.actual:,.4f}" if d.actual is not None else "-",
            f"{d.difference:,.4f}",
            d.description,
        )
    return table


@click.command()
@click.option(
    "--snapshot",
    "-s",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Positions snapshot CSV to reconcile against",
)
@click.option("--account", "-a", required=True, help="Account whose transactions are replayed")
@click.option(
    "--previous",
    "-p",
    type=click.Path(exists=True, path_type=Path),
    help="Earlier snapshot; enables missing-transaction and date checks",
)
def reconcile(snapshot: Path, account: str, previous: Optional[Path]) -> None:
    """Replay stored transactions and compare them with a snapshot.

    Examples:
        portfolio-recon reconcile -s positions.csv -a Individual
        portfolio-recon reconcile -s june.csv -p may.csv -a Individual
    """
    validate_file_path(snapshot, (".csv",))
    if previous is not None:
        validate_file_path(previous, (".csv",))

    try:
        current = load_snapshot(snapshot)
        earlier = load_snapshot(previous) if previous is not None else None
    except SnapshotParseError as e:
        console.print(f"[red]✗ Cannot read snapshot: {e.message}[/red]")
        raise click.Abort()

    transactions = asyncio.run(TransactionRepository().get_by_account(account))
    symbol_store = asyncio.run(SymbolMappingRepository().load_store())

    if not transactions:
        console.print(f"[yellow]No stored transactions for account {account}[/yellow]")

    summary = apply_transactions_to_portfolio(transactions, current, symbol_store)
    discrepancies = [d for result in summary.results for d in result.discrepancies]

    if earlier is not None:
        discrepancies += find_missing_transactions(transactions, diff_snapshots(earlier, current))
        discrepancies += flag_inconsistencies(transactions, [earlier, current])

    console.print(f"\n[bold]Reconciliation as of {current.date or 'today'}[/bold]")

    table = Table(title="Coverage")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Positions", str(summary.total_positions))
    table.add_row("With Acquisition Dates", str(summary.with_acquisition_dates))
    table.add_row("With Discrepancies", str(summary.with_discrepancies))
    table.add_row("Date Coverage", f"{summary.acquisition_date_coverage:.0%}")
    console.print(table)

    if not discrepancies:
        console.print("\n[green]✓ Transactions match the snapshot[/green]\n")
        return

    console.print(_discrepancy_table(prioritize_discrepancies(discrepancies)))

    suggestions = [s for result in summary.results for s in result.resolution_suggestions]
    if suggestions:
        console.print("\n[bold]Suggested Actions:[/bold]")
        for suggestion in suggestions:
            style = SEVERITY_STYLES[suggestion.priority]
            console.print(f"  [{style}]•[/{style}] {suggestion.action}: {suggestion.description}")
    console.print()
