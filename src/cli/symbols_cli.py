"""Symbol change CLI commands: detection, snapshot diff and confirmed mappings."""

import asyncio
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from src.cli.import_cli import validate_file_path
from src.lib.errors import SnapshotParseError, ValidationError
from src.models import SymbolChangeAction
from src.services.deduplicator import dedupe
from src.services.ledger_store import SymbolMappingRepository, TransactionRepository
from src.services.snapshot_parser import load_snapshot
from src.services.symbol_change_detector import (
    detect_corporate_actions,
    detect_symbol_changes,
    diff_snapshots,
)

console = Console()


@click.group()
def symbols() -> None:
    """Detect and confirm ticker changes and splits."""
    pass


@symbols.command(name="detect")
@click.option("--account", "-a", required=True, help="Account whose transactions are scanned")
def detect(account: str) -> None:
    """List probable ticker changes and splits (unconfirmed candidates)."""
    transactions = dedupe(asyncio.run(TransactionRepository().get_by_account(account)))
    renames = detect_symbol_changes(transactions)
    splits = detect_corporate_actions(transactions)

    if not renames and not splits:
        console.print("[green]✓ No symbol changes or splits detected[/green]")
        return

    if renames:
        table = Table(title="Possible Ticker Changes")
        table.add_column("Old", style="bold")
        table.add_column("New", style="bold")
        table.add_column("Around")
        table.add_column("Confidence", style="cyan")
        table.add_column("Shares", justify="right")
        for candidate in renames:
            table.add_row(
                candidate.old_symbol,
                candidate.new_symbol,
                str(candidate.estimated_date),
                candidate.confidence.value,
                str(candidate.evidence.get("matching_quantity", "")),
            )
        console.print(table)

    if splits:
        table = Table(title="Possible Splits")
        table.add_column("Symbol", style="bold")
        table.add_column("Date")
        table.add_column("Action", style="cyan")
        table.add_column("Ratio", justify="right")
        table.add_column("Detected", justify="right", style="dim")
        table.add_column("Confidence", style="cyan")
        for action in splits:
            table.add_row(
                action.symbol,
                action.date.isoformat(),
                action.action.value,
                str(action.ratio),
                f"{action.detected_ratio:.4f}",
                action.confidence.value,
            )
        console.print(table)

    console.print(
        "\n[dim]Confirm with:[/dim] portfolio-recon symbols confirm OLD NEW --date YYYY-MM-DD\n"
    )


@symbols.command(name="diff")
@click.argument("old_snapshot", type=click.Path(exists=True, path_type=Path))
@click.argument("new_snapshot", type=click.Path(exists=True, path_type=Path))
def diff(old_snapshot: Path, new_snapshot: Path) -> None:
    """Compare two positions snapshots."""
    validate_file_path(old_snapshot, (".csv",))
    validate_file_path(new_snapshot, (".csv",))

    try:
        result = diff_snapshots(load_snapshot(old_snapshot), load_snapshot(new_snapshot))
    except SnapshotParseError as e:
        console.print(f"[red]✗ Cannot read snapshot: {e.message}[/red]")
        raise click.Abort()

    console.print(f"\n[bold]Snapshot diff {result.previous_date} → {result.current_date}[/bold]")

    table = Table()
    table.add_column("Change", style="cyan")
    table.add_column("Symbol", style="bold")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")

    for change in result.sold:
        table.add_row("SOLD", change.symbol, f"{change.previous_quantity:,.4f}", "-")
    for change in result.acquired:
        table.add_row("ACQUIRED", change.symbol, "-", f"{change.current_quantity:,.4f}")
    for change in result.quantity_changes:
        table.add_row(
            change.change_type.value,
            change.symbol,
            f"{change.previous_quantity:,.4f}",
            f"{change.current_quantity:,.4f}",
        )
    for candidate in result.ticker_changes:
        shares = candidate.evidence.get("quantity", Decimal("0"))
        table.add_row(
            "TICKER_CHANGE?",
            f"{candidate.old_symbol} → {candidate.new_symbol}",
            f"{shares:,.4f}",
            f"{shares:,.4f}",
        )

    if table.row_count == 0:
        console.print("[green]✓ No position changes[/green]\n")
        return
    console.print(table)


@symbols.command(name="confirm")
@click.argument("old_symbol")
@click.argument("new_symbol")
@click.option("--date", "-d", "effective", required=True, help="Effective date (YYYY-MM-DD)")
@click.option(
    "--action",
    type=click.Choice([a.value for a in SymbolChangeAction], case_sensitive=False),
    default=SymbolChangeAction.TICKER_CHANGE.value,
    show_default=True,
)
@click.option("--ratio", help="New shares per old share, for splits")
@click.option("--notes", help="Free text stored with the mapping")
def confirm(
    old_symbol: str,
    new_symbol: str,
    effective: str,
    action: str,
    ratio: Optional[str],
    notes: Optional[str],
) -> None:
    """Store a confirmed symbol mapping (rename or split)."""
    try:
        effective_date = datetime.strptime(effective, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"Invalid date '{effective}'. Expected YYYY-MM-DD")

    try:
        split_ratio = Decimal(ratio) if ratio is not None else None
    except InvalidOperation:
        raise click.BadParameter(f"--ratio must be a number, got '{ratio}'")

    repository = SymbolMappingRepository()
    store = asyncio.run(repository.load_store())
    try:
        mapping = store.create(
            old_symbol,
            new_symbol,
            effective_date,
            SymbolChangeAction(action.upper()),
            ratio=split_ratio,
            notes=notes,
        )
    except ValidationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise click.Abort()

    asyncio.run(repository.save(mapping))
    console.print(
        f"[green]✓ Mapping stored:[/green] {mapping.old_symbol} → {mapping.new_symbol} "
        f"({mapping.action.value}) effective {mapping.effective_date}"
    )


@symbols.command(name="list")
def list_mappings() -> None:
    """Show confirmed symbol mappings."""
    mappings = asyncio.run(SymbolMappingRepository().get_all())
    if not mappings:
        console.print("[yellow]No symbol mappings recorded[/yellow]")
        return

    table = Table(title="Symbol Mappings")
    table.add_column("Old", style="bold")
    table.add_column("New", style="bold")
    table.add_column("Effective")
    table.add_column("Action", style="cyan")
    table.add_column("Ratio", justify="right")
    table.add_column("Notes", style="dim")
    for mapping in mappings:
        table.add_row(
            mapping.old_symbol,
            mapping.new_symbol,
            mapping.effective_date.isoformat(),
            mapping.action.value,
            str(mapping.ratio) if mapping.ratio is not None else "-",
            mapping.notes or "",
        )
    console.print(table)
