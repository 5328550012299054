"""Import CLI commands for brokerage transaction exports."""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from src.lib.errors import StructuralError
from src.services.deduplicator import dedupe
from src.services.ledger_store import TransactionRepository
from src.services.transaction_normalizer import parse_transaction_source

console = Console()

MAX_ERRORS_SHOWN = 10


def validate_file_path(file_path: Path, allowed_suffixes: tuple[str, ...]) -> None:
    """Validate an input file path.

    Args:
        file_path: Path to validate
        allowed_suffixes: Accepted lowercase extensions, e.g. (".json",)

    Raises:
        click.BadParameter: If path is a symlink, not a regular file or has
            an unexpected extension
    """
    if not file_path.exists():
        raise click.BadParameter(f"File not found: {file_path}")

    if file_path.is_symlink():
        raise click.BadParameter(f"Symlinks are not allowed for security reasons: {file_path}")

    try:
        resolved_path = file_path.resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise click.BadParameter(f"Invalid file path: {e}")

    if not resolved_path.is_file():
        raise click.BadParameter(f"Path must be a regular file: {file_path}")

    if resolved_path.suffix.lower() not in allowed_suffixes:
        raise click.BadParameter(
            f"Only {', '.join(allowed_suffixes)} files are allowed, got: {resolved_path.suffix}"
        )


@click.group(name="import")
def import_group() -> None:
    """Import brokerage exports."""
    pass


@import_group.command(name="transactions")
@click.option(
    "--file",
    "-f",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to the brokerage transactions JSON export",
)
@click.option("--account", "-a", required=True, help="Account the transactions belong to")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Validate without importing to database",
)
def import_transactions(file: Path, account: str, dry_run: bool) -> None:
    """Normalize, deduplicate and store a transaction export.

    Examples:
        portfolio-recon import transactions -f history.json -a Individual
        portfolio-recon import transactions -f history.json -a Individual --dry-run
    """
    validate_file_path(file, (".json",))

    console.print(f"\n[bold]Importing {file.name}[/bold] (account: {account})")
    if dry_run:
        console.print("[yellow]DRY RUN MODE - No data will be saved[/yellow]\n")

    try:
        result = parse_transaction_source(file)
    except StructuralError as e:
        console.print(f"[red]✗ Import failed: {e.message}[/red]")
        raise click.Abort()

    unique = dedupe(result.transactions)
    duplicates = len(result.transactions) - len(unique)

    stored = 0
    store_errors: list[dict[str, object]] = []
    if not dry_run:
        merge = asyncio.run(TransactionRepository().bulk_merge(unique, account))
        stored = merge.processed
        store_errors = merge.errors

    table = Table(title="Import Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")

    table.add_row("Total Records", str(result.total_records))
    table.add_row("Normalized", str(result.success_count))
    table.add_row("Duplicates", str(duplicates))
    table.add_row("Errors", str(len(result.errors) + len(store_errors)))
    if not dry_run:
        table.add_row("Stored", str(stored))
    if result.from_date or result.to_date:
        table.add_row("Period", f"{result.from_date} - {result.to_date}", style="dim")

    console.print(table)

    errors = result.errors + store_errors
    if errors:
        console.print(f"\n[yellow]⚠️  {len(errors)} record(s) skipped:[/yellow]")
        for error in errors[:MAX_ERRORS_SHOWN]:
            console.print(f"  [dim]{error.get('index', error.get('id'))}:[/dim] {error['error']}")
        if len(errors) > MAX_ERRORS_SHOWN:
            console.print(f"  [dim]... and {len(errors) - MAX_ERRORS_SHOWN} more[/dim]")

    if stored > 0:
        console.print(f"\n[dim]Next:[/dim] portfolio-recon lots process -a {account}\n")
