"""Lot ledger CLI commands."""

import asyncio
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from src.lib.errors import ValidationError
from src.services.ledger_store import SymbolMappingRepository
from src.services.lot_ledger import (
    AccountingMethod,
    calculate_realized_gain_loss,
    calculate_unrealized_gain_loss,
    calculate_weighted_average_cost,
    is_open,
)
from src.services.lot_ledger_service import LotLedgerService

console = Console()


def _parse_decimal(value: str, name: str) -> Decimal:
    try:
        return Decimal(value.replace(",", "").replace("$", "").strip())
    except InvalidOperation:
        raise click.BadParameter(f"{name} must be a number, got '{value}'")


@click.group()
def lots() -> None:
    """Build and inspect the tax lot ledger."""
    pass


@lots.command(name="process")
@click.option("--account", "-a", required=True, help="Account to process")
@click.option(
    "--method",
    "-m",
    type=click.Choice(["FIFO", "LIFO", "AVERAGE_COST"], case_sensitive=False),
    default="FIFO",
    show_default=True,
    help="Lot selection method for sales",
)
def process_lots(account: str, method: str) -> None:
    """Create lots from acquisitions, apply splits, then consume lots for sales.

    Safe to re-run: already processed lots, splits and sales are skipped.
    """
    accounting_method = AccountingMethod(method.upper())

    async def run() -> tuple:
        store = await SymbolMappingRepository().load_store()
        service = LotLedgerService(symbol_store=store)
        created = await service.process_transactions_into_lots(account)
        splits = await service.process_splits(account)
        sold = await service.process_dispositions(account, accounting_method)
        return created, splits, sold

    created, splits, sold = asyncio.run(run())

    table = Table(title=f"Lot Processing ({accounting_method.value})")
    table.add_column("Step", style="cyan")
    table.add_column("Symbols", justify="right")
    table.add_column("Result", justify="right", style="green")
    table.add_column("Errors", justify="right", style="red")

    table.add_row(
        "Acquisitions",
        str(created.processed_symbols),
        f"{created.created_lots} lots created",
        str(len(created.errors)),
    )
    table.add_row(
        "Splits",
        str(splits.processed_symbols),
        f"{splits.applied_splits} splits / {splits.adjusted_lots} lots"
        f" ({splits.deferred_splits} deferred)",
        str(len(splits.errors)),
    )
    table.add_row(
        "Sales",
        str(sold.processed_symbols),
        f"{sold.processed_sales} sales / {sold.updated_lots} lots",
        str(len(sold.errors)),
    )
    console.print(table)

    for error in created.errors + splits.errors + sold.errors:
        console.print(f"[red]✗ {error['symbol']}: {error['error']}[/red]")

    for unmatched in sold.unmatched:
        console.print(
            f"[yellow]⚠️  {unmatched['symbol']} sale on {unmatched['date']}: "
            f"{unmatched['remaining_to_sell']} shares not covered by lots[/yellow]"
        )


@lots.command(name="list")
@click.option("--account", "-a", required=True, help="Account to list")
@click.option("--symbol", "-s", help="Only lots of this symbol")
@click.option("--price", help="Current price for unrealized gain/loss (requires --symbol)")
@click.option("--open-only", is_flag=True, help="Hide closed lots")
def list_lots(account: str, symbol: Optional[str], price: Optional[str], open_only: bool) -> None:
    """Show lots with remaining quantity, cost basis and realized gain/loss."""
    if price is not None and not symbol:
        raise click.BadParameter("--price requires --symbol")

    all_lots = asyncio.run(LotLedgerService().get_lots(account, symbol))
    shown = [lot for lot in all_lots if is_open(lot)] if open_only else all_lots

    if not shown:
        console.print(f"[yellow]No lots found for account {account}[/yellow]")
        return

    table = Table(title=f"Lots - {account}" + (f" ({symbol.upper()})" if symbol else ""))
    table.add_column("Symbol", style="bold")
    table.add_column("Acquired")
    table.add_column("Original", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Cost Basis", justify="right")
    table.add_column("Per Share", justify="right")
    table.add_column("Status", style="cyan")
    table.add_column("Source", style="dim")

    for lot in shown:
        table.add_row(
            lot.symbol,
            lot.acquisition_date.isoformat(),
            f"{lot.original_quantity:,.4f}",
            f"{lot.remaining_quantity:,.4f}",
            f"${lot.cost_basis:,.2f}",
            f"${lot.price_per_share:,.4f}",
            lot.status.value,
            "transactions" if lot.is_transaction_derived else "manual",
        )
    console.print(table)

    open_lots = [lot for lot in all_lots if is_open(lot)]
    console.print(
        f"\nWeighted average cost (open lots): "
        f"${calculate_weighted_average_cost(open_lots):,.4f}"
    )
    console.print(f"Realized gain/loss: ${calculate_realized_gain_loss(all_lots):,.2f}")

    if price is not None:
        current_price = _parse_decimal(price, "--price")
        unrealized = calculate_unrealized_gain_loss(open_lots, current_price)
        color = "green" if unrealized >= 0 else "red"
        console.print(f"Unrealized gain/loss: [{color}]${unrealized:,.2f}[/{color}]")
    console.print()


@lots.command(name="add")
@click.option("--account", "-a", required=True, help="Account owning the lot")
@click.option("--symbol", "-s", required=True, help="Security symbol")
@click.option("--quantity", "-q", required=True, help="Shares acquired")
@click.option("--date", "-d", "acquired", required=True, help="Acquisition date (YYYY-MM-DD)")
@click.option("--cost-basis", "-c", required=True, help="Total cost of the lot")
def add_lot(account: str, symbol: str, quantity: str, acquired: str, cost_basis: str) -> None:
    """Record a lot acquired outside the imported transaction history."""
    try:
        acquisition_date = datetime.strptime(acquired, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"Invalid date '{acquired}'. Expected YYYY-MM-DD")

    try:
        lot = asyncio.run(
            LotLedgerService().create_manual_lot(
                account,
                symbol,
                _parse_decimal(quantity, "--quantity"),
                acquisition_date,
                _parse_decimal(cost_basis, "--cost-basis"),
            )
        )
    except ValidationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise click.Abort()

    console.print(
        f"[green]✓ Lot recorded:[/green] {lot.symbol} {lot.original_quantity} shares "
        f"acquired {lot.acquisition_date} for ${lot.cost_basis:,.2f}"
    )
