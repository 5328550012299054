"""CLI entry point for portfolio-recon."""

import logging
import sys
import traceback

import click
from rich.console import Console

from src.cli import import_cli, lots_cli, reconcile_cli, symbols_cli
from src.cli import init as init_cmd
from src.lib.errors import PortfolioReconError, format_error_message, get_error_color
from src.lib.logging_config import setup_logging

console = Console()

__version__ = "0.1.0"


@click.group()  # type: ignore[misc]
@click.option("--debug", is_flag=True, help="Enable debug logging")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def main(ctx: click.Context, debug: bool) -> None:
    """Portfolio reconciliation - replay transactions, reconcile snapshots, track tax lots."""
    ctx.ensure_object(dict)
    ctx.obj["DEBUG"] = debug
    setup_logging(logging.DEBUG if debug else logging.WARNING)


def handle_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: object
) -> None:
    """
    Global exception handler for CLI.

    Formats exceptions with Rich colors and provides user-friendly messages.
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)  # type: ignore[arg-type]
        return

    color = get_error_color(exc_value) if isinstance(exc_value, Exception) else "red"
    message = (
        format_error_message(exc_value) if isinstance(exc_value, Exception) else str(exc_value)
    )

    console.print(f"\n[{color}]✗ Error: {message}[/{color}]\n")

    if not isinstance(exc_value, PortfolioReconError):
        console.print("[dim]Unexpected error occurred. Use --debug for full traceback.[/dim]")
    if "--debug" in sys.argv:
        console.print("[dim]Traceback:[/dim]")
        traceback.print_exception(exc_value)

    sys.exit(1)


# Install global exception handler
sys.excepthook = handle_exception


@main.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    click.echo(f"portfolio-recon version {__version__}")


# Register subcommands
main.add_command(import_cli.import_group)
main.add_command(reconcile_cli.reconcile)
main.add_command(lots_cli.lots)
main.add_command(symbols_cli.symbols)
main.add_command(init_cmd.init)


if __name__ == "__main__":
    main()
