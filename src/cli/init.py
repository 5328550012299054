"""Database initialization CLI command."""

import click

from src.lib.db import db_exists, init_db, record_counts, reset_db, resolve_db_path


@click.command()
@click.option("--reset", is_flag=True, help="Drop all transactions, lots and mappings")
def init(reset: bool) -> None:
    """Create the record store, or show what an existing one holds."""
    db_path = resolve_db_path()

    if db_exists() and not reset:
        click.echo(f"Database already exists at {db_path}")
        for table, count in record_counts().items():
            click.echo(f"  {table}: {count}")
        click.echo("Use --reset to recreate (WARNING: this will delete all data)")
        return

    if reset:
        if not click.confirm("This will DELETE ALL transactions, lots and mappings. Continue?"):
            click.echo("Aborted.")
            return

        reset_db()
        click.echo("Database reset successfully.")
    else:
        init_db()
        click.echo(f"Database initialized at {db_path}")
