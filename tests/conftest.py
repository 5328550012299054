"""Pytest configuration and fixtures for all tests."""

import os
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from src.lib.brokerage_models import Transaction
from src.lib.db import init_db, reset_db, reset_engine
from src.models.transaction import TransactionCategory

# No log file under the user's home during tests
os.environ.setdefault("LOG_FILE", "")


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize test database before any tests run.

    Creates a temporary database for testing that is automatically cleaned up.
    Uses session scope so database is created once per test session.
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        test_db_path = Path(tmp.name)

    # Set environment variable for test database BEFORE initializing
    os.environ["PORTFOLIO_RECON_DB_PATH"] = str(test_db_path)

    init_db(test_db_path)

    yield test_db_path

    reset_engine()
    if test_db_path.exists():
        test_db_path.unlink()


@pytest.fixture(autouse=True)
def reset_database_between_tests(setup_test_database):
    """Reset database state between each test.

    This ensures test isolation by clearing all data between tests
    while keeping the schema intact.
    """
    reset_engine()
    reset_db(setup_test_database)

    yield


@pytest.fixture
def make_transaction():
    """Factory for normalized transactions with sensible defaults."""
    counter = {"n": 0}

    def _make(
        symbol: str = "ABC",
        action: str = "Buy",
        category: TransactionCategory = TransactionCategory.ACQUISITION,
        on: date | None = date(2023, 1, 15),
        quantity: str = "10",
        price: str = "50",
        amount: str = "-500",
        fees: str = "0",
        description: str = "",
        id: str | None = None,
    ) -> Transaction:
        counter["n"] += 1
        return Transaction(
            id=id or f"{on}_{symbol}_{action}_{quantity}_{counter['n']}",
            date=on,
            symbol=symbol,
            action=action,
            category=category,
            quantity=Decimal(quantity),
            price=Decimal(price),
            fees=Decimal(fees),
            amount=Decimal(amount),
            description=description,
        )

    return _make
