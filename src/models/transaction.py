"""
Transaction record model.

Stores normalized brokerage transactions per account. Records are upserted by
their deterministic id so that re-importing the same export is a no-op.
"""

import datetime as dt
import enum
from decimal import Decimal

from sqlalchemy import TIMESTAMP, Date, Enum, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class TransactionCategory(str, enum.Enum):
    """How a transaction affects the share count of its security."""

    ACQUISITION = "ACQUISITION"  # Increases holdings
    DISPOSITION = "DISPOSITION"  # Decreases holdings
    NEUTRAL = "NEUTRAL"  # Cash-only events (dividends, interest, fees)
    CORPORATE_ACTION = "CORPORATE_ACTION"  # Splits and reverse splits


class TransactionRecord(Base):  # type: ignore[misc,valid-type]
    """
    Persisted normalized transaction.

    Attributes:
        id: Deterministic identifier assigned during normalization (unique per account)
        account: Owning account name
        date: Settlement date (None when the source date was unparseable)
        as_of_date: Auxiliary backdated settlement date from "as of" records
        symbol: Security symbol (empty for cash-only records)
        action: Broker action label, as exported
        category: Category derived from the action
        quantity: Share count, sign as exported (direction comes from category)
        price: Price per share
        fees: Fees and commissions
        amount: Signed cash amount of the transaction
        description: Free text
        imported_at: When the record was last merged
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    account: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        index=True,
    )

    date: Mapped[dt.date | None] = mapped_column(
        Date,
        nullable=True,
        index=True,
    )

    as_of_date: Mapped[dt.date | None] = mapped_column(
        Date,
        nullable=True,
    )

    symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="",
        index=True,
    )

    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    category: Mapped[TransactionCategory] = mapped_column(
        Enum(TransactionCategory),
        nullable=False,
    )

    # Numeric(20, 8): fractional shares and sub-cent prices
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal("0"),
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal("0"),
    )

    fees: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal("0"),
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal("0"),
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    imported_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: dt.datetime.now(),
    )

    __table_args__ = (
        Index("idx_transactions_account_symbol", "account", "symbol"),
        Index("idx_transactions_account_date", "account", "date"),
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<TransactionRecord(account={self.account}, date={self.date}, "
            f"symbol={self.symbol}, action={self.action}, quantity={self.quantity})>"
        )
