"""Pydantic models for brokerage export records.

Raw models mirror the broker's column headers (all strings). The normalized
Transaction is the engine's canonical, immutable shape.
"""

import datetime as dt
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.lib.validators import normalize_symbol, parse_amount
from src.models.transaction import TransactionCategory

# Placeholder values brokers print in empty numeric cells
_EMPTY_NUMERIC = {"", "--", "N/A", "n/a"}


class RawTransaction(BaseModel):
    """One entry of a BrokerageTransactions array, as exported.

    Fields match the JSON keys of the brokerage transaction export.
    """

    date: str = Field(default="", alias="Date")  # "MM/DD/YYYY" or "MM/DD/YYYY as of MM/DD/YYYY"
    symbol: str = Field(default="", alias="Symbol")
    action: str = Field(default="", alias="Action")
    quantity: str = Field(default="", alias="Quantity")
    price: str = Field(default="", alias="Price")
    fees: str = Field(default="", alias="Fees & Comm")
    amount: str = Field(default="", alias="Amount")
    description: str = Field(default="", alias="Description")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        str_strip_whitespace = True

    @field_validator(
        "date",
        "symbol",
        "action",
        "quantity",
        "price",
        "fees",
        "amount",
        "description",
        mode="before",
    )
    @classmethod
    def coerce_to_string(cls, v: Any) -> str:
        """Exports occasionally carry numbers or nulls where strings are expected."""
        if v is None:
            return ""
        return str(v)


class TransactionSource(BaseModel):
    """Top-level envelope of a brokerage transaction export.

    Entries are kept as raw mappings so a malformed entry fails on its own
    during normalization instead of rejecting the whole file.
    """

    brokerage_transactions: list[Any] = Field(alias="BrokerageTransactions")
    from_date: str = Field(default="", alias="FromDate")
    to_date: str = Field(default="", alias="ToDate")
    total_transactions_amount: str = Field(default="", alias="TotalTransactionsAmount")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True

    @field_validator("from_date", "to_date", "total_transactions_amount", mode="before")
    @classmethod
    def coerce_to_string(cls, v: Any) -> str:
        """Allow null/numeric header fields."""
        if v is None:
            return ""
        return str(v)

    @property
    def total_amount(self) -> Decimal:
        """TotalTransactionsAmount parsed as money."""
        return parse_amount(self.total_transactions_amount)


class Transaction(BaseModel):
    """Normalized transaction. Immutable once created."""

    id: str
    date: dt.date | None = None  # None when the source date was unparseable
    as_of_date: dt.date | None = None  # Auxiliary backdated settlement date
    symbol: str = ""
    action: str = ""
    category: TransactionCategory = TransactionCategory.NEUTRAL
    quantity: Decimal = Decimal("0")  # Sign as exported; direction implied by category
    price: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    description: str = ""

    class Config:
        """Pydantic configuration."""

        frozen = True


class Position(BaseModel):
    """One row of a portfolio positions snapshot."""

    symbol: str = Field(alias="Symbol")
    quantity: Decimal = Field(default=Decimal("0"), alias="Qty (Quantity)")
    market_value: Decimal = Field(default=Decimal("0"), alias="Mkt Val (Market Value)")
    price: Decimal = Field(default=Decimal("0"), alias="Price")
    cost_basis: Decimal = Field(default=Decimal("0"), alias="Cost Basis")
    description: str = Field(default="", alias="Description")
    security_type: str = Field(default="", alias="Security Type")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        str_strip_whitespace = True

    @field_validator("symbol", mode="before")
    @classmethod
    def clean_symbol(cls, v: Any) -> str:
        """Normalize symbol casing and whitespace."""
        return normalize_symbol(v)

    @field_validator("quantity", "market_value", "price", "cost_basis", mode="before")
    @classmethod
    def parse_money(cls, v: Any) -> Decimal:
        """Strip currency formatting; broker placeholders count as zero."""
        if v is None or (isinstance(v, str) and v.strip() in _EMPTY_NUMERIC):
            return Decimal("0")
        return parse_amount(v)

    @field_validator("description", "security_type", mode="before")
    @classmethod
    def coerce_to_string(cls, v: Any) -> str:
        """Allow nulls in text columns."""
        if v is None:
            return ""
        return str(v)


class PortfolioSnapshot(BaseModel):
    """Positions of one account at one point in time."""

    date: dt.date | None = None
    positions: list[Position] = Field(default_factory=list)
    account_total: Decimal | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)  # Rows skipped while loading

    def position_for(self, symbol: str) -> Position | None:
        """Return the position for a symbol, if held."""
        wanted = normalize_symbol(symbol)
        for position in self.positions:
            if position.symbol == wanted:
                return position
        return None
