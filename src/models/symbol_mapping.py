"""Confirmed symbol mappings (ticker renames and splits)."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import CheckConstraint, Enum, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class SymbolChangeAction(str, enum.Enum):
    """Kind of corporate event behind a mapping."""

    TICKER_CHANGE = "TICKER_CHANGE"
    SPLIT = "SPLIT"
    REVERSE_SPLIT = "REVERSE_SPLIT"


class SymbolMapping(Base):  # type: ignore[misc,valid-type]
    """
    A confirmed old -> new symbol relation.

    Only user-confirmed mappings are stored here; detector output stays a
    candidate until confirmed.

    Attributes:
        id: "{old_symbol}_{new_symbol}_{effective_date}"
        old_symbol: Symbol used before the effective date
        new_symbol: Symbol used from the effective date on
        effective_date: Date the change took effect
        action: TICKER_CHANGE, SPLIT or REVERSE_SPLIT
        ratio: New shares per old share for splits
        notes: Free text (detector evidence, user remarks)
    """

    __tablename__ = "symbol_mappings"

    id: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
    )

    old_symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )

    new_symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )

    effective_date: Mapped[date] = mapped_column(
        nullable=False,
        index=True,
    )

    action: Mapped[SymbolChangeAction] = mapped_column(
        Enum(SymbolChangeAction),
        nullable=False,
    )

    # Numeric(10, 4) matches typical split notation (e.g., 0.3333 for 1:3)
    ratio: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 4),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("ratio IS NULL OR ratio > 0", name="check_symbol_mapping_ratio"),
        Index("idx_symbol_mappings_old_date", "old_symbol", "effective_date"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "old_symbol": self.old_symbol,
            "new_symbol": self.new_symbol,
            "effective_date": self.effective_date.isoformat(),
            "action": self.action.value,
            "ratio": str(self.ratio) if self.ratio is not None else None,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<SymbolMapping({self.old_symbol} -> {self.new_symbol} "
            f"on {self.effective_date}, action={self.action.value})>"
        )
