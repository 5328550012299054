"""Tax lot models.

A Lot is one acquisition of shares tracked separately for cost basis. Sales
consume lots and append LotSale entries; splits append LotAdjustment entries.
Both logs are append-only.
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.lib.db import Base


class LotStatus(str, enum.Enum):
    """Consumption state of a lot."""

    OPEN = "OPEN"  # remaining == original
    PARTIAL = "PARTIAL"  # 0 < remaining < original
    CLOSED = "CLOSED"  # remaining == 0


class AdjustmentType(str, enum.Enum):
    """Corporate action applied to a lot."""

    SPLIT = "SPLIT"
    REVERSE_SPLIT = "REVERSE_SPLIT"


class Lot(Base):  # type: ignore[misc,valid-type]
    """Tax lot for one (account, symbol) security.

    Lots created from parsed acquisitions and lots entered by hand share this
    exact shape; provenance is carried only by ``is_transaction_derived``.

    Attributes:
        id: Deterministic identifier (see lot_ledger.generate_lot_id)
        security_id: Composite "{account}_{symbol}" key
        account: Owning account name
        symbol: Security symbol
        original_quantity: Shares acquired (adjusted by splits)
        remaining_quantity: Shares not yet consumed by sales
        acquisition_date: Date of acquisition
        cost_basis: Total cost of the lot (not per share)
        price_per_share: cost_basis / original_quantity
        status: OPEN, PARTIAL or CLOSED
        is_transaction_derived: True when created from an acquisition transaction
        sales: Ordered log of sales consuming this lot
        adjustments: Ordered log of split adjustments
    """

    __tablename__ = "lots"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    security_id: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
        index=True,
    )

    account: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    original_quantity: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    remaining_quantity: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    acquisition_date: Mapped[date] = mapped_column(
        nullable=False,
        index=True,
    )

    cost_basis: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    price_per_share: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    status: Mapped[LotStatus] = mapped_column(
        Enum(LotStatus),
        nullable=False,
        index=True,
    )

    is_transaction_derived: Mapped[bool] = mapped_column(
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(),
        onupdate=lambda: datetime.now(),
        nullable=False,
    )

    sales: Mapped[list["LotSale"]] = relationship(
        "LotSale",
        back_populates="lot",
        cascade="all, delete-orphan",
        order_by="LotSale.sequence",
        lazy="selectin",
    )

    adjustments: Mapped[list["LotAdjustment"]] = relationship(
        "LotAdjustment",
        back_populates="lot",
        cascade="all, delete-orphan",
        order_by="LotAdjustment.sequence",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("original_quantity >= 0", name="check_lot_original_quantity"),
        CheckConstraint("remaining_quantity >= 0", name="check_lot_remaining_quantity"),
        Index("idx_lots_account_symbol", "account", "symbol"),
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Lot(symbol={self.symbol}, account={self.account}, "
            f"acquired={self.acquisition_date}, "
            f"original={self.original_quantity}, "
            f"remaining={self.remaining_quantity}, "
            f"status={self.status.value if self.status else None})"
        )


class LotSale(Base):  # type: ignore[misc,valid-type]
    """One consumption of a lot by a sale.

    Attributes:
        id: Unique identifier
        lot_id: Consumed lot
        sequence: Append order within the lot
        transaction_id: Sell transaction that triggered the sale, if any
        sale_date: Date of the sale
        quantity: Shares taken from this lot
        price: Sale price per share
        proceeds: quantity * price
        cost_basis: Proportional cost basis of the shares taken
        gain_loss: proceeds - cost_basis
    """

    __tablename__ = "lot_sales"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )

    lot_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("lots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    transaction_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    sale_date: Mapped[date | None] = mapped_column(
        nullable=True,
    )

    quantity: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    proceeds: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    cost_basis: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    gain_loss: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    lot: Mapped["Lot"] = relationship(
        "Lot",
        back_populates="sales",
    )

    __table_args__ = (CheckConstraint("quantity > 0", name="check_lot_sale_quantity"),)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"LotSale(date={self.sale_date}, quantity={self.quantity}, "
            f"gain_loss={self.gain_loss})"
        )


class LotAdjustment(Base):  # type: ignore[misc,valid-type]
    """Split or reverse split applied to a lot.

    Attributes:
        id: Unique identifier
        lot_id: Adjusted lot
        sequence: Append order within the lot
        adjustment_type: SPLIT or REVERSE_SPLIT
        adjustment_date: Effective date of the corporate action
        ratio: New shares per old share (2 for 2:1, 0.5 for 1:2)
        description: Human readable summary, e.g. "2:1 split"
    """

    __tablename__ = "lot_adjustments"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )

    lot_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("lots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    adjustment_type: Mapped[AdjustmentType] = mapped_column(
        Enum(AdjustmentType),
        nullable=False,
    )

    adjustment_date: Mapped[date | None] = mapped_column(
        nullable=True,
    )

    ratio: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    lot: Mapped["Lot"] = relationship(
        "Lot",
        back_populates="adjustments",
    )

    __table_args__ = (CheckConstraint("ratio > 0", name="check_lot_adjustment_ratio"),)

    def __repr__(self) -> str:
        """String representation."""
        return f"LotAdjustment({self.description} on {self.adjustment_date})"
