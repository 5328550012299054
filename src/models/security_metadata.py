"""Per-security metadata: earliest acquisition date and the lots backing it."""

from datetime import date, datetime

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class SecurityMetadata(Base):  # type: ignore[misc,valid-type]
    """
    Metadata for one (account, symbol) security.

    Attributes:
        id: Composite "{account}_{symbol}" security id
        account: Owning account name
        symbol: Security symbol
        acquisition_date: Earliest known acquisition date
        lot_ids: Ids of the lots created for this security
        updated_at: Last update timestamp
    """

    __tablename__ = "security_metadata"

    id: Mapped[str] = mapped_column(
        String(150),
        primary_key=True,
    )

    account: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    acquisition_date: Mapped[date | None] = mapped_column(
        nullable=True,
    )

    lot_ids: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(),
        onupdate=lambda: datetime.now(),
        nullable=False,
    )

    __table_args__ = (Index("idx_security_metadata_symbol_account", "symbol", "account"),)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<SecurityMetadata(symbol={self.symbol}, account={self.account}, "
            f"acquisition_date={self.acquisition_date})>"
        )
