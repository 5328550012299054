"""
SQLAlchemy models for the portfolio-recon application.

All models inherit from the Base declarative class defined in src.lib.db.
"""

from src.models.lot import AdjustmentType, Lot, LotAdjustment, LotSale, LotStatus
from src.models.security_metadata import SecurityMetadata
from src.models.symbol_mapping import SymbolChangeAction, SymbolMapping
from src.models.transaction import TransactionCategory, TransactionRecord

__all__ = [
    "AdjustmentType",
    "Lot",
    "LotAdjustment",
    "LotSale",
    "LotStatus",
    "SecurityMetadata",
    "SymbolChangeAction",
    "SymbolMapping",
    "TransactionCategory",
    "TransactionRecord",
]
