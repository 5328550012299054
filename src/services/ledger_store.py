"""Async persistence for the lot ledger.

Repositories over the SQLite record store. Each call opens its own
db_session(), so calls are independent and may be awaited sequentially or
gathered. Objects returned are detached from their session; mutate them in
memory and hand them back to save()/save_many().
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from src.lib.brokerage_models import Transaction
from src.lib.db import db_session
from src.lib.errors import DatabaseError
from src.lib.validators import normalize_symbol
from src.models import Lot, LotStatus, SecurityMetadata, SymbolMapping, TransactionRecord
from src.services.symbol_mapping_store import SymbolMappingStore

logger = logging.getLogger(__name__)


def record_from_transaction(transaction: Transaction, account: str) -> TransactionRecord:
    """Build the stored row for a normalized transaction."""
    return TransactionRecord(
        id=transaction.id,
        account=account,
        date=transaction.date,
        as_of_date=transaction.as_of_date,
        symbol=transaction.symbol,
        action=transaction.action,
        category=transaction.category,
        quantity=transaction.quantity,
        price=transaction.price,
        fees=transaction.fees,
        amount=transaction.amount,
        description=transaction.description,
        imported_at=datetime.now(),
    )


def transaction_from_record(record: TransactionRecord) -> Transaction:
    """Rebuild the immutable transaction from a stored row."""
    return Transaction(
        id=record.id,
        date=record.date,
        as_of_date=record.as_of_date,
        symbol=record.symbol,
        action=record.action,
        category=record.category,
        quantity=record.quantity,
        price=record.price,
        fees=record.fees,
        amount=record.amount,
        description=record.description,
    )


@dataclass
class BulkMergeResult:
    """Outcome of TransactionRepository.bulk_merge()."""

    processed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class LotRepository:
    """Lots keyed by id, indexed by security id and account."""

    async def get_by_id(self, lot_id: str) -> Optional[Lot]:
        with db_session() as session:
            return session.get(Lot, lot_id)

    async def get_by_security_id(self, security_id: str) -> list[Lot]:
        """All lots of one security, oldest acquisition first."""
        with db_session() as session:
            return (
                session.query(Lot)
                .filter(Lot.security_id == security_id)
                .order_by(Lot.acquisition_date, Lot.id)
                .all()
            )

    async def get_by_account(self, account: str, symbol: Optional[str] = None) -> list[Lot]:
        """All lots of an account, optionally for one symbol."""
        with db_session() as session:
            query = session.query(Lot).filter(Lot.account == account)
            if symbol:
                query = query.filter(Lot.symbol == normalize_symbol(symbol))
            return query.order_by(Lot.symbol, Lot.acquisition_date, Lot.id).all()

    async def get_open_lots(self, security_id: str) -> list[Lot]:
        """OPEN and PARTIAL lots of one security."""
        with db_session() as session:
            return (
                session.query(Lot)
                .filter(
                    Lot.security_id == security_id,
                    Lot.status != LotStatus.CLOSED,
                )
                .order_by(Lot.acquisition_date, Lot.id)
                .all()
            )

    async def exists(self, lot_id: str) -> bool:
        with db_session() as session:
            return session.query(Lot.id).filter(Lot.id == lot_id).first() is not None

    async def save(self, lot: Lot) -> Lot:
        """
        Insert or update a lot together with its sale and adjustment logs.

        Raises:
            DatabaseError: If the store rejects the write
        """
        try:
            with db_session() as session:
                return session.merge(lot)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to save lot {lot.id}: {e}") from e

    async def save_many(self, lots: Iterable[Lot]) -> list[Lot]:
        """Save several lots in one session."""
        lots = list(lots)
        try:
            with db_session() as session:
                saved = [session.merge(lot) for lot in lots]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to save {len(lots)} lots: {e}") from e
        logger.debug(f"Saved {len(saved)} lots")
        return saved

    async def replace(self, old_lots: Iterable[Lot], new_lots: Iterable[Lot]) -> list[Lot]:
        """
        Delete ``old_lots`` and save ``new_lots`` in one session.

        Used when lots move to another security id, so the ledger never
        holds both copies.

        Raises:
            DatabaseError: If the store rejects the write
        """
        old_ids = [lot.id for lot in old_lots]
        new_lots = list(new_lots)
        try:
            with db_session() as session:
                for lot in session.query(Lot).filter(Lot.id.in_(old_ids)).all():
                    session.delete(lot)
                session.flush()
                saved = [session.merge(lot) for lot in new_lots]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to replace {len(old_ids)} lots: {e}") from e
        logger.debug(f"Replaced {len(old_ids)} lots with {len(saved)}")
        return saved

    async def delete_by_security_id(self, security_id: str) -> int:
        """Delete every lot of a security. Returns the number deleted."""
        with db_session() as session:
            lots = session.query(Lot).filter(Lot.security_id == security_id).all()
            for lot in lots:
                session.delete(lot)
        logger.info(f"Deleted {len(lots)} lots for {security_id}")
        return len(lots)


class TransactionRepository:
    """Normalized transactions keyed by (account, id)."""

    async def bulk_merge(
        self, transactions: Iterable[Transaction], account: str
    ) -> BulkMergeResult:
        """
        Upsert transactions for an account.

        The batch is written in one session. If the store rejects it, records
        are retried one session each so that a bad record is reported in
        ``errors`` without blocking the rest.
        """
        transactions = list(transactions)
        result = BulkMergeResult()

        try:
            with db_session() as session:
                for transaction in transactions:
                    session.merge(record_from_transaction(transaction, account))
            result.processed = len(transactions)
        except SQLAlchemyError as e:
            logger.warning(f"Batch merge failed for {account}, retrying per record: {e}")
            for transaction in transactions:
                try:
                    with db_session() as session:
                        session.merge(record_from_transaction(transaction, account))
                    result.processed += 1
                except SQLAlchemyError as record_error:
                    logger.warning(
                        f"Could not store transaction {transaction.id}: {record_error}"
                    )
                    result.errors.append({"id": transaction.id, "error": str(record_error)})

        logger.info(
            f"Merged {result.processed} transactions for account {account} "
            f"({len(result.errors)} errors)"
        )
        return result

    async def get_by_account(self, account: str) -> list[Transaction]:
        """All transactions of an account in date order (undated last)."""
        with db_session() as session:
            records = (
                session.query(TransactionRecord)
                .filter(TransactionRecord.account == account)
                .order_by(TransactionRecord.date.is_(None), TransactionRecord.date)
                .all()
            )
            return [transaction_from_record(record) for record in records]

    async def get_by_symbol(self, account: str, symbol: str) -> list[Transaction]:
        with db_session() as session:
            records = (
                session.query(TransactionRecord)
                .filter(
                    TransactionRecord.account == account,
                    TransactionRecord.symbol == normalize_symbol(symbol),
                )
                .order_by(TransactionRecord.date.is_(None), TransactionRecord.date)
                .all()
            )
            return [transaction_from_record(record) for record in records]


class SecurityMetadataRepository:
    """Earliest acquisition date and lot list per security."""

    async def get(self, security_id: str) -> Optional[SecurityMetadata]:
        with db_session() as session:
            return session.get(SecurityMetadata, security_id)

    async def save(
        self,
        security_id: str,
        account: str,
        symbol: str,
        acquisition_date: Optional[date],
        lot_ids: Iterable[str],
    ) -> SecurityMetadata:
        """Create or update metadata; lot ids are merged with those already stored."""
        with db_session() as session:
            metadata = session.get(SecurityMetadata, security_id)
            if metadata is None:
                metadata = SecurityMetadata(
                    id=security_id,
                    account=account,
                    symbol=normalize_symbol(symbol),
                    lot_ids=[],
                )
                session.add(metadata)

            known = list(metadata.lot_ids or [])
            # Reassign so the JSON column is flagged dirty
            metadata.lot_ids = known + [lot_id for lot_id in lot_ids if lot_id not in known]
            if acquisition_date is not None and (
                metadata.acquisition_date is None or acquisition_date < metadata.acquisition_date
            ):
                metadata.acquisition_date = acquisition_date
            session.flush()
            return metadata

    async def delete(self, security_id: str) -> bool:
        """Drop the metadata of a security. Returns False when none was stored."""
        with db_session() as session:
            metadata = session.get(SecurityMetadata, security_id)
            if metadata is None:
                return False
            session.delete(metadata)
        return True


class SymbolMappingRepository:
    """Persisted confirmed symbol mappings."""

    async def save(self, mapping: SymbolMapping) -> SymbolMapping:
        with db_session() as session:
            return session.merge(mapping)

    async def save_store(self, store: SymbolMappingStore) -> int:
        """Write every mapping held by a store. Returns the number written."""
        mappings = store.all_mappings()
        with db_session() as session:
            for mapping in mappings:
                session.merge(mapping)
        return len(mappings)

    async def get_all(self) -> list[SymbolMapping]:
        with db_session() as session:
            return (
                session.query(SymbolMapping)
                .order_by(SymbolMapping.effective_date, SymbolMapping.id)
                .all()
            )

    async def load_store(self) -> SymbolMappingStore:
        """Build a SymbolMappingStore from the persisted mappings."""
        return SymbolMappingStore(await self.get_all())

    async def get_mapping_chain(self, symbol: str) -> list[SymbolMapping]:
        """Ticker changes from ``symbol`` to its current symbol, oldest first."""
        store = await self.load_store()
        return store.get_mapping_chain(symbol)
