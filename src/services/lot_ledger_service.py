"""Lot ledger orchestration over stored transactions.

Turns an account's stored transactions into lots, consumes lots for sales
and applies splits, persisting through the ledger_store repositories.
Every bulk operation works symbol by symbol: a failure on one symbol is
logged and recorded in the result's ``errors`` and the remaining symbols
are still processed.

All operations are idempotent. Lot ids are deterministic, sale entries
carry their source transaction id and split adjustments carry their date,
so running any of them twice leaves the ledger unchanged.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from src.lib.action_mappings import is_reverse_split_action, is_split_action
from src.lib.brokerage_models import Transaction
from src.lib.errors import PortfolioReconError
from src.lib.validators import normalize_symbol, validate_date, validate_quantity
from src.models import Lot, SymbolChangeAction
from src.models.transaction import TransactionCategory
from src.services.deduplicator import dedupe
from src.services.holdings_replay import group_by_symbol, infer_split_ratio, replay
from src.services.ledger_store import (
    LotRepository,
    SecurityMetadataRepository,
    TransactionRepository,
)
from src.services.lot_ledger import (
    AccountingMethod,
    apply_sale_to_lots,
    apply_split_to_lots,
    create_lot,
    get_earliest_acquisition_date,
    has_adjustment_on,
    make_security_id,
    rekey_lot,
)
from src.services.symbol_mapping_store import SymbolMappingStore

logger = logging.getLogger(__name__)

_RECOVERABLE = (PortfolioReconError, ValueError, InvalidOperation)


def _sales_of(transactions: list[Transaction]) -> list[Transaction]:
    """Dated sell transactions with a share quantity."""
    return [
        t
        for t in transactions
        if t.category == TransactionCategory.DISPOSITION and t.date is not None and t.quantity != 0
    ]


@dataclass
class LotProcessingResult:
    """Outcome of process_transactions_into_lots()."""

    processed_symbols: int = 0
    created_lots: int = 0
    symbols: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DispositionResult:
    """Outcome of process_dispositions()."""

    processed_symbols: int = 0
    processed_sales: int = 0
    updated_lots: int = 0
    symbols: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    unmatched: list[dict[str, Any]] = field(default_factory=list)  # Sales the lots could not cover


@dataclass
class SplitProcessingResult:
    """Outcome of process_splits()."""

    processed_symbols: int = 0
    applied_splits: int = 0
    adjusted_lots: int = 0
    deferred_splits: int = 0  # Left for process_dispositions(): unrecorded sales precede them
    symbols: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SplitEvent:
    """A split to apply to the lots acquired before ``date``."""

    date: date
    ratio: Decimal
    source: str  # "mapping" or the split transaction id


class LotLedgerService:
    """Builds and maintains the lot ledger of an account."""

    def __init__(
        self,
        lot_repository: Optional[LotRepository] = None,
        transaction_repository: Optional[TransactionRepository] = None,
        metadata_repository: Optional[SecurityMetadataRepository] = None,
        symbol_store: Optional[SymbolMappingStore] = None,
    ):
        """
        Initialize the service.

        Args:
            lot_repository: Lot store (default: LotRepository())
            transaction_repository: Transaction store (default: TransactionRepository())
            metadata_repository: Security metadata store
            symbol_store: Confirmed symbol mappings; renamed tickers are
                folded into their current symbol and confirmed splits are
                applied with their stated ratio
        """
        self.lots = lot_repository or LotRepository()
        self.transactions = transaction_repository or TransactionRepository()
        self.metadata = metadata_repository or SecurityMetadataRepository()
        self.symbol_store = symbol_store

    async def _load_grouped(self, account: str) -> dict[str, list[Transaction]]:
        transactions = dedupe(await self.transactions.get_by_account(account))
        return group_by_symbol(transactions, self.symbol_store)

    async def _lots_for(self, account: str, symbol: str) -> list[Lot]:
        await self._adopt_renamed_lots(account, symbol)
        return await self.lots.get_by_security_id(make_security_id(account, symbol))

    async def _adopt_renamed_lots(self, account: str, symbol: str) -> int:
        """
        Move lots stored under a symbol's former tickers to the symbol.

        Transactions of a renamed ticker are grouped under the current
        symbol once the rename is confirmed; lots built before that still
        sit under the old security id and would otherwise be counted twice.
        Returns the number of lots moved.
        """
        if self.symbol_store is None:
            return 0

        store = self.symbol_store
        former = sorted(
            {
                m.old_symbol
                for m in store.all_mappings()
                if m.action == SymbolChangeAction.TICKER_CHANGE
                and m.old_symbol != symbol
                and store.get_current_symbol(m.old_symbol) == symbol
            }
        )

        security_id = make_security_id(account, symbol)
        moved_total = 0
        for old_symbol in former:
            old_security_id = make_security_id(account, old_symbol)
            old_lots = await self.lots.get_by_security_id(old_security_id)
            if not old_lots:
                continue

            known = {lot.id for lot in await self.lots.get_by_security_id(security_id)}
            moved = [
                lot
                for lot in (rekey_lot(old, security_id, symbol) for old in old_lots)
                if lot.id not in known
            ]
            await self.lots.replace(old_lots, moved)
            await self.metadata.delete(old_security_id)
            if moved:
                await self.metadata.save(
                    security_id,
                    account,
                    symbol,
                    get_earliest_acquisition_date(moved),
                    [lot.id for lot in moved],
                )

            logger.info(
                f"Moved {len(moved)} lots from {old_symbol} to {symbol} "
                f"({len(old_lots) - len(moved)} already present)"
            )
            moved_total += len(moved)
        return moved_total

    async def process_transactions_into_lots(self, account: str) -> LotProcessingResult:
        """
        Create one lot per acquisition transaction.

        Lots whose deterministic id already exists are skipped. Security
        metadata is updated with the earliest acquisition date and lot ids.

        Args:
            account: Account whose stored transactions are processed

        Returns:
            LotProcessingResult with counts and per-symbol errors
        """
        result = LotProcessingResult()
        grouped = await self._load_grouped(account)

        for symbol, transactions in sorted(grouped.items()):
            try:
                created = await self._create_lots_for_symbol(account, symbol, transactions)
            except _RECOVERABLE as e:
                logger.error(f"Failed to create lots for {symbol}: {e}")
                result.errors.append({"symbol": symbol, "error": str(e)})
                continue

            result.processed_symbols += 1
            result.created_lots += created
            result.symbols.append(symbol)

        logger.info(
            f"Lot creation for {account}: {result.created_lots} new lots across "
            f"{result.processed_symbols} symbols, {len(result.errors)} errors"
        )
        return result

    async def _create_lots_for_symbol(
        self, account: str, symbol: str, transactions: list[Transaction]
    ) -> int:
        security_id = make_security_id(account, symbol)
        existing = await self._lots_for(account, symbol)
        known_ids = {lot.id for lot in existing}

        new_lots: list[Lot] = []
        for transaction in transactions:
            if transaction.category != TransactionCategory.ACQUISITION:
                continue
            quantity = abs(transaction.quantity)
            if transaction.date is None or quantity == 0:
                logger.debug(f"Skipping acquisition {transaction.id} without date or quantity")
                continue

            lot = create_lot(
                security_id,
                account,
                symbol,
                quantity,
                transaction.date,
                abs(transaction.amount),
                is_transaction_derived=True,
            )
            if lot.id in known_ids:
                continue
            known_ids.add(lot.id)
            new_lots.append(lot)

        if new_lots:
            await self.lots.save_many(new_lots)

        all_lots = existing + new_lots
        if all_lots:
            await self.metadata.save(
                security_id,
                account,
                symbol,
                get_earliest_acquisition_date(all_lots),
                [lot.id for lot in all_lots],
            )
        return len(new_lots)

    def _split_events(self, symbol: str, transactions: list[Transaction]) -> list[SplitEvent]:
        """
        Splits affecting a symbol, in date order.

        Confirmed split mappings give the ratio directly. Otherwise the ratio
        is inferred from the split record against the holdings replayed up
        to the day before the split.
        """
        events: dict[date, SplitEvent] = {}

        if self.symbol_store is not None:
            for mapping in self.symbol_store.get_for_symbol(symbol):
                if (
                    mapping.action in (SymbolChangeAction.SPLIT, SymbolChangeAction.REVERSE_SPLIT)
                    and mapping.old_symbol == mapping.new_symbol == symbol
                    and mapping.ratio is not None
                ):
                    events[mapping.effective_date] = SplitEvent(
                        mapping.effective_date, Decimal(mapping.ratio), "mapping"
                    )

        for transaction in transactions:
            if transaction.date is None or transaction.date in events:
                continue
            is_split = is_split_action(transaction.action)
            if not (is_split or is_reverse_split_action(transaction.action)):
                continue

            earlier = [t for t in transactions if t.date is not None and t.date < transaction.date]
            held = replay(earlier, transaction.date - timedelta(days=1), symbol=symbol).quantity
            ratio = infer_split_ratio(transaction, held)
            if ratio is None:
                logger.warning(
                    f"{symbol}: cannot infer split ratio on {transaction.date} "
                    f"(holdings {held}), skipping"
                )
                continue
            if is_reverse_split_action(transaction.action):
                # Lots take new-shares-per-old-share
                ratio = Decimal("1") / ratio
            events[transaction.date] = SplitEvent(transaction.date, ratio, transaction.id)

        return [events[day] for day in sorted(events)]

    @staticmethod
    def _apply_split_event(lots: list[Lot], event: SplitEvent) -> list[Lot]:
        eligible = [
            lot
            for lot in lots
            if lot.acquisition_date < event.date and not has_adjustment_on(lot, event.date)
        ]
        if not eligible:
            return []
        return apply_split_to_lots(eligible, event.ratio, event.date)

    async def process_splits(self, account: str) -> SplitProcessingResult:
        """
        Apply every known split to the lots acquired before it.

        A split is applied at most once per (lot, split date). Splits dated
        after a sale not yet recorded on the lots are deferred: the sale is
        stated in pre-split shares, so process_dispositions() consumes the
        lots first and then applies the split in date order.
        """
        result = SplitProcessingResult()
        grouped = await self._load_grouped(account)

        for symbol, transactions in sorted(grouped.items()):
            try:
                events = self._split_events(symbol, transactions)
                if not events:
                    continue
                lots = await self._lots_for(account, symbol)
                recorded = {sale.transaction_id for lot in lots for sale in lot.sales}
                cutoff = min(
                    (t.date for t in _sales_of(transactions) if t.id not in recorded),
                    default=None,
                )
                adjusted: dict[str, Lot] = {}
                for event in events:
                    if cutoff is not None and event.date > cutoff:
                        if any(
                            lot.acquisition_date < event.date
                            and not has_adjustment_on(lot, event.date)
                            for lot in lots
                        ):
                            result.deferred_splits += 1
                        continue
                    changed = self._apply_split_event(lots, event)
                    if changed:
                        result.applied_splits += 1
                    adjusted.update((lot.id, lot) for lot in changed)
                if adjusted:
                    await self.lots.save_many(adjusted.values())
            except _RECOVERABLE as e:
                logger.error(f"Failed to apply splits for {symbol}: {e}")
                result.errors.append({"symbol": symbol, "error": str(e)})
                continue

            result.processed_symbols += 1
            result.adjusted_lots += len(adjusted)
            result.symbols.append(symbol)

        logger.info(
            f"Split processing for {account}: {result.applied_splits} splits applied to "
            f"{result.adjusted_lots} lots, {result.deferred_splits} deferred"
        )
        return result

    async def process_dispositions(
        self, account: str, method: AccountingMethod = AccountingMethod.FIFO
    ) -> DispositionResult:
        """
        Consume lots for every sell transaction of the account.

        Sales and splits are replayed in date order so that each sale sees
        the share counts in effect on its date; a split dated on the same
        day as a sale applies first. A sale imported after a later split was
        applied is restated in post-split shares and price. Sales already
        recorded on a lot (by transaction id) are skipped, so reprocessing
        is a no-op. A sale larger than the open lots is truncated and listed
        in ``unmatched``.

        Args:
            account: Account to process
            method: Lot selection method (SPECIFIC_IDENTIFICATION without an
                explicit selection consumes lots in acquisition order)

        Returns:
            DispositionResult with counts and per-symbol errors
        """
        result = DispositionResult()
        grouped = await self._load_grouped(account)

        for symbol, transactions in sorted(grouped.items()):
            sales = _sales_of(transactions)
            if not sales:
                continue

            try:
                processed, updated = await self._dispose_symbol(
                    account, symbol, transactions, sales, method, result
                )
            except _RECOVERABLE as e:
                logger.error(f"Failed to process sales for {symbol}: {e}")
                result.errors.append({"symbol": symbol, "error": str(e)})
                continue

            result.processed_symbols += 1
            result.processed_sales += processed
            result.updated_lots += updated
            result.symbols.append(symbol)

        logger.info(
            f"Disposition processing for {account} ({method.value}): "
            f"{result.processed_sales} sales, {result.updated_lots} lots updated, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _dispose_symbol(
        self,
        account: str,
        symbol: str,
        transactions: list[Transaction],
        sales: list[Transaction],
        method: AccountingMethod,
        result: DispositionResult,
    ) -> tuple[int, int]:
        lots = await self._lots_for(account, symbol)
        recorded = {sale.transaction_id for lot in lots for sale in lot.sales}
        splits = self._split_events(symbol, transactions)
        changed: dict[str, Lot] = {}

        # A split already on some lots goes on every lot it covers, so a sale
        # imported after the split ran sees one share basis
        for split in splits:
            if any(has_adjustment_on(lot, split.date) for lot in lots):
                changed.update((lot.id, lot) for lot in self._apply_split_event(lots, split))

        # (date, order, payload): splits sort ahead of sales on the same day
        events: list[tuple[date, int, Any]] = [(split.date, 0, split) for split in splits]
        events += [(sale.date, 1, sale) for sale in sales]  # type: ignore[misc]
        events.sort(key=lambda e: (e[0], e[1]))

        processed = 0

        for day, _, payload in events:
            if isinstance(payload, SplitEvent):
                changed.update((lot.id, lot) for lot in self._apply_split_event(lots, payload))
                continue

            sale: Transaction = payload
            if sale.id in recorded:
                continue

            quantity = abs(sale.quantity)
            price = sale.price or (abs(sale.amount) / quantity)
            available = [lot for lot in lots if lot.acquisition_date <= day]

            # Restate in the share basis of later splits already applied
            factor = Decimal("1")
            for split in splits:
                if split.date <= day:
                    continue
                if any(has_adjustment_on(lot, split.date) for lot in available):
                    factor *= split.ratio
            if factor != 1:
                logger.debug(f"{symbol}: sale {sale.id} on {day} restated by split factor {factor}")

            outcome = apply_sale_to_lots(
                available, quantity * factor, method, day, price / factor, transaction_id=sale.id
            )
            changed.update((lot.id, lot) for lot in outcome.affected_lots)
            recorded.add(sale.id)
            processed += 1

            if outcome.remaining_to_sell > 0:
                result.unmatched.append(
                    {
                        "symbol": symbol,
                        "transaction_id": sale.id,
                        "date": day,
                        "remaining_to_sell": outcome.remaining_to_sell,
                    }
                )

        if changed:
            await self.lots.save_many(changed.values())
        return processed, len(changed)

    async def create_manual_lot(
        self,
        account: str,
        symbol: str,
        quantity: Decimal,
        acquisition_date: date,
        cost_basis: Decimal,
    ) -> Lot:
        """
        Record a lot entered by hand (no transaction history).

        Built by the same factory as transaction-derived lots, flagged with
        ``is_transaction_derived=False``. Entering the same lot twice returns
        the stored one.

        Raises:
            InvalidQuantityError: If quantity is not positive
            ValidationError: If the date or cost basis is invalid
        """
        symbol = normalize_symbol(symbol)
        validate_quantity(quantity)
        acquisition_date = validate_date(acquisition_date)

        security_id = make_security_id(account, symbol)
        lot = create_lot(
            security_id,
            account,
            symbol,
            quantity,
            acquisition_date,
            cost_basis,
            is_transaction_derived=False,
        )

        stored = await self.lots.get_by_id(lot.id)
        if stored is not None:
            logger.info(f"Manual lot {lot.id} already recorded")
            return stored

        saved = await self.lots.save(lot)
        await self.metadata.save(security_id, account, symbol, acquisition_date, [saved.id])
        logger.info(f"Created manual lot for {symbol}: {quantity} shares on {acquisition_date}")
        return saved

    async def get_lots(self, account: str, symbol: Optional[str] = None) -> list[Lot]:
        """Lots of an account, optionally for one symbol."""
        return await self.lots.get_by_account(account, symbol)
