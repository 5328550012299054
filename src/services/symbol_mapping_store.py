"""In-memory store of confirmed symbol mappings.

An explicit object passed to whatever needs symbol translation (replay,
reconciliation, the CLI). Load it from / flush it to SymbolMappingRepository
for persistence.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from src.lib.brokerage_models import Transaction
from src.lib.errors import ValidationError
from src.lib.validators import normalize_symbol, validate_date
from src.models.symbol_mapping import SymbolChangeAction, SymbolMapping
from src.services.symbol_change_detector import CorporateActionCandidate, SymbolChangeCandidate

logger = logging.getLogger(__name__)


def mapping_id(old_symbol: str, new_symbol: str, effective_date: date) -> str:
    """Store key of a mapping."""
    return f"{old_symbol}_{new_symbol}_{effective_date.isoformat()}"


class SymbolMappingStore:
    """Confirmed old -> new symbol mappings keyed by mapping id."""

    def __init__(self, mappings: Optional[Iterable[SymbolMapping]] = None):
        self._mappings: dict[str, SymbolMapping] = {}
        for mapping in mappings or []:
            self._mappings[mapping.id] = mapping

    def __len__(self) -> int:
        return len(self._mappings)

    def create(
        self,
        old_symbol: str,
        new_symbol: str,
        effective_date: date,
        action: SymbolChangeAction = SymbolChangeAction.TICKER_CHANGE,
        ratio: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> SymbolMapping:
        """
        Add (or replace) a mapping.

        Raises:
            ValidationError: On empty symbols, a self-mapping of a ticker
                change, or a non-positive ratio
        """
        old_symbol = normalize_symbol(old_symbol)
        new_symbol = normalize_symbol(new_symbol)
        if not old_symbol or not new_symbol:
            raise ValidationError("Symbol mapping requires both old and new symbols")
        if action == SymbolChangeAction.TICKER_CHANGE and old_symbol == new_symbol:
            raise ValidationError(f"Ticker change maps {old_symbol} onto itself")
        if ratio is not None and ratio <= 0:
            raise ValidationError(f"Split ratio must be positive, got {ratio}")

        mapping = SymbolMapping(
            id=mapping_id(old_symbol, new_symbol, effective_date),
            old_symbol=old_symbol,
            new_symbol=new_symbol,
            effective_date=effective_date,
            action=action,
            ratio=ratio,
            notes=notes,
        )
        self._mappings[mapping.id] = mapping
        logger.info(
            f"Symbol mapping {old_symbol} -> {new_symbol} ({action.value}) on {effective_date}"
        )
        return mapping

    def get(self, mapping_key: str) -> Optional[SymbolMapping]:
        """Look up a mapping by id."""
        return self._mappings.get(mapping_key)

    def get_for_symbol(self, symbol: str) -> list[SymbolMapping]:
        """All mappings in which ``symbol`` is the old or the new side."""
        symbol = normalize_symbol(symbol)
        return [
            m for m in self._mappings.values() if m.old_symbol == symbol or m.new_symbol == symbol
        ]

    def all_mappings(self) -> list[SymbolMapping]:
        """Every mapping, ordered by effective date."""
        return sorted(self._mappings.values(), key=lambda m: (m.effective_date, m.id))

    def clear(self) -> None:
        """Remove every mapping."""
        self._mappings.clear()

    def export_mappings(self) -> list[dict[str, Any]]:
        """Serialize all mappings to JSON-friendly dicts."""
        return [mapping.to_dict() for mapping in self.all_mappings()]

    def import_mappings(self, data: Iterable[dict[str, Any]]) -> int:
        """
        Replace the store's content with exported mappings.

        Returns:
            Number of mappings imported
        """
        self.clear()
        count = 0
        for entry in data:
            ratio = entry.get("ratio")
            self.create(
                entry["old_symbol"],
                entry["new_symbol"],
                validate_date(entry["effective_date"], allow_future=True),
                SymbolChangeAction(entry.get("action", SymbolChangeAction.TICKER_CHANGE.value)),
                ratio=Decimal(str(ratio)) if ratio is not None else None,
                notes=entry.get("notes"),
            )
            count += 1
        return count

    def _renames_from(self, symbol: str) -> list[SymbolMapping]:
        return sorted(
            (
                m
                for m in self._mappings.values()
                if m.old_symbol == symbol
                and m.new_symbol != symbol
                and m.action == SymbolChangeAction.TICKER_CHANGE
            ),
            key=lambda m: m.effective_date,
        )

    def get_current_symbol(self, symbol: str) -> str:
        """
        Follow ticker changes from ``symbol`` to the newest symbol.

        Cycles (A -> B -> A) stop at the last symbol before repeating.
        """
        current = normalize_symbol(symbol)
        visited = {current}
        while True:
            renames = self._renames_from(current)
            if not renames:
                return current
            successor = renames[-1].new_symbol
            if successor in visited:
                logger.warning(f"Symbol mapping cycle detected at {successor}")
                return current
            visited.add(successor)
            current = successor

    def get_historical_symbol(self, symbol: str, on_date: date) -> str:
        """
        Symbol under which ``symbol`` traded on ``on_date``.

        Walks ticker changes backwards while their effective date is after
        ``on_date``.
        """
        current = normalize_symbol(symbol)
        visited = {current}
        while True:
            previous = [
                m
                for m in self._mappings.values()
                if m.new_symbol == current
                and m.old_symbol != current
                and m.action == SymbolChangeAction.TICKER_CHANGE
                and m.effective_date > on_date
            ]
            if not previous:
                return current
            mapping = max(previous, key=lambda m: m.effective_date)
            if mapping.old_symbol in visited:
                return current
            visited.add(mapping.old_symbol)
            current = mapping.old_symbol

    def get_mapping_chain(self, symbol: str) -> list[SymbolMapping]:
        """Ticker changes leading from ``symbol`` to its current symbol, oldest first."""
        chain: list[SymbolMapping] = []
        current = normalize_symbol(symbol)
        visited = {current}
        while True:
            renames = self._renames_from(current)
            if not renames:
                return chain
            mapping = renames[-1]
            if mapping.new_symbol in visited:
                return chain
            chain.append(mapping)
            visited.add(mapping.new_symbol)
            current = mapping.new_symbol

    def confirm(
        self,
        candidate: SymbolChangeCandidate | CorporateActionCandidate,
        notes: Optional[str] = None,
    ) -> SymbolMapping:
        """
        Turn a user-confirmed detector candidate into a stored mapping.

        Raises:
            ValidationError: If the candidate carries no date
        """
        if isinstance(candidate, CorporateActionCandidate):
            return self.create(
                candidate.symbol,
                candidate.symbol,
                candidate.date,
                candidate.action,
                ratio=candidate.ratio,
                notes=notes or f"Confirmed {candidate.confidence.value} confidence detection",
            )

        if candidate.estimated_date is None:
            raise ValidationError(
                f"Cannot confirm {candidate.old_symbol} -> {candidate.new_symbol} without a date"
            )
        return self.create(
            candidate.old_symbol,
            candidate.new_symbol,
            candidate.estimated_date,
            SymbolChangeAction.TICKER_CHANGE,
            notes=notes or f"Confirmed {candidate.confidence.value} confidence detection",
        )

    def apply_split_to_transaction(
        self, transaction: Transaction, mapping: SymbolMapping
    ) -> Transaction:
        """
        Express a pre-split transaction in post-split shares.

        Transactions dated on or after the mapping's effective date, or
        mappings without a ratio, return the transaction unchanged.
        """
        if (
            mapping.ratio is None
            or mapping.action == SymbolChangeAction.TICKER_CHANGE
            or transaction.date is None
            or transaction.date >= mapping.effective_date
        ):
            return transaction

        ratio = Decimal(mapping.ratio)
        return transaction.model_copy(
            update={
                "quantity": transaction.quantity * ratio,
                "price": transaction.price / ratio,
            }
        )
