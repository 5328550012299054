"""Heuristic detection of ticker changes and splits.

Everything here returns unconfirmed candidates with a confidence level and
the evidence behind it. Candidates never mutate state; a user confirms one
through SymbolMappingStore.confirm() before it becomes a SymbolMapping.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Literal, Optional

from src.lib.action_mappings import is_reverse_split_action, is_split_action
from src.lib.brokerage_models import PortfolioSnapshot, Position, Transaction
from src.lib.config import (
    CANONICAL_SPLIT_RATIOS,
    QUANTITY_TOLERANCE,
    SNAPSHOT_QUANTITY_TOLERANCE,
    SPLIT_RATIO_TOLERANCE,
    SYMBOL_GAP_DAYS,
    SYMBOL_MATCH_WINDOW_DAYS,
)
from src.lib.validators import normalize_symbol
from src.models.symbol_mapping import SymbolChangeAction

logger = logging.getLogger(__name__)


class Confidence(str, enum.Enum):
    """Confidence attached to a heuristic finding."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PositionChangeType(str, enum.Enum):
    """Classification of a position between two snapshots."""

    SOLD = "SOLD"
    ACQUIRED = "ACQUIRED"
    QUANTITY_INCREASE = "QUANTITY_INCREASE"
    QUANTITY_DECREASE = "QUANTITY_DECREASE"
    TICKER_CHANGE = "TICKER_CHANGE"


@dataclass(frozen=True)
class SymbolChangeCandidate:
    """Unconfirmed old -> new ticker change."""

    old_symbol: str
    new_symbol: str
    estimated_date: Optional[date]
    confidence: Confidence
    evidence: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    source: Literal["transactions", "snapshots"] = "transactions"
    status: Literal["candidate"] = "candidate"


@dataclass(frozen=True)
class CorporateActionCandidate:
    """Unconfirmed split or reverse split."""

    action: SymbolChangeAction
    symbol: str
    date: date
    ratio: Decimal  # Canonical ratio matched (new shares per old share)
    detected_ratio: Decimal  # Ratio observed in the transactions
    confidence: Confidence
    evidence: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    status: Literal["candidate"] = "candidate"


@dataclass
class PositionChange:
    """One symbol's change between two snapshots."""

    symbol: str
    change_type: PositionChangeType
    quantity: Decimal = Decimal("0")
    market_value: Decimal = Decimal("0")
    previous_quantity: Decimal = Decimal("0")
    current_quantity: Decimal = Decimal("0")

    @property
    def quantity_delta(self) -> Decimal:
        """current - previous quantity."""
        return self.current_quantity - self.previous_quantity


@dataclass
class SnapshotDiff:
    """Categorized differences between two portfolio snapshots."""

    previous_date: Optional[date] = None
    current_date: Optional[date] = None
    sold: list[PositionChange] = field(default_factory=list)
    acquired: list[PositionChange] = field(default_factory=list)
    quantity_changes: list[PositionChange] = field(default_factory=list)
    ticker_changes: list[SymbolChangeCandidate] = field(default_factory=list)


def detect_symbol_changes(transactions: Iterable[Transaction]) -> list[SymbolChangeCandidate]:
    """
    Infer probable ticker renames from the transaction stream.

    A symbol whose transactions stop for more than SYMBOL_GAP_DAYS marks a
    gap starting at its last appearance. A symbol not seen before that point
    which appears within SYMBOL_MATCH_WINDOW_DAYS of the gap start, with the
    same share count (within QUANTITY_TOLERANCE), is reported as a
    MEDIUM-confidence candidate.

    Args:
        transactions: Normalized transactions of one account

    Returns:
        Candidates, one per (old_symbol, new_symbol) pair
    """
    ordered = sorted(
        (t for t in transactions if t.symbol and t.date is not None),
        key=lambda t: t.date,  # type: ignore[arg-type, return-value]
    )
    gap = timedelta(days=SYMBOL_GAP_DAYS)
    window = timedelta(days=SYMBOL_MATCH_WINDOW_DAYS)

    first_seen: dict[str, date] = {}
    for transaction in ordered:
        first_seen.setdefault(transaction.symbol, transaction.date)  # type: ignore[arg-type]

    candidates: list[SymbolChangeCandidate] = []
    reported: set[tuple[str, str]] = set()

    for i, transaction in enumerate(ordered):
        gap_start: date = transaction.date  # type: ignore[assignment]
        next_same = next((t for t in ordered[i + 1 :] if t.symbol == transaction.symbol), None)
        if next_same is not None and next_same.date - gap_start <= gap:  # type: ignore[operator]
            continue

        last_quantity = abs(transaction.quantity)

        for successor in ordered[i + 1 :]:
            elapsed = successor.date - gap_start  # type: ignore[operator]
            if elapsed > window:
                break
            if successor.symbol == transaction.symbol:
                continue
            if first_seen[successor.symbol] < gap_start:
                continue
            if abs(abs(successor.quantity) - last_quantity) >= QUANTITY_TOLERANCE:
                continue

            pair = (transaction.symbol, successor.symbol)
            if pair in reported:
                continue
            reported.add(pair)

            candidates.append(
                SymbolChangeCandidate(
                    old_symbol=transaction.symbol,
                    new_symbol=successor.symbol,
                    estimated_date=successor.date,
                    confidence=Confidence.MEDIUM,
                    evidence={
                        "matching_quantity": last_quantity,
                        "last_seen": gap_start,
                        "first_seen_new": successor.date,
                        "days_between": elapsed.days,
                    },
                )
            )
            logger.info(
                f"Possible symbol change {transaction.symbol} -> {successor.symbol} "
                f"around {successor.date}"
            )

    return candidates


def classify_split_ratio(ratio: Decimal) -> Optional[tuple[SymbolChangeAction, Decimal]]:
    """
    Match a detected ratio to a canonical split ratio.

    Returns (SPLIT or REVERSE_SPLIT, canonical ratio) when the ratio is
    within SPLIT_RATIO_TOLERANCE of one, else None.
    """
    best = min(CANONICAL_SPLIT_RATIOS, key=lambda canonical: abs(canonical - ratio))
    if abs(best - ratio) >= SPLIT_RATIO_TOLERANCE:
        return None

    action = SymbolChangeAction.SPLIT if best > 1 else SymbolChangeAction.REVERSE_SPLIT
    return action, best


def detect_corporate_actions(
    transactions: Iterable[Transaction],
) -> list[CorporateActionCandidate]:
    """
    Infer splits from same-day share removals and additions.

    Within one calendar day and symbol, a negative-quantity record paired
    with a positive-quantity record implies a share-count adjustment with
    ratio = added / removed. Only ratios near a canonical split ratio are
    reported; others are left unclassified.

    Confidence is HIGH when the day also carries an explicit split action,
    MEDIUM otherwise.
    """
    by_day: dict[tuple[date, str], list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        if transaction.symbol and transaction.date is not None:
            by_day[(transaction.date, transaction.symbol)].append(transaction)

    actions: list[CorporateActionCandidate] = []
    for (day, symbol), day_transactions in sorted(by_day.items()):
        removed = next((t for t in day_transactions if t.quantity < 0), None)
        added = next((t for t in day_transactions if t.quantity > 0), None)
        if removed is None or added is None:
            continue

        detected = added.quantity / abs(removed.quantity)
        classified = classify_split_ratio(detected)
        if classified is None:
            logger.debug(f"{symbol} on {day}: ratio {detected} is not a canonical split ratio")
            continue

        action, canonical = classified
        explicit = any(
            is_split_action(t.action) or is_reverse_split_action(t.action)
            for t in day_transactions
        )
        actions.append(
            CorporateActionCandidate(
                action=action,
                symbol=symbol,
                date=day,
                ratio=canonical,
                detected_ratio=detected,
                confidence=Confidence.HIGH if explicit else Confidence.MEDIUM,
                evidence={
                    "shares_removed": abs(removed.quantity),
                    "shares_added": added.quantity,
                    "description": added.description or removed.description,
                },
            )
        )

    return actions


def _index_positions(snapshot: PortfolioSnapshot) -> dict[str, Position]:
    indexed: dict[str, Position] = {}
    for position in snapshot.positions:
        symbol = normalize_symbol(position.symbol)
        if symbol:
            indexed[symbol] = position
    return indexed


def diff_snapshots(previous: PortfolioSnapshot, current: PortfolioSnapshot) -> SnapshotDiff:
    """
    Compare two snapshots of the same account.

    A symbol that disappears while another appears with the same quantity
    (within SNAPSHOT_QUANTITY_TOLERANCE) is reported as a ticker change
    candidate and removed from the sold/acquired lists.
    """
    diff = SnapshotDiff(previous_date=previous.date, current_date=current.date)
    previous_positions = _index_positions(previous)
    current_positions = _index_positions(current)

    for symbol, position in previous_positions.items():
        if symbol not in current_positions:
            diff.sold.append(
                PositionChange(
                    symbol=symbol,
                    change_type=PositionChangeType.SOLD,
                    quantity=position.quantity,
                    market_value=position.market_value,
                    previous_quantity=position.quantity,
                )
            )

    for symbol, position in current_positions.items():
        if symbol not in previous_positions:
            diff.acquired.append(
                PositionChange(
                    symbol=symbol,
                    change_type=PositionChangeType.ACQUIRED,
                    quantity=position.quantity,
                    market_value=position.market_value,
                    current_quantity=position.quantity,
                )
            )
        else:
            previous_quantity = previous_positions[symbol].quantity
            if abs(position.quantity - previous_quantity) > SNAPSHOT_QUANTITY_TOLERANCE:
                diff.quantity_changes.append(
                    PositionChange(
                        symbol=symbol,
                        change_type=(
                            PositionChangeType.QUANTITY_INCREASE
                            if position.quantity > previous_quantity
                            else PositionChangeType.QUANTITY_DECREASE
                        ),
                        quantity=position.quantity,
                        market_value=position.market_value,
                        previous_quantity=previous_quantity,
                        current_quantity=position.quantity,
                    )
                )

    for sold in diff.sold:
        for acquired in diff.acquired:
            if abs(sold.quantity - acquired.quantity) < SNAPSHOT_QUANTITY_TOLERANCE:
                diff.ticker_changes.append(
                    SymbolChangeCandidate(
                        old_symbol=sold.symbol,
                        new_symbol=acquired.symbol,
                        estimated_date=current.date,
                        confidence=Confidence.MEDIUM,
                        evidence={
                            "quantity": sold.quantity,
                            "previous_market_value": sold.market_value,
                            "current_market_value": acquired.market_value,
                        },
                        source="snapshots",
                    )
                )

    renamed_old = {c.old_symbol for c in diff.ticker_changes}
    renamed_new = {c.new_symbol for c in diff.ticker_changes}
    diff.sold = [c for c in diff.sold if c.symbol not in renamed_old]
    diff.acquired = [c for c in diff.acquired if c.symbol not in renamed_new]

    return diff
