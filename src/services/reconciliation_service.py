"""Reconciliation of replayed holdings against portfolio snapshots.

Compares transaction-derived (calculated) holdings with broker-reported
(actual) positions, classifies discrepancies and proposes advisory
resolutions. Discrepancies are returned as data, never raised, and
nothing here writes to the store.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from src.lib.brokerage_models import PortfolioSnapshot, Position, Transaction
from src.lib.config import (
    MARKET_VALUE_HIGH_SEVERITY_RATIO,
    MARKET_VALUE_TOLERANCE,
    QUANTITY_HIGH_SEVERITY_RATIO,
    QUANTITY_TOLERANCE,
    TRANSACTION_AMOUNT_TOLERANCE,
)
from src.lib.validators import normalize_symbol
from src.models.transaction import TransactionCategory
from src.services.deduplicator import dedupe
from src.services.holdings_replay import ReplayResult, group_by_symbol, replay
from src.services.symbol_change_detector import SnapshotDiff
from src.services.symbol_mapping_store import SymbolMappingStore
from src.services.transaction_normalizer import format_quantity

logger = logging.getLogger(__name__)


class DiscrepancyType(str, enum.Enum):
    """Kinds of reconciliation findings."""

    QUANTITY_MISMATCH = "QUANTITY_MISMATCH"
    MATHEMATICAL_ERROR = "MATHEMATICAL_ERROR"
    MISSING_ACQUISITIONS = "MISSING_ACQUISITIONS"
    MISSING_SALES = "MISSING_SALES"
    DATE_INCONSISTENCY = "DATE_INCONSISTENCY"


class Severity(str, enum.Enum):
    """Severity of a discrepancy, most severe first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class SuggestionType(str, enum.Enum):
    """Kinds of advisory resolutions."""

    MISSING_TRANSACTION = "MISSING_TRANSACTION"
    VERIFY_DATA = "VERIFY_DATA"


@dataclass
class Discrepancy:
    """One inconsistency between calculated and actual holdings."""

    type: DiscrepancyType
    severity: Severity
    symbol: str
    description: str
    calculated: Optional[Decimal] = None
    actual: Optional[Decimal] = None
    difference: Decimal = Decimal("0")  # Absolute gap
    financial_impact: Decimal = Decimal("0")  # Gap in currency units, when known
    estimated_date: Optional[date] = None
    transaction_id: Optional[str] = None


@dataclass
class ResolutionSuggestion:
    """Advisory fix for a discrepancy. Never applied automatically."""

    type: SuggestionType
    action: str
    description: str
    priority: Severity
    quantity: Optional[Decimal] = None


@dataclass
class ReconciliationResult:
    """Per-symbol comparison of replayed and reported holdings."""

    symbol: str
    calculated: ReplayResult
    actual: Position
    discrepancies: list[Discrepancy] = field(default_factory=list)
    resolution_suggestions: list[ResolutionSuggestion] = field(default_factory=list)

    @property
    def has_discrepancies(self) -> bool:
        """True when at least one discrepancy was found."""
        return len(self.discrepancies) > 0

    @property
    def earliest_acquisition_date(self) -> Optional[date]:
        """Earliest acquisition applied during replay."""
        return self.calculated.earliest_acquisition_date


@dataclass
class PortfolioReconciliationSummary:
    """Aggregate reconciliation of one snapshot."""

    snapshot_date: Optional[date]
    total_positions: int = 0
    with_acquisition_dates: int = 0
    with_discrepancies: int = 0
    results: list[ReconciliationResult] = field(default_factory=list)

    @property
    def acquisition_date_coverage(self) -> Decimal:
        """Share of positions with a known acquisition date (0..1)."""
        if self.total_positions == 0:
            return Decimal("0")
        return Decimal(self.with_acquisition_dates) / Decimal(self.total_positions)


def reconcile(calculated: ReplayResult, actual: Position) -> ReconciliationResult:
    """
    Compare replayed holdings with a snapshot position.

    Findings:
        QUANTITY_MISMATCH when the share counts differ by more than
        QUANTITY_TOLERANCE; HIGH if the gap exceeds 10% of the actual
        quantity, MEDIUM otherwise.

        MATHEMATICAL_ERROR when calculated quantity * actual price is more
        than MARKET_VALUE_TOLERANCE away from the reported market value;
        HIGH if the gap exceeds 1% of the market value, LOW otherwise.

    Args:
        calculated: Replay result for the symbol
        actual: Snapshot position for the symbol

    Returns:
        ReconciliationResult with discrepancies and suggestions
    """
    symbol = calculated.symbol or actual.symbol
    result = ReconciliationResult(symbol=symbol, calculated=calculated, actual=actual)

    quantity_gap = abs(calculated.quantity - actual.quantity)
    if quantity_gap > QUANTITY_TOLERANCE:
        severity = (
            Severity.HIGH
            if quantity_gap > abs(actual.quantity) * QUANTITY_HIGH_SEVERITY_RATIO
            else Severity.MEDIUM
        )
        result.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.QUANTITY_MISMATCH,
                severity=severity,
                symbol=symbol,
                description="Quantity mismatch between transactions and portfolio",
                calculated=calculated.quantity,
                actual=actual.quantity,
                difference=quantity_gap,
                financial_impact=quantity_gap * actual.price,
            )
        )

    expected_value = calculated.quantity * actual.price
    value_gap = abs(expected_value - actual.market_value)
    if value_gap > MARKET_VALUE_TOLERANCE:
        severity = (
            Severity.HIGH
            if value_gap > abs(actual.market_value) * MARKET_VALUE_HIGH_SEVERITY_RATIO
            else Severity.LOW
        )
        result.discrepancies.append(
            Discrepancy(
                type=DiscrepancyType.MATHEMATICAL_ERROR,
                severity=severity,
                symbol=symbol,
                description="Market value inconsistency",
                calculated=expected_value,
                actual=actual.market_value,
                difference=value_gap,
                financial_impact=value_gap,
            )
        )

    result.resolution_suggestions = generate_resolution_suggestions(
        result.discrepancies, calculated, actual
    )
    return result


def generate_resolution_suggestions(
    discrepancies: Iterable[Discrepancy], calculated: ReplayResult, actual: Position
) -> list[ResolutionSuggestion]:
    """Advisory fixes for reconcile() findings, prioritized like their discrepancy."""
    suggestions: list[ResolutionSuggestion] = []

    for discrepancy in discrepancies:
        if discrepancy.type == DiscrepancyType.QUANTITY_MISMATCH:
            delta = actual.quantity - calculated.quantity
            side = "an acquisition" if delta > 0 else "a sale"
            suggestions.append(
                ResolutionSuggestion(
                    type=SuggestionType.MISSING_TRANSACTION,
                    action="Add missing transactions",
                    description=(
                        f"Consider adding {side} of {format_quantity(abs(delta))} shares "
                        f"of {discrepancy.symbol} to reconcile holdings"
                    ),
                    priority=discrepancy.severity,
                    quantity=delta,
                )
            )
        elif discrepancy.type == DiscrepancyType.MATHEMATICAL_ERROR:
            suggestions.append(
                ResolutionSuggestion(
                    type=SuggestionType.VERIFY_DATA,
                    action="Verify market value",
                    description="Check for pricing or quantity errors in portfolio data",
                    priority=discrepancy.severity,
                )
            )

    return suggestions


def generate_interpolated_transaction(
    result: ReconciliationResult, on_date: Optional[date]
) -> Optional[Transaction]:
    """
    Synthesize the transaction that would close a quantity mismatch.

    Returns:
        A Buy (actual > calculated) or Sell placeholder at the actual price,
        or None when the result has no quantity mismatch
    """
    if not any(d.type == DiscrepancyType.QUANTITY_MISMATCH for d in result.discrepancies):
        return None

    delta = result.actual.quantity - result.calculated.quantity
    quantity = abs(delta)
    price = result.actual.price
    is_buy = delta > 0
    date_part = on_date.isoformat() if on_date else "no-date"

    return Transaction(
        id=f"interpolated_{result.symbol}_{date_part}_{format_quantity(quantity)}",
        date=on_date,
        symbol=result.symbol,
        action="Buy" if is_buy else "Sell",
        category=TransactionCategory.ACQUISITION if is_buy else TransactionCategory.DISPOSITION,
        quantity=quantity,
        price=price,
        amount=-(quantity * price) if is_buy else quantity * price,
        description="Interpolated transaction to reconcile holdings",
    )


def apply_transactions_to_portfolio(
    transactions: Iterable[Transaction],
    snapshot: PortfolioSnapshot,
    symbol_store: Optional[SymbolMappingStore] = None,
) -> PortfolioReconciliationSummary:
    """
    Reconcile every position of a snapshot in one pass.

    Transactions are deduplicated, grouped by (current) symbol and replayed
    as of the snapshot date (today when the snapshot carries no date).

    Args:
        transactions: All transactions of the account
        snapshot: Positions to reconcile against
        symbol_store: Optional confirmed symbol mappings for renamed tickers

    Returns:
        Summary with per-position results and coverage counts
    """
    as_of = snapshot.date or date.today()
    grouped = group_by_symbol(dedupe(transactions), symbol_store)
    summary = PortfolioReconciliationSummary(snapshot_date=snapshot.date)

    for position in snapshot.positions:
        symbol = normalize_symbol(position.symbol)
        if symbol_store is not None:
            symbol = symbol_store.get_current_symbol(symbol)

        calculated = replay(grouped.get(symbol, []), as_of, symbol=symbol)
        result = reconcile(calculated, position)

        summary.results.append(result)
        summary.total_positions += 1
        if result.earliest_acquisition_date is not None:
            summary.with_acquisition_dates += 1
        if result.has_discrepancies:
            summary.with_discrepancies += 1

    logger.info(
        f"Reconciled {summary.total_positions} positions as of {as_of}: "
        f"{summary.with_acquisition_dates} with acquisition dates, "
        f"{summary.with_discrepancies} with discrepancies"
    )
    return summary


def find_missing_transactions(
    transactions: Iterable[Transaction], snapshot_diff: SnapshotDiff
) -> list[Discrepancy]:
    """
    Find snapshot changes that no transaction accounts for.

    Positions that appeared between snapshots need an acquisition of the same
    size; positions that disappeared need a matching sale.
    """
    by_symbol = group_by_symbol(transactions)
    missing: list[Discrepancy] = []

    for change in snapshot_diff.acquired:
        related = by_symbol.get(change.symbol, [])
        if not any(
            t.category == TransactionCategory.ACQUISITION
            and abs(abs(t.quantity) - change.quantity) < QUANTITY_TOLERANCE
            for t in related
        ):
            missing.append(
                Discrepancy(
                    type=DiscrepancyType.MISSING_ACQUISITIONS,
                    severity=Severity.HIGH,
                    symbol=change.symbol,
                    description=(
                        f"Missing acquisition transaction for "
                        f"{format_quantity(change.quantity)} shares of {change.symbol}"
                    ),
                    actual=change.quantity,
                    difference=change.quantity,
                    financial_impact=abs(change.market_value),
                    estimated_date=snapshot_diff.current_date,
                )
            )

    for change in snapshot_diff.sold:
        related = by_symbol.get(change.symbol, [])
        if not any(
            t.category == TransactionCategory.DISPOSITION
            and abs(abs(t.quantity) - change.quantity) < QUANTITY_TOLERANCE
            for t in related
        ):
            missing.append(
                Discrepancy(
                    type=DiscrepancyType.MISSING_SALES,
                    severity=Severity.HIGH,
                    symbol=change.symbol,
                    description=(
                        f"Missing sale transaction for "
                        f"{format_quantity(change.quantity)} shares of {change.symbol}"
                    ),
                    calculated=change.quantity,
                    difference=change.quantity,
                    financial_impact=abs(change.market_value),
                    estimated_date=snapshot_diff.current_date,
                )
            )

    return missing


def _gross_amount(transaction: Transaction) -> Decimal:
    """Trade value excluding fees (brokers net fees into Amount)."""
    if transaction.category == TransactionCategory.ACQUISITION:
        return abs(transaction.amount) - abs(transaction.fees)
    return abs(transaction.amount) + abs(transaction.fees)


def flag_inconsistencies(
    transactions: Sequence[Transaction], snapshots: Sequence[PortfolioSnapshot]
) -> list[Discrepancy]:
    """
    Flag internally inconsistent records and unexplained snapshot changes.

    MATHEMATICAL_ERROR: a trade whose quantity * price disagrees with its
    gross amount by more than TRANSACTION_AMOUNT_TOLERANCE.

    DATE_INCONSISTENCY: a position whose quantity change between two
    consecutive snapshots is not explained by the trades dated after the
    earlier snapshot and up to the later one.

    Args:
        transactions: Transactions of the account
        snapshots: Snapshots in chronological order

    Returns:
        Discrepancies found
    """
    inconsistencies: list[Discrepancy] = []

    for transaction in transactions:
        if transaction.category not in (
            TransactionCategory.ACQUISITION,
            TransactionCategory.DISPOSITION,
        ):
            continue
        if not (transaction.quantity and transaction.price and transaction.amount):
            continue

        expected = abs(transaction.quantity) * transaction.price
        gross = _gross_amount(transaction)
        gap = abs(expected - gross)
        if gap > TRANSACTION_AMOUNT_TOLERANCE:
            inconsistencies.append(
                Discrepancy(
                    type=DiscrepancyType.MATHEMATICAL_ERROR,
                    severity=(
                        Severity.HIGH
                        if gap > expected * MARKET_VALUE_HIGH_SEVERITY_RATIO
                        else Severity.LOW
                    ),
                    symbol=transaction.symbol,
                    description=(
                        f"Mathematical inconsistency in transaction: {expected} expected, "
                        f"{gross} actual"
                    ),
                    calculated=expected,
                    actual=gross,
                    difference=gap,
                    financial_impact=gap,
                    estimated_date=transaction.date,
                    transaction_id=transaction.id,
                )
            )

    for previous, current in zip(snapshots, snapshots[1:]):
        if previous.date is None or current.date is None:
            logger.warning("Skipping snapshot pair without dates")
            continue

        window = [
            t
            for t in transactions
            if t.date is not None and previous.date < t.date <= current.date
        ]
        for position in current.positions:
            before = previous.position_for(position.symbol)
            if before is None:
                continue

            quantity_change = position.quantity - before.quantity
            explained = Decimal("0")
            for t in window:
                if t.symbol != position.symbol:
                    continue
                if t.category == TransactionCategory.ACQUISITION:
                    explained += abs(t.quantity)
                elif t.category == TransactionCategory.DISPOSITION:
                    explained -= abs(t.quantity)

            unexplained = abs(quantity_change - explained)
            if unexplained > QUANTITY_TOLERANCE:
                inconsistencies.append(
                    Discrepancy(
                        type=DiscrepancyType.DATE_INCONSISTENCY,
                        severity=(
                            Severity.HIGH
                            if unexplained > abs(quantity_change) * QUANTITY_HIGH_SEVERITY_RATIO
                            else Severity.MEDIUM
                        ),
                        symbol=position.symbol,
                        description=(
                            f"Unexplained quantity change of {format_quantity(unexplained)} "
                            f"shares between {previous.date} and {current.date}"
                        ),
                        calculated=explained,
                        actual=quantity_change,
                        difference=unexplained,
                        financial_impact=unexplained * position.price,
                        estimated_date=current.date,
                    )
                )

    return inconsistencies


def prioritize_discrepancies(discrepancies: Iterable[Discrepancy]) -> list[Discrepancy]:
    """Sort by severity (CRITICAL first), then by financial impact, largest first."""
    return sorted(
        discrepancies,
        key=lambda d: (SEVERITY_ORDER[d.severity], -d.financial_impact),
    )
