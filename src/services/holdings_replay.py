"""Holdings replay: derive point-in-time quantity and cost basis from transactions.

Pure functions over in-memory transactions; no I/O and no mutation of input.

Cost basis here is a running-average approximation (a sale removes the sold
fraction of the pooled basis). The lot ledger keeps exact per-lot basis and
is authoritative for realized gain/loss; replay output is only used for
discrepancy detection.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional

from src.lib.action_mappings import is_reverse_split_action, is_split_action
from src.lib.brokerage_models import Transaction
from src.models.transaction import TransactionCategory

if TYPE_CHECKING:
    from src.services.symbol_mapping_store import SymbolMappingStore

logger = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    """Holdings of one symbol as of a date."""

    symbol: str
    as_of: date
    quantity: Decimal = Decimal("0")
    total_cost_basis: Decimal = Decimal("0")
    average_cost_per_share: Decimal = Decimal("0")
    earliest_acquisition_date: Optional[date] = None
    applied_transactions: list[Transaction] = field(default_factory=list)
    skipped_splits: list[Transaction] = field(default_factory=list)


def infer_split_ratio(transaction: Transaction, pre_split_quantity: Decimal) -> Optional[Decimal]:
    """
    Infer new-shares-per-old-share from a split transaction.

    The split record's quantity is taken as the post-split share count, so
    the ratio is quantity / pre-split quantity for forward splits and the
    same relation inverted for reverse splits. Returns None when either
    side is not positive.
    """
    if transaction.quantity <= 0 or pre_split_quantity <= 0:
        return None

    if is_reverse_split_action(transaction.action):
        # Stored as the reduction factor; applied by division
        return pre_split_quantity / transaction.quantity
    return transaction.quantity / pre_split_quantity


def replay(
    transactions: Iterable[Transaction], as_of: date, symbol: Optional[str] = None
) -> ReplayResult:
    """
    Replay one symbol's transactions up to and including ``as_of``.

    Args:
        transactions: Transactions of a single symbol, in any order
        as_of: Target date; later transactions are ignored
        symbol: Label for the result (defaults to the first transaction's symbol)

    Returns:
        ReplayResult with quantity, cost basis and the transactions applied
    """
    dated = [t for t in transactions if t.date is not None]
    ordered = sorted(dated, key=lambda t: t.date)  # type: ignore[arg-type, return-value]

    result = ReplayResult(symbol=symbol or (ordered[0].symbol if ordered else ""), as_of=as_of)
    shares = Decimal("0")
    cost_basis = Decimal("0")

    for transaction in ordered:
        if transaction.date > as_of:  # type: ignore[operator]
            continue

        if transaction.category == TransactionCategory.ACQUISITION:
            quantity = abs(transaction.quantity)
            if quantity > 0:
                shares += quantity
                cost_basis += abs(transaction.amount)
            result.applied_transactions.append(transaction)

        elif transaction.category == TransactionCategory.DISPOSITION:
            quantity = abs(transaction.quantity)
            if quantity > 0:
                pre_sale_shares = shares
                shares -= quantity
                if pre_sale_shares > 0:
                    fraction_sold = min(quantity / pre_sale_shares, Decimal("1"))
                    cost_basis -= cost_basis * fraction_sold
                if shares < 0:
                    logger.warning(
                        f"{transaction.symbol}: sale of {quantity} on {transaction.date} "
                        f"exceeds replayed holdings ({pre_sale_shares})"
                    )
            result.applied_transactions.append(transaction)

        elif transaction.category == TransactionCategory.CORPORATE_ACTION:
            if is_split_action(transaction.action) or is_reverse_split_action(transaction.action):
                ratio = infer_split_ratio(transaction, shares)
                if ratio is None:
                    logger.warning(
                        f"{transaction.symbol}: cannot infer split ratio on {transaction.date} "
                        f"(holdings {shares}, record quantity {transaction.quantity}), skipping"
                    )
                    result.skipped_splits.append(transaction)
                elif is_reverse_split_action(transaction.action):
                    shares /= ratio
                else:
                    shares *= ratio
            result.applied_transactions.append(transaction)

    result.quantity = shares
    result.total_cost_basis = cost_basis
    result.average_cost_per_share = cost_basis / shares if shares > 0 else Decimal("0")
    result.earliest_acquisition_date = min(
        (
            t.date
            for t in result.applied_transactions
            if t.category == TransactionCategory.ACQUISITION and t.date is not None
        ),
        default=None,
    )
    return result


def group_by_symbol(
    transactions: Iterable[Transaction], symbol_store: Optional["SymbolMappingStore"] = None
) -> dict[str, list[Transaction]]:
    """
    Group transactions by symbol, skipping cash-only records without one.

    With a symbol store, historical symbols are folded into their current
    symbol so holdings carry across a rename.
    """
    grouped: dict[str, list[Transaction]] = defaultdict(list)
    for transaction in transactions:
        if not transaction.symbol:
            continue
        key = transaction.symbol
        if symbol_store is not None:
            key = symbol_store.get_current_symbol(key)
        grouped[key].append(transaction)
    return dict(grouped)


def replay_portfolio(
    transactions: Iterable[Transaction],
    as_of: date,
    symbol_store: Optional["SymbolMappingStore"] = None,
) -> dict[str, ReplayResult]:
    """Replay every symbol found in ``transactions`` as of one date."""
    return {
        symbol: replay(symbol_transactions, as_of, symbol=symbol)
        for symbol, symbol_transactions in group_by_symbol(transactions, symbol_store).items()
    }
