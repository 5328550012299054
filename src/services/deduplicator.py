"""Collapse duplicate transaction records from re-imports and "as of" repeats."""

import logging
from dataclasses import dataclass
from typing import Hashable, Iterable

from src.lib.brokerage_models import Transaction
from src.lib.config import DEDUP_TOLERANCE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateMatch:
    """A dropped record and the earlier record it duplicates."""

    duplicate: Transaction
    original: Transaction


def transaction_signature(transaction: Transaction) -> tuple[Hashable, ...]:
    """Signature of the economic event: (day, symbol, action, quantity, amount)."""
    return (
        transaction.date,
        transaction.symbol,
        transaction.action,
        transaction.quantity,
        transaction.amount,
    )


def _is_rounding_noise(existing: Transaction, candidate: Transaction) -> bool:
    return (
        abs(existing.price - candidate.price) < DEDUP_TOLERANCE
        and abs(existing.amount - candidate.amount) < DEDUP_TOLERANCE
    )


def _partition(
    transactions: Iterable[Transaction],
) -> tuple[list[Transaction], list[DuplicateMatch]]:
    kept: list[Transaction] = []
    duplicates: list[DuplicateMatch] = []
    retained_by_signature: dict[tuple[Hashable, ...], list[Transaction]] = {}

    for transaction in transactions:
        signature = transaction_signature(transaction)
        retained = retained_by_signature.setdefault(signature, [])

        original = next((t for t in retained if _is_rounding_noise(t, transaction)), None)
        if original is not None:
            duplicates.append(DuplicateMatch(duplicate=transaction, original=original))
            continue

        retained.append(transaction)
        kept.append(transaction)

    return kept, duplicates


def dedupe(transactions: Iterable[Transaction]) -> list[Transaction]:
    """
    Remove duplicate transactions, keeping the first occurrence.

    A later record is dropped when it shares the signature of an already
    retained record and its price and amount are within DEDUP_TOLERANCE of
    that record. Records sharing a signature but differing by more are kept,
    since they may be distinct events on the same day.

    Input order is preserved and the operation is idempotent.

    Args:
        transactions: Normalized transactions

    Returns:
        Deduplicated list
    """
    kept, duplicates = _partition(transactions)

    if duplicates:
        logger.info(f"Removed {len(duplicates)} duplicate transaction(s)")
        for match in duplicates:
            logger.debug(
                f"Duplicate {match.duplicate.id} matches {match.original.id} "
                f"({match.duplicate.symbol} {match.duplicate.action} on {match.duplicate.date})"
            )

    return kept


def find_duplicates(transactions: Iterable[Transaction]) -> list[DuplicateMatch]:
    """Report the records dedupe() would drop, each with its retained original."""
    _, duplicates = _partition(transactions)
    return duplicates
