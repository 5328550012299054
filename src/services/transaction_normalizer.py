"""Normalizer for brokerage transaction exports.

Turns raw BrokerageTransactions entries into immutable Transaction models:
dates resolved (including "as of" forms), money parsed, symbol cleaned and a
category assigned from the action table.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from src.lib.action_mappings import lookup_category
from src.lib.brokerage_models import RawTransaction, Transaction, TransactionSource
from src.lib.errors import NormalizationError, StructuralError
from src.lib.validators import normalize_symbol, parse_amount, parse_broker_date
from src.models.transaction import TransactionCategory

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Result of normalizing a batch of raw transactions."""

    transactions: list[Transaction] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    total_records: int = 0
    from_date: str = ""
    to_date: str = ""
    total_amount: Decimal = Decimal("0")

    @property
    def success_count(self) -> int:
        """Number of records normalized successfully."""
        return len(self.transactions)


def format_quantity(value: Decimal) -> str:
    """Render a Decimal without trailing zeros or exponent ("10", "0.5")."""
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def categorize_action(action: str) -> TransactionCategory:
    """
    Map a broker action label to a category.

    Unknown labels are NEUTRAL so that new broker action codes never block
    an import.
    """
    category = lookup_category(action)
    if category is None:
        logger.warning(f"Unknown transaction action '{action}', treating as NEUTRAL")
        return TransactionCategory.NEUTRAL
    return category


def build_transaction_id(
    transaction_date: Any, symbol: str, action: str, quantity: Decimal, index: int
) -> str:
    """Deterministic id: re-importing the same export reproduces the same ids."""
    date_part = transaction_date.isoformat() if transaction_date else "no-date"
    return f"{date_part}_{symbol}_{action}_{format_quantity(quantity)}_{index}"


def normalize(raw: Union[Mapping[str, Any], RawTransaction], index: int = 0) -> Transaction:
    """
    Normalize one raw transaction record.

    Args:
        raw: BrokerageTransactions entry (mapping with broker keys) or RawTransaction
        index: Position of the record in its batch (disambiguates the id)

    Returns:
        Normalized Transaction

    Raises:
        NormalizationError: If the record is not a usable mapping
    """
    if isinstance(raw, RawTransaction):
        record = raw
    else:
        if not isinstance(raw, Mapping):
            raise NormalizationError(
                f"Expected an object, got {type(raw).__name__}", record_index=index
            )
        try:
            record = RawTransaction.model_validate(dict(raw))
        except PydanticValidationError as e:
            raise NormalizationError(f"Invalid record: {e}", record_index=index)

    primary_date, as_of_date = parse_broker_date(record.date)
    symbol = normalize_symbol(record.symbol)
    action = record.action
    quantity = parse_amount(record.quantity)

    return Transaction(
        id=build_transaction_id(primary_date, symbol, action, quantity, index),
        date=primary_date,
        as_of_date=as_of_date,
        symbol=symbol,
        action=action,
        category=categorize_action(action),
        quantity=quantity,
        price=parse_amount(record.price),
        fees=parse_amount(record.fees),
        amount=parse_amount(record.amount),
        description=record.description,
    )


def normalize_batch(raws: Sequence[Any]) -> NormalizationResult:
    """
    Normalize a batch of raw records, collecting per-record failures.

    A failing record is logged and excluded; the rest of the batch continues.
    """
    result = NormalizationResult(total_records=len(raws))

    for index, raw in enumerate(raws):
        try:
            result.transactions.append(normalize(raw, index))
        except (NormalizationError, ValueError, InvalidOperation) as e:
            logger.error(f"Skipping transaction record {index}: {e}")
            result.errors.append({"index": index, "error": str(e)})

    logger.info(
        f"Normalized {result.success_count}/{result.total_records} transactions "
        f"({len(result.errors)} errors)"
    )
    return result


def load_transaction_source(source: Union[str, Path, Mapping[str, Any]]) -> TransactionSource:
    """
    Load and structurally validate a brokerage transaction export.

    Args:
        source: Path to a JSON file, or already-decoded JSON object

    Returns:
        TransactionSource envelope

    Raises:
        StructuralError: If the JSON is invalid or BrokerageTransactions is
            missing or not an array
    """
    if isinstance(source, Mapping):
        data: Any = source
    else:
        path = Path(source)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StructuralError(f"Invalid transaction file {path.name}: not valid JSON ({e})")
        except OSError as e:
            raise StructuralError(f"Cannot read transaction file {path}: {e}")

    if not isinstance(data, Mapping):
        raise StructuralError("Invalid transaction file format: expected a JSON object")

    if not isinstance(data.get("BrokerageTransactions"), list):
        raise StructuralError(
            "Invalid transaction file format: missing BrokerageTransactions array"
        )

    try:
        return TransactionSource.model_validate(dict(data))
    except PydanticValidationError as e:
        raise StructuralError(f"Invalid transaction file format: {e}")


def parse_transaction_source(source: Union[str, Path, Mapping[str, Any]]) -> NormalizationResult:
    """
    Load a brokerage export and normalize every entry.

    Raises:
        StructuralError: See load_transaction_source
    """
    envelope = load_transaction_source(source)
    result = normalize_batch(envelope.brokerage_transactions)
    result.from_date = envelope.from_date
    result.to_date = envelope.to_date
    result.total_amount = envelope.total_amount
    return result
