"""
Input parsing and validation utilities.

Lenient parsers for broker-exported strings (dates, money, share counts,
symbols) and strict validators for values entered by hand (manual lots).
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from src.lib.errors import InvalidDateError, InvalidQuantityError, ValidationError

logger = logging.getLogger(__name__)

# Currency symbols, thousands separators and whitespace
_MONEY_NOISE = re.compile(r"[$,\s]")

# "01/15/2023 as of 01/12/2023"
_AS_OF_DATE = re.compile(
    r"^\s*(\d{1,2}/\d{1,2}/\d{4})\s+as\s+of\s+(\d{1,2}/\d{1,2}/\d{4})\s*$", re.IGNORECASE
)


def normalize_symbol(symbol: Optional[str]) -> str:
    """
    Normalize a security symbol for comparison.

    Examples:
        >>> normalize_symbol(" aapl ")
        'AAPL'
        >>> normalize_symbol(None)
        ''
    """
    if symbol is None:
        return ""
    return re.sub(r"\s+", "", str(symbol)).upper()


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse a broker money/quantity string into a Decimal.

    Strips currency symbols, thousands separators and whitespace. Values
    that still are not numeric normalize to 0 with a logged warning; this
    never raises.

    Args:
        value: Raw value, e.g. "$1,234.56", "-$20.00", "10"

    Returns:
        Parsed Decimal, or Decimal("0") when unparseable

    Examples:
        >>> parse_amount("$1,234.56")
        Decimal('1234.56')
        >>> parse_amount("")
        Decimal('0')
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    if isinstance(value, (int, float)):
        return Decimal(str(value))

    cleaned = _MONEY_NOISE.sub("", str(value))
    if cleaned == "":
        return Decimal("0")

    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        logger.warning(f"Unparseable amount '{value}', using 0")
        return Decimal("0")

    if not result.is_finite():
        logger.warning(f"Non-finite amount '{value}', using 0")
        return Decimal("0")

    return result


def parse_broker_date(
    value: Union[str, date, datetime, None],
) -> tuple[Optional[date], Optional[date]]:
    """
    Parse a broker date into (primary date, "as of" date).

    Accepts ISO strings ("2023-01-15", "2023-01-15T10:00:00"), "MM/DD/YYYY",
    and "MM/DD/YYYY as of MM/DD/YYYY". For the latter the first date is the
    primary one; the "as of" date is auxiliary. Unparseable input yields
    (None, None) with a logged warning.

    Examples:
        >>> parse_broker_date("01/15/2023 as of 01/12/2023")
        (datetime.date(2023, 1, 15), datetime.date(2023, 1, 12))
        >>> parse_broker_date("garbage")
        (None, None)
    """
    if value is None:
        return None, None

    if isinstance(value, datetime):
        return value.date(), None

    if isinstance(value, date):
        return value, None

    text = str(value).strip()
    if not text:
        return None, None

    match = _AS_OF_DATE.match(text)
    if match:
        primary = _parse_single_date(match.group(1))
        as_of = _parse_single_date(match.group(2))
        if primary is None:
            logger.warning(f"Unparseable date '{value}'")
        return primary, as_of

    primary = _parse_single_date(text)
    if primary is None:
        logger.warning(f"Unparseable date '{value}'")
    return primary, None


def _parse_single_date(text: str) -> Optional[date]:
    """Parse one date in MM/DD/YYYY or ISO form, or return None."""
    try:
        return datetime.strptime(text, "%m/%d/%Y").date()
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def validate_quantity(
    quantity: Decimal, min_value: Decimal = Decimal("0"), max_value: Decimal = Decimal("1000000000")
) -> Decimal:
    """
    Validate quantity is positive and within reasonable range.

    Args:
        quantity: Quantity to validate
        min_value: Minimum allowed value (default: 0, exclusive)
        max_value: Maximum allowed value

    Returns:
        Validated quantity

    Raises:
        InvalidQuantityError: If quantity is out of range
    """
    if quantity <= min_value:
        raise InvalidQuantityError(quantity, "must be positive")

    if quantity > max_value:
        raise InvalidQuantityError(quantity, f"exceeds maximum {max_value}")

    return quantity


def validate_cost_basis(cost_basis: Decimal) -> Decimal:
    """
    Validate a total cost basis entered by hand.

    Raises:
        ValidationError: If cost basis is negative
    """
    if cost_basis < 0:
        raise ValidationError(f"Cost basis {cost_basis} cannot be negative")

    return cost_basis


def validate_date(
    date_value: Union[date, datetime, str],
    min_date: Optional[date] = None,
    allow_future: bool = False,
) -> date:
    """
    Validate a hand-entered date.

    Args:
        date_value: Date to validate (date object, datetime object, or string)
        min_date: Minimum allowed date (default: 1900-01-01)
        allow_future: Whether to allow future dates (default: False)

    Returns:
        Validated date

    Raises:
        InvalidDateError: If a string cannot be parsed
        ValidationError: If date is out of range

    Examples:
        >>> validate_date("2023-01-15")
        datetime.date(2023, 1, 15)
        >>> validate_date("01/15/2023")
        datetime.date(2023, 1, 15)
    """
    parsed_date: Optional[date]
    if isinstance(date_value, str):
        parsed_date = _parse_single_date(date_value.strip())
        if parsed_date is None:
            raise InvalidDateError(date_value, "YYYY-MM-DD or MM/DD/YYYY")
    elif isinstance(date_value, datetime):
        parsed_date = date_value.date()
    else:
        parsed_date = date_value

    if min_date is None:
        min_date = date(1900, 1, 1)

    if parsed_date < min_date:
        raise ValidationError(f"Date {parsed_date} is too far in the past (minimum: {min_date})")

    if not allow_future and parsed_date > date.today():
        raise ValidationError(f"Date {parsed_date} cannot be in the future")

    return parsed_date
