"""Custom exception classes for portfolio-recon."""


class PortfolioReconError(Exception):
    """Base exception for all portfolio-recon errors."""

    def __init__(self, message: str):
        """Initialize with error message."""
        self.message = message
        super().__init__(message)


class DataError(PortfolioReconError):
    """Data validation or processing errors."""

    pass


class ValidationError(DataError):
    """Input validation errors."""

    pass


class NormalizationError(DataError):
    """A single raw transaction record could not be normalized."""

    def __init__(
        self, message: str, record_index: int | None = None, field_name: str | None = None
    ):
        """
        Initialize with record details.

        Args:
            message: Error description
            record_index: Position of the record in its batch
            field_name: Field that failed, if known
        """
        self.record_index = record_index
        self.field_name = field_name
        if record_index is not None:
            message = f"Record {record_index}: {message}"
        super().__init__(message)


class SnapshotParseError(DataError):
    """Portfolio snapshot file could not be read."""

    def __init__(self, message: str, row_number: int | None = None):
        """
        Initialize with row details.

        Args:
            message: Error description
            row_number: Offending row in the snapshot file, if known
        """
        self.row_number = row_number
        if row_number is not None:
            message = f"Row {row_number}: {message}"
        super().__init__(message)


class StructuralError(PortfolioReconError):
    """Top-level file structure is unusable; the whole batch is rejected."""

    pass


class DatabaseError(PortfolioReconError):
    """Database operation errors."""

    pass


class LedgerError(PortfolioReconError):
    """Lot ledger operation errors."""

    pass


class LotNotFoundError(LedgerError):
    """Lot id not present in the ledger."""

    def __init__(self, lot_id: str):
        """
        Initialize with lot ID.

        Args:
            lot_id: The lot ID that wasn't found
        """
        message = f"Lot not found: {lot_id}"
        super().__init__(message)


class ConfigurationError(PortfolioReconError):
    """Configuration errors."""

    pass


class InvalidDateError(ValidationError):
    """Invalid date format or value."""

    def __init__(self, date_str: str, expected_format: str = "MM/DD/YYYY"):
        """
        Initialize with date details.

        Args:
            date_str: The invalid date string
            expected_format: Expected date format
        """
        message = f"Invalid date: '{date_str}'. Expected format: {expected_format}"
        super().__init__(message)


class InvalidQuantityError(ValidationError):
    """Invalid quantity value."""

    def __init__(self, quantity: object, reason: str = ""):
        """
        Initialize with quantity details.

        Args:
            quantity: The invalid quantity
            reason: Reason why quantity is invalid
        """
        message = f"Invalid quantity: {quantity}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


# Error message helpers


def format_error_message(error: Exception) -> str:
    """
    Format exception into user-friendly error message.

    Args:
        error: The exception to format

    Returns:
        Formatted error message
    """
    if isinstance(error, PortfolioReconError):
        return error.message

    # Generic errors
    error_type = type(error).__name__
    return f"{error_type}: {str(error)}"


def get_error_color(error: Exception) -> str:
    """
    Get Rich color for error type.

    Args:
        error: The exception

    Returns:
        Rich color name
    """
    if isinstance(error, StructuralError):
        return "yellow"
    elif isinstance(error, (ValidationError, DataError)):
        return "red"
    elif isinstance(error, ConfigurationError):
        return "orange"
    elif isinstance(error, (DatabaseError, LedgerError)):
        return "magenta"
    else:
        return "red"
