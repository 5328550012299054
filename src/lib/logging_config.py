"""Logging configuration with account-number redaction."""

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.lib.config import DEFAULT_DATA_DIR_NAME


class AccountNumberFilter(logging.Filter):
    """Filter that masks brokerage account numbers in log messages.

    Brokerage exports name accounts like ``Individual ...123`` or
    ``XXXX-1234``; anything that looks like a full account number keeps
    only its last four digits.
    """

    SENSITIVE_PATTERNS = [
        (re.compile(r"\b(\d{4})[-\s]?(\d{4})[-\s]?(\d{4})\b"), r"****-****-\3"),
        (re.compile(r"\b\d{5,}(\d{4})\b"), r"****\1"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Filter log record to mask account numbers.

        Args:
            record: Log record to filter

        Returns:
            True to keep the record
        """
        if isinstance(record.msg, str):
            record.msg = self._redact_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        return True

    def _redact_value(self, value: Any) -> Any:
        """Redact account numbers from a string value, leaving other types alone."""
        if isinstance(value, str):
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                value = pattern.sub(replacement, value)
        return value


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """
    Configure logging with redaction filters and file rotation.

    Args:
        level: Logging level (default: INFO)
        log_file: Path to log file (default: ~/.portfolio-recon/portfolio-recon.log)
                 Set to "" to disable file logging

    Example:
        >>> from src.lib.logging_config import setup_logging
        >>> setup_logging(logging.DEBUG)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    account_filter = AccountNumberFilter()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if not root_logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(account_filter)
        root_logger.addHandler(console_handler)

        if log_file is None:
            log_file = os.getenv(
                "LOG_FILE", str(Path.home() / DEFAULT_DATA_DIR_NAME / "portfolio-recon.log")
            )

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            # Rotating file handler: 10MB per file, keep 5 backup files
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(account_filter)
            root_logger.addHandler(file_handler)
    else:
        # Each CLI invocation calls this again
        for handler in root_logger.handlers:
            if not any(isinstance(f, AccountNumberFilter) for f in handler.filters):
                handler.addFilter(account_filter)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with account-number masking enabled.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, AccountNumberFilter) for f in logger.filters):
        logger.addFilter(AccountNumberFilter())

    return logger
