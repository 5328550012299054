"""Unit tests for account-number redaction in logs."""

import logging

import pytest

from src.lib.logging_config import AccountNumberFilter, get_logger, setup_logging


def _record(msg, args=()):
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.unit
class TestAccountNumberFilter:
    """Test suite for AccountNumberFilter."""

    def test_grouped_account_number_masked(self):
        record = _record("Importing account 1234-5678-9012")

        assert AccountNumberFilter().filter(record)
        assert record.msg == "Importing account ****-****-9012"

    def test_long_digit_run_keeps_last_four(self):
        record = _record("Account 123456789 loaded")

        AccountNumberFilter().filter(record)

        assert record.msg == "Account ****6789 loaded"

    def test_short_numbers_untouched(self):
        """Quantities and years are not account numbers."""
        record = _record("Sold 1000 shares in 2023")

        AccountNumberFilter().filter(record)

        assert record.msg == "Sold 1000 shares in 2023"

    def test_args_redacted(self):
        record = _record("Account %s has %d lots", ("987654321", 3))

        AccountNumberFilter().filter(record)

        assert record.args == ("****4321", 3)
        assert record.getMessage() == "Account ****4321 has 3 lots"

    def test_setup_logging_filters_existing_handlers_once(self):
        root = logging.getLogger()
        handler = logging.NullHandler()
        root.addHandler(handler)
        level = root.level
        try:
            setup_logging(logging.WARNING, log_file="")
            setup_logging(logging.WARNING, log_file="")

            assert sum(isinstance(f, AccountNumberFilter) for f in handler.filters) == 1
        finally:
            root.removeHandler(handler)
            root.setLevel(level)

    def test_get_logger_adds_filter_once(self):
        first = get_logger("portfolio-recon.test")
        second = get_logger("portfolio-recon.test")

        assert first is second
        assert sum(isinstance(f, AccountNumberFilter) for f in first.filters) == 1
