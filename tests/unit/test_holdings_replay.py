"""Unit tests for holdings replay."""

from datetime import date
from decimal import Decimal

import pytest

from src.models.transaction import TransactionCategory
from src.services.holdings_replay import (
    group_by_symbol,
    infer_split_ratio,
    replay,
    replay_portfolio,
)
from src.services.symbol_mapping_store import SymbolMappingStore

SELL = {"action": "Sell", "category": TransactionCategory.DISPOSITION}
SPLIT = {"action": "Stock Split", "category": TransactionCategory.CORPORATE_ACTION}
REVERSE = {"action": "Reverse Split", "category": TransactionCategory.CORPORATE_ACTION}


@pytest.mark.unit
class TestReplay:
    """Test suite for replay()."""

    def test_single_buy(self, make_transaction):
        buy = make_transaction(quantity="10", price="50", amount="-500")

        result = replay([buy], date(2023, 12, 31))

        assert result.symbol == "ABC"
        assert result.quantity == Decimal("10")
        assert result.total_cost_basis == Decimal("500")
        assert result.average_cost_per_share == Decimal("50")
        assert result.earliest_acquisition_date == date(2023, 1, 15)

    def test_as_of_excludes_later_transactions(self, make_transaction):
        early = make_transaction(on=date(2023, 1, 1))
        late = make_transaction(on=date(2023, 6, 1))

        result = replay([late, early], date(2023, 3, 1))

        assert result.quantity == Decimal("10")
        assert result.applied_transactions == [early]

    def test_as_of_is_inclusive(self, make_transaction):
        buy = make_transaction(on=date(2023, 3, 1))
        assert replay([buy], date(2023, 3, 1)).quantity == Decimal("10")

    def test_undated_transactions_ignored(self, make_transaction):
        result = replay([make_transaction(on=None)], date(2023, 12, 31))
        assert result.quantity == Decimal("0")

    def test_sale_removes_proportional_cost(self, make_transaction):
        buy = make_transaction(on=date(2023, 1, 1), quantity="10", amount="-500")
        sell = make_transaction(on=date(2023, 2, 1), quantity="-4", amount="240", **SELL)

        result = replay([buy, sell], date(2023, 12, 31))

        assert result.quantity == Decimal("6")
        assert result.total_cost_basis == Decimal("300")
        assert result.average_cost_per_share == Decimal("50")

    def test_oversell_goes_negative(self, make_transaction, caplog):
        buy = make_transaction(on=date(2023, 1, 1), quantity="5")
        sell = make_transaction(on=date(2023, 2, 1), quantity="8", amount="400", **SELL)

        result = replay([buy, sell], date(2023, 12, 31))

        assert result.quantity == Decimal("-3")
        assert result.total_cost_basis == Decimal("0")
        assert result.average_cost_per_share == Decimal("0")
        assert "exceeds replayed holdings" in caplog.text

    def test_forward_split(self, make_transaction):
        buy = make_transaction(on=date(2023, 1, 1), quantity="100", amount="-1000")
        split = make_transaction(on=date(2023, 6, 1), quantity="200", amount="0", **SPLIT)

        result = replay([buy, split], date(2023, 12, 31))

        assert result.quantity == Decimal("200")
        assert result.total_cost_basis == Decimal("1000")
        assert result.average_cost_per_share == Decimal("5")

    def test_reverse_split(self, make_transaction):
        buy = make_transaction(on=date(2023, 1, 1), quantity="100", amount="-1000")
        reverse = make_transaction(on=date(2023, 6, 1), quantity="10", amount="0", **REVERSE)

        result = replay([buy, reverse], date(2023, 12, 31))

        assert result.quantity == Decimal("10")
        assert result.total_cost_basis == Decimal("1000")

    def test_split_without_holdings_skipped(self, make_transaction, caplog):
        split = make_transaction(on=date(2023, 6, 1), quantity="200", amount="0", **SPLIT)

        result = replay([split], date(2023, 12, 31))

        assert result.quantity == Decimal("0")
        assert result.skipped_splits == [split]
        assert "cannot infer split ratio" in caplog.text

    def test_neutral_records_do_not_change_holdings(self, make_transaction):
        buy = make_transaction(on=date(2023, 1, 1))
        dividend = make_transaction(
            on=date(2023, 3, 1),
            action="Cash Dividend",
            category=TransactionCategory.NEUTRAL,
            quantity="0",
            amount="12.50",
        )

        result = replay([buy, dividend], date(2023, 12, 31))

        assert result.quantity == Decimal("10")
        assert dividend not in result.applied_transactions

    def test_input_not_mutated(self, make_transaction):
        transactions = [
            make_transaction(on=date(2023, 2, 1)),
            make_transaction(on=date(2023, 1, 1)),
        ]
        snapshot = list(transactions)

        replay(transactions, date(2023, 12, 31))

        assert transactions == snapshot

    def test_empty(self):
        result = replay([], date(2023, 12, 31), symbol="ABC")
        assert result.symbol == "ABC"
        assert result.quantity == Decimal("0")
        assert result.earliest_acquisition_date is None


@pytest.mark.unit
class TestInferSplitRatio:
    """Test suite for infer_split_ratio()."""

    def test_forward(self, make_transaction):
        split = make_transaction(quantity="300", **SPLIT)
        assert infer_split_ratio(split, Decimal("100")) == Decimal("3")

    def test_reverse_is_reduction_factor(self, make_transaction):
        reverse = make_transaction(quantity="25", **REVERSE)
        assert infer_split_ratio(reverse, Decimal("100")) == Decimal("4")

    def test_non_positive_inputs(self, make_transaction):
        split = make_transaction(quantity="300", **SPLIT)
        assert infer_split_ratio(split, Decimal("0")) is None
        assert infer_split_ratio(make_transaction(quantity="0", **SPLIT), Decimal("10")) is None


@pytest.mark.unit
class TestGroupBySymbol:
    """Test suite for group_by_symbol() and replay_portfolio()."""

    def test_cash_records_skipped(self, make_transaction):
        grouped = group_by_symbol(
            [
                make_transaction(symbol="ABC"),
                make_transaction(symbol="", action="Bank Interest"),
                make_transaction(symbol="XYZ"),
            ]
        )
        assert sorted(grouped) == ["ABC", "XYZ"]

    def test_renamed_symbol_folds_into_current(self, make_transaction):
        store = SymbolMappingStore()
        store.create("OLD", "NEW", date(2023, 5, 1))
        old_buy = make_transaction(symbol="OLD", on=date(2023, 1, 1))
        new_buy = make_transaction(symbol="NEW", on=date(2023, 6, 1))

        grouped = group_by_symbol([old_buy, new_buy], store)

        assert grouped == {"NEW": [old_buy, new_buy]}

    def test_replay_portfolio(self, make_transaction):
        results = replay_portfolio(
            [
                make_transaction(symbol="ABC", quantity="10"),
                make_transaction(symbol="XYZ", quantity="3", amount="-30"),
            ],
            date(2023, 12, 31),
        )

        assert results["ABC"].quantity == Decimal("10")
        assert results["XYZ"].quantity == Decimal("3")
        assert results["XYZ"].symbol == "XYZ"
