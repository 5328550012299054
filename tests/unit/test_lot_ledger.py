"""Unit tests for lot ledger calculations."""

from datetime import date
from decimal import Decimal

import pytest

from src.lib.errors import InvalidQuantityError, LedgerError, LotNotFoundError, ValidationError
from src.models.lot import AdjustmentType, LotStatus
from src.services.lot_ledger import (
    AccountingMethod,
    apply_sale_to_lots,
    apply_split_to_lots,
    calculate_realized_gain_loss,
    calculate_unrealized_gain_loss,
    calculate_weighted_average_cost,
    create_lot,
    describe_split,
    generate_lot_id,
    get_earliest_acquisition_date,
    group_lots_by_acquisition_year,
    has_adjustment_on,
    make_security_id,
    rekey_lot,
    remaining_cost_basis,
    sort_lots_by_method,
)

SECURITY_ID = make_security_id("Individual", "ABC")


def _lot(quantity: str, cost: str, acquired: date):
    return create_lot(
        SECURITY_ID, "Individual", "ABC", Decimal(quantity), acquired, Decimal(cost), True
    )


def _sold(lot) -> Decimal:
    return sum((sale.quantity for sale in lot.sales), Decimal("0"))


@pytest.fixture
def lot_a():
    """10 shares for $100 on 2023-01-01."""
    return _lot("10", "100", date(2023, 1, 1))


@pytest.fixture
def lot_b():
    """10 shares for $150 on 2023-02-01."""
    return _lot("10", "150", date(2023, 2, 1))


@pytest.mark.unit
class TestCreateLot:
    """Test suite for create_lot() and lot ids."""

    def test_new_lot_is_open(self, lot_a):
        assert lot_a.status == LotStatus.OPEN
        assert lot_a.original_quantity == lot_a.remaining_quantity == Decimal("10")
        assert lot_a.price_per_share == Decimal("10")
        assert lot_a.security_id == "Individual_ABC"
        assert lot_a.sales == []
        assert lot_a.adjustments == []

    def test_id_is_deterministic(self):
        first = _lot("10", "100", date(2023, 1, 1))
        second = _lot("10.00", "100.0", date(2023, 1, 1))

        assert first.id == second.id
        assert first.id == "Individual_ABC_Individual_ABC_10_2023-01-01_100_true"

    def test_manual_and_derived_ids_differ(self):
        args = (SECURITY_ID, "Individual", "ABC", Decimal("1"), date(2023, 1, 1), Decimal("5"))
        assert generate_lot_id(*args, True) != generate_lot_id(*args, False)

    def test_zero_quantity_allowed(self):
        lot = _lot("0", "0", date(2023, 1, 1))
        assert lot.price_per_share == Decimal("0")

    def test_negative_quantity_rejected(self):
        with pytest.raises(InvalidQuantityError):
            _lot("-1", "10", date(2023, 1, 1))

    def test_negative_cost_rejected(self):
        with pytest.raises(ValidationError):
            _lot("1", "-10", date(2023, 1, 1))


@pytest.mark.unit
class TestRekeyLot:
    """Test suite for rekey_lot()."""

    def test_id_matches_lot_built_under_new_symbol(self, lot_a):
        new_security_id = make_security_id("Individual", "XYZ")

        moved = rekey_lot(lot_a, new_security_id, "xyz")

        rebuilt = create_lot(
            new_security_id,
            "Individual",
            "XYZ",
            Decimal("10"),
            date(2023, 1, 1),
            Decimal("100"),
            True,
        )
        assert moved.id == rebuilt.id
        assert moved.security_id == new_security_id
        assert moved.symbol == "XYZ"

    def test_logs_carried_over(self, lot_a):
        apply_sale_to_lots(
            [lot_a],
            Decimal("4"),
            AccountingMethod.FIFO,
            date(2023, 2, 1),
            Decimal("15"),
            transaction_id="sell-1",
        )
        apply_split_to_lots([lot_a], Decimal("2"), date(2023, 3, 1))

        moved = rekey_lot(lot_a, make_security_id("Individual", "XYZ"), "XYZ")

        assert moved.remaining_quantity == Decimal("12")
        assert moved.original_quantity == Decimal("20")
        assert moved.status == LotStatus.PARTIAL
        [sale] = moved.sales
        assert sale.transaction_id == "sell-1"
        assert sale.quantity == Decimal("8")
        assert sale.lot_id == moved.id
        assert sale.id != lot_a.sales[0].id
        assert has_adjustment_on(moved, date(2023, 3, 1))
        assert moved.adjustments[0].lot_id == moved.id

    def test_foreign_id_rejected(self, lot_a):
        lot_a.security_id = "Joint_ABC"

        with pytest.raises(LedgerError):
            rekey_lot(lot_a, make_security_id("Individual", "XYZ"), "XYZ")


@pytest.mark.unit
class TestSortLotsByMethod:
    """Test suite for sort_lots_by_method()."""

    def test_fifo_and_lifo(self, lot_a, lot_b):
        assert sort_lots_by_method([lot_b, lot_a], AccountingMethod.FIFO) == [lot_a, lot_b]
        assert sort_lots_by_method([lot_a, lot_b], AccountingMethod.LIFO) == [lot_b, lot_a]

    def test_closed_lots_excluded(self, lot_a, lot_b):
        apply_sale_to_lots([lot_a], Decimal("10"), AccountingMethod.FIFO, None, Decimal("1"))
        assert sort_lots_by_method([lot_a, lot_b], AccountingMethod.FIFO) == [lot_b]

    def test_average_cost_keeps_order(self, lot_a, lot_b):
        assert sort_lots_by_method([lot_b, lot_a], AccountingMethod.AVERAGE_COST) == [
            lot_b,
            lot_a,
        ]


@pytest.mark.unit
class TestApplySale:
    """Test suite for apply_sale_to_lots()."""

    def test_fifo_partial_sale(self, lot_a, lot_b):
        """Selling 6 shares under FIFO draws only on the older lot."""
        result = apply_sale_to_lots(
            [lot_a, lot_b],
            Decimal("6"),
            AccountingMethod.FIFO,
            date(2023, 3, 1),
            Decimal("20"),
            transaction_id="sell-1",
        )

        assert lot_a.status == LotStatus.PARTIAL
        assert lot_a.remaining_quantity == Decimal("4")
        assert lot_b.status == LotStatus.OPEN
        assert result.affected_lots == [lot_a]
        assert result.total_quantity_sold == Decimal("6")
        assert result.total_cost_basis == Decimal("60")
        assert result.total_proceeds == Decimal("120")
        assert result.gain_loss == Decimal("60")
        assert result.remaining_to_sell == Decimal("0")

        [sale] = lot_a.sales
        assert sale.transaction_id == "sell-1"
        assert sale.sale_date == date(2023, 3, 1)
        assert sale.sequence == 0

    def test_fifo_spans_lots(self, lot_a, lot_b):
        result = apply_sale_to_lots(
            [lot_b, lot_a], Decimal("15"), AccountingMethod.FIFO, date(2023, 3, 1), Decimal("20")
        )

        assert lot_a.status == LotStatus.CLOSED
        assert lot_b.remaining_quantity == Decimal("5")
        assert result.total_cost_basis == Decimal("100") + Decimal("75")

    def test_lifo(self, lot_a, lot_b):
        result = apply_sale_to_lots(
            [lot_a, lot_b], Decimal("6"), AccountingMethod.LIFO, date(2023, 3, 1), Decimal("20")
        )

        assert lot_b.remaining_quantity == Decimal("4")
        assert lot_a.remaining_quantity == Decimal("10")
        assert result.total_cost_basis == Decimal("90")

    def test_average_cost_is_pro_rata(self, lot_a, lot_b):
        """Each lot gives up shares in proportion to what it holds."""
        result = apply_sale_to_lots(
            [lot_a, lot_b],
            Decimal("6"),
            AccountingMethod.AVERAGE_COST,
            date(2023, 3, 1),
            Decimal("20"),
        )

        assert lot_a.remaining_quantity == Decimal("7")
        assert lot_b.remaining_quantity == Decimal("7")
        assert result.total_quantity_sold == Decimal("6")
        # 6 shares at the pooled average of $12.50
        assert result.total_cost_basis == Decimal("75")

    def test_average_cost_rounding_remainder(self):
        lots = [_lot("1", "10", date(2023, 1, d)) for d in (1, 2, 3)]

        result = apply_sale_to_lots(
            lots, Decimal("1"), AccountingMethod.AVERAGE_COST, date(2023, 3, 1), Decimal("1")
        )

        assert result.total_quantity_sold == Decimal("1")
        assert sum((lot.remaining_quantity for lot in lots), Decimal("0")) == Decimal("2")

    def test_specific_identification(self, lot_a, lot_b):
        result = apply_sale_to_lots(
            [lot_a, lot_b],
            Decimal("3"),
            AccountingMethod.SPECIFIC_IDENTIFICATION,
            date(2023, 3, 1),
            Decimal("20"),
            lot_ids=[lot_b.id],
        )

        assert lot_b.remaining_quantity == Decimal("7")
        assert lot_a.remaining_quantity == Decimal("10")
        assert result.total_cost_basis == Decimal("45")

    def test_specific_identification_unknown_lot(self, lot_a):
        with pytest.raises(LotNotFoundError):
            apply_sale_to_lots(
                [lot_a],
                Decimal("1"),
                AccountingMethod.SPECIFIC_IDENTIFICATION,
                date(2023, 3, 1),
                Decimal("20"),
                lot_ids=["missing"],
            )

    def test_oversell_is_truncated(self, lot_a, caplog):
        result = apply_sale_to_lots(
            [lot_a], Decimal("12"), AccountingMethod.FIFO, date(2023, 3, 1), Decimal("20")
        )

        assert result.total_quantity_sold == Decimal("10")
        assert result.remaining_to_sell == Decimal("2")
        assert lot_a.status == LotStatus.CLOSED
        assert "exceeds available lots" in caplog.text

    def test_no_lots(self):
        result = apply_sale_to_lots([], Decimal("5"), AccountingMethod.FIFO, None, Decimal("1"))
        assert result.remaining_to_sell == Decimal("5")
        assert result.affected_lots == []

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_non_positive_sale_rejected(self, lot_a, quantity):
        with pytest.raises(InvalidQuantityError):
            apply_sale_to_lots(
                [lot_a], Decimal(quantity), AccountingMethod.FIFO, None, Decimal("1")
            )

    @pytest.mark.parametrize("method", list(AccountingMethod))
    def test_quantity_conservation(self, lot_a, lot_b, method):
        """original == remaining + sold for every lot under every method."""
        for quantity in ("3", "4.5", "9"):
            apply_sale_to_lots(
                [lot_a, lot_b], Decimal(quantity), method, date(2023, 3, 1), Decimal("20")
            )

        for lot in (lot_a, lot_b):
            assert lot.original_quantity == lot.remaining_quantity + _sold(lot)
            assert lot.remaining_quantity >= 0

    def test_sequences_increase(self, lot_a):
        for _ in range(3):
            apply_sale_to_lots([lot_a], Decimal("1"), AccountingMethod.FIFO, None, Decimal("1"))
        assert [sale.sequence for sale in lot_a.sales] == [0, 1, 2]


@pytest.mark.unit
class TestApplySplit:
    """Test suite for apply_split_to_lots()."""

    def test_forward_split(self, lot_a):
        apply_split_to_lots([lot_a], Decimal("2"), date(2023, 6, 1))

        assert lot_a.original_quantity == Decimal("20")
        assert lot_a.remaining_quantity == Decimal("20")
        assert lot_a.price_per_share == Decimal("5")
        assert lot_a.cost_basis == Decimal("100")

        [adjustment] = lot_a.adjustments
        assert adjustment.adjustment_type == AdjustmentType.SPLIT
        assert adjustment.description == "2:1 split"
        assert has_adjustment_on(lot_a, date(2023, 6, 1))
        assert not has_adjustment_on(lot_a, date(2023, 6, 2))

    def test_reverse_split(self, lot_a):
        apply_split_to_lots([lot_a], Decimal("0.5"), date(2023, 6, 1))

        assert lot_a.remaining_quantity == Decimal("5")
        assert lot_a.price_per_share == Decimal("20")
        assert lot_a.adjustments[0].adjustment_type == AdjustmentType.REVERSE_SPLIT

    def test_split_restates_sales(self, lot_a):
        """Logged sales move to post-split shares so the lot still balances."""
        apply_sale_to_lots(
            [lot_a], Decimal("4"), AccountingMethod.FIFO, date(2023, 3, 1), Decimal("20")
        )

        apply_split_to_lots([lot_a], Decimal("3"), date(2023, 6, 1))

        [sale] = lot_a.sales
        assert sale.quantity == Decimal("12")
        assert sale.proceeds == Decimal("80")
        assert lot_a.remaining_quantity == Decimal("18")
        assert lot_a.original_quantity == lot_a.remaining_quantity + _sold(lot_a)
        assert remaining_cost_basis(lot_a) == Decimal("60")

    def test_basis_conserved(self, lot_a, lot_b):
        before = remaining_cost_basis(lot_a) + remaining_cost_basis(lot_b)

        apply_split_to_lots([lot_a, lot_b], Decimal("4"), date(2023, 6, 1))

        assert remaining_cost_basis(lot_a) + remaining_cost_basis(lot_b) == before

    def test_non_positive_ratio_rejected(self, lot_a):
        with pytest.raises(InvalidQuantityError):
            apply_split_to_lots([lot_a], Decimal("0"), date(2023, 6, 1))

    def test_describe(self):
        assert describe_split(Decimal("3")) == "3:1 split"
        assert describe_split(Decimal("0.25")) == "1:4 reverse split"
        assert describe_split(Decimal("0.333")) == "1:3 reverse split"


@pytest.mark.unit
class TestCalculations:
    """Test suite for ledger aggregates."""

    def test_weighted_average_cost(self, lot_a, lot_b):
        assert calculate_weighted_average_cost([lot_a, lot_b]) == Decimal("12.5")
        assert calculate_weighted_average_cost([]) == Decimal("0")

    def test_unrealized_gain_loss(self, lot_a, lot_b):
        apply_sale_to_lots(
            [lot_a, lot_b], Decimal("5"), AccountingMethod.FIFO, date(2023, 3, 1), Decimal("20")
        )

        # 5 of lot A ($50 basis) + 10 of lot B ($150 basis) at $20
        assert calculate_unrealized_gain_loss([lot_a, lot_b], Decimal("20")) == Decimal("100")

    def test_realized_gain_loss(self, lot_a, lot_b):
        apply_sale_to_lots(
            [lot_a, lot_b], Decimal("12"), AccountingMethod.FIFO, date(2023, 3, 1), Decimal("20")
        )

        # 10 * (20 - 10) + 2 * (20 - 15)
        assert calculate_realized_gain_loss([lot_a, lot_b]) == Decimal("110")

    def test_earliest_and_by_year(self, lot_a, lot_b):
        older = _lot("1", "1", date(2021, 7, 1))

        assert get_earliest_acquisition_date([lot_b, older, lot_a]) == date(2021, 7, 1)
        assert get_earliest_acquisition_date([]) is None

        grouped = group_lots_by_acquisition_year([lot_b, older, lot_a])
        assert list(grouped) == [2021, 2023]
        assert grouped[2023] == [lot_b, lot_a]
