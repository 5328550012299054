"""Unit tests for the positions snapshot loader."""

from datetime import date
from decimal import Decimal

import pytest

from src.lib.errors import SnapshotParseError
from src.services.snapshot_parser import (
    extract_snapshot_date,
    find_header_row,
    load_snapshot,
    load_snapshots,
    parse_snapshot_text,
)

POSITIONS_CSV = "\n".join(
    [
        '"Positions for account Individual ...123 as of 03:45 PM ET, 06/30/2023"',
        "",
        '"Symbol","Description","Qty (Quantity)","Price","Mkt Val (Market Value)",'
        '"Cost Basis","Security Type",',
        '"ABC","ABC CORP","10","$50.00","$500.00","$450.00","Equity",',
        '"XYZ","XYZ INC","1,000","$2.50","$2,500.00","$3,000.00","ETFs & Closed End Funds",',
        '"Cash & Cash Investments","--","--","--","$1,234.56","--","Cash and Money Market",',
        '"Account Total","--","--","--","$4,234.56","$3,450.00","--",',
        "",
    ]
)


def _write(tmp_path, name: str, content: str):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.unit
class TestParseSnapshotText:
    """Test suite for parse_snapshot_text()."""

    def test_positions_parsed(self):
        snapshot = parse_snapshot_text(POSITIONS_CSV)

        assert snapshot.date == date(2023, 6, 30)
        assert [p.symbol for p in snapshot.positions] == ["ABC", "XYZ"]
        abc, xyz = snapshot.positions
        assert abc.quantity == Decimal("10")
        assert abc.price == Decimal("50.00")
        assert abc.market_value == Decimal("500.00")
        assert abc.cost_basis == Decimal("450.00")
        assert abc.description == "ABC CORP"
        assert xyz.quantity == Decimal("1000")
        assert xyz.security_type == "ETFs & Closed End Funds"
        assert snapshot.errors == []

    def test_summary_rows(self):
        """Cash is skipped; the account total is kept separately."""
        snapshot = parse_snapshot_text(POSITIONS_CSV)

        assert snapshot.position_for("Cash & Cash Investments") is None
        assert snapshot.account_total == Decimal("4234.56")

    def test_explicit_date_wins(self):
        snapshot = parse_snapshot_text(POSITIONS_CSV, snapshot_date=date(2023, 7, 1))
        assert snapshot.date == date(2023, 7, 1)

    def test_header_variants(self):
        content = "Symbol,Quantity,Price,Market Value\nabc,5,$10.00,$50.00\n"

        snapshot = parse_snapshot_text(content)

        assert snapshot.date is None
        [position] = snapshot.positions
        assert position.symbol == "ABC"
        assert position.quantity == Decimal("5")
        assert position.market_value == Decimal("50.00")

    def test_placeholder_values_are_zero(self):
        content = "Symbol,Qty (Quantity),Price,Mkt Val (Market Value)\nABC,10,N/A,--\n"

        [position] = parse_snapshot_text(content).positions

        assert position.price == Decimal("0")
        assert position.market_value == Decimal("0")

    def test_missing_header(self):
        with pytest.raises(SnapshotParseError, match="Could not find header line"):
            parse_snapshot_text("just,some,numbers\n1,2,3\n")


@pytest.mark.unit
class TestHelpers:
    """Test suite for header and date helpers."""

    def test_find_header_row(self):
        assert find_header_row(["preamble", '"Symbol","Qty"', "row"]) == 1

    def test_extract_snapshot_date(self):
        assert extract_snapshot_date(["Positions as of 12/29/2023"]) == date(2023, 12, 29)
        assert extract_snapshot_date(["no date here"]) is None

    def test_invalid_date_ignored(self):
        assert extract_snapshot_date(["as of 13/45/2023"]) is None


@pytest.mark.unit
class TestLoadSnapshot:
    """Test suite for load_snapshot() and load_snapshots()."""

    def test_load_file(self, tmp_path):
        path = _write(tmp_path, "positions.csv", POSITIONS_CSV)

        snapshot = load_snapshot(path)

        assert len(snapshot.positions) == 2

    def test_byte_order_mark_tolerated(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_text("\ufeff" + POSITIONS_CSV, encoding="utf-8")

        assert len(load_snapshot(path).positions) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(SnapshotParseError, match="Cannot read snapshot file"):
            load_snapshot(tmp_path / "absent.csv")

    def test_load_snapshots_sorted(self, tmp_path):
        june = _write(tmp_path, "june.csv", POSITIONS_CSV)
        may = _write(tmp_path, "may.csv", POSITIONS_CSV.replace("06/30/2023", "05/31/2023"))
        undated = _write(tmp_path, "undated.csv", "Symbol,Quantity\nABC,1\n")

        snapshots = load_snapshots([undated, june, may])

        assert [s.date for s in snapshots] == [date(2023, 5, 31), date(2023, 6, 30), None]
