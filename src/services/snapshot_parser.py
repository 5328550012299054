"""Portfolio positions snapshot loader.

Reads broker "Positions" CSV exports: a free-text preamble (account name and
"as of" timestamp), a header row, one row per position and summary rows for
cash and the account total.
"""

import io
import logging
import re
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional, Union

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from src.lib.brokerage_models import PortfolioSnapshot, Position
from src.lib.errors import SnapshotParseError
from src.lib.validators import parse_amount

logger = logging.getLogger(__name__)

SNAPSHOT_DATE_PATTERN = re.compile(r"(\d{2}/\d{2}/\d{4})")

ACCOUNT_TOTAL_LABEL = "Account Total"
CASH_LABEL = "Cash & Cash Investments"


def _canonical_header(header: str) -> str:
    """Map header variants onto the Position field aliases."""
    trimmed = header.strip().strip('"')
    lower = trimmed.lower()
    if "symbol" in lower:
        return "Symbol"
    if "description" in lower:
        return "Description"
    if "qty" in lower or "quantity" in lower:
        return "Qty (Quantity)"
    if "mkt val" in lower or "market value" in lower:
        return "Mkt Val (Market Value)"
    if "cost basis" in lower:
        return "Cost Basis"
    if "security type" in lower:
        return "Security Type"
    if lower == "price":
        return "Price"
    return trimmed


def find_header_row(lines: list[str]) -> int:
    """
    Index of the first line naming a Symbol column.

    Raises:
        SnapshotParseError: If no line does
    """
    for i, line in enumerate(lines):
        if "symbol" in line.lower():
            return i
    raise SnapshotParseError("Could not find header line in snapshot file")


def extract_snapshot_date(preamble: Iterable[str]) -> Optional[date]:
    """First MM/DD/YYYY found in the lines above the header, if any."""
    for line in preamble:
        match = SNAPSHOT_DATE_PATTERN.search(line)
        if match:
            try:
                return datetime.strptime(match.group(1), "%m/%d/%Y").date()
            except ValueError:
                logger.warning(f"Ignoring invalid snapshot date '{match.group(1)}'")
    return None


def parse_snapshot_text(content: str, snapshot_date: Optional[date] = None) -> PortfolioSnapshot:
    """
    Parse snapshot CSV content.

    Args:
        content: Raw CSV text
        snapshot_date: Overrides the date found in the preamble

    Returns:
        PortfolioSnapshot; rows that fail validation are listed in ``errors``

    Raises:
        SnapshotParseError: If the header row is missing or the table is unreadable
    """
    lines = [line for line in content.splitlines() if line.strip()]
    header_index = find_header_row(lines)

    if snapshot_date is None:
        snapshot_date = extract_snapshot_date(lines[:header_index])

    try:
        df = pd.read_csv(
            io.StringIO("\n".join(lines[header_index:])),
            dtype=str,
            na_filter=False,
            skipinitialspace=True,
            index_col=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise SnapshotParseError(f"Failed to read snapshot table: {e}") from e

    df = df.rename(columns=_canonical_header)

    positions: list[Position] = []
    errors: list[dict[str, object]] = []
    account_total: Optional[Decimal] = None

    for idx, row in df.iterrows():
        row_number = header_index + int(idx) + 2  # type: ignore[call-overload]
        record = {key: value for key, value in row.to_dict().items() if isinstance(key, str)}
        symbol = str(record.get("Symbol", "")).strip()

        if symbol == ACCOUNT_TOTAL_LABEL:
            account_total = parse_amount(record.get("Mkt Val (Market Value)"))
            continue
        if symbol == CASH_LABEL or not symbol or symbol == "--":
            continue

        try:
            positions.append(Position.model_validate(record))
        except PydanticValidationError as e:
            logger.warning(f"Skipping snapshot row {row_number}: {e.error_count()} errors")
            errors.append({"row": row_number, "error": str(e)})

    logger.info(
        f"Loaded snapshot dated {snapshot_date}: {len(positions)} positions, "
        f"{len(errors)} rejected rows"
    )
    return PortfolioSnapshot(
        date=snapshot_date,
        positions=positions,
        account_total=account_total,
        errors=errors,
    )


def load_snapshot(
    path: Union[str, Path], snapshot_date: Optional[date] = None
) -> PortfolioSnapshot:
    """
    Load a positions snapshot CSV file.

    Raises:
        SnapshotParseError: If the file cannot be read or has no header row
    """
    try:
        content = Path(path).read_text(encoding="utf-8-sig")
    except OSError as e:
        raise SnapshotParseError(f"Cannot read snapshot file {path}: {e}") from e
    return parse_snapshot_text(content, snapshot_date)


def load_snapshots(paths: Iterable[Union[str, Path]]) -> list[PortfolioSnapshot]:
    """Load several snapshots, oldest first (undated last)."""
    snapshots = [load_snapshot(path) for path in paths]
    return sorted(snapshots, key=lambda s: (s.date is None, s.date or date.min))
