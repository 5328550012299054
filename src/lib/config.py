"""Application configuration constants."""

from decimal import Decimal

# Database
DB_PATH_ENV_VAR = "PORTFOLIO_RECON_DB_PATH"  # Overrides the default database location
DEFAULT_DATA_DIR_NAME = ".portfolio-recon"  # Created under the user's home directory

# Reconciliation Thresholds
QUANTITY_TOLERANCE = Decimal("0.001")  # Calculated vs. actual shares treated as equal below this
QUANTITY_HIGH_SEVERITY_RATIO = Decimal("0.10")  # Gap above 10% of actual quantity = HIGH
MARKET_VALUE_TOLERANCE = Decimal("1.0")  # Currency units of rounding allowed in qty * price
MARKET_VALUE_HIGH_SEVERITY_RATIO = Decimal("0.01")  # Gap above 1% of market value = HIGH
TRANSACTION_AMOUNT_TOLERANCE = Decimal("0.01")  # quantity * price vs. gross amount of one record

# Deduplication
DEDUP_TOLERANCE = Decimal("0.01")  # Price/amount differences below this are rounding noise

# Symbol-Change Detection
SYMBOL_GAP_DAYS = 7  # Days of silence before a symbol is considered vanished
SYMBOL_MATCH_WINDOW_DAYS = 5  # Window after the gap start in which a successor must appear
SNAPSHOT_QUANTITY_TOLERANCE = Decimal("0.01")  # Quantity match between two snapshots

# Corporate Action Detection
# Forward splits and their reciprocals (2:1, 3:1, 4:1, 5:1 and 1:2 ... 1:5)
CANONICAL_SPLIT_RATIOS = [
    Decimal("2"),
    Decimal("3"),
    Decimal("4"),
    Decimal("5"),
    Decimal("0.5"),
    Decimal("0.333"),
    Decimal("0.25"),
    Decimal("0.2"),
]
SPLIT_RATIO_TOLERANCE = Decimal("0.1")  # Detected ratio must be this close to a canonical one

# Lot Ledger
MIN_LOT_QUANTITY = Decimal("0.00000001")  # Residual shares below this close the lot
