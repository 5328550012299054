"""
Broker action label mappings.

Maps the free-text "Action" column of brokerage transaction exports to a
TransactionCategory. Labels not listed here are NEUTRAL.
"""

from src.models.transaction import TransactionCategory

ACTION_CATEGORY_MAPPING: dict[str, TransactionCategory] = {
    # Acquisitions (increase holdings)
    "Buy": TransactionCategory.ACQUISITION,
    "Reinvest Shares": TransactionCategory.ACQUISITION,
    "Assigned": TransactionCategory.ACQUISITION,  # Options assignment delivers shares
    # Dispositions (decrease holdings)
    "Sell": TransactionCategory.DISPOSITION,
    # Neutral (cash only, shares arrive via a separate "Reinvest Shares" row)
    "Reinvest Dividend": TransactionCategory.NEUTRAL,
    "Qual Div Reinvest": TransactionCategory.NEUTRAL,
    "Long Term Cap Gain Reinvest": TransactionCategory.NEUTRAL,
    "Sell to Open": TransactionCategory.NEUTRAL,  # Opens an option position, no shares sold
    "Expired": TransactionCategory.NEUTRAL,
    "Cash Dividend": TransactionCategory.NEUTRAL,
    "Qualified Dividend": TransactionCategory.NEUTRAL,
    "Special Qual Div": TransactionCategory.NEUTRAL,
    "Non-Qualified Div": TransactionCategory.NEUTRAL,
    "Bank Interest": TransactionCategory.NEUTRAL,
    "Credit Interest": TransactionCategory.NEUTRAL,
    "ADR Mgmt Fee": TransactionCategory.NEUTRAL,
    "Cash In Lieu": TransactionCategory.NEUTRAL,  # Cash paid for fractional shares
    "Foreign Tax Paid": TransactionCategory.NEUTRAL,
    "Service Fee": TransactionCategory.NEUTRAL,
    "Journal": TransactionCategory.NEUTRAL,
    "MoneyLink Transfer": TransactionCategory.NEUTRAL,
    "Wire Received": TransactionCategory.NEUTRAL,
    # Corporate actions
    "Stock Split": TransactionCategory.CORPORATE_ACTION,
    "Reverse Split": TransactionCategory.CORPORATE_ACTION,
}

# Case-insensitive lookup keyed by the trimmed, lower-cased label
_CATEGORY_BY_KEY: dict[str, TransactionCategory] = {
    label.lower(): category for label, category in ACTION_CATEGORY_MAPPING.items()
}

SPLIT_ACTIONS = {"stock split"}
REVERSE_SPLIT_ACTIONS = {"reverse split"}


def lookup_category(action: str | None) -> TransactionCategory | None:
    """Return the mapped category for an action label, or None if unknown."""
    if not action:
        return None
    return _CATEGORY_BY_KEY.get(action.strip().lower())


def is_split_action(action: str | None) -> bool:
    """True for forward stock split actions."""
    return (action or "").strip().lower() in SPLIT_ACTIONS


def is_reverse_split_action(action: str | None) -> bool:
    """True for reverse split actions."""
    return (action or "").strip().lower() in REVERSE_SPLIT_ACTIONS
