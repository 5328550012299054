"""Tax lot ledger: lot creation, sale consumption and split adjustment.

Functions here operate on Lot objects in memory and never touch the
database; ledger_store persists the results. Every lot, whether derived
from a transaction or entered by hand, is built by create_lot().

Lot invariant (holds after every operation):
    original_quantity == remaining_quantity + sum(sale.quantity for sale in lot.sales)
"""

import enum
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Optional, Sequence

from src.lib.config import MIN_LOT_QUANTITY
from src.lib.errors import InvalidQuantityError, LedgerError, LotNotFoundError
from src.lib.validators import normalize_symbol, validate_cost_basis
from src.models.lot import AdjustmentType, Lot, LotAdjustment, LotSale, LotStatus
from src.services.transaction_normalizer import format_quantity

logger = logging.getLogger(__name__)

# Storage precision of Numeric(20, 8) share columns
_SHARE_QUANTUM = Decimal("0.00000001")


class AccountingMethod(str, enum.Enum):
    """Order in which a sale consumes lots."""

    FIFO = "FIFO"
    LIFO = "LIFO"
    AVERAGE_COST = "AVERAGE_COST"
    SPECIFIC_IDENTIFICATION = "SPECIFIC_IDENTIFICATION"


@dataclass
class SaleResult:
    """Outcome of applying one sale to a set of lots."""

    affected_lots: list[Lot] = field(default_factory=list)
    total_quantity_sold: Decimal = Decimal("0")
    total_proceeds: Decimal = Decimal("0")
    total_cost_basis: Decimal = Decimal("0")
    gain_loss: Decimal = Decimal("0")
    remaining_to_sell: Decimal = Decimal("0")  # > 0 when the lots could not cover the sale


def make_security_id(account: str, symbol: str) -> str:
    """Composite (account, symbol) key."""
    return f"{account}_{normalize_symbol(symbol)}"


def generate_lot_id(
    security_id: str,
    account: str,
    symbol: str,
    quantity: Decimal,
    acquisition_date: date,
    cost_basis: Decimal,
    is_transaction_derived: bool,
) -> str:
    """
    Deterministic lot id.

    The same acquisition always yields the same id, which is what makes
    reprocessing a transaction set a no-op.
    """
    return (
        f"{security_id}_{account}_{symbol}_{format_quantity(quantity)}_"
        f"{acquisition_date.isoformat()}_{format_quantity(cost_basis)}_"
        f"{str(is_transaction_derived).lower()}"
    )


def create_lot(
    security_id: str,
    account: str,
    symbol: str,
    quantity: Decimal,
    acquisition_date: date,
    cost_basis: Decimal,
    is_transaction_derived: bool,
) -> Lot:
    """
    Build a new OPEN lot.

    Args:
        security_id: Composite key from make_security_id()
        account: Owning account
        symbol: Security symbol
        quantity: Shares acquired
        acquisition_date: Acquisition date
        cost_basis: Total cost of the lot
        is_transaction_derived: False for lots entered by hand

    Returns:
        Unsaved Lot

    Raises:
        InvalidQuantityError: If quantity is negative
        ValidationError: If cost basis is negative
    """
    if quantity < 0:
        raise InvalidQuantityError(quantity, "lot quantity cannot be negative")
    validate_cost_basis(cost_basis)

    symbol = normalize_symbol(symbol)
    return Lot(
        id=generate_lot_id(
            security_id,
            account,
            symbol,
            quantity,
            acquisition_date,
            cost_basis,
            is_transaction_derived,
        ),
        security_id=security_id,
        account=account,
        symbol=symbol,
        original_quantity=quantity,
        remaining_quantity=quantity,
        acquisition_date=acquisition_date,
        cost_basis=cost_basis,
        price_per_share=cost_basis / quantity if quantity > 0 else Decimal("0"),
        status=LotStatus.OPEN,
        is_transaction_derived=is_transaction_derived,
        sales=[],
        adjustments=[],
    )


def update_lot_status(lot: Lot) -> LotStatus:
    """Derive status from remaining vs. original quantity."""
    if lot.remaining_quantity <= 0:
        lot.status = LotStatus.CLOSED
    elif lot.remaining_quantity < lot.original_quantity:
        lot.status = LotStatus.PARTIAL
    else:
        lot.status = LotStatus.OPEN
    return lot.status


def rekey_lot(lot: Lot, security_id: str, symbol: str) -> Lot:
    """
    Copy of ``lot`` filed under another security, e.g. after a ticker change.

    The id keeps its quantity, date, cost and origin fields so the copy
    stays deterministic; sale and adjustment logs are carried over.

    Raises:
        LedgerError: If the lot id was not built by generate_lot_id()
    """
    prefix = f"{lot.security_id}_{lot.account}_{lot.symbol}_"
    if not lot.id.startswith(prefix):
        raise LedgerError(f"Lot id {lot.id} does not match security {lot.security_id}")

    symbol = normalize_symbol(symbol)
    new_id = f"{security_id}_{lot.account}_{symbol}_{lot.id[len(prefix):]}"
    return Lot(
        id=new_id,
        security_id=security_id,
        account=lot.account,
        symbol=symbol,
        original_quantity=lot.original_quantity,
        remaining_quantity=lot.remaining_quantity,
        acquisition_date=lot.acquisition_date,
        cost_basis=lot.cost_basis,
        price_per_share=lot.price_per_share,
        status=lot.status,
        is_transaction_derived=lot.is_transaction_derived,
        sales=[
            LotSale(
                id=str(uuid.uuid4()),
                lot_id=new_id,
                sequence=sale.sequence,
                transaction_id=sale.transaction_id,
                sale_date=sale.sale_date,
                quantity=sale.quantity,
                price=sale.price,
                proceeds=sale.proceeds,
                cost_basis=sale.cost_basis,
                gain_loss=sale.gain_loss,
            )
            for sale in lot.sales
        ],
        adjustments=[
            LotAdjustment(
                id=str(uuid.uuid4()),
                lot_id=new_id,
                sequence=adjustment.sequence,
                adjustment_type=adjustment.adjustment_type,
                adjustment_date=adjustment.adjustment_date,
                ratio=adjustment.ratio,
                description=adjustment.description,
            )
            for adjustment in lot.adjustments
        ],
    )


def is_open(lot: Lot) -> bool:
    """True for OPEN and PARTIAL lots with shares left."""
    return lot.status != LotStatus.CLOSED and lot.remaining_quantity > 0


def remaining_cost_basis(lot: Lot) -> Decimal:
    """Cost basis allocated to the unsold shares of a lot."""
    if lot.original_quantity <= 0:
        return Decimal("0")
    return lot.cost_basis * lot.remaining_quantity / lot.original_quantity


def sort_lots_by_method(lots: Iterable[Lot], method: AccountingMethod) -> list[Lot]:
    """
    Open lots in consumption order.

    FIFO sorts by acquisition date ascending, LIFO descending. AVERAGE_COST
    and SPECIFIC_IDENTIFICATION keep the caller's order.
    """
    candidates = [lot for lot in lots if is_open(lot)]
    if method == AccountingMethod.FIFO:
        return sorted(candidates, key=lambda lot: (lot.acquisition_date, lot.id))
    if method == AccountingMethod.LIFO:
        return sorted(candidates, key=lambda lot: (lot.acquisition_date, lot.id), reverse=True)
    return candidates


def _consume(
    lot: Lot,
    quantity: Decimal,
    sale_date: Optional[date],
    sale_price: Decimal,
    transaction_id: Optional[str],
) -> LotSale:
    """Take ``quantity`` shares from a lot and log the sale on it."""
    if lot.remaining_quantity - quantity < MIN_LOT_QUANTITY:
        # Absorb sub-precision residue so the lot closes cleanly
        quantity = lot.remaining_quantity

    if lot.original_quantity > 0:
        cost_basis = lot.cost_basis / lot.original_quantity * quantity
    else:
        cost_basis = Decimal("0")
    proceeds = quantity * sale_price

    sale = LotSale(
        id=str(uuid.uuid4()),
        lot_id=lot.id,
        sequence=len(lot.sales),
        transaction_id=transaction_id,
        sale_date=sale_date,
        quantity=quantity,
        price=sale_price,
        proceeds=proceeds,
        cost_basis=cost_basis,
        gain_loss=proceeds - cost_basis,
    )
    lot.sales.append(sale)
    lot.remaining_quantity -= quantity
    update_lot_status(lot)
    return sale


def _pro_rata_shares(lots: Sequence[Lot], quantity: Decimal) -> list[Decimal]:
    """Split ``quantity`` across lots in proportion to their remaining shares."""
    total_remaining = sum((lot.remaining_quantity for lot in lots), Decimal("0"))
    shares: list[Decimal] = []
    allocated = Decimal("0")
    for i, lot in enumerate(lots):
        if i == len(lots) - 1:
            # Last lot takes the rounding remainder
            share = quantity - allocated
        else:
            share = (quantity * lot.remaining_quantity / total_remaining).quantize(
                _SHARE_QUANTUM, rounding=ROUND_DOWN
            )
        share = min(share, lot.remaining_quantity)
        shares.append(share)
        allocated += share
    return shares


def apply_sale_to_lots(
    lots: Sequence[Lot],
    quantity_to_sell: Decimal,
    method: AccountingMethod,
    sale_date: Optional[date],
    sale_price: Decimal,
    lot_ids: Optional[Sequence[str]] = None,
    transaction_id: Optional[str] = None,
) -> SaleResult:
    """
    Consume lots for a sale under an accounting method.

    FIFO and LIFO take min(remaining, still-to-sell) from each lot in order.
    AVERAGE_COST spreads the sale across every open lot in proportion to
    its remaining shares, so the blended cost equals the weighted average
    cost of the pool. SPECIFIC_IDENTIFICATION consumes ``lot_ids`` (or
    ``lots`` when no ids are given) in the order supplied.

    A sale larger than the available shares is truncated; the shortfall is
    reported in ``remaining_to_sell``.

    Args:
        lots: Lots of one security
        quantity_to_sell: Shares sold (positive)
        method: Accounting method
        sale_date: Date of the sale
        sale_price: Price per share
        lot_ids: Explicit lot selection for SPECIFIC_IDENTIFICATION
        transaction_id: Source sell transaction, recorded on each sale entry

    Returns:
        SaleResult with per-sale totals

    Raises:
        InvalidQuantityError: If quantity_to_sell is not positive
        LotNotFoundError: If a requested lot id is not among ``lots``
    """
    if quantity_to_sell <= 0:
        raise InvalidQuantityError(quantity_to_sell, "sale quantity must be positive")

    if method == AccountingMethod.SPECIFIC_IDENTIFICATION and lot_ids is not None:
        by_id = {lot.id: lot for lot in lots}
        selected = []
        for lot_id in lot_ids:
            if lot_id not in by_id:
                raise LotNotFoundError(lot_id)
            selected.append(by_id[lot_id])
        ordered = sort_lots_by_method(selected, method)
    else:
        ordered = sort_lots_by_method(lots, method)

    result = SaleResult()
    to_sell = quantity_to_sell

    if method == AccountingMethod.AVERAGE_COST and ordered:
        available = sum((lot.remaining_quantity for lot in ordered), Decimal("0"))
        plan = zip(ordered, _pro_rata_shares(ordered, min(to_sell, available)))
    else:
        plan = ((lot, None) for lot in ordered)  # type: ignore[misc]

    for lot, planned in plan:
        if to_sell <= 0:
            break
        take = planned if planned is not None else min(lot.remaining_quantity, to_sell)
        if take <= 0:
            continue

        sale = _consume(lot, take, sale_date, sale_price, transaction_id)
        result.affected_lots.append(lot)
        result.total_quantity_sold += sale.quantity
        result.total_proceeds += sale.proceeds
        result.total_cost_basis += sale.cost_basis
        to_sell -= sale.quantity

    result.gain_loss = result.total_proceeds - result.total_cost_basis
    result.remaining_to_sell = max(to_sell, Decimal("0"))

    if result.remaining_to_sell > 0:
        logger.warning(
            f"Sale of {quantity_to_sell} on {sale_date} exceeds available lots; "
            f"{result.remaining_to_sell} shares unmatched"
        )
    else:
        logger.debug(
            f"Sold {result.total_quantity_sold} shares across {len(result.affected_lots)} lots "
            f"({method.value})"
        )
    return result


def describe_split(ratio: Decimal) -> str:
    """Human readable split label: "2:1 split" or "1:2 reverse split"."""
    if ratio >= 1:
        return f"{format_quantity(ratio)}:1 split"
    inverse = Decimal("1") / ratio
    if abs(inverse - inverse.to_integral_value()) < Decimal("0.01"):
        inverse = inverse.to_integral_value()
    return f"1:{format_quantity(inverse)} reverse split"


def has_adjustment_on(lot: Lot, split_date: Optional[date]) -> bool:
    """True when a split dated ``split_date`` was already applied to the lot."""
    return any(adjustment.adjustment_date == split_date for adjustment in lot.adjustments)


def apply_split_to_lots(
    lots: Iterable[Lot], ratio: Decimal, split_date: Optional[date]
) -> list[Lot]:
    """
    Apply a split (ratio > 1) or reverse split (ratio < 1) to lots.

    Share counts are multiplied by ``ratio`` and the per-share price divided
    by it; total cost basis is unchanged. Logged sales are restated in
    post-split shares (proceeds and cost unchanged) so the lot invariant
    keeps holding.

    Raises:
        InvalidQuantityError: If ratio is not positive
    """
    if ratio <= 0:
        raise InvalidQuantityError(ratio, "split ratio must be positive")

    adjustment_type = AdjustmentType.SPLIT if ratio >= 1 else AdjustmentType.REVERSE_SPLIT
    description = describe_split(ratio)
    adjusted = []

    for lot in lots:
        lot.original_quantity *= ratio
        lot.remaining_quantity *= ratio
        lot.price_per_share /= ratio
        for sale in lot.sales:
            sale.quantity *= ratio
            sale.price /= ratio

        lot.adjustments.append(
            LotAdjustment(
                id=str(uuid.uuid4()),
                lot_id=lot.id,
                sequence=len(lot.adjustments),
                adjustment_type=adjustment_type,
                adjustment_date=split_date,
                ratio=ratio,
                description=description,
            )
        )
        adjusted.append(lot)

    logger.info(f"Applied {description} on {split_date} to {len(adjusted)} lots")
    return adjusted


def calculate_weighted_average_cost(lots: Iterable[Lot]) -> Decimal:
    """sum(cost_basis) / sum(original_quantity); 0 for an empty set."""
    total_cost = Decimal("0")
    total_quantity = Decimal("0")
    for lot in lots:
        total_cost += lot.cost_basis
        total_quantity += lot.original_quantity
    if total_quantity == 0:
        return Decimal("0")
    return total_cost / total_quantity


def calculate_unrealized_gain_loss(lots: Iterable[Lot], current_price: Decimal) -> Decimal:
    """Market value of unsold shares minus their allocated cost basis."""
    return sum(
        (lot.remaining_quantity * current_price - remaining_cost_basis(lot) for lot in lots),
        Decimal("0"),
    )


def calculate_realized_gain_loss(lots: Iterable[Lot]) -> Decimal:
    """Sum of gain/loss over every sale logged on the lots."""
    return sum((sale.gain_loss for lot in lots for sale in lot.sales), Decimal("0"))


def get_earliest_acquisition_date(lots: Iterable[Lot]) -> Optional[date]:
    """Earliest acquisition date among lots, or None."""
    return min((lot.acquisition_date for lot in lots), default=None)


def group_lots_by_acquisition_year(lots: Iterable[Lot]) -> dict[int, list[Lot]]:
    """Lots keyed by acquisition year, years ascending."""
    grouped: dict[int, list[Lot]] = defaultdict(list)
    for lot in lots:
        grouped[lot.acquisition_date.year].append(lot)
    return dict(sorted(grouped.items()))
