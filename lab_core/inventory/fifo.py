# lab_core/inventory/fifo.py
"""
FIFO lot allocation.

Pure planning step: given candidate lots and a quantity, decide how much to
draw from each lot, oldest arrival first. Nothing is written here; the
inventory services apply the plan under row locks.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from lab_core.exceptions import InsufficientStockError


AVAILABLE = "AVAILABLE"
ZERO = Decimal("0")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _arrival_key(lot):
    arrival = getattr(lot, "arrival_date", None)
    if isinstance(arrival, datetime):
        arrival = arrival.timestamp()
    elif isinstance(arrival, date):
        arrival = datetime(arrival.year, arrival.month, arrival.day).timestamp()
    # Lots without an arrival date sort last
    return (arrival is None, arrival or 0, getattr(lot, "pk", None) or getattr(lot, "id", 0) or 0)


def is_lot_eligible(lot, today: date) -> bool:
    """
    AVAILABLE, stock left, and not expired (expiry strictly after today).
    """
    if getattr(lot, "status", None) != AVAILABLE:
        return False
    if _to_decimal(getattr(lot, "quantity_available", 0) or 0) <= ZERO:
        return False
    expiry = getattr(lot, "expiry_date", None)
    if expiry is not None and expiry <= today:
        return False
    return True


def fifo_order(lots: Iterable, today: date) -> List:
    """
    Eligible lots sorted oldest arrival first (ties broken by id).
    """
    return sorted((lot for lot in lots if is_lot_eligible(lot, today)), key=_arrival_key)


def plan_consumption(
    lots: Iterable,
    quantity,
    *,
    today: date,
    material_label: Optional[str] = None,
) -> List[Tuple[object, Decimal]]:
    """
    Greedy oldest-lot-first allocation.

    Returns [(lot, quantity_from_lot), ...] summing to `quantity`.
    Raises ValueError for non-positive quantities and InsufficientStockError
    when eligible stock cannot cover the request; in both cases nothing is
    allocated.
    """
    needed = _to_decimal(quantity)
    if needed <= ZERO:
        raise ValueError("Quantity must be greater than zero.")

    ordered = fifo_order(lots, today)
    available = sum((_to_decimal(lot.quantity_available) for lot in ordered), ZERO)

    if available < needed:
        label = material_label
        if label is None and ordered:
            label = str(getattr(ordered[0], "material", "material"))
        raise InsufficientStockError(label or "material", needed, available)

    plan: List[Tuple[object, Decimal]] = []
    for lot in ordered:
        if needed <= ZERO:
            break

        take = min(_to_decimal(lot.quantity_available), needed)
        plan.append((lot, take))
        needed -= take

    return plan
