# Overview: Reservation primitives (reserve / release / deduct) over a single stock record.

"""
Reservation Engine.

Invariants (authoritative):
- 0 <= reserved_quantity <= quantity after every primitive
- reserve checks availability and increments the reservation in ONE
  conditional UPDATE evaluated by the database; there is no
  read-then-write window in application code
- release is clamped at zero, so over-release is harmless
- deduct removes goods and clears the matching reservation in one statement

The primitives do not commit. Callers compose them inside a unit of work
(run_with_retry) and commit once, so a failure in a later step undoes
earlier reservations.
"""

from __future__ import annotations

from sqlalchemy import case, update

from ..errors import InsufficientStockError, InvalidOperationError
from ..extensions import db
from ..models import StockRecord
from ..validation import require_positive_quantity


def has_sufficient_stock(record: StockRecord, requested_qty: int) -> bool:
    """Pure check against the instance's current values."""
    return (record.quantity - record.reserved_quantity) >= requested_qty


def _product_name(record: StockRecord) -> str | None:
    return record.product.name if record.product else None


def _execute(stmt) -> int:
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount


def reserve(record: StockRecord, qty: int) -> StockRecord:
    """
    Hold `qty` units of available stock.

    Raises InsufficientStockError when quantity - reserved_quantity < qty at
    the moment the UPDATE runs.
    """
    qty = require_positive_quantity(qty)

    stmt = (
        update(StockRecord)
        .where(
            StockRecord.id == record.id,
            StockRecord.quantity - StockRecord.reserved_quantity >= qty,
        )
        .values(reserved_quantity=StockRecord.reserved_quantity + qty)
    )
    updated = _execute(stmt)
    db.session.refresh(record)

    if updated != 1:
        raise InsufficientStockError(
            product_id=record.product_id,
            product_name=_product_name(record),
            available=record.available_quantity,
            requested=qty,
        )
    return record


def release(record: StockRecord, qty: int) -> StockRecord:
    """Drop up to `qty` units of reservation; never goes below zero."""
    qty = require_positive_quantity(qty)

    stmt = (
        update(StockRecord)
        .where(StockRecord.id == record.id)
        .values(
            reserved_quantity=case(
                (StockRecord.reserved_quantity > qty, StockRecord.reserved_quantity - qty),
                else_=0,
            )
        )
    )
    _execute(stmt)
    db.session.refresh(record)
    return record


def deduct(record: StockRecord, qty: int, *, reserved: bool = True) -> StockRecord:
    """
    Permanently remove `qty` units.

    With reserved=True (orders, transfers) the same amount of reservation is
    cleared and the only failure is qty > quantity (InvalidOperationError).
    With reserved=False (service parts, never held) the units must still be
    available, other holds are left alone, and a shortfall raises
    InsufficientStockError.
    """
    qty = require_positive_quantity(qty)

    if reserved:
        stmt = (
            update(StockRecord)
            .where(StockRecord.id == record.id, StockRecord.quantity >= qty)
            .values(
                quantity=StockRecord.quantity - qty,
                reserved_quantity=case(
                    (StockRecord.reserved_quantity > qty, StockRecord.reserved_quantity - qty),
                    else_=0,
                ),
            )
        )
    else:
        stmt = (
            update(StockRecord)
            .where(
                StockRecord.id == record.id,
                StockRecord.quantity - StockRecord.reserved_quantity >= qty,
            )
            .values(quantity=StockRecord.quantity - qty)
        )
    updated = _execute(stmt)
    db.session.refresh(record)

    if updated != 1:
        if not reserved:
            raise InsufficientStockError(
                product_id=record.product_id,
                product_name=_product_name(record),
                available=record.available_quantity,
                requested=qty,
            )
        raise InvalidOperationError(
            f"Cannot deduct {qty} units of {_product_name(record) or record.product_id}: "
            f"only {record.quantity} on hand"
        )
    return record
