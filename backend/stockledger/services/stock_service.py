# Overview: Service-layer operations for stock records; encapsulates business logic and database work.

"""
Stock Record Store.

Invariants (authoritative):
- Exactly one StockRecord per (product_id, branch_id); absence == zero stock
- 0 <= reserved_quantity <= quantity
- quantity is only changed by single UPDATE statements (increment, CAS, or
  the reservation primitives), never by assigning to the ORM attribute
- Every quantity change appends a StockMovement in the same transaction
- After a mutation commits, stock-changed is emitted for each touched
  (product_id, branch_id)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_, update

from ..errors import ConflictError, ForbiddenError, InvalidOperationError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Branch, Product, StockRecord
from ..models.stock import (
    MOVEMENT_ADJUSTMENT_ADD,
    MOVEMENT_ADJUSTMENT_REMOVE,
    MOVEMENT_INITIAL,
    MOVEMENT_RESTOCK,
)
from ..signals import emit_stock_changed
from ..time_utils import utcnow
from ..validation import MAX_PRICE_CENTS, coerce_int, require_positive_quantity
from . import cache_service, movement_service
from .concurrency import insert_ignoring_conflicts, lock_for_update, run_with_retry
from .directory_service import Actor, ensure_branch_access, resolve_branch, resolve_product


ADJUST_REASON_MIN_LENGTH = 5
ADJUST_REASON_MAX_LENGTH = 500


# =============================================================================
# Lookups
# =============================================================================


def get_or_none(product_id: int, branch_id: int) -> StockRecord | None:
    return (
        db.session.query(StockRecord)
        .filter_by(product_id=product_id, branch_id=branch_id)
        .first()
    )


def get_record(stock_id: int) -> StockRecord:
    record = db.session.get(StockRecord, stock_id)
    if record is None:
        raise NotFoundError(f"Stock record {stock_id} not found")
    return record


def require_record(product_id: int, branch_id: int, *, message: str | None = None) -> StockRecord:
    record = get_or_none(product_id, branch_id)
    if record is None:
        raise NotFoundError(message or f"No stock record for product {product_id} at branch {branch_id}")
    return record


def commit_stock_changes(touched) -> None:
    """Commit the unit of work, then notify cache listeners."""
    db.session.commit()
    if touched:
        emit_stock_changed(current_app._get_current_object(), touched)


# =============================================================================
# Create-or-increment
# =============================================================================


def _check_price(field: str, value: int | None) -> int | None:
    if value is None:
        return None
    value = coerce_int(field, value)
    if value < 0 or value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} must be between 0 and {MAX_PRICE_CENTS}", field=field)
    return value


def _check_non_negative(field: str, value: int | None) -> int | None:
    if value is None:
        return None
    value = coerce_int(field, value)
    if value < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    return value


def increment_or_create(
    *,
    product_id: int,
    branch_id: int,
    quantity: int,
    create_values: dict,
    update_values: dict | None = None,
) -> tuple[StockRecord, bool]:
    """
    Add `quantity` to the (product, branch) record, creating it if missing.

    create_values supplies prices/reorder settings for a new row;
    update_values overwrites columns on an existing row. Safe against a
    concurrent creator: the insert ignores the unique conflict and the
    increment runs instead. Returns (record, created).
    """
    created = False
    record = get_or_none(product_id, branch_id)

    if record is None:
        values = {
            "product_id": product_id,
            "branch_id": branch_id,
            "quantity": quantity,
            "reserved_quantity": 0,
            **create_values,
        }
        result = db.session.execute(
            insert_ignoring_conflicts(StockRecord, values, index_elements=["product_id", "branch_id"])
        )
        created = result.rowcount == 1

    if not created:
        stmt = (
            update(StockRecord)
            .where(StockRecord.product_id == product_id, StockRecord.branch_id == branch_id)
            .values(quantity=StockRecord.quantity + quantity, **(update_values or {}))
            .execution_options(synchronize_session=False)
        )
        db.session.execute(stmt)

    record = get_or_none(product_id, branch_id)
    db.session.refresh(record)
    return record, created


# =============================================================================
# Restock
# =============================================================================


def upsert_restock(
    *,
    product_id: int,
    branch_id: int,
    quantity: int,
    actor: Actor,
    cost_price_cents: int | None = None,
    selling_price_cents: int | None = None,
    reorder_point: int | None = None,
    reorder_quantity: int | None = None,
    location: str | None = None,
    notes: str | None = None,
) -> StockRecord:
    """
    Receive stock for a product at a branch.

    Existing record: quantity += quantity and any provided pricing/reorder
    fields are overwritten. Missing record: created with the given quantity;
    prices default to the product's catalog defaults.

    Raises:
        ValidationError: quantity < 1 or bad price/reorder values
        NotFoundError: product or branch does not resolve
        ForbiddenError: non-admin restocking another branch
    """
    quantity = require_positive_quantity(quantity)
    cost_price_cents = _check_price("cost_price_cents", cost_price_cents)
    selling_price_cents = _check_price("selling_price_cents", selling_price_cents)
    reorder_point = _check_non_negative("reorder_point", reorder_point)
    reorder_quantity = _check_non_negative("reorder_quantity", reorder_quantity)
    if location is not None and len(location) > 100:
        raise ValidationError("location exceeds max length 100", field="location")

    def _op() -> StockRecord:
        ensure_branch_access(actor, branch_id)
        product = resolve_product(product_id)
        resolve_branch(branch_id)

        now = utcnow()
        provided = {
            "cost_price_cents": cost_price_cents,
            "selling_price_cents": selling_price_cents,
            "reorder_point": reorder_point,
            "reorder_quantity": reorder_quantity,
            "location": location,
        }
        update_values = {k: v for k, v in provided.items() if v is not None}
        update_values.update(last_restocked_at=now, last_restocked_by_user_id=actor.user_id)

        create_values = {
            "cost_price_cents": product.default_cost_price_cents if cost_price_cents is None else cost_price_cents,
            "selling_price_cents": (
                product.default_selling_price_cents if selling_price_cents is None else selling_price_cents
            ),
            "reorder_point": current_app.config["DEFAULT_REORDER_POINT"] if reorder_point is None else reorder_point,
            "reorder_quantity": (
                current_app.config["DEFAULT_REORDER_QUANTITY"] if reorder_quantity is None else reorder_quantity
            ),
            "location": location,
            "last_restocked_at": now,
            "last_restocked_by_user_id": actor.user_id,
        }

        record, created = increment_or_create(
            product_id=product_id,
            branch_id=branch_id,
            quantity=quantity,
            create_values=create_values,
            update_values=update_values,
        )
        movement_service.record_movement(
            record=record,
            movement_type=MOVEMENT_INITIAL if created else MOVEMENT_RESTOCK,
            quantity=quantity,
            quantity_before=record.quantity - quantity,
            quantity_after=record.quantity,
            performed_by_user_id=actor.user_id,
            reason="Initial stock" if created else "Restock",
            notes=notes,
        )
        commit_stock_changes({(product_id, branch_id)})
        return record

    return run_with_retry(_op)


def restock_by_id(*, stock_id: int, quantity: int, actor: Actor, notes: str | None = None) -> StockRecord:
    """Add quantity to an existing record without touching its prices."""
    quantity = require_positive_quantity(quantity)

    def _op() -> StockRecord:
        record = get_record(stock_id)
        ensure_branch_access(actor, record.branch_id)

        stmt = (
            update(StockRecord)
            .where(StockRecord.id == record.id)
            .values(
                quantity=StockRecord.quantity + quantity,
                last_restocked_at=utcnow(),
                last_restocked_by_user_id=actor.user_id,
            )
            .execution_options(synchronize_session=False)
        )
        db.session.execute(stmt)
        db.session.refresh(record)

        movement_service.record_movement(
            record=record,
            movement_type=MOVEMENT_RESTOCK,
            quantity=quantity,
            quantity_before=record.quantity - quantity,
            quantity_after=record.quantity,
            performed_by_user_id=actor.user_id,
            reason="Restock",
            notes=notes,
        )
        commit_stock_changes({(record.product_id, record.branch_id)})
        return record

    return run_with_retry(_op)


# =============================================================================
# Manual adjustment
# =============================================================================


def _validate_adjustment(signed_delta, reason) -> tuple[int, str]:
    errors = []
    delta = None
    try:
        delta = coerce_int("adjustment", signed_delta) if signed_delta is not None else None
    except ValidationError as e:
        errors.extend(e.errors)
    if signed_delta is None:
        errors.append({"field": "adjustment", "message": "adjustment is required"})
    elif delta == 0:
        errors.append({"field": "adjustment", "message": "adjustment must be non-zero"})

    cleaned_reason = reason.strip() if isinstance(reason, str) else ""
    if not cleaned_reason:
        errors.append({"field": "reason", "message": "reason is required"})
    elif not (ADJUST_REASON_MIN_LENGTH <= len(cleaned_reason) <= ADJUST_REASON_MAX_LENGTH):
        errors.append({
            "field": "reason",
            "message": f"reason must be between {ADJUST_REASON_MIN_LENGTH}-{ADJUST_REASON_MAX_LENGTH} characters",
        })

    if errors:
        message = errors[0]["message"] if len(errors) == 1 else "Validation failed"
        raise ValidationError(message, errors=errors)
    return delta, cleaned_reason


def _apply_adjustment(record: StockRecord, delta: int, reason: str, actor: Actor, notes: str | None) -> StockRecord:
    before = record.quantity
    after = max(0, before + delta)

    if after < record.reserved_quantity:
        raise InvalidOperationError(
            f"Adjustment would leave {after} on hand but {record.reserved_quantity} are reserved"
        )
    if after == before:
        return record

    # Compare-and-swap on the value read under lock
    stmt = (
        update(StockRecord)
        .where(
            StockRecord.id == record.id,
            StockRecord.quantity == before,
            StockRecord.reserved_quantity <= after,
        )
        .values(quantity=after)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount != 1:
        raise ConflictError("Stock record changed concurrently, please retry")
    db.session.refresh(record)

    movement_service.record_movement(
        record=record,
        movement_type=MOVEMENT_ADJUSTMENT_ADD if after > before else MOVEMENT_ADJUSTMENT_REMOVE,
        quantity=after - before,
        quantity_before=before,
        quantity_after=after,
        performed_by_user_id=actor.user_id,
        reason=reason,
        notes=notes,
    )
    current_app.logger.info(
        "Stock %s adjusted %s -> %s by user %s: %s",
        record.id, before, after, actor.user_id, reason,
    )
    return record


def adjust(
    *,
    product_id: int,
    branch_id: int,
    signed_delta: int,
    reason: str | None,
    actor: Actor,
    notes: str | None = None,
) -> StockRecord:
    """
    Admin-only manual correction.

    The result is clamped at 0 (a larger negative delta empties the record
    rather than failing). reserved_quantity is untouched, so a correction
    that would leave less on hand than is reserved is rejected.

    Raises:
        ForbiddenError: caller is not an admin
        ValidationError: missing/short reason or zero delta
        NotFoundError: no record for (product, branch)
        InvalidOperationError: clamped result below reserved_quantity
    """
    if not actor.is_admin:
        raise ForbiddenError("Only administrators can adjust stock")
    delta, reason = _validate_adjustment(signed_delta, reason)

    def _op() -> StockRecord:
        record = lock_for_update(
            db.session.query(StockRecord).filter_by(product_id=product_id, branch_id=branch_id)
        ).first()
        if record is None:
            raise NotFoundError(f"No stock record for product {product_id} at branch {branch_id}")
        record = _apply_adjustment(record, delta, reason, actor, notes)
        commit_stock_changes({(product_id, branch_id)})
        return record

    return run_with_retry(_op)


def adjust_by_id(
    *,
    stock_id: int,
    signed_delta: int,
    reason: str | None,
    actor: Actor,
    notes: str | None = None,
) -> StockRecord:
    if not actor.is_admin:
        raise ForbiddenError("Only administrators can adjust stock")
    delta, reason = _validate_adjustment(signed_delta, reason)

    def _op() -> StockRecord:
        record = lock_for_update(db.session.query(StockRecord).filter_by(id=stock_id)).first()
        if record is None:
            raise NotFoundError(f"Stock record {stock_id} not found")
        record = _apply_adjustment(record, delta, reason, actor, notes)
        commit_stock_changes({(record.product_id, record.branch_id)})
        return record

    return run_with_retry(_op)


# =============================================================================
# Queries
# =============================================================================


def list_stock(
    *,
    branch_id: int | None = None,
    product_id: int | None = None,
    low_stock: bool = False,
    out_of_stock: bool = False,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[StockRecord], int]:
    """Filtered stock records (branch filter already scoped by the caller)."""
    query = db.session.query(StockRecord).join(Product, StockRecord.product_id == Product.id)

    if branch_id is not None:
        query = query.filter(StockRecord.branch_id == branch_id)
    if product_id is not None:
        query = query.filter(StockRecord.product_id == product_id)
    if low_stock:
        query = query.filter(StockRecord.quantity <= StockRecord.reorder_point)
    if out_of_stock:
        query = query.filter(StockRecord.quantity == 0)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))

    total = query.count()
    rows = (
        query.order_by(StockRecord.branch_id.asc(), Product.name.asc(), StockRecord.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_low_stock(*, branch_id: int | None = None) -> list[StockRecord]:
    """Records at or below their reorder point, emptiest first."""
    query = db.session.query(StockRecord).filter(StockRecord.quantity <= StockRecord.reorder_point)
    if branch_id is not None:
        query = query.filter(StockRecord.branch_id == branch_id)
    return query.order_by(StockRecord.quantity.asc(), StockRecord.id.asc()).all()


def product_summary(product_id: int) -> dict:
    """
    Cross-branch view of one product: totals plus a per-branch breakdown,
    each branch with its own price.
    """
    product = resolve_product(product_id, require_active=False)
    records = (
        db.session.query(StockRecord)
        .join(Branch, StockRecord.branch_id == Branch.id)
        .filter(StockRecord.product_id == product_id)
        .order_by(Branch.name.asc())
        .all()
    )

    return {
        "product": product.to_dict(),
        "total_quantity": sum(r.quantity for r in records),
        "total_reserved": sum(r.reserved_quantity for r in records),
        "total_available": sum(r.available_quantity for r in records),
        "branches": [
            {
                "stock_id": r.id,
                "branch_id": r.branch_id,
                "branch_name": r.branch.name,
                "quantity": r.quantity,
                "reserved_quantity": r.reserved_quantity,
                "available_quantity": r.available_quantity,
                "cost_price_cents": r.cost_price_cents,
                "selling_price_cents": r.selling_price_cents,
                "stock_status": r.stock_status,
            }
            for r in records
        ],
    }


def cached_product_summary(product_id: int) -> dict:
    cache = cache_service.get_cache()
    summary = cache.get(product_id)
    if summary is None:
        summary = product_summary(product_id)
        cache.set(product_id, summary)
    return summary
