# Overview: Service-layer operations for the stock movement audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import StockMovement, StockRecord
from ..models.stock import MOVEMENT_TYPES
from ..errors import ValidationError
from .document_service import DOC_STOCK_MOVEMENT, allocate, flush_new_document


def record_movement(
    *,
    record: StockRecord,
    movement_type: str,
    quantity: int,
    quantity_before: int,
    quantity_after: int,
    performed_by_user_id: int,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Append one movement row for a committed-together quantity change.

    Append-only: movements are never updated or deleted.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}", field="movement_type")

    movement = StockMovement(
        movement_number=allocate(DOC_STOCK_MOVEMENT),
        stock_record_id=record.id,
        product_id=record.product_id,
        branch_id=record.branch_id,
        movement_type=movement_type,
        quantity=abs(quantity),
        quantity_before=quantity_before,
        quantity_after=quantity_after,
        reason=reason[:200] if reason else None,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by_user_id=performed_by_user_id,
        notes=notes,
    )
    flush_new_document(movement)
    return movement


def list_movements(
    *,
    movement_type: str | None = None,
    branch_id: int | None = None,
    product_id: int | None = None,
    stock_record_id: int | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[StockMovement], int]:
    """Movements newest first, with optional filters. Returns (rows, total)."""
    query = db.session.query(StockMovement)

    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if branch_id is not None:
        query = query.filter(StockMovement.branch_id == branch_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if stock_record_id is not None:
        query = query.filter(StockMovement.stock_record_id == stock_record_id)
    if date_from is not None:
        query = query.filter(StockMovement.created_at >= date_from)
    if date_to is not None:
        query = query.filter(StockMovement.created_at < date_to)

    total = query.count()
    rows = (
        query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
