# Overview: Service-layer operations for inter-branch stock transfers; encapsulates business logic and database work.

"""
Stock transfer workflow.

LIFECYCLE:
1. create: pending, quantity reserved at the source record
2. pending -> in-transit: approved and shipped (reservation kept)
3. in-transit -> completed: destination incremented (or created with the
   source's pricing), then source deducted, in one transaction
4. pending | in-transit -> cancelled: source reservation released

completed and cancelled are terminal.
"""

from __future__ import annotations

from flask import current_app

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import StockTransfer
from ..models.stock import (
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    REFERENCE_STOCK_TRANSFER,
    TRANSFER_STATUS_CANCELLED,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUSES,
)
from ..time_utils import utcnow
from ..validation import coerce_int, require_positive_quantity
from . import movement_service, reservation_service, stock_service
from .concurrency import claim_status, lock_for_update, run_with_retry
from .directory_service import Actor, resolve_branch, resolve_product
from .document_service import DOC_TRANSFER, allocate, flush_new_document


TRANSFER_NOTES_MAX_LENGTH = 500

ALLOWED_TRANSITIONS = {
    TRANSFER_STATUS_PENDING: (TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_CANCELLED),
    TRANSFER_STATUS_IN_TRANSIT: (TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED),
    TRANSFER_STATUS_COMPLETED: (),
    TRANSFER_STATUS_CANCELLED: (),
}


def create_transfer(
    *,
    product_id: int,
    from_branch_id: int,
    to_branch_id: int,
    quantity: int,
    actor: Actor,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a pending transfer and reserve its quantity at the source.

    Args:
        product_id: Product being moved
        from_branch_id: Source branch (must hold a stock record)
        to_branch_id: Destination branch (must differ from source)
        quantity: Units to move (>= 1)
        actor: Initiating user
        notes: Optional free text (<= 500 chars)

    Returns:
        The persisted StockTransfer

    Raises:
        ValidationError: same branch, bad quantity, notes too long
        NotFoundError: product/branch/source record missing
        InsufficientStockError: source cannot cover the reservation
    """
    from_branch_id = coerce_int("from_branch_id", from_branch_id)
    to_branch_id = coerce_int("to_branch_id", to_branch_id)
    if from_branch_id == to_branch_id:
        raise ValidationError("Source and destination branches must be different", field="to_branch_id")
    quantity = require_positive_quantity(quantity)
    if notes is not None and len(notes) > TRANSFER_NOTES_MAX_LENGTH:
        raise ValidationError(f"notes exceeds max length {TRANSFER_NOTES_MAX_LENGTH}", field="notes")

    def _op() -> StockTransfer:
        product = resolve_product(product_id)
        resolve_branch(from_branch_id)
        resolve_branch(to_branch_id)

        source = stock_service.require_record(
            product.id,
            from_branch_id,
            message=f"Product {product.name} is not stocked at the source branch",
        )
        reservation_service.reserve(source, quantity)

        transfer = StockTransfer(
            transfer_number=allocate(DOC_TRANSFER),
            product_id=product.id,
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            quantity=quantity,
            status=TRANSFER_STATUS_PENDING,
            initiated_by_user_id=actor.user_id,
            notes=notes,
        )
        flush_new_document(transfer)

        stock_service.commit_stock_changes({(product.id, from_branch_id)})
        current_app.logger.info(
            "Transfer %s created: %s x%s branch %s -> %s",
            transfer.transfer_number, product.sku, quantity, from_branch_id, to_branch_id,
        )
        return transfer

    return run_with_retry(_op)


def _complete(transfer: StockTransfer, actor: Actor) -> set:
    source = stock_service.require_record(transfer.product_id, transfer.from_branch_id)

    # Destination first: create-or-increment cannot fail on quantity, so a
    # failing source deduct is the only way out and it rolls both back.
    destination, _created = stock_service.increment_or_create(
        product_id=transfer.product_id,
        branch_id=transfer.to_branch_id,
        quantity=transfer.quantity,
        create_values={
            "cost_price_cents": source.cost_price_cents,
            "selling_price_cents": source.selling_price_cents,
            "reorder_point": source.reorder_point,
            "reorder_quantity": source.reorder_quantity,
        },
    )

    reservation_service.deduct(source, transfer.quantity)

    movement_service.record_movement(
        record=destination,
        movement_type=MOVEMENT_TRANSFER_IN,
        quantity=transfer.quantity,
        quantity_before=destination.quantity - transfer.quantity,
        quantity_after=destination.quantity,
        performed_by_user_id=actor.user_id,
        reason=f"Transfer {transfer.transfer_number} received",
        reference_type=REFERENCE_STOCK_TRANSFER,
        reference_id=transfer.id,
    )
    movement_service.record_movement(
        record=source,
        movement_type=MOVEMENT_TRANSFER_OUT,
        quantity=transfer.quantity,
        quantity_before=source.quantity + transfer.quantity,
        quantity_after=source.quantity,
        performed_by_user_id=actor.user_id,
        reason=f"Transfer {transfer.transfer_number} shipped",
        reference_type=REFERENCE_STOCK_TRANSFER,
        reference_id=transfer.id,
    )

    transfer.received_at = utcnow()
    transfer.received_by_user_id = actor.user_id
    return {
        (transfer.product_id, transfer.from_branch_id),
        (transfer.product_id, transfer.to_branch_id),
    }


def _cancel(transfer: StockTransfer, actor: Actor) -> set:
    source = stock_service.get_or_none(transfer.product_id, transfer.from_branch_id)
    if source is not None:
        reservation_service.release(source, transfer.quantity)
    transfer.cancelled_at = utcnow()
    transfer.cancelled_by_user_id = actor.user_id
    return {(transfer.product_id, transfer.from_branch_id)}


def advance_transfer(*, transfer_id: int, target_status: str, actor: Actor) -> StockTransfer:
    """
    Move a transfer along its lifecycle.

    Raises:
        ValidationError: unknown target status
        NotFoundError: transfer does not exist
        InvalidTransitionError: transition not allowed from current status
    """
    if target_status not in TRANSFER_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(TRANSFER_STATUSES)}",
            field="status",
        )

    def _op() -> StockTransfer:
        transfer = lock_for_update(
            db.session.query(StockTransfer).filter_by(id=transfer_id)
        ).first()
        if transfer is None:
            raise NotFoundError(f"Transfer {transfer_id} not found")

        if target_status not in ALLOWED_TRANSITIONS[transfer.status]:
            raise InvalidTransitionError(transfer.status, target_status, entity="transfer status")

        previous = transfer.status
        claim_status(StockTransfer, transfer.id, current=previous, target=target_status)

        touched = set()
        if target_status == TRANSFER_STATUS_IN_TRANSIT:
            transfer.shipped_at = utcnow()
            transfer.approved_by_user_id = actor.user_id
        elif target_status == TRANSFER_STATUS_COMPLETED:
            touched = _complete(transfer, actor)
        elif target_status == TRANSFER_STATUS_CANCELLED:
            touched = _cancel(transfer, actor)

        stock_service.commit_stock_changes(touched)
        current_app.logger.info(
            "Transfer %s: %s -> %s by user %s",
            transfer.transfer_number, previous, target_status, actor.user_id,
        )
        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int, actor: Actor) -> StockTransfer:
    transfer = db.session.get(StockTransfer, transfer_id)
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    if not actor.is_admin and actor.branch_id not in (transfer.from_branch_id, transfer.to_branch_id):
        # Hide transfers of other branches entirely
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    *,
    actor: Actor,
    status: str | None = None,
    branch_id: int | None = None,
    product_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[StockTransfer], int]:
    """Transfers newest first; non-admins only see transfers touching their branch."""
    query = db.session.query(StockTransfer)

    if not actor.is_admin:
        if actor.branch_id is None:
            return [], 0
        branch_id = actor.branch_id
    if branch_id is not None:
        query = query.filter(
            (StockTransfer.from_branch_id == branch_id) | (StockTransfer.to_branch_id == branch_id)
        )
    if status:
        query = query.filter(StockTransfer.status == status)
    if product_id is not None:
        query = query.filter(StockTransfer.product_id == product_id)

    total = query.count()
    rows = (
        query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
