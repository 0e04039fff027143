# Overview: Service-layer operations for sales orders; encapsulates business logic and database work.

"""
Sales order workflow.

LIFECYCLE:
    pending -> processing -> completed
    pending | processing -> cancelled

- create: every line is checked for availability first, then reserved
- completed: every line deducted; a sale Transaction is appended when paid
- cancelled: every line's reservation released
- payment edits are refused once the order is terminal

Unit prices come from the branch StockRecord (branch pricing), never the
catalog.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import (
    InsufficientStockError,
    InvalidOperationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import SalesOrder, SalesOrderItem
from ..models.ledger import TRANSACTION_TYPE_SALE
from ..models.sales import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    PAYMENT_STATUS_PAID,
)
from ..models.stock import MOVEMENT_SALE, REFERENCE_SALES_ORDER
from ..time_utils import to_utc_z, utcnow
from ..validation import MAX_TAX_RATE_BPS, coerce_int, require_positive_quantity
from . import ledger_service, movement_service, pricing, reservation_service, stock_service
from .concurrency import claim_status, lock_for_update, run_with_retry
from .directory_service import Actor, ensure_branch_access, resolve_branch, resolve_product
from .document_service import DOC_SALES_ORDER, allocate, flush_new_document


ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PENDING: (ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED),
    ORDER_STATUS_PROCESSING: (ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED),
    ORDER_STATUS_COMPLETED: (),
    ORDER_STATUS_CANCELLED: (),
}


@dataclass(frozen=True)
class CustomerInput:
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class LineInput:
    product_id: int
    quantity: int
    discount_cents: int = 0
    # Only honoured by service-order parts; sales lines always take the branch price
    unit_price_cents: int | None = None


def _apply_payment(order: SalesOrder) -> None:
    order.change_cents = pricing.change_cents(order.amount_paid_cents, order.total_cents)
    order.payment_status = pricing.payment_status_for(order.amount_paid_cents, order.total_cents)
    if order.payment_status != PAYMENT_STATUS_PAID:
        order.paid_at = None
    elif order.paid_at is None:
        order.paid_at = utcnow()


def _recompute_totals(order: SalesOrder) -> None:
    order.subtotal_cents = sum(item.line_total_cents for item in order.items)
    order.tax_cents = pricing.tax_cents(order.subtotal_cents, order.tax_rate_bps)
    if order.discount_cents > order.subtotal_cents + order.tax_cents:
        raise ValidationError("discount_cents cannot exceed subtotal plus tax", field="discount_cents")
    order.total_cents = order.subtotal_cents + order.tax_cents - order.discount_cents
    _apply_payment(order)


def _load_order(order_id: int, *, lock: bool = False) -> SalesOrder:
    query = db.session.query(SalesOrder).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Sales order {order_id} not found")
    return order


def _validate_lines(branch_id: int, lines: list[LineInput]) -> list[tuple]:
    """
    Resolve every line and pre-check availability before anything is reserved.

    Quantities of repeated products are summed for the check. Returns
    [(line, product, record), ...] in input order.
    """
    resolved = []
    requested: dict[int, int] = {}
    for line in lines:
        product = resolve_product(line.product_id)
        record = stock_service.require_record(
            product.id,
            branch_id,
            message=f"Product {product.name} is not available at this branch",
        )
        gross = line.quantity * record.selling_price_cents
        if line.discount_cents > gross:
            raise ValidationError(
                f"Discount for {product.name} cannot exceed the line amount",
                field="items.discount_cents",
            )
        requested[product.id] = requested.get(product.id, 0) + line.quantity
        resolved.append((line, product, record))

    for _line, product, record in resolved:
        wanted = requested[product.id]
        if not reservation_service.has_sufficient_stock(record, wanted):
            raise InsufficientStockError(
                product_id=product.id,
                product_name=product.name,
                available=record.available_quantity,
                requested=wanted,
            )
    return resolved


def create_order(
    *,
    branch_id: int,
    customer: CustomerInput,
    items: list[LineInput],
    payment_method: str,
    actor: Actor,
    tax_rate_bps: int = 0,
    discount_cents: int = 0,
    amount_paid_cents: int = 0,
    notes: str | None = None,
) -> SalesOrder:
    """
    Create a pending sales order and reserve stock for every line.

    All-or-nothing: availability is checked for every line first, and the
    reservations plus the order row are committed together; any failure
    rolls the whole unit back.

    Raises:
        ForbiddenError: non-admin creating for another branch
        ValidationError: bad input (no items, unknown payment method, ...)
        NotFoundError: branch/product missing or product not stocked here
        InsufficientStockError: a line cannot be covered
    """
    if not items:
        raise ValidationError("At least one item is required", field="items")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method")
    if not (0 <= tax_rate_bps <= MAX_TAX_RATE_BPS):
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}", field="tax_rate_bps")
    if discount_cents < 0 or amount_paid_cents < 0:
        raise ValidationError("Amounts cannot be negative")
    if not customer.name or not customer.name.strip():
        raise ValidationError("Customer name is required", field="customer.name")
    for index, line in enumerate(items):
        require_positive_quantity(line.quantity, field=f"items[{index}].quantity")
        if coerce_int(f"items[{index}].discount_cents", line.discount_cents) < 0:
            raise ValidationError("Discount cannot be negative", field=f"items[{index}].discount_cents")

    def _op() -> SalesOrder:
        ensure_branch_access(actor, branch_id)
        resolve_branch(branch_id)

        resolved = _validate_lines(branch_id, items)

        order = SalesOrder(
            order_number=allocate(DOC_SALES_ORDER),
            branch_id=branch_id,
            customer_name=customer.name.strip(),
            customer_phone=customer.phone,
            customer_email=customer.email,
            customer_address=customer.address,
            tax_rate_bps=tax_rate_bps,
            discount_cents=discount_cents,
            payment_method=payment_method,
            amount_paid_cents=amount_paid_cents,
            status=ORDER_STATUS_PENDING,
            processed_by_user_id=actor.user_id,
            notes=notes,
        )

        touched = set()
        for line, product, record in resolved:
            reservation_service.reserve(record, line.quantity)
            touched.add((product.id, branch_id))
            order.items.append(
                SalesOrderItem(
                    product_id=product.id,
                    sku=product.sku,
                    name=product.name,
                    quantity=line.quantity,
                    unit_price_cents=record.selling_price_cents,
                    discount_cents=line.discount_cents,
                    line_total_cents=pricing.line_total_cents(
                        line.quantity, record.selling_price_cents, line.discount_cents
                    ),
                )
            )

        _recompute_totals(order)
        flush_new_document(order)

        stock_service.commit_stock_changes(touched)
        current_app.logger.info(
            "Sales order %s created at branch %s: total=%s cents",
            order.order_number, branch_id, order.total_cents,
        )
        return order

    return run_with_retry(_op)


def _complete(order: SalesOrder, actor: Actor) -> set:
    touched = set()
    for item in order.items:
        record = stock_service.require_record(item.product_id, order.branch_id)
        reservation_service.deduct(record, item.quantity)
        movement_service.record_movement(
            record=record,
            movement_type=MOVEMENT_SALE,
            quantity=item.quantity,
            quantity_before=record.quantity + item.quantity,
            quantity_after=record.quantity,
            performed_by_user_id=actor.user_id,
            reason=f"Sales order {order.order_number}",
            reference_type=REFERENCE_SALES_ORDER,
            reference_id=order.id,
        )
        touched.add((item.product_id, order.branch_id))

    if order.payment_status == PAYMENT_STATUS_PAID:
        ledger_service.record_transaction(
            type=TRANSACTION_TYPE_SALE,
            branch_id=order.branch_id,
            amount_cents=order.total_cents,
            payment_method=order.payment_method,
            reference_type=REFERENCE_SALES_ORDER,
            reference_id=order.id,
            processed_by_user_id=actor.user_id,
            description=f"Sale {order.order_number}",
        )

    order.completed_at = utcnow()
    return touched


def _release_all(order: SalesOrder) -> set:
    touched = set()
    for item in order.items:
        record = stock_service.get_or_none(item.product_id, order.branch_id)
        if record is not None:
            reservation_service.release(record, item.quantity)
            touched.add((item.product_id, order.branch_id))
    order.cancelled_at = utcnow()
    return touched


def advance_status(*, order_id: int, new_status: str, actor: Actor) -> SalesOrder:
    """
    Apply a status transition.

    Raises:
        ValidationError: unknown status
        NotFoundError: order missing
        ForbiddenError: non-admin on another branch's order
        InvalidTransitionError: transition not allowed
        InvalidOperationError: stock no longer covers a line at completion
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}", field="status")

    def _op() -> SalesOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)

        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidTransitionError(order.status, new_status, entity="order status")

        previous = order.status
        claim_status(SalesOrder, order.id, current=previous, target=new_status)

        touched = set()
        if new_status == ORDER_STATUS_COMPLETED:
            touched = _complete(order, actor)
        elif new_status == ORDER_STATUS_CANCELLED:
            touched = _release_all(order)

        stock_service.commit_stock_changes(touched)
        current_app.logger.info(
            "Sales order %s: %s -> %s by user %s",
            order.order_number, previous, new_status, actor.user_id,
        )
        return order

    return run_with_retry(_op)


def update_payment(
    *,
    order_id: int,
    actor: Actor,
    amount_paid_cents: int | None = None,
    payment_method: str | None = None,
) -> SalesOrder:
    """Update amount paid / method and re-derive change and payment status."""
    if amount_paid_cents is not None and amount_paid_cents < 0:
        raise ValidationError("amount_paid_cents cannot be negative", field="amount_paid_cents")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method")

    def _op() -> SalesOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)
        if order.is_terminal:
            raise InvalidOperationError(f"Cannot update payment of a {order.status} order")
        claim_status(SalesOrder, order.id, current=order.status)

        if amount_paid_cents is not None:
            order.amount_paid_cents = amount_paid_cents
        if payment_method is not None:
            order.payment_method = payment_method
        _apply_payment(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(*, order_id: int, actor: Actor) -> SalesOrder:
    """
    Cancel through the delete endpoint: release every reservation.

    Raises InvalidOperationError for completed orders and
    InvalidTransitionError for already-cancelled ones.
    """
    def _op() -> SalesOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)
        if order.status == ORDER_STATUS_COMPLETED:
            raise InvalidOperationError("Cannot cancel a completed order")
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidTransitionError(order.status, ORDER_STATUS_CANCELLED, entity="order status")

        claim_status(SalesOrder, order.id, current=order.status, target=ORDER_STATUS_CANCELLED)
        touched = _release_all(order)
        stock_service.commit_stock_changes(touched)
        current_app.logger.info("Sales order %s cancelled by user %s", order.order_number, actor.user_id)
        return order

    return run_with_retry(_op)


# =============================================================================
# Queries
# =============================================================================


def get_order(order_id: int, actor: Actor) -> SalesOrder:
    order = _load_order(order_id)
    ensure_branch_access(actor, order.branch_id)
    return order


def order_invoice(order_id: int, actor: Actor) -> dict:
    order = get_order(order_id, actor)
    return {
        "invoice_number": order.order_number,
        "issued_at": to_utc_z(order.created_at),
        "branch": order.branch.to_dict() if order.branch else None,
        "order": order.to_dict(),
    }


def list_orders(
    *,
    branch_id: int | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[SalesOrder], int]:
    query = db.session.query(SalesOrder)
    if branch_id is not None:
        query = query.filter(SalesOrder.branch_id == branch_id)
    if status:
        query = query.filter(SalesOrder.status == status)
    if payment_status:
        query = query.filter(SalesOrder.payment_status == payment_status)
    if date_from is not None:
        query = query.filter(SalesOrder.created_at >= date_from)
    if date_to is not None:
        query = query.filter(SalesOrder.created_at < date_to)

    total = query.count()
    rows = (
        query.order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
