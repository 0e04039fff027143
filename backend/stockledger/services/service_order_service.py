# Overview: Service-layer operations for service (repair) orders; encapsulates business logic and database work.

"""
Service order workflow.

LIFECYCLE:
    pending -> scheduled -> in-progress -> completed
    pending | scheduled | in-progress -> cancelled

- assigning a mechanic moves pending -> scheduled
- parts are checked against current availability when edited but NOT
  reserved; stock is deducted only at completion, which fails with
  InsufficientStockError if another order consumed it in the meantime
- a service Transaction is appended when a paid job completes
- parts, charges and payment are frozen once the job is terminal
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidOperationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import ServiceOrder, ServiceOrderPart, User
from ..models.auth import ROLE_MECHANIC
from ..models.ledger import TRANSACTION_TYPE_SERVICE
from ..models.sales import PAYMENT_METHODS, PAYMENT_STATUS_PAID
from ..models.service_orders import (
    SERVICE_PRIORITIES,
    SERVICE_STATUS_CANCELLED,
    SERVICE_STATUS_COMPLETED,
    SERVICE_STATUS_IN_PROGRESS,
    SERVICE_STATUS_PENDING,
    SERVICE_STATUS_SCHEDULED,
    SERVICE_STATUSES,
)
from ..models.stock import MOVEMENT_SERVICE_USE, REFERENCE_SERVICE_ORDER
from ..time_utils import to_utc_z, utcnow
from ..validation import MAX_PRICE_CENTS, coerce_int, require_positive_quantity
from . import ledger_service, movement_service, pricing, reservation_service, stock_service
from .concurrency import claim_status, lock_for_update, run_with_retry
from .directory_service import (
    Actor,
    ensure_branch_access,
    resolve_branch,
    resolve_product,
    scoped_branch_filter,
)
from .document_service import DOC_SERVICE_ORDER, allocate, flush_new_document
from .sales_service import CustomerInput, LineInput


ALLOWED_TRANSITIONS = {
    SERVICE_STATUS_PENDING: (SERVICE_STATUS_SCHEDULED, SERVICE_STATUS_CANCELLED),
    SERVICE_STATUS_SCHEDULED: (SERVICE_STATUS_IN_PROGRESS, SERVICE_STATUS_CANCELLED),
    SERVICE_STATUS_IN_PROGRESS: (SERVICE_STATUS_COMPLETED, SERVICE_STATUS_CANCELLED),
    SERVICE_STATUS_COMPLETED: (),
    SERVICE_STATUS_CANCELLED: (),
}

MIN_VEHICLE_YEAR = 1900


@dataclass(frozen=True)
class VehicleInput:
    make: str | None = None
    model: str | None = None
    year: int | None = None
    plate_number: str | None = None
    vin: str | None = None
    mileage: int | None = None


def _load_order(order_id: int, *, lock: bool = False) -> ServiceOrder:
    query = db.session.query(ServiceOrder).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Service order {order_id} not found")
    return order


def _ensure_can_work_on(order: ServiceOrder, actor: Actor) -> None:
    ensure_branch_access(actor, order.branch_id)
    if actor.is_mechanic and order.assigned_to_user_id != actor.user_id:
        raise ForbiddenError("Mechanics can only work on service orders assigned to them")


def _require_mutable(order: ServiceOrder, what: str) -> None:
    if order.is_terminal:
        raise InvalidOperationError(f"Cannot update {what} of a {order.status} service order")


def _resolve_mechanic(mechanic_id, branch_id: int, actor: Actor) -> User:
    mechanic_id = coerce_int("assigned_to", mechanic_id)
    mechanic = db.session.get(User, mechanic_id)
    if mechanic is None or not mechanic.is_active or mechanic.role != ROLE_MECHANIC:
        raise ValidationError("Assigned user must be an active mechanic", field="assigned_to")
    if not actor.is_admin and mechanic.branch_id != branch_id:
        raise ValidationError("Mechanic must belong to the service order's branch", field="assigned_to")
    return mechanic


def _check_money(field: str, value) -> int:
    value = coerce_int(field, value)
    if value < 0 or value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} must be between 0 and {MAX_PRICE_CENTS}", field=field)
    return value


def _recompute_totals(order: ServiceOrder) -> None:
    order.total_parts_cents = sum(part.line_total_cents for part in order.parts)
    order.total_amount_cents = order.total_parts_cents + order.labor_cost_cents + order.other_charges_cents
    _apply_payment(order)


def _apply_payment(order: ServiceOrder) -> None:
    order.payment_status = pricing.payment_status_for(order.amount_paid_cents, order.total_amount_cents)
    if order.payment_status != PAYMENT_STATUS_PAID:
        order.paid_at = None
    elif order.paid_at is None:
        order.paid_at = utcnow()


def _build_parts(branch_id: int, parts: list[LineInput], actor: Actor) -> list[ServiceOrderPart]:
    """
    Resolve part lines and check current availability (no reservation).

    Quantities of a repeated product are summed for the check. Parts take
    the branch selling price; only admins and salespeople may override it.
    """
    if actor.is_mechanic and any(line.unit_price_cents is not None for line in parts):
        raise ForbiddenError("Mechanics cannot override part prices")

    resolved = []
    requested: dict[int, int] = {}
    for index, line in enumerate(parts):
        quantity = require_positive_quantity(line.quantity, field=f"parts[{index}].quantity")
        discount = _check_money(f"parts[{index}].discount_cents", line.discount_cents)
        product = resolve_product(line.product_id)
        record = stock_service.require_record(
            product.id,
            branch_id,
            message=f"Product {product.name} is not available at this branch",
        )
        unit_price = (
            record.selling_price_cents
            if line.unit_price_cents is None
            else _check_money(f"parts[{index}].unit_price_cents", line.unit_price_cents)
        )
        if discount > quantity * unit_price:
            raise ValidationError(
                f"Discount for {product.name} cannot exceed the line amount",
                field=f"parts[{index}].discount_cents",
            )
        requested[product.id] = requested.get(product.id, 0) + quantity
        resolved.append((product, record, quantity, unit_price, discount))

    for product, record, _qty, _price, _discount in resolved:
        if not reservation_service.has_sufficient_stock(record, requested[product.id]):
            raise InsufficientStockError(
                product_id=product.id,
                product_name=product.name,
                available=record.available_quantity,
                requested=requested[product.id],
            )

    return [
        ServiceOrderPart(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            quantity=quantity,
            unit_price_cents=unit_price,
            discount_cents=discount,
            line_total_cents=pricing.line_total_cents(quantity, unit_price, discount),
        )
        for product, _record, quantity, unit_price, discount in resolved
    ]


def _validate_vehicle(vehicle: VehicleInput | None) -> None:
    if vehicle is None:
        return
    if vehicle.year is not None and coerce_int("vehicle.year", vehicle.year) < MIN_VEHICLE_YEAR:
        raise ValidationError(f"vehicle.year must be >= {MIN_VEHICLE_YEAR}", field="vehicle.year")
    if vehicle.vin is not None and len(vehicle.vin) > 17:
        raise ValidationError("vehicle.vin exceeds max length 17", field="vehicle.vin")
    if vehicle.mileage is not None and coerce_int("vehicle.mileage", vehicle.mileage) < 0:
        raise ValidationError("vehicle.mileage must be >= 0", field="vehicle.mileage")


def create_service_order(
    *,
    branch_id: int,
    customer: CustomerInput,
    description: str,
    actor: Actor,
    vehicle: VehicleInput | None = None,
    priority: str = "normal",
    labor_cost_cents: int = 0,
    other_charges_cents: int = 0,
    parts: list[LineInput] | None = None,
    assigned_to: int | None = None,
    diagnosis: str | None = None,
    payment_method: str | None = None,
    amount_paid_cents: int = 0,
    notes: str | None = None,
) -> ServiceOrder:
    """
    Open a job. Status is scheduled when a mechanic is assigned up front,
    pending otherwise.

    Raises:
        ValidationError: missing customer name/phone or description, bad
            mechanic, bad vehicle data
        ForbiddenError: non-admin creating for another branch
        NotFoundError / InsufficientStockError: from initial parts
    """
    errors = []
    if not customer.name or not customer.name.strip():
        errors.append({"field": "customer.name", "message": "Customer name is required"})
    if not customer.phone or not customer.phone.strip():
        errors.append({"field": "customer.phone", "message": "Phone number is required"})
    if not description or not description.strip():
        errors.append({"field": "description", "message": "Service description is required"})
    if errors:
        raise ValidationError(errors[0]["message"] if len(errors) == 1 else "Validation failed", errors=errors)
    if priority not in SERVICE_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(SERVICE_PRIORITIES)}", field="priority")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method")
    labor_cost_cents = _check_money("labor_cost_cents", labor_cost_cents)
    other_charges_cents = _check_money("other_charges_cents", other_charges_cents)
    amount_paid_cents = _check_money("amount_paid_cents", amount_paid_cents)
    _validate_vehicle(vehicle)
    vehicle = vehicle or VehicleInput()

    def _op() -> ServiceOrder:
        ensure_branch_access(actor, branch_id)
        resolve_branch(branch_id)

        mechanic = _resolve_mechanic(assigned_to, branch_id, actor) if assigned_to is not None else None
        now = utcnow()

        order = ServiceOrder(
            job_number=allocate(DOC_SERVICE_ORDER),
            branch_id=branch_id,
            customer_name=customer.name.strip(),
            customer_phone=customer.phone.strip(),
            customer_email=customer.email,
            customer_address=customer.address,
            vehicle_make=vehicle.make,
            vehicle_model=vehicle.model,
            vehicle_year=vehicle.year,
            vehicle_plate_number=vehicle.plate_number,
            vehicle_vin=vehicle.vin,
            vehicle_mileage=vehicle.mileage,
            assigned_to_user_id=mechanic.id if mechanic else None,
            description=description.strip(),
            diagnosis=diagnosis,
            labor_cost_cents=labor_cost_cents,
            other_charges_cents=other_charges_cents,
            priority=priority,
            status=SERVICE_STATUS_SCHEDULED if mechanic else SERVICE_STATUS_PENDING,
            scheduled_at=now if mechanic else None,
            payment_method=payment_method,
            amount_paid_cents=amount_paid_cents,
            created_by_user_id=actor.user_id,
            notes=notes,
        )
        for part in _build_parts(branch_id, parts or [], actor):
            order.parts.append(part)
        _recompute_totals(order)
        flush_new_document(order)

        db.session.commit()
        current_app.logger.info(
            "Service order %s created at branch %s (status=%s)",
            order.job_number, branch_id, order.status,
        )
        return order

    return run_with_retry(_op)


def assign_mechanic(*, order_id: int, mechanic_id: int, actor: Actor) -> ServiceOrder:
    """Assign or reassign; pending jobs become scheduled."""
    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)
        if order.is_terminal:
            raise InvalidOperationError(f"Cannot assign a mechanic to a {order.status} service order")

        mechanic = _resolve_mechanic(mechanic_id, order.branch_id, actor)
        if order.status == SERVICE_STATUS_PENDING:
            claim_status(ServiceOrder, order.id, current=SERVICE_STATUS_PENDING, target=SERVICE_STATUS_SCHEDULED)
            order.scheduled_at = utcnow()
        else:
            claim_status(ServiceOrder, order.id, current=order.status)
        order.assigned_to_user_id = mechanic.id

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_parts(*, order_id: int, parts: list[LineInput], actor: Actor) -> ServiceOrder:
    """
    Replace the parts list and recompute totals.

    Stock is checked, not reserved; see module docstring.
    """
    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        _ensure_can_work_on(order, actor)
        _require_mutable(order, "parts")
        claim_status(ServiceOrder, order.id, current=order.status)

        new_parts = _build_parts(order.branch_id, parts, actor)
        order.parts.clear()
        order.parts.extend(new_parts)
        _recompute_totals(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_charges(
    *,
    order_id: int,
    actor: Actor,
    labor_cost_cents: int | None = None,
    other_charges_cents: int | None = None,
    diagnosis: str | None = None,
) -> ServiceOrder:
    if labor_cost_cents is not None:
        labor_cost_cents = _check_money("labor_cost_cents", labor_cost_cents)
    if other_charges_cents is not None:
        other_charges_cents = _check_money("other_charges_cents", other_charges_cents)

    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        _ensure_can_work_on(order, actor)
        _require_mutable(order, "charges")
        claim_status(ServiceOrder, order.id, current=order.status)

        if labor_cost_cents is not None:
            order.labor_cost_cents = labor_cost_cents
        if other_charges_cents is not None:
            order.other_charges_cents = other_charges_cents
        if diagnosis is not None:
            order.diagnosis = diagnosis
        _recompute_totals(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


def _complete(order: ServiceOrder, actor: Actor) -> set:
    touched = set()
    for part in order.parts:
        record = stock_service.get_or_none(part.product_id, order.branch_id)
        if record is None:
            raise InsufficientStockError(
                product_id=part.product_id,
                product_name=part.name,
                available=0,
                requested=part.quantity,
            )
        reservation_service.deduct(record, part.quantity, reserved=False)
        movement_service.record_movement(
            record=record,
            movement_type=MOVEMENT_SERVICE_USE,
            quantity=part.quantity,
            quantity_before=record.quantity + part.quantity,
            quantity_after=record.quantity,
            performed_by_user_id=actor.user_id,
            reason=f"Service order {order.job_number}",
            reference_type=REFERENCE_SERVICE_ORDER,
            reference_id=order.id,
        )
        touched.add((part.product_id, order.branch_id))

    if order.payment_status == PAYMENT_STATUS_PAID:
        ledger_service.record_transaction(
            type=TRANSACTION_TYPE_SERVICE,
            branch_id=order.branch_id,
            amount_cents=order.total_amount_cents,
            payment_method=order.payment_method,
            reference_type=REFERENCE_SERVICE_ORDER,
            reference_id=order.id,
            processed_by_user_id=actor.user_id,
            description=f"Service {order.job_number}",
        )

    order.completed_at = utcnow()
    return touched


def advance_status(*, order_id: int, new_status: str, actor: Actor) -> ServiceOrder:
    """
    Apply a status transition.

    Raises:
        ValidationError: unknown status
        ForbiddenError: other branch, or a mechanic on someone else's job
        InvalidTransitionError: transition not allowed
        InsufficientStockError: a part can no longer be covered at completion
    """
    if new_status not in SERVICE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SERVICE_STATUSES)}", field="status")

    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        _ensure_can_work_on(order, actor)

        if new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidTransitionError(order.status, new_status, entity="service order status")

        previous = order.status
        claim_status(ServiceOrder, order.id, current=previous, target=new_status)

        touched = set()
        now = utcnow()
        if new_status == SERVICE_STATUS_SCHEDULED:
            order.scheduled_at = now
        elif new_status == SERVICE_STATUS_IN_PROGRESS:
            order.started_at = now
        elif new_status == SERVICE_STATUS_COMPLETED:
            touched = _complete(order, actor)
        elif new_status == SERVICE_STATUS_CANCELLED:
            order.cancelled_at = now

        stock_service.commit_stock_changes(touched)
        current_app.logger.info(
            "Service order %s: %s -> %s by user %s",
            order.job_number, previous, new_status, actor.user_id,
        )
        return order

    return run_with_retry(_op)


def update_payment(
    *,
    order_id: int,
    actor: Actor,
    amount_paid_cents: int | None = None,
    payment_method: str | None = None,
) -> ServiceOrder:
    if amount_paid_cents is not None:
        amount_paid_cents = _check_money("amount_paid_cents", amount_paid_cents)
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}", field="payment_method")

    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)
        _require_mutable(order, "payment")
        claim_status(ServiceOrder, order.id, current=order.status)

        if amount_paid_cents is not None:
            order.amount_paid_cents = amount_paid_cents
        if payment_method is not None:
            order.payment_method = payment_method
        _apply_payment(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_service_order(*, order_id: int, actor: Actor) -> ServiceOrder:
    """Cancel through the delete endpoint. Parts were never reserved, so no stock effect."""
    def _op() -> ServiceOrder:
        order = _load_order(order_id, lock=True)
        ensure_branch_access(actor, order.branch_id)
        if order.status == SERVICE_STATUS_COMPLETED:
            raise InvalidOperationError("Cannot cancel a completed service order")
        if order.status == SERVICE_STATUS_CANCELLED:
            raise InvalidTransitionError(order.status, SERVICE_STATUS_CANCELLED, entity="service order status")

        claim_status(ServiceOrder, order.id, current=order.status, target=SERVICE_STATUS_CANCELLED)
        order.cancelled_at = utcnow()
        db.session.commit()
        current_app.logger.info("Service order %s cancelled by user %s", order.job_number, actor.user_id)
        return order

    return run_with_retry(_op)


# =============================================================================
# Queries
# =============================================================================


def get_service_order(order_id: int, actor: Actor) -> ServiceOrder:
    order = _load_order(order_id)
    _ensure_can_work_on(order, actor)
    return order


def service_invoice(order_id: int, actor: Actor) -> dict:
    order = get_service_order(order_id, actor)
    return {
        "invoice_number": order.job_number,
        "issued_at": to_utc_z(order.completed_at or order.created_at),
        "branch": order.branch.to_dict() if order.branch else None,
        "order": order.to_dict(),
    }


def list_service_orders(
    *,
    actor: Actor,
    branch_id: int | None = None,
    status: str | None = None,
    priority: str | None = None,
    assigned_to: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ServiceOrder], int]:
    """Jobs newest first. Mechanics only ever see jobs assigned to them."""
    query = db.session.query(ServiceOrder)

    if actor.is_mechanic:
        assigned_to = actor.user_id
    elif not actor.is_admin:
        branch_id = scoped_branch_filter(actor, branch_id)
    if branch_id is not None:
        query = query.filter(ServiceOrder.branch_id == branch_id)
    if assigned_to is not None:
        query = query.filter(ServiceOrder.assigned_to_user_id == assigned_to)
    if status:
        query = query.filter(ServiceOrder.status == status)
    if priority:
        query = query.filter(ServiceOrder.priority == priority)

    total = query.count()
    rows = (
        query.order_by(ServiceOrder.created_at.desc(), ServiceOrder.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def my_jobs(actor: Actor, *, status: str | None = None) -> list[ServiceOrder]:
    """Open (or filtered) jobs assigned to the calling mechanic."""
    query = db.session.query(ServiceOrder).filter(ServiceOrder.assigned_to_user_id == actor.user_id)
    if status:
        query = query.filter(ServiceOrder.status == status)
    else:
        query = query.filter(ServiceOrder.status.notin_((SERVICE_STATUS_COMPLETED, SERVICE_STATUS_CANCELLED)))
    return query.order_by(ServiceOrder.created_at.asc(), ServiceOrder.id.asc()).all()
