# Overview: Flask API routes for service (repair) orders; parses input and returns JSON responses.

# backend/stockledger/routes/services.py
"""
Service order API routes.

SECURITY: All routes require authentication.
- Opening jobs, assigning mechanics and recording payment: admin or salesperson
- Status, parts and charges: admin, salesperson or the assigned mechanic
- Cancelling through DELETE: admin only
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_MECHANIC, ROLE_SALESPERSON
from ..models.sales import PAYMENT_METHODS
from ..models.service_orders import SERVICE_PRIORITIES, SERVICE_STATUSES
from ..responses import (
    paginated,
    pagination_args,
    query_choice,
    query_int,
    service_failure,
    success,
    unexpected_failure,
)
from ..services import service_order_service
from ..services.service_order_service import VehicleInput
from ..validation import PayloadValidator
from .sales import branch_from, customer_from, lines_from


services_bp = Blueprint("services", __name__, url_prefix="/api/services")

ALL_ROLES = (ROLE_ADMIN, ROLE_SALESPERSON, ROLE_MECHANIC)


def _vehicle_from(v: PayloadValidator) -> VehicleInput | None:
    vehicle = v.object("vehicle")
    if vehicle is None:
        return None
    return VehicleInput(
        make=vehicle.string("make", max_length=50),
        model=vehicle.string("model", max_length=50),
        year=vehicle.integer("year", min_value=1900),
        plate_number=vehicle.string("plate_number", max_length=20),
        vin=vehicle.string("vin", max_length=17),
        mileage=vehicle.integer("mileage", min_value=0),
    )


@services_bp.get("")
@require_auth
@require_role(*ALL_ROLES)
def list_services_route():
    """Query: branch_id, status, priority, assigned_to, page, limit"""
    try:
        page, limit = pagination_args()
        rows, total = service_order_service.list_service_orders(
            actor=g.actor,
            branch_id=query_int("branch_id"),
            status=query_choice("status", SERVICE_STATUSES),
            priority=query_choice("priority", SERVICE_PRIORITIES),
            assigned_to=query_int("assigned_to"),
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict() for o in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list service orders")


@services_bp.get("/my-jobs")
@require_auth
@require_role(ROLE_MECHANIC)
def my_jobs_route():
    try:
        jobs = service_order_service.my_jobs(g.actor, status=query_choice("status", SERVICE_STATUSES))
        return success([o.to_dict() for o in jobs], message=f"{len(jobs)} assigned jobs")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list assigned jobs")


@services_bp.get("/<int:order_id>")
@require_auth
@require_role(*ALL_ROLES)
def get_service_route(order_id: int):
    try:
        return success(service_order_service.get_service_order(order_id, g.actor).to_dict())
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get service order")


@services_bp.get("/<int:order_id>/invoice")
@require_auth
@require_role(*ALL_ROLES)
def service_invoice_route(order_id: int):
    try:
        return success(service_order_service.service_invoice(order_id, g.actor))
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("build service invoice")


@services_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def create_service_route():
    """
    Open a service job.

    Request body:
    {
        "branch_id": int (defaults to the caller's branch),
        "customer": {"name": str, "phone": str, "email": str?, "address": str?},
        "vehicle": {"make", "model", "year", "plate_number", "vin", "mileage"} (optional),
        "description": str,
        "diagnosis": str (optional),
        "priority": "low" | "normal" | "high" | "urgent" (default normal),
        "labor_cost_cents": int (optional),
        "other_charges_cents": int (optional),
        "parts_used": [{"product_id", "quantity", "unit_price_cents"?, "discount_cents"?}] (optional),
        "assigned_to": int (optional mechanic user id),
        "payment_method": str (optional),
        "amount_paid_cents": int (optional),
        "notes": str (optional)
    }
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        branch_id = branch_from(v)
        customer = customer_from(v, phone_required=True)
        vehicle = _vehicle_from(v)
        description = v.string("description", required=True, max_length=2000)
        diagnosis = v.string("diagnosis", max_length=2000)
        priority = v.choice("priority", SERVICE_PRIORITIES, default="normal")
        labor = v.money("labor_cost_cents", default=0)
        other = v.money("other_charges_cents", default=0)
        parts = lines_from(v, "parts_used", required=False, with_price=True)
        assigned_to = v.integer("assigned_to")
        payment_method = v.choice("payment_method", PAYMENT_METHODS)
        amount_paid = v.money("amount_paid_cents", default=0)
        notes = v.string("notes", max_length=1000)
        v.raise_if_errors()

        order = service_order_service.create_service_order(
            branch_id=branch_id,
            customer=customer,
            description=description,
            actor=g.actor,
            vehicle=vehicle,
            priority=priority,
            labor_cost_cents=labor,
            other_charges_cents=other,
            parts=parts,
            assigned_to=assigned_to,
            diagnosis=diagnosis,
            payment_method=payment_method,
            amount_paid_cents=amount_paid,
            notes=notes,
        )
        return success(order.to_dict(), message="Service order created successfully", status=201)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("create service order")


@services_bp.put("/<int:order_id>/assign")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def assign_service_route(order_id: int):
    """{"mechanic_id": int}"""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        mechanic_id = v.integer("mechanic_id", required=True)
        v.raise_if_errors()

        order = service_order_service.assign_mechanic(order_id=order_id, mechanic_id=mechanic_id, actor=g.actor)
        return success(order.to_dict(), message="Mechanic assigned")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("assign mechanic")


@services_bp.put("/<int:order_id>/status")
@require_auth
@require_role(*ALL_ROLES)
def update_service_status_route(order_id: int):
    """{"status": "scheduled" | "in-progress" | "completed" | "cancelled"}"""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        status = v.string("status", required=True)
        v.raise_if_errors()

        order = service_order_service.advance_status(order_id=order_id, new_status=status, actor=g.actor)
        return success(order.to_dict(), message=f"Service order {order.status}")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update service order status")


@services_bp.put("/<int:order_id>/parts")
@require_auth
@require_role(*ALL_ROLES)
def update_service_parts_route(order_id: int):
    """{"parts_used": [...]} replaces the whole parts list."""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        if v.payload.get("parts_used") is None:
            v.add_error("parts_used", "parts_used is required")
        parts = lines_from(v, "parts_used", required=False, with_price=True)
        v.raise_if_errors()

        order = service_order_service.update_parts(order_id=order_id, parts=parts, actor=g.actor)
        return success(order.to_dict(), message="Parts updated")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update service order parts")


@services_bp.put("/<int:order_id>/charges")
@require_auth
@require_role(*ALL_ROLES)
def update_service_charges_route(order_id: int):
    """{"labor_cost_cents"?, "other_charges_cents"?, "diagnosis"?}"""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        labor = v.money("labor_cost_cents")
        other = v.money("other_charges_cents")
        diagnosis = v.string("diagnosis", max_length=2000)
        v.raise_if_errors()

        order = service_order_service.update_charges(
            order_id=order_id,
            actor=g.actor,
            labor_cost_cents=labor,
            other_charges_cents=other,
            diagnosis=diagnosis,
        )
        return success(order.to_dict(), message="Charges updated")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update service order charges")


@services_bp.put("/<int:order_id>/payment")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def update_service_payment_route(order_id: int):
    try:
        v = PayloadValidator(request.get_json(silent=True))
        amount_paid = v.money("amount_paid_cents")
        payment_method = v.choice("payment_method", PAYMENT_METHODS)
        v.raise_if_errors()

        order = service_order_service.update_payment(
            order_id=order_id,
            actor=g.actor,
            amount_paid_cents=amount_paid,
            payment_method=payment_method,
        )
        return success(order.to_dict(), message="Payment updated")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update service order payment")


@services_bp.delete("/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def cancel_service_route(order_id: int):
    try:
        order = service_order_service.cancel_service_order(order_id=order_id, actor=g.actor)
        return success(order.to_dict(), message="Service order cancelled")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("cancel service order")
