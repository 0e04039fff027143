# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

# backend/stockledger/routes/sales.py
"""
Sales order API routes.

SECURITY: All routes require authentication.
- Creating, advancing and paying orders: admin or salesperson
- Cancelling through DELETE: admin only
- Non-admins only see and act on their own branch's orders
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_SALESPERSON
from ..models.sales import ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES
from ..responses import (
    paginated,
    pagination_args,
    query_choice,
    query_datetime,
    query_int,
    service_failure,
    success,
    unexpected_failure,
)
from ..services import sales_service
from ..services.directory_service import ensure_branch_access, scoped_branch_filter
from ..services.sales_service import CustomerInput, LineInput
from ..validation import MAX_TAX_RATE_BPS, PayloadValidator


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def branch_from(v: PayloadValidator) -> int | None:
    """branch_id from the body, defaulting to the caller's own branch."""
    if v.payload.get("branch_id") is not None:
        return v.integer("branch_id")
    if g.actor.branch_id is None:
        v.add_error("branch_id", "branch_id is required")
    return g.actor.branch_id


def customer_from(v: PayloadValidator, *, phone_required: bool = False) -> CustomerInput | None:
    customer = v.object("customer", required=True)
    if customer is None:
        return None
    return CustomerInput(
        name=customer.string("name", required=True, max_length=100),
        phone=customer.string("phone", required=phone_required, max_length=20),
        email=customer.email("email"),
        address=customer.string("address", max_length=500),
    )


def lines_from(v: PayloadValidator, field: str, *, required: bool, with_price: bool = False) -> list[LineInput]:
    entries = v.array(field, required=required, min_items=1 if required else 0)
    lines = []
    for entry in entries or []:
        product_id = entry.integer("product_id", required=True)
        quantity = entry.integer("quantity", required=True, min_value=1)
        discount = entry.money("discount_cents", default=0)
        unit_price = entry.money("unit_price_cents") if with_price else None
        if product_id is None or quantity is None or discount is None:
            continue
        lines.append(LineInput(
            product_id=product_id,
            quantity=quantity,
            discount_cents=discount,
            unit_price_cents=unit_price,
        ))
    return lines


@sales_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def list_sales_route():
    """Query: branch_id, status, payment_status, date_from, date_to, page, limit"""
    try:
        page, limit = pagination_args()
        rows, total = sales_service.list_orders(
            branch_id=scoped_branch_filter(g.actor, query_int("branch_id")),
            status=query_choice("status", ORDER_STATUSES),
            payment_status=query_choice("payment_status", PAYMENT_STATUSES),
            date_from=query_datetime("date_from"),
            date_to=query_datetime("date_to", range_end=True),
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict() for o in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list sales orders")


@sales_bp.get("/branch/<int:branch_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def branch_sales_route(branch_id: int):
    try:
        ensure_branch_access(g.actor, branch_id)
        page, limit = pagination_args()
        rows, total = sales_service.list_orders(
            branch_id=branch_id,
            status=query_choice("status", ORDER_STATUSES),
            payment_status=query_choice("payment_status", PAYMENT_STATUSES),
            date_from=query_datetime("date_from"),
            date_to=query_datetime("date_to", range_end=True),
            page=page,
            limit=limit,
        )
        return paginated([o.to_dict() for o in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list branch sales orders")


@sales_bp.get("/<int:order_id>")
@require_auth
def get_sale_route(order_id: int):
    try:
        return success(sales_service.get_order(order_id, g.actor).to_dict())
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get sales order")


@sales_bp.get("/<int:order_id>/invoice")
@require_auth
def sale_invoice_route(order_id: int):
    try:
        return success(sales_service.order_invoice(order_id, g.actor))
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("build sales invoice")


@sales_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def create_sale_route():
    """
    Create a pending order and reserve stock for every item.

    Request body:
    {
        "branch_id": int (defaults to the caller's branch),
        "customer": {"name": str, "phone": str?, "email": str?, "address": str?},
        "items": [{"product_id": int, "quantity": int, "discount_cents": int?}, ...],
        "payment_method": "cash" | "card" | "gcash" | "paymaya" | "bank-transfer",
        "tax_rate_bps": int (optional, 0..10000),
        "discount_cents": int (optional),
        "amount_paid_cents": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Order created
        400: Validation failure or insufficient stock
        403: Branch not accessible
        404: Branch, product or stock record not found
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        branch_id = branch_from(v)
        customer = customer_from(v)
        items = lines_from(v, "items", required=True)
        payment_method = v.choice("payment_method", PAYMENT_METHODS, required=True)
        tax_rate_bps = v.integer("tax_rate_bps", min_value=0, max_value=MAX_TAX_RATE_BPS, default=0)
        discount_cents = v.money("discount_cents", default=0)
        amount_paid_cents = v.money("amount_paid_cents", default=0)
        notes = v.string("notes", max_length=1000)
        v.raise_if_errors()

        order = sales_service.create_order(
            branch_id=branch_id,
            customer=customer,
            items=items,
            payment_method=payment_method,
            actor=g.actor,
            tax_rate_bps=tax_rate_bps,
            discount_cents=discount_cents,
            amount_paid_cents=amount_paid_cents,
            notes=notes,
        )
        return success(order.to_dict(), message="Sales order created successfully", status=201)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("create sales order")


@sales_bp.put("/<int:order_id>/status")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def update_sale_status_route(order_id: int):
    """{"status": "processing" | "completed" | "cancelled"}"""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        status = v.string("status", required=True)
        v.raise_if_errors()

        order = sales_service.advance_status(order_id=order_id, new_status=status, actor=g.actor)
        return success(order.to_dict(), message=f"Sales order {order.status}")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update sales order status")


@sales_bp.put("/<int:order_id>/payment")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def update_sale_payment_route(order_id: int):
    """{"amount_paid_cents": int?, "payment_method": str?}"""
    try:
        v = PayloadValidator(request.get_json(silent=True))
        amount_paid_cents = v.money("amount_paid_cents")
        payment_method = v.choice("payment_method", PAYMENT_METHODS)
        v.raise_if_errors()

        order = sales_service.update_payment(
            order_id=order_id,
            actor=g.actor,
            amount_paid_cents=amount_paid_cents,
            payment_method=payment_method,
        )
        return success(order.to_dict(), message="Payment updated")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update sales order payment")


@sales_bp.delete("/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def cancel_sale_route(order_id: int):
    try:
        order = sales_service.cancel_order(order_id=order_id, actor=g.actor)
        return success(order.to_dict(), message="Sales order cancelled")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("cancel sales order")
