# Overview: Flask API routes for stock records and stock movements; parses input and returns JSON responses.

# backend/stockledger/routes/stock.py
"""
Stock record routes.

SECURITY: All routes require authentication.
- Listing, restocking and movement lookups: admin or salesperson
- Manual adjustments and the global movement log: admin only
- Non-admins are confined to their own branch
"""

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN, ROLE_SALESPERSON
from ..models.stock import MOVEMENT_TYPES
from ..responses import (
    paginated,
    pagination_args,
    query_bool,
    query_choice,
    query_datetime,
    query_int,
    service_failure,
    success,
    unexpected_failure,
)
from ..services import movement_service, stock_service
from ..services.directory_service import ensure_branch_access, resolve_branch, scoped_branch_filter
from ..validation import PayloadValidator


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def list_stock_route():
    """
    List stock records.

    Query: branch_id, product_id, low_stock, out_of_stock, search, page, limit
    """
    try:
        page, limit = pagination_args()
        rows, total = stock_service.list_stock(
            branch_id=scoped_branch_filter(g.actor, query_int("branch_id")),
            product_id=query_int("product_id"),
            low_stock=query_bool("low_stock"),
            out_of_stock=query_bool("out_of_stock"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return paginated([r.to_dict() for r in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list stock")


@stock_bp.get("/low-stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def low_stock_route():
    try:
        branch_id = scoped_branch_filter(g.actor, query_int("branch_id"))
        records = stock_service.list_low_stock(branch_id=branch_id)
        return success([r.to_dict() for r in records], message=f"{len(records)} low-stock records")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list low stock")


@stock_bp.get("/<int:stock_id>")
@require_auth
def get_stock_route(stock_id: int):
    try:
        record = stock_service.get_record(stock_id)
        ensure_branch_access(g.actor, record.branch_id)
        return success(record.to_dict())
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get stock record")


@stock_bp.get("/branch/<int:branch_id>")
@require_auth
def branch_stock_route(branch_id: int):
    try:
        ensure_branch_access(g.actor, branch_id)
        resolve_branch(branch_id)
        page, limit = pagination_args()
        rows, total = stock_service.list_stock(
            branch_id=branch_id,
            low_stock=query_bool("low_stock"),
            out_of_stock=query_bool("out_of_stock"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return paginated([r.to_dict() for r in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list branch stock")


@stock_bp.get("/product/<int:product_id>")
@require_auth
def product_stock_route(product_id: int):
    """Cross-branch summary for one product (served from the stock view cache)."""
    try:
        return success(stock_service.cached_product_summary(product_id))
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get product stock summary")


@stock_bp.post("/restock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def restock_route():
    """
    Receive stock, creating the record on first receipt.

    Request body:
    {
        "product_id": int,
        "branch_id": int,
        "quantity": int (>= 1),
        "cost_price_cents": int (optional),
        "selling_price_cents": int (optional),
        "reorder_point": int (optional),
        "reorder_quantity": int (optional),
        "location": str (optional),
        "notes": str (optional)
    }
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        product_id = v.integer("product_id", required=True)
        branch_id = v.integer("branch_id", required=True)
        quantity = v.integer("quantity", required=True)
        cost = v.money("cost_price_cents")
        price = v.money("selling_price_cents")
        reorder_point = v.integer("reorder_point", min_value=0)
        reorder_quantity = v.integer("reorder_quantity", min_value=0)
        location = v.string("location", max_length=100)
        notes = v.string("notes", max_length=500)
        v.raise_if_errors()

        record = stock_service.upsert_restock(
            product_id=product_id,
            branch_id=branch_id,
            quantity=quantity,
            actor=g.actor,
            cost_price_cents=cost,
            selling_price_cents=price,
            reorder_point=reorder_point,
            reorder_quantity=reorder_quantity,
            location=location,
            notes=notes,
        )
        return success(record.to_dict(), message="Stock restocked successfully")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("restock")


@stock_bp.put("/<int:stock_id>/restock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def restock_by_id_route(stock_id: int):
    try:
        v = PayloadValidator(request.get_json(silent=True))
        quantity = v.integer("quantity", required=True)
        notes = v.string("notes", max_length=500)
        v.raise_if_errors()

        record = stock_service.restock_by_id(stock_id=stock_id, quantity=quantity, actor=g.actor, notes=notes)
        return success(record.to_dict(), message="Stock restocked successfully")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("restock")


@stock_bp.post("/adjust")
@require_auth
@require_role(ROLE_ADMIN)
def adjust_route():
    """
    Manual correction (admin only).

    Request body:
    {
        "product_id": int,
        "branch_id": int,
        "adjustment": int (signed, non-zero),
        "reason": str (5..500 chars),
        "notes": str (optional)
    }
    """
    try:
        payload = request.get_json(silent=True) or {}
        v = PayloadValidator(payload)
        product_id = v.integer("product_id", required=True)
        branch_id = v.integer("branch_id", required=True)
        notes = v.string("notes", max_length=500)
        v.raise_if_errors()

        record = stock_service.adjust(
            product_id=product_id,
            branch_id=branch_id,
            signed_delta=payload.get("adjustment"),
            reason=payload.get("reason"),
            actor=g.actor,
            notes=notes,
        )
        return success(record.to_dict(), message="Stock adjusted successfully")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("adjust stock")


@stock_bp.put("/<int:stock_id>/adjust")
@require_auth
@require_role(ROLE_ADMIN)
def adjust_by_id_route(stock_id: int):
    try:
        payload = request.get_json(silent=True) or {}
        v = PayloadValidator(payload)
        notes = v.string("notes", max_length=500)
        v.raise_if_errors()

        record = stock_service.adjust_by_id(
            stock_id=stock_id,
            signed_delta=payload.get("adjustment"),
            reason=payload.get("reason"),
            actor=g.actor,
            notes=notes,
        )
        return success(record.to_dict(), message="Stock adjusted successfully")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("adjust stock")


# =============================================================================
# Movements
# =============================================================================


def _movement_page(**filters):
    page, limit = pagination_args()
    rows, total = movement_service.list_movements(
        movement_type=query_choice("movement_type", MOVEMENT_TYPES),
        date_from=query_datetime("date_from"),
        date_to=query_datetime("date_to", range_end=True),
        page=page,
        limit=limit,
        **filters,
    )
    return paginated([m.to_dict() for m in rows], page=page, limit=limit, total=total)


@stock_bp.get("/movements")
@require_auth
@require_role(ROLE_ADMIN)
def list_movements_route():
    """Query: movement_type, branch_id, product_id, date_from, date_to, page, limit"""
    try:
        return _movement_page(branch_id=query_int("branch_id"), product_id=query_int("product_id"))
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list stock movements")


@stock_bp.get("/movements/stock/<int:stock_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def stock_movements_route(stock_id: int):
    try:
        record = stock_service.get_record(stock_id)
        ensure_branch_access(g.actor, record.branch_id)
        return _movement_page(stock_record_id=stock_id)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list stock movements")


@stock_bp.get("/movements/product/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALESPERSON)
def product_movements_route(product_id: int):
    try:
        branch_id = scoped_branch_filter(g.actor, query_int("branch_id"))
        return _movement_page(product_id=product_id, branch_id=branch_id)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list stock movements")


@stock_bp.get("/movements/branch/<int:branch_id>")
@require_auth
def branch_movements_route(branch_id: int):
    try:
        ensure_branch_access(g.actor, branch_id)
        return _movement_page(branch_id=branch_id, product_id=query_int("product_id"))
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list stock movements")
