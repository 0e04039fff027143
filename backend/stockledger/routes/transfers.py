# backend/stockledger/routes/transfers.py
"""
Inter-branch transfer API routes.

Reads are open to any authenticated user (non-admins only see transfers
touching their branch); creating and advancing transfers is admin only.
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN
from ..models.stock import TRANSFER_STATUSES
from ..responses import (
    paginated,
    pagination_args,
    query_choice,
    query_int,
    service_failure,
    success,
    unexpected_failure,
)
from ..services import transfer_service
from ..validation import PayloadValidator


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/stock/transfers")


@transfers_bp.route("", methods=["GET"])
@require_auth
def list_transfers():
    """Query: status, branch_id, product_id, page, limit"""
    try:
        page, limit = pagination_args()
        rows, total = transfer_service.list_transfers(
            actor=g.actor,
            status=query_choice("status", TRANSFER_STATUSES),
            branch_id=query_int("branch_id"),
            product_id=query_int("product_id"),
            page=page,
            limit=limit,
        )
        return paginated([t.to_dict() for t in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list transfers")


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_auth
def get_transfer(transfer_id: int):
    try:
        return success(transfer_service.get_transfer(transfer_id, g.actor).to_dict())
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get transfer")


@transfers_bp.route("", methods=["POST"])
@require_auth
@require_role(ROLE_ADMIN)
def create_transfer():
    """
    Create a pending transfer and reserve the quantity at the source.

    Request body:
    {
        "product_id": int,
        "from_branch_id": int,
        "to_branch_id": int,
        "quantity": int,
        "notes": str (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request or insufficient stock
        403: Forbidden
        404: Product, branch or source stock record not found
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        product_id = v.integer("product_id", required=True)
        from_branch_id = v.integer("from_branch_id", required=True)
        to_branch_id = v.integer("to_branch_id", required=True)
        quantity = v.integer("quantity", required=True)
        notes = v.string("notes", max_length=transfer_service.TRANSFER_NOTES_MAX_LENGTH)
        v.raise_if_errors()

        transfer = transfer_service.create_transfer(
            product_id=product_id,
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            quantity=quantity,
            actor=g.actor,
            notes=notes,
        )
        return success(transfer.to_dict(), message="Transfer created successfully", status=201)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("create transfer")


@transfers_bp.route("/<int:transfer_id>", methods=["PUT"])
@require_auth
@require_role(ROLE_ADMIN)
def update_transfer_status(transfer_id: int):
    """
    Advance a transfer: {"status": "in-transit" | "completed" | "cancelled"}

    Returns:
        200: Transfer updated
        400: Invalid status or transition
        404: Transfer not found
    """
    try:
        v = PayloadValidator(request.get_json(silent=True))
        status = v.string("status", required=True)
        v.raise_if_errors()

        transfer = transfer_service.advance_transfer(
            transfer_id=transfer_id,
            target_status=status,
            actor=g.actor,
        )
        return success(transfer.to_dict(), message=f"Transfer {transfer.status}")
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("update transfer")
