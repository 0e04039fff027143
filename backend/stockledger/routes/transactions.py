# Overview: Flask API routes for the transaction ledger (read-only).

from flask import Blueprint, g, request

from ..decorators import require_auth, require_role
from ..errors import ServiceError
from ..models.auth import ROLE_ADMIN
from ..models.ledger import TRANSACTION_TYPES
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
from ..services import ledger_service


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_transactions_route():
    """
    Ledger entries, newest first.

    Query: type, branch_id, date_from, date_to (bare dates cover the whole day), page, limit
    """
    try:
        page, limit = pagination_args()
        rows, total = ledger_service.list_transactions(
            type=query_choice("type", TRANSACTION_TYPES),
            branch_id=query_int("branch_id"),
            date_from=query_datetime("date_from"),
            date_to=query_datetime("date_to", range_end=True),
            page=page,
            limit=limit,
        )
        return paginated([t.to_dict() for t in rows], page=page, limit=limit, total=total)
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("list transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_role(ROLE_ADMIN)
def get_transaction_route(transaction_id: int):
    try:
        return success(ledger_service.get_transaction(transaction_id, g.actor).to_dict())
    except ServiceError as e:
        return service_failure(e)
    except Exception:
        return unexpected_failure("get transaction")
