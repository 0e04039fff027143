# Overview: JSON response envelope shared by every API route.

"""
Response envelope.

    success: {"success": true, "message", "data", "meta": {"timestamp"}}
    list:    ... plus "pagination": {"page", "limit", "total", "pages"}
    error:   {"success": false, "message", "errors"?, "details"?, "meta"}
"""

from __future__ import annotations

import math

from flask import current_app, jsonify, request

from .errors import InternalError, ServiceError, ValidationError
from .extensions import db
from .time_utils import parse_iso_datetime, parse_range_end, to_utc_z, utcnow
from .validation import coerce_int


def _meta() -> dict:
    return {"timestamp": to_utc_z(utcnow())}


def success(data=None, message: str = "Success", status: int = 200):
    return jsonify({
        "success": True,
        "message": message,
        "data": data,
        "meta": _meta(),
    }), status


def paginated(items: list, *, page: int, limit: int, total: int, message: str = "Success"):
    return jsonify({
        "success": True,
        "message": message,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        },
        "meta": _meta(),
    }), 200


def error(message: str, status: int, *, errors: list | None = None, details: dict | None = None):
    body = {"success": False, "message": message, "meta": _meta()}
    if errors:
        body["errors"] = errors
    if details:
        body["details"] = details
    return jsonify(body), status


def error_response(exc: ServiceError):
    return error(exc.message, exc.status_code, errors=exc.errors, details=exc.details)


def internal_error():
    return error_response(InternalError("Internal server error"))


def pagination_args() -> tuple[int, int]:
    """
    page/limit from the query string.

    limit defaults to PAGINATION_DEFAULT_LIMIT and is capped at
    PAGINATION_MAX_LIMIT; non-positive values fall back to the defaults.
    """
    default_limit = current_app.config.get("PAGINATION_DEFAULT_LIMIT", 20)
    max_limit = current_app.config.get("PAGINATION_MAX_LIMIT", 100)

    page = request.args.get("page")
    limit = request.args.get("limit")
    page = coerce_int("page", page) if page else 1
    limit = coerce_int("limit", limit) if limit else default_limit

    if page < 1:
        page = 1
    if limit < 1:
        limit = default_limit
    return page, min(limit, max_limit)


def query_int(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(name, raw)


def query_bool(name: str) -> bool:
    return request.args.get(name, "").strip().lower() in ("1", "true", "yes")


def query_choice(name: str, choices) -> str | None:
    raw = request.args.get(name)
    if not raw:
        return None
    if raw not in choices:
        raise ValidationError(f"{name} must be one of: {', '.join(choices)}", field=name)
    return raw


def query_datetime(name: str, *, range_end: bool = False):
    """ISO date/datetime query parameter; a bare date as range_end covers the whole day."""
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_range_end(raw) if range_end else parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime", field=name)


def service_failure(exc: ServiceError):
    """Roll back the request's unit of work and render a business-rule failure."""
    db.session.rollback()
    return error_response(exc)


def unexpected_failure(action: str):
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action)
    return internal_error()
