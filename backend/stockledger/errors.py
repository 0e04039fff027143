# Overview: Error taxonomy shared by services and routes.

"""
Service-layer errors.

Every business-rule violation raised by a workflow is a ServiceError
subclass. Routes translate them into the JSON error envelope using
`status_code`, `message`, and (for validation failures) the field-level
`errors` list. Anything that is not a ServiceError is treated as an
internal failure.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 400

    def __init__(self, message: str, *, errors: list[dict] | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors
        self.details = details or {}


class ValidationError(ServiceError):
    """Malformed or missing input. Carries a field-level breakdown."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", *, errors: list[dict] | None = None, field: str | None = None):
        if errors is None and field is not None:
            errors = [{"field": field, "message": message}]
        super().__init__(message, errors=errors or [])


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


class InsufficientStockError(ServiceError):
    """Raised when a reservation or deduction asks for more than is on hand."""

    status_code = 400

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str | None,
        available: int,
        requested: int,
        message: str | None = None,
    ):
        label = product_name or f"product {product_id}"
        super().__init__(
            message or f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class InvalidTransitionError(ServiceError):
    status_code = 400

    def __init__(self, current: str, requested: str, *, entity: str = "status"):
        super().__init__(
            f"Cannot change {entity} from '{current}' to '{requested}'",
            details={"current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class InvalidOperationError(ServiceError):
    status_code = 400


class ConflictError(ServiceError):
    """Uniqueness violation (e.g. a document number allocated twice)."""

    status_code = 409


class InternalError(ServiceError):
    status_code = 500
