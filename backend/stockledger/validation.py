from __future__ import annotations

import re
from typing import Any, Iterable

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Basis points: 10000 == 100%
MAX_TAX_RATE_BPS = 10_000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MISSING = object()


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer parsing.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


class PayloadValidator:
    """
    Collects field errors for one JSON object instead of failing on the first.

    Each accessor returns the normalized value (or None when the field is
    optional and absent/invalid). Call `raise_if_errors()` once every field
    has been read; it raises a single ValidationError with the breakdown.
    """

    def __init__(self, payload: Any, *, prefix: str = ""):
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload", field=prefix.rstrip(".") or "body")
        self.payload = payload
        self.prefix = prefix
        self.errors: list[dict] = []

    def _name(self, field: str) -> str:
        return f"{self.prefix}{field}"

    def add_error(self, field: str, message: str) -> None:
        self.errors.append({"field": self._name(field), "message": message})

    def _raw(self, field: str, required: bool):
        raw = self.payload.get(field, _MISSING)
        if raw is _MISSING or raw is None:
            if required:
                self.add_error(field, f"{field} is required")
            return _MISSING
        return raw

    def integer(
        self,
        field: str,
        *,
        required: bool = False,
        min_value: int | None = None,
        max_value: int | None = None,
        default: int | None = None,
    ) -> int | None:
        raw = self._raw(field, required)
        if raw is _MISSING:
            return default
        try:
            value = coerce_int(field, raw)
        except ValidationError as e:
            self.add_error(field, e.message)
            return None
        if min_value is not None and value < min_value:
            self.add_error(field, f"{field} must be >= {min_value}")
            return None
        if max_value is not None and value > max_value:
            self.add_error(field, f"{field} must be <= {max_value}")
            return None
        return value

    def money(self, field: str, *, required: bool = False, default: int | None = None) -> int | None:
        return self.integer(field, required=required, min_value=0, max_value=MAX_PRICE_CENTS, default=default)

    def string(
        self,
        field: str,
        *,
        required: bool = False,
        max_length: int | None = None,
        min_length: int | None = None,
        default: str | None = None,
    ) -> str | None:
        raw = self._raw(field, required)
        if raw is _MISSING:
            return default
        if not isinstance(raw, (str, int)) or isinstance(raw, bool):
            self.add_error(field, f"{field} must be a string")
            return None
        value = str(raw).strip()
        if not value:
            if required:
                self.add_error(field, f"{field} cannot be blank")
            return default
        if max_length is not None and len(value) > max_length:
            self.add_error(field, f"{field} exceeds max length {max_length}")
            return None
        if min_length is not None and len(value) < min_length:
            self.add_error(field, f"{field} must be at least {min_length} characters")
            return None
        return value

    def email(self, field: str, *, required: bool = False) -> str | None:
        value = self.string(field, required=required, max_length=255)
        if value is not None and not _EMAIL_RE.match(value):
            self.add_error(field, f"{field} must be a valid email address")
            return None
        return value

    def choice(self, field: str, choices: Iterable[str], *, required: bool = False, default: str | None = None) -> str | None:
        choices = tuple(choices)
        value = self.string(field, required=required, default=default)
        if value is not None and value not in choices:
            self.add_error(field, f"{field} must be one of: {', '.join(choices)}")
            return None
        return value

    def object(self, field: str, *, required: bool = False) -> "PayloadValidator | None":
        """Validator for a nested object; its errors are merged on raise."""
        raw = self._raw(field, required)
        if raw is _MISSING:
            return None
        if not isinstance(raw, dict):
            self.add_error(field, f"{field} must be an object")
            return None
        nested = PayloadValidator(raw, prefix=f"{self._name(field)}.")
        nested.errors = self.errors
        return nested

    def array(self, field: str, *, required: bool = False, min_items: int = 0) -> list["PayloadValidator"] | None:
        raw = self._raw(field, required)
        if raw is _MISSING:
            return None
        if not isinstance(raw, list):
            self.add_error(field, f"{field} must be an array")
            return None
        if len(raw) < min_items:
            self.add_error(field, f"At least {min_items} {field} entry is required")
            return None
        validators = []
        for index, entry in enumerate(raw):
            if not isinstance(entry, dict):
                self.add_error(f"{field}[{index}]", "must be an object")
                continue
            nested = PayloadValidator(entry, prefix=f"{self._name(field)}[{index}].")
            nested.errors = self.errors
            validators.append(nested)
        return validators

    def raise_if_errors(self) -> None:
        if self.errors:
            message = self.errors[0]["message"] if len(self.errors) == 1 else "Validation failed"
            raise ValidationError(message, errors=list(self.errors))


def require_positive_quantity(quantity: Any, *, field: str = "quantity") -> int:
    value = coerce_int(field, quantity)
    if value < 1:
        raise ValidationError(f"{field} must be at least 1", field=field)
    return value
