# Overview: Money arithmetic shared by the order workflows (integer cents, basis-point tax).

from __future__ import annotations

from ..models.sales import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_PENDING


def tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """subtotal * rate, rounded half-up to the cent (integer math only)."""
    return (subtotal_cents * tax_rate_bps + 5_000) // 10_000


def line_total_cents(quantity: int, unit_price_cents: int, discount_cents: int = 0) -> int:
    return quantity * unit_price_cents - discount_cents


def payment_status_for(amount_paid_cents: int, total_cents: int) -> str:
    """
    0 paid -> pending; less than total -> partial; total or more -> paid.
    """
    if amount_paid_cents <= 0:
        return PAYMENT_STATUS_PENDING
    if amount_paid_cents < total_cents:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PAID


def change_cents(amount_paid_cents: int, total_cents: int) -> int:
    return max(0, amount_paid_cents - total_cents)
