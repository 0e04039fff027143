# Overview: Service-layer operations for the financial transaction ledger.

"""
Transaction ledger.

Invariants (authoritative):
- Append-only: this module only inserts; there is no update or delete path
- One transaction per (type, reference): enforced by a unique constraint,
  surfaced as ConflictError
- Rows are written inside the caller's unit of work, so an order that fails
  to complete leaves no transaction behind
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Transaction
from ..models.ledger import TRANSACTION_TYPES
from .directory_service import Actor
from .document_service import DOC_TRANSACTION, allocate


def record_transaction(
    *,
    type: str,
    branch_id: int,
    amount_cents: int,
    payment_method: str | None,
    reference_type: str,
    reference_id: int,
    processed_by_user_id: int,
    description: str | None = None,
) -> Transaction:
    """Append one ledger entry (flushes, does not commit)."""
    if type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {type}", field="type")

    existing = (
        db.session.query(Transaction.id)
        .filter_by(type=type, reference_type=reference_type, reference_id=reference_id)
        .first()
    )
    if existing:
        raise ConflictError(f"A {type} transaction already exists for {reference_type} {reference_id}")

    txn = Transaction(
        transaction_number=allocate(DOC_TRANSACTION),
        type=type,
        branch_id=branch_id,
        amount_cents=amount_cents,
        payment_method=payment_method,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        processed_by_user_id=processed_by_user_id,
    )
    db.session.add(txn)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError(f"Duplicate transaction: {exc.orig}") from exc
    return txn


def transactions_for_reference(reference_type: str, reference_id: int) -> list[Transaction]:
    return (
        db.session.query(Transaction)
        .filter_by(reference_type=reference_type, reference_id=reference_id)
        .order_by(Transaction.id.asc())
        .all()
    )


def get_transaction(transaction_id: int, actor: Actor) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None or (not actor.is_admin and txn.branch_id != actor.branch_id):
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def list_transactions(
    *,
    type: str | None = None,
    branch_id: int | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Transaction], int]:
    query = db.session.query(Transaction)
    if type:
        query = query.filter(Transaction.type == type)
    if branch_id is not None:
        query = query.filter(Transaction.branch_id == branch_id)
    if date_from is not None:
        query = query.filter(Transaction.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.created_at < date_to)

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
