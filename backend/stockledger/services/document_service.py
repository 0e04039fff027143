# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import month_period, year_period
from .concurrency import insert_ignoring_conflicts


DOC_TRANSFER = "TRANSFER"
DOC_SALES_ORDER = "SALES_ORDER"
DOC_SERVICE_ORDER = "SERVICE_ORDER"
DOC_TRANSACTION = "TRANSACTION"
DOC_STOCK_MOVEMENT = "STOCK_MOVEMENT"

# document_type -> (prefix, period function)
DOCUMENT_FORMATS = {
    DOC_TRANSFER: ("TR", year_period),
    DOC_SALES_ORDER: ("SO", year_period),
    DOC_SERVICE_ORDER: ("JOB", year_period),
    DOC_TRANSACTION: ("TXN", month_period),
    DOC_STOCK_MOVEMENT: ("SM", year_period),
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations are called incorrectly."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a type/period.

    The counter row is advanced by a single UPDATE; the first allocation of
    a period creates the row with an insert that ignores a concurrent
    creator, then takes the same UPDATE path. Runs inside the caller's
    transaction, so a rolled-back unit of work also gives its number back.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        db.session.execute(
            insert_ignoring_conflicts(
                DocumentSequence,
                {"document_type": document_type, "period": period, "next_number": 1},
                index_elements=["document_type", "period"],
            )
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise DocumentSequenceError(f"Could not allocate {document_type} number for {period}")

    current = db.session.execute(
        select(DocumentSequence.next_number).where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
    ).scalar_one()
    next_num = current - 1

    return f"{prefix}-{period}-{next_num:0{pad}d}"


def allocate(document_type: str) -> str:
    """Allocate the next number for one of the known document types."""
    try:
        prefix, period_fn = DOCUMENT_FORMATS[document_type]
    except KeyError:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")
    return next_document_number(document_type=document_type, prefix=prefix, period=period_fn())


def flush_new_document(instance) -> None:
    """
    Flush a freshly numbered document.

    A unique-number collision becomes ConflictError so run_with_retry can
    re-run the unit of work with a new number.
    """
    db.session.add(instance)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConflictError(f"Duplicate document number: {exc.orig}") from exc
