from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-kind, per-period counter backing human-readable document numbers.

    next_number is the number the *next* allocation will hand out; it is only
    ever advanced by a single UPDATE ... SET next_number = next_number + 1.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_document_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    # "2026" for yearly counters, "202610" for monthly ones
    period = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
