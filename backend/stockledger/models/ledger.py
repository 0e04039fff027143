from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TRANSACTION_TYPE_SALE = "sale"
TRANSACTION_TYPE_SERVICE = "service"
TRANSACTION_TYPE_REFUND = "refund"
TRANSACTION_TYPE_EXPENSE = "expense"
TRANSACTION_TYPE_TRANSFER = "transfer"

TRANSACTION_TYPES = (
    TRANSACTION_TYPE_SALE,
    TRANSACTION_TYPE_SERVICE,
    TRANSACTION_TYPE_REFUND,
    TRANSACTION_TYPE_EXPENSE,
    TRANSACTION_TYPE_TRANSFER,
)


class Transaction(db.Model):
    """
    Append-only financial ledger entry.

    INVARIANTS:
    - Rows are never updated or deleted (no code path does so)
    - At most one row per (type, reference_type, reference_id): a completed,
      paid order produces exactly one transaction
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_transactions_number"),
        db.UniqueConstraint(
            "type", "reference_type", "reference_id",
            name="uq_transactions_type_reference",
        ),
        db.Index("ix_transactions_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)

    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(500), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "type": self.type,
            "branch_id": self.branch_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "reference": {"type": self.reference_type, "id": self.reference_id},
            "description": self.description,
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
