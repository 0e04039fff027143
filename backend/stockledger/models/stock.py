from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STOCK_STATUS_IN_STOCK = "in-stock"
STOCK_STATUS_LOW_STOCK = "low-stock"
STOCK_STATUS_OUT_OF_STOCK = "out-of-stock"

TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in-transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)

MOVEMENT_INITIAL = "initial"
MOVEMENT_RESTOCK = "restock"
MOVEMENT_ADJUSTMENT_ADD = "adjustment_add"
MOVEMENT_ADJUSTMENT_REMOVE = "adjustment_remove"
MOVEMENT_SALE = "sale"
MOVEMENT_SERVICE_USE = "service_use"
MOVEMENT_TRANSFER_OUT = "transfer_out"
MOVEMENT_TRANSFER_IN = "transfer_in"

MOVEMENT_TYPES = (
    MOVEMENT_INITIAL,
    MOVEMENT_RESTOCK,
    MOVEMENT_ADJUSTMENT_ADD,
    MOVEMENT_ADJUSTMENT_REMOVE,
    MOVEMENT_SALE,
    MOVEMENT_SERVICE_USE,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
)

REFERENCE_SALES_ORDER = "SalesOrder"
REFERENCE_SERVICE_ORDER = "ServiceOrder"
REFERENCE_STOCK_TRANSFER = "StockTransfer"


class StockRecord(db.Model):
    """
    On-hand inventory of one product at one branch.

    INVARIANTS:
    - Exactly one row per (product_id, branch_id)
    - 0 <= reserved_quantity <= quantity (CHECK constraints back this up)
    - available quantity is derived, never stored

    quantity and reserved_quantity are only written through single
    conditional UPDATE statements (see reservation_service / stock_service),
    never by read-modify-write on the ORM instance.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_records_product_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_nonneg"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_stock_records_reserved_nonneg"),
        db.CheckConstraint("reserved_quantity <= quantity", name="ck_stock_records_reserved_le_quantity"),
        db.Index("ix_stock_records_branch_product", "branch_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Branch-specific pricing (cents)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    reorder_point = db.Column(db.Integer, nullable=False, default=10)
    reorder_quantity = db.Column(db.Integer, nullable=False, default=50)
    location = db.Column(db.String(100), nullable=True)

    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_restocked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_records", lazy=True))
    branch = db.relationship("Branch", backref=db.backref("stock_records", lazy=True))

    @property
    def available_quantity(self) -> int:
        return max(0, (self.quantity or 0) - (self.reserved_quantity or 0))

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.reorder_point

    @property
    def stock_status(self) -> str:
        if self.quantity == 0:
            return STOCK_STATUS_OUT_OF_STOCK
        if self.quantity <= self.reorder_point:
            return STOCK_STATUS_LOW_STOCK
        return STOCK_STATUS_IN_STOCK

    def __repr__(self) -> str:
        return (
            f"<StockRecord id={self.id} product_id={self.product_id} branch_id={self.branch_id} "
            f"qty={self.quantity} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_sku": self.product.sku if self.product else None,
            "product_name": self.product.name if self.product else None,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "location": self.location,
            "stock_status": self.stock_status,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "last_restocked_by_user_id": self.last_restocked_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit row written for every change to StockRecord.quantity.

    Reservations do not move goods and therefore do not produce movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("movement_number", name="uq_stock_movements_number"),
        db.Index("ix_stock_movements_branch_created", "branch_id", "created_at"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_number = db.Column(db.String(32), nullable=False)

    stock_record_id = db.Column(db.Integer, db.ForeignKey("stock_records.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    # Units moved (always positive); direction is implied by movement_type
    quantity = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(200), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    stock_record = db.relationship("StockRecord", backref=db.backref("movements", lazy="dynamic"))
    product = db.relationship("Product")
    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_number": self.movement_number,
            "stock_record_id": self.stock_record_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "branch_id": self.branch_id,
            "branch_name": self.branch.name if self.branch else None,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "reference": (
                {"type": self.reference_type, "id": self.reference_id}
                if self.reference_type else None
            ),
            "performed_by_user_id": self.performed_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class StockTransfer(db.Model):
    """
    Movement of one product between two branches.

    LIFECYCLE:
    1. pending: created; quantity reserved at the source
    2. in-transit: approved and shipped; reservation still held
    3. completed: source deducted, destination incremented
    4. cancelled: reservation released (from pending or in-transit)

    Terminal rows (completed/cancelled) are never mutated again.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.UniqueConstraint("transfer_number", name="uq_stock_transfers_number"),
        db.CheckConstraint("from_branch_id <> to_branch_id", name="ck_stock_transfers_distinct_branches"),
        db.CheckConstraint("quantity >= 1", name="ck_stock_transfers_quantity_positive"),
        db.Index("ix_stock_transfers_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_number = db.Column(db.String(32), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_PENDING)

    initiated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    from_branch = db.relationship("Branch", foreign_keys=[from_branch_id])
    to_branch = db.relationship("Branch", foreign_keys=[to_branch_id])

    @property
    def is_terminal(self) -> bool:
        return self.status in (TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "quantity": self.quantity,
            "status": self.status,
            "initiated_by_user_id": self.initiated_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "received_by_user_id": self.received_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "shipped_at": to_utc_z(self.shipped_at),
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
