from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PARTIAL, PAYMENT_STATUS_PAID)

PAYMENT_METHODS = ("cash", "card", "gcash", "paymaya", "bank-transfer")


class SalesOrder(db.Model):
    """
    Customer purchase at one branch.

    Totals are stored denormalized and recomputed by sales_service whenever
    items or payment change:
        total = subtotal + tax - discount
        change = max(0, amount_paid - total)
    payment_status is derived from amount_paid vs total, never set directly.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_sales_orders_number"),
        db.Index("ix_sales_orders_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=False)
    customer_phone = db.Column(db.String(20), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    items = db.relationship(
        "SalesOrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SalesOrderItem.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "branch_id": self.branch_id,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "email": self.customer_email,
                "address": self.customer_address,
            },
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "tax": {"rate_bps": self.tax_rate_bps, "amount_cents": self.tax_cents},
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment": {
                "method": self.payment_method,
                "amount_paid_cents": self.amount_paid_cents,
                "change_cents": self.change_cents,
                "status": self.payment_status,
                "paid_at": to_utc_z(self.paid_at),
            },
            "status": self.status,
            "processed_by_user_id": self.processed_by_user_id,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SalesOrderItem(db.Model):
    """
    Line item with sku/name/unit price captured at order creation.

    unit_price_cents comes from the branch StockRecord, not the catalog.
    """
    __tablename__ = "sales_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sales_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }
