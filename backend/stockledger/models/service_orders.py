from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .sales import PAYMENT_STATUS_PENDING


SERVICE_STATUS_PENDING = "pending"
SERVICE_STATUS_SCHEDULED = "scheduled"
SERVICE_STATUS_IN_PROGRESS = "in-progress"
SERVICE_STATUS_COMPLETED = "completed"
SERVICE_STATUS_CANCELLED = "cancelled"

SERVICE_STATUSES = (
    SERVICE_STATUS_PENDING,
    SERVICE_STATUS_SCHEDULED,
    SERVICE_STATUS_IN_PROGRESS,
    SERVICE_STATUS_COMPLETED,
    SERVICE_STATUS_CANCELLED,
)

SERVICE_PRIORITIES = ("low", "normal", "high", "urgent")


class ServiceOrder(db.Model):
    """
    Repair / maintenance job at one branch.

    Parts are tracked without touching stock until the job completes; the
    deduction happens then, so stock can run short between update_parts and
    completion (surfaced as InsufficientStockError at completion time).

        total_parts = sum(part line totals)
        total_amount = total_parts + labor_cost + other_charges
    """
    __tablename__ = "service_orders"
    __table_args__ = (
        db.UniqueConstraint("job_number", name="uq_service_orders_job_number"),
        db.Index("ix_service_orders_branch_status_created", "branch_id", "status", "created_at"),
        db.Index("ix_service_orders_assignee_status", "assigned_to_user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_number = db.Column(db.String(32), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=False)
    customer_phone = db.Column(db.String(20), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)

    vehicle_make = db.Column(db.String(64), nullable=True)
    vehicle_model = db.Column(db.String(64), nullable=True)
    vehicle_year = db.Column(db.Integer, nullable=True)
    vehicle_plate_number = db.Column(db.String(32), nullable=True)
    vehicle_vin = db.Column(db.String(17), nullable=True)
    vehicle_mileage = db.Column(db.Integer, nullable=True)

    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    description = db.Column(db.Text, nullable=False)
    diagnosis = db.Column(db.Text, nullable=True)

    labor_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    other_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    total_parts_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    priority = db.Column(db.String(16), nullable=False, default="normal")
    status = db.Column(db.String(16), nullable=False, default=SERVICE_STATUS_PENDING, index=True)

    payment_method = db.Column(db.String(32), nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_user_id])
    parts = db.relationship(
        "ServiceOrderPart",
        backref="service_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ServiceOrderPart.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (SERVICE_STATUS_COMPLETED, SERVICE_STATUS_CANCELLED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_number": self.job_number,
            "branch_id": self.branch_id,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "email": self.customer_email,
                "address": self.customer_address,
            },
            "vehicle": {
                "make": self.vehicle_make,
                "model": self.vehicle_model,
                "year": self.vehicle_year,
                "plate_number": self.vehicle_plate_number,
                "vin": self.vehicle_vin,
                "mileage": self.vehicle_mileage,
            },
            "assigned_to_user_id": self.assigned_to_user_id,
            "description": self.description,
            "diagnosis": self.diagnosis,
            "parts_used": [part.to_dict() for part in self.parts],
            "labor_cost_cents": self.labor_cost_cents,
            "other_charges_cents": self.other_charges_cents,
            "total_parts_cents": self.total_parts_cents,
            "total_amount_cents": self.total_amount_cents,
            "priority": self.priority,
            "status": self.status,
            "payment": {
                "method": self.payment_method,
                "amount_paid_cents": self.amount_paid_cents,
                "status": self.payment_status,
                "paid_at": to_utc_z(self.paid_at),
            },
            "scheduled_at": to_utc_z(self.scheduled_at),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by_user_id": self.created_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ServiceOrderPart(db.Model):
    __tablename__ = "service_order_parts"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_service_order_parts_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    service_order_id = db.Column(db.Integer, db.ForeignKey("service_orders.id"), nullable=False, index=True)
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
