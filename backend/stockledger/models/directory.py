from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Branch(db.Model):
    """
    Physical store / service location.

    The branch is the unit of pricing and inventory isolation: stock records,
    orders and users all hang off a branch.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product catalog entry.

    Catalog prices are only defaults: the price a branch actually sells at
    lives on its StockRecord.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    default_cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    default_selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "default_cost_price_cents": self.default_cost_price_cents,
            "default_selling_price_cents": self.default_selling_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
