from __future__ import annotations

from ..extensions import db
from wholesale.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with a single warehouse stock figure.

    Stock is only mutated when an administrator edits the items of an
    APPROVED order (see order_service.edit_order_as_admin).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Catalog price in cents; order lines snapshot their own unit price
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "stock": self.stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class Shop(db.Model):
    """
    Retail customer of the distributor.

    Each shop has a credit ceiling (max_bill_amount_cents) and a cap on
    how many unpaid approved bills it may carry (max_active_bills).
    """
    __tablename__ = "shops"
    __table_args__ = (
        db.Index("ix_shops_sales_rep", "sales_rep_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(512), nullable=True)
    owner_nic = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    sales_rep_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    max_bill_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    max_active_bills = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sales_rep = db.relationship("User", backref=db.backref("shops", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "owner_nic": self.owner_nic,
            "email": self.email,
            "phone": self.phone,
            "sales_rep_id": self.sales_rep_id,
            "max_bill_amount_cents": self.max_bill_amount_cents,
            "max_active_bills": self.max_active_bills,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
