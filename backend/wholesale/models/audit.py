from __future__ import annotations

from ..extensions import db
from wholesale.time_utils import to_utc_z


class _AuditLogMixin:
    """
    Append-only audit row.

    IMMUTABLE: rows are never deleted. The only permitted update is
    back-filling a derived display field (product names) into details.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }


class OrderLog(_AuditLogMixin, db.Model):
    __tablename__ = "order_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    # No FK: the log outlives the row it describes
    order_id = db.Column(db.Integer, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"order_id": self.order_id, **self._base_dict()}


class PaymentLog(_AuditLogMixin, db.Model):
    __tablename__ = "payment_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    payment_id = db.Column(db.Integer, nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"payment_id": self.payment_id, "order_id": self.order_id, **self._base_dict()}


class ShopLog(_AuditLogMixin, db.Model):
    __tablename__ = "shop_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    shop_id = db.Column(db.Integer, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"shop_id": self.shop_id, **self._base_dict()}


class ProductLog(_AuditLogMixin, db.Model):
    __tablename__ = "product_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    product_id = db.Column(db.Integer, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, **self._base_dict()}
