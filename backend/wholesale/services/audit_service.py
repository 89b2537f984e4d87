# Overview: Append-only audit trail for orders, payments, shops and products.

"""
Audit Trail Service

WHY: Compliance and history views need to know who changed what, and what
the order looked like before and after.

DESIGN PRINCIPLES:
- One log table per subject (order_logs, payment_logs, shop_logs, product_logs)
- Details are built from typed event dataclasses, never from loose dicts,
  so every action carries a known shape
- Audit rows are written inside the same DB transaction as the mutation
  they describe: a committed ledger change always has its audit row
- Rows are never deleted; the only update is back-filling product names
  into older payloads that were stored without them
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import ClassVar

from ..extensions import db
from ..models import OrderLog, PaymentLog, ShopLog, ProductLog, Product, Order, Shop, User
from wholesale.time_utils import utcnow

UNKNOWN_PRODUCT = "Unknown Product"


# =============================================================================
# EVENT TYPES
# =============================================================================

@dataclass(frozen=True)
class ItemSnapshot:
    product_id: int
    unit_price_cents: int
    quantity: int
    line_total_cents: int
    product_name: str | None = None


@dataclass(frozen=True)
class ReturnedItem:
    product_id: int
    quantity: int
    unit_price_cents: int
    product_name: str | None = None


@dataclass(frozen=True)
class OrderState:
    total_cents: int
    notes: str | None
    items: tuple[ItemSnapshot, ...]


class AuditEvent:
    """Base for all audit payloads. Subclasses set `action`."""
    action: ClassVar[str]

    def details(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OrderCreated(AuditEvent):
    action: ClassVar[str] = "create"
    shop_id: int
    total_cents: int
    notes: str | None
    status: str
    items: tuple[ItemSnapshot, ...]


@dataclass(frozen=True)
class OrderEdited(AuditEvent):
    action: ClassVar[str] = "edit"
    before: OrderState
    after: OrderState


@dataclass(frozen=True)
class OrderAdminEdited(AuditEvent):
    action: ClassVar[str] = "admin_edit"
    before: OrderState
    after: OrderState
    status: str
    stock_adjustments: tuple[dict, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrderApproved(AuditEvent):
    action: ClassVar[str] = "approve"
    previous_status: str
    new_status: str
    approved_by: int
    items_processed: int
    inventory_updated: bool = False


@dataclass(frozen=True)
class OrderRejected(AuditEvent):
    action: ClassVar[str] = "reject"
    previous_status: str
    new_status: str
    rejected_by: int
    rejection_reason: str
    items_count: int


@dataclass(frozen=True)
class OrderReturned(AuditEvent):
    action: ClassVar[str] = "return"
    returned_items: tuple[ReturnedItem, ...]
    previous_total_cents: int
    new_total_cents: int


@dataclass(frozen=True)
class PaymentRecorded(AuditEvent):
    action: ClassVar[str] = "record"
    amount_cents: int
    notes: str | None
    order_total_cents: int
    previous_collected_cents: int
    new_outstanding_cents: int


@dataclass(frozen=True)
class ShopAdded(AuditEvent):
    action: ClassVar[str] = "add"
    after: dict


@dataclass(frozen=True)
class ShopEdited(AuditEvent):
    action: ClassVar[str] = "edit"
    before: dict
    after: dict


@dataclass(frozen=True)
class ShopDeleted(AuditEvent):
    action: ClassVar[str] = "delete"
    before: dict


@dataclass(frozen=True)
class ProductAdded(AuditEvent):
    action: ClassVar[str] = "add"
    after: dict


@dataclass(frozen=True)
class ProductEdited(AuditEvent):
    action: ClassVar[str] = "edit"
    before: dict
    after: dict


@dataclass(frozen=True)
class ProductDeleted(AuditEvent):
    action: ClassVar[str] = "delete"
    before: dict


@dataclass(frozen=True)
class ProductStockAdjusted(AuditEvent):
    """Stock moved by an admin edit of an approved order."""
    action: ClassVar[str] = "order_adjust"
    order_id: int
    previous_stock: int
    new_stock: int
    quantity_delta: int


# =============================================================================
# RECORDING
# =============================================================================

def record_order_event(order_id: int, user_id: int | None, event: AuditEvent) -> OrderLog:
    log = OrderLog(
        order_id=order_id,
        user_id=user_id,
        action=event.action,
        details=event.details(),
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def record_payment_event(payment_id: int, order_id: int, user_id: int | None, event: AuditEvent) -> PaymentLog:
    log = PaymentLog(
        payment_id=payment_id,
        order_id=order_id,
        user_id=user_id,
        action=event.action,
        details=event.details(),
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def record_shop_event(shop_id: int, user_id: int | None, event: AuditEvent) -> ShopLog:
    log = ShopLog(
        shop_id=shop_id,
        user_id=user_id,
        action=event.action,
        details=event.details(),
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def record_product_event(product_id: int, user_id: int | None, event: AuditEvent) -> ProductLog:
    log = ProductLog(
        product_id=product_id,
        user_id=user_id,
        action=event.action,
        details=event.details(),
        created_at=utcnow(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def product_names(product_ids) -> dict[int, str]:
    ids = {pid for pid in product_ids if pid is not None}
    if not ids:
        return {}
    rows = db.session.query(Product.id, Product.name).filter(Product.id.in_(ids)).all()
    return {pid: name for pid, name in rows}


# =============================================================================
# QUERIES
# =============================================================================

def _fill_names(items: list[dict], names: dict[int, str]) -> tuple[list[dict], bool]:
    changed = False
    filled = []
    for item in items:
        if item.get("product_name"):
            filled.append(item)
            continue
        filled.append({**item, "product_name": names.get(item.get("product_id"), UNKNOWN_PRODUCT)})
        changed = True
    return filled, changed


def _backfill_product_names(log: OrderLog, names: dict[int, str]) -> bool:
    """
    Resolve missing product names in create/return payloads.

    Returns True if the stored details were changed.
    """
    details = log.details or {}
    key = {"create": "items", "return": "returned_items"}.get(log.action)
    if not key or not isinstance(details.get(key), list):
        return False

    filled, changed = _fill_names(details[key], names)
    if changed:
        # Reassign so the JSON column is flagged dirty
        log.details = {**details, key: filled}
    return changed


def list_order_logs(order_id: int | None = None) -> list[dict]:
    """
    Order audit history, newest first, joined with actor and shop names.

    Back-fills product names into older payloads and persists the result.
    """
    query = db.session.query(OrderLog)
    if order_id is not None:
        query = query.filter(OrderLog.order_id == order_id)
    logs = query.order_by(OrderLog.created_at.desc(), OrderLog.id.desc()).all()

    wanted = set()
    for log in logs:
        details = log.details or {}
        for key in ("items", "returned_items"):
            for item in details.get(key) or []:
                if isinstance(item, dict) and not item.get("product_name"):
                    wanted.add(item.get("product_id"))
    names = product_names(wanted)

    changed = False
    for log in logs:
        changed = _backfill_product_names(log, names) or changed
    if changed:
        db.session.commit()

    users = _users_by_id(log.user_id for log in logs)
    orders = {
        o.id: o for o in db.session.query(Order).filter(Order.id.in_({log.order_id for log in logs})).all()
    } if logs else {}
    shops = {
        s.id: s for s in db.session.query(Shop).filter(Shop.id.in_({o.shop_id for o in orders.values()})).all()
    } if orders else {}

    result = []
    for log in logs:
        order = orders.get(log.order_id)
        shop = shops.get(order.shop_id) if order else None
        user = users.get(log.user_id)
        result.append({
            **log.to_dict(),
            "user_email": user.email if user else None,
            "user_role": user.role if user else None,
            "order_total_cents": order.total_cents if order else None,
            "shop_name": shop.name if shop else None,
        })
    return result


def list_payment_logs() -> list[dict]:
    logs = db.session.query(PaymentLog).order_by(PaymentLog.created_at.desc(), PaymentLog.id.desc()).all()
    users = _users_by_id(log.user_id for log in logs)
    return [
        {**log.to_dict(), "user_email": users[log.user_id].email if log.user_id in users else None}
        for log in logs
    ]


def list_shop_logs() -> list[dict]:
    logs = db.session.query(ShopLog).order_by(ShopLog.created_at.desc(), ShopLog.id.desc()).all()
    users = _users_by_id(log.user_id for log in logs)
    shops = {s.id: s.name for s in db.session.query(Shop.id, Shop.name).all()}
    return [
        {
            **log.to_dict(),
            "user_email": users[log.user_id].email if log.user_id in users else None,
            "shop_name": shops.get(log.shop_id),
        }
        for log in logs
    ]


def list_product_logs() -> list[dict]:
    logs = db.session.query(ProductLog).order_by(ProductLog.created_at.desc(), ProductLog.id.desc()).all()
    users = _users_by_id(log.user_id for log in logs)
    names = product_names(log.product_id for log in logs)
    return [
        {
            **log.to_dict(),
            "user_email": users[log.user_id].email if log.user_id in users else None,
            "product_name": names.get(log.product_id),
        }
        for log in logs
    ]


def _users_by_id(user_ids) -> dict[int, User]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    return {u.id: u for u in db.session.query(User).filter(User.id.in_(ids)).all()}
