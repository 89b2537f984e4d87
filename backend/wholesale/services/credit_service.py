# Overview: Read-only credit position of shops, computed from approved orders and payments.

"""
Credit Ledger Service

WHY: Every credit decision (new order, pending-order edit) needs a shop's
current exposure: how much it owes on approved bills and how many of those
bills are still open.

DESIGN PRINCIPLES:
- Pure reads, no mutation and no caching
- Outstanding is derived (total - collected), never stored
- Only APPROVED orders count; pending and rejected orders carry no debt
- Callers that decide on the result must hold the shop row lock
  (see order_service) so the figures cannot go stale under them
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Order, OrderItem, Payment, Shop, User
from ..models.auth import ROLE_SALES_REP
from ..models.orders import ORDER_STATUS_APPROVED, ORDER_STATUS_PENDING
from .errors import NotFoundError
from wholesale.time_utils import to_utc_z


@dataclass(frozen=True)
class CreditState:
    """Snapshot of a shop's exposure at the moment it was read."""
    shop_id: int
    max_bill_amount_cents: int
    max_active_bills: int
    outstanding_cents: int
    active_bill_count: int

    @property
    def available_credit_cents(self) -> int:
        return self.max_bill_amount_cents - self.outstanding_cents

    def to_dict(self) -> dict:
        return {
            "shop_id": self.shop_id,
            "max_bill_amount_cents": self.max_bill_amount_cents,
            "max_active_bills": self.max_active_bills,
            "outstanding_cents": self.outstanding_cents,
            "active_bill_count": self.active_bill_count,
            "available_credit_cents": self.available_credit_cents,
        }


@dataclass(frozen=True)
class Bill:
    """An approved order viewed as a receivable."""
    order: Order
    collected_cents: int

    @property
    def outstanding_cents(self) -> int:
        return self.order.total_cents - self.collected_cents

    def to_dict(self) -> dict:
        return {
            "id": self.order.id,
            "shop_id": self.order.shop_id,
            "created_at": to_utc_z(self.order.created_at),
            "total_cents": self.order.total_cents,
            "collected_cents": self.collected_cents,
            "outstanding_cents": self.outstanding_cents,
        }


def _collected_subquery():
    return (
        db.session.query(
            Payment.order_id.label("order_id"),
            db.func.sum(Payment.amount_cents).label("collected_cents"),
        )
        .group_by(Payment.order_id)
        .subquery()
    )


def approved_bills(shop_ids: list[int], exclude_order_id: int | None = None) -> list[Bill]:
    """
    Approved orders of the given shops with their collected amounts.

    Returned newest first.
    """
    if not shop_ids:
        return []

    collected = _collected_subquery()
    query = (
        db.session.query(Order, db.func.coalesce(collected.c.collected_cents, 0))
        .outerjoin(collected, collected.c.order_id == Order.id)
        .filter(Order.shop_id.in_(shop_ids), Order.status == ORDER_STATUS_APPROVED)
    )
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)

    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return [Bill(order=order, collected_cents=int(collected_cents)) for order, collected_cents in rows]


def shop_credit_state(shop_id: int, exclude_order_id: int | None = None) -> CreditState:
    """
    Compute a shop's outstanding balance and active-bill count.

    Args:
        shop_id: Shop to evaluate
        exclude_order_id: Order left out of the figures, so an edit is
            validated against the state it would produce rather than
            counting the edited order twice

    Raises:
        NotFoundError: If the shop does not exist
    """
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found")

    bills = approved_bills([shop_id], exclude_order_id=exclude_order_id)
    outstanding = sum(bill.outstanding_cents for bill in bills)
    active = sum(1 for bill in bills if bill.outstanding_cents > 0)

    return CreditState(
        shop_id=shop.id,
        max_bill_amount_cents=shop.max_bill_amount_cents,
        max_active_bills=shop.max_active_bills,
        outstanding_cents=outstanding,
        active_bill_count=active,
    )


def order_collected(order_id: int) -> int:
    """Sum of payments recorded against an order, in cents."""
    total = db.session.query(
        db.func.coalesce(db.func.sum(Payment.amount_cents), 0)
    ).filter(Payment.order_id == order_id).scalar()
    return int(total or 0)


def order_outstanding(order: Order) -> int:
    return order.total_cents - order_collected(order.id)


def remaining_bill_count(shop_id: int) -> int:
    """Number of approved bills of the shop that still have a balance."""
    return sum(1 for bill in approved_bills([shop_id]) if bill.outstanding_cents > 0)


# =============================================================================
# REPRESENTATIVE VIEWS
# =============================================================================

def assigned_shops_with_credit(sales_rep_id: int) -> list[dict]:
    """Shops assigned to a sales rep, each with its live credit figures."""
    shops = (
        db.session.query(Shop)
        .filter(Shop.sales_rep_id == sales_rep_id)
        .order_by(Shop.created_at.desc(), Shop.id.desc())
        .all()
    )
    result = []
    for shop in shops:
        state = shop_credit_state(shop.id)
        result.append({
            **shop.to_dict(),
            "current_outstanding_cents": state.outstanding_cents,
            "active_bills": state.active_bill_count,
            "available_credit_cents": state.available_credit_cents,
        })
    return result


def bills_for_representative(sales_rep_id: int) -> list[dict]:
    """
    Approved bills grouped by the rep's assigned shops.

    Shops without bills are still listed so the rep sees every account.
    """
    shops = (
        db.session.query(Shop)
        .filter(Shop.sales_rep_id == sales_rep_id)
        .order_by(Shop.id)
        .all()
    )
    if not shops:
        return []

    by_shop = {
        shop.id: {"shop_id": shop.id, "shop_name": shop.name, "total_outstanding_cents": 0, "bills": []}
        for shop in shops
    }
    for bill in approved_bills(list(by_shop.keys())):
        entry = by_shop[bill.order.shop_id]
        entry["bills"].append(bill.to_dict())
        entry["total_outstanding_cents"] += bill.outstanding_cents

    return list(by_shop.values())


# =============================================================================
# ADMIN VIEWS
# =============================================================================

RECENT_PAYMENTS_LIMIT = 10

# (minimum collection rate %, rating), checked top down
PERFORMANCE_RATINGS = ((75, "Excellent"), (50, "Good"), (25, "Average"), (0, "Poor"))


def _item_counts(order_ids) -> dict[int, int]:
    if not order_ids:
        return {}
    rows = (
        db.session.query(OrderItem.order_id, db.func.count(OrderItem.id))
        .filter(OrderItem.order_id.in_(order_ids))
        .group_by(OrderItem.order_id)
        .all()
    )
    return {order_id: int(count) for order_id, count in rows}


def _rep_names(user_ids) -> dict[int, User]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    return {u.id: u for u in db.session.query(User).filter(User.id.in_(ids)).all()}


def shop_details(shop_id: int) -> dict:
    """
    Admin drill-down for one shop.

    Credit figures, pending orders, open bills with their collected and
    outstanding amounts, and the most recent payments.

    Raises:
        NotFoundError: If the shop does not exist
    """
    state = shop_credit_state(shop_id)
    shop = db.session.get(Shop, shop_id)

    pending = (
        db.session.query(Order)
        .filter(Order.shop_id == shop_id, Order.status == ORDER_STATUS_PENDING)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    open_bills = [bill for bill in approved_bills([shop_id]) if bill.outstanding_cents > 0]
    payments = (
        db.session.query(Payment, Order)
        .join(Order, Order.id == Payment.order_id)
        .filter(Order.shop_id == shop_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(RECENT_PAYMENTS_LIMIT)
        .all()
    )

    counts = _item_counts([o.id for o in pending] + [b.order.id for b in open_bills])
    users = _rep_names(
        [shop.sales_rep_id]
        + [o.sales_rep_id for o in pending]
        + [b.order.sales_rep_id for b in open_bills]
        + [p.sales_rep_id for p, _ in payments]
    )

    def _rep_name(user_id):
        user = users.get(user_id)
        return user.full_name if user else None

    return {
        **shop.to_dict(),
        "sales_rep_name": _rep_name(shop.sales_rep_id),
        "credit": state.to_dict(),
        "pending_orders": [
            {
                "id": order.id,
                "created_at": to_utc_z(order.created_at),
                "total_cents": order.total_cents,
                "notes": order.notes,
                "item_count": counts.get(order.id, 0),
                "sales_rep_name": _rep_name(order.sales_rep_id),
            }
            for order in pending
        ],
        "active_bills": [
            {
                **bill.to_dict(),
                "notes": bill.order.notes,
                "item_count": counts.get(bill.order.id, 0),
                "sales_rep_name": _rep_name(bill.order.sales_rep_id),
            }
            for bill in open_bills
        ],
        "recent_payments": [
            {
                **payment.to_dict(),
                "order_total_cents": order.total_cents,
                "sales_rep_name": _rep_name(payment.sales_rep_id),
            }
            for payment, order in payments
        ],
    }


def performance_rating(collection_rate: float) -> str:
    for threshold, rating in PERFORMANCE_RATINGS:
        if collection_rate >= threshold:
            return rating
    return PERFORMANCE_RATINGS[-1][1]


def sales_rep_stats() -> list[dict]:
    """
    Every sales rep with shop count and billing performance, newest rep first.

    Revenue, collected and outstanding cover APPROVED orders only.
    collection_rate is collected / revenue as a percentage.
    """
    reps = (
        db.session.query(User)
        .filter(User.role == ROLE_SALES_REP)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    if not reps:
        return []
    rep_ids = [rep.id for rep in reps]

    shop_counts = dict(
        db.session.query(Shop.sales_rep_id, db.func.count(Shop.id))
        .filter(Shop.sales_rep_id.in_(rep_ids))
        .group_by(Shop.sales_rep_id)
        .all()
    )

    collected = _collected_subquery()
    rows = (
        db.session.query(
            Order.sales_rep_id,
            db.func.count(Order.id),
            db.func.coalesce(db.func.sum(Order.total_cents), 0),
            db.func.coalesce(db.func.sum(collected.c.collected_cents), 0),
        )
        .outerjoin(collected, collected.c.order_id == Order.id)
        .filter(Order.sales_rep_id.in_(rep_ids), Order.status == ORDER_STATUS_APPROVED)
        .group_by(Order.sales_rep_id)
        .all()
    )
    billing = {rep_id: (int(n), int(revenue), int(paid)) for rep_id, n, revenue, paid in rows}

    result = []
    for rep in reps:
        order_count, revenue, paid = billing.get(rep.id, (0, 0, 0))
        rate = round(paid * 100 / revenue, 2) if revenue else 0.0
        result.append({
            **rep.to_dict(),
            "shop_count": int(shop_counts.get(rep.id, 0)),
            "order_count": order_count,
            "total_revenue_cents": revenue,
            "avg_order_value_cents": revenue // order_count if order_count else 0,
            "collected_cents": paid,
            "outstanding_cents": revenue - paid,
            "collection_rate": rate,
            "performance_rating": performance_rating(rate),
        })
    return result
