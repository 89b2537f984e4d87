# Overview: Records collections against approved orders and reports a rep's collection history.

"""
Payment Recorder Service

WHY: Sales reps collect cash against approved bills in the field. A
collection must never exceed what the shop still owes on that bill.

DESIGN PRINCIPLES:
- Payments are immutable; there is no edit or delete
- The order row is locked before the collected total is read, so two
  concurrent collections cannot both fit into the same outstanding balance
- Amounts are integer cents, strictly positive
- The audit row is written in the same transaction as the payment
- The payment SMS is sent after commit and reported as sms_sent/sms_error
"""

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import Order, Payment, Shop, User
from ..models.orders import ORDER_STATUS_APPROVED
from ..validation import MAX_AMOUNT_CENTS, coerce_int
from . import audit_service, credit_service, notification_service
from .audit_service import PaymentRecorded
from .concurrency import lock_row, run_with_retry
from .errors import (
    AccessDenied,
    IllegalStateTransition,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from .notification_service import NotificationOutcome, OperationResult
from wholesale.time_utils import start_of_day, to_utc_z, utcnow


def record_payment(order_id: int, sales_rep_id: int, amount_cents, notes: str | None = None) -> OperationResult:
    """
    Record a collection against an APPROVED order owned by the rep.

    Args:
        order_id: Order being paid
        sales_rep_id: Collecting rep; must be the order's rep
        amount_cents: Positive integer amount
        notes: Optional free text

    Returns:
        OperationResult wrapping the Payment and the payment SMS outcome

    Raises:
        ValidationError: Non-integer or non-positive amount
        NotFoundError: Unknown order
        IllegalStateTransition: Order is not approved
        AccessDenied: Caller is not the order's rep
        OverpaymentError: Amount exceeds the order's outstanding balance
    """
    if amount_cents is None:
        raise ValidationError("amount_cents is required")
    amount = coerce_int(amount_cents, "amount_cents")
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_AMOUNT_CENTS}")
    notes = (str(notes).strip() or None) if notes is not None else None

    def _op() -> Payment:
        order = lock_row(Order, order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != ORDER_STATUS_APPROVED:
            raise IllegalStateTransition(
                "Payments can only be recorded against approved orders",
                details={"status": order.status},
            )
        if order.sales_rep_id != sales_rep_id:
            raise AccessDenied("Order does not belong to you")

        collected = credit_service.order_collected(order.id)
        outstanding = order.total_cents - collected
        if amount > outstanding:
            raise OverpaymentError(
                f"Payment amount exceeds outstanding balance ({outstanding} cents)",
                details={"amount_cents": amount, "outstanding_cents": outstanding},
            )

        payment = Payment(
            order_id=order.id,
            sales_rep_id=sales_rep_id,
            amount_cents=amount,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        audit_service.record_payment_event(payment.id, order.id, sales_rep_id, PaymentRecorded(
            amount_cents=amount,
            notes=notes,
            order_total_cents=order.total_cents,
            previous_collected_cents=collected,
            new_outstanding_cents=outstanding - amount,
        ))
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    order = db.session.get(Order, payment.order_id)
    return OperationResult(payment, notification_service.notify_payment_recorded(payment, order))


def resend_payment_notification(payment_id: int, sales_rep_id: int) -> NotificationOutcome:
    """
    Send the payment SMS again for a collection the rep recorded.

    Raises:
        NotFoundError, AccessDenied
    """
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    if payment.sales_rep_id != sales_rep_id:
        raise AccessDenied("Payment does not belong to you")
    return notification_service.notify_payment_recorded(payment, payment.order)


# =============================================================================
# QUERIES
# =============================================================================

def get_order_payments(order_id: int) -> list[dict]:
    """Payments of an order, newest first, with the collecting rep's name."""
    if not db.session.get(Order, order_id):
        raise NotFoundError(f"Order {order_id} not found")

    rows = (
        db.session.query(Payment, User)
        .outerjoin(User, User.id == Payment.sales_rep_id)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return [
        {
            **payment.to_dict(),
            "sales_rep_first_name": user.first_name if user else None,
            "sales_rep_last_name": user.last_name if user else None,
        }
        for payment, user in rows
    ]


def get_payment_details(payment_id: int) -> dict:
    """Payment receipt data: payment, order, shop, rep and the shop's open bill count."""
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")

    order = payment.order
    shop = order.shop
    rep = db.session.get(User, payment.sales_rep_id)

    return {
        "payment": {**payment.to_dict(), "collected_cents": credit_service.order_collected(order.id)},
        "order": {
            "id": order.id,
            "total_cents": order.total_cents,
            "status": order.status,
            "created_at": to_utc_z(order.created_at),
        },
        "shop": {"id": shop.id, "name": shop.name, "address": shop.address, "phone": shop.phone},
        "sales_rep": {
            "id": rep.id,
            "first_name": rep.first_name,
            "last_name": rep.last_name,
        } if rep else None,
        "remaining_bills": credit_service.remaining_bill_count(shop.id),
    }


def representative_collections(sales_rep_id: int) -> list[dict]:
    """
    Every payment the rep collected, newest first.

    Each entry carries the order's outstanding balance just before and
    just after that payment.
    """
    rows = (
        db.session.query(Payment, Order, Shop)
        .join(Order, Order.id == Payment.order_id)
        .join(Shop, Shop.id == Order.shop_id)
        .filter(Payment.sales_rep_id == sales_rep_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    if not rows:
        return []

    # Running collected total per order, in recording order
    order_ids = {order.id for _, order, _ in rows}
    collected_before: dict[int, int] = {}
    running: dict[int, int] = {}
    history = (
        db.session.query(Payment.id, Payment.order_id, Payment.amount_cents)
        .filter(Payment.order_id.in_(order_ids))
        .order_by(Payment.created_at, Payment.id)
        .all()
    )
    for pid, oid, amount in history:
        collected_before[pid] = running.get(oid, 0)
        running[oid] = running.get(oid, 0) + amount

    result = []
    for payment, order, shop in rows:
        before = order.total_cents - collected_before.get(payment.id, 0)
        result.append({
            "payment_id": payment.id,
            "amount_cents": payment.amount_cents,
            "notes": payment.notes,
            "created_at": to_utc_z(payment.created_at),
            "order_id": order.id,
            "order_total_cents": order.total_cents,
            "order_status": order.status,
            "shop": {"id": shop.id, "name": shop.name, "address": shop.address, "phone": shop.phone},
            "outstanding_before_cents": before,
            "outstanding_after_cents": before - payment.amount_cents,
        })
    return result


def representative_collection_stats(sales_rep_id: int, now=None) -> dict:
    """Totals for the rep: all time, today and the current month."""
    now = now or utcnow()
    today = start_of_day(now)
    month_start = today.replace(day=1)

    def _totals(since=None) -> tuple[int, int]:
        query = db.session.query(
            db.func.count(Payment.id),
            db.func.coalesce(db.func.sum(Payment.amount_cents), 0),
        ).filter(Payment.sales_rep_id == sales_rep_id)
        if since is not None:
            query = query.filter(Payment.created_at >= since, Payment.created_at < today + timedelta(days=1))
        count, amount = query.one()
        return int(count or 0), int(amount or 0)

    total_count, total_amount = _totals()
    today_count, today_amount = _totals(today)
    month_count, month_amount = _totals(month_start)

    unique = (
        db.session.query(
            db.func.count(db.distinct(Order.shop_id)),
            db.func.count(db.distinct(Order.id)),
        )
        .join(Payment, Payment.order_id == Order.id)
        .filter(Payment.sales_rep_id == sales_rep_id)
        .one()
    )

    return {
        "total_collections": total_count,
        "total_amount_collected_cents": total_amount,
        "unique_shops": int(unique[0] or 0),
        "unique_orders": int(unique[1] or 0),
        "average_collection_cents": total_amount // total_count if total_count else 0,
        "today": {"collections": today_count, "amount_cents": today_amount},
        "this_month": {"collections": month_count, "amount_cents": month_amount},
    }
