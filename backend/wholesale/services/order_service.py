# Overview: Order lifecycle (create, edit, approve, reject) with credit checks and stock reconciliation.

"""
Order Lifecycle Service

WHY: Sales reps place orders on credit for their shops. An order must
never push a shop past its credit ceiling or its cap on unpaid bills, and
an administrator decides whether it becomes a bill.

LIFECYCLE:
1. create_order         -> PENDING (rep, credit-checked)
2. edit_pending_order   -> PENDING (owning rep, credit re-checked)
3. approve_order        -> APPROVED (admin, no stock movement)
   reject_order         -> REJECTED (admin, reason required, terminal)
4. edit_order_as_admin  -> any state; on APPROVED orders stock is
                           reconciled against the quantity change

The order and approval SMS can be resent on demand without touching the
ledger (resend_order_notification, resend_approval_notification).

CONCURRENCY:
- create/edit-pending hold the shop row lock for the whole
  check-then-insert sequence, so two orders for one shop cannot both pass
  a credit check that only one of them fits
- admin edits lock every affected product row in product_id order
- every mutation runs under run_with_retry; any LedgerError raised inside
  rolls the whole transaction back

Notifications are sent after commit and never affect the ledger result.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Order, OrderItem, Product, Shop, User
from ..models.orders import (
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REJECTED,
    VALID_ORDER_STATUSES,
)
from ..validation import MAX_AMOUNT_CENTS, MAX_QUANTITY, coerce_int
from . import audit_service, credit_service, notification_service
from .audit_service import (
    ItemSnapshot,
    OrderAdminEdited,
    OrderApproved,
    OrderCreated,
    OrderEdited,
    OrderRejected,
    OrderState,
    ProductStockAdjusted,
)
from .concurrency import lock_for_update, lock_row, run_with_retry
from .errors import (
    AccessDenied,
    ActiveBillCapExceeded,
    CreditLimitExceeded,
    IllegalStateTransition,
    InsufficientInventory,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from .notification_service import NotificationOutcome, OperationResult
from wholesale.time_utils import utcnow

MAX_REJECTION_REASON_LENGTH = 512


# =============================================================================
# ITEM VALIDATION
# =============================================================================

@dataclass(frozen=True)
class LineRequest:
    """A validated order line, ready to be written."""
    product: Product
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


def parse_items(items, fallback_prices: dict[int, int] | None = None) -> list[LineRequest]:
    """
    Validate a request's item list.

    Rules:
    - non-empty list of objects
    - product_id refers to an existing product (NotFoundError otherwise)
    - quantity is an integer between 1 and MAX_QUANTITY
    - unit_price_cents is an integer >= 0; when omitted, the fallback price
      for the product is used, then the catalog price
    - a product appears at most once
    - neither a line total nor the order total exceeds MAX_AMOUNT_CENTS

    Raises:
        ValidationError, NotFoundError
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Order items are required")

    fallback_prices = fallback_prices or {}
    seen: set[int] = set()
    lines = []

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {index + 1} must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"Item {index + 1} is missing product_id")

        product_id = coerce_int(item["product_id"], "product_id")
        if product_id in seen:
            raise ValidationError(
                f"Product {product_id} appears more than once",
                details={"product_id": product_id},
            )
        seen.add(product_id)

        if item.get("quantity") is None:
            raise ValidationError(f"Item {index + 1} is missing quantity")
        quantity = coerce_int(item["quantity"], "quantity")
        if quantity < 1:
            raise ValidationError("quantity must be at least 1", details={"product_id": product_id})
        if quantity > MAX_QUANTITY:
            raise ValidationError(
                f"quantity cannot exceed {MAX_QUANTITY}",
                details={"product_id": product_id},
            )

        product = db.session.get(Product, product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        if item.get("unit_price_cents") is None:
            unit_price = fallback_prices.get(product_id, product.unit_price_cents)
        else:
            unit_price = coerce_int(item["unit_price_cents"], "unit_price_cents")
        if unit_price < 0:
            raise ValidationError("unit_price_cents must be >= 0", details={"product_id": product_id})
        if unit_price > MAX_AMOUNT_CENTS:
            raise ValidationError(f"unit_price_cents cannot exceed {MAX_AMOUNT_CENTS}")

        line = LineRequest(product=product, quantity=quantity, unit_price_cents=unit_price)
        if line.line_total_cents > MAX_AMOUNT_CENTS:
            raise ValidationError(
                f"Line total cannot exceed {MAX_AMOUNT_CENTS} cents",
                details={"product_id": product_id, "line_total_cents": line.line_total_cents},
            )
        lines.append(line)

    order_total = sum(line.line_total_cents for line in lines)
    if order_total > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"Order total cannot exceed {MAX_AMOUNT_CENTS} cents",
            details={"total_cents": order_total},
        )
    return lines


def _clean_notes(notes) -> str | None:
    if notes is None:
        return None
    notes = str(notes).strip()
    return notes or None


def _order_state(order: Order) -> OrderState:
    return OrderState(
        total_cents=order.total_cents,
        notes=order.notes,
        items=tuple(ItemSnapshot(**item.snapshot()) for item in order.items),
    )


def _replace_items(order: Order, lines: list[LineRequest]) -> None:
    """Swap the order's lines and recompute its total."""
    order.items.clear()
    # Flush deletes first so the (order_id, product_id) constraint stays satisfied
    db.session.flush()
    for line in lines:
        order.items.append(OrderItem(
            product=line.product,
            product_id=line.product.id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_total_cents=line.line_total_cents,
        ))
    order.total_cents = sum(line.line_total_cents for line in lines)


def _check_credit(shop_id: int, order_total_cents: int, exclude_order_id: int | None = None) -> None:
    """
    Credit then active-bill check against live figures.

    Caller must hold the shop row lock.
    """
    state = credit_service.shop_credit_state(shop_id, exclude_order_id=exclude_order_id)

    if order_total_cents > state.available_credit_cents:
        raise CreditLimitExceeded(
            f"Order total exceeds available credit ({state.available_credit_cents} cents)",
            details={
                "order_total_cents": order_total_cents,
                "available_credit_cents": state.available_credit_cents,
                "outstanding_cents": state.outstanding_cents,
                "max_bill_amount_cents": state.max_bill_amount_cents,
            },
        )

    if state.active_bill_count >= state.max_active_bills:
        raise ActiveBillCapExceeded(
            f"Shop has reached the maximum number of active bills ({state.max_active_bills})",
            details={
                "active_bill_count": state.active_bill_count,
                "max_active_bills": state.max_active_bills,
            },
        )


def _lock_shop(shop_id: int) -> Shop:
    shop = lock_row(Shop, shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found")
    return shop


def _get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# SALES REP OPERATIONS
# =============================================================================

def create_order(shop_id: int, sales_rep_id: int, items, notes: str | None = None) -> OperationResult:
    """
    Place a PENDING order for a shop.

    Returns:
        OperationResult wrapping the Order and the "new order" SMS outcome

    Raises:
        ValidationError, NotFoundError, CreditLimitExceeded, ActiveBillCapExceeded
    """
    shop_id = coerce_int(shop_id, "shop_id")
    lines = parse_items(items)
    notes = _clean_notes(notes)
    total = sum(line.line_total_cents for line in lines)

    def _op() -> Order:
        _lock_shop(shop_id)
        _check_credit(shop_id, total)

        order = Order(
            shop_id=shop_id,
            sales_rep_id=sales_rep_id,
            status=ORDER_STATUS_PENDING,
            notes=notes,
            created_at=utcnow(),
        )
        db.session.add(order)
        _replace_items(order, lines)
        db.session.flush()

        audit_service.record_order_event(order.id, sales_rep_id, OrderCreated(
            shop_id=shop_id,
            total_cents=order.total_cents,
            notes=notes,
            status=ORDER_STATUS_PENDING,
            items=_order_state(order).items,
        ))
        db.session.commit()
        return order

    order = run_with_retry(_op)
    return OperationResult(order, notification_service.notify_order_created(order))


def edit_pending_order(order_id: int, sales_rep_id: int, items, notes: str | None = None) -> Order:
    """
    Replace the items (and notes) of the rep's own PENDING order.

    The credit checks are re-run against the state the edit would
    produce, leaving the order itself out of the figures.

    Raises:
        NotFoundError, AccessDenied, IllegalStateTransition, ValidationError,
        CreditLimitExceeded, ActiveBillCapExceeded
    """
    def _op() -> Order:
        order = _get_order(order_id, lock=True)
        if order.sales_rep_id != sales_rep_id:
            raise AccessDenied("Order does not belong to you")
        if order.status != ORDER_STATUS_PENDING:
            raise IllegalStateTransition(
                "Only pending orders can be edited",
                details={"status": order.status},
            )

        lines = parse_items(items)
        total = sum(line.line_total_cents for line in lines)

        _lock_shop(order.shop_id)
        _check_credit(order.shop_id, total, exclude_order_id=order.id)

        before = _order_state(order)
        _replace_items(order, lines)
        order.notes = _clean_notes(notes)
        db.session.flush()

        audit_service.record_order_event(order.id, sales_rep_id, OrderEdited(
            before=before,
            after=_order_state(order),
        ))
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# ADMIN OPERATIONS
# =============================================================================

def edit_order_as_admin(order_id: int, admin_id: int, items, notes: str | None = None) -> Order:
    """
    Replace the items of an order in any state.

    For APPROVED orders product stock follows the quantity change
    (stock -= new_qty - old_qty per product). A product whose stock would
    go negative aborts the entire edit. Credit limits are not re-checked,
    but the new total may not fall below what has already been collected.

    Raises:
        NotFoundError, ValidationError, InsufficientInventory, OverpaymentError
    """
    def _op() -> Order:
        order = _get_order(order_id, lock=True)
        existing_prices = {item.product_id: item.unit_price_cents for item in order.items}
        lines = parse_items(items, fallback_prices=existing_prices)

        before = _order_state(order)
        old_qty = {item.product_id: item.quantity for item in order.items}
        new_qty = {line.product.id: line.quantity for line in lines}

        adjustments = []
        if order.status == ORDER_STATUS_APPROVED:
            deltas = {
                pid: new_qty.get(pid, 0) - old_qty.get(pid, 0)
                for pid in set(old_qty) | set(new_qty)
            }
            for pid in sorted(pid for pid, delta in deltas.items() if delta != 0):
                product = lock_row(Product, pid)
                if not product:
                    raise NotFoundError(f"Product {pid} not found", details={"product_id": pid})
                delta = deltas[pid]
                if product.stock - delta < 0:
                    raise InsufficientInventory(
                        f"Insufficient stock for {product.name}",
                        details={
                            "product_id": pid,
                            "available": product.stock,
                            "requested": delta,
                        },
                    )
                previous_stock = product.stock
                product.stock = previous_stock - delta
                product.updated_at = utcnow()
                adjustments.append({
                    "product_id": pid,
                    "product_name": product.name,
                    "previous_stock": previous_stock,
                    "new_stock": product.stock,
                    "quantity_delta": delta,
                })

        _replace_items(order, lines)
        order.notes = _clean_notes(notes)

        if order.status == ORDER_STATUS_APPROVED:
            collected = credit_service.order_collected(order.id)
            if order.total_cents < collected:
                raise OverpaymentError(
                    "Edited total would fall below the amount already collected",
                    details={"new_total_cents": order.total_cents, "collected_cents": collected},
                )
        db.session.flush()

        audit_service.record_order_event(order.id, admin_id, OrderAdminEdited(
            before=before,
            after=_order_state(order),
            status=order.status,
            stock_adjustments=tuple(adjustments),
        ))
        for adj in adjustments:
            audit_service.record_product_event(adj["product_id"], admin_id, ProductStockAdjusted(
                order_id=order.id,
                previous_stock=adj["previous_stock"],
                new_stock=adj["new_stock"],
                quantity_delta=adj["quantity_delta"],
            ))
        db.session.commit()
        return order

    return run_with_retry(_op)


def approve_order(order_id: int, admin_id: int) -> OperationResult:
    """
    PENDING -> APPROVED. The order becomes a bill; stock is not touched.

    Raises:
        NotFoundError, IllegalStateTransition
    """
    def _op() -> Order:
        order = _get_order(order_id, lock=True)
        if order.status != ORDER_STATUS_PENDING:
            raise IllegalStateTransition(
                f"Only pending orders can be approved (status: {order.status})",
                details={"status": order.status},
            )

        previous = order.status
        order.status = ORDER_STATUS_APPROVED
        order.approved_by_user_id = admin_id
        order.approved_at = utcnow()

        audit_service.record_order_event(order.id, admin_id, OrderApproved(
            previous_status=previous,
            new_status=ORDER_STATUS_APPROVED,
            approved_by=admin_id,
            items_processed=len(order.items),
        ))
        db.session.commit()
        return order

    order = run_with_retry(_op)
    return OperationResult(order, notification_service.notify_order_approved(order))


def reject_order(order_id: int, admin_id: int, reason) -> OperationResult:
    """
    PENDING -> REJECTED, terminal.

    Raises:
        ValidationError: Blank or overly long reason
        NotFoundError, IllegalStateTransition
    """
    reason = str(reason).strip() if reason is not None else ""
    if not reason:
        raise ValidationError("Rejection reason is required")
    if len(reason) > MAX_REJECTION_REASON_LENGTH:
        raise ValidationError(f"Rejection reason exceeds max length {MAX_REJECTION_REASON_LENGTH}")

    def _op() -> Order:
        order = _get_order(order_id, lock=True)
        if order.status != ORDER_STATUS_PENDING:
            raise IllegalStateTransition(
                f"Only pending orders can be rejected (status: {order.status})",
                details={"status": order.status},
            )

        previous = order.status
        order.status = ORDER_STATUS_REJECTED
        order.rejection_reason = reason
        order.rejected_by_user_id = admin_id
        order.rejected_at = utcnow()

        audit_service.record_order_event(order.id, admin_id, OrderRejected(
            previous_status=previous,
            new_status=ORDER_STATUS_REJECTED,
            rejected_by=admin_id,
            rejection_reason=reason,
            items_count=len(order.items),
        ))
        db.session.commit()
        return order

    order = run_with_retry(_op)
    return OperationResult(order, notification_service.notify_order_rejected(order))


# =============================================================================
# NOTIFICATION RESEND
# =============================================================================

def resend_order_notification(order_id: int, sales_rep_id: int) -> NotificationOutcome:
    """
    Send the "new order" SMS again for the rep's own order.

    The ledger is not touched. A missing phone number or gateway failure
    comes back as a failed outcome, not an exception.

    Raises:
        NotFoundError, AccessDenied
    """
    order = _get_order(order_id)
    if order.sales_rep_id != sales_rep_id:
        raise AccessDenied("Order does not belong to you")
    return notification_service.notify_order_created(order)


def resend_approval_notification(order_id: int) -> NotificationOutcome:
    """
    Send the approval SMS again (admin).

    Raises:
        NotFoundError
        IllegalStateTransition: Order is not approved
    """
    order = _get_order(order_id)
    if order.status != ORDER_STATUS_APPROVED:
        raise IllegalStateTransition(
            "Approval notifications can only be sent for approved orders",
            details={"status": order.status},
        )
    return notification_service.notify_order_approved(order)


# =============================================================================
# QUERIES
# =============================================================================

def get_order_details(order_id: int) -> dict:
    """Order with shop, rep, item lines and its collected/outstanding figures."""
    order = _get_order(order_id)
    collected = credit_service.order_collected(order.id)
    rep = db.session.get(User, order.sales_rep_id)

    return {
        **order.to_dict(),
        "shop": order.shop.to_dict() if order.shop else None,
        "sales_rep": rep.to_dict() if rep else None,
        "items": [item.to_dict() for item in order.items],
        "collected_cents": collected,
        "outstanding_cents": order.total_cents - collected,
    }


def _listing(query) -> list[dict]:
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    shop_names = dict(
        db.session.query(Shop.id, Shop.name).filter(Shop.id.in_({o.shop_id for o in orders})).all()
    ) if orders else {}
    return [
        {
            **order.to_dict(),
            "shop_name": shop_names.get(order.shop_id),
            "items": [item.to_dict() for item in order.items],
        }
        for order in orders
    ]


def _check_status(status: str | None) -> None:
    if status is not None and status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}")


def list_orders_for_rep(sales_rep_id: int, status: str | None = None) -> list[dict]:
    _check_status(status)
    query = db.session.query(Order).filter(Order.sales_rep_id == sales_rep_id)
    if status:
        query = query.filter(Order.status == status)
    return _listing(query)


def list_all_orders(status: str | None = None) -> list[dict]:
    _check_status(status)
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    return _listing(query)


def get_pending_orders(sales_rep_id: int) -> list[dict]:
    return list_orders_for_rep(sales_rep_id, status=ORDER_STATUS_PENDING)


def pending_order_count(sales_rep_id: int) -> int:
    """Number of the rep's orders still awaiting a decision."""
    count = (
        db.session.query(db.func.count(Order.id))
        .filter(Order.sales_rep_id == sales_rep_id, Order.status == ORDER_STATUS_PENDING)
        .scalar()
    )
    return int(count or 0)
