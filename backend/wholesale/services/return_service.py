# Overview: Applies shop returns to approved orders by shrinking or removing order lines.

"""
Return Processor Service

WHY: Shops hand back goods from approved bills. The bill shrinks
accordingly: returned quantity comes off the line, and a line that reaches
zero is removed.

DESIGN PRINCIPLES:
- Only the owning rep can return against an APPROVED order
- Returned quantity never exceeds what is left on the line
- The order total is recomputed from the remaining lines
- A return may not drop the total below what has already been collected
- Stock is NOT restored by a return
- The order row is locked for the whole operation
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order
from ..models.orders import ORDER_STATUS_APPROVED
from ..validation import coerce_int
from . import audit_service, credit_service
from .audit_service import OrderReturned, ReturnedItem
from .concurrency import lock_row, run_with_retry
from .errors import (
    AccessDenied,
    IllegalStateTransition,
    NotFoundError,
    OverpaymentError,
    ReturnQuantityExceeded,
    ValidationError,
)


def _parse_return_items(items) -> list[tuple[int, int]]:
    """Validate (product_id, quantity) pairs; duplicates are rejected."""
    parsed = []
    seen: set[int] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict) or item.get("product_id") is None:
            raise ValidationError(f"Return item {index + 1} is missing product_id")
        product_id = coerce_int(item["product_id"], "product_id")
        if product_id in seen:
            raise ValidationError(
                f"Product {product_id} appears more than once",
                details={"product_id": product_id},
            )
        seen.add(product_id)

        if item.get("quantity") is None:
            raise ValidationError(f"Return item {index + 1} is missing quantity")
        quantity = coerce_int(item["quantity"], "quantity")
        if quantity <= 0:
            raise ValidationError("Return quantity must be positive", details={"product_id": product_id})
        parsed.append((product_id, quantity))
    return parsed


def record_return(order_id: int, sales_rep_id: int, items) -> Order:
    """
    Take returned goods off an approved order.

    Args:
        order_id: Approved order the goods came from
        sales_rep_id: Rep processing the return; must own the order
        items: [{"product_id": ..., "quantity": ...}, ...]

    Returns:
        The updated Order

    Raises:
        ValidationError: Empty list, bad quantity, duplicate product
        NotFoundError: Unknown order, or product not on the order
        IllegalStateTransition: Order is not approved
        AccessDenied: Caller is not the order's rep
        ReturnQuantityExceeded: Quantity larger than the line's quantity
        OverpaymentError: New total would be below the collected amount
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Return items are required")

    def _op() -> Order:
        order = lock_row(Order, order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != ORDER_STATUS_APPROVED:
            raise IllegalStateTransition(
                "Returns are allowed only for approved orders",
                details={"status": order.status},
            )
        if order.sales_rep_id != sales_rep_id:
            raise AccessDenied("Order does not belong to you")

        requested = _parse_return_items(items)
        lines = {item.product_id: item for item in order.items}
        previous_total = order.total_cents
        returned = []

        for product_id, quantity in requested:
            line = lines.get(product_id)
            if line is None:
                raise NotFoundError(
                    f"Product {product_id} is not on order {order.id}",
                    details={"product_id": product_id},
                )
            if quantity > line.quantity:
                raise ReturnQuantityExceeded(
                    "Return quantity exceeds ordered quantity",
                    details={"product_id": product_id, "requested": quantity, "available": line.quantity},
                )

            returned.append(ReturnedItem(
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=line.unit_price_cents,
                product_name=line.product.name if line.product else None,
            ))
            remaining = line.quantity - quantity
            if remaining > 0:
                line.set_quantity(remaining)
            else:
                order.items.remove(line)

        order.total_cents = sum(item.line_total_cents for item in order.items)

        collected = credit_service.order_collected(order.id)
        if order.total_cents < collected:
            raise OverpaymentError(
                "Return would reduce the order below the amount already collected",
                details={"new_total_cents": order.total_cents, "collected_cents": collected},
            )
        db.session.flush()

        audit_service.record_order_event(order.id, sales_rep_id, OrderReturned(
            returned_items=tuple(returned),
            previous_total_cents=previous_total,
            new_total_cents=order.total_cents,
        ))
        db.session.commit()
        return order

    return run_with_retry(_op)
