# Overview: Post-commit SMS notifications to shop owners; failures are reported, never raised.

"""
Notification Dispatcher

WHY: Shop owners get an SMS when an order is placed, approved or rejected
and when a payment is collected.

CONTRACT:
- Dispatch runs only AFTER the ledger transaction has committed
- A failed send never rolls back or fails the ledger operation; the
  result is folded into the operation's response as
  {"sms_sent": false, "sms_error": "..."}
- Phone numbers are normalized to international format before sending

The production gateway talks to the Text.lk v3 HTTP API via httpx. Tests
swap in a fake through app.extensions["sms_gateway"].
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from flask import current_app

from ..models import Order, Payment, Shop
from . import credit_service

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 1800
GATEWAY_EXTENSION_KEY = "sms_gateway"

_PHONE_PATTERN = re.compile(r"^\+\d{10,15}$")


class InvalidPhoneNumber(ValueError):
    """Raised when a phone number cannot be normalized."""


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class SmsSender(Protocol):
    def send(self, phone_number: str, message: str) -> SendResult: ...


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of a best-effort notification, reported next to the ledger result."""
    sent: bool
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "NotificationOutcome":
        return cls(sent=False, error=error)

    def to_dict(self) -> dict:
        return {"sms_sent": self.sent, "sms_error": self.error}


@dataclass(frozen=True)
class OperationResult:
    """A committed ledger mutation plus the outcome of its notification."""
    value: Any
    notification: NotificationOutcome | None = None

    def to_dict(self, key: str) -> dict:
        payload = {key: self.value.to_dict()}
        outcome = self.notification or NotificationOutcome.failed("No notification for this operation")
        payload.update(outcome.to_dict())
        return payload


# =============================================================================
# PHONE NUMBERS
# =============================================================================

def format_phone_number(phone_number: str | None, default_country_code: str = "94") -> str:
    """
    Normalize a stored phone number to +<country><subscriber>.

    - Strips everything except digits and a leading '+'
    - Local numbers starting with 0 get the default country code
    - Numbers already starting with the country code get a '+'
    - Bare 9-digit subscriber numbers get the default country code

    Raises:
        InvalidPhoneNumber: If the number is empty or not 10-15 digits after normalization
    """
    if not phone_number or not str(phone_number).strip():
        raise InvalidPhoneNumber("Phone number is required")

    cleaned = re.sub(r"[^\d+]", "", str(phone_number))

    if not cleaned.startswith("+"):
        if cleaned.startswith("0"):
            cleaned = f"+{default_country_code}{cleaned[1:]}"
        elif cleaned.startswith(default_country_code):
            cleaned = f"+{cleaned}"
        elif len(cleaned) == 9:
            cleaned = f"+{default_country_code}{cleaned}"
        else:
            cleaned = f"+{cleaned}"

    if not _PHONE_PATTERN.match(cleaned):
        raise InvalidPhoneNumber(f"Invalid phone number format: {phone_number}")

    return cleaned


# =============================================================================
# GATEWAY
# =============================================================================

class TextLkGateway:
    """SMS sender backed by the Text.lk v3 REST API."""

    def __init__(
        self,
        *,
        api_token: str | None,
        sender_id: str,
        base_url: str,
        default_country_code: str = "94",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.api_token = api_token
        self.sender_id = sender_id
        self.base_url = base_url.rstrip("/")
        self.default_country_code = default_country_code
        self.timeout = timeout
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def send(self, phone_number: str, message: str) -> SendResult:
        if not self.api_token:
            return SendResult(success=False, error="SMS API token not configured")

        try:
            recipient = format_phone_number(phone_number, self.default_country_code)
        except InvalidPhoneNumber as exc:
            return SendResult(success=False, error=str(exc))

        try:
            response = self._http().post(
                f"{self.base_url}/sms/send",
                json={
                    "recipient": recipient,
                    "sender_id": self.sender_id,
                    "type": "plain",
                    "message": message,
                },
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Accept": "application/json",
                },
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("SMS request to %s failed: %s", recipient, exc)
            return SendResult(success=False, error=str(exc) or "SMS request failed")

        if body.get("status") == "success":
            data = body.get("data") or {}
            return SendResult(success=True, message_id=data.get("uid"))

        error = body.get("message") or "Failed to send SMS"
        logger.warning("SMS rejected for %s: %s", recipient, error)
        return SendResult(success=False, error=error)


def init_app(app) -> None:
    """Build the configured gateway unless one was injected already."""
    if GATEWAY_EXTENSION_KEY in app.extensions:
        return
    app.extensions[GATEWAY_EXTENSION_KEY] = TextLkGateway(
        api_token=app.config.get("SMS_API_TOKEN"),
        sender_id=app.config.get("SMS_SENDER_ID", "MotionRep"),
        base_url=app.config.get("SMS_BASE_URL", "https://app.text.lk/api/v3"),
        default_country_code=app.config.get("SMS_DEFAULT_COUNTRY_CODE", "94"),
        timeout=app.config.get("SMS_TIMEOUT_SECONDS", 10.0),
    )


def get_gateway() -> SmsSender:
    return current_app.extensions[GATEWAY_EXTENSION_KEY]


# =============================================================================
# MESSAGE FORMATTING
# =============================================================================

def format_money(cents: int, currency: str = "LKR") -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(int(cents))
    return f"{sign}{cents // 100}.{cents % 100:02d} {currency}"


def _truncate(message: str) -> str:
    if len(message) > SMS_MAX_LENGTH:
        return message[:SMS_MAX_LENGTH - 3] + "..."
    return message


def _header(title: str, order: Order, shop: Shop) -> list[str]:
    lines = [title, ""]
    lines.append(f"Order ID: {order.id}")
    lines.append(f"Shop: {shop.name}")
    lines.append(f"Address: {shop.address or '-'}")
    if order.created_at:
        lines.append(f"Date: {order.created_at:%Y-%m-%d}")
        lines.append(f"Time: {order.created_at:%H:%M:%S}")
    lines.append("")
    return lines


def _item_lines(items: list[dict], currency: str) -> list[str]:
    lines = ["Order Items:"]
    for index, item in enumerate(items, start=1):
        lines.append(f"{index}. {item.get('product_name') or 'Unknown Product'}")
        lines.append(f"Qty: {item['quantity']} x {format_money(item['unit_price_cents'], currency)}")
        lines.append(f"Total: {format_money(item['line_total_cents'], currency)}")
        lines.append("")
    return lines


def format_order_message(order: Order, shop: Shop, items: list[dict], *, business_name: str, currency: str) -> str:
    lines = _header("Order Notification", order, shop)
    lines += _item_lines(items, currency)
    lines.append(f"Total Amount: {format_money(order.total_cents, currency)}")
    lines.append("")
    lines.append("Status: PENDING APPROVAL")
    lines.append("")
    if order.notes:
        lines += [f"Notes: {order.notes}", ""]
    lines.append("This is a draft order awaiting approval.")
    lines.append("Contact your sales representative for any queries.")
    lines.append("")
    lines.append(f"Thank you for choosing {business_name}!")
    return _truncate("\n".join(lines))


def format_approval_message(order: Order, shop: Shop, items: list[dict], *, business_name: str, currency: str) -> str:
    lines = _header("Order Approval Notification", order, shop)
    lines += ["ORDER APPROVED", ""]
    lines += _item_lines(items, currency)
    lines.append(f"Total Amount: {format_money(order.total_cents, currency)}")
    lines.append("")
    if order.notes:
        lines += [f"Notes: {order.notes}", ""]
    lines.append("Your order has been approved and is now active.")
    lines.append("Please arrange payment with your sales representative.")
    lines.append("")
    lines.append(f"Thank you for choosing {business_name}!")
    return _truncate("\n".join(lines))


def format_rejection_message(order: Order, shop: Shop, items: list[dict], *, business_name: str, currency: str) -> str:
    lines = _header("Order Rejection Notification", order, shop)
    lines += ["ORDER REJECTED", ""]
    lines += _item_lines(items, currency)
    lines.append(f"Total Amount: {format_money(order.total_cents, currency)}")
    lines.append("")
    if order.rejection_reason:
        lines += [f"Rejection Reason: {order.rejection_reason}", ""]
    if order.notes:
        lines += [f"Original Notes: {order.notes}", ""]
    lines.append("Your order has been rejected.")
    lines.append("Please contact your sales representative for more information.")
    lines.append("")
    lines.append(f"Thank you for choosing {business_name}!")
    return _truncate("\n".join(lines))


def format_payment_message(
    payment: Payment,
    order: Order,
    shop: Shop,
    *,
    collected_cents: int,
    remaining_bills: int,
    business_name: str,
    currency: str,
) -> str:
    lines = ["Payment Notification", ""]
    lines.append(f"Payment ID: {payment.id}")
    lines.append(f"Order ID: {order.id}")
    lines.append(f"Shop: {shop.name}")
    lines.append(f"Address: {shop.address or '-'}")
    lines.append(f"Date: {payment.created_at:%Y-%m-%d}")
    lines.append(f"Time: {payment.created_at:%H:%M:%S}")
    lines.append("")
    lines.append("Payment Details:")
    lines.append(f"Amount Paid: {format_money(payment.amount_cents, currency)}")
    lines.append(f"Order Total: {format_money(order.total_cents, currency)}")
    lines.append(f"Outstanding: {format_money(order.total_cents - collected_cents, currency)}")
    lines.append(f"Remaining Bills: {remaining_bills}")
    lines.append("")
    if payment.notes:
        lines += [f"Payment Notes: {payment.notes}", ""]
    lines.append("Thank you for your payment!")
    lines.append("Contact your sales representative for any queries.")
    lines.append("")
    lines.append(f"Thank you for choosing {business_name}!")
    return _truncate("\n".join(lines))


# =============================================================================
# DISPATCH
# =============================================================================

def _dispatch(event: str, shop: Shop | None, build_message) -> NotificationOutcome:
    """
    Send one SMS for a committed event.

    Any failure, including an unexpected exception from message building or
    the gateway, is logged and returned as a failed outcome.
    """
    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return NotificationOutcome.failed("Notifications disabled")

    if shop is None:
        return NotificationOutcome.failed("Shop not found")

    phone = shop.phone.strip() if isinstance(shop.phone, str) else shop.phone
    if not phone:
        return NotificationOutcome.failed("Shop phone number not available")

    try:
        message = build_message()
        result = get_gateway().send(phone, message)
    except Exception as exc:
        logger.exception("Failed to send %s notification for shop %s", event, shop.id)
        return NotificationOutcome.failed(str(exc) or "SMS sending failed")

    if result.success:
        return NotificationOutcome(sent=True)
    return NotificationOutcome.failed(result.error or "SMS sending failed")


def _labels() -> dict:
    return {
        "business_name": current_app.config.get("BUSINESS_NAME", "S.B Distribution"),
        "currency": current_app.config.get("CURRENCY_LABEL", "LKR"),
    }


def notify_order_created(order: Order) -> NotificationOutcome:
    return _dispatch(
        "order created",
        order.shop,
        lambda: format_order_message(order, order.shop, [i.snapshot() for i in order.items], **_labels()),
    )


def notify_order_approved(order: Order) -> NotificationOutcome:
    return _dispatch(
        "order approved",
        order.shop,
        lambda: format_approval_message(order, order.shop, [i.snapshot() for i in order.items], **_labels()),
    )


def notify_order_rejected(order: Order) -> NotificationOutcome:
    return _dispatch(
        "order rejected",
        order.shop,
        lambda: format_rejection_message(order, order.shop, [i.snapshot() for i in order.items], **_labels()),
    )


def notify_payment_recorded(payment: Payment, order: Order) -> NotificationOutcome:
    def build():
        return format_payment_message(
            payment,
            order,
            order.shop,
            collected_cents=credit_service.order_collected(order.id),
            remaining_bills=credit_service.remaining_bill_count(order.shop_id),
            **_labels(),
        )

    return _dispatch("payment recorded", order.shop, build)
