"""
Payment recorder tests.

Verifies:
- Collections never exceed the outstanding balance
- Only the owning rep can collect, and only on approved orders
- Audit payload and SMS outcome
- Collection history and stats
- Payment SMS can be resent by the collecting rep
"""

from datetime import timedelta

import pytest

from wholesale.extensions import db
from wholesale.models import Payment, PaymentLog
from wholesale.services import credit_service, order_service, payment_service
from wholesale.services.errors import (
    AccessDenied,
    IllegalStateTransition,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from wholesale.time_utils import utcnow


def test_records_payment_and_audit(gateway, rep, approved_order):
    order = approved_order(quantity=10)   # 1000

    result = payment_service.record_payment(order.id, rep.id, 400, notes=" cash ")
    payment = result.value

    assert payment.amount_cents == 400
    assert payment.notes == "cash"
    assert credit_service.order_outstanding(order) == 600

    log = db.session.query(PaymentLog).filter_by(payment_id=payment.id).one()
    assert log.action == "record"
    assert log.order_id == order.id
    assert log.details == {
        "amount_cents": 400,
        "notes": "cash",
        "order_total_cents": 1000,
        "previous_collected_cents": 0,
        "new_outstanding_cents": 600,
    }


def test_overpayment_rejected(gateway, rep, approved_order):
    order = approved_order(quantity=10)
    payment_service.record_payment(order.id, rep.id, 700)

    with pytest.raises(OverpaymentError) as exc:
        payment_service.record_payment(order.id, rep.id, 301)
    assert exc.value.details["outstanding_cents"] == 300

    # Paying exactly the balance is fine
    payment_service.record_payment(order.id, rep.id, 300)
    assert credit_service.order_outstanding(order) == 0
    with pytest.raises(OverpaymentError):
        payment_service.record_payment(order.id, rep.id, 1)


@pytest.mark.parametrize("amount", [0, -5, 1.5, "abc", None, True])
def test_invalid_amount(gateway, rep, approved_order, amount):
    order = approved_order(quantity=10)
    with pytest.raises(ValidationError):
        payment_service.record_payment(order.id, rep.id, amount)
    assert db.session.query(Payment).count() == 0


def test_pending_order_cannot_be_paid(gateway, rep, shop, product):
    order = order_service.create_order(shop.id, rep.id, [{"product_id": product.id, "quantity": 1}]).value
    with pytest.raises(IllegalStateTransition):
        payment_service.record_payment(order.id, rep.id, 50)


def test_other_rep_cannot_collect(gateway, other_rep, approved_order):
    order = approved_order(quantity=10)
    with pytest.raises(AccessDenied):
        payment_service.record_payment(order.id, other_rep.id, 50)


def test_unknown_order(gateway, rep):
    with pytest.raises(NotFoundError):
        payment_service.record_payment(999_999, rep.id, 50)


def test_payment_sms_reports_remaining_bills(gateway, rep, approved_order):
    first = approved_order(quantity=10)
    approved_order(quantity=5)

    result = payment_service.record_payment(first.id, rep.id, 1000)

    assert result.to_dict("payment")["sms_sent"] is True
    message = gateway.sent[-1][1]
    assert "Payment Notification" in message
    assert "Amount Paid: 10.00 LKR" in message
    assert "Outstanding: 0.00 LKR" in message
    assert "Remaining Bills: 1" in message


def test_sms_failure_flagged_not_raised(gateway, rep, approved_order):
    order = approved_order(quantity=10)
    gateway.fail_with = "Insufficient SMS credits"

    result = payment_service.record_payment(order.id, rep.id, 100)

    assert result.to_dict("payment")["sms_sent"] is False
    assert result.to_dict("payment")["sms_error"] == "Insufficient SMS credits"
    assert db.session.get(Payment, result.value.id) is not None


def test_order_payments_and_details(gateway, rep, shop, approved_order):
    order = approved_order(quantity=10)
    payment_service.record_payment(order.id, rep.id, 100)
    second = payment_service.record_payment(order.id, rep.id, 200).value

    payments = payment_service.get_order_payments(order.id)
    assert [p["amount_cents"] for p in payments] == [200, 100]
    assert payments[0]["sales_rep_first_name"] == rep.first_name

    details = payment_service.get_payment_details(second.id)
    assert details["payment"]["collected_cents"] == 300
    assert details["order"]["total_cents"] == 1000
    assert details["shop"]["name"] == shop.name
    assert details["remaining_bills"] == 1

    with pytest.raises(NotFoundError):
        payment_service.get_payment_details(999_999)


def test_representative_collections_running_balance(gateway, rep, approved_order):
    order = approved_order(quantity=10)
    payment_service.record_payment(order.id, rep.id, 100)
    payment_service.record_payment(order.id, rep.id, 250)

    collections = payment_service.representative_collections(rep.id)

    # Newest first
    assert [c["amount_cents"] for c in collections] == [250, 100]
    assert collections[0]["outstanding_before_cents"] == 900
    assert collections[0]["outstanding_after_cents"] == 650
    assert collections[1]["outstanding_before_cents"] == 1000
    assert collections[1]["outstanding_after_cents"] == 900


def test_collection_stats(gateway, rep, approved_order):
    order = approved_order(quantity=10)
    payment_service.record_payment(order.id, rep.id, 100)
    payment_service.record_payment(order.id, rep.id, 300)

    # Push one payment into a previous month
    old = db.session.query(Payment).filter_by(amount_cents=100).one()
    old.created_at = utcnow() - timedelta(days=40)
    db.session.commit()

    stats = payment_service.representative_collection_stats(rep.id)
    assert stats["total_collections"] == 2
    assert stats["total_amount_collected_cents"] == 400
    assert stats["unique_orders"] == 1
    assert stats["unique_shops"] == 1
    assert stats["average_collection_cents"] == 200
    assert stats["today"] == {"collections": 1, "amount_cents": 300}
    assert stats["this_month"] == {"collections": 1, "amount_cents": 300}


def test_collection_stats_empty(db_session, rep):
    stats = payment_service.representative_collection_stats(rep.id)
    assert stats["total_collections"] == 0
    assert stats["average_collection_cents"] == 0


def test_resend_payment_notification(gateway, rep, shop, approved_order):
    order = approved_order(quantity=10)
    payment = payment_service.record_payment(order.id, rep.id, 400).value
    sent_before = len(gateway.sent)

    outcome = payment_service.resend_payment_notification(payment.id, rep.id)

    assert outcome.sent is True
    assert len(gateway.sent) == sent_before + 1
    phone, message = gateway.sent[-1]
    assert phone == shop.phone
    assert f"Payment ID: {payment.id}" in message
    assert db.session.query(Payment).count() == 1
    assert db.session.query(PaymentLog).count() == 1


def test_resend_payment_notification_other_rep(gateway, rep, other_rep, approved_order):
    order = approved_order(quantity=10)
    payment = payment_service.record_payment(order.id, rep.id, 400).value

    with pytest.raises(AccessDenied):
        payment_service.resend_payment_notification(payment.id, other_rep.id)


def test_resend_payment_notification_missing(db_session, rep):
    with pytest.raises(NotFoundError):
        payment_service.resend_payment_notification(999_999, rep.id)


def test_resend_payment_notification_gateway_failure(gateway, rep, approved_order):
    order = approved_order(quantity=10)
    payment = payment_service.record_payment(order.id, rep.id, 400).value
    gateway.fail_with = "Insufficient balance"

    outcome = payment_service.resend_payment_notification(payment.id, rep.id)
    assert outcome.to_dict() == {"sms_sent": False, "sms_error": "Insufficient balance"}
