from decimal import Decimal

import pytest

from pharmacy_orders.errors import NotFoundError
from pharmacy_orders.models.schemas import DeliveryStatus, NotificationType, PaymentStatus, PrescriptionStatus
from pharmacy_orders.services.integration import OutboxChannel
from pharmacy_orders.services.notifications import TEMPLATES, NotificationDispatcher, format_amount, render
from pharmacy_orders.services.store import InMemoryRecordStore


class RaisingChannel:
    def deliver(self, recipient, subject, content):
        raise ConnectionError("smtp relay unreachable")


@pytest.fixture
def dispatcher(store, outbox):
    return NotificationDispatcher(store, outbox)


def test_render_fills_known_placeholders_and_keeps_the_rest():
    assert render("Order #{orderId} for {customerName}", {"orderId": "ORD-1"}) == "Order #ORD-1 for {customerName}"


def test_format_amount():
    assert format_amount(Decimal("1500"), "KES") == "KES 1,500.00"


def test_every_notification_type_has_a_template():
    assert set(TEMPLATES) == set(NotificationType)
    for template in TEMPLATES.values():
        assert template._fields == ("subject", "html")
        assert "{orderId}" in template.subject
        assert "{customerName}" in template.html


def test_send_renders_delivers_and_records(dispatcher, store, outbox):
    record = dispatcher.send(
        NotificationType.ORDER_SHIPPED,
        "jane@example.com",
        {"orderId": "ORD-1", "customerName": "Jane", "shippingAddress": "12 Moi Avenue, Nairobi"},
    )

    assert record.id.startswith("NTF-")
    assert record.subject == "Order Shipped - #ORD-1"
    assert "Dear Jane" in record.content
    assert "12 Moi Avenue, Nairobi" in record.content
    assert record.order_id == "ORD-1"
    assert record.status == DeliveryStatus.SENT
    assert store.list_notifications() == [record]
    assert outbox.sent == [("jane@example.com", record.subject, record.content)]


def test_send_accepts_the_type_as_a_string(dispatcher):
    record = dispatcher.send("payment_failed", "jane@example.com", {"orderId": "ORD-1"})
    assert record.type == NotificationType.PAYMENT_FAILED


def test_unknown_type_is_a_caller_error(dispatcher, store):
    with pytest.raises(ValueError):
        dispatcher.send("order_lost", "jane@example.com", {"orderId": "ORD-1"})
    assert store.list_notifications() == []


def test_channel_failure_is_recorded_not_raised(store):
    dispatcher = NotificationDispatcher(store, OutboxChannel(fail=True))
    record = dispatcher.send(NotificationType.ORDER_CONFIRMED, "jane@example.com", {"orderId": "ORD-1"})

    assert record.status == DeliveryStatus.FAILED
    assert store.list_notifications()[0].status == DeliveryStatus.FAILED


def test_channel_exception_is_recorded_as_failed(store):
    dispatcher = NotificationDispatcher(store, RaisingChannel())
    record = dispatcher.send(NotificationType.ORDER_DELIVERED, "jane@example.com", {"orderId": "ORD-1"})

    assert record.status == DeliveryStatus.FAILED
    assert len(store.list_notifications()) == 1


def test_prescription_notification_needs_a_decided_status(engine, rx_order_in):
    order = engine.create_order(rx_order_in)
    with pytest.raises(ValueError):
        engine.notifications.notify_prescription(order, PrescriptionStatus.PENDING)


def test_payment_notification_only_for_settled_payments(engine, order_in):
    order = engine.create_order(order_in)

    assert engine.notifications.notify_payment(order, PaymentStatus.PROCESSING) is None
    record = engine.notifications.notify_payment(order, PaymentStatus.COMPLETED)
    assert record.type == NotificationType.PAYMENT_COMPLETED
    assert "MPESA" in record.content
    assert "KES 1,500.00" in record.content


def test_history_filters_by_order(dispatcher):
    dispatcher.send(NotificationType.ORDER_CONFIRMED, "a@example.com", {"orderId": "ORD-1"})
    dispatcher.send(NotificationType.ORDER_CONFIRMED, "b@example.com", {"orderId": "ORD-2"})
    dispatcher.send(NotificationType.ORDER_SHIPPED, "a@example.com", {"orderId": "ORD-1"})

    assert len(dispatcher.history()) == 3
    assert [n.type for n in dispatcher.history("ORD-1")] == [
        NotificationType.ORDER_CONFIRMED,
        NotificationType.ORDER_SHIPPED,
    ]


def test_resend_records_a_new_attempt():
    store = InMemoryRecordStore()
    channel = OutboxChannel(fail=True)
    dispatcher = NotificationDispatcher(store, channel)
    first = dispatcher.send(NotificationType.ORDER_CONFIRMED, "jane@example.com", {"orderId": "ORD-1"})

    channel.fail = False
    second = dispatcher.resend(first.id)

    assert second.id != first.id
    assert second.status == DeliveryStatus.SENT
    assert second.subject == first.subject
    assert [n.status for n in store.list_notifications()] == [DeliveryStatus.FAILED, DeliveryStatus.SENT]
    assert len(channel.sent) == 2


def test_resend_unknown_notification(dispatcher):
    with pytest.raises(NotFoundError):
        dispatcher.resend("NTF-MISSING")
