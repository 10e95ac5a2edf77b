"""
Notification dispatcher.

Each lifecycle event has a fixed email template.  `{name}` placeholders in the
subject and body are replaced with values from the data passed to `send`;
placeholders without a value are left as they are.  Delivery goes through a
channel from `services.integration` and the outcome is always recorded.  A
failed delivery is a `failed` record, never an exception.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Union

from ..models.schemas import (
    DeliveryStatus,
    NotificationRecord,
    NotificationType,
    Order,
    OrderStatus,
    PaymentStatus,
    PrescriptionStatus,
)
from ..errors import NotFoundError
from .integration import DeliveryChannel, LoggingChannel
from .store import RecordStore

logger = logging.getLogger(__name__)


class Template(NamedTuple):
    subject: str
    html: str


TEMPLATES: Dict[NotificationType, Template] = {
    NotificationType.ORDER_CONFIRMED: Template(
        subject="Order Confirmed - #{orderId}",
        html=(
            "<h2>Your order has been confirmed!</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>Thank you for your order. We have received your payment and your order is now being processed.</p>\n"
            "<p><strong>Order Details:</strong></p>\n"
            "<ul>\n"
            "  <li>Order ID: {orderId}</li>\n"
            "  <li>Total: {totalAmount}</li>\n"
            "  <li>Items: {itemCount} items</li>\n"
            "</ul>\n"
            "<p>You can track your order status at any time by visiting your account.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.ORDER_PROCESSING: Template(
        subject="Order Processing - #{orderId}",
        html=(
            "<h2>Your order is being processed</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>Your order #{orderId} is now being prepared for shipment.</p>\n"
            "<p>We'll notify you once your order has been shipped.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.ORDER_SHIPPED: Template(
        subject="Order Shipped - #{orderId}",
        html=(
            "<h2>Your order has been shipped!</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>Great news! Your order #{orderId} has been shipped and is on its way to you.</p>\n"
            "<p><strong>Delivery Address:</strong><br>{shippingAddress}</p>\n"
            "<p>Expected delivery: 1-3 business days</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.ORDER_DELIVERED: Template(
        subject="Order Delivered - #{orderId}",
        html=(
            "<h2>Your order has been delivered!</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>Your order #{orderId} has been successfully delivered.</p>\n"
            "<p>If you have any questions or concerns, please don't hesitate to contact us.</p>\n"
            "<p>Thank you for choosing our pharmacy!</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.PRESCRIPTION_APPROVED: Template(
        subject="Prescription Approved - Order #{orderId}",
        html=(
            "<h2>Your prescription has been approved</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>Your prescription for order #{orderId} has been reviewed and approved by our licensed pharmacist.</p>\n"
            "<p>Your order will now proceed to processing and shipment.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.PRESCRIPTION_REJECTED: Template(
        subject="Prescription Requires Attention - Order #{orderId}",
        html=(
            "<h2>Prescription requires attention</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>We were unable to approve the prescription for order #{orderId}.</p>\n"
            "<p><strong>Reason:</strong> {rejectionReason}</p>\n"
            "<p>Please contact us or upload a new prescription to proceed with your order.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.PAYMENT_COMPLETED: Template(
        subject="Payment Received - Order #{orderId}",
        html=(
            "<h2>Payment received successfully</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>We have successfully received your payment for order #{orderId}.</p>\n"
            "<p><strong>Payment Details:</strong></p>\n"
            "<ul>\n"
            "  <li>Amount: {totalAmount}</li>\n"
            "  <li>Method: {paymentMethod}</li>\n"
            "  <li>Transaction ID: {transactionId}</li>\n"
            "</ul>\n"
            "<p>Your order will now be processed.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
    NotificationType.PAYMENT_FAILED: Template(
        subject="Payment Failed - Order #{orderId}",
        html=(
            "<h2>Payment could not be processed</h2>\n"
            "<p>Dear {customerName},</p>\n"
            "<p>We were unable to process the payment for order #{orderId}.</p>\n"
            "<p>Please try again or contact us for assistance.</p>\n"
            "<p>Best regards,<br>Your Pharmacy Team</p>"
        ),
    ),
}

# Order statuses without an entry (pending, cancelled) send nothing.
STATUS_NOTIFICATIONS: Dict[OrderStatus, NotificationType] = {
    OrderStatus.CONFIRMED: NotificationType.ORDER_CONFIRMED,
    OrderStatus.PROCESSING: NotificationType.ORDER_PROCESSING,
    OrderStatus.SHIPPED: NotificationType.ORDER_SHIPPED,
    OrderStatus.DELIVERED: NotificationType.ORDER_DELIVERED,
}


def _new_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def format_amount(amount: Decimal, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def render(text: str, data: Dict[str, Any]) -> str:
    for key, value in data.items():
        text = text.replace("{%s}" % key, str(value))
    return text


def order_context(order: Order) -> Dict[str, Any]:
    """Placeholder values shared by every order-related template."""
    return {
        "orderId": order.id,
        "customerName": order.shipping_info.full_name,
        "totalAmount": format_amount(order.final_total, order.payment_info.currency),
        "itemCount": len(order.items),
        "shippingAddress": f"{order.shipping_info.address}, {order.shipping_info.city}",
        "paymentMethod": order.payment_info.method.value.upper(),
        "transactionId": order.payment_info.transaction_id or "N/A",
    }


class NotificationDispatcher:
    def __init__(self, store: RecordStore, channel: Optional[DeliveryChannel] = None) -> None:
        self.store = store
        self.channel = channel or LoggingChannel()

    def send(
        self,
        notification_type: Union[NotificationType, str],
        recipient: str,
        data: Dict[str, Any],
    ) -> NotificationRecord:
        """Render, deliver and record one notification.

        An unknown type raises `ValueError` straight away; that is a bug in the
        caller, not a delivery problem.
        """
        notification_type = NotificationType(notification_type)
        template = TEMPLATES[notification_type]
        subject = render(template.subject, data)
        content = render(template.html, data)

        try:
            delivered = self.channel.deliver(recipient, subject, content)
        except Exception:
            logger.exception("Delivery of %s to %s raised", notification_type.value, recipient)
            delivered = False

        record = NotificationRecord(
            id=_new_id(),
            recipient=recipient,
            subject=subject,
            content=content,
            type=notification_type,
            order_id=str(data["orderId"]) if data.get("orderId") is not None else None,
            sent_at=datetime.utcnow(),
            status=DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED,
        )
        self.store.append_notification(record)
        if not delivered:
            logger.warning("Notification %s (%s) to %s failed", record.id, notification_type.value, recipient)
        return record

    def notify_order_status(self, order: Order, status: OrderStatus) -> Optional[NotificationRecord]:
        notification_type = STATUS_NOTIFICATIONS.get(status)
        if notification_type is None:
            return None
        return self.send(notification_type, order.shipping_info.email, order_context(order))

    def notify_prescription(
        self,
        order: Order,
        status: PrescriptionStatus,
        rejection_reason: Optional[str] = None,
    ) -> NotificationRecord:
        if status == PrescriptionStatus.APPROVED:
            notification_type = NotificationType.PRESCRIPTION_APPROVED
        elif status == PrescriptionStatus.REJECTED:
            notification_type = NotificationType.PRESCRIPTION_REJECTED
        else:
            raise ValueError(f"No prescription notification for status {status.value}")
        data = order_context(order)
        data["rejectionReason"] = rejection_reason or ""
        return self.send(notification_type, order.shipping_info.email, data)

    def notify_payment(self, order: Order, status: PaymentStatus) -> Optional[NotificationRecord]:
        if status == PaymentStatus.COMPLETED:
            notification_type = NotificationType.PAYMENT_COMPLETED
        elif status == PaymentStatus.FAILED:
            notification_type = NotificationType.PAYMENT_FAILED
        else:
            return None
        return self.send(notification_type, order.shipping_info.email, order_context(order))

    def history(self, order_id: Optional[str] = None) -> List[NotificationRecord]:
        records = self.store.list_notifications()
        if order_id is not None:
            records = [r for r in records if r.order_id == order_id]
        return records

    def resend(self, notification_id: str) -> NotificationRecord:
        """Deliver a recorded notification again, recording a new attempt.

        The earlier record is left untouched.
        """
        previous = self.store.get_notification(notification_id)
        if previous is None:
            raise NotFoundError("notification", notification_id)
        try:
            delivered = self.channel.deliver(previous.recipient, previous.subject, previous.content)
        except Exception:
            logger.exception("Redelivery of %s raised", notification_id)
            delivered = False
        record = previous.model_copy(
            update={
                "id": _new_id(),
                "sent_at": datetime.utcnow(),
                "status": DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED,
            }
        )
        self.store.append_notification(record)
        return record
