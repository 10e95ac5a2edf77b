"""
Order lifecycle engine.

Creates orders from checkout submissions and moves them through the status
state machine.  Every status change is written first; the customer
notification and the audit entry follow as best-effort side effects, so a
failed email never undoes a committed transition.

Statuses run pending, confirmed, processing, shipped, delivered, with
cancelled reachable from any of them.  A non-terminal status may move to any
other status, so staff can skip or step back.  `delivered` and `cancelled`
are terminal.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..config import settings
from ..enterprise.audit import AuditRecorder
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models.schemas import (
    TERMINAL_ORDER_STATUSES,
    Actor,
    Order,
    OrderCreate,
    OrderFilter,
    OrderStatus,
    PaymentInfo,
    PaymentMethod,
)
from .locks import KeyedLocks
from .notifications import NotificationDispatcher
from .prescriptions import new_prescription_file
from .store import RecordStore

logger = logging.getLogger(__name__)


def _next_timestamp(previous: datetime) -> datetime:
    """`utcnow()`, nudged forward if the clock has not moved past `previous`."""
    now = datetime.utcnow()
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


def check_totals(order_in: OrderCreate) -> None:
    """Raise `ValidationError` unless the caller's totals are consistent."""
    if not order_in.items:
        raise ValidationError("An order needs at least one item")
    subtotal = sum((item.line_total for item in order_in.items), start=0)
    if subtotal != order_in.total_amount:
        raise ValidationError(
            f"total_amount {order_in.total_amount} does not match the item subtotal {subtotal}"
        )
    if order_in.final_total != order_in.total_amount + order_in.delivery_fee:
        raise ValidationError(
            f"final_total {order_in.final_total} must equal total_amount + delivery_fee "
            f"({order_in.total_amount + order_in.delivery_fee})"
        )


class OrderService:
    def __init__(
        self,
        store: RecordStore,
        notifications: NotificationDispatcher,
        audit: AuditRecorder,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.audit = audit
        self.locks = locks or KeyedLocks()

    # -- creation -----------------------------------------------------------

    def create_order(self, order_in: OrderCreate) -> Order:
        """Validate and persist a checkout submission.

        Prescription uploads that come with the order are registered as
        pending prescriptions.  Nothing is sent or audited at creation.
        """
        check_totals(order_in)
        needs_prescription = any(item.requires_prescription for item in order_in.items)
        if needs_prescription and not order_in.prescription_files:
            raise ValidationError("Prescription files are required for prescription items")

        now = datetime.utcnow()
        mpesa_phone = None
        if order_in.payment_method == PaymentMethod.MPESA:
            mpesa_phone = order_in.mpesa_phone or order_in.shipping_info.phone

        order = Order(
            id=f"ORD-{uuid.uuid4().hex[:12].upper()}",
            user_id=order_in.user_id,
            items=order_in.items,
            shipping_info=order_in.shipping_info,
            payment_info=PaymentInfo(
                method=order_in.payment_method,
                mpesa_phone=mpesa_phone,
                amount=order_in.final_total,
                currency=order_in.currency or settings.CURRENCY,
            ),
            status=OrderStatus.PENDING,
            total_amount=order_in.total_amount,
            delivery_fee=order_in.delivery_fee,
            final_total=order_in.final_total,
            created_at=now,
            updated_at=now,
            delivery_instructions=order_in.delivery_instructions,
            prescription_files=[upload.file_name for upload in order_in.prescription_files],
        )
        self.store.put_order(order)
        for upload in order_in.prescription_files:
            self.store.put_prescription(new_prescription_file(order.id, upload.file_name, upload.file_size))

        logger.info("Order %s created for user %s (%s)", order.id, order.user_id, order.final_total)
        return order

    # -- reads --------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        order = self.store.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        orders = self.store.list_orders()
        if order_filter is None:
            return orders
        if order_filter.status is not None:
            orders = [o for o in orders if o.status == order_filter.status]
        if order_filter.user_id is not None:
            orders = [o for o in orders if o.user_id == order_filter.user_id]
        if order_filter.search:
            needle = order_filter.search.lower()
            orders = [
                o
                for o in orders
                if needle in o.id.lower()
                or needle in o.shipping_info.full_name.lower()
                or needle in o.shipping_info.email.lower()
            ]
        return orders

    # -- writes -------------------------------------------------------------

    def update_order_status(
        self, order_id: str, new_status: OrderStatus, actor: Optional[Actor] = None
    ) -> Order:
        """Move an order to `new_status`.

        Raises `NotFoundError` for an unknown id and `InvalidTransitionError`
        when leaving a terminal status or "moving" to the current one.  The
        audit entry is only written when `actor` is given.
        """
        new_status = OrderStatus(new_status)
        with self.locks.hold(order_id):
            order = self.get_order(order_id)
            old_status = order.status
            if old_status in TERMINAL_ORDER_STATUSES:
                raise InvalidTransitionError(f"Order {order_id} is {old_status.value} and can no longer change")
            if old_status == new_status:
                raise InvalidTransitionError(f"Order {order_id} is already {new_status.value}")
            order.status = new_status
            order.updated_at = _next_timestamp(order.updated_at)
            self.store.put_order(order)

        logger.info("Order %s: %s -> %s", order_id, old_status.value, new_status.value)
        self._after_status_change(order, old_status, actor)
        return order

    def update_payment_info(self, order_id: str, changes: Dict[str, Any]) -> Order:
        """Apply a gateway response to the order's payment details."""
        with self.locks.hold(order_id):
            order = self.get_order(order_id)
            order.payment_info = order.payment_info.model_copy(update=changes)
            order.updated_at = _next_timestamp(order.updated_at)
            self.store.put_order(order)
        logger.info("Order %s payment is %s", order_id, order.payment_info.status.value)
        return order

    def _after_status_change(self, order: Order, old_status: OrderStatus, actor: Optional[Actor]) -> None:
        try:
            self.notifications.notify_order_status(order, order.status)
        except Exception:
            logger.exception("Status notification for order %s could not be recorded", order.id)

        if actor is None:
            return
        try:
            self.audit.log_order_status_change(actor, order.id, old_status, order.status)
        except Exception:
            logger.exception("Audit entry for order %s could not be recorded", order.id)
