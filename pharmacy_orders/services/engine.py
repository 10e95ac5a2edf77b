"""
The order engine as the API sees it.

`PharmacyEngine` wires the record store, payment gateway, notification
dispatcher and audit recorder into the order, payment and prescription
services, and exposes the operations the HTTP layer calls.  Tests build it
with an in-memory store and a scripted gateway; the app builds it from
settings.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..config import Settings, settings as default_settings
from ..enterprise.audit import AuditRecorder
from ..models.schemas import (
    Actor,
    AuditLogEntry,
    EntityType,
    NotificationRecord,
    Order,
    OrderCreate,
    OrderFilter,
    OrderStatus,
    PaymentInitiation,
    PaymentOutcome,
    PaymentRequest,
    PaymentToken,
    PrescriptionDecision,
    PrescriptionFile,
)
from .integration import DeliveryChannel, SimulatedChannel
from .locks import KeyedLocks
from .notifications import NotificationDispatcher
from .orders import OrderService
from .payments import PaymentGateway, PaymentService, SimulatedPaymentGateway
from .prescriptions import PrescriptionService
from .store import RecordStore, build_store

logger = logging.getLogger(__name__)


class PharmacyEngine:
    def __init__(
        self,
        store: RecordStore,
        gateway: PaymentGateway,
        channel: Optional[DeliveryChannel] = None,
        audit_file: Optional[str] = None,
        **payment_options,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.notifications = NotificationDispatcher(store, channel)
        self.audit = AuditRecorder(store, audit_file)
        self.orders = OrderService(store, self.notifications, self.audit, KeyedLocks())
        self.payments = PaymentService(self.orders, gateway, self.notifications, **payment_options)
        self.prescriptions = PrescriptionService(store, self.notifications, self.audit, KeyedLocks())

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "PharmacyEngine":
        if config.PAYMENT_GATEWAY != "simulated":
            raise ValueError(f"Unsupported PAYMENT_GATEWAY {config.PAYMENT_GATEWAY!r}")
        gateway = SimulatedPaymentGateway(delay=config.PAYMENT_SIMULATED_DELAY)
        channel = SimulatedChannel(success_rate=config.NOTIFICATION_SUCCESS_RATE)
        logger.info("Building engine with %s payment gateway", config.PAYMENT_GATEWAY)
        return cls(
            build_store(),
            gateway,
            channel,
            audit_file=config.AUDIT_LOG_FILE,
            poll_attempts=config.PAYMENT_POLL_ATTEMPTS,
            poll_interval=config.PAYMENT_POLL_INTERVAL,
            poll_backoff=config.PAYMENT_POLL_BACKOFF,
        )

    # -- orders -------------------------------------------------------------

    def create_order(self, order_in: OrderCreate) -> Order:
        return self.orders.create_order(order_in)

    def get_order(self, order_id: str) -> Order:
        return self.orders.get_order(order_id)

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        return self.orders.list_orders(order_filter)

    def update_order_status(self, order_id: str, status: OrderStatus, actor: Optional[Actor] = None) -> Order:
        return self.orders.update_order_status(order_id, status, actor)

    # -- payments -----------------------------------------------------------

    def initiate_payment(self, order_id: str, request: PaymentRequest) -> PaymentInitiation:
        return self.payments.initiate_payment(order_id, request)

    def poll_payment_status(
        self, token: PaymentToken, payment_method_ref: Optional[str] = None, actor: Optional[Actor] = None
    ) -> PaymentOutcome:
        return self.payments.poll_payment_status(token, payment_method_ref, actor)

    def wait_for_payment(self, token: PaymentToken, payment_method_ref: Optional[str] = None, **options) -> PaymentOutcome:
        return self.payments.wait_for_payment(token, payment_method_ref, **options)

    # -- prescriptions ------------------------------------------------------

    def upload_prescription(self, order_id: str, file_name: str, file_size: int = 0) -> PrescriptionFile:
        return self.prescriptions.upload_prescription(order_id, file_name, file_size)

    def validate_prescription(
        self, prescription_id: str, decision: PrescriptionDecision, reviewer: Actor
    ) -> PrescriptionFile:
        return self.prescriptions.validate_prescription(prescription_id, decision, reviewer)

    def list_pending_prescriptions(self) -> List[PrescriptionFile]:
        return self.prescriptions.list_pending_prescriptions()

    def list_prescriptions_for_order(self, order_id: str) -> List[PrescriptionFile]:
        self.orders.get_order(order_id)
        return self.prescriptions.list_prescriptions_for_order(order_id)

    # -- notifications and audit --------------------------------------------

    def get_audit_trail(self, entity_type: EntityType, entity_id: Optional[str] = None) -> List[AuditLogEntry]:
        return self.audit.trail(entity_type, entity_id)

    def notification_history(self, order_id: Optional[str] = None) -> List[NotificationRecord]:
        return self.notifications.history(order_id)

    def resend_notification(self, notification_id: str) -> NotificationRecord:
        return self.notifications.resend(notification_id)
