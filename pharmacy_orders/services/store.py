"""
Record store for orders, prescriptions, notifications and the audit log.

The engine only talks to the `RecordStore` interface.  `InMemoryRecordStore`
backs tests and demos; `SqlRecordStore` persists through SQLAlchemy.  Both
hand out copies, so callers can never change stored state through a
returned object.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import ContextManager, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models import database
from ..models.records import AuditLogRow, NotificationRow, OrderRow, PrescriptionRow
from ..models.schemas import AuditLogEntry, NotificationRecord, Order, PrescriptionFile

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Keyed storage with four collections.

    `orders` and `prescriptions` are get/put by id.  `notifications` and
    `audit_log` are append-only.
    """

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def put_order(self, order: Order) -> None:
        ...

    @abstractmethod
    def list_orders(self) -> List[Order]:
        ...

    @abstractmethod
    def get_prescription(self, prescription_id: str) -> Optional[PrescriptionFile]:
        ...

    @abstractmethod
    def put_prescription(self, prescription: PrescriptionFile) -> None:
        ...

    @abstractmethod
    def list_prescriptions(self) -> List[PrescriptionFile]:
        ...

    @abstractmethod
    def append_notification(self, notification: NotificationRecord) -> None:
        ...

    @abstractmethod
    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        ...

    @abstractmethod
    def list_notifications(self) -> List[NotificationRecord]:
        ...

    @abstractmethod
    def append_audit(self, entry: AuditLogEntry) -> None:
        ...

    @abstractmethod
    def list_audit(self) -> List[AuditLogEntry]:
        ...


class InMemoryRecordStore(RecordStore):
    """Process-local store.  Every read and write goes through a deep copy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._prescriptions: Dict[str, PrescriptionFile] = {}
        self._notifications: List[NotificationRecord] = []
        self._audit: List[AuditLogEntry] = []

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def put_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)

    def list_orders(self) -> List[Order]:
        with self._lock:
            return [o.model_copy(deep=True) for o in self._orders.values()]

    def get_prescription(self, prescription_id: str) -> Optional[PrescriptionFile]:
        with self._lock:
            p = self._prescriptions.get(prescription_id)
            return p.model_copy(deep=True) if p else None

    def put_prescription(self, prescription: PrescriptionFile) -> None:
        with self._lock:
            self._prescriptions[prescription.id] = prescription.model_copy(deep=True)

    def list_prescriptions(self) -> List[PrescriptionFile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._prescriptions.values()]

    def append_notification(self, notification: NotificationRecord) -> None:
        with self._lock:
            if any(n.id == notification.id for n in self._notifications):
                raise ValueError(f"Notification {notification.id} already recorded")
            self._notifications.append(notification.model_copy(deep=True))

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for n in self._notifications:
                if n.id == notification_id:
                    return n.model_copy(deep=True)
            return None

    def list_notifications(self) -> List[NotificationRecord]:
        with self._lock:
            return [n.model_copy(deep=True) for n in self._notifications]

    def append_audit(self, entry: AuditLogEntry) -> None:
        with self._lock:
            if any(e.id == entry.id for e in self._audit):
                raise ValueError(f"Audit entry {entry.id} already recorded")
            self._audit.append(entry.model_copy(deep=True))

    def list_audit(self) -> List[AuditLogEntry]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._audit]


class SqlRecordStore(RecordStore):
    """SQLAlchemy-backed store; one session per operation."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory or database.SessionLocal

    def _session(self) -> ContextManager[Session]:
        return database.get_db(self.session_factory)

    def create_tables(self) -> None:
        database.Base.metadata.create_all(bind=self.session_factory.kw["bind"])

    # -- orders -------------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._session() as db:
            row = db.get(OrderRow, order_id)
            return Order.model_validate(row) if row else None

    def put_order(self, order: Order) -> None:
        data = order.model_dump(mode="json")
        with self._session() as db:
            db.merge(
                OrderRow(
                    id=order.id,
                    user_id=order.user_id,
                    items=data["items"],
                    shipping_info=data["shipping_info"],
                    payment_info=data["payment_info"],
                    status=order.status,
                    total_amount=order.total_amount,
                    delivery_fee=order.delivery_fee,
                    final_total=order.final_total,
                    delivery_instructions=order.delivery_instructions,
                    prescription_files=list(order.prescription_files),
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                )
            )

    def list_orders(self) -> List[Order]:
        with self._session() as db:
            rows = db.query(OrderRow).order_by(OrderRow.created_at, OrderRow.id).all()
            return [Order.model_validate(r) for r in rows]

    # -- prescriptions ------------------------------------------------------

    def get_prescription(self, prescription_id: str) -> Optional[PrescriptionFile]:
        with self._session() as db:
            row = db.get(PrescriptionRow, prescription_id)
            return PrescriptionFile.model_validate(row) if row else None

    def put_prescription(self, prescription: PrescriptionFile) -> None:
        with self._session() as db:
            db.merge(PrescriptionRow(**prescription.model_dump()))

    def list_prescriptions(self) -> List[PrescriptionFile]:
        with self._session() as db:
            rows = db.query(PrescriptionRow).order_by(PrescriptionRow.uploaded_at, PrescriptionRow.id).all()
            return [PrescriptionFile.model_validate(r) for r in rows]

    # -- append-only collections -------------------------------------------

    def append_notification(self, notification: NotificationRecord) -> None:
        with self._session() as db:
            db.add(NotificationRow(**notification.model_dump()))

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._session() as db:
            row = db.query(NotificationRow).filter(NotificationRow.id == notification_id).first()
            return NotificationRecord.model_validate(row) if row else None

    def list_notifications(self) -> List[NotificationRecord]:
        with self._session() as db:
            rows = db.query(NotificationRow).order_by(NotificationRow.seq).all()
            return [NotificationRecord.model_validate(r) for r in rows]

    def append_audit(self, entry: AuditLogEntry) -> None:
        data = entry.model_dump()
        # JSON columns need plain values
        plain = entry.model_dump(mode="json", include={"old_value", "new_value"})
        data.update(plain)
        with self._session() as db:
            db.add(AuditLogRow(**data))

    def list_audit(self) -> List[AuditLogEntry]:
        with self._session() as db:
            rows = db.query(AuditLogRow).order_by(AuditLogRow.seq).all()
            return [AuditLogEntry.model_validate(r) for r in rows]


def build_store() -> RecordStore:
    """Create the configured SQL store and make sure its tables exist."""
    store = SqlRecordStore()
    store.create_tables()
    logger.info("Record store ready on %s", database.DATABASE_URL)
    return store
