"""
Prescription validation workflow.

A prescription starts `pending` and a pharmacist moves it once, to
`approved` or `rejected`.  A second decision on the same prescription is
refused.  The record is saved before the customer is notified and the
decision audited; those two side effects are best-effort.

`expired` exists as a status but nothing assigns it: there is no expiry sweep.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from ..enterprise.audit import AuditRecorder
from ..errors import NotFoundError, ValidationError
from ..models.schemas import Actor, PrescriptionDecision, PrescriptionFile, PrescriptionStatus
from .locks import KeyedLocks
from .notifications import NotificationDispatcher
from .store import RecordStore

logger = logging.getLogger(__name__)


def new_prescription_file(order_id: str, file_name: str, file_size: int = 0) -> PrescriptionFile:
    return PrescriptionFile(
        id=f"PRESC-{uuid.uuid4().hex[:12].upper()}",
        order_id=order_id,
        file_name=file_name,
        file_size=file_size,
        uploaded_at=datetime.utcnow(),
        status=PrescriptionStatus.PENDING,
    )


def check_decision(decision: PrescriptionDecision) -> None:
    if decision.is_valid:
        missing = [
            name
            for name in ("doctor_name", "license_number", "expiry_date")
            if not getattr(decision, name)
        ]
        if missing:
            raise ValidationError(f"Approval requires {', '.join(missing)}")
    elif not (decision.rejection_reason or "").strip():
        raise ValidationError("Rejection requires a rejection_reason")


class PrescriptionService:
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

    def upload_prescription(self, order_id: str, file_name: str, file_size: int = 0) -> PrescriptionFile:
        if self.store.get_order(order_id) is None:
            raise NotFoundError("order", order_id)
        if file_size < 0:
            raise ValidationError("file_size must not be negative")
        prescription = new_prescription_file(order_id, file_name, file_size)
        self.store.put_prescription(prescription)
        logger.info("Prescription %s uploaded for order %s", prescription.id, order_id)
        return prescription

    def get_prescription(self, prescription_id: str) -> PrescriptionFile:
        prescription = self.store.get_prescription(prescription_id)
        if prescription is None:
            raise NotFoundError("prescription", prescription_id)
        return prescription

    def list_pending_prescriptions(self) -> List[PrescriptionFile]:
        return [p for p in self.store.list_prescriptions() if p.status == PrescriptionStatus.PENDING]

    def list_prescriptions_for_order(self, order_id: str) -> List[PrescriptionFile]:
        return [p for p in self.store.list_prescriptions() if p.order_id == order_id]

    def validate_prescription(
        self, prescription_id: str, decision: PrescriptionDecision, reviewer: Actor
    ) -> PrescriptionFile:
        """Record a pharmacist's decision on a pending prescription.

        Raises `NotFoundError` for an unknown id and `ValidationError` when
        the decision is incomplete or the prescription was already decided.
        """
        with self.locks.hold(prescription_id):
            prescription = self.get_prescription(prescription_id)
            check_decision(decision)
            if prescription.status != PrescriptionStatus.PENDING:
                raise ValidationError(
                    f"Prescription {prescription_id} is already {prescription.status.value}"
                )
            if decision.is_valid:
                prescription = prescription.model_copy(
                    update={
                        "status": PrescriptionStatus.APPROVED,
                        "doctor_name": decision.doctor_name,
                        "license_number": decision.license_number,
                        "expiry_date": decision.expiry_date,
                    }
                )
            else:
                prescription = prescription.model_copy(
                    update={
                        "status": PrescriptionStatus.REJECTED,
                        "rejection_reason": decision.rejection_reason,
                    }
                )
            prescription.validated_by = reviewer.name
            prescription.validated_at = datetime.utcnow()
            self.store.put_prescription(prescription)

        logger.info("Prescription %s %s by %s", prescription_id, prescription.status.value, reviewer.user_id)
        self._after_decision(prescription, reviewer)
        return prescription

    def _after_decision(self, prescription: PrescriptionFile, reviewer: Actor) -> None:
        order = self.store.get_order(prescription.order_id)
        if order is None:
            logger.warning(
                "Prescription %s points at missing order %s; nothing to notify",
                prescription.id,
                prescription.order_id,
            )
            return

        failures = []
        try:
            self.notifications.notify_prescription(order, prescription.status, prescription.rejection_reason)
        except Exception:
            logger.exception("Prescription notification for %s could not be recorded", prescription.id)
            failures.append("notification")
        try:
            self.audit.log_prescription_validation(
                reviewer, order.id, prescription.id, prescription.status, prescription.rejection_reason
            )
        except Exception:
            logger.exception("Audit entry for prescription %s could not be recorded", prescription.id)
            failures.append("audit")
        if failures:
            logger.error(
                "Prescription %s was saved as %s but its %s failed",
                prescription.id,
                prescription.status.value,
                " and ".join(failures),
            )
