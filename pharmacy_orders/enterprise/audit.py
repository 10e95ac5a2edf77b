import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models.schemas import Actor, AuditLogEntry, EntityType, OrderStatus, PrescriptionStatus
from ..services.store import RecordStore

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Append-only trail of who changed what.

    Entries go to the record store.  When `audit_file` is set each entry is
    also written as one JSON line, for shipping to a log pipeline.
    """

    def __init__(self, store: RecordStore, audit_file: Optional[Union[str, Path]] = None):
        self.store = store
        self.audit_file = Path(audit_file) if audit_file else None

    def record(
        self,
        actor: Actor,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=f"AUDIT-{uuid.uuid4().hex[:12].upper()}",
            user_id=actor.user_id,
            user_name=actor.name,
            action=action,
            entity_type=EntityType(entity_type),
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
            timestamp=datetime.utcnow(),
            ip_address=actor.ip_address,
        )
        self.store.append_audit(entry)

        if self.audit_file is not None:
            with open(self.audit_file, "a") as f:
                f.write(entry.model_dump_json() + "\n")

        logger.info("Audit %s: %s %s by %s", entry.id, entry.entity_type.value, entity_id, actor.user_id)
        return entry

    def trail(self, entity_type: Optional[EntityType] = None, entity_id: Optional[str] = None) -> List[AuditLogEntry]:
        """Entries in the order they were recorded, optionally filtered."""
        entries = self.store.list_audit()
        if entity_type is not None:
            entries = [e for e in entries if e.entity_type == entity_type]
        if entity_id is not None:
            entries = [e for e in entries if e.entity_id == entity_id]
        return entries

    def log_order_status_change(
        self, actor: Actor, order_id: str, old_status: OrderStatus, new_status: OrderStatus
    ) -> AuditLogEntry:
        return self.record(
            actor,
            f"Order status changed from {old_status.value} to {new_status.value}",
            EntityType.ORDER,
            order_id,
            {"status": old_status.value},
            {"status": new_status.value},
        )

    def log_prescription_validation(
        self,
        actor: Actor,
        order_id: str,
        prescription_id: str,
        status: PrescriptionStatus,
        reason: Optional[str] = None,
    ) -> AuditLogEntry:
        action = f"Prescription {status.value}"
        if reason:
            action += f": {reason}"
        return self.record(
            actor,
            action,
            EntityType.PRESCRIPTION,
            prescription_id,
            {"status": PrescriptionStatus.PENDING.value},
            {"status": status.value, "reason": reason, "order_id": order_id},
        )
