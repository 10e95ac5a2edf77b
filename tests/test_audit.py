import json

from pharmacy_orders.enterprise.audit import AuditRecorder
from pharmacy_orders.models.schemas import Actor, EntityType, OrderStatus, PrescriptionStatus


def test_entries_keep_their_order_and_filter(store, admin):
    audit = AuditRecorder(store)
    audit.log_order_status_change(admin, "ORD-1", OrderStatus.PENDING, OrderStatus.CONFIRMED)
    audit.log_prescription_validation(admin, "ORD-1", "PRESC-1", PrescriptionStatus.APPROVED)
    audit.log_order_status_change(admin, "ORD-2", OrderStatus.PENDING, OrderStatus.CANCELLED)
    audit.log_order_status_change(admin, "ORD-1", OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

    assert len(audit.trail()) == 4
    assert [e.entity_id for e in audit.trail(EntityType.ORDER)] == ["ORD-1", "ORD-2", "ORD-1"]
    order_trail = audit.trail(EntityType.ORDER, "ORD-1")
    assert [e.new_value["status"] for e in order_trail] == ["confirmed", "processing"]
    assert order_trail[0].action == "Order status changed from pending to confirmed"
    assert order_trail[0].timestamp <= order_trail[1].timestamp


def test_approval_entry_has_no_reason_in_its_action(store, admin):
    entry = AuditRecorder(store).log_prescription_validation(admin, "ORD-1", "PRESC-1", PrescriptionStatus.APPROVED)

    assert entry.action == "Prescription approved"
    assert entry.entity_type == EntityType.PRESCRIPTION
    assert entry.new_value == {"status": "approved", "reason": None, "order_id": "ORD-1"}


def test_entries_record_who_and_where(store):
    actor = Actor(user_id="rider-1", name="Delivery Rider", ip_address="10.0.0.7")
    entry = AuditRecorder(store).log_order_status_change(actor, "ORD-1", OrderStatus.SHIPPED, OrderStatus.DELIVERED)

    assert entry.id.startswith("AUDIT-")
    assert entry.user_id == "rider-1"
    assert entry.user_name == "Delivery Rider"
    assert entry.ip_address == "10.0.0.7"


def test_audit_file_mirrors_entries(store, admin, tmp_path):
    path = tmp_path / "audit.jsonl"
    audit = AuditRecorder(store, path)
    first = audit.log_order_status_change(admin, "ORD-1", OrderStatus.PENDING, OrderStatus.CONFIRMED)
    second = audit.log_order_status_change(admin, "ORD-1", OrderStatus.CONFIRMED, OrderStatus.SHIPPED)

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["id"] for line in lines] == [first.id, second.id]
    assert lines[1]["old_value"] == {"status": "confirmed"}
    assert lines[1]["entity_type"] == "order"


def test_trail_filters_on_entity_id_alone(store, admin):
    audit = AuditRecorder(store)
    audit.log_order_status_change(admin, "ORD-1", OrderStatus.PENDING, OrderStatus.CONFIRMED)
    audit.log_order_status_change(admin, "ORD-2", OrderStatus.PENDING, OrderStatus.CONFIRMED)

    assert [e.entity_id for e in audit.trail(entity_id="ORD-2")] == ["ORD-2"]
