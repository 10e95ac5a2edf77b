from datetime import date

import pytest

from pharmacy_orders.errors import NotFoundError, ValidationError
from pharmacy_orders.models.schemas import (
    EntityType,
    NotificationType,
    OrderStatus,
    PrescriptionDecision,
    PrescriptionStatus,
)

APPROVAL = PrescriptionDecision(
    is_valid=True,
    doctor_name="Dr. Achieng Odhiambo",
    license_number="KMPDC-12345",
    expiry_date=date(2027, 6, 30),
)


@pytest.fixture
def rx(engine, rx_order_in):
    order = engine.create_order(rx_order_in)
    return engine.list_prescriptions_for_order(order.id)[0]


def test_rejecting_a_prescription(engine, store, rx, admin):
    decision = PrescriptionDecision(is_valid=False, rejection_reason="Illegible signature")

    result = engine.validate_prescription(rx.id, decision, admin)

    assert result.status == PrescriptionStatus.REJECTED
    assert result.rejection_reason == "Illegible signature"
    assert result.validated_by == "Pharmacy Admin"
    assert result.validated_at is not None
    assert store.get_prescription(rx.id) == result

    notifications = store.list_notifications()
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.PRESCRIPTION_REJECTED
    assert notifications[0].recipient == "jane@example.com"
    assert notifications[0].order_id == rx.order_id
    assert "Illegible signature" in notifications[0].content

    trail = engine.get_audit_trail(EntityType.PRESCRIPTION, rx.id)
    assert len(trail) == 1
    assert trail[0].action == "Prescription rejected: Illegible signature"
    assert trail[0].old_value == {"status": "pending"}
    assert trail[0].new_value == {"status": "rejected", "reason": "Illegible signature", "order_id": rx.order_id}


def test_approving_a_prescription(engine, store, rx, admin):
    result = engine.validate_prescription(rx.id, APPROVAL, admin)

    assert result.status == PrescriptionStatus.APPROVED
    assert result.doctor_name == "Dr. Achieng Odhiambo"
    assert result.license_number == "KMPDC-12345"
    assert result.expiry_date == date(2027, 6, 30)
    assert result.rejection_reason is None
    assert [n.type for n in store.list_notifications()] == [NotificationType.PRESCRIPTION_APPROVED]
    # a decision does not move the order
    assert engine.get_order(rx.order_id).status == OrderStatus.PENDING


@pytest.mark.parametrize("missing", ["doctor_name", "license_number", "expiry_date"])
def test_approval_needs_prescriber_details(engine, store, rx, admin, missing):
    decision = APPROVAL.model_copy(update={missing: None})

    with pytest.raises(ValidationError, match=missing):
        engine.validate_prescription(rx.id, decision, admin)

    assert store.get_prescription(rx.id).status == PrescriptionStatus.PENDING
    assert store.list_notifications() == []


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_needs_a_reason(engine, rx, admin, reason):
    with pytest.raises(ValidationError):
        engine.validate_prescription(rx.id, PrescriptionDecision(is_valid=False, rejection_reason=reason), admin)


def test_a_prescription_is_decided_once(engine, store, rx, admin):
    engine.validate_prescription(rx.id, APPROVAL, admin)

    with pytest.raises(ValidationError, match="already approved"):
        engine.validate_prescription(rx.id, PrescriptionDecision(is_valid=False, rejection_reason="late"), admin)

    assert store.get_prescription(rx.id).status == PrescriptionStatus.APPROVED
    assert len(store.list_notifications()) == 1
    assert len(store.list_audit()) == 1


def test_unknown_prescription(engine, admin):
    with pytest.raises(NotFoundError):
        engine.validate_prescription("PRESC-MISSING", APPROVAL, admin)


def test_pending_list_only_holds_undecided_prescriptions(engine, rx, admin):
    extra = engine.upload_prescription(rx.order_id, "second-page.jpg", 1024)
    assert {p.id for p in engine.list_pending_prescriptions()} == {rx.id, extra.id}

    engine.validate_prescription(rx.id, APPROVAL, admin)

    assert [p.id for p in engine.list_pending_prescriptions()] == [extra.id]
    assert len(engine.list_prescriptions_for_order(rx.order_id)) == 2


def test_upload_to_unknown_order(engine):
    with pytest.raises(NotFoundError):
        engine.upload_prescription("ORD-MISSING", "scan.pdf", 10)
    with pytest.raises(NotFoundError):
        engine.list_prescriptions_for_order("ORD-MISSING")


def test_upload_rejects_negative_size(engine, rx):
    with pytest.raises(ValidationError):
        engine.upload_prescription(rx.order_id, "scan.pdf", -1)


def test_broken_audit_does_not_undo_the_decision(engine, store, rx, admin, monkeypatch):
    def boom(entry):
        raise RuntimeError("audit store offline")

    monkeypatch.setattr(store, "append_audit", boom)
    result = engine.validate_prescription(rx.id, APPROVAL, admin)

    assert result.status == PrescriptionStatus.APPROVED
    assert store.get_prescription(rx.id).status == PrescriptionStatus.APPROVED
    assert len(store.list_notifications()) == 1


def test_unknown_prescription_is_reported_before_checking_the_decision(engine, admin):
    incomplete = PrescriptionDecision(is_valid=True)
    with pytest.raises(NotFoundError):
        engine.validate_prescription("PRESC-MISSING", incomplete, admin)
