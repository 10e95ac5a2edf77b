"""
SQLAlchemy ORM tables backing the SQL record store.

Line items, shipping and payment details are kept as JSON on the order row;
they are snapshots and never queried on their own.  Notifications and audit
entries carry an autoincrement `seq` so reads come back in insertion order.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, Enum as SAEnum, Integer, Numeric, String, Text

from .database import Base
from .schemas import DeliveryStatus, EntityType, NotificationType, OrderStatus, PrescriptionStatus


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    items = Column(JSON, nullable=False)
    shipping_info = Column(JSON, nullable=False)
    payment_info = Column(JSON, nullable=False)
    status = Column(SAEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    total_amount = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False)
    final_total = Column(Numeric(12, 2), nullable=False)

    delivery_instructions = Column(Text, nullable=True)
    prescription_files = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PrescriptionRow(Base):
    __tablename__ = "prescriptions"

    id = Column(String, primary_key=True, index=True)
    order_id = Column(String, nullable=False, index=True)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(SAEnum(PrescriptionStatus), nullable=False, default=PrescriptionStatus.PENDING)

    validated_by = Column(String, nullable=True)
    validated_at = Column(DateTime, nullable=True)
    doctor_name = Column(String, nullable=True)
    license_number = Column(String, nullable=True)
    expiry_date = Column(Date, nullable=True)
    rejection_reason = Column(Text, nullable=True)


class NotificationRow(Base):
    __tablename__ = "notifications"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    recipient = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(SAEnum(NotificationType), nullable=False)
    order_id = Column(String, nullable=True, index=True)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(SAEnum(DeliveryStatus), nullable=False)


class AuditLogRow(Base):
    __tablename__ = "audit_log"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    user_name = Column(String, nullable=False)
    action = Column(Text, nullable=False)
    entity_type = Column(SAEnum(EntityType), nullable=False, index=True)
    entity_id = Column(String, nullable=False, index=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    ip_address = Column(String, nullable=True)
