"""
Pydantic models and enums used throughout the pharmacy order service.

These models are both the API request/response bodies and the records the
engine keeps in its store.  Money is always `Decimal` so totals add up
exactly; rendering amounts for people is left to the notification templates.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    """Lifecycle of an order."""
    PENDING = "pending"          # Created at checkout, awaiting payment
    CONFIRMED = "confirmed"      # Paid or confirmed by staff
    PROCESSING = "processing"    # Being packed
    SHIPPED = "shipped"          # Handed to delivery
    DELIVERED = "delivered"      # Terminal
    CANCELLED = "cancelled"      # Terminal


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class PaymentMethod(str, Enum):
    MPESA = "mpesa"   # mobile-money push
    CARD = "card"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PrescriptionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"  # declared, nothing moves a prescription here yet


class NotificationType(str, Enum):
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PROCESSING = "order_processing"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    PRESCRIPTION_APPROVED = "prescription_approved"
    PRESCRIPTION_REJECTED = "prescription_rejected"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"


class EntityType(str, Enum):
    ORDER = "order"
    PRESCRIPTION = "prescription"
    PRODUCT = "product"
    USER = "user"


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderItem(BaseModel):
    product_id: str
    product_name: str = Field(..., description="Product name at the time of purchase")
    product_image: str = ""
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0, description="Unit price at the time of purchase")
    requires_prescription: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class ShippingInfo(BaseModel):
    full_name: str
    email: str
    phone: str
    address: str
    city: str
    postal_code: str = ""


class PaymentInfo(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    mpesa_phone: Optional[str] = None
    checkout_request_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: Decimal
    currency: str
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PrescriptionUpload(BaseModel):
    """Reference to a prescription file already placed in blob storage."""
    file_name: str = Field(..., min_length=1)
    file_size: int = Field(0, ge=0, description="Size in bytes")


class OrderCreate(BaseModel):
    """Checkout submission.  Totals are computed by the caller and checked here."""
    user_id: str
    items: List[OrderItem]
    shipping_info: ShippingInfo
    payment_method: PaymentMethod = PaymentMethod.MPESA
    mpesa_phone: Optional[str] = None
    total_amount: Decimal = Field(..., ge=0)
    delivery_fee: Decimal = Field(..., ge=0)
    final_total: Decimal = Field(..., ge=0)
    currency: Optional[str] = None
    delivery_instructions: Optional[str] = None
    prescription_files: List[PrescriptionUpload] = Field(default_factory=list)


class Order(BaseModel):
    """An order as stored.  Only status, payment_info and updated_at change after creation."""

    id: str
    user_id: str
    items: List[OrderItem]
    shipping_info: ShippingInfo
    payment_info: PaymentInfo
    status: OrderStatus = OrderStatus.PENDING
    total_amount: Decimal
    delivery_fee: Decimal
    final_total: Decimal
    created_at: datetime
    updated_at: datetime
    delivery_instructions: Optional[str] = None
    prescription_files: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True

    @property
    def requires_prescription(self) -> bool:
        return any(item.requires_prescription for item in self.items)


class OrderFilter(BaseModel):
    status: Optional[OrderStatus] = None
    user_id: Optional[str] = None
    search: Optional[str] = Field(None, description="Matches order id, customer name or email")


class StatusUpdate(BaseModel):
    status: OrderStatus


class Actor(BaseModel):
    """Who performed an action, for the audit trail."""
    user_id: str
    name: str
    ip_address: str = "127.0.0.1"


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class PaymentRequest(BaseModel):
    method: PaymentMethod
    phone: Optional[str] = Field(None, description="M-Pesa phone; defaults to the order's phone")


class PaymentToken(BaseModel):
    """Handle for a payment round trip that has been accepted by a rail."""
    order_id: str
    method: PaymentMethod
    reference: str = Field(..., description="Checkout request id or payment intent id")
    client_secret: Optional[str] = None
    message: str = ""


class PaymentInitiation(BaseModel):
    accepted: bool
    message: str
    token: Optional[PaymentToken] = None


class PaymentPoll(BaseModel):
    token: PaymentToken
    payment_method_ref: Optional[str] = Field(None, description="Card payment method, required for card rails")


class PaymentOutcome(BaseModel):
    order_id: str
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    message: str = ""


# ---------------------------------------------------------------------------
# Prescriptions
# ---------------------------------------------------------------------------


class PrescriptionFile(BaseModel):
    id: str
    order_id: str
    file_name: str
    file_size: int = Field(0, ge=0)
    uploaded_at: datetime
    status: PrescriptionStatus = PrescriptionStatus.PENDING
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    doctor_name: Optional[str] = None
    license_number: Optional[str] = None
    expiry_date: Optional[date] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True


class PrescriptionDecision(BaseModel):
    is_valid: bool
    doctor_name: Optional[str] = None
    license_number: Optional[str] = None
    expiry_date: Optional[date] = None
    rejection_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Notifications and audit
# ---------------------------------------------------------------------------


class NotificationRecord(BaseModel):
    id: str
    recipient: str
    subject: str
    content: str
    type: NotificationType
    order_id: Optional[str] = None
    sent_at: datetime
    status: DeliveryStatus

    class Config:
        from_attributes = True


class AuditLogEntry(BaseModel):
    id: str
    user_id: str
    user_name: str
    action: str
    entity_type: EntityType
    entity_id: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    timestamp: datetime
    ip_address: Optional[str] = None

    class Config:
        from_attributes = True
