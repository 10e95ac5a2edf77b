import os

# Keep the app's default store in memory; must run before the package is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest

from pharmacy_orders.models.schemas import Actor, OrderCreate, OrderItem, PrescriptionUpload, ShippingInfo
from pharmacy_orders.services.engine import PharmacyEngine
from pharmacy_orders.services.integration import OutboxChannel
from pharmacy_orders.services.payments import ScriptedPaymentGateway
from pharmacy_orders.services.store import InMemoryRecordStore


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def outbox():
    return OutboxChannel()


@pytest.fixture
def gateway():
    return ScriptedPaymentGateway()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(store, gateway, outbox, sleeps):
    return PharmacyEngine(store, gateway, outbox, sleep=sleeps.append)


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", name="Pharmacy Admin")


@pytest.fixture
def shipping():
    return ShippingInfo(
        full_name="Jane Wanjiku",
        email="jane@example.com",
        phone="254712345678",
        address="12 Moi Avenue",
        city="Nairobi",
        postal_code="00100",
    )


@pytest.fixture
def order_in(shipping):
    """Two items (2 x 500 and 1 x 300) with a 200 delivery fee."""
    return OrderCreate(
        user_id="customer-1",
        items=[
            OrderItem(product_id="p-1", product_name="Paracetamol 500mg", quantity=2, price=Decimal("500")),
            OrderItem(product_id="p-2", product_name="Vitamin C", quantity=1, price=Decimal("300")),
        ],
        shipping_info=shipping,
        total_amount=Decimal("1300"),
        delivery_fee=Decimal("200"),
        final_total=Decimal("1500"),
    )


@pytest.fixture
def rx_order_in(shipping):
    return OrderCreate(
        user_id="customer-1",
        items=[
            OrderItem(
                product_id="p-9",
                product_name="Amoxicillin 250mg",
                quantity=1,
                price=Decimal("850"),
                requires_prescription=True,
            ),
        ],
        shipping_info=shipping,
        payment_method="card",
        total_amount=Decimal("850"),
        delivery_fee=Decimal("200"),
        final_total=Decimal("1050"),
        prescription_files=[PrescriptionUpload(file_name="rx-scan.pdf", file_size=20480)],
    )
