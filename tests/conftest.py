import os

# Must be set before the app modules create their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.database import Base, SessionLocal, engine  # noqa: E402
from app.domain.orders.lifecycle import build_line_item, replace_items  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    Appointment,
    Clinic,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
    generate_order_number,
)

CLINIC = "Downtown Physiotherapy"
CLINIC_SLUG = "downtown-physio"


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def catalogue(db):
    """Two products and a clinic registered under a slug"""
    db.add_all(
        [
            Product(product_key=101, name="Physiotherapy Session", duration=45, price=90.0),
            Product(product_key=202, name="Custom Orthotics", duration=30, price=350.0),
            Clinic(name=CLINIC, slug=CLINIC_SLUG),
        ]
    )
    db.commit()


@pytest.fixture
def make_order(db):
    """Insert an order directly, bypassing the API"""
    counter = {"n": 0}

    def _make(
        status=OrderStatus.SCHEDULED,
        payment_status=PaymentStatus.PENDING,
        items=None,
        clinic_name=CLINIC,
        client_id="1001",
        service_date=None,
        **fields,
    ) -> Order:
        counter["n"] += 1
        service_date = service_date or datetime(2024, 3, 10, 9, 0)
        order = Order(
            order_number=fields.pop("order_number", None)
            or generate_order_number(fields.get("appointment_id") or 90000 + counter["n"]),
            client_id=client_id,
            client_name=fields.pop("client_name", f"Client {client_id}"),
            clinic_name=clinic_name,
            status=OrderStatus(status).value,
            payment_status=PaymentStatus(payment_status).value,
            order_date=service_date,
            service_date=service_date,
            end_date=service_date + timedelta(hours=1),
            **fields,
        )
        replace_items(
            order,
            items
            if items is not None
            else [build_line_item(101, "Physiotherapy Session", 1, 45, 100.0)],
        )
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def add_appointment(db):
    def _add(resource_id, start_date, duration=60, status=0, resource_name=None, clinic_name=CLINIC):
        appointment = Appointment(
            clinic_name=clinic_name,
            resource_id=resource_id,
            resource_name=resource_name,
            start_date=start_date,
            duration=duration,
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add


@pytest.fixture
def add_payment(db):
    def _add(payment_date, total_paid=0, cob1=0, cob2=0, method="credit_card", client_id="1001"):
        payment = Payment(
            clinic_name=CLINIC,
            client_id=client_id,
            payment_date=payment_date,
            payment_method=method,
            total_paid=total_paid,
            cob1_amount=cob1,
            cob2_amount=cob2,
        )
        db.add(payment)
        db.commit()
        return payment

    return _add
