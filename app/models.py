import random
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OrderStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    REFUNDED = "refunded"


ORDER_NUMBER_PREFIX = "ORD-"


def generate_order_number(appointment_id: Optional[int] = None) -> str:
    """ORD-<appointment id> for appointment orders, ORD-<millis>-<nnn> otherwise"""
    if appointment_id:
        return f"{ORDER_NUMBER_PREFIX}{appointment_id}"
    millis = int(time.time() * 1000)
    return f"{ORDER_NUMBER_PREFIX}{millis}-{random.randint(0, 999):03d}"


class Order(Base):
    """A billable unit of service delivered to a client"""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    # Source appointment; orders created by hand have none
    appointment_id = Column(Integer, unique=True, nullable=True)

    # Parties
    client_id = Column(String(64), nullable=False, index=True)
    client_name = Column(String(200), nullable=False)
    clinic_name = Column(String(100), nullable=False, index=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=OrderStatus.SCHEDULED.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    appointment_status = Column(Integer, nullable=False, default=0)

    # Dates
    order_date = Column(DateTime, nullable=False, default=utcnow)
    service_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    bill_date = Column(DateTime, nullable=True)
    invoice_date = Column(DateTime, nullable=True)

    # Billing
    ready_to_bill = Column(Boolean, nullable=False, default=False)
    # [{productKey, productName, quantity, duration, unitPrice, subtotal}]
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Float, nullable=False, default=0)

    location = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # Optimistic concurrency token, bumped by SQLAlchemy on every UPDATE
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_clinic_service_date", "clinic_name", "service_date"),
        Index("ix_orders_status_payment", "status", "payment_status"),
        Index("ix_orders_ready_bill_date", "ready_to_bill", "bill_date"),
    )

    @property
    def total_duration(self) -> int:
        return sum(item.get("duration", 0) for item in self.items or [])

    @property
    def days_since_service(self) -> Optional[int]:
        if not self.service_date:
            return None
        delta = utcnow() - self.service_date
        # Partial days count as a whole day
        return delta.days + (1 if delta.seconds or delta.microseconds else 0)

    @property
    def is_billable(self) -> bool:
        return self.status == OrderStatus.COMPLETED.value and self.payment_status not in (
            PaymentStatus.PAID.value,
            PaymentStatus.REFUNDED.value,
        )


class Product(Base):
    """Billable product or service used to price order line items"""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_key = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(50), nullable=True)
    duration = Column(Integer, nullable=False, default=0)  # minutes
    price = Column(Float, nullable=False, default=0)
    currency = Column(String(10), default="CAD")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Appointment(Base):
    """Scheduled visit with a practitioner (resource)"""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_name = Column(String(100), nullable=False, index=True)
    client_id = Column(String(64), nullable=True, index=True)
    resource_id = Column(Integer, nullable=False, index=True)
    resource_name = Column(String(200), nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=False, default=0)  # minutes
    status = Column(Integer, nullable=False, default=0)  # 0 scheduled, 1 completed, 2 cancelled

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (Index("ix_appointments_clinic_start", "clinic_name", "start_date"),)


class Payment(Base):
    """Payment received at a clinic, with coordination-of-benefits amounts"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    clinic_name = Column(String(100), nullable=False, index=True)
    client_id = Column(String(64), nullable=True, index=True)
    order_number = Column(String(50), nullable=True, index=True)
    payment_date = Column(DateTime, nullable=False)
    payment_method = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="completed")

    total_paid = Column(Float, nullable=False, default=0)
    cob1_amount = Column(Float, nullable=False, default=0)
    cob2_amount = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (Index("ix_payments_clinic_date", "clinic_name", "payment_date"),)
