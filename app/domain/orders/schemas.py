"""Order domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from ...models import Order, OrderStatus
from ...shared.validators import normalize_client_id, to_naive_utc


class LineItemInput(BaseModel):
    """Line item as sent by the caller; missing values come from the product"""

    productKey: int
    productName: Optional[str] = Field(None, max_length=200)
    quantity: Optional[int] = Field(None, ge=1)
    duration: Optional[int] = Field(None, ge=0)
    unitPrice: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


class OrderCreate(BaseModel):
    """Schema for placing a new order"""

    clientId: Union[str, int]
    clientName: str = Field(..., min_length=1, max_length=200)
    clinicName: str = Field(..., min_length=1, max_length=100)
    serviceDate: datetime
    endDate: Optional[datetime] = None
    appointmentId: Optional[int] = None
    items: list[LineItemInput] = Field(..., min_length=1)
    location: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("clientId")
    @classmethod
    def validate_client_id(cls, v):
        return normalize_client_id(v)

    @field_validator("serviceDate", "endDate")
    @classmethod
    def validate_dates(cls, v):
        return to_naive_utc(v)


class OrderUpdate(BaseModel):
    """Schema for editing an order. Lifecycle fields have their own endpoints."""

    clientName: Optional[str] = Field(None, min_length=1, max_length=200)
    clinicName: Optional[str] = Field(None, min_length=1, max_length=100)
    serviceDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    invoiceDate: Optional[datetime] = None
    items: Optional[list[LineItemInput]] = Field(None, min_length=1)
    location: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    appointmentStatus: Optional[int] = None

    @field_validator("serviceDate", "endDate", "invoiceDate")
    @classmethod
    def validate_dates(cls, v):
        return to_naive_utc(v)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class PaymentRequest(BaseModel):
    # Sign is checked by the payment rules so the caller gets INVALID_AMOUNT
    amount: float = Field(..., allow_inf_nan=False)
    paymentDate: Optional[datetime] = None

    @field_validator("paymentDate")
    @classmethod
    def validate_payment_date(cls, v):
        return to_naive_utc(v)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class BulkReadyForBillingRequest(BaseModel):
    orderIds: list[Union[str, int]] = Field(..., min_length=1)

    @field_validator("orderIds")
    @classmethod
    def validate_order_ids(cls, v):
        return [str(order_id).strip() for order_id in v]


class LineItemResponse(BaseModel):
    productKey: int
    productName: str
    quantity: int
    duration: int
    unitPrice: float
    subtotal: float


class OrderResponse(BaseModel):
    """Schema for order response"""

    id: int
    orderNumber: str
    appointmentId: Optional[int] = None
    clientId: str
    clientName: str
    clinicName: str
    status: str
    paymentStatus: str
    orderDate: Optional[datetime] = None
    serviceDate: datetime
    endDate: datetime
    billDate: Optional[datetime] = None
    invoiceDate: Optional[datetime] = None
    readyToBill: bool
    isBillable: bool
    items: list[LineItemResponse]
    totalAmount: float
    totalDuration: int
    daysSinceService: Optional[int] = None
    location: Optional[str] = None
    description: Optional[str] = None
    appointmentStatus: int = 0
    version: int
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            orderNumber=order.order_number,
            appointmentId=order.appointment_id,
            clientId=order.client_id,
            clientName=order.client_name,
            clinicName=order.clinic_name,
            status=order.status,
            paymentStatus=order.payment_status,
            orderDate=order.order_date,
            serviceDate=order.service_date,
            endDate=order.end_date,
            billDate=order.bill_date,
            invoiceDate=order.invoice_date,
            readyToBill=order.ready_to_bill,
            isBillable=order.is_billable,
            items=[LineItemResponse(**item) for item in order.items or []],
            totalAmount=order.total_amount,
            totalDuration=order.total_duration,
            daysSinceService=order.days_since_service,
            location=order.location,
            description=order.description,
            appointmentStatus=order.appointment_status or 0,
            version=order.version,
            createdAt=order.created_at,
            updatedAt=order.updated_at,
        )


class BulkFailure(BaseModel):
    id: str
    code: str
    message: str


class BulkReadyForBillingResult(BaseModel):
    matchedCount: int
    modifiedCount: int
    failed: list[BulkFailure] = []
