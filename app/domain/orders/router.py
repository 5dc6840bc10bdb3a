"""Order router - FastAPI endpoints for order operations"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...config import OVERDUE_DAYS_DEFAULT
from ...database import get_db
from ...models import OrderStatus, PaymentStatus
from ...shared.responses import pagination, success
from ...shared.validators import normalize_client_id, to_naive_utc
from ..reports.service import ReportService
from .schemas import (
    BulkReadyForBillingRequest,
    BulkReadyForBillingResult,
    CancelRequest,
    OrderCreate,
    OrderResponse,
    OrderUpdate,
    PaymentRequest,
    StatusUpdateRequest,
)
from .service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    """Dependency injection for OrderService"""
    return OrderService(db)


def get_report_service(db: Session = Depends(get_db)) -> ReportService:
    return ReportService(db)


def _orders(orders) -> list[OrderResponse]:
    return [OrderResponse.from_order(o) for o in orders]


# ============================================================================
# LISTING
# ============================================================================


@router.get("")
async def get_orders(
    page: int = Query(1),
    limit: int = Query(20),
    status: Optional[OrderStatus] = Query(None),
    paymentStatus: Optional[PaymentStatus] = Query(None),
    clinicName: Optional[str] = Query(None),
    clientId: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    readyToBill: Optional[bool] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    """Get orders with filtering and pagination, newest service date first"""
    orders, total, page, limit = service.list_orders(
        page=page,
        limit=limit,
        status=status.value if status else None,
        payment_status=paymentStatus.value if paymentStatus else None,
        clinic_name=clinicName,
        client_id=normalize_client_id(clientId) if clientId else None,
        start_date=to_naive_utc(startDate),
        end_date=to_naive_utc(endDate),
        search=search,
        # Only an explicit true narrows the list
        ready_to_bill=True if readyToBill else None,
    )
    return success(_orders(orders), pagination=pagination(page, limit, total))


@router.get("/ready-for-billing")
async def get_orders_ready_for_billing(
    clinicName: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    """Orders awaiting an invoice"""
    return success(_orders(service.get_orders_ready_for_billing(clinicName)))


@router.get("/report/overdue")
async def get_orders_overdue_report(
    daysOverdue: int = Query(OVERDUE_DAYS_DEFAULT),
    clinicName: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    """Unpaid orders whose service date is older than daysOverdue"""
    return success(_orders(service.get_overdue_orders(daysOverdue, clinicName)))


@router.get("/report/pending-refund")
async def get_orders_pending_refund(
    clinicName: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    service: OrderService = Depends(get_order_service),
):
    orders, total, page, limit = service.get_orders_pending_refund(clinicName, page, limit)
    return success(_orders(orders), pagination=pagination(page, limit, total))


@router.get("/report/status")
async def get_order_status_report(
    clinicName: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Distribution of orders per status and payment status"""
    return success(
        reports.get_order_status_distribution(
            clinicName, to_naive_utc(startDate), to_naive_utc(endDate)
        )
    )


@router.get("/analytics/revenue")
async def get_revenue_analytics(
    clinicName: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return success(
        reports.get_revenue_analytics(clinicName, to_naive_utc(startDate), to_naive_utc(endDate))
    )


@router.get("/analytics/products")
async def get_product_performance(
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return success(reports.get_product_performance(to_naive_utc(startDate), to_naive_utc(endDate)))


@router.get("/export")
async def export_orders_report(
    clinicName: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    format: str = Query("json"),
    limit: int = Query(1000),
    reports: ReportService = Depends(get_report_service),
):
    """Export orders as JSON or CSV"""
    result = reports.export_orders(
        clinicName, to_naive_utc(startDate), to_naive_utc(endDate), format, limit
    )
    if format == "csv":
        filename = f"orders_export_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
        return StreamingResponse(
            iter([result]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename={filename}",
                "Cache-Control": "no-cache",
            },
        )
    return success(_orders(result))


@router.get("/client/{client_id}")
async def get_orders_by_client(
    client_id: str,
    limit: int = Query(50),
    service: OrderService = Depends(get_order_service),
):
    return success(_orders(service.get_orders_by_client(normalize_client_id(client_id), limit)))


@router.get("/client/{client_id}/details")
async def get_client_order_details(
    client_id: str,
    page: int = Query(1),
    limit: int = Query(50),
    status: Optional[OrderStatus] = Query(None),
    paymentStatus: Optional[PaymentStatus] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Client's orders with lifetime statistics"""
    result = reports.get_client_order_details(
        normalize_client_id(client_id),
        page,
        limit,
        status.value if status else None,
        paymentStatus.value if paymentStatus else None,
    )
    return success(
        _orders(result["orders"]),
        pagination=pagination(result["page"], result["limit"], result["total"]),
        statistics=result["statistics"],
    )


@router.get("/clinic/{clinic_name}")
async def get_orders_by_clinic(
    clinic_name: str,
    page: int = Query(1),
    limit: int = Query(20),
    status: Optional[OrderStatus] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    orders, total, page, limit = service.list_orders(
        page=page,
        limit=limit,
        status=status.value if status else None,
        clinic_name=clinic_name,
        start_date=to_naive_utc(startDate),
        end_date=to_naive_utc(endDate),
        search=search,
    )
    return success(_orders(orders), pagination=pagination(page, limit, total))


@router.get("/product/{product_key}/history")
async def get_product_service_history(
    product_key: int,
    clinicName: Optional[str] = Query(None),
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return success(
        reports.get_product_service_history(
            product_key, clinicName, to_naive_utc(startDate), to_naive_utc(endDate)
        )
    )


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.post("", status_code=201)
async def create_order(
    data: OrderCreate,
    service: OrderService = Depends(get_order_service),
):
    """Create a new order, pricing items from the product catalogue"""
    order = service.create_order(data)
    return success(OrderResponse.from_order(order), "Order created successfully")


@router.post("/bulk/ready-for-billing")
async def bulk_mark_ready_for_billing(
    data: BulkReadyForBillingRequest,
    service: OrderService = Depends(get_order_service),
):
    """Mark several orders ready for billing; each id succeeds or fails on its own"""
    result = BulkReadyForBillingResult(**service.bulk_mark_ready_for_billing(data.orderIds))
    return success(result, f"{result.modifiedCount} order(s) marked ready for billing")


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
):
    """Get an order by id or order number"""
    return success(OrderResponse.from_order(service.get_order(order_id)))


@router.put("/{order_id}")
async def update_order(
    order_id: str,
    data: OrderUpdate,
    service: OrderService = Depends(get_order_service),
):
    order = service.update_order(order_id, data)
    return success(OrderResponse.from_order(order), "Order updated successfully")


# ============================================================================
# LIFECYCLE
# ============================================================================


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: str,
    data: StatusUpdateRequest,
    service: OrderService = Depends(get_order_service),
):
    order = service.update_status(order_id, data.status)
    return success(OrderResponse.from_order(order), f"Order status updated to {order.status}")


@router.put("/{order_id}/billing/ready")
async def mark_ready_for_billing(
    order_id: str,
    service: OrderService = Depends(get_order_service),
):
    order = service.mark_ready_for_billing(order_id)
    return success(OrderResponse.from_order(order), "Order marked ready for billing")


@router.post("/{order_id}/payment")
async def process_payment(
    order_id: str,
    data: PaymentRequest,
    service: OrderService = Depends(get_order_service),
):
    order = service.process_payment(order_id, data.amount, data.paymentDate)
    return success(OrderResponse.from_order(order), "Payment processed successfully")


@router.put("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    data: Optional[CancelRequest] = None,
    service: OrderService = Depends(get_order_service),
):
    order = service.cancel_order(order_id, data.reason if data else None)
    return success(OrderResponse.from_order(order), "Order cancelled successfully")
