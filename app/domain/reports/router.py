"""Report router - clinic level summaries"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...database import get_db
from ...shared.responses import success
from ...shared.validators import to_naive_utc
from .service import ReportService

router = APIRouter(prefix="/reports", tags=["Reports"])


def get_report_service(db: Session = Depends(get_db)) -> ReportService:
    """Dependency injection for ReportService"""
    return ReportService(db)


@router.get("/{clinic_name}/revenue")
async def get_revenue_report(
    clinic_name: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    service: ReportService = Depends(get_report_service),
):
    """Monthly revenue for a clinic"""
    return success(
        service.get_revenue_analytics(clinic_name, to_naive_utc(startDate), to_naive_utc(endDate))
    )


@router.get("/{clinic_name}/timesheet")
async def get_timesheet_report(
    clinic_name: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    service: ReportService = Depends(get_report_service),
):
    """Practitioner hours and utilization"""
    return success(
        service.get_timesheet_report(clinic_name, to_naive_utc(startDate), to_naive_utc(endDate))
    )


@router.get("/{clinic_name}/order-status")
async def get_order_status_report(
    clinic_name: str,
    service: ReportService = Depends(get_report_service),
):
    return success(service.get_order_status_report(clinic_name))


@router.get("/{clinic_name}/copay")
async def get_copay_summary(
    clinic_name: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    service: ReportService = Depends(get_report_service),
):
    """Co-payment summary across coordination-of-benefits slots"""
    return success(
        service.get_copay_summary(clinic_name, to_naive_utc(startDate), to_naive_utc(endDate))
    )


@router.get("/{clinic_name}/payments")
async def get_payment_summary(
    clinic_name: str,
    startDate: Optional[datetime] = Query(None),
    endDate: Optional[datetime] = Query(None),
    service: ReportService = Depends(get_report_service),
):
    return success(
        service.get_payment_summary(clinic_name, to_naive_utc(startDate), to_naive_utc(endDate))
    )
