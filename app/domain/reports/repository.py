"""Report repository - read-only selections feeding the aggregations"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Appointment, Payment

# Safety cap on rows pulled into a single report
MAX_REPORT_ROWS = 10000


class ReportRepository:
    """Repository for report data"""

    @staticmethod
    def get_appointments(
        db: Session, clinic_name: str, start_date: datetime, end_date: datetime
    ) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(
                Appointment.clinic_name == clinic_name,
                Appointment.start_date >= start_date,
                Appointment.start_date <= end_date,
            )
            .order_by(Appointment.start_date.asc())
            .limit(MAX_REPORT_ROWS)
            .all()
        )

    @staticmethod
    def get_payments(
        db: Session,
        clinic_name: str,
        start_date: datetime,
        end_date: datetime,
        with_cob_only: bool = False,
    ) -> list[Payment]:
        query = db.query(Payment).filter(
            Payment.clinic_name == clinic_name,
            Payment.payment_date >= start_date,
            Payment.payment_date <= end_date,
        )
        if with_cob_only:
            query = query.filter(or_(Payment.cob1_amount > 0, Payment.cob2_amount > 0))
        return query.order_by(Payment.payment_date.asc()).limit(MAX_REPORT_ROWS).all()
