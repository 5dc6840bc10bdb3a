"""Order repository - Database operations for orders"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models import Order, OrderStatus, PaymentStatus
from .lifecycle import AWAITING_INVOICE_STATUSES


class OrderRepository:
    """Repository for order database operations"""

    @staticmethod
    def get_order_by_id(db: Session, order_id: int) -> Optional[Order]:
        return db.query(Order).filter(Order.id == order_id).first()

    @staticmethod
    def get_order_by_number(db: Session, order_number: str) -> Optional[Order]:
        return db.query(Order).filter(Order.order_number == order_number).first()

    @staticmethod
    def order_number_exists(db: Session, order_number: str) -> bool:
        return db.query(Order.id).filter(Order.order_number == order_number).first() is not None

    @staticmethod
    def create_order(db: Session, order: Order) -> Order:
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    @staticmethod
    def save_order(db: Session, order: Order) -> Order:
        """Flush pending changes on an already loaded order"""
        db.commit()
        db.refresh(order)
        return order

    @staticmethod
    def search_orders(
        db: Session,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        clinic_name: Optional[str] = None,
        client_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        ready_to_bill: Optional[bool] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """Filter orders, newest service date first. Returns (page, total)"""
        query = db.query(Order)

        if status:
            query = query.filter(Order.status == status)
        if payment_status:
            query = query.filter(Order.payment_status == payment_status)
        if clinic_name:
            query = query.filter(Order.clinic_name == clinic_name)
        if client_id:
            query = query.filter(Order.client_id == client_id)
        if ready_to_bill is not None:
            query = query.filter(Order.ready_to_bill.is_(ready_to_bill))
        if start_date:
            query = query.filter(Order.service_date >= start_date)
        if end_date:
            query = query.filter(Order.service_date <= end_date)

        if search:
            search_term = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    Order.client_name.ilike(search_term),
                    Order.order_number.ilike(search_term),
                    Order.description.ilike(search_term),
                )
            )

        total = query.count()
        orders = (
            query.order_by(Order.service_date.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return orders, total

    @staticmethod
    def get_orders_ready_for_billing(db: Session, clinic_name: Optional[str] = None) -> list[Order]:
        """Orders awaiting an invoice: flagged, not yet billed, completed or in progress"""
        query = db.query(Order).filter(
            Order.ready_to_bill.is_(True),
            Order.bill_date.is_(None),
            Order.status.in_(AWAITING_INVOICE_STATUSES),
        )
        if clinic_name:
            query = query.filter(Order.clinic_name == clinic_name)
        return query.order_by(Order.service_date.asc()).all()

    @staticmethod
    def get_overdue_orders(
        db: Session, cutoff: datetime, clinic_name: Optional[str] = None
    ) -> list[Order]:
        query = db.query(Order).filter(
            Order.service_date < cutoff,
            Order.payment_status.in_([PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value]),
            Order.status != OrderStatus.CANCELLED.value,
        )
        if clinic_name:
            query = query.filter(Order.clinic_name == clinic_name)
        return query.order_by(Order.service_date.asc()).all()

    @staticmethod
    def get_orders_pending_refund(
        db: Session, clinic_name: Optional[str] = None, skip: int = 0, limit: int = 20
    ) -> tuple[list[Order], int]:
        query = db.query(Order).filter(
            Order.payment_status.in_([PaymentStatus.REFUNDED.value, PaymentStatus.PARTIAL.value])
        )
        if clinic_name:
            query = query.filter(Order.clinic_name == clinic_name)

        total = query.count()
        orders = query.order_by(Order.service_date.desc()).offset(skip).limit(limit).all()
        return orders, total

    @staticmethod
    def get_orders_for_client(
        db: Session,
        client_id: str,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Order], int]:
        query = db.query(Order).filter(Order.client_id == client_id)
        if status:
            query = query.filter(Order.status == status)
        if payment_status:
            query = query.filter(Order.payment_status == payment_status)

        total = query.count()
        orders = query.order_by(Order.service_date.desc()).offset(skip).limit(limit).all()
        return orders, total

    @staticmethod
    def get_orders_in_range(
        db: Session,
        clinic_name: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        client_id: Optional[str] = None,
        exclude_cancelled: bool = False,
        limit: Optional[int] = None,
    ) -> list[Order]:
        """Orders selected for reports and exports, newest service date first"""
        query = db.query(Order)
        if clinic_name:
            query = query.filter(Order.clinic_name == clinic_name)
        if client_id:
            query = query.filter(Order.client_id == client_id)
        if start_date:
            query = query.filter(Order.service_date >= start_date)
        if end_date:
            query = query.filter(Order.service_date <= end_date)
        if exclude_cancelled:
            query = query.filter(Order.status != OrderStatus.CANCELLED.value)

        query = query.order_by(Order.service_date.desc(), Order.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def get_orders_for_appointments(db: Session, appointment_ids: list[int]) -> list[Order]:
        if not appointment_ids:
            return []
        return db.query(Order).filter(Order.appointment_id.in_(appointment_ids)).all()
