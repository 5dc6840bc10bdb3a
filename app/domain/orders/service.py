"""Order service - Business logic for the order lifecycle"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...config import DEFAULT_APPOINTMENT_MINUTES, MAX_PAGE_SIZE, OVERDUE_DAYS_DEFAULT
from ...errors import AppError, ConflictError, DatabaseError, NotFoundError, ValidationError
from ...models import Order, OrderStatus, generate_order_number, utcnow
from ...shared.validators import is_order_number
from ..clinics.service import ClinicService
from ..products.repository import ProductRepository
from . import lifecycle, state_machine
from .repository import OrderRepository
from .schemas import LineItemInput, OrderCreate, OrderUpdate

logger = logging.getLogger(__name__)


def clamp_page(page: int, limit: int, default_limit: int = 20) -> tuple[int, int]:
    """Page >= 1 and 1 <= limit <= MAX_PAGE_SIZE"""
    page = max(1, page or 1)
    limit = min(MAX_PAGE_SIZE, max(1, limit or default_limit))
    return page, limit


class OrderService:
    """Service layer for order business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepository()
        self.products = ProductRepository()
        self.clinics = ClinicService(db)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_order(self, identifier: str) -> Order:
        """Load an order by database id or by order number (ORD-...)"""
        identifier = (identifier or "").strip()
        if not identifier:
            raise ValidationError("Order ID is required")

        if is_order_number(identifier):
            order = self.repo.get_order_by_number(self.db, identifier)
        else:
            try:
                order_id = int(identifier)
            except ValueError:
                raise ValidationError(f"Invalid order id: {identifier}", code="INVALID_ID")
            order = self.repo.get_order_by_id(self.db, order_id)

        if not order:
            raise NotFoundError("Order", identifier)
        return order

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    def create_order(self, data: OrderCreate) -> Order:
        """Place an order priced from the product catalogue"""
        items = self._price_items(data.items)
        clinic_name = self.clinics.slug_to_clinic_name(data.clinicName)

        order_number = generate_order_number(data.appointmentId)
        if self.repo.order_number_exists(self.db, order_number):
            raise ConflictError(f"Order {order_number} already exists")

        order = Order(
            order_number=order_number,
            appointment_id=data.appointmentId,
            client_id=data.clientId,
            client_name=data.clientName,
            clinic_name=clinic_name,
            status=OrderStatus.SCHEDULED.value,
            order_date=utcnow(),
            service_date=data.serviceDate,
            end_date=data.endDate or data.serviceDate + timedelta(minutes=DEFAULT_APPOINTMENT_MINUTES),
            location=data.location,
            description=data.description,
        )
        lifecycle.replace_items(order, items)

        try:
            order = self.repo.create_order(self.db, order)
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Order {order_number} was created concurrently")
            raise ConflictError(f"Order {order_number} already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Failed to create order {order_number}")
            raise DatabaseError("Failed to create order", e) from e

        logger.info(
            f"Order {order.order_number} created for client {order.client_id} "
            f"at {order.clinic_name} ({len(items)} items, total {order.total_amount:.2f})"
        )
        return order

    def update_order(self, identifier: str, data: OrderUpdate) -> Order:
        order = self.get_order(identifier)

        updates = data.model_dump(exclude_unset=True, exclude_none=True)
        if "clientName" in updates:
            order.client_name = updates["clientName"]
        if "clinicName" in updates:
            order.clinic_name = self.clinics.slug_to_clinic_name(updates["clinicName"])
        if "serviceDate" in updates:
            order.service_date = updates["serviceDate"]
        if "endDate" in updates:
            order.end_date = updates["endDate"]
        if "invoiceDate" in updates:
            order.invoice_date = updates["invoiceDate"]
        if "location" in updates:
            order.location = updates["location"]
        if "description" in updates:
            order.description = updates["description"]
        if "appointmentStatus" in updates:
            order.appointment_status = updates["appointmentStatus"]
        if data.items is not None:
            lifecycle.replace_items(order, self._price_items(data.items))

        if order.end_date < order.service_date:
            self.db.rollback()
            raise ValidationError("endDate cannot be before serviceDate")

        order = self._persist(order)
        logger.info(f"Order {order.order_number} updated")
        return order

    def _price_items(self, items: list[LineItemInput]) -> list[dict]:
        """Fill line item gaps from the product catalogue and price each item"""
        products = self.products.get_products_by_keys(self.db, [item.productKey for item in items])

        priced = []
        for item in items:
            product = products.get(item.productKey)
            if not product:
                raise ValidationError(f"Product with key {item.productKey} not found")

            priced.append(
                lifecycle.build_line_item(
                    product_key=item.productKey,
                    product_name=item.productName or product.name,
                    quantity=item.quantity if item.quantity is not None else 1,
                    duration=item.duration if item.duration is not None else product.duration,
                    unit_price=item.unitPrice if item.unitPrice is not None else product.price,
                )
            )
        return priced

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_status(self, identifier: str, new_status: OrderStatus) -> Order:
        order = self.get_order(identifier)
        previous = order.status
        self._apply(order, state_machine.update_status, new_status)
        order = self._persist(order)
        logger.info(f"Order {order.order_number} status {previous} → {order.status}")
        return order

    def mark_ready_for_billing(self, identifier: str) -> Order:
        order = self.get_order(identifier)
        self._apply(order, lifecycle.mark_ready_for_billing)
        order = self._persist(order)
        logger.info(f"Order {order.order_number} marked ready for billing")
        return order

    def process_payment(
        self, identifier: str, amount: float, payment_date: Optional[datetime] = None
    ) -> Order:
        order = self.get_order(identifier)
        self._apply(order, lifecycle.process_payment, amount, payment_date or utcnow())
        order = self._persist(order)
        logger.info(
            f"Payment of {amount:.2f} applied to order {order.order_number} "
            f"(total {order.total_amount:.2f}) → {order.payment_status}"
        )
        return order

    def cancel_order(self, identifier: str, reason: Optional[str] = None) -> Order:
        order = self.get_order(identifier)
        self._apply(order, state_machine.update_status, OrderStatus.CANCELLED)
        lifecycle.append_cancellation_reason(order, reason)
        order = self._persist(order)
        logger.info(f"Order {order.order_number} cancelled" + (f": {reason}" if reason else ""))
        return order

    def bulk_mark_ready_for_billing(self, order_ids: list[str]) -> dict:
        """
        Mark each order ready for billing on its own.

        One order failing (missing, malformed id, not completed, concurrent
        update) does not affect the others; failures are listed in the result.
        """
        matched = 0
        modified = 0
        failed = []

        for order_id in order_ids:
            try:
                order = self.get_order(order_id)
                matched += 1
                self._apply(order, lifecycle.mark_ready_for_billing)
                self._persist(order)
                modified += 1
            except AppError as e:
                failed.append({"id": order_id, "code": e.code, "message": e.message})

        logger.info(
            f"{modified} of {len(order_ids)} order(s) marked ready for billing"
            + (f", {len(failed)} failed" if failed else "")
        )
        return {"matchedCount": matched, "modifiedCount": modified, "failed": failed}

    def _apply(self, order: Order, rule, *args) -> None:
        """Run a lifecycle rule, discarding any partial in-memory change if it refuses"""
        try:
            rule(order, *args)
        except AppError as e:
            self.db.rollback()
            logger.warning(f"Order {order.order_number}: {e.message}")
            raise

    def _persist(self, order: Order) -> Order:
        try:
            return self.repo.save_order(self.db, order)
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"Concurrent update detected on order {order.order_number}")
            raise ConflictError(
                "Order was modified by another request, reload and retry"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Failed to save order {order.order_number}")
            raise DatabaseError("Failed to save order", e) from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        clinic_name: Optional[str] = None,
        client_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        ready_to_bill: Optional[bool] = None,
    ) -> tuple[list[Order], int, int, int]:
        page, limit = clamp_page(page, limit)
        if clinic_name:
            clinic_name = self.clinics.slug_to_clinic_name(clinic_name)

        orders, total = self.repo.search_orders(
            self.db,
            status=status,
            payment_status=payment_status,
            clinic_name=clinic_name,
            client_id=client_id,
            start_date=start_date,
            end_date=end_date,
            search=search,
            ready_to_bill=ready_to_bill,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return orders, total, page, limit

    def get_orders_ready_for_billing(self, clinic_name: Optional[str] = None) -> list[Order]:
        if clinic_name:
            clinic_name = self.clinics.slug_to_clinic_name(clinic_name)
        return self.repo.get_orders_ready_for_billing(self.db, clinic_name)

    def get_overdue_orders(
        self, days_overdue: int = OVERDUE_DAYS_DEFAULT, clinic_name: Optional[str] = None
    ) -> list[Order]:
        if days_overdue < 0:
            raise ValidationError("daysOverdue cannot be negative")
        if clinic_name:
            clinic_name = self.clinics.slug_to_clinic_name(clinic_name)
        cutoff = utcnow() - timedelta(days=days_overdue)
        return self.repo.get_overdue_orders(self.db, cutoff, clinic_name)

    def get_orders_pending_refund(
        self, clinic_name: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> tuple[list[Order], int, int, int]:
        page, limit = clamp_page(page, limit)
        if clinic_name:
            clinic_name = self.clinics.slug_to_clinic_name(clinic_name)
        orders, total = self.repo.get_orders_pending_refund(
            self.db, clinic_name, skip=(page - 1) * limit, limit=limit
        )
        return orders, total, page, limit

    def get_orders_by_client(self, client_id: str, limit: int = 50) -> list[Order]:
        _, limit = clamp_page(1, limit, default_limit=50)
        orders, _ = self.repo.get_orders_for_client(self.db, client_id, limit=limit)
        return orders
