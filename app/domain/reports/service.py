"""Report service - read-only summaries of orders, appointments and payments"""

import csv
import logging
from datetime import datetime, timedelta
from io import StringIO
from typing import Optional

from sqlalchemy.orm import Session

from ...config import REPORT_LOOKBACK_DAYS, WEEKLY_CAPACITY_HOURS
from ...errors import ValidationError
from ...models import Order, OrderStatus, PaymentStatus, utcnow
from ..clinics.service import ClinicService
from ..orders.repository import OrderRepository
from ..orders.service import clamp_page
from .aggregation import aggregate, day_bucket, month_bucket, percentage, total
from .repository import ReportRepository

logger = logging.getLogger(__name__)

# Appointment.status codes
APPOINTMENT_COMPLETED = 1
APPOINTMENT_CANCELLED = 2

PRODUCT_PERFORMANCE_LOOKBACK_DAYS = 730
RECENT_ORDERS_LIMIT = 20
EXPORT_FORMATS = ("json", "csv")


def _is_completed(order: Order) -> bool:
    return order.status == OrderStatus.COMPLETED.value


def _is_paid(order: Order) -> bool:
    return order.payment_status == PaymentStatus.PAID.value


def _iso_day(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


class ReportService:
    """Service layer for reports"""

    def __init__(self, db: Session):
        self.db = db
        self.orders = OrderRepository()
        self.repo = ReportRepository()
        self.clinics = ClinicService(db)

    def _clinic(self, clinic_name: Optional[str], required: bool = True) -> Optional[str]:
        if not clinic_name:
            if required:
                raise ValidationError("Clinic name is required", code="MISSING_CLINIC_NAME")
            return None
        return self.clinics.slug_to_clinic_name(clinic_name)

    @staticmethod
    def _date_range(
        start_date: Optional[datetime],
        end_date: Optional[datetime],
        lookback_days: int = REPORT_LOOKBACK_DAYS,
    ) -> tuple[datetime, datetime]:
        end = end_date or utcnow()
        start = start_date or end - timedelta(days=lookback_days)
        if start > end:
            raise ValidationError("startDate must be before endDate")
        return start, end

    # ------------------------------------------------------------------
    # Order analytics
    # ------------------------------------------------------------------

    def get_order_status_distribution(
        self,
        clinic_name: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        """Count and value of orders per status and per payment status"""
        clinic = self._clinic(clinic_name)
        orders = self.orders.get_orders_in_range(self.db, clinic, start_date, end_date)

        by_status = aggregate(orders, key=lambda o: o.status, sums={"totalAmount": lambda o: o.total_amount})
        by_payment = aggregate(
            orders, key=lambda o: o.payment_status, sums={"totalAmount": lambda o: o.total_amount}
        )

        logger.info(f"Order status report generated for clinic: {clinic}")
        return {
            "statusDistribution": [
                {
                    "status": b.key,
                    "count": b.count,
                    "totalAmount": round(b.sums["totalAmount"], 2),
                    "avgAmount": round(b.avg("totalAmount"), 2),
                }
                for b in by_status.values()
            ],
            "paymentDistribution": [
                {"paymentStatus": b.key, "count": b.count, "totalAmount": round(b.sums["totalAmount"], 2)}
                for b in by_payment.values()
            ],
        }

    def get_revenue_analytics(
        self,
        clinic_name: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        """Monthly revenue of non-cancelled orders, plus an overall summary"""
        clinic = self._clinic(clinic_name)
        orders = self.orders.get_orders_in_range(
            self.db, clinic, start_date, end_date, exclude_cancelled=True
        )

        monthly = aggregate(
            orders,
            key=lambda o: month_bucket(o.service_date),
            sums={"totalRevenue": lambda o: o.total_amount},
            counts={"completedOrders": _is_completed, "paidOrders": _is_paid},
        )
        analytics = [
            {
                "month": b.key,
                "totalRevenue": round(b.sums["totalRevenue"], 2),
                "orderCount": b.count,
                "avgOrderValue": round(b.avg("totalRevenue"), 2),
                "completedOrders": b.counts["completedOrders"],
                "paidOrders": b.counts["paidOrders"],
            }
            for b in sorted(monthly.values(), key=lambda b: b.key or "")
        ]

        overall = total(
            orders,
            sums={"totalRevenue": lambda o: o.total_amount},
            mins={"minOrderValue": lambda o: o.total_amount},
            maxs={"maxOrderValue": lambda o: o.total_amount},
            distinct={"uniqueClientCount": lambda o: o.client_id},
        )

        logger.info(f"Revenue analytics generated for clinic: {clinic} ({len(orders)} orders)")
        return {
            "clinicName": clinic,
            "analytics": analytics,
            "summary": {
                "totalRevenue": round(overall.sums["totalRevenue"], 2),
                "totalOrders": overall.count,
                "avgOrderValue": round(overall.avg("totalRevenue"), 2),
                "maxOrderValue": overall.maxs["maxOrderValue"],
                "minOrderValue": overall.mins["minOrderValue"],
                "uniqueClientCount": len(overall.distinct["uniqueClientCount"]),
            },
        }

    def get_product_performance(
        self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> dict:
        """Revenue and volume per product across all clinics"""
        start, end = self._date_range(start_date, end_date, PRODUCT_PERFORMANCE_LOOKBACK_DAYS)
        orders = self.orders.get_orders_in_range(self.db, None, start, end, exclude_cancelled=True)

        lines = [(order, item) for order in orders for item in order.items or []]
        per_product = aggregate(
            lines,
            key=lambda line: line[1]["productKey"],
            first={"productName": lambda line: line[1]["productName"]},
            sums={
                "totalQuantity": lambda line: line[1]["quantity"],
                "totalRevenue": lambda line: line[1]["subtotal"],
                "unitPriceTotal": lambda line: line[1]["unitPrice"],
            },
            distinct={"uniqueClientCount": lambda line: line[0].client_id},
        )
        performance = sorted(
            (
                {
                    "productKey": b.key,
                    "productName": b.first["productName"],
                    "totalOrders": b.count,
                    "totalQuantity": int(b.sums["totalQuantity"]),
                    "totalRevenue": round(b.sums["totalRevenue"], 2),
                    "avgPrice": round(b.avg("unitPriceTotal"), 2),
                    "uniqueClientCount": len(b.distinct["uniqueClientCount"]),
                }
                for b in per_product.values()
            ),
            key=lambda p: p["totalRevenue"],
            reverse=True,
        )

        overall = total(
            lines,
            sums={"totalRevenue": lambda line: line[1]["subtotal"]},
            distinct={"uniqueProductCount": lambda line: line[1]["productKey"]},
        )

        logger.info("Product performance analytics generated")
        return {
            "dateRange": {"startDate": _iso_day(start), "endDate": _iso_day(end)},
            "performance": performance,
            "summary": {
                "uniqueProductCount": len(overall.distinct["uniqueProductCount"]),
                "totalRevenue": round(overall.sums["totalRevenue"], 2),
                "totalOrders": overall.count,
            },
        }

    def get_product_service_history(
        self,
        product_key: int,
        clinic_name: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> list[dict]:
        """Every order line that used a product, newest service first"""
        clinic = self._clinic(clinic_name, required=False)
        orders = self.orders.get_orders_in_range(self.db, clinic, start_date, end_date)

        history = []
        for order in orders:
            for item in order.items or []:
                if item["productKey"] != product_key:
                    continue
                history.append(
                    {
                        "id": order.id,
                        "orderNumber": order.order_number,
                        "clientId": order.client_id,
                        "clientName": order.client_name,
                        "clinicName": order.clinic_name,
                        "serviceDate": order.service_date,
                        "itemDetails": item,
                        "totalAmount": order.total_amount,
                        "status": order.status,
                    }
                )
        logger.info(f"Product service history retrieved for product: {product_key}")
        return history

    def get_client_order_details(
        self,
        client_id: str,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> dict:
        """A page of the client's orders plus statistics over all of them"""
        page, limit = clamp_page(page, limit, default_limit=50)
        orders, count = self.orders.get_orders_for_client(
            self.db, client_id, status, payment_status, skip=(page - 1) * limit, limit=limit
        )
        all_orders = self.orders.get_orders_in_range(self.db, client_id=client_id)

        stats = total(
            all_orders,
            sums={
                "totalRevenue": lambda o: o.total_amount,
                "outstandingAmount": lambda o: 0 if _is_paid(o) else o.total_amount,
            },
            counts={
                "completedOrders": _is_completed,
                "pendingOrders": lambda o: o.status == OrderStatus.SCHEDULED.value,
                "paidOrders": _is_paid,
            },
        )

        logger.info(f"Client order details retrieved for client: {client_id}")
        return {
            "orders": orders,
            "total": count,
            "page": page,
            "limit": limit,
            "statistics": {
                "totalOrders": stats.count,
                "totalRevenue": round(stats.sums["totalRevenue"], 2),
                "avgOrderValue": round(stats.avg("totalRevenue"), 2),
                "completedOrders": stats.counts["completedOrders"],
                "pendingOrders": stats.counts["pendingOrders"],
                "paidOrders": stats.counts["paidOrders"],
                "outstandingAmount": round(stats.sums["outstandingAmount"], 2),
            },
        }

    def export_orders(
        self,
        clinic_name: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        export_format: str = "json",
        limit: int = 1000,
    ):
        """Orders as a list (json) or as CSV text"""
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format: {export_format}")

        clinic = self._clinic(clinic_name, required=False)
        orders = self.orders.get_orders_in_range(
            self.db, clinic, start_date, end_date, limit=max(1, limit)
        )
        logger.info(
            f"Exported {len(orders)} orders" + (f" for clinic: {clinic}" if clinic else "")
        )
        if export_format == "csv":
            return self._orders_to_csv(orders)
        return orders

    @staticmethod
    def _orders_to_csv(orders: list[Order]) -> str:
        output = StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL)
        writer.writerow(
            [
                "Order Number",
                "Client Name",
                "Service Date",
                "Status",
                "Payment Status",
                "Total Amount",
                "Items",
            ]
        )
        for order in orders:
            writer.writerow(
                [
                    order.order_number,
                    order.client_name,
                    order.service_date.strftime("%Y-%m-%d") if order.service_date else "",
                    order.status,
                    order.payment_status,
                    f"{order.total_amount:.2f}",
                    "; ".join(
                        f"{item['productName']} x{item['quantity']}" for item in order.items or []
                    ),
                ]
            )
        return output.getvalue()

    # ------------------------------------------------------------------
    # Clinic reports
    # ------------------------------------------------------------------

    def get_timesheet_report(
        self,
        clinic_name: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        """Hours, visit counts and order revenue per practitioner"""
        clinic = self._clinic(clinic_name)
        start, end = self._date_range(start_date, end_date)
        appointments = self.repo.get_appointments(self.db, clinic, start, end)

        # Revenue comes from non-cancelled orders placed for these appointments
        revenue_by_appointment: dict[int, float] = {}
        for order in self.orders.get_orders_for_appointments(self.db, [a.id for a in appointments]):
            if order.status != OrderStatus.CANCELLED.value:
                revenue_by_appointment[order.appointment_id] = order.total_amount

        per_resource = aggregate(
            appointments,
            key=lambda a: a.resource_id,
            first={"resourceName": lambda a: a.resource_name or f"Resource {a.resource_id}"},
            sums={
                "totalDuration": lambda a: a.duration or 0,
                "revenue": lambda a: revenue_by_appointment.get(a.id, 0),
            },
            counts={
                "completedAppointments": lambda a: a.status == APPOINTMENT_COMPLETED,
                "cancelledAppointments": lambda a: a.status == APPOINTMENT_CANCELLED,
            },
        )

        practitioners = []
        for b in per_resource.values():
            hours = round(b.sums["totalDuration"] / 60, 2)
            practitioners.append(
                {
                    "resourceId": b.key,
                    "resourceName": b.first["resourceName"],
                    "totalAppointments": b.count,
                    "completedAppointments": b.counts["completedAppointments"],
                    "cancelledAppointments": b.counts["cancelledAppointments"],
                    "totalDuration": int(b.sums["totalDuration"]),
                    "totalHours": hours,
                    "averageAppointmentDuration": round(b.avg("totalDuration"), 2),
                    "utilization": round(min(100, percentage(hours, WEEKLY_CAPACITY_HOURS)), 2),
                    "revenue": round(b.sums["revenue"], 2),
                }
            )
        practitioners.sort(key=lambda p: p["totalHours"], reverse=True)

        total_hours = round(sum(p["totalHours"] for p in practitioners), 2)
        logger.info(f"Timesheet report generated for clinic: {clinic} ({len(practitioners)} practitioners)")
        return {
            "clinicName": clinic,
            "dateRange": {"startDate": _iso_day(start), "endDate": _iso_day(end)},
            "practitioners": practitioners,
            "summary": {
                "totalHours": total_hours,
                "totalRevenue": round(sum(p["revenue"] for p in practitioners), 2),
                "averageUtilization": round(
                    sum(p["utilization"] for p in practitioners) / len(practitioners), 2
                )
                if practitioners
                else 0,
            },
        }

    def get_order_status_report(self, clinic_name: str) -> dict:
        """Breakdown of every order status with share of the clinic's orders"""
        clinic = self._clinic(clinic_name)
        orders = self.orders.get_orders_in_range(self.db, clinic)

        by_status = aggregate(orders, key=lambda o: o.status, sums={"totalValue": lambda o: o.total_amount})
        overall = total(orders, sums={"totalValue": lambda o: o.total_amount})

        known = [s.value for s in OrderStatus]
        statuses = known + [k for k in by_status if k not in known]
        breakdown = []
        for status in statuses:
            bucket = by_status.get(status)
            count = bucket.count if bucket else 0
            breakdown.append(
                {
                    "status": status,
                    "count": count,
                    "totalValue": round(bucket.sums["totalValue"], 2) if bucket else 0,
                    "percentage": percentage(count, overall.count),
                }
            )

        recent = sorted(orders, key=lambda o: (o.created_at or datetime.min, o.id), reverse=True)
        recent_orders = [
            {
                "orderId": o.id,
                "orderNumber": o.order_number,
                "clientName": o.client_name,
                "status": o.status,
                "totalAmount": o.total_amount,
                "createdAt": o.created_at,
            }
            for o in recent[:RECENT_ORDERS_LIMIT]
        ]

        return {
            "clinicName": clinic,
            "statusBreakdown": breakdown,
            "recentOrders": recent_orders,
            "summary": {
                "totalOrders": overall.count,
                "totalValue": round(overall.sums["totalValue"], 2),
                "averageOrderValue": round(overall.avg("totalValue"), 2),
            },
        }

    def get_copay_summary(
        self,
        clinic_name: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        """Coordination-of-benefits co-payments by insurer slot and by month"""
        clinic = self._clinic(clinic_name)
        start, end = self._date_range(start_date, end_date)
        payments = self.repo.get_payments(self.db, clinic, start, end, with_cob_only=True)

        # One row per non-zero COB amount
        copays = [
            (label, payment, amount)
            for payment in payments
            for label, amount in (
                ("Insurance 1", payment.cob1_amount),
                ("Insurance 2", payment.cob2_amount),
            )
            if amount and amount > 0
        ]

        by_insurer = aggregate(copays, key=lambda c: c[0], sums={"amount": lambda c: c[2]})
        by_month = aggregate(
            copays, key=lambda c: month_bucket(c[1].payment_date), sums={"amount": lambda c: c[2]}
        )
        overall = total(copays, sums={"amount": lambda c: c[2]})
        total_amount = overall.sums["amount"]

        breakdown = []
        for label in ("Insurance 1", "Insurance 2"):
            bucket = by_insurer.get(label)
            amount = bucket.sums["amount"] if bucket else 0
            breakdown.append(
                {
                    "insuranceType": label,
                    "count": bucket.count if bucket else 0,
                    "amount": round(amount, 2),
                    "percentage": percentage(amount, total_amount),
                }
            )

        return {
            "clinicName": clinic,
            "dateRange": {"startDate": _iso_day(start), "endDate": _iso_day(end)},
            "summary": {
                "totalCoPayments": overall.count,
                "totalCoPayAmount": round(total_amount, 2),
                "averageCoPayment": round(overall.avg("amount"), 2),
                "insurance1CoPayments": breakdown[0]["count"],
                "insurance2CoPayments": breakdown[1]["count"],
            },
            "coPayBreakdown": breakdown,
            "monthlyTrends": [
                {"month": b.key, "amount": round(b.sums["amount"], 2), "count": b.count}
                for b in sorted(by_month.values(), key=lambda b: b.key or "")
            ],
        }

    def get_payment_summary(
        self,
        clinic_name: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        """Payments received by method and by day"""
        clinic = self._clinic(clinic_name)
        start, end = self._date_range(start_date, end_date)
        payments = self.repo.get_payments(self.db, clinic, start, end)

        by_method = aggregate(
            payments,
            key=lambda p: p.payment_method or "unknown",
            sums={"amount": lambda p: p.total_paid},
        )
        by_day = aggregate(
            payments, key=lambda p: day_bucket(p.payment_date), sums={"amount": lambda p: p.total_paid}
        )
        overall = total(
            payments,
            sums={"amount": lambda p: p.total_paid},
            distinct={"uniqueClients": lambda p: p.client_id},
        )
        total_amount = overall.sums["amount"]

        return {
            "clinicName": clinic,
            "dateRange": {"startDate": _iso_day(start), "endDate": _iso_day(end)},
            "summary": {
                "totalPayments": overall.count,
                "totalAmount": round(total_amount, 2),
                "averagePayment": round(overall.avg("amount"), 2),
                "uniqueClients": len(overall.distinct["uniqueClients"]),
            },
            "paymentMethods": sorted(
                (
                    {
                        "method": b.key,
                        "count": b.count,
                        "amount": round(b.sums["amount"], 2),
                        "percentage": percentage(b.sums["amount"], total_amount),
                    }
                    for b in by_method.values()
                ),
                key=lambda m: m["amount"],
                reverse=True,
            ),
            "dailyPayments": [
                {"date": b.key, "count": b.count, "amount": round(b.sums["amount"], 2)}
                for b in sorted(by_day.values(), key=lambda b: b.key or "")
            ],
        }
