"""In-memory order mutations: line items, billing readiness and payments.

Nothing here touches the session; the service loads, calls one of these and
persists the result.
"""

import math
from datetime import datetime
from typing import Optional

from ...errors import InvalidAmount, NotCompleted, ValidationError
from ...models import Order, OrderStatus, PaymentStatus, utcnow

# Statuses an order may be in while it waits for an invoice
AWAITING_INVOICE_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.IN_PROGRESS.value)


def build_line_item(
    product_key: int,
    product_name: str,
    quantity: int,
    duration: int,
    unit_price: float,
) -> dict:
    """Line item dict with its subtotal priced as quantity x unit price"""
    if quantity < 1:
        raise ValidationError(f"Quantity for product {product_key} must be at least 1")
    if duration < 0:
        raise ValidationError(f"Duration for product {product_key} cannot be negative")
    if not math.isfinite(unit_price) or unit_price < 0:
        raise ValidationError(f"Unit price for product {product_key} must be a finite, non-negative number")

    return {
        "productKey": product_key,
        "productName": product_name,
        "quantity": quantity,
        "duration": duration,
        "unitPrice": unit_price,
        "subtotal": round(quantity * unit_price, 2),
    }


def calculate_total(items: list[dict]) -> float:
    return round(sum(item["subtotal"] for item in items), 2)


def replace_items(order: Order, items: list[dict]) -> Order:
    """Swap the order's line items and recompute its total"""
    # A new list object so the JSON column registers the change
    order.items = [dict(item) for item in items]
    order.total_amount = calculate_total(order.items)
    return order


def mark_ready_for_billing(order: Order) -> Order:
    """Flag a completed order as ready to bill. Repeated calls are no-ops."""
    if order.status != OrderStatus.COMPLETED.value:
        raise NotCompleted(order.status)
    order.ready_to_bill = True
    return order


def process_payment(order: Order, amount: float, payment_date: Optional[datetime] = None) -> Order:
    """
    Apply a payment and derive the payment status.

    Only the latest amount is compared with the order total; earlier partial
    payments are not accumulated.
    """
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise InvalidAmount(amount)

    if amount >= order.total_amount:
        order.payment_status = PaymentStatus.PAID.value
        order.bill_date = payment_date or utcnow()
    else:
        order.payment_status = PaymentStatus.PARTIAL.value
    return order


def append_cancellation_reason(order: Order, reason: Optional[str]) -> Order:
    if reason:
        order.description = f"{order.description or ''} | Cancelled: {reason}"
    return order

