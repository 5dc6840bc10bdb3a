"""HTTP behaviour of the /orders endpoints"""

from datetime import datetime, timedelta

import pytest

from app.database import SessionLocal
from app.domain.orders import lifecycle, state_machine
from app.domain.orders.repository import OrderRepository
from app.domain.orders.service import OrderService
from app.errors import ConflictError
from app.models import Order, OrderStatus, PaymentStatus, utcnow

from .conftest import CLINIC, CLINIC_SLUG


def _error(response):
    body = response.json()
    assert body["success"] is False
    return body["error"]


# ============================================================================
# CREATE / READ / UPDATE
# ============================================================================


class TestCreateOrder:
    def _payload(self, **overrides):
        payload = {
            "clientId": 1001,
            "clientName": "Jane Doe",
            "clinicName": CLINIC_SLUG,
            "serviceDate": "2024-03-10T09:00:00Z",
            "appointmentId": 5001,
            "items": [{"productKey": 101}, {"productKey": 202, "quantity": 2}],
        }
        payload.update(overrides)
        return payload

    def test_prices_items_from_catalogue(self, client, catalogue):
        response = client.post("/orders", json=self._payload())

        assert response.status_code == 201
        order = response.json()["data"]
        assert order["orderNumber"] == "ORD-5001"
        assert order["clientId"] == "1001"
        assert order["clinicName"] == CLINIC
        assert order["status"] == "scheduled"
        assert order["paymentStatus"] == "pending"
        assert order["readyToBill"] is False
        assert order["isBillable"] is False
        assert order["endDate"] == "2024-03-10T10:00:00"
        assert order["items"][0] == {
            "productKey": 101,
            "productName": "Physiotherapy Session",
            "quantity": 1,
            "duration": 45,
            "unitPrice": 90.0,
            "subtotal": 90.0,
        }
        assert order["items"][1]["subtotal"] == 700.0
        assert order["totalAmount"] == 790.0
        assert order["totalDuration"] == 75
        assert order["version"] == 1

    def test_caller_values_override_catalogue(self, client, catalogue):
        payload = self._payload(
            items=[{"productKey": 101, "productName": "Follow-up", "unitPrice": 60, "duration": 30}]
        )
        order = client.post("/orders", json=payload).json()["data"]
        assert order["items"][0]["productName"] == "Follow-up"
        assert order["totalAmount"] == 60.0
        assert order["totalDuration"] == 30

    def test_manual_order_gets_generated_number(self, client, catalogue):
        order = client.post("/orders", json=self._payload(appointmentId=None)).json()["data"]
        assert order["orderNumber"].startswith("ORD-")
        assert order["appointmentId"] is None

    def test_unknown_product_rejected(self, client, catalogue):
        response = client.post("/orders", json=self._payload(items=[{"productKey": 999}]))
        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"

    def test_empty_items_rejected(self, client, catalogue):
        response = client.post("/orders", json=self._payload(items=[]))
        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"

    def test_duplicate_appointment_conflicts(self, client, catalogue):
        assert client.post("/orders", json=self._payload()).status_code == 201
        response = client.post("/orders", json=self._payload())
        assert response.status_code == 409
        assert _error(response)["code"] == "CONFLICT"


class TestGetOrder:
    def test_by_id_and_by_order_number(self, client, make_order):
        order = make_order(appointment_id=777)

        by_id = client.get(f"/orders/{order.id}")
        by_number = client.get("/orders/ORD-777")

        assert by_id.status_code == 200
        assert by_number.status_code == 200
        assert by_id.json()["data"]["id"] == by_number.json()["data"]["id"] == order.id

    def test_missing_order_is_404(self, client):
        response = client.get("/orders/424242")
        assert response.status_code == 404
        assert _error(response)["code"] == "NOT_FOUND"

    def test_malformed_id_is_400(self, client):
        response = client.get("/orders/not-an-id")
        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_ID"


class TestUpdateOrder:
    def test_replacing_items_recomputes_total(self, client, catalogue, make_order):
        order = make_order()
        response = client.put(
            f"/orders/{order.id}",
            json={"items": [{"productKey": 202}], "description": "Orthotics fitting"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalAmount"] == 350.0
        assert data["description"] == "Orthotics fitting"
        assert data["version"] == order.version + 1

    def test_end_before_service_rejected(self, client, make_order):
        order = make_order()
        response = client.put(f"/orders/{order.id}", json={"endDate": "2024-03-09T09:00:00"})
        assert response.status_code == 400

        unchanged = client.get(f"/orders/{order.id}").json()["data"]
        assert unchanged["endDate"] == "2024-03-10T10:00:00"


# ============================================================================
# LIFECYCLE
# ============================================================================


class TestStatus:
    def test_completion_flags_order_for_billing(self, client, make_order):
        order = make_order(OrderStatus.IN_PROGRESS)

        response = client.put(f"/orders/{order.id}/status", json={"status": "completed"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "completed"
        assert data["readyToBill"] is True
        assert data["isBillable"] is True

    def test_illegal_transition_keeps_status(self, client, make_order):
        order = make_order(OrderStatus.SCHEDULED)

        response = client.put(f"/orders/{order.id}/status", json={"status": "completed"})

        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_TRANSITION"
        assert client.get(f"/orders/{order.id}").json()["data"]["status"] == "scheduled"

    def test_unknown_status_value(self, client, make_order):
        order = make_order()
        response = client.put(f"/orders/{order.id}/status", json={"status": "archived"})
        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"

    def test_missing_order(self, client):
        response = client.put("/orders/31337/status", json={"status": "completed"})
        assert response.status_code == 404


class TestBillingReady:
    def test_completed_order_is_marked(self, client, make_order):
        order = make_order(OrderStatus.COMPLETED)
        response = client.put(f"/orders/{order.id}/billing/ready")
        assert response.status_code == 200
        assert response.json()["data"]["readyToBill"] is True

        # Idempotent
        again = client.put(f"/orders/{order.id}/billing/ready")
        assert again.status_code == 200
        assert again.json()["data"]["readyToBill"] is True

    def test_incomplete_order_rejected(self, client, make_order):
        order = make_order(OrderStatus.IN_PROGRESS)
        response = client.put(f"/orders/{order.id}/billing/ready")
        assert response.status_code == 400
        assert _error(response)["code"] == "NOT_COMPLETED"
        assert client.get(f"/orders/{order.id}").json()["data"]["readyToBill"] is False


class TestPayment:
    def test_full_payment(self, client, make_order):
        order = make_order(OrderStatus.COMPLETED)
        response = client.post(
            f"/orders/{order.id}/payment",
            json={"amount": 100, "paymentDate": "2024-04-01T12:00:00Z"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["paymentStatus"] == "paid"
        assert data["billDate"] == "2024-04-01T12:00:00"
        assert data["isBillable"] is False

    def test_partial_payment(self, client, make_order):
        order = make_order(OrderStatus.COMPLETED)
        data = client.post(f"/orders/{order.id}/payment", json={"amount": 40}).json()["data"]
        assert data["paymentStatus"] == "partial"
        assert data["billDate"] is None

    def test_negative_amount_rejected(self, client, make_order):
        order = make_order(OrderStatus.COMPLETED)
        response = client.post(f"/orders/{order.id}/payment", json={"amount": -5})
        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_AMOUNT"
        assert client.get(f"/orders/{order.id}").json()["data"]["paymentStatus"] == "pending"


class TestCancel:
    def test_cancel_with_reason(self, client, make_order):
        order = make_order(OrderStatus.COMPLETED, PaymentStatus.PAID, description="Knee rehab")
        response = client.put(f"/orders/{order.id}/cancel", json={"reason": "Client moved"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "cancelled"
        assert data["paymentStatus"] == "refunded"
        assert data["description"] == "Knee rehab | Cancelled: Client moved"

    def test_cancel_without_body(self, client, make_order):
        order = make_order()
        response = client.put(f"/orders/{order.id}/cancel")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

    def test_cancelled_order_cannot_be_cancelled_again(self, client, make_order):
        order = make_order(OrderStatus.CANCELLED, PaymentStatus.REFUNDED)
        response = client.put(f"/orders/{order.id}/cancel", json={"reason": "again"})
        assert response.status_code == 400
        assert _error(response)["code"] == "INVALID_TRANSITION"


class TestBulkReadyForBilling:
    def test_missing_order_does_not_block_the_rest(self, client, make_order):
        ids = [make_order(OrderStatus.COMPLETED).id for _ in range(4)]

        response = client.post(
            "/orders/bulk/ready-for-billing", json={"orderIds": ids + [999999]}
        )

        assert response.status_code == 200
        result = response.json()["data"]
        assert result["matchedCount"] == 4
        assert result["modifiedCount"] == 4
        assert result["failed"] == [
            {"id": "999999", "code": "NOT_FOUND", "message": "Order with id 999999 not found"}
        ]
        for order_id in ids:
            assert client.get(f"/orders/{order_id}").json()["data"]["readyToBill"] is True

    def test_incomplete_orders_reported_individually(self, client, make_order):
        done = make_order(OrderStatus.COMPLETED)
        pending = make_order(OrderStatus.SCHEDULED)

        result = client.post(
            "/orders/bulk/ready-for-billing",
            json={"orderIds": [done.id, pending.order_number, "junk"]},
        ).json()["data"]

        assert result["matchedCount"] == 2
        assert result["modifiedCount"] == 1
        assert [f["code"] for f in result["failed"]] == ["NOT_COMPLETED", "INVALID_ID"]

    def test_empty_list_rejected(self, client):
        response = client.post("/orders/bulk/ready-for-billing", json={"orderIds": []})
        assert response.status_code == 400


class TestConcurrentWrites:
    def test_lost_update_is_rejected(self, db, make_order):
        order = make_order(OrderStatus.IN_PROGRESS)
        first_session, second_session = SessionLocal(), SessionLocal()
        try:
            first = OrderService(first_session)
            second = OrderService(second_session)
            # Both requests read version 1 before either writes
            winner = first.get_order(str(order.id))
            loser = second.get_order(str(order.id))

            state_machine.update_status(winner, OrderStatus.COMPLETED)
            first._persist(winner)

            lifecycle.process_payment(loser, 10)
            with pytest.raises(ConflictError):
                second._persist(loser)
        finally:
            first_session.close()
            second_session.close()

        db.refresh(order)
        assert order.status == "completed"
        assert order.ready_to_bill is True
        assert order.payment_status == "pending"
        assert order.version == 2

    def test_duplicate_insert_after_precheck_is_conflict(self, client, catalogue, monkeypatch):
        payload = {
            "clientId": "1001",
            "clientName": "Jane Doe",
            "clinicName": CLINIC,
            "serviceDate": "2024-03-10T09:00:00",
            "appointmentId": 6001,
            "items": [{"productKey": 101}],
        }
        assert client.post("/orders", json=payload).status_code == 201

        # Another request inserted the same number between the check and the insert
        monkeypatch.setattr(
            OrderRepository, "order_number_exists", staticmethod(lambda db, number: False)
        )
        response = client.post("/orders", json=payload)

        assert response.status_code == 409
        assert _error(response)["code"] == "CONFLICT"
        assert client.get("/orders").json()["pagination"]["total"] == 1


class TestNonFiniteNumbers:
    def _post_raw(self, client, url, body):
        return client.post(url, content=body, headers={"Content-Type": "application/json"})

    def test_infinite_unit_price_rejected(self, client, catalogue):
        body = (
            '{"clientId": "1001", "clientName": "Jane Doe", "clinicName": "downtown-physio",'
            ' "serviceDate": "2024-03-10T09:00:00",'
            ' "items": [{"productKey": 101, "unitPrice": Infinity}]}'
        )
        response = self._post_raw(client, "/orders", body)

        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"
        listing = client.get("/orders")
        assert listing.status_code == 200
        assert listing.json()["pagination"]["total"] == 0

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_payment_rejected(self, client, make_order, amount):
        order = make_order(OrderStatus.COMPLETED)

        response = self._post_raw(client, f"/orders/{order.id}/payment", f'{{"amount": {amount}}}')

        assert response.status_code == 400
        data = client.get(f"/orders/{order.id}").json()["data"]
        assert data["paymentStatus"] == "pending"
        assert data["billDate"] is None
        assert data["version"] == order.version


# ============================================================================
# LISTING
# ============================================================================


class TestListing:
    def test_pagination(self, client, make_order):
        for i in range(25):
            make_order(service_date=datetime(2024, 1, 1) + timedelta(days=i))

        response = client.get("/orders", params={"page": 3, "limit": 10})
        body = response.json()

        assert len(body["data"]) == 5
        assert body["pagination"] == {"page": 3, "limit": 10, "total": 25, "totalPages": 3}
        # Newest service date first
        first_page = client.get("/orders", params={"limit": 10}).json()["data"]
        assert first_page[0]["serviceDate"] == "2024-01-25T00:00:00"

    def test_limit_is_capped(self, client, make_order):
        make_order()
        body = client.get("/orders", params={"limit": 5000}).json()
        assert body["pagination"]["limit"] == 100

    def test_filters(self, client, make_order):
        make_order(OrderStatus.COMPLETED, client_id="1", client_name="Alice Martin")
        make_order(OrderStatus.SCHEDULED, client_id="2", client_name="Bob Stone")
        make_order(OrderStatus.COMPLETED, client_id="2", clinic_name="Uptown Clinic")

        def count(**params):
            return client.get("/orders", params=params).json()["pagination"]["total"]

        assert count(status="completed") == 2
        assert count(clientId=2) == 2
        assert count(clinicName=CLINIC) == 2
        assert count(search="alice") == 1
        assert count(status="completed", clinicName="Uptown Clinic") == 1

    def test_ready_for_billing(self, client, make_order):
        awaiting = make_order(OrderStatus.COMPLETED, ready_to_bill=True)
        in_progress = make_order(OrderStatus.IN_PROGRESS, ready_to_bill=True)
        make_order(OrderStatus.COMPLETED, ready_to_bill=True, bill_date=datetime(2024, 4, 1))
        make_order(OrderStatus.CANCELLED, ready_to_bill=True)
        make_order(OrderStatus.COMPLETED, ready_to_bill=False)

        data = client.get("/orders/ready-for-billing").json()["data"]
        assert sorted(o["id"] for o in data) == sorted([awaiting.id, in_progress.id])

    def test_overdue(self, client, make_order):
        old = make_order(OrderStatus.COMPLETED, service_date=utcnow() - timedelta(days=45))
        make_order(OrderStatus.COMPLETED, service_date=utcnow() - timedelta(days=5))
        make_order(OrderStatus.COMPLETED, PaymentStatus.PAID, service_date=utcnow() - timedelta(days=60))
        make_order(OrderStatus.CANCELLED, service_date=utcnow() - timedelta(days=60))

        data = client.get("/orders/report/overdue").json()["data"]
        assert [o["id"] for o in data] == [old.id]
        assert data[0]["daysSinceService"] >= 45

        assert client.get("/orders/report/overdue", params={"daysOverdue": 1}).json()["data"]

    def test_pending_refund(self, client, make_order):
        make_order(OrderStatus.CANCELLED, PaymentStatus.REFUNDED)
        make_order(OrderStatus.COMPLETED, PaymentStatus.PARTIAL)
        make_order(OrderStatus.COMPLETED, PaymentStatus.PAID)

        body = client.get("/orders/report/pending-refund").json()
        assert body["pagination"]["total"] == 2

    def test_orders_by_client_and_clinic(self, client, catalogue, make_order):
        make_order(client_id="77")
        make_order(client_id="77")
        make_order(client_id="78")

        assert len(client.get("/orders/client/77").json()["data"]) == 2
        by_slug = client.get(f"/orders/clinic/{CLINIC_SLUG}").json()
        assert by_slug["pagination"]["total"] == 3


def test_order_model_persists_version(db, make_order):
    order = make_order()
    stored = db.get(Order, order.id)
    assert stored.version == 1
