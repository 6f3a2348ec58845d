import json

import httpx
import pytest

from storefront.core.exceptions import PaymentGatewayError, ServiceUnavailableError
from storefront.core.security import hmac_sha256_hex
from storefront.models import Inventory, Order, OrderStatus, Payment, PaymentStatus
from storefront.services.gateway import RazorpayClient
from storefront.services.payments import to_minor_units
from tests.conftest import auth_headers, make_user


@pytest.fixture
def order(client, customer_headers, address, make_product):
    product = make_product()
    response = client.post(
        "/api/orders",
        json={"items": [{"variant_id": product.variants[0].id, "quantity": 2}], "address_id": address.id},
        headers=customer_headers,
    )
    return response.json()["data"]


def checkout_signature(gateway_order_id, payment_id):
    return hmac_sha256_hex("rzp_test_secret", f"{gateway_order_id}|{payment_id}")


def create_payment(client, headers, order_id):
    return client.post("/api/payments/create", json={"order_id": order_id}, headers=headers)


def verify(client, headers, gateway_order_id, payment_id="pay_123", signature=None):
    return client.post("/api/payments/verify", json={
        "razorpay_order_id": gateway_order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or checkout_signature(gateway_order_id, payment_id),
    }, headers=headers)


def test_to_minor_units():
    assert to_minor_units(108.0) == 10800
    assert to_minor_units(74.4) == 7440
    assert to_minor_units(0.1 + 0.2) == 30


def test_create_payment_sends_amount_in_paise(client, razorpay, customer_headers, order):
    response = create_payment(client, customer_headers, order["id"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["amount"] == 10800
    assert data["currency"] == "INR"
    assert data["key_id"] == "rzp_test_key"
    assert data["gateway_order_id"] == "order_TEST1"
    assert data["order_number"] == order["order_number"]

    sent = razorpay.orders["order_TEST1"]
    assert sent["amount"] == 10800
    assert sent["receipt"] == order["order_number"]
    assert sent["notes"] == {"order_id": str(order["id"]), "order_number": order["order_number"]}
    assert razorpay.requests[0].headers["authorization"].startswith("Basic ")


def test_create_payment_blocks_second_pending_payment(client, customer_headers, order):
    create_payment(client, customer_headers, order["id"])

    response = create_payment(client, customer_headers, order["id"])

    assert response.status_code == 409


def test_create_payment_for_someone_elses_order(client, db, order):
    stranger = auth_headers(make_user(db, "stranger@example.com"))
    assert create_payment(client, stranger, order["id"]).status_code == 404


def test_create_payment_rejects_cod_orders(client, customer_headers, address, make_product):
    product = make_product()
    order = client.post("/api/orders", json={
        "items": [{"variant_id": product.variants[0].id, "quantity": 1}],
        "address_id": address.id,
        "payment_mode": "COD",
    }, headers=customer_headers).json()["data"]

    response = create_payment(client, customer_headers, order["id"])

    assert response.status_code == 422


def test_partial_cod_pays_the_advance(client, razorpay, customer_headers, address, make_product):
    product = make_product()
    order = client.post("/api/orders", json={
        "items": [{"variant_id": product.variants[0].id, "quantity": 2}],
        "address_id": address.id,
        "payment_mode": "PARTIAL_COD",
    }, headers=customer_headers).json()["data"]

    data = create_payment(client, customer_headers, order["id"]).json()["data"]

    assert data["amount"] == 7000
    assert razorpay.orders[data["gateway_order_id"]]["amount"] == 7000


def test_gateway_error_is_reported(client, db, razorpay, customer_headers, order):
    razorpay.fail_with = 400

    response = create_payment(client, customer_headers, order["id"])

    assert response.status_code == 502
    assert response.json()["error"] == {
        "message": "Payment gateway error: Gateway says no",
        "code": "PAYMENT_GATEWAY_ERROR",
    }
    assert db.query(Payment).count() == 0


def test_verify_captured_payment_marks_order_paid(client, db, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]

    response = verify(client, customer_headers, gateway_order_id)

    assert response.status_code == 200
    result = response.json()["data"]
    assert result["verified"] is True
    assert result["payment_status"] == "completed"
    assert result["order_status"] == "paid"

    payment = db.query(Payment).one()
    assert payment.gateway_payment_id == "pay_123"
    inventory = db.query(Inventory).first()
    db.refresh(inventory)
    assert (inventory.stock, inventory.reserved_stock) == (8, 0)

    again = verify(client, customer_headers, gateway_order_id)
    assert again.json()["data"]["message"] == "Payment already verified"
    db.refresh(inventory)
    assert inventory.stock == 8


def test_verify_rejects_bad_signature(client, db, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]

    response = verify(client, customer_headers, gateway_order_id, signature="deadbeef")

    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Invalid payment signature"
    assert db.query(Payment).one().status == PaymentStatus.PENDING


def test_verify_uncaptured_payment_fails_it(client, db, razorpay, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]
    razorpay.payment_status = "failed"

    result = verify(client, customer_headers, gateway_order_id).json()["data"]

    assert result["verified"] is False
    assert result["payment_status"] == "failed"
    assert result["order_status"] == "pending"
    # A failed attempt frees the order for a retry
    assert create_payment(client, customer_headers, order["id"]).status_code == 200


def test_verify_rejects_payment_for_other_order(client, razorpay, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]
    razorpay.payment_order_id = "order_SOMETHING_ELSE"

    response = verify(client, customer_headers, gateway_order_id)

    assert response.status_code == 422


def test_verify_unknown_gateway_order(client, customer_headers):
    assert verify(client, customer_headers, "order_MISSING").status_code == 404


def test_create_payment_for_paid_order(client, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]
    verify(client, customer_headers, gateway_order_id)

    assert create_payment(client, customer_headers, order["id"]).status_code == 409


def test_get_payment_visibility(client, db, customer_headers, admin_headers, order):
    payment_id = create_payment(client, customer_headers, order["id"]).json()["data"]["payment_id"]

    own = client.get(f"/api/payments/{payment_id}", headers=customer_headers)
    assert own.status_code == 200
    assert own.json()["data"]["amount"] == 108.0
    assert client.get(f"/api/payments/{payment_id}", headers=admin_headers).status_code == 200

    stranger = auth_headers(make_user(db, "stranger@example.com"))
    assert client.get(f"/api/payments/{payment_id}", headers=stranger).status_code == 404


def _webhook(client, event):
    body = json.dumps(event).encode("utf-8")
    return client.post(
        "/api/webhooks/razorpay",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": hmac_sha256_hex("whsec_test", body),
        },
    )


def test_razorpay_webhook_captures_payment(client, db, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]

    response = _webhook(client, {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_hook", "order_id": gateway_order_id, "status": "captured"}}},
    })

    assert response.status_code == 200
    assert response.json()["data"]["handled"] is True
    payment = db.query(Payment).one()
    db.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.gateway_payment_id == "pay_hook"
    assert db.query(Order).one().status == OrderStatus.PAID

    replay = _webhook(client, {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_hook", "order_id": gateway_order_id}}},
    })
    assert replay.json()["data"]["handled"] is False


def test_razorpay_webhook_payment_failed(client, db, customer_headers, order):
    gateway_order_id = create_payment(client, customer_headers, order["id"]).json()["data"]["gateway_order_id"]

    response = _webhook(client, {
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_bad", "order_id": gateway_order_id}}},
    })

    assert response.json()["data"]["handled"] is True
    payment = db.query(Payment).one()
    db.refresh(payment)
    assert payment.status == PaymentStatus.FAILED


def test_razorpay_webhook_ignores_other_events(client):
    response = _webhook(client, {"event": "refund.created", "payload": {}})
    assert response.status_code == 200
    assert response.json()["data"] == {"received": True, "event": "refund.created", "handled": False}


def test_razorpay_webhook_rejects_bad_signature(client):
    response = client.post(
        "/api/webhooks/razorpay",
        content=b'{"event": "payment.captured"}',
        headers={"X-Razorpay-Signature": "forged"},
    )
    assert response.status_code == 401


def test_webhook_signature_covers_raw_bytes(gateway):
    body = b'{"event": "payment.captured", "note": "\xff"}'
    signature = hmac_sha256_hex("whsec_test", body)

    assert gateway.verify_webhook_signature(body, signature) is True
    assert gateway.verify_webhook_signature(body.replace(b"\xff", b"\xfe"), signature) is False


def test_unconfigured_gateway_refuses_requests():
    gateway = RazorpayClient(key_id="", key_secret="")
    assert gateway.configured is False
    with pytest.raises(PaymentGatewayError):
        gateway.create_order(100, "INR", "ORD-1", {})
    assert gateway.verify_payment_signature("order_1", "pay_1", "sig") is False


def test_unreachable_gateway_is_service_unavailable():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = RazorpayClient("key", "secret", transport=httpx.MockTransport(refuse))
    with pytest.raises(ServiceUnavailableError):
        gateway.fetch_payment("pay_1")
