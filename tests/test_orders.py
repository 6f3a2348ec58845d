import re

import pytest

from storefront.core.idempotency import generate_order_idempotency_key
from storefront.models import AuditLog, CartItem, Coupon, CouponType, Inventory, OrderStatus, PromoUsageLog
from storefront.services.orders import VALID_TRANSITIONS, generate_order_number
from tests.conftest import auth_headers, make_user


@pytest.fixture
def hoodie(make_product):
    return make_product()


def order_json(address_id, *lines, **extra):
    return {
        "items": [{"variant_id": variant_id, "quantity": quantity} for variant_id, quantity in lines],
        "address_id": address_id,
        **extra,
    }


def stock_of(db, variant_id):
    inventory = db.query(Inventory).filter(Inventory.variant_id == variant_id).one()
    db.refresh(inventory)
    return inventory.stock, inventory.reserved_stock


def set_status(client, headers, order_id, status):
    return client.patch(f"/api/admin/orders/{order_id}/status", json={"status": status}, headers=headers)


def test_order_number_format():
    assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{6}", generate_order_number())


def test_idempotency_key_is_order_independent():
    a = generate_order_idempotency_key(1, [{"variant_id": 2, "quantity": 1}, {"variant_id": 1, "quantity": 3}], 5, now=120)
    b = generate_order_idempotency_key(1, [{"variant_id": 1, "quantity": 3}, {"variant_id": 2, "quantity": 1}], 5, now=150)
    c = generate_order_idempotency_key(1, [{"variant_id": 1, "quantity": 3}, {"variant_id": 2, "quantity": 1}], 5, now=200)
    assert a == b
    assert a != c


def test_idempotency_key_covers_payment_mode_and_coupon():
    items = [{"variant_id": 1, "quantity": 1}]
    prepaid = generate_order_idempotency_key(1, items, 5, payment_mode="PREPAID", now=120)
    assert prepaid != generate_order_idempotency_key(1, items, 5, payment_mode="COD", now=120)
    with_coupon = generate_order_idempotency_key(1, items, 5, payment_mode="PREPAID", coupon_code=" save10 ", now=120)
    assert with_coupon != prepaid
    assert with_coupon == generate_order_idempotency_key(
        1, items, 5, payment_mode="PREPAID", coupon_code="SAVE10", now=120
    )


def test_create_order_reserves_stock(client, db, customer_headers, address, hoodie):
    black = hoodie.variants[0]

    response = client.post("/api/orders", json=order_json(address.id, (black.id, 2)), headers=customer_headers)

    assert response.status_code == 201
    order = response.json()["data"]
    assert order["status"] == "pending"
    assert order["payment_mode"] == "PREPAID"
    assert order["subtotal"] == 100.0
    assert order["shipping"] == 0.0
    assert order["tax"] == 8.0
    assert order["total"] == 108.0
    assert order["items"][0]["sku"] == black.sku
    assert order["items"][0]["line_total"] == 100.0
    assert order["address"]["city"] == "Bengaluru"
    assert stock_of(db, black.id) == (10, 2)


def test_create_order_charges_shipping_below_threshold(client, customer_headers, address, hoodie):
    navy = hoodie.variants[1]
    order = client.post(
        "/api/orders", json=order_json(address.id, (navy.id, 1)), headers=customer_headers
    ).json()["data"]

    assert order["subtotal"] == 55.0
    assert order["shipping"] == 15.0
    assert order["tax"] == 4.4
    assert order["total"] == 74.4


def test_create_order_insufficient_stock(client, db, customer_headers, address, hoodie):
    black = hoodie.variants[0]
    client.post("/api/orders", json=order_json(address.id, (black.id, 8)), headers=customer_headers)

    response = client.post(
        "/api/orders", json=order_json(address.id, (black.id, 3), notes="second"), headers=customer_headers
    )

    assert response.status_code == 409
    assert response.json()["error"]["message"] == f"Insufficient stock for {black.sku}. Available: 2"
    assert stock_of(db, black.id) == (10, 8)


def test_create_order_duplicate_submission_returns_same_order(client, db, customer_headers, address, hoodie):
    payload = order_json(address.id, (hoodie.variants[0].id, 1))

    first = client.post("/api/orders", json=payload, headers=customer_headers).json()["data"]
    second = client.post("/api/orders", json=payload, headers=customer_headers).json()["data"]

    assert first["id"] == second["id"]
    assert stock_of(db, hoodie.variants[0].id) == (10, 1)


def test_checkout_retry_after_cancel_creates_new_order(client, db, customer_headers, address, hoodie):
    black = hoodie.variants[0]
    payload = order_json(address.id, (black.id, 2))
    first = client.post("/api/orders", json=payload, headers=customer_headers).json()["data"]
    client.post(f"/api/orders/{first['id']}/cancel", headers=customer_headers)

    retry = client.post("/api/orders", json=payload, headers=customer_headers)

    assert retry.status_code == 201
    order = retry.json()["data"]
    assert order["id"] != first["id"]
    assert order["status"] == "pending"
    assert stock_of(db, black.id) == (10, 2)
    payment = client.post("/api/payments/create", json={"order_id": order["id"]}, headers=customer_headers)
    assert payment.status_code == 200

    again = client.post("/api/orders", json=payload, headers=customer_headers).json()["data"]
    assert again["id"] == order["id"]


def test_changed_payment_mode_is_a_new_order(client, customer_headers, address, hoodie):
    payload = order_json(address.id, (hoodie.variants[0].id, 1))
    prepaid = client.post("/api/orders", json=payload, headers=customer_headers).json()["data"]
    cod = client.post("/api/orders", json={**payload, "payment_mode": "COD"}, headers=customer_headers).json()["data"]

    assert cod["id"] != prepaid["id"]
    assert cod["payment_mode"] == "COD"


def test_create_order_explicit_idempotency_key(client, db, customer_headers, address, hoodie):
    headers = {**customer_headers, "Idempotency-Key": "checkout-abc"}
    first = client.post("/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=headers)
    retry = client.post("/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 4)), headers=headers)

    assert retry.json()["data"]["id"] == first.json()["data"]["id"]
    assert retry.json()["data"]["items"][0]["quantity"] == 1

    other = make_user(db, "other@example.com")
    other_headers = {**auth_headers(other), "Idempotency-Key": "checkout-abc"}
    stolen = client.post("/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=other_headers)
    assert stolen.status_code == 409


def test_create_order_requires_own_address(client, db, address, hoodie):
    other = make_user(db, "other@example.com")
    response = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=auth_headers(other)
    )
    assert response.status_code == 404


def test_create_order_rejects_draft_products(client, customer_headers, address, make_product):
    draft = make_product(status="draft")
    response = client.post(
        "/api/orders", json=order_json(address.id, (draft.variants[0].id, 1)), headers=customer_headers
    )
    assert response.status_code == 422
    assert "items" in response.json()["error"]["fields"]


def test_create_order_validates_items(client, customer_headers, address, hoodie):
    variant_id = hoodie.variants[0].id

    empty = client.post("/api/orders", json=order_json(address.id), headers=customer_headers)
    assert empty.status_code == 422
    assert "items" in empty.json()["error"]["fields"]

    too_many = client.post("/api/orders", json=order_json(address.id, (variant_id, 101)), headers=customer_headers)
    assert "items[0].quantity" in too_many.json()["error"]["fields"]

    repeated = client.post(
        "/api/orders", json=order_json(address.id, (variant_id, 1), (variant_id, 2)), headers=customer_headers
    )
    assert repeated.json()["error"]["fields"]["items"] == "Each variant may only appear once per order"


def test_create_order_removes_purchased_cart_lines(client, db, customer, customer_headers, address, hoodie):
    black, navy = hoodie.variants
    db.add_all([
        CartItem(user_id=customer.id, variant_id=black.id, quantity=1),
        CartItem(user_id=customer.id, variant_id=navy.id, quantity=1),
    ])
    db.commit()

    client.post("/api/orders", json=order_json(address.id, (black.id, 1)), headers=customer_headers)

    remaining = [item.variant_id for item in db.query(CartItem).all()]
    assert remaining == [navy.id]


def test_create_order_with_coupon(client, db, customer_headers, address, hoodie):
    db.add(Coupon(code="SAVE10", type=CouponType.PERCENT, value=10, usage_limit=5))
    db.commit()

    response = client.post(
        "/api/orders",
        json=order_json(address.id, (hoodie.variants[0].id, 2), coupon_code=" save10 "),
        headers=customer_headers,
    )

    order = response.json()["data"]
    assert order["coupon_code"] == "SAVE10"
    assert order["discount"] == 10.0
    assert order["total"] == 98.0
    assert db.query(Coupon).one().used_count == 1
    assert db.query(PromoUsageLog).one().discount_amount == 10.0


def test_create_order_with_invalid_coupon(client, db, customer_headers, address, hoodie):
    response = client.post(
        "/api/orders",
        json=order_json(address.id, (hoodie.variants[0].id, 1), coupon_code="NOPE"),
        headers=customer_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"]["fields"]["coupon_code"] == "Invalid promo code"
    assert stock_of(db, hoodie.variants[0].id) == (10, 0)


def test_disabled_payment_mode_is_rejected(client, admin_headers, customer_headers, address, hoodie):
    client.put("/api/admin/settings", json={"payment_methods": {"cod": {"enabled": False}}}, headers=admin_headers)

    response = client.post(
        "/api/orders",
        json=order_json(address.id, (hoodie.variants[0].id, 1), payment_mode="COD"),
        headers=customer_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"]["fields"] == {"payment_mode": "COD is not available"}


def test_partial_cod_advance(client, customer_headers, address, hoodie):
    order = client.post(
        "/api/orders",
        json=order_json(address.id, (hoodie.variants[0].id, 2), payment_mode="PARTIAL_COD"),
        headers=customer_headers,
    ).json()["data"]
    assert order["advance_payment_amount"] == 70.0


def test_list_and_get_own_orders(client, db, customer_headers, address, hoodie):
    created = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=customer_headers
    ).json()["data"]

    listed = client.get("/api/orders", headers=customer_headers).json()["data"]
    assert [o["id"] for o in listed] == [created["id"]]
    assert client.get(f"/api/orders/{created['id']}", headers=customer_headers).status_code == 200

    stranger = auth_headers(make_user(db, "stranger@example.com"))
    assert client.get(f"/api/orders/{created['id']}", headers=stranger).status_code == 404
    assert client.get("/api/orders", headers=stranger).json()["data"] == []


def test_cancel_pending_order_releases_reservation(client, db, customer_headers, address, hoodie):
    black = hoodie.variants[0]
    order = client.post("/api/orders", json=order_json(address.id, (black.id, 3)), headers=customer_headers).json()["data"]

    response = client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"
    assert stock_of(db, black.id) == (10, 0)


def test_cancel_paid_order_is_rejected(client, db, customer_headers, admin_headers, address, hoodie):
    order = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=customer_headers
    ).json()["data"]
    set_status(client, admin_headers, order["id"], "paid")

    response = client.post(f"/api/orders/{order['id']}/cancel", headers=customer_headers)

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Only pending orders can be cancelled"


def test_status_flow_moves_stock(client, db, customer_headers, admin_headers, address, hoodie):
    black = hoodie.variants[0]
    order = client.post("/api/orders", json=order_json(address.id, (black.id, 2)), headers=customer_headers).json()["data"]

    paid = set_status(client, admin_headers, order["id"], "paid")
    assert paid.status_code == 200
    assert stock_of(db, black.id) == (8, 0)

    shipped = set_status(client, admin_headers, order["id"], "shipped").json()["data"]
    assert shipped["status"] == "shipped"
    assert [h["status"] for h in shipped["status_history"]] == ["pending", "paid", "shipped"]

    delivered = set_status(client, admin_headers, order["id"], "delivered").json()["data"]
    assert delivered["status"] == "delivered"
    assert stock_of(db, black.id) == (8, 0)

    assert db.query(AuditLog).filter(AuditLog.action == "update_status").count() == 3


def test_cancelling_paid_order_restocks(client, db, customer_headers, admin_headers, address, hoodie):
    black = hoodie.variants[0]
    order = client.post("/api/orders", json=order_json(address.id, (black.id, 2)), headers=customer_headers).json()["data"]
    set_status(client, admin_headers, order["id"], "paid")

    response = set_status(client, admin_headers, order["id"], "cancelled")

    assert response.status_code == 200
    assert stock_of(db, black.id) == (10, 0)


@pytest.mark.parametrize("path,target", [
    (["paid", "shipped", "delivered"], "pending"),
    (["paid", "shipped"], "cancelled"),
    ([], "shipped"),
    (["cancelled"], "paid"),
])
def test_invalid_transitions(client, customer_headers, admin_headers, address, hoodie, path, target):
    order = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=customer_headers
    ).json()["data"]
    for status in path:
        assert set_status(client, admin_headers, order["id"], status).status_code == 200

    response = set_status(client, admin_headers, order["id"], target)

    assert response.status_code == 422
    assert "status" in response.json()["error"]["fields"]


def test_transition_table_is_terminal_for_closed_orders():
    assert VALID_TRANSITIONS[OrderStatus.DELIVERED] == set()
    assert VALID_TRANSITIONS[OrderStatus.CANCELLED] == set()


def test_admin_order_list_and_detail(client, db, customer_headers, admin_headers, address, hoodie):
    first = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 1)), headers=customer_headers
    ).json()["data"]
    second = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[1].id, 2)), headers=customer_headers
    ).json()["data"]
    set_status(client, admin_headers, first["id"], "paid")

    listing = client.get("/api/admin/orders", headers=admin_headers).json()
    assert [o["id"] for o in listing["data"]] == [second["id"], first["id"]]
    assert listing["data"][0]["item_count"] == 2
    assert listing["data"][0]["customer_email"] == "customer@example.com"

    paid_only = client.get("/api/admin/orders?status=paid", headers=admin_headers).json()["data"]
    assert [o["id"] for o in paid_only] == [first["id"]]

    by_number = client.get(
        "/api/admin/orders", params={"search": second["order_number"]}, headers=admin_headers
    ).json()["data"]
    assert [o["id"] for o in by_number] == [second["id"]]

    by_total = client.get("/api/admin/orders?sort=total:asc", headers=admin_headers).json()["data"]
    assert [o["id"] for o in by_total] == [first["id"], second["id"]]

    bad_sort = client.get("/api/admin/orders?sort=name:asc", headers=admin_headers)
    assert bad_sort.status_code == 422

    detail = client.get(f"/api/admin/orders/{first['id']}", headers=admin_headers).json()["data"]
    assert detail["customer"]["name"] == "Asha Customer"
    assert [h["status"] for h in detail["status_history"]] == ["pending", "paid"]
    assert detail["payment"] is None


def test_admin_orders_require_staff(client, customer_headers):
    assert client.get("/api/admin/orders", headers=customer_headers).status_code == 403


def test_export_orders_csv(client, customer_headers, admin_headers, address, hoodie):
    order = client.post(
        "/api/orders", json=order_json(address.id, (hoodie.variants[0].id, 2)), headers=customer_headers
    ).json()["data"]

    response = client.get("/api/admin/orders/export", headers=admin_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"].startswith('attachment; filename="orders-')
    lines = response.text.strip().split("\n")
    assert lines[0] == "Order ID,Date,Customer,Email,Total,Status,Shipping"
    assert lines[1] == (
        f"{order['order_number']},{order['created_at'][:10]},Asha Customer,customer@example.com,108.00,pending,0.00"
    )
