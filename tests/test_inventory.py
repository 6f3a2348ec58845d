import pytest

from storefront.models import Inventory, InventoryStatus
from storefront.repositories.inventory import apply_stock_action
from storefront.schemas.inventory import StockAction


@pytest.mark.parametrize("current,action,quantity,expected", [
    (10, StockAction.SET, 4, 4),
    (10, StockAction.ADD, 5, 15),
    (10, StockAction.SUBTRACT, 3, 7),
    (10, StockAction.SUBTRACT, 15, 0),
    (0, StockAction.SET, 0, 0),
])
def test_apply_stock_action(current, action, quantity, expected):
    assert apply_stock_action(current, action, quantity) == expected


def test_subtract_below_zero_floors_and_reports_out_of_stock(client, db, admin_headers, make_product):
    product = make_product(variants=[{"color": "Black", "size": "M", "stock": 10, "low_stock_threshold": 5}])
    variant_id = product.variants[0].id

    response = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "subtract", "quantity": 15},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["stock"] == 0
    assert body["data"]["status"] == "out_of_stock"
    assert db.query(Inventory).filter(Inventory.variant_id == variant_id).one().stock == 0


def test_add_and_set_stock_change_status(client, admin_headers, make_product):
    product = make_product(variants=[{"color": "Black", "size": "M", "stock": 2, "low_stock_threshold": 5}])
    variant_id = product.variants[0].id
    assert product.variants[0].inventory.status == InventoryStatus.LOW_STOCK

    added = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "add", "quantity": 10},
        headers=admin_headers,
    ).json()["data"]
    assert added["stock"] == 12
    assert added["status"] == "in_stock"

    set_to = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "set", "quantity": 5},
        headers=admin_headers,
    ).json()["data"]
    assert set_to["stock"] == 5
    assert set_to["status"] == "low_stock"


def test_update_stock_rejects_bad_input(client, admin_headers, make_product):
    variant_id = make_product().variants[0].id

    negative = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "add", "quantity": -1},
        headers=admin_headers,
    )
    assert negative.status_code == 422
    assert negative.json()["error"]["code"] == "VALIDATION_ERROR"
    assert "quantity" in negative.json()["error"]["fields"]

    unknown_action = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "multiply", "quantity": 2},
        headers=admin_headers,
    )
    assert unknown_action.status_code == 422
    assert "action" in unknown_action.json()["error"]["fields"]


def test_update_stock_unknown_variant(client, admin_headers):
    response = client.patch(
        "/api/admin/inventory/9999/stock",
        json={"action": "set", "quantity": 1},
        headers=admin_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_update_stock_creates_missing_inventory_row(client, db, admin_headers, make_product):
    variant_id = make_product().variants[0].id
    db.query(Inventory).filter(Inventory.variant_id == variant_id).delete()
    db.commit()

    response = client.patch(
        f"/api/admin/inventory/{variant_id}/stock",
        json={"action": "add", "quantity": 7},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["data"]["stock"] == 7


def test_inventory_requires_staff(client, customer_headers):
    assert client.get("/api/admin/inventory").status_code == 401
    assert client.get("/api/admin/inventory", headers=customer_headers).status_code == 403


def test_inventory_list_filters(client, admin_headers, make_product):
    make_product(name="Linen Shirt", variants=[
        {"color": "White", "size": "S", "stock": 0},
        {"color": "White", "size": "M", "stock": 3},
        {"color": "White", "size": "L", "stock": 40},
    ])
    make_product(name="Wool Coat", variants=[{"color": "Grey", "size": "M", "stock": 12}])

    everything = client.get("/api/admin/inventory", headers=admin_headers).json()
    assert everything["meta"]["pagination"]["total"] == 4
    assert [item["product_name"] for item in everything["data"]] == [
        "Linen Shirt", "Linen Shirt", "Linen Shirt", "Wool Coat",
    ]

    out = client.get("/api/admin/inventory?status=out_of_stock", headers=admin_headers).json()["data"]
    assert [item["size"] for item in out] == ["S"]

    low = client.get("/api/admin/inventory?status=low_stock", headers=admin_headers).json()["data"]
    assert [item["stock"] for item in low] == [3]

    healthy = client.get("/api/admin/inventory?status=in_stock", headers=admin_headers).json()["data"]
    assert sorted(item["stock"] for item in healthy) == [12, 40]

    coats = client.get("/api/admin/inventory?search=coat", headers=admin_headers).json()["data"]
    assert len(coats) == 1
    assert coats[0]["color"] == "Grey"


def test_inventory_stats(client, admin_headers, make_product):
    make_product(base_price=20.0, variants=[
        {"color": "Black", "size": "S", "stock": 0},
        {"color": "Black", "size": "M", "stock": 4},
        {"color": "Black", "size": "L", "stock": 10, "price_override": 25.0},
    ])

    stats = client.get("/api/admin/inventory/stats", headers=admin_headers).json()["data"]

    assert stats == {
        "total_skus": 3,
        "low_stock_count": 1,
        "out_of_stock_count": 1,
        "in_stock_healthy_count": 1,
        "total_stock_value": 4 * 20.0 + 10 * 25.0,
    }
