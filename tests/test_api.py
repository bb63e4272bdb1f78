from datetime import datetime, timedelta, timezone

import pytest


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_create_order_flow(client, store, add_product, make_payload):
    await add_product("P1", stock=5)

    response = await client.post(
        "/api/orders/",
        json=make_payload([{"id": "P1", "quantity": 2}]),
        headers={"X-User-Id": "user-42"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["orderNumber"].startswith("ORD-")
    assert data["orderId"]

    product = await store.get("products", {"id": "P1"})
    assert product["stock"] == 3

    get_resp = await client.get(f"/api/orders/{data['orderNumber']}")
    assert get_resp.status_code == 200
    order = get_resp.json()
    assert order["id"] == data["orderId"]
    assert order["user_id"] == "user-42"
    assert order["status"] == "pending"
    assert order["order_items"][0]["quantity"] == 2


@pytest.mark.asyncio
async def test_insufficient_stock_response(client, store, add_product, make_payload):
    await add_product("P1", name="Desk Lamp", stock=5)

    response = await client.post(
        "/api/orders/",
        json=make_payload([{"id": "P1", "name": "Desk Lamp", "quantity": 10}]),
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "Insufficient stock",
        "message": "Not enough stock available for Desk Lamp. Available: 5, Requested: 10",
    }
    product = await store.get("products", {"id": "P1"})
    assert product["stock"] == 5


@pytest.mark.asyncio
async def test_missing_product_response(client, make_payload):
    response = await client.post(
        "/api/orders/", json=make_payload([{"id": "NOPE", "quantity": 1}])
    )

    assert response.status_code == 404
    assert response.json()["error"] == "Product not found"
    assert "NOPE" in response.json()["message"]


@pytest.mark.asyncio
async def test_mismatched_totals_response(client, add_product, make_payload):
    await add_product("P1", stock=5)

    response = await client.post(
        "/api/orders/",
        json=make_payload([{"id": "P1", "quantity": 1}], subtotal="1.00", total="6.99"),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "Invalid order totals"


@pytest.mark.asyncio
async def test_malformed_body_response(client, make_payload):
    body = make_payload([{"id": "P1", "quantity": 0}])

    response = await client.post("/api/orders/", json=body)

    assert response.status_code == 422
    assert response.json()["error"] == "Invalid request"
    assert "quantity" in response.json()["message"]


@pytest.mark.asyncio
async def test_rate_limited(client, cache, add_product, make_payload):
    await add_product("P1", stock=5)
    cache.allow = False

    response = await client.post(
        "/api/orders/", json=make_payload([{"id": "P1", "quantity": 1}])
    )

    assert response.status_code == 429
    assert response.json()["error"] == "Too many requests"


@pytest.mark.asyncio
async def test_get_unknown_order(client):
    response = await client.get("/api/orders/ORD-0-missing")
    assert response.status_code == 404
    assert response.json()["error"] == "Order not found"


@pytest.mark.asyncio
async def test_get_order_is_cached(client, cache, add_product, make_payload):
    await add_product("P1", stock=5)
    created = await client.post(
        "/api/orders/", json=make_payload([{"id": "P1", "quantity": 1}])
    )
    order_number = created.json()["orderNumber"]

    await client.get(f"/api/orders/{order_number}")

    assert cache.orders[order_number]["order_number"] == order_number
    cache.orders[order_number]["status"] = "from-cache"
    response = await client.get(f"/api/orders/{order_number}")
    assert response.json()["status"] == "from-cache"


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "GET"])
async def test_update_status_sweep(method, client, store, cache):
    old = datetime.now(timezone.utc) - timedelta(hours=30)
    await store.insert(
        "orders",
        {
            "order_number": "ORD-1760000000000-abcdefg",
            "customer_email": "buyer@example.com",
            "shipping_info": {"email": "buyer@example.com"},
            "billing_info": {"email": "buyer@example.com"},
            "order_items": [],
            "subtotal": 10,
            "shipping_cost": 5,
            "total": 15,
            "status": "pending",
            "created_at": old,
        },
    )

    response = await client.request(method, "/api/orders/update-status")
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "updatedCount": 1,
        "message": "Updated 1 order(s)",
    }
    assert cache.invalidated == ["ORD-1760000000000-abcdefg"]

    again = await client.post("/api/orders/update-status")
    assert again.json()["updatedCount"] == 0
    assert again.json()["message"] == "No orders need status updates"


@pytest.mark.asyncio
async def test_refresh_single_order_status(client, add_product, make_payload):
    await add_product("P1", stock=5)
    created = await client.post(
        "/api/orders/", json=make_payload([{"id": "P1", "quantity": 1}])
    )
    order_number = created.json()["orderNumber"]

    response = await client.post(f"/api/orders/{order_number}/status")
    assert response.json() == {"orderNumber": order_number, "status": "pending"}

    missing = await client.post("/api/orders/ORD-0-missing/status")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_list_orders_requires_user(client):
    response = await client.get("/api/orders/")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_orders_for_user(client, add_product, make_payload):
    await add_product("P1", stock=5)
    mine = await client.post(
        "/api/orders/",
        json=make_payload([{"id": "P1", "quantity": 1}]),
        headers={"X-User-Id": "me"},
    )
    await client.post("/api/orders/", json=make_payload([{"id": "P1", "quantity": 1}]))

    response = await client.get("/api/orders/", headers={"X-User-Id": "me"})

    assert response.status_code == 200
    orders = response.json()
    assert [o["order_number"] for o in orders] == [mine.json()["orderNumber"]]
    assert orders[0]["status"] == "pending"


def test_main_serves_app_with_uvicorn(monkeypatch):
    from storefront import main as entry

    calls = []
    monkeypatch.setattr(entry.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    entry.main()

    assert calls == [
        (
            entry.app,
            {
                "host": entry.settings.HOST,
                "port": entry.settings.PORT,
                "log_level": entry.settings.LOG_LEVEL.lower(),
            },
        )
    ]
