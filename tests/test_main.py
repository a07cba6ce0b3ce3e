from datetime import datetime, timedelta

import httpx
import pytest

from waitstaff.core.config import Settings
from waitstaff.main import create_app
from waitstaff.models import utc_now
from waitstaff.services.api.mock import MockOrdersAPI
from tests.conftest import MARGHERITA, PEPPERONI


def cart_body(menu_item, quantity=1, **kwargs):
    return {
        "menu_item_id": menu_item["id"],
        "name": menu_item["name"],
        "unit_price": menu_item["price"],
        "quantity": quantity,
        **kwargs,
    }


@pytest.fixture
def orders_api():
    return MockOrdersAPI()


@pytest.fixture
def settings():
    return Settings(env_mode="development", local_database_url="sqlite+aiosqlite://")


@pytest.fixture
async def client(settings, orders_api):
    app = create_app(settings=settings, orders_api=orders_api)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
            yield http_client


class TestCartEndpoints:
    async def test_add_items_and_totals(self, client):
        response = await client.post("/cart/items", json=cart_body(MARGHERITA, quantity=2))
        assert response.status_code == 201

        response = await client.post("/cart/items", json=cart_body(
            PEPPERONI, modifiers=[{"id": "mod-1", "name": "Extra cheese", "price": 1.5}],
        ))
        cart = response.json()

        assert cart["session_id"] == "default"
        assert cart["total_items"] == 3
        assert cart["total_amount"] == pytest.approx(2 * 14.99 + 16.99 + 1.5)
        assert cart["items"][1]["modifiers"][0]["price_delta"] == 1.5

    async def test_sessions_are_separate(self, client):
        await client.post("/cart/items", json=cart_body(MARGHERITA, session_id="waiter-1"))
        await client.post("/cart/items", json=cart_body(PEPPERONI, session_id="waiter-2"))

        cart = (await client.get("/cart", params={"session_id": "waiter-1"})).json()
        assert [i["menu_item_id"] for i in cart["items"]] == [MARGHERITA["id"]]

    async def test_patch_zero_removes_item(self, client):
        cart = (await client.post("/cart/items", json=cart_body(MARGHERITA))).json()
        item_id = cart["items"][0]["id"]

        response = await client.patch(f"/cart/items/{item_id}", json={"quantity": 0})
        assert response.status_code == 200
        assert response.json()["items"] == []

    async def test_patch_unknown_item_is_404(self, client):
        response = await client.patch("/cart/items/999", json={"quantity": 2})
        assert response.status_code == 404
        assert "999" in response.json()["detail"]

    async def test_invalid_item_is_422(self, client):
        response = await client.post("/cart/items", json=cart_body(MARGHERITA, quantity=0))
        assert response.status_code == 422

    async def test_clear_cart(self, client):
        await client.post("/cart/items", json=cart_body(MARGHERITA))
        response = await client.delete("/cart")
        assert response.json()["total_items"] == 0

    async def test_item_routes_are_scoped_to_session(self, client):
        cart = (await client.post("/cart/items", json=cart_body(MARGHERITA, session_id="waiter-2"))).json()
        item_id = cart["items"][0]["id"]

        response = await client.patch(
            f"/cart/items/{item_id}", params={"session_id": "waiter-1"}, json={"quantity": 4},
        )
        assert response.status_code == 404

        response = await client.delete(f"/cart/items/{item_id}", params={"session_id": "waiter-1"})
        assert response.json()["session_id"] == "waiter-1"

        cart = (await client.get("/cart", params={"session_id": "waiter-2"})).json()
        assert [(i["id"], i["quantity"]) for i in cart["items"]] == [(item_id, 1)]


class TestOrderSubmission:
    async def test_online_submit_clears_cart(self, client, orders_api):
        await client.post("/cart/items", json=cart_body(MARGHERITA, quantity=2))

        response = await client.post("/orders", json={"table_id": "table-05"})
        body = response.json()

        assert response.status_code == 200
        assert body["offline"] is False
        assert body["order"]["total_amount"] == pytest.approx(32.08)
        assert len(orders_api.orders) == 1
        assert (await client.get("/cart")).json()["items"] == []
        assert (await client.get("/orders/local")).json() == []

    async def test_offline_submit_then_sync(self, client, orders_api):
        orders_api.set_online(False)
        await client.post("/cart/items", json=cart_body(MARGHERITA))

        response = await client.post("/orders", json={"table_id": "table-05"})
        body = response.json()
        assert body["offline"] is True
        assert body["local_id"]
        assert (await client.get("/cart")).json()["items"] == []

        local_orders = (await client.get("/orders/local")).json()
        assert [o["local_id"] for o in local_orders] == [body["local_id"]]
        assert local_orders[0]["status"] == "staged"
        assert local_orders[0]["payload"]["table_id"] == "table-05"

        status = (await client.get("/sync/status")).json()
        assert status == {"pending_orders": 1, "local_orders": 1, "sync_in_progress": False}

        orders_api.set_online(True)
        report = (await client.post("/sync")).json()

        assert report["synced"] == 1
        assert report["refreshed"] is True
        assert orders_api.orders[0]["idempotency_key"] == body["local_id"]
        assert (await client.get("/orders/local")).json() == []
        assert (await client.get("/sync/status")).json()["pending_orders"] == 0

    async def test_empty_cart_is_400(self, client):
        response = await client.post("/orders", json={"table_id": "table-05"})
        assert response.status_code == 400

    async def test_rejected_order_keeps_cart(self, client, orders_api):
        await client.post("/cart/items", json=cart_body(MARGHERITA))
        orders_api.menu[MARGHERITA["id"]]["is_available"] = False

        response = await client.post("/orders", json={"table_id": "table-05"})

        assert response.status_code == 502
        assert response.json()["upstream_status"] == 404
        assert len((await client.get("/cart")).json()["items"]) == 1
        assert (await client.get("/orders/local")).json() == []

    async def test_discard_and_retry_local_order(self, client, orders_api):
        orders_api.set_online(False)
        await client.post("/cart/items", json=cart_body(MARGHERITA))
        local_id = (await client.post("/orders", json={"table_id": "t-1"})).json()["local_id"]

        assert (await client.post(f"/orders/local/{local_id}/retry")).status_code == 200
        assert (await client.delete(f"/orders/local/{local_id}")).status_code == 200
        assert (await client.delete(f"/orders/local/{local_id}")).status_code == 404
        assert (await client.post(f"/orders/local/{local_id}/retry")).status_code == 404

    async def test_order_list_unavailable_is_503(self, client, orders_api):
        orders_api.set_online(False)
        response = await client.get("/orders")
        assert response.status_code == 503


class TestMenuAndHealth:
    async def test_menu_falls_back_to_cache(self, client, orders_api):
        remote = (await client.get("/menu")).json()
        assert remote["source"] == "remote"
        assert len(remote["items"]) == len(orders_api.menu)

        orders_api.set_online(False)
        cached = (await client.get("/menu", params={"category": "Pizza"})).json()
        assert cached["source"] == "cache"
        assert {i["id"] for i in cached["items"]} == {MARGHERITA["id"], PEPPERONI["id"]}

    async def test_health_reports_offline(self, client, orders_api):
        body = (await client.get("/health")).json()
        assert body["status"] == "operational"

        orders_api.set_online(False)
        body = (await client.get("/health")).json()
        assert body["status"] == "offline"
        assert body["database"] == "healthy"
        assert body["orders_api"] == "unreachable"

    async def test_health_timestamp_is_utc(self, client):
        body = (await client.get("/health")).json()
        stamp = datetime.fromisoformat(body["timestamp"])
        assert abs(stamp - utc_now()) < timedelta(minutes=1)

    async def test_connectivity_toggle(self, client, orders_api):
        response = await client.post("/dev/connectivity", params={"online": "false"})
        assert response.json() == {"online": False}
        assert orders_api.online is False


class TestOrderTracking:
    async def place_order(self, client, table_id="table-03"):
        await client.post("/cart/items", json=cart_body(MARGHERITA))
        return (await client.post("/orders", json={"table_id": table_id})).json()["order"]

    async def test_get_order(self, client):
        order = await self.place_order(client)

        response = await client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json()["table_id"] == "table-03"

        response = await client.get("/orders/no-such-order")
        assert response.status_code == 502
        assert response.json()["upstream_status"] == 404

    async def test_status_update_then_cancel_rejected(self, client):
        order = await self.place_order(client)

        response = await client.patch(f"/orders/{order['id']}/status", json={"status": "served"})
        assert response.json()["status"] == "served"

        response = await client.post(f"/orders/{order['id']}/cancel", json={"reason": "Guest left"})
        assert response.status_code == 502
        assert response.json()["detail"] == "Order cannot be cancelled"

    async def test_cancel_without_reason(self, client, orders_api):
        order = await self.place_order(client)

        response = await client.post(f"/orders/{order['id']}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert orders_api.orders[0]["status"] == "cancelled"

    async def test_invalid_status_is_422(self, client):
        order = await self.place_order(client)
        response = await client.patch(f"/orders/{order['id']}/status", json={"status": "eaten"})
        assert response.status_code == 422


class TestTables:
    async def test_tables_fall_back_to_cache(self, client, orders_api):
        remote = (await client.get("/tables")).json()
        assert remote["source"] == "remote"
        assert remote["items"][0]["id"] == "table-01"

        orders_api.set_online(False)
        cached = (await client.get("/tables")).json()
        assert cached["source"] == "cache"
        assert [t["id"] for t in cached["items"]] == [t["id"] for t in remote["items"]]

    async def test_tables_unavailable_without_cache(self, client, orders_api):
        orders_api.set_online(False)
        cached = (await client.get("/tables")).json()
        assert cached == {"source": "cache", "items": []}


class TestAuthToken:
    async def test_saved_token_is_applied_and_survives_restart(self, tmp_path):
        settings = Settings(
            env_mode="development",
            local_database_url=f"sqlite+aiosqlite:///{tmp_path / 'client.db'}",
        )

        first_api = MockOrdersAPI()
        app = create_app(settings=settings, orders_api=first_api)
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
                response = await http_client.put("/auth/token", json={"token": "jwt-123"})
        assert response.status_code == 200
        assert first_api.token == "jwt-123"

        second_api = MockOrdersAPI()
        app = create_app(settings=settings, orders_api=second_api)
        async with app.router.lifespan_context(app):
            assert second_api.token == "jwt-123"
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
                await http_client.delete("/auth/token")
        assert second_api.token is None

        third_api = MockOrdersAPI()
        app = create_app(settings=settings, orders_api=third_api)
        async with app.router.lifespan_context(app):
            assert third_api.token is None

    async def test_empty_token_is_422(self, client):
        response = await client.put("/auth/token", json={"token": ""})
        assert response.status_code == 422


class TestProductionGuards:
    async def test_connectivity_toggle_forbidden_outside_development(self, orders_api):
        settings = Settings(env_mode="staging", local_database_url="sqlite+aiosqlite://")
        app = create_app(settings=settings, orders_api=orders_api)
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
                response = await http_client.post("/dev/connectivity", params={"online": "false"})

        assert response.status_code == 403
        assert orders_api.online is True
