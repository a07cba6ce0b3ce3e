import json

import httpx
import pytest

from waitstaff.core.config import Settings
from waitstaff.core.exceptions import OrdersAPIError, OrdersAPIUnavailable
from waitstaff.services.api import create_orders_api
from waitstaff.services.api.http import HttpOrdersAPI
from waitstaff.services.api.mock import MockOrdersAPI
from tests.conftest import MARGHERITA, GARLIC_BREAD


def http_api(handler, token="secret-token"):
    return HttpOrdersAPI(
        base_url="http://restaurant.test/api/",
        token=token,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


class TestHttpOrdersAPI:
    async def test_create_order_sends_payload_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["key"] = request.headers.get("Idempotency-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"success": True, "data": {"id": "srv-1", "status": "pending"}})

        api = http_api(handler)
        payload = {"table_id": "t-1", "items": [{"menu_item_id": "m-1", "quantity": 2}]}
        order = await api.create_order(payload, idempotency_key="1700000000000-abc123xyz")
        await api.aclose()

        assert order == {"id": "srv-1", "status": "pending"}
        assert seen["method"] == "POST"
        assert seen["url"] == "http://restaurant.test/api/orders"
        assert seen["auth"] == "Bearer secret-token"
        assert seen["key"] == "1700000000000-abc123xyz"
        assert seen["body"] == payload

    async def test_no_idempotency_header_without_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["key"] = request.headers.get("Idempotency-Key")
            return httpx.Response(201, json={"success": True, "data": {"id": "srv-2"}})

        api = http_api(handler, token=None)
        await api.create_order({"table_id": "t-1", "items": []})
        await api.aclose()

        assert seen["key"] is None

    async def test_client_error_raises_orders_api_error(self):
        def handler(request):
            return httpx.Response(404, json={"success": False, "status": "fail", "message": "Table not found"})

        api = http_api(handler)
        with pytest.raises(OrdersAPIError) as exc_info:
            await api.create_order({"table_id": "nope", "items": []})
        await api.aclose()

        assert not isinstance(exc_info.value, OrdersAPIUnavailable)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Table not found"

    @pytest.mark.parametrize("status_code", [502, 503, 504])
    async def test_gateway_errors_mean_unavailable(self, status_code):
        def handler(request):
            return httpx.Response(status_code, text="upstream down")

        api = http_api(handler)
        with pytest.raises(OrdersAPIUnavailable) as exc_info:
            await api.list_orders()
        await api.aclose()

        assert exc_info.value.status_code == status_code

    async def test_connection_error_means_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = http_api(handler)
        with pytest.raises(OrdersAPIUnavailable):
            await api.create_order({"table_id": "t-1", "items": []})
        await api.aclose()

    async def test_timeout_means_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        api = http_api(handler)
        with pytest.raises(OrdersAPIUnavailable):
            await api.get_order("srv-1")
        await api.aclose()

    async def test_list_orders_drops_empty_filters(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"success": True, "data": [{"id": "a"}, {"id": "b"}]})

        api = http_api(handler)
        orders = await api.list_orders(status="pending", table=None, limit=10)
        await api.aclose()

        assert [o["id"] for o in orders] == ["a", "b"]
        assert seen["params"] == {"status": "pending", "limit": "10"}

    async def test_health_check(self):
        api = http_api(lambda request: httpx.Response(200, json={"success": True, "data": []}))
        assert await api.health_check() is True
        await api.aclose()

        api = http_api(lambda request: httpx.Response(500, json={"success": False, "message": "boom"}))
        assert await api.health_check() is False
        await api.aclose()

    async def test_undecodable_body_means_unavailable(self):
        def handler(request):
            return httpx.Response(201, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all")

        api = http_api(handler)
        with pytest.raises(OrdersAPIUnavailable):
            await api.create_order({"table_id": "t-1", "items": []})
        await api.aclose()

    @pytest.mark.parametrize("data", [None, [], "created"])
    async def test_create_order_requires_an_order_object(self, data):
        def handler(request):
            return httpx.Response(201, json={"success": True, "data": data})

        api = http_api(handler)
        with pytest.raises(OrdersAPIError) as exc_info:
            await api.create_order({"table_id": "t-1", "items": []})
        await api.aclose()

        assert not isinstance(exc_info.value, OrdersAPIUnavailable)

    async def test_set_token_replaces_and_restores_header(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"success": True, "data": []})

        api = http_api(handler, token="from-env")
        await api.get_tables()
        api.set_token("from-login")
        await api.get_tables()
        api.set_token(None)
        await api.get_tables()
        await api.aclose()

        assert seen == ["Bearer from-env", "Bearer from-login", "Bearer from-env"]

    async def test_order_tracking_endpoints(self):
        seen = []

        def handler(request):
            body = json.loads(request.content) if request.content else None
            seen.append((request.method, request.url.path, body))
            return httpx.Response(200, json={"success": True, "data": {"id": "srv-1", "status": "cancelled"}})

        api = http_api(handler)
        await api.update_order_status("srv-1", "served")
        await api.cancel_order("srv-1", reason="Guest left")
        await api.get_order("srv-1")
        await api.aclose()

        assert seen == [
            ("PATCH", "/api/orders/srv-1/status", {"status": "served"}),
            ("POST", "/api/orders/srv-1/cancel", {"reason": "Guest left"}),
            ("GET", "/api/orders/srv-1", None),
        ]


class TestMockOrdersAPI:
    async def test_prices_order_with_tax(self):
        api = MockOrdersAPI(tax_rate=0.07)
        order = await api.create_order({
            "table_id": "t-1",
            "items": [
                {"menu_item_id": MARGHERITA["id"], "quantity": 2},
                {
                    "menu_item_id": GARLIC_BREAD["id"],
                    "quantity": 1,
                    "modifiers": [{"id": "mod", "name": "Cheese", "price_delta": 1.0}],
                },
            ],
        })

        subtotal = round(2 * MARGHERITA["price"] + GARLIC_BREAD["price"] + 1.0, 2)
        assert order["subtotal"] == subtotal
        assert order["tax_amount"] == round(subtotal * 0.07, 2)
        assert order["total_amount"] == round(subtotal + order["tax_amount"], 2)
        assert order["status"] == "pending"

    async def test_unknown_menu_item_rejected(self):
        api = MockOrdersAPI()
        with pytest.raises(OrdersAPIError) as exc_info:
            await api.create_order({"table_id": "t-1", "items": [{"menu_item_id": "gone", "quantity": 1}]})
        assert exc_info.value.status_code == 404

    async def test_offline_raises_unavailable(self):
        api = MockOrdersAPI()
        api.set_online(False)
        with pytest.raises(OrdersAPIUnavailable):
            await api.list_orders()
        assert await api.health_check() is False

    async def test_list_newest_first_and_filters(self, make_payload):
        api = MockOrdersAPI()
        await api.create_order(make_payload(table_id="t-1"))
        await api.create_order(make_payload(table_id="t-2"))

        assert [o["table_id"] for o in await api.list_orders()] == ["t-2", "t-1"]
        assert [o["table_id"] for o in await api.list_orders(table="t-1")] == ["t-1"]

    async def test_failure_rate_one_always_fails(self, make_payload):
        api = MockOrdersAPI(failure_rate=1.0)
        with pytest.raises(OrdersAPIUnavailable):
            await api.create_order(make_payload())

    async def test_status_update_and_cancel(self, make_payload):
        api = MockOrdersAPI()
        order = await api.create_order(make_payload(table_id="table-03"))

        cancelled = await api.cancel_order(order["id"], reason="Guest left")
        assert cancelled["status"] == "cancelled"
        assert cancelled["special_instructions"] == "Guest left [CANCELLED: Guest left]"

        with pytest.raises(OrdersAPIError) as exc_info:
            await api.cancel_order(order["id"])
        assert exc_info.value.status_code == 400

    async def test_served_order_cannot_be_cancelled(self, make_payload):
        api = MockOrdersAPI()
        order = await api.create_order(make_payload())
        await api.update_order_status(order["id"], "served")

        assert (await api.get_order(order["id"]))["status"] == "served"
        with pytest.raises(OrdersAPIError):
            await api.cancel_order(order["id"])

    async def test_invalid_status_rejected(self, make_payload):
        api = MockOrdersAPI()
        order = await api.create_order(make_payload())
        with pytest.raises(OrdersAPIError) as exc_info:
            await api.update_order_status(order["id"], "eaten")
        assert exc_info.value.status_code == 400

    async def test_tables_count_open_orders(self, make_payload):
        api = MockOrdersAPI()
        await api.create_order(make_payload(table_id="table-02"))
        closed = await api.create_order(make_payload(table_id="table-02"))
        await api.update_order_status(closed["id"], "completed")

        tables = await api.get_tables()
        assert [t["table_number"] for t in tables] == list(range(1, 13))
        assert tables[1]["active_orders"] == 1
        assert tables[0]["active_orders"] == 0


class TestFactory:
    async def test_development_uses_mock(self):
        api = create_orders_api(Settings(env_mode="development"))
        assert isinstance(api, MockOrdersAPI)
        assert api.provider_name == "mock"

    async def test_production_uses_http(self):
        api = create_orders_api(Settings(env_mode="production", remote_api_url="http://pos.local/api/"))
        try:
            assert isinstance(api, HttpOrdersAPI)
            assert api.base_url == "http://pos.local/api"
        finally:
            await api.aclose()
