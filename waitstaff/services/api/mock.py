"""
Mock Orders API Implementation

Simulates the restaurant REST API in memory, without any server.
Used in development mode (ENV_MODE=development) to:
    - Exercise the offline queue and sync flow locally
    - Develop the waitstaff UI without a backend
    - Reproduce connectivity loss on demand

Behavior:
    - Prices orders from its own menu, like the server: line totals from
      menu price plus modifier deltas, 7% tax by default
    - Randomly fails a share of calls (failure_rate) as if unreachable
    - set_online(False) makes every call fail until switched back
    - Cancels only pending or acknowledged orders, and counts open orders
      per table, like the server
"""

import asyncio
import random
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from waitstaff.core.exceptions import OrdersAPIError, OrdersAPIUnavailable
from waitstaff.services.api.base import BaseOrdersAPI

logger = logging.getLogger(__name__)


DEFAULT_MENU = [
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0001", "name": "Pizza Margherita", "price": 14.99, "category_name": "Pizza"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0002", "name": "Pepperoni Pizza", "price": 16.99, "category_name": "Pizza"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0003", "name": "Pasta Carbonara", "price": 13.99, "category_name": "Pasta"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0004", "name": "Caesar Salad", "price": 8.99, "category_name": "Salads"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0005", "name": "Garlic Bread", "price": 5.99, "category_name": "Sides"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0006", "name": "Tiramisu", "price": 7.99, "category_name": "Desserts"},
    {"id": "8d1f6a52-1b0e-4c39-9a8e-0c6b1f9e0007", "name": "Iced Tea", "price": 2.49, "category_name": "Drinks"},
]

DEFAULT_TABLES = [
    {"id": f"table-{n:02d}", "table_number": n, "capacity": 2 if n <= 4 else 4, "is_active": True}
    for n in range(1, 13)
]

ORDER_STATUSES = ("pending", "acknowledged", "preparing", "ready", "served", "completed", "cancelled")
CANCELLABLE_STATUSES = ("pending", "acknowledged")
CLOSED_STATUSES = ("completed", "cancelled")


class MockOrdersAPI(BaseOrdersAPI):
    """
    In-memory implementation of the restaurant orders API.

    Attributes:
        failure_rate: Probability that a call fails as unreachable (0.0-1.0)
        tax_rate: Tax applied to the order subtotal
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> api = MockOrdersAPI()
        >>> order = await api.create_order({"table_id": "t1", "items": [...]})
        >>> print(order["status"])
        'pending'
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        tax_rate: float = 0.07,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        menu: Optional[list[dict[str, Any]]] = None,
        tables: Optional[list[dict[str, Any]]] = None,
    ):
        self.failure_rate = failure_rate
        self.tax_rate = tax_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.online = True
        self.menu = {item["id"]: dict(item, is_available=item.get("is_available", True))
                     for item in (menu if menu is not None else DEFAULT_MENU)}
        self.tables = [dict(t) for t in (tables if tables is not None else DEFAULT_TABLES)]
        self.orders: list[dict[str, Any]] = []
        self.token: Optional[str] = None
        self.create_calls = 0

        logger.info(
            f"MockOrdersAPI initialized "
            f"(failure_rate={failure_rate:.0%}, tax_rate={tax_rate:.2%})"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def set_online(self, online: bool) -> None:
        self.online = online
        logger.info(f"MockOrdersAPI is now {'online' if online else 'offline'}")

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    async def _check_reachable(self) -> None:
        await self._simulate_latency()
        if not self.online:
            raise OrdersAPIUnavailable("Orders API unreachable (offline)")
        if self.failure_rate and random.random() < self.failure_rate:
            raise OrdersAPIUnavailable("Simulated network failure")

    async def create_order(
        self,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        await self._check_reachable()
        self.create_calls += 1

        table_id = payload.get("table_id")
        items = payload.get("items") or []
        if not table_id or not items:
            raise OrdersAPIError("Validation failed", status_code=400)

        subtotal = 0.0
        order_items = []
        for item in items:
            menu_item = self.menu.get(item.get("menu_item_id"))
            if menu_item is None or not menu_item["is_available"]:
                raise OrdersAPIError(
                    f"Menu item not found or unavailable: {item.get('menu_item_id')}",
                    status_code=404,
                )
            quantity = int(item.get("quantity", 0))
            if quantity < 1:
                raise OrdersAPIError("Quantity must be at least 1", status_code=400)

            modifiers = item.get("modifiers") or []
            unit_price = menu_item["price"] + sum(m.get("price_delta", 0) for m in modifiers)
            total_price = round(unit_price * quantity, 2)
            subtotal += total_price
            order_items.append({
                "menu_item_id": menu_item["id"],
                "item_name": menu_item["name"],
                "quantity": quantity,
                "unit_price": round(unit_price, 2),
                "total_price": total_price,
                "modifiers": modifiers,
                "special_instructions": item.get("notes"),
            })

        tax_amount = round(subtotal * self.tax_rate, 2)
        order = {
            "id": str(uuid.uuid4()),
            "table_id": table_id,
            "customer_session_id": payload.get("customer_session_id"),
            "special_instructions": payload.get("special_instructions"),
            "status": "pending",
            "subtotal": round(subtotal, 2),
            "tax_amount": tax_amount,
            "total_amount": round(subtotal + tax_amount, 2),
            "items": order_items,
            "idempotency_key": idempotency_key,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.orders.append(order)

        logger.info(f"Mock order {order['id']} created for table {table_id} (${order['total_amount']:.2f})")
        return order

    async def list_orders(self, **filters: Any) -> list[dict[str, Any]]:
        await self._check_reachable()
        orders = list(reversed(self.orders))
        if filters.get("status"):
            orders = [o for o in orders if o["status"] == filters["status"]]
        if filters.get("table"):
            orders = [o for o in orders if o["table_id"] == filters["table"]]
        offset = int(filters.get("offset") or 0)
        limit = int(filters.get("limit") or 50)
        return orders[offset:offset + limit]

    def _find_order(self, order_id: str) -> dict[str, Any]:
        for order in self.orders:
            if order["id"] == order_id:
                return order
        raise OrdersAPIError("Order not found", status_code=404)

    async def get_order(self, order_id: str) -> dict[str, Any]:
        await self._check_reachable()
        return self._find_order(order_id)

    async def update_order_status(self, order_id: str, status: str) -> dict[str, Any]:
        await self._check_reachable()
        if status not in ORDER_STATUSES:
            raise OrdersAPIError("Invalid status", status_code=400)
        order = self._find_order(order_id)
        order["status"] = status
        logger.info(f"Mock order {order_id} is now {status}")
        return order

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> dict[str, Any]:
        await self._check_reachable()
        order = next((o for o in self.orders if o["id"] == order_id), None)
        if order is None or order["status"] not in CANCELLABLE_STATUSES:
            raise OrdersAPIError("Order cannot be cancelled", status_code=400)

        prefix = reason or order.get("special_instructions")
        if prefix is not None:
            order["special_instructions"] = f"{prefix} [CANCELLED: {reason or 'No reason'}]"
        order["status"] = "cancelled"
        logger.info(f"Mock order {order_id} cancelled")
        return order

    async def get_menu(self) -> list[dict[str, Any]]:
        await self._check_reachable()
        return [dict(item) for item in self.menu.values() if item["is_available"]]

    async def get_tables(self) -> list[dict[str, Any]]:
        await self._check_reachable()
        tables = []
        for table in sorted(self.tables, key=lambda t: t["table_number"]):
            if not table.get("is_active", True):
                continue
            active_orders = sum(
                1 for o in self.orders
                if o["table_id"] == table["id"] and o["status"] not in CLOSED_STATUSES
            )
            tables.append(dict(table, active_orders=active_orders))
        return tables

    async def health_check(self) -> bool:
        return self.online
