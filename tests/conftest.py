"""
Pytest configuration and shared fixtures for the waitstaff client tests.
"""

from typing import Any, Optional

import pytest

from waitstaff.core.exceptions import OrdersAPIUnavailable
from waitstaff.database import create_engine_for_url
from waitstaff.services.api.mock import MockOrdersAPI, DEFAULT_MENU
from waitstaff.services.store import LocalOrderStore

MARGHERITA = DEFAULT_MENU[0]
PEPPERONI = DEFAULT_MENU[1]
GARLIC_BREAD = DEFAULT_MENU[4]


class FlakyOrdersAPI(MockOrdersAPI):
    """Mock API that cannot be reached for orders on the given tables."""

    def __init__(self, failing_tables: Optional[set[str]] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.failing_tables = set(failing_tables or ())
        self.idempotency_keys: list[Optional[str]] = []

    async def create_order(self, payload, idempotency_key=None):
        self.idempotency_keys.append(idempotency_key)
        if payload.get("table_id") in self.failing_tables:
            raise OrdersAPIUnavailable("Simulated network error")
        return await super().create_order(payload, idempotency_key)


@pytest.fixture
async def store():
    """Store over a fresh in-memory SQLite database."""
    engine = create_engine_for_url("sqlite+aiosqlite://")
    local_store = LocalOrderStore(engine)
    await local_store.initialize()
    yield local_store
    await local_store.close()


@pytest.fixture
def make_payload():
    """Factory for order-creation bodies accepted by the mock API."""
    def _make(table_id: str = "table-01", menu_item_id: str = MARGHERITA["id"], quantity: int = 1):
        return {
            "table_id": table_id,
            "items": [{"menu_item_id": menu_item_id, "quantity": quantity}],
        }
    return _make
