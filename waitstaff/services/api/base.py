"""
Orders API Abstract Base Class

Defines the interface to the restaurant REST API used by the client.
Supports both Mock (development) and HTTP (staging/production)
implementations.

Every implementation raises OrdersAPIError when the server rejects a call
and OrdersAPIUnavailable when it cannot be reached.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class BaseOrdersAPI(ABC):
    """
    Abstract base class for the restaurant orders API.

    Implementations must provide:
        - create_order: Create an order for a table
        - list_orders: Retrieve the authoritative order list
        - get_order: Retrieve a single order
        - update_order_status / cancel_order: Track an order after it was placed
        - get_menu: Retrieve available menu items
        - get_tables: Retrieve the active tables orders are placed against
        - set_token: Change the bearer token used for later calls
        - health_check: Verify the API is reachable
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'mock', 'http')."""
        pass

    @abstractmethod
    async def create_order(
        self,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create an order on the server.

        Args:
            payload: Order-creation body {table_id, items: [...], ...}
            idempotency_key: Stable key identifying this submission; sent so
                the server can drop replays of the same order

        Returns:
            The created order, including its server-assigned id
        """
        pass

    @abstractmethod
    async def list_orders(self, **filters: Any) -> list[dict[str, Any]]:
        """List orders, newest first. Filters: status, table, limit, offset."""
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Get a single order by its server id."""
        pass

    @abstractmethod
    async def update_order_status(self, order_id: str, status: str) -> dict[str, Any]:
        """Move an order to another status (acknowledged, preparing, ...)."""
        pass

    @abstractmethod
    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> dict[str, Any]:
        """
        Cancel an order.

        Only pending or acknowledged orders can be cancelled; the server
        rejects the rest with a 400.
        """
        pass

    @abstractmethod
    async def get_menu(self) -> list[dict[str, Any]]:
        """Get the available menu items."""
        pass

    @abstractmethod
    async def get_tables(self) -> list[dict[str, Any]]:
        """Get the active tables, ordered by table number."""
        pass

    @abstractmethod
    def set_token(self, token: Optional[str]) -> None:
        """Use ``token`` for later calls; None goes back to the configured one."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check API connectivity."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None
