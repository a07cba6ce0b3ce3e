"""
HTTP Orders API Client

Talks to the restaurant REST API with httpx. Responses come wrapped as
``{"success": true, "data": ...}``; errors as
``{"success": false, "message": "..."}``.

Error mapping:
    - Connection, decoding and timeout errors, 502/503/504 → OrdersAPIUnavailable
    - Any other 4xx/5xx, or a body of the wrong shape → OrdersAPIError
"""

import logging
from typing import Any, Optional

import httpx

from waitstaff.core.exceptions import OrdersAPIError, OrdersAPIUnavailable
from waitstaff.services.api.base import BaseOrdersAPI

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUS_CODES = {502, 503, 504}


class HttpOrdersAPI(BaseOrdersAPI):
    """Restaurant REST API client over httpx."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.base_url = base_url.rstrip("/")
        self._configured_token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"HttpOrdersAPI initialized ({self.base_url}, timeout={timeout}s)")

    @property
    def provider_name(self) -> str:
        return "http"

    def set_token(self, token: Optional[str]) -> None:
        """Send ``token`` from now on. None restores the configured token."""
        token = token or self._configured_token
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise OrdersAPIUnavailable(f"Timed out calling {method} {path}") from e
        except httpx.RequestError as e:
            raise OrdersAPIUnavailable(f"Could not reach orders API: {e}") from e

        if response.status_code >= 400:
            message = self._error_message(response)
            if response.status_code in UNAVAILABLE_STATUS_CODES:
                raise OrdersAPIUnavailable(message, status_code=response.status_code)
            raise OrdersAPIError(message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise OrdersAPIError(
                f"Invalid JSON from {method} {path}", status_code=response.status_code
            ) from e

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _expect(value: Any, kind: type, what: str) -> Any:
        if not isinstance(value, kind):
            raise OrdersAPIError(f"Unexpected {what} response: {type(value).__name__}")
        return value

    async def create_order(
        self,
        payload: dict[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        order = self._expect(
            await self._request("POST", "/orders", json=payload, headers=headers),
            dict,
            "create-order",
        )
        logger.info(f"Order {order.get('id')} created for table {payload.get('table_id')}")
        return order

    async def list_orders(self, **filters: Any) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._expect(await self._request("GET", "/orders", params=params), list, "order list")

    async def get_order(self, order_id: str) -> dict[str, Any]:
        return self._expect(await self._request("GET", f"/orders/{order_id}"), dict, "order")

    async def update_order_status(self, order_id: str, status: str) -> dict[str, Any]:
        order = self._expect(
            await self._request("PATCH", f"/orders/{order_id}/status", json={"status": status}),
            dict,
            "order status",
        )
        logger.info(f"Order {order_id} is now {status}")
        return order

    async def cancel_order(self, order_id: str, reason: Optional[str] = None) -> dict[str, Any]:
        body = {"reason": reason} if reason else {}
        order = self._expect(
            await self._request("POST", f"/orders/{order_id}/cancel", json=body),
            dict,
            "cancel-order",
        )
        logger.info(f"Order {order_id} cancelled")
        return order

    async def get_menu(self) -> list[dict[str, Any]]:
        return self._expect(await self._request("GET", "/menu/items"), list, "menu")

    async def get_tables(self) -> list[dict[str, Any]]:
        return self._expect(await self._request("GET", "/tables"), list, "table list")

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/menu/categories")
            return True
        except OrdersAPIError as e:
            logger.warning(f"Orders API health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
