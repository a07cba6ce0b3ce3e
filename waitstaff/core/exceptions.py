"""
Exception hierarchy shared by the store, the orders API clients and the
client backend.
"""

from typing import Optional


class WaitstaffError(Exception):
    """Base class for all waitstaff client errors."""


class StorageError(WaitstaffError):
    """The local database could not be read or written."""


class CartItemNotFound(WaitstaffError):
    """No cart item exists with the requested id."""

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Cart item #{item_id} not found")


class OrdersAPIError(WaitstaffError):
    """The remote orders API rejected a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{status_code}: {message}")


class OrdersAPIUnavailable(OrdersAPIError):
    """The remote orders API could not be reached (network error or timeout)."""
