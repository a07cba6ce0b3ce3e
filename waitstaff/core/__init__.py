"""
Core module initialization.
Exports configuration, logging and error types.
"""

from waitstaff.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from waitstaff.core.exceptions import (
    WaitstaffError,
    StorageError,
    CartItemNotFound,
    OrdersAPIError,
    OrdersAPIUnavailable,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "WaitstaffError",
    "StorageError",
    "CartItemNotFound",
    "OrdersAPIError",
    "OrdersAPIUnavailable",
]
