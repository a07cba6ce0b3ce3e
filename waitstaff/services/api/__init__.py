"""
Orders API Factory

Provides a single entry point for obtaining an orders API client.
The rest of the application stays agnostic about which implementation
is in use.

Usage:
    from waitstaff.services.api import create_orders_api

    api = create_orders_api(get_settings())
    order = await api.create_order(payload)

Environment Switching:
    - ENV_MODE=development → MockOrdersAPI (in memory, no server)
    - ENV_MODE=staging → HttpOrdersAPI (staging server)
    - ENV_MODE=production → HttpOrdersAPI (live server)
"""

import logging

from waitstaff.core.config import Settings
from waitstaff.services.api.base import BaseOrdersAPI
from waitstaff.services.api.http import HttpOrdersAPI
from waitstaff.services.api.mock import MockOrdersAPI

logger = logging.getLogger(__name__)


def create_orders_api(settings: Settings) -> BaseOrdersAPI:
    """
    Build the orders API client for the configured environment.

    The application root owns the returned instance and must call
    ``aclose()`` on shutdown.
    """
    if settings.is_development:
        logger.info("Orders API: Using MockOrdersAPI (development mode)")
        return MockOrdersAPI(
            failure_rate=settings.mock_failure_rate,
            tax_rate=settings.tax_rate,
            min_latency=0.05,
            max_latency=0.2,
        )

    logger.info(f"Orders API: Using HttpOrdersAPI ({settings.env_mode.value} mode)")
    return HttpOrdersAPI(
        base_url=settings.remote_api_url,
        token=settings.remote_api_token,
        timeout=settings.request_timeout_seconds,
    )


__all__ = [
    "create_orders_api",
    "BaseOrdersAPI",
    "HttpOrdersAPI",
    "MockOrdersAPI",
]
