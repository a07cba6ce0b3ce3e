"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: Uses the in-memory mock orders API (no server needed)
    - STAGING: Talks to a real orders API with test credentials
    - PRODUCTION: Talks to the live orders API

The ENV_MODE variable controls which orders API client is instantiated,
enabling seamless switching between local testing and a real restaurant
backend.

Usage:
    from waitstaff.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Use mock orders API
    else:
        # Use the remote REST API
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with the mock orders API
        PRODUCTION: Live environment against the real orders API
        STAGING: Pre-production testing against a real orders API
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    The remote API token should NEVER be committed to version control.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # Local store
        local_database_url: SQLAlchemy URL of the on-device database

        # Remote orders API
        remote_api_url: Base URL of the restaurant REST API
        remote_api_token: Bearer token sent with every request
        request_timeout_seconds: Timeout for each remote call

        # Sync
        sync_max_attempts: Replays per queued order before it is parked
        sync_base_delay_seconds: First backoff delay after a failure
        sync_max_delay_seconds: Upper bound on the backoff delay
        sync_interval_seconds: Background sweep period (0 disables)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Waitstaff Ordering Client",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="127.0.0.1",
        description="Client backend host"
    )
    api_port: int = Field(
        default=8002,
        description="Client backend port"
    )

    # ==========================================================================
    # LOCAL STORE
    # ==========================================================================

    local_database_url: str = Field(
        default="sqlite+aiosqlite:///data/waitstaff.db",
        description="Local SQLite database URL"
    )
    default_session_id: str = Field(
        default="default",
        description="Cart session used when none is given"
    )

    # ==========================================================================
    # REMOTE ORDERS API
    # ==========================================================================

    remote_api_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL of the restaurant REST API"
    )
    remote_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the restaurant REST API"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout applied to every remote call"
    )

    # ==========================================================================
    # OFFLINE SYNC
    # ==========================================================================

    sync_max_attempts: int = Field(
        default=10,
        ge=0,
        description="Replays per queued order before it stops being retried (0 = unlimited)"
    )
    sync_base_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Backoff delay after the first failed replay"
    )
    sync_max_delay_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Upper bound for the backoff delay"
    )
    sync_interval_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Period of the background sync loop (0 disables it)"
    )
    sync_lock_file: Optional[str] = Field(
        default=None,
        description="Lock file shared by processes syncing the same database"
    )

    # ==========================================================================
    # BUSINESS CONFIGURATION
    # ==========================================================================

    tax_rate: float = Field(
        default=0.07,
        description="Tax rate applied by the mock orders API"
    )
    mock_failure_rate: float = Field(
        default=0.0,
        ge=0,
        le=1,
        description="Simulated failure rate of the mock orders API"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("remote_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if the remote orders API should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.remote_api_token:
                missing.append("REMOTE_API_TOKEN")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Configured application settings

    Example:
        >>> settings = get_settings()
        >>> print(settings.env_mode)
        EnvironmentMode.DEVELOPMENT
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    return logging.getLogger("waitstaff")
