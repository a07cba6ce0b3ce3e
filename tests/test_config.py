import logging

import pytest
from pydantic import ValidationError

from waitstaff.core.config import EnvironmentMode, Settings, get_settings, setup_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.env_mode == EnvironmentMode.DEVELOPMENT
        assert settings.is_development is True
        assert settings.use_real_services is False
        assert settings.local_database_url.startswith("sqlite+aiosqlite://")
        assert settings.sync_max_attempts == 10

    def test_env_mode_is_case_insensitive(self):
        assert Settings(env_mode="PRODUCTION").is_production is True
        assert Settings(env_mode="Staging").use_real_services is True

    def test_invalid_env_mode(self):
        with pytest.raises(ValidationError):
            Settings(env_mode="qa")

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("REMOTE_API_URL", "http://10.0.0.5:3000/api/")
        monkeypatch.setenv("SYNC_BASE_DELAY_SECONDS", "0.5")
        settings = Settings()
        assert settings.remote_api_url == "http://10.0.0.5:3000/api"
        assert settings.sync_base_delay_seconds == 0.5

    def test_production_requires_token(self):
        assert Settings(env_mode="production").validate_production_config() == ["REMOTE_API_TOKEN"]
        assert Settings(env_mode="production", remote_api_token="t").validate_production_config() == []
        assert Settings(env_mode="development").validate_production_config() == []

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_setup_logging_returns_package_logger(self):
        logger = setup_logging()
        assert logger.name == "waitstaff"
        assert logging.getLogger("httpx").level == logging.WARNING
