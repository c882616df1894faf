"""Test configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from knowledge_chat.config import Settings, get_settings


class TestSettings:
    """Test Settings class."""

    def setup_method(self):
        """Clear settings cache before each test."""
        get_settings.cache_clear()

    def teardown_method(self):
        """Clear settings cache after each test."""
        get_settings.cache_clear()

    def test_default_settings(self):
        """Test default settings values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.app_name == "Knowledge Chat"
        assert settings.environment == "development"
        assert settings.enable_auth is False
        assert settings.session_message_limit == 500
        assert settings.daily_token_limit == 100_000
        assert settings.token_cooldown_seconds == 7200
        assert settings.daily_pdf_upload_limit == 2
        assert settings.daily_image_upload_limit == 2
        assert settings.cooldown_poll_interval == 1.0
        assert settings.storage_bucket == "ai-knowledge-uploads"

    def test_environment_overrides(self):
        """Test settings load from environment variables."""
        env_vars = {
            "DAILY_TOKEN_LIMIT": "5000",
            "TOKEN_COOLDOWN_SECONDS": "60",
            "ENABLE_AUTH": "true",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.daily_token_limit == 5000
        assert settings.token_cooldown_seconds == 60
        assert settings.enable_auth is True

    def test_non_positive_limit_rejected(self):
        with patch.dict(os.environ, {"DAILY_TOKEN_LIMIT": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_async_database_url(self):
        """Test driver selection for the async engine."""
        assert Settings(
            _env_file=None, database_url="postgresql://u:p@db:5432/app"
        ).get_async_database_url() == "postgresql+asyncpg://u:p@db:5432/app"
        assert Settings(
            _env_file=None, database_url="postgres://u:p@db/app"
        ).get_async_database_url() == "postgresql+asyncpg://u:p@db/app"
        assert Settings(
            _env_file=None, database_url="sqlite:///./chat.db"
        ).get_async_database_url() == "sqlite+aiosqlite:///./chat.db"
        assert Settings(
            _env_file=None, database_url="sqlite+aiosqlite:///:memory:"
        ).get_async_database_url() == "sqlite+aiosqlite:///:memory:"

    def test_completion_url(self):
        """Test the completion endpoint is derived from the project URL."""
        settings = Settings(_env_file=None, supabase_url="https://proj.supabase.co/")
        assert settings.get_completion_url() == "https://proj.supabase.co/functions/v1/ai-knowledge-chat"
        assert settings.get_storage_url() == "https://proj.supabase.co/storage/v1"

        explicit = Settings(_env_file=None, completion_url="http://localhost:9000/chat")
        assert explicit.get_completion_url() == "http://localhost:9000/chat"

    def test_completion_url_requires_configuration(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        with pytest.raises(ValueError):
            settings.get_completion_url()

    def test_cors_origins(self):
        """Test CORS origin parsing."""
        assert Settings(
            _env_file=None, cors_allowed_origins="https://a.com, https://b.com"
        ).get_cors_origins() == ["https://a.com", "https://b.com"]
        assert Settings(_env_file=None, environment="development").get_cors_origins() == ["*"]
        assert Settings(_env_file=None, environment="production").get_cors_origins() == []

    def test_get_settings_cached(self):
        """Test get_settings returns the same instance."""
        assert get_settings() is get_settings()
