"""Tests for configuration."""

import logging
import os
from unittest.mock import patch

from smartdb.core.config import Settings


class TestSettings:
    """Tests for application settings."""

    def test_default_settings(self):
        """Test default settings values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        assert settings.environment == "development"
        assert settings.db_host == "localhost"
        assert settings.db_port == 5432
        assert settings.db_name == "smartdb"
        assert settings.db_user == "postgres"
        assert settings.db_password == "password"
        assert settings.query_timeout == 300
        assert settings.pool_max_size == 20
        assert settings.table_data_max_rows == 1000

    def test_environment_variable_override(self):
        """Test that environment variables override defaults."""
        with patch.dict(
            os.environ,
            {
                "DB_HOST": "db.internal",
                "DB_PORT": "5433",
                "DB_NAME": "app",
                "POOL_MAX_SIZE": "5",
                "QUERY_TIMEOUT": "600",
            },
            clear=True,
        ):
            settings = Settings(_env_file=None)
            assert settings.db_host == "db.internal"
            assert settings.db_port == 5433
            assert settings.db_name == "app"
            assert settings.pool_max_size == 5
            assert settings.query_timeout == 600

    def test_cors_origins_default(self):
        settings = Settings(_env_file=None)
        assert "http://localhost:5173" in settings.cors_origins


class TestInsecureDefaults:
    """Tests for the production password warning."""

    def test_warns_in_production_with_default_password(self, caplog):
        settings = Settings(_env_file=None, environment="production")
        with caplog.at_level(logging.WARNING, logger="smartdb.core.config"):
            settings.warn_if_insecure()
        assert "DB_PASSWORD" in caplog.text

    def test_silent_with_custom_password(self, caplog):
        settings = Settings(_env_file=None, environment="production", db_password="s3cret")
        with caplog.at_level(logging.WARNING, logger="smartdb.core.config"):
            settings.warn_if_insecure()
        assert caplog.text == ""

    def test_silent_in_development(self, caplog):
        settings = Settings(_env_file=None)
        with caplog.at_level(logging.WARNING, logger="smartdb.core.config"):
            settings.warn_if_insecure()
        assert caplog.text == ""
