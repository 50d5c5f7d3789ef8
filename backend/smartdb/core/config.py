"""Application configuration."""

import logging
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_DB_PASSWORD = "password"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = False

    # Local database (always registered under LOCAL_DB_ID)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "smartdb"
    db_user: str = "postgres"
    db_password: str = DEFAULT_LOCAL_DB_PASSWORD

    # Pool policy
    pool_max_size: int = 20
    pool_idle_timeout: float = 30.0  # seconds before an idle connection is evicted
    pool_connect_timeout: float = 2.0
    pool_acquire_timeout: float = 30.0
    probe_connect_timeout: float = 5.0  # throwaway pools used by connection tests

    # Query Limits
    query_timeout: int = 300  # 5 minutes
    table_data_max_rows: int = 1000

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:5174",
        "http://localhost:5175",
        "http://localhost:3000",
    ]

    # Logging
    log_level: str = "INFO"

    def warn_if_insecure(self) -> None:
        """Log a warning when production runs with the default local password."""
        if (
            self.environment == "production"
            and self.db_password == DEFAULT_LOCAL_DB_PASSWORD
        ):
            logger.warning(
                "DB_PASSWORD is the built-in default in production. "
                "Set DB_PASSWORD for the local database."
            )


settings = Settings()
