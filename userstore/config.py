"""
User Store — Configuration

Connection settings for the ClickHouse HTTP interface and logging level.
Loaded from environment variables (or a local .env file) with fallback
defaults suitable for a developer ClickHouse on localhost.

Usage:
    from userstore.config import settings
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Central configuration for the user store.

    Every field can be overridden by an environment variable of the same name.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # -----------------------------------------------------------------------
    # ClickHouse
    # -----------------------------------------------------------------------
    CLICKHOUSE_URL: str = "http://localhost:8123"
    CLICKHOUSE_DATABASE: str = "default"
    CLICKHOUSE_USER: str = "default"
    CLICKHOUSE_PASSWORD: str = ""
    CLICKHOUSE_TIMEOUT_SECONDS: float = 30.0

    # -----------------------------------------------------------------------
    # Logging
    # -----------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"


# Singleton instance
settings = Settings()
