"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Serum order indexer, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

SERUM_PROGRAM_ID = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
        return v


class SolanaSettings(BaseSettings):
    """Solana JSON-RPC data source settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Solana JSON-RPC endpoint",
    )
    program_id: str = Field(
        default=SERUM_PROGRAM_ID,
        alias="SOLANA_PROGRAM_ID",
        description="Serum DEX program whose instructions are indexed",
    )
    start_slot: int = Field(
        default=0,
        alias="SOLANA_START_SLOT",
        ge=0,
        description="First slot to index when no checkpoint exists (0 = current tip)",
    )
    batch_slots: int = Field(
        default=20,
        alias="SOLANA_BATCH_SLOTS",
        ge=1,
        le=500,
        description="Number of slots fetched and processed per batch",
    )
    max_requests_per_second: float = Field(
        default=5.0,
        alias="SOLANA_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Rate limit for RPC calls",
    )
    max_retries: int = Field(
        default=3,
        alias="SOLANA_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retry attempts for transient RPC failures",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        alias="SOLANA_POLL_INTERVAL_SECONDS",
        gt=0.0,
        le=600.0,
        description="Sleep between polls once the indexer has caught up with the tip",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="SOLANA_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="HTTP timeout for a single RPC call",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("SOLANA_RPC_URL must be an HTTP(S) endpoint")
        return v


class SnapshotSettings(BaseSettings):
    """JSON order snapshot settings."""

    model_config = SettingsConfigDict(env_prefix="SNAPSHOT_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="SNAPSHOT_ENABLED",
        description="Mirror opened orders into a JSON snapshot file after each batch",
    )
    path: Path = Field(
        default=Path("orders.json"),
        alias="SNAPSHOT_PATH",
        description="Snapshot file location",
    )


class IndexerSettings(BaseSettings):
    """Order lifecycle engine settings."""

    model_config = SettingsConfigDict(env_prefix="INDEXER_", extra="ignore")

    legacy_asks_market_key: bool = Field(
        default=False,
        alias="INDEXER_LEGACY_ASKS_MARKET_KEY",
        description=(
            "Key matchOrders/cancelOrderV2 lookups on the Asks account in place of the market "
            "address, for parity with rows written by the legacy indexer"
        ),
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from serum_order_indexer.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    snapshot: SnapshotSettings = Field(
        default_factory=lambda: SnapshotSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    indexer: IndexerSettings = Field(
        default_factory=lambda: IndexerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "solana": {
                "rpc_url": self._redact_url(self.solana.rpc_url),
                "program_id": self.solana.program_id,
                "start_slot": str(self.solana.start_slot),
                "batch_slots": str(self.solana.batch_slots),
            },
            "snapshot": {
                "enabled": str(self.snapshot.enabled),
                "path": str(self.snapshot.path),
            },
            "indexer": {
                "legacy_asks_market_key": str(self.indexer.legacy_asks_market_key),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
