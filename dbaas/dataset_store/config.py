"""
Configuration for the dataset store.

All configuration is done via environment variables with the
``DATASETDB_`` prefix; pydantic-settings handles loading and coercion.

Invariants:
    - All settings have sensible defaults for local development
    - Invalid values fail at load time, not at first use

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Document new settings in the field description
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StoreSettings(BaseSettings):
    """Dataset store configuration loaded from environment."""

    # Database
    db_path: str = Field(default="/var/lib/datasetdb/datasets.db", description="SQLite database file")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL mode")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="SQLite busy timeout in milliseconds")
    cache_size_pages: int = Field(default=-64000, description="SQLite cache size in pages (negative = KB)")

    # Connection pool
    pool_size: int = Field(default=5, ge=1, description="Maximum pooled connections")
    acquire_timeout: float = Field(default=5.0, gt=0, description="Seconds to wait for a free connection")

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    log_format: str = Field(default="json", description="json or text")

    model_config = {"env_prefix": "DATASETDB_"}

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level '{value}'")
        return level

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in ("json", "text"):
            raise ValueError(f"Invalid log format '{value}'. Must be one of: json, text")
        return fmt

    def log_config(self) -> None:
        """Log the loaded configuration."""
        if not Path(self.db_path).parent.exists():
            logger.warning(
                f"Data directory does not exist: {Path(self.db_path).parent}. "
                "It will be created on first connection."
            )
        logger.info(
            "Dataset store configuration loaded",
            extra={
                "db_path": self.db_path,
                "pool_size": self.pool_size,
                "wal_mode": self.wal_mode,
                "log_level": self.log_level,
            },
        )
