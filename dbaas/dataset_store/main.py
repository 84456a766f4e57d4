"""
Process lifecycle for the dataset store.

This module wires the components together:
- Logging setup from configuration
- Connection pool creation at start, shutdown at stop
- Schema initialization

The pool is created exactly once per StoreService and passed explicitly to
the DatasetStore; nothing else in the package opens database connections.

Usage:
    with StoreService(StoreSettings()) as store:
        store.get(dataset_id)
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Optional, Type

import json_log_formatter

from .config import StoreSettings
from .models.family import FamilyRegistry
from .storage import ConnectionPool, DatasetStore

logger = logging.getLogger(__name__)


def setup_logging(settings: StoreSettings) -> None:
    """Configure root logging based on settings."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class StoreService:
    """Owns the connection pool for the lifetime of a process.

    Example:
        >>> service = StoreService()
        >>> store = service.start()
        >>> store.list_all_for_uid(uid)
        >>> service.stop()
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        families: Optional[FamilyRegistry] = None,
    ) -> None:
        self.settings = settings or StoreSettings()
        self.families = families
        self.pool: Optional[ConnectionPool] = None
        self.store: Optional[DatasetStore] = None

    def start(self) -> DatasetStore:
        """Open the pool and make sure the schema exists."""
        if self.store is not None:
            logger.warning("Dataset store already started")
            return self.store

        self.settings.log_config()
        self.pool = ConnectionPool(
            self.settings.db_path,
            pool_size=self.settings.pool_size,
            acquire_timeout=self.settings.acquire_timeout,
            wal_mode=self.settings.wal_mode,
            busy_timeout_ms=self.settings.busy_timeout_ms,
            cache_size_pages=self.settings.cache_size_pages,
        )
        store = DatasetStore(self.pool, families=self.families)
        try:
            store.initialize()
        except Exception:
            logger.error("Dataset store startup failed", exc_info=True)
            self.pool.shutdown()
            self.pool = None
            raise

        self.store = store
        logger.info("Dataset store started")
        return store

    def stop(self) -> None:
        """Close the pool. Safe to call more than once."""
        if self.pool is None:
            return
        self.pool.shutdown()
        self.pool = None
        self.store = None
        logger.info("Dataset store stopped")

    def __enter__(self) -> DatasetStore:
        return self.start()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.stop()
