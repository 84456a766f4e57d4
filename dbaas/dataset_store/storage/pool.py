"""
SQLite connection pool for the dataset store.

The pool is the single database handle of the process: it is constructed
once at startup, passed explicitly to the store, and shut down once at exit.
Nothing in this package reaches it through module-level state.

Invariants:
    - A connection is owned by exactly one transaction between acquire/release
    - Released connections never carry an open transaction back into the pool
    - Every connection has the json_merge_top SQL function registered

How to change safely:
    - New pragmas go in _create_connection and apply to every connection
    - Keep isolation_level=None; transactions are opened explicitly by Tx
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from queue import Empty, Queue
from typing import Iterator, Optional

from ..errors import PoolClosedError, PoolExhaustedError, handle_error

logger = logging.getLogger(__name__)


def json_merge_top(target: Optional[str], patch: Optional[str]) -> Optional[str]:
    """Shallow merge of two JSON objects, exposed to SQL.

    Keys of ``patch`` overwrite or extend ``target``; other keys of
    ``target`` are kept as they are. Nested objects are replaced, not merged.
    """
    if patch is None:
        return target
    base = json.loads(target) if target is not None else {}
    overlay = json.loads(patch)
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        raise ValueError("json_merge_top requires two JSON objects")
    base.update(overlay)
    return json.dumps(base, separators=(",", ":"))


class ConnectionPool:
    """Thread-safe pool of SQLite connections for one database file.

    Example:
        >>> pool = ConnectionPool("/var/lib/datasetdb/datasets.db", pool_size=4)
        >>> with pool.connection() as conn:
        ...     conn.execute("SELECT 1").fetchone()
        >>> pool.shutdown()
    """

    def __init__(
        self,
        db_path: str | Path,
        pool_size: int = 5,
        acquire_timeout: float = 5.0,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize a connection pool.

        Args:
            db_path: Path to the SQLite database file
            pool_size: Maximum number of connections in the pool
            acquire_timeout: Seconds to wait for a free connection
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        if pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {pool_size}")
        self.db_path = Path(db_path)
        self.pool_size = pool_size
        self.acquire_timeout = acquire_timeout
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self._lock = threading.Lock()
        self._created = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _create_connection(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row

        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        conn.create_function("json_merge_top", 2, json_merge_top, deterministic=True)
        return conn

    def acquire(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        """Take a connection out of the pool.

        Connections are created lazily up to ``pool_size``; after that the
        caller waits for one to be released.

        Raises:
            PoolClosedError: If the pool was shut down
            PoolExhaustedError: If no connection became free in time
            StorageError: If a new connection could not be opened
        """
        if self._closed:
            raise PoolClosedError()

        try:
            return self._pool.get(block=False)
        except Empty:
            pass

        with self._lock:
            if self._created < self.pool_size:
                try:
                    conn = self._create_connection()
                except sqlite3.Error as e:
                    logger.error("Failed to create database connection: %s", e)
                    raise handle_error(e, "connect") from e
                self._created += 1
                logger.debug(
                    "Opened pooled connection",
                    extra={"db_path": str(self.db_path), "connections": self._created},
                )
                return conn

        wait = self.acquire_timeout if timeout is None else timeout
        try:
            return self._pool.get(timeout=wait)
        except Empty:
            logger.warning("Connection pool exhausted (timeout after %.1fs)", wait)
            raise PoolExhaustedError(wait)

    def release(self, conn: sqlite3.Connection) -> None:
        """Return a connection to the pool, rolling back any open transaction."""
        try:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error("Error releasing connection: %s", e)
            self._discard(conn)
            return

        if self._closed:
            self._discard(conn)
            return
        self._pool.put(conn, block=False)

    def _discard(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            self._created -= 1
        conn.close()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of a ``with`` block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def shutdown(self) -> None:
        """Close all idle connections and refuse further acquisitions."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        closed_count = 0
        while True:
            try:
                conn = self._pool.get(block=False)
            except Empty:
                break
            conn.close()
            closed_count += 1
        with self._lock:
            self._created -= closed_count
        logger.info("Closed %d connections from pool", closed_count)
