"""
Scoped database transactions.

A Tx owns one pooled connection from begin() until it is closed. Leaving
the ``with`` block always rolls back unless commit() ran first, so an early
return or a propagated exception never leaves partially applied state.

Invariants:
    - One transaction per public store operation, spanning all its statements
    - rollback() after commit() (or a second rollback()) is a no-op
    - The connection goes back to the pool exactly once

Example:
    >>> with Tx.begin(pool) as tx:
    ...     cur = tx.execute("UPDATE datasets SET seq = seq + 1 WHERE id = ?", (key,))
    ...     tx.commit()
"""

from __future__ import annotations

import logging
import sqlite3
from types import TracebackType
from typing import Any, Optional, Sequence, Type, TypeVar

from ..errors import handle_error
from .pool import ConnectionPool

logger = logging.getLogger(__name__)

TxT = TypeVar("TxT", bound="Tx")


class Tx:
    """A single database transaction on a pooled connection."""

    def __init__(self, pool: ConnectionPool, conn: sqlite3.Connection) -> None:
        self._pool = pool
        self._conn = conn
        self._done = False
        self._released = False

    @classmethod
    def begin(cls: Type[TxT], pool: ConnectionPool, immediate: bool = True) -> TxT:
        """Acquire a connection and open a transaction on it.

        Args:
            pool: Connection pool to borrow from
            immediate: Take the write lock up front (BEGIN IMMEDIATE).
                Readers pass False for a deferred transaction.

        Raises:
            StorageError: If no connection is available or BEGIN fails
        """
        conn = pool.acquire()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            pool.release(conn)
            raise handle_error(e, "begin") from e
        return cls(pool, conn)

    @property
    def done(self) -> bool:
        """Whether the transaction was committed or rolled back."""
        return self._done

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run a statement; the cursor exposes ``rowcount`` for DML.

        Raises:
            StorageError: On any engine error
        """
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise handle_error(e, "execute") from e

    def query_row(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def commit(self) -> None:
        """Commit the transaction.

        Raises:
            StorageError: If the commit fails (the transaction is rolled back)
        """
        if self._done:
            raise RuntimeError("Transaction already finished")
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self.rollback()
            raise handle_error(e, "commit") from e
        self._done = True

    def rollback(self) -> None:
        """Roll back the transaction; no-op once committed or rolled back."""
        if self._done:
            return
        self._done = True
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed: %s", e)

    def close(self) -> None:
        """Roll back if still open and hand the connection back to the pool."""
        self.rollback()
        if not self._released:
            self._released = True
            self._pool.release(self._conn)

    def __enter__(self: TxT) -> TxT:
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()
