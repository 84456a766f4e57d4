"""
Unit tests for the SQLite connection pool and the json_merge_top function.
"""

import json
import os
import tempfile

import pytest

from dbaas.dataset_store.errors import PoolClosedError, PoolExhaustedError, StorageError
from dbaas.dataset_store.storage.pool import ConnectionPool, json_merge_top


class TestJsonMergeTop:
    """Tests for the shallow merge used by patches."""

    def test_overwrites_and_adds(self):
        merged = json_merge_top('{"a": 1, "b": 2}', '{"b": 3, "c": 4}')
        assert json.loads(merged) == {"a": 1, "b": 3, "c": 4}

    def test_not_recursive(self):
        """Nested objects are replaced wholesale."""
        merged = json_merge_top('{"n": {"x": 1, "y": 2}}', '{"n": {"x": 9}}')
        assert json.loads(merged) == {"n": {"x": 9}}

    def test_null_value_is_kept(self):
        """Unlike RFC 7396, a null in the patch is stored, not a deletion."""
        merged = json_merge_top('{"a": 1}', '{"a": null}')
        assert json.loads(merged) == {"a": None}

    def test_requires_objects(self):
        with pytest.raises(ValueError):
            json_merge_top("[1]", '{"a": 1}')
        with pytest.raises(ValueError):
            json_merge_top('{"a": 1}', "[1]")

    def test_null_patch(self):
        assert json_merge_top('{"a": 1}', None) == '{"a": 1}'


class TestConnectionPool:
    """Tests for ConnectionPool."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def pool(self, data_dir):
        pool = ConnectionPool(os.path.join(data_dir, "sub", "pool.db"), pool_size=2, acquire_timeout=0.05)
        yield pool
        pool.shutdown()

    def test_creates_parent_directory(self, pool, data_dir):
        with pool.connection() as conn:
            conn.execute("SELECT 1")
        assert os.path.isdir(os.path.join(data_dir, "sub"))

    def test_connection_reused(self, pool):
        conn = pool.acquire()
        pool.release(conn)

        again = pool.acquire()
        assert again is conn
        pool.release(again)

    def test_merge_function_registered(self, pool):
        with pool.connection() as conn:
            row = conn.execute("SELECT json_merge_top(?, ?)", ('{"a": 1}', '{"b": 2}')).fetchone()
        assert json.loads(row[0]) == {"a": 1, "b": 2}

    def test_exhausted(self, pool):
        first = pool.acquire()
        second = pool.acquire()

        with pytest.raises(PoolExhaustedError) as exc_info:
            pool.acquire()
        assert isinstance(exc_info.value, StorageError)

        pool.release(first)
        pool.release(second)

    def test_release_rolls_back(self, pool):
        """A connection never returns to the pool with an open transaction."""
        conn = pool.acquire()
        conn.execute("CREATE TABLE t (x INTEGER)")
        conn.execute("BEGIN")
        conn.execute("INSERT INTO t VALUES (1)")
        pool.release(conn)

        assert not conn.in_transaction
        with pool.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0

    def test_closed_pool(self, pool):
        pool.shutdown()

        assert pool.closed
        with pytest.raises(PoolClosedError):
            pool.acquire()

    def test_invalid_size(self, data_dir):
        with pytest.raises(ValueError):
            ConnectionPool(os.path.join(data_dir, "x.db"), pool_size=0)
