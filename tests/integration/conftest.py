"""
Shared fixtures for dataset store integration tests.

Every test gets its own SQLite file in a temporary directory.
"""

import json
import os
import tempfile
import uuid

import pytest

from dbaas.dataset_store.models.dataset import Dataset
from dbaas.dataset_store.models.family import FAMILY_GENERIC
from dbaas.dataset_store.storage.dataset_store import DatasetStore
from dbaas.dataset_store.storage.pool import ConnectionPool


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def pool(data_dir):
    """Connection pool on a fresh database file."""
    pool = ConnectionPool(os.path.join(data_dir, "datasets.db"), pool_size=3, wal_mode=False)
    yield pool
    pool.shutdown()


@pytest.fixture
def store(pool):
    """Initialized store with the built-in families."""
    store = DatasetStore(pool)
    store.initialize()
    return store


@pytest.fixture
def alice():
    return uuid.UUID("00000000-0000-4000-8000-00000000a11c")


@pytest.fixture
def bob():
    return uuid.UUID("00000000-0000-4000-8000-000000000b0b")


@pytest.fixture
def make_dataset(alice):
    """Factory for generic-family datasets owned by alice."""

    def _make(doc=None, owner=None, family=FAMILY_GENERIC, schema="generic-v1", **kwargs):
        doc = doc if doc is not None else {"title": "Test", "keywords": ["a"]}
        return Dataset.create(
            family=family,
            schema=schema,
            blob=json.dumps(doc),
            creator=alice,
            owner=owner,
            **kwargs,
        )

    return _make
