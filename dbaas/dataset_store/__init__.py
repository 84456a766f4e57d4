"""
Dataset Store - ownership-guarded, versioned JSON document storage.

This package persists "dataset" records (a JSON document plus family,
schema and ownership metadata) in SQLite and enforces a mutation protocol:
- Ownership is verified in the same transaction as the mutation
- The record's family chooses full replace or top-level merge patch
- A version counter (seq) increases by one on every content change
- Zero affected rows is the signal for "no such dataset"

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌────────────────┐
    │ DatasetStore │────▶│  DatasetTx   │────▶│ ConnectionPool │──▶ SQLite
    │ (operations) │     │ (primitives) │     │ (one handle)   │
    └──────┬───────┘     └──────────────┘     └────────────────┘
           │
           ▼
    ┌────────────────┐
    │ FamilyRegistry │ (partial vs. full policy)
    └────────────────┘

Invariants:
    - Every public operation is a single transaction
    - Records either exist completely or not at all (physical delete)
    - Family ids are immutable once assigned

Version: see _version.py.
"""

from ._version import __version__
from .errors import (
    DatasetStoreError,
    NotFoundError,
    NotOwnerError,
    StorageError,
    UnknownFamilyError,
    ValidationError,
)
from .models import Dataset, FamilyDescriptor, FamilyRegistry
from .storage import ConnectionPool, DatasetStore

__all__ = [
    "__version__",
    "ConnectionPool",
    "Dataset",
    "DatasetStore",
    "DatasetStoreError",
    "FamilyDescriptor",
    "FamilyRegistry",
    "NotFoundError",
    "NotOwnerError",
    "StorageError",
    "UnknownFamilyError",
    "ValidationError",
]
