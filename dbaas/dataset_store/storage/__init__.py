"""
Storage layer for the dataset store.

This module handles:
- The SQLite connection pool (the process-wide database handle)
- Scoped transactions with rollback on every exit path
- Ownership-guarded dataset mutations and reads

Invariants:
    - Every public operation runs in exactly one transaction
    - Ownership checks and the guarded mutation share that transaction
    - Zero affected rows always surfaces as NotFoundError

How to change safely:
    - Use DatasetTx primitives inside a single ``with`` block
    - Never hold a connection outside a Tx or ``pool.connection()``
"""

from .dataset_store import DatasetStore, DatasetTx
from .pool import ConnectionPool, json_merge_top
from .transaction import Tx

__all__ = [
    "ConnectionPool",
    "DatasetStore",
    "DatasetTx",
    "Tx",
    "json_merge_top",
]
