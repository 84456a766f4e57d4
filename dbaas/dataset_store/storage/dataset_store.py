"""
Ownership-guarded dataset store on SQLite.

This module persists dataset records and layers the mutation protocol on
top of plain SQL:
- Ownership is checked inside the same transaction as the mutation
- Family policy picks full replace or top-level merge patch
- Every content mutation bumps ``seq`` by exactly one
- Affected-row counts, not extra SELECTs, tell "absent" from "done"

Invariants:
    - One transaction per public operation; any error rolls it back
    - Ownership errors short-circuit before any mutation statement runs
    - Publish-flag and owner changes never touch ``seq`` or ``blob``
    - Family is re-read inside the owning transaction on every smart call
    - Content writes are validated against the stored family before they run

How to change safely:
    - New mutations must check ``rowcount`` and raise NotFoundError on 0
    - Keep guarded variants on a single Tx; never call check_owner()
      and a mutation in separate transactions
    - Schema changes must keep the columns listed in _create_schema

Table schema:
    datasets:
        - id BLOB (16-byte UUID) PRIMARY KEY
        - creator BLOB (16-byte UUID)
        - owner BLOB (16-byte UUID)
        - created INTEGER (Unix ms)
        - modified INTEGER (Unix ms)
        - synced INTEGER (Unix ms, nullable)
        - published INTEGER (bool)
        - valid INTEGER (bool)
        - family INTEGER
        - schema TEXT
        - blob TEXT (JSON)
        - seq INTEGER
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Optional, Sequence

from ..errors import NotFoundError, NotOwnerError, ValidationError
from ..models.dataset import Dataset
from ..models.family import DEFAULT_FAMILIES, FamilyRegistry
from ..models.validate import Blob, decode_blob, validate_or_raise, validate_patch
from .pool import ConnectionPool
from .transaction import Tx

logger = logging.getLogger(__name__)

_COLUMNS = "id, creator, owner, created, modified, synced, published, valid, family, schema, seq"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _blob_text(blob: Optional[Blob]) -> str:
    """Return a blob as JSON text, rejecting malformed documents."""
    if blob is None:
        raise ValidationError("Document is required", errors=["blob is empty"])
    if isinstance(blob, bytes):
        blob = blob.decode("utf-8")
    decode_blob(blob)
    return blob


def _key_path(key: str) -> str:
    """JSON path selecting a top-level key."""
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


class DatasetTx(Tx):
    """Transaction with the dataset primitives.

    The primitives never commit; the caller decides when the unit of work
    is complete. Content writes are validated against the record's family
    before the statement runs, so a committed document always reads back.
    """

    def __init__(self, pool: ConnectionPool, conn: sqlite3.Connection) -> None:
        super().__init__(pool, conn)
        self.families = DEFAULT_FAMILIES

    @classmethod
    def begin(
        cls,
        pool: ConnectionPool,
        immediate: bool = True,
        families: Optional[FamilyRegistry] = None,
    ) -> DatasetTx:
        tx = super().begin(pool, immediate=immediate)
        if families is not None:
            tx.families = families
        return tx

    def check_owner(self, dataset_id: uuid.UUID, owner: uuid.UUID) -> None:
        """Verify that ``owner`` currently owns the dataset.

        Raises:
            NotFoundError: If no dataset has this id
            NotOwnerError: If the dataset belongs to someone else
        """
        row = self.query_row(
            "SELECT (owner = ?) AS is_owner FROM datasets WHERE id = ?",
            (owner.bytes, dataset_id.bytes),
        )
        if row is None:
            raise NotFoundError(dataset_id)
        if not row["is_owner"]:
            raise NotOwnerError(dataset_id, owner)

    def validate_content(self, dataset_id: uuid.UUID, blob: Blob) -> str:
        """Check a replacement document against the stored family and schema.

        Returns:
            The document as JSON text

        Raises:
            NotFoundError: If no dataset has this id
            ValidationError: If the family rejects the document
        """
        text = _blob_text(blob)
        row = self.query_row("SELECT family, schema FROM datasets WHERE id = ?", (dataset_id.bytes,))
        if row is None:
            raise NotFoundError(dataset_id)
        validate_or_raise(self.families.lookup(row["family"]), row["schema"], text)
        return text

    def store(self, dataset: Dataset) -> None:
        now = dataset.created or _now_ms()
        self.execute(
            """
            INSERT INTO datasets (id, creator, owner, created, modified, valid, family, schema, blob)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                dataset.id.bytes,
                dataset.creator.bytes,
                dataset.owner.bytes,
                now,
                dataset.modified or now,
                dataset.valid,
                dataset.family,
                dataset.schema,
                _blob_text(dataset.blob),
            ),
        )

    def update(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        """Replace the whole document (owner-triggered)."""
        text = self.validate_content(dataset_id, blob)
        cur = self.execute(
            "UPDATE datasets SET modified = ?, seq = seq + 1, blob = ? WHERE id = ?",
            (_now_ms(), text, dataset_id.bytes),
        )
        if cur.rowcount != 1:
            raise NotFoundError(dataset_id)

    def update_by_service(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        """Replace the whole document (service-triggered, sets ``synced``)."""
        text = self.validate_content(dataset_id, blob)
        cur = self.execute(
            "UPDATE datasets SET synced = ?, seq = seq + 1, blob = ? WHERE id = ?",
            (_now_ms(), text, dataset_id.bytes),
        )
        if cur.rowcount != 1:
            raise NotFoundError(dataset_id)

    def patch(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        """Merge top-level keys of ``blob`` into the stored document.

        The merged document is computed and validated first; the write lock
        held by the transaction keeps it current until the UPDATE.
        """
        text = _blob_text(blob)
        validate_patch(text)
        row = self.query_row(
            "SELECT family, schema, json_merge_top(blob, ?) AS merged FROM datasets WHERE id = ?",
            (text, dataset_id.bytes),
        )
        if row is None:
            raise NotFoundError(dataset_id)
        validate_or_raise(self.families.lookup(row["family"]), row["schema"], row["merged"])

        cur = self.execute(
            "UPDATE datasets SET modified = ?, seq = seq + 1, blob = ? WHERE id = ?",
            (_now_ms(), row["merged"], dataset_id.bytes),
        )
        if cur.rowcount != 1:
            raise NotFoundError(dataset_id)

    def mark_published(self, dataset_id: uuid.UUID, published: bool) -> None:
        cur = self.execute(
            "UPDATE datasets SET published = ?, synced = ? WHERE id = ?",
            (published, _now_ms(), dataset_id.bytes),
        )
        if cur.rowcount != 1:
            raise NotFoundError(dataset_id)

    def get_family(self, dataset_id: uuid.UUID) -> int:
        row = self.query_row("SELECT family FROM datasets WHERE id = ?", (dataset_id.bytes,))
        if row is None:
            raise NotFoundError(dataset_id)
        return row["family"]

    def get(
        self,
        dataset_id: uuid.UUID,
        key: str = "",
        families: Optional[FamilyRegistry] = None,
    ) -> Dataset:
        """Read a dataset, optionally projecting the blob to a top-level key.

        A missing key, or one holding JSON null, yields a dataset whose
        ``blob`` is None.
        """
        families = families if families is not None else self.families
        if key:
            path = _key_path(key)
            row = self.query_row(
                f"""
                SELECT {_COLUMNS},
                       CASE WHEN coalesce(json_type(blob, ?), 'null') = 'null' THEN NULL
                            ELSE json_quote(json_extract(blob, ?)) END AS blob
                FROM datasets WHERE id = ?
                """,
                (path, path, dataset_id.bytes),
            )
        else:
            row = self.query_row(
                f"SELECT {_COLUMNS}, blob FROM datasets WHERE id = ?",
                (dataset_id.bytes,),
            )
        if row is None:
            raise NotFoundError(dataset_id)

        dataset = Dataset(
            id=uuid.UUID(bytes=row["id"]),
            creator=uuid.UUID(bytes=row["creator"]),
            owner=uuid.UUID(bytes=row["owner"]),
            created=row["created"],
            modified=row["modified"],
            synced=row["synced"],
            published=bool(row["published"]),
            seq=row["seq"],
        )
        dataset.set_data(row["family"], row["schema"], row["blob"], families=families, projected=bool(key))
        dataset.set_valid(bool(row["valid"]))
        return dataset


class DatasetStore:
    """Transactional dataset store.

    Every public method runs in exactly one transaction on a connection
    borrowed from the injected pool.

    Example:
        >>> pool = ConnectionPool("/var/lib/datasetdb/datasets.db")
        >>> store = DatasetStore(pool)
        >>> store.initialize()
        >>> ds = Dataset.create(FAMILY_GENERIC, "generic-v1", b'{"title": "x"}', creator=uid)
        >>> store.store(ds)
        >>> store.patch_with_owner(ds.id, b'{"title": "y"}', uid)
    """

    SCHEMA_VERSION = 1

    def __init__(self, pool: ConnectionPool, families: Optional[FamilyRegistry] = None) -> None:
        """Initialize the store.

        Args:
            pool: Connection pool for the dataset database
            families: Family table for policy lookups (built-in families if omitted)
        """
        self.pool = pool
        self.families = families if families is not None else DEFAULT_FAMILIES

    def _begin(self, immediate: bool = True) -> DatasetTx:
        return DatasetTx.begin(self.pool, immediate=immediate, families=self.families)

    def _create_schema(self, tx: DatasetTx) -> None:
        tx.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            )
        """)
        tx.execute("""
            CREATE TABLE IF NOT EXISTS datasets (
                id BLOB PRIMARY KEY CHECK (length(id) = 16),
                creator BLOB NOT NULL CHECK (length(creator) = 16),
                owner BLOB NOT NULL CHECK (length(owner) = 16),
                created INTEGER NOT NULL,
                modified INTEGER NOT NULL,
                synced INTEGER,
                published INTEGER NOT NULL DEFAULT 0,
                valid INTEGER NOT NULL DEFAULT 0,
                family INTEGER NOT NULL,
                schema TEXT NOT NULL,
                blob TEXT NOT NULL CHECK (json_valid(blob)),
                seq INTEGER NOT NULL DEFAULT 0
            )
        """)
        tx.execute("CREATE INDEX IF NOT EXISTS idx_datasets_owner ON datasets(owner, created)")
        tx.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, _now_ms()),
        )

    def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        with self._begin() as tx:
            self._create_schema(tx)
            tx.commit()
        logger.info(f"Initialized dataset database: {self.pool.db_path}")

    # Creation

    def store(self, dataset: Dataset) -> None:
        """Insert a new dataset.

        Raises:
            ValidationError: If the dataset carries no document
            StorageError: On constraint violations such as a duplicate id
        """
        with self._begin() as tx:
            tx.store(dataset)
            tx.commit()

        logger.debug(
            "Stored dataset",
            extra={"dataset_id": str(dataset.id), "family": dataset.family},
        )

    def batch_store(self, datasets: Sequence[Dataset]) -> None:
        """Insert many datasets atomically: the first failure rolls back all."""
        with self._begin() as tx:
            for dataset in datasets:
                tx.store(dataset)
            tx.commit()

        logger.debug("Stored dataset batch", extra={"count": len(datasets)})

    def clone(self, dataset_id: uuid.UUID, new_id: uuid.UUID, blob: Blob) -> None:
        """Copy a dataset under a new id with a fresh document.

        All metadata except ``id`` and ``blob`` is carried over; ``seq``
        starts again from zero.

        Raises:
            NotFoundError: If the source dataset does not exist
            ValidationError: If the source family rejects the document
        """
        with self._begin() as tx:
            text = tx.validate_content(dataset_id, blob)
            cur = tx.execute(
                """
                INSERT INTO datasets (id, creator, owner, created, modified, synced,
                                      published, valid, family, schema, blob)
                SELECT ?, creator, owner, created, modified, synced,
                       published, valid, family, schema, ?
                FROM datasets WHERE id = ?
                """,
                (new_id.bytes, text, dataset_id.bytes),
            )
            if cur.rowcount != 1:
                raise NotFoundError(dataset_id)
            tx.commit()

        logger.debug(
            "Cloned dataset",
            extra={"source_id": str(dataset_id), "dataset_id": str(new_id)},
        )

    # Content mutations

    def update(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        with self._begin() as tx:
            tx.update(dataset_id, blob)
            tx.commit()

    def update_with_owner(self, dataset_id: uuid.UUID, blob: Blob, owner: uuid.UUID) -> None:
        """Replace a dataset's document after checking ownership."""
        with self._begin() as tx:
            tx.check_owner(dataset_id, owner)
            tx.update(dataset_id, blob)
            tx.commit()

    def update_by_service(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        """Replace a dataset's document on behalf of a service; sets ``synced``."""
        with self._begin() as tx:
            tx.update_by_service(dataset_id, blob)
            tx.commit()

    def patch(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        with self._begin() as tx:
            tx.patch(dataset_id, blob)
            tx.commit()

    def patch_with_owner(self, dataset_id: uuid.UUID, blob: Blob, owner: uuid.UUID) -> None:
        """Merge top-level keys into a dataset's document after checking ownership."""
        with self._begin() as tx:
            tx.check_owner(dataset_id, owner)
            tx.patch(dataset_id, blob)
            tx.commit()

    def smart_get_with_owner(self, dataset_id: uuid.UUID, owner: uuid.UUID) -> Dataset:
        """Read a dataset the way its family addresses it.

        Partial families return only their sub-document, others the whole blob.

        Raises:
            NotFoundError, NotOwnerError, UnknownFamilyError
        """
        with self._begin(immediate=False) as tx:
            tx.check_owner(dataset_id, owner)
            family = self.families.lookup(tx.get_family(dataset_id))
            return tx.get(dataset_id, family.key())

    def smart_update_with_owner(self, dataset_id: uuid.UUID, blob: Blob, owner: uuid.UUID) -> None:
        """Write a dataset the way its family addresses it.

        Partial families are merge-patched, others fully replaced.

        Raises:
            NotFoundError, NotOwnerError, UnknownFamilyError, ValidationError
        """
        with self._begin() as tx:
            tx.check_owner(dataset_id, owner)
            family = self.families.lookup(tx.get_family(dataset_id))
            if family.is_partial():
                tx.patch(dataset_id, blob)
            else:
                tx.update(dataset_id, blob)
            tx.commit()

        logger.debug(
            "Smart update",
            extra={"dataset_id": str(dataset_id), "family": family.name, "partial": family.is_partial()},
        )

    # Publishing and ownership

    def store_published(self, dataset_id: uuid.UUID, blob: Blob) -> None:
        """Replace the document and mark the dataset published in one statement."""
        with self._begin() as tx:
            text = tx.validate_content(dataset_id, blob)
            cur = tx.execute(
                "UPDATE datasets SET blob = ?, published = 1, synced = ?, seq = seq + 1 WHERE id = ?",
                (text, _now_ms(), dataset_id.bytes),
            )
            if cur.rowcount != 1:
                raise NotFoundError(dataset_id)
            tx.commit()

    def mark_published(self, dataset_id: uuid.UUID, published: bool) -> None:
        """Set the publish flag and sync time. Does not check ownership."""
        with self._begin() as tx:
            tx.mark_published(dataset_id, published)
            tx.commit()

    def mark_published_with_owner(self, dataset_id: uuid.UUID, owner: uuid.UUID, published: bool) -> None:
        """Set the publish flag and sync time after checking ownership."""
        with self._begin() as tx:
            tx.check_owner(dataset_id, owner)
            tx.mark_published(dataset_id, published)
            tx.commit()

    def change_owner_to(self, dataset_id: uuid.UUID, new_owner: uuid.UUID) -> None:
        """Hand a dataset over to another principal.

        Raises:
            NotFoundError: If no dataset has this id
        """
        with self._begin() as tx:
            cur = tx.execute(
                "UPDATE datasets SET owner = ? WHERE id = ?",
                (new_owner.bytes, dataset_id.bytes),
            )
            if cur.rowcount != 1:
                raise NotFoundError(dataset_id)
            tx.commit()

        logger.info(
            "Changed dataset owner",
            extra={"dataset_id": str(dataset_id), "owner": str(new_owner)},
        )

    def check_owner(self, dataset_id: uuid.UUID, owner: uuid.UUID) -> None:
        """Check in a standalone transaction that ``owner`` owns the dataset."""
        with self._begin(immediate=False) as tx:
            tx.check_owner(dataset_id, owner)

    # Deletion

    def delete(self, dataset_id: uuid.UUID, owner: Optional[uuid.UUID] = None) -> None:
        """Physically remove a dataset, checking ownership when ``owner`` is given.

        Raises:
            NotFoundError: If no dataset has this id
            NotOwnerError: If ``owner`` does not own the dataset
        """
        with self._begin() as tx:
            if owner is not None:
                tx.check_owner(dataset_id, owner)
            cur = tx.execute("DELETE FROM datasets WHERE id = ?", (dataset_id.bytes,))
            if cur.rowcount != 1:
                raise NotFoundError(dataset_id)
            tx.commit()

        logger.debug("Deleted dataset", extra={"dataset_id": str(dataset_id)})

    # Reads

    def get(self, dataset_id: uuid.UUID) -> Dataset:
        """Read a whole dataset without ownership checks."""
        with self._begin(immediate=False) as tx:
            return tx.get(dataset_id)

    def get_with_owner(self, dataset_id: uuid.UUID, owner: uuid.UUID) -> Dataset:
        """Read a whole dataset after checking ownership."""
        with self._begin(immediate=False) as tx:
            tx.check_owner(dataset_id, owner)
            return tx.get(dataset_id)

    def list_all_for_uid(self, owner: uuid.UUID) -> list[Dataset]:
        """List datasets owned by a principal, without their documents."""
        with self._begin(immediate=False) as tx:
            rows = tx.query(
                """
                SELECT id, creator, owner, family, schema, valid FROM datasets
                WHERE owner = ?
                ORDER BY created, id
                """,
                (owner.bytes,),
            )

        result = []
        for row in rows:
            dataset = Dataset(
                id=uuid.UUID(bytes=row["id"]),
                creator=uuid.UUID(bytes=row["creator"]),
                owner=uuid.UUID(bytes=row["owner"]),
            )
            dataset.set_data(row["family"], row["schema"], None, families=self.families)
            dataset.set_valid(bool(row["valid"]))
            result.append(dataset)
        return result

    def count(self) -> int:
        with self._begin(immediate=False) as tx:
            row = tx.query_row("SELECT COUNT(*) FROM datasets")
        return row[0]
