"""
Error types for the dataset store.

This module defines every exception raised by store operations:
- DatasetStoreError: Base exception
- NotFoundError: No record matched the target id
- NotOwnerError: Record exists but belongs to someone else
- ValidationError: Document rejected by its family/schema
- StorageError: Any other engine failure (connectivity, constraints, syntax)

Invariants:
    - All errors inherit from DatasetStoreError
    - Errors carry a stable code for programmatic handling
    - Engine errors are never retried; they surface wrapped in StorageError
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any, Dict, List, Optional


class DatasetStoreError(Exception):
    """Base exception for all dataset store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATASET_STORE_ERROR"
        self.details = details or {}


class NotFoundError(DatasetStoreError):
    """No record matched the given id.

    Raised when:
    - A read finds no row
    - An update, patch, publish or delete affects zero rows
    - The ownership guard finds no row
    - A clone source does not exist
    """

    def __init__(self, dataset_id: Optional[uuid.UUID] = None, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Dataset not found: {dataset_id}",
            code="NOT_FOUND",
            details={"dataset_id": str(dataset_id) if dataset_id else None},
        )
        self.dataset_id = dataset_id


class NotOwnerError(DatasetStoreError):
    """Record exists but the acting principal is not its owner."""

    def __init__(self, dataset_id: uuid.UUID, principal: uuid.UUID) -> None:
        super().__init__(
            f"Dataset {dataset_id} is not owned by {principal}",
            code="NOT_OWNER",
            details={"dataset_id": str(dataset_id), "principal": str(principal)},
        )
        self.dataset_id = dataset_id
        self.principal = principal


class ValidationError(DatasetStoreError):
    """Document failed validation.

    Raised when:
    - Blob is not well-formed JSON
    - Blob is not a JSON object where one is required
    - Schema tag is not accepted by the family
    - A patch is not a JSON object
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        family: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"family": family, "errors": errors or []},
        )
        self.errors = errors or []
        self.family = family


class UnknownFamilyError(ValidationError):
    """Family id is not present in the family registry."""

    def __init__(self, family: int) -> None:
        super().__init__(f"Unknown dataset family: {family}", family=family)
        self.code = "UNKNOWN_FAMILY"


class StorageError(DatasetStoreError):
    """Underlying engine failure.

    The original sqlite3 exception is kept as ``__cause__``.
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORAGE_FAILURE",
            details={"operation": operation},
        )
        self.operation = operation


class PoolExhaustedError(StorageError):
    """No pooled connection became free within the acquire timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Connection pool exhausted (timeout after {timeout:.1f}s)", operation="acquire")
        self.timeout = timeout


class PoolClosedError(StorageError):
    """Connection requested from a pool that has been shut down."""

    def __init__(self) -> None:
        super().__init__("Connection pool is closed", operation="acquire")


def handle_error(err: Exception, operation: Optional[str] = None) -> Exception:
    """Map an exception to the store's error taxonomy.

    sqlite3 errors become StorageError with the original as ``__cause__``.
    Everything else (store errors included) is returned unchanged.
    """
    if not isinstance(err, sqlite3.Error):
        return err
    wrapped = StorageError(f"{type(err).__name__}: {err}", operation=operation)
    wrapped.__cause__ = err
    return wrapped
