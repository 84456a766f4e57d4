"""
Dataset record model.

A Dataset is a versioned JSON document plus its classification metadata.
Family, schema and blob are only set together through ``set_data`` so a
record can never hold a document that was not validated against its family.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from .family import FamilyRegistry, lookup_family
from .validate import Blob, validate_or_raise


@dataclass
class Dataset:
    """A stored dataset.

    Attributes:
        id: Record identity (primary key)
        creator: Principal that created the record
        owner: Principal governing ownership checks
        created: Creation timestamp (Unix ms)
        modified: Last owner-triggered content change (Unix ms)
        synced: Last service-triggered change or publish (Unix ms)
        published: Publish flag
        valid: Validity flag assigned by the document model
        seq: Content version counter
    """

    id: uuid.UUID
    creator: uuid.UUID
    owner: uuid.UUID
    created: Optional[int] = None
    modified: Optional[int] = None
    synced: Optional[int] = None
    published: bool = False
    valid: bool = False
    seq: int = 0
    _family: int = field(default=0, repr=False)
    _schema: str = field(default="", repr=False)
    _blob: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        family: int,
        schema: str,
        blob: Blob,
        creator: uuid.UUID,
        owner: Optional[uuid.UUID] = None,
        id: Optional[uuid.UUID] = None,
        families: Optional[FamilyRegistry] = None,
    ) -> Dataset:
        """Build a new, validated dataset.

        The owner defaults to the creator and the id to a fresh uuid4.

        Raises:
            ValidationError: If the blob does not validate against the family
        """
        dataset = cls(id=id or uuid.uuid4(), creator=creator, owner=owner or creator)
        dataset.set_data(family, schema, blob, families=families)
        dataset.set_valid(True)
        return dataset

    def set_data(
        self,
        family: int,
        schema: str,
        blob: Optional[Blob],
        families: Optional[FamilyRegistry] = None,
        projected: bool = False,
    ) -> None:
        """Validate and populate family, schema and blob.

        Raises:
            UnknownFamilyError: If the family id is not registered
            ValidationError: If the blob or schema tag is rejected
        """
        descriptor = lookup_family(family, families)
        validate_or_raise(descriptor, schema, blob, projected=projected)

        if isinstance(blob, str):
            blob = blob.encode("utf-8")
        self._family = family
        self._schema = schema
        self._blob = blob

    def set_valid(self, valid: bool) -> None:
        self.valid = valid

    @property
    def family(self) -> int:
        return self._family

    @property
    def schema(self) -> str:
        return self._schema

    @property
    def blob(self) -> Optional[bytes]:
        return self._blob

    @property
    def data(self) -> Any:
        """Decoded document, or None when no blob was loaded."""
        if self._blob is None:
            return None
        return json.loads(self._blob)

    def to_dict(self, include_blob: bool = True) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": str(self.id),
            "creator": str(self.creator),
            "owner": str(self.owner),
            "created": self.created,
            "modified": self.modified,
            "synced": self.synced,
            "published": self.published,
            "valid": self.valid,
            "seq": self.seq,
            "family": self._family,
            "schema": self._schema,
        }
        if include_blob:
            result["blob"] = self.data
        return result
