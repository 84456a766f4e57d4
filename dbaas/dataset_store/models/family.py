"""
Dataset families and their update policy.

A family is an integer classification stored on every dataset. It decides:
- which schema tags a document may declare
- whether the document is partial, i.e. addressed through a sub-key
  (reads project to the key, writes merge top-level keys)

Families form a closed table: the built-in set is registered at import time
and the registry is frozen, so lookups never race with registration.

Invariants:
    - Family ids are immutable once assigned and never reused
    - A partial family always names a non-empty key
    - A family's policy is looked up per operation, never cached on a record

How to change safely:
    - Add new families with new ids to _BUILTIN_FAMILIES
    - Never flip an existing family between partial and full: stored
      documents would suddenly be merged instead of replaced

Example:
    >>> fam = lookup_family(FAMILY_METAX)
    >>> fam.is_partial(), fam.key()
    (True, 'research_dataset')
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from ..errors import UnknownFamilyError

logger = logging.getLogger(__name__)

FAMILY_GENERIC = 1
FAMILY_METAX = 2


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen family registry."""

    pass


class DuplicateFamilyError(Exception):
    """Raised when a family id or name is registered twice."""

    pass


@dataclass(frozen=True)
class FamilyDescriptor:
    """Definition of a dataset family.

    Attributes:
        family_id: Stored integer classification
        name: Human readable label
        partial: Whether documents are addressed through ``sub_key``
        sub_key: Top-level key holding the user-editable part of the document
        schemas: Accepted schema tags (empty = any tag)
    """

    family_id: int
    name: str
    partial: bool = False
    sub_key: str = ""
    schemas: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.family_id <= 0:
            raise ValueError(f"family_id must be positive, got {self.family_id}")
        if self.partial and not self.sub_key:
            raise ValueError(f"Partial family '{self.name}' must define a sub_key")

    def is_partial(self) -> bool:
        return self.partial

    def key(self) -> str:
        """Sub-path used for partial projection; empty for full families."""
        return self.sub_key if self.partial else ""

    def accepts_schema(self, schema: str) -> bool:
        return not self.schemas or schema in self.schemas

    def to_dict(self) -> dict:
        return {
            "family_id": self.family_id,
            "name": self.name,
            "partial": self.partial,
            "sub_key": self.sub_key,
            "schemas": list(self.schemas),
        }


class FamilyRegistry:
    """Table of known families.

    Registration is guarded by a lock; after ``freeze()`` the table is
    read-only and lookups are lock-free.

    Example:
        >>> registry = FamilyRegistry()
        >>> registry.register(FamilyDescriptor(10, "notes"))
        >>> registry.freeze()
        >>> registry.lookup(10).name
        'notes'
    """

    def __init__(self) -> None:
        self._families: Dict[int, FamilyDescriptor] = {}
        self._by_name: Dict[str, FamilyDescriptor] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, family: FamilyDescriptor) -> None:
        """Register a family.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateFamilyError: If the id or name is already taken
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register family '{family.name}': registry is frozen"
                )
            if family.family_id in self._families:
                existing = self._families[family.family_id]
                raise DuplicateFamilyError(
                    f"family_id {family.family_id} already registered as '{existing.name}'"
                )
            if family.name in self._by_name:
                existing = self._by_name[family.name]
                raise DuplicateFamilyError(
                    f"Family name '{family.name}' already registered with family_id {existing.family_id}"
                )

            self._families[family.family_id] = family
            self._by_name[family.name] = family
            logger.debug(f"Registered family: {family.name} (family_id={family.family_id})")

    def get(self, family_id: int) -> Optional[FamilyDescriptor]:
        return self._families.get(family_id)

    def lookup(self, family_id: int) -> FamilyDescriptor:
        """Get a family by id.

        Raises:
            UnknownFamilyError: If no family has this id
        """
        family = self._families.get(family_id)
        if family is None:
            raise UnknownFamilyError(family_id)
        return family

    def by_name(self, name: str) -> Optional[FamilyDescriptor]:
        return self._by_name.get(name)

    def __iter__(self) -> Iterator[FamilyDescriptor]:
        yield from (self._families[fid] for fid in sorted(self._families))

    def __len__(self) -> int:
        return len(self._families)

    def freeze(self) -> None:
        """Make the registry read-only. Freezing twice is an error."""
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Family registry is already frozen")
            self._frozen = True
            logger.info(f"Family registry frozen with {len(self._families)} families")


_BUILTIN_FAMILIES = (
    FamilyDescriptor(FAMILY_GENERIC, "generic"),
    FamilyDescriptor(
        FAMILY_METAX,
        "metax",
        partial=True,
        sub_key="research_dataset",
        schemas=("metax-ida", "metax-att"),
    ),
)


def builtin_registry() -> FamilyRegistry:
    """Build a frozen registry holding the built-in families."""
    registry = FamilyRegistry()
    for family in _BUILTIN_FAMILIES:
        registry.register(family)
    registry.freeze()
    return registry


DEFAULT_FAMILIES = builtin_registry()


def lookup_family(family_id: int, registry: Optional[FamilyRegistry] = None) -> FamilyDescriptor:
    """Resolve a family id against ``registry`` (built-in table by default)."""
    if registry is None:
        registry = DEFAULT_FAMILIES
    return registry.lookup(family_id)
