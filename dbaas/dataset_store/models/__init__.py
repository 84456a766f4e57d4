"""
Document model for the dataset store.

This module provides:
- Dataset: the stored record with validated family/schema/blob
- FamilyDescriptor / FamilyRegistry: the closed table of dataset families
- Blob validation against a family

Invariants:
    - family, schema and blob are only ever set together and validated
    - Family policy (partial vs. full) is fixed per family id
"""

from .dataset import Dataset
from .family import (
    DEFAULT_FAMILIES,
    FAMILY_GENERIC,
    FAMILY_METAX,
    DuplicateFamilyError,
    FamilyDescriptor,
    FamilyRegistry,
    RegistryFrozenError,
    builtin_registry,
    lookup_family,
)
from .validate import decode_blob, validate_blob, validate_or_raise, validate_patch

__all__ = [
    "Dataset",
    "FamilyDescriptor",
    "FamilyRegistry",
    "DEFAULT_FAMILIES",
    "FAMILY_GENERIC",
    "FAMILY_METAX",
    "DuplicateFamilyError",
    "RegistryFrozenError",
    "builtin_registry",
    "lookup_family",
    "decode_blob",
    "validate_blob",
    "validate_or_raise",
    "validate_patch",
]
