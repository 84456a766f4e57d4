"""
Document validation for dataset blobs.

This module checks a raw blob against its family:
- Blob must be well-formed JSON
- Full documents must be JSON objects
- Schema tag must be accepted by the family
- Partial families keep their sub-key as an object when present

Invariants:
    - Validation errors are deterministic
    - Error messages name the offending part of the document
"""

from __future__ import annotations

import json
from typing import Any, List, Optional, Tuple, Union

from ..errors import ValidationError
from .family import FamilyDescriptor

Blob = Union[bytes, str]


def decode_blob(blob: Blob) -> Any:
    """Decode a JSON blob.

    Raises:
        ValidationError: If the blob is not well-formed JSON
    """
    try:
        return json.loads(blob)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Malformed JSON document: {e}", errors=[str(e)]) from e


def validate_blob(
    family: FamilyDescriptor,
    schema: str,
    blob: Optional[Blob],
    projected: bool = False,
) -> Tuple[bool, List[str]]:
    """Validate a blob against its family.

    Args:
        family: Family the dataset belongs to
        schema: Declared schema tag
        blob: Raw document, or None when the document was not loaded
        projected: Blob is the family's sub-document rather than the whole record

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    if not schema:
        errors.append("Schema tag is required")
    elif not family.accepts_schema(schema):
        errors.append(
            f"Schema '{schema}' is not accepted by family '{family.name}'; "
            f"expected one of {list(family.schemas)}"
        )

    if blob is None:
        return len(errors) == 0, errors

    try:
        doc = json.loads(blob)
    except (ValueError, TypeError) as e:
        errors.append(f"Malformed JSON document: {e}")
        return False, errors

    if not isinstance(doc, dict):
        errors.append(f"Document must be a JSON object, got {type(doc).__name__}")
    elif family.is_partial() and not projected:
        sub = doc.get(family.key())
        if sub is not None and not isinstance(sub, dict):
            errors.append(f"Field '{family.key()}' must be a JSON object, got {type(sub).__name__}")

    return len(errors) == 0, errors


def validate_or_raise(
    family: FamilyDescriptor,
    schema: str,
    blob: Optional[Blob],
    projected: bool = False,
) -> None:
    """Validate a blob and raise if invalid.

    Raises:
        ValidationError: If validation fails
    """
    is_valid, errors = validate_blob(family, schema, blob, projected=projected)
    if not is_valid:
        raise ValidationError(
            f"Validation failed for family {family.name}: {'; '.join(errors)}",
            errors=errors,
            family=family.family_id,
        )


def validate_patch(blob: Blob) -> dict:
    """Check that a patch document is a JSON object and return it decoded.

    Raises:
        ValidationError: If the patch is malformed or not an object
    """
    doc = decode_blob(blob)
    if not isinstance(doc, dict):
        raise ValidationError(
            f"Patch must be a JSON object, got {type(doc).__name__}",
            errors=["patch is not an object"],
        )
    return doc
