"""
Deterministic hashing utilities.

Operation identifiers and configuration checksums must be reproducible:
the same inputs always produce the same digest.  This module provides
the canonical JSON form and the hashing functions built on it.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

OPERATION_ID_PREFIX = "op_"


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of dates, UUIDs, enums and sets
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def derive_operation_id(
    item_ids: Iterable[str],
    change_set: dict[str, Any],
    submitted_by: str | None,
    created_at: datetime,
) -> str:
    """
    Derive a batch operation id from its defining inputs.

    Item ids are sorted so the id does not depend on selection order.
    The creation time is included so that re-submitting the same edit
    later starts a new operation rather than colliding with an old one.

    Returns:
        ``"op_"`` followed by 32 hex characters.
    """
    digest = hash_payload(
        {
            "items": sorted(str(i) for i in item_ids),
            "change_set": change_set,
            "submitted_by": submitted_by,
            "created_at": created_at,
        }
    )
    return f"{OPERATION_ID_PREFIX}{digest[:32]}"
