"""Utility modules for the availability kernel."""

from availability_kernel.utils.hashing import (
    canonicalize_json,
    derive_operation_id,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "derive_operation_id",
    "hash_payload",
]
