"""
Collaborator protocols for the batch system.

Contract:
    ``ItemStore`` reads and writes availability records for catalog items.
    ``CheckpointStore`` is a key-value store with per-key TTL that holds
    the resume state and the progress snapshot of each operation.

Architecture:
    availability_batch (top-level).  Imports from availability_kernel only.
    Concrete adapters live in ``availability_batch.stores``.

Failure contract shared by every implementation:
    - An item that no longer exists raises ``ItemNotFoundError``
      (non-retryable, recorded as a per-item failure).
    - An outage raises ``StorageFailureError`` (aborts the invocation,
      progress so far is preserved).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from availability_kernel.domain.records import AvailabilityRecord


@runtime_checkable
class ItemStore(Protocol):
    """Where availability records live."""

    def get_availability(self, item_id: str) -> AvailabilityRecord:
        """Current record for ``item_id`` (empty record if none stored yet).

        Raises:
            ItemNotFoundError: If the item does not exist.
            StorageFailureError: If the store is unavailable.
        """
        ...

    def save_availability(self, item_id: str, record: AvailabilityRecord) -> None:
        """Persist ``record`` as the new rules for ``item_id``.

        Raises:
            ItemNotFoundError: If the item does not exist.
            StorageFailureError: If the write fails.
        """
        ...

    def invalidate_cache(self, item_id: str) -> None:
        """Drop any cached representation of ``item_id``."""
        ...


@runtime_checkable
class CheckpointStore(Protocol):
    """Key-value store with per-key expiry."""

    def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``.

        Raises:
            StorageFailureError: If the write fails.
        """
        ...

    def get(self, key: str) -> dict[str, Any] | None:
        """Stored value, or None when missing or expired."""
        ...

    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        ...
