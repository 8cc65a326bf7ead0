"""
In-memory store adapters.

Contract:
    ``InMemoryItemStore`` and ``InMemoryCheckpointStore`` implement the
    batch ports without any external service.  Used by tests and by
    callers that embed the orchestrator in a single process.

Guarantees:
    - Checkpoint values are stored as canonical JSON, so a value read
      back is a fresh copy with the same shape a networked store returns.
    - Checkpoint expiry is measured on the injected Clock.
    - ``fail_saves``, ``fail_writes`` and ``fail_next_puts`` let tests
      simulate outages.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Iterable

from availability_kernel.domain.clock import Clock, SystemClock
from availability_kernel.domain.records import AvailabilityRecord
from availability_kernel.exceptions import ItemNotFoundError, StorageFailureError
from availability_kernel.logging_config import get_logger
from availability_kernel.utils.hashing import canonicalize_json

logger = get_logger("batch.stores.memory")


class InMemoryItemStore:
    """Item store backed by a dict.

    Only ids in the catalog exist; records are created lazily (empty) on
    first read.
    """

    def __init__(
        self,
        item_ids: Iterable[str] = (),
        records: Iterable[AvailabilityRecord] = (),
    ) -> None:
        self._catalog: set[str] = {str(i) for i in item_ids}
        self._records: dict[str, AvailabilityRecord] = {}
        for record in records:
            self._catalog.add(record.item_id)
            self._records[record.item_id] = record
        self.invalidated: list[str] = []
        self.save_count = 0
        # item_id -> number of further saves that should fail
        self._failing_saves: dict[str, int] = {}

    # -- catalog management -------------------------------------------------

    def add_item(self, item_id: str, record: AvailabilityRecord | None = None) -> None:
        self._catalog.add(item_id)
        if record is not None:
            self._records[item_id] = record

    def remove_item(self, item_id: str) -> None:
        self._catalog.discard(item_id)
        self._records.pop(item_id, None)

    def fail_saves(self, item_id: str, times: int = 1) -> None:
        """Make the next ``times`` saves for ``item_id`` raise StorageFailureError."""
        self._failing_saves[item_id] = times

    # -- ItemStore ----------------------------------------------------------

    def get_availability(self, item_id: str) -> AvailabilityRecord:
        if item_id not in self._catalog:
            raise ItemNotFoundError(item_id)
        record = self._records.get(item_id)
        if record is None:
            record = AvailabilityRecord(item_id=item_id)
            self._records[item_id] = record
        return record

    def save_availability(self, item_id: str, record: AvailabilityRecord) -> None:
        if item_id not in self._catalog:
            raise ItemNotFoundError(item_id)
        remaining = self._failing_saves.get(item_id, 0)
        if remaining > 0:
            self._failing_saves[item_id] = remaining - 1
            raise StorageFailureError("save_availability", "simulated outage", item_id)
        self._records[item_id] = record
        self.save_count += 1

    def invalidate_cache(self, item_id: str) -> None:
        self.invalidated.append(item_id)


class InMemoryCheckpointStore:
    """Checkpoint store with clock-based TTL."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, tuple[str, datetime]] = {}
        self.fail_writes = False
        self.put_count = 0
        self._failing_puts = 0

    def fail_next_puts(self, times: int = 1) -> None:
        """Make the next ``times`` writes raise StorageFailureError."""
        self._failing_puts = times

    def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        if self._failing_puts:
            self._failing_puts -= 1
            raise StorageFailureError("checkpoint_put", f"simulated outage writing {key}")
        if self.fail_writes:
            raise StorageFailureError("checkpoint_put", f"simulated outage writing {key}")
        expires_at = self._clock.now() + timedelta(seconds=ttl_seconds)
        self._entries[key] = (canonicalize_json(value), expires_at)
        self.put_count += 1

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock.now() >= expires_at:
            del self._entries[key]
            logger.debug("checkpoint_expired", extra={"key": key})
            return None
        return json.loads(payload)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        """Live keys, for inspection in tests and the CLI."""
        now = self._clock.now()
        return sorted(k for k, (_, exp) in self._entries.items() if now < exp)
