"""Tests for the in-memory ItemStore and CheckpointStore adapters."""

import pytest

from availability_batch.ports import CheckpointStore, ItemStore
from availability_batch.stores.memory import InMemoryCheckpointStore, InMemoryItemStore
from availability_kernel.domain.records import AvailabilityRecord, Weekday
from availability_kernel.exceptions import ItemNotFoundError, StorageFailureError


class TestInMemoryItemStore:

    def test_satisfies_port(self):
        assert isinstance(InMemoryItemStore(), ItemStore)

    def test_lazy_empty_record(self):
        store = InMemoryItemStore(item_ids=["t1"])
        assert store.get_availability("t1") == AvailabilityRecord("t1")

    def test_unknown_item(self):
        with pytest.raises(ItemNotFoundError):
            InMemoryItemStore().get_availability("t1")

    def test_save_and_read_back(self):
        store = InMemoryItemStore(item_ids=["t1"])
        record = AvailabilityRecord("t1", weekdays={Weekday.MONDAY})
        store.save_availability("t1", record)
        assert store.get_availability("t1") == record
        assert store.save_count == 1

    def test_seeded_records_join_catalog(self):
        record = AvailabilityRecord("t9", weekdays={Weekday.FRIDAY})
        store = InMemoryItemStore(records=[record])
        assert store.get_availability("t9") == record

    def test_removed_item_not_found(self):
        store = InMemoryItemStore(item_ids=["t1"])
        store.remove_item("t1")
        with pytest.raises(ItemNotFoundError):
            store.save_availability("t1", AvailabilityRecord("t1"))

    def test_simulated_save_failures(self):
        store = InMemoryItemStore(item_ids=["t1"])
        store.fail_saves("t1", times=2)
        for _ in range(2):
            with pytest.raises(StorageFailureError):
                store.save_availability("t1", AvailabilityRecord("t1"))
        store.save_availability("t1", AvailabilityRecord("t1"))
        assert store.save_count == 1


class TestInMemoryCheckpointStore:

    def test_satisfies_port(self):
        assert isinstance(InMemoryCheckpointStore(), CheckpointStore)

    def test_put_get_delete(self, clock):
        store = InMemoryCheckpointStore(clock)
        store.put("k", {"a": [1, 2]}, ttl_seconds=60)
        assert store.get("k") == {"a": [1, 2]}
        store.delete("k")
        assert store.get("k") is None

    def test_value_is_a_copy(self, clock):
        store = InMemoryCheckpointStore(clock)
        value = {"a": [1]}
        store.put("k", value, ttl_seconds=60)
        value["a"].append(2)
        assert store.get("k") == {"a": [1]}

    def test_expiry_on_clock(self, clock):
        store = InMemoryCheckpointStore(clock)
        store.put("k", {"a": 1}, ttl_seconds=60)
        clock.advance(59)
        assert store.get("k") == {"a": 1}
        clock.advance(1)
        assert store.get("k") is None
        assert store.keys() == []

    def test_delete_missing_is_ignored(self, clock):
        InMemoryCheckpointStore(clock).delete("absent")

    def test_simulated_write_failure(self, clock):
        store = InMemoryCheckpointStore(clock)
        store.fail_writes = True
        with pytest.raises(StorageFailureError):
            store.put("k", {}, ttl_seconds=60)
        assert store.put_count == 0
