"""
Tests for ChunkExecutor -- the per-item apply step.

Covers the write-only-when-changed contract, cache invalidation, and the
translation of store and merge errors into ItemApplyError.
"""

from datetime import date

import pytest

from availability_batch.services.events import BatchEventRecorder
from availability_batch.services.executor import UNHANDLED_EXCEPTION, ChunkExecutor
from availability_batch.stores.memory import InMemoryItemStore
from availability_kernel.domain.records import AvailabilityRecord, ChangeSet, Weekday
from availability_kernel.exceptions import ItemApplyError, StorageFailureError

WEEKENDS = ChangeSet(weekdays=frozenset({Weekday.SATURDAY, Weekday.SUNDAY}))


class ExplodingStore(InMemoryItemStore):
    """Item store whose reads fail with an unexpected error."""

    def get_availability(self, item_id):
        raise RuntimeError("driver crashed")


@pytest.fixture
def events(clock):
    return BatchEventRecorder(clock=clock, keep_history=True)


@pytest.fixture
def store():
    return InMemoryItemStore(item_ids=["t1", "t2"])


@pytest.fixture
def executor(store, events):
    return ChunkExecutor(store, events=events)


# =============================================================================
# Successful application
# =============================================================================


class TestApply:

    def test_applies_and_persists(self, executor, store, events):
        result = executor.apply("t1", WEEKENDS)
        assert result.applied is True
        assert store.get_availability("t1").weekdays == WEEKENDS.weekdays
        assert store.save_count == 1
        assert events.names() == ["item_applied"]

    def test_invalidates_cache_after_write(self, executor, store):
        executor.apply("t1", WEEKENDS)
        assert store.invalidated == ["t1"]

    def test_second_application_is_a_no_op(self, executor, store, events):
        executor.apply("t1", WEEKENDS)
        result = executor.apply("t1", WEEKENDS)
        assert result.applied is False
        assert store.save_count == 1
        assert store.invalidated == ["t1"]
        assert events.names() == ["item_applied", "item_unchanged"]

    def test_conflicts_returned(self, executor, store):
        store.add_item("t3", AvailabilityRecord("t3", start_date=date(2026, 3, 1)))
        result = executor.apply("t3", ChangeSet(exclusion_dates=(date(2026, 2, 1),)))
        assert result.applied is True
        assert len(result.conflicts) == 1

    def test_applied_event_carries_before_and_after(self, executor, events):
        executor.apply("t1", WEEKENDS)
        payload = events.history[0].payload
        assert payload["before"]["weekdays"] == []
        assert payload["after"]["weekdays"] == [0, 6]
        assert payload["change_set"]["weekdays"] == [0, 6]


# =============================================================================
# Failures
# =============================================================================


class TestApplyFailures:

    def test_missing_item(self, executor, events):
        with pytest.raises(ItemApplyError) as exc_info:
            executor.apply("ghost", WEEKENDS)
        assert exc_info.value.item_id == "ghost"
        assert exc_info.value.error_code == "ITEM_NOT_FOUND"
        assert events.names() == ["item_failed"]

    def test_rejected_merge(self, executor, store):
        store.add_item(
            "t3",
            AvailabilityRecord(
                "t3", start_date=date(2026, 3, 1), end_date=date(2026, 3, 31),
            ),
        )
        with pytest.raises(ItemApplyError) as exc_info:
            executor.apply("t3", ChangeSet(exclusion_dates=(date(2026, 4, 1),)))
        assert exc_info.value.error_code == "VALIDATION_ERROR"
        assert "outside range" in exc_info.value.detail
        assert store.save_count == 0

    def test_storage_failure_reraised_with_item_id(self, executor, store):
        store.fail_saves("t2")
        with pytest.raises(StorageFailureError) as exc_info:
            executor.apply("t2", WEEKENDS)
        assert exc_info.value.item_id == "t2"
        assert store.invalidated == []

    def test_unexpected_error_wrapped(self, events):
        executor = ChunkExecutor(ExplodingStore(item_ids=["t1"]), events=events)
        with pytest.raises(ItemApplyError) as exc_info:
            executor.apply("t1", WEEKENDS)
        assert exc_info.value.error_code == UNHANDLED_EXCEPTION
        assert "driver crashed" in exc_info.value.detail

    def test_item_id_bound_in_logs(self, executor, captured_logs):
        executor.apply("t1", WEEKENDS)
        applied = [r for r in captured_logs() if r["message"] == "item_applied"]
        assert applied[0]["item_id"] == "t1"
        assert applied[0]["event_item_id"] == "t1"
