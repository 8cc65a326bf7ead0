"""
Tests for get_progress, cancel, preview and get_statistics.

None of these run chunks except where a test starts an operation first.
"""

from datetime import date

import pytest

from availability_batch.orchestrator import BatchOrchestrator
from availability_batch.services.events import BatchEventRecorder
from availability_batch.stores.memory import InMemoryCheckpointStore, InMemoryItemStore
from availability_config import BatchSettings, compute_checksum
from availability_kernel.domain.merge import ConflictSeverity
from availability_kernel.domain.records import AvailabilityRecord, ChangeSet, Weekday
from availability_kernel.exceptions import CannotResumeError

ITEM_IDS = [f"tour-{i:03d}" for i in range(1, 121)]
WEEKENDS = ChangeSet(weekdays=frozenset({Weekday.SATURDAY, Weekday.SUNDAY}))


@pytest.fixture
def item_store():
    return InMemoryItemStore(item_ids=ITEM_IDS)


@pytest.fixture
def checkpoints(clock):
    return InMemoryCheckpointStore(clock)


@pytest.fixture
def events(clock, timer):
    recorder = BatchEventRecorder(clock=clock, keep_history=True)

    def on_event(event):
        if event.name == "batch_chunk_completed":
            timer.advance(13)
            clock.advance(13)

    recorder.subscribe(on_event)
    return recorder


@pytest.fixture
def orchestrator(item_store, checkpoints, clock, timer, events):
    return BatchOrchestrator(
        item_store=item_store,
        checkpoint_store=checkpoints,
        settings=BatchSettings(),
        clock=clock,
        events=events,
        timer=timer,
    )


@pytest.fixture
def interrupted(orchestrator):
    """An operation stopped by the time budget after 100 of 120 items."""
    return orchestrator.start(ITEM_IDS, WEEKENDS, operation_id="op_partial")


# =============================================================================
# Progress
# =============================================================================


class TestGetProgress:

    def test_unknown_operation(self, orchestrator):
        assert orchestrator.get_progress("op_unknown") is None

    def test_interrupted_operation(self, orchestrator, interrupted):
        progress = orchestrator.get_progress("op_partial")
        assert progress.total == 120
        assert progress.processed == 100
        assert progress.failed == 0
        assert progress.remaining == 20
        assert progress.percent_complete == 83.3
        assert progress.chunk_count == 2
        assert progress.can_resume is True
        # Snapshot taken 13s in: 13 / 100 * 20 = 2.6
        assert progress.estimated_seconds_remaining == 3

    def test_falls_back_to_resume_state(self, orchestrator, interrupted, checkpoints):
        checkpoints.delete(orchestrator.settings.progress_key("op_partial"))
        progress = orchestrator.get_progress("op_partial")
        assert progress.processed == 100
        assert progress.can_resume is True

    def test_progress_outlives_resume_state(self, orchestrator, interrupted, checkpoints):
        checkpoints.delete(orchestrator.settings.resume_key("op_partial"))
        progress = orchestrator.get_progress("op_partial")
        assert progress.processed == 100
        assert progress.can_resume is False

    def test_completed_operation_has_no_progress(self, orchestrator, interrupted):
        orchestrator.resume("op_partial")
        assert orchestrator.get_progress("op_partial") is None

    def test_progress_snapshot_expires_first(self, orchestrator, interrupted, clock):
        clock.advance(601)
        progress = orchestrator.get_progress("op_partial")
        # Rebuilt from the resume state, which lives for an hour
        assert progress is not None
        assert progress.processed == 100


# =============================================================================
# Cancel
# =============================================================================


class TestCancel:

    def test_cancel_reports_applied_items(self, orchestrator, interrupted, events):
        result = orchestrator.cancel("op_partial")
        assert result.cancelled is True
        assert result.items_already_applied == 100
        assert result.warning == (
            "Operation op_partial cancelled. 100 item(s) already updated were "
            "NOT rolled back."
        )
        assert events.names()[-1] == "batch_cancelled"

    def test_cancel_removes_checkpoints(self, orchestrator, interrupted, checkpoints):
        orchestrator.cancel("op_partial")
        assert checkpoints.keys() == []
        assert orchestrator.get_progress("op_partial") is None
        with pytest.raises(CannotResumeError):
            orchestrator.resume("op_partial")

    def test_applied_items_stay_applied(self, orchestrator, interrupted, item_store):
        orchestrator.cancel("op_partial")
        assert item_store.get_availability("tour-001").weekdays == WEEKENDS.weekdays
        assert item_store.get_availability("tour-120").weekdays == frozenset()

    def test_cancel_unknown_operation(self, orchestrator):
        result = orchestrator.cancel("op_unknown")
        assert result.cancelled is True
        assert result.items_already_applied == 0

    def test_cancel_unreadable_checkpoint(self, orchestrator, checkpoints):
        checkpoints.put(orchestrator.settings.resume_key("op_bad"), {"junk": 1}, 60)
        result = orchestrator.cancel("op_bad")
        assert result.items_already_applied == 0
        assert checkpoints.keys() == []


# =============================================================================
# Preview
# =============================================================================


class TestPreview:

    @pytest.fixture
    def seeded(self, item_store):
        item_store.add_item(
            "january",
            AvailabilityRecord(
                "january",
                start_date=date(2026, 1, 1),
                end_date=date(2026, 1, 31),
                specific_dates=(date(2026, 1, 10),),
            ),
        )
        return item_store

    def test_diff_over_configured_window(self, orchestrator):
        result = orchestrator.preview(["tour-001"], WEEKENDS)
        sample = result.samples[0]
        # Window is today (2026-01-01) plus 30 days; January 2026 has 9 weekend days
        assert sample.diff.window_start == date(2026, 1, 1)
        assert sample.diff.window_end == date(2026, 1, 31)
        assert sample.diff.new_count == 9
        assert sample.diff.existing_count == 31
        assert sample.existing_summary == "No availability rules"
        assert sample.conflicts == ()

    def test_sample_size_limits_items(self, orchestrator):
        result = orchestrator.preview(ITEM_IDS, WEEKENDS, sample_size=3)
        assert result.sample_size == 3
        assert result.total_items == 120
        assert [s.item_id for s in result.samples] == ITEM_IDS[:3]

    def test_default_sample_size(self, orchestrator):
        assert orchestrator.preview(ITEM_IDS, WEEKENDS).sample_size == 10

    def test_missing_item_becomes_error_sample(self, orchestrator):
        result = orchestrator.preview(["ghost", "tour-001"], WEEKENDS)
        assert result.samples[0].error_code == "ITEM_NOT_FOUND"
        assert result.samples[1].error is None
        assert result.has_errors

    def test_conflicts_counted(self, orchestrator, seeded):
        result = orchestrator.preview(
            ["january"], ChangeSet(exclusion_dates=(date(2026, 1, 10),)),
        )
        sample = result.samples[0]
        assert [c.severity for c in sample.conflicts] == [
            ConflictSeverity.ERROR,
            ConflictSeverity.WARNING,
        ]
        assert sample.diff is None
        assert result.total_conflicts == 1
        assert result.total_warnings == 1
        assert result.has_errors

    def test_already_applied_items_not_changing(self, orchestrator, item_store):
        item_store.add_item("weekend", AvailabilityRecord("weekend", weekdays=WEEKENDS.weekdays))
        result = orchestrator.preview(["weekend", "tour-001"], WEEKENDS)
        assert [s.will_change for s in result.samples] == [False, True]
        assert result.changing_count == 1
        assert result.to_dict()["summary"]["items_changing"] == 1

    def test_preview_writes_nothing(self, orchestrator, item_store, checkpoints):
        orchestrator.preview(ITEM_IDS, WEEKENDS)
        assert item_store.save_count == 0
        assert checkpoints.put_count == 0

    def test_trivial_change_previews_nothing(self, orchestrator):
        result = orchestrator.preview(ITEM_IDS, {"weekdays": ""})
        assert result.samples == ()
        assert result.total_items == 120

    def test_to_dict_shape(self, orchestrator):
        data = orchestrator.preview(["tour-001"], WEEKENDS).to_dict()
        assert set(data) == {"samples", "summary"}
        assert data["samples"][0]["preview"]["new_count"] == 9


# =============================================================================
# Statistics
# =============================================================================


def test_statistics(orchestrator):
    stats = orchestrator.get_statistics()
    assert stats["chunk_size"] == 50
    assert stats["max_items"] == 1000
    assert stats["time_budget_seconds"] == 30.0
    assert stats["settings_checksum"] == compute_checksum(BatchSettings())
