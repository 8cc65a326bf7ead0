"""
End-to-end BatchOrchestrator runs over the SQLAlchemy stores.

Each orchestrator is built with ``from_session`` exactly as the CLI does,
and a fresh orchestrator is used for resume to prove that all state
lives in the database.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from availability_batch.domain.types import BatchOperationStatus
from availability_batch.models import AvailabilityRecordModel, CheckpointModel
from availability_batch.orchestrator import BatchOrchestrator
from availability_batch.services.events import BatchEventRecorder
from availability_batch.stores.sql import SqlCheckpointStore, SqlItemStore
from availability_config import BatchSettings
from availability_kernel.exceptions import BatchFailedError

ITEM_IDS = [f"walk-{i}" for i in range(1, 8)]
SETTINGS = BatchSettings(chunk_size=3, time_budget_seconds=10, safety_margin_seconds=1)


@pytest.fixture
def catalog(db_session):
    store = SqlItemStore(db_session)
    for item_id in ITEM_IDS:
        store.add_item(item_id)
    db_session.commit()
    return ITEM_IDS


@pytest.fixture
def slow_events(clock, timer):
    recorder = BatchEventRecorder(clock=clock)

    def on_event(event):
        if event.name == "batch_chunk_completed":
            timer.advance(5)

    recorder.subscribe(on_event)
    return recorder


def _orchestrator(session, clock, timer, events=None) -> BatchOrchestrator:
    return BatchOrchestrator.from_session(
        session, settings=SETTINGS, clock=clock, events=events, timer=timer,
    )


class TestSqlBackedBatch:

    def test_interrupt_and_resume(self, db_session, catalog, clock, timer, slow_events):
        first = _orchestrator(db_session, clock, timer, slow_events)
        result = first.start(catalog, {"weekdays": ["mon", "fri"]}, operation_id="op_sql")

        # Budget 10 - 1 = 9s; two 5s chunks of 3 items
        assert result.status == BatchOperationStatus.INTERRUPTED
        assert result.processed_count == 6

        keys = db_session.execute(select(CheckpointModel.key)).scalars().all()
        assert sorted(keys) == ["avb_progress:op_sql", "avb_resume:op_sql"]

        second = _orchestrator(db_session, clock, timer)
        result = second.resume("op_sql")
        assert result.status == BatchOperationStatus.COMPLETED
        assert result.success_count == 7
        assert result.chunk_count == 3

        db_session.expire_all()
        rows = db_session.execute(select(AvailabilityRecordModel)).scalars().all()
        assert len(rows) == 7
        assert all(row.weekdays == [1, 5] for row in rows)
        assert db_session.execute(select(CheckpointModel)).scalars().all() == []

    def test_missing_catalog_item(self, db_session, catalog, clock, timer):
        result = _orchestrator(db_session, clock, timer).start(
            ["walk-1", "walk-99"], {"exclusions": "2026-02-14"},
        )
        assert result.success_count == 1
        assert result.errors[0].item_id == "walk-99"
        assert result.errors[0].error_code == "ITEM_NOT_FOUND"

    def test_progress_from_database(self, db_session, catalog, clock, timer, slow_events):
        _orchestrator(db_session, clock, timer, slow_events).start(
            catalog, {"weekdays": "sat"}, operation_id="op_poll",
        )
        progress = _orchestrator(db_session, clock, timer).get_progress("op_poll")
        assert progress.processed == 6
        assert progress.remaining == 1
        assert progress.can_resume is True

    def test_cancel_clears_database_keys(self, db_session, catalog, clock, timer, slow_events):
        _orchestrator(db_session, clock, timer, slow_events).start(
            catalog, {"weekdays": "sat"}, operation_id="op_stop",
        )
        result = _orchestrator(db_session, clock, timer).cancel("op_stop")
        assert result.items_already_applied == 6
        assert db_session.execute(select(CheckpointModel)).scalars().all() == []

    def test_failed_checkpoint_commit_loses_no_items(
        self, db_session, catalog, clock, timer, monkeypatch,
    ):
        original = SqlCheckpointStore._finish_write
        calls = []

        def flaky_commit(store):
            calls.append(store)
            # Writes 1-2 checkpoint the new operation; 3 follows the first chunk
            if len(calls) == 3:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            original(store)

        monkeypatch.setattr(SqlCheckpointStore, "_finish_write", flaky_commit)
        orchestrator = BatchOrchestrator.from_session(
            db_session, settings=BatchSettings(chunk_size=2), clock=clock, timer=timer,
        )
        items = catalog[:4]
        with pytest.raises(BatchFailedError) as exc_info:
            orchestrator.start(items, {"weekdays": ["mon", "fri"]}, operation_id="op_lock")
        assert exc_info.value.resumable is True
        assert exc_info.value.processed_count == 0

        # Every item the checkpoint claims must have been persisted
        db_session.expire_all()
        payload = db_session.execute(
            select(CheckpointModel.payload).where(CheckpointModel.key == "avb_resume:op_lock")
        ).scalar_one()
        persisted = {
            row.item_key: row.weekdays
            for row in db_session.execute(select(AvailabilityRecordModel)).scalars()
        }
        for item_id in payload["processed_ids"]:
            assert persisted.get(item_id) == [1, 5]
        assert persisted == {}

        result = _orchestrator(db_session, clock, timer).resume("op_lock")
        assert result.is_complete
        assert result.success_count == 4
        db_session.expire_all()
        rows = db_session.execute(select(AvailabilityRecordModel)).scalars().all()
        assert sorted(row.item_key for row in rows) == items
        assert all(row.weekdays == [1, 5] for row in rows)
