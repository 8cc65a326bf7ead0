"""
Tests for the SQLAlchemy store adapters and ORM models.

Uses an in-memory SQLite database so every test starts with empty tables.
"""

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from availability_batch.models import AvailabilityRecordModel, CatalogItemModel, CheckpointModel
from availability_batch.ports import CheckpointStore, ItemStore
from availability_batch.stores.sql import SqlCheckpointStore, SqlItemStore
from availability_kernel.domain.records import AvailabilityRecord, Weekday
from availability_kernel.exceptions import ItemNotFoundError, StorageFailureError


@pytest.fixture
def item_store(db_session):
    store = SqlItemStore(db_session)
    store.add_item("t1", name="Harbour cruise")
    store.add_item("t2")
    db_session.commit()
    return store


@pytest.fixture
def checkpoint_store(db_session, clock):
    return SqlCheckpointStore(db_session, clock=clock)


# =============================================================================
# Item store
# =============================================================================


class TestSqlItemStore:

    def test_satisfies_port(self, db_session):
        assert isinstance(SqlItemStore(db_session), ItemStore)

    def test_lazy_record_creation(self, item_store, db_session):
        assert item_store.get_availability("t1") == AvailabilityRecord("t1")
        rows = db_session.execute(select(AvailabilityRecordModel)).scalars().all()
        assert [r.item_key for r in rows] == ["t1"]

    def test_save_round_trip(self, item_store, db_session):
        record = AvailabilityRecord(
            "t1",
            start_date=date(2026, 4, 1),
            end_date=date(2026, 4, 30),
            weekdays={Weekday.TUESDAY, Weekday.THURSDAY},
            specific_dates=(date(2026, 4, 4),),
            exclusion_dates=(date(2026, 4, 9),),
        )
        item_store.save_availability("t1", record)
        item_store.invalidate_cache("t1")
        db_session.commit()
        db_session.expire_all()

        assert item_store.get_availability("t1") == record
        row = db_session.execute(
            select(AvailabilityRecordModel).where(AvailabilityRecordModel.item_key == "t1")
        ).scalar_one()
        assert row.weekdays == [2, 4]
        assert row.exclusion_dates == ["2026-04-09"]

    def test_save_overwrites_existing_row(self, item_store, db_session):
        item_store.get_availability("t2")
        item_store.save_availability("t2", AvailabilityRecord("t2", weekdays={Weekday.MONDAY}))
        item_store.invalidate_cache("t2")
        rows = db_session.execute(select(AvailabilityRecordModel)).scalars().all()
        assert len(rows) == 1
        assert item_store.get_availability("t2").weekdays == frozenset({Weekday.MONDAY})

    def test_writes_wait_for_outer_commit(self, item_store, db_session):
        item_store.save_availability("t1", AvailabilityRecord("t1", weekdays={Weekday.MONDAY}))
        db_session.rollback()
        assert db_session.execute(select(AvailabilityRecordModel)).scalars().all() == []

    def test_cache_served_until_invalidated(self, item_store):
        first = item_store.get_availability("t1")
        item_store.save_availability("t1", AvailabilityRecord("t1", weekdays={Weekday.FRIDAY}))
        assert item_store.get_availability("t1") is first
        item_store.invalidate_cache("t1")
        assert item_store.get_availability("t1").weekdays == frozenset({Weekday.FRIDAY})

    def test_unknown_item(self, item_store):
        with pytest.raises(ItemNotFoundError):
            item_store.get_availability("ghost")
        with pytest.raises(ItemNotFoundError):
            item_store.save_availability("ghost", AvailabilityRecord("ghost"))

    def test_inactive_item_not_found(self, item_store, db_session):
        row = db_session.execute(
            select(CatalogItemModel).where(CatalogItemModel.item_key == "t2")
        ).scalar_one()
        row.is_active = False
        db_session.flush()
        with pytest.raises(ItemNotFoundError):
            item_store.get_availability("t2")

    def test_database_error_is_storage_failure(self, item_store, db_session, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "execute", broken)
        with pytest.raises(StorageFailureError) as exc_info:
            item_store.get_availability("t1")
        assert exc_info.value.item_id == "t1"
        assert exc_info.value.operation == "get_availability"


# =============================================================================
# Checkpoint store
# =============================================================================


class TestSqlCheckpointStore:

    def test_satisfies_port(self, db_session):
        assert isinstance(SqlCheckpointStore(db_session), CheckpointStore)

    def test_put_get_delete(self, checkpoint_store):
        checkpoint_store.put("avb_resume:op_1", {"processed_ids": ["t1"]}, 3600)
        assert checkpoint_store.get("avb_resume:op_1") == {"processed_ids": ["t1"]}
        checkpoint_store.delete("avb_resume:op_1")
        assert checkpoint_store.get("avb_resume:op_1") is None

    def test_put_upserts(self, checkpoint_store, db_session):
        checkpoint_store.put("k", {"v": 1}, 60)
        checkpoint_store.put("k", {"v": 2}, 60)
        assert checkpoint_store.get("k") == {"v": 2}
        assert len(db_session.execute(select(CheckpointModel)).scalars().all()) == 1

    def test_writes_are_committed(self, checkpoint_store, db_engine, clock):
        from sqlalchemy.orm import Session

        checkpoint_store.put("k", {"v": 1}, 60)
        with Session(db_engine) as other:
            assert SqlCheckpointStore(other, clock=clock).get("k") == {"v": 1}

    def test_expiry(self, checkpoint_store, clock):
        checkpoint_store.put("k", {"v": 1}, 60)
        clock.advance(61)
        assert checkpoint_store.get("k") is None

    def test_purge_expired(self, checkpoint_store, clock):
        checkpoint_store.put("short", {"v": 1}, 60)
        checkpoint_store.put("long", {"v": 2}, 3600)
        clock.advance(120)
        assert checkpoint_store.purge_expired() == 1
        assert checkpoint_store.get("long") == {"v": 2}

    def test_write_failure_is_storage_failure(self, checkpoint_store, db_session, monkeypatch):
        def broken():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db_session, "commit", broken)
        with pytest.raises(StorageFailureError) as exc_info:
            checkpoint_store.put("k", {"v": 1}, 60)
        assert exc_info.value.operation == "checkpoint_put"

    def test_failed_commit_discards_pending_item_writes(
        self, item_store, checkpoint_store, db_session, monkeypatch,
    ):
        item_store.save_availability("t1", AvailabilityRecord("t1", weekdays={Weekday.MONDAY}))

        def broken():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db_session, "commit", broken)
        with pytest.raises(StorageFailureError):
            checkpoint_store.put("k", {"v": 1}, 60)
        monkeypatch.undo()

        assert db_session.execute(select(AvailabilityRecordModel)).scalars().all() == []
        assert checkpoint_store.get("k") is None
        checkpoint_store.put("k", {"v": 2}, 60)
        assert checkpoint_store.get("k") == {"v": 2}
