"""
SQLAlchemy store adapters.

Contract:
    ``SqlItemStore`` reads and writes ``AvailabilityRecordModel`` rows for
    active ``CatalogItemModel`` rows.  ``SqlCheckpointStore`` keeps the
    checkpoint keys in ``CheckpointModel`` rows with an explicit expiry.

Invariants enforced:
    - Each write runs in its own SAVEPOINT, so one failed flush does not
      poison the session for the rest of the chunk.
    - ``SqlCheckpointStore`` commits after every write by default: the
      item writes of a chunk and the checkpoint describing them become
      durable together.
    - All ``SQLAlchemyError`` are translated to ``StorageFailureError``.

Failure modes:
    - A failed checkpoint COMMIT rolls back the shared session, taking the
      chunk's uncommitted item writes with it.  The orchestrator then
      re-checkpoints the state from before that chunk.

Non-goals:
    - ``SqlItemStore`` does NOT call ``session.commit()``; the checkpoint
      store (or the caller) controls transaction boundaries.  On SQLite
      this holds only with the SAVEPOINT setup from
      ``availability_kernel.db.engine.enable_sqlite_savepoints``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from availability_kernel.domain.clock import Clock, SystemClock
from availability_kernel.domain.records import AvailabilityRecord
from availability_kernel.exceptions import ItemNotFoundError, StorageFailureError
from availability_kernel.logging_config import get_logger

from availability_batch.models.availability import (
    AvailabilityRecordModel,
    CatalogItemModel,
    CheckpointModel,
)

logger = get_logger("batch.stores.sql")


class SqlItemStore:
    """Item store over the catalog and availability tables."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._cache: dict[str, AvailabilityRecord] = {}

    def get_availability(self, item_id: str) -> AvailabilityRecord:
        cached = self._cache.get(item_id)
        if cached is not None:
            return cached
        try:
            self._require_item(item_id)
            model = self._record_model(item_id)
            if model is None:
                with self._session.begin_nested():
                    model = AvailabilityRecordModel.from_dto(
                        AvailabilityRecord(item_id=item_id)
                    )
                    self._session.add(model)
            record = model.to_dto()
        except SQLAlchemyError as exc:
            raise StorageFailureError("get_availability", str(exc), item_id) from exc
        self._cache[item_id] = record
        return record

    def save_availability(self, item_id: str, record: AvailabilityRecord) -> None:
        try:
            self._require_item(item_id)
            with self._session.begin_nested():
                model = self._record_model(item_id)
                if model is None:
                    self._session.add(AvailabilityRecordModel.from_dto(record))
                else:
                    model.apply_dto(record)
        except SQLAlchemyError as exc:
            raise StorageFailureError("save_availability", str(exc), item_id) from exc

    def invalidate_cache(self, item_id: str) -> None:
        self._cache.pop(item_id, None)

    def add_item(self, item_id: str, name: str | None = None) -> CatalogItemModel:
        """Register a catalog item (flushes, does not commit)."""
        model = CatalogItemModel(item_key=item_id, name=name, is_active=True)
        self._session.add(model)
        self._session.flush()
        return model

    def _require_item(self, item_id: str) -> None:
        found = self._session.execute(
            select(CatalogItemModel.id).where(
                CatalogItemModel.item_key == item_id,
                CatalogItemModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if found is None:
            raise ItemNotFoundError(item_id)

    def _record_model(self, item_id: str) -> AvailabilityRecordModel | None:
        return self._session.execute(
            select(AvailabilityRecordModel).where(
                AvailabilityRecordModel.item_key == item_id,
            )
        ).scalar_one_or_none()


class SqlCheckpointStore:
    """Checkpoint store over ``batch_checkpoints`` with clock-based expiry."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        commit_writes: bool = True,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._commit_writes = commit_writes

    def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        expires_at = self._clock.now() + timedelta(seconds=ttl_seconds)
        try:
            with self._session.begin_nested():
                model = self._model(key)
                if model is None:
                    self._session.add(
                        CheckpointModel(key=key, payload=value, expires_at=expires_at)
                    )
                else:
                    model.payload = value
                    model.expires_at = expires_at
        except SQLAlchemyError as exc:
            raise StorageFailureError("checkpoint_put", str(exc)) from exc
        self._commit("checkpoint_put")

    def get(self, key: str) -> dict[str, Any] | None:
        try:
            model = self._model(key)
        except SQLAlchemyError as exc:
            raise StorageFailureError("checkpoint_get", str(exc)) from exc
        if model is None:
            return None
        if self._clock.now() >= _aware(model.expires_at):
            logger.debug("checkpoint_expired", extra={"key": key})
            return None
        return dict(model.payload)

    def delete(self, key: str) -> None:
        try:
            with self._session.begin_nested():
                self._session.execute(
                    delete(CheckpointModel).where(CheckpointModel.key == key)
                )
        except SQLAlchemyError as exc:
            raise StorageFailureError("checkpoint_delete", str(exc)) from exc
        self._commit("checkpoint_delete")

    def purge_expired(self) -> int:
        """Delete every expired key; returns how many were removed."""
        now = self._clock.now()
        try:
            with self._session.begin_nested():
                expired = [
                    m for m in self._session.execute(select(CheckpointModel)).scalars()
                    if now >= _aware(m.expires_at)
                ]
                for model in expired:
                    self._session.delete(model)
        except SQLAlchemyError as exc:
            raise StorageFailureError("checkpoint_purge", str(exc)) from exc
        self._commit("checkpoint_purge")
        logger.info("checkpoints_purged", extra={"count": len(expired)})
        return len(expired)

    def _model(self, key: str) -> CheckpointModel | None:
        return self._session.execute(
            select(CheckpointModel).where(CheckpointModel.key == key)
        ).scalar_one_or_none()

    def _commit(self, operation: str) -> None:
        try:
            self._finish_write()
        except SQLAlchemyError as exc:
            # A failed COMMIT leaves nothing to salvage in the transaction
            self._session.rollback()
            logger.error("checkpoint_commit_failed", extra={"store_operation": operation})
            raise StorageFailureError(operation, str(exc)) from exc

    def _finish_write(self) -> None:
        if self._commit_writes:
            self._session.commit()
        else:
            self._session.flush()


def _aware(value: datetime) -> datetime:
    # SQLite returns naive datetimes even for DateTime(timezone=True)
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
