"""
BatchEventRecorder -- lifecycle events for batch operations.

Responsibility:
    Single place where every batch and per-item lifecycle event is
    emitted: one structured log line per event, plus fan-out to any
    subscribed callables (an audit table writer, a progress push, tests).

Architecture position:
    availability_batch/services.  Called by the BatchOrchestrator and the
    ChunkExecutor; imports from availability_kernel only.

Events:
    batch_started, batch_resumed, batch_chunk_completed,
    batch_interrupted, batch_completed, batch_cancelled, batch_failed,
    item_applied, item_unchanged, item_failed

Failure modes:
    - A subscriber that raises is logged (``event_subscriber_failed``) and
      the remaining subscribers still run; the batch is never aborted by
      an observer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from availability_kernel.domain.clock import Clock, SystemClock
from availability_kernel.domain.merge import Conflict
from availability_kernel.domain.records import AvailabilityRecord, ChangeSet
from availability_kernel.logging_config import get_logger

logger = get_logger("batch.events")


@dataclass(frozen=True)
class BatchEvent:
    """One emitted lifecycle event."""

    name: str
    occurred_at: datetime
    operation_id: str | None = None
    item_id: str | None = None
    actor_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


EventSubscriber = Callable[[BatchEvent], None]


class BatchEventRecorder:
    """Emits batch lifecycle events to the log and to subscribers.

    Contract:
        - Every ``record_*`` method emits exactly one event and returns it.
        - ``history`` keeps emitted events when ``keep_history`` is true.

    Non-goals:
        - Does NOT persist events; subscribe a writer for that.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        actor_id: str | None = None,
        keep_history: bool = False,
    ) -> None:
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._keep_history = keep_history
        self._history: list[BatchEvent] = []
        self._subscribers: list[EventSubscriber] = []

    @property
    def history(self) -> tuple[BatchEvent, ...]:
        return tuple(self._history)

    def names(self) -> list[str]:
        return [e.name for e in self._history]

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    # -------------------------------------------------------------------------
    # Batch lifecycle
    # -------------------------------------------------------------------------

    def record_batch_started(
        self,
        operation_id: str,
        total_items: int,
        change_set: ChangeSet,
        submitted_by: str | None = None,
    ) -> BatchEvent:
        return self._emit(
            "batch_started",
            operation_id=operation_id,
            payload={
                "total_items": total_items,
                "change_set": change_set.to_dict(),
                "submitted_by": submitted_by,
            },
        )

    def record_batch_resumed(
        self,
        operation_id: str,
        total_items: int,
        processed_count: int,
    ) -> BatchEvent:
        return self._emit(
            "batch_resumed",
            operation_id=operation_id,
            payload={"total_items": total_items, "processed_count": processed_count},
        )

    def record_chunk_completed(
        self,
        operation_id: str,
        chunk_index: int,
        applied: int,
        unchanged: int,
        failed: int,
    ) -> BatchEvent:
        return self._emit(
            "batch_chunk_completed",
            operation_id=operation_id,
            payload={
                "chunk_index": chunk_index,
                "applied": applied,
                "unchanged": unchanged,
                "failed": failed,
            },
        )

    def record_batch_interrupted(
        self,
        operation_id: str,
        processed_count: int,
        total_items: int,
    ) -> BatchEvent:
        return self._emit(
            "batch_interrupted",
            operation_id=operation_id,
            level=logging.WARNING,
            payload={"processed_count": processed_count, "total_items": total_items},
        )

    def record_batch_completed(
        self,
        operation_id: str,
        success_count: int,
        unchanged_count: int,
        failed_count: int,
        processing_time_seconds: float,
    ) -> BatchEvent:
        return self._emit(
            "batch_completed",
            operation_id=operation_id,
            payload={
                "success_count": success_count,
                "unchanged_count": unchanged_count,
                "failed_count": failed_count,
                "processing_time_seconds": processing_time_seconds,
            },
        )

    def record_batch_cancelled(
        self,
        operation_id: str,
        items_already_applied: int,
    ) -> BatchEvent:
        return self._emit(
            "batch_cancelled",
            operation_id=operation_id,
            level=logging.WARNING,
            payload={"items_already_applied": items_already_applied},
        )

    def record_batch_failed(
        self,
        operation_id: str,
        processed_count: int,
        detail: str,
        resumable: bool,
    ) -> BatchEvent:
        return self._emit(
            "batch_failed",
            operation_id=operation_id,
            level=logging.ERROR,
            payload={
                "processed_count": processed_count,
                "detail": detail,
                "resumable": resumable,
            },
        )

    # -------------------------------------------------------------------------
    # Per-item
    # -------------------------------------------------------------------------

    def record_item_applied(
        self,
        item_id: str,
        before: AvailabilityRecord,
        after: AvailabilityRecord,
        change_set: ChangeSet,
        conflicts: tuple[Conflict, ...] = (),
    ) -> BatchEvent:
        return self._emit(
            "item_applied",
            item_id=item_id,
            level=logging.DEBUG,
            payload={
                "before": before.to_dict(),
                "after": after.to_dict(),
                "change_set": change_set.to_dict(),
                "conflicts": [c.to_dict() for c in conflicts],
            },
        )

    def record_item_unchanged(self, item_id: str) -> BatchEvent:
        return self._emit("item_unchanged", item_id=item_id, level=logging.DEBUG)

    def record_item_failed(
        self,
        item_id: str,
        error_code: str,
        message: str,
    ) -> BatchEvent:
        return self._emit(
            "item_failed",
            item_id=item_id,
            level=logging.WARNING,
            payload={"error_code": error_code, "error_message": message},
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _emit(
        self,
        name: str,
        operation_id: str | None = None,
        item_id: str | None = None,
        level: int = logging.INFO,
        payload: dict[str, Any] | None = None,
    ) -> BatchEvent:
        event = BatchEvent(
            name=name,
            occurred_at=self._clock.now(),
            operation_id=operation_id,
            item_id=item_id,
            actor_id=self._actor_id,
            payload=payload or {},
        )

        extra: dict[str, Any] = {"event": name, **event.payload}
        if operation_id is not None:
            extra["event_operation_id"] = operation_id
        if item_id is not None:
            extra["event_item_id"] = item_id
        logger.log(level, name, extra=extra)

        if self._keep_history:
            self._history.append(event)
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    extra={"event": name},
                )
        return event
