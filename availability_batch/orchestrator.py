"""
BatchOrchestrator -- resumable, time-bounded bulk availability updates.

Contract:
    ``start()`` validates a batch, then applies the change set chunk by
    chunk until every item is done or the invocation's time budget is
    spent.  State is checkpointed after every chunk so that ``resume()``
    (or a repeated ``start()`` with the same operation id) continues
    exactly where the previous invocation stopped.

Architecture: availability_batch (top-level).  The canonical entry point
    for running bulk edits.  Wires ChunkExecutor, RuleMergeEngine, the
    store ports and BatchEventRecorder.

States:
    CREATED -> RUNNING -> {COMPLETED | INTERRUPTED | CANCELLED | FAILED}

Invariants enforced:
    - Pre-flight rejects the whole batch before any item is touched.
    - Chunks are taken from ``remaining_ids`` in original order; after
      completion ``processed_ids`` and the failures partition
      ``all_item_ids`` with no duplicates and no omissions.
    - Resume state and progress snapshot are written together after
      every chunk and deleted together on completion or cancel.
    - All timestamps come from the injected Clock; the time budget is
      measured on the injected monotonic timer.

Failure modes:
    - Pre-flight: EmptyItemListError, TooManyItemsError,
      EmptyChangeSetError, ValidationError.
    - Per-item errors are recorded in ``BatchResult.errors``, never raised.
    - StorageFailureError mid-chunk -> BatchFailedError (resumable when
      the progress checkpoint could still be written).
    - resume(): CannotResumeError, AlreadyCompletedError.
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, NoReturn

from sqlalchemy.orm import Session

from availability_config import compute_checksum
from availability_config.schema import BatchSettings
from availability_kernel.domain.clock import Clock, SystemClock
from availability_kernel.domain.merge import ConflictSeverity, RuleMergeEngine
from availability_kernel.domain.normalize import normalize_change_set
from availability_kernel.domain.records import ChangeSet
from availability_kernel.exceptions import (
    AlreadyCompletedError,
    BatchFailedError,
    CannotResumeError,
    EmptyChangeSetError,
    EmptyItemListError,
    ItemApplyError,
    ItemNotFoundError,
    StorageFailureError,
    TooManyItemsError,
    ValidationError,
)
from availability_kernel.logging_config import LogContext, get_logger
from availability_kernel.utils.hashing import derive_operation_id

from availability_batch.domain.types import (
    BatchOperation,
    BatchOperationStatus,
    BatchProgress,
    BatchResult,
    CancelResult,
    ItemOutcome,
    ItemOutcomeStatus,
    ItemPreview,
    PreviewResult,
)
from availability_batch.ports import CheckpointStore, ItemStore
from availability_batch.services.events import BatchEventRecorder
from availability_batch.services.executor import ChunkExecutor

logger = get_logger("batch.orchestrator")


class BatchOrchestrator:
    """Runs bulk availability edits in bounded, resumable invocations.

    Contract:
        - ``from_session()`` factory wires the SQLAlchemy stores.
        - ``start()`` / ``resume()`` return a ``BatchResult``.
        - ``cancel()`` returns a ``CancelResult``; nothing is rolled back.
        - ``get_progress()`` reads the latest checkpoint, runs nothing.
        - ``preview()`` samples items and writes nothing.

    Non-goals:
        - Does NOT run chunks in parallel or in the background.
        - Does NOT roll back applied items on cancel or failure.
        - Does NOT manage the session lifecycle beyond what the stores do.
    """

    def __init__(
        self,
        item_store: ItemStore,
        checkpoint_store: CheckpointStore,
        settings: BatchSettings | None = None,
        clock: Clock | None = None,
        merge_engine: RuleMergeEngine | None = None,
        events: BatchEventRecorder | None = None,
        timer: Callable[[], float] | None = None,
        actor_id: str | None = None,
    ) -> None:
        self._items = item_store
        self._checkpoints = checkpoint_store
        self._settings = settings or BatchSettings()
        self._clock = clock or SystemClock()
        self._engine = merge_engine or RuleMergeEngine()
        self._actor_id = actor_id
        self._events = events or BatchEventRecorder(clock=self._clock, actor_id=actor_id)
        self._timer = timer or time.monotonic
        self._executor = ChunkExecutor(item_store, self._engine, self._events)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        settings: BatchSettings | None = None,
        clock: Clock | None = None,
        actor_id: str | None = None,
        events: BatchEventRecorder | None = None,
        timer: Callable[[], float] | None = None,
    ) -> BatchOrchestrator:
        """Create an orchestrator backed by the SQL item and checkpoint stores."""
        from availability_batch.stores.sql import SqlCheckpointStore, SqlItemStore

        effective_clock = clock or SystemClock()
        return cls(
            item_store=SqlItemStore(session),
            checkpoint_store=SqlCheckpointStore(session, clock=effective_clock),
            settings=settings,
            clock=effective_clock,
            events=events,
            timer=timer,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Start / resume
    # -------------------------------------------------------------------------

    def start(
        self,
        item_ids: Iterable[str],
        change_set: ChangeSet | Mapping[str, Any],
        operation_id: str | None = None,
        submitted_by: str | None = None,
    ) -> BatchResult:
        """Validate and run a batch, resuming it if a valid checkpoint exists.

        Raises:
            EmptyItemListError, TooManyItemsError, EmptyChangeSetError,
            ValidationError: Pre-flight rejections; nothing was touched.
            BatchFailedError: A store failed mid-invocation.
        """
        change = self._coerce_change_set(change_set)
        ids = self._preflight(item_ids, change)
        now = self._clock.now()
        submitter = submitted_by or self._actor_id
        op_id = operation_id or derive_operation_id(ids, change.to_dict(), submitter, now)

        with LogContext.bind(operation_id=op_id, actor_id=self._actor_id):
            existing, reason = self._load_operation(op_id)
            if existing is not None:
                logger.info(
                    "start_found_checkpoint",
                    extra={"processed_count": len(existing.processed_ids)},
                )
                return self._run(existing, is_resume=True)
            if reason is not None and reason != _NO_CHECKPOINT:
                logger.warning("stale_checkpoint_discarded", extra={"reason": reason})
                self._delete_keys(op_id)

            operation = BatchOperation(
                operation_id=op_id,
                all_item_ids=ids,
                change_set=change,
                started_at=now,
                submitted_by=submitter,
            )
            self._transition(operation, BatchOperationStatus.CREATED)
            self._events.record_batch_started(op_id, len(ids), change, submitter)
            try:
                self._checkpoint(operation)
            except StorageFailureError as exc:
                self._events.record_batch_failed(op_id, 0, str(exc), resumable=False)
                self._transition(operation, BatchOperationStatus.FAILED)
                raise BatchFailedError(op_id, 0, str(exc), resumable=False) from exc
            return self._run(operation, is_resume=False)

    def resume(self, operation_id: str) -> BatchResult:
        """Continue an interrupted or failed operation from its checkpoint.

        Raises:
            CannotResumeError: Checkpoint missing, expired or malformed.
            AlreadyCompletedError: Nothing left to process.
            BatchFailedError: A store failed mid-invocation.
        """
        with LogContext.bind(operation_id=operation_id, actor_id=self._actor_id):
            operation, reason = self._load_operation(operation_id)
            if operation is None:
                raise CannotResumeError(operation_id, reason or _NO_CHECKPOINT)
            if operation.is_finished:
                self._delete_keys(operation_id)
                raise AlreadyCompletedError(operation_id)
            return self._run(operation, is_resume=True)

    # -------------------------------------------------------------------------
    # Cancel / progress / preview / statistics
    # -------------------------------------------------------------------------

    def cancel(self, operation_id: str) -> CancelResult:
        """Delete the operation's checkpoint so it can never be resumed.

        Items already applied stay applied; the result says so explicitly.
        """
        with LogContext.bind(operation_id=operation_id, actor_id=self._actor_id):
            applied = 0
            data = self._checkpoints.get(self._settings.resume_key(operation_id))
            if data is not None:
                try:
                    applied = BatchOperation.from_checkpoint(data).applied_count
                except ValueError:
                    logger.warning("cancel_checkpoint_unreadable", exc_info=True)
            self._delete_keys(operation_id)
            self._events.record_batch_cancelled(operation_id, applied)
            logger.info(
                "batch_status",
                extra={"status": BatchOperationStatus.CANCELLED.value},
            )
            return CancelResult(
                operation_id=operation_id,
                cancelled=True,
                items_already_applied=applied,
                warning=(
                    f"Operation {operation_id} cancelled. {applied} item(s) already "
                    "updated were NOT rolled back."
                ),
            )

    def get_progress(self, operation_id: str) -> BatchProgress | None:
        """Latest progress snapshot, or None if the operation is unknown."""
        resume_data = self._checkpoints.get(self._settings.resume_key(operation_id))
        progress_data = self._checkpoints.get(self._settings.progress_key(operation_id))

        progress: BatchProgress | None = None
        if progress_data is not None:
            try:
                progress = BatchProgress.from_dict(progress_data)
            except (KeyError, TypeError, ValueError):
                logger.warning(
                    "progress_snapshot_unreadable",
                    extra={"progress_operation_id": operation_id},
                )
        if progress is None and resume_data is not None:
            try:
                operation = BatchOperation.from_checkpoint(resume_data)
            except ValueError:
                return None
            progress = BatchProgress.from_operation(
                operation, operation.last_checkpoint_at or self._clock.now(),
            )
        if progress is None:
            return None
        return replace(progress, can_resume=resume_data is not None)

    def preview(
        self,
        item_ids: Iterable[str],
        change_set: ChangeSet | Mapping[str, Any],
        sample_size: int | None = None,
    ) -> PreviewResult:
        """Show what the change set would do to the first few items.

        Per-item problems are reported in the sample, never raised.
        """
        change = self._coerce_change_set(change_set)
        ids = tuple(dict.fromkeys(str(i) for i in item_ids))
        if not ids or change.is_trivial:
            return PreviewResult(total_items=len(ids))

        size = sample_size or self._settings.preview_sample_size
        window_start = self._clock.now().date()
        window_end = window_start + timedelta(days=self._settings.preview_window_days)

        samples: list[ItemPreview] = []
        errors = 0
        warnings = 0
        for item_id in ids[:size]:
            try:
                existing = self._items.get_availability(item_id)
            except (ItemNotFoundError, StorageFailureError) as exc:
                samples.append(ItemPreview(item_id, error_code=exc.code, error=str(exc)))
                continue

            conflicts = self._engine.detect_conflicts(existing, change)
            try:
                diff = self._engine.preview(existing, change, window_start, window_end)
            except ValidationError:
                diff = None  # the ERROR conflict already explains why
            for conflict in conflicts:
                if conflict.severity == ConflictSeverity.ERROR:
                    errors += 1
                else:
                    warnings += 1
            samples.append(
                ItemPreview(
                    item_id=item_id,
                    existing_summary=existing.summary(),
                    conflicts=conflicts,
                    diff=diff,
                    will_change=self._engine.has_effective_change(existing, change),
                )
            )

        return PreviewResult(
            total_items=len(ids),
            samples=tuple(samples),
            total_conflicts=errors,
            total_warnings=warnings,
        )

    def get_statistics(self) -> dict[str, Any]:
        """Configured limits, for operators sizing a batch."""
        settings = self._settings
        return {
            "chunk_size": settings.chunk_size,
            "time_budget_seconds": settings.time_budget_seconds,
            "safety_margin_seconds": settings.safety_margin_seconds,
            "max_items": settings.max_items,
            "resume_ttl_seconds": settings.resume_ttl_seconds,
            "progress_ttl_seconds": settings.progress_ttl_seconds,
            "retention_seconds": settings.retention_seconds,
            "preview_sample_size": settings.preview_sample_size,
            "preview_window_days": settings.preview_window_days,
            "settings_checksum": compute_checksum(settings),
        }

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def events(self) -> BatchEventRecorder:
        return self._events

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _run(self, operation: BatchOperation, is_resume: bool) -> BatchResult:
        settings = self._settings
        if is_resume:
            self._events.record_batch_resumed(
                operation.operation_id, operation.total, len(operation.processed_ids),
            )
        self._transition(operation, BatchOperationStatus.RUNNING)

        invocation_start = self._timer()
        while not operation.is_finished:
            if self._timer() - invocation_start >= settings.effective_budget_seconds:
                break

            before_chunk = operation
            chunk = operation.next_chunk(settings.chunk_size)
            outcomes, abort_cause = self._process_chunk(chunk, operation.change_set)
            if abort_cause is not None:
                partial = operation.record_outcomes(
                    outcomes, self._clock.now(), chunk_done=False,
                )
                self._abort(abort_cause, partial, before_chunk)

            operation = operation.record_outcomes(outcomes, self._clock.now())
            try:
                self._checkpoint(operation)
            except StorageFailureError as exc:
                # The failed write may have discarded this chunk's item writes
                self._abort(exc, before_chunk)

            self._events.record_chunk_completed(
                operation.operation_id,
                operation.chunk_index,
                applied=sum(o.status == ItemOutcomeStatus.APPLIED for o in outcomes),
                unchanged=sum(o.status == ItemOutcomeStatus.UNCHANGED for o in outcomes),
                failed=sum(o.is_failure for o in outcomes),
            )

        if operation.is_finished:
            return self._complete(operation, is_resume)
        return self._interrupt(operation, is_resume)

    def _process_chunk(
        self,
        chunk: tuple[str, ...],
        change: ChangeSet,
    ) -> tuple[list[ItemOutcome], StorageFailureError | None]:
        """Apply ``change`` to each item; stop at the first storage failure."""
        outcomes: list[ItemOutcome] = []
        for item_id in chunk:
            try:
                applied = self._executor.apply(item_id, change)
            except ItemApplyError as exc:
                outcomes.append(
                    ItemOutcome(
                        item_id=item_id,
                        status=ItemOutcomeStatus.FAILED,
                        error_code=exc.error_code,
                        message=exc.detail,
                    )
                )
            except StorageFailureError as exc:
                return outcomes, exc
            else:
                outcomes.append(
                    ItemOutcome(
                        item_id=item_id,
                        status=(
                            ItemOutcomeStatus.APPLIED
                            if applied.applied
                            else ItemOutcomeStatus.UNCHANGED
                        ),
                        warnings=tuple(c.message for c in applied.conflicts),
                    )
                )
        return outcomes, None

    def _complete(self, operation: BatchOperation, is_resume: bool) -> BatchResult:
        warnings: tuple[str, ...] = ()
        try:
            self._delete_keys(operation.operation_id)
        except StorageFailureError:
            logger.warning("checkpoint_cleanup_failed", exc_info=True)
            warnings = (
                "Operation finished but its checkpoint could not be removed; "
                "it will expire on its own.",
            )
        result = self._result(
            operation, BatchOperationStatus.COMPLETED, is_resume, warnings,
        )
        self._events.record_batch_completed(
            operation.operation_id,
            result.success_count,
            result.unchanged_count,
            result.failed_count,
            result.processing_time_seconds,
        )
        self._transition(operation, BatchOperationStatus.COMPLETED)
        return result

    def _interrupt(self, operation: BatchOperation, is_resume: bool) -> BatchResult:
        self._events.record_batch_interrupted(
            operation.operation_id, operation.done_count, operation.total,
        )
        self._transition(operation, BatchOperationStatus.INTERRUPTED)
        warning = (
            f"Time budget of {self._settings.time_budget_seconds:g} seconds reached "
            f"after {operation.done_count} of {operation.total} items. "
            f"Resume operation {operation.operation_id} to continue."
        )
        return self._result(
            operation, BatchOperationStatus.INTERRUPTED, is_resume, (warning,),
        )

    def _abort(self, cause: StorageFailureError, *states: BatchOperation) -> NoReturn:
        """Checkpoint the first of ``states`` that can be written, then raise.

        ``states`` run from most to least recent; the last one is always
        the snapshot taken before the current chunk started.
        """
        saved: BatchOperation | None = None
        for state in states:
            try:
                self._checkpoint(state)
            except StorageFailureError:
                logger.error(
                    "abort_checkpoint_failed",
                    extra={"processed_count": len(state.processed_ids)},
                    exc_info=True,
                )
                continue
            saved = state
            break

        resumable = saved is not None
        operation = saved or states[-1]
        processed = len(operation.processed_ids)
        self._events.record_batch_failed(
            operation.operation_id, processed, str(cause), resumable,
        )
        self._transition(
            operation,
            BatchOperationStatus.INTERRUPTED if resumable else BatchOperationStatus.FAILED,
        )
        raise BatchFailedError(
            operation.operation_id, processed, str(cause), resumable=resumable,
        ) from cause

    def _result(
        self,
        operation: BatchOperation,
        status: BatchOperationStatus,
        is_resume: bool,
        extra_warnings: tuple[str, ...] = (),
    ) -> BatchResult:
        elapsed = (self._clock.now() - operation.started_at).total_seconds()
        return BatchResult(
            operation_id=operation.operation_id,
            status=status,
            total_items=operation.total,
            success_count=operation.applied_count,
            unchanged_count=operation.unchanged_count,
            failed_count=len(operation.failures),
            errors=operation.failures,
            warnings=operation.warnings + extra_warnings,
            is_complete=operation.is_finished,
            is_resume=is_resume,
            processing_time_seconds=round(max(elapsed, 0.0), 3),
            chunk_count=operation.chunk_index,
            time_budget_seconds=self._settings.time_budget_seconds,
        )

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    def _checkpoint(self, operation: BatchOperation) -> None:
        settings = self._settings
        progress = replace(
            BatchProgress.from_operation(operation, self._clock.now()),
            can_resume=True,
        )
        self._checkpoints.put(
            settings.resume_key(operation.operation_id),
            operation.to_checkpoint(),
            settings.resume_ttl_seconds,
        )
        self._checkpoints.put(
            settings.progress_key(operation.operation_id),
            progress.to_dict(),
            settings.progress_ttl_seconds,
        )

    def _load_operation(
        self, operation_id: str,
    ) -> tuple[BatchOperation | None, str | None]:
        """Valid checkpointed operation, or None with the reason it is unusable."""
        data = self._checkpoints.get(self._settings.resume_key(operation_id))
        if data is None:
            return None, _NO_CHECKPOINT
        try:
            operation = BatchOperation.from_checkpoint(data)
        except ValueError as exc:
            return None, f"checkpoint is malformed ({exc})"
        if operation.operation_id != operation_id:
            return None, "checkpoint belongs to a different operation"
        if operation.is_stale(self._clock.now(), self._settings.retention_seconds):
            return None, (
                f"operation started more than {self._settings.retention_seconds} "
                "seconds ago"
            )
        return operation, None

    def _delete_keys(self, operation_id: str) -> None:
        self._checkpoints.delete(self._settings.resume_key(operation_id))
        self._checkpoints.delete(self._settings.progress_key(operation_id))

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _preflight(
        self, item_ids: Iterable[str], change: ChangeSet,
    ) -> tuple[str, ...]:
        ids = tuple(dict.fromkeys(str(i) for i in item_ids))
        if not ids:
            raise EmptyItemListError()
        if len(ids) > self._settings.max_items:
            raise TooManyItemsError(len(ids), self._settings.max_items)
        if change.is_trivial:
            raise EmptyChangeSetError()
        self._engine.validate_change(change)
        return ids

    @staticmethod
    def _coerce_change_set(change_set: ChangeSet | Mapping[str, Any]) -> ChangeSet:
        if isinstance(change_set, ChangeSet):
            return change_set
        return normalize_change_set(change_set)

    def _transition(
        self, operation: BatchOperation, status: BatchOperationStatus,
    ) -> None:
        logger.info(
            "batch_status",
            extra={
                "status": status.value,
                "done_count": operation.done_count,
                "total_items": operation.total,
            },
        )


_NO_CHECKPOINT = "no checkpoint found (missing or expired)"
