"""
availability_batch.domain.types -- Pure frozen dataclasses for the batch system.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - An item id appears in at most one of ``processed_ids`` and the
      failure list; both only ever grow.
    - ``remaining_ids`` is derived from ``all_item_ids`` on every access,
      never stored, and keeps the original selection order.
    - ``to_checkpoint()`` / ``from_checkpoint()`` round-trip through plain
      JSON types so any key-value store can hold the resume state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

from availability_kernel.domain.merge import Conflict, PreviewDiff
from availability_kernel.domain.records import ChangeSet
from availability_kernel.exceptions import TimeoutExceededError


# =============================================================================
# Status enums
# =============================================================================


class BatchOperationStatus(str, Enum):
    """Operation-level lifecycle status."""

    CREATED = "created"  # Validated, not yet started
    RUNNING = "running"  # Chunks being processed in this invocation
    COMPLETED = "completed"  # Nothing remaining, checkpoint removed
    INTERRUPTED = "interrupted"  # Time budget spent, resumable
    CANCELLED = "cancelled"  # Checkpoint removed on request
    FAILED = "failed"  # Aborted and progress could not be saved


class ItemOutcomeStatus(str, Enum):
    """Per-item result within a chunk."""

    APPLIED = "applied"  # Merged rules written
    UNCHANGED = "unchanged"  # Merge produced no change, nothing written
    FAILED = "failed"  # Fetch, merge or persist failed


# =============================================================================
# Item DTOs
# =============================================================================


@dataclass(frozen=True)
class ItemFailure:
    """Why one item could not be updated."""

    item_id: str
    error_code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "item_id": self.item_id,
            "error_code": self.error_code,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemFailure:
        return cls(
            item_id=str(data["item_id"]),
            error_code=str(data["error_code"]),
            message=str(data["message"]),
        )


@dataclass(frozen=True)
class ItemOutcome:
    """Result of applying the change set to one item."""

    item_id: str
    status: ItemOutcomeStatus
    error_code: str | None = None
    message: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def is_failure(self) -> bool:
        return self.status == ItemOutcomeStatus.FAILED


# =============================================================================
# Resumable operation state
# =============================================================================

_REQUIRED_CHECKPOINT_KEYS = (
    "operation_id",
    "all_item_ids",
    "change_set",
    "processed_ids",
    "failed",
    "started_at",
)


@dataclass(frozen=True)
class BatchOperation:
    """Immutable snapshot of a resumable batch operation.

    ``chunk_index`` is the resume cursor: the number of chunks completed
    across all invocations so far.
    """

    operation_id: str
    all_item_ids: tuple[str, ...]
    change_set: ChangeSet
    started_at: datetime
    processed_ids: tuple[str, ...] = ()
    failures: tuple[ItemFailure, ...] = ()
    warnings: tuple[str, ...] = ()
    applied_count: int = 0
    chunk_index: int = 0
    last_checkpoint_at: datetime | None = None
    submitted_by: str | None = None

    # -- derived state ------------------------------------------------------

    @property
    def total(self) -> int:
        return len(self.all_item_ids)

    @property
    def failed_ids(self) -> tuple[str, ...]:
        return tuple(f.item_id for f in self.failures)

    @property
    def unchanged_count(self) -> int:
        return len(self.processed_ids) - self.applied_count

    @property
    def done_count(self) -> int:
        return len(self.processed_ids) + len(self.failures)

    @property
    def remaining_ids(self) -> tuple[str, ...]:
        done = set(self.processed_ids) | set(self.failed_ids)
        return tuple(i for i in self.all_item_ids if i not in done)

    @property
    def is_finished(self) -> bool:
        return not self.remaining_ids

    def next_chunk(self, size: int) -> tuple[str, ...]:
        """The next ``size`` remaining item ids, in original order."""
        return self.remaining_ids[:size]

    def is_stale(self, now: datetime, retention_seconds: int) -> bool:
        return now - self.started_at > timedelta(seconds=retention_seconds)

    # -- transitions --------------------------------------------------------

    def record_outcomes(
        self,
        outcomes: Iterable[ItemOutcome],
        now: datetime,
        chunk_done: bool = True,
    ) -> BatchOperation:
        """Fold item outcomes into a new snapshot.

        Items already recorded as processed or failed are ignored, so
        re-folding a chunk after a crash cannot double count.
        """
        seen = set(self.processed_ids) | set(self.failed_ids)
        processed = list(self.processed_ids)
        failures = list(self.failures)
        warnings = list(self.warnings)
        applied = self.applied_count

        for outcome in outcomes:
            if outcome.item_id in seen:
                continue
            seen.add(outcome.item_id)
            if outcome.is_failure:
                failures.append(
                    ItemFailure(
                        item_id=outcome.item_id,
                        error_code=outcome.error_code or "UNKNOWN",
                        message=outcome.message or "",
                    )
                )
                continue
            processed.append(outcome.item_id)
            if outcome.status == ItemOutcomeStatus.APPLIED:
                applied += 1
            warnings.extend(f"Item {outcome.item_id}: {w}" for w in outcome.warnings)

        return replace(
            self,
            processed_ids=tuple(processed),
            failures=tuple(failures),
            warnings=tuple(warnings),
            applied_count=applied,
            chunk_index=self.chunk_index + (1 if chunk_done else 0),
            last_checkpoint_at=now,
        )

    # -- serialization ------------------------------------------------------

    def to_checkpoint(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "all_item_ids": list(self.all_item_ids),
            "change_set": self.change_set.to_dict(),
            "processed_ids": list(self.processed_ids),
            "failed": [f.to_dict() for f in self.failures],
            "warnings": list(self.warnings),
            "applied_count": self.applied_count,
            "chunk_index": self.chunk_index,
            "started_at": self.started_at.isoformat(),
            "last_checkpoint_at": (
                self.last_checkpoint_at.isoformat()
                if self.last_checkpoint_at is not None
                else None
            ),
            "submitted_by": self.submitted_by,
        }

    @classmethod
    def from_checkpoint(cls, data: dict[str, Any]) -> BatchOperation:
        """Rebuild an operation from its resume state.

        Raises:
            ValueError: If required keys are missing or values are malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("resume state is not a mapping")
        missing = [k for k in _REQUIRED_CHECKPOINT_KEYS if k not in data]
        if missing:
            raise ValueError(f"resume state missing keys: {', '.join(missing)}")
        try:
            last = data.get("last_checkpoint_at")
            return cls(
                operation_id=str(data["operation_id"]),
                all_item_ids=tuple(str(i) for i in data["all_item_ids"]),
                change_set=ChangeSet.from_dict(data["change_set"]),
                started_at=_aware(datetime.fromisoformat(data["started_at"])),
                processed_ids=tuple(str(i) for i in data["processed_ids"]),
                failures=tuple(ItemFailure.from_dict(f) for f in data["failed"]),
                warnings=tuple(str(w) for w in data.get("warnings") or ()),
                applied_count=int(data.get("applied_count", 0)),
                chunk_index=int(data.get("chunk_index", 0)),
                last_checkpoint_at=(
                    _aware(datetime.fromisoformat(last)) if last else None
                ),
                submitted_by=data.get("submitted_by"),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed resume state: {exc}") from exc


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchProgress:
    """Progress snapshot for polling, computed from the latest checkpoint."""

    operation_id: str
    total: int
    processed: int
    failed: int
    remaining: int
    percent_complete: float
    estimated_seconds_remaining: int
    chunk_count: int
    updated_at: datetime
    can_resume: bool = False

    @classmethod
    def from_operation(cls, operation: BatchOperation, now: datetime) -> BatchProgress:
        total = operation.total
        processed = len(operation.processed_ids)
        failed = len(operation.failures)
        done = processed + failed
        remaining = total - done
        if done == 0 or remaining == 0:
            estimate = 0
        else:
            elapsed = (now - operation.started_at).total_seconds()
            estimate = max(0, round(elapsed / done * remaining))
        return cls(
            operation_id=operation.operation_id,
            total=total,
            processed=processed,
            failed=failed,
            remaining=remaining,
            percent_complete=round(done / total * 100, 1) if total else 0.0,
            estimated_seconds_remaining=estimate,
            chunk_count=operation.chunk_index,
            updated_at=now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "remaining": self.remaining,
            "percent_complete": self.percent_complete,
            "estimated_seconds_remaining": self.estimated_seconds_remaining,
            "chunk_count": self.chunk_count,
            "updated_at": self.updated_at.isoformat(),
            "can_resume": self.can_resume,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchProgress:
        return cls(
            operation_id=str(data["operation_id"]),
            total=int(data["total"]),
            processed=int(data["processed"]),
            failed=int(data["failed"]),
            remaining=int(data["remaining"]),
            percent_complete=float(data["percent_complete"]),
            estimated_seconds_remaining=int(data["estimated_seconds_remaining"]),
            chunk_count=int(data["chunk_count"]),
            updated_at=_aware(datetime.fromisoformat(data["updated_at"])),
            can_resume=bool(data.get("can_resume", False)),
        )


@dataclass(frozen=True)
class BatchResult:
    """Immutable result of one ``start`` / ``resume`` invocation."""

    operation_id: str
    status: BatchOperationStatus
    total_items: int
    success_count: int
    unchanged_count: int
    failed_count: int
    errors: tuple[ItemFailure, ...] = ()
    warnings: tuple[str, ...] = ()
    is_complete: bool = False
    is_resume: bool = False
    processing_time_seconds: float = 0.0
    chunk_count: int = 0
    time_budget_seconds: float | None = None

    @property
    def processed_count(self) -> int:
        return self.success_count + self.unchanged_count

    def raise_if_incomplete(self) -> None:
        """Raise ``TimeoutExceededError`` for an interrupted result."""
        if self.status == BatchOperationStatus.INTERRUPTED:
            raise TimeoutExceededError(
                self.operation_id, self.time_budget_seconds or 0.0,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self.status.value,
            "total_items": self.total_items,
            "success_count": self.success_count,
            "unchanged_count": self.unchanged_count,
            "failed_count": self.failed_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "is_complete": self.is_complete,
            "is_resume": self.is_resume,
            "processing_time_seconds": self.processing_time_seconds,
            "chunk_count": self.chunk_count,
        }


@dataclass(frozen=True)
class CancelResult:
    """Outcome of ``cancel``; applied items are never rolled back."""

    operation_id: str
    cancelled: bool
    items_already_applied: int
    warning: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "cancelled": self.cancelled,
            "items_already_applied": self.items_already_applied,
            "warning": self.warning,
        }


@dataclass(frozen=True)
class ItemPreview:
    """Preview of the change set for one sampled item."""

    item_id: str
    existing_summary: str | None = None
    conflicts: tuple[Conflict, ...] = ()
    diff: PreviewDiff | None = None
    will_change: bool = False
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"item_id": self.item_id}
        if self.error is not None:
            data["error_code"] = self.error_code
            data["error"] = self.error
            return data
        data["existing"] = self.existing_summary
        data["will_change"] = self.will_change
        data["conflicts"] = [c.to_dict() for c in self.conflicts]
        data["preview"] = self.diff.to_dict() if self.diff is not None else None
        return data


@dataclass(frozen=True)
class PreviewResult:
    """Sampled preview of a batch, nothing written."""

    total_items: int
    samples: tuple[ItemPreview, ...] = field(default_factory=tuple)
    total_conflicts: int = 0
    total_warnings: int = 0

    @property
    def sample_size(self) -> int:
        return len(self.samples)

    @property
    def changing_count(self) -> int:
        """Sampled items the change set would actually modify."""
        return sum(s.will_change for s in self.samples)

    @property
    def has_errors(self) -> bool:
        return self.total_conflicts > 0 or any(s.error for s in self.samples)

    def to_dict(self) -> dict[str, Any]:
        return {
            "samples": [s.to_dict() for s in self.samples],
            "summary": {
                "sample_size": self.sample_size,
                "total_items": self.total_items,
                "total_conflicts": self.total_conflicts,
                "total_warnings": self.total_warnings,
                "items_changing": self.changing_count,
                "has_errors": self.has_errors,
            },
        }


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
