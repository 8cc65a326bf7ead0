"""
Typed Exception Hierarchy for the availability kernel and batch system.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Bulk edits touch hundreds of catalog items per invocation.  Callers (the
admin UI, the CLI, tests) must tell a rejected change set apart from a
storage outage or a single missing item without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (rule, item id, counts)

Example - WRONG way to handle errors:
    try:
        orchestrator.start(item_ids, change_set)
    except Exception as e:
        if "outside" in str(e):  # FRAGILE - message might change
            show_range_error()

Example - RIGHT way (what this module enables):
    try:
        orchestrator.start(item_ids, change_set)
    except ValidationError as e:
        api_response(code=e.code, rule=e.rule, dates=e.dates)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AvailabilityKernelError (base)
    |
    +-- ValidationError
    |
    +-- BatchError
        +-- EmptyItemListError
        +-- TooManyItemsError
        +-- EmptyChangeSetError
        +-- ItemNotFoundError
        +-- ItemApplyError
        +-- TimeoutExceededError
        +-- CannotResumeError
        +-- AlreadyCompletedError
        +-- StorageFailureError
        +-- BatchFailedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Change set or merge rule violated
----------------|-----------------------------|-----------------------------------------
Pre-flight      | EMPTY_ITEM_LIST             | No items selected
                | TOO_MANY_ITEMS              | Item count above configured maximum
                | EMPTY_CHANGE_SET            | Every field absent and reset is false
----------------|-----------------------------|-----------------------------------------
Per-item        | ITEM_NOT_FOUND              | Item no longer exists (non-retryable)
                | ITEM_APPLY_FAILED           | Fetch/merge/persist failed for one item
----------------|-----------------------------|-----------------------------------------
Resume          | TIMEOUT_EXCEEDED            | Invocation budget spent, resumable
                | CANNOT_RESUME               | Checkpoint missing, expired or malformed
                | ALREADY_COMPLETED           | Nothing left to process
----------------|-----------------------------|-----------------------------------------
Operation       | STORAGE_FAILURE             | Item store or checkpoint store outage
                | BATCH_FAILED                | Invocation aborted, partial progress kept
"""

from __future__ import annotations

from datetime import date
from typing import Any


class AvailabilityKernelError(Exception):
    """
    Base exception for all availability errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "AVAILABILITY_KERNEL_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Code, message and public attributes, with dates as ISO strings."""
        data: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if key.startswith("_"):
                continue
            if isinstance(value, tuple):
                value = [v.isoformat() if isinstance(v, date) else v for v in value]
            data[key] = value
        return data


# Validation


class ValidationError(AvailabilityKernelError):
    """A change set or a merged record violates an availability rule.

    ``rule`` is the machine-readable name of the violated rule (a
    ``MergeRule`` value), so callers can report exactly what was wrong.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(
        self,
        rule: str,
        message: str,
        dates: tuple[date, ...] = (),
        field: str | None = None,
    ):
        self.rule = str(rule)
        self.dates = tuple(dates)
        self.field = field
        super().__init__(message)


# Batch-related exceptions


class BatchError(AvailabilityKernelError):
    """Base exception for batch processing errors."""

    code: str = "BATCH_ERROR"


class EmptyItemListError(BatchError):
    """No items were selected for the batch."""

    code: str = "EMPTY_ITEM_LIST"

    def __init__(self):
        super().__init__("No items selected for batch processing")


class TooManyItemsError(BatchError):
    """The batch targets more items than the configured maximum."""

    code: str = "TOO_MANY_ITEMS"

    def __init__(self, count: int, maximum: int):
        self.count = count
        self.maximum = maximum
        super().__init__(
            f"Too many items selected: {count} (maximum: {maximum})"
        )


class EmptyChangeSetError(BatchError):
    """The change set has no field present and reset is false."""

    code: str = "EMPTY_CHANGE_SET"

    def __init__(self):
        super().__init__("No changes specified for batch processing")


class ItemNotFoundError(BatchError):
    """The catalog item no longer exists.  Never worth retrying."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class ItemApplyError(BatchError):
    """Applying the change set to one item failed.

    ``error_code`` is the code of the underlying cause (for example
    ``ITEM_NOT_FOUND`` or ``VALIDATION_ERROR``).
    """

    code: str = "ITEM_APPLY_FAILED"

    def __init__(self, item_id: str, error_code: str, detail: str):
        self.item_id = item_id
        self.error_code = error_code
        self.detail = detail
        super().__init__(f"Item {item_id}: {detail}")


class TimeoutExceededError(BatchError):
    """The invocation budget ran out before all items were processed."""

    code: str = "TIMEOUT_EXCEEDED"

    def __init__(self, operation_id: str, budget_seconds: float):
        self.operation_id = operation_id
        self.budget_seconds = budget_seconds
        super().__init__(
            f"Batch processing time budget exceeded ({budget_seconds:g} seconds). "
            f"Operation {operation_id} can be resumed."
        )


class CannotResumeError(BatchError):
    """The operation has no valid checkpoint to resume from."""

    code: str = "CANNOT_RESUME"

    def __init__(self, operation_id: str, reason: str):
        self.operation_id = operation_id
        self.reason = reason
        super().__init__(f"Cannot resume operation {operation_id}: {reason}")


class AlreadyCompletedError(BatchError):
    """Every item of the operation has already been processed."""

    code: str = "ALREADY_COMPLETED"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation {operation_id} is already completed")


class StorageFailureError(BatchError):
    """The item store or the checkpoint store is unavailable."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, detail: str, item_id: str | None = None):
        self.operation = operation
        self.detail = detail
        self.item_id = item_id
        target = f" for item {item_id}" if item_id else ""
        super().__init__(f"Storage failure during {operation}{target}: {detail}")


class BatchFailedError(BatchError):
    """The current invocation was aborted.

    Progress up to the failure has been checkpointed when ``resumable``
    is true; call ``resume()`` with the same operation id.
    """

    code: str = "BATCH_FAILED"

    def __init__(
        self,
        operation_id: str,
        processed_count: int,
        detail: str,
        resumable: bool = True,
    ):
        self.operation_id = operation_id
        self.processed_count = processed_count
        self.detail = detail
        self.resumable = resumable
        super().__init__(
            f"Batch processing failed for operation {operation_id} "
            f"after {processed_count} items: {detail}"
        )
