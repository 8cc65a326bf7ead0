"""
ChunkExecutor -- apply one change set to one item.

Contract:
    ``apply()`` fetches the item's record, merges the change set, and
    writes the result only when the merge changed something.  A second
    application of the same change set is therefore a no-op
    (``applied=False``), which is what makes duplicate resumes safe.

Architecture: availability_batch/services.  Imports from
    availability_kernel (merge engine, exceptions, logging) and the batch
    ports.

Error contract (every error carries the item id):
    - ``ItemNotFoundError``      -> ``ItemApplyError(error_code=ITEM_NOT_FOUND)``
    - ``ValidationError``        -> ``ItemApplyError(error_code=VALIDATION_ERROR)``
    - ``StorageFailureError``    -> re-raised with ``item_id`` set, so the
                                   orchestrator can abort the invocation
    - anything else              -> ``ItemApplyError(error_code=UNHANDLED_EXCEPTION)``
"""

from __future__ import annotations

from dataclasses import dataclass

from availability_kernel.domain.merge import Conflict, RuleMergeEngine
from availability_kernel.domain.records import ChangeSet
from availability_kernel.exceptions import (
    ItemApplyError,
    ItemNotFoundError,
    StorageFailureError,
    ValidationError,
)
from availability_kernel.logging_config import LogContext, get_logger

from availability_batch.ports import ItemStore
from availability_batch.services.events import BatchEventRecorder

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of applying a change set to one item."""

    item_id: str
    applied: bool
    conflicts: tuple[Conflict, ...] = ()


class ChunkExecutor:
    """Per-item apply step used by the orchestrator for every chunk.

    Contract:
        - ``apply()`` returns an ``ApplyResult`` or raises one of the
          errors listed in the module docstring.
        - ``invalidate_cache()`` is called only after a successful write.

    Non-goals:
        - Does NOT catch errors for the whole chunk -- the orchestrator
          decides which errors are per-item and which abort.
        - Does NOT commit -- store adapters own durability.
    """

    def __init__(
        self,
        item_store: ItemStore,
        merge_engine: RuleMergeEngine | None = None,
        events: BatchEventRecorder | None = None,
    ) -> None:
        self._store = item_store
        self._engine = merge_engine or RuleMergeEngine()
        self._events = events or BatchEventRecorder()

    def apply(self, item_id: str, change: ChangeSet) -> ApplyResult:
        """Merge ``change`` into ``item_id``'s record and persist it.

        Raises:
            ItemApplyError: If the item is missing, the merge is rejected,
                or an unexpected error occurs.
            StorageFailureError: If a store is unavailable.
        """
        with LogContext.bind(item_id=item_id):
            try:
                existing = self._store.get_availability(item_id)
                result = self._engine.merge(existing, change)
                if not result.changed:
                    self._events.record_item_unchanged(item_id)
                    return ApplyResult(item_id, applied=False, conflicts=result.conflicts)
                self._store.save_availability(item_id, result.record)
                self._store.invalidate_cache(item_id)
            except StorageFailureError as exc:
                self._events.record_item_failed(item_id, exc.code, str(exc))
                if exc.item_id is not None:
                    raise
                raise StorageFailureError(exc.operation, exc.detail, item_id) from exc
            except ItemNotFoundError as exc:
                raise self._failure(item_id, exc.code, str(exc)) from exc
            except ValidationError as exc:
                raise self._failure(item_id, exc.code, str(exc)) from exc
            except ItemApplyError:
                raise
            except Exception as exc:
                logger.error(
                    "item_apply_unhandled_exception",
                    extra={"error": str(exc)},
                    exc_info=True,
                )
                raise self._failure(item_id, UNHANDLED_EXCEPTION, str(exc)) from exc

            self._events.record_item_applied(
                item_id,
                before=existing,
                after=result.record,
                change_set=change,
                conflicts=result.conflicts,
            )
            return ApplyResult(item_id, applied=True, conflicts=result.conflicts)

    def _failure(self, item_id: str, error_code: str, detail: str) -> ItemApplyError:
        self._events.record_item_failed(item_id, error_code, detail)
        return ItemApplyError(item_id, error_code, detail)
