"""
availability_batch.domain -- Pure types and value objects for batch processing.

ZERO I/O.  All types are frozen dataclasses.
"""

from availability_batch.domain.types import (
    BatchOperation,
    BatchOperationStatus,
    BatchProgress,
    BatchResult,
    CancelResult,
    ItemFailure,
    ItemOutcome,
    ItemOutcomeStatus,
    ItemPreview,
    PreviewResult,
)

__all__ = [
    "BatchOperation",
    "BatchOperationStatus",
    "BatchProgress",
    "BatchResult",
    "CancelResult",
    "ItemFailure",
    "ItemOutcome",
    "ItemOutcomeStatus",
    "ItemPreview",
    "PreviewResult",
]
