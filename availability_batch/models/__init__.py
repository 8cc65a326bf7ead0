"""
availability_batch.models -- ORM models for the SQL store adapters.

Architecture: availability_batch/models. Imports from availability_kernel.db.base only.
"""

from availability_batch.models.availability import (
    AvailabilityRecordModel,
    CatalogItemModel,
    CheckpointModel,
)

__all__ = [
    "AvailabilityRecordModel",
    "CatalogItemModel",
    "CheckpointModel",
]
