"""Batch services: per-item executor and lifecycle event recorder."""

from availability_batch.services.events import BatchEvent, BatchEventRecorder
from availability_batch.services.executor import ApplyResult, ChunkExecutor

__all__ = [
    "ApplyResult",
    "BatchEvent",
    "BatchEventRecorder",
    "ChunkExecutor",
]
