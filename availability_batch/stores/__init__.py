"""Concrete ItemStore / CheckpointStore adapters."""

from availability_batch.stores.memory import InMemoryCheckpointStore, InMemoryItemStore
from availability_batch.stores.sql import SqlCheckpointStore, SqlItemStore

__all__ = [
    "InMemoryCheckpointStore",
    "InMemoryItemStore",
    "SqlCheckpointStore",
    "SqlItemStore",
]
