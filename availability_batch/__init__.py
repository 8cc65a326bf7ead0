"""
availability_batch -- resumable bulk application of availability rules.

Applies one change set to many catalog items in fixed-size chunks within
a bounded time budget per invocation, checkpointing after every chunk so
an interrupted operation can be resumed or cancelled.

Architecture:
    availability_batch/ is a top-level package.  Nothing in
    availability_kernel imports from it at module load time.

Components:
    domain/          pure DTOs (BatchOperation, BatchResult, BatchProgress)
    ports.py         ItemStore / CheckpointStore protocols
    stores/          in-memory and SQLAlchemy adapters
    models/          ORM models used by the SQL adapters
    services/        ChunkExecutor, BatchEventRecorder
    orchestrator.py  BatchOrchestrator
    cli.py           operator command line
"""

from availability_batch.orchestrator import BatchOrchestrator

__all__ = ["BatchOrchestrator"]
