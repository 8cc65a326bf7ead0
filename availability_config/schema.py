"""
BatchSettings schema.

The tunable limits of the batch orchestrator.  YAML files are parsed into
this frozen dataclass by the loader; the orchestrator only ever sees the
dataclass.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class BatchSettings:
    """Limits and timings for one orchestrator instance."""

    chunk_size: int = 50
    time_budget_seconds: float = 30.0
    safety_margin_seconds: float = 5.0
    max_items: int = 1000
    resume_ttl_seconds: int = 3600
    progress_ttl_seconds: int = 600
    retention_seconds: int = 86400
    preview_sample_size: int = 10
    preview_window_days: int = 30
    key_prefix: str = "avb_"

    def __post_init__(self) -> None:
        for name in (
            "chunk_size",
            "max_items",
            "resume_ttl_seconds",
            "progress_ttl_seconds",
            "retention_seconds",
            "preview_sample_size",
            "preview_window_days",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)!r}")
        if self.time_budget_seconds <= 0:
            raise ValueError(
                f"time_budget_seconds must be positive, got {self.time_budget_seconds!r}"
            )
        if not 0 <= self.safety_margin_seconds < self.time_budget_seconds:
            raise ValueError(
                "safety_margin_seconds must be non-negative and below "
                f"time_budget_seconds, got {self.safety_margin_seconds!r}"
            )
        if not self.key_prefix:
            raise ValueError("key_prefix must not be empty")

    @property
    def effective_budget_seconds(self) -> float:
        """Seconds a single invocation may spend before stopping."""
        return self.time_budget_seconds - self.safety_margin_seconds

    def resume_key(self, operation_id: str) -> str:
        return f"{self.key_prefix}resume:{operation_id}"

    def progress_key(self, operation_id: str) -> str:
        return f"{self.key_prefix}progress:{operation_id}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
