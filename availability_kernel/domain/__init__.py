"""
Pure domain layer.

Records, change sets, the rule-merge engine and date expansion, with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from availability_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from availability_kernel.domain.expansion import (
    available_dates,
    is_date_available,
    iter_days,
    weekdays_between,
)
from availability_kernel.domain.merge import (
    Conflict,
    ConflictSeverity,
    MergeResult,
    PreviewDiff,
    RuleMergeEngine,
)
from availability_kernel.domain.normalize import normalize_change_set, parse_date
from availability_kernel.domain.records import (
    AvailabilityRecord,
    ChangeSet,
    MergeRule,
    Weekday,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Records
    "AvailabilityRecord",
    "ChangeSet",
    "MergeRule",
    "Weekday",
    # Merge
    "Conflict",
    "ConflictSeverity",
    "MergeResult",
    "PreviewDiff",
    "RuleMergeEngine",
    # Expansion
    "available_dates",
    "is_date_available",
    "iter_days",
    "weekdays_between",
    # Input
    "normalize_change_set",
    "parse_date",
]
