"""
availability_kernel.domain.expansion -- Expand rules into concrete dates.

Responsibility:
    The single implementation of "is this item available on this day".
    Used by the merge engine's weekday/range validation, by previews, and
    by anything that lists available dates, so that a preview can never
    disagree with what application produces.

Architecture position:
    Kernel > Domain -- pure, ZERO I/O.

Evaluation order for one day:
    1. Exclusion dates -> unavailable (blacklist overrides everything).
    2. Specific dates  -> available (whitelist, additive to the base rule).
    3. Base rule: inside ``[start_date, end_date]`` (open ends unbounded)
       and on a selected weekday (no weekdays selected = every day).

    A record with no base rule at all (no bounds, no weekdays) but with
    specific dates is available ONLY on those dates; a fully empty record
    is available every day.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterator

from availability_kernel.domain.records import AvailabilityRecord, MergeRule, Weekday
from availability_kernel.exceptions import ValidationError


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def weekdays_between(start: date, end: date) -> frozenset[Weekday]:
    """Weekdays occurring at least once in ``[start, end]``."""
    if end < start:
        return frozenset()
    if (end - start).days >= 6:
        return frozenset(Weekday)
    return frozenset(Weekday.of(day) for day in iter_days(start, end))


def has_base_rule(record: AvailabilityRecord) -> bool:
    return (
        record.start_date is not None
        or record.end_date is not None
        or bool(record.weekdays)
    )


def matches_base_rule(record: AvailabilityRecord, day: date) -> bool:
    if record.start_date is not None and day < record.start_date:
        return False
    if record.end_date is not None and day > record.end_date:
        return False
    if record.weekdays:
        return Weekday.of(day) in record.weekdays
    return True


def is_date_available(record: AvailabilityRecord, day: date) -> bool:
    if day in record.exclusion_dates:
        return False
    if day in record.specific_dates:
        return True
    if record.specific_dates and not has_base_rule(record):
        return False
    return matches_base_rule(record, day)


def available_dates(
    record: AvailabilityRecord,
    window_start: date,
    window_end: date,
) -> tuple[date, ...]:
    """All available days of ``record`` within the inclusive window.

    Raises:
        ValidationError: If the window ends before it starts.
    """
    if window_end < window_start:
        raise ValidationError(
            MergeRule.INVALID_WINDOW,
            f"Preview window end {window_end.isoformat()} is before "
            f"start {window_start.isoformat()}",
        )
    return tuple(
        day
        for day in iter_days(window_start, window_end)
        if is_date_available(record, day)
    )
