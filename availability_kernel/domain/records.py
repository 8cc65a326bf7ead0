"""
availability_kernel.domain.records -- Availability record and change set.

Responsibility:
    Frozen value objects for the per-item availability snapshot
    (``AvailabilityRecord``) and the operator's partial update
    (``ChangeSet``), plus the ``Weekday`` enum and the ``MergeRule`` names
    used to report validation failures.

Architecture position:
    Kernel > Domain -- pure, ZERO I/O.  Consumed by the merge engine, the
    batch system, and the store adapters (via ``to_dict`` / ``from_dict``).

Invariants enforced:
    - Date collections are deduplicated and sorted chronologically on
      construction, so two records with the same rules compare equal.
    - ``ChangeSet`` represents "leave unchanged" as ``None``; empty
      collections are normalized to ``None`` on construction.

Failure modes:
    - ``ValidationError(INVALID_WEEKDAY)`` from ``Weekday.parse``.
    - ``KeyError`` / ``ValueError`` from ``from_dict`` on malformed payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from typing import Any, Iterable

from availability_kernel.exceptions import ValidationError

_WEEKDAY_NAMES = (
    "sunday",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
)


class MergeRule:
    """Machine-readable names of the rules a change can violate."""

    RESET_EXCLUSIVE = "reset_exclusive"
    SPECIFIC_EXCLUDED_OVERLAP = "specific_excluded_overlap"
    START_AFTER_END = "start_after_end"
    DATE_OUTSIDE_RANGE = "date_outside_range"
    NO_WEEKDAY_IN_RANGE = "no_weekday_in_range"
    UNKNOWN_FIELD = "unknown_field"
    INVALID_DATE = "invalid_date"
    INVALID_WEEKDAY = "invalid_weekday"
    INVALID_WINDOW = "invalid_window"


class Weekday(IntEnum):
    """Day of week, numbered from Sunday = 0."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, day: date) -> Weekday:
        return cls(day.isoweekday() % 7)

    @classmethod
    def parse(cls, token: Any) -> Weekday:
        """Resolve an int, numeric string, or English day name to a Weekday.

        Raises:
            ValidationError: If the token does not name a day.
        """
        if isinstance(token, Weekday):
            return token
        if isinstance(token, int) and not isinstance(token, bool):
            if 0 <= token <= 6:
                return cls(token)
        elif isinstance(token, str):
            text = token.strip().lower()
            if text.isdigit() and 0 <= int(text) <= 6:
                return cls(int(text))
            for index, name in enumerate(_WEEKDAY_NAMES):
                if text == name or (len(text) == 3 and name.startswith(text)):
                    return cls(index)
        raise ValidationError(
            MergeRule.INVALID_WEEKDAY,
            f"Invalid weekday: {token!r} (must be 0-6 or a day name)",
            field="weekdays",
        )

    @property
    def display_name(self) -> str:
        return _WEEKDAY_NAMES[self.value].capitalize()


def sorted_dates(dates: Iterable[date]) -> tuple[date, ...]:
    """Deduplicate and sort dates chronologically."""
    return tuple(sorted(set(dates)))


@dataclass(frozen=True)
class AvailabilityRecord:
    """Immutable availability snapshot for one catalog item.

    Only ``RuleMergeEngine.merge`` produces new records from operator
    input; nothing assigns fields from external data directly.
    """

    item_id: str
    start_date: date | None = None
    end_date: date | None = None
    weekdays: frozenset[Weekday] = field(default_factory=frozenset)
    specific_dates: tuple[date, ...] = ()
    exclusion_dates: tuple[date, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "weekdays", frozenset(Weekday(d) for d in self.weekdays),
        )
        object.__setattr__(self, "specific_dates", sorted_dates(self.specific_dates))
        object.__setattr__(self, "exclusion_dates", sorted_dates(self.exclusion_dates))

    @property
    def is_empty(self) -> bool:
        return (
            self.start_date is None
            and self.end_date is None
            and not self.weekdays
            and not self.specific_dates
            and not self.exclusion_dates
        )

    @property
    def has_bounds(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def cleared(self) -> AvailabilityRecord:
        """Return an all-empty record for the same item (explicit reset)."""
        return AvailabilityRecord(item_id=self.item_id)

    def same_rules(self, other: AvailabilityRecord) -> bool:
        """True if both records carry identical rules, ignoring item id."""
        return self._rules() == other._rules()

    def _rules(self) -> tuple[Any, ...]:
        return (
            self.start_date,
            self.end_date,
            self.weekdays,
            self.specific_dates,
            self.exclusion_dates,
        )

    def summary(self) -> str:
        """Human-readable one-liner, e.g. for previews and audit logs."""
        parts: list[str] = []
        if self.has_bounds:
            parts.append(f"{self.start_date.isoformat()} to {self.end_date.isoformat()}")
        elif self.start_date is not None:
            parts.append(f"from {self.start_date.isoformat()}")
        elif self.end_date is not None:
            parts.append(f"until {self.end_date.isoformat()}")
        if self.weekdays:
            names = ", ".join(d.display_name for d in sorted(self.weekdays))
            parts.append(f"Days: {names}")
        if self.exclusion_dates:
            parts.append(
                "Excludes: " + ", ".join(d.isoformat() for d in self.exclusion_dates)
            )
        if self.specific_dates:
            parts.append(
                "Specific: " + ", ".join(d.isoformat() for d in self.specific_dates)
            )
        return "; ".join(parts) if parts else "No availability rules"

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "weekdays": sorted(int(d) for d in self.weekdays),
            "specific_dates": [d.isoformat() for d in self.specific_dates],
            "exclusion_dates": [d.isoformat() for d in self.exclusion_dates],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AvailabilityRecord:
        return cls(
            item_id=str(data["item_id"]),
            start_date=_from_iso(data.get("start_date")),
            end_date=_from_iso(data.get("end_date")),
            weekdays=frozenset(Weekday(int(d)) for d in data.get("weekdays") or ()),
            specific_dates=tuple(
                date.fromisoformat(d) for d in data.get("specific_dates") or ()
            ),
            exclusion_dates=tuple(
                date.fromisoformat(d) for d in data.get("exclusion_dates") or ()
            ),
        )


@dataclass(frozen=True)
class ChangeSet:
    """Operator's partial update, shared by every item of a batch.

    ``None`` means "leave unchanged", never "clear".  ``reset`` clears
    everything and must not be combined with any other field.
    """

    start_date: date | None = None
    end_date: date | None = None
    weekdays: frozenset[Weekday] | None = None
    specific_dates: tuple[date, ...] | None = None
    exclusion_dates: tuple[date, ...] | None = None
    reset: bool = False

    def __post_init__(self) -> None:
        if self.weekdays is not None:
            weekdays = frozenset(Weekday(d) for d in self.weekdays)
            object.__setattr__(self, "weekdays", weekdays or None)
        for name in ("specific_dates", "exclusion_dates"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, sorted_dates(value) or None)

    @property
    def is_trivial(self) -> bool:
        return not self.reset and not self.present_fields()

    def present_fields(self) -> tuple[str, ...]:
        """Names of the rule fields this change set would touch."""
        names = (
            "start_date",
            "end_date",
            "weekdays",
            "specific_dates",
            "exclusion_dates",
        )
        return tuple(n for n in names if getattr(self, n) is not None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "weekdays": (
                sorted(int(d) for d in self.weekdays)
                if self.weekdays is not None
                else None
            ),
            "specific_dates": _iso_list(self.specific_dates),
            "exclusion_dates": _iso_list(self.exclusion_dates),
            "reset": self.reset,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeSet:
        weekdays = data.get("weekdays")
        specific = data.get("specific_dates")
        exclusions = data.get("exclusion_dates")
        return cls(
            start_date=_from_iso(data.get("start_date")),
            end_date=_from_iso(data.get("end_date")),
            weekdays=(
                frozenset(Weekday(int(d)) for d in weekdays)
                if weekdays is not None
                else None
            ),
            specific_dates=(
                tuple(date.fromisoformat(d) for d in specific)
                if specific is not None
                else None
            ),
            exclusion_dates=(
                tuple(date.fromisoformat(d) for d in exclusions)
                if exclusions is not None
                else None
            ),
            reset=bool(data.get("reset", False)),
        )


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _iso_list(values: tuple[date, ...] | None) -> list[str] | None:
    if values is None:
        return None
    return [d.isoformat() for d in values]


def _from_iso(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None
