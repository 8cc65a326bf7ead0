"""
availability_kernel.domain.normalize -- Build a ChangeSet from operator input.

Responsibility:
    Turn the loosely-typed mapping an admin form, CLI file, or API payload
    produces into a typed ``ChangeSet``.  Blank inputs become "absent" so
    that a field the operator left empty never clears existing data.

Architecture position:
    Kernel > Domain -- pure, ZERO I/O.

Failure modes:
    - ``ValidationError(UNKNOWN_FIELD)`` for keys outside the allowed set.
    - ``ValidationError(INVALID_DATE)`` naming the field and the token.
    - ``ValidationError(INVALID_WEEKDAY)`` from ``Weekday.parse``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Mapping

from availability_kernel.domain.records import ChangeSet, MergeRule, Weekday
from availability_kernel.exceptions import ValidationError

# Input key -> ChangeSet field
_FIELD_ALIASES: dict[str, str] = {
    "start_date": "start_date",
    "end_date": "end_date",
    "weekdays": "weekdays",
    "specific": "specific_dates",
    "specific_dates": "specific_dates",
    "exclusions": "exclusion_dates",
    "exclusion_dates": "exclusion_dates",
    "reset": "reset",
}

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")
_TRUTHY = frozenset({"true", "1", "yes", "on"})


def parse_date(value: Any, field: str = "date") -> date:
    """Parse a ``date``, ISO ``YYYY-MM-DD`` or ``DD/MM/YYYY`` value.

    Raises:
        ValidationError: INVALID_DATE if the value is not a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    raise ValidationError(
        MergeRule.INVALID_DATE,
        f"Invalid date in {field}: {value!r} (expected YYYY-MM-DD or DD/MM/YYYY)",
        field=field,
    )


def normalize_change_set(raw: Mapping[str, Any]) -> ChangeSet:
    """Build a ``ChangeSet`` from an operator-supplied mapping.

    Accepted keys are ``start_date``, ``end_date``, ``weekdays``,
    ``specific`` (or ``specific_dates``), ``exclusions`` (or
    ``exclusion_dates``) and ``reset``.
    """
    unknown = sorted(str(k) for k in raw if k not in _FIELD_ALIASES)
    if unknown:
        raise ValidationError(
            MergeRule.UNKNOWN_FIELD,
            "Unknown change set field(s): " + ", ".join(unknown),
            field=unknown[0],
        )

    values: dict[str, Any] = {}
    for key, value in raw.items():
        target = _FIELD_ALIASES[key]
        if target == "reset":
            values["reset"] = _parse_flag(value)
        elif target in ("start_date", "end_date"):
            if not _is_blank(value):
                values[target] = parse_date(value, field=key)
        elif target == "weekdays":
            tokens = _tokens(value)
            if tokens:
                values["weekdays"] = frozenset(Weekday.parse(t) for t in tokens)
        else:
            tokens = _tokens(value)
            if tokens:
                dates = tuple(parse_date(t, field=key) for t in tokens)
                values[target] = values.get(target, ()) + dates

    return ChangeSet(**values)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _tokens(value: Any) -> list[Any]:
    """Split a sequence or comma-separated string into non-blank tokens."""
    if _is_blank(value):
        return []
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = [value]
    return [
        item.strip() if isinstance(item, str) else item
        for item in items
        if not _is_blank(item)
    ]


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int):
        return value != 0
    return str(value).strip().lower() in _TRUTHY
