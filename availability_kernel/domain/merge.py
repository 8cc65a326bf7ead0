"""
RuleMergeEngine -- Combine a partial change set with an existing record.

Responsibility:
    Validate a ``ChangeSet``, merge it into an ``AvailabilityRecord`` under
    the "empty means unchanged" contract, enforce the cross-field rules on
    the result, surface non-fatal conflicts, and diff the concrete
    availability before/after for operator previews.

Architecture position:
    Kernel > Domain -- pure functional core, ZERO I/O.  Called by the
    batch ChunkExecutor (apply) and the BatchOrchestrator (preview,
    pre-flight validation).

Merge semantics:
    - start_date / end_date: replaced only when present in the change.
    - weekdays: when present, REPLACES the existing set entirely.
    - specific_dates / exclusion_dates: when present, UNIONED into the
      existing set (additive, deduplicated, sorted).
    - reset: returns an all-empty record; exclusive with every other field.

Invariants enforced (post-merge, in this order):
    1. specific_excluded_overlap -- no date is both specific and excluded.
    2. start_after_end           -- start <= end when both set.
    3. date_outside_range        -- with both bounds set, every specific or
                                    exclusion date lies inside the range.
    4. no_weekday_in_range       -- with both bounds and weekdays set, at
                                    least one day of the range is selected.

Failure modes:
    - ``ValidationError`` naming the violated rule.  Nothing is partially
      applied: the caller either gets a fully valid record or an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from availability_kernel.domain.expansion import available_dates, weekdays_between
from availability_kernel.domain.records import (
    AvailabilityRecord,
    ChangeSet,
    MergeRule,
    sorted_dates,
)
from availability_kernel.exceptions import ValidationError


class ConflictSeverity(str, Enum):
    """How serious a detected conflict is."""

    WARNING = "warning"  # Merge succeeds, operator should know
    ERROR = "error"  # Merge would be rejected


@dataclass(frozen=True)
class Conflict:
    """A soft issue found while merging (or a rejection, in previews)."""

    rule: str
    severity: ConflictSeverity
    message: str
    dates: tuple[date, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "message": self.message,
            "dates": [d.isoformat() for d in self.dates],
        }


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a successful merge.

    ``changed`` is False when the merged rules equal the existing ones;
    callers use it to skip writes, it is not an error.
    """

    record: AvailabilityRecord
    conflicts: tuple[Conflict, ...] = ()
    changed: bool = True


@dataclass(frozen=True)
class PreviewDiff:
    """Concrete available dates gained, lost, and kept over a window."""

    window_start: date
    window_end: date
    added: tuple[date, ...] = ()
    removed: tuple[date, ...] = ()
    unchanged: tuple[date, ...] = ()

    @property
    def existing_count(self) -> int:
        return len(self.removed) + len(self.unchanged)

    @property
    def new_count(self) -> int:
        return len(self.added) + len(self.unchanged)

    @property
    def summary(self) -> str:
        return (
            f"{self.new_count} dates total: {len(self.added)} added, "
            f"{len(self.removed)} removed, {len(self.unchanged)} unchanged"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "existing_count": self.existing_count,
            "new_count": self.new_count,
            "added": [d.isoformat() for d in self.added],
            "removed": [d.isoformat() for d in self.removed],
            "unchanged": [d.isoformat() for d in self.unchanged],
            "summary": self.summary,
        }


class RuleMergeEngine:
    """Pure merge/validation engine for availability rules.

    Contract:
        - ``validate_change()`` rejects self-contradictory change sets.
        - ``merge()`` returns a fully validated ``MergeResult`` or raises.
        - ``detect_conflicts()`` never raises; it reports instead.
        - ``preview()`` diffs concrete dates using the shared expansion.

    Non-goals:
        - Does NOT parse raw operator input (see ``normalize``).
        - Does NOT read or write any store.
    """

    def validate_change(self, change: ChangeSet) -> None:
        """Reject change sets that contradict themselves.

        Raises:
            ValidationError: RESET_EXCLUSIVE, START_AFTER_END, or
                SPECIFIC_EXCLUDED_OVERLAP.
        """
        if change.reset and change.present_fields():
            raise ValidationError(
                MergeRule.RESET_EXCLUSIVE,
                "Reset cannot be combined with other changes: "
                + ", ".join(change.present_fields()),
            )
        if (
            change.start_date is not None
            and change.end_date is not None
            and change.start_date > change.end_date
        ):
            raise ValidationError(
                MergeRule.START_AFTER_END,
                f"Start date {change.start_date.isoformat()} is after "
                f"end date {change.end_date.isoformat()}",
                dates=(change.start_date, change.end_date),
            )
        if change.specific_dates and change.exclusion_dates:
            both = sorted_dates(
                set(change.specific_dates) & set(change.exclusion_dates)
            )
            if both:
                raise ValidationError(
                    MergeRule.SPECIFIC_EXCLUDED_OVERLAP,
                    "Dates cannot be both specific and excluded: "
                    + _join(both),
                    dates=both,
                )

    def merge(
        self,
        existing: AvailabilityRecord,
        change: ChangeSet,
    ) -> MergeResult:
        """Merge ``change`` into ``existing``.

        Raises:
            ValidationError: If the change set or the merged record breaks
                a rule.  ``existing`` is never partially modified.
        """
        self.validate_change(change)

        if change.reset:
            cleared = existing.cleared()
            return MergeResult(
                record=cleared,
                changed=not existing.same_rules(cleared),
            )

        merged = AvailabilityRecord(
            item_id=existing.item_id,
            start_date=_pick(change.start_date, existing.start_date),
            end_date=_pick(change.end_date, existing.end_date),
            weekdays=(
                change.weekdays
                if change.weekdays is not None
                else existing.weekdays
            ),
            specific_dates=existing.specific_dates + (change.specific_dates or ()),
            exclusion_dates=existing.exclusion_dates + (change.exclusion_dates or ()),
        )

        self._check_rules(merged)

        return MergeResult(
            record=merged,
            conflicts=self._soft_conflicts(existing, change, merged),
            changed=not existing.same_rules(merged),
        )

    def has_effective_change(
        self,
        existing: AvailabilityRecord,
        change: ChangeSet,
    ) -> bool:
        """True if applying ``change`` would alter ``existing``.

        Invalid changes count as effective: they still need to be
        processed (and rejected) rather than silently skipped.
        """
        if change.is_trivial:
            return False
        try:
            return self.merge(existing, change).changed
        except ValidationError:
            return True

    def detect_conflicts(
        self,
        existing: AvailabilityRecord,
        change: ChangeSet,
    ) -> tuple[Conflict, ...]:
        """Report what a merge would complain about, without raising."""
        try:
            return self.merge(existing, change).conflicts
        except ValidationError as exc:
            conflicts = [
                Conflict(
                    rule=exc.rule,
                    severity=ConflictSeverity.ERROR,
                    message=str(exc),
                    dates=exc.dates,
                )
            ]

        specific = set(existing.specific_dates) | set(change.specific_dates or ())
        excluded = set(existing.exclusion_dates) | set(change.exclusion_dates or ())
        overlap = sorted_dates(specific & excluded)
        if overlap:
            conflicts.append(
                Conflict(
                    rule=MergeRule.SPECIFIC_EXCLUDED_OVERLAP,
                    severity=ConflictSeverity.WARNING,
                    message=(
                        f"{len(overlap)} date(s) are both specific and excluded "
                        "(will be treated as excluded)"
                    ),
                    dates=overlap,
                )
            )
        return tuple(conflicts)

    def preview(
        self,
        existing: AvailabilityRecord,
        change: ChangeSet,
        window_start: date,
        window_end: date,
    ) -> PreviewDiff:
        """Diff concrete available dates before and after the merge.

        Raises:
            ValidationError: If the merge is rejected or the window is
                inverted.
        """
        merged = self.merge(existing, change).record
        before = available_dates(existing, window_start, window_end)
        after = available_dates(merged, window_start, window_end)
        before_set = set(before)
        after_set = set(after)
        return PreviewDiff(
            window_start=window_start,
            window_end=window_end,
            added=tuple(d for d in after if d not in before_set),
            removed=tuple(d for d in before if d not in after_set),
            unchanged=tuple(d for d in after if d in before_set),
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _check_rules(self, record: AvailabilityRecord) -> None:
        overlap = sorted_dates(
            set(record.specific_dates) & set(record.exclusion_dates)
        )
        if overlap:
            raise ValidationError(
                MergeRule.SPECIFIC_EXCLUDED_OVERLAP,
                "Dates cannot be both specific and excluded: " + _join(overlap),
                dates=overlap,
            )

        if not record.has_bounds:
            return
        start, end = record.start_date, record.end_date

        if start > end:
            raise ValidationError(
                MergeRule.START_AFTER_END,
                f"Start date {start.isoformat()} is after end date {end.isoformat()}",
                dates=(start, end),
            )

        for label, dates in (
            ("Specific", record.specific_dates),
            ("Exclusion", record.exclusion_dates),
        ):
            outside = tuple(d for d in dates if d < start or d > end)
            if outside:
                raise ValidationError(
                    MergeRule.DATE_OUTSIDE_RANGE,
                    f"{label} date(s) {_join(outside)} outside range "
                    f"{start.isoformat()} to {end.isoformat()}",
                    dates=outside,
                )

        if record.weekdays and not (record.weekdays & weekdays_between(start, end)):
            raise ValidationError(
                MergeRule.NO_WEEKDAY_IN_RANGE,
                "No selected weekdays fall within the date range "
                f"{start.isoformat()} to {end.isoformat()}",
            )

    def _soft_conflicts(
        self,
        existing: AvailabilityRecord,
        change: ChangeSet,
        merged: AvailabilityRecord,
    ) -> tuple[Conflict, ...]:
        # With both bounds set, rule 3 already rejected out-of-range dates;
        # only a single open bound can leave added dates outside it.
        if merged.has_bounds:
            return ()
        conflicts: list[Conflict] = []
        for label, added in (
            ("Exclusion", set(change.exclusion_dates or ()) - set(existing.exclusion_dates)),
            ("Specific", set(change.specific_dates or ()) - set(existing.specific_dates)),
        ):
            for day in sorted(added):
                if merged.start_date is not None and day < merged.start_date:
                    message = (
                        f"{label} {day.isoformat()} is before start date "
                        f"{merged.start_date.isoformat()}"
                    )
                elif merged.end_date is not None and day > merged.end_date:
                    message = (
                        f"{label} {day.isoformat()} is after end date "
                        f"{merged.end_date.isoformat()}"
                    )
                else:
                    continue
                conflicts.append(
                    Conflict(
                        rule=MergeRule.DATE_OUTSIDE_RANGE,
                        severity=ConflictSeverity.WARNING,
                        message=message,
                        dates=(day,),
                    )
                )
        return tuple(conflicts)


def _pick(new: date | None, current: date | None) -> date | None:
    return new if new is not None else current


def _join(dates: tuple[date, ...]) -> str:
    return ", ".join(d.isoformat() for d in dates)
