"""
ORM models for availability persistence.

Contract:
    CatalogItemModel, AvailabilityRecordModel and CheckpointModel back the
    SQL implementations of ``ItemStore`` and ``CheckpointStore``.
    AvailabilityRecordModel has ``to_dto()`` / ``from_dto()`` round-trip
    methods.

Architecture: availability_batch/models. Imports from availability_kernel.db.base only.

Invariants enforced:
    - ``item_key`` is UNIQUE on catalog items and on availability records
      (one record per item).
    - ``key`` is UNIQUE on checkpoints (last write wins).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from availability_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from availability_kernel.domain.records import AvailabilityRecord


class CatalogItemModel(TrackedBase):
    """A catalog item that can carry availability rules."""

    __tablename__ = "catalog_items"

    item_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AvailabilityRecordModel(TrackedBase):
    """Persistent availability rules for one catalog item."""

    __tablename__ = "availability_records"

    item_key: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("catalog_items.item_key"),
        nullable=False,
        unique=True,
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    weekdays: Mapped[list | None] = mapped_column(JSON, nullable=True)
    specific_dates: Mapped[list | None] = mapped_column(JSON, nullable=True)
    exclusion_dates: Mapped[list | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> AvailabilityRecord:
        from availability_kernel.domain.records import AvailabilityRecord, Weekday

        return AvailabilityRecord(
            item_id=self.item_key,
            start_date=self.start_date,
            end_date=self.end_date,
            weekdays=frozenset(Weekday(int(d)) for d in self.weekdays or ()),
            specific_dates=tuple(
                date.fromisoformat(d) for d in self.specific_dates or ()
            ),
            exclusion_dates=tuple(
                date.fromisoformat(d) for d in self.exclusion_dates or ()
            ),
        )

    def apply_dto(self, dto: AvailabilityRecord) -> None:
        """Overwrite the stored rules with ``dto``'s."""
        data = dto.to_dict()
        self.start_date = dto.start_date
        self.end_date = dto.end_date
        self.weekdays = data["weekdays"]
        self.specific_dates = data["specific_dates"]
        self.exclusion_dates = data["exclusion_dates"]

    @classmethod
    def from_dto(cls, dto: AvailabilityRecord) -> AvailabilityRecordModel:
        model = cls(item_key=dto.item_id)
        model.apply_dto(dto)
        return model


class CheckpointModel(TrackedBase):
    """One key of the checkpoint store (resume state or progress snapshot)."""

    __tablename__ = "batch_checkpoints"

    __table_args__ = (
        Index("ix_batch_checkpoints_expires_at", "expires_at"),
    )

    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
