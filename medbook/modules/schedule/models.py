"""Schedule ORM models."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medbook.core.database import Base
from medbook.modules.schedule.domain import (
    BlockedInterval,
    DateOverride,
    DayPattern,
    ScheduleSnapshot,
    TimeRange,
    parse_time_of_day,
)
from medbook.shared.enums import BlockReason, Weekday, enum_values
from medbook.shared.models import TimestampMixin
from medbook.shared.ulid import generate_ulid

WEEKDAY_VALUES = ", ".join(f"'{value}'" for value in enum_values(Weekday))

if TYPE_CHECKING:  # pragma: no cover
    from medbook.modules.directory.models import Provider


def _ranges_from_json(items: list[dict[str, str]] | None) -> tuple[TimeRange, ...]:
    return tuple(TimeRange.parse(item["start"], item["end"]) for item in items or [])


class ScheduleTemplate(Base, TimestampMixin):
    __tablename__ = "schedule_templates"
    __table_args__ = (
        CheckConstraint(
            "slot_duration_minutes BETWEEN 15 AND 120 AND slot_duration_minutes % 15 = 0",
            name="ck_schedule_templates_slot_duration",
        ),
        CheckConstraint("buffer_minutes BETWEEN 0 AND 60", name="ck_schedule_templates_buffer"),
        CheckConstraint("max_slots_per_day BETWEEN 1 AND 50", name="ck_schedule_templates_max_slots"),
    )

    template_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    provider_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("providers.provider_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    slot_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    buffer_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_slots_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=20)

    provider: Mapped[Provider] = relationship(back_populates="schedule")
    weekly_hours: Mapped[list[WeeklyHours]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="WeeklyHours.day_of_week",
    )
    blocks: Mapped[list[ScheduleBlock]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ScheduleBlock.block_date",
    )
    overrides: Mapped[list[ScheduleOverride]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ScheduleOverride.override_date",
    )

    def to_snapshot(self) -> ScheduleSnapshot:
        """Freeze the loaded rows into the pure schedule model."""
        weekly = {
            Weekday(row.day_of_week): DayPattern(
                is_available=row.is_available,
                ranges=_ranges_from_json(row.time_ranges),
            )
            for row in self.weekly_hours
        }
        blocks = tuple(
            BlockedInterval(
                on=row.block_date,
                all_day=row.all_day,
                times=tuple(parse_time_of_day(value) for value in row.blocked_times or []),
            )
            for row in self.blocks
        )
        overrides = tuple(
            DateOverride(on=row.override_date, ranges=_ranges_from_json(row.time_ranges)) for row in self.overrides
        )
        return ScheduleSnapshot(
            weekly=weekly,
            slot_duration_minutes=self.slot_duration_minutes,
            buffer_minutes=self.buffer_minutes,
            max_slots_per_day=self.max_slots_per_day,
            blocks=blocks,
            overrides=overrides,
        )


class WeeklyHours(Base, TimestampMixin):
    __tablename__ = "weekly_hours"
    __table_args__ = (
        UniqueConstraint("template_id", "day_of_week", name="uq_weekly_hours_day"),
        CheckConstraint(
            f"day_of_week IN ({WEEKDAY_VALUES})",
            name="ck_weekly_hours_weekday",
        ),
    )

    weekly_hours_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    template_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[str] = mapped_column(String(16), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # [{"start": "09:00", "end": "12:00"}, ...]
    time_ranges: Mapped[list[dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)

    template: Mapped[ScheduleTemplate] = relationship(back_populates="weekly_hours")


class ScheduleBlock(Base, TimestampMixin):
    __tablename__ = "schedule_blocks"
    __table_args__ = (Index("ix_schedule_blocks_template_date", "template_id", "block_date"),)

    block_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    template_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    block_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[BlockReason] = mapped_column(
        Enum(
            BlockReason,
            values_callable=enum_values,
            validate_strings=True,
            name="blockreason",
        ),
        nullable=False,
        default=BlockReason.PERSONAL,
    )
    all_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # ["10:00", "10:30"] when all_day is false
    blocked_times: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    template: Mapped[ScheduleTemplate] = relationship(back_populates="blocks")


class ScheduleOverride(Base, TimestampMixin):
    __tablename__ = "schedule_overrides"
    __table_args__ = (UniqueConstraint("template_id", "override_date", name="uq_schedule_override_date"),)

    override_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    template_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("schedule_templates.template_id", ondelete="CASCADE"),
        nullable=False,
    )
    override_date: Mapped[date] = mapped_column(Date, nullable=False)
    time_ranges: Mapped[list[dict[str, str]]] = mapped_column(JSON, nullable=False, default=list)

    template: Mapped[ScheduleTemplate] = relationship(back_populates="overrides")
