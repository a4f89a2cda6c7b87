"""Schedule schemas."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from medbook.modules.schedule.domain import (
    TIME_OF_DAY_PATTERN,
    TimeRange,
    normalize_ranges,
    parse_time_of_day,
)
from medbook.shared.enums import BlockReason, Weekday


class TimeRangeIn(BaseModel):
    start: str = Field(pattern=TIME_OF_DAY_PATTERN)
    end: str = Field(pattern=TIME_OF_DAY_PATTERN)

    @model_validator(mode="after")
    def validate_order(self) -> "TimeRangeIn":
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self

    def to_range(self) -> TimeRange:
        return TimeRange.parse(self.start, self.end)


def _ensure_disjoint(ranges: list[TimeRangeIn]) -> list[TimeRangeIn]:
    # normalize_ranges raises ValueError, which pydantic reports as a field error.
    normalize_ranges(item.to_range() for item in ranges)
    return sorted(ranges, key=lambda item: item.start)


class WeeklyDayIn(BaseModel):
    day_of_week: Weekday
    is_available: bool = True
    time_ranges: list[TimeRangeIn] = Field(default_factory=list)

    @field_validator("time_ranges")
    @classmethod
    def validate_ranges(cls, value: list[TimeRangeIn]) -> list[TimeRangeIn]:
        return _ensure_disjoint(value)

    @model_validator(mode="after")
    def require_ranges_when_open(self) -> "WeeklyDayIn":
        if self.is_available and not self.time_ranges:
            raise ValueError(f"{self.day_of_week.value} is available but has no time ranges")
        return self


class ScheduleTemplateUpsert(BaseModel):
    slot_duration_minutes: int = Field(30, ge=15, le=120, multiple_of=15)
    buffer_minutes: int = Field(0, ge=0, le=60)
    max_slots_per_day: int = Field(20, ge=1, le=50)
    weekly_hours: list[WeeklyDayIn] = Field(default_factory=list)

    @field_validator("weekly_hours")
    @classmethod
    def validate_unique_days(cls, value: list[WeeklyDayIn]) -> list[WeeklyDayIn]:
        days = [item.day_of_week for item in value]
        if len(days) != len(set(days)):
            raise ValueError("each weekday may appear only once")
        return value


class BlockCreate(BaseModel):
    block_date: date
    all_day: bool = True
    blocked_times: list[str] = Field(default_factory=list)
    reason: BlockReason = BlockReason.PERSONAL

    @field_validator("blocked_times")
    @classmethod
    def validate_times(cls, value: list[str]) -> list[str]:
        for item in value:
            parse_time_of_day(item)
        return sorted(set(value))

    @model_validator(mode="after")
    def validate_scope(self) -> "BlockCreate":
        if self.all_day:
            self.blocked_times = []
        elif not self.blocked_times:
            raise ValueError("blocked_times is required when all_day is false")
        return self


class OverrideCreate(BaseModel):
    override_date: date
    time_ranges: list[TimeRangeIn] = Field(min_length=1)

    @field_validator("time_ranges")
    @classmethod
    def validate_ranges(cls, value: list[TimeRangeIn]) -> list[TimeRangeIn]:
        return _ensure_disjoint(value)


class TimeRangePublic(BaseModel):
    start: str
    end: str


class WeeklyHoursPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: Weekday
    is_available: bool
    time_ranges: list[TimeRangePublic]


class BlockPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    block_id: str
    block_date: date
    all_day: bool
    blocked_times: list[str]
    reason: BlockReason


class OverridePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    override_id: str
    override_date: date
    time_ranges: list[TimeRangePublic]


class ScheduleTemplatePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    template_id: str
    provider_id: str
    slot_duration_minutes: int
    buffer_minutes: int
    max_slots_per_day: int
    weekly_hours: list[WeeklyHoursPublic]
    blocks: list[BlockPublic]
    overrides: list[OverridePublic]


class AvailabilitySlot(BaseModel):
    start: datetime
    end: datetime
    time: str
    reason: str | None = None


class DaySlots(BaseModel):
    provider_id: str
    date: date
    timezone: str
    total_slots: int
    available_slots: int
    slots: list[AvailabilitySlot]
