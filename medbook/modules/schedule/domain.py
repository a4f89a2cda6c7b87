"""Pure schedule model: weekly pattern, overrides and blocks resolved per date.

Times of day are integer minutes since midnight in the provider's time zone.
Precedence for a date is: all-day block > date override > weekly pattern.
Specific blocked times withdraw the slot that starts exactly at that
time of day; the open ranges themselves are left intact.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from medbook.shared.enums import Weekday

MINUTES_PER_DAY = 24 * 60
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"
_TIME_OF_DAY = re.compile(TIME_OF_DAY_PATTERN)


def parse_time_of_day(value: str) -> int:
    """Convert ``HH:MM`` (24-hour) to minutes since midnight."""
    match = _TIME_OF_DAY.match(value)
    if match is None:
        raise ValueError(f"time must be in HH:MM format (24-hour), got {value!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_time_of_day(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


@dataclass(frozen=True, order=True)
class TimeRange:
    """Half-open ``[start, end)`` window within one day."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if not 0 <= self.start < self.end <= MINUTES_PER_DAY:
            raise ValueError(f"invalid time range {self.start}-{self.end}")

    @classmethod
    def parse(cls, start: str, end: str) -> TimeRange:
        return cls(parse_time_of_day(start), parse_time_of_day(end))

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    def covers(self, other: TimeRange) -> bool:
        return self.start <= other.start and other.end <= self.end

    def label(self) -> str:
        return f"{format_time_of_day(self.start)}-{format_time_of_day(self.end)}"


def normalize_ranges(ranges: Iterable[TimeRange]) -> tuple[TimeRange, ...]:
    """Sort ranges and reject overlaps. Touching ranges are allowed."""
    ordered = tuple(sorted(ranges))
    for previous, current in zip(ordered, ordered[1:]):
        if previous.overlaps(current):
            raise ValueError(f"time ranges {previous.label()} and {current.label()} overlap")
    return ordered


@dataclass(frozen=True)
class DayPattern:
    is_available: bool = False
    ranges: tuple[TimeRange, ...] = ()


@dataclass(frozen=True)
class BlockedInterval:
    on: date
    all_day: bool = True
    times: tuple[int, ...] = ()


@dataclass(frozen=True)
class DateOverride:
    on: date
    ranges: tuple[TimeRange, ...] = ()


@dataclass(frozen=True)
class DayPlan:
    """Resolved inputs for one date, before slot generation."""

    ranges: tuple[TimeRange, ...] = ()
    blocked_times: frozenset[int] = frozenset()
    source: str = "closed"

    def is_open_at(self, minute: int) -> bool:
        if minute in self.blocked_times:
            return False
        return any(window.contains(minute) for window in self.ranges)


CLOSED_DAY = DayPlan()


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Immutable view of a provider's schedule template."""

    weekly: Mapping[Weekday, DayPattern]
    slot_duration_minutes: int = 30
    buffer_minutes: int = 0
    max_slots_per_day: int | None = None
    blocks: tuple[BlockedInterval, ...] = ()
    overrides: tuple[DateOverride, ...] = ()

    def day_plan(self, on: date) -> DayPlan:
        blocks = [block for block in self.blocks if block.on == on]
        if any(block.all_day for block in blocks):
            return DayPlan(source="blocked")

        override = next((item for item in self.overrides if item.on == on), None)
        if override is not None:
            ranges, source = override.ranges, "override"
        else:
            pattern = self.weekly.get(Weekday.from_date(on))
            if pattern is None or not pattern.is_available:
                return CLOSED_DAY
            ranges, source = pattern.ranges, "weekly"

        blocked_times = frozenset(minute for block in blocks for minute in block.times)
        return DayPlan(
            ranges=normalize_ranges(ranges),
            blocked_times=blocked_times,
            source=source,
        )

    def effective_ranges(self, on: date) -> tuple[TimeRange, ...]:
        return self.day_plan(on).ranges
