"""Slot generation for a single date."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from medbook.modules.schedule.domain import DayPlan, ScheduleSnapshot, TimeRange, format_time_of_day


@dataclass(frozen=True, order=True)
class Slot:
    """A candidate start time of fixed length, not yet bound to a booking."""

    start: int
    end: int

    @property
    def label(self) -> str:
        return format_time_of_day(self.start)

    def as_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


def generate_slots(
    plan: DayPlan,
    slot_duration: int,
    buffer: int = 0,
    max_slots: int | None = None,
) -> list[Slot]:
    """Walk each open range in ``slot_duration + buffer`` steps.

    A slot is emitted when it fits before the range end and does not start
    on a blocked time. Output is ascending.
    """
    if slot_duration <= 0:
        raise ValueError("slot_duration must be positive")
    if buffer < 0:
        raise ValueError("buffer cannot be negative")

    step = slot_duration + buffer
    slots: list[Slot] = []
    for open_range in plan.ranges:
        cursor = open_range.start
        while cursor + slot_duration <= open_range.end:
            if cursor not in plan.blocked_times:
                slots.append(Slot(cursor, cursor + slot_duration))
            cursor += step

    slots.sort()
    if max_slots is not None:
        # Soft cap: later slots in the day are simply not offered.
        slots = slots[:max_slots]
    return slots


def slots_for_date(snapshot: ScheduleSnapshot, on: date) -> list[Slot]:
    return generate_slots(
        snapshot.day_plan(on),
        snapshot.slot_duration_minutes,
        snapshot.buffer_minutes,
        snapshot.max_slots_per_day,
    )
