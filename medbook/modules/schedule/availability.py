"""Answer whether a provider's declared schedule is open at an instant.

Existing bookings are not consulted here; occupancy is the conflict
detector's concern.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from medbook.modules.schedule.domain import ScheduleSnapshot
from medbook.modules.schedule.slots import Slot


def to_provider_time(instant: datetime, zone: ZoneInfo) -> datetime:
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(zone)


def is_available_at(snapshot: ScheduleSnapshot, instant: datetime, zone: ZoneInfo) -> bool:
    local = to_provider_time(instant, zone)
    minute = local.hour * 60 + local.minute
    return snapshot.day_plan(local.date()).is_open_at(minute)


def slot_instants(on: date, slot: Slot, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """Bind a time-of-day slot to concrete instants on ``on``."""
    hours, minutes = divmod(slot.start, 60)
    start = datetime.combine(on, time(hours, minutes), zone)
    return start, start + timedelta(minutes=slot.end - slot.start)
