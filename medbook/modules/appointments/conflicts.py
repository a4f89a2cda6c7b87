"""Detect overlap between a proposed interval and a provider's bookings."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.modules.appointments.models import Appointment
from medbook.shared.enums import ACTIVE_STATUSES


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap test; touching intervals do not overlap."""
    return start_a < end_b and start_b < end_a


def active_overlap_query(
    provider_id: str,
    start: datetime,
    end: datetime,
    exclude_appointment_id: str | None = None,
):
    stmt = select(Appointment).where(
        Appointment.provider_id == provider_id,
        Appointment.status.in_(sorted(ACTIVE_STATUSES)),
        Appointment.scheduled_at < end,
        Appointment.ends_at > start,
    )
    if exclude_appointment_id:
        stmt = stmt.where(Appointment.appointment_id != exclude_appointment_id)
    return stmt


async def find_conflicts(
    db: AsyncSession,
    provider_id: str,
    start: datetime,
    duration: timedelta,
    exclude_appointment_id: str | None = None,
) -> list[Appointment]:
    if start.tzinfo is None:
        raise ValueError("start must be timezone-aware")
    stmt = active_overlap_query(provider_id, start, start + duration, exclude_appointment_id).order_by(
        Appointment.scheduled_at
    )
    return list((await db.execute(stmt)).scalars().all())


async def has_conflict(
    db: AsyncSession,
    provider_id: str,
    start: datetime,
    duration: timedelta,
    exclude_appointment_id: str | None = None,
) -> bool:
    return bool(await find_conflicts(db, provider_id, start, duration, exclude_appointment_id))
