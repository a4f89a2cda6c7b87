"""Periodic sweeps over appointments that have become due.

Both sweeps select only rows whose state still needs the change, so running
them twice, or from two workers, does not double-apply anything.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.core.config import settings
from medbook.core.exceptions import ConcurrencyConflict, InvalidTransition
from medbook.modules.appointments import lifecycle
from medbook.modules.appointments.lifecycle import AppointmentState
from medbook.modules.appointments.models import Appointment
from medbook.modules.appointments.service import apply_transition
from medbook.shared.actors import Actor
from medbook.shared.enums import ActorRole, AppointmentStatus

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(actor_id="system", role=ActorRole.ADMIN)


async def _fresh(db: AsyncSession, appointment_id: str) -> Appointment | None:
    # A rollback in an earlier iteration expires every loaded row; re-read.
    stmt = (
        select(Appointment)
        .where(Appointment.appointment_id == appointment_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def mark_no_shows(db: AsyncSession, now: datetime, grace: timedelta | None = None) -> int:
    """Flag confirmed appointments nobody started within the grace period."""
    if grace is None:
        grace = timedelta(minutes=settings.no_show_grace_minutes)
    cutoff = now - grace
    stmt = (
        select(Appointment.appointment_id)
        .where(
            Appointment.status == AppointmentStatus.CONFIRMED,
            Appointment.scheduled_at <= cutoff,
        )
        .order_by(Appointment.scheduled_at)
    )
    marked = 0
    for appointment_id in (await db.execute(stmt)).scalars().all():
        appointment = await _fresh(db, appointment_id)
        if appointment is None or appointment.scheduled_at > cutoff:
            continue
        try:
            transition = lifecycle.mark_no_show(AppointmentState.of(appointment), SYSTEM_ACTOR, now)
            await apply_transition(db, appointment, transition)
        except (ConcurrencyConflict, InvalidTransition) as exc:
            # Someone else moved it first; the next sweep sees the new state.
            logger.info("Skipped no-show for %s: %s", appointment_id, exc)
            continue
        marked += 1
    if marked:
        logger.info("Marked %s appointment(s) as no-show", marked)
    return marked


async def send_due_reminders(db: AsyncSession, now: datetime, lead: timedelta | None = None) -> int:
    """Emit one reminder event per active appointment starting within ``lead``."""
    if lead is None:
        lead = timedelta(minutes=settings.reminder_lead_minutes)
    stmt = (
        select(Appointment.appointment_id)
        .where(
            Appointment.status.in_([AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]),
            Appointment.reminder_sent_at.is_(None),
            Appointment.scheduled_at > now,
            Appointment.scheduled_at <= now + lead,
        )
        .order_by(Appointment.scheduled_at)
    )
    sent = 0
    for appointment_id in (await db.execute(stmt)).scalars().all():
        appointment = await _fresh(db, appointment_id)
        if appointment is None or not now < appointment.scheduled_at <= now + lead:
            continue
        try:
            transition = lifecycle.mark_reminder_sent(AppointmentState.of(appointment), now)
            await apply_transition(db, appointment, transition)
        except (ConcurrencyConflict, InvalidTransition) as exc:
            logger.info("Skipped reminder for %s: %s", appointment_id, exc)
            continue
        sent += 1
    if sent:
        logger.info("Queued %s appointment reminder(s)", sent)
    return sent
