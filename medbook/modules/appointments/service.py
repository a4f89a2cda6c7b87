"""Appointment service layer."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.core.config import settings
from medbook.core.database import versioned_write
from medbook.core.exceptions import ConcurrencyConflict, Forbidden, NotFound
from medbook.core.locks import ProviderLocks, get_provider_locks
from medbook.modules.appointments import lifecycle
from medbook.modules.appointments.booking import BookingOrchestrator
from medbook.modules.appointments.lifecycle import AppointmentState, CancellationPolicy, Transition
from medbook.modules.appointments.models import Appointment
from medbook.modules.directory.service import claim_calendar, get_provider, record_completion
from medbook.modules.events.service import enqueue_event
from medbook.shared.actors import Actor
from medbook.shared.enums import ActorRole, AppointmentStatus

logger = logging.getLogger(__name__)

# Roles that drive the clinical side of the lifecycle.
CLINICAL_ROLES = frozenset({ActorRole.PROVIDER, ActorRole.ADMIN})

TransitionFn = Callable[[AppointmentState], Transition]


async def apply_transition(db: AsyncSession, appointment: Appointment, transition: Transition) -> Appointment:
    """Write a transition's changes and events in one versioned commit."""
    changes = transition.changes()
    async with versioned_write(db):
        for field, value in changes.items():
            setattr(appointment, field, value)
        if "scheduled_at" in changes or "duration_minutes" in changes:
            appointment.ends_at = transition.after.ends_at
        for event in transition.events:
            payload = {
                "patient_id": appointment.patient_id,
                "provider_id": appointment.provider_id,
                **event.payload,
            }
            enqueue_event(db, event.event_type, appointment.appointment_id, payload)
        completed = AppointmentStatus.COMPLETED
        if transition.after.status is completed and transition.before.status is not completed:
            await record_completion(db, appointment.provider_id)
    logger.info(
        "Appointment %s: %s -> %s",
        appointment.appointment_id,
        transition.before.status.value,
        transition.after.status.value,
    )
    return appointment


class AppointmentService:
    def __init__(self, db: AsyncSession, locks: ProviderLocks | None = None):
        self.db = db
        self.locks = locks or get_provider_locks()
        self.policy = CancellationPolicy.from_settings()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    async def get(self, appointment_id: str, actor: Actor | None = None, *, refresh: bool = False) -> Appointment:
        stmt = select(Appointment).where(Appointment.appointment_id == appointment_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        appointment = (await self.db.execute(stmt)).scalar_one_or_none()
        if appointment is None:
            raise NotFound("Appointment not found")
        if actor is not None and not actor.is_party_to(appointment.patient_id, appointment.provider_id):
            # Non-parties learn nothing about the appointment.
            raise NotFound("Appointment not found")
        return appointment

    async def list_for_actor(
        self,
        actor: Actor,
        status: AppointmentStatus | None = None,
        upcoming: bool = False,
        limit: int = 20,
        offset: int = 0,
        on: date | None = None,
    ) -> tuple[list[Appointment], int]:
        stmt = select(Appointment)
        if actor.role is ActorRole.PATIENT:
            stmt = stmt.where(Appointment.patient_id == actor.actor_id)
        elif actor.role is ActorRole.PROVIDER:
            stmt = stmt.where(Appointment.provider_id == actor.actor_id)
        if status is not None:
            stmt = stmt.where(Appointment.status == status)
        if upcoming:
            stmt = stmt.where(
                Appointment.scheduled_at >= self._now(),
                Appointment.status.in_([AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]),
            )
        if on is not None:
            # Providers see their own calendar day; everyone else the clinic default.
            zone = ZoneInfo(settings.default_timezone)
            if actor.role is ActorRole.PROVIDER:
                zone = (await get_provider(self.db, actor.actor_id)).zone
            day_start = datetime.combine(on, time.min, tzinfo=zone)
            day_end = datetime.combine(on + timedelta(days=1), time.min, tzinfo=zone)
            stmt = stmt.where(Appointment.scheduled_at >= day_start, Appointment.scheduled_at < day_end)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        order = Appointment.scheduled_at.asc() if upcoming else Appointment.scheduled_at.desc()
        result = await self.db.execute(stmt.order_by(order).limit(limit).offset(offset))
        return list(result.scalars().all()), total

    async def confirm(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._transition(
            appointment_id,
            actor,
            lambda state: lifecycle.confirm(state, actor, self._now()),
            roles=CLINICAL_ROLES,
        )

    async def start(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._transition(
            appointment_id,
            actor,
            lambda state: lifecycle.start_consultation(state, actor, self._now()),
            roles=CLINICAL_ROLES,
        )

    async def complete(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._transition(
            appointment_id,
            actor,
            lambda state: lifecycle.complete(state, actor, self._now()),
            roles=CLINICAL_ROLES,
        )

    async def cancel(self, appointment_id: str, actor: Actor, reason: str) -> Appointment:
        return await self._transition(
            appointment_id,
            actor,
            lambda state: lifecycle.cancel(state, actor, self._now(), reason, self.policy),
        )

    async def mark_no_show(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self._transition(
            appointment_id,
            actor,
            lambda state: lifecycle.mark_no_show(state, actor, self._now()),
            roles=CLINICAL_ROLES,
        )

    async def reschedule(
        self,
        appointment_id: str,
        actor: Actor,
        new_start: datetime,
        duration_minutes: int | None = None,
    ) -> Appointment:
        """Move an active appointment; the new slot is checked like a fresh booking."""
        provider_id = (await self.get(appointment_id, actor)).provider_id
        orchestrator = BookingOrchestrator(self.db, self.locks)

        async def attempt() -> Appointment:
            async with self.locks.hold(provider_id):
                current = await self.get(appointment_id, refresh=True)
                transition = lifecycle.reschedule(
                    AppointmentState.of(current), actor, self._now(), new_start, duration_minutes
                )
                provider = await get_provider(self.db, current.provider_id, refresh=True)
                snapshot = await orchestrator.snapshot_for(provider)
                await orchestrator.ensure_bookable(
                    provider,
                    snapshot,
                    transition.after.scheduled_at,
                    timedelta(minutes=transition.after.duration_minutes),
                    exclude_appointment_id=current.appointment_id,
                )
                claim_calendar(provider)
                return await apply_transition(self.db, current, transition)

        return await self._with_retries(appointment_id, attempt)

    async def _transition(
        self,
        appointment_id: str,
        actor: Actor,
        build: TransitionFn,
        roles: frozenset[ActorRole] | None = None,
    ) -> Appointment:
        if roles is not None and actor.role not in roles:
            raise Forbidden()
        await self.get(appointment_id, actor)

        async def attempt() -> Appointment:
            current = await self.get(appointment_id, refresh=True)
            return await apply_transition(self.db, current, build(AppointmentState.of(current)))

        return await self._with_retries(appointment_id, attempt)

    async def _with_retries(self, appointment_id: str, attempt: Callable[[], Awaitable[Appointment]]) -> Appointment:
        attempts = max(1, settings.booking_retry_attempts)
        for number in range(1, attempts + 1):
            try:
                return await attempt()
            except ConcurrencyConflict:
                if number == attempts:
                    raise
                logger.warning("Stale write on appointment %s, retrying (%s/%s)", appointment_id, number, attempts)
        raise ConcurrencyConflict()  # pragma: no cover
