"""Booking orchestration: validate, check, and create in one critical section."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.core.config import settings
from medbook.core.database import versioned_write
from medbook.core.exceptions import (
    ConcurrencyConflict,
    InvalidRequest,
    NotFound,
    ScheduleUnavailable,
    SlotConflict,
)
from medbook.core.locks import ProviderLocks, get_provider_locks
from medbook.modules.appointments.conflicts import has_conflict
from medbook.modules.appointments.models import Appointment
from medbook.modules.directory.models import Provider
from medbook.modules.directory.service import (
    get_patient,
    get_provider,
    record_booking,
    record_patient_booking,
)
from medbook.modules.events.service import enqueue_event
from medbook.modules.schedule.availability import is_available_at
from medbook.modules.schedule.domain import ScheduleSnapshot
from medbook.modules.schedule.service import ScheduleService
from medbook.shared.enums import AppointmentStatus, ConsultationKind, EventType
from medbook.shared.ulid import generate_ulid

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120
MIN_REASON_LENGTH = 10
MAX_REASON_LENGTH = 500


@dataclass
class BookingRequest:
    patient_id: str
    provider_id: str
    scheduled_at: datetime
    consultation_kind: ConsultationKind
    reason_for_visit: str
    duration_minutes: int | None = None
    is_follow_up: bool = False
    previous_appointment_id: str | None = None


class BookingOrchestrator:
    def __init__(self, db: AsyncSession, locks: ProviderLocks | None = None):
        self.db = db
        self.locks = locks or get_provider_locks()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    async def book(self, request: BookingRequest) -> Appointment:
        """Create a ``pending`` appointment or raise the first failed check.

        The availability check, conflict check and insert run under the
        provider's lock. A lost version race on the provider row is retried
        from scratch; when retries run out the caller sees ``SlotConflict``.
        """
        self._validate_request(request)
        attempts = max(1, settings.booking_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                async with self.locks.hold(request.provider_id):
                    appointment = await self._book_once(request)
            except ConcurrencyConflict:
                logger.warning(
                    "Booking race for provider %s at %s (attempt %s/%s)",
                    request.provider_id,
                    request.scheduled_at.isoformat(),
                    attempt,
                    attempts,
                )
                continue
            logger.info(
                "Booked appointment %s for patient %s with provider %s at %s",
                appointment.appointment_id,
                appointment.patient_id,
                appointment.provider_id,
                appointment.scheduled_at.isoformat(),
            )
            return appointment
        raise SlotConflict()

    def _validate_request(self, request: BookingRequest) -> None:
        if request.scheduled_at.tzinfo is None:
            raise InvalidRequest("scheduled_at must include a time zone offset")
        if request.scheduled_at <= self._now():
            raise InvalidRequest("Appointment time must be in the future")
        reason = (request.reason_for_visit or "").strip()
        if not MIN_REASON_LENGTH <= len(reason) <= MAX_REASON_LENGTH:
            raise InvalidRequest(
                f"reason_for_visit must be between {MIN_REASON_LENGTH} and {MAX_REASON_LENGTH} characters"
            )

    async def _book_once(self, request: BookingRequest) -> Appointment:
        await get_patient(self.db, request.patient_id)
        provider = await get_provider(self.db, request.provider_id, refresh=True)
        if not provider.is_verified:
            raise InvalidRequest("Provider is not accepting appointments")
        if not provider.offers(request.consultation_kind):
            raise InvalidRequest(
                f"Provider does not offer {request.consultation_kind.value} consultations"
            )

        snapshot = await self.snapshot_for(provider)
        duration_minutes = request.duration_minutes or snapshot.slot_duration_minutes
        if not MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES:
            raise InvalidRequest(
                f"duration_minutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}"
            )
        if request.previous_appointment_id:
            await self._ensure_previous(request)

        await self.ensure_bookable(provider, snapshot, request.scheduled_at, timedelta(minutes=duration_minutes))

        appointment = Appointment(
            appointment_id=generate_ulid(),
            patient_id=request.patient_id,
            provider_id=provider.provider_id,
            scheduled_at=request.scheduled_at,
            ends_at=request.scheduled_at + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            consultation_kind=request.consultation_kind,
            status=AppointmentStatus.PENDING,
            fee=provider.fee_for(request.consultation_kind),
            reason_for_visit=request.reason_for_visit.strip(),
            is_follow_up=request.is_follow_up or bool(request.previous_appointment_id),
            previous_appointment_id=request.previous_appointment_id,
        )
        async with versioned_write(self.db):
            self.db.add(appointment)
            record_booking(provider)
            await record_patient_booking(self.db, request.patient_id)
            enqueue_event(
                self.db,
                EventType.BOOKED,
                appointment.appointment_id,
                {
                    "patient_id": appointment.patient_id,
                    "provider_id": appointment.provider_id,
                    "scheduled_at": appointment.scheduled_at.isoformat(),
                    "duration_minutes": duration_minutes,
                    "consultation_kind": appointment.consultation_kind.value,
                    "fee": str(appointment.fee),
                },
                occurred_at=self._now(),
            )
        return appointment

    async def ensure_bookable(
        self,
        provider: Provider,
        snapshot: ScheduleSnapshot,
        start: datetime,
        duration: timedelta,
        exclude_appointment_id: str | None = None,
    ) -> None:
        """Raise unless the schedule is open at ``start`` and nothing overlaps."""
        if not is_available_at(snapshot, start, provider.zone):
            raise ScheduleUnavailable()
        if await has_conflict(self.db, provider.provider_id, start, duration, exclude_appointment_id):
            raise SlotConflict()

    async def snapshot_for(self, provider: Provider) -> ScheduleSnapshot:
        try:
            return await ScheduleService(self.db).get_snapshot(provider.provider_id)
        except NotFound as exc:
            raise ScheduleUnavailable("Provider has not published a schedule") from exc

    async def _ensure_previous(self, request: BookingRequest) -> None:
        stmt = select(Appointment.patient_id).where(Appointment.appointment_id == request.previous_appointment_id)
        owner = (await self.db.execute(stmt)).scalar_one_or_none()
        if owner is None or owner != request.patient_id:
            raise InvalidRequest("previous_appointment_id does not refer to one of the patient's appointments")
