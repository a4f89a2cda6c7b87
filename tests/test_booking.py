import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from medbook.core.config import settings
from medbook.core.database import versioned_write
from medbook.core.exceptions import (
    ConcurrencyConflict,
    InvalidRequest,
    NotFound,
    ScheduleUnavailable,
    SlotConflict,
)
from medbook.core.locks import LocalProviderLocks
from medbook.modules.appointments.booking import BookingOrchestrator, BookingRequest
from medbook.modules.appointments.models import Appointment
from medbook.modules.directory.models import Patient, Provider
from medbook.modules.directory.service import get_provider, record_booking
from medbook.modules.events.models import OutboxEvent
from medbook.modules.schedule.schemas import BlockCreate
from medbook.modules.schedule.service import ScheduleService
from medbook.shared.enums import AppointmentStatus, ConsultationKind, EventType
from medbook.shared.ulid import generate_ulid

MONDAY_9 = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
JUNE_MONDAY_10 = datetime(2030, 6, 3, 10, 0, tzinfo=timezone.utc)
REASON = "Recurring migraines for two weeks"


def request_for(provider, patient, start, **extra) -> BookingRequest:
    params = {
        "patient_id": patient.patient_id,
        "provider_id": provider.provider_id,
        "scheduled_at": start,
        "consultation_kind": ConsultationKind.VIDEO,
        "reason_for_visit": REASON,
    }
    params.update(extra)
    return BookingRequest(**params)


@pytest.mark.asyncio
async def test_book_creates_pending_appointment_with_fee_and_counters(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    appointment = await orchestrator.book(request_for(provider, patient, MONDAY_9))

    assert appointment.status is AppointmentStatus.PENDING
    assert appointment.duration_minutes == 30
    assert appointment.ends_at == MONDAY_9 + timedelta(minutes=30)
    assert appointment.fee == Decimal("60.00")
    assert appointment.version == 1

    refreshed = await get_provider(db_session, provider.provider_id, refresh=True)
    assert refreshed.total_appointments == 1
    patient_row = (
        await db_session.execute(
            select(Patient).where(Patient.patient_id == patient.patient_id).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert patient_row.total_appointments == 1

    events = (await db_session.execute(select(OutboxEvent))).scalars().all()
    assert [event.event_type for event in events] == [EventType.BOOKED]
    assert events[0].payload["fee"] == "60.00"
    assert events[0].dispatched_at is None


@pytest.mark.asyncio
async def test_booking_over_existing_appointment_is_a_slot_conflict(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    other = await seed.patient("Alan Turing")
    await seed.appointment(provider, other, JUNE_MONDAY_10 - timedelta(minutes=15))

    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())
    with pytest.raises(SlotConflict):
        await orchestrator.book(request_for(provider, patient, JUNE_MONDAY_10))


@pytest.mark.asyncio
async def test_adjacent_and_terminal_appointments_do_not_block(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    await seed.appointment(provider, patient, JUNE_MONDAY_10 - timedelta(minutes=30))
    await seed.appointment(provider, patient, JUNE_MONDAY_10, status=AppointmentStatus.CANCELLED)

    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())
    appointment = await orchestrator.book(request_for(provider, patient, JUNE_MONDAY_10))
    assert appointment.scheduled_at == JUNE_MONDAY_10


@pytest.mark.asyncio
async def test_closed_schedule_is_unavailable(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    for start in (MONDAY_9.replace(hour=12, minute=30), MONDAY_9 + timedelta(days=5)):
        with pytest.raises(ScheduleUnavailable):
            await orchestrator.book(request_for(provider, patient, start))


@pytest.mark.asyncio
async def test_blocked_time_is_unavailable(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    await ScheduleService(db_session).add_block(
        provider.provider_id,
        BlockCreate(block_date=MONDAY_9.date(), all_day=False, blocked_times=["10:00"]),
    )
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    with pytest.raises(ScheduleUnavailable):
        await orchestrator.book(request_for(provider, patient, MONDAY_9.replace(hour=10)))
    booked = await orchestrator.book(request_for(provider, patient, MONDAY_9.replace(hour=10, minute=30)))
    assert booked.scheduled_at.hour == 10


@pytest.mark.asyncio
async def test_provider_time_zone_is_respected(db_session, seed):
    provider = await seed.provider(timezone="Asia/Tokyo")
    patient = await seed.patient()
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    # 09:00 UTC is 18:00 in Tokyo: closed.
    with pytest.raises(ScheduleUnavailable):
        await orchestrator.book(request_for(provider, patient, MONDAY_9))
    # 00:00 UTC is 09:00 in Tokyo.
    appointment = await orchestrator.book(request_for(provider, patient, MONDAY_9.replace(hour=0)))
    assert appointment.scheduled_at == MONDAY_9.replace(hour=0)


@pytest.mark.asyncio
async def test_request_validation_happens_before_lookups(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    with pytest.raises(InvalidRequest):
        await orchestrator.book(request_for(provider, patient, datetime(2030, 1, 7, 9, 0)))
    with pytest.raises(InvalidRequest):
        await orchestrator.book(request_for(provider, patient, datetime.now(tz=timezone.utc) - timedelta(hours=1)))
    with pytest.raises(InvalidRequest):
        await orchestrator.book(request_for(provider, patient, MONDAY_9, reason_for_visit="ouch"))
    with pytest.raises(InvalidRequest):
        await orchestrator.book(request_for(provider, patient, MONDAY_9, duration_minutes=150))


@pytest.mark.asyncio
async def test_provider_must_be_verified_and_offer_the_kind(db_session, seed):
    patient = await seed.patient()
    unverified = await seed.provider(verified=False)
    in_person_only = await seed.provider(kinds=("in_person",))
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    with pytest.raises(InvalidRequest, match="not accepting"):
        await orchestrator.book(request_for(unverified, patient, MONDAY_9))
    with pytest.raises(InvalidRequest, match="video"):
        await orchestrator.book(request_for(in_person_only, patient, MONDAY_9))


@pytest.mark.asyncio
async def test_unknown_parties_and_missing_schedule(db_session, seed):
    provider = await seed.provider()
    bare = await seed.provider(default_schedule=False)
    patient = await seed.patient()
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    with pytest.raises(NotFound):
        await orchestrator.book(request_for(provider, patient, MONDAY_9, patient_id=generate_ulid()))
    with pytest.raises(ScheduleUnavailable, match="schedule"):
        await orchestrator.book(request_for(bare, patient, MONDAY_9))


@pytest.mark.asyncio
async def test_follow_up_must_reference_the_patients_own_appointment(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    other = await seed.patient("Alan Turing")
    first = await seed.appointment(provider, patient, MONDAY_9 - timedelta(days=7), status=AppointmentStatus.COMPLETED)
    orchestrator = BookingOrchestrator(db_session, LocalProviderLocks())

    with pytest.raises(InvalidRequest):
        await orchestrator.book(request_for(provider, other, MONDAY_9, previous_appointment_id=first.appointment_id))
    follow_up = await orchestrator.book(
        request_for(provider, patient, MONDAY_9, previous_appointment_id=first.appointment_id)
    )
    assert follow_up.is_follow_up is True


class AlwaysBusyLocks:
    def __init__(self):
        self.calls = 0

    @asynccontextmanager
    async def hold(self, provider_id):
        self.calls += 1
        raise ConcurrencyConflict()
        yield  # pragma: no cover


@pytest.mark.asyncio
async def test_retries_are_bounded_then_reported_as_slot_conflict(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    locks = AlwaysBusyLocks()
    orchestrator = BookingOrchestrator(db_session, locks)

    with pytest.raises(SlotConflict):
        await orchestrator.book(request_for(provider, patient, MONDAY_9))
    assert locks.calls == settings.booking_retry_attempts
    assert (await db_session.execute(select(Appointment))).scalars().all() == []


@pytest.mark.asyncio
async def test_stale_provider_version_surfaces_as_concurrency_conflict(session_factory, make_seeder):
    async with session_factory() as setup:
        provider = await make_seeder(setup).provider(default_schedule=False)

    async with session_factory() as first, session_factory() as second:
        stale = await get_provider(first, provider.provider_id)
        winner = await get_provider(second, provider.provider_id)
        async with versioned_write(second):
            record_booking(winner)

        with pytest.raises(ConcurrencyConflict):
            async with versioned_write(first):
                record_booking(stale)

    async with session_factory() as check:
        row = await get_provider(check, provider.provider_id)
        assert row.total_appointments == 1
        assert row.version == 2


@pytest.mark.asyncio
async def test_parallel_bookings_for_one_slot_yield_exactly_one_appointment(session_factory, make_seeder):
    async with session_factory() as setup:
        seeder = make_seeder(setup)
        provider = await seeder.provider()
        patients = [await seeder.patient(f"Patient {index}") for index in range(8)]

    locks = LocalProviderLocks()

    async def attempt(patient):
        async with session_factory() as session:
            orchestrator = BookingOrchestrator(session, locks)
            try:
                return await orchestrator.book(request_for(provider, patient, MONDAY_9))
            except SlotConflict as exc:
                return exc

    results = await asyncio.gather(*(attempt(patient) for patient in patients))

    booked = [item for item in results if isinstance(item, Appointment)]
    conflicts = [item for item in results if isinstance(item, SlotConflict)]
    assert len(booked) == 1
    assert len(conflicts) == 7

    async with session_factory() as check:
        rows = (await check.execute(select(Appointment))).scalars().all()
        assert len(rows) == 1
        stored = (await check.execute(select(Provider))).scalar_one()
        assert stored.total_appointments == 1


@pytest.mark.asyncio
async def test_slot_query_is_repeatable_without_writes(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    schedule = ScheduleService(db_session)
    await schedule.add_block(
        provider.provider_id,
        BlockCreate(block_date=MONDAY_9.date(), all_day=False, blocked_times=["11:00"]),
    )
    await BookingOrchestrator(db_session, LocalProviderLocks()).book(request_for(provider, patient, MONDAY_9))

    first = await schedule.get_available_slots(provider.provider_id, MONDAY_9.date())
    second = await schedule.get_available_slots(provider.provider_id, MONDAY_9.date())

    assert first == second
    assert first.available_slots == first.total_slots - 1
    assert "11:00" not in [slot.time for slot in first.slots]
