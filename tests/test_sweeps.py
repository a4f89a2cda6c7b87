from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from medbook.modules.appointments.models import Appointment
from medbook.modules.appointments.service import apply_transition
from medbook.modules.appointments.sweeps import mark_no_shows, send_due_reminders
from medbook.modules.events.models import OutboxEvent
from medbook.shared.enums import AppointmentStatus, EventType
from medbook.worker import WorkerSettings, run_sweeps_once, startup, sweep_task

JUNE_MONDAY_10 = datetime(2030, 6, 3, 10, 0, tzinfo=timezone.utc)


async def statuses(db_session):
    stmt = select(Appointment).order_by(Appointment.scheduled_at).execution_options(populate_existing=True)
    return [row.status for row in (await db_session.execute(stmt)).scalars().all()]


async def events_of(db_session, event_type):
    stmt = select(OutboxEvent).where(OutboxEvent.event_type == event_type)
    return (await db_session.execute(stmt)).scalars().all()


@pytest.mark.asyncio
async def test_no_show_sweep_marks_only_overdue_confirmed_appointments(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    await seed.appointment(provider, patient, JUNE_MONDAY_10)
    await seed.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(minutes=10))
    await seed.appointment(provider, patient, JUNE_MONDAY_10, status=AppointmentStatus.PENDING)
    now = JUNE_MONDAY_10 + timedelta(minutes=20)

    assert await mark_no_shows(db_session, now) == 1
    assert await mark_no_shows(db_session, now) == 0

    assert sorted(await statuses(db_session)) == sorted(
        [AppointmentStatus.NO_SHOW, AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED]
    )
    assert len(await events_of(db_session, EventType.NO_SHOW)) == 1


@pytest.mark.asyncio
async def test_no_show_grace_is_configurable(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    await seed.appointment(provider, patient, JUNE_MONDAY_10)

    now = JUNE_MONDAY_10 + timedelta(minutes=5)
    assert await mark_no_shows(db_session, now) == 0
    assert await mark_no_shows(db_session, now, grace=timedelta(minutes=1)) == 1


@pytest.mark.asyncio
async def test_reminders_are_emitted_once_per_appointment(db_session, seed):
    provider = await seed.provider()
    patient = await seed.patient()
    soon = await seed.appointment(provider, patient, JUNE_MONDAY_10, status=AppointmentStatus.PENDING)
    await seed.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(hours=1))
    await seed.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(minutes=10), status=AppointmentStatus.CANCELLED)
    now = JUNE_MONDAY_10 - timedelta(minutes=20)

    assert await send_due_reminders(db_session, now) == 1
    assert await send_due_reminders(db_session, now + timedelta(minutes=5)) == 0

    (event,) = await events_of(db_session, EventType.REMINDER_DUE)
    assert event.appointment_id == soon.appointment_id
    assert event.payload["patient_id"] == patient.patient_id


@pytest.mark.asyncio
async def test_worker_tick_runs_sweeps_and_dispatches(session_factory, make_seeder):
    async with session_factory() as setup:
        seeder = make_seeder(setup)
        provider = await seeder.provider()
        patient = await seeder.patient()
        await seeder.appointment(provider, patient, JUNE_MONDAY_10)
        await seeder.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(hours=1))

    counts = await run_sweeps_once(session_factory, now=JUNE_MONDAY_10 + timedelta(minutes=40))
    assert counts == {"no_shows": 1, "reminders": 1, "dispatched": 2}

    again = await run_sweeps_once(session_factory, now=JUNE_MONDAY_10 + timedelta(minutes=40))
    assert again == {"no_shows": 0, "reminders": 0, "dispatched": 0}

    async with session_factory() as check:
        pending = (await check.execute(select(OutboxEvent).where(OutboxEvent.dispatched_at.is_(None)))).scalars().all()
        assert pending == []


@pytest.mark.asyncio
async def test_no_show_sweep_carries_on_after_a_lost_write(
    session_factory, make_seeder, concurrent_bump, monkeypatch
):
    async with session_factory() as setup:
        seeder = make_seeder(setup)
        provider = await seeder.provider()
        patient = await seeder.patient()
        await seeder.appointment(provider, patient, JUNE_MONDAY_10)
        await seeder.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(minutes=30))

    racing_apply = concurrent_bump(apply_transition)
    monkeypatch.setattr("medbook.modules.appointments.sweeps.apply_transition", racing_apply)
    now = JUNE_MONDAY_10 + timedelta(hours=1)

    async with session_factory() as db:
        assert await mark_no_shows(db, now) == 1
        assert sorted(await statuses(db)) == sorted([AppointmentStatus.CONFIRMED, AppointmentStatus.NO_SHOW])
        # The skipped row is picked up by the next run.
        assert await mark_no_shows(db, now) == 1
        assert await statuses(db) == [AppointmentStatus.NO_SHOW, AppointmentStatus.NO_SHOW]
    assert len(racing_apply.calls) == 3


@pytest.mark.asyncio
async def test_reminder_sweep_carries_on_after_a_lost_write(
    session_factory, make_seeder, concurrent_bump, monkeypatch
):
    async with session_factory() as setup:
        seeder = make_seeder(setup)
        provider = await seeder.provider()
        patient = await seeder.patient()
        await seeder.appointment(provider, patient, JUNE_MONDAY_10)
        await seeder.appointment(provider, patient, JUNE_MONDAY_10 + timedelta(minutes=10))

    racing_apply = concurrent_bump(apply_transition)
    monkeypatch.setattr("medbook.modules.appointments.sweeps.apply_transition", racing_apply)
    now = JUNE_MONDAY_10 - timedelta(minutes=20)

    async with session_factory() as db:
        assert await send_due_reminders(db, now) == 1
        assert await send_due_reminders(db, now) == 1
        assert await send_due_reminders(db, now) == 0
        assert len(await events_of(db, EventType.REMINDER_DUE)) == 2


def test_worker_runs_sweeps_on_a_cron_schedule():
    assert WorkerSettings.functions == [sweep_task]
    assert WorkerSettings.on_startup is startup
    (job,) = WorkerSettings.cron_jobs
    assert job.coroutine is sweep_task
    assert job.run_at_startup is True
    assert job.minute == set(range(60))


@pytest.mark.asyncio
async def test_sweep_task_uses_the_session_factory_from_context(session_factory, make_seeder):
    async with session_factory() as setup:
        seeder = make_seeder(setup)
        provider = await seeder.provider()
        patient = await seeder.patient()
        await seeder.appointment(provider, patient, datetime(2020, 1, 6, 10, 0, tzinfo=timezone.utc))

    ctx = {"session_factory": session_factory}
    await startup(ctx)
    assert ctx["session_factory"] is session_factory

    counts = await sweep_task(ctx)
    assert counts == {"no_shows": 1, "reminders": 0, "dispatched": 1}
