from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
import os
import sys

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from medbook.core.database import Base  # noqa: E402
from medbook.modules.appointments.models import Appointment  # noqa: E402
from medbook.modules.directory.models import Patient, Provider  # noqa: E402
from medbook.modules.events.models import OutboxEvent  # noqa: E402,F401
from medbook.modules.schedule.service import ScheduleService  # noqa: E402
from medbook.shared.enums import AppointmentStatus, ConsultationKind  # noqa: E402
from medbook.shared.ulid import generate_ulid  # noqa: E402


class Seeder:
    """Create directory rows and schedules the way the profile service would."""

    def __init__(self, session):
        self.session = session

    async def provider(
        self,
        *,
        timezone: str = "UTC",
        kinds: tuple[str, ...] = ("in_person", "video", "chat"),
        verified: bool = True,
        default_schedule: bool = True,
    ) -> Provider:
        provider = Provider(
            provider_id=generate_ulid(),
            display_name="Dr. Ada Byron",
            timezone=timezone,
            consultation_kinds=list(kinds),
            fee_in_person=Decimal("80.00"),
            fee_video=Decimal("60.00"),
            fee_chat=Decimal("25.00"),
            is_verified=verified,
        )
        self.session.add(provider)
        await self.session.commit()
        if default_schedule:
            await ScheduleService(self.session).create_default_template(provider.provider_id)
        return provider

    async def patient(self, name: str = "Grace Hopper") -> Patient:
        patient = Patient(patient_id=generate_ulid(), full_name=name)
        self.session.add(patient)
        await self.session.commit()
        return patient

    async def appointment(
        self,
        provider: Provider,
        patient: Patient,
        start: datetime,
        *,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        duration: int = 30,
        kind: ConsultationKind = ConsultationKind.IN_PERSON,
    ) -> Appointment:
        """Insert a row directly, bypassing booking rules (e.g. in the past)."""
        appointment = Appointment(
            appointment_id=generate_ulid(),
            patient_id=patient.patient_id,
            provider_id=provider.provider_id,
            scheduled_at=start,
            ends_at=start + timedelta(minutes=duration),
            duration_minutes=duration,
            consultation_kind=kind,
            status=status,
            fee=provider.fee_for(kind),
            reason_for_visit="Seeded for tests",
        )
        self.session.add(appointment)
        await self.session.commit()
        return appointment


@pytest_asyncio.fixture
async def db_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with SessionLocal() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def seed(db_session):
    return Seeder(db_session)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed database so several sessions can run side by side."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def make_seeder():
    return Seeder


@pytest.fixture
def concurrent_bump(session_factory):
    """Wrap ``apply_transition`` so its first write loses to another session.

    Before the first call goes through, a second session bumps the
    appointment's version, which makes that write stale.
    """

    def wrap(apply_transition):
        async def apply(db, appointment, transition):
            apply.calls.append(appointment.appointment_id)
            if len(apply.calls) == 1:
                async with session_factory() as other:
                    await other.execute(
                        update(Appointment)
                        .where(Appointment.appointment_id == appointment.appointment_id)
                        .values(version=Appointment.version + 1)
                    )
                    await other.commit()
            return await apply_transition(db, appointment, transition)

        apply.calls = []
        return apply

    return wrap
