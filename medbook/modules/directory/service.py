"""Lookups and counters for providers and patients."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from medbook.core.exceptions import NotFound
from medbook.modules.directory.models import Patient, Provider


async def get_provider(db: AsyncSession, provider_id: str, *, refresh: bool = False) -> Provider:
    stmt = select(Provider).where(Provider.provider_id == provider_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    provider = (await db.execute(stmt)).scalar_one_or_none()
    if provider is None:
        raise NotFound("Provider not found")
    return provider


async def get_patient(db: AsyncSession, patient_id: str) -> Patient:
    patient = (await db.execute(select(Patient).where(Patient.patient_id == patient_id))).scalar_one_or_none()
    if patient is None:
        raise NotFound("Patient not found")
    return patient


def record_booking(provider: Provider) -> None:
    """Count a booking against the provider.

    This goes through the ORM so the flush carries the version check: a
    booking committed by another process since ``provider`` was read makes
    this write stale.
    """
    provider.total_appointments += 1


def claim_calendar(provider: Provider) -> None:
    """Force a versioned write of the provider row without changing counters.

    Used when a booking moves rather than adds, so a racing writer in
    another process still loses the version check.
    """
    flag_modified(provider, "total_appointments")


async def record_patient_booking(db: AsyncSession, patient_id: str) -> None:
    await db.execute(
        update(Patient)
        .where(Patient.patient_id == patient_id)
        .values(total_appointments=Patient.total_appointments + 1)
    )


async def record_completion(db: AsyncSession, provider_id: str) -> None:
    # Plain UPDATE: the provider version is left untouched.
    await db.execute(
        update(Provider)
        .where(Provider.provider_id == provider_id)
        .values(completed_appointments=Provider.completed_appointments + 1)
        .execution_options(synchronize_session=False)
    )
