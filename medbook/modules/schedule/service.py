"""Business logic for provider schedules and slot queries."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from medbook.core.exceptions import BusinessLogicError, NotFound
from medbook.modules.appointments.conflicts import active_overlap_query, intervals_overlap
from medbook.modules.appointments.models import Appointment
from medbook.modules.directory.service import get_provider
from medbook.modules.schedule.availability import slot_instants
from medbook.modules.schedule.domain import ScheduleSnapshot
from medbook.modules.schedule.models import ScheduleBlock, ScheduleOverride, ScheduleTemplate, WeeklyHours
from medbook.modules.schedule.schemas import (
    AvailabilitySlot,
    BlockCreate,
    DaySlots,
    OverrideCreate,
    ScheduleTemplateUpsert,
)
from medbook.modules.schedule.slots import slots_for_date
from medbook.shared.enums import Weekday

logger = logging.getLogger(__name__)

UNAVAILABLE_REASON_BOOKED = "booked"

DEFAULT_WEEKDAY_RANGES = [{"start": "09:00", "end": "12:00"}, {"start": "14:00", "end": "17:00"}]
WORKING_DAYS = {Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY}


class ScheduleService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_template(self, provider_id: str) -> ScheduleTemplate:
        stmt = (
            select(ScheduleTemplate)
            .options(
                selectinload(ScheduleTemplate.weekly_hours),
                selectinload(ScheduleTemplate.blocks),
                selectinload(ScheduleTemplate.overrides),
            )
            .where(ScheduleTemplate.provider_id == provider_id)
            .execution_options(populate_existing=True)
        )
        template = (await self.db.execute(stmt)).scalar_one_or_none()
        if template is None:
            raise NotFound("Schedule not configured for this provider")
        return template

    async def get_snapshot(self, provider_id: str) -> ScheduleSnapshot:
        return (await self.get_template(provider_id)).to_snapshot()

    async def upsert_template(self, provider_id: str, payload: ScheduleTemplateUpsert) -> ScheduleTemplate:
        await get_provider(self.db, provider_id)
        try:
            template = await self.get_template(provider_id)
        except NotFound:
            template = ScheduleTemplate(provider_id=provider_id)
            self.db.add(template)

        template.slot_duration_minutes = payload.slot_duration_minutes
        template.buffer_minutes = payload.buffer_minutes
        template.max_slots_per_day = payload.max_slots_per_day
        # Update rows in place per weekday; the (template, day) pair is unique.
        existing = {row.day_of_week: row for row in template.weekly_hours}
        rows: list[WeeklyHours] = []
        for item in payload.weekly_hours:
            row = existing.get(item.day_of_week.value) or WeeklyHours(day_of_week=item.day_of_week.value)
            row.is_available = item.is_available
            row.time_ranges = [range_in.model_dump() for range_in in item.time_ranges]
            rows.append(row)
        template.weekly_hours = rows
        await self._commit()
        logger.info("Schedule updated for provider %s", provider_id)
        return await self.get_template(provider_id)

    async def create_default_template(self, provider_id: str) -> ScheduleTemplate:
        """Mon-Fri 09:00-12:00 and 14:00-17:00, weekends closed, 30 minute slots."""
        await get_provider(self.db, provider_id)
        existing = await self.db.execute(
            select(ScheduleTemplate.template_id).where(ScheduleTemplate.provider_id == provider_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise BusinessLogicError("Schedule already exists for this provider", status_code=409)

        template = ScheduleTemplate(
            provider_id=provider_id,
            slot_duration_minutes=30,
            buffer_minutes=0,
            max_slots_per_day=20,
            weekly_hours=[
                WeeklyHours(
                    day_of_week=day.value,
                    is_available=day in WORKING_DAYS,
                    time_ranges=list(DEFAULT_WEEKDAY_RANGES) if day in WORKING_DAYS else [],
                )
                for day in Weekday
            ],
        )
        self.db.add(template)
        await self._commit()
        logger.info("Default schedule created for provider %s", provider_id)
        return await self.get_template(provider_id)

    async def add_block(self, provider_id: str, payload: BlockCreate) -> ScheduleBlock:
        template = await self.get_template(provider_id)
        block = ScheduleBlock(template_id=template.template_id, **payload.model_dump())
        self.db.add(block)
        await self._commit()
        logger.info("Blocked %s for provider %s (all_day=%s)", payload.block_date, provider_id, payload.all_day)
        return block

    async def remove_block(self, provider_id: str, block_id: str) -> None:
        template = await self.get_template(provider_id)
        block = next((item for item in template.blocks if item.block_id == block_id), None)
        if block is None:
            raise NotFound("Schedule block not found")
        await self.db.delete(block)
        await self.db.commit()

    async def add_override(self, provider_id: str, payload: OverrideCreate) -> ScheduleOverride:
        template = await self.get_template(provider_id)
        if any(item.override_date == payload.override_date for item in template.overrides):
            raise BusinessLogicError("Override already defined for this date", status_code=409)
        override = ScheduleOverride(
            template_id=template.template_id,
            override_date=payload.override_date,
            time_ranges=[item.model_dump() for item in payload.time_ranges],
        )
        self.db.add(override)
        await self._commit()
        return override

    async def remove_override(self, provider_id: str, override_id: str) -> None:
        template = await self.get_template(provider_id)
        override = next((item for item in template.overrides if item.override_id == override_id), None)
        if override is None:
            raise NotFound("Schedule override not found")
        await self.db.delete(override)
        await self.db.commit()

    async def get_available_slots(self, provider_id: str, on: date) -> DaySlots:
        """Slots for ``on`` in the provider's zone, each flagged if already booked.

        Pure in the sense that matters to callers: repeated calls with no
        intervening writes return the same result.
        """
        provider = await get_provider(self.db, provider_id)
        zone = provider.zone
        snapshot = await self.get_snapshot(provider_id)

        bound = [slot_instants(on, slot, zone) for slot in slots_for_date(snapshot, on)]
        day_start = datetime.combine(on, time.min, zone)
        booked = await self._active_appointments(provider_id, day_start, day_start + timedelta(days=1))

        slots = [
            AvailabilitySlot(
                start=start,
                end=end,
                time=start.strftime("%H:%M"),
                reason=_slot_reason(start, end, booked),
            )
            for start, end in bound
        ]
        return DaySlots(
            provider_id=provider_id,
            date=on,
            timezone=provider.timezone,
            total_slots=len(slots),
            available_slots=sum(1 for slot in slots if slot.reason is None),
            slots=slots,
        )

    async def _active_appointments(self, provider_id: str, start: datetime, end: datetime) -> list[Appointment]:
        result = await self.db.execute(active_overlap_query(provider_id, start, end))
        return list(result.scalars().all())

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise BusinessLogicError("Schedule change conflicts with existing data", status_code=409) from exc


def _slot_reason(start: datetime, end: datetime, booked: list[Appointment]) -> str | None:
    for appointment in booked:
        if intervals_overlap(start, end, appointment.scheduled_at, appointment.ends_at):
            return UNAVAILABLE_REASON_BOOKED
    return None
