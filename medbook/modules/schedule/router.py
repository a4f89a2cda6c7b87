"""Schedule routes: slot queries and schedule management."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.core.database import get_db
from medbook.core.deps import ensure_manages_provider, ensure_ulid, require_schedule_manager
from medbook.modules.schedule.schemas import (
    BlockCreate,
    BlockPublic,
    DaySlots,
    OverrideCreate,
    OverridePublic,
    ScheduleTemplatePublic,
    ScheduleTemplateUpsert,
)
from medbook.modules.schedule.service import ScheduleService
from medbook.shared.actors import Actor

router = APIRouter(prefix="/api/v1/providers", tags=["schedule"])


def get_service(db: AsyncSession = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db)


def _managed_provider(provider_id: str, actor: Actor) -> str:
    provider_id = ensure_ulid(provider_id, "provider_id")
    ensure_manages_provider(actor, provider_id)
    return provider_id


@router.get("/{provider_id}/slots", response_model=DaySlots)
async def available_slots(
    provider_id: str,
    date_value: date = Query(..., alias="date"),
    service: ScheduleService = Depends(get_service),
) -> DaySlots:
    return await service.get_available_slots(ensure_ulid(provider_id, "provider_id"), date_value)


@router.get("/{provider_id}/schedule", response_model=ScheduleTemplatePublic)
async def get_schedule(
    provider_id: str,
    service: ScheduleService = Depends(get_service),
) -> ScheduleTemplatePublic:
    template = await service.get_template(ensure_ulid(provider_id, "provider_id"))
    return ScheduleTemplatePublic.model_validate(template)


@router.put("/{provider_id}/schedule", response_model=ScheduleTemplatePublic)
async def put_schedule(
    provider_id: str,
    payload: ScheduleTemplateUpsert,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> ScheduleTemplatePublic:
    template = await service.upsert_template(_managed_provider(provider_id, actor), payload)
    return ScheduleTemplatePublic.model_validate(template)


@router.post(
    "/{provider_id}/schedule/default",
    response_model=ScheduleTemplatePublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_default_schedule(
    provider_id: str,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> ScheduleTemplatePublic:
    template = await service.create_default_template(_managed_provider(provider_id, actor))
    return ScheduleTemplatePublic.model_validate(template)


@router.post("/{provider_id}/schedule/blocks", response_model=BlockPublic, status_code=status.HTTP_201_CREATED)
async def create_block(
    provider_id: str,
    payload: BlockCreate,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> BlockPublic:
    block = await service.add_block(_managed_provider(provider_id, actor), payload)
    return BlockPublic.model_validate(block)


@router.delete("/{provider_id}/schedule/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_block(
    provider_id: str,
    block_id: str,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> None:
    await service.remove_block(_managed_provider(provider_id, actor), ensure_ulid(block_id, "block_id"))


@router.post(
    "/{provider_id}/schedule/overrides",
    response_model=OverridePublic,
    status_code=status.HTTP_201_CREATED,
)
async def create_override(
    provider_id: str,
    payload: OverrideCreate,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> OverridePublic:
    override = await service.add_override(_managed_provider(provider_id, actor), payload)
    return OverridePublic.model_validate(override)


@router.delete("/{provider_id}/schedule/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(
    provider_id: str,
    override_id: str,
    actor: Actor = Depends(require_schedule_manager),
    service: ScheduleService = Depends(get_service),
) -> None:
    await service.remove_override(_managed_provider(provider_id, actor), ensure_ulid(override_id, "override_id"))
