"""Appointments API routes."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.core.database import get_db
from medbook.core.deps import ensure_ulid, get_current_actor, require_role
from medbook.core.exceptions import InvalidRequest
from medbook.modules.appointments.booking import BookingOrchestrator, BookingRequest
from medbook.modules.appointments.schemas import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentPublic,
    AppointmentReschedule,
)
from medbook.modules.appointments.service import AppointmentService
from medbook.shared.actors import Actor
from medbook.shared.enums import ActorRole, AppointmentStatus
from medbook.shared.schemas import PaginationMeta, ResponseEnvelope

router = APIRouter(prefix="/api/v1/appointments", tags=["appointments"])

require_booker = require_role(ActorRole.PATIENT, ActorRole.ADMIN)


def get_service(db: AsyncSession = Depends(get_db)) -> AppointmentService:
    return AppointmentService(db)


def get_orchestrator(db: AsyncSession = Depends(get_db)) -> BookingOrchestrator:
    return BookingOrchestrator(db)


@router.post("", response_model=AppointmentPublic, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    payload: AppointmentCreate,
    actor: Actor = Depends(require_booker),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> AppointmentPublic:
    if actor.role is ActorRole.PATIENT:
        patient_id = actor.actor_id
    elif payload.patient_id:
        patient_id = ensure_ulid(payload.patient_id, "patient_id")
    else:
        raise InvalidRequest("patient_id is required when booking on behalf of a patient")

    request = BookingRequest(
        patient_id=patient_id,
        provider_id=ensure_ulid(payload.provider_id, "provider_id"),
        scheduled_at=payload.scheduled_at,
        consultation_kind=payload.consultation_kind,
        reason_for_visit=payload.reason_for_visit,
        duration_minutes=payload.duration_minutes,
        is_follow_up=payload.is_follow_up,
        previous_appointment_id=(
            ensure_ulid(payload.previous_appointment_id, "previous_appointment_id")
            if payload.previous_appointment_id
            else None
        ),
    )
    return await orchestrator.book(request)


@router.get("/me", response_model=ResponseEnvelope[list[AppointmentPublic]])
async def my_appointments(
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    upcoming: bool = Query(False),
    on: date | None = Query(None, alias="date"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> ResponseEnvelope[list[AppointmentPublic]]:
    appointments, total = await service.list_for_actor(actor, status_filter, upcoming, limit, offset, on=on)
    return ResponseEnvelope[list[AppointmentPublic]](
        data=[AppointmentPublic.model_validate(item) for item in appointments],
        meta=PaginationMeta(total=total, limit=limit, offset=offset),
    )


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.get(ensure_ulid(appointment_id, "appointment_id"), actor)


@router.post("/{appointment_id}/confirm", response_model=AppointmentPublic)
async def confirm_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.confirm(ensure_ulid(appointment_id, "appointment_id"), actor)


@router.post("/{appointment_id}/start", response_model=AppointmentPublic)
async def start_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.start(ensure_ulid(appointment_id, "appointment_id"), actor)


@router.post("/{appointment_id}/complete", response_model=AppointmentPublic)
async def complete_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.complete(ensure_ulid(appointment_id, "appointment_id"), actor)


@router.post("/{appointment_id}/cancel", response_model=AppointmentPublic)
async def cancel_appointment(
    appointment_id: str,
    payload: AppointmentCancel,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.cancel(ensure_ulid(appointment_id, "appointment_id"), actor, payload.reason)


@router.post("/{appointment_id}/no-show", response_model=AppointmentPublic)
async def no_show_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.mark_no_show(ensure_ulid(appointment_id, "appointment_id"), actor)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentPublic)
async def reschedule_appointment(
    appointment_id: str,
    payload: AppointmentReschedule,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_service),
) -> AppointmentPublic:
    return await service.reschedule(
        ensure_ulid(appointment_id, "appointment_id"),
        actor,
        payload.scheduled_at,
        payload.duration_minutes,
    )
