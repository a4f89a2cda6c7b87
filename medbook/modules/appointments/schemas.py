"""Appointments schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from medbook.shared.enums import ActorRole, AppointmentStatus, ConsultationKind


class AppointmentPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: str = Field(serialization_alias="id")
    patient_id: str
    provider_id: str
    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    consultation_kind: ConsultationKind
    status: AppointmentStatus
    fee: Decimal
    reason_for_visit: str
    is_follow_up: bool
    previous_appointment_id: str | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by_role: ActorRole | None = None
    cancellation_reason: str | None = None
    completed_at: datetime | None = None
    call_started_at: datetime | None = None
    call_ended_at: datetime | None = None
    call_duration_seconds: int | None = None


class AppointmentCreate(BaseModel):
    provider_id: str
    scheduled_at: AwareDatetime
    consultation_kind: ConsultationKind
    reason_for_visit: str = Field(min_length=10, max_length=500)
    duration_minutes: int | None = Field(None, ge=15, le=120)
    # Required when an admin books on a patient's behalf; ignored for patients.
    patient_id: str | None = None
    is_follow_up: bool = False
    previous_appointment_id: str | None = None


class AppointmentCancel(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class AppointmentReschedule(BaseModel):
    scheduled_at: AwareDatetime
    duration_minutes: int | None = Field(None, ge=15, le=120)
