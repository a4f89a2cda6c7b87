"""Appointment ORM model."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medbook.core.database import Base
from medbook.shared.enums import ActorRole, AppointmentStatus, ConsultationKind, enum_values
from medbook.shared.models import TimestampMixin, UTCDateTime
from medbook.shared.ulid import generate_ulid

if TYPE_CHECKING:  # pragma: no cover
    from medbook.modules.directory.models import Patient, Provider


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_provider_scheduled", "provider_id", "scheduled_at"),
        Index("ix_appointments_provider_status_scheduled", "provider_id", "status", "scheduled_at"),
        Index("ix_appointments_patient_status", "patient_id", "status"),
        CheckConstraint("ends_at > scheduled_at", name="ck_appointments_time_order"),
        CheckConstraint("duration_minutes BETWEEN 15 AND 120", name="ck_appointments_duration"),
        CheckConstraint("fee >= 0", name="ck_appointments_fee"),
    )

    appointment_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    patient_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("patients.patient_id", ondelete="RESTRICT"),
        nullable=False,
    )
    provider_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("providers.provider_id", ondelete="RESTRICT"),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    consultation_kind: Mapped[ConsultationKind] = mapped_column(
        Enum(
            ConsultationKind,
            values_callable=enum_values,
            validate_strings=True,
            name="consultationkind",
        ),
        nullable=False,
    )
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(
            AppointmentStatus,
            values_callable=enum_values,
            validate_strings=True,
            name="appointmentstatus",
        ),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    reason_for_visit: Mapped[str] = mapped_column(Text, nullable=False)
    is_follow_up: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    previous_appointment_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("appointments.appointment_id", ondelete="SET NULL"),
    )

    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    confirmed_by: Mapped[str | None] = mapped_column(String(26))
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_by: Mapped[str | None] = mapped_column(String(26))
    cancelled_by_role: Mapped[ActorRole | None] = mapped_column(
        Enum(
            ActorRole,
            values_callable=enum_values,
            validate_strings=True,
            name="actorrole",
        ),
    )
    cancellation_reason: Mapped[str | None] = mapped_column(String(500))
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    call_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    call_ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    call_duration_seconds: Mapped[int | None] = mapped_column(Integer)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    patient: Mapped[Patient] = relationship(back_populates="appointments")
    provider: Mapped[Provider] = relationship(back_populates="appointments")

    __mapper_args__ = {"version_id_col": version}
