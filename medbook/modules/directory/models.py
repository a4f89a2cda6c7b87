"""ORM models for providers and patients.

Profiles are owned by an external service; the scheduling core keeps the
fields it needs to book (time zone, offered kinds, fees) plus counters.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medbook.core.config import settings
from medbook.core.database import Base
from medbook.shared.enums import ConsultationKind
from medbook.shared.models import TimestampMixin
from medbook.shared.ulid import generate_ulid

if TYPE_CHECKING:  # pragma: no cover - typing only
    from medbook.modules.appointments.models import Appointment
    from medbook.modules.schedule.models import ScheduleTemplate


class Provider(Base, TimestampMixin):
    __tablename__ = "providers"
    __table_args__ = (
        CheckConstraint("fee_in_person >= 0", name="ck_providers_fee_in_person"),
        CheckConstraint("fee_video >= 0", name="ck_providers_fee_video"),
        CheckConstraint("fee_chat >= 0", name="ck_providers_fee_chat"),
    )

    provider_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=lambda: settings.default_timezone,
    )
    consultation_kinds: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    fee_in_person: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    fee_video: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    fee_chat: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_appointments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_appointments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Bumped on every ORM write; booking relies on it as a storage-level guard.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    schedule: Mapped[ScheduleTemplate | None] = relationship(back_populates="provider", uselist=False)
    appointments: Mapped[list[Appointment]] = relationship(back_populates="provider")

    __mapper_args__ = {"version_id_col": version}

    @property
    def zone(self) -> ZoneInfo:
        """The explicit time reference for schedule evaluation."""
        return ZoneInfo(self.timezone)

    def offers(self, kind: ConsultationKind) -> bool:
        return kind.value in (self.consultation_kinds or [])

    def fee_for(self, kind: ConsultationKind) -> Decimal:
        return getattr(self, f"fee_{kind.value}")


class Patient(Base, TimestampMixin):
    __tablename__ = "patients"

    patient_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    total_appointments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    appointments: Mapped[list[Appointment]] = relationship(back_populates="patient")


# Late imports so relationship targets are registered with the mapper.
from medbook.modules.appointments.models import Appointment  # noqa: E402
from medbook.modules.schedule.models import ScheduleTemplate  # noqa: E402
