"""Shared enumerations used across modules."""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Iterable, TypeVar

EnumType = TypeVar("EnumType", bound=StrEnum)


def enum_values(enum_cls: Iterable[EnumType]) -> list[str]:
    """Return the .value for each enum member (used by SQLAlchemy)."""
    return [member.value for member in enum_cls]


class ActorRole(StrEnum):
    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"


class AppointmentStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
# Statuses that occupy the provider's calendar.
ACTIVE_STATUSES = frozenset(
    {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS}
)


class ConsultationKind(StrEnum):
    IN_PERSON = "in_person"
    VIDEO = "video"
    CHAT = "chat"

    @property
    def is_realtime_call(self) -> bool:
        """Kinds whose start/end are stamped as a call."""
        return self is ConsultationKind.VIDEO

    @property
    def is_asynchronous(self) -> bool:
        """Kinds that may complete straight from ``confirmed``."""
        return self is ConsultationKind.CHAT


class EventType(StrEnum):
    BOOKED = "appointment.booked"
    CONFIRMED = "appointment.confirmed"
    STARTED = "appointment.started"
    COMPLETED = "appointment.completed"
    CANCELLED = "appointment.cancelled"
    NO_SHOW = "appointment.no_show"
    RESCHEDULED = "appointment.rescheduled"
    REMINDER_DUE = "appointment.reminder_due"


class BlockReason(StrEnum):
    VACATION = "vacation"
    CONFERENCE = "conference"
    PERSONAL = "personal"
    EMERGENCY = "emergency"
    OTHER = "other"


class Weekday(StrEnum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        members = list(cls)
        if not 0 <= index < len(members):
            msg = f"weekday index {index} out of range"
            raise ValueError(msg)
        return members[index]

    @classmethod
    def from_date(cls, value: date) -> "Weekday":
        return cls.from_index(value.weekday())
