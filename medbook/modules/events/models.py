"""Outbox rows for domain events awaiting delivery."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from medbook.core.database import Base
from medbook.shared.enums import EventType, enum_values
from medbook.shared.models import UTCDateTime
from medbook.shared.ulid import generate_ulid


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    __table_args__ = (Index("ix_outbox_events_pending", "dispatched_at", "occurred_at"),)

    event_id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    event_type: Mapped[EventType] = mapped_column(
        Enum(
            EventType,
            values_callable=enum_values,
            validate_strings=True,
            name="eventtype",
        ),
        nullable=False,
    )
    appointment_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)

    def as_message(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "type": self.event_type.value,
            "appointment_id": self.appointment_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }
