"""Transactional outbox: record events with the state change, deliver later."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medbook.modules.events.models import OutboxEvent
from medbook.modules.events.webhook import DeliveryError, deliver_event
from medbook.shared.enums import EventType

logger = logging.getLogger(__name__)

Deliver = Callable[[OutboxEvent], Awaitable[None]]


def enqueue_event(
    db: AsyncSession,
    event_type: EventType,
    appointment_id: str,
    payload: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> OutboxEvent:
    """Add an event to the current unit of work; the caller commits."""
    event = OutboxEvent(
        event_type=event_type,
        appointment_id=appointment_id,
        payload=payload or {},
        occurred_at=occurred_at or datetime.now(tz=timezone.utc),
        attempts=0,
    )
    db.add(event)
    return event


async def pending_events(db: AsyncSession, limit: int = 100) -> list[OutboxEvent]:
    stmt = (
        select(OutboxEvent)
        .where(OutboxEvent.dispatched_at.is_(None))
        .order_by(OutboxEvent.occurred_at, OutboxEvent.event_id)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def dispatch_pending(
    db: AsyncSession,
    deliver: Deliver = deliver_event,
    limit: int = 100,
    now: datetime | None = None,
) -> int:
    """Deliver undispatched events in order. Failures stay pending for the next run."""
    delivered = 0
    for event in await pending_events(db, limit):
        event.attempts += 1
        try:
            await deliver(event)
        except DeliveryError as exc:
            event.last_error = str(exc)
            logger.warning("Delivery of event %s failed (attempt %s): %s", event.event_id, event.attempts, exc)
            continue
        event.dispatched_at = now or datetime.now(tz=timezone.utc)
        event.last_error = None
        delivered += 1
    await db.commit()
    if delivered:
        logger.info("Dispatched %s outbox event(s)", delivered)
    return delivered
