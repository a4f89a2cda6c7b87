"""Deliver outbox events to the notification/payment webhook."""

from __future__ import annotations

import logging

import httpx

from medbook.core.config import settings
from medbook.modules.events.models import OutboxEvent

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """The collaborator did not accept the event; it stays pending."""


async def deliver_event(event: OutboxEvent, client: httpx.AsyncClient | None = None) -> None:
    """POST the event as JSON. Without a configured URL the event is only logged."""
    url = settings.notification_webhook_url
    if not url and client is None:
        logger.info("Event %s (%s) for appointment %s", event.event_id, event.event_type.value, event.appointment_id)
        return

    created_client = False
    if client is None:
        client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
        created_client = True
    try:
        response = await client.post(
            url or "/",
            json=event.as_message(),
            headers={"Idempotency-Key": event.event_id},
        )
    except httpx.HTTPError as exc:
        raise DeliveryError(f"webhook unreachable: {exc}") from exc
    finally:
        if created_client:
            await client.aclose()

    if not response.is_success:
        raise DeliveryError(f"webhook returned {response.status_code}")
