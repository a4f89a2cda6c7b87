"""ARQ background worker: no-show and reminder sweeps, then outbox delivery."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from arq.connections import RedisSettings
from arq.cron import cron
from arq.worker import run_worker
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medbook.core.config import settings
from medbook.core.database import AsyncSessionLocal
from medbook.core.logging import configure_logging

# Register every mapped class before the first query.
from medbook.modules.directory import models as directory_models  # noqa: F401
from medbook.modules.appointments.sweeps import mark_no_shows, send_due_reminders
from medbook.modules.events.service import dispatch_pending

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis settings for the worker, from REDIS_URL when set."""
    if settings.redis_url:
        return RedisSettings.from_dsn(settings.redis_url)
    return RedisSettings()


async def run_sweeps_once(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(tz=timezone.utc)
    async with session_factory() as db:
        no_shows = await mark_no_shows(db, now)
        reminders = await send_due_reminders(db, now)
        dispatched = await dispatch_pending(db, now=now)
    return {"no_shows": no_shows, "reminders": reminders, "dispatched": dispatched}


async def startup(ctx) -> None:
    configure_logging()
    ctx.setdefault("session_factory", AsyncSessionLocal)
    logger.info("Sweep worker started (every %s min)", settings.sweep_every_minutes)


async def sweep_task(ctx) -> dict[str, int]:
    counts = await run_sweeps_once(ctx["session_factory"])
    logger.info("Sweep finished: %s", counts)
    return counts


class WorkerSettings:
    functions = [sweep_task]
    on_startup = startup
    redis_settings = get_redis_settings()

    # Sweeps are idempotent; a failed run is simply picked up by the next tick.
    max_tries = 1
    job_timeout = 300
    health_check_interval = 60

    cron_jobs = [
        cron(
            sweep_task,
            minute=set(range(0, 60, settings.sweep_every_minutes)),
            run_at_startup=True,
        ),
    ]


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
