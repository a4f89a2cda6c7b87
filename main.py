"""FastAPI application entrypoint."""

from fastapi import FastAPI

from medbook.core.config import settings
from medbook.core.exceptions import register_exception_handlers
from medbook.core.logging import configure_logging
from medbook.modules.appointments.router import router as appointments_router
from medbook.modules.directory import models as directory_models  # noqa: F401
from medbook.modules.schedule.router import router as schedule_router


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        version="0.1.0",
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(schedule_router)
    app.include_router(appointments_router)

    return app


app = create_app()
