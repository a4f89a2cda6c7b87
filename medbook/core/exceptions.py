"""Custom exception classes and handlers."""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class BusinessLogicError(Exception):
    """Raised for domain-specific validation errors."""

    code = "business_error"

    def __init__(self, detail: str, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class InvalidRequest(BusinessLogicError):
    """Malformed or out-of-range input. Never retried."""

    code = "invalid_request"

    def __init__(self, detail: str):
        super().__init__(detail, status.HTTP_400_BAD_REQUEST)


class NotFound(BusinessLogicError):
    code = "not_found"

    def __init__(self, detail: str):
        super().__init__(detail, status.HTTP_404_NOT_FOUND)


class Forbidden(BusinessLogicError):
    code = "forbidden"

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(detail, status.HTTP_403_FORBIDDEN)


class ScheduleUnavailable(BusinessLogicError):
    """The provider's declared schedule is closed at the requested instant."""

    code = "schedule_unavailable"

    def __init__(self, detail: str = "Provider is not available at this time"):
        super().__init__(detail, status.HTTP_409_CONFLICT)


class SlotConflict(BusinessLogicError):
    """The requested interval overlaps an active booking."""

    code = "slot_conflict"

    def __init__(self, detail: str = "This time slot is already booked. Please choose another time."):
        super().__init__(detail, status.HTTP_409_CONFLICT)


class InvalidTransition(BusinessLogicError):
    """A lifecycle guard rejected the transition; ``guard`` names which one."""

    code = "invalid_transition"

    def __init__(self, detail: str, guard: str):
        self.guard = guard
        super().__init__(detail, status.HTTP_409_CONFLICT)


class ConcurrencyConflict(BusinessLogicError):
    """A versioned write lost a race. Safe to retry the whole operation."""

    code = "concurrency_conflict"

    def __init__(self, detail: str = "Concurrent update detected"):
        super().__init__(detail, status.HTTP_409_CONFLICT)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI app."""

    @app.exception_handler(BusinessLogicError)
    async def _business_error_handler(_: Request, exc: BusinessLogicError):
        body = {"success": False, "message": exc.detail, "code": exc.code}
        if isinstance(exc, InvalidTransition):
            body["guard"] = exc.guard
        return JSONResponse(body, status_code=exc.status_code)
