import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class QuickServeError(Exception):
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str, code: str | None = None, **extra):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        body.update(self.extra)
        return body


class NotFound(QuickServeError):
    status_code = 404
    code = "NOT_FOUND"


class Forbidden(QuickServeError):
    status_code = 403
    code = "FORBIDDEN"


class ValidationError(QuickServeError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotAvailable(QuickServeError):
    """A concurrent request claimed the booking first."""

    status_code = 409
    code = "NOT_AVAILABLE"


class InvalidTransition(QuickServeError):
    status_code = 409
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, attempted: str):
        super().__init__(
            f"Cannot transition from {current} to {attempted}",
            current=current,
            attempted=attempted,
        )
        self.current = current
        self.attempted = attempted


class UpstreamError(QuickServeError):
    status_code = 502
    code = "UPSTREAM_ERROR"


async def quickserve_error_handler(request: Request, exc: QuickServeError):
    if exc.status_code >= 500:
        logger.warning("upstream failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
