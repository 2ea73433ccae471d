"""Global exception handlers for the FastAPI application.

Every error response has the shape ``{"error", "detail", "request_id"}``.
Unhandled exceptions are logged with their stack trace server-side and
reach the client as a bare 500.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from appsynth.errors import SynthError, format_error_response

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """The ID set by :class:`RequestIDMiddleware`, or a fresh UUID-4."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _respond(request: Request, status_code: int, error: str, detail: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=error,
            detail=detail,
            request_id=_get_request_id(request),
        ),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for any unhandled exception -- returns 500."""
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        _get_request_id(request),
        exc_info=exc,
    )
    return _respond(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "Internal server error",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """``HTTPException`` raised by routes and dependencies; keeps its status."""
    logger.warning(
        "HTTP %s on %s %s: %s",
        exc.status_code,
        request.method,
        request.url.path,
        exc.detail,
    )
    detail = str(exc.detail) if exc.detail else None
    return _respond(request, exc.status_code, detail or "Error", detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / parameter validation errors -- 422."""
    errors = exc.errors()
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, errors)
    return _respond(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        jsonable_errors(errors),
    )


def jsonable_errors(errors) -> list[dict]:  # noqa: ANN001
    """Drop the non-serialisable ``ctx`` / ``input`` members pydantic attaches."""
    return [{k: v for k, v in e.items() if k in ("loc", "msg", "type")} for e in errors]


async def synth_error_handler(request: Request, exc: SynthError) -> JSONResponse:
    """Domain :class:`SynthError` subclasses carry their own HTTP status."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return _respond(request, exc.status_code, str(exc), str(exc))


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SynthError, synth_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)
