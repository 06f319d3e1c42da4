"""API middleware: CORS, request logging and error handling.

Provides helper functions and middleware classes to configure cross-origin
resource sharing, structured request logging (via structlog), and
conversion of ``KnowChatError`` subclasses into JSON ``ErrorResponse``
bodies with a stable ``code``.

# ─── MIDDLEWARE EXECUTION ORDER ───────────────────────────────────────
#
# Starlette middleware is a stack (last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)   # added 1st → inner
#     app.add_middleware(RequestLoggingMiddleware)  # added 2nd → outer
#
#   Request flow:
#     Client → RequestLogging → ErrorHandling → route handler
#
# So RequestLoggingMiddleware sees the *final* status code, after
# ErrorHandling has replaced an exception with a structured JSON error.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import (
    ExtractionError,
    GenerationUnavailableError,
    InvalidConfigurationError,
    InvalidRequestError,
    KnowChatError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Most specific class first; the first isinstance match wins.
_STATUS_BY_ERROR: tuple[tuple[type[KnowChatError], int], ...] = (
    (InvalidRequestError, 400),
    (ExtractionError, 422),
    (GenerationUnavailableError, 503),
    (ProviderTimeoutError, 503),
    (ProviderUnavailableError, 503),
)

_INTERNAL_ERROR_CODE = "internal_error"


def status_for(exc: KnowChatError) -> int:
    """HTTP status for an application error (500 when unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(exc: KnowChatError) -> JSONResponse:
    """Render *exc* as a sanitized :class:`ErrorResponse`.

    Configuration errors and unmapped application errors are reported as
    a generic ``internal_error``; their message stays in the server log.
    """
    status = status_for(exc)
    if status == 500 or isinstance(exc, InvalidConfigurationError):
        body = ErrorResponse(
            error="InternalError",
            code=_INTERNAL_ERROR_CODE,
            detail="Internal server error",
        )
    else:
        body = ErrorResponse(error=type(exc).__name__, code=exc.code, detail=exc.message)
    return JSONResponse(status_code=status, content=body.model_dump())


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map FastAPI request-validation failures onto ``invalid_request``."""

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        _logger.info(
            "request_validation_failed",
            path=str(request.url.path),
            errors=len(exc.errors()),
        )
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first.get('msg', 'invalid request')}" if location else None
        body = ErrorResponse(
            error=InvalidRequestError.__name__,
            code=InvalidRequestError.code,
            detail=detail,
        )
        return JSONResponse(status_code=400, content=body.model_dump())


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert exceptions into structured JSON errors.

    ``KnowChatError`` subclasses keep their class name, ``code`` and
    message (except configuration errors).  Anything else becomes a
    generic ``internal_error``.  Stack traces are logged server-side only.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except KnowChatError as exc:
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                code=exc.code,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
            )
            return error_response(exc)
        except Exception:
            _logger.exception("unhandled_error", path=str(request.url.path))
            body = ErrorResponse(
                error="InternalError",
                code=_INTERNAL_ERROR_CODE,
                detail="Internal server error",
            )
            return JSONResponse(status_code=500, content=body.model_dump())
