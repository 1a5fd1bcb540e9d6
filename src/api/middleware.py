"""API middleware: CORS, request logging, and error handling.

Provides helpers and middleware classes for cross-origin resource sharing,
structured request logging (via structlog), and conversion of
``TranscriptRAGError`` subclasses into JSON ``ErrorResponse`` bodies.

# ─── MIDDLEWARE EXECUTION ORDER ───────────────────────────────────────
#
# Starlette middleware is a stack (last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)
#     app.add_middleware(RequestLoggingMiddleware)
#
#   Request flow:
#     Client → RequestLogging → ErrorHandling → route handler
#
# RequestLoggingMiddleware therefore sees the final status code, even
# when ErrorHandling replaced an exception with a structured JSON error.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import (
    DataIntegrityError,
    TranscriptRAGError,
    TransientProviderError,
    WebhookSignatureError,
)
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Most specific first; anything else is a 500.
_STATUS_BY_ERROR: tuple[tuple[type[TranscriptRAGError], int], ...] = (
    (WebhookSignatureError, 401),
    (DataIntegrityError, 404),
    (TransientProviderError, 503),
)


def status_for_error(exc: TranscriptRAGError) -> int:
    """Map an application error onto an HTTP status code."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Defaults to ``["*"]`` for development; production deployments should
    pass their own origins.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


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
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=response.status_code if response else 500,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch ``TranscriptRAGError`` subclasses and return structured JSON errors.

    Stack traces stay in the server log; the client only sees the error
    class name and message.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except TranscriptRAGError as exc:
            status_code = status_for_error(exc)
            _logger.error(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
            return JSONResponse(status_code=status_code, content=body.model_dump())
