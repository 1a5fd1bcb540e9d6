"""Transcript RAG API layer: routes, schemas, and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    ErrorResponse,
    HealthResponse,
    SearchResponse,
    SuggestResponse,
    SyncStatusResponse,
    WebhookResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "ErrorResponse",
    "HealthResponse",
    "SearchResponse",
    "SuggestResponse",
    "SyncStatusResponse",
    "WebhookResponse",
]
