"""Pydantic request/response schemas for the transcript API.

Defines the public contract for the REST endpoints: webhook intake,
semantic and text search, filter options, suggestions, sync status and
health.

# ─── HOW SCHEMAS WORK ─────────────────────────────────────────────────
#
# FastAPI validates query parameters and serializes responses through
# these models (``response_model=...``) and builds the OpenAPI docs at
# /docs from them.  Domain models (SearchResult, SyncReport...) are
# embedded directly rather than mirrored field by field.
#
# Convention: response schemas end with "Response".
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models.pipeline import ProcessingStats, SyncReport
from src.models.rag import SearchResult


class WebhookResponse(BaseModel):
    """Outcome of one webhook delivery."""

    event_type: str
    document_id: str | None = None
    processed: bool
    task_id: str | None = Field(
        default=None,
        description="Queued task created by the delivery, if any.",
    )
    detail: str = ""


class SearchResponse(BaseModel):
    """Ranked search hits for a query."""

    query: str
    mode: str = Field(description="'semantic' or 'text'.")
    total: int
    results: list[SearchResult] = Field(default_factory=list)


class SuggestResponse(BaseModel):
    """Tag and topic completions for a prefix."""

    prefix: str
    suggestions: list[str] = Field(default_factory=list)


class SyncStatusResponse(BaseModel):
    """Last sync report plus current processing statistics."""

    last_sync: SyncReport | None = None
    stats: ProcessingStats


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
