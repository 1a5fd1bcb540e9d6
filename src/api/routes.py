"""FastAPI routes for transcript intake and retrieval.

Provides the webhook receiver the transcript service posts to, semantic
and text search over indexed chunks, filter options, term suggestions,
sync status and a health check.  Service dependencies are resolved from
``app.state`` via FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                              Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/webhooks/transcripts          POST    Signed webhook delivery
# /api/v1/search                        GET     Semantic search (+ context)
# /api/v1/search/text                   GET     Substring search, highlighted
# /api/v1/search/filters                GET     Filter dropdown values
# /api/v1/search/suggest                GET     Tag/topic completions
# /api/v1/sync/status                   GET     Last sync + queue statistics
# /api/v1/health                        GET     Health check + provider status
#
# DEPENDENCY INJECTION PATTERN:
# Each route declares its dependencies as Annotated params.  FastAPI
# resolves them via Depends() helpers that read app.state (populated at
# startup in main.py's _lifespan).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.api.schemas import (
    ErrorResponse,
    HealthResponse,
    SearchResponse,
    SuggestResponse,
    SyncStatusResponse,
    WebhookResponse,
)
from src.models.rag import ChunkType, FilterOptions, SearchFilters
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.webhook import SIGNATURE_HEADER
from src.services.search.similarity_search import SimilaritySearchEngine
from src.utils.errors import WebhookSignatureError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_MAX_SEARCH_LIMIT = 100


# ---------------------------------------------------------------------------
# Dependency injection helpers: resolve singletons from app.state
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> IngestionOrchestrator:
    """Return the ingestion orchestrator from application state."""
    return request.app.state.orchestrator


def _get_search_engine(request: Request) -> SimilaritySearchEngine:
    """Return the similarity search engine from application state."""
    return request.app.state.search_engine


OrchestratorDep = Annotated[IngestionOrchestrator, Depends(_get_orchestrator)]
SearchDep = Annotated[SimilaritySearchEngine, Depends(_get_search_engine)]


def _search_filters(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    category: str | None = None,
    project: str | None = None,
    department: str | None = None,
    speaker: str | None = None,
    tags: Annotated[list[str] | None, Query()] = None,
    chunk_types: Annotated[list[ChunkType] | None, Query()] = None,
    document_id: str | None = None,
) -> SearchFilters:
    """Collect the optional filter query parameters into :class:`SearchFilters`."""
    return SearchFilters(
        date_from=date_from,
        date_to=date_to,
        category=category,
        project=project,
        department=department,
        speaker=speaker,
        tags=tags or [],
        chunk_types=chunk_types or [],
        document_id=document_id,
    )


FiltersDep = Annotated[SearchFilters, Depends(_search_filters)]


# ---------------------------------------------------------------------------
# Webhook intake
# ---------------------------------------------------------------------------


@router.post(
    "/webhooks/transcripts",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Receive a transcript webhook delivery",
)
async def receive_webhook(request: Request, orchestrator: OrchestratorDep) -> WebhookResponse:
    """Verify the HMAC signature over the raw body, then act on the event.

    The signature is checked against the raw bytes before any JSON parsing,
    so an unsigned delivery is refused with 401 whatever its body holds.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        orchestrator.verify_webhook(raw_body, signature)
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc

    try:
        payload: Any = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    try:
        result = await orchestrator.handle_webhook_event(
            payload,
            raw_body=raw_body,
            signature=signature,
        )
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc

    return WebhookResponse(**result.model_dump())


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get(
    "/search",
    response_model=SearchResponse,
    summary="Semantic search over transcript chunks",
)
async def search(
    engine: SearchDep,
    filters: FiltersDep,
    q: Annotated[str, Query(min_length=1, max_length=1000)],
    limit: Annotated[int | None, Query(ge=1, le=_MAX_SEARCH_LIMIT)] = None,
) -> SearchResponse:
    """Rank chunks by cosine similarity to *q*.

    Speaker-turn and time-window hits carry neighbouring chunks as
    ``context``.
    """
    results = await engine.search(q, filters, limit)
    return SearchResponse(query=q, mode="semantic", total=len(results), results=results)


@router.get(
    "/search/text",
    response_model=SearchResponse,
    summary="Substring search over transcript chunks",
)
async def text_search(
    engine: SearchDep,
    filters: FiltersDep,
    q: Annotated[str, Query(min_length=1, max_length=1000)],
    limit: Annotated[int | None, Query(ge=1, le=_MAX_SEARCH_LIMIT)] = None,
) -> SearchResponse:
    results = await engine.text_search(q, filters, limit)
    return SearchResponse(query=q, mode="text", total=len(results), results=results)


@router.get(
    "/search/filters",
    response_model=FilterOptions,
    summary="Distinct values for the search filter dropdowns",
)
async def filter_options(engine: SearchDep) -> FilterOptions:
    return await engine.get_filter_options()


@router.get(
    "/search/suggest",
    response_model=SuggestResponse,
    summary="Suggest tags and topics for a prefix",
)
async def suggest(
    engine: SearchDep,
    prefix: Annotated[str, Query(min_length=1, max_length=100)],
    limit: Annotated[int, Query(ge=1, le=20)] = 5,
) -> SuggestResponse:
    return SuggestResponse(prefix=prefix, suggestions=await engine.suggest(prefix, limit))


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/sync/status",
    response_model=SyncStatusResponse,
    summary="Last sync report and processing statistics",
)
async def sync_status(orchestrator: OrchestratorDep) -> SyncStatusResponse:
    stats = await orchestrator.get_statistics()
    return SyncStatusResponse(last_sync=stats.last_sync, stats=stats)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability.

    The service is ``degraded`` when the embedding provider has no
    credentials: text search still works but semantic search does not.
    """
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    status = "healthy" if providers.get("embedding", False) else "degraded"
    return HealthResponse(status=status, version=request.app.version, providers=providers)
