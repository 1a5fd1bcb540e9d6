"""Transcript RAG FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``config/config.yaml`` and ``.env``, configures
structured logging, and exposes the webhook and search API.

``build_services`` is shared with the CLI so the worker processes and the
web server assemble exactly the same object graph.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import load_config, settings_from_config
from src.config.settings import Settings
from src.models.rag import SegmentationConfig
from src.pipeline.orchestrator import IngestionOrchestrator
from src.providers.blob_store.filesystem_blob_store import FilesystemBlobStore
from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from src.providers.queue.sqlite_task_queue import SQLiteTaskQueue
from src.providers.store.sqlite_document_store import SQLiteDocumentStore
from src.providers.transcript_source.fireflies_provider import FirefliesTranscriptProvider
from src.services.entity_extractor import EntityExtractor
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.segmenter import Segmenter
from src.services.search.similarity_search import SimilaritySearchEngine
from src.utils.logging import configure_logging, get_logger
from src.utils.retry import BackoffPolicy

_VERSION = "0.1.0"

_logger: structlog.BoundLogger = get_logger(__name__)


def load_settings(config_path: str = "config/config.yaml") -> Settings:
    """Resolve settings from the YAML file layered under the environment."""
    return settings_from_config(load_config(config_path))


def segmentation_config(app_settings: Settings) -> SegmentationConfig:
    """Default segmentation parameters taken from settings."""
    return SegmentationConfig(
        target_tokens=app_settings.chunk_target_tokens,
        min_tokens=app_settings.chunk_min_tokens,
        max_tokens=app_settings.chunk_max_tokens,
        overlap_tokens=app_settings.chunk_overlap_tokens,
        window_seconds=app_settings.time_window_seconds,
        window_overlap_seconds=app_settings.time_window_overlap_seconds,
        topic_similarity_threshold=app_settings.topic_similarity_threshold,
    )


# ---------------------------------------------------------------------------
# Object graph
# ---------------------------------------------------------------------------


def build_services(app_settings: Settings) -> dict[str, Any]:
    """Construct every provider and service for one process.

    Nothing here performs I/O; call ``initialize()`` on the store and the
    queue (see :func:`initialize_services`) before use.
    """
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(app_settings.fireflies_timeout_seconds),
        headers={"User-Agent": f"transcript-rag/{_VERSION}"},
    )

    store = SQLiteDocumentStore(db_path=app_settings.database_path)
    queue = SQLiteTaskQueue(db_path=app_settings.database_path)
    blob_store = FilesystemBlobStore(root=app_settings.blob_root)

    backoff = BackoffPolicy.from_settings(app_settings)
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    embedding_client = EmbeddingClient.from_settings(embedding_provider, app_settings, backoff=backoff)

    segmenter = Segmenter(
        entity_extractor=EntityExtractor(max_chars=app_settings.extraction_max_chars),
        config=segmentation_config(app_settings),
    )
    transcript_source = FirefliesTranscriptProvider(
        http_client=http_client,
        api_key=app_settings.fireflies_api_key,
        api_url=app_settings.fireflies_api_url,
        timeout=app_settings.fireflies_timeout_seconds,
    )

    orchestrator = IngestionOrchestrator(
        store=store,
        queue=queue,
        blob_store=blob_store,
        segmenter=segmenter,
        embedding_client=embedding_client,
        transcript_source=transcript_source,
        settings=app_settings,
        backoff=backoff,
    )
    search_engine = SimilaritySearchEngine.from_settings(store, embedding_client, app_settings)

    provider_registry = {
        "embedding": embedding_provider.is_available(),
        "embedding_model": embedding_provider.get_model_name(),
        "transcript_source": transcript_source.is_available(),
        "webhook_signing": bool(app_settings.webhook_secret),
    }

    return {
        "settings": app_settings,
        "http_client": http_client,
        "store": store,
        "queue": queue,
        "blob_store": blob_store,
        "embedding_provider": embedding_provider,
        "embedding_client": embedding_client,
        "segmenter": segmenter,
        "transcript_source": transcript_source,
        "orchestrator": orchestrator,
        "search_engine": search_engine,
        "provider_registry": provider_registry,
    }


async def initialize_services(services: dict[str, Any]) -> None:
    """Create database tables for the store and the queue."""
    await services["store"].initialize()
    await services["queue"].initialize()


async def close_services(services: dict[str, Any]) -> None:
    http_client: httpx.AsyncClient = services["http_client"]
    await http_client.aclose()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build and configure the FastAPI application."""
    app_settings = app_settings or load_settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        services = build_services(app_settings)
        for key, value in services.items():
            setattr(application.state, key, value)
        await initialize_services(services)

        _logger.info(
            "app_startup",
            version=_VERSION,
            environment=app_settings.app_env,
            providers=services["provider_registry"],
            credentials=app_settings.get_available_providers(),
        )

        yield

        await close_services(services)
        _logger.info("app_shutdown", message="HTTP client closed")

    application = FastAPI(
        title="Transcript RAG API",
        version=_VERSION,
        description=(
            "Ingest meeting transcripts via scheduled sync or signed webhooks, "
            "segment and embed them, and search the chunks semantically with "
            "metadata filters and conversational context."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app_settings = load_settings()
    uvicorn.run(
        create_app(app_settings),
        host=app_settings.app_host,
        port=app_settings.app_port,
    )


if __name__ == "__main__":
    main()
