"""Domain models -- re-exports all public model classes.

The models are organized across three submodules by domain concern:
    - entities.py   -- Extracted facts (decisions, action items, risks...)
    - pipeline.py   -- Documents, their stage machine, and queued tasks
    - rag.py        -- Chunks, relationships, embeddings and search results
"""

from __future__ import annotations

from src.models.entities import EntityType, ExtractedEntity, ExtractionResult
from src.models.pipeline import (
    CleanupReport,
    Document,
    DocumentStage,
    ProcessingStats,
    ProcessingTask,
    SyncReport,
    TaskStatus,
    TaskType,
    TranscriptRecord,
    WebhookResult,
)
from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkContext,
    ChunkRelationship,
    ChunkType,
    EmbeddingOutcome,
    FilterOptions,
    RelationshipType,
    SearchFilters,
    SearchResult,
    SegmentationConfig,
    SegmentationResult,
    SegmentationStrategy,
)

__all__ = [
    "Chunk",
    "ChunkCandidate",
    "ChunkContext",
    "ChunkRelationship",
    "ChunkType",
    "CleanupReport",
    "Document",
    "DocumentStage",
    "EmbeddingOutcome",
    "EntityType",
    "ExtractedEntity",
    "ExtractionResult",
    "FilterOptions",
    "ProcessingStats",
    "ProcessingTask",
    "RelationshipType",
    "SearchFilters",
    "SearchResult",
    "SegmentationConfig",
    "SegmentationResult",
    "SegmentationStrategy",
    "SyncReport",
    "TaskStatus",
    "TaskType",
    "TranscriptRecord",
    "WebhookResult",
]
