"""Chunk, relationship and retrieval models for the transcript knowledge base.

Defines Pydantic v2 models for the units the pipeline moves around:

    1. SEGMENTATION: a document's text is split into :class:`Chunk` objects
       of a closed set of :class:`ChunkType` kinds and linked by
       :class:`ChunkRelationship` edges.
    2. EMBEDDING: each chunk gains a fixed-dimension vector
       (:class:`EmbeddingOutcome` reports success or failure per text).
    3. RETRIEVAL: :class:`SearchFilters` narrow the candidate set and
       :class:`SearchResult` carries a ranked chunk with its context.

All models use frozen config; updates go through ``model_copy``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.entities import ExtractedEntity


# ---------------------------------------------------------------------------
# Chunk kinds and relationship kinds.
# ---------------------------------------------------------------------------
class ChunkType(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """How a chunk was cut from its document."""

    FULL = "full"                    # Whole document, position 0
    TIME_WINDOW = "time_window"      # Fixed-duration window over timestamps
    SPEAKER_TURN = "speaker_turn"    # Consecutive lines from one speaker
    TOPIC_SEGMENT = "topic_segment"  # Paragraph accumulation fallback


class RelationshipType(str, Enum):  # noqa: UP042
    """Kinds of edge between two chunks."""

    SEQUENTIAL = "sequential"
    SPEAKER_CONTINUITY = "speaker_continuity"
    TOPIC_SIMILARITY = "topic_similarity"
    PARENT_CHILD = "parent_child"


class SegmentationStrategy(str, Enum):  # noqa: UP042
    """Which fine-grained strategies the segmenter runs."""

    AUTO = "auto"
    SPEAKER_TURN = "speaker_turn"
    TIME_WINDOW = "time_window"
    TOPIC = "topic"


# ---------------------------------------------------------------------------
# Chunk -- the unit of embedding and retrieval.
# ---------------------------------------------------------------------------
class Chunk(BaseModel):
    """A positioned segment of a document's content.

    ``previous_chunk_id``/``next_chunk_id``/``parent_chunk_id`` are weak
    references used for lookup only.  A chunk may exist without an
    embedding between segmentation and embedding; such chunks are never
    returned by semantic search.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Unique identifier, e.g. '<doc>_full' or '<doc>_speaker_3'.")
    document_id: str = Field(description="Owning document.")
    position: int = Field(ge=0, description="Order within the document; 0 is the full chunk.")
    chunk_type: ChunkType
    content: str
    speaker: str | None = None
    start_time: float | None = Field(default=None, ge=0.0, description="Offset in seconds.")
    end_time: float | None = Field(default=None, ge=0.0, description="Offset in seconds.")
    token_count: int = Field(default=0, ge=0)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    topics: list[str] = Field(default_factory=list)
    entities: list[ExtractedEntity] = Field(default_factory=list)
    embedding: list[float] | None = None
    embedding_model: str | None = None
    previous_chunk_id: str | None = None
    next_chunk_id: str | None = None
    parent_chunk_id: str | None = None

    @property
    def is_embedded(self) -> bool:
        return bool(self.embedding)


class ChunkRelationship(BaseModel):
    """A directed, weighted edge between two chunks, used for context expansion."""

    model_config = ConfigDict(frozen=True)

    source_chunk_id: str
    target_chunk_id: str
    relationship_type: RelationshipType
    strength: float = Field(default=1.0, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Segmentation configuration and output.
# ---------------------------------------------------------------------------
class SegmentationConfig(BaseModel):
    """Token budgets and strategy selection for one segmentation run."""

    model_config = ConfigDict(frozen=True)

    target_tokens: int = Field(default=1000, gt=0)
    min_tokens: int = Field(default=100, ge=0)
    max_tokens: int = Field(default=1500, gt=0)
    overlap_tokens: int = Field(default=200, ge=0)
    strategy: SegmentationStrategy = SegmentationStrategy.AUTO
    window_seconds: int = Field(default=300, gt=0)
    window_overlap_seconds: int = Field(default=30, ge=0)
    topic_similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_budgets(self) -> SegmentationConfig:
        if not self.min_tokens <= self.target_tokens <= self.max_tokens:
            raise ValueError("expected min_tokens <= target_tokens <= max_tokens")
        if self.overlap_tokens >= self.target_tokens:
            raise ValueError("overlap_tokens must be smaller than target_tokens")
        if self.window_overlap_seconds >= self.window_seconds:
            raise ValueError("window_overlap_seconds must be smaller than window_seconds")
        return self

    def optimal_for_duration(self, duration_seconds: float | None) -> SegmentationConfig:
        """Return a copy with window sizes tuned to the recording length.

        Short meetings get tighter windows so each one still carries a
        focused slice of the conversation.
        """
        if not duration_seconds or duration_seconds <= 0:
            return self
        if duration_seconds < 1800:
            window, overlap = 180, 20
        elif duration_seconds < 3600:
            window, overlap = 300, 30
        else:
            window, overlap = 600, 60
        return self.model_copy(update={"window_seconds": window, "window_overlap_seconds": overlap})


class SegmentationResult(BaseModel):
    """Chunks and relationships produced for one document."""

    model_config = ConfigDict(frozen=True)

    chunks: list[Chunk] = Field(default_factory=list)
    relationships: list[ChunkRelationship] = Field(default_factory=list)

    @property
    def entities(self) -> list[ExtractedEntity]:
        """Document-level entities: duplicates across overlapping chunks merged.

        The full-document chunk repeats everything its children contain, so
        it is consulted last and only contributes entities no child found.
        """
        merged: dict[tuple, ExtractedEntity] = {}
        ordered = sorted(self.chunks, key=lambda c: (c.chunk_type == ChunkType.FULL, c.position))
        for chunk in ordered:
            for entity in chunk.entities:
                key = entity.dedup_key()
                current = merged.get(key)
                if current is None or entity.confidence > current.confidence:
                    merged[key] = entity
        return sorted(merged.values(), key=lambda e: (e.offset, e.entity_type.value))

    def by_type(self, chunk_type: ChunkType) -> list[Chunk]:
        return [c for c in self.chunks if c.chunk_type == chunk_type]


# ---------------------------------------------------------------------------
# Embedding outcome -- per-text success or failure.
# ---------------------------------------------------------------------------
class EmbeddingOutcome(BaseModel):
    """Result of embedding one text inside a batch."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="Position of the text in the request.")
    vector: list[float] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


# ---------------------------------------------------------------------------
# Retrieval.
# ---------------------------------------------------------------------------
class SearchFilters(BaseModel):
    """Metadata constraints applied before similarity ranking."""

    model_config = ConfigDict(frozen=True)

    date_from: datetime | None = None
    date_to: datetime | None = None
    category: str | None = None
    project: str | None = None
    department: str | None = None
    speaker: str | None = None
    tags: list[str] = Field(default_factory=list)
    chunk_types: list[ChunkType] = Field(default_factory=list)
    document_id: str | None = None


class ChunkCandidate(BaseModel):
    """A stored chunk joined with its document metadata, before ranking.

    ``embedding_blob`` is the raw float32 encoding as persisted; it is
    decoded by the search engine so one corrupt row can be skipped
    without failing the query.
    """

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    embedding_blob: bytes | None = None
    document_title: str = ""
    document_date: datetime | None = None
    category: str | None = None
    project: str | None = None
    department: str | None = None


class ChunkContext(BaseModel):
    """A neighbouring chunk shown alongside a search hit."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    content: str
    speaker: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    relationship_type: RelationshipType


class SearchResult(BaseModel):
    """A ranked chunk with its document metadata and optional context."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    document_title: str = ""
    document_date: datetime | None = None
    category: str | None = None
    project: str | None = None
    department: str | None = None
    similarity: float = Field(default=0.0, ge=-1.0, le=1.0)
    highlighted_content: str | None = Field(
        default=None,
        description="Content with **matches** marked, set by text search only.",
    )
    context: list[ChunkContext] = Field(default_factory=list)


class FilterOptions(BaseModel):
    """Distinct values available for each search filter."""

    model_config = ConfigDict(frozen=True)

    categories: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    speakers: list[str] = Field(default_factory=list)
