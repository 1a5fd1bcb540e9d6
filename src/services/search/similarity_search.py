"""Similarity search with metadata filters, relevance threshold and context.

Query flow:

1. Embed the query (an LRU cache from ``cachetools`` avoids re-embedding
   repeated queries).
2. Fetch up to ``limit * over_fetch_multiplier`` embedded candidates that
   satisfy the filters, newest document first.
3. Decode each candidate's float32 blob; corrupt blobs and vectors of the
   wrong dimension are skipped with a warning instead of failing the query.
4. Score by cosine similarity, drop anything under the relevance threshold,
   sort by similarity, then document date (newest first), then document id.
5. Attach neighbouring chunks as context to speaker-turn and time-window
   hits.

When semantic search is disabled or the query cannot be embedded the
engine falls back to case-insensitive substring search.
"""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Sequence

import structlog
from cachetools import LRUCache

from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkContext,
    ChunkType,
    FilterOptions,
    RelationshipType,
    SearchFilters,
    SearchResult,
)
from src.utils.errors import EmbeddingCodecError, RAGError
from src.utils.vector_codec import decode_vector

if TYPE_CHECKING:
    from src.config.settings import Settings
    from src.interfaces.document_store import IDocumentStore
    from src.services.ingestion.embedding_client import EmbeddingClient

logger = structlog.get_logger(logger_name=__name__)

_SPEAKER_OPTION_LIMIT = 50

# Whether hits of each chunk type get neighbouring chunks as context.
# Full chunks already hold everything; topic segments already overlap.
_CONTEXT_EXPANSION: dict[ChunkType, bool] = {
    ChunkType.FULL: False,
    ChunkType.TIME_WINDOW: True,
    ChunkType.SPEAKER_TURN: True,
    ChunkType.TOPIC_SEGMENT: False,
}

_CONTEXT_RELATIONSHIPS = [RelationshipType.SEQUENTIAL, RelationshipType.SPEAKER_CONTINUITY]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*.

    Returns ``0.0`` when either vector has zero magnitude or a non-finite
    component.

    Raises
    ------
    ValueError
        If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Vector length mismatch: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if not (math.isfinite(dot) and math.isfinite(norm_a) and math.isfinite(norm_b)):
        return 0.0
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, score))


class SimilaritySearchEngine:
    """Ranks stored chunks against a query.

    Parameters
    ----------
    store:
        Source of candidate chunks, relationships and filter values.
    embedding_client:
        Embeds queries; must use the same model as ingestion.
    relevance_threshold:
        Minimum cosine similarity for a hit to be returned.
    over_fetch_multiplier:
        Candidates fetched per requested result.
    default_limit:
        Result count when the caller does not give one.
    context_window_seconds:
        How far from a hit a neighbouring chunk may start or end to be
        attached as context.
    semantic_enabled:
        When ``False`` every search is a text search.
    query_cache_size:
        Query embeddings kept in the LRU cache.
    """

    def __init__(
        self,
        store: IDocumentStore,
        embedding_client: EmbeddingClient,
        relevance_threshold: float = 0.7,
        over_fetch_multiplier: int = 3,
        default_limit: int = 10,
        context_window_seconds: float = 30.0,
        semantic_enabled: bool = True,
        query_cache_size: int = 256,
    ) -> None:
        self._store = store
        self._embedding_client = embedding_client
        self._threshold = relevance_threshold
        self._over_fetch = max(1, over_fetch_multiplier)
        self._default_limit = default_limit
        self._context_window = context_window_seconds
        self._semantic_enabled = semantic_enabled
        self._query_cache: LRUCache[str, list[float]] = LRUCache(maxsize=max(1, query_cache_size))

    @classmethod
    def from_settings(
        cls,
        store: IDocumentStore,
        embedding_client: EmbeddingClient,
        settings: Settings,
    ) -> SimilaritySearchEngine:
        return cls(
            store,
            embedding_client,
            relevance_threshold=settings.relevance_threshold,
            over_fetch_multiplier=settings.search_over_fetch_multiplier,
            default_limit=settings.search_default_limit,
            context_window_seconds=settings.context_window_seconds,
            semantic_enabled=settings.semantic_search_enabled,
            query_cache_size=settings.query_cache_size,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Return chunks most similar to *query*, best first."""
        query = (query or "").strip()
        if not query:
            return []
        filters = filters or SearchFilters()
        limit = limit or self._default_limit

        if not self._semantic_enabled:
            return await self.text_search(query, filters, limit)

        try:
            query_vector = await self._embed_query(query)
        except RAGError as exc:
            logger.warning("search_query_embedding_failed", error=str(exc), fallback="text")
            return await self.text_search(query, filters, limit)

        candidates = await self._store.find_candidates(filters, limit * self._over_fetch)
        scored: list[tuple[float, ChunkCandidate]] = []
        for candidate in candidates:
            score = self._score(query_vector, candidate)
            if score is not None and score >= self._threshold:
                scored.append((score, candidate))

        scored.sort(key=_rank_key)
        top = scored[:limit]

        results = [
            _to_result(candidate, similarity=score, context=await self._context_for(candidate.chunk))
            for score, candidate in top
        ]
        logger.info(
            "search_complete",
            query_length=len(query),
            candidates=len(candidates),
            above_threshold=len(scored),
            returned=len(results),
        )
        return results

    async def text_search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        """Case-insensitive substring search, newest document first."""
        query = (query or "").strip()
        if not query:
            return []
        filters = filters or SearchFilters()
        limit = limit or self._default_limit

        candidates = await self._store.text_search(query, filters, limit)
        pattern = re.compile(re.escape(query), re.IGNORECASE)
        return [
            _to_result(
                candidate,
                similarity=0.0,
                highlighted=pattern.sub(lambda m: f"**{m.group(0)}**", candidate.chunk.content),
            )
            for candidate in candidates
        ]

    async def get_filter_options(self) -> FilterOptions:
        return await self._store.get_filter_options(speaker_limit=_SPEAKER_OPTION_LIMIT)

    async def suggest(self, prefix: str, limit: int = 5) -> list[str]:
        """Return known tags and topics starting with *prefix*."""
        prefix = (prefix or "").strip()
        if not prefix:
            return []
        return await self._store.suggest_terms(prefix, limit)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_query(self, query: str) -> list[float]:
        cached = self._query_cache.get(query)
        if cached is not None:
            return cached
        vector = await self._embedding_client.embed_one(query)
        self._query_cache[query] = vector
        return vector

    @staticmethod
    def _score(query_vector: list[float], candidate: ChunkCandidate) -> float | None:
        chunk_id = candidate.chunk.chunk_id
        if candidate.embedding_blob is None:
            return None
        try:
            vector = decode_vector(candidate.embedding_blob)
        except EmbeddingCodecError as exc:
            logger.warning("search_candidate_corrupt", chunk_id=chunk_id, error=str(exc))
            return None
        if not all(math.isfinite(v) for v in vector):
            logger.warning("search_candidate_corrupt", chunk_id=chunk_id, error="non-finite component")
            return None
        if len(vector) != len(query_vector):
            logger.warning(
                "search_candidate_dimension_mismatch",
                chunk_id=chunk_id,
                expected=len(query_vector),
                actual=len(vector),
            )
            return None
        return cosine_similarity(query_vector, vector)

    async def _context_for(self, chunk: Chunk) -> list[ChunkContext]:
        if not _CONTEXT_EXPANSION[chunk.chunk_type]:
            return []

        related = await self._store.get_related_chunks(chunk.chunk_id, _CONTEXT_RELATIONSHIPS)
        seen: set[str] = set()
        context: list[tuple[int, ChunkContext]] = []
        for relationship, neighbour in related:
            if neighbour.chunk_id in seen or neighbour.chunk_type != chunk.chunk_type:
                continue
            if not self._within_window(chunk, neighbour):
                continue
            seen.add(neighbour.chunk_id)
            context.append(
                (
                    neighbour.position,
                    ChunkContext(
                        chunk_id=neighbour.chunk_id,
                        content=neighbour.content,
                        speaker=neighbour.speaker,
                        start_time=neighbour.start_time,
                        end_time=neighbour.end_time,
                        relationship_type=relationship.relationship_type,
                    ),
                )
            )
        context.sort(key=lambda item: item[0])
        return [item for _, item in context]

    def _within_window(self, hit: Chunk, neighbour: Chunk) -> bool:
        """Neighbours with known times must lie within the context window."""
        if None in (hit.start_time, hit.end_time, neighbour.start_time, neighbour.end_time):
            return abs(neighbour.position - hit.position) == 1
        return (
            neighbour.end_time >= hit.start_time - self._context_window
            and neighbour.start_time <= hit.end_time + self._context_window
        )


def _rank_key(item: tuple[float, ChunkCandidate]) -> tuple[float, float, str]:
    score, candidate = item
    date = candidate.document_date
    newest_first = -date.timestamp() if date is not None else math.inf
    return (-score, newest_first, candidate.chunk.document_id)


def _to_result(
    candidate: ChunkCandidate,
    similarity: float,
    context: list[ChunkContext] | None = None,
    highlighted: str | None = None,
) -> SearchResult:
    return SearchResult(
        chunk=candidate.chunk,
        document_title=candidate.document_title,
        document_date=candidate.document_date,
        category=candidate.category,
        project=candidate.project,
        department=candidate.department,
        similarity=similarity,
        highlighted_content=highlighted,
        context=context or [],
    )
