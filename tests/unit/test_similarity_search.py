"""Unit tests for SimilaritySearchEngine with a mocked store and embedder."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkRelationship,
    ChunkType,
    FilterOptions,
    RelationshipType,
    SearchFilters,
)
from src.services.search.similarity_search import SimilaritySearchEngine, cosine_similarity
from src.utils.errors import TransientProviderError
from src.utils.vector_codec import encode_vector

_QUERY_VECTOR = [1.0, 0.0, 0.0, 0.0]


def _chunk(chunk_id: str, **overrides) -> Chunk:
    fields = {
        "chunk_id": chunk_id,
        "document_id": overrides.pop("document_id", "doc1"),
        "position": overrides.pop("position", 1),
        "chunk_type": overrides.pop("chunk_type", ChunkType.TOPIC_SEGMENT),
        "content": overrides.pop("content", f"content of {chunk_id}"),
    }
    fields.update(overrides)
    return Chunk(**fields)


def _candidate(
    chunk_id: str,
    vector: list[float] | None,
    date: datetime | None = None,
    **chunk_fields,
) -> ChunkCandidate:
    return ChunkCandidate(
        chunk=_chunk(chunk_id, **chunk_fields),
        embedding_blob=encode_vector(vector) if vector is not None else None,
        document_title="Planning",
        document_date=date or datetime(2026, 3, 1, tzinfo=timezone.utc),  # noqa: UP017
    )


def _store(candidates: list[ChunkCandidate] | None = None) -> AsyncMock:
    store = AsyncMock()
    store.find_candidates.return_value = candidates or []
    store.text_search.return_value = []
    store.get_related_chunks.return_value = []
    return store


def _embedder(vector: list[float] | None = None) -> MagicMock:
    client = MagicMock()
    client.embed_one = AsyncMock(return_value=vector or _QUERY_VECTOR)
    return client


# ======================================================================
# cosine_similarity
# ======================================================================


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 0.0])

    def test_non_finite_components_score_zero(self) -> None:
        assert cosine_similarity([math.nan, 0.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [math.inf, 1.0]) == 0.0


# ======================================================================
# Semantic search
# ======================================================================


class TestSemanticSearch:
    @pytest.mark.asyncio
    async def test_threshold_and_ordering(self) -> None:
        candidates = [
            _candidate("c_half", [0.5, math.sqrt(0.75), 0.0, 0.0]),
            _candidate("c_exact", [1.0, 0.0, 0.0, 0.0]),
            _candidate("c_orth", [0.0, 1.0, 0.0, 0.0]),
            _candidate("c_close", [0.9, 0.1, 0.0, 0.0]),
            _candidate("c_mid", [0.8, 0.6, 0.0, 0.0]),
        ]
        engine = SimilaritySearchEngine(_store(candidates), _embedder(), relevance_threshold=0.7)
        results = await engine.search("budget approval", limit=10)

        assert [r.chunk.chunk_id for r in results] == ["c_exact", "c_close", "c_mid"]
        assert all(r.similarity >= 0.7 for r in results)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)

    @pytest.mark.asyncio
    async def test_over_fetches_candidates(self) -> None:
        store = _store()
        engine = SimilaritySearchEngine(store, _embedder(), over_fetch_multiplier=3)
        filters = SearchFilters(category="planning")
        await engine.search("budget", filters, limit=4)
        store.find_candidates.assert_awaited_once_with(filters, 12)

    @pytest.mark.asyncio
    async def test_limit_applied_after_threshold(self) -> None:
        candidates = [_candidate(f"c{i}", [1.0, 0.0, 0.0, 0.0]) for i in range(6)]
        engine = SimilaritySearchEngine(_store(candidates), _embedder())
        assert len(await engine.search("budget", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_ties_broken_by_newest_document(self) -> None:
        older = datetime(2026, 1, 1, tzinfo=timezone.utc)  # noqa: UP017
        newer = datetime(2026, 2, 1, tzinfo=timezone.utc)  # noqa: UP017
        candidates = [
            _candidate("old", [1.0, 0.0, 0.0, 0.0], date=older, document_id="a"),
            _candidate("new", [1.0, 0.0, 0.0, 0.0], date=newer, document_id="b"),
        ]
        engine = SimilaritySearchEngine(_store(candidates), _embedder())
        results = await engine.search("budget")
        assert [r.chunk.chunk_id for r in results] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_empty_query(self) -> None:
        store = _store()
        embedder = _embedder()
        engine = SimilaritySearchEngine(store, embedder)
        assert await engine.search("   ") == []
        embedder.embed_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_candidates_returns_empty(self) -> None:
        engine = SimilaritySearchEngine(_store([]), _embedder())
        filters = SearchFilters(date_from=datetime(2099, 1, 1, tzinfo=timezone.utc))  # noqa: UP017
        assert await engine.search("budget", filters) == []

    @pytest.mark.asyncio
    async def test_corrupt_and_mismatched_vectors_skipped(self) -> None:
        corrupt = ChunkCandidate(chunk=_chunk("corrupt"), embedding_blob=b"\x00\x01\x02")
        candidates = [
            corrupt,
            _candidate("wrong_dim", [1.0, 0.0]),
            _candidate("good", [1.0, 0.0, 0.0, 0.0]),
        ]
        engine = SimilaritySearchEngine(_store(candidates), _embedder())
        results = await engine.search("budget")
        assert [r.chunk.chunk_id for r in results] == ["good"]

    @pytest.mark.asyncio
    async def test_non_finite_vectors_never_rank(self) -> None:
        candidates = [
            _candidate("nan", [math.nan, math.nan, math.nan, math.nan]),
            _candidate("inf", [math.inf, 0.0, 0.0, 0.0]),
            _candidate("good", [0.9, 0.1, 0.0, 0.0]),
        ]
        engine = SimilaritySearchEngine(_store(candidates), _embedder(), relevance_threshold=0.0)
        results = await engine.search("budget")
        assert [r.chunk.chunk_id for r in results] == ["good"]

    @pytest.mark.asyncio
    async def test_query_embedding_cached(self) -> None:
        embedder = _embedder()
        engine = SimilaritySearchEngine(_store(), embedder)
        await engine.search("budget")
        await engine.search("budget")
        assert embedder.embed_one.await_count == 1


# ======================================================================
# Fallbacks
# ======================================================================


class TestTextFallback:
    @pytest.mark.asyncio
    async def test_disabled_semantic_uses_text_search(self) -> None:
        store = _store()
        embedder = _embedder()
        engine = SimilaritySearchEngine(store, embedder, semantic_enabled=False)
        await engine.search("budget", limit=5)
        store.text_search.assert_awaited_once()
        embedder.embed_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back(self) -> None:
        store = _store()
        embedder = _embedder()
        embedder.embed_one.side_effect = TransientProviderError(message="down")
        engine = SimilaritySearchEngine(store, embedder)
        await engine.search("budget")
        store.text_search.assert_awaited_once()
        store.find_candidates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_search_highlights_matches(self) -> None:
        store = _store()
        store.text_search.return_value = [
            _candidate("t1", None, content="The Budget line grows; budget review Friday.")
        ]
        engine = SimilaritySearchEngine(store, _embedder())
        results = await engine.text_search("budget")
        assert results[0].highlighted_content == (
            "The **Budget** line grows; **budget** review Friday."
        )
        assert results[0].similarity == 0.0


# ======================================================================
# Context expansion
# ======================================================================


class TestContextExpansion:
    @pytest.mark.asyncio
    async def test_speaker_turn_hit_gets_neighbours(self) -> None:
        hit = _candidate(
            "d_speaker_turn_2", [1.0, 0.0, 0.0, 0.0],
            chunk_type=ChunkType.SPEAKER_TURN, position=2, speaker="Bob",
            start_time=30.0, end_time=40.0,
        )
        before = _chunk(
            "d_speaker_turn_1", chunk_type=ChunkType.SPEAKER_TURN, position=1,
            speaker="Alice", start_time=0.0, end_time=20.0,
        )
        far = _chunk(
            "d_speaker_turn_9", chunk_type=ChunkType.SPEAKER_TURN, position=9,
            speaker="Bob", start_time=500.0, end_time=520.0,
        )
        window = _chunk(
            "d_time_window_12", chunk_type=ChunkType.TIME_WINDOW, position=12,
            start_time=0.0, end_time=300.0,
        )
        store = _store([hit])
        store.get_related_chunks.return_value = [
            (_edge(before, hit.chunk, RelationshipType.SEQUENTIAL), before),
            (_edge(hit.chunk, far, RelationshipType.SPEAKER_CONTINUITY), far),
            (_edge(hit.chunk, window, RelationshipType.SEQUENTIAL), window),
        ]
        engine = SimilaritySearchEngine(store, _embedder(), context_window_seconds=30.0)
        results = await engine.search("budget")

        context_ids = [c.chunk_id for c in results[0].context]
        assert context_ids == ["d_speaker_turn_1"]

    @pytest.mark.asyncio
    async def test_full_chunk_has_no_context(self) -> None:
        hit = _candidate("d_full", [1.0, 0.0, 0.0, 0.0], chunk_type=ChunkType.FULL, position=0)
        store = _store([hit])
        engine = SimilaritySearchEngine(store, _embedder())
        results = await engine.search("budget")
        assert results[0].context == []
        store.get_related_chunks.assert_not_awaited()


class TestFiltersAndSuggestions:
    @pytest.mark.asyncio
    async def test_filter_options_delegated(self) -> None:
        store = _store()
        store.get_filter_options.return_value = FilterOptions(categories=["planning"])
        engine = SimilaritySearchEngine(store, _embedder())
        options = await engine.get_filter_options()
        assert options.categories == ["planning"]

    @pytest.mark.asyncio
    async def test_blank_prefix_suggests_nothing(self) -> None:
        store = _store()
        engine = SimilaritySearchEngine(store, _embedder())
        assert await engine.suggest("  ") == []
        store.suggest_terms.assert_not_awaited()


def _edge(source: Chunk, target: Chunk, kind: RelationshipType) -> ChunkRelationship:
    return ChunkRelationship(
        source_chunk_id=source.chunk_id,
        target_chunk_id=target.chunk_id,
        relationship_type=kind,
    )
