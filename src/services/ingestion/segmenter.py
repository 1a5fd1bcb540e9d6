"""Transcript segmentation into positioned, linked, entity-tagged chunks.

Splits a document's text into :class:`~src.models.rag.Chunk` objects of the
four :class:`~src.models.rag.ChunkType` kinds:

1. **Full-document** -- one chunk holding the whole text at position 0, kept
   for whole-context retrieval.  Always produced for non-empty input.

2. **Speaker-turn** -- consecutive lines from one ``[MM:SS] Name:`` speaker.
   A turn over ``max_tokens`` is packed into sub-chunks at line, then
   sentence, then word boundaries.

3. **Time-window** -- fixed-duration windows that walk forward by
   ``window - overlap`` seconds, so neighbouring windows share exactly the
   configured overlap and no stretch of the recording is skipped.

4. **Topic segment** -- greedy paragraph accumulation with a token overlap
   tail.  This is the fallback whenever no speaker or timestamp markup is
   usable, and it always yields at least one chunk.

Every line of the source lands in at least one non-full chunk.  After the
chunks are cut, each one is tagged by the
:class:`~src.services.entity_extractor.EntityExtractor`, scored for
importance, and linked into a relationship graph (sequential chain,
parent/child, speaker continuity, topic similarity).
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from typing import TYPE_CHECKING

import structlog

from src.models.entities import EntityType
from src.models.rag import (
    Chunk,
    ChunkRelationship,
    ChunkType,
    RelationshipType,
    SegmentationConfig,
    SegmentationResult,
    SegmentationStrategy,
)
from src.services.entity_extractor import EntityExtractor
from src.utils.text_normalizer import (
    TranscriptLine,
    estimate_tokens,
    jaccard,
    parse_transcript_lines,
    split_paragraphs,
    split_sentences,
)

if TYPE_CHECKING:
    from src.models.pipeline import Document

logger = structlog.get_logger(logger_name=__name__)

_SPEAKER_CONTINUITY_STRENGTH = 0.8

# Importance bonuses per entity type found in a chunk.
_IMPORTANCE_BASE = 0.5
_IMPORTANCE_BONUS: dict[EntityType, float] = {
    EntityType.DECISION: 0.2,
    EntityType.ACTION_ITEM: 0.15,
    EntityType.RISK: 0.15,
}
_DENSITY_BONUS = 0.1


@dataclass(frozen=True)
class _Unit:
    """An indivisible piece of text queued for packing into a chunk."""

    text: str
    tokens: int
    sep: str = "\n"
    timestamp: float | None = None

    @property
    def cost(self) -> int:
        # One extra token covers the separator _join puts in front of it.
        return self.tokens + 1


@dataclass(frozen=True)
class _Draft:
    """A chunk before positions, links and tags are assigned."""

    chunk_type: ChunkType
    content: str
    speaker: str | None = None
    start_time: float | None = None
    end_time: float | None = None


class Segmenter:
    """Splits documents into chunks and relationships.

    Parameters
    ----------
    entity_extractor:
        Tags every chunk with decisions, action items, risks and so on.
    config:
        Default :class:`SegmentationConfig`, overridable per call.
    """

    def __init__(
        self,
        entity_extractor: EntityExtractor | None = None,
        config: SegmentationConfig | None = None,
    ) -> None:
        self._extractor = entity_extractor or EntityExtractor()
        self._config = config or SegmentationConfig()

    @property
    def config(self) -> SegmentationConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def segment(
        self,
        document: Document,
        text: str,
        config: SegmentationConfig | None = None,
    ) -> SegmentationResult:
        """Split *text* (the content of *document*) into chunks.

        Returns an empty result for empty input.  Malformed speaker or
        timestamp markup degrades to the topic fallback instead of raising.
        """
        if not text or not text.strip():
            return SegmentationResult()

        cfg = config or self._config
        drafts = self._draft_fine_chunks(text, cfg)

        chunks = self._materialise(document.document_id, text, drafts, cfg)
        relationships = self._build_relationships(chunks, cfg)

        logger.debug(
            "segmentation_complete",
            document_id=document.document_id,
            num_chunks=len(chunks),
            num_relationships=len(relationships),
            chunk_types=sorted({c.chunk_type.value for c in chunks}),
        )
        return SegmentationResult(chunks=chunks, relationships=relationships)

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def _draft_fine_chunks(self, text: str, cfg: SegmentationConfig) -> list[_Draft]:
        lines = parse_transcript_lines(text)
        speaker_lines = sum(1 for ln in lines if ln.speaker)
        timestamps = {ln.timestamp for ln in lines if ln.timestamp is not None}

        want_speakers = cfg.strategy in (SegmentationStrategy.AUTO, SegmentationStrategy.SPEAKER_TURN)
        want_windows = cfg.strategy in (SegmentationStrategy.AUTO, SegmentationStrategy.TIME_WINDOW)
        # A single speaker line or a single timestamp is too little signal.
        if cfg.strategy == SegmentationStrategy.AUTO:
            want_speakers = want_speakers and speaker_lines >= 2
        else:
            want_speakers = want_speakers and speaker_lines >= 1
        want_windows = want_windows and len(timestamps) >= 2

        drafts: list[_Draft] = []
        try:
            if want_speakers:
                drafts.extend(self._speaker_turns(lines, cfg))
            if want_windows:
                drafts.extend(self._time_windows(lines, cfg))
        except ValueError as exc:
            logger.warning("segmentation_markup_fallback", error=str(exc))
            drafts = []

        if not drafts:
            drafts = self._topic_segments(text, cfg)
        return drafts

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _speaker_turns(self, lines: list[TranscriptLine], cfg: SegmentationConfig) -> list[_Draft]:
        """Group consecutive lines by speaker; unlabelled lines join the current turn."""
        turns: list[tuple[str | None, list[TranscriptLine]]] = []
        for line in lines:
            if line.speaker is not None and (not turns or turns[-1][0] != line.speaker):
                turns.append((line.speaker, [line]))
            elif turns:
                turns[-1][1].append(line)
            else:
                # Preamble before the first labelled line.
                turns.append((None, [line]))

        drafts: list[_Draft] = []
        for speaker, turn_lines in turns:
            units = _line_units(turn_lines, cfg)
            for piece in _pack(units, cfg, target=cfg.target_tokens, overlap=0):
                start, end = _time_span(piece)
                drafts.append(
                    _Draft(
                        chunk_type=ChunkType.SPEAKER_TURN,
                        content=_join(piece),
                        speaker=speaker,
                        start_time=start,
                        end_time=end,
                    )
                )
        return drafts

    def _time_windows(self, lines: list[TranscriptLine], cfg: SegmentationConfig) -> list[_Draft]:
        """Slide fixed windows over line timestamps.

        Lines without a timestamp inherit the previous line's, and lines
        before the first timestamp are placed at the first timestamp.
        """
        first_ts = next(ln.timestamp for ln in lines if ln.timestamp is not None)
        stamped: list[tuple[float, TranscriptLine]] = []
        current = first_ts
        for line in lines:
            if line.timestamp is not None:
                if line.timestamp < current:
                    raise ValueError(
                        f"timestamps go backwards at line {line.index + 1}"
                    )
                current = line.timestamp
            stamped.append((current, line))

        last_ts = stamped[-1][0]
        step = cfg.window_seconds - cfg.window_overlap_seconds
        drafts: list[_Draft] = []
        window_start = first_ts
        while window_start <= last_ts:
            window_end = window_start + cfg.window_seconds
            members = [ln for ts, ln in stamped if window_start <= ts < window_end]
            if members:
                units = _line_units(members, cfg, stamped_at={ln.index: ts for ts, ln in stamped})
                for piece in _pack(units, cfg, target=cfg.target_tokens, overlap=0):
                    drafts.append(
                        _Draft(
                            chunk_type=ChunkType.TIME_WINDOW,
                            content=_join(piece),
                            start_time=window_start,
                            end_time=window_end,
                        )
                    )
            window_start += step
        return drafts

    def _topic_segments(self, text: str, cfg: SegmentationConfig) -> list[_Draft]:
        """Accumulate paragraphs up to the token budget with an overlap tail."""
        units: list[_Unit] = []
        for paragraph in split_paragraphs(text):
            tokens = estimate_tokens(paragraph)
            if tokens <= cfg.target_tokens:
                units.append(_Unit(paragraph, tokens, sep="\n\n"))
                continue
            for idx, sentence in enumerate(_split_oversize(paragraph, cfg)):
                units.append(
                    _Unit(sentence, estimate_tokens(sentence), sep="\n\n" if idx == 0 else " ")
                )
        if not units:
            units = [_Unit(text.strip(), estimate_tokens(text.strip()), sep="\n\n")]

        return [
            _Draft(chunk_type=ChunkType.TOPIC_SEGMENT, content=_join(piece))
            for piece in _pack(units, cfg, target=cfg.target_tokens, overlap=cfg.overlap_tokens)
        ]

    # ------------------------------------------------------------------
    # Chunk assembly
    # ------------------------------------------------------------------

    def _materialise(
        self,
        document_id: str,
        text: str,
        drafts: list[_Draft],
        cfg: SegmentationConfig,
    ) -> list[Chunk]:
        full_id = f"{document_id}_full"
        all_drafts = [_Draft(chunk_type=ChunkType.FULL, content=text), *drafts]
        ids = [
            full_id if pos == 0 else f"{document_id}_{draft.chunk_type.value}_{pos}"
            for pos, draft in enumerate(all_drafts)
        ]

        chunks: list[Chunk] = []
        for pos, draft in enumerate(all_drafts):
            chunk_id = ids[pos]
            extraction = self._extractor.extract(draft.content)
            entities = [e.model_copy(update={"chunk_id": chunk_id}) for e in extraction.entities]
            token_count = estimate_tokens(draft.content)
            is_full = draft.chunk_type == ChunkType.FULL
            chunks.append(
                Chunk(
                    chunk_id=chunk_id,
                    document_id=document_id,
                    position=pos,
                    chunk_type=draft.chunk_type,
                    content=draft.content,
                    speaker=draft.speaker,
                    start_time=draft.start_time,
                    end_time=draft.end_time,
                    token_count=token_count,
                    importance=1.0 if is_full else _importance(entities, token_count, cfg),
                    sentiment=self._extractor.estimate_sentiment(draft.content),
                    topics=self._extractor.extract_topics(draft.content),
                    entities=entities,
                    previous_chunk_id=ids[pos - 1] if pos > 0 else None,
                    next_chunk_id=ids[pos + 1] if pos + 1 < len(ids) else None,
                    parent_chunk_id=None if is_full else full_id,
                )
            )
        return chunks

    def _build_relationships(
        self,
        chunks: list[Chunk],
        cfg: SegmentationConfig,
    ) -> list[ChunkRelationship]:
        relationships: list[ChunkRelationship] = []

        for prev, nxt in zip(chunks, chunks[1:]):
            relationships.append(
                ChunkRelationship(
                    source_chunk_id=prev.chunk_id,
                    target_chunk_id=nxt.chunk_id,
                    relationship_type=RelationshipType.SEQUENTIAL,
                    strength=1.0,
                )
            )

        full, children = chunks[0], chunks[1:]
        for child in children:
            relationships.append(
                ChunkRelationship(
                    source_chunk_id=full.chunk_id,
                    target_chunk_id=child.chunk_id,
                    relationship_type=RelationshipType.PARENT_CHILD,
                    strength=1.0,
                )
            )

        # Each speaker-turn chunk links to that speaker's next turn when the
        # sequential chain does not already connect them.
        turns = [c for c in children if c.chunk_type == ChunkType.SPEAKER_TURN and c.speaker]
        for idx, chunk in enumerate(turns):
            following = next((c for c in turns[idx + 1 :] if c.speaker == chunk.speaker), None)
            if following is not None and following.position != chunk.position + 1:
                relationships.append(
                    ChunkRelationship(
                        source_chunk_id=chunk.chunk_id,
                        target_chunk_id=following.chunk_id,
                        relationship_type=RelationshipType.SPEAKER_CONTINUITY,
                        strength=_SPEAKER_CONTINUITY_STRENGTH,
                    )
                )

        topic_sets = [(c, frozenset(c.topics)) for c in children if c.topics]
        for (left, left_topics), (right, right_topics) in combinations(topic_sets, 2):
            score = jaccard(left_topics, right_topics)
            if score >= cfg.topic_similarity_threshold:
                relationships.append(
                    ChunkRelationship(
                        source_chunk_id=left.chunk_id,
                        target_chunk_id=right.chunk_id,
                        relationship_type=RelationshipType.TOPIC_SIMILARITY,
                        strength=round(score, 4),
                    )
                )
        return relationships


# ----------------------------------------------------------------------
# Packing helpers
# ----------------------------------------------------------------------

def _line_units(
    lines: list[TranscriptLine],
    cfg: SegmentationConfig,
    stamped_at: dict[int, float] | None = None,
) -> list[_Unit]:
    """Turn transcript lines into packable units, splitting oversize lines."""
    units: list[_Unit] = []
    for line in lines:
        ts = stamped_at.get(line.index) if stamped_at else line.timestamp
        raw = line.raw.strip()
        tokens = estimate_tokens(raw)
        if tokens <= cfg.target_tokens:
            units.append(_Unit(raw, tokens, sep="\n", timestamp=ts))
            continue
        for idx, piece in enumerate(_split_oversize(raw, cfg)):
            units.append(
                _Unit(piece, estimate_tokens(piece), sep="\n" if idx == 0 else " ", timestamp=ts)
            )
    return units


def _split_oversize(text: str, cfg: SegmentationConfig) -> list[str]:
    """Split at sentences, then at words for any sentence still over budget."""
    pieces: list[str] = []
    for sentence in split_sentences(text):
        if estimate_tokens(sentence) <= cfg.target_tokens:
            pieces.append(sentence)
            continue
        words = sentence.split()
        current: list[str] = []
        for word in words:
            candidate = " ".join([*current, word])
            if current and estimate_tokens(candidate) > cfg.target_tokens:
                pieces.append(" ".join(current))
                current = [word]
            else:
                current.append(word)
        if current:
            pieces.append(" ".join(current))
    return pieces


def _pack(
    units: list[_Unit],
    cfg: SegmentationConfig,
    target: int,
    overlap: int,
) -> list[list[_Unit]]:
    """Greedily pack *units* into groups of about *target* tokens.

    A group is only closed once it holds at least ``min_tokens`` (unless the
    next unit would push it past ``max_tokens``).  With *overlap* > 0 the
    next group starts with the tail units of the previous one, shortened
    as needed so the group stays within ``max_tokens``.  A short
    final group is folded into its predecessor when the result still fits
    ``max_tokens``.
    """
    groups: list[list[_Unit]] = []
    current: list[_Unit] = []
    current_tokens = 0
    fresh_start = 0  # index in current where non-overlap units begin

    for unit in units:
        fits_target = current_tokens + unit.cost <= target
        below_min = current_tokens < cfg.min_tokens and current_tokens + unit.cost <= cfg.max_tokens
        if current and len(current) > fresh_start and not (fits_target or below_min):
            groups.append(current)
            tail = _overlap_tail(current, overlap)
            while tail and _cost(tail) + unit.cost > cfg.max_tokens:
                tail = tail[1:]
            current = list(tail)
            current_tokens = _cost(current)
            fresh_start = len(current)
        current.append(unit)
        current_tokens += unit.cost

    if current and len(current) > fresh_start:
        groups.append(current)

    if len(groups) >= 2:
        last = groups[-1]
        fresh = last[_shared_prefix(groups[-2], last):]
        if _cost(last) < cfg.min_tokens and _cost(groups[-2]) + _cost(fresh) <= cfg.max_tokens:
            groups[-2] = groups[-2] + fresh
            groups.pop()
    return groups


def _cost(units: list[_Unit]) -> int:
    return sum(u.cost for u in units)


def _overlap_tail(units: list[_Unit], overlap: int) -> list[_Unit]:
    """Return tail units whose combined tokens stay within *overlap*."""
    if overlap <= 0:
        return []
    tail: list[_Unit] = []
    tokens = 0
    for unit in reversed(units):
        if tokens + unit.tokens > overlap:
            break
        tail.insert(0, unit)
        tokens += unit.tokens
    # Never carry the whole group forward, or packing would not advance.
    if len(tail) == len(units):
        tail = tail[1:]
    return tail


def _shared_prefix(previous: list[_Unit], current: list[_Unit]) -> int:
    """Length of the overlap tail *current* inherited from *previous*."""
    for size in range(min(len(previous), len(current)), 0, -1):
        if previous[-size:] == current[:size]:
            return size
    return 0


def _join(units: list[_Unit]) -> str:
    if not units:
        return ""
    parts = [units[0].text]
    for unit in units[1:]:
        parts.append(unit.sep)
        parts.append(unit.text)
    return "".join(parts).strip()


def _time_span(units: list[_Unit]) -> tuple[float | None, float | None]:
    stamps = [u.timestamp for u in units if u.timestamp is not None]
    if not stamps:
        return None, None
    return min(stamps), max(stamps)


def _importance(entities: list, token_count: int, cfg: SegmentationConfig) -> float:
    present = {e.entity_type for e in entities}
    score = _IMPORTANCE_BASE + sum(bonus for kind, bonus in _IMPORTANCE_BONUS.items() if kind in present)
    if token_count >= cfg.target_tokens / 2:
        score += _DENSITY_BONUS
    return round(min(score, 1.0), 4)
