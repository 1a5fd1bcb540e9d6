"""Rule-based entity extraction for meeting transcripts.

Decisions, action items, risks, dates and participants are recognised by a
declarative rule table (:data:`EXTRACTION_RULES`): each row pairs an
:class:`~src.models.entities.EntityType` with a compiled pattern and a
confidence.  One function walks the table, so adding a cue means adding a
row, not a branch.

Confidence reflects rule specificity:

  - **Anchored cues** (``Decision: ...``, ``Action Item: ... - Owner: ...``)
    score 0.9 and above.
  - **Phrase cues** (``we decided to ...``, ``X will ... by Friday``) score
    0.7 to 0.85.
  - **Bare keywords** (a sentence that merely mentions "risk") score 0.6.

Topics are not pattern-driven: they are the most frequent stopword-filtered
content words, scored no higher than 0.5.

Overlapping matches of one type keep the most specific rule's entity, and
near-duplicate values (rapidfuzz ratio >= 0.8) are merged, so a decision
stated once is reported once however many rules it trips.
"""

from __future__ import annotations

import bisect
import re
from collections import Counter
from dataclasses import dataclass, field

import structlog

from src.models.entities import EntityType, ExtractedEntity, ExtractionResult
from src.utils.text_normalizer import (
    RESERVED_LABELS,
    content_words,
    fuzzy_match,
    strip_noise_markers,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MAX_CHARS = 50_000
_DEFAULT_TOP_TOPICS = 5
_CONTEXT_LINES = 3
_MAX_VALUE_CHARS = 300
_DEDUP_THRESHOLD = 0.8

# Leading "[12:04] Alice:" markup that bare-keyword sentence rules pick up.
_LEADING_MARKUP = re.compile(
    r"^\s*(?:\[\d{1,2}:\d{2}(?::\d{2})?\]\s*)?(?:[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?\s*:\s*)?"
)

_PRONOUNS = frozenset({"I", "We", "You", "They", "He", "She", "It", "Someone", "Everyone"})


@dataclass(frozen=True)
class ExtractionRule:
    """One row of the rule table.

    ``value_group`` names the capture group holding the entity value;
    ``metadata_groups`` lists optional groups copied into
    :attr:`ExtractedEntity.metadata` when they matched.
    """

    entity_type: EntityType
    pattern: re.Pattern[str]
    confidence: float
    value_group: str = "value"
    metadata_groups: tuple[str, ...] = field(default_factory=tuple)


def _rule(
    entity_type: EntityType,
    pattern: str,
    confidence: float,
    flags: int = 0,
    metadata_groups: tuple[str, ...] = (),
) -> ExtractionRule:
    return ExtractionRule(
        entity_type=entity_type,
        pattern=re.compile(pattern, flags | re.MULTILINE),
        confidence=confidence,
        metadata_groups=metadata_groups,
    )


_SENTENCE_AROUND = r"(?P<value>[^.!?\n]*\b{cue}\b[^.!?\n]*)"

EXTRACTION_RULES: tuple[ExtractionRule, ...] = (
    # --- Decisions ---
    _rule(
        EntityType.DECISION,
        r"\b(?:Decision|Decided|Agreed|Resolved|Concluded):\s*(?P<value>[^\n]+)",
        0.95,
        re.IGNORECASE,
    ),
    _rule(
        EntityType.DECISION,
        r"\b(?:We|The team|It was)\s+(?:decided|agreed|resolved)\s+(?:to|that)\s+(?P<value>[^.!?\n]+)[.!?]?",
        0.85,
        re.IGNORECASE,
    ),
    _rule(
        EntityType.DECISION,
        r"\b(?:will|shall|must|should)\s+(?:now|going forward)\s+(?P<value>[^.!?\n]+)[.!?]?",
        0.7,
        re.IGNORECASE,
    ),
    _rule(EntityType.DECISION, _SENTENCE_AROUND.format(cue="(?:decided|agreed)"), 0.6, re.IGNORECASE),
    # --- Action items ---
    _rule(
        EntityType.ACTION_ITEM,
        r"\b(?:Action Item|TODO|Task|Follow-up):\s*(?P<value>[^\n]+?)"
        r"(?:\s*-\s*(?:Owner|Assigned to|Assignee):\s*(?P<assignee>[A-Za-z ]+?))?"
        r"(?:\s*-\s*(?:Due|Deadline|By):\s*(?P<due_date>[^\n]+?))?\s*$",
        0.95,
        re.IGNORECASE,
        ("assignee", "due_date"),
    ),
    _rule(
        EntityType.ACTION_ITEM,
        r"\[\s*\]\s*(?P<value>[^\n@]+?)(?:\s*@(?P<assignee>[A-Za-z]+(?: [A-Za-z]+)?))?\s*$",
        0.8,
        0,
        ("assignee",),
    ),
    _rule(
        EntityType.ACTION_ITEM,
        r"(?:\b(?P<assignee>[A-Z][a-z]+)\s+)?\b(?:need to|needs to|will|shall)\s+"
        r"(?P<value>[^.!?\n]+?)\s+by\s+(?P<due_date>[^.!?\n]+)[.!?]?",
        0.75,
        0,
        ("assignee", "due_date"),
    ),
    _rule(EntityType.ACTION_ITEM, _SENTENCE_AROUND.format(cue="follow(?:\\s|-)up"), 0.6, re.IGNORECASE),
    # --- Risks ---
    _rule(
        EntityType.RISK,
        r"\b(?:Risk|Issue|Concern|Problem|Blocker):\s*(?P<value>[^\n]+)",
        0.9,
        re.IGNORECASE,
    ),
    _rule(
        EntityType.RISK,
        r"\b(?:risk|issue|concern|problem)\s+(?:is|are)\s+(?:that\s+)?(?P<value>[^.!?\n]+)[.!?]?",
        0.8,
        re.IGNORECASE,
    ),
    _rule(
        EntityType.RISK,
        r"\b(?:may|might|could)\s+(?:cause|lead to|result in)\s+(?P<value>[^.!?\n]+)[.!?]?",
        0.7,
        re.IGNORECASE,
    ),
    _rule(EntityType.RISK, _SENTENCE_AROUND.format(cue="(?:risks?|concerns?|blockers?)"), 0.6, re.IGNORECASE),
    # --- Dates ---
    _rule(EntityType.DATE, r"\b(?P<value>\d{4}-\d{2}-\d{2})\b", 0.95),
    _rule(EntityType.DATE, r"\b(?P<value>\d{1,2}/\d{1,2}/\d{2,4})\b", 0.95),
    _rule(
        EntityType.DATE,
        r"\b(?P<value>(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2}"
        r"(?:st|nd|rd|th)?(?:,?\s+\d{4})?)\b",
        0.9,
    ),
    _rule(
        EntityType.DATE,
        r"\b(?P<value>(?:next|last|this)\s+(?:Monday|Tuesday|Wednesday|Thursday|Friday|Saturday"
        r"|Sunday|week|month|quarter|year))\b",
        0.8,
        re.IGNORECASE,
    ),
    # --- People ---
    _rule(
        EntityType.PERSON,
        r"^\s*(?:\[\d{1,2}:\d{2}(?::\d{2})?\]\s*)?(?P<value>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s*:",
        0.9,
    ),
    _rule(EntityType.PERSON, r"\b(?:Mr|Mrs|Ms|Dr|Prof)\.\s+(?P<value>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", 0.95),
    _rule(EntityType.PERSON, r"@(?P<value>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", 0.8),
)

# Small sentiment lexicon; scores are a balance of hits, not a classifier.
_POSITIVE_WORDS = frozenset(
    {
        "agree", "agreed", "great", "good", "excellent", "success", "successful",
        "happy", "progress", "resolved", "improved", "ahead", "win", "done",
        "approve", "approved", "perfect", "love", "glad", "thanks",
    }
)
_NEGATIVE_WORDS = frozenset(
    {
        "risk", "issue", "problem", "concern", "blocker", "blocked", "delay",
        "delayed", "late", "fail", "failed", "failure", "bad", "worried",
        "behind", "broken", "bug", "angry", "unhappy", "disagree",
    }
)
_SENTIMENT_WORD = re.compile(r"[a-z]+")


class EntityExtractor:
    """Extracts structured entities from text with a declarative rule table.

    Parameters
    ----------
    max_chars:
        Size ceiling; longer input is truncated before extraction and the
        result is flagged ``truncated`` so callers can re-run per chunk.
    top_topics:
        How many frequency-ranked topics to report.
    rules:
        Rule table override, mainly for tests.
    """

    def __init__(
        self,
        max_chars: int = _DEFAULT_MAX_CHARS,
        top_topics: int = _DEFAULT_TOP_TOPICS,
        rules: tuple[ExtractionRule, ...] = EXTRACTION_RULES,
    ) -> None:
        self._max_chars = max_chars
        self._top_topics = top_topics
        self._rules = rules

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract(self, text: str) -> ExtractionResult:
        """Return every entity found in *text*, ordered by offset then type.

        Empty or whitespace-only text yields an empty result.
        """
        if not text or not text.strip():
            return ExtractionResult()

        truncated = len(text) > self._max_chars
        if truncated:
            logger.warning(
                "extraction_input_truncated",
                original_chars=len(text),
                max_chars=self._max_chars,
            )
            text = text[: self._max_chars]

        line_starts = _line_starts(text)
        lines = text.split("\n")

        candidates: list[tuple[ExtractedEntity, int, int]] = []
        for rule in self._rules:
            for match in rule.pattern.finditer(text):
                entity = self._entity_from_match(rule, match, lines, line_starts)
                if entity is not None:
                    candidates.append((entity, match.start(), match.end()))

        entities = _resolve_overlaps(candidates)
        entities.extend(self._topic_entities(text, lines, line_starts))
        entities.sort(key=lambda e: (e.offset, e.entity_type.value))

        logger.debug(
            "entities_extracted",
            count=len(entities),
            truncated=truncated,
        )
        return ExtractionResult(entities=entities, truncated=truncated)

    def extract_topics(self, text: str, k: int | None = None) -> list[str]:
        """Return the *k* most frequent content words, most frequent first.

        Ties are broken by first appearance so the result is deterministic.
        Recorder markers such as ``[CROSSTALK]`` never count as topics.
        """
        limit = self._top_topics if k is None else k
        words = content_words(strip_noise_markers(text))
        if not words or limit <= 0:
            return []
        counts = Counter(words)
        first_seen: dict[str, int] = {}
        for idx, word in enumerate(words):
            first_seen.setdefault(word, idx)
        ranked = sorted(counts, key=lambda w: (-counts[w], first_seen[w]))
        return ranked[:limit]

    @staticmethod
    def estimate_sentiment(text: str) -> float:
        """Score *text* in [-1, 1] from positive/negative lexicon hits."""
        words = _SENTIMENT_WORD.findall(text.lower())
        positive = sum(1 for w in words if w in _POSITIVE_WORDS)
        negative = sum(1 for w in words if w in _NEGATIVE_WORDS)
        total = positive + negative
        if total == 0:
            return 0.0
        return round((positive - negative) / total, 4)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _entity_from_match(
        self,
        rule: ExtractionRule,
        match: re.Match[str],
        lines: list[str],
        line_starts: list[int],
    ) -> ExtractedEntity | None:
        raw_value = match.group(rule.value_group)
        if raw_value is None:
            return None
        value = _clean_value(raw_value)
        if len(value) < 2:
            return None
        if rule.entity_type == EntityType.PERSON and value in RESERVED_LABELS:
            return None

        metadata: dict[str, str] = {}
        for group in rule.metadata_groups:
            captured = match.group(group)
            if not captured:
                continue
            captured = captured.strip()
            if group == "assignee" and captured in _PRONOUNS:
                continue
            metadata[group] = captured

        offset = match.start(rule.value_group)
        return ExtractedEntity(
            entity_type=rule.entity_type,
            value=value,
            confidence=rule.confidence,
            offset=offset,
            metadata=metadata,
            context=_context_for(offset, lines, line_starts),
        )

    def _topic_entities(
        self,
        text: str,
        lines: list[str],
        line_starts: list[int],
    ) -> list[ExtractedEntity]:
        topics = self.extract_topics(text)
        if not topics:
            return []
        counts = Counter(content_words(strip_noise_markers(text)))
        top_count = counts[topics[0]]
        lowered = text.lower()
        entities: list[ExtractedEntity] = []
        for topic in topics:
            found = re.search(rf"\b{re.escape(topic)}\b", lowered)
            offset = found.start() if found else 0
            entities.append(
                ExtractedEntity(
                    entity_type=EntityType.TOPIC,
                    value=topic,
                    confidence=round(0.3 + 0.2 * counts[topic] / top_count, 4),
                    offset=offset,
                    metadata={"frequency": str(counts[topic])},
                    context=_context_for(offset, lines, line_starts),
                )
            )
        return entities


# ----------------------------------------------------------------------
# Module helpers
# ----------------------------------------------------------------------

def _clean_value(raw: str) -> str:
    value = _LEADING_MARKUP.sub("", raw).strip().strip("-").strip()
    value = " ".join(value.split())
    return value[:_MAX_VALUE_CHARS]


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for idx, char in enumerate(text):
        if char == "\n":
            starts.append(idx + 1)
    return starts


def _context_for(offset: int, lines: list[str], line_starts: list[int]) -> str:
    lo = bisect.bisect_right(line_starts, offset) - 1
    first = max(0, lo - _CONTEXT_LINES)
    last = min(len(lines), lo + _CONTEXT_LINES + 1)
    return "\n".join(lines[first:last]).strip()


def _resolve_overlaps(
    candidates: list[tuple[ExtractedEntity, int, int]],
) -> list[ExtractedEntity]:
    """Keep the most specific entity per overlapping span and merge near-duplicates."""
    ordered = sorted(candidates, key=lambda c: (-c[0].confidence, c[1]))
    accepted: dict[EntityType, list[tuple[ExtractedEntity, int, int]]] = {}
    for entity, start, end in ordered:
        kept = accepted.setdefault(entity.entity_type, [])
        if any(start < k_end and k_start < end for _, k_start, k_end in kept):
            continue
        values = [k.value.lower() for k, _, _ in kept]
        if fuzzy_match(entity.value.lower(), values, threshold=_DEDUP_THRESHOLD) is not None:
            continue
        kept.append((entity, start, end))
    return [entity for kept in accepted.values() for entity, _, _ in kept]
