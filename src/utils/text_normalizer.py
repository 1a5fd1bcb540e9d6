"""Text utilities shared by the extractor, segmenter and search engine.

This module handles four distinct concerns:

1. **Transcript line parsing** -- Recognises the ``[MM:SS] Speaker Name:``
   markup produced by meeting recorders and turns each line into a
   :class:`TranscriptLine` carrying the speaker label and offset in seconds.

2. **Token and sentence helpers** -- A ``ceil(len / 4)`` token estimate,
   paragraph splitting, and an abbreviation-aware sentence splitter.

3. **Keyword helpers** -- Stopword-filtered word tokenisation and Jaccard
   similarity over label sets.

4. **Fuzzy matching** -- rapidfuzz-backed near-duplicate detection used to
   merge entities that differ only in punctuation or word order.
"""

from __future__ import annotations

import math
import re
from typing import NamedTuple

from rapidfuzz import fuzz, process

# ------------------------------------------------------------------
# Transcript line parsing
# ------------------------------------------------------------------

# Optional bracketed timestamp, then a one- or two-word capitalised name
# followed by a colon: "[12:04] Alice Smith: text" or "Bob: text".
_SPEAKER_LINE = re.compile(
    r"^\s*(?:\[(?P<ts>\d{1,2}:\d{2}(?::\d{2})?)\])?\s*"
    r"(?P<name>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s*:\s?(?P<text>.*)$"
)

# Timestamp without a speaker label: "[12:04] text".
_TIMESTAMP_LINE = re.compile(r"^\s*\[(?P<ts>\d{1,2}:\d{2}(?::\d{2})?)\]\s*(?P<text>.*)$")

# Labels that look like "Name:" but introduce structured notes instead of
# a speaker turn.
RESERVED_LABELS = frozenset(
    {
        "Action",
        "Action Item",
        "Agenda",
        "Agreed",
        "Blocker",
        "Concern",
        "Concluded",
        "Date",
        "Decided",
        "Decision",
        "Due",
        "Follow",
        "Issue",
        "Note",
        "Notes",
        "Owner",
        "Problem",
        "Resolved",
        "Risk",
        "Summary",
        "Task",
        "Time",
        "Todo",
    }
)

# [INAUDIBLE], [CROSSTALK], [LAUGHTER] and friends.
_NOISE_MARKER = re.compile(
    r"\[(?:INAUDIBLE|CROSSTALK|LAUGHTER|MUSIC|APPLAUSE|SILENCE|PAUSE"
    r"|inaudible|crosstalk|laughter|music|applause|silence|pause)\]",
)


class TranscriptLine(NamedTuple):
    """One non-blank source line with any recognised markup split out."""

    index: int
    raw: str
    speaker: str | None
    timestamp: float | None
    text: str


def parse_timestamp(value: str) -> float | None:
    """Convert ``MM:SS`` or ``H:MM:SS`` into seconds; ``None`` if malformed."""
    parts = value.split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        return None
    numbers = [int(p) for p in parts]
    if any(n >= 60 for n in numbers[1:]):
        return None
    if len(numbers) == 2:
        minutes, seconds = numbers
        return float(minutes * 60 + seconds)
    hours, minutes, seconds = numbers
    return float(hours * 3600 + minutes * 60 + seconds)


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``MM:SS`` (or ``H:MM:SS`` past the hour)."""
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def parse_transcript_lines(text: str) -> list[TranscriptLine]:
    """Split *text* into :class:`TranscriptLine` records, skipping blanks.

    Lines whose label is in :data:`RESERVED_LABELS` keep their text intact
    and carry no speaker.  Malformed timestamps are ignored rather than
    rejected so broken markup still yields usable lines.
    """
    lines: list[TranscriptLine] = []
    for index, raw in enumerate(text.splitlines()):
        if not raw.strip():
            continue
        match = _SPEAKER_LINE.match(raw)
        if match and match.group("name") not in RESERVED_LABELS:
            ts = match.group("ts")
            lines.append(
                TranscriptLine(
                    index=index,
                    raw=raw,
                    speaker=match.group("name"),
                    timestamp=parse_timestamp(ts) if ts else None,
                    text=match.group("text").strip(),
                )
            )
            continue
        ts_match = _TIMESTAMP_LINE.match(raw)
        if ts_match:
            lines.append(
                TranscriptLine(
                    index=index,
                    raw=raw,
                    speaker=None,
                    timestamp=parse_timestamp(ts_match.group("ts")),
                    text=ts_match.group("text").strip(),
                )
            )
            continue
        lines.append(TranscriptLine(index=index, raw=raw, speaker=None, timestamp=None, text=raw.strip()))
    return lines


def strip_noise_markers(text: str) -> str:
    """Remove recorder noise markers such as ``[CROSSTALK]``."""
    return _NOISE_MARKER.sub("", text)


# ------------------------------------------------------------------
# Token and sentence helpers
# ------------------------------------------------------------------

# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "inc",
        "ltd",
        "co",
        "e.g",
        "i.e",
    }
)


def estimate_tokens(text: str) -> int:
    """Approximate token count as ``ceil(len(text) / 4)``."""
    return math.ceil(len(text) / 4)


def split_paragraphs(text: str) -> list[str]:
    """Split *text* on blank lines, discarding empty parts."""
    parts = re.split(r"\n\s*\n", text)
    return [p.strip() for p in parts if p.strip()]


def split_sentences(text: str) -> list[str]:
    """Split *text* at ``.``, ``!`` or ``?`` boundaries, respecting abbreviations.

    Periods after known abbreviations are masked with ``\\x00`` (same length,
    so indices stay aligned) before scanning for boundaries.
    """
    masked = text
    for abbr in _ABBREVIATIONS:
        masked = masked.replace(f"{abbr}.", f"{abbr}\x00")

    sentences: list[str] = []
    last = 0
    for match in re.finditer(r"[.!?](?:\s|$)", masked):
        end = match.end()
        sentence = text[last:end].strip()
        if sentence:
            sentences.append(sentence)
        last = end

    remainder = text[last:].strip()
    if remainder:
        sentences.append(remainder)

    return sentences if sentences else [text]


# ------------------------------------------------------------------
# Keyword helpers
# ------------------------------------------------------------------

STOPWORDS = frozenset(
    {
        "about", "above", "after", "again", "also", "because", "been", "before",
        "being", "below", "between", "both", "could", "does", "doing", "done",
        "down", "during", "each", "even", "every", "from", "further", "going",
        "good", "have", "having", "here", "into", "just", "know", "like",
        "make", "many", "maybe", "more", "most", "much", "need", "only",
        "other", "over", "really", "right", "same", "should", "some", "such",
        "sure", "take", "than", "that", "their", "them", "then", "there",
        "these", "they", "thing", "things", "think", "this", "those", "through",
        "under", "until", "very", "want", "well", "were", "what", "when",
        "where", "which", "while", "will", "with", "would", "yeah", "your",
        "okay", "gonna", "kind", "actually", "mean", "said", "says", "thanks",
    }
)

_WORD = re.compile(r"\b[a-zA-Z]{4,}\b")


def content_words(text: str) -> list[str]:
    """Return lowercase words of four or more letters minus stopwords."""
    return [w for w in (m.group(0).lower() for m in _WORD.finditer(text)) if w not in STOPWORDS]


def jaccard(left: set[str] | frozenset[str], right: set[str] | frozenset[str]) -> float:
    """Jaccard similarity of two label sets; two empty sets score 0."""
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


# ------------------------------------------------------------------
# Fuzzy matching
# ------------------------------------------------------------------

def fuzzy_match(
    query: str,
    candidates: list[str],
    threshold: float = 0.8,
) -> tuple[str, float] | None:
    """Find the best fuzzy match for *query* among *candidates*.

    Uses rapidfuzz ``token_sort_ratio`` so word-order differences
    ("plan A proceed" vs "proceed plan A") still match.

    Returns:
        A (best_match, score) tuple if a match meets the threshold, else None.
    """
    if not candidates:
        return None

    result = process.extractOne(
        query,
        candidates,
        scorer=fuzz.token_sort_ratio,
        score_cutoff=threshold * 100,  # rapidfuzz uses a 0-100 scale
    )

    if result is None:
        return None

    match_str, score, _ = result
    return (match_str, score / 100.0)
