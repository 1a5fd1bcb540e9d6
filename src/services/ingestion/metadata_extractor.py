"""Rule-based document metadata derived from a transcript's title.

Meeting titles are short but telling ("Sprint 14 planning", "Daily
standup", "Q3 budget review").  The extractor maps them onto a small set
of categories used as a search filter and keeps the longer title words as
tags, which also feed search-term suggestions.

The first matching rule wins; titles matching no rule fall into
``general``.
"""

from __future__ import annotations

import re
from typing import NamedTuple

# (category, title keywords) in priority order.
_CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("standup", ("standup", "daily")),
    ("planning", ("planning", "sprint")),
    ("review", ("review", "retro")),
    ("one-on-one", ("1:1", "one-on-one")),
)

_DEFAULT_CATEGORY = "general"
_MAX_TAGS = 5
_MIN_TAG_LENGTH = 4
_WORD_SPLIT = re.compile(r"\s+")


class TitleMetadata(NamedTuple):
    category: str
    tags: list[str]


class MetadataExtractor:
    """Derives a category and tags from a document title."""

    def __init__(self, max_tags: int = _MAX_TAGS) -> None:
        self._max_tags = max_tags

    def from_title(self, title: str) -> TitleMetadata:
        lowered = (title or "").lower()
        category = next(
            (name for name, keywords in _CATEGORY_RULES if any(k in lowered for k in keywords)),
            _DEFAULT_CATEGORY,
        )
        words = [w for w in _WORD_SPLIT.split(lowered) if len(w) >= _MIN_TAG_LENGTH]
        tags = list(dict.fromkeys(words))[: self._max_tags]
        return TitleMetadata(category=category, tags=tags)
