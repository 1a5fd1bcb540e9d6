"""Abstract base class for meeting-transcript sources.

A transcript source lists recent recordings and returns the full text of
one recording as ``[MM:SS] Speaker: text`` lines, the format the
segmenter's speaker-turn and time-window strategies recognise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.models.pipeline import TranscriptRecord


# Concrete implementations:
#   FirefliesTranscriptProvider -- Fireflies.ai GraphQL API over httpx
# Located in: src/providers/transcript_source/
class ITranscriptSource(ABC):
    """Contract for transcript sources.

    Failures follow the provider error split: transient errors for network
    problems, rate limits and 5xx responses; permanent errors for rejected
    requests; :class:`~src.utils.errors.DataIntegrityError` when a
    requested transcript does not exist.
    """

    @abstractmethod
    async def list_recent(self, limit: int, to_date: datetime | None = None) -> list[TranscriptRecord]:
        """Return up to *limit* transcript summaries, newest first.

        Summaries carry id, title, date, participants and duration but
        no ``raw`` text.  With *to_date*, only recordings before it.
        """

    @abstractmethod
    async def fetch(self, transcript_id: str) -> TranscriptRecord:
        """Return one transcript including its formatted ``raw`` text."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this source."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials are configured."""
