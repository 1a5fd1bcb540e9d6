"""Fireflies.ai transcript source via the GraphQL API.

Issues POST requests to ``https://api.fireflies.ai/graphql`` with a Bearer
token.  Two operations are used:

- ``transcripts(limit, toDate)`` -- recent recordings, 25 per call at most
- ``transcript(id)`` -- one recording with its sentences and summary

Sentences are rendered one per line as ``[MM:SS] Speaker: text``, so the
segmenter's speaker-turn and time-window strategies apply directly.

Follows the same adapter shape as the other HTTP providers: an injected
``httpx.AsyncClient`` and a single ``_graphql_request`` helper.  Retries
are left to the caller's backoff policy; this adapter only classifies
failures.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from src.interfaces.transcript_source import ITranscriptSource
from src.models.pipeline import TranscriptRecord
from src.utils.errors import (
    DataIntegrityError,
    PermanentProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TransientProviderError,
)
from src.utils.logging import get_logger
from src.utils.text_normalizer import format_timestamp

_GRAPHQL_URL = "https://api.fireflies.ai/graphql"
_MAX_PAGE_SIZE = 25
_PROVIDER = "fireflies"

_LIST_QUERY = """
query GetTranscripts($limit: Int, $toDate: DateTime) {
  transcripts(limit: $limit, toDate: $toDate) {
    id
    title
    date
    duration
    participants
  }
}
"""

_TRANSCRIPT_QUERY = """
query GetTranscriptContent($id: String!) {
  transcript(id: $id) {
    id
    title
    date
    duration
    participants
    sentences {
      text
      speaker_id
      speaker_name
      start_time
    }
    summary {
      keywords
      action_items
    }
  }
}
"""

# Names for speakers Fireflies could not identify; shaped so the speaker
# line pattern (capitalised words) still recognises them.
_UNNAMED_SPEAKERS = (
    "Speaker One", "Speaker Two", "Speaker Three", "Speaker Four", "Speaker Five",
    "Speaker Six", "Speaker Seven", "Speaker Eight", "Speaker Nine", "Speaker Ten",
)


class FirefliesTranscriptProvider(ITranscriptSource):
    """Transcript source backed by the Fireflies.ai GraphQL API.

    Parameters
    ----------
    http_client:
        Injected ``httpx.AsyncClient`` for testability and connection pooling.
    api_key:
        Fireflies API token.
    api_url:
        GraphQL endpoint.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        api_url: str = _GRAPHQL_URL,
        timeout: float = 30.0,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # ITranscriptSource implementation
    # ------------------------------------------------------------------

    async def list_recent(self, limit: int, to_date: datetime | None = None) -> list[TranscriptRecord]:
        variables: dict[str, Any] = {"limit": max(1, min(limit, _MAX_PAGE_SIZE))}
        if to_date is not None:
            variables["toDate"] = to_date.astimezone(timezone.utc).isoformat()  # noqa: UP017
        data = await self._graphql_request(_LIST_QUERY, variables)

        records = [self._to_record(item) for item in data.get("transcripts") or [] if item]
        self._logger.debug("fireflies_transcripts_listed", count=len(records))
        return records

    async def fetch(self, transcript_id: str) -> TranscriptRecord:
        data = await self._graphql_request(_TRANSCRIPT_QUERY, {"id": transcript_id})
        item = data.get("transcript")
        if not item:
            raise DataIntegrityError(
                message=f"Transcript {transcript_id} not found",
                provider_name=_PROVIDER,
            )

        record = self._to_record(item)
        summary = item.get("summary") or {}
        keywords = summary.get("keywords") or []
        raw = format_sentences(item.get("sentences") or [])
        self._logger.info(
            "fireflies_transcript_fetched",
            transcript_id=transcript_id,
            sentences=len(item.get("sentences") or []),
            chars=len(raw),
        )
        return record.model_copy(update={"raw": raw, "keywords": [str(k) for k in keywords]})

    def get_provider_name(self) -> str:
        return _PROVIDER

    def is_available(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _graphql_request(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST a GraphQL operation and return its ``data`` portion.

        Raises
        ------
        RateLimitError
            On HTTP 429.
        TransientProviderError
            On HTTP 5xx or a network failure.
        PermanentProviderError
            On any other non-200 status or GraphQL-level errors.
        """
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            response = await self._http.post(
                self._api_url,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                message=f"Fireflies request timed out: {exc}", provider_name=_PROVIDER
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientProviderError(
                message=f"Fireflies request failed: {exc}", provider_name=_PROVIDER
            ) from exc

        if response.status_code == 429:
            raise RateLimitError(message="Fireflies rate limit exceeded", provider_name=_PROVIDER)
        if response.status_code >= 500:
            raise TransientProviderError(
                message=f"Fireflies server error {response.status_code}", provider_name=_PROVIDER
            )
        if response.status_code != 200:
            raise PermanentProviderError(
                message=f"Fireflies API error {response.status_code}: {response.text[:200]}",
                provider_name=_PROVIDER,
            )

        body = response.json()
        if body.get("errors"):
            self._logger.warning("fireflies_graphql_errors", errors=body["errors"][:3])
            raise PermanentProviderError(
                message=f"Fireflies GraphQL errors: {body['errors'][:3]}",
                provider_name=_PROVIDER,
            )
        return body.get("data") or {}

    @staticmethod
    def _to_record(item: dict[str, Any]) -> TranscriptRecord:
        participants = [str(p) for p in item.get("participants") or [] if p]
        duration = item.get("duration")
        return TranscriptRecord(
            transcript_id=str(item["id"]),
            title=item.get("title") or "",
            date=parse_fireflies_date(item.get("date")),
            participants=participants,
            duration_seconds=float(duration) if duration is not None else None,
        )


def parse_fireflies_date(value: Any) -> datetime | None:
    """Parse a Fireflies date: epoch milliseconds or an ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)  # noqa: UP017
    text = str(value)
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)  # noqa: UP017
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)  # noqa: UP017


def format_sentences(sentences: list[dict[str, Any]]) -> str:
    """Render Fireflies sentences as ``[MM:SS] Speaker: text`` lines."""
    unnamed: dict[Any, str] = {}
    lines: list[str] = []
    for sentence in sentences:
        text = (sentence.get("text") or "").strip()
        if not text:
            continue
        speaker = (sentence.get("speaker_name") or "").strip()
        if not speaker:
            key = sentence.get("speaker_id")
            if key not in unnamed:
                idx = len(unnamed)
                unnamed[key] = _UNNAMED_SPEAKERS[idx] if idx < len(_UNNAMED_SPEAKERS) else "Speaker Other"
            speaker = unnamed[key]
        start = float(sentence.get("start_time") or 0.0)
        lines.append(f"[{format_timestamp(start)}] {speaker}: {text}")
    return "\n".join(lines)
