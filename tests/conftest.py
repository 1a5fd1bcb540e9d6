"""Shared pytest fixtures for the transcript ingestion test suite."""

from __future__ import annotations

import hashlib
import math
import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from src.config.settings import Settings
from src.interfaces.blob_store import IBlobStore
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.transcript_source import ITranscriptSource
from src.models.pipeline import Document, TranscriptRecord
from src.pipeline.orchestrator import IngestionOrchestrator
from src.providers.queue.sqlite_task_queue import SQLiteTaskQueue
from src.providers.store.sqlite_document_store import SQLiteDocumentStore
from src.services.entity_extractor import EntityExtractor
from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.segmenter import Segmenter
from src.utils.errors import DataIntegrityError, PermanentProviderError, TransientProviderError
from src.utils.retry import BackoffPolicy

_EMBEDDING_DIM = 16

# Fixed instant for the fake clock; every timestamp in a test derives from it.
CLOCK_START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


def _hash_to_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector derived from the SHA-256 of *text*."""
    raw = hashlib.sha256(text.encode("utf-8")).digest()
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    ints = struct.unpack(f"<{dim}I", raw[: dim * 4])
    values = [(i / 0xFFFFFFFF) * 2.0 - 1.0 for i in ints]
    norm = math.sqrt(sum(v * v for v in values)) or 1.0
    return [v / norm for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """Hash-based embedding provider with scriptable failures.

    ``fail_next`` makes the next N ``embed`` calls raise a transient error;
    texts listed in ``reject`` make any batch containing them fail
    permanently.
    """

    def __init__(self, dim: int = _EMBEDDING_DIM) -> None:
        self.dim = dim
        self.calls: list[list[str]] = []
        self.fail_next = 0
        self.reject: set[str] = set()
        self.vectors: dict[str, list[float]] = {}

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransientProviderError(message="simulated outage", provider_name="mock")
        if any(t in self.reject for t in texts):
            raise PermanentProviderError(message="simulated rejection", provider_name="mock")
        return [self.vectors.get(t) or _hash_to_vector(t, self.dim) for t in texts]

    def get_dimension(self) -> int:
        return self.dim

    def get_model_name(self) -> str:
        return "mock-embedding-v1"

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


class InMemoryBlobStore(IBlobStore):
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = data

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def delete(self, key: str) -> bool:
        return self.blobs.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.blobs

    async def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.blobs if k.startswith(prefix))


class FakeClock:
    """Clock whose time only moves when a test (or a sleep) moves it."""

    def __init__(self, start: datetime = CLOCK_START) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeTranscriptSource(ITranscriptSource):
    """Serves transcripts from a dict; ids in ``unavailable`` fail transiently."""

    def __init__(self, records: list[TranscriptRecord] | None = None) -> None:
        self.records: dict[str, TranscriptRecord] = {r.transcript_id: r for r in records or []}
        self.unavailable: set[str] = set()
        self.fetched: list[str] = []

    def add(self, record: TranscriptRecord) -> None:
        self.records[record.transcript_id] = record

    async def list_recent(self, limit: int, to_date: datetime | None = None) -> list[TranscriptRecord]:
        summaries = [r.model_copy(update={"raw": ""}) for r in self.records.values()]
        summaries.sort(key=lambda r: r.date or CLOCK_START, reverse=True)
        return summaries[:limit]

    async def fetch(self, transcript_id: str) -> TranscriptRecord:
        self.fetched.append(transcript_id)
        if transcript_id in self.unavailable:
            raise TransientProviderError(message="source offline", provider_name="fake")
        record = self.records.get(transcript_id)
        if record is None:
            raise DataIntegrityError(message=f"Transcript {transcript_id} not found", provider_name="fake")
        return record

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

_MEETING_LINES = [
    ("Alice Johnson", "Good morning everyone, let us go through the quarterly budget."),
    ("Bob Smith", "The marketing budget came in lower than we forecast in January."),
    ("Carol White", "Engineering needs two more contractors for the migration work."),
    ("Alice Johnson", "How long would the contractors be needed for the migration?"),
    ("Bob Smith", "Probably three months, based on the vendor estimate we received."),
    ("Carol White", "The vendor estimate also covers the database upgrade."),
    ("Alice Johnson", "Then the budget line for infrastructure has to grow."),
    ("Bob Smith", "Finance can move money from the travel line to cover it."),
    ("Carol White", "Travel spending was already cut back last quarter."),
    ("Alice Johnson", "Plan A keeps travel flat and shifts the hiring budget instead."),
    ("Alice Johnson", "Decision: we will proceed with plan A."),
    ("Bob Smith", "Action Item: update the budget spreadsheet - Owner: Bob - Due: Friday"),
    ("Carol White", "Contractor onboarding can start in two weeks."),
    ("Alice Johnson", "Please send the onboarding checklist to the whole team."),
    ("Bob Smith", "Finance will publish the revised forecast next week."),
    ("Carol White", "Database upgrade testing starts after the migration."),
    ("Alice Johnson", "Let us review progress on the migration in our next meeting."),
    ("Bob Smith", "Sounds good, the spreadsheet will be ready by then."),
    ("Carol White", "Engineering will share a staffing plan as well."),
    ("Alice Johnson", "Thanks everyone, that covers the agenda for today."),
    ("Bob Smith", "Thank you, talk soon."),
]


def build_meeting_transcript() -> str:
    """A ten-minute, three-speaker meeting, one line every thirty seconds."""
    lines = []
    for idx, (speaker, text) in enumerate(_MEETING_LINES):
        seconds = idx * 30
        lines.append(f"[{seconds // 60:02d}:{seconds % 60:02d}] {speaker}: {text}")
    return "\n".join(lines)


@pytest.fixture
def meeting_transcript() -> str:
    return build_meeting_transcript()


@pytest.fixture
def meeting_document() -> Document:
    return Document(
        document_id="mtg-001",
        title="Q3 budget planning",
        source_date=CLOCK_START - timedelta(days=1),
        content_key="transcripts/mtg-001.txt",
        duration_seconds=600.0,
    )


@pytest.fixture
def meeting_record(meeting_transcript: str) -> TranscriptRecord:
    return TranscriptRecord(
        transcript_id="mtg-001",
        title="Q3 budget planning",
        date=CLOCK_START - timedelta(days=1),
        raw=meeting_transcript,
        participants=["alice@example.com", "bob@example.com", "carol@example.com"],
        duration_seconds=600.0,
    )


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "transcripts.db"),
        blob_root=str(tmp_path / "blobs"),
        webhook_secret="",
        relevance_threshold=0.7,
        worker_concurrency=1,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def embedding_client(embedding_provider: MockEmbeddingProvider, clock: FakeClock) -> EmbeddingClient:
    """Client with no in-call retries, so each provider failure is one task failure."""
    return EmbeddingClient(
        embedding_provider,
        backoff=BackoffPolicy(max_attempts=1),
        clock=clock,
        batch_size=64,
        max_concurrency=2,
    )


@pytest.fixture
def segmenter() -> Segmenter:
    return Segmenter(entity_extractor=EntityExtractor())


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def transcript_source() -> FakeTranscriptSource:
    return FakeTranscriptSource()


@pytest_asyncio.fixture
async def store(settings: Settings) -> SQLiteDocumentStore:
    document_store = SQLiteDocumentStore(db_path=settings.database_path)
    await document_store.initialize()
    return document_store


@pytest_asyncio.fixture
async def queue(settings: Settings) -> SQLiteTaskQueue:
    task_queue = SQLiteTaskQueue(db_path=settings.database_path)
    await task_queue.initialize()
    return task_queue


@pytest.fixture
def orchestrator(
    store: SQLiteDocumentStore,
    queue: SQLiteTaskQueue,
    blob_store: InMemoryBlobStore,
    segmenter: Segmenter,
    embedding_client: EmbeddingClient,
    transcript_source: FakeTranscriptSource,
    settings: Settings,
    clock: FakeClock,
) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        store=store,
        queue=queue,
        blob_store=blob_store,
        segmenter=segmenter,
        embedding_client=embedding_client,
        transcript_source=transcript_source,
        settings=settings,
        backoff=BackoffPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=60.0),
        clock=clock,
    )
