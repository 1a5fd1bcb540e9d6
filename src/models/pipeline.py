"""Document lifecycle and task queue models.

Defines Pydantic v2 models for the documents the orchestrator drives
through ingestion and for the queue items that carry that work.  All
models use frozen config; state transitions produce new instances via
``model_copy(update={...})``.

Architecture note:
    A :class:`Document` advances ``new -> fetched -> segmented -> embedded
    -> indexed`` while one worker processes its :class:`ProcessingTask`.
    ``failed`` is terminal for a run and reachable from every other stage.
    The ``processed`` flag only flips to ``True`` together with ``indexed``,
    so readers never see a processed document with a partial chunk set.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.utils.errors import PipelineError


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# DocumentStage -- per-document state machine.
# ---------------------------------------------------------------------------
class DocumentStage(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Ingestion stages of a document, in order."""

    NEW = "new"
    FETCHED = "fetched"
    SEGMENTED = "segmented"
    EMBEDDED = "embedded"
    INDEXED = "indexed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self) if self in _STAGE_ORDER else len(_STAGE_ORDER)

    def can_advance_to(self, target: DocumentStage) -> bool:
        """Forward moves only; ``failed`` is reachable from any non-failed stage."""
        if target == DocumentStage.FAILED:
            return self != DocumentStage.FAILED
        if self == DocumentStage.FAILED:
            return False
        return target.rank > self.rank


_STAGE_ORDER = (
    DocumentStage.NEW,
    DocumentStage.FETCHED,
    DocumentStage.SEGMENTED,
    DocumentStage.EMBEDDED,
    DocumentStage.INDEXED,
)


# ---------------------------------------------------------------------------
# Document -- a source transcript or file.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """A source unit with its ingestion bookkeeping and filterable metadata."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str = ""
    source_date: datetime | None = None
    content_key: str = Field(default="", description="Blob-store key of the raw text.")
    word_count: int = Field(default=0, ge=0)
    processed: bool = False
    chunk_count: int = Field(default=0, ge=0)
    last_processed_at: datetime | None = None
    stage: DocumentStage = DocumentStage.NEW
    # Metadata carried over from the transcript source; used by filters.
    category: str = "general"
    project: str | None = None
    department: str | None = None
    participants: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    duration_seconds: float | None = Field(default=None, ge=0.0)

    def advance(self, target: DocumentStage) -> Document:
        """Return a copy moved to *target*, rejecting backward moves."""
        if not self.stage.can_advance_to(target):
            raise PipelineError(
                message=f"Illegal stage transition {self.stage.value} -> {target.value} "
                f"for document {self.document_id}"
            )
        return self.model_copy(update={"stage": target})

    def restart(self) -> Document:
        """Return a copy at ``new`` so a fresh processing run can begin.

        ``processed`` and ``chunk_count`` keep describing the last complete
        run until the new one finishes.
        """
        return self.model_copy(update={"stage": DocumentStage.NEW})


class TranscriptRecord(BaseModel):
    """A transcript as delivered by the transcript source."""

    model_config = ConfigDict(frozen=True)

    transcript_id: str
    title: str = ""
    date: datetime | None = None
    raw: str = ""
    participants: list[str] = Field(default_factory=list)
    duration_seconds: float | None = None
    keywords: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Task queue.
# ---------------------------------------------------------------------------
class TaskType(str, Enum):  # noqa: UP042
    """Work a queued task performs."""

    SYNC = "sync"
    VECTORIZE = "vectorize"
    WEBHOOK_RETRY = "webhook_retry"


class TaskStatus(str, Enum):  # noqa: UP042
    """Lifecycle of a queued task.  ``completed`` and ``failed`` are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class ProcessingTask(BaseModel):
    """A durable unit of queued, retryable work."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    task_type: TaskType
    document_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=5, description="Higher values are claimed first.")
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None
    scheduled_at: datetime = Field(default_factory=_utcnow)
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Reports returned by orchestrator entry points.
# ---------------------------------------------------------------------------
class WebhookResult(BaseModel):
    """What the orchestrator did with one webhook event."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    document_id: str | None = None
    processed: bool = False
    task_id: str | None = None
    detail: str = ""


class SyncReport(BaseModel):
    """Per-document outcome counts of a sync run."""

    model_config = ConfigDict(frozen=True)

    listed: int = 0
    succeeded: int = 0
    failed: int = 0
    enqueued: int = 0
    errors: dict[str, str] = Field(
        default_factory=dict, description="Document id -> error message for failures."
    )
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None


class CleanupReport(BaseModel):
    """Rows removed by a housekeeping pass."""

    model_config = ConfigDict(frozen=True)

    tasks_purged: int = 0
    webhook_events_purged: int = 0


class ProcessingStats(BaseModel):
    """Snapshot of corpus and queue health."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = 0
    processed_documents: int = 0
    total_chunks: int = 0
    embedded_chunks: int = 0
    pending_tasks: dict[str, int] = Field(default_factory=dict)
    recent_failures: int = 0
    last_sync: SyncReport | None = None
