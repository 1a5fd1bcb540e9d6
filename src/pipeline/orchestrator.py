"""Ingestion orchestrator: sync, webhooks, the task queue and document runs.

Coordinates the transcript source, blob store, segmenter, embedding client
and document store around a durable task queue.

ARCHITECTURE NOTE:
    Work enters the system in three ways, and all three end as queued
    ``vectorize`` tasks:

        - sync_from_source()     → scheduled pull of recent transcripts
        - handle_webhook_event() → push notification from the source
        - enqueue_unprocessed()  → sweep of documents never indexed

    Workers (run_worker / drain) claim tasks one at a time under a lease
    and dispatch them by task type.  A vectorize run walks the document
    through ``new → fetched → segmented → embedded → indexed``; the new
    chunk set and the ``processed`` flag are written in one transaction,
    so re-processing replaces rather than duplicates.

    Failures are sorted by exception class:
        - DataIntegrityError / PermanentProviderError → task failed at once
        - anything else → requeued with backoff until the attempt ceiling,
          then failed
    A failed task marks its document ``failed`` but leaves ``processed``
    as it was, so an earlier complete index stays searchable.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog

from src.models.pipeline import (
    CleanupReport,
    Document,
    DocumentStage,
    ProcessingStats,
    ProcessingTask,
    SyncReport,
    TaskStatus,
    TaskType,
    WebhookResult,
)
from src.pipeline.webhook import verify_signature
from src.services.ingestion.metadata_extractor import MetadataExtractor
from src.utils.concurrency import bounded_semaphore, throttled_gather
from src.utils.errors import (
    DataIntegrityError,
    LeaseLostError,
    PermanentProviderError,
    TranscriptRAGError,
    TransientProviderError,
    WebhookSignatureError,
)
from src.utils.logging import get_logger
from src.utils.retry import BackoffPolicy, Clock, SystemClock

if TYPE_CHECKING:
    from src.config.settings import Settings
    from src.interfaces.blob_store import IBlobStore
    from src.interfaces.document_store import IDocumentStore
    from src.interfaces.task_queue import ITaskQueue
    from src.interfaces.transcript_source import ITranscriptSource
    from src.services.ingestion.embedding_client import EmbeddingClient
    from src.services.ingestion.segmenter import Segmenter

_LAST_SYNC_KEY = "last_sync"
_FAILURE_WINDOW = timedelta(hours=24)

# Queue priorities; higher runs first.
PRIORITY_NEW_TRANSCRIPT = 10
PRIORITY_UPDATED_TRANSCRIPT = 8
PRIORITY_WEBHOOK_RETRY = 7
PRIORITY_DEFAULT = 5

# Webhook events that (re)ingest a transcript, with the priority of the
# resulting vectorize task.
_INGEST_EVENTS: dict[str, int] = {
    "transcription.completed": PRIORITY_NEW_TRANSCRIPT,
    "meeting.transcribed": PRIORITY_NEW_TRANSCRIPT,
    "transcript.updated": PRIORITY_UPDATED_TRANSCRIPT,
}


class IngestionOrchestrator:
    """Drives transcripts from the source into the searchable chunk store.

    All collaborators are injected; the orchestrator never creates them.
    """

    def __init__(
        self,
        store: IDocumentStore,
        queue: ITaskQueue,
        blob_store: IBlobStore,
        segmenter: Segmenter,
        embedding_client: EmbeddingClient,
        transcript_source: ITranscriptSource,
        settings: Settings,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
        metadata_extractor: MetadataExtractor | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._blob_store = blob_store
        self._segmenter = segmenter
        self._embedding_client = embedding_client
        self._source = transcript_source
        self._settings = settings
        self._backoff = backoff or BackoffPolicy.from_settings(settings)
        self._clock = clock or SystemClock()
        self._metadata = metadata_extractor or MetadataExtractor()
        self._logger: structlog.BoundLogger = get_logger(__name__)

        # One handler per task type; a new TaskType member without an entry
        # fails loudly at dispatch.
        self._handlers: dict[TaskType, Callable[[ProcessingTask], Awaitable[None]]] = {
            TaskType.SYNC: self._run_sync_task,
            TaskType.VECTORIZE: self._run_vectorize_task,
            TaskType.WEBHOOK_RETRY: self._run_webhook_retry_task,
        }

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def sync_from_source(
        self,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> SyncReport:
        """Pull recent transcripts, store them and queue them for indexing.

        Transcripts already indexed are counted as succeeded without being
        fetched again.  One transcript failing does not stop the others.
        """
        report = SyncReport(started_at=self._clock.now())
        summaries = await self._source.list_recent(limit or self._settings.sync_page_size)
        if since is not None:
            summaries = [s for s in summaries if s.date is None or s.date >= since]

        succeeded = failed = enqueued = 0
        errors: dict[str, str] = {}
        for summary in summaries:
            existing = await self._store.get_document(summary.transcript_id)
            if existing is not None and existing.processed:
                succeeded += 1
                continue
            try:
                await self._ingest_transcript(summary.transcript_id, PRIORITY_DEFAULT)
            except TranscriptRAGError as exc:
                failed += 1
                errors[summary.transcript_id] = str(exc)
                self._logger.warning(
                    "sync_transcript_failed",
                    transcript_id=summary.transcript_id,
                    error=str(exc),
                )
                continue
            succeeded += 1
            enqueued += 1

        report = report.model_copy(
            update={
                "listed": len(summaries),
                "succeeded": succeeded,
                "failed": failed,
                "enqueued": enqueued,
                "errors": errors,
                "finished_at": self._clock.now(),
            }
        )
        await self._store.set_metadata(_LAST_SYNC_KEY, report.model_dump_json())
        self._logger.info(
            "sync_complete",
            listed=report.listed,
            succeeded=succeeded,
            failed=failed,
            enqueued=enqueued,
        )
        return report

    async def enqueue_unprocessed(self, batch_size: int | None = None) -> int:
        """Queue a vectorize task for each unprocessed document without one.

        Documents in the ``failed`` stage are left alone until an operator
        resets their task.
        """
        documents = await self._store.list_unprocessed(batch_size or self._settings.sync_batch_size)
        queued = 0
        for document in documents:
            if document.stage == DocumentStage.FAILED or not document.content_key:
                continue
            if await self._queue.find_active(TaskType.VECTORIZE, document.document_id):
                continue
            await self._queue.enqueue(
                TaskType.VECTORIZE,
                document_id=document.document_id,
                priority=PRIORITY_DEFAULT,
                run_at=self._clock.now(),
            )
            queued += 1
        self._logger.info("unprocessed_enqueued", candidates=len(documents), queued=queued)
        return queued

    def verify_webhook(self, raw_body: bytes | None, signature: str | None) -> None:
        """Check a delivery's signature; a no-op when no secret is configured.

        Raises
        ------
        WebhookSignatureError
            If the signature is missing or wrong.
        """
        if not self._settings.webhook_secret:
            return
        try:
            verify_signature(self._settings.webhook_secret, raw_body, signature)
        except WebhookSignatureError:
            self._logger.warning("webhook_signature_rejected")
            raise

    async def handle_webhook_event(
        self,
        payload: dict[str, Any],
        raw_body: bytes | None = None,
        signature: str | None = None,
    ) -> WebhookResult:
        """Verify and act on one webhook delivery.

        Raises
        ------
        WebhookSignatureError
            If a webhook secret is configured and the signature is missing
            or wrong.
        """
        self.verify_webhook(raw_body, signature)

        event_type = str(payload.get("event") or payload.get("type") or "unknown")
        raw_id = payload.get("transcriptId") or payload.get("meeting_id")
        document_id = str(raw_id) if raw_id else None
        received_at = self._clock.now()

        result = WebhookResult(event_type=event_type, document_id=document_id)
        error: str | None = None
        try:
            result = await self._dispatch_webhook(event_type, document_id, payload, result)
        except TranscriptRAGError as exc:
            error = str(exc)
            retry = await self._queue.enqueue(
                TaskType.WEBHOOK_RETRY,
                document_id=document_id,
                payload={"event_type": event_type},
                priority=PRIORITY_WEBHOOK_RETRY,
                run_at=received_at,
            )
            result = result.model_copy(
                update={"processed": False, "task_id": retry.task_id, "detail": error}
            )
            self._logger.warning(
                "webhook_processing_failed",
                event_type=event_type,
                document_id=document_id,
                retry_task_id=retry.task_id,
                error=error,
            )
        finally:
            await self._store.log_webhook_event(
                event_type,
                document_id,
                payload,
                processed=result.processed,
                error=error,
                received_at=received_at,
            )

        self._logger.info(
            "webhook_handled",
            event_type=event_type,
            document_id=document_id,
            processed=result.processed,
        )
        return result

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def process_next(self, worker_id: str) -> ProcessingTask | None:
        """Claim and run one task; return its final state, or ``None`` if idle."""
        task = await self._queue.claim(worker_id, self._settings.task_lease_seconds, self._clock.now())
        if task is None:
            return None

        self._logger.info(
            "task_started",
            task_id=task.task_id,
            task_type=task.task_type.value,
            document_id=task.document_id,
            attempt=task.attempts + 1,
            worker_id=worker_id,
        )
        try:
            return await self._run_task(task, worker_id)
        except LeaseLostError as exc:
            # Another worker reclaimed the task after our lease ran out; its
            # outcome stands and ours is dropped.
            self._logger.warning(
                "task_lease_lost",
                task_id=task.task_id,
                task_type=task.task_type.value,
                worker_id=worker_id,
                error=str(exc),
            )
            return await self._queue.get(task.task_id) or task

    async def _run_task(self, task: ProcessingTask, worker_id: str) -> ProcessingTask:
        try:
            await self._handlers[task.task_type](task)
        except (DataIntegrityError, PermanentProviderError) as exc:
            return await self._fail_task(task, exc, worker_id)
        except Exception as exc:  # noqa: BLE001
            return await self._retry_or_fail(task, exc, worker_id)

        done = await self._queue.complete(task.task_id, self._clock.now(), worker_id=worker_id)
        self._logger.info("task_completed", task_id=task.task_id, task_type=task.task_type.value)
        return done

    async def run_worker(self, worker_id: str, max_tasks: int | None = None) -> int:
        """Process tasks until the queue has nothing runnable (or *max_tasks*)."""
        handled = 0
        while max_tasks is None or handled < max_tasks:
            task = await self.process_next(worker_id)
            if task is None:
                break
            handled += 1
        return handled

    async def drain(self, concurrency: int | None = None) -> int:
        """Run several workers side by side until the queue is idle."""
        workers = concurrency or self._settings.worker_concurrency
        counts = await throttled_gather(
            [self.run_worker(f"worker-{i}") for i in range(workers)],
            bounded_semaphore(workers),
            return_exceptions=False,
        )
        total = sum(counts)
        self._logger.info("queue_drained", workers=workers, tasks=total)
        return total

    async def process_document(self, document: Document) -> Document:
        """Segment, embed and index one document, replacing its chunk set."""
        if document.stage not in (DocumentStage.NEW, DocumentStage.FETCHED):
            document = document.restart()

        if not document.content_key:
            raise DataIntegrityError(message=f"Document {document.document_id} has no stored content")
        blob = await self._blob_store.get(document.content_key)
        if blob is None:
            raise DataIntegrityError(
                message=f"Blob {document.content_key} for document {document.document_id} is missing"
            )
        try:
            text = blob.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DataIntegrityError(
                message=(
                    f"Blob {document.content_key} for document {document.document_id} "
                    f"is not valid UTF-8: {exc}"
                )
            ) from exc
        if document.stage == DocumentStage.NEW:
            document = await self._save_stage(document, DocumentStage.FETCHED)

        config = self._segmenter.config.optimal_for_duration(document.duration_seconds)
        result = self._segmenter.segment(document, text, config)
        document = await self._save_stage(document, DocumentStage.SEGMENTED)

        outcomes = await self._embedding_client.embed_batch([c.content for c in result.chunks])
        model = self._embedding_client.model_name
        chunks = [
            chunk.model_copy(
                update={"embedding": outcome.vector, "embedding_model": model if outcome.ok else None}
            )
            for chunk, outcome in zip(result.chunks, outcomes)
        ]
        failed = sum(1 for o in outcomes if not o.ok)
        if chunks and failed == len(chunks):
            raise TransientProviderError(
                message=f"No chunk of document {document.document_id} could be embedded: {outcomes[0].error}"
            )
        document = await self._save_stage(document, DocumentStage.EMBEDDED)

        indexed = document.advance(DocumentStage.INDEXED).model_copy(
            update={
                "processed": True,
                "chunk_count": len(chunks),
                "word_count": len(text.split()),
                "last_processed_at": self._clock.now(),
            }
        )
        await self._store.replace_chunks(indexed, chunks, result.relationships)
        self._logger.info(
            "document_indexed",
            document_id=document.document_id,
            chunks=len(chunks),
            relationships=len(result.relationships),
            entities=len(result.entities),
            embedding_failures=failed,
        )
        return indexed

    # ------------------------------------------------------------------
    # Housekeeping and reporting
    # ------------------------------------------------------------------

    async def cleanup(self, now: datetime | None = None) -> CleanupReport:
        """Purge old terminal tasks and old webhook events."""
        now = now or self._clock.now()
        tasks = await self._queue.purge(now - timedelta(days=self._settings.task_retention_days))
        events = await self._store.purge_webhook_events(
            now - timedelta(days=self._settings.webhook_retention_days)
        )
        self._logger.info("cleanup_complete", tasks_purged=tasks, webhook_events_purged=events)
        return CleanupReport(tasks_purged=tasks, webhook_events_purged=events)

    async def get_sync_status(self) -> SyncReport | None:
        raw = await self._store.get_metadata(_LAST_SYNC_KEY)
        return SyncReport.model_validate_json(raw) if raw else None

    async def get_statistics(self) -> ProcessingStats:
        counts = await self._store.get_corpus_counts()
        pending = await self._queue.counts(TaskStatus.PENDING)
        recent_failures = await self._queue.counts(
            TaskStatus.FAILED, since=self._clock.now() - _FAILURE_WINDOW
        )
        return ProcessingStats(
            total_documents=counts.get("total_documents", 0),
            processed_documents=counts.get("processed_documents", 0),
            total_chunks=counts.get("total_chunks", 0),
            embedded_chunks=counts.get("embedded_chunks", 0),
            pending_tasks=pending,
            recent_failures=sum(recent_failures.values()),
            last_sync=await self.get_sync_status(),
        )

    # ------------------------------------------------------------------
    # Task handlers
    # ------------------------------------------------------------------

    async def _run_sync_task(self, task: ProcessingTask) -> None:
        report = await self.sync_from_source(limit=task.payload.get("limit"))
        if report.listed and report.failed == report.listed:
            raise TransientProviderError(message=f"Every transcript in the sync failed: {report.errors}")

    async def _run_vectorize_task(self, task: ProcessingTask) -> None:
        document = await self._require_document(task)
        await self.process_document(document)

    async def _run_webhook_retry_task(self, task: ProcessingTask) -> None:
        if not task.document_id:
            raise DataIntegrityError(message=f"Webhook retry task {task.task_id} has no transcript id")
        event_type = task.payload.get("event_type", "")
        priority = _INGEST_EVENTS.get(event_type, PRIORITY_DEFAULT)
        await self._ingest_transcript(task.document_id, priority)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch_webhook(
        self,
        event_type: str,
        document_id: str | None,
        payload: dict[str, Any],
        result: WebhookResult,
    ) -> WebhookResult:
        known = event_type in _INGEST_EVENTS or event_type in ("meeting.started", "meeting.ended")
        if not known:
            return result.model_copy(update={"detail": f"Unhandled event type {event_type}"})
        if document_id is None:
            return result.model_copy(update={"detail": "Event carries no transcript id"})

        if event_type in _INGEST_EVENTS:
            task = await self._ingest_transcript(document_id, _INGEST_EVENTS[event_type])
            return result.model_copy(update={"processed": True, "task_id": task.task_id})

        if event_type == "meeting.started":
            existing = await self._store.get_document(document_id)
            if existing is None:
                await self._store.upsert_document(
                    Document(
                        document_id=document_id,
                        title=str(payload.get("title") or ""),
                        source_date=self._clock.now(),
                    )
                )
            return result.model_copy(update={"processed": True, "detail": "placeholder recorded"})

        # meeting.ended
        duration = payload.get("duration")
        existing = await self._store.get_document(document_id) or Document(document_id=document_id)
        if duration is not None:
            existing = existing.model_copy(update={"duration_seconds": float(duration)})
        await self._store.upsert_document(existing)
        return result.model_copy(update={"processed": True, "detail": "duration recorded"})

    async def _ingest_transcript(self, transcript_id: str, priority: int) -> ProcessingTask:
        """Fetch a transcript, store its text and metadata, queue it for indexing."""
        record = await self._source.fetch(transcript_id)
        if not record.raw.strip():
            raise DataIntegrityError(message=f"Transcript {transcript_id} has no content")

        key = f"transcripts/{transcript_id}.txt"
        await self._blob_store.put(key, record.raw.encode("utf-8"))

        existing = await self._store.get_document(transcript_id)
        title_meta = self._metadata.from_title(record.title)
        document = Document(
            document_id=transcript_id,
            title=record.title,
            source_date=record.date or (existing.source_date if existing else None),
            content_key=key,
            word_count=len(record.raw.split()),
            processed=existing.processed if existing else False,
            chunk_count=existing.chunk_count if existing else 0,
            last_processed_at=existing.last_processed_at if existing else None,
            stage=DocumentStage.FETCHED,
            category=title_meta.category,
            project=existing.project if existing else None,
            department=existing.department if existing else None,
            participants=record.participants,
            tags=title_meta.tags,
            duration_seconds=record.duration_seconds
            or (existing.duration_seconds if existing else None),
        )
        await self._store.upsert_document(document)
        return await self._queue.enqueue(
            TaskType.VECTORIZE,
            document_id=transcript_id,
            priority=priority,
            run_at=self._clock.now(),
        )

    async def _require_document(self, task: ProcessingTask) -> Document:
        if not task.document_id:
            raise DataIntegrityError(message=f"Task {task.task_id} references no document")
        document = await self._store.get_document(task.document_id)
        if document is None:
            raise DataIntegrityError(message=f"Document {task.document_id} does not exist")
        return document

    async def _save_stage(self, document: Document, stage: DocumentStage) -> Document:
        advanced = document.advance(stage)
        await self._store.upsert_document(advanced)
        return advanced

    async def _fail_task(self, task: ProcessingTask, exc: Exception, worker_id: str) -> ProcessingTask:
        failed = await self._queue.fail(task.task_id, str(exc), self._clock.now(), worker_id=worker_id)
        await self._mark_document_failed(task)
        self._logger.error(
            "task_failed",
            task_id=task.task_id,
            task_type=task.task_type.value,
            document_id=task.document_id,
            attempts=failed.attempts,
            error=str(exc),
        )
        return failed

    async def _retry_or_fail(self, task: ProcessingTask, exc: Exception, worker_id: str) -> ProcessingTask:
        attempt = task.attempts + 1
        if not self._backoff.should_retry(attempt):
            return await self._fail_task(task, exc, worker_id)
        now = self._clock.now()
        run_at = self._backoff.next_run_at(attempt, now)
        requeued = await self._queue.requeue(task.task_id, str(exc), run_at, now, worker_id=worker_id)
        self._logger.warning(
            "task_requeued",
            task_id=task.task_id,
            task_type=task.task_type.value,
            attempt=attempt,
            run_at=run_at.isoformat(),
            error=str(exc),
        )
        return requeued

    async def _mark_document_failed(self, task: ProcessingTask) -> None:
        if task.task_type != TaskType.VECTORIZE or not task.document_id:
            return
        document = await self._store.get_document(task.document_id)
        if document is not None and document.stage != DocumentStage.FAILED:
            await self._store.upsert_document(document.advance(DocumentStage.FAILED))
