"""SQLite-backed lease queue for processing tasks.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing ITaskQueue).
#
# Table: ``processing_tasks`` in the same database file as the document
# store.  A claim is a compare-and-set ``UPDATE`` that only succeeds if
# the row is still runnable, so two workers racing for the same task
# cannot both win.  Leases are plain timestamps: a ``processing`` row
# whose ``lease_expires_at`` has passed is runnable again.
# Transitions given a ``worker_id`` only apply while that worker still
# holds the lease.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.task_queue import ITaskQueue
from src.models.pipeline import ProcessingTask, TaskStatus, TaskType
from src.providers.store.sqlite_common import from_db_time, to_db_time
from src.utils.errors import LeaseLostError, TaskQueueError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/transcripts.db")
_PROVIDER = "sqlite_queue"

# Claim attempts before giving up when other workers keep winning the race.
_CLAIM_RACE_LIMIT = 5

_CREATE_TASKS_TABLE = """\
CREATE TABLE IF NOT EXISTS processing_tasks (
    task_id          TEXT PRIMARY KEY,
    task_type        TEXT NOT NULL,
    document_id      TEXT,
    payload          TEXT NOT NULL DEFAULT '{}',
    priority         INTEGER NOT NULL DEFAULT 5,
    status           TEXT NOT NULL DEFAULT 'pending',
    attempts         INTEGER NOT NULL DEFAULT 0,
    last_error       TEXT,
    scheduled_at     TEXT NOT NULL,
    lease_owner      TEXT,
    lease_expires_at TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_runnable ON processing_tasks(status, priority, scheduled_at);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_document ON processing_tasks(task_type, document_id, status);",
]

_RUNNABLE = """\
((status = 'pending' AND scheduled_at <= :now)
 OR (status = 'processing' AND lease_expires_at IS NOT NULL AND lease_expires_at <= :now))"""

_SELECT_NEXT = f"""\
SELECT task_id FROM processing_tasks
WHERE {_RUNNABLE}
ORDER BY priority DESC, scheduled_at ASC, created_at ASC
LIMIT 1;
"""

_CLAIM = f"""\
UPDATE processing_tasks
SET status = 'processing', lease_owner = :worker, lease_expires_at = :lease,
    updated_at = :now
WHERE task_id = :task_id AND {_RUNNABLE};
"""


class SQLiteTaskQueue(ITaskQueue):
    """Durable priority queue with lease-based claims."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_TASKS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("task_queue_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # ITaskQueue implementation
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        task_type: TaskType,
        document_id: str | None = None,
        payload: dict[str, Any] | None = None,
        priority: int = 5,
        run_at: datetime | None = None,
    ) -> ProcessingTask:
        now = datetime.now().astimezone()
        scheduled = run_at or now

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            if document_id is not None:
                cursor = await db.execute(
                    "SELECT * FROM processing_tasks WHERE task_type = ? AND document_id = ? "
                    "AND status = 'pending' ORDER BY created_at LIMIT 1",
                    (task_type.value, document_id),
                )
                existing = await cursor.fetchone()
                if existing is not None:
                    task = _row_to_task(dict(existing))
                    if priority > task.priority:
                        await db.execute(
                            "UPDATE processing_tasks SET priority = ?, updated_at = ? WHERE task_id = ?",
                            (priority, to_db_time(now), task.task_id),
                        )
                        await db.commit()
                        task = task.model_copy(update={"priority": priority})
                    logger.debug(
                        "task_enqueue_deduplicated",
                        task_id=task.task_id,
                        task_type=task_type.value,
                        document_id=document_id,
                    )
                    return task

            task = ProcessingTask(
                task_id=uuid.uuid4().hex,
                task_type=task_type,
                document_id=document_id,
                payload=payload or {},
                priority=priority,
                scheduled_at=scheduled,
                created_at=now,
                updated_at=now,
            )
            await db.execute(
                "INSERT INTO processing_tasks (task_id, task_type, document_id, payload, priority, "
                "status, attempts, scheduled_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, 'pending', 0, ?, ?, ?)",
                (
                    task.task_id,
                    task_type.value,
                    document_id,
                    json.dumps(task.payload, default=str),
                    priority,
                    to_db_time(scheduled),
                    to_db_time(now),
                    to_db_time(now),
                ),
            )
            await db.commit()

        logger.info(
            "task_enqueued",
            task_id=task.task_id,
            task_type=task_type.value,
            document_id=document_id,
            priority=priority,
        )
        return task

    async def find_active(self, task_type: TaskType, document_id: str) -> ProcessingTask | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM processing_tasks WHERE task_type = ? AND document_id = ? "
                "AND status IN ('pending', 'processing') ORDER BY created_at LIMIT 1",
                (task_type.value, document_id),
            )
            row = await cursor.fetchone()
        return _row_to_task(dict(row)) if row else None

    async def claim(self, worker_id: str, lease_seconds: int, now: datetime) -> ProcessingTask | None:
        now_s = to_db_time(now)
        lease_s = to_db_time(now + timedelta(seconds=lease_seconds))

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            for _ in range(_CLAIM_RACE_LIMIT):
                cursor = await db.execute(_SELECT_NEXT, {"now": now_s})
                # Drain the cursor so no read snapshot is held into the UPDATE.
                rows = await cursor.fetchall()
                if not rows:
                    return None
                task_id = rows[0]["task_id"]
                cursor = await db.execute(
                    _CLAIM,
                    {"worker": worker_id, "lease": lease_s, "now": now_s, "task_id": task_id},
                )
                await db.commit()
                if cursor.rowcount == 1:
                    cursor = await db.execute(
                        "SELECT * FROM processing_tasks WHERE task_id = ?", (task_id,)
                    )
                    task = _row_to_task(dict(await cursor.fetchone()))
                    logger.debug(
                        "task_claimed",
                        task_id=task_id,
                        worker_id=worker_id,
                        task_type=task.task_type.value,
                        attempts=task.attempts,
                    )
                    return task
                # Another worker won this row; look again.
        logger.warning("task_claim_contended", worker_id=worker_id)
        return None

    async def complete(self, task_id: str, now: datetime, worker_id: str | None = None) -> ProcessingTask:
        owner_sql, owner_params = _owner_clause(worker_id)
        return await self._transition(
            task_id,
            "UPDATE processing_tasks SET status = 'completed', lease_owner = NULL, "
            "lease_expires_at = NULL, updated_at = ? WHERE task_id = ? AND status = 'processing'"
            + owner_sql,
            (to_db_time(now), task_id, *owner_params),
            expected="processing",
            worker_id=worker_id,
        )

    async def fail(
        self,
        task_id: str,
        error: str,
        now: datetime,
        worker_id: str | None = None,
    ) -> ProcessingTask:
        owner_sql, owner_params = _owner_clause(worker_id)
        return await self._transition(
            task_id,
            "UPDATE processing_tasks SET status = 'failed', attempts = attempts + 1, "
            "last_error = ?, lease_owner = NULL, lease_expires_at = NULL, updated_at = ? "
            "WHERE task_id = ? AND status IN ('pending', 'processing')" + owner_sql,
            (error, to_db_time(now), task_id, *owner_params),
            expected="pending or processing",
            worker_id=worker_id,
        )

    async def requeue(
        self,
        task_id: str,
        error: str,
        run_at: datetime,
        now: datetime,
        worker_id: str | None = None,
    ) -> ProcessingTask:
        owner_sql, owner_params = _owner_clause(worker_id)
        return await self._transition(
            task_id,
            "UPDATE processing_tasks SET status = 'pending', attempts = attempts + 1, "
            "last_error = ?, scheduled_at = ?, lease_owner = NULL, lease_expires_at = NULL, "
            "updated_at = ? WHERE task_id = ? AND status = 'processing'" + owner_sql,
            (error, to_db_time(run_at), to_db_time(now), task_id, *owner_params),
            expected="processing",
            worker_id=worker_id,
        )

    async def get(self, task_id: str) -> ProcessingTask | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM processing_tasks WHERE task_id = ?", (task_id,))
            row = await cursor.fetchone()
        return _row_to_task(dict(row)) if row else None

    async def reset(self, task_id: str, now: datetime) -> ProcessingTask:
        task = await self._transition(
            task_id,
            "UPDATE processing_tasks SET status = 'pending', attempts = 0, last_error = NULL, "
            "scheduled_at = ?, updated_at = ? WHERE task_id = ? AND status = 'failed'",
            (to_db_time(now), to_db_time(now), task_id),
            expected="failed",
        )
        logger.info("task_reset", task_id=task_id)
        return task

    async def purge(self, older_than: datetime) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM processing_tasks WHERE status IN ('completed', 'failed') AND updated_at < ?",
                (to_db_time(older_than),),
            )
            await db.commit()
            return cursor.rowcount

    async def counts(
        self,
        status: TaskStatus = TaskStatus.PENDING,
        since: datetime | None = None,
    ) -> dict[str, int]:
        query = "SELECT task_type, COUNT(*) FROM processing_tasks WHERE status = ?"
        params: list[Any] = [status.value]
        if since is not None:
            query += " AND updated_at >= ?"
            params.append(to_db_time(since))
        query += " GROUP BY task_type"
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        task_id: str,
        sql: str,
        params: tuple,
        expected: str,
        worker_id: str | None = None,
    ) -> ProcessingTask:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            await db.commit()
            changed = cursor.rowcount
            cursor = await db.execute("SELECT * FROM processing_tasks WHERE task_id = ?", (task_id,))
            row = await cursor.fetchone()

        if row is None:
            raise TaskQueueError(message=f"Unknown task {task_id}", provider_name=_PROVIDER)
        task = _row_to_task(dict(row))
        if changed != 1:
            if worker_id is not None:
                raise LeaseLostError(
                    message=(
                        f"Task {task_id} is no longer leased to {worker_id} "
                        f"(status {task.status.value}, owner {task.lease_owner})"
                    ),
                    provider_name=_PROVIDER,
                )
            raise TaskQueueError(
                message=f"Task {task_id} is {task.status.value}, expected {expected}",
                provider_name=_PROVIDER,
            )
        return task


def _owner_clause(worker_id: str | None) -> tuple[str, tuple]:
    if worker_id is None:
        return "", ()
    return " AND lease_owner = ?", (worker_id,)


def _row_to_task(row: dict[str, Any]) -> ProcessingTask:
    return ProcessingTask(
        task_id=row["task_id"],
        task_type=TaskType(row["task_type"]),
        document_id=row["document_id"],
        payload=json.loads(row["payload"] or "{}"),
        priority=row["priority"],
        status=TaskStatus(row["status"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        scheduled_at=from_db_time(row["scheduled_at"]),
        lease_owner=row["lease_owner"],
        lease_expires_at=from_db_time(row["lease_expires_at"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )
