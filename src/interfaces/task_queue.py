"""Abstract base class for the durable processing task queue.

Tasks move ``pending -> processing -> completed | failed``.  A claim hands
a task to one worker under a lease; a lease that expires without the task
being completed, failed or requeued makes it claimable again, so a crashed
worker never strands work.  Terminal tasks only return to ``pending``
through an explicit :meth:`ITaskQueue.reset`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from src.models.pipeline import ProcessingTask, TaskStatus, TaskType


# Concrete implementations:
#   SQLiteTaskQueue -- aiosqlite, compare-and-set claims
# Located in: src/providers/queue/
class ITaskQueue(ABC):
    """Contract for lease-based task queues."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing storage if it does not exist."""

    @abstractmethod
    async def enqueue(
        self,
        task_type: TaskType,
        document_id: str | None = None,
        payload: dict[str, Any] | None = None,
        priority: int = 5,
        run_at: datetime | None = None,
    ) -> ProcessingTask:
        """Add a pending task.

        When a pending task of the same type for the same document already
        exists it is returned instead, with its priority raised to
        *priority* if that is higher.
        """

    @abstractmethod
    async def find_active(self, task_type: TaskType, document_id: str) -> ProcessingTask | None:
        """Return a pending or processing task for *document_id*, if any."""

    @abstractmethod
    async def claim(self, worker_id: str, lease_seconds: int, now: datetime) -> ProcessingTask | None:
        """Atomically lease the next runnable task to *worker_id*.

        Runnable means pending with ``scheduled_at <= now``, or processing
        with an expired lease.  Highest priority first, then earliest
        ``scheduled_at``.  Returns ``None`` when nothing is runnable.
        """

    @abstractmethod
    async def complete(self, task_id: str, now: datetime, worker_id: str | None = None) -> ProcessingTask:
        """Mark a processing task completed.

        With *worker_id*, only while that worker holds the lease; otherwise
        :class:`~src.utils.errors.LeaseLostError` is raised.
        """

    @abstractmethod
    async def fail(
        self,
        task_id: str,
        error: str,
        now: datetime,
        worker_id: str | None = None,
    ) -> ProcessingTask:
        """Mark a task permanently failed, incrementing ``attempts``."""

    @abstractmethod
    async def requeue(
        self,
        task_id: str,
        error: str,
        run_at: datetime,
        now: datetime,
        worker_id: str | None = None,
    ) -> ProcessingTask:
        """Return a processing task to pending for a retry at *run_at*.

        Increments ``attempts`` and records *error*.
        """

    @abstractmethod
    async def get(self, task_id: str) -> ProcessingTask | None:
        """Return the task, or ``None``."""

    @abstractmethod
    async def reset(self, task_id: str, now: datetime) -> ProcessingTask:
        """Operator action: return a failed task to pending with zero attempts."""

    @abstractmethod
    async def purge(self, older_than: datetime) -> int:
        """Delete terminal tasks last updated before *older_than*."""

    @abstractmethod
    async def counts(self, status: TaskStatus = TaskStatus.PENDING, since: datetime | None = None) -> dict[str, int]:
        """Return the number of tasks in *status* keyed by task type.

        With *since*, only tasks updated at or after that instant count.
        """
