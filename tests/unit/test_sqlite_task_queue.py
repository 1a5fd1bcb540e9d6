"""Unit tests for the SQLite lease queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.models.pipeline import TaskStatus, TaskType
from src.providers.queue.sqlite_task_queue import SQLiteTaskQueue
from src.utils.errors import LeaseLostError, TaskQueueError

_T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # noqa: UP017
_LEASE = 300


def _at(seconds: float) -> datetime:
    return _T0 + timedelta(seconds=seconds)


# ======================================================================
# Enqueue and claim
# ======================================================================


class TestEnqueueAndClaim:
    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_task(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", {"reason": "new"}, priority=10, run_at=_T0)
        assert task.status == TaskStatus.PENDING
        assert task.attempts == 0
        stored = await queue.get(task.task_id)
        assert stored.payload == {"reason": "new"}
        assert stored.scheduled_at == _T0

    @pytest.mark.asyncio
    async def test_claim_highest_priority_first(self, queue: SQLiteTaskQueue) -> None:
        low = await queue.enqueue(TaskType.VECTORIZE, "low", priority=5, run_at=_T0)
        high = await queue.enqueue(TaskType.VECTORIZE, "high", priority=10, run_at=_at(1))
        first = await queue.claim("w1", _LEASE, _at(2))
        second = await queue.claim("w1", _LEASE, _at(2))
        assert first.task_id == high.task_id
        assert second.task_id == low.task_id
        assert await queue.claim("w1", _LEASE, _at(2)) is None

    @pytest.mark.asyncio
    async def test_equal_priority_oldest_schedule_first(self, queue: SQLiteTaskQueue) -> None:
        later = await queue.enqueue(TaskType.VECTORIZE, "later", run_at=_at(5))
        earlier = await queue.enqueue(TaskType.VECTORIZE, "earlier", run_at=_at(1))
        assert (await queue.claim("w1", _LEASE, _at(10))).task_id == earlier.task_id
        assert (await queue.claim("w1", _LEASE, _at(10))).task_id == later.task_id

    @pytest.mark.asyncio
    async def test_future_task_not_claimable(self, queue: SQLiteTaskQueue) -> None:
        await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_at(60))
        assert await queue.claim("w1", _LEASE, _at(59)) is None
        assert await queue.claim("w1", _LEASE, _at(60)) is not None

    @pytest.mark.asyncio
    async def test_claim_sets_lease(self, queue: SQLiteTaskQueue) -> None:
        await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        claimed = await queue.claim("w1", _LEASE, _T0)
        assert claimed.status == TaskStatus.PROCESSING
        assert claimed.lease_owner == "w1"
        assert claimed.lease_expires_at == _at(_LEASE)

    @pytest.mark.asyncio
    async def test_leased_task_invisible_until_expiry(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        assert await queue.claim("w2", _LEASE, _at(_LEASE - 1)) is None

        reclaimed = await queue.claim("w2", _LEASE, _at(_LEASE))
        assert reclaimed.task_id == task.task_id
        assert reclaimed.lease_owner == "w2"


# ======================================================================
# Deduplication
# ======================================================================


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_pending_task_reused(self, queue: SQLiteTaskQueue) -> None:
        first = await queue.enqueue(TaskType.VECTORIZE, "doc1", priority=5, run_at=_T0)
        second = await queue.enqueue(TaskType.VECTORIZE, "doc1", priority=10, run_at=_T0)
        assert second.task_id == first.task_id
        assert second.priority == 10
        assert (await queue.get(first.task_id)).priority == 10

    @pytest.mark.asyncio
    async def test_lower_priority_does_not_demote(self, queue: SQLiteTaskQueue) -> None:
        first = await queue.enqueue(TaskType.VECTORIZE, "doc1", priority=10, run_at=_T0)
        await queue.enqueue(TaskType.VECTORIZE, "doc1", priority=5, run_at=_T0)
        assert (await queue.get(first.task_id)).priority == 10

    @pytest.mark.asyncio
    async def test_processing_task_not_reused(self, queue: SQLiteTaskQueue) -> None:
        first = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        second = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        assert second.task_id != first.task_id

    @pytest.mark.asyncio
    async def test_find_active(self, queue: SQLiteTaskQueue) -> None:
        assert await queue.find_active(TaskType.VECTORIZE, "doc1") is None
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        assert (await queue.find_active(TaskType.VECTORIZE, "doc1")).task_id == task.task_id
        assert await queue.find_active(TaskType.WEBHOOK_RETRY, "doc1") is None


# ======================================================================
# Transitions
# ======================================================================


class TestTransitions:
    @pytest.mark.asyncio
    async def test_complete(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        done = await queue.complete(task.task_id, _at(1))
        assert done.status == TaskStatus.COMPLETED
        assert done.lease_owner is None
        with pytest.raises(TaskQueueError):
            await queue.complete(task.task_id, _at(2))

    @pytest.mark.asyncio
    async def test_complete_requires_claim(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        with pytest.raises(TaskQueueError):
            await queue.complete(task.task_id, _T0)

    @pytest.mark.asyncio
    async def test_requeue_counts_attempt(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        requeued = await queue.requeue(task.task_id, "timeout", run_at=_at(2), now=_at(1))
        assert requeued.status == TaskStatus.PENDING
        assert requeued.attempts == 1
        assert requeued.last_error == "timeout"
        assert await queue.claim("w1", _LEASE, _at(1)) is None
        assert (await queue.claim("w1", _LEASE, _at(2))).attempts == 1

    @pytest.mark.asyncio
    async def test_fail_and_reset(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        failed = await queue.fail(task.task_id, "bad input", _at(1))
        assert failed.status == TaskStatus.FAILED
        assert failed.attempts == 1

        reset = await queue.reset(task.task_id, _at(5))
        assert reset.status == TaskStatus.PENDING
        assert reset.attempts == 0
        assert reset.last_error is None
        assert (await queue.claim("w1", _LEASE, _at(5))).task_id == task.task_id

    @pytest.mark.asyncio
    async def test_reset_only_failed(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        with pytest.raises(TaskQueueError):
            await queue.reset(task.task_id, _T0)

    @pytest.mark.asyncio
    async def test_stale_lease_cannot_complete(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        reclaimed = await queue.claim("w2", _LEASE, _at(_LEASE + 1))
        assert reclaimed.lease_owner == "w2"

        done = await queue.complete(task.task_id, _at(_LEASE + 2), worker_id="w2")
        assert done.status == TaskStatus.COMPLETED
        with pytest.raises(LeaseLostError):
            await queue.complete(task.task_id, _at(_LEASE + 3), worker_id="w1")
        assert (await queue.get(task.task_id)).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stale_lease_cannot_fail_or_requeue(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "doc1", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        await queue.claim("w2", _LEASE, _at(_LEASE + 1))

        with pytest.raises(LeaseLostError):
            await queue.fail(task.task_id, "late", _at(_LEASE + 2), worker_id="w1")
        with pytest.raises(LeaseLostError):
            await queue.requeue(
                task.task_id, "late", run_at=_at(_LEASE + 9), now=_at(_LEASE + 2), worker_id="w1"
            )
        current = await queue.get(task.task_id)
        assert current.status == TaskStatus.PROCESSING
        assert current.lease_owner == "w2"
        assert current.attempts == 0

    @pytest.mark.asyncio
    async def test_unknown_task(self, queue: SQLiteTaskQueue) -> None:
        assert await queue.get("missing") is None
        with pytest.raises(TaskQueueError, match="Unknown task"):
            await queue.complete("missing", _T0)


# ======================================================================
# Housekeeping and counts
# ======================================================================


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_purge_removes_only_old_terminal_tasks(self, queue: SQLiteTaskQueue) -> None:
        done = await queue.enqueue(TaskType.VECTORIZE, "done", priority=9, run_at=_T0)
        await queue.enqueue(TaskType.VECTORIZE, "waiting", run_at=_at(10_000))
        await queue.claim("w1", _LEASE, _T0)
        await queue.complete(done.task_id, _T0)

        assert await queue.purge(_T0 - timedelta(days=1)) == 0
        assert await queue.purge(_T0 + timedelta(days=1)) == 1
        assert await queue.get(done.task_id) is None
        assert await queue.find_active(TaskType.VECTORIZE, "waiting") is not None

    @pytest.mark.asyncio
    async def test_counts_by_type(self, queue: SQLiteTaskQueue) -> None:
        await queue.enqueue(TaskType.VECTORIZE, "a", run_at=_T0)
        await queue.enqueue(TaskType.VECTORIZE, "b", run_at=_T0)
        await queue.enqueue(TaskType.SYNC, payload={"limit": 5}, run_at=_T0)
        assert await queue.counts() == {"vectorize": 2, "sync": 1}

    @pytest.mark.asyncio
    async def test_failure_counts_since(self, queue: SQLiteTaskQueue) -> None:
        task = await queue.enqueue(TaskType.VECTORIZE, "a", run_at=_T0)
        await queue.claim("w1", _LEASE, _T0)
        await queue.fail(task.task_id, "boom", _T0)
        assert await queue.counts(TaskStatus.FAILED, since=_T0 - timedelta(hours=1)) == {"vectorize": 1}
        assert await queue.counts(TaskStatus.FAILED, since=_T0 + timedelta(hours=1)) == {}
