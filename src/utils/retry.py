"""Retry timing: an explicit backoff policy plus an injectable clock.

:class:`BackoffPolicy` answers two questions for any caller that retries
work: *may attempt N+1 run?* and *how long until it should?*.  The delay
grows geometrically (``base_delay * multiplier ** (attempt - 1)``) and is
capped at ``max_delay``.

Time is read and waited on through a :class:`Clock`, so the embedding
client's in-call retries and the orchestrator's requeue scheduling can be
exercised in tests with a fake clock that records sleeps instead of
blocking.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from src.config.settings import Settings


class Clock(Protocol):
    """Source of the current time and of asynchronous waiting."""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock implementation backed by ``datetime`` and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)  # noqa: UP017

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class BackoffPolicy(BaseModel):
    """Exponential backoff with an attempt ceiling.

    ``max_attempts`` counts every try including the first, so the default
    of 3 allows two retries.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, description="Total tries before giving up.")
    base_delay: float = Field(default=1.0, ge=0.0, description="Delay after the first failure (s).")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor per attempt.")
    max_delay: float = Field(default=60.0, ge=0.0, description="Upper bound on any delay (s).")

    @model_validator(mode="after")
    def _check_bounds(self) -> BackoffPolicy:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay=settings.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Return the wait after failed attempt number *attempt* (1-based)."""
        if attempt < 1:
            return 0.0
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Return ``True`` if another try may follow failed attempt *attempt*."""
        return attempt < self.max_attempts

    def next_run_at(self, attempt: int, now: datetime) -> datetime:
        """Return when a task that just failed *attempt* should run again."""
        return now + timedelta(seconds=self.delay_for(attempt))
