"""Batched, bounded, retrying wrapper around an embedding provider.

The provider only knows how to embed a list of texts.  This client adds
what ingestion needs on top of that:

- fixed-size batches fanned out under a concurrency ceiling
- a per-call timeout, treated as a transient failure
- retries of transient failures on the injected :class:`BackoffPolicy`
- bisection of permanently failing batches so one bad text fails alone
- a per-text :class:`EmbeddingOutcome` so callers see partial success

Vectors are normalised to float32 precision on the way out, which makes
the storage codec (re-exported here from :mod:`src.utils.vector_codec`)
lossless for everything this client returns.
"""

from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING, Sequence

import structlog

from src.models.rag import EmbeddingOutcome
from src.utils.concurrency import bounded_semaphore, throttled_gather
from src.utils.errors import (
    EmbeddingCodecError,
    PermanentProviderError,
    ProviderUnavailableError,
    TransientProviderError,
)
from src.utils.retry import BackoffPolicy, Clock, SystemClock
from src.utils.vector_codec import decode_vector, encode_vector, to_float32

if TYPE_CHECKING:
    from src.config.settings import Settings
    from src.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)

__all__ = ["EmbeddingClient", "decode_vector", "encode_vector", "to_float32"]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class EmbeddingClient:
    """Embeds texts through an :class:`IEmbeddingProvider` with batching and retries.

    Parameters
    ----------
    provider:
        The embedding backend.
    backoff:
        Retry policy for transient failures.
    clock:
        Used for backoff sleeps; tests inject a fake one.
    batch_size:
        Texts per provider call.
    max_concurrency:
        Provider calls allowed in flight at once.
    timeout_seconds:
        Ceiling on a single provider call.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
        batch_size: int = 20,
        max_concurrency: int = 4,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._provider = provider
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock or SystemClock()
        self._batch_size = max(1, batch_size)
        self._max_concurrency = max_concurrency
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(
        cls,
        provider: IEmbeddingProvider,
        settings: Settings,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
    ) -> EmbeddingClient:
        return cls(
            provider,
            backoff=backoff or BackoffPolicy.from_settings(settings),
            clock=clock,
            batch_size=settings.embedding_batch_size,
            max_concurrency=settings.embedding_max_concurrency,
            timeout_seconds=settings.embedding_timeout_seconds,
        )

    @property
    def model_name(self) -> str:
        return self._provider.get_model_name()

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingOutcome]:
        """Embed *texts*, returning one outcome per text in input order.

        Never raises for provider failures; failed texts carry an error
        message instead of a vector.
        """
        if not texts:
            return []

        slices = [
            (start, texts[start : start + self._batch_size])
            for start in range(0, len(texts), self._batch_size)
        ]
        semaphore = bounded_semaphore(self._max_concurrency)
        grouped = await throttled_gather(
            [self._embed_slice(start, batch) for start, batch in slices],
            semaphore,
            return_exceptions=False,
        )
        outcomes = [outcome for group in grouped for outcome in group]

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            "embedding_batch_complete",
            provider=self._provider.get_provider_name(),
            texts=len(texts),
            batches=len(slices),
            failed=failed,
        )
        return outcomes

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single text (e.g. a search query).

        Raises
        ------
        TransientProviderError
            If every retry failed.
        PermanentProviderError
            If the provider rejected the text.
        """
        vectors = await self._call_with_retry([text])
        return self._checked_vector(vectors[0])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_slice(self, offset: int, batch: list[str]) -> list[EmbeddingOutcome]:
        try:
            vectors = await self._call_with_retry(batch)
        except PermanentProviderError as exc:
            if len(batch) == 1:
                logger.warning("embedding_text_rejected", index=offset, error=str(exc))
                return [EmbeddingOutcome(index=offset, error=str(exc))]
            # Split until the offending text is isolated.
            mid = len(batch) // 2
            logger.debug("embedding_batch_bisect", offset=offset, size=len(batch))
            left = await self._embed_slice(offset, batch[:mid])
            right = await self._embed_slice(offset + mid, batch[mid:])
            return left + right
        except TransientProviderError as exc:
            logger.warning(
                "embedding_batch_exhausted_retries",
                offset=offset,
                size=len(batch),
                error=str(exc),
            )
            return [EmbeddingOutcome(index=offset + i, error=str(exc)) for i in range(len(batch))]

        outcomes: list[EmbeddingOutcome] = []
        for i, vector in enumerate(vectors):
            try:
                outcomes.append(EmbeddingOutcome(index=offset + i, vector=self._checked_vector(vector)))
            except (PermanentProviderError, EmbeddingCodecError) as exc:
                outcomes.append(EmbeddingOutcome(index=offset + i, error=str(exc)))
        return outcomes

    async def _call_with_retry(self, batch: list[str]) -> list[list[float]]:
        attempt = 0
        while True:
            attempt += 1
            try:
                vectors = await asyncio.wait_for(self._provider.embed(batch), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                error: TransientProviderError = ProviderUnavailableError(
                    message=f"Embedding call timed out after {self._timeout}s",
                    provider_name=self._provider.get_provider_name(),
                )
                cause: BaseException = exc
            except TransientProviderError as exc:
                error = exc
                cause = exc
            else:
                if len(vectors) != len(batch):
                    raise PermanentProviderError(
                        message=f"Provider returned {len(vectors)} vectors for {len(batch)} texts",
                        provider_name=self._provider.get_provider_name(),
                    )
                return vectors

            if not self._backoff.should_retry(attempt):
                if error is cause:
                    raise error
                raise error from cause
            delay = self._backoff.delay_for(attempt)
            logger.info(
                "embedding_retry_scheduled",
                attempt=attempt,
                delay_seconds=delay,
                error=str(error),
            )
            await self._clock.sleep(delay)

    def _checked_vector(self, vector: Sequence[float]) -> list[float]:
        expected = self._provider.get_dimension()
        if not vector or len(vector) != expected:
            raise PermanentProviderError(
                message=f"Embedding has {len(vector)} dimensions, expected {expected}",
                provider_name=self._provider.get_provider_name(),
            )
        if not all(math.isfinite(v) for v in vector):
            raise PermanentProviderError(
                message="Embedding contains NaN or infinite components",
                provider_name=self._provider.get_provider_name(),
            )
        return to_float32(vector)
