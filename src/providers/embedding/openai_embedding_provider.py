"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Supports both real OpenAI and OpenAI-compatible providers via custom
``base_url`` and model name settings.  SDK exceptions are mapped onto the
transient/permanent split the embedding client retries on.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.utils.errors import (
    PermanentProviderError,
    ProviderUnavailableError,
    RateLimitError,
    TransientProviderError,
)

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_base_url`` is configured the client points at that URL.
    """

    def __init__(self, settings: Settings, client: openai.AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._api_key = settings.openai_api_key

        if client is None:
            client_kwargs: dict = {"api_key": self._api_key or "unset"}
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            # The embedding client owns retries; the SDK must not retry underneath it.
            client_kwargs["max_retries"] = 0
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts."""
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
            batch = texts[start : start + _OPENAI_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.APIError as exc:
                raise self._classify(exc) from exc

            data = sorted(response.data, key=lambda item: item.index)
            if len(data) != len(batch):
                raise PermanentProviderError(
                    message=f"Expected {len(batch)} embeddings, received {len(data)}",
                    provider_name=self._provider_label,
                )
            all_embeddings.extend(item.embedding for item in data)
            logger.info(
                "openai_embedding_batch",
                model=self._model,
                provider=self._provider_label,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return all_embeddings

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _classify(self, exc: openai.APIError) -> Exception:
        """Map an SDK error onto the retryable/non-retryable hierarchy."""
        message = f"{self._provider_label} API error: {exc}"
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError(message=message, provider_name=self._provider_label)
        if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
            return ProviderUnavailableError(message=message, provider_name=self._provider_label)
        if isinstance(exc, openai.InternalServerError):
            return TransientProviderError(message=message, provider_name=self._provider_label)
        return PermanentProviderError(message=message, provider_name=self._provider_label)
