"""Abstract base class for text-embedding service providers.

Defines the contract for turning text into fixed-dimension vectors.
Implementations wrap a hosted or local embedding backend; the
:class:`~src.services.ingestion.embedding_client.EmbeddingClient` adds
batching, concurrency limits, timeouts and retries on top.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider -- text-embedding-3-small or any OpenAI-compatible API
# Located in: src/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and search.

    Providers must classify failures so callers can decide whether to
    retry: raise :class:`~src.utils.errors.TransientProviderError` (or a
    subclass) for rate limits, timeouts and outages, and
    :class:`~src.utils.errors.PermanentProviderError` for rejected input
    or bad credentials.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        src.utils.errors.TransientProviderError
            If the failure may succeed on retry.
        src.utils.errors.PermanentProviderError
            If the request can never succeed as sent.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Must stay constant for the lifetime of the provider instance.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier stored alongside each vector."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present)."""
