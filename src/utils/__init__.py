"""Utility modules for the transcript ingestion core.

- **errors** -- Exception hierarchy rooted at TranscriptRAGError; the
  orchestrator decides retry vs. fail by subclass.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **retry** -- BackoffPolicy and the injectable Clock used by every retry loop.
- **concurrency** -- Semaphore-bounded gather for batch fan-out.
- **text_normalizer** -- Transcript line parsing, token estimates, sentence
  splitting, keyword and fuzzy helpers.
- **vector_codec** -- Little-endian float32 encoding of embeddings for storage.
"""

from src.utils.concurrency import bounded_semaphore, throttled_gather
from src.utils.errors import (
    ConfigurationError,
    DataIntegrityError,
    EmbeddingCodecError,
    PermanentProviderError,
    PipelineError,
    ProviderUnavailableError,
    RAGError,
    RateLimitError,
    TaskQueueError,
    TranscriptRAGError,
    TransientProviderError,
    WebhookSignatureError,
)
from src.utils.logging import configure_logging, get_logger
from src.utils.retry import BackoffPolicy, Clock, SystemClock

__all__ = [
    "BackoffPolicy",
    "Clock",
    "ConfigurationError",
    "DataIntegrityError",
    "EmbeddingCodecError",
    "PermanentProviderError",
    "PipelineError",
    "ProviderUnavailableError",
    "RAGError",
    "RateLimitError",
    "SystemClock",
    "TaskQueueError",
    "TranscriptRAGError",
    "TransientProviderError",
    "WebhookSignatureError",
    "bounded_semaphore",
    "configure_logging",
    "get_logger",
    "throttled_gather",
]
