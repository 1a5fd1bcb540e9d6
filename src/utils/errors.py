"""Custom exception hierarchy for the transcript ingestion core.

All application exceptions inherit from :class:`TranscriptRAGError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "fireflies", "sqlite") caused the failure.

The hierarchy is organized by how the orchestrator reacts to each error:

    TranscriptRAGError  (base -- catch-all)
    +-- ConfigurationError       (startup / missing config)
    +-- PipelineError            (illegal stage transition, orchestration)
    +-- DataIntegrityError       (task references a missing document/blob)
    +-- WebhookSignatureError    (HMAC mismatch -> HTTP 401)
    +-- TaskQueueError           (queue state could not be updated)
    +-- RAGError                 (embedding / chunk store failure)
        +-- EmbeddingCodecError      (corrupt float32 blob)
        +-- TransientProviderError   (network, timeout, 5xx -> retry)
        |   +-- RateLimitError
        |   +-- ProviderUnavailableError
        +-- PermanentProviderError   (malformed input, bad credentials)

Transient errors are retried by the :class:`~src.utils.retry.BackoffPolicy`;
permanent and data-integrity errors fail immediately.
"""


class TranscriptRAGError(Exception):
    """Base exception for all transcript core errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(TranscriptRAGError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PipelineError(TranscriptRAGError):
    """Raised when orchestration fails (invalid stage transition, etc.)."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DataIntegrityError(TranscriptRAGError):
    """Raised when a task references a document or blob that is missing or unreadable.

    Retrying cannot repair a missing reference, so the orchestrator marks
    the task failed on the first occurrence.
    """

    def __init__(
        self,
        message: str = "Referenced record is missing",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class WebhookSignatureError(TranscriptRAGError):
    """Raised when a webhook signature is missing or does not match."""

    def __init__(
        self,
        message: str = "Invalid webhook signature",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class TaskQueueError(TranscriptRAGError):
    """Raised when a task state transition cannot be applied."""

    def __init__(
        self,
        message: str = "Task queue operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LeaseLostError(TaskQueueError):
    """Raised when a worker finishes a task whose lease another worker now holds.

    The other worker owns the outcome, so the caller drops its own result.
    """


# ---------------------------------------------------------------------------
# RAG / provider errors
# ---------------------------------------------------------------------------

class RAGError(TranscriptRAGError):
    """Raised when an embedding or chunk-store operation fails."""

    def __init__(
        self,
        message: str = "RAG pipeline operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingCodecError(RAGError):
    """Raised when a stored embedding blob cannot be decoded."""

    def __init__(
        self,
        message: str = "Embedding blob is corrupt",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class TransientProviderError(RAGError):
    """Raised for failures that may succeed on retry (network, timeout, 5xx)."""

    def __init__(
        self,
        message: str = "Transient provider failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(TransientProviderError):
    """Raised when an API rate limit is exceeded.

    Callers back off according to the injected retry policy.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(TransientProviderError):
    """Raised when an external service is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PermanentProviderError(RAGError):
    """Raised for failures retrying cannot fix (bad input, bad credentials)."""

    def __init__(
        self,
        message: str = "Permanent provider failure",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
