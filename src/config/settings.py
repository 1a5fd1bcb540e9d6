"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from two sources (in priority order):
#
#   1. **Environment variables** -- e.g. OPENAI_API_KEY=sk-abc123
#   2. **.env file** -- key=value lines in the project root .env file
#
# Field `openai_api_key` maps to env var `OPENAI_API_KEY`.  Defaults
# below apply when neither source sets a value.
#
# Every number the pipeline depends on (relevance threshold, batch
# sizes, retry ceiling, retention windows) lives here so deployments
# can tune them without code changes.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Transcript ingestion settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Embedding provider ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_embedding_model: str = ""  # Empty = text-embedding-3-small
    embedding_batch_size: int = 20
    embedding_max_concurrency: int = 4
    embedding_timeout_seconds: float = 30.0

    # === Transcript source (Fireflies GraphQL) ===
    fireflies_api_key: str = ""
    fireflies_api_url: str = "https://api.fireflies.ai/graphql"
    fireflies_timeout_seconds: float = 30.0
    webhook_secret: str = ""  # Empty = signature verification disabled

    # === Storage ===
    database_path: str = "data/transcripts.db"
    blob_root: str = "data/blobs"

    # === Segmentation ===
    chunk_target_tokens: int = 1000
    chunk_min_tokens: int = 100
    chunk_max_tokens: int = 1500
    chunk_overlap_tokens: int = 200
    time_window_seconds: int = 300
    time_window_overlap_seconds: int = 30
    topic_similarity_threshold: float = 0.7
    extraction_max_chars: int = 50000

    # === Search ===
    semantic_search_enabled: bool = True
    relevance_threshold: float = 0.7
    search_over_fetch_multiplier: int = 3
    search_default_limit: int = 10
    context_window_seconds: float = 30.0
    query_cache_size: int = 256

    # === Orchestration ===
    sync_batch_size: int = 10
    sync_page_size: int = 25
    worker_concurrency: int = 2
    task_lease_seconds: int = 300
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay_seconds: float = 60.0
    task_retention_days: int = 7
    webhook_retention_days: int = 30

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_providers(self) -> list[str]:
        """Return the external services that have credentials configured."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.fireflies_api_key:
            providers.append("fireflies")
        return providers
