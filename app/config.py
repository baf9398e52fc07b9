# =============================================================================
# Application Configuration — Pydantic Settings
# =============================================================================
#
# All runtime knobs for the analysis pipeline live here: Redis keys for the
# job store, completion-service credentials, chunk window sizes, rate-limiter
# timings, worker polling and the knowledge store.
#
# Pydantic Settings loads values in this priority order (highest first):
#   1. Environment variables (e.g., `REDIS_URL=...`)
#   2. Values from the .env file
#   3. Default values defined below
#
# USAGE:
#   from app.config import settings
#   print(settings.redis_url)
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults target local development against a Redis on localhost.
    In production, override via environment variables or a .env file.
    """

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Pre-Review Analysis Pipeline"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Redis — Job Store
    # -------------------------------------------------------------------------
    # The queue, status and result keys all share one prefix:
    #   {prefix}:job-queue        (list, FIFO)
    #   {prefix}:status:{job_id}  (string)
    #   {prefix}:result:{job_id}  (JSON string)
    #   {prefix}:dead-letter      (list of unparsable payloads)
    #
    # result_ttl_seconds applies to results and terminal statuses.
    # 0 disables expiry.
    # -------------------------------------------------------------------------
    redis_url: str = "redis://localhost:6379/0"
    job_key_prefix: str = "analysis"
    result_ttl_seconds: int = 30 * 24 * 60 * 60  # 30 days

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    # Two providers are supported:
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (OpenAI, DeepSeek,
    #     Qwen, GLM, ...). Set LLM_BASE_URL for non-OpenAI hosts.
    # -------------------------------------------------------------------------
    llm_provider: str = "anthropic"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    llm_model: str = "claude-sonnet-4-6"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2048

    # -------------------------------------------------------------------------
    # Chunking Configuration
    # -------------------------------------------------------------------------
    # Windows are measured in tokens of `tokenizer_encoding`.
    # stride = chunk_max_tokens - chunk_overlap, and must stay positive.
    # -------------------------------------------------------------------------
    chunk_max_tokens: int = 4000
    chunk_overlap: int = 200
    tokenizer_encoding: str = "cl100k_base"

    # -------------------------------------------------------------------------
    # Rate Limiter — Completion Service Gate
    # -------------------------------------------------------------------------
    # One call at a time, at least min_interval_ms apart. Throttled calls
    # (HTTP 429) retry in place: base * 2^(attempt-1), capped at max.
    # -------------------------------------------------------------------------
    rate_limit_min_interval_ms: int = 2000
    rate_limit_max_retries: int = 3
    rate_limit_backoff_base_ms: int = 1000
    rate_limit_backoff_max_ms: int = 16000

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------
    worker_poll_interval_seconds: float = 2.0

    # -------------------------------------------------------------------------
    # Agents
    # -------------------------------------------------------------------------
    # Registration order is dispatch order within a chunk.
    # An empty list enables every known agent.
    # -------------------------------------------------------------------------
    enabled_agents: list[str] = ["theoretical", "mathematical", "epistemic"]

    # -------------------------------------------------------------------------
    # Knowledge Store — Chroma + Embeddings
    # -------------------------------------------------------------------------
    # Each chunk's first `knowledge_query_chars` characters are used as the
    # nearest-neighbour query; the top `knowledge_top_k` snippets are added
    # to every agent prompt for that chunk.
    #
    # chroma_url set   → HttpClient (client/server mode)
    # chroma_url unset → PersistentClient at chroma_path
    # -------------------------------------------------------------------------
    knowledge_enabled: bool = True
    chroma_url: str | None = None
    chroma_path: str = "data/chroma"
    knowledge_collection: str = "physics_knowledge"
    knowledge_top_k: int = 5
    knowledge_query_chars: int = 500
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str | None = None

    # -------------------------------------------------------------------------
    # Submission Validation
    # -------------------------------------------------------------------------
    # Text extraction from binary formats happens upstream; the pipeline
    # only accepts text-bearing file types.
    # -------------------------------------------------------------------------
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10MB
    supported_file_types: list[str] = ["txt", "md", "tex"]

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Create and cache a Settings instance.

    In tests, override with FastAPI's dependency_overrides:
        app.dependency_overrides[get_settings] = lambda: Settings(...)
    """
    return Settings()


# ---------------------------------------------------------------------------
# Module-level convenience instance
# ---------------------------------------------------------------------------
settings = get_settings()
