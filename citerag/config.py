from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    List and dict fields (``model_priority``, ``model_prices``) are read as JSON.
    """

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openrouter_api_key: str = ""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_bucket: str = "documents"

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    embedding_batch_delay: float = 1.0

    # Answer synthesis
    completion_backend: str = "openrouter"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    model_priority: list[str] = [
        "x-ai/grok-4.1-fast",
        "x-ai/grok-4-fast",
        "x-ai/grok-4",
        "google/gemini-2.0-flash-exp:free",
        "anthropic/claude-3-haiku",
        "meta-llama/llama-3.1-8b-instruct:free",
    ]
    completion_temperature: float = 0.7
    completion_max_tokens: int = 2000
    # USD per 1M tokens as [input, output]
    model_prices: dict[str, list[float]] = {}

    # Retrieval
    match_threshold: float = 0.30
    match_count: int = 12
    fallback_sample_size: int = 3
    retrieval_workers: int = 4
    query_domain_context: str = "in legal research and case law"

    # Chunking / extraction
    chunk_max_tokens: int = 1000
    chunk_min_tokens: int = 500
    chunk_overlap_tokens: int = 100
    ocr_density_threshold: float = 100.0
    max_ocr_pages: int = 25
    ocr_language: str = "eng"

    # Pipeline
    storage_batch_size: int = 50
    document_delay: float = 2.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
