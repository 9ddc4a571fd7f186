"""
Runtime settings for Legal Research.

All values come from environment variables (loaded from .env by the entry
points). Component configs are derived from one ResearchSettings instance so
the API, CLI and tests wire the same way.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PROVIDERS = ("google_scholar", "justia", "court_listener")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple) -> tuple:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass
class ResearchSettings:
    """Process-wide settings resolved from the environment."""
    database_url: str = "postgresql://localhost:5432/legal_research"

    # Embeddings
    embedding_provider: str = "voyage"
    embedding_model: Optional[str] = None
    voyage_api_key: Optional[str] = None
    cohere_api_key: Optional[str] = None

    # Providers
    enabled_providers: tuple = DEFAULT_PROVIDERS
    court_listener_api_key: Optional[str] = None
    serp_api_key: Optional[str] = None
    justia_live_search: bool = False
    provider_timeout_seconds: float = 8.0

    # Retrieval / cache
    default_limit: int = 10
    query_cache_ttl_seconds: float = 300.0
    query_cache_max_size: int = 100

    # Chunking
    max_chunk_bytes: int = 4000

    # LLM
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"

    cors_origins: list = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "ResearchSettings":
        """Build settings from the current process environment."""
        return cls(
            database_url=(
                os.getenv("DATABASE_URL")
                or os.getenv("POSTGRES_URL")
                or cls.database_url
            ),
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", cls.embedding_provider),
            embedding_model=os.getenv("EMBEDDING_MODEL"),
            voyage_api_key=os.getenv("VOYAGE_API_KEY"),
            cohere_api_key=os.getenv("COHERE_API_KEY"),
            enabled_providers=_env_list("ENABLED_PROVIDERS", DEFAULT_PROVIDERS),
            court_listener_api_key=os.getenv("COURT_LISTENER_API_KEY"),
            serp_api_key=os.getenv("SERP_API_KEY"),
            justia_live_search=_env_bool("JUSTIA_LIVE_SEARCH"),
            provider_timeout_seconds=float(
                os.getenv("PROVIDER_TIMEOUT_SECONDS", cls.provider_timeout_seconds)
            ),
            default_limit=int(os.getenv("RETRIEVAL_LIMIT", cls.default_limit)),
            query_cache_ttl_seconds=float(
                os.getenv("QUERY_CACHE_TTL_SECONDS", cls.query_cache_ttl_seconds)
            ),
            query_cache_max_size=int(
                os.getenv("QUERY_CACHE_MAX_SIZE", cls.query_cache_max_size)
            ),
            max_chunk_bytes=int(os.getenv("MAX_CHUNK_BYTES", cls.max_chunk_bytes)),
            llm_base_url=os.getenv("LLM_BASE_URL"),
            llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
            llm_model=os.getenv("LLM_MODEL", cls.llm_model),
            cors_origins=[
                origin.strip()
                for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
                if origin.strip()
            ],
        )
