"""
Settings Configuration
======================

Environment variable management using pydantic-settings.
Follows the 12-factor app methodology.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8002, description="Server port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async connection string; in-memory pattern store when unset",
    )
    db_pool_min: int = Field(default=2, ge=1, description="Minimum connection pool size")
    db_pool_max: int = Field(default=10, ge=1, description="Maximum connection pool size")

    # -------------------------------------------------------------------------
    # Redis / Cache Configuration
    # -------------------------------------------------------------------------
    cache_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Result cache backend"
    )
    cache_ttl_seconds: int = Field(
        default=3600, ge=1, description="Time-to-live for cached match results"
    )
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    redis_password: str | None = Field(default=None, description="Redis password")
    redis_db: int = Field(default=0, ge=0, le=15, description="Redis database number")

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    llm_provider: Literal["ollama", "gemini", "none"] = Field(
        default="ollama", description="Semantic model provider; 'none' disables LLM matching"
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434", description="Ollama API base URL"
    )
    ollama_llm_model: str = Field(default="llama3", description="Ollama model name")
    gemini_api_key: str | None = Field(default=None, description="Gemini API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Gemini model name")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini REST API base URL",
    )
    llm_temperature: float = Field(
        default=0.1, ge=0.0, le=2.0, description="Model temperature (lower = more deterministic)"
    )
    llm_max_tokens: int = Field(
        default=4096, ge=100, le=32768, description="Maximum tokens in response"
    )
    llm_request_timeout: float = Field(
        default=60.0, ge=1.0, le=600.0, description="HTTP timeout for model requests in seconds"
    )
    llm_cost_per_1k_tokens: float = Field(
        default=0.0, ge=0.0, description="Cost estimate per 1000 tokens"
    )

    # -------------------------------------------------------------------------
    # Matching Configuration
    # -------------------------------------------------------------------------
    match_quality_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum confidence for pattern use and learning"
    )
    match_concurrency: int = Field(
        default=3, ge=1, le=50, description="Semantic matcher batches in flight"
    )
    match_timeout_ms: int = Field(
        default=30000, ge=100, description="Timeout per semantic matcher batch"
    )
    match_batch_size: int = Field(
        default=50, ge=1, le=500, description="Invoice line items per semantic matcher batch"
    )

    # Deterministic fallback weights
    fallback_string_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    fallback_semantic_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    fallback_price_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    fallback_material_bonus: float = Field(default=0.1, ge=0.0, le=1.0)
    fallback_min_score: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Score an estimate must exceed to match"
    )
    fallback_partial_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Score above which a match is 'partial'"
    )

    # Pattern learning
    pattern_keyword_increment: float = Field(default=0.1, ge=0.0, le=1.0)
    pattern_amount_increment: float = Field(default=0.05, ge=0.0, le=1.0)
    pattern_correction_decay: float = Field(default=0.9, ge=0.0, le=1.0)
    pattern_history_window_days: int = Field(default=30, ge=1)

    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once
    and reused across the application.
    """
    return Settings()
