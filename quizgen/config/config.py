"""Configuration management for the content generation pipeline."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Provider selection
    llm_provider: str = "google"
    embedding_provider: str = "google"

    # LLM API Keys
    google_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Models per role
    generator_model: str = "gemini-3-pro-preview"
    reviewer_model: str = "gemini-3-flash-preview"
    fact_check_model: str = "gemini-2.0-flash"
    search_grounding: bool = True
    max_output_tokens: int = 32768

    # Embeddings
    embedding_model: str = "text-embedding-004"
    embedding_dimensions: int = 768
    embedding_cache_size: int = Field(default=10000, ge=1)

    # Quality thresholds
    similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    fact_check_confidence_threshold: int = Field(default=85, ge=0, le=100)
    targeted_regen_max_percentage: float = Field(default=0.6, ge=0.0, le=1.0)
    acceptance_score: float = Field(default=7.0, ge=0.0, le=10.0)

    # Concurrency and timeouts
    max_concurrent_requests: int = Field(default=10, ge=1)
    request_timeout_seconds: float = Field(default=120.0, gt=0)
    phase_timeout_seconds: float = Field(default=540.0, gt=0)

    # Retry
    retry_max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    fact_check_max_attempts: int = Field(default=3, ge=1)

    # Corpus storage (empty means in-memory)
    corpus_database_url: str = ""
    corpus_page_size: int = Field(default=100, ge=1)

    # Rubric configuration (empty means the packaged default)
    rubric_config_path: str = ""

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate the text-generation provider name."""
        valid = {"google", "openai", "anthropic"}
        v = v.lower()
        if v not in valid:
            raise ValueError(f"llm_provider must be one of {valid}, got '{v}'")
        return v

    @field_validator("embedding_provider")
    @classmethod
    def validate_embedding_provider(cls, v: str) -> str:
        """Validate the embedding provider name."""
        valid = {"google", "openai"}
        v = v.lower()
        if v not in valid:
            raise ValueError(f"embedding_provider must be one of {valid}, got '{v}'")
        return v


# Global settings instance
settings = Settings()
