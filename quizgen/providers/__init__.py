"""LLM and embedding provider integrations."""

from typing import Optional

from ..config.config import Settings
from .anthropic_provider import AnthropicProvider
from .base import (
    PROFILES,
    BaseEmbeddingProvider,
    BaseLLMProvider,
    LLMProviderError,
    SamplingProfile,
    get_profile,
)
from .google_provider import GoogleEmbeddingProvider, GoogleProvider
from .openai_provider import OpenAIEmbeddingProvider, OpenAIProvider


def _require_key(key: Optional[str], provider: str) -> str:
    if not key:
        raise ValueError(f"No API key configured for provider '{provider}'")
    return key


def create_llm_provider(config: Settings) -> BaseLLMProvider:
    """Build the text provider selected by ``config.llm_provider``.

    The generator model is used as the provider default; reviewer and
    fact-check models are passed per call as overrides.
    """
    name = config.llm_provider
    if name == "google":
        return GoogleProvider(
            _require_key(config.google_api_key, name), config.generator_model
        )
    if name == "openai":
        return OpenAIProvider(
            _require_key(config.openai_api_key, name), config.generator_model
        )
    if name == "anthropic":
        return AnthropicProvider(
            _require_key(config.anthropic_api_key, name), config.generator_model
        )
    raise ValueError(f"Unknown llm_provider '{name}'")


def create_embedding_provider(config: Settings) -> BaseEmbeddingProvider:
    """Build the embedding provider selected by ``config.embedding_provider``."""
    name = config.embedding_provider
    if name == "google":
        return GoogleEmbeddingProvider(
            _require_key(config.google_api_key, name),
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
        )
    if name == "openai":
        return OpenAIEmbeddingProvider(
            _require_key(config.openai_api_key, name),
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
        )
    raise ValueError(f"Unknown embedding_provider '{name}'")


__all__ = [
    "AnthropicProvider",
    "BaseEmbeddingProvider",
    "BaseLLMProvider",
    "GoogleEmbeddingProvider",
    "GoogleProvider",
    "LLMProviderError",
    "OpenAIEmbeddingProvider",
    "OpenAIProvider",
    "PROFILES",
    "SamplingProfile",
    "create_embedding_provider",
    "create_llm_provider",
    "get_profile",
]
