"""Base classes for text-generation and embedding providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..cost_tracking import CompletionResult
from ..infrastructure.error_classifier import ClassifiedError, ErrorClassifier


class LLMProviderError(Exception):
    """Exception raised by providers with classification.

    Attributes:
        classified_error: The classified error with category and severity
        original_exception: The original exception that was raised
    """

    def __init__(
        self,
        classified_error: ClassifiedError,
        original_exception: BaseException,
    ):
        """Initialize LLM provider error.

        Args:
            classified_error: The classified error
            original_exception: The original exception
        """
        self.classified_error = classified_error
        self.original_exception = original_exception
        super().__init__(str(classified_error))


@dataclass(frozen=True)
class SamplingProfile:
    """Sampling parameters for one kind of call.

    Attributes:
        name: Profile identifier
        temperature: Sampling temperature
        top_p: Nucleus sampling cutoff, or None for the provider default
        max_output_tokens: Optional per-profile output cap
    """

    name: str
    temperature: float
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None


# Generation runs hot, review and verification run cold
PROFILES: Dict[str, SamplingProfile] = {
    "creative": SamplingProfile("creative", temperature=1.0, top_p=0.95),
    "factual": SamplingProfile("factual", temperature=0.8, top_p=0.95),
    "review": SamplingProfile("review", temperature=0.3),
    "fact_check": SamplingProfile("fact_check", temperature=0.1),
    "topic": SamplingProfile("topic", temperature=1.2, max_output_tokens=1024),
}


def get_profile(name: str) -> SamplingProfile:
    """Look up a sampling profile by name.

    Raises:
        ValueError: If the profile is unknown
    """
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown sampling profile '{name}'. Available: {sorted(PROFILES)}"
        ) from None


class _ProviderMixin:
    """Shared naming and error wrapping for providers."""

    def get_provider_name(self) -> str:
        """
        Get the name of this provider.

        Returns:
            Provider name (e.g., "openai", "anthropic", "google")
        """
        name = self.__class__.__name__
        for suffix in ("EmbeddingProvider", "Provider"):
            if name.endswith(suffix):
                name = name[: -len(suffix)]
                break
        return name.lower()

    def _handle_api_error(self, error: BaseException) -> LLMProviderError:
        """Classify and wrap an API error.

        Args:
            error: The exception that was raised

        Returns:
            LLMProviderError with classified error
        """
        classified = ErrorClassifier.classify_error(
            error=error,
            provider=self.get_provider_name(),
        )
        return LLMProviderError(
            classified_error=classified,
            original_exception=error,
        )


class BaseLLMProvider(_ProviderMixin, ABC):
    """Abstract base class for text-generation integrations."""

    #: Whether generate_async honours ``grounded`` with a web search tool
    supports_search_grounding = False

    def __init__(self, api_key: str, model: str):
        """
        Initialize the LLM provider.

        Args:
            api_key: API key for the provider
            model: Default model identifier
        """
        self.api_key = api_key
        self.model = model

    @abstractmethod
    async def generate_async(
        self,
        prompt: str,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        max_tokens: int = 8192,
        model_override: Optional[str] = None,
        grounded: bool = False,
        **kwargs: Any,
    ) -> CompletionResult:
        """
        Generate a completion asynchronously.

        Args:
            prompt: The prompt to send to the model
            temperature: Sampling temperature
            top_p: Optional nucleus sampling cutoff
            max_tokens: Maximum number of tokens to generate
            model_override: Optional model to use instead of the default
            grounded: Let the model consult web search, where supported
            **kwargs: Additional provider-specific parameters

        Returns:
            CompletionResult with the raw text and token usage

        Raises:
            LLMProviderError: If the API call fails
        """

    async def cleanup(self) -> None:
        """Release async client resources."""


class BaseEmbeddingProvider(_ProviderMixin, ABC):
    """Abstract base class for embedding integrations."""

    def __init__(self, api_key: str, model: str, dimensions: int):
        """
        Initialize the embedding provider.

        Args:
            api_key: API key for the provider
            model: Embedding model identifier
            dimensions: Expected vector dimensionality
        """
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions

    @abstractmethod
    async def embed_async(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed, already normalized

        Returns:
            One vector per input text, in input order

        Raises:
            LLMProviderError: If the API call fails
        """

    async def cleanup(self) -> None:
        """Release async client resources."""
