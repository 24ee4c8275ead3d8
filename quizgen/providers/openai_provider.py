"""OpenAI LLM provider integration."""

import logging
from typing import Any, List, Optional

import openai
from openai import AsyncOpenAI

from ..cost_tracking import CompletionResult, TokenUsage
from .base import BaseEmbeddingProvider, BaseLLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """OpenAI chat completions integration."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        organization: Optional[str] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Model to use (default: gpt-4o)
            organization: Optional organization ID
        """
        super().__init__(api_key, model)
        self.client = AsyncOpenAI(api_key=api_key, organization=organization)

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
        Generate a text completion using the OpenAI API.

        Args:
            prompt: The prompt to send to the model
            temperature: Sampling temperature (0.0 to 2.0)
            top_p: Optional nucleus sampling cutoff
            max_tokens: Maximum tokens to generate
            model_override: Optional model to use instead of the default
            grounded: Ignored; no search tool is attached
            **kwargs: Additional OpenAI-specific parameters

        Returns:
            CompletionResult with the raw text and token usage

        Raises:
            LLMProviderError: If the API call fails
        """
        model_to_use = model_override or self.model
        if top_p is not None:
            kwargs["top_p"] = top_p

        try:
            response = await self.client.chat.completions.create(
                model=model_to_use,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except openai.OpenAIError as e:
            raise self._handle_api_error(e)

        content = response.choices[0].message.content or ""

        token_usage = None
        if response.usage:
            details = getattr(response.usage, "completion_tokens_details", None)
            reasoning = getattr(details, "reasoning_tokens", 0) or 0
            token_usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens,
                # completion_tokens already includes reasoning tokens
                output_tokens=response.usage.completion_tokens - reasoning,
                thinking_tokens=reasoning,
                model=model_to_use,
                provider="openai",
            )

        return CompletionResult(content=content, token_usage=token_usage)

    async def cleanup(self) -> None:
        """Close the async client and its connection pool."""
        await self.client.close()


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embeddings endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 768,
    ):
        super().__init__(api_key, model, dimensions)
        self.client = AsyncOpenAI(api_key=api_key)

    async def embed_async(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts, preserving input order."""
        if not texts:
            return []

        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=texts,
                dimensions=self.dimensions,
            )
        except openai.OpenAIError as e:
            raise self._handle_api_error(e)

        ordered = sorted(response.data, key=lambda d: d.index)
        if len(ordered) != len(texts):
            raise self._handle_api_error(
                ValueError(f"Embedding count mismatch: sent {len(texts)}, got {len(ordered)}")
            )
        return [list(d.embedding) for d in ordered]

    async def cleanup(self) -> None:
        """Close the async client."""
        await self.client.close()
