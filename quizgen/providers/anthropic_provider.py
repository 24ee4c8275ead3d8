"""Anthropic LLM provider integration."""

import logging
from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic

from ..cost_tracking import CompletionResult, TokenUsage
from .base import BaseLLMProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Messages API integration.

    Anthropic has no embeddings endpoint, so it can serve as the text
    provider only.
    """

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5-20250929"):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Model to use (default: claude-sonnet-4-5-20250929)
        """
        super().__init__(api_key, model)
        self.async_client = AsyncAnthropic(api_key=api_key)

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
        Generate a text completion using the Anthropic API.

        Args:
            prompt: The prompt to send to the model
            temperature: Sampling temperature (clamped to 0.0-1.0)
            top_p: Ignored; Anthropic rejects temperature and top_p together
            max_tokens: Maximum tokens to generate (required by Anthropic)
            model_override: Optional model to use instead of the default
            grounded: Ignored; no search tool is attached
            **kwargs: Additional Anthropic-specific parameters

        Returns:
            CompletionResult with the raw text and token usage

        Raises:
            LLMProviderError: If the API call fails
        """
        model_to_use = model_override or self.model

        try:
            response = await self.async_client.messages.create(
                model=model_to_use,
                messages=[{"role": "user", "content": prompt}],
                temperature=min(temperature, 1.0),
                max_tokens=max_tokens,
                **kwargs,
            )
        except anthropic.AnthropicError as e:
            raise self._handle_api_error(e)

        content = ""
        if response.content and len(response.content) > 0:
            content = "".join(
                block.text for block in response.content if block.type == "text"
            )
        else:
            logger.warning("Anthropic API returned empty response")

        token_usage = None
        if response.usage:
            token_usage = TokenUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                model=model_to_use,
                provider="anthropic",
            )

        return CompletionResult(content=content, token_usage=token_usage)

    async def cleanup(self) -> None:
        """Clean up async resources.

        Closes the async client to release connection pools and file handles.
        """
        if self.async_client is not None:
            await self.async_client.close()
