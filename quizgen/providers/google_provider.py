"""Google Generative AI provider integration."""

import asyncio
import logging
from typing import Any, List, Optional

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from ..cost_tracking import CompletionResult, TokenUsage
from .base import BaseEmbeddingProvider, BaseLLMProvider

logger = logging.getLogger(__name__)


class GoogleProvider(BaseLLMProvider):
    """Gemini integration for generation, review and fact-checking."""

    supports_search_grounding = True

    def __init__(self, api_key: str, model: str = "gemini-3-pro-preview"):
        """
        Initialize Google provider.

        Args:
            api_key: Google API key
            model: Model to use (default: gemini-3-pro-preview)
        """
        super().__init__(api_key, model)
        genai.configure(api_key=api_key)
        self.client = genai.GenerativeModel(model)

    def _client_for(self, model_override: Optional[str]) -> "genai.GenerativeModel":
        if model_override and model_override != self.model:
            return genai.GenerativeModel(model_override)
        return self.client

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
        Generate a text completion using the Gemini API.

        Args:
            prompt: The prompt to send to the model
            temperature: Sampling temperature (0.0 to 2.0)
            top_p: Optional nucleus sampling cutoff
            max_tokens: Maximum tokens to generate
            model_override: Optional model to use instead of the default
            grounded: Attach the Google Search retrieval tool
            **kwargs: Additional Google-specific generation parameters

        Returns:
            CompletionResult with the raw text and token usage

        Raises:
            LLMProviderError: If the API call fails
        """
        model_to_use = model_override or self.model
        config_kwargs = dict(temperature=temperature, max_output_tokens=max_tokens)
        if top_p is not None:
            config_kwargs["top_p"] = top_p
        config_kwargs.update(kwargs)
        request_kwargs: dict = {"generation_config": GenerationConfig(**config_kwargs)}
        if grounded:
            request_kwargs["tools"] = "google_search_retrieval"
            logger.debug(f"Grounding {model_to_use} request with Google Search")

        try:
            response = await self._client_for(model_override).generate_content_async(
                prompt, **request_kwargs
            )
        except Exception as e:
            raise self._handle_api_error(e)

        try:
            content = response.text or ""
        except ValueError as e:
            # .text raises when the candidate was blocked or has no parts
            raise self._handle_api_error(e)

        token_usage = None
        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            token_usage = TokenUsage(
                input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
                output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
                thinking_tokens=getattr(usage, "thoughts_token_count", 0) or 0,
                model=model_to_use,
                provider="google",
            )

        return CompletionResult(content=content, token_usage=token_usage)


class GoogleEmbeddingProvider(BaseEmbeddingProvider):
    """Gemini text embeddings."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-004",
        dimensions: int = 768,
    ):
        super().__init__(api_key, model, dimensions)
        genai.configure(api_key=api_key)

    async def embed_async(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts with one API call.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order

        Raises:
            LLMProviderError: If the API call fails or returns a vector count
                different from the number of texts
        """
        if not texts:
            return []

        try:
            # The SDK's embed_content is blocking
            result = await asyncio.to_thread(
                genai.embed_content,
                model=f"models/{self.model}",
                content=texts,
                task_type="semantic_similarity",
            )
        except Exception as e:
            raise self._handle_api_error(e)

        vectors = result["embedding"]
        if len(vectors) != len(texts):
            raise self._handle_api_error(
                ValueError(f"Embedding count mismatch: sent {len(texts)}, got {len(vectors)}")
            )
        return [list(v) for v in vectors]
