"""Rate-limited, retrying wrapper around a text provider."""

import asyncio
import logging
from typing import Optional

from ..config.config import Settings
from ..cost_tracking import UsageTracker
from ..infrastructure.retry import RetryConfig, with_retry
from ..providers.base import BaseLLMProvider, get_profile

logger = logging.getLogger(__name__)


class TextGenClient:
    """Sends prompts to the configured provider under a sampling profile.

    Every attempt runs under a shared semaphore and a per-call timeout;
    transient failures are retried with backoff. Token usage is recorded in
    the bound :class:`UsageTracker`.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        config: Settings,
        usage: Optional[UsageTracker] = None,
        semaphore: Optional[asyncio.Semaphore] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.provider = provider
        self.config = config
        self.usage = usage or UsageTracker()
        self.semaphore = semaphore or asyncio.Semaphore(config.max_concurrent_requests)
        self.retry_config = retry_config or RetryConfig(
            max_retries=config.retry_max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def bind(self, usage: UsageTracker) -> "TextGenClient":
        """Client sharing this one's provider and limits, recording into ``usage``."""
        return TextGenClient(
            provider=self.provider,
            config=self.config,
            usage=usage,
            semaphore=self.semaphore,
            retry_config=self.retry_config,
        )

    @property
    def search_available(self) -> bool:
        """Whether grounded calls reach a web search tool."""
        return self.config.search_grounding and self.provider.supports_search_grounding

    async def generate(
        self,
        prompt: str,
        profile: str = "creative",
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        retry: bool = True,
        grounded: bool = False,
        temperature: Optional[float] = None,
    ) -> str:
        """Generate raw text.

        Args:
            prompt: Full prompt text
            profile: Sampling profile name
            model: Model override; None uses the provider default
            max_tokens: Output cap; defaults to the profile's, then settings
            retry: Retry transient failures
            grounded: Ask for web search grounding; honoured only when
                :attr:`search_available`
            temperature: Overrides the profile's temperature

        Returns:
            Raw completion text

        Raises:
            LLMProviderError: On non-retryable failure or exhausted retries
            asyncio.TimeoutError: If the last attempt timed out
        """
        sampling = get_profile(profile)
        tokens = max_tokens or sampling.max_output_tokens or self.config.max_output_tokens
        provider_name = self.provider.get_provider_name()
        use_search = grounded and self.search_available
        if temperature is None:
            temperature = sampling.temperature

        async def _attempt():
            async with self.semaphore:
                return await asyncio.wait_for(
                    self.provider.generate_async(
                        prompt,
                        temperature=temperature,
                        top_p=sampling.top_p,
                        max_tokens=tokens,
                        model_override=model,
                        grounded=use_search,
                    ),
                    timeout=self.config.request_timeout_seconds,
                )

        if retry:
            result = await with_retry(_attempt, provider_name, self.retry_config)
        else:
            result = await _attempt()

        self.usage.record_usage(result.token_usage)
        content = result.content or ""
        logger.debug(
            f"{provider_name} [{profile}] returned {len(content)} chars"
        )
        return content
