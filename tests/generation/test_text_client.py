"""Tests for the rate-limited text generation client."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from quizgen.cost_tracking import UsageTracker
from quizgen.generation.text_client import TextGenClient
from quizgen.providers.base import LLMProviderError
from tests.fakes import GENERATE, ScriptedLLMProvider, make_settings, provider_error


class SlowProvider(ScriptedLLMProvider):
    """Provider that tracks how many calls run at once."""

    def __init__(self, delay=0.01):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.peak = 0
        self.set_default(GENERATE, "ok")

    async def generate_async(self, prompt, **kwargs):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            return await super().generate_async(prompt, **kwargs)
        finally:
            self.active -= 1


class TestTextGenClient:
    """Tests for TextGenClient."""

    @pytest.mark.asyncio
    async def test_profile_sampling_parameters(self, llm, settings):
        """Test that the profile sets temperature, top_p and token cap."""
        llm.script(GENERATE, "first", "second")
        client = TextGenClient(llm, settings)

        await client.generate("Write things", profile="creative")
        await client.generate("Write things", profile="fact_check", model="gemini-2.0-flash")

        creative, fact_check = llm.calls
        assert creative["temperature"] == pytest.approx(1.0)
        assert creative["top_p"] == pytest.approx(0.95)
        assert creative["max_tokens"] == settings.max_output_tokens
        assert creative["model"] is None
        assert fact_check["temperature"] == pytest.approx(0.1)
        assert fact_check["top_p"] is None
        assert fact_check["model"] == "gemini-2.0-flash"

    @pytest.mark.asyncio
    async def test_records_usage(self, llm, settings):
        llm.script(GENERATE, "x" * 400)
        usage = UsageTracker()
        client = TextGenClient(llm, settings, usage=usage)

        content = await client.generate("p" * 40)

        assert content == "x" * 400
        summary = usage.get_summary()
        assert summary.calls == 1
        assert summary.total_tokens == 10 + 100

    @pytest.mark.asyncio
    async def test_bind_shares_semaphore_with_separate_usage(self, llm, settings):
        """Test that bound clients share limits but not usage."""
        llm.script(GENERATE, "a", "b")
        client = TextGenClient(llm, settings)
        bound = client.bind(UsageTracker())

        await bound.generate("prompt")

        assert bound.semaphore is client.semaphore
        assert bound.provider is client.provider
        assert bound.usage.get_summary().calls == 1
        assert client.usage.get_summary().calls == 0

    @pytest.mark.asyncio
    @patch("quizgen.infrastructure.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_retries_transient_errors(self, mock_sleep, llm, settings):
        llm.script(GENERATE, provider_error("503 service unavailable"), "recovered")
        client = TextGenClient(llm, settings)

        assert await client.generate("prompt") == "recovered"
        assert llm.count(GENERATE) == 2

    @pytest.mark.asyncio
    async def test_no_retry_when_disabled(self, llm, settings):
        llm.script(GENERATE, provider_error("503 service unavailable"), "never used")
        client = TextGenClient(llm, settings)

        with pytest.raises(LLMProviderError):
            await client.generate("prompt", retry=False)
        assert llm.count(GENERATE) == 1

    @pytest.mark.asyncio
    async def test_per_call_timeout(self):
        """Test that a call exceeding the request timeout raises TimeoutError."""
        provider = SlowProvider(delay=1.0)
        client = TextGenClient(provider, make_settings(request_timeout_seconds=0.05))

        with pytest.raises(asyncio.TimeoutError):
            await client.generate("prompt", retry=False)

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        """Test that the semaphore bounds concurrent provider calls."""
        provider = SlowProvider(delay=0.02)
        client = TextGenClient(provider, make_settings(max_concurrent_requests=2))

        await asyncio.gather(*(client.generate(f"prompt {i}") for i in range(6)))

        assert provider.peak == 2
        assert provider.count(GENERATE) == 6


class TestSearchGrounding:
    """Tests for gating grounded calls."""

    @pytest.mark.asyncio
    async def test_grounded_when_available(self, llm, settings):
        llm.script(GENERATE, "a", "b")
        client = TextGenClient(llm, settings)

        await client.generate("prompt", grounded=True)
        await client.generate("prompt")

        assert client.search_available
        assert [call["grounded"] for call in llm.calls] == [True, False]

    @pytest.mark.asyncio
    async def test_disabled_by_settings(self, llm):
        llm.script(GENERATE, "a")
        client = TextGenClient(llm, make_settings(search_grounding=False))

        await client.generate("prompt", grounded=True)

        assert not client.search_available
        assert llm.calls[0]["grounded"] is False

    @pytest.mark.asyncio
    async def test_provider_without_search_tool(self, llm, settings):
        llm.supports_search_grounding = False
        llm.script(GENERATE, "a")
        client = TextGenClient(llm, settings)

        await client.generate("prompt", grounded=True)

        assert llm.calls[0]["grounded"] is False
