"""Pytest configuration and shared fixtures for the quizgen tests."""

import random

import pytest

from quizgen.config.rubric_config import RubricConfig
from quizgen.data.corpus_store import InMemoryCorpusStore
from quizgen.generation.text_client import TextGenClient
from quizgen.infrastructure.retry import reset_retry_metrics
from tests.fakes import RUBRICS, KeyedEmbeddingProvider, ScriptedLLMProvider, make_settings


@pytest.fixture(autouse=True)
def fresh_retry_metrics():
    """Isolate the process-wide retry counters between tests."""
    reset_retry_metrics()
    yield
    reset_retry_metrics()


@pytest.fixture
def settings():
    """Settings with a test API key and fast timeouts."""
    return make_settings()


@pytest.fixture
def rubrics() -> RubricConfig:
    """The packaged phase rubrics."""
    return RUBRICS


@pytest.fixture
def llm() -> ScriptedLLMProvider:
    """Scripted text provider with empty queues."""
    return ScriptedLLMProvider()


@pytest.fixture
def embedder() -> KeyedEmbeddingProvider:
    """Deterministic embedding provider."""
    return KeyedEmbeddingProvider()


@pytest.fixture
def corpus() -> InMemoryCorpusStore:
    """Empty in-memory corpus."""
    return InMemoryCorpusStore()


@pytest.fixture
def client(llm, settings) -> TextGenClient:
    """Text client over the scripted provider."""
    return TextGenClient(llm, settings)


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source."""
    return random.Random(1234)
