"""Game content generation pipeline.

This module wires providers, the corpus and the per-phase orchestrators
together and exposes the entry points used by callers: one phase at a time,
or several phases of a game concurrently.
"""

import asyncio
import logging
import random
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .config.config import Settings
from .config.config import settings as default_settings
from .config.rubric_config import RubricConfig, load_rubric_config
from .cost_tracking import UsageTracker
from .data.corpus_store import CorpusStore, InMemoryCorpusStore
from .data.database import SQLCorpusStore
from .data.embedding_index import EmbeddingCache, EmbeddingIndex
from .data.models import (
    GameGenerationRequest,
    GameGenerationResponse,
    Phase,
    PhaseResult,
    UsageReport,
)
from .evaluation.fact_checker import FactChecker
from .evaluation.reviewer import Reviewer
from .generation.generator import ContentGenerator
from .generation.targeted_regen import TargetedRegenerator
from .generation.topic_generator import TopicGenerator, needs_generated_topic
from .generation.text_client import TextGenClient
from .orchestration import ORCHESTRATORS, PhaseOrchestrator
from .providers import create_embedding_provider, create_llm_provider
from .providers.base import BaseEmbeddingProvider, BaseLLMProvider

logger = logging.getLogger(__name__)


class GenerationPipeline:
    """Runs phase orchestrators over shared providers and corpus.

    Each phase run gets its own usage tracker and component instances; the
    provider, the rate-limiting semaphore, the embedding index and the corpus
    are shared.
    """

    def __init__(
        self,
        config: Settings,
        llm_provider: BaseLLMProvider,
        embedder: BaseEmbeddingProvider,
        store: CorpusStore,
        rubrics: Optional[RubricConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the pipeline.

        Args:
            config: Application settings
            llm_provider: Text generation provider
            embedder: Embedding provider
            store: Corpus store used for deduplication
            rubrics: Phase rubrics; defaults to the packaged rubrics
            rng: Random source for shuffling and trap repair
        """
        self.config = config
        self.llm_provider = llm_provider
        self.embedder = embedder
        self.store = store
        self.rubrics = rubrics or load_rubric_config(config.rubric_config_path or None)
        self.rng = rng or random.Random()
        self.client = TextGenClient(llm_provider, config)
        self.index = EmbeddingIndex(
            embedder,
            store,
            similarity_threshold=config.similarity_threshold,
            page_size=config.corpus_page_size,
            cache=EmbeddingCache(max_size=config.embedding_cache_size),
            request_timeout=config.request_timeout_seconds,
            retry_config=self.client.retry_config,
            semaphore=self.client.semaphore,
        )
        logger.info(
            f"Generation pipeline initialized (provider={llm_provider.get_provider_name()}, "
            f"embedder={embedder.get_provider_name()})"
        )

    def build_orchestrator(self, phase: Phase, client: TextGenClient) -> PhaseOrchestrator:
        """Assemble the orchestrator of ``phase`` around ``client``."""
        orchestrator_cls = ORCHESTRATORS[phase]
        return orchestrator_cls(
            generator=ContentGenerator(client, self.rubrics, rng=self.rng),
            reviewer=Reviewer(client, self.config, self.rubrics),
            fact_checker=FactChecker(client, self.config),
            regenerator=TargetedRegenerator(
                client,
                self.rubrics,
                max_percentage=self.config.targeted_regen_max_percentage,
                rng=self.rng,
            ),
            index=self.index,
            rubrics=self.rubrics,
            config=self.config,
            rng=self.rng,
        )

    async def run_phase_pipeline(
        self,
        phase: Union[Phase, str],
        topic: str,
        difficulty: str = "normal",
        language: str = "fr",
        target_count: Optional[int] = None,
        existing_items: Optional[Sequence[Any]] = None,
    ) -> PhaseResult:
        """Generate content for one phase.

        Args:
            phase: Phase to generate
            topic: Game topic; empty or the default topic gets a
                generated theme
            difficulty: Difficulty level
            language: Output language code
            target_count: Completion mode item count
            existing_items: Completion mode items not to repeat

        Returns:
            Phase result with its token usage

        Raises:
            PipelineExhaustedError: If no batch was ever produced
        """
        phase = Phase(phase)
        usage = UsageTracker()
        client = self.client.bind(usage)
        orchestrator = self.build_orchestrator(phase, client)

        try:
            if needs_generated_topic(topic):
                topics = TopicGenerator(client, self.config, rng=self.rng)
                topic = await topics.generate_topic(phase.value, difficulty, language)
            result = await orchestrator.run(
                topic,
                difficulty,
                language,
                target_count=target_count,
                existing_items=existing_items,
            )
        finally:
            summary = usage.get_summary()
            logger.info(
                f"{phase.value} usage: {summary.total_tokens} tokens "
                f"(thinking {summary.thinking_tokens}), ${summary.estimated_cost:.4f}"
            )

        result.usage = summary
        result.topic = topic
        return result

    async def run_game(
        self,
        phases: Iterable[Union[Phase, str]],
        topic: str,
        difficulty: str = "normal",
        language: str = "fr",
    ) -> Dict[Phase, Union[PhaseResult, BaseException]]:
        """Generate several phases concurrently.

        A failing phase does not abort its siblings; its exception is
        returned in place of a result.

        Returns:
            Result or exception per phase
        """
        phase_list: List[Phase] = [Phase(p) for p in phases]
        logger.info(
            f"Generating game for '{topic}': {', '.join(p.value for p in phase_list)}"
        )
        outcomes = await asyncio.gather(
            *(
                self.run_phase_pipeline(phase, topic, difficulty, language)
                for phase in phase_list
            ),
            return_exceptions=True,
        )

        results: Dict[Phase, Union[PhaseResult, BaseException]] = {}
        for phase, outcome in zip(phase_list, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"{phase.value} failed: {outcome}", exc_info=outcome)
            results[phase] = outcome

        failed = sum(1 for r in results.values() if isinstance(r, BaseException))
        logger.info(f"Game generation finished: {len(results) - failed}/{len(results)} phases succeeded")
        return results

    async def generate_game_content(
        self, request: GameGenerationRequest
    ) -> GameGenerationResponse:
        """Serve a single-phase generation request.

        Raises:
            PipelineExhaustedError: If no batch was ever produced
        """
        result = await self.run_phase_pipeline(
            request.phase,
            request.topic,
            difficulty=request.difficulty.value,
            language=request.language.value,
            target_count=request.complete_count,
            existing_items=request.existing_items,
        )
        return GameGenerationResponse(
            data=result.to_public(),
            answer_key=result.answer_key(),
            phase=result.phase,
            topic=result.topic or request.topic,
            language=request.language,
            embeddings=result.embeddings,
            usage=UsageReport(
                total_tokens=result.usage.total_tokens,
                thinking_tokens=result.usage.thinking_tokens,
                estimated_cost=result.usage.estimated_cost,
            ),
            degraded=result.degraded,
            warnings=result.warnings,
        )

    async def cleanup(self) -> None:
        """Release provider clients, cached embeddings and the corpus store."""
        stats = self.index.cache.stats
        logger.info(
            f"Embedding cache: {stats['size']} entries, "
            f"{stats['hits']} hits, {stats['misses']} misses"
        )
        self.index.cache.clear()
        await self.llm_provider.cleanup()
        await self.embedder.cleanup()
        await self.store.close()
        logger.debug("Generation pipeline cleaned up")

    async def __aenter__(self) -> "GenerationPipeline":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()


def create_corpus_store(config: Settings) -> CorpusStore:
    """SQL store when a database URL is configured, in-memory otherwise."""
    if config.corpus_database_url:
        return SQLCorpusStore(config.corpus_database_url)
    logger.warning("No corpus_database_url configured; using an in-memory corpus")
    return InMemoryCorpusStore()


def create_pipeline(
    config: Optional[Settings] = None,
    rubrics: Optional[RubricConfig] = None,
) -> GenerationPipeline:
    """Build a pipeline from settings.

    Raises:
        ValueError: If the selected provider has no API key
    """
    config = config or default_settings
    return GenerationPipeline(
        config=config,
        llm_provider=create_llm_provider(config),
        embedder=create_embedding_provider(config),
        store=create_corpus_store(config),
        rubrics=rubrics,
    )
