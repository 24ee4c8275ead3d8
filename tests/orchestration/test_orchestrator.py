"""Tests for the shared phase orchestration loop, driven through phase 1."""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest

from quizgen.data.corpus_store import CorpusRecord, InMemoryCorpusStore
from quizgen.data.models import MCQBatch, Phase
from quizgen.exceptions import CorpusStoreError, PipelineExhaustedError
from quizgen.logging_config import run_id_context
from quizgen.orchestration.base import DIFFERENT_CONTENT_HINT, PipelineState, RunState
from tests.fakes import (
    FACT_CHECK,
    GENERATE,
    REPLACE,
    REVIEW,
    FlakyCorpusStore,
    KeyedEmbeddingProvider,
    build_pipeline,
    dumps,
    fact_check_json,
    make_settings,
    mcq_items,
    passing_fact_check,
    provider_error,
    review_json,
    unit_vector,
)

TOPIC = ("Space", "normal", "fr")


def orchestrator_for(llm, embedder=None, store=None, config=None, phase=Phase.PHASE1):
    pipeline = build_pipeline(llm, embedder=embedder, store=store, config=config)
    return pipeline.build_orchestrator(phase, pipeline.client)


def mcq_batch(count=10):
    return MCQBatch.model_validate({"items": mcq_items(count)})


class TestRunState:
    """Tests for RunState bookkeeping."""

    def test_transition_records_history(self):
        state = RunState(phase=Phase.PHASE1)
        state.transition(PipelineState.REVIEWING)
        state.transition(PipelineState.FACT_CHECKING)
        assert state.state == PipelineState.FACT_CHECKING
        assert state.history == [PipelineState.REVIEWING, PipelineState.FACT_CHECKING]

    def test_record_best_keeps_latest_of_equal_scores(self):
        state = RunState(phase=Phase.PHASE1)
        first, second, worse = mcq_batch(), mcq_batch(), mcq_batch()
        state.record_best(first, 7.0)
        state.record_best(second, 7.0)
        state.record_best(worse, 6.0)
        assert state.best_batch is second
        assert state.best_score == 7.0

    def test_prune_best(self):
        state = RunState(phase=Phase.PHASE1)
        batch = mcq_batch()
        state.record_best(batch, 8.0)

        assert state.prune_best(batch, [0, 1]) is True

        assert state.best_batch.item_count == 8
        assert state.best_score == 8.0

    def test_prune_best_to_empty_resets_score(self):
        state = RunState(phase=Phase.PHASE1)
        batch = mcq_batch(2)
        state.record_best(batch, 8.0)
        state.prune_best(batch, [0, 1])
        assert state.best_score == -1.0

    def test_prune_other_batch_is_noop(self):
        state = RunState(phase=Phase.PHASE1)
        best = mcq_batch()
        state.record_best(best, 8.0)
        assert state.prune_best(mcq_batch(), [0]) is False
        assert state.best_batch is best

    def test_new_best_resets_verification(self):
        state = RunState(phase=Phase.PHASE1)
        state.record_best(mcq_batch(), 8.0, verified=True)
        assert state.best_verified

        state.record_best(mcq_batch(), 8.5)

        assert not state.best_verified

    def test_full_regen_clears_pending(self):
        state = RunState(phase=Phase.PHASE1, pending=mcq_batch(), fast_track=True)
        state.full_regen("Do better")
        assert state.pending is None
        assert not state.fast_track
        assert state.feedback == "Do better"
        assert state.state == PipelineState.FULL_REGEN


class TestAcceptance:
    """Tests for the straight path to acceptance."""

    @pytest.mark.asyncio
    async def test_first_batch_accepted(self, llm, embedder, corpus):
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, embedder, corpus).run(*TOPIC)

        assert not result.degraded
        assert result.iterations == 1
        assert result.warnings == []
        assert result.batch.item_texts() == [item["text"] for item in mcq_items(10)]
        assert len(result.embeddings) == 10
        assert len(corpus) == 10
        assert llm.kinds() == [GENERATE, REVIEW, FACT_CHECK]

    @pytest.mark.asyncio
    async def test_run_id_set_during_run(self, llm):
        seen = []

        def review(prompt):
            seen.append(run_id_context.get())
            return review_json(Phase.PHASE1)

        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review)
        llm.script(FACT_CHECK, passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert seen[0].startswith("phase1-")
        assert len(seen[0]) == len("phase1-") + 8
        assert run_id_context.get() is None

    @pytest.mark.asyncio
    async def test_generation_and_review_failures_skip_iteration(self, llm):
        llm.script(GENERATE, provider_error("invalid api key"), "not json")
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, "I refuse to answer in JSON")
        llm.set_default(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert result.iterations == 4
        assert not result.degraded
        assert llm.count(GENERATE) == 4
        assert "not valid JSON" in llm.prompts(GENERATE)[2]


class TestCriticalFloors:
    """Tests for critical rubric floors."""

    @pytest.mark.asyncio
    async def test_targeted_regeneration_for_flagged_items(self, llm):
        """Test that a low factual score with flagged items replaces only them."""
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(
            REVIEW,
            review_json(
                Phase.PHASE1,
                overall=7.5,
                scores={"factual_accuracy": 6},
                feedback=[{"index": 3, "ok": False, "issue": "Wrong", "issue_type": "factual_error"}],
            ),
            review_json(Phase.PHASE1),
        )
        llm.script(REPLACE, dumps(mcq_items(1, start=50, prefix="Fresh")))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [GENERATE, REVIEW, REPLACE, REVIEW, FACT_CHECK]
        assert "Fresh question 50" in llm.prompts(REVIEW)[1]
        texts = result.batch.item_texts()
        assert "Fresh question 50: which fact number 50 is true?" in texts
        assert mcq_items(4)[3]["text"] not in texts
        assert result.iterations == 2

    @pytest.mark.asyncio
    async def test_full_regeneration_with_critical_header(self, llm):
        llm.script(GENERATE, dumps(mcq_items(10)), dumps(mcq_items(10, start=20, prefix="Funny")))
        llm.script(REVIEW, review_json(Phase.PHASE1, scores={"humor": 4}), review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        retry_prompt = llm.prompts(GENERATE)[1]
        assert "CRITICAL: humor scored 4/10, minimum 6. Phrasings must be offbeat and funny." in retry_prompt
        assert "YOUR PREVIOUS ATTEMPT WAS REJECTED" in retry_prompt
        assert result.batch.item_texts()[0].startswith("Funny question 20")

    @pytest.mark.asyncio
    async def test_too_many_flagged_items_regenerates_fully(self, llm):
        feedback = [{"index": i, "ok": False, "issue_type": "factual_error"} for i in range(7)]
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.script(
            REVIEW,
            review_json(Phase.PHASE1, scores={"factual_accuracy": 5}, feedback=feedback),
            review_json(Phase.PHASE1),
        )
        llm.script(FACT_CHECK, passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert llm.count(REPLACE) == 0
        assert "CRITICAL: factual_accuracy scored 5/10" in llm.prompts(GENERATE)[1]


class TestRejection:
    """Tests for batches scored below acceptance."""

    @pytest.mark.asyncio
    async def test_targeted_regeneration(self, llm):
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(
            REVIEW,
            review_json(
                Phase.PHASE1,
                overall=5,
                feedback=[{"index": 1, "ok": False, "issue": "Dull"}, {"index": 6, "ok": False}],
            ),
            review_json(Phase.PHASE1),
        )
        llm.script(REPLACE, dumps(mcq_items(2, start=40, prefix="Better")))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [GENERATE, REVIEW, REPLACE, REVIEW, FACT_CHECK]
        assert "Reason: Dull" in llm.prompts(REPLACE)[0]
        assert result.batch.item_texts()[-2:] == [
            "Better question 40: which fact number 40 is true?",
            "Better question 41: which fact number 41 is true?",
        ]

    @pytest.mark.asyncio
    async def test_low_score_regenerates_fully(self, llm):
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.script(
            REVIEW,
            review_json(
                Phase.PHASE1,
                overall=3,
                feedback=[{"index": 1, "ok": False, "issue": "Dull"}],
                suggestions=["More puns"],
            ),
            review_json(Phase.PHASE1),
        )
        llm.script(FACT_CHECK, passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert llm.count(REPLACE) == 0
        prompt = llm.prompts(GENERATE)[1]
        assert "PREVIOUS ATTEMPT REJECTED (score 3.0/10)." in prompt
        assert '- "Space question 1: which fact number 1 is true? -> Answer 1": Dull' in prompt
        assert "- More puns" in prompt

    @pytest.mark.asyncio
    async def test_failed_targeted_regeneration_falls_back_to_full(self, llm):
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.script(
            REVIEW,
            review_json(Phase.PHASE1, overall=6, feedback=[{"index": 2, "ok": False}]),
            review_json(Phase.PHASE1),
        )
        llm.script(REPLACE, "not json")
        llm.script(FACT_CHECK, passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [GENERATE, REVIEW, REPLACE, GENERATE, REVIEW, FACT_CHECK]
        assert "PREVIOUS ATTEMPT REJECTED" in llm.prompts(GENERATE)[1]


class TestFactCheckRouting:
    """Tests for routing after fact-checking."""

    @pytest.mark.asyncio
    async def test_majority_failure_regenerates_fully(self, llm):
        llm.script(GENERATE, dumps(mcq_items(10)), dumps(mcq_items(10, start=20, prefix="Other")))
        llm.set_default(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, fact_check_json(10, failing=range(7)), passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert llm.count(REPLACE) == 0
        assert "These items failed fact-checking" in llm.prompts(GENERATE)[1]
        assert result.batch.item_texts()[0].startswith("Other question 20")

    @pytest.mark.asyncio
    async def test_fast_track_skips_review(self, llm):
        """Test that a high scoring batch goes straight back to fact-checking."""
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1, overall=9.5))
        llm.script(REPLACE, dumps(mcq_items(2, start=30, prefix="Checked")))
        llm.script(FACT_CHECK, fact_check_json(10, failing=[2, 5]), passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [GENERATE, REVIEW, FACT_CHECK, REPLACE, FACT_CHECK]
        assert "Factual error: Checked item 2 (correction: Fixed 2)" in llm.prompts(REPLACE)[0]
        assert result.batch.item_count == 10
        assert not result.degraded

    @pytest.mark.asyncio
    async def test_merged_batch_reviewed_without_fast_track(self, llm):
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.set_default(REVIEW, review_json(Phase.PHASE1, overall=8))
        llm.script(REPLACE, dumps(mcq_items(2, start=30, prefix="Checked")))
        llm.script(FACT_CHECK, fact_check_json(10, failing=[2, 5]), passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [GENERATE, REVIEW, FACT_CHECK, REPLACE, REVIEW, FACT_CHECK]

    @pytest.mark.asyncio
    async def test_failed_items_filtered_and_padded(self, llm, corpus):
        """Test that failures are dropped when replacement fails."""
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(REPLACE, "no replacements today")
        llm.script(FACT_CHECK, fact_check_json(10, failing=[2, 5]))

        result = await orchestrator_for(llm, store=corpus).run(*TOPIC)

        assert result.iterations == 1
        assert not result.degraded
        assert result.fallback_count == 2
        assert result.warnings == ["Padded with 2 fallback item(s)"]
        assert result.batch.item_count == 10
        assert mcq_items(3)[2]["text"] not in result.batch.item_texts()
        assert len(corpus) == 8
        assert len(result.embeddings) == 8


class TestDeduplication:
    """Tests for deduplication before acceptance."""

    @pytest.mark.asyncio
    async def test_duplicates_below_viable_count_regenerate(self, llm):
        first = mcq_items(10)
        embedder = KeyedEmbeddingProvider(
            vectors={first[i]["text"]: unit_vector(120 + i) for i in range(3)}
        )
        store = InMemoryCorpusStore(
            [
                CorpusRecord(
                    text=f"Old question {i}",
                    embedding=unit_vector(120 + i),
                    phase="phase4",
                    embedding_model="text-embedding-004",
                )
                for i in range(3)
            ]
        )
        llm.script(GENERATE, dumps(first), dumps(mcq_items(10, start=20, prefix="Novel")))
        llm.set_default(REVIEW, review_json(Phase.PHASE1))
        llm.set_default(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, embedder, store).run(*TOPIC)

        prompt = llm.prompts(GENERATE)[1]
        assert DIFFERENT_CONTENT_HINT in prompt
        assert first[0]["text"] in prompt
        assert result.batch.item_texts()[0].startswith("Novel question 20")
        assert len(store) == 13

    @pytest.mark.asyncio
    async def test_few_duplicates_dropped_and_padded(self, llm):
        first = mcq_items(10)
        embedder = KeyedEmbeddingProvider(vectors={first[9]["text"]: unit_vector(126)})
        store = InMemoryCorpusStore(
            [CorpusRecord(text="Old", embedding=unit_vector(126), phase="phase1")]
        )
        llm.script(GENERATE, dumps(first))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, embedder, store).run(*TOPIC)

        assert result.fallback_count == 1
        assert first[9]["text"] not in result.batch.item_texts()
        assert len(store) == 10


class TestBestEffort:
    """Tests for exhaustion and timeout."""

    @pytest.mark.asyncio
    async def test_exhausted_returns_unverified_best_without_persisting(self, llm, corpus):
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.set_default(REVIEW, review_json(Phase.PHASE1, overall=6))

        result = await orchestrator_for(llm, store=corpus).run(*TOPIC)

        assert result.degraded
        assert result.iterations == 4
        assert result.warnings == [
            "Max iterations (4) reached without acceptance",
            "Returned best batch after exhausted",
        ]
        assert result.batch.item_count == 10
        assert result.embeddings == []
        assert len(corpus) == 0
        assert llm.count(FACT_CHECK) == 0

    @pytest.mark.asyncio
    async def test_exhausted_persists_only_fact_checked_items(self, llm, corpus):
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.set_default(REVIEW, review_json(Phase.PHASE1))
        llm.set_default(FACT_CHECK, fact_check_json(10, failing=range(7)))

        result = await orchestrator_for(llm, store=corpus).run(*TOPIC)

        assert result.degraded
        assert llm.count(FACT_CHECK) == 4
        assert result.fallback_count == 7
        verified = [item["text"] for item in mcq_items(3, start=7)]
        assert set(verified) <= set(result.batch.item_texts())
        assert len(result.embeddings) == 3
        page = await corpus.fetch_page("phase1")
        assert sorted(r.text for r in page.records) == sorted(verified)

    @pytest.mark.asyncio
    async def test_timeout_without_best_batch_raises(self, llm):
        llm.script(GENERATE, dumps(mcq_items(10)))
        orchestrator = orchestrator_for(llm, config=make_settings(phase_timeout_seconds=0.05))

        async def hanging_review(*args, **kwargs):
            await asyncio.sleep(5)

        orchestrator.reviewer.review = hanging_review

        with pytest.raises(PipelineExhaustedError) as exc_info:
            await orchestrator.run(*TOPIC)

        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_batches_missing_floors_never_returned(self, llm):
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.set_default(REVIEW, review_json(Phase.PHASE1, scores={"humor": 4}))

        with pytest.raises(PipelineExhaustedError) as exc_info:
            await orchestrator_for(llm).run(*TOPIC)

        assert exc_info.value.reason == "exhausted"
        assert llm.count(FACT_CHECK) == 0

    @pytest.mark.asyncio
    async def test_no_batch_raises(self, llm):
        llm.set_default(GENERATE, "still not json")

        with pytest.raises(PipelineExhaustedError) as exc_info:
            await orchestrator_for(llm).run(*TOPIC)

        assert exc_info.value.iterations == 4
        assert exc_info.value.reason == "exhausted"
        assert "not valid JSON" in llm.prompts(GENERATE)[1]

    @pytest.mark.asyncio
    async def test_best_effort_survives_embedding_failure(self, llm):
        embedder = KeyedEmbeddingProvider()
        embedder.error = provider_error("invalid api key")
        llm.set_default(GENERATE, dumps(mcq_items(10)))
        llm.set_default(REVIEW, review_json(Phase.PHASE1, overall=6))

        result = await orchestrator_for(llm, embedder).run(*TOPIC)

        assert result.degraded
        assert result.embeddings == []
        assert result.batch.item_count == 10


class TestInfrastructureFailures:
    """Tests for embedding and corpus failures after fact-checking."""

    @pytest.mark.asyncio
    @patch("quizgen.infrastructure.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_transient_embedding_failure_retried_in_place(self, mock_sleep, llm, corpus):
        embedder = KeyedEmbeddingProvider()
        embedder.fail_next(provider_error("503 service unavailable"))
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, embedder, corpus).run(*TOPIC)

        assert not result.degraded
        assert result.iterations == 1
        assert len(embedder.calls) == 2
        assert len(corpus) == 10

    @pytest.mark.asyncio
    async def test_slow_embedder_bounded_by_timeouts(self, llm, corpus):
        embedder = KeyedEmbeddingProvider()
        embedder.delay = 3.0
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)
        config = make_settings(phase_timeout_seconds=0.2, request_timeout_seconds=0.1)

        started = time.monotonic()
        result = await orchestrator_for(llm, embedder, corpus, config=config).run(*TOPIC)

        assert time.monotonic() - started < 1.5
        assert result.degraded
        assert result.warnings[0].startswith("Phase timed out after")
        assert result.warnings[1] == "Returned best batch after timeout"
        assert result.batch.item_count == 10
        assert result.embeddings == []
        assert len(corpus) == 0

    @pytest.mark.asyncio
    async def test_corpus_read_failure_retried_next_iteration(self, llm):
        store = FlakyCorpusStore()
        store.read_failures.append(OSError("database is locked"))
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, store=store).run(*TOPIC)

        assert not result.degraded
        assert result.iterations == 2
        assert llm.kinds() == [GENERATE, REVIEW, FACT_CHECK]
        assert len(store) == 10

    @pytest.mark.asyncio
    async def test_corpus_write_failure_retried_next_iteration(self, llm):
        store = FlakyCorpusStore()
        store.write_failures.append(CorpusStoreError("database is locked"))
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, store=store).run(*TOPIC)

        assert not result.degraded
        assert result.iterations == 2
        assert len(store) == 10

    @pytest.mark.asyncio
    async def test_persistent_corpus_failure_degrades(self, llm):
        store = FlakyCorpusStore()
        store.read_failures.extend(OSError("database is locked") for _ in range(10))
        llm.script(GENERATE, dumps(mcq_items(10)))
        llm.script(REVIEW, review_json(Phase.PHASE1))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm, store=store).run(*TOPIC)

        assert result.degraded
        assert result.batch.item_count == 10
        assert result.embeddings == []
        assert llm.kinds() == [GENERATE, REVIEW, FACT_CHECK]
        assert len(store) == 0


class TestFeedbackNarrative:
    """Tests for the feedback carried into full generations."""

    @pytest.mark.asyncio
    async def test_cleared_once_fresh_batch_meets_floors(self, llm):
        llm.script(GENERATE, "not json", dumps(mcq_items(10)), dumps(mcq_items(10, start=20)))
        llm.script(
            REVIEW,
            review_json(
                Phase.PHASE1,
                overall=5,
                feedback=[{"index": 2, "ok": False, "issue": "Too easy"}],
            ),
            "I refuse to answer in JSON",
            review_json(Phase.PHASE1),
        )
        llm.script(REPLACE, dumps(mcq_items(1, start=50)))
        llm.script(FACT_CHECK, passing_fact_check)

        result = await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds() == [
            GENERATE, GENERATE, REVIEW, REPLACE, REVIEW, GENERATE, REVIEW, FACT_CHECK,
        ]
        assert not result.degraded
        assert "not valid JSON" in llm.prompts(GENERATE)[1]
        assert "not valid JSON" not in llm.prompts(GENERATE)[2]
        assert "YOUR PREVIOUS ATTEMPT WAS REJECTED" not in llm.prompts(GENERATE)[2]

    @pytest.mark.asyncio
    async def test_kept_when_fresh_batch_misses_floors(self, llm):
        llm.script(GENERATE, "not json", dumps(mcq_items(10)), dumps(mcq_items(10, start=20)))
        llm.script(
            REVIEW,
            review_json(
                Phase.PHASE1,
                scores={"factual_accuracy": 6},
                feedback=[{"index": 3, "ok": False, "issue": "Wrong", "issue_type": "factual_error"}],
            ),
            "I refuse to answer in JSON",
            review_json(Phase.PHASE1),
        )
        llm.script(REPLACE, dumps(mcq_items(1, start=50)))
        llm.script(FACT_CHECK, passing_fact_check)

        await orchestrator_for(llm).run(*TOPIC)

        assert llm.kinds()[:6] == [GENERATE, GENERATE, REVIEW, REPLACE, REVIEW, GENERATE]
        assert "not valid JSON" in llm.prompts(GENERATE)[2]
