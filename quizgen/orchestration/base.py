"""Generate, review, verify and deduplicate loop shared by every phase.

Each phase run is a bounded sequence of iterations. An iteration either
produces a new batch or revalidates a batch merged by targeted
regeneration, then routes it through the quality gates in a fixed order:

1. generation or extraction failure: next iteration
2. critical rubric floor missed: targeted or full regeneration
3. best batch tracking
4. overall score at acceptance: fact-check
5. deduplication, persistence, padding and acceptance
6. otherwise: targeted or full regeneration with feedback

When the iteration budget or the wall-clock budget runs out, the best batch
seen is deduplicated, padded and returned marked as degraded. It is only
persisted when its items passed fact-checking.
"""

import asyncio
import enum
import logging
import math
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config.config import Settings
from ..config.rubric_config import CriticalFloor, PhaseRubric, RubricConfig
from ..data.embedding_index import EmbeddingIndex
from ..data.models import Batch, FactCheckOutcome, Phase, PhaseResult, ReviewVerdict
from ..evaluation.fact_checker import FactChecker
from ..evaluation.reviewer import Reviewer
from ..exceptions import (
    ContentGenerationError,
    CorpusStoreError,
    PipelineExhaustedError,
    ReviewError,
)
from ..generation.generator import ContentGenerator
from ..generation.targeted_regen import TargetedRegenerator
from ..logging_config import run_id_context
from ..providers.base import LLMProviderError
from ..text_utils import truncate
from .fallbacks import pad_batch

logger = logging.getLogger(__name__)

DIFFERENT_CONTENT_HINT = (
    "Too many items duplicated existing content. Produce completely different "
    "content, on new angles of the topic."
)


class PipelineState(str, enum.Enum):
    """States of one phase run."""

    GENERATING = "generating"
    REVIEWING = "reviewing"
    TARGETED_REGEN = "targeted_regen"
    FULL_REGEN = "full_regen"
    FACT_CHECKING = "fact_checking"
    DEDUPLICATING = "deduplicating"
    ACCEPTED = "accepted"
    BEST_EFFORT = "best_effort"


@dataclass
class GenerationContext:
    """Inputs of one phase run."""

    topic: str
    difficulty: str
    language: str
    target_count: int
    existing_items: Optional[Sequence[Any]] = None


@dataclass
class RunState:
    """Mutable bookkeeping of one phase run.

    Attributes:
        feedback: Accumulated feedback for the next full generation, reset
            once a freshly generated batch meets the critical floors
        pending: Batch merged by targeted regeneration, revalidated next
        fast_track: Send ``pending`` straight back to fact-checking
        checked: Fact-checked batch whose deduplication or persistence
            failed, retried next iteration
        best_batch: Highest scoring batch that met the critical floors
        best_verified: Every item of ``best_batch`` passed fact-checking
        history: Every state entered, in order
    """

    phase: Phase
    run_id: str = ""
    iteration: int = 0
    state: PipelineState = PipelineState.GENERATING
    feedback: str = ""
    pending: Optional[Batch] = None
    fast_track: bool = False
    checked: Optional[Batch] = None
    last_verdict: Optional[ReviewVerdict] = None
    best_batch: Optional[Batch] = None
    best_score: float = -1.0
    best_verified: bool = False
    history: List[PipelineState] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def transition(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"{self.phase.value} iteration {self.iteration}: {state.value}")

    def record_best(self, batch: Batch, score: float, verified: bool = False) -> None:
        if score >= self.best_score:
            self.best_batch = batch
            self.best_score = score
            self.best_verified = verified
            logger.info(f"New best {self.phase.value} batch (score {score:.1f}/10)")

    def prune_best(self, batch: Batch, drop: Sequence[int]) -> bool:
        """Remove rejected items from the best batch if it is ``batch``.

        Returns:
            True if the best batch was pruned
        """
        if not drop or self.best_batch is not batch:
            return False
        self.best_batch = batch.without(drop)
        if self.best_batch.item_count == 0:
            self.best_score = -1.0
        return True

    def full_regen(self, feedback: str) -> None:
        self.transition(PipelineState.FULL_REGEN)
        self.pending = None
        self.fast_track = False
        self.feedback = feedback


class PhaseOrchestrator:
    """Runs the quality loop for one phase.

    Subclasses set :attr:`phase` and may override the hooks
    :meth:`describe_item`, :meth:`top_up` and :meth:`filter_failed`.
    """

    phase: Phase

    def __init__(
        self,
        generator: ContentGenerator,
        reviewer: Reviewer,
        fact_checker: FactChecker,
        regenerator: TargetedRegenerator,
        index: EmbeddingIndex,
        rubrics: RubricConfig,
        config: Settings,
        rng: Optional[random.Random] = None,
    ):
        self.generator = generator
        self.reviewer = reviewer
        self.fact_checker = fact_checker
        self.regenerator = regenerator
        self.index = index
        self.rubrics = rubrics
        self.config = config
        self.rng = rng or random.Random()

    @property
    def rubric(self) -> PhaseRubric:
        return self.rubrics.phases[self.phase.value]

    @property
    def acceptance_score(self) -> float:
        if self.rubric.acceptance_score is not None:
            return self.rubric.acceptance_score
        return self.config.acceptance_score

    # --- Hooks ---

    def resolve_target(self, target_count: Optional[int]) -> int:
        """Items required at acceptance for this run."""
        return target_count or self.rubric.target_count

    def describe_item(self, batch: Batch, index: int) -> str:
        """Short label of an item, quoted in regeneration feedback."""
        return truncate(batch.item_texts()[index], 80)

    def filter_failed(self, batch: Batch, failed: Sequence[int]) -> Batch:
        """Drop fact-check failures from ``batch``."""
        return batch.without(failed)

    async def top_up(self, batch: Batch, ctx: GenerationContext) -> Batch:
        """Complete a short batch before deduplication. No-op by default."""
        return batch

    # --- Routing helpers ---

    def targeted_ceiling(self, total: int) -> int:
        ceiling = math.floor(total * self.regenerator.max_percentage)
        if self.rubric.max_targeted_replacements:
            ceiling = min(ceiling, self.rubric.max_targeted_replacements)
        return ceiling

    def should_target(
        self,
        bad_count: int,
        total: int,
        min_overall: Optional[float] = None,
        overall: Optional[float] = None,
    ) -> bool:
        return (
            self.regenerator.should_use(bad_count, total, min_overall, overall)
            and bad_count <= self.targeted_ceiling(total)
        )

    def failing_floors(self, verdict: ReviewVerdict) -> List[Tuple[CriticalFloor, float]]:
        """Critical floors the verdict misses, in rubric order."""
        failing = []
        for floor in self.rubric.critical_floors:
            score = verdict.score(floor.criterion, floor.default)
            if score < floor.floor:
                failing.append((floor, score))
        if self.rubric.fail_on_duplicate_concepts and verdict.duplicate_concepts:
            concepts = ", ".join(verdict.duplicate_concepts)
            failing.append(
                (
                    CriticalFloor(
                        criterion="duplicate_concepts",
                        floor=10.0,
                        targeted_issue_types=["duplicate_concept"],
                        hint=f"Several questions share a concept ({concepts}). Each must be unique.",
                    ),
                    0.0,
                )
            )
        return failing

    def build_feedback(self, verdict: ReviewVerdict, batch: Batch, header: str = "") -> str:
        """Feedback for a full regeneration after a rejected review."""
        lines = [header] if header else []
        lines.append(
            f"PREVIOUS ATTEMPT REJECTED (score {verdict.overall_score:.1f}/10)."
        )
        if verdict.criterion_scores:
            scores = ", ".join(
                f"{name}: {score:.0f}/10" for name, score in verdict.criterion_scores.items()
            )
            lines.append(f"Scores: {scores}")

        problems = [fb for fb in verdict.item_feedback if not fb.ok]
        if problems:
            lines.append("Problem items:")
            for fb in problems:
                reason = fb.note or ", ".join(fb.issues) or "rejected"
                lines.append(f'- "{self.describe_item(batch, fb.index)}": {reason}')
        if verdict.suggestions:
            lines.append("Suggestions:")
            lines.extend(f"- {s}" for s in verdict.suggestions)
        if verdict.global_feedback:
            lines.append(verdict.global_feedback)
        return "\n".join(lines)

    def _fact_check_feedback(self, batch: Batch, outcome: FactCheckOutcome) -> str:
        lines = ["These items failed fact-checking; do not reuse them:"]
        for i in outcome.failed:
            lines.append(f'- "{self.describe_item(batch, i)}": {outcome.reasons.get(i, "")}')
        return "\n".join(lines)

    # --- Entry point ---

    async def run(
        self,
        topic: str,
        difficulty: str,
        language: str,
        target_count: Optional[int] = None,
        existing_items: Optional[Sequence[Any]] = None,
    ) -> PhaseResult:
        """Run the loop until acceptance, exhaustion or timeout.

        Args:
            topic: Game topic
            difficulty: Difficulty level
            language: Output language code
            target_count: Completion mode item count; defaults to the phase target
            existing_items: Completion mode items not to repeat

        Returns:
            Accepted result, or a degraded best-effort result

        Raises:
            PipelineExhaustedError: If no batch was ever produced
        """
        ctx = GenerationContext(
            topic=topic,
            difficulty=difficulty,
            language=language,
            target_count=self.resolve_target(target_count),
            existing_items=existing_items,
        )
        state = RunState(phase=self.phase, run_id=f"{self.phase.value}-{uuid.uuid4().hex[:8]}")
        token = run_id_context.set(state.run_id)
        try:
            logger.info(
                f"Starting {self.phase.value} run for '{topic}' "
                f"({difficulty}, {language}, target {ctx.target_count})"
            )
            try:
                result = await asyncio.wait_for(
                    self._loop(state, ctx), timeout=self.config.phase_timeout_seconds
                )
            except asyncio.TimeoutError:
                state.warnings.append(
                    f"Phase timed out after {self.config.phase_timeout_seconds:.0f}s"
                )
                logger.warning(f"{self.phase.value} run timed out at iteration {state.iteration}")
                return await self._best_effort(state, ctx, reason="timeout")

            if result is not None:
                return result
            state.warnings.append(
                f"Max iterations ({self.rubric.max_iterations}) reached without acceptance"
            )
            return await self._best_effort(state, ctx, reason="exhausted")
        finally:
            run_id_context.reset(token)

    # --- Loop ---

    async def _loop(self, state: RunState, ctx: GenerationContext) -> Optional[PhaseResult]:
        while state.iteration < self.rubric.max_iterations:
            state.iteration += 1
            logger.info(
                f"{self.phase.value} iteration {state.iteration}/{self.rubric.max_iterations}"
            )

            if state.checked is not None:
                batch, state.checked = state.checked, None
                logger.info("Retrying deduplication of the fact-checked batch")
                result = await self._deduplicate_and_accept(state, ctx, batch)
                if result is not None:
                    return result
                continue

            fast_track = False
            fresh = state.pending is None
            if state.pending is not None:
                batch = state.pending
                fast_track = state.fast_track
                state.pending = None
                state.fast_track = False
            else:
                state.transition(PipelineState.GENERATING)
                try:
                    batch = await self.generator.generate(
                        self.phase,
                        ctx.topic,
                        ctx.difficulty,
                        ctx.language,
                        feedback=state.feedback,
                        target_count=ctx.target_count,
                        existing_items=ctx.existing_items,
                    )
                except ContentGenerationError as e:
                    logger.warning(f"Generation failed: {e}")
                    state.feedback = e.feedback or str(e)
                    continue
                except (LLMProviderError, asyncio.TimeoutError) as e:
                    logger.warning(f"Generator call failed: {e}")
                    continue

            if fast_track and state.last_verdict is not None:
                verdict = state.last_verdict
                logger.info("Fast track: re-verifying merged batch without review")
            else:
                state.transition(PipelineState.REVIEWING)
                try:
                    verdict = await self.reviewer.review(
                        self.phase, batch, ctx.topic, ctx.difficulty, ctx.language
                    )
                except ReviewError as e:
                    logger.warning(f"Review failed: {e}")
                    continue
                except (LLMProviderError, asyncio.TimeoutError) as e:
                    logger.warning(f"Reviewer call failed: {e}")
                    continue
                state.last_verdict = verdict

                if await self._handle_critical(state, ctx, batch, verdict):
                    continue
                if fresh:
                    state.feedback = ""
                state.record_best(batch, verdict.overall_score)

            if verdict.overall_score < self.acceptance_score:
                await self._handle_rejection(state, ctx, batch, verdict)
                continue

            checked = await self._fact_check(state, ctx, batch, verdict, fast_track)
            if checked is None:
                continue

            result = await self._deduplicate_and_accept(state, ctx, checked)
            if result is not None:
                return result
        return None

    async def _regenerate(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
        bad: Sequence[int],
        reasons: Dict[int, str],
    ) -> bool:
        state.transition(PipelineState.TARGETED_REGEN)
        merged = await self.regenerator.regenerate(
            self.phase,
            batch,
            bad,
            reasons,
            ctx.topic,
            ctx.difficulty,
            ctx.language,
            target_count=ctx.target_count,
        )
        if merged is None:
            return False
        state.pending = merged
        return True

    async def _handle_critical(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
        verdict: ReviewVerdict,
    ) -> bool:
        """Route a batch missing a critical floor. Returns True when handled."""
        failing = self.failing_floors(verdict)
        if not failing:
            return False

        floor, score = failing[0]
        logger.warning(
            f"Critical criterion {floor.criterion} at {score:.1f} "
            f"(floor {floor.floor:.1f})"
        )
        if floor.targeted_issue_types or floor.include_rejected_items:
            candidates = verdict.flagged_indices(
                floor.targeted_issue_types, floor.include_rejected_items
            )
            if candidates and self.should_target(len(candidates), batch.item_count):
                reasons = verdict.notes_for(candidates)
                if await self._regenerate(state, ctx, batch, candidates, reasons):
                    return True

        header = (
            f"CRITICAL: {floor.criterion} scored {score:.0f}/10, "
            f"minimum {floor.floor:.0f}. {floor.hint}"
        ).strip()
        state.full_regen(self.build_feedback(verdict, batch, header=header))
        return True

    async def _handle_rejection(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
        verdict: ReviewVerdict,
    ) -> None:
        bad = verdict.rejected_indices()
        logger.info(
            f"Rejected at {verdict.overall_score:.1f}/10 with {len(bad)} flagged item(s)"
        )
        if self.should_target(
            len(bad),
            batch.item_count,
            self.rubric.targeted_regen_min_score,
            verdict.overall_score,
        ):
            if await self._regenerate(state, ctx, batch, bad, verdict.notes_for(bad)):
                return
        state.full_regen(self.build_feedback(verdict, batch))

    async def _fact_check(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
        verdict: ReviewVerdict,
        fast_track: bool,
    ) -> Optional[Batch]:
        """Fact-check ``batch``; returns the batch to deduplicate, or None."""
        state.transition(PipelineState.FACT_CHECKING)
        outcome = await self.fact_checker.check_batch(self.phase, batch)
        if outcome.unavailable:
            logger.warning("Fact-check unavailable; discarding unverified items")

        if not outcome.failed:
            if fast_track:
                state.record_best(batch, verdict.overall_score, verified=True)
            elif state.best_batch is batch:
                state.best_verified = True
            return batch

        total = batch.item_count
        failed = outcome.failed
        if state.prune_best(batch, failed):
            state.best_verified = True
        logger.warning(f"{len(failed)}/{total} item(s) failed fact-checking")

        if len(failed) > math.floor(total * self.regenerator.max_percentage):
            state.full_regen(self._fact_check_feedback(batch, outcome))
            return None

        if self.should_target(len(failed), total):
            if await self._regenerate(state, ctx, batch, failed, outcome.reasons):
                state.fast_track = verdict.overall_score >= self.rubric.fast_track_score
                return None

        kept = self.filter_failed(batch, failed)
        if fast_track:
            state.record_best(kept, verdict.overall_score, verified=True)
        return kept

    async def _dedupe(self, batch: Batch) -> Tuple[Batch, List[List[float]], List[int]]:
        texts = batch.item_texts()
        result = await self.index.find_duplicates(
            texts, self.phase.value, self.rubric.check_all_phases
        )
        duplicates = sorted(result.duplicate_indices)
        keep = [i for i in range(len(texts)) if i not in result.duplicate_indices]
        embeddings = [result.embeddings[i] for i in keep]
        return batch.without(duplicates), embeddings, duplicates

    async def _deduplicate_and_accept(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
    ) -> Optional[PhaseResult]:
        if batch.item_count < ctx.target_count:
            batch = await self.top_up(batch, ctx)

        state.transition(PipelineState.DEDUPLICATING)
        try:
            unique, embeddings, duplicates = await self._dedupe(batch)
        except (LLMProviderError, CorpusStoreError, asyncio.TimeoutError) as e:
            logger.warning(f"Deduplication failed, retrying next iteration: {e}")
            state.checked = batch
            return None

        min_viable = min(self.rubric.min_viable_count, ctx.target_count)
        if unique.item_count < min_viable:
            logger.warning(
                f"Only {unique.item_count} unique item(s) left, {min_viable} required"
            )
            state.prune_best(batch, duplicates)
            examples = "\n".join(
                f'- "{self.describe_item(batch, i)}"' for i in duplicates
            )
            state.full_regen(f"{DIFFERENT_CONTENT_HINT}\nDuplicated items:\n{examples}")
            return None

        try:
            await self.index.store(unique.item_texts(), embeddings, self.phase.value)
        except CorpusStoreError as e:
            logger.warning(f"Could not persist accepted batch, retrying next iteration: {e}")
            state.checked = batch
            return None
        state.transition(PipelineState.ACCEPTED)
        return self._finish(state, ctx, unique, embeddings, degraded=False)

    async def _best_effort(
        self, state: RunState, ctx: GenerationContext, reason: str
    ) -> PhaseResult:
        batch = state.best_batch
        if batch is None:
            raise PipelineExhaustedError(self.phase.value, state.iteration, reason)

        state.transition(PipelineState.BEST_EFFORT)
        logger.warning(
            f"{self.phase.value} falling back to best batch "
            f"(score {state.best_score:.1f}/10, reason: {reason})"
        )
        state.warnings.append(f"Returned best batch after {reason}")
        if not state.best_verified:
            logger.warning("Best batch was never fact-checked; it will not be persisted")

        embeddings: List[List[float]] = []
        try:
            batch, embeddings = await asyncio.wait_for(
                self._settle_best(batch, ctx, persist=state.best_verified),
                timeout=self.config.request_timeout_seconds,
            )
        except (LLMProviderError, CorpusStoreError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not deduplicate or persist best-effort batch: {e}")
        return self._finish(state, ctx, batch, embeddings, degraded=True)

    async def _settle_best(
        self, batch: Batch, ctx: GenerationContext, persist: bool
    ) -> Tuple[Batch, List[List[float]]]:
        """Deduplicate the best batch and optionally persist it.

        Returns:
            The batch to return and the embeddings of its persisted items
        """
        unique, embeddings, _ = await self._dedupe(batch)
        if unique.item_count >= min(self.rubric.min_viable_count, ctx.target_count):
            batch = unique
        else:
            embeddings = await self.index.embed(batch.item_texts())
        if not persist:
            return batch, []
        await self.index.store(batch.item_texts(), embeddings, self.phase.value)
        return batch, embeddings

    def _finish(
        self,
        state: RunState,
        ctx: GenerationContext,
        batch: Batch,
        embeddings: List[List[float]],
        degraded: bool,
    ) -> PhaseResult:
        padded, fallback_count = pad_batch(
            self.phase,
            batch,
            ctx.target_count,
            language=ctx.language,
            items_per_group=self.rubric.items_per_group or 5,
            rng=self.rng,
        )
        if fallback_count:
            state.warnings.append(f"Padded with {fallback_count} fallback item(s)")
        if padded.item_count < ctx.target_count:
            degraded = True
            state.warnings.append(
                f"Only {padded.item_count}/{ctx.target_count} items available"
            )

        logger.info(
            f"{self.phase.value} finished in {state.iteration} iteration(s): "
            f"{padded.item_count} items, degraded={degraded}"
        )
        return PhaseResult(
            phase=self.phase,
            batch=padded,
            embeddings=embeddings,
            degraded=degraded,
            warnings=list(state.warnings),
            iterations=state.iteration,
            fallback_count=fallback_count,
        )
