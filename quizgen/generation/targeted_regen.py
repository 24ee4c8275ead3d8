"""Targeted regeneration of the defective subset of a batch.

When only a minority of items is defective, replacing just those items is
much cheaper than regenerating the whole batch. The regenerator keeps the
good items, asks the model for replacements only and merges them back.
Failures return None so the orchestrator can fall back to a full
regeneration.
"""

import asyncio
import logging
import math
import random
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..config.rubric_config import PhaseRubric, RubricConfig
from ..data.models import (
    Batch,
    CategorizationSet,
    CategoryItem,
    MCQBatch,
    MCQItem,
    MenuQuestion,
    MenuSet,
    Phase,
    SequenceBatch,
    SequenceItem,
)
from ..exceptions import ContentGenerationError, JsonExtractionError
from ..providers.base import LLMProviderError
from .generator import parse_items, shuffle_mcq_options
from .json_extractor import parse_json_from_text, unwrap_list
from .prompts import (
    build_category_extra,
    build_menu_replacement_prompt,
    build_replacement_prompt,
)
from .text_client import TextGenClient

logger = logging.getLogger(__name__)

TARGETED_REGEN_MAX_PERCENTAGE = 0.6

_RECOVERABLE = (
    LLMProviderError,
    JsonExtractionError,
    ContentGenerationError,
    asyncio.TimeoutError,
)


def should_use_targeted_regen(
    bad_count: int,
    total_count: int,
    min_overall_score: Optional[float] = None,
    overall_score: Optional[float] = None,
    max_percentage: float = TARGETED_REGEN_MAX_PERCENTAGE,
) -> bool:
    """Decide whether replacing only the bad items is worthwhile.

    Args:
        bad_count: Number of defective items
        total_count: Batch size
        min_overall_score: Optional minimum overall score
        overall_score: Optional current overall score
        max_percentage: Ceiling on the defective fraction

    Returns:
        True when there is at least one bad item, the bad items fit under
        ``floor(total_count * max_percentage)`` and, when both scores are
        given, the overall score reaches the minimum
    """
    if bad_count <= 0:
        return False
    max_bad = math.floor(total_count * max_percentage)
    score_ok = (
        min_overall_score is None
        or overall_score is None
        or overall_score >= min_overall_score
    )
    return bad_count <= max_bad and score_ok


def compute_category_deficit(
    kept: CategorizationSet,
    distribution: Dict[str, int],
) -> Dict[str, int]:
    """Items still needed per category after removing the bad ones.

    Each value is ``required - kept``, floored at zero.
    """
    counts = kept.category_counts()
    return {
        category: max(0, required - counts.get(category, 0))
        for category, required in distribution.items()
    }


class TargetedRegenerator:
    """Requests replacements for flagged items and merges them back."""

    def __init__(
        self,
        client: TextGenClient,
        rubrics: RubricConfig,
        max_percentage: float = TARGETED_REGEN_MAX_PERCENTAGE,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.rubrics = rubrics
        self.max_percentage = max_percentage
        self.rng = rng or random.Random()

    def _rubric(self, phase: Phase) -> PhaseRubric:
        return self.rubrics.phases[phase.value]

    def should_use(
        self,
        bad_count: int,
        total_count: int,
        min_overall_score: Optional[float] = None,
        overall_score: Optional[float] = None,
    ) -> bool:
        return should_use_targeted_regen(
            bad_count,
            total_count,
            min_overall_score,
            overall_score,
            max_percentage=self.max_percentage,
        )

    async def regenerate(
        self,
        phase: Phase,
        batch: Batch,
        bad_indices: Iterable[int],
        reasons: Dict[int, str],
        topic: str,
        difficulty: str,
        language: str,
        target_count: Optional[int] = None,
    ) -> Optional[Batch]:
        """Replace the items at ``bad_indices``.

        Args:
            phase: Phase of the batch
            batch: Batch containing the defective items
            bad_indices: Flat indices to replace
            reasons: Rejection reason per flat index
            topic: Game topic
            difficulty: Difficulty level
            language: Output language code
            target_count: Batch size to restore; defaults to the phase target

        Returns:
            The merged batch, or None when regeneration failed
        """
        bad = sorted({i for i in bad_indices if 0 <= i < batch.item_count})
        if not bad:
            return None
        target = target_count or self._rubric(phase).target_count

        logger.info(
            f"Targeted regeneration for {phase.value}: replacing {len(bad)} item(s) "
            f"(indices: {', '.join(str(i + 1) for i in bad)})"
        )
        try:
            if phase == Phase.PHASE3:
                merged = await self._replace_menu_questions(
                    batch, bad, reasons, topic, difficulty, language
                )
            elif phase == Phase.PHASE2:
                merged = await self._replace_categories(
                    batch, bad, reasons, topic, difficulty, language, target, len(bad)
                )
            else:
                merged = await self._replace_items(
                    phase, batch, bad, reasons, topic, difficulty, language, target, len(bad)
                )
        except _RECOVERABLE as e:
            logger.warning(f"Targeted regeneration failed for {phase.value}: {e}")
            return None

        if merged is not None:
            logger.info(
                f"Targeted regeneration merged {phase.value} batch: "
                f"{merged.item_count} items"
            )
        return merged

    async def fill(
        self,
        phase: Phase,
        batch: Batch,
        topic: str,
        difficulty: str,
        language: str,
        target_count: Optional[int] = None,
    ) -> Optional[Batch]:
        """Top up a short batch with new items.

        Returns:
            The filled batch, or None when nothing could be added
        """
        target = target_count or self._rubric(phase).target_count
        missing = target - batch.item_count
        if missing <= 0 or phase == Phase.PHASE3:
            return None

        logger.info(f"Filling {phase.value} batch with {missing} new item(s)")
        try:
            if phase == Phase.PHASE2:
                return await self._replace_categories(
                    batch, [], {}, topic, difficulty, language, target, missing
                )
            return await self._replace_items(
                phase, batch, [], {}, topic, difficulty, language, target, missing
            )
        except _RECOVERABLE as e:
            logger.warning(f"Fill regeneration failed for {phase.value}: {e}")
            return None

    async def _request_items(self, phase: Phase, prompt: str) -> List[dict]:
        raw = await self.client.generate(
            prompt, profile=self._rubric(phase).generation_profile
        )
        return unwrap_list(parse_json_from_text(raw), "questions", "items")

    async def _replace_items(
        self,
        phase: Phase,
        batch: Batch,
        bad: List[int],
        reasons: Dict[int, str],
        topic: str,
        difficulty: str,
        language: str,
        target: int,
        count: int,
    ) -> Optional[Batch]:
        kept = batch.without(bad)
        flat = batch.flat_items()
        rejected = [
            (flat[i].model_dump(by_alias=True, exclude_none=True), reasons.get(i, "rejected"))
            for i in bad
        ]
        prompt = build_replacement_prompt(
            phase.value,
            topic=topic,
            difficulty=difficulty,
            language=language,
            kept=kept.to_data(),
            rejected=rejected,
            count=count,
        )
        raw_items = await self._request_items(phase, prompt)

        if phase in (Phase.PHASE1, Phase.PHASE4):
            new_items = parse_items(raw_items, MCQItem, "replacement")
            if phase == Phase.PHASE4:
                new_items = shuffle_mcq_options(new_items, self.rng)
            if not new_items:
                return None
            return MCQBatch(items=(kept.items + new_items)[:target])

        new_items = parse_items(raw_items, SequenceItem, "replacement")
        if not new_items:
            return None
        return SequenceBatch(items=(kept.items + new_items)[:target])

    async def _replace_categories(
        self,
        batch: Batch,
        bad: List[int],
        reasons: Dict[int, str],
        topic: str,
        difficulty: str,
        language: str,
        target: int,
        count: int,
    ) -> Optional[CategorizationSet]:
        if not isinstance(batch, CategorizationSet):
            raise ContentGenerationError(
                f"Category replacement needs a category set, got {type(batch).__name__}"
            )
        rubric = self._rubric(Phase.PHASE2)
        kept = batch.without(bad)

        distribution = (
            rubric.category_distribution if target == rubric.target_count else {}
        )
        needed = compute_category_deficit(kept, distribution) if distribution else {}
        if needed:
            count = sum(needed.values()) or count
            logger.info(f"Category deficit: {needed}")

        rejected = [
            (batch.items[i].model_dump(by_alias=True, exclude_none=True), reasons.get(i, "rejected"))
            for i in bad
        ]
        prompt = build_replacement_prompt(
            Phase.PHASE2.value,
            topic=topic,
            difficulty=difficulty,
            language=language,
            kept=[item.model_dump(by_alias=True, exclude_none=True) for item in kept.items],
            rejected=rejected,
            count=count,
            extra=build_category_extra(batch.option_a, batch.option_b, needed)
            if needed
            else f'The pairing is A = "{batch.option_a}" and B = "{batch.option_b}".',
        )
        new_items = parse_items(
            await self._request_items(Phase.PHASE2, prompt), CategoryItem, "replacement"
        )
        if not new_items:
            return None

        if needed:
            # Take replacements category by category up to the deficit, then
            # use any leftovers for remaining slots
            remaining = dict(needed)
            chosen, leftovers = [], []
            for item in new_items:
                if remaining.get(item.answer, 0) > 0:
                    chosen.append(item)
                    remaining[item.answer] -= 1
                else:
                    leftovers.append(item)
            new_items = chosen + leftovers

        merged = (kept.items + new_items)[:target]
        return kept.model_copy(update={"items": merged})

    async def _replace_menu_questions(
        self,
        batch: Batch,
        bad: List[int],
        reasons: Dict[int, str],
        topic: str,
        difficulty: str,
        language: str,
    ) -> Optional[MenuSet]:
        if not isinstance(batch, MenuSet):
            raise ContentGenerationError(
                f"Menu replacement needs a menu set, got {type(batch).__name__}"
            )
        cap = self._rubric(Phase.PHASE3).max_targeted_replacements or 8
        if len(bad) > cap:
            logger.warning(
                f"Too many menu questions to replace ({len(bad)} > {cap})"
            )
            return None

        failures = []
        for flat_index in bad:
            menu_index, question_index = batch.locate(flat_index)
            failures.append(
                {
                    "menu_index": menu_index,
                    "question_index": question_index,
                    "question": batch.menus[menu_index].questions[question_index].question,
                    "reason": reasons.get(flat_index, "rejected"),
                }
            )

        prompt = build_menu_replacement_prompt(
            topic=topic,
            difficulty=difficulty,
            language=language,
            menus=batch.to_data()["menus"],
            failures=failures,
        )
        raw = await self.client.generate(
            prompt, profile=self._rubric(Phase.PHASE3).generation_profile
        )
        replacements = unwrap_list(parse_json_from_text(raw), "replacements")

        wanted = {(f["menu_index"], f["question_index"]) for f in failures}
        menus = [menu.model_copy(deep=True) for menu in batch.menus]
        applied = 0
        for repl in replacements:
            if not isinstance(repl, dict):
                continue
            position = (repl.get("menu_index"), repl.get("question_index"))
            if position not in wanted:
                continue
            try:
                question = MenuQuestion(
                    question=repl.get("new_question", ""),
                    answer=repl.get("new_answer", ""),
                )
            except ValidationError:
                continue
            menus[position[0]].questions[position[1]] = question
            applied += 1

        if applied == 0:
            return None
        logger.info(f"Applied {applied}/{len(failures)} menu question replacements")
        return MenuSet(menus=menus)
