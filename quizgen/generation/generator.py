"""Content generation for every game phase.

The generator sends the phase prompt, recovers JSON from the response and
validates it into the phase's batch container. Anything that cannot become a
usable batch raises :class:`ContentGenerationError` carrying feedback for the
next attempt.
"""

import logging
import random
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from ..config.rubric_config import PhaseRubric, RubricConfig
from ..data.models import (
    Batch,
    CategorizationSet,
    CategoryItem,
    MCQBatch,
    MCQItem,
    Menu,
    MenuSet,
    Phase,
    SequenceBatch,
    SequenceItem,
)
from ..exceptions import ContentGenerationError, JsonExtractionError
from .json_extractor import parse_json_from_text, unwrap_list
from .prompts import build_generation_prompt
from .text_client import TextGenClient

logger = logging.getLogger(__name__)


def shuffle_mcq_options(
    items: Sequence[MCQItem], rng: Optional[random.Random] = None
) -> List[MCQItem]:
    """Shuffle the options of every item to remove positional bias."""
    return [item.shuffled(rng) for item in items]


def parse_items(raw_items: List[Any], model: type, label: str) -> List[Any]:
    """Validate raw dicts into ``model``, dropping invalid ones.

    Args:
        raw_items: Decoded JSON items
        model: Pydantic model class to validate into
        label: Noun used in log messages

    Returns:
        Valid items, in input order
    """
    valid = []
    for i, raw in enumerate(raw_items):
        try:
            valid.append(model.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Dropping invalid {label} {i + 1}: {e.errors()[0]['msg']}")
    return valid


class ContentGenerator:
    """Proposes a batch of content for one phase."""

    def __init__(
        self,
        client: TextGenClient,
        rubrics: RubricConfig,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the generator.

        Args:
            client: Text generation client
            rubrics: Per-phase rubric configuration
            rng: Random source for option shuffling
        """
        self.client = client
        self.rubrics = rubrics
        self.rng = rng or random.Random()

    def _rubric(self, phase: Phase) -> PhaseRubric:
        return self.rubrics.phases[phase.value]

    async def generate(
        self,
        phase: Phase,
        topic: str,
        difficulty: str,
        language: str,
        feedback: str = "",
        target_count: Optional[int] = None,
        existing_items: Optional[Sequence[Any]] = None,
    ) -> Batch:
        """Generate a batch for ``phase``.

        Args:
            phase: Phase to generate for
            topic: Topic of the game
            difficulty: Difficulty level
            language: Output language code
            feedback: Accumulated feedback from rejected attempts
            target_count: Items requested; defaults to the phase target
            existing_items: Completion mode items that must not be repeated

        Returns:
            The validated batch

        Raises:
            ContentGenerationError: If the output cannot become a batch
            LLMProviderError: If the provider call fails
        """
        rubric = self._rubric(phase)
        count = target_count or rubric.target_count

        prompt = build_generation_prompt(
            phase.value,
            topic=topic,
            difficulty=difficulty,
            language=language,
            count=count,
            feedback=feedback,
            existing_items=existing_items,
            distribution=(
                rubric.category_distribution
                if count == rubric.target_count
                else None
            ),
            groups=rubric.groups or 4,
            items_per_group=rubric.items_per_group or 5,
        )

        logger.info(
            f"Generating {count} {phase.value} items "
            f"(profile={rubric.generation_profile}, feedback={'yes' if feedback else 'no'})"
        )
        raw = await self.client.generate(
            prompt, profile=rubric.generation_profile, grounded=True
        )
        return self.parse_batch(phase, raw, count)

    def parse_batch(self, phase: Phase, raw: str, count: int) -> Batch:
        """Turn raw generator text into a validated batch.

        Raises:
            ContentGenerationError: On unparsable or unusable output
        """
        try:
            data = parse_json_from_text(raw)
        except JsonExtractionError as e:
            raise ContentGenerationError(
                f"Generator output for {phase.value} is not JSON: {e}",
                feedback="Your previous answer was not valid JSON. Respond with JSON only.",
            ) from e

        rubric = self._rubric(phase)
        try:
            if phase in (Phase.PHASE1, Phase.PHASE4):
                batch: Batch = self._parse_mcq(data, count, rubric)
                if phase == Phase.PHASE4:
                    batch = MCQBatch(items=shuffle_mcq_options(batch.items, self.rng))
            elif phase == Phase.PHASE2:
                batch = self._parse_categorization(data, count, rubric)
            elif phase == Phase.PHASE3:
                batch = self._parse_menus(data, rubric)
            else:
                batch = self._parse_sequence(data, count, rubric)
        except JsonExtractionError as e:
            raise ContentGenerationError(
                f"Unexpected {phase.value} output shape: {e}",
                feedback="Follow the requested output format exactly.",
            ) from e

        logger.info(f"Parsed {batch.item_count} {phase.value} items")
        return batch

    def _check_count(self, found: int, count: int, rubric: PhaseRubric, label: str) -> None:
        minimum = min(rubric.min_viable_count, count)
        if found < minimum:
            raise ContentGenerationError(
                f"Only {found} valid {label} out of {count} requested",
                feedback=(
                    f"You produced only {found} valid {label}; exactly {count} are "
                    "required, each following the output format."
                ),
            )

    def _parse_mcq(self, data: Any, count: int, rubric: PhaseRubric) -> MCQBatch:
        raw_items = unwrap_list(data, "questions", "items")
        items = parse_items(raw_items, MCQItem, "question")
        self._check_count(len(items), count, rubric, "questions")
        return MCQBatch(items=items[:count])

    def _parse_categorization(
        self, data: Any, count: int, rubric: PhaseRubric
    ) -> CategorizationSet:
        if not isinstance(data, dict) or not data.get("optionA") or not data.get("optionB"):
            raise ContentGenerationError(
                "Categorization output is missing optionA/optionB",
                feedback="The output must be one object with optionA, optionB and items.",
            )
        items = parse_items(list(data.get("items") or []), CategoryItem, "item")
        self._check_count(len(items), count, rubric, "items")
        fields = {k: v for k, v in data.items() if k not in ("items", "reasoning")}
        try:
            return CategorizationSet.model_validate({**fields, "items": items[:count]})
        except ValidationError as e:
            raise ContentGenerationError(
                f"Invalid categorization set: {e}",
                feedback="optionA and optionB must be non-empty strings.",
            ) from e

    def _parse_menus(self, data: Any, rubric: PhaseRubric) -> MenuSet:
        raw_menus = unwrap_list(data, "menus")
        try:
            menus = [Menu.model_validate(m) for m in raw_menus]
        except ValidationError as e:
            raise ContentGenerationError(
                f"Invalid menu structure: {e}",
                feedback="Every menu needs a title, a description, isTrap and questions with question and answer.",
            ) from e

        menu_set = MenuSet(menus=menus)
        problems = menu_set.structure_problems(
            rubric.groups or 4, rubric.items_per_group or 5
        )
        if problems:
            raise ContentGenerationError(
                f"Menu structure invalid: {'; '.join(problems)}",
                feedback="STRUCTURE ERRORS:\n" + "\n".join(f"- {p}" for p in problems),
            )
        return menu_set

    def _parse_sequence(self, data: Any, count: int, rubric: PhaseRubric) -> SequenceBatch:
        raw_items = unwrap_list(data, "questions", "items")
        items = parse_items(raw_items, SequenceItem, "question")
        self._check_count(len(items), count, rubric, "questions")
        return SequenceBatch(items=items[:count])
