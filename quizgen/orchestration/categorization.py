"""Orchestrator for the homophone categorization phase (2)."""

import logging

from ..data.models import Batch, Phase
from ..text_utils import truncate
from .base import GenerationContext, PhaseOrchestrator

logger = logging.getLogger(__name__)


class Phase2Orchestrator(PhaseOrchestrator):
    """Homophone pairing with items sorted into A, B or Both.

    There is no static fallback for this phase. A set left short by
    fact-checking is topped up with a deficit-driven regeneration whose new
    items are fact-checked before joining the set; if that fails the set is
    returned short and marked degraded.
    """

    phase = Phase.PHASE2

    def describe_item(self, batch: Batch, index: int) -> str:
        item = batch.items[index]
        return f"{truncate(item.text, 80)} ({item.answer})"

    async def top_up(self, batch: Batch, ctx: GenerationContext) -> Batch:
        filled = await self.regenerator.fill(
            self.phase,
            batch,
            ctx.topic,
            ctx.difficulty,
            ctx.language,
            target_count=ctx.target_count,
        )
        if filled is None:
            logger.warning(
                f"Could not top up categorization set ({batch.item_count}/{ctx.target_count})"
            )
            return batch

        outcome = await self.fact_checker.check_categorization(filled)
        rejected_new = [i for i in outcome.failed if i >= batch.item_count]
        if rejected_new:
            logger.warning(f"Dropping {len(rejected_new)} top-up item(s) that failed fact-checking")
        return filled.without(rejected_new)
