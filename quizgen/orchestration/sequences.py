"""Orchestrator for the memory sequence phase (5)."""

from ..data.models import Batch, Phase
from ..text_utils import truncate
from .base import PhaseOrchestrator


class Phase5Orchestrator(PhaseOrchestrator):
    """Linked sequence of short question/answer pairs.

    Reviewer-reported duplicate concepts count as a critical failure when the
    rubric sets ``fail_on_duplicate_concepts``.
    """

    phase = Phase.PHASE5

    def describe_item(self, batch: Batch, index: int) -> str:
        item = batch.flat_items()[index]
        return f"{truncate(item.question, 80)} -> {item.answer}"
