"""Orchestrators for the multiple choice phases (1 and 4)."""

from ..data.models import Batch, Phase
from ..text_utils import truncate
from .base import PhaseOrchestrator


class MCQOrchestrator(PhaseOrchestrator):
    """Shared behaviour of the single-answer MCQ phases."""

    def describe_item(self, batch: Batch, index: int) -> str:
        item = batch.flat_items()[index]
        return f"{truncate(item.text, 80)} -> {item.correct_option}"


class Phase1Orchestrator(MCQOrchestrator):
    """Humorous single-answer MCQ round."""

    phase = Phase.PHASE1


class Phase4Orchestrator(MCQOrchestrator):
    """Buzzer MCQ round with plausible distractors.

    Options are shuffled by the generator and the regenerator, so the correct
    index carries no positional bias.
    """

    phase = Phase.PHASE4
