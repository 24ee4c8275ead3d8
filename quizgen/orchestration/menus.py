"""Orchestrator for the themed menus phase (3)."""

from typing import Optional

from ..data.models import Batch, Phase
from ..text_utils import truncate
from .base import PhaseOrchestrator


class Phase3Orchestrator(PhaseOrchestrator):
    """Four themed menus of five questions, one of them a trap.

    Questions removed by fact-checking or deduplication leave their menu
    short; acceptance pads such menus with placeholder questions and repairs
    the trap flag.
    """

    phase = Phase.PHASE3

    def resolve_target(self, target_count: Optional[int]) -> int:
        # The menu structure is fixed; completion counts do not apply
        return self.rubric.target_count

    def describe_item(self, batch: Batch, index: int) -> str:
        menu_index, question_index = batch.locate(index)
        menu = batch.menus[menu_index]
        question = menu.questions[question_index]
        return f"[{menu.title}] {truncate(question.question, 80)} -> {question.answer}"
