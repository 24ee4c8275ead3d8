"""Per-phase generation loops."""

from typing import Dict, Type

from ..data.models import Phase
from .base import GenerationContext, PhaseOrchestrator, PipelineState, RunState
from .categorization import Phase2Orchestrator
from .fallbacks import fallback_items, pad_batch, pad_menus
from .mcq import MCQOrchestrator, Phase1Orchestrator, Phase4Orchestrator
from .menus import Phase3Orchestrator
from .sequences import Phase5Orchestrator

ORCHESTRATORS: Dict[Phase, Type[PhaseOrchestrator]] = {
    Phase.PHASE1: Phase1Orchestrator,
    Phase.PHASE2: Phase2Orchestrator,
    Phase.PHASE3: Phase3Orchestrator,
    Phase.PHASE4: Phase4Orchestrator,
    Phase.PHASE5: Phase5Orchestrator,
}

__all__ = [
    "ORCHESTRATORS",
    "GenerationContext",
    "MCQOrchestrator",
    "Phase1Orchestrator",
    "Phase2Orchestrator",
    "Phase3Orchestrator",
    "Phase4Orchestrator",
    "Phase5Orchestrator",
    "PhaseOrchestrator",
    "PipelineState",
    "RunState",
    "fallback_items",
    "pad_batch",
    "pad_menus",
]
