"""Configuration for the generation pipeline."""

from .config import Settings
from .rubric_config import (
    CriticalFloor,
    PhaseRubric,
    RubricConfig,
    RubricConfigLoader,
    load_rubric_config,
)

__all__ = [
    "CriticalFloor",
    "PhaseRubric",
    "RubricConfig",
    "RubricConfigLoader",
    "Settings",
    "load_rubric_config",
]
