"""Phase rubric configuration management.

This module loads the per-phase acceptance rubric (target counts, iteration
budgets, critical criterion floors, deduplication scope) from a YAML file and
validates it with pydantic.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_RUBRIC_PATH = Path(__file__).parent / "rubrics.yaml"

REQUIRED_PHASES = {"phase1", "phase2", "phase3", "phase4", "phase5"}


class CriticalFloor(BaseModel):
    """A rubric criterion with a hard floor.

    Attributes:
        criterion: Score name in the reviewer output
        floor: Minimum acceptable score (0-10)
        default: Score assumed when the reviewer omits the criterion
        targeted_issue_types: Item issue types eligible for targeted
            regeneration when this floor is missed; empty means full
            regeneration only
        include_rejected_items: Also target items the reviewer marked not ok
        hint: Feedback sentence injected into the next generation
    """

    criterion: str = Field(..., min_length=1)
    floor: float = Field(..., ge=0.0, le=10.0)
    default: float = Field(default=0.0, ge=0.0, le=10.0)
    targeted_issue_types: List[str] = Field(default_factory=list)
    include_rejected_items: bool = False
    hint: str = ""


class PhaseRubric(BaseModel):
    """Loop parameters and acceptance rubric for one phase.

    Attributes:
        target_count: Items required at acceptance
        max_iterations: Iteration budget before best-effort fallback
        acceptance_score: Overall score that sends a batch to fact-checking
        min_viable_count: Fewest items left after filtering before a full
            regeneration is forced
        targeted_regen_min_score: Overall score required for targeted
            regeneration after a plain rejection
        fast_track_score: Overall score above which fact-check replacements
            are re-verified immediately instead of re-reviewed
        generation_profile: Sampling profile for the generator
        check_all_phases: Compare against the corpus of every phase
        fail_on_duplicate_concepts: Reviewer-reported duplicate concepts
            count as a critical failure
        criteria: Rubric criteria listed in the reviewer prompt
        critical_floors: Ordered critical criteria
        category_distribution: Required count per category (phase 2)
        groups: Number of groups (menus) per batch (phase 3)
        items_per_group: Items per group (phase 3)
        max_targeted_replacements: Cap on replacement requests (phase 3)
    """

    target_count: int = Field(..., ge=1)
    max_iterations: int = Field(..., ge=1, le=10)
    acceptance_score: Optional[float] = Field(default=None, ge=0.0, le=10.0)
    min_viable_count: int = Field(..., ge=1)
    targeted_regen_min_score: float = Field(default=4.0, ge=0.0, le=10.0)
    fast_track_score: float = Field(default=9.0, ge=0.0, le=10.0)
    generation_profile: str = Field(default="creative", pattern="^(creative|factual)$")
    check_all_phases: bool = False
    fail_on_duplicate_concepts: bool = False
    criteria: List[str] = Field(default_factory=list)
    critical_floors: List[CriticalFloor] = Field(default_factory=list)
    category_distribution: Dict[str, int] = Field(default_factory=dict)
    groups: Optional[int] = Field(default=None, ge=1)
    items_per_group: Optional[int] = Field(default=None, ge=1)
    max_targeted_replacements: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_counts(self) -> "PhaseRubric":
        """Validate that count fields are mutually consistent."""
        if self.min_viable_count > self.target_count:
            raise ValueError(
                f"min_viable_count ({self.min_viable_count}) cannot exceed "
                f"target_count ({self.target_count})"
            )
        if self.category_distribution:
            total = sum(self.category_distribution.values())
            if total != self.target_count:
                raise ValueError(
                    f"category_distribution sums to {total}, "
                    f"expected target_count {self.target_count}"
                )
        if self.groups and self.items_per_group:
            if self.groups * self.items_per_group != self.target_count:
                raise ValueError(
                    "groups * items_per_group must equal target_count"
                )
        return self


class RubricConfig(BaseModel):
    """Complete rubric configuration.

    Attributes:
        version: Configuration version
        phases: Mapping of phase identifiers to their rubric
    """

    version: str
    phases: Dict[str, PhaseRubric]

    @field_validator("phases")
    @classmethod
    def validate_phases(cls, v: Dict[str, PhaseRubric]) -> Dict[str, PhaseRubric]:
        """Validate that every game phase has a rubric."""
        missing = REQUIRED_PHASES - set(v.keys())
        if missing:
            raise ValueError(f"Missing required phases in rubric config: {missing}")
        return v


class RubricConfigLoader:
    """Loader for rubric configuration files."""

    def __init__(self, config_path: str | Path = DEFAULT_RUBRIC_PATH):
        """Initialize the configuration loader.

        Args:
            config_path: Path to the rubric YAML file
        """
        self.config_path = Path(config_path)
        self._config: Optional[RubricConfig] = None

    def load(self) -> RubricConfig:
        """Load and parse the configuration file.

        Returns:
            Parsed and validated rubric configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If configuration is invalid
            yaml.YAMLError: If YAML parsing fails
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Rubric configuration file not found: {self.config_path}"
            )

        logger.info(f"Loading rubric configuration from {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)

            self._config = RubricConfig(**raw_config)
            logger.info(
                f"Loaded rubric configuration (version {self._config.version})"
            )
            return self._config

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML configuration: {e}")
            raise

    @property
    def config(self) -> RubricConfig:
        """Get the loaded configuration.

        Raises:
            RuntimeError: If configuration hasn't been loaded yet
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def get_phase_rubric(self, phase: str) -> PhaseRubric:
        """Get the rubric for a phase.

        Args:
            phase: Phase identifier (e.g., "phase1")

        Raises:
            KeyError: If the phase is not configured
        """
        try:
            return self.config.phases[phase]
        except KeyError:
            raise KeyError(f"No rubric configured for phase '{phase}'") from None


def load_rubric_config(config_path: str | Path | None = None) -> RubricConfig:
    """Load a rubric configuration, defaulting to the packaged rubrics.yaml.

    Args:
        config_path: Optional path to an override file

    Returns:
        Validated rubric configuration
    """
    return RubricConfigLoader(config_path or DEFAULT_RUBRIC_PATH).load()
