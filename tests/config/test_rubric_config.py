"""Tests for phase rubric configuration loading."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from quizgen.config.rubric_config import (
    DEFAULT_RUBRIC_PATH,
    CriticalFloor,
    PhaseRubric,
    RubricConfig,
    RubricConfigLoader,
    load_rubric_config,
)


def minimal_phase(**overrides):
    data = {"target_count": 10, "max_iterations": 4, "min_viable_count": 8}
    data.update(overrides)
    return data


def write_config(path: Path, phases: dict) -> Path:
    path.write_text(yaml.safe_dump({"version": "2.0", "phases": phases}), encoding="utf-8")
    return path


class TestPackagedRubrics:
    """Tests for the packaged rubrics.yaml."""

    def test_loads_every_phase(self):
        config = load_rubric_config()
        assert set(config.phases) == {"phase1", "phase2", "phase3", "phase4", "phase5"}

    def test_phase_parameters(self):
        """Test the counts and budgets of each phase."""
        phases = load_rubric_config().phases
        assert phases["phase1"].target_count == 10
        assert phases["phase1"].max_iterations == 4
        assert phases["phase2"].target_count == 12
        assert phases["phase2"].category_distribution == {"A": 5, "B": 5, "Both": 2}
        assert phases["phase2"].max_iterations == 3
        assert phases["phase3"].groups == 4
        assert phases["phase3"].items_per_group == 5
        assert phases["phase3"].max_targeted_replacements == 8
        assert phases["phase4"].min_viable_count == 4
        assert phases["phase5"].fail_on_duplicate_concepts is True

    def test_deduplication_scope(self):
        """Test that phases 1, 2 and 4 check every phase's corpus."""
        phases = load_rubric_config().phases
        assert [p for p, r in sorted(phases.items()) if r.check_all_phases] == [
            "phase1",
            "phase2",
            "phase4",
        ]

    def test_critical_floors_are_ordered(self):
        floors = load_rubric_config().phases["phase1"].critical_floors
        assert [f.criterion for f in floors] == ["factual_accuracy", "humor", "clarity"]
        assert floors[0].targeted_issue_types == ["factual_error"]

    def test_phase2_trap_floor_targets_rejected_items(self):
        floors = {f.criterion: f for f in load_rubric_config().phases["phase2"].critical_floors}
        assert floors["trap_quality"].include_rejected_items is True
        assert floors["b_concrete"].default == pytest.approx(5.0)


class TestPhaseRubric:
    """Tests for PhaseRubric validation."""

    def test_min_viable_cannot_exceed_target(self):
        with pytest.raises(ValidationError, match="min_viable_count"):
            PhaseRubric(**minimal_phase(min_viable_count=11))

    def test_distribution_must_sum_to_target(self):
        with pytest.raises(ValidationError, match="category_distribution"):
            PhaseRubric(**minimal_phase(category_distribution={"A": 5, "B": 4}))

    def test_groups_must_match_target(self):
        with pytest.raises(ValidationError, match="groups"):
            PhaseRubric(**minimal_phase(target_count=20, min_viable_count=16, groups=4, items_per_group=4))

    def test_generation_profile_values(self):
        with pytest.raises(ValidationError):
            PhaseRubric(**minimal_phase(generation_profile="wild"))

    def test_floor_range(self):
        with pytest.raises(ValidationError):
            CriticalFloor(criterion="humor", floor=11)


class TestRubricConfigLoader:
    """Tests for RubricConfigLoader."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RubricConfigLoader(tmp_path / "missing.yaml").load()

    def test_config_before_load(self):
        with pytest.raises(RuntimeError, match="not loaded"):
            RubricConfigLoader().config

    def test_missing_phase(self, tmp_path):
        path = write_config(tmp_path / "rubrics.yaml", {"phase1": minimal_phase()})
        with pytest.raises(ValidationError, match="Missing required phases"):
            RubricConfigLoader(path).load()

    def test_override_file(self, tmp_path):
        """Test that a custom file overrides thresholds."""
        phases = {f"phase{i}": minimal_phase() for i in range(1, 6)}
        phases["phase1"]["acceptance_score"] = 8.5
        path = write_config(tmp_path / "rubrics.yaml", phases)

        config = load_rubric_config(path)

        assert isinstance(config, RubricConfig)
        assert config.version == "2.0"
        assert config.phases["phase1"].acceptance_score == pytest.approx(8.5)
        assert config.phases["phase2"].acceptance_score is None

    def test_get_phase_rubric(self):
        loader = RubricConfigLoader(DEFAULT_RUBRIC_PATH)
        loader.load()
        assert loader.get_phase_rubric("phase4").target_count == 10
        with pytest.raises(KeyError, match="phase9"):
            loader.get_phase_rubric("phase9")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("version: [unclosed", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            RubricConfigLoader(path).load()
