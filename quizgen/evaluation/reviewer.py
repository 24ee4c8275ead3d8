"""Rubric review of generated batches.

The reviewer scores a whole batch against the phase rubric and flags
individual items. Each phase returns feedback in its own shape; this module
normalizes all of them into a flat list of :class:`ItemFeedback` whose indices
match ``Batch.flat_items()``.
"""

import logging
from typing import Any, Dict, List, Optional

from ..config.config import Settings
from ..config.rubric_config import RubricConfig
from ..data.models import Batch, ItemFeedback, MenuSet, Phase, ReviewVerdict
from ..exceptions import JsonExtractionError, ReviewError
from ..generation.json_extractor import parse_json_from_text
from ..generation.prompts import build_review_prompt
from ..generation.text_client import TextGenClient
from ..text_utils import truncate

logger = logging.getLogger(__name__)

# Boolean reviewer flags that translate into issue types
_FLAG_ISSUES = {
    "is_too_obvious": "too_obvious",
    "should_be_both": "should_be_both",
}


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str) and value:
        return [value]
    return []


def _issues_from(raw: Dict[str, Any]) -> List[str]:
    issues = [str(i) for i in _as_list(raw.get("issues")) if i]
    issue_type = raw.get("issue_type")
    if isinstance(issue_type, str) and issue_type and issue_type != "null":
        issues.insert(0, issue_type)
    for flag, issue in _FLAG_ISSUES.items():
        if raw.get(flag) is True and issue not in issues:
            issues.append(issue)
    return issues


def _item_feedback(
    raw: Dict[str, Any], index: int, group: Optional[int] = None
) -> ItemFeedback:
    issues = _issues_from(raw)
    note = raw.get("issue") or raw.get("correction") or ""
    return ItemFeedback(
        index=index,
        ok=bool(raw.get("ok", True)),
        issues=issues,
        note=str(note) if note else "",
        group=group,
    )


class Reviewer:
    """Scores batches with a low-temperature review model."""

    def __init__(self, client: TextGenClient, config: Settings, rubrics: RubricConfig):
        self.client = client
        self.config = config
        self.rubrics = rubrics

    async def review(
        self,
        phase: Phase,
        batch: Batch,
        topic: str,
        difficulty: str,
        language: str,
    ) -> ReviewVerdict:
        """Review one batch.

        Args:
            phase: Phase of the batch
            batch: Content to review
            topic: Game topic
            difficulty: Difficulty level
            language: Content language code

        Returns:
            Normalized review verdict

        Raises:
            ReviewError: If the reviewer output cannot be parsed
            LLMProviderError: If the provider call fails
        """
        rubric = self.rubrics.phases[phase.value]
        prompt = build_review_prompt(
            phase.value,
            content=batch.to_data(),
            topic=topic,
            difficulty=difficulty,
            language=language,
            criteria=rubric.criteria,
        )
        raw = await self.client.generate(
            prompt, profile="review", model=self.config.reviewer_model
        )

        try:
            data = parse_json_from_text(raw)
        except JsonExtractionError as e:
            logger.warning(f"Unparsable review for {phase.value}: {truncate(raw, 200)}")
            raise ReviewError(f"Review output for {phase.value} is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise ReviewError(
                f"Review output for {phase.value} is a {type(data).__name__}, expected an object"
            )

        verdict = self.parse_verdict(phase, data, batch)
        logger.info(
            f"Review {phase.value}: overall={verdict.overall_score:.1f}, "
            f"rejected={len(verdict.rejected_indices())}/{batch.item_count}"
        )
        return verdict

    def parse_verdict(self, phase: Phase, data: Dict[str, Any], batch: Batch) -> ReviewVerdict:
        """Normalize raw reviewer JSON into a verdict.

        Raises:
            ReviewError: If neither an overall score nor criterion scores exist
        """
        raw_scores = data.get("scores") if isinstance(data.get("scores"), dict) else {}
        scores = {}
        for name, value in raw_scores.items():
            score = _as_float(value)
            if score is not None:
                scores[name] = score

        overall = _as_float(data.get("overall_score"))
        if overall is None:
            if not scores:
                raise ReviewError(f"Review for {phase.value} has no scores")
            overall = sum(scores.values()) / len(scores)
        overall = max(0.0, min(10.0, overall))

        global_feedback = str(data.get("global_feedback") or "")
        if phase == Phase.PHASE3:
            feedback, title_notes = self._menu_feedback(data, batch)
            if title_notes:
                global_feedback = "\n".join(filter(None, [global_feedback, *title_notes]))
        else:
            feedback = self._flat_feedback(data, batch)

        suggestions = [str(s) for s in _as_list(data.get("suggestions")) if s]
        duplicate_concepts = [str(c) for c in _as_list(data.get("duplicate_concepts")) if c]

        return ReviewVerdict(
            overall_score=overall,
            criterion_scores=scores,
            item_feedback=feedback,
            global_feedback=global_feedback,
            suggestions=suggestions,
            duplicate_concepts=duplicate_concepts,
        )

    def _flat_feedback(self, data: Dict[str, Any], batch: Batch) -> List[ItemFeedback]:
        raw_list = _as_list(data.get("questions_feedback")) or _as_list(data.get("items_feedback"))
        feedback = []
        seen = set()
        for raw in raw_list:
            if not isinstance(raw, dict):
                continue
            index = _as_index(raw.get("index"))
            if index is None or not 0 <= index < batch.item_count or index in seen:
                continue
            seen.add(index)
            feedback.append(_item_feedback(raw, index))
        return feedback

    def _menu_feedback(self, data: Dict[str, Any], batch: Batch):
        if not isinstance(batch, MenuSet):
            raise ReviewError("Menu feedback requires a menu set")
        feedback: List[ItemFeedback] = []
        title_notes: List[str] = []
        seen = set()

        for raw_menu in _as_list(data.get("menus_feedback")):
            if not isinstance(raw_menu, dict):
                continue
            m = _as_index(raw_menu.get("menu_index"))
            if m is None or not 0 <= m < len(batch.menus):
                continue
            if raw_menu.get("title_ok") is False:
                issue = raw_menu.get("title_issue") or "weak title"
                title_notes.append(f"Menu {m + 1} title: {issue}")

            question_count = len(batch.menus[m].questions)
            for raw in _as_list(raw_menu.get("questions_feedback")):
                if not isinstance(raw, dict):
                    continue
                q = _as_index(raw.get("index"))
                if q is None or not 0 <= q < question_count:
                    continue
                flat = batch.flat_index(m, q)
                if flat in seen:
                    continue
                seen.add(flat)
                feedback.append(_item_feedback(raw, flat, group=m))

        return sorted(feedback, key=lambda fb: fb.index), title_notes
