"""Data models for generated game content.

Content shapes differ per phase, so each phase has its own batch container.
All containers share the :class:`Batch` interface the orchestrator loop relies
on: a flat, ordered item view (used for review indices, fact-checking and
deduplication), removal of items by flat index, and the public/private split
handed to the game-state store.
"""

import enum
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..cost_tracking import UsageSummary
from ..text_utils import normalize_text


class Phase(str, enum.Enum):
    """Game phases, one content shape each."""

    PHASE1 = "phase1"
    PHASE2 = "phase2"
    PHASE3 = "phase3"
    PHASE4 = "phase4"
    PHASE5 = "phase5"


class Difficulty(str, enum.Enum):
    """Requested difficulty level."""

    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    WTF = "wtf"


class Language(str, enum.Enum):
    """Output language of generated content."""

    FR = "fr"
    EN = "en"
    DE = "de"
    ES = "es"
    PT = "pt"


DEFAULT_TOPIC = "General Knowledge"

Category = Literal["A", "B", "Both"]


class _CamelModel(BaseModel):
    """Accept both the camelCase keys LLMs emit and snake_case names."""

    model_config = ConfigDict(populate_by_name=True)


# --- Items ---


class MCQItem(_CamelModel):
    """Single-answer multiple choice question (phases 1 and 4)."""

    text: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_index: int = Field(..., alias="correctIndex")
    anecdote: Optional[str] = None

    @model_validator(mode="after")
    def validate_options(self) -> "MCQItem":
        """Validate the answer index and option distinctness."""
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} out of range for "
                f"{len(self.options)} options"
            )
        normalized = [normalize_text(o) for o in self.options]
        if len(set(normalized)) != len(normalized):
            raise ValueError(f"Options are not pairwise distinct: {self.options}")
        return self

    @property
    def correct_option(self) -> str:
        return self.options[self.correct_index]

    def shuffled(self, rng: Optional[random.Random] = None) -> "MCQItem":
        """Return a copy with options shuffled and the index recomputed."""
        rng = rng or random.Random()
        order = list(range(len(self.options)))
        rng.shuffle(order)
        return self.model_copy(
            update={
                "options": [self.options[i] for i in order],
                "correct_index": order.index(self.correct_index),
            }
        )


class CategoryItem(_CamelModel):
    """Item to sort into category A, B or Both (phase 2)."""

    text: str = Field(..., min_length=1)
    answer: Category
    justification: str = ""
    accepted_answers: Optional[List[Category]] = Field(
        default=None, alias="acceptedAnswers"
    )


class MenuQuestion(_CamelModel):
    """Question inside a themed menu (phase 3)."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class Menu(_CamelModel):
    """Themed menu of questions (phase 3)."""

    title: str = Field(..., min_length=1)
    description: str = ""
    is_trap: bool = Field(default=False, alias="isTrap")
    questions: List[MenuQuestion] = Field(default_factory=list)


class SequenceItem(_CamelModel):
    """Short question/answer pair in a memory sequence (phase 5)."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


# --- Batches ---


class Batch(_CamelModel):
    """Common interface of per-phase content containers."""

    def flat_items(self) -> List[BaseModel]:
        """Ordered item view used for review and fact-check indices."""
        raise NotImplementedError

    def item_texts(self) -> List[str]:
        """Text of each flat item, compared for duplicates."""
        raise NotImplementedError

    def without(self, indices: Iterable[int]) -> "Batch":
        """Return a copy with the given flat indices removed."""
        raise NotImplementedError

    def truncated(self, count: int) -> "Batch":
        """Return a copy holding at most ``count`` flat items."""
        keep = range(count, self.item_count)
        return self.without(keep)

    def public_payload(self) -> Any:
        """Answer-stripped content safe to send to players."""
        raise NotImplementedError

    def answer_key(self) -> Any:
        """Private answers, stored apart from the public payload."""
        raise NotImplementedError

    @property
    def item_count(self) -> int:
        return len(self.flat_items())

    def to_data(self) -> Any:
        """Full content as the JSON shape used in prompts."""
        return self.model_dump(by_alias=True, exclude_none=True)


class MCQBatch(Batch):
    """Batch of MCQ items (phases 1 and 4)."""

    items: List[MCQItem] = Field(default_factory=list)

    def flat_items(self) -> List[BaseModel]:
        return list(self.items)

    def item_texts(self) -> List[str]:
        return [item.text for item in self.items]

    def without(self, indices: Iterable[int]) -> "MCQBatch":
        drop = set(indices)
        return MCQBatch(items=[q for i, q in enumerate(self.items) if i not in drop])

    def public_payload(self) -> List[Dict[str, Any]]:
        return [{"text": q.text, "options": list(q.options)} for q in self.items]

    def answer_key(self) -> List[Dict[str, Any]]:
        return [
            {"correctIndex": q.correct_index, "anecdote": q.anecdote}
            for q in self.items
        ]

    def to_data(self) -> Any:
        return [q.model_dump(by_alias=True, exclude_none=True) for q in self.items]


class CategorizationSet(Batch):
    """Homophone pairing plus the items to categorize (phase 2)."""

    option_a: str = Field(..., alias="optionA", min_length=1)
    option_b: str = Field(..., alias="optionB", min_length=1)
    option_a_description: Optional[str] = Field(
        default=None, alias="optionADescription"
    )
    option_b_description: Optional[str] = Field(
        default=None, alias="optionBDescription"
    )
    humorous_description: Optional[str] = Field(
        default=None, alias="humorousDescription"
    )
    items: List[CategoryItem] = Field(default_factory=list)

    def flat_items(self) -> List[BaseModel]:
        return list(self.items)

    def item_texts(self) -> List[str]:
        return [item.text for item in self.items]

    def without(self, indices: Iterable[int]) -> "CategorizationSet":
        drop = set(indices)
        return self.model_copy(
            update={"items": [it for i, it in enumerate(self.items) if i not in drop]}
        )

    def category_counts(self) -> Dict[str, int]:
        """Count items per category."""
        counts = {"A": 0, "B": 0, "Both": 0}
        for item in self.items:
            counts[item.answer] += 1
        return counts

    def public_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "optionA": self.option_a,
            "optionB": self.option_b,
            "items": [{"text": item.text} for item in self.items],
        }
        for key, value in (
            ("optionADescription", self.option_a_description),
            ("optionBDescription", self.option_b_description),
            ("humorousDescription", self.humorous_description),
        ):
            if value:
                payload[key] = value
        return payload

    def answer_key(self) -> List[Dict[str, Any]]:
        return [
            {
                "answer": item.answer,
                "acceptedAnswers": item.accepted_answers or [item.answer],
                "justification": item.justification,
            }
            for item in self.items
        ]


class MenuSet(Batch):
    """Four themed menus, exactly one of them a trap (phase 3)."""

    menus: List[Menu] = Field(default_factory=list)

    def _positions(self) -> List[Tuple[int, int]]:
        return [
            (m, q)
            for m, menu in enumerate(self.menus)
            for q in range(len(menu.questions))
        ]

    def flat_items(self) -> List[BaseModel]:
        return [q for menu in self.menus for q in menu.questions]

    def item_texts(self) -> List[str]:
        return [q.question for q in self.flat_items()]

    def flat_index(self, menu_index: int, question_index: int) -> int:
        """Flat index of a question, counting earlier menus' questions."""
        offset = sum(len(m.questions) for m in self.menus[:menu_index])
        return offset + question_index

    def locate(self, flat_index: int) -> Tuple[int, int]:
        """Inverse of :meth:`flat_index`."""
        return self._positions()[flat_index]

    def without(self, indices: Iterable[int]) -> "MenuSet":
        drop = {self.locate(i) for i in indices if 0 <= i < self.item_count}
        menus = []
        for m, menu in enumerate(self.menus):
            kept = [q for qi, q in enumerate(menu.questions) if (m, qi) not in drop]
            menus.append(menu.model_copy(update={"questions": kept}))
        return MenuSet(menus=menus)

    def structure_problems(self, groups: int = 4, items_per_group: int = 5) -> List[str]:
        """Describe every structural defect, empty when well formed."""
        problems = []
        if len(self.menus) != groups:
            problems.append(f"Expected exactly {groups} menus, got {len(self.menus)}.")
        for i, menu in enumerate(self.menus):
            if len(menu.questions) != items_per_group:
                problems.append(
                    f"Menu {i + 1} ('{menu.title}') has {len(menu.questions)} "
                    f"questions instead of {items_per_group}."
                )
        traps = sum(1 for menu in self.menus if menu.is_trap)
        if traps != 1:
            problems.append(f"Expected exactly 1 trap menu, got {traps}.")
        return problems

    def public_payload(self) -> List[Dict[str, Any]]:
        return [
            {
                "title": menu.title,
                "description": menu.description,
                "questions": [{"question": q.question} for q in menu.questions],
            }
            for menu in self.menus
        ]

    def answer_key(self) -> Dict[str, Any]:
        trap = next((i for i, m in enumerate(self.menus) if m.is_trap), None)
        return {
            "trapMenuIndex": trap,
            "answers": [[q.answer for q in menu.questions] for menu in self.menus],
        }


class SequenceBatch(Batch):
    """Memory sequence of short question/answer pairs (phase 5)."""

    items: List[SequenceItem] = Field(default_factory=list)

    def flat_items(self) -> List[BaseModel]:
        return list(self.items)

    def item_texts(self) -> List[str]:
        return [item.question for item in self.items]

    def without(self, indices: Iterable[int]) -> "SequenceBatch":
        drop = set(indices)
        return SequenceBatch(
            items=[q for i, q in enumerate(self.items) if i not in drop]
        )

    def public_payload(self) -> List[Dict[str, Any]]:
        return [{"question": item.question} for item in self.items]

    def answer_key(self) -> List[Dict[str, Any]]:
        return [{"answer": item.answer} for item in self.items]

    def to_data(self) -> Any:
        return [item.model_dump() for item in self.items]


# --- Review and fact-check verdicts ---


class ItemFeedback(BaseModel):
    """Reviewer feedback for one flat item."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    ok: bool = True
    issues: List[str] = Field(default_factory=list)
    note: str = ""
    group: Optional[int] = None

    @property
    def issue_type(self) -> Optional[str]:
        return self.issues[0] if self.issues else None


class ReviewVerdict(BaseModel):
    """Reviewer output for one batch; superseded, never mutated."""

    model_config = ConfigDict(frozen=True)

    overall_score: float = Field(..., ge=0.0, le=10.0)
    criterion_scores: Dict[str, float] = Field(default_factory=dict)
    item_feedback: List[ItemFeedback] = Field(default_factory=list)
    global_feedback: str = ""
    suggestions: List[str] = Field(default_factory=list)
    duplicate_concepts: List[str] = Field(default_factory=list)

    @field_validator("criterion_scores")
    @classmethod
    def clamp_scores(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Clamp criterion scores into the 0-10 range."""
        return {k: max(0.0, min(10.0, float(s))) for k, s in v.items()}

    def score(self, criterion: str, default: float = 0.0) -> float:
        """Score for a criterion, or ``default`` when the reviewer omitted it."""
        return self.criterion_scores.get(criterion, default)

    def rejected_indices(self) -> List[int]:
        return sorted({fb.index for fb in self.item_feedback if not fb.ok})

    def flagged_indices(
        self,
        issue_types: Iterable[str] = (),
        include_rejected: bool = False,
    ) -> List[int]:
        """Indices with one of ``issue_types``, optionally plus rejected items."""
        wanted = set(issue_types)
        flagged = set()
        for fb in self.item_feedback:
            if wanted.intersection(fb.issues):
                flagged.add(fb.index)
            elif include_rejected and not fb.ok:
                flagged.add(fb.index)
        return sorted(flagged)

    def notes_for(self, indices: Iterable[int]) -> Dict[int, str]:
        """Reason text per index, used as targeted regeneration reasons."""
        wanted = set(indices)
        notes: Dict[int, str] = {}
        for fb in self.item_feedback:
            if fb.index in wanted:
                reason = fb.note or ", ".join(fb.issues) or "rejected by reviewer"
                notes[fb.index] = reason
        return notes


class FactCheckVerdict(_CamelModel):
    """Independent verification of one item's answer."""

    index: int = Field(..., ge=0)
    is_correct: bool = Field(default=False, alias="isCorrect")
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = ""
    correction: Optional[str] = None
    synonym_issue: Optional[str] = Field(default=None, alias="synonymIssue")

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Clamp confidence into 0-100; LLMs occasionally overshoot."""
        try:
            return max(0.0, min(100.0, float(v)))
        except (TypeError, ValueError):
            return 0.0


class FactCheckOutcome(BaseModel):
    """Aggregated fact-check result for one batch."""

    verdicts: List[FactCheckVerdict] = Field(default_factory=list)
    passed: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)
    reasons: Dict[int, str] = Field(default_factory=dict)
    unavailable: bool = False

    @property
    def all_passed(self) -> bool:
        return not self.failed


# --- Pipeline results ---


@dataclass
class PhaseResult:
    """Outcome of one phase pipeline run.

    Attributes:
        phase: Phase that was generated
        batch: Accepted (or best-effort) content
        embeddings: Vectors of the generated items that were persisted
        usage: Token usage of the run
        degraded: True when the run exhausted its budget or timed out
        warnings: Human-readable degradation notes
        iterations: Iterations consumed
        fallback_count: Static fallback items padded in
        topic: Topic the content was generated for
    """

    phase: Phase
    batch: Batch
    embeddings: List[List[float]] = field(default_factory=list)
    usage: UsageSummary = field(default_factory=UsageSummary)
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)
    iterations: int = 0
    fallback_count: int = 0
    topic: str = ""

    @property
    def items(self) -> List[BaseModel]:
        return self.batch.flat_items()

    def to_public(self) -> Any:
        """Answer-stripped content for the public game document."""
        return self.batch.public_payload()

    def answer_key(self) -> Any:
        """Private answers, kept in a separate structure."""
        return self.batch.answer_key()


class GameGenerationRequest(BaseModel):
    """Request for one phase's content."""

    phase: Phase
    topic: str = DEFAULT_TOPIC
    difficulty: Difficulty = Difficulty.NORMAL
    language: Language = Language.FR
    complete_count: Optional[int] = Field(default=None, ge=1, le=20)
    existing_items: Optional[List[Any]] = None


class UsageReport(BaseModel):
    """Token usage reported to callers."""

    total_tokens: int = 0
    thinking_tokens: int = 0
    estimated_cost: float = 0.0


class GameGenerationResponse(BaseModel):
    """Response for one phase's content.

    ``data`` is the public payload; ``answer_key`` carries the private answers
    separately so the two never share one structure.
    """

    data: Any
    answer_key: Any
    phase: Phase
    topic: str
    language: Language
    embeddings: List[List[float]] = Field(default_factory=list)
    usage: UsageReport = Field(default_factory=UsageReport)
    degraded: bool = False
    warnings: List[str] = Field(default_factory=list)
