"""Tests for content models and batch containers."""

import random

import pytest
from pydantic import ValidationError

from quizgen.data.models import (
    CategorizationSet,
    CategoryItem,
    FactCheckVerdict,
    GameGenerationRequest,
    ItemFeedback,
    MCQBatch,
    MCQItem,
    MenuSet,
    Phase,
    PhaseResult,
    ReviewVerdict,
    SequenceBatch,
)
from tests.fakes import category_set, mcq_items, menus_payload, sequence_items


class TestMCQItem:
    """Tests for MCQItem validation."""

    def test_valid(self):
        item = MCQItem.model_validate(mcq_items(1)[0])
        assert item.correct_option == "Answer 0"

    def test_snake_case_names_accepted(self):
        item = MCQItem(text="Q", options=["a", "b", "c", "d"], correct_index=2)
        assert item.correct_option == "c"

    @pytest.mark.parametrize(
        "options,index",
        [
            (["a", "b", "c"], 0),
            (["a", "b", "c", "d", "e"], 0),
            (["a", "b", "c", "d"], 4),
            (["a", "b", "c", "d"], -1),
            (["Paris", " paris ", "Rome", "Oslo"], 0),
        ],
    )
    def test_invalid(self, options, index):
        with pytest.raises(ValidationError):
            MCQItem(text="Q", options=options, correctIndex=index)

    def test_shuffled_tracks_answer(self):
        item = MCQItem(text="Q", options=["right", "w1", "w2", "w3"], correctIndex=0)
        for seed in range(10):
            shuffled = item.shuffled(random.Random(seed))
            assert shuffled.correct_option == "right"
            assert item.options == ["right", "w1", "w2", "w3"]


class TestCategoryItem:
    """Tests for CategoryItem validation."""

    def test_answer_literal(self):
        assert CategoryItem(text="Sea", answer="Both").answer == "Both"
        with pytest.raises(ValidationError):
            CategoryItem(text="Sea", answer="C")

    def test_accepted_answers_alias(self):
        item = CategoryItem.model_validate({"text": "Sea", "answer": "A", "acceptedAnswers": ["A", "Both"]})
        assert item.accepted_answers == ["A", "Both"]


class TestMCQBatch:
    """Tests for MCQBatch."""

    def test_without_and_truncated(self):
        batch = MCQBatch.model_validate({"items": mcq_items(5)})
        assert [t.split(":")[0] for t in batch.without([1, 3]).item_texts()] == [
            "Space question 0",
            "Space question 2",
            "Space question 4",
        ]
        assert batch.truncated(2).item_count == 2
        assert batch.item_count == 5

    def test_public_payload_strips_answers(self):
        batch = MCQBatch.model_validate({"items": mcq_items(2)})
        public = batch.public_payload()
        assert set(public[0]) == {"text", "options"}
        assert batch.answer_key()[1] == {"correctIndex": 0, "anecdote": "Anecdote 1."}

    def test_to_data_uses_camel_case(self):
        batch = MCQBatch.model_validate({"items": mcq_items(1)})
        assert batch.to_data()[0]["correctIndex"] == 0


class TestCategorizationSet:
    """Tests for CategorizationSet."""

    def test_counts_and_without(self):
        batch = CategorizationSet.model_validate(category_set())
        assert batch.category_counts() == {"A": 5, "B": 5, "Both": 2}
        smaller = batch.without([0, 11])
        assert smaller.category_counts() == {"A": 4, "B": 5, "Both": 1}
        assert smaller.option_b == "Verre"

    def test_public_payload_and_answer_key(self):
        batch = CategorizationSet.model_validate(category_set())
        public = batch.public_payload()
        assert public["optionA"] == "Vert"
        assert public["items"][0] == {"text": "Item 0"}
        key = batch.answer_key()[0]
        assert key["answer"] == "A"
        assert key["acceptedAnswers"] == ["A"]

    def test_options_required(self):
        with pytest.raises(ValidationError):
            CategorizationSet.model_validate({"optionA": "", "optionB": "x", "items": []})


class TestMenuSet:
    """Tests for MenuSet flat indexing and structure checks."""

    def test_flat_index_roundtrip(self):
        menus = MenuSet.model_validate(menus_payload())
        assert menus.flat_index(2, 3) == 13
        assert menus.locate(13) == (2, 3)
        assert menus.item_texts()[13] == "Menu 2 question 3?"

    def test_without_removes_across_menus(self):
        menus = MenuSet.model_validate(menus_payload())
        smaller = menus.without([0, 19, 42])
        assert [len(m.questions) for m in smaller.menus] == [4, 5, 5, 4]
        assert smaller.item_count == 18

    def test_structure_problems(self):
        assert MenuSet.model_validate(menus_payload()).structure_problems() == []
        problems = MenuSet.model_validate(menus_payload(per_menu=4, trap=None)).structure_problems()
        assert "Menu 1 ('Menu 0') has 4 questions instead of 5." in problems
        assert "Expected exactly 1 trap menu, got 0." in problems

    def test_public_payload_hides_answers_and_trap(self):
        menus = MenuSet.model_validate(menus_payload())
        public = menus.public_payload()
        assert "isTrap" not in public[1]
        assert public[1]["questions"][0] == {"question": "Menu 1 question 0?"}
        key = menus.answer_key()
        assert key["trapMenuIndex"] == 1
        assert key["answers"][3][4] == "A34"


class TestSequenceBatch:
    """Tests for SequenceBatch."""

    def test_split(self):
        batch = SequenceBatch.model_validate({"items": sequence_items(3)})
        assert batch.public_payload()[2] == {"question": "Memory question 2?"}
        assert batch.answer_key()[2] == {"answer": "Answer 2"}


class TestReviewVerdict:
    """Tests for ReviewVerdict helpers."""

    @pytest.fixture
    def verdict(self):
        return ReviewVerdict(
            overall_score=6.0,
            criterion_scores={"humor": 12, "clarity": -1},
            item_feedback=[
                ItemFeedback(index=1, ok=False, issues=["factual_error"], note="Wrong year"),
                ItemFeedback(index=3, ok=False),
                ItemFeedback(index=4, ok=True, issues=["too_obvious"]),
            ],
        )

    def test_scores_clamped(self, verdict):
        assert verdict.score("humor") == 10.0
        assert verdict.score("clarity") == 0.0
        assert verdict.score("missing", default=5.0) == 5.0

    def test_rejected_and_flagged(self, verdict):
        assert verdict.rejected_indices() == [1, 3]
        assert verdict.flagged_indices(["factual_error"]) == [1]
        assert verdict.flagged_indices(["too_obvious"], include_rejected=True) == [1, 3, 4]

    def test_notes_for(self, verdict):
        assert verdict.notes_for([1, 3, 4]) == {
            1: "Wrong year",
            3: "rejected by reviewer",
            4: "too_obvious",
        }

    def test_frozen(self, verdict):
        with pytest.raises(ValidationError):
            verdict.overall_score = 9.0


class TestFactCheckVerdict:
    """Tests for FactCheckVerdict."""

    @pytest.mark.parametrize("raw,expected", [(150, 100.0), (-5, 0.0), ("85", 85.0), ("high", 0.0)])
    def test_confidence_clamped(self, raw, expected):
        verdict = FactCheckVerdict.model_validate({"index": 0, "isCorrect": True, "confidence": raw})
        assert verdict.confidence == expected


class TestRequestAndResult:
    """Tests for request validation and PhaseResult."""

    def test_request_defaults(self):
        request = GameGenerationRequest(phase="phase1")
        assert request.topic == "General Knowledge"
        assert request.difficulty.value == "normal"
        assert request.language.value == "fr"

    @pytest.mark.parametrize("language", ["fr", "en", "de", "es", "pt"])
    def test_supported_languages(self, language):
        assert GameGenerationRequest(phase="phase1", language=language).language.value == language

    def test_unsupported_language_rejected(self):
        with pytest.raises(ValidationError):
            GameGenerationRequest(phase="phase1", language="it")

    @pytest.mark.parametrize("count", [0, 21])
    def test_complete_count_bounds(self, count):
        with pytest.raises(ValidationError):
            GameGenerationRequest(phase="phase5", complete_count=count)

    def test_phase_result_split(self):
        batch = SequenceBatch.model_validate({"items": sequence_items(2)})
        result = PhaseResult(phase=Phase.PHASE5, batch=batch)
        assert result.to_public() == [{"question": "Memory question 0?"}, {"question": "Memory question 1?"}]
        assert result.answer_key() == [{"answer": "Answer 0"}, {"answer": "Answer 1"}]
        assert len(result.items) == 2
        assert result.degraded is False
