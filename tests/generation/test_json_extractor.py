"""Tests for JSON recovery from LLM output."""

import pytest

from quizgen.exceptions import JsonExtractionError
from quizgen.generation.json_extractor import (
    find_balanced_json,
    parse_json_array_from_text,
    parse_json_from_text,
    remove_trailing_commas,
    unwrap_list,
)


class TestRemoveTrailingCommas:
    """Tests for remove_trailing_commas."""

    def test_object_and_array(self):
        assert remove_trailing_commas('{"a": [1, 2,], }') == '{"a": [1, 2] }'

    def test_commas_with_newlines(self):
        assert remove_trailing_commas('[1,\n  2,\n]') == "[1,\n  2\n]"


class TestFindBalancedJson:
    """Tests for find_balanced_json."""

    def test_object_in_prose(self):
        text = 'Sure! {"a": {"b": 1}} Hope it helps {"c": 2}'
        assert find_balanced_json(text) == '{"a": {"b": 1}}'

    def test_brackets_inside_strings_are_ignored(self):
        text = 'prefix {"text": "a } tricky ] string", "n": 1} suffix'
        assert find_balanced_json(text) == '{"text": "a } tricky ] string", "n": 1}'

    def test_escaped_quotes(self):
        text = '{"text": "he said \\"hi}\\"", "n": 1}'
        assert find_balanced_json(text) == text

    def test_prefer_array(self):
        text = 'note {"x": 1} then [1, 2]'
        assert find_balanced_json(text, prefer_array=True) == "[1, 2]"

    def test_unbalanced(self):
        assert find_balanced_json('{"a": [1, 2') is None

    def test_no_json(self):
        assert find_balanced_json("no json here") is None


class TestParseJsonFromText:
    """Tests for parse_json_from_text."""

    def test_plain_json(self):
        assert parse_json_from_text('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_from_text('```json\n[{"a": 1}]\n```') == [{"a": 1}]

    def test_prose_around_json(self):
        text = 'Here are the questions:\n{"questions": [{"text": "Q"}]}\nGood luck!'
        assert parse_json_from_text(text) == {"questions": [{"text": "Q"}]}

    def test_trailing_commas(self):
        assert parse_json_from_text('{"items": [1, 2,],}') == {"items": [1, 2]}

    def test_no_json_raises(self):
        with pytest.raises(JsonExtractionError, match="No valid JSON"):
            parse_json_from_text("I cannot help with that.")

    def test_malformed_json_raises(self):
        with pytest.raises(JsonExtractionError, match="Malformed JSON"):
            parse_json_from_text("result: {'single': 'quotes'}")

    def test_empty_text(self):
        with pytest.raises(JsonExtractionError):
            parse_json_from_text("")

    def test_extraction_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_json_from_text("nothing")


class TestParseJsonArrayFromText:
    """Tests for parse_json_array_from_text."""

    def test_array(self):
        assert parse_json_array_from_text("[1, 2]") == [1, 2]

    def test_lone_object_is_wrapped(self):
        assert parse_json_array_from_text('{"a": 1}') == [{"a": 1}]

    def test_array_after_prose(self):
        assert parse_json_array_from_text('Result: [{"a": 1},] done') == [{"a": 1}]

    def test_no_array(self):
        with pytest.raises(JsonExtractionError):
            parse_json_array_from_text("nothing at all")


class TestUnwrapList:
    """Tests for unwrap_list."""

    def test_bare_list(self):
        assert unwrap_list([1, 2], "questions") == [1, 2]

    def test_wrapped_list(self):
        assert unwrap_list({"items": [1]}, "questions", "items") == [1]

    def test_first_matching_key_wins(self):
        assert unwrap_list({"questions": [1], "items": [2]}, "questions", "items") == [1]

    def test_single_object(self):
        assert unwrap_list({"text": "Q"}, "questions") == [{"text": "Q"}]

    def test_scalar_raises(self):
        with pytest.raises(JsonExtractionError, match="Unexpected JSON type"):
            unwrap_list("text", "questions")
