"""Recovery of JSON values from noisy LLM output.

Models wrap JSON in markdown fences, add prose before or after it, and leave
trailing commas. Extraction strips fences, repairs trailing commas, tries a
direct parse and otherwise locates the first balanced JSON structure with a
string-aware bracket scanner.
"""

import json
import logging
import re
from typing import Any, List, Optional

from ..exceptions import JsonExtractionError
from ..text_utils import strip_markdown_code_blocks, truncate

logger = logging.getLogger(__name__)

_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_OPENERS = "{["
_CLOSERS = "}]"


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def find_balanced_json(text: str, prefer_array: bool = False) -> Optional[str]:
    """Find the first balanced JSON structure in text.

    Brackets inside string literals (including escaped quotes) are ignored.

    Args:
        text: Text to search
        prefer_array: Look for '[' before '{'

    Returns:
        The substring spanning the balanced structure, or None
    """
    start_chars = "[{" if prefer_array else "{["

    for start_char in start_chars:
        start = text.find(start_char)
        if start == -1:
            continue

        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            char = text[i]
            if escaped:
                escaped = False
                continue
            if char == "\\":
                escaped = True
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue

            if char in _OPENERS:
                depth += 1
            elif char in _CLOSERS:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]

    return None


def _clean(text: str) -> str:
    return remove_trailing_commas(strip_markdown_code_blocks(text or ""))


def parse_json_from_text(text: str) -> Any:
    """Parse a JSON value from LLM text.

    Raises:
        JsonExtractionError: If no well-formed JSON can be recovered
    """
    cleaned = _clean(text)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    match = find_balanced_json(cleaned)
    if match is None:
        logger.debug(f"No JSON structure in response: {truncate(cleaned, 200)}")
        raise JsonExtractionError("No valid JSON found in response")

    try:
        return json.loads(remove_trailing_commas(match))
    except json.JSONDecodeError as e:
        raise JsonExtractionError(f"Malformed JSON in response: {e}") from e


def parse_json_array_from_text(text: str) -> List[Any]:
    """Parse a JSON array from LLM text, wrapping a lone object in a list.

    Raises:
        JsonExtractionError: If no well-formed JSON can be recovered
    """
    cleaned = _clean(text)

    try:
        result = json.loads(cleaned)
        return result if isinstance(result, list) else [result]
    except json.JSONDecodeError:
        pass

    match = find_balanced_json(cleaned, prefer_array=True)
    if match is None:
        raise JsonExtractionError("No valid JSON array found in response")

    try:
        result = json.loads(remove_trailing_commas(match))
    except json.JSONDecodeError as e:
        raise JsonExtractionError(f"Malformed JSON array in response: {e}") from e
    return result if isinstance(result, list) else [result]


def unwrap_list(value: Any, *keys: str) -> List[Any]:
    """Return the list inside ``value``.

    Accepts a bare list, or an object holding the list under one of ``keys``
    (e.g. ``{"questions": [...]}``). A single object becomes a one-item list.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in keys:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
        return [value]
    raise JsonExtractionError(f"Unexpected JSON type: {type(value).__name__}")
