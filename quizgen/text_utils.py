"""Shared text utility functions for the generation pipeline.

Provides markdown fence stripping for LLM output and the canonical text
normalization applied before embedding and comparison.
"""

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_FENCE_OPEN_RE = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_RE = re.compile(r"```\s*")


def strip_markdown_code_blocks(text: str) -> str:
    """Strip markdown code fences from text.

    LLMs often wrap JSON responses in markdown code blocks like:
    ```json
    {...}
    ```

    Unlike a whole-string match, every fence marker is removed so that prose
    before or after the block survives for later bracket matching.

    Args:
        text: Raw text that may contain markdown code fences

    Returns:
        Text with fence markers removed and surrounding whitespace stripped
    """
    if not text:
        return text

    cleaned = _FENCE_OPEN_RE.sub("", text)
    cleaned = _FENCE_RE.sub("", cleaned)
    return cleaned.strip()


def normalize_text(text: str) -> str:
    """Normalize text for embedding and equality checks.

    Applies trim, lowercase, Unicode NFC composition and whitespace collapse,
    so that superficially different strings compare equal.

    Args:
        text: Raw text

    Returns:
        Normalized text
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFC", text.strip().lower())
    return _WHITESPACE_RE.sub(" ", normalized)


def truncate(text: str, length: int = 50) -> str:
    """Shorten text for log lines."""
    if len(text) <= length:
        return text
    return f"{text[:length]}..."
