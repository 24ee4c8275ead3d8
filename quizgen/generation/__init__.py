"""Prompting, parsing and regeneration of game content."""

from .generator import ContentGenerator, parse_items, shuffle_mcq_options
from .json_extractor import (
    find_balanced_json,
    parse_json_array_from_text,
    parse_json_from_text,
)
from .targeted_regen import (
    TARGETED_REGEN_MAX_PERCENTAGE,
    TargetedRegenerator,
    compute_category_deficit,
    should_use_targeted_regen,
)
from .text_client import TextGenClient
from .topic_generator import TopicGenerator, is_topic_banned

__all__ = [
    "TARGETED_REGEN_MAX_PERCENTAGE",
    "ContentGenerator",
    "TargetedRegenerator",
    "TextGenClient",
    "TopicGenerator",
    "compute_category_deficit",
    "find_balanced_json",
    "is_topic_banned",
    "parse_items",
    "parse_json_array_from_text",
    "parse_json_from_text",
    "shuffle_mcq_options",
    "should_use_targeted_regen",
]
