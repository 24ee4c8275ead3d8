"""Trivia game content generation pipeline."""

from quizgen.exceptions import (
    ContentGenerationError,
    JsonExtractionError,
    PipelineExhaustedError,
    QuizGenError,
    ReviewError,
)
from quizgen.pipeline import GenerationPipeline, create_pipeline

__version__ = "0.1.0"

__all__ = [
    "ContentGenerationError",
    "GenerationPipeline",
    "JsonExtractionError",
    "PipelineExhaustedError",
    "QuizGenError",
    "ReviewError",
    "create_pipeline",
]
