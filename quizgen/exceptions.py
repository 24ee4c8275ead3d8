"""Exception hierarchy for the content generation pipeline.

Provider failures are wrapped separately in
:class:`quizgen.providers.base.LLMProviderError`; the exceptions here cover
malformed model output and pipeline-level outcomes.
"""

from typing import Optional


class QuizGenError(Exception):
    """Base class for all pipeline errors."""


class JsonExtractionError(QuizGenError, ValueError):
    """Raised when no well-formed JSON value can be recovered from LLM text."""


class ContentGenerationError(QuizGenError):
    """Raised when a generator response cannot be turned into a valid batch.

    Attributes:
        feedback: Defect description to route back to the next generator call
    """

    def __init__(self, message: str, feedback: Optional[str] = None):
        """Initialize content generation error.

        Args:
            message: Error message
            feedback: Optional defect description for the next attempt
        """
        self.feedback = feedback or ""
        super().__init__(message)


class ReviewError(QuizGenError):
    """Raised when a reviewer response cannot be parsed into a verdict."""


class PipelineExhaustedError(QuizGenError):
    """Raised when a phase run ends without ever producing a usable batch.

    Attributes:
        phase: Phase identifier
        iterations: Number of iterations attempted
    """

    def __init__(self, phase: str, iterations: int, reason: str = "exhausted"):
        self.phase = phase
        self.iterations = iterations
        self.reason = reason
        super().__init__(
            f"Failed to generate {phase} content after {iterations} iteration(s) "
            f"({reason})"
        )


class CorpusStoreError(QuizGenError):
    """Raised when the corpus store cannot be read or written.

    The failure is transient from the pipeline's point of view: the batch
    being deduplicated is kept and the step is retried.
    """
