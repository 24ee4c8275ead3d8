"""Review and fact-checking of generated batches."""

from .fact_checker import FACT_CHECK_CONFIDENCE_THRESHOLD, FactChecker
from .reviewer import Reviewer

__all__ = ["FACT_CHECK_CONFIDENCE_THRESHOLD", "FactChecker", "Reviewer"]
