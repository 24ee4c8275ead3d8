"""Error classification and retry helpers for provider calls."""

from .error_classifier import (
    ClassifiedError,
    ErrorCategory,
    ErrorClassifier,
    ErrorSeverity,
)
from .retry import (
    RetryConfig,
    RetryMetrics,
    calculate_backoff_delay,
    get_retry_metrics,
    reset_retry_metrics,
    with_retry,
)

__all__ = [
    "ClassifiedError",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorSeverity",
    "RetryConfig",
    "RetryMetrics",
    "calculate_backoff_delay",
    "get_retry_metrics",
    "reset_retry_metrics",
    "with_retry",
]
