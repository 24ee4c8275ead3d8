"""Error classification for text-generation and embedding API failures.

Classifies provider exceptions into categories so that the retry layer can
tell transient infrastructure errors apart from permanent ones.
"""

import asyncio
import re
from enum import Enum
from typing import Any, Dict, List, Tuple


class ErrorCategory(Enum):
    """Categories of API errors."""

    BILLING_QUOTA = "billing_quota"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    MODEL_ERROR = "model_error"
    CONTENT_BLOCKED = "content_blocked"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClassifiedError:
    """A classified API error with category, severity and retryability."""

    def __init__(
        self,
        category: ErrorCategory,
        severity: ErrorSeverity,
        provider: str,
        original_error: str,
        message: str,
        is_retryable: bool = False,
    ):
        """Initialize classified error.

        Args:
            category: Error category
            severity: Error severity level
            provider: Provider name (google, openai, anthropic)
            original_error: Original exception type name
            message: Human-readable error message
            is_retryable: Whether the error is transient and retryable
        """
        self.category = category
        self.severity = severity
        self.provider = provider
        self.original_error = original_error
        self.message = message
        self.is_retryable = is_retryable

    def __str__(self) -> str:
        return (
            f"[{self.severity.value.upper()}] {self.provider}: "
            f"{self.category.value} - {self.message}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "provider": self.provider,
            "original_error": self.original_error,
            "message": self.message,
            "is_retryable": self.is_retryable,
        }


# (category, severity, retryable, patterns), checked in order
_RULES: List[Tuple[ErrorCategory, ErrorSeverity, bool, List[str]]] = [
    (
        ErrorCategory.BILLING_QUOTA,
        ErrorSeverity.CRITICAL,
        False,
        [
            r"insufficient.*(funds|quota)",
            r"billing.*(issue|not enabled)",
            r"credit.*balance",
            r"payment.*required",
            r"\b402\b",
        ],
    ),
    (
        ErrorCategory.AUTHENTICATION,
        ErrorSeverity.CRITICAL,
        False,
        [
            r"invalid.*api.*key",
            r"api.*key.*(expired|not valid)",
            r"unauthori[sz]ed",
            r"permission.*denied",
            r"\b40[13]\b",
        ],
    ),
    (
        ErrorCategory.RATE_LIMIT,
        ErrorSeverity.HIGH,
        True,
        [
            r"rate.*limit",
            r"too.*many.*requests",
            r"resource.*exhausted",
            r"quota.*exceeded",
            r"throttl",
            r"\b429\b",
        ],
    ),
    (
        ErrorCategory.MODEL_ERROR,
        ErrorSeverity.MEDIUM,
        False,
        [r"model.*not.*found", r"invalid.*model", r"model.*(unavailable|deprecated)"],
    ),
    (
        ErrorCategory.CONTENT_BLOCKED,
        ErrorSeverity.MEDIUM,
        False,
        [r"safety", r"blocked.*prompt", r"finish.*reason.*(safety|recitation)"],
    ),
    (
        ErrorCategory.SERVER_ERROR,
        ErrorSeverity.MEDIUM,
        True,
        [
            r"internal.*(server.*)?error",
            r"service.*unavailable",
            r"overloaded",
            r"\b50[0-9]\b",
            r"upstream.*error",
        ],
    ),
    (
        ErrorCategory.NETWORK_ERROR,
        ErrorSeverity.LOW,
        True,
        [
            r"connection.*(error|refused|reset|aborted)",
            r"timed?\s*out",
            r"timeout",
            r"network.*error",
            r"deadline.*exceeded",
            r"dns.*error",
        ],
    ),
]


class ErrorClassifier:
    """Classifies API errors from the supported providers."""

    @staticmethod
    def classify_error(error: BaseException, provider: str) -> ClassifiedError:
        """Classify an API error.

        Args:
            error: The exception that was raised
            provider: Provider name

        Returns:
            ClassifiedError with category and severity
        """
        error_type = type(error).__name__

        if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
            return ClassifiedError(
                category=ErrorCategory.NETWORK_ERROR,
                severity=ErrorSeverity.LOW,
                provider=provider,
                original_error=error_type,
                message=f"Request to {provider} timed out or lost its connection.",
                is_retryable=True,
            )

        error_str = f"{error_type} {error}".lower()
        for category, severity, retryable, patterns in _RULES:
            if ErrorClassifier._match_patterns(error_str, patterns):
                return ClassifiedError(
                    category=category,
                    severity=severity,
                    provider=provider,
                    original_error=error_type,
                    message=f"{category.value.replace('_', ' ')} from {provider}: "
                    f"{str(error)[:100]}",
                    is_retryable=retryable,
                )

        if "invalid" in error_str or "bad request" in error_str or "400" in error_str:
            return ClassifiedError(
                category=ErrorCategory.INVALID_REQUEST,
                severity=ErrorSeverity.MEDIUM,
                provider=provider,
                original_error=error_type,
                message=f"Invalid request to {provider}. Check request parameters.",
                is_retryable=False,
            )

        return ClassifiedError(
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            provider=provider,
            original_error=error_type,
            message=f"Unclassified error from {provider}: {str(error)[:100]}",
            is_retryable=False,
        )

    @staticmethod
    def _match_patterns(text: str, patterns: List[str]) -> bool:
        return any(re.search(pattern, text, re.IGNORECASE) for pattern in patterns)
