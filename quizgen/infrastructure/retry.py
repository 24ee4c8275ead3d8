"""Retry with exponential backoff for provider calls.

Only transient failures (``LLMProviderError`` with a retryable
classification, or a timeout) are retried. Everything else propagates on the
first attempt.
"""

import asyncio
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lower bound applied after jitter
MIN_RETRY_DELAY = 0.1
JITTER_RATIO = 0.25


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Retries after the initial attempt
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for a single delay, in seconds
        exponential_base: Growth factor between consecutive delays
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0


@dataclass
class RetryMetrics:
    """Counters for retry activity across providers."""

    total_retries: int = 0
    successful_retries: int = 0
    exhausted_retries: int = 0
    retries_by_provider: Dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def record_retry(self, provider: str, success: bool) -> None:
        """Record the outcome of a retry attempt.

        Args:
            provider: Provider name
            success: Whether the retried call succeeded
        """
        with self._lock:
            self.total_retries += 1
            if success:
                self.successful_retries += 1
            self.retries_by_provider[provider] = (
                self.retries_by_provider.get(provider, 0) + 1
            )

    def record_exhausted(self, provider: str) -> None:
        """Record that every retry for a call failed."""
        with self._lock:
            self.exhausted_retries += 1
            self.retries_by_provider.setdefault(provider, 0)

    def get_summary(self) -> Dict[str, Any]:
        """Get a snapshot of retry counters.

        Returns:
            Dictionary with totals, success rate and per-provider counts
        """
        with self._lock:
            success_rate = (
                self.successful_retries / self.total_retries
                if self.total_retries
                else 0.0
            )
            return {
                "total_retries": self.total_retries,
                "successful_retries": self.successful_retries,
                "exhausted_retries": self.exhausted_retries,
                "success_rate": success_rate,
                "retries_by_provider": dict(self.retries_by_provider),
            }


_retry_metrics: Optional[RetryMetrics] = None
_metrics_lock = threading.Lock()


def get_retry_metrics() -> RetryMetrics:
    """Get the process-wide retry metrics instance."""
    global _retry_metrics
    with _metrics_lock:
        if _retry_metrics is None:
            _retry_metrics = RetryMetrics()
        return _retry_metrics


def reset_retry_metrics() -> None:
    """Replace the process-wide retry metrics with a fresh instance."""
    global _retry_metrics
    with _metrics_lock:
        _retry_metrics = RetryMetrics()


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Calculate the delay before a retry.

    Args:
        attempt: Zero-based retry attempt
        base_delay: Delay for attempt 0
        max_delay: Cap applied before jitter
        exponential_base: Growth factor per attempt
        jitter: Apply +/-25% random jitter

    Returns:
        Delay in seconds, never below MIN_RETRY_DELAY
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay += delay * random.uniform(-JITTER_RATIO, JITTER_RATIO)
    return max(delay, MIN_RETRY_DELAY)


def is_retryable(error: BaseException) -> bool:
    """Check whether an exception is a transient failure worth retrying."""
    classified = getattr(error, "classified_error", None)
    if classified is not None:
        return bool(classified.is_retryable)
    return isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError))


async def with_retry(
    func: Callable[[], Awaitable[T]],
    provider: str,
    config: Optional[RetryConfig] = None,
) -> T:
    """Await ``func`` and retry transient failures with exponential backoff.

    Args:
        func: Zero-argument coroutine factory
        provider: Provider name for logs and metrics
        config: Retry configuration (defaults to RetryConfig())

    Returns:
        The coroutine's result

    Raises:
        Exception: The last error once retries are exhausted, or any
            non-retryable error immediately
    """
    config = config or RetryConfig()
    metrics = get_retry_metrics()

    for attempt in range(config.max_retries + 1):
        try:
            result = await func()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt > 0:
                metrics.record_retry(provider, success=False)
            if attempt >= config.max_retries:
                metrics.record_exhausted(provider)
                logger.error(
                    f"{provider}: retries exhausted after {attempt + 1} attempt(s): {e}"
                )
                raise
            delay = calculate_backoff_delay(
                attempt,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
                exponential_base=config.exponential_base,
            )
            logger.warning(
                f"{provider}: transient error on attempt {attempt + 1}/"
                f"{config.max_retries + 1}, retrying in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            metrics.record_retry(provider, success=True)
        return result

    # Unreachable: the loop either returns or raises
    raise RuntimeError("with_retry exited without a result")
