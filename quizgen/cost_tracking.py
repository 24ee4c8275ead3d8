"""Token usage and cost tracking for LLM calls.

Each pipeline run owns a :class:`UsageTracker`; the tracker's summary is
what the entry point reports back to callers as ``usage``.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token usage for a single API call.

    Attributes:
        input_tokens: Tokens in the prompt
        output_tokens: Tokens in the visible completion
        model: Model used for the call
        provider: Provider name (e.g., "google", "openai")
        thinking_tokens: Reasoning tokens billed as output but not returned
    """

    input_tokens: int
    output_tokens: int
    model: str
    provider: str
    thinking_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Get total tokens used, including thinking tokens."""
        return (
            (self.input_tokens or 0)
            + (self.output_tokens or 0)
            + (self.thinking_tokens or 0)
        )


@dataclass
class CompletionResult:
    """Result from an LLM completion including content and token usage.

    Attributes:
        content: The generated text
        token_usage: Token usage information for this call
    """

    content: Any
    token_usage: Optional[TokenUsage] = None


# Pricing per 1M tokens (in USD); approximate list prices
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    # Google Gemini
    "gemini-3-pro-preview": {"input": 2.00, "output": 12.00},
    "gemini-3-flash-preview": {"input": 0.50, "output": 3.00},
    "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
    "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-1.5-pro": {"input": 3.50, "output": 10.50},
    "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
    # OpenAI
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    # Anthropic
    "claude-sonnet-4-5-20250929": {"input": 3.00, "output": 15.00},
    "claude-haiku-4-5-20251001": {"input": 1.00, "output": 5.00},
    "claude-opus-4-5-20251101": {"input": 5.00, "output": 25.00},
}

# Default pricing for unknown models (conservative estimate)
DEFAULT_PRICING: Dict[str, float] = {"input": 10.00, "output": 30.00}


def get_model_pricing(model: str) -> Dict[str, float]:
    """Get pricing for a specific model.

    Args:
        model: Model identifier

    Returns:
        Dictionary with 'input' and 'output' prices per 1M tokens
    """
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def calculate_cost(token_usage: TokenUsage) -> float:
    """Calculate the cost for a single API call.

    Thinking tokens are billed at the output rate.

    Args:
        token_usage: Token usage information

    Returns:
        Cost in USD
    """
    pricing = get_model_pricing(token_usage.model)

    input_tokens = token_usage.input_tokens or 0
    output_tokens = (token_usage.output_tokens or 0) + (
        token_usage.thinking_tokens or 0
    )

    input_cost = (input_tokens / 1_000_000) * pricing["input"]
    output_cost = (output_tokens / 1_000_000) * pricing["output"]

    return input_cost + output_cost


@dataclass
class UsageSummary:
    """Aggregated usage reported to pipeline callers."""

    total_tokens: int = 0
    thinking_tokens: int = 0
    estimated_cost: float = 0.0
    calls: int = 0
    by_model: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "thinking_tokens": self.thinking_tokens,
            "estimated_cost": round(self.estimated_cost, 6),
        }


class UsageTracker:
    """Thread-safe accumulator for the token usage of one pipeline run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: List[TokenUsage] = []
        self._summary = UsageSummary()

    def record_usage(self, token_usage: Optional[TokenUsage]) -> float:
        """Record token usage and return the cost of the call.

        Args:
            token_usage: Usage for one call, or None when the provider
                reported nothing

        Returns:
            Cost for this call in USD
        """
        if token_usage is None:
            return 0.0

        cost = calculate_cost(token_usage)
        with self._lock:
            self._records.append(token_usage)
            self._summary.calls += 1
            self._summary.total_tokens += token_usage.total_tokens
            self._summary.thinking_tokens += token_usage.thinking_tokens or 0
            self._summary.estimated_cost += cost
            self._summary.by_model[token_usage.model] = (
                self._summary.by_model.get(token_usage.model, 0)
                + token_usage.total_tokens
            )

        logger.debug(
            f"Recorded usage: {token_usage.provider}/{token_usage.model} - "
            f"{token_usage.total_tokens} tokens, ${cost:.6f}"
        )
        return cost

    def merge(self, other: "UsageTracker") -> None:
        """Fold another tracker's records into this one."""
        for record in other.records:
            self.record_usage(record)

    @property
    def records(self) -> List[TokenUsage]:
        with self._lock:
            return list(self._records)

    def get_summary(self) -> UsageSummary:
        """Get a copy of the aggregated usage."""
        with self._lock:
            return UsageSummary(
                total_tokens=self._summary.total_tokens,
                thinking_tokens=self._summary.thinking_tokens,
                estimated_cost=self._summary.estimated_cost,
                calls=self._summary.calls,
                by_model=dict(self._summary.by_model),
            )
