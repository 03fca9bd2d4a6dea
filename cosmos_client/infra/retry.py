"""
Retry/Backoff Policy

Classifies errors as retryable or fatal and computes exponential backoff
with jitter. Both are pure functions of their inputs so they can be tested
without a network; the Query Executor and Broadcaster are the thin loops
around them.

Includes structured logging with correlation IDs for request tracing.
"""

import asyncio
import logging
import random
import uuid
import contextvars
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from ..errors import CosmosClientError
from ..config import config as global_config

logger = logging.getLogger(__name__)

# Context variable for correlation ID (task-local under asyncio)
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """Set the correlation ID in context. Returns token for reset."""
    return _correlation_id.set(correlation_id)


class CorrelationContext:
    """
    Context manager for correlation ID scoping.

    Usage:
        with CorrelationContext("send") as cid:
            outcome = await broadcaster.broadcast_and_confirm(request, signer)
    """

    def __init__(self, prefix: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            prefix: Optional prefix for the correlation ID (e.g., "tx", "query")
        """
        self.correlation_id = generate_correlation_id()
        if prefix:
            self.correlation_id = f"{prefix}_{self.correlation_id}"
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _correlation_id.reset(self._token)


def _log_with_correlation(
    level: int,
    message: str,
    operation_name: str,
    attempt: Optional[int] = None,
    max_attempts: Optional[int] = None,
    log: Optional[logging.Logger] = None,
    **extra
):
    """
    Log message with correlation ID and structured context.

    Args:
        level: Logging level (logging.INFO, logging.WARNING, etc.)
        message: Log message
        operation_name: Name of the operation being executed
        attempt: Current attempt number (1-indexed)
        max_attempts: Maximum number of attempts
        log: Logger to emit on (defaults to this module's logger)
        **extra: Additional context fields
    """
    cid = get_correlation_id()

    parts = []
    if cid:
        parts.append(f"[{cid}]")
    parts.append(f"[{operation_name}]")
    if attempt is not None and max_attempts is not None:
        parts.append(f"[{attempt}/{max_attempts}]")
    parts.append(message)

    extra_context = {
        "correlation_id": cid,
        "operation": operation_name,
        "attempt": attempt,
        "max_attempts": max_attempts,
        **extra
    }

    (log or logger).log(level, " ".join(parts), extra=extra_context)


class RetryDecision(Enum):
    """Outcome of classifying an error"""
    RETRYABLE = "retryable"
    FATAL = "fatal"


# Messages that indicate a node or network problem rather than a bad request
RECOVERABLE_KEYWORDS = [
    "timeout", "timed out", "deadline exceeded",
    "connection", "network", "transport",
    "unavailable", "unimplemented", "overloaded",
    "rate limit", "too many requests",
    "503", "502", "504",
    "econnreset", "etimedout", "broken pipe",
]


def classify(error: BaseException) -> RetryDecision:
    """
    Classify an error as retryable or fatal.

    Client errors carry their own recoverable flag. Raw transport
    exceptions and deadline expiry are retryable. Anything else is matched
    against RECOVERABLE_KEYWORDS and is fatal when nothing matches.

    Args:
        error: The exception to classify

    Returns:
        RetryDecision.RETRYABLE or RetryDecision.FATAL
    """
    if isinstance(error, CosmosClientError):
        return RetryDecision.RETRYABLE if error.recoverable else RetryDecision.FATAL

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return RetryDecision.RETRYABLE

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return RetryDecision.RETRYABLE

    error_str = str(error).lower()
    if any(keyword in error_str for keyword in RECOVERABLE_KEYWORDS):
        return RetryDecision.RETRYABLE

    return RetryDecision.FATAL


def is_retryable(error: BaseException) -> bool:
    return classify(error) is RetryDecision.RETRYABLE


@dataclass
class RetryPolicy:
    """
    Retry bounds and backoff shape

    This is a runtime configuration class that allows per-component
    overrides while pulling defaults from the global config
    (cosmos_client.config.RetryConfig).

    Usage:
        policy = RetryPolicy()                       # environment defaults
        policy = RetryPolicy(max_attempts=5, base_delay=0.2)

        delay = policy.next_delay(attempt)           # attempt is 1-indexed
    """
    max_attempts: int = None
    base_delay: float = None
    max_delay: float = None
    jitter_ratio: float = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.max_attempts is None:
            self.max_attempts = global_config.retry.max_attempts
        if self.base_delay is None:
            self.base_delay = global_config.retry.base_delay
        if self.max_delay is None:
            self.max_delay = global_config.retry.max_delay
        if self.jitter_ratio is None:
            self.jitter_ratio = global_config.retry.jitter_ratio

        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.jitter_ratio < 0:
            raise ValueError(f"jitter_ratio must be >= 0, got {self.jitter_ratio}")

    def base_delay_for(self, attempt: int) -> float:
        """Deterministic part of the delay: base * 2^(attempt-1), capped at max_delay"""
        exponent = max(0, attempt - 1)
        return min(self.max_delay, self.base_delay * (2 ** exponent))

    def next_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Backoff before the attempt following ``attempt``.

        Returns a value in [d, d * (1 + jitter_ratio)) where d is
        base_delay_for(attempt). The jitter spreads out concurrent callers
        that failed at the same moment.
        """
        delay = self.base_delay_for(attempt)
        roll = (rng or random).random()
        return delay + delay * self.jitter_ratio * roll

    def attempts_remaining(self, attempt: int) -> bool:
        """True if another attempt is allowed after ``attempt`` (1-indexed)"""
        return attempt < self.max_attempts
