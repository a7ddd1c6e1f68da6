"""
Retry utilities with exponential backoff for provider API calls.

Provides the backoff math and the retryable-error classifier used by the
connector clients.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Type


@dataclass
class RetryStats:
    """
    Request accounting for one client over its lifetime.

    success reflects the most recent request; retries and gave_up are
    cumulative so a sync run can report how flaky the provider was.
    """
    attempts: int = 0
    retries: int = 0
    gave_up: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {error}"
            self.last_error = error_str
            self.errors.append(error_str)
            del self.errors[:-5]

    def record_retry(self, error: Exception, delay: float):
        self.record_attempt(error, delay)
        self.retries += 1

    def mark_success(self):
        self.record_attempt()
        self.success = True

    def mark_failure(self, error: Exception):
        self.record_attempt(error)
        self.gave_up += 1
        self.success = False

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "retries": self.retries,
            "gave_up": self.gave_up,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": list(self.errors),
        }


# Default retryable exceptions (network errors)
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    # Add jitter (0-25% of delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> bool:
    """
    Check if an error is retryable.

    Errors carrying a ``status`` attribute (ProviderAPIError) are classified
    by status code only; anything else falls back to type and message checks.
    """
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status in retryable_status_codes

    if isinstance(error, retryable_exceptions):
        return True

    error_str = str(error).lower()

    if "rate limit" in error_str or "too many requests" in error_str:
        return True

    if "timeout" in error_str or "timed out" in error_str:
        return True

    if "connection" in error_str and ("refused" in error_str or "reset" in error_str or "failed" in error_str):
        return True

    return False
