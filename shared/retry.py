"""
Retry helpers for resilient operations.
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.errors import TransientServiceError


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    base_delay: float = 1.0
    exponential_base: float = 2.0
    jitter_ms: int = 1000


class RetryError(TransientServiceError):
    """Exception raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int,
                 details: Optional[Dict[str, Any]] = None, **kwargs):
        self.last_exception = last_exception
        self.attempts = attempts
        details = dict(details or {})
        details.setdefault("attempts", attempts)
        details.setdefault("error", str(last_exception))
        super().__init__(message, details, **kwargs)


def calculate_delay(attempt: int, config: RetryConfig, rng: Any = random) -> float:
    """Delay before retry number ``attempt`` (1-based).

    Exponential in the attempt number plus uniform jitter in
    ``[0, jitter_ms)`` milliseconds so concurrent callers do not retry in
    lockstep.
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    if config.jitter_ms > 0:
        delay += rng.randrange(config.jitter_ms) / 1000.0
    return max(0.0, delay)
