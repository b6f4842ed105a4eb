"""
Backoff rules for retrying a failed batch.

The engine retries whole batches: one source read followed by the upserts
of everything it returned. Upserts are keyed on the natural key, so
replaying a batch leaves the destination unchanged.
"""

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from healthsync.exceptions import TransientIOError

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    TransientIOError,
    ConnectionError,
    TimeoutError,
    OSError,
)

JITTER_SPREAD = 0.25


@dataclass
class RetryPolicy:
    """
    How often and how patiently a failing batch is retried.

    ``max_attempts`` counts retries only, so a batch runs at most
    ``max_attempts + 1`` times. The wait before retry ``n`` (0-based) is
    ``initial_delay * exponential_base ** n``, scaled by a random factor in
    ``[0.75, 1.25]`` when ``jitter`` is on and never above ``max_delay``.

    ``retryable_exceptions`` restricts retries to the listed types (``None``
    retries anything); ``retry_condition(exc, attempt)`` overrides both.

        >>> RetryPolicy(max_attempts=2, initial_delay=0.001, max_delay=0.001, jitter=False)
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] | None = TRANSIENT_EXCEPTIONS
    retry_condition: Callable[[Exception, int], bool] | None = None

    def __post_init__(self):
        checks = (
            (self.max_attempts >= 0, "max_attempts must be >= 0"),
            (self.initial_delay > 0, "initial_delay must be > 0"),
            (self.max_delay >= self.initial_delay, "max_delay must be >= initial_delay"),
            (self.exponential_base >= 1.0, "exponential_base must be >= 1.0"),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(message)

    @classmethod
    def from_config(cls, section: dict[str, Any] | None) -> "RetryPolicy":
        """Policy for the ``sync.retry`` config section; missing keys keep their defaults."""
        section = section or {}
        defaults = cls()
        return cls(
            max_attempts=int(section.get("max_attempts", defaults.max_attempts)),
            initial_delay=float(section.get("initial_delay", defaults.initial_delay)),
            max_delay=float(section.get("max_delay", defaults.max_delay)),
            exponential_base=float(section.get("exponential_base", defaults.exponential_base)),
            jitter=bool(section.get("jitter", defaults.jitter)),
        )

    def is_retryable(self, exception: Exception) -> bool:
        if self.retryable_exceptions is None:
            return True
        return isinstance(exception, self.retryable_exceptions)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """True when the run numbered ``attempt`` (0-based) may be followed by another."""
        if attempt >= self.max_attempts:
            return False
        if self.retry_condition is not None:
            return self.retry_condition(exception, attempt)
        return self.is_retryable(exception)

    def get_delay(self, attempt: int) -> float:
        """Seconds to sleep after failed run ``attempt``."""
        base = self.initial_delay * self.exponential_base**attempt
        if self.jitter:
            base *= 1.0 + random.uniform(-JITTER_SPREAD, JITTER_SPREAD)
        return min(base, self.max_delay)


@dataclass
class RetryState:
    """Attempt history of one retried operation, kept for logs and failure records."""

    operation: str
    attempt: int = 0
    total_attempts: int = 0
    exceptions: list[dict[str, Any]] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)
    succeeded: bool = False
    final_exception: Exception | None = None

    def record_attempt(self, exception: Exception | None = None):
        self.total_attempts += 1
        if exception is None:
            return
        self.exceptions.append(
            {
                "attempt": self.attempt,
                "exception_type": type(exception).__name__,
                "exception_message": str(exception),
                "timestamp": time.time(),
            }
        )

    def record_delay(self, delay: float):
        self.delays.append(delay)

    def mark_success(self):
        self.succeeded = True
        self.final_exception = None

    def mark_failure(self, exception: Exception):
        self.succeeded = False
        self.final_exception = exception


DEFAULT_RETRY_POLICY = RetryPolicy()

NO_RETRY_POLICY = RetryPolicy(max_attempts=0)
