"""Retry policy for BMS requests."""

from __future__ import annotations

from dataclasses import dataclass

from .const import DEFAULT_RETRY, DEFAULT_RETRY_DELAY


@dataclass(slots=True)
class RetryPolicy:
    """Retry policy metadata for caller-level retries.

    ``delay`` is the pause before the first retry; each further retry
    multiplies it by ``backoff`` (``1.0`` keeps the delay fixed).  ``jitter``
    adds a random ``0..jitter`` (or ``min..max`` tuple) seconds on top.
    """

    max_attempts: int = DEFAULT_RETRY
    delay: float = DEFAULT_RETRY_DELAY
    backoff: float = 1.0
    jitter: float | tuple[float, float] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            self.max_attempts = 1
        if self.delay < 0:
            self.delay = 0.0
        if self.backoff < 1:
            self.backoff = 1.0

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """Return a policy that makes exactly one attempt."""
        return cls(max_attempts=1, delay=0.0)
