"""Retry helpers for BMS requests.

Retries are a caller concern: the codec and transports never retry on their
own.  ``call_with_retry`` repeats a coroutine only for errors classified as
transient by :func:`~renogy_bms.exceptions.is_retryable`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .exceptions import is_retryable
from .modbus_retry_policy import RetryPolicy

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


def _calculate_backoff_delay(
    *,
    base: float,
    attempt: int,
    factor: float = 1.0,
    jitter: float | tuple[float, float] | None,
) -> float:
    """Return the delay before ``attempt`` including optional jitter."""

    if base <= 0 or attempt <= 1:
        delay = 0.0
    else:
        delay = float(base) * (factor ** (attempt - 2))

    if jitter:
        if isinstance(jitter, int | float):
            jitter_min = 0.0
            jitter_max = float(jitter)
        else:
            jitter_min, jitter_max = (float(jitter[0]), float(jitter[1]))
        if jitter_max < jitter_min:
            jitter_min, jitter_max = jitter_max, jitter_min
        delay += random.uniform(jitter_min, jitter_max)

    return max(delay, 0.0)


async def call_with_retry(
    policy: RetryPolicy | None,
    func: Callable[..., Awaitable[_T]],
    *args: Any,
    **kwargs: Any,
) -> _T:
    """Await ``func(*args, **kwargs)`` retrying transient failures per ``policy``."""

    policy = policy or RetryPolicy.no_retry()
    func_name = getattr(func, "__name__", repr(func))

    for attempt in range(1, policy.max_attempts + 1):
        delay = _calculate_backoff_delay(
            base=policy.delay,
            attempt=attempt,
            factor=policy.backoff,
            jitter=policy.jitter,
        )
        if delay > 0:
            _LOGGER.debug(
                "Delaying %.3fs before attempt %s/%s of %s",
                delay,
                attempt,
                policy.max_attempts,
                func_name,
            )
            await asyncio.sleep(delay)

        try:
            return await func(*args, **kwargs)
        except Exception as err:
            if not is_retryable(err) or attempt >= policy.max_attempts:
                raise
            _LOGGER.warning(
                "%s failed on attempt %s/%s: %s; retrying",
                func_name,
                attempt,
                policy.max_attempts,
                err,
            )

    raise AssertionError("unreachable")  # pragma: no cover
