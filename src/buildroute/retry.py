"""Retry policies for model calls and whole-file builds.

Two independent layers:
- ``RetryPolicy`` / ``retry_async``: transport retries performed by a model
  client around a single provider call (timeouts, 429s, 5xx).
- ``BuildRetryPolicy``: the whole-file builder's retry budget for responses
  that arrived but could not be extracted. Its backoff is quadratic in the
  retry number plus a bounded jitter.

Cancellation is never retried at either layer.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import random
import time
from typing import TYPE_CHECKING, TypeVar

from buildroute.errors import APIError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

MAX_BUILD_ERROR_RETRIES = 3


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded transport retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")


@dataclass(frozen=True)
class BuildRetryPolicy:
    """Retry budget for whole-file extraction failures.

    The delay before retry *n* (1-based) is
    ``n**2 * base_delay_s + U[0, max_jitter_s)``.
    """

    max_retries: int = MAX_BUILD_ERROR_RETRIES
    base_delay_s: float = 0.2
    max_jitter_s: float = 0.5

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("BuildRetryPolicy.max_retries must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("BuildRetryPolicy.base_delay_s must be >= 0")
        if self.max_jitter_s < 0:
            raise ValueError("BuildRetryPolicy.max_jitter_s must be >= 0")

    def delay_for(self, retry_number: int, *, rng: random.Random | None = None) -> float:
        """Return the backoff delay in seconds before retry *retry_number*."""
        if retry_number < 1:
            raise ValueError(f"retry_number must be >= 1, got {retry_number}")
        base = retry_number * retry_number * self.base_delay_s
        if self.max_jitter_s <= 0:
            return base
        source = rng if rng is not None else random
        return base + source.random() * self.max_jitter_s  # noqa: S311


def _retry_after_from_error(exc: BaseException) -> float | None:
    if isinstance(exc, APIError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


def _is_transient_network_error(exc: BaseException) -> bool:
    # SDKs wrap httpx errors; look through the whole chain.
    import httpx

    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def should_retry_generate(exc: BaseException) -> bool:
    """Return True when a model call exception should be retried.

    Contract:
    - Cancellation is never retried.
    - APIError is retried only when the client marks it retryable or includes
      a known retryable HTTP status code.
    - Timeouts and httpx transport errors are retried as a pragmatic fallback.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False

    if isinstance(exc, APIError):
        return (exc.retryable is True) or (
            isinstance(exc.status_code, int)
            and exc.status_code in RETRYABLE_STATUS_CODES
        )

    return _is_transient_network_error(exc)


def _compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    # retry_index starts at 1 for the first retry sleep.
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry_generate,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()
    last_exc: BaseException | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            last_exc = exc
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            retry_after = _retry_after_from_error(exc)
            delay = _compute_backoff_delay(policy, retry_index=attempt)
            if retry_after is not None:
                delay = max(delay, retry_after)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            if delay > 0:
                await asyncio.sleep(delay)

    if last_exc is None:  # pragma: no cover
        raise RuntimeError("retry_async exhausted without an exception")
    raise last_exc
