"""Bounded async retry for transport calls.

Retry is a transport concern: the chat engine never retries on its own. The
Gemini transport wraps blocking calls with `retry_async`; streams are not
retried because fragments may already have reached the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from castor._http import RETRYABLE_STATUS_CODES
from castor.errors import TransportError, _walk_exception_chain

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

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

    @classmethod
    def none(cls) -> RetryPolicy:
        """Return a policy that makes exactly one attempt."""
        return cls(max_attempts=1)


def _is_transient_network_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.RequestError)):
            return True
    return False


def should_retry(exc: BaseException) -> bool:
    """Return True when a transport exception should be retried.

    Contract:
    - Cancellation is never retried.
    - TransportError is retried only when the transport marks it retryable or
      it carries a known retryable HTTP status code.
    - Raw timeouts and httpx request errors are retried as a fallback.
    - Everything else (caller misuse, response validation) is not retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False

    if isinstance(exc, TransportError):
        return (exc.retryable is True) or (
            isinstance(exc.status_code, int)
            and exc.status_code in RETRYABLE_STATUS_CODES
        )

    return _is_transient_network_error(exc)


def _retry_after_from_error(exc: BaseException) -> float | None:
    if isinstance(exc, TransportError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


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
    return random.random() * base  # noqa: S311


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()

    attempt = 1
    while True:
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = _compute_backoff_delay(policy, retry_index=attempt)
            retry_after = _retry_after_from_error(exc)
            if retry_after is not None:
                delay = max(delay, retry_after)

            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            logger.debug(
                "Retrying after %s (attempt %d/%d, delay=%.2fs)",
                type(exc).__name__,
                attempt,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
