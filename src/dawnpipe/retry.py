"""Minimal async retry for remote configuration fetches.

Pipeline steps are never retried; only the overlay transport uses this.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from dawnpipe.errors import RemoteConfigError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

T = TypeVar("T")

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 2
    initial_delay_s: float = 0.25
    backoff_multiplier: float = 2.0
    max_delay_s: float = 2.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = 10.0

    def __post_init__(self) -> None:
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


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield exc and its causes/contexts, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur
        if isinstance(cur.__cause__, BaseException):
            stack.append(cur.__cause__)
        if isinstance(cur.__context__, BaseException):
            stack.append(cur.__context__)


def should_retry_fetch(exc: BaseException) -> bool:
    """Return True when a remote fetch failure is worth another attempt.

    Cancellation is never retried. ``RemoteConfigError`` is retried when
    flagged retryable or carrying a retryable HTTP status; transport-level
    httpx errors and timeouts anywhere in the cause chain are retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False

    for e in _walk_exception_chain(exc):
        if isinstance(e, RemoteConfigError) and (
            e.retryable is True
            or (isinstance(e.status_code, int) and e.status_code in RETRYABLE_STATUS_CODES)
        ):
            return True
        if isinstance(e, TimeoutError | httpx.TimeoutException | httpx.TransportError):
            return True
    return False


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
    should_retry: Callable[[BaseException], bool] = should_retry_fetch,
) -> T:
    """Run an async factory with bounded retries."""
    start = time.monotonic()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await factory()
        except Exception as exc:
            if not should_retry(exc) or attempt >= policy.max_attempts:
                raise

            delay = _compute_backoff_delay(policy, retry_index=attempt)
            if policy.max_elapsed_s is not None:
                remaining = policy.max_elapsed_s - (time.monotonic() - start)
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            if delay > 0:
                await asyncio.sleep(delay)

    raise RuntimeError("retry_async exhausted without an exception")  # pragma: no cover
