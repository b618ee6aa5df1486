"""Async single-flight helper.

Coordinates concurrent fetches of the same remote configuration key so only
one coroutine performs the request while others await the same Future.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if not fut.cancelled():
        fut.exception()


async def singleflight_cached(
    key: K,
    *,
    inflight: dict[K, asyncio.Future[T]],
    cache: dict[K, T],
    work: Callable[[], Awaitable[T]],
) -> T:
    """Return ``cache[key]``, or compute it once with single-flight.

    - If cached, returns immediately.
    - If inflight, awaits the existing Future.
    - Otherwise, runs *work* as the single creator and caches its result.
      Failures are not cached; the next caller tries again.
    """
    if key in cache:
        return cache[key]

    fut = inflight.get(key)
    if fut is not None:
        return await fut

    fut = asyncio.get_running_loop().create_future()
    fut.add_done_callback(consume_future_exception)
    inflight[key] = fut
    try:
        value = await work()
    except asyncio.CancelledError:
        fut.cancel()
        raise
    except Exception as e:
        fut.set_exception(e)
        raise
    else:
        cache[key] = value
        fut.set_result(value)
        return value
    finally:
        inflight.pop(key, None)
