"""Continuation-passing execution of a step list.

Each handler is called as ``handler(next, ctx, args)`` and decides whether
and when the rest of the chain runs by calling ``next(new_args)``. The chain
is strictly sequential: step ``i + 1`` is not even loaded before step ``i``
calls ``next``.

Settling rules:
- A synthetic terminal step resolves the run with the ``args`` it receives.
- A handler that finishes without calling ``next`` ends the run with its own
  return value; later steps never load.
- Any exception (loading, templating, a handler, a downstream step) fails the
  run with that exception; no further steps start.

``next`` is idempotent per invocation: the first call schedules the rest of
the chain and later calls return the same task, so a handler may both
``await next(x)`` and hand ``next`` to a callback without running downstream
steps twice.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any

from dawnpipe.errors import ChainTimeoutError
from dawnpipe.steps import DirectStep, Step, parse_steps, step_name

if TYPE_CHECKING:
    from dawnpipe.loader import MiddlewareLoader

log = logging.getLogger(__name__)


class Continuation:
    """The ``next`` callable handed to one handler invocation.

    Owns whether the remainder of the chain has been started and the task
    running it.
    """

    __slots__ = ("_index", "_run", "task")

    def __init__(self, run: _ChainRun, index: int) -> None:
        self._run = run
        self._index = index
        self.task: asyncio.Task[Any] | None = None

    @property
    def triggered(self) -> bool:
        return self.task is not None

    def __call__(self, args: Any = None) -> asyncio.Task[Any]:
        if self.task is None:
            self.task = self._run.spawn(self._index, args)
        return self.task


class _ChainRun:
    """State of a single ``ChainExecutor.execute`` call."""

    def __init__(
        self,
        steps: list[Step],
        *,
        loader: MiddlewareLoader,
        context: Any,
        outcome: asyncio.Future[Any],
    ) -> None:
        self.steps = steps
        self.loader = loader
        self.context = context
        self.outcome = outcome
        self.tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, index: int, args: Any) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(self.advance(index, args))
        self.tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self.tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.fail(exc)

    def settle(self, value: Any) -> None:
        if not self.outcome.done():
            self.outcome.set_result(value)

    def fail(self, exc: BaseException) -> None:
        if self.outcome.done():
            log.warning("Step failed after the run settled", exc_info=exc)
            return
        self.outcome.set_exception(exc)

    def cancel_pending(self) -> None:
        for task in list(self.tasks):
            task.cancel()

    async def advance(self, index: int, args: Any) -> Any:
        if self.outcome.done():
            log.debug("Run already settled; not starting step %d", index)
            return None

        step = self.steps[index]
        label = step_name(step) or getattr(step, "name", "<anonymous>")
        start = perf_counter()
        handler = await self.loader.load(step)
        loaded = perf_counter()
        log.debug("Loaded step %d (%s) in %.4fs", index, label, loaded - start)

        cont = Continuation(self, index + 1)
        result = handler(cont, self.context, args)
        if inspect.isawaitable(result):
            result = await result
        log.debug("Step %d (%s) returned after %.4fs", index, label, perf_counter() - loaded)

        if not cont.triggered:
            self.settle(result)
        return result


class ChainExecutor:
    """Runs step lists against a context."""

    def __init__(self, context: Any, loader: MiddlewareLoader) -> None:
        self.context = context
        self.loader = loader

    async def execute(
        self,
        steps: Any,
        initial_args: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Run ``steps`` in order and return the settled value.

        Args:
            steps: Raw pipeline items or descriptors (or a single item).
            initial_args: Value handed to the first step.
            timeout: Seconds to wait for the run to settle; None waits forever.

        Raises:
            ConfigurationError: If any item is not a valid step (before any
                step runs).
            ChainTimeoutError: If ``timeout`` expires first.
        """
        chain = parse_steps(steps)
        outcome: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _terminal(_next: Any, _ctx: Any, args: Any) -> Any:
            run.settle(args)
            return args

        chain.append(DirectStep(_terminal))
        run = _ChainRun(chain, loader=self.loader, context=self.context, outcome=outcome)
        log.debug("Executing %d step(s)", len(chain) - 1)
        run.spawn(0, initial_args)

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await outcome
        except TimeoutError:
            if deadline.expired():
                raise ChainTimeoutError(timeout or 0) from None
            raise
        finally:
            if not outcome.done() or outcome.cancelled() or outcome.exception():
                run.cancel_pending()
