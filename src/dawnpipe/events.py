"""Publish/subscribe side channel shared by the steps of a run."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
import inspect
import logging
from typing import Any

log = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal event emitter.

    Listeners run synchronously in registration order. Coroutine listeners
    are supported through ``emit_async``; plain ``emit`` rejects them so an
    un-awaited coroutine is never silently dropped.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[str, list[tuple[Listener, bool]]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners[event].append((listener, False))
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        self._listeners[event].append((listener, True))
        return listener

    def off(self, event: str, listener: Listener | None = None) -> None:
        """Remove one listener, or every listener of ``event``."""
        if listener is None:
            self._listeners.pop(event, None)
            return
        self._listeners[event] = [
            entry for entry in self._listeners[event] if entry[0] is not listener
        ]

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def _take(self, event: str) -> list[Listener]:
        entries = self._listeners.get(event, [])
        if any(once for _, once in entries):
            self._listeners[event] = [e for e in entries if not e[1]]
        return [listener for listener, _ in entries]

    def emit(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Call every listener of ``event``; True if there were any."""
        listeners = self._take(event)
        for listener in listeners:
            result = listener(*args, **kwargs)
            if inspect.isawaitable(result):
                close = getattr(result, "close", None)
                if close is not None:
                    close()
                raise TypeError(
                    f"Listener {listener!r} for '{event}' is async; use emit_async()"
                )
        log.debug("Emitted '%s' to %d listener(s)", event, len(listeners))
        return bool(listeners)

    async def emit_async(self, event: str, *args: Any, **kwargs: Any) -> bool:
        """Like ``emit`` but awaits coroutine listeners one after another."""
        listeners = self._take(event)
        for listener in listeners:
            result = listener(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        log.debug("Emitted '%s' to %d listener(s)", event, len(listeners))
        return bool(listeners)
