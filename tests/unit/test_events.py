"""Event emitter shared by the steps of a run."""

from __future__ import annotations

import pytest

from dawnpipe.events import EventEmitter

pytestmark = pytest.mark.unit


def test_listeners_run_in_registration_order():
    emitter = EventEmitter()
    seen = []
    emitter.on("built", lambda name: seen.append(("a", name)))
    emitter.on("built", lambda name: seen.append(("b", name)))

    assert emitter.emit("built", "app.js") is True
    assert seen == [("a", "app.js"), ("b", "app.js")]
    assert emitter.emit("unknown") is False


def test_once_and_off():
    emitter = EventEmitter()
    seen = []
    emitter.once("ready", lambda: seen.append("once"))
    keep = emitter.on("ready", lambda: seen.append("keep"))

    emitter.emit("ready")
    emitter.emit("ready")
    assert seen == ["once", "keep", "keep"]

    emitter.off("ready", keep)
    assert emitter.listener_count("ready") == 0


def test_off_without_listener_clears_event():
    emitter = EventEmitter()
    emitter.on("x", print)
    emitter.on("x", repr)

    emitter.off("x")

    assert emitter.listener_count("x") == 0


def test_emit_rejects_async_listeners():
    emitter = EventEmitter()

    async def listener():
        pass

    emitter.on("x", listener)

    with pytest.raises(TypeError, match="emit_async"):
        emitter.emit("x")


@pytest.mark.asyncio
async def test_emit_async_awaits_coroutine_listeners():
    emitter = EventEmitter()
    seen = []

    async def listener(value):
        seen.append(value)

    emitter.on("x", listener)
    emitter.on("x", lambda value: seen.append(value * 2))

    assert await emitter.emit_async("x", 2) is True
    assert seen == [2, 4]
