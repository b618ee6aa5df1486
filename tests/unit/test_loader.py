"""Middleware loading: descriptors to handlers."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from dawnpipe.errors import ConfigurationError, MiddlewareError
from dawnpipe.loader import MiddlewareLoader, PathResolver
from dawnpipe.steps import DirectStep, NamedStep

pytestmark = pytest.mark.unit


@pytest.fixture
def ctx(tmp_path):
    return SimpleNamespace(cmd="build", cwd=tmp_path, project={"name": "shop"})


@pytest.fixture
def loader(ctx, registry, tmp_path):
    return MiddlewareLoader(ctx, registry=registry, cwd=tmp_path)


def _echo(next_, ctx, args):
    return args


@pytest.mark.asyncio
async def test_callables_are_returned_unchanged(loader):
    assert await loader.load(_echo) is _echo
    assert await loader.load(DirectStep(_echo)) is _echo


@pytest.mark.asyncio
async def test_factory_receives_templated_options_and_context(loader, registry, ctx):
    calls: list[tuple[dict[str, Any], Any]] = []

    @registry.register("banner")
    def banner(options, context):
        calls.append((options, context))
        return _echo

    handler = await loader.load(
        {"name": "banner", "title": "${project.name}:${cmd}", "force": True, "size": 3}
    )

    assert handler is _echo
    assert calls == [({"title": "shop:build", "size": 3, "name": "banner"}, ctx)]


@pytest.mark.asyncio
async def test_async_factories_are_awaited(loader, registry):
    async def factory(options, context):
        return _echo

    registry.register("later", factory)

    assert await loader.load({"name": "later"}) is _echo


@pytest.mark.asyncio
async def test_non_callable_factory_is_invalid_middleware(loader, registry):
    registry.register("broken", {"not": "callable"})

    with pytest.raises(MiddlewareError, match="Invalid middleware 'broken'") as exc_info:
        await loader.load({"name": "broken"})
    assert exc_info.value.middleware == "broken"


@pytest.mark.asyncio
async def test_factory_must_produce_a_handler(loader, registry):
    registry.register("noop", lambda options, context: None)

    with pytest.raises(MiddlewareError, match="factory returned NoneType"):
        await loader.load({"name": "noop"})


@pytest.mark.asyncio
async def test_missing_name_fails_before_resolution(loader):
    with pytest.raises(ConfigurationError):
        await loader.load({"location": "./mw.py"})


def _write_middleware(tmp_path, rel: str, body: str) -> None:
    path = tmp_path / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)


@pytest.mark.asyncio
@pytest.mark.parametrize("location", ["mw/stamp.py", "mw/stamp", "./mw/stamp.py"])
async def test_location_loads_factory_from_project_file(loader, tmp_path, location):
    _write_middleware(
        tmp_path,
        "mw/stamp.py",
        "def middleware(options, ctx):\n"
        "    async def handler(next_, ctx, args):\n"
        "        return await next_((args or []) + [options['label']])\n"
        "    return handler\n",
    )

    handler = await loader.load({"name": "stamp", "location": location, "label": "${cmd}"})

    async def _next(args):
        return args

    assert await handler(_next, None, ["start"]) == ["start", "build"]


@pytest.mark.asyncio
async def test_location_packages_and_explicit_attribute(loader, tmp_path):
    _write_middleware(
        tmp_path,
        "mw/pkg/__init__.py",
        "from .impl import build\n",
    )
    _write_middleware(
        tmp_path,
        "mw/pkg/impl.py",
        "def build(options, ctx):\n    return lambda n, c, a: options['location']\n",
    )

    handler = await loader.load({"name": "pkg", "location": "mw/pkg:build"})

    assert handler(None, None, None) == "mw/pkg:build"


@pytest.mark.asyncio
async def test_location_module_is_executed_once(loader, tmp_path):
    _write_middleware(
        tmp_path,
        "count.py",
        "LOADS = []\nLOADS.append(1)\n"
        "def middleware(options, ctx):\n    return lambda n, c, a: len(LOADS)\n",
    )

    first = await loader.load({"name": "count", "location": "count.py"})
    second = await loader.load({"name": "count", "location": "count.py"})

    assert first(None, None, None) == second(None, None, None) == 1


@pytest.mark.asyncio
async def test_missing_location_is_invalid_middleware(loader):
    with pytest.raises(MiddlewareError, match="location 'nope.py' not found"):
        await loader.load({"name": "nope", "location": "nope.py"})


@pytest.mark.asyncio
async def test_location_without_factory_attribute(loader, tmp_path):
    _write_middleware(tmp_path, "empty.py", "VALUE = 1\n")
    _write_middleware(tmp_path, "scalar.py", "middleware = 42\n")

    with pytest.raises(MiddlewareError, match="has no attribute 'middleware'"):
        await loader.load({"name": "empty", "location": "empty.py"})
    with pytest.raises(MiddlewareError, match="Invalid middleware 'scalar'"):
        await loader.load({"name": "scalar", "location": "scalar.py"})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    ["raise RuntimeError('boom at import')\n", "def (:\n"],
)
async def test_location_failing_at_import_is_middleware_error(loader, tmp_path, body):
    _write_middleware(tmp_path, "mw.py", body)

    with pytest.raises(MiddlewareError, match="Failed to load middleware 'local'") as exc_info:
        await loader.load({"name": "local", "location": "mw.py"})

    assert exc_info.value.middleware == "local"
    assert exc_info.value.__cause__ is not None


@pytest.mark.asyncio
async def test_location_module_retried_after_failed_import(loader, tmp_path):
    _write_middleware(tmp_path, "flaky.py", "raise RuntimeError('not yet')\n")
    with pytest.raises(MiddlewareError):
        await loader.load({"name": "flaky", "location": "flaky.py"})

    _write_middleware(
        tmp_path, "flaky.py", "def middleware(options, ctx):\n    return lambda n, c, a: 'ok'\n"
    )
    handler = await loader.load({"name": "flaky", "location": "flaky.py"})

    assert handler(None, None, None) == "ok"


@pytest.mark.asyncio
async def test_path_resolver_requires_a_location(tmp_path):
    with pytest.raises(MiddlewareError, match="no location given"):
        await PathResolver(tmp_path).resolve(NamedStep("stamp", {}))
