"""Middleware loading: step descriptor -> handler.

Resolution is pluggable. ``PathResolver`` loads a factory from a file
``location`` relative to the project root; ``RegistryResolver`` asks the
middleware registry by ``name``. The loader picks one by which field the step
declares, invokes the factory once with ``(options, context)`` and returns
the handler it produces.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import logging
from pathlib import Path
import sys
from typing import TYPE_CHECKING, Any, Protocol

from dawnpipe.errors import MiddlewareError
from dawnpipe.registry import DEFAULT_ATTR
from dawnpipe.steps import DirectStep, Handler, NamedStep, parse_step
from dawnpipe.templating import parse_opts

if TYPE_CHECKING:
    from types import ModuleType

    from dawnpipe.registry import MiddlewareRegistry

log = logging.getLogger(__name__)


class FactoryResolver(Protocol):
    """Finds the factory for a named step."""

    async def resolve(self, step: NamedStep) -> Any:
        """Return the (unchecked) factory object for ``step``."""
        ...


class RegistryResolver:
    """Resolves ``step.name`` through a ``MiddlewareRegistry``."""

    def __init__(self, registry: MiddlewareRegistry, cwd: str | Path) -> None:
        self._registry = registry
        self._cwd = cwd

    async def resolve(self, step: NamedStep) -> Any:
        return await self._registry.acquire(step.name, self._cwd)


class PathResolver:
    """Loads factories from Python files relative to the project root.

    ``location`` is ``path/to/file.py`` or ``path/to/package`` with an
    optional ``:attr`` suffix (default attribute ``middleware``). Modules are
    executed once per resolver and reused for later steps.
    """

    def __init__(self, cwd: str | Path) -> None:
        self._cwd = Path(cwd)
        self._modules: dict[Path, ModuleType] = {}

    async def resolve(self, step: NamedStep) -> Any:
        if not step.location:
            raise MiddlewareError(
                f"Invalid middleware '{step.name}': no location given",
                middleware=step.name,
            )
        location, attr = _split_attr(step.location)
        path = self._locate(location, step)
        module = self._modules.get(path)
        if module is None:
            module = _import_file(path, step)
            self._modules[path] = module
        factory = getattr(module, attr, None)
        if factory is None:
            raise MiddlewareError(
                f"Invalid middleware '{step.name}': {path} has no attribute '{attr}'",
                middleware=step.name,
            )
        return factory

    def _locate(self, location: str, step: NamedStep) -> Path:
        path = (self._cwd / location).resolve()
        candidates = [path, path.with_name(path.name + ".py"), path / "__init__.py"]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise MiddlewareError(
            f"Invalid middleware '{step.name}': location '{location}' not found",
            middleware=step.name,
            hint=f"Locations resolve relative to {self._cwd}.",
        )


def _split_attr(location: str) -> tuple[str, str]:
    head, sep, tail = location.rpartition(":")
    # Leave drive letters and plain paths alone
    if sep and head and tail.isidentifier() and len(head) > 1:
        return head, tail
    return location, DEFAULT_ATTR


def _import_file(path: Path, step: NamedStep) -> ModuleType:
    digest = hashlib.sha1(str(path).encode(), usedforsecurity=False).hexdigest()[:12]
    module_name = f"dawnpipe_middleware_{digest}"
    spec = importlib.util.spec_from_file_location(
        module_name,
        path,
        submodule_search_locations=[str(path.parent)]
        if path.name == "__init__.py"
        else None,
    )
    if spec is None or spec.loader is None:
        raise MiddlewareError(
            f"Invalid middleware '{step.name}': cannot import {path}",
            middleware=step.name,
        )
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise MiddlewareError(
            f"Failed to load middleware '{step.name}' from {path}: {e}",
            middleware=step.name,
        ) from e
    log.debug("Imported middleware module %s from %s", module_name, path)
    return module


class MiddlewareLoader:
    """Turns step descriptors into handlers bound to a context."""

    def __init__(
        self,
        context: Any,
        *,
        registry: MiddlewareRegistry,
        cwd: str | Path,
        path_resolver: FactoryResolver | None = None,
        registry_resolver: FactoryResolver | None = None,
    ) -> None:
        self._context = context
        self._path_resolver = path_resolver or PathResolver(cwd)
        self._registry_resolver = registry_resolver or RegistryResolver(registry, cwd)

    def options_for(self, step: NamedStep) -> dict[str, Any]:
        """Templated options for ``step`` with its structural fields restored."""
        options = parse_opts(step.params, self._context)
        options["name"] = step.name
        if step.location is not None:
            options["location"] = step.location
        return options

    async def load(self, step: Any) -> Handler:
        """Resolve ``step`` to a handler.

        Raises:
            ConfigurationError: If ``step`` is not a valid descriptor.
            MiddlewareError: If the factory or its product is not callable.
        """
        step = parse_step(step)
        if isinstance(step, DirectStep):
            return step.handler

        options = self.options_for(step)
        resolver = self._path_resolver if step.location else self._registry_resolver
        factory = await resolver.resolve(step)
        log.debug("Resolved middleware '%s' to %r", step.name, factory)
        if not callable(factory):
            raise MiddlewareError(
                f"Invalid middleware '{step.name}'",
                middleware=step.name,
                hint="A middleware must export a callable (options, ctx) -> handler.",
            )

        handler = factory(options, self._context)
        if inspect.isawaitable(handler):
            handler = await handler
        if not callable(handler):
            raise MiddlewareError(
                f"Invalid middleware '{step.name}': factory returned "
                f"{type(handler).__name__}, expected a handler (next, ctx, args)",
                middleware=step.name,
            )
        return handler
