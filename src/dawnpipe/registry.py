"""Named middleware lookup.

``MiddlewareRegistry.acquire(name, cwd)`` resolves a middleware name to its
factory. Lookup order:

1. Factories registered in-process with ``register``.
2. The ``dawnpipe.middleware`` entry-point group of installed distributions.
3. An import path: ``"package.module:attr"``, or ``"package.module"`` whose
   ``middleware`` attribute is the factory.

The registry only finds factories; callability is checked by the loader.
"""

from __future__ import annotations

import asyncio
import importlib
from importlib.metadata import entry_points
import logging
from pathlib import Path
import sys
import threading
from typing import TYPE_CHECKING, Any

from dawnpipe.errors import MiddlewareError

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

DEFAULT_GROUP = "dawnpipe.middleware"
DEFAULT_ATTR = "middleware"

# Guards sys.path edits made by lookups running in worker threads
_IMPORT_LOCK = threading.RLock()


class MiddlewareRegistry:
    """Maps middleware names to factories.

    In-process registrations always win so projects and tests can shadow an
    installed middleware without uninstalling it.
    """

    def __init__(self, group: str = DEFAULT_GROUP) -> None:
        self.group = group
        self._factories: dict[str, Any] = {}

    def register(self, name: str, factory: Any = None) -> Any:
        """Register ``factory`` under ``name``.

        Usable directly or as a decorator::

            @registry.register("banner")
            def banner(options, ctx): ...
        """
        if factory is None:

            def _decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                self._factories[name] = fn
                return fn

            return _decorator
        self._factories[name] = factory
        return factory

    def unregister(self, name: str) -> None:
        self._factories.pop(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        """Registered and installed middleware names, sorted."""
        installed = {ep.name for ep in entry_points(group=self.group)}
        return sorted(installed | set(self._factories))

    async def acquire(self, name: str, cwd: str | Path) -> Any:
        """Return the factory for ``name``.

        ``cwd`` is put on ``sys.path`` for the duration of an import lookup so
        project-local middleware packages resolve.

        Raises:
            MiddlewareError: If no source provides ``name``.
        """
        if name in self._factories:
            return self._factories[name]
        # Entry point and module imports run arbitrary module code
        return await asyncio.to_thread(self._acquire_installed, name, str(cwd))

    def _acquire_installed(self, name: str, cwd: str) -> Any:
        for ep in entry_points(group=self.group, name=name):
            log.debug("Loading middleware '%s' from entry point %s", name, ep.value)
            try:
                return ep.load()
            except Exception as e:
                raise MiddlewareError(
                    f"Failed to load middleware '{name}' from entry point '{ep.value}': {e}",
                    middleware=name,
                ) from e
        return import_factory(name, cwd=cwd)


def import_factory(target: str, *, cwd: str | None = None) -> Any:
    """Import ``"module:attr"`` (or ``"module"``, attr ``middleware``)."""
    module_path, _, attr = target.partition(":")
    attr = attr or DEFAULT_ATTR
    if not module_path or module_path.startswith("."):
        raise _not_found(target)
    with _IMPORT_LOCK:
        added = cwd is not None and cwd not in sys.path
        if added:
            sys.path.insert(0, cwd)
        try:
            module = importlib.import_module(module_path)
        except ModuleNotFoundError as e:
            if e.name is not None and (
                module_path == e.name or module_path.startswith(f"{e.name}.")
            ):
                raise _not_found(target) from e
            raise _load_failed(target, e) from e
        except Exception as e:
            raise _load_failed(target, e) from e
        finally:
            if added:
                sys.path.remove(cwd)
    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise MiddlewareError(
            f"Middleware module '{module_path}' has no attribute '{attr}'",
            middleware=target,
        ) from e


def _not_found(target: str) -> MiddlewareError:
    return MiddlewareError(
        f"Middleware '{target}' not found",
        middleware=target,
        hint=f"Install a distribution exposing it in the '{DEFAULT_GROUP}' "
        "entry-point group, or register it on the MiddlewareRegistry.",
    )


def _load_failed(target: str, exc: Exception) -> MiddlewareError:
    return MiddlewareError(
        f"Failed to load middleware '{target}': {exc}",
        middleware=target,
    )
