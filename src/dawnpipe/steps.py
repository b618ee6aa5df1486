"""Pipeline step descriptors.

A raw pipeline item is either a bare callable handler or a mapping with a
``name`` plus arbitrary params. ``parse_step`` turns raw items into the tagged
variant used by the loader and executor:

- ``DirectStep``: wraps a callable; no templating, no resolution.
- ``NamedStep``: a registry name (or module ``location``) plus params.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from dawnpipe.errors import ConfigurationError

# Fields that shape resolution and are never templated
STRUCTURAL_FIELDS = frozenset({"name", "location", "force"})

Handler: TypeAlias = Callable[..., Any]


@dataclass(frozen=True)
class DirectStep:
    """A step that is already a handler."""

    handler: Handler

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", type(self.handler).__name__)


@dataclass(frozen=True)
class NamedStep:
    """A step resolved lazily through the registry or a file location."""

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    location: str | None = None
    force: bool = False

    @property
    def raw(self) -> dict[str, Any]:
        """The mapping shape this step was declared with."""
        out: dict[str, Any] = {"name": self.name, **self.params}
        if self.location is not None:
            out["location"] = self.location
        if self.force:
            out["force"] = True
        return out


Step: TypeAlias = DirectStep | NamedStep


def parse_step(item: Any) -> Step:
    """Convert a raw pipeline item into a step descriptor.

    Raises:
        ConfigurationError: If ``item`` is neither callable nor a mapping with
            a non-empty string ``name``.
    """
    if isinstance(item, DirectStep | NamedStep):
        return item
    if callable(item):
        return DirectStep(item)
    if not isinstance(item, Mapping):
        raise ConfigurationError(
            f"Invalid pipeline config: expected a mapping or callable, got {type(item).__name__}",
            hint="Declare steps as {name: <middleware>, ...params}.",
        )
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(
            "Invalid pipeline config: step is missing 'name'",
            hint=f"Offending step: {dict(item)!r}",
        )
    location = item.get("location")
    if location is not None and not isinstance(location, str):
        raise ConfigurationError(
            f"Invalid pipeline config: 'location' of step '{name}' must be a string"
        )
    return NamedStep(
        name=name,
        params={k: v for k, v in item.items() if k not in STRUCTURAL_FIELDS},
        location=location or None,
        force=bool(item.get("force", False)),
    )


def parse_steps(items: Any) -> list[Step]:
    """Parse a list of raw items (or a single item) in order."""
    if isinstance(items, list | tuple):
        return [parse_step(i) for i in items]
    return [parse_step(items)]


def step_name(item: Any) -> str | None:
    """Name used for merge deduplication; callables are unnamed."""
    if isinstance(item, NamedStep):
        return item.name
    if isinstance(item, Mapping):
        name = item.get("name")
        return name if isinstance(name, str) else None
    return None


def is_forced(item: Any) -> bool:
    if isinstance(item, NamedStep):
        return item.force
    if isinstance(item, Mapping):
        return bool(item.get("force", False))
    return False
