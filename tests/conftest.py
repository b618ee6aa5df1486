"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and small builders for
contexts and recording middleware. Fixtures marked autouse apply everywhere.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from dawnpipe.config import resolve_config
from dawnpipe.context import Context
from dawnpipe.registry import MiddlewareRegistry
from dawnpipe.remote import StaticRemoteConfig

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class Recorder:
    """Collects (step, args) events so tests can assert order and counts."""

    events: list[tuple[str, Any]] = field(default_factory=list)

    def __call__(self, label: str, value: Any = None) -> None:
        self.events.append((label, value))

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self.events]

    def passthrough(self, label: str, transform: Any = None) -> Any:
        """Handler factory result that records and forwards args."""

        async def handler(next_, ctx, args):
            self(label, args)
            return await next_(transform(args) if transform else args)

        handler.__name__ = label
        return handler


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_dawn_env(monkeypatch):
    """Clear DN_* variables so host settings never leak into tests."""
    for key in list(os.environ):
        if key.startswith("DN_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def registry() -> MiddlewareRegistry:
    return MiddlewareRegistry()


@pytest.fixture
def make_context(tmp_path, registry):
    """Build a Context rooted in ``tmp_path`` with an in-memory remote."""

    def _make(
        cmd: str | None = None,
        *,
        remote: dict[str, Any] | None = None,
        overrides: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Context:
        return Context(
            cmd,
            cwd=kwargs.pop("cwd", tmp_path),
            config=resolve_config(overrides or {}),
            registry=registry,
            remote=StaticRemoteConfig(remote),
            **kwargs,
        )

    return _make
