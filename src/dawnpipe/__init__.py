"""dawnpipe: command pipelines for frontend build tooling.

Public API:
    - Context: resolves and runs the pipeline for one command
    - MiddlewareRegistry: named middleware lookup
    - resolve_config / config_scope: configuration
"""

from __future__ import annotations

import logging

from dawnpipe.config import FrozenConfig, Settings, config_scope, resolve_config
from dawnpipe.context import Context
from dawnpipe.errors import (
    ChainTimeoutError,
    ConfigurationError,
    DawnError,
    MiddlewareError,
    RemoteConfigError,
)
from dawnpipe.executor import ChainExecutor, Continuation
from dawnpipe.loader import MiddlewareLoader, PathResolver, RegistryResolver
from dawnpipe.project import LocalConfig
from dawnpipe.registry import MiddlewareRegistry
from dawnpipe.remote import RemoteConfig, StaticRemoteConfig
from dawnpipe.resolver import PipelineResolver, merge_overlay
from dawnpipe.steps import DirectStep, NamedStep, parse_step

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("dawnpipe")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("dawnpipe").addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Entry points
    "Context",
    "resolve_config",
    "config_scope",
    # Components
    "ChainExecutor",
    "Continuation",
    "MiddlewareLoader",
    "PathResolver",
    "RegistryResolver",
    "MiddlewareRegistry",
    "PipelineResolver",
    "merge_overlay",
    "LocalConfig",
    "RemoteConfig",
    "StaticRemoteConfig",
    # Types
    "DirectStep",
    "NamedStep",
    "parse_step",
    "FrozenConfig",
    "Settings",
    # Errors
    "DawnError",
    "ConfigurationError",
    "MiddlewareError",
    "RemoteConfigError",
    "ChainTimeoutError",
]
