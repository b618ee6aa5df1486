"""The per-invocation context that resolves and runs a command's pipeline.

Example:
    ctx = Context("build")
    result = await ctx.run()

Every step receives this object as ``ctx``. It is shared, mutable state:
steps may read ``cmd``/``cwd``/``project``, set attributes for later steps,
and talk to each other through events. Only one step is active at a time, so
no locking is involved.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from dawnpipe.config import FrozenConfig, resolve_config
from dawnpipe.events import EventEmitter
from dawnpipe.executor import ChainExecutor
from dawnpipe.loader import MiddlewareLoader
from dawnpipe.project import LocalConfig, load_project_manifest
from dawnpipe.registry import MiddlewareRegistry
from dawnpipe.remote import remote_source_from_config
from dawnpipe.resolver import PipelineResolver
from dawnpipe.templating import parse_opts

if TYPE_CHECKING:
    from collections.abc import Mapping

    from dawnpipe.remote import RemoteConfigSource
    from dawnpipe.steps import Handler

log = logging.getLogger(__name__)


class Context(EventEmitter):
    """Orchestrates pipeline resolution and execution for one command.

    Args:
        cmd: Command name; defaults to ``config.default_command``.
        pipeline: Explicit steps. When given, ``run`` skips resolution.
        cwd: Project root; defaults to the process working directory.
        config: Resolved configuration; defaults to ``resolve_config()``.
        registry: Middleware registry for named steps.
        remote: Remote configuration source; defaults to the one described
            by ``config.remote_url``.
    """

    # Trace namespace; subclasses may set their own
    id: ClassVar[str | None] = None

    def __init__(
        self,
        cmd: str | None = None,
        *,
        pipeline: list[Any] | None = None,
        cwd: str | Path | None = None,
        config: FrozenConfig | None = None,
        registry: MiddlewareRegistry | None = None,
        remote: RemoteConfigSource | None = None,
    ) -> None:
        super().__init__()
        self.config = config if config is not None else resolve_config()
        self.cwd = Path(cwd if cwd is not None else os.getcwd()).resolve()
        self.cmd = cmd or self.config.default_command
        self.pipeline: list[Any] = list(pipeline or [])
        self.console = logging.getLogger("dawnpipe.console")
        self.conf = LocalConfig(self.cwd, self.config.config_name)
        self.project: dict[str, Any] = load_project_manifest(self.cwd)

        self.registry = registry or MiddlewareRegistry(self.config.entry_point_group)
        self.remote = remote or remote_source_from_config(self.config)
        self.loader = MiddlewareLoader(self, registry=self.registry, cwd=self.cwd)
        self.resolver = PipelineResolver(
            self.conf, self.remote, default_command=self.config.default_command
        )
        self.executor = ChainExecutor(self, self.loader)

    @property
    def config_name(self) -> str:
        return self.config.config_name

    @property
    def config_path(self) -> Path:
        return self.conf.path

    def config_exists(self) -> bool:
        """Whether the project has any local configuration files."""
        self.trace("config name %s", self.config_name)
        return self.conf.exists()

    def load_local_configs(self) -> dict[str, Any]:
        configs = self.conf.load()
        self.trace("local config keys %s", sorted(configs))
        return configs

    async def load_pipeline(self, cmd: str | None = None) -> list[Any]:
        """Resolve the merged step list for ``cmd`` (default: ``self.cmd``)."""
        return await self.resolver.resolve(cmd or self.cmd)

    async def load(self, step: Any) -> Handler:
        """Resolve one step to its handler."""
        return await self.loader.load(step)

    def parse_opts(self, options: Mapping[str, Any]) -> dict[str, Any]:
        """Render ``${...}`` references in ``options`` against this context."""
        return parse_opts(options, self)

    async def exec(
        self,
        steps: Any,
        initial_args: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Run ``steps`` (a list or a single step) without touching config."""
        if timeout is None:
            timeout = self.config.exec_timeout
        return await self.executor.execute(steps, initial_args, timeout=timeout)

    async def run(self, *, timeout: float | None = None) -> Any:
        """Resolve the pipeline for ``cmd`` if none was given, then run it."""
        if not self.pipeline:
            self.pipeline = await self.load_pipeline()
        log.debug("Pipeline for '%s': %r", self.cmd, self.pipeline)

        if self.cmd == self.config.init_command and not self.pipeline:
            self.console.warning("Unable to process command: %s", self.cmd)
        return await self.exec(self.pipeline, timeout=timeout)

    def trace(self, fmt: str, *args: Any) -> None:
        """Debug output under ``dawnpipe.context.<namespace>``."""
        namespace = type(self).id or "anonymous"
        logging.getLogger(f"dawnpipe.context.{namespace}").debug(fmt, *args)
