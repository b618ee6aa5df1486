"""Pipeline resolution: local steps plus the remote before/after overlay.

The remote ``pipe`` document injects steps around a project's own pipeline::

    {"before": {"build": [{"name": "lint"}]},
     "after":  {"build": [{"name": "report", "force": true}]}}

A remote step whose ``name`` already appears in the pipeline is dropped
unless it carries ``force``. All ordering decisions happen here; the executor
runs the resulting list as-is.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from dawnpipe.steps import is_forced, step_name

if TYPE_CHECKING:
    from collections.abc import Mapping

    from dawnpipe.project import LocalConfig
    from dawnpipe.remote import RemoteConfigSource

log = logging.getLogger(__name__)


def _overlay_list(section: Any, cmd: str) -> list[Any]:
    if not isinstance(section, dict):
        return []
    items = section.get(cmd)
    return list(items) if isinstance(items, list) else []


def _is_duplicate(pipeline: list[Any], item: Any) -> bool:
    if is_forced(item):
        return False
    name = step_name(item)
    return name is not None and any(step_name(i) == name for i in pipeline)


def merge_overlay(
    cmd: str, pipeline: list[Any], overlay: Mapping[str, Any]
) -> list[Any]:
    """Return ``pipeline`` with the overlay's steps for ``cmd`` merged in.

    ``before`` steps keep their declared order at the head; ``after`` steps
    keep theirs at the tail. Neither input is mutated.
    """
    merged = list(pipeline)

    # Reverse + insert(0) leaves the head in declared order
    for item in reversed(_overlay_list(overlay.get("before"), cmd)):
        if _is_duplicate(merged, item):
            log.debug("pipe.before.duplicate: %r", item)
            continue
        merged.insert(0, item)

    for item in _overlay_list(overlay.get("after"), cmd):
        if _is_duplicate(merged, item):
            log.debug("pipe.after.duplicate: %r", item)
            continue
        merged.append(item)

    return merged


class PipelineResolver:
    """Builds the step list for a command."""

    def __init__(
        self,
        local: LocalConfig,
        remote: RemoteConfigSource,
        *,
        default_command: str = "dev",
    ) -> None:
        self.local = local
        self.remote = remote
        self.default_command = default_command

    def local_pipeline(self, cmd: str) -> list[Any]:
        if not self.local.exists():
            log.debug("No local config '%s'; local pipeline is empty", self.local.name)
            return []
        pipeline = self.local.pipe().get(cmd) or []
        if not isinstance(pipeline, list):
            pipeline = [pipeline]
        log.debug("Local pipeline for '%s': %r", cmd, pipeline)
        return list(pipeline)

    async def resolve(self, cmd: str | None = None) -> list[Any]:
        """Return the merged, unresolved step list for ``cmd``."""
        cmd = cmd or self.default_command
        pipeline = self.local_pipeline(cmd)
        try:
            overlay = await self.remote.get_remote_conf("pipe")
        except Exception:
            log.warning("Remote pipe overlay failed; using local pipeline only", exc_info=True)
            overlay = {}
        if not isinstance(overlay, dict):
            overlay = {}
        log.debug(
            "Remote overlay for '%s': before=%r after=%r",
            cmd,
            _overlay_list(overlay.get("before"), cmd),
            _overlay_list(overlay.get("after"), cmd),
        )
        return merge_overlay(cmd, pipeline, overlay)
