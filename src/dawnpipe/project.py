"""Local project configuration and manifest loading.

A project declares its pipelines under a config name (``.dawn`` by default)
next to its ``package.json``, either as a single file::

    .dawn.yml          # {pipe: {dev: [...], build: [...]}}

or as a directory where each file stem becomes a top-level key::

    .dawn/pipe.yml     # {dev: [...], build: [...]}
    .dawn/server.json  # {port: 8001}

Both forms may coexist; directory entries win over the single file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
import tomllib
from typing import Any

import yaml

from dawnpipe.errors import ConfigurationError

log = logging.getLogger(__name__)

CONFIG_SUFFIXES = (".yml", ".yaml", ".json", ".toml")


def _parse_file(path: Path) -> Any:
    try:
        match path.suffix:
            case ".yml" | ".yaml":
                with path.open(encoding="utf-8") as f:
                    return yaml.safe_load(f)
            case ".json":
                with path.open(encoding="utf-8") as f:
                    return json.load(f)
            case ".toml":
                with path.open("rb") as f:
                    return tomllib.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        # json.JSONDecodeError and tomllib.TOMLDecodeError are ValueErrors
        raise ConfigurationError(
            f"Failed to read config file {path}: {e}",
            hint="Fix the file syntax or remove it from the config directory.",
        ) from e
    return None


def _merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


class LocalConfig:
    """Configuration files of one project.

    Args:
        cwd: Project root.
        name: Config name, a directory and/or file stem under ``cwd``.
    """

    def __init__(self, cwd: str | Path, name: str = ".dawn") -> None:
        self.cwd = Path(cwd)
        self.name = name

    @property
    def path(self) -> Path:
        return self.cwd / self.name

    def files(self) -> list[Path]:
        """Config files, single-file forms first, then the directory."""
        found = sorted(p for p in self.cwd.glob(f"{self.name}.*") if p.is_file())
        if self.path.is_dir():
            found += sorted(p for p in self.path.glob("**/*.*") if p.is_file())
        return found

    def exists(self) -> bool:
        files = self.files()
        log.debug("Config files for '%s': %s", self.name, files)
        return bool(files)

    def load(self) -> dict[str, Any]:
        """Merge every supported config file into one mapping.

        Raises:
            ConfigurationError: If a file cannot be parsed, or a single-file
                config is not a mapping.
        """
        merged: dict[str, Any] = {}
        for path in self.files():
            if path.suffix not in CONFIG_SUFFIXES:
                log.debug("Skipping unsupported config file %s", path)
                continue
            data = _parse_file(path)
            if data is None:
                continue
            if self.path in path.parents:
                rel = path.relative_to(self.path).with_suffix("")
                for part in reversed(rel.parts):
                    data = {part: data}
            elif not isinstance(data, dict):
                raise ConfigurationError(
                    f"Config file {path} must contain a mapping, got {type(data).__name__}"
                )
            merged = _merge(merged, data)
        log.debug("Local config keys: %s", sorted(merged))
        return merged

    def pipe(self) -> dict[str, Any]:
        """The ``pipe`` mapping of command name to step list."""
        pipe = self.load().get("pipe") or {}
        if not isinstance(pipe, dict):
            raise ConfigurationError(
                f"'pipe' in {self.name} must map command names to step lists"
            )
        return pipe


def load_project_manifest(cwd: str | Path) -> dict[str, Any]:
    """Parse ``package.json`` under ``cwd``; ``{}`` if it does not exist."""
    pkg_file = Path(cwd) / "package.json"
    log.debug("Project manifest: %s", pkg_file)
    if not pkg_file.is_file():
        return {}
    try:
        data = json.loads(pkg_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to read {pkg_file}: {e}") from e
    return data if isinstance(data, dict) else {}
