"""Configuration schema and resolution for dawnpipe.

Resolve-once, freeze-then-flow: settings are resolved at entry points into an
immutable ``FrozenConfig`` that the context and its components read from.

Precedence: defaults < environment (``DN_*``, optionally from ``.env``) <
programmatic overrides.
"""

from __future__ import annotations

from contextlib import contextmanager
import contextvars
from dataclasses import dataclass
from enum import Enum
from functools import cache
import os
from typing import TYPE_CHECKING, Any, Literal, overload

from pydantic import BaseModel, Field, ValidationError, field_validator

from dawnpipe.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Generator, Mapping

ENV_PREFIX = "DN_"

# Steer resolution but are not settings fields
_META_ENV_FIELDS = {"env", "cmd", "debug"}

# --- Schema ---


class Settings(BaseModel):
    """Pydantic schema holding every configuration field and its default."""

    # Name of the local config directory / file stem under the project root
    config_name: str = Field(default=".dawn", min_length=1)
    default_command: str = Field(default="dev", min_length=1)
    init_command: str = Field(default="init", min_length=1)

    remote_url: str | None = Field(default=None)
    remote_timeout_s: float = Field(default=10.0, gt=0)
    remote_max_attempts: int = Field(default=2, ge=1)

    # None waits for the chain indefinitely
    exec_timeout: float | None = Field(default=None)
    entry_point_group: str = Field(default="dawnpipe.middleware", min_length=1)

    model_config = {"extra": "allow"}

    @field_validator("config_name", "default_command", "init_command", mode="before")
    @classmethod
    def strip_names(cls, v: Any) -> Any:
        """Trim surrounding whitespace on names."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("remote_url", mode="before")
    @classmethod
    def normalize_remote_url(cls, v: Any) -> Any:
        """Map empty strings to None and drop a trailing slash."""
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("exec_timeout", mode="before")
    @classmethod
    def normalize_exec_timeout(cls, v: Any) -> Any:
        """Treat empty and non-positive timeouts as disabled."""
        if v in ("", None):
            return None
        try:
            fv = float(v)
        except (TypeError, ValueError):
            return v
        return fv if fv > 0 else None


@cache
def _default_settings() -> dict[str, Any]:
    return Settings().model_dump()


# --- Immutable runtime payload ---


@dataclass(frozen=True)
class FrozenConfig:
    """Validated configuration passed to the context and its components."""

    config_name: str
    default_command: str
    init_command: str
    remote_url: str | None
    remote_timeout_s: float
    remote_max_attempts: int
    exec_timeout: float | None
    entry_point_group: str
    extra: Mapping[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        """Return a known field or an extra value by name."""
        if key in self.__dataclass_fields__ and key != "extra":
            return getattr(self, key)
        return self.extra.get(key, default)


# --- Audit types ---


class Origin(str, Enum):
    """Source origin for configuration field values."""

    DEFAULT = "default"
    ENV = "env"
    OVERRIDES = "overrides"


SourceMap = dict[str, Origin]

# --- Ambient scope ---

_AMBIENT: contextvars.ContextVar[FrozenConfig | None] = contextvars.ContextVar(
    "dawnpipe_ambient_config", default=None
)

_DOTENV_LOADED: bool = False


def _try_load_dotenv() -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    from dotenv import load_dotenv

    load_dotenv()
    _DOTENV_LOADED = True


def load_env() -> dict[str, Any]:
    """Read ``DN_*`` variables into settings field names.

    Values stay strings; pydantic coerces them against the schema.
    """
    config: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if not field_name or field_name in _META_ENV_FIELDS:
            continue
        config[field_name] = value
    return config


@overload
def resolve_config(
    overrides: Mapping[str, Any] | None = ...,
    *,
    explain: Literal[True],
) -> tuple[FrozenConfig, SourceMap]: ...


@overload
def resolve_config(
    overrides: Mapping[str, Any] | None = ...,
    *,
    explain: Literal[False] = ...,
) -> FrozenConfig: ...


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    explain: bool = False,
) -> FrozenConfig | tuple[FrozenConfig, SourceMap]:
    """Resolve configuration from all sources into a FrozenConfig.

    Inside a ``config_scope`` without overrides, the scoped config is
    returned as-is.

    Args:
        overrides: Programmatic configuration overrides.
        explain: If True, also return the origin of each field.

    Raises:
        ConfigurationError: If validation fails.
    """
    ambient = _AMBIENT.get()
    if ambient is not None and not overrides and not explain:
        return ambient

    _try_load_dotenv()

    merged: dict[str, Any] = dict(_default_settings())
    sources: SourceMap = dict.fromkeys(merged, Origin.DEFAULT)
    for origin, layer in ((Origin.ENV, load_env()), (Origin.OVERRIDES, overrides or {})):
        for k, v in layer.items():
            merged[k] = v
            sources[k] = origin

    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ())) or "settings"
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[13:]
        raise ConfigurationError(
            f"Configuration validation failed for '{field}': {msg}",
            hint=f"Check {ENV_PREFIX}{field.upper()} or the overrides passed in.",
        ) from e

    frozen = _freeze(settings, merged)
    return (frozen, sources) if explain else frozen


def _freeze(settings: Settings, merged: Mapping[str, Any]) -> FrozenConfig:
    known = set(Settings.model_fields)
    return FrozenConfig(
        config_name=settings.config_name,
        default_command=settings.default_command,
        init_command=settings.init_command,
        remote_url=settings.remote_url,
        remote_timeout_s=settings.remote_timeout_s,
        remote_max_attempts=settings.remote_max_attempts,
        exec_timeout=settings.exec_timeout,
        entry_point_group=settings.entry_point_group,
        extra={k: v for k, v in merged.items() if k not in known},
    )


@contextmanager
def config_scope(
    cfg_or_overrides: Mapping[str, Any] | FrozenConfig | None = None,
    **overrides: object,
) -> Generator[FrozenConfig]:
    """Make a configuration ambient for the duration of the block.

    Example:
        with config_scope(default_command="build"):
            ctx = Context()
    """
    if isinstance(cfg_or_overrides, FrozenConfig):
        cfg = cfg_or_overrides
    else:
        cfg = resolve_config({**(cfg_or_overrides or {}), **overrides})
    token = _AMBIENT.set(cfg)
    try:
        yield cfg
    finally:
        _AMBIENT.reset(token)


def to_dict(cfg: FrozenConfig) -> dict[str, Any]:
    """Plain dict view for structured logging and the CLI."""
    return {
        "config_name": cfg.config_name,
        "default_command": cfg.default_command,
        "init_command": cfg.init_command,
        "remote_url": cfg.remote_url,
        "remote_timeout_s": cfg.remote_timeout_s,
        "remote_max_attempts": cfg.remote_max_attempts,
        "exec_timeout": cfg.exec_timeout,
        "entry_point_group": cfg.entry_point_group,
        "extra": dict(cfg.extra),
    }


def audit_lines(sources: SourceMap) -> list[str]:
    """Human-readable origin per field, known fields first."""
    known = [k for k in Settings.model_fields if k in sources]
    extras = sorted(k for k in sources if k not in Settings.model_fields)
    lines = []
    for field in known + extras:
        origin = sources[field]
        label = (
            f"env:{ENV_PREFIX}{field.upper()}" if origin is Origin.ENV else origin.value
        )
        lines.append(f"{field}: {label}")
    return lines
