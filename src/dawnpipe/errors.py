"""Exception hierarchy for dawnpipe."""

from __future__ import annotations


class DawnError(Exception):
    """Base exception for all dawnpipe errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(DawnError):
    """Configuration is malformed, unreadable, or failed validation."""


class MiddlewareError(DawnError):
    """A pipeline step could not be resolved to a callable middleware."""

    def __init__(
        self,
        message: str,
        *,
        middleware: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.middleware = middleware


class RemoteConfigError(DawnError):
    """Fetching the remote configuration overlay failed.

    Raised inside the remote source only; ``get_remote_conf`` degrades to an
    empty mapping instead of letting this escape into pipeline resolution.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.retryable = retryable


class ChainTimeoutError(DawnError, TimeoutError):
    """A pipeline run did not settle within its timeout."""

    def __init__(self, timeout: float, *, hint: str | None = None) -> None:
        super().__init__(
            f"Pipeline did not settle within {timeout:g}s",
            hint=hint
            or "A step may never call next() or return; check the last step logged.",
        )
        self.timeout = timeout
