"""Remote (shared) configuration sources.

A remote source serves named configuration documents; the pipeline resolver
reads ``get_remote_conf("pipe")`` for its before/after overlay. Remote
configuration is advisory: every failure is logged and degrades to ``{}`` so
a broken or unreachable remote never blocks the local pipeline.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from dawnpipe._singleflight import singleflight_cached
from dawnpipe.errors import RemoteConfigError
from dawnpipe.retry import RETRYABLE_STATUS_CODES, RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Mapping

    from dawnpipe.config import FrozenConfig

log = logging.getLogger(__name__)


class RemoteConfigSource(Protocol):
    """Serves remote configuration documents by key."""

    async def get_remote_conf(self, key: str) -> dict[str, Any]:
        """Return the document for ``key``, ``{}`` when unavailable."""
        ...


class StaticRemoteConfig:
    """In-memory remote source, for offline use and tests."""

    def __init__(self, documents: Mapping[str, Any] | None = None) -> None:
        self._documents = dict(documents or {})

    async def get_remote_conf(self, key: str) -> dict[str, Any]:
        doc = self._documents.get(key)
        # Callers may mutate what they get back
        return copy.deepcopy(doc) if isinstance(doc, dict) else {}


class RemoteConfig:
    """Fetches ``<base_url>/<key>.json`` over HTTP.

    Documents are cached per instance for its lifetime; concurrent requests
    for one key share a single fetch.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._policy = policy or RetryPolicy()
        self._client = client
        self._cache: dict[str, dict[str, Any]] = {}
        self._inflight: dict[str, asyncio.Future[dict[str, Any]]] = {}

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}.json"

    async def get_remote_conf(self, key: str) -> dict[str, Any]:
        try:
            doc = await singleflight_cached(
                key,
                inflight=self._inflight,
                cache=self._cache,
                work=lambda: retry_async(lambda: self._fetch(key), policy=self._policy),
            )
        except (RemoteConfigError, httpx.HTTPError, TimeoutError) as e:
            log.warning("Remote config '%s' unavailable, using empty: %s", key, e)
            return {}
        return copy.deepcopy(doc)

    async def _fetch(self, key: str) -> dict[str, Any]:
        url = self.url_for(key)
        log.debug("Fetching remote config %s", url)
        if self._client is not None:
            response = await self._client.get(url, timeout=self._timeout_s)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.get(url)

        if response.status_code == 404:
            return {}
        if response.is_error:
            raise RemoteConfigError(
                f"GET {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS_CODES,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteConfigError(f"GET {url} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise RemoteConfigError(
                f"GET {url} returned {type(data).__name__}, expected an object"
            )
        return data


def remote_source_from_config(config: FrozenConfig) -> RemoteConfigSource:
    """HTTP source when ``remote_url`` is set, otherwise an empty static one."""
    if not config.remote_url:
        return StaticRemoteConfig()
    return RemoteConfig(
        config.remote_url,
        timeout_s=config.remote_timeout_s,
        policy=RetryPolicy(max_attempts=config.remote_max_attempts),
    )
