"""
Background download of remote (``http...``) schema references.

The resolver never waits on the network: it asks the fetcher to download a
URI and carries on with a placeholder.  When the download finishes the
document is installed in the same cache the resolver reads, keyed by the
URI.  While a download is pending, further requests for the same URI reuse
the pending future instead of issuing a second request.

Usage::

    from schemaform.remote import RemoteSchemaFetcher
    fetcher = RemoteSchemaFetcher(timeout=10)
    resolve_schema_reference({"$ref": uri}, schema, cache, fetcher=fetcher)
    fetcher.fetch(uri, cache).result()   # block until it has arrived
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Iterable, MutableMapping, Optional
from urllib.parse import urlparse

import requests
from django.conf import settings

from schemaform.references import CacheEntry

logger = logging.getLogger(__name__)


def _setting(name: str, default: Any) -> Any:
    """Read a Django setting, falling back when settings are not configured."""
    if not settings.configured:
        return default
    return getattr(settings, name, default)


class RemoteSchemaError(Exception):
    """Raised when a remote schema cannot be downloaded or decoded."""

    def __init__(self, uri: str, status_code: Optional[int] = None, detail: Any = None):
        self.uri = uri
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Remote schema {uri} failed ({status_code}): {detail}")


class RemoteSchemaFetcher:
    """Download remote schemas on a thread pool and install them in a cache.

    *allowed_hosts* limits which hosts may be contacted: ``None`` allows any
    host, otherwise the URI's hostname must be listed (``"*"`` matches all).
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float | None = None,
        max_workers: int | None = None,
        enabled: bool | None = None,
        allowed_hosts: Iterable[str] | None = None,
    ):
        self.timeout = timeout if timeout is not None else _setting("SCHEMAFORM_REMOTE_TIMEOUT", 30)
        self.enabled = enabled if enabled is not None else _setting("SCHEMAFORM_REMOTE_ENABLED", True)
        self.allowed_hosts = None if allowed_hosts is None else {host.lower() for host in allowed_hosts}
        workers = max_workers or _setting("SCHEMAFORM_REMOTE_MAX_WORKERS", 4)

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/schema+json, application/json"})
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="schemaform-fetch")
        self._pending: Dict[str, Future] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _download(self, uri: str) -> Any:
        try:
            response = self.session.get(uri, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteSchemaError(uri, detail=str(exc)) from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteSchemaError(uri, response.status_code, response.text)
        try:
            return response.json()
        except (ValueError, requests.JSONDecodeError) as exc:
            raise RemoteSchemaError(uri, response.status_code, "response is not JSON") from exc

    def _relay(self, uri: str, cache: MutableMapping[str, Any], future: Future, done: Future) -> None:
        exc = done.exception()
        if exc is not None:
            self._finish(uri, cache, future, error=exc)
        else:
            self._finish(uri, cache, future, result=done.result())

    def _finish(
        self,
        uri: str,
        cache: MutableMapping[str, Any],
        future: Future,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        # Cache and pending map are settled before waiters are released.
        if error is None:
            cache[uri] = CacheEntry(schema=result)
        with self._lock:
            self._pending.pop(uri, None)
        if error is not None:
            logger.error("Fetching remote schema %s failed: %s", uri, error)
            future.set_exception(error)
            return
        logger.info("Installed remote schema %s", uri)
        future.set_result(result)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_allowed(self, uri: str) -> bool:
        if self.allowed_hosts is None or "*" in self.allowed_hosts:
            return True
        hostname = urlparse(uri).hostname
        return hostname is not None and hostname.lower() in self.allowed_hosts

    def is_pending(self, uri: str) -> bool:
        with self._lock:
            return uri in self._pending

    def fetch(self, uri: str, cache: MutableMapping[str, Any]) -> Future:
        """Start downloading *uri* into *cache*, or return the download in flight.

        The returned future resolves to the document, or raises
        :class:`RemoteSchemaError`.  By the time it completes the cache has
        been updated (on success) and the pending flag cleared either way.
        """
        with self._lock:
            pending = self._pending.get(uri)
            if pending is not None:
                return pending
            future: Future = Future()
            self._pending[uri] = future

        if not self.enabled:
            self._finish(uri, cache, future, error=RemoteSchemaError(uri, detail="remote references are disabled"))
            return future
        if not self.is_allowed(uri):
            self._finish(uri, cache, future, error=RemoteSchemaError(uri, detail="host is not allowed"))
            return future

        logger.info("Fetching remote schema %s", uri)
        download = self._executor.submit(self._download, uri)
        download.add_done_callback(lambda done: self._relay(uri, cache, future, done))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
