"""Streaming proxy service.

Implements the two proxy operations independently of the HTTP server:

- ``fetch``: stream an upstream resource to the caller verbatim
- ``fetch_and_transcode``: stream an upstream resource through the encoder

Output goes to a ``ResponseSink``. Headers are only started once the first
output byte is ready, so any failure before that point can still be answered
with its own status code.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, Optional, Protocol
from urllib.parse import urlsplit

import requests

from .cache import ResponseCache
from .cancel import CancelScope
from .config import Config
from .downloader import abort_response, DOWNLOAD_CHUNK_SIZE, fetch_url
from .exceptions import (
    InvalidRequest,
    MethodNotAllowed,
    PoddleError,
    RequestCancelled,
    UpstreamFailure,
)
from .transcode import Transcoder

logger = logging.getLogger(__name__)

FETCH = "fetch"
FETCH_AND_TRANSCODE = "fetch_and_transcode"
OPERATIONS = (FETCH, FETCH_AND_TRANSCODE)

FetchFunc = Callable[..., Any]


class ResponseSink(Protocol):
    """Destination of a proxied response."""

    @property
    def started(self) -> bool:
        """Whether the status line and headers have been sent."""
        ...

    def start(self, status: int, headers: Dict[str, str]) -> None:
        ...

    def write(self, chunk: bytes) -> None:
        """Write body bytes.

        Raises:
            RequestCancelled: If the client went away
        """
        ...

    def finish(self) -> None:
        """Mark the body complete."""
        ...


def validate_uri(raw_uri: Optional[str]) -> str:
    """Check the ``uri`` request parameter.

    Returns:
        The trimmed URI

    Raises:
        InvalidRequest: If it is missing or not an absolute http(s) URL
    """
    uri = (raw_uri or "").strip()
    if not uri:
        raise InvalidRequest("missing required parameter: uri")
    try:
        parts = urlsplit(uri)
    except ValueError as exc:
        raise InvalidRequest(f"invalid uri {uri!r}: {exc}") from exc
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        raise InvalidRequest(f"uri must be an absolute http or https URL, got {uri!r}")
    return uri


class _UpstreamBody:
    """Iterable over an upstream response body that maps read failures."""

    def __init__(
        self,
        resp: requests.Response,
        uri: str,
        scope: Optional[CancelScope],
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._resp = resp
        self._uri = uri
        self._scope = scope
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._resp.iter_content(chunk_size=self._chunk_size):
                if chunk:
                    yield chunk
        except (requests.RequestException, OSError, ValueError) as exc:
            if self._scope is not None and self._scope.cancelled:
                raise RequestCancelled() from exc
            raise UpstreamFailure(
                self._uri,
                f"reading response failed: {exc}",
                upstream_status=self._resp.status_code,
            ) from exc
        if self._scope is not None and self._scope.cancelled:
            # A cancelled body may end early without an error
            raise RequestCancelled()

    def abort(self) -> None:
        """Unblock a read in progress on another thread; safe from any thread."""
        abort_response(self._resp)

    def close(self) -> None:
        self._resp.close()


class ProxyService:
    """The fetch and fetch-and-transcode operations.

    Example:
        >>> service = ProxyService(Config())
        >>> service.handle("fetch", "GET", "https://example.com/a.mp3", sink)
    """

    def __init__(
        self,
        cfg: Config,
        *,
        transcoder: Optional[Transcoder] = None,
        cache: Optional[ResponseCache] = None,
        fetch: Optional[FetchFunc] = None,
    ) -> None:
        """Initialize the service.

        Args:
            cfg: Configuration (timeouts, user agent, encoder path, cache bounds)
            transcoder: Encoder wrapper; built from ``cfg`` if omitted
            cache: Response cache for ``fetch``; built from ``cfg`` if omitted
                and ``cfg.cache_enabled``
            fetch: Upstream fetch function with the signature of
                ``downloader.fetch_url``
        """
        self.cfg = cfg
        self.transcoder = transcoder if transcoder is not None else Transcoder.from_config(cfg)
        if cache is None and cfg.cache_enabled:
            cache = ResponseCache(
                max_entries=cfg.cache_max_entries,
                max_body_bytes=cfg.cache_max_body_bytes,
                ttl=cfg.cache_ttl,
            )
        self.cache = cache
        self._fetch = fetch if fetch is not None else fetch_url

    def handle(
        self,
        operation: str,
        method: str,
        raw_uri: Optional[str],
        sink: ResponseSink,
        scope: Optional[CancelScope] = None,
    ) -> int:
        """Validate a request and run ``operation``.

        Args:
            operation: "fetch" or "fetch_and_transcode"
            method: HTTP method of the inbound request
            raw_uri: The ``uri`` query parameter as received (None if absent)
            sink: Where the response is written
            scope: Cancellation scope of the request

        Returns:
            The upstream status code

        Raises:
            MethodNotAllowed: For anything but GET
            InvalidRequest: For a missing or unusable uri
            UpstreamFailure: If the upstream fetch fails
            ProcessError: If transcoding fails
            RequestCancelled: On client disconnect or shutdown
        """
        if operation not in OPERATIONS:
            raise ValueError(f"unknown proxy operation: {operation}")
        try:
            if method.upper() != "GET":
                raise MethodNotAllowed(method)
            uri = validate_uri(raw_uri)
            if operation == FETCH:
                status = self.fetch(uri, sink, scope)
            else:
                status = self.fetch_and_transcode(uri, sink, scope)
        except InvalidRequest as exc:
            logger.info("✗ %s %s %s: %s", operation, method, raw_uri or "-", exc.message)
            raise
        except RequestCancelled as exc:
            logger.info("✗ %s %s: %s", operation, raw_uri, exc.message)
            raise
        except PoddleError as exc:
            logger.error("✗ %s %s: %s", operation, raw_uri, exc)
            raise
        logger.info("✓ %s %s %s", operation, uri, status)
        return status

    def _open_upstream(self, uri: str, scope: Optional[CancelScope]) -> requests.Response:
        if scope is not None:
            scope.raise_if_cancelled()
        return self._fetch(uri, self.cfg.user_agent, self.cfg.upstream_timeout, stream=True)

    def fetch(self, uri: str, sink: ResponseSink, scope: Optional[CancelScope] = None) -> int:
        """Stream ``uri`` to ``sink`` verbatim, using the response cache."""
        if self.cache is not None:
            cached = self.cache.get(uri)
            if cached is not None:
                sink.start(200, _content_headers(cached.content_type))
                if cached.body:
                    sink.write(cached.body)
                sink.finish()
                return 200

        resp = self._open_upstream(uri, scope)
        body = _UpstreamBody(resp, uri, scope)
        # Cancellation only aborts the read; the response is closed below
        remove_callback = scope.add_callback(body.abort) if scope is not None else None
        try:
            status = resp.status_code
            content_type = resp.headers.get("Content-Type", "")
            headers = _content_headers(content_type)
            buffer: Optional[bytearray] = None
            if self.cache is not None and status == 200:
                buffer = bytearray()
            for chunk in body:
                if not sink.started:
                    sink.start(200, headers)
                sink.write(chunk)
                if buffer is not None:
                    buffer.extend(chunk)
                    if len(buffer) > self.cache.max_body_bytes:  # type: ignore[union-attr]
                        buffer = None
            if not sink.started:
                sink.start(200, headers)
            sink.finish()
        finally:
            if remove_callback is not None:
                remove_callback()
            resp.close()

        if buffer is not None and self.cache is not None:
            self.cache.put(uri, content_type, bytes(buffer))
        return status

    def fetch_and_transcode(
        self, uri: str, sink: ResponseSink, scope: Optional[CancelScope] = None
    ) -> int:
        """Stream ``uri`` through the encoder to ``sink``; never cached."""
        resp = self._open_upstream(uri, scope)
        status = resp.status_code
        headers = {"Content-Type": self.transcoder.content_type}
        # The transcoder owns the body from here and closes it exactly once
        with self.transcoder.open(_UpstreamBody(resp, uri, scope), scope) as chunks:
            for chunk in chunks:
                if not sink.started:
                    sink.start(200, headers)
                sink.write(chunk)
        if not sink.started:
            sink.start(200, headers)
        sink.finish()
        return status


def _content_headers(content_type: str) -> Dict[str, str]:
    return {"Content-Type": content_type} if content_type else {}
