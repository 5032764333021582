"""HTTP session management and upstream fetch helpers for poddle."""

from __future__ import annotations

import atexit
import logging
import socket
import threading
import weakref
from typing import cast, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.utils import requote_uri

from .exceptions import UpstreamFailure

logger = logging.getLogger(__name__)

# Track if we've suppressed urllib3 logs (lazy initialization)
_urllib3_logs_suppressed = False


def _suppress_urllib3_debug_logs() -> None:
    """Suppress verbose urllib3 debug logs when root logger is DEBUG.

    This is called lazily when the downloader is first used, ensuring the root
    logger is already configured.
    """
    global _urllib3_logs_suppressed
    if _urllib3_logs_suppressed:
        return

    root_logger = logging.getLogger()
    root_level = root_logger.level if root_logger.level else logging.INFO
    if root_level <= logging.DEBUG:
        for logger_name in ("urllib3", "urllib3.connectionpool", "urllib3.connection"):
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    _urllib3_logs_suppressed = True


DOWNLOAD_CHUNK_SIZE = 1024 * 32
# Upstream fetches are never retried: one failure is surfaced immediately
HTTP_MAX_RETRIES = 0

_THREAD_LOCAL = threading.local()
# Weak so sessions of finished request threads can be collected
_SESSION_REGISTRY: "weakref.WeakSet[requests.Session]" = weakref.WeakSet()
_SESSION_REGISTRY_LOCK = threading.Lock()


def normalize_url(url: str) -> str:
    """Normalize URLs while preserving already-encoded segments."""
    normalized = requote_uri(url)
    if normalized != url:
        logger.debug("Normalized URL %s -> %s", url, normalized)
    return cast(str, normalized)


def _configure_http_session(session: requests.Session) -> None:
    """Attach non-retrying HTTP adapters to a session."""
    adapter = HTTPAdapter(max_retries=HTTP_MAX_RETRIES)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    logger.debug("Configured HTTP session %s", hex(id(session)))


def get_http_session() -> requests.Session:
    """Return this thread's HTTP session, creating it on first use."""
    _suppress_urllib3_debug_logs()

    session = getattr(_THREAD_LOCAL, "session", None)
    if session is None:
        session = requests.Session()
        _configure_http_session(session)
        setattr(_THREAD_LOCAL, "session", session)
        with _SESSION_REGISTRY_LOCK:
            _SESSION_REGISTRY.add(session)
        logger.debug("Created new thread-local HTTP session %s", hex(id(session)))
    return session


def _close_all_sessions() -> None:
    with _SESSION_REGISTRY_LOCK:
        sessions = list(_SESSION_REGISTRY)
    for session in sessions:
        try:
            session.close()
        # Best-effort cleanup; ignore shutdown errors
        except Exception:  # pragma: no cover  # nosec B110
            pass


atexit.register(_close_all_sessions)


def fetch_url(
    url: str, user_agent: str, timeout: float, *, stream: bool = False
) -> requests.Response:
    """Execute an HTTP GET request and return the response if successful.

    With ``stream=True`` the caller owns the returned response and must close
    it once the body has been consumed.

    Args:
        url: Absolute upstream URL
        user_agent: User-Agent header value
        timeout: Connect and read timeout in seconds
        stream: Defer reading the body

    Returns:
        The upstream response with a 2xx status

    Raises:
        UpstreamFailure: On transport errors or a non-2xx status
    """
    normalized_url = normalize_url(url)
    headers = {"User-Agent": user_agent}
    session = get_http_session()
    logger.debug(
        "Opening HTTP connection to %s (timeout=%s, stream=%s)", normalized_url, timeout, stream
    )
    try:
        resp = session.get(normalized_url, headers=headers, timeout=timeout, stream=stream)
    except requests.RequestException as exc:
        raise UpstreamFailure(url, str(exc)) from exc

    if not resp.ok:
        status = resp.status_code
        reason = f"{status} {resp.reason or ''}".strip()
        resp.close()
        raise UpstreamFailure(url, f"upstream answered {reason}", upstream_status=status)

    logger.debug(
        "HTTP request to %s succeeded with status %s and Content-Length=%s",
        normalized_url,
        resp.status_code,
        resp.headers.get("Content-Length"),
    )
    return resp


def http_get(url: str, user_agent: str, timeout: float) -> Tuple[bytes, Optional[str]]:
    """Fetch a URL and return its content and Content-Type header.

    Raises:
        UpstreamFailure: If the request fails or the body cannot be read
    """
    resp = fetch_url(url, user_agent, timeout, stream=True)
    try:
        ctype = resp.headers.get("Content-Type")
        body = b"".join(resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE))
        logger.debug("Read %d bytes from %s (content-type=%s)", len(body), url, ctype)
        return body, ctype
    except (requests.RequestException, OSError) as exc:
        raise UpstreamFailure(url, f"reading response failed: {exc}") from exc
    finally:
        resp.close()


def _response_socket(resp: requests.Response) -> Optional[socket.socket]:
    raw = getattr(resp, "raw", None)
    # urllib3 keeps the connection on the response until the body is released
    sock = getattr(getattr(raw, "_connection", None), "sock", None)
    if sock is None:
        # http.client.HTTPResponse -> socket.SocketIO -> socket
        fp = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(fp, "raw", None), "_sock", None)
    return sock if isinstance(sock, socket.socket) else None


def abort_response(resp: requests.Response) -> bool:
    """Unblock any thread reading ``resp``'s body, without closing it.

    ``Response.close()`` waits for a read in progress on another thread, which
    can take the whole read timeout when the upstream stalls. Shutting down the
    socket instead makes the pending read return immediately; the reading
    thread then sees a truncated body and closes the response itself.

    Returns:
        True if an open socket was shut down
    """
    sock = _response_socket(resp)
    if sock is None:
        return False
    try:
        # The plain socket method; SSLSocket.shutdown would also drop its SSL state
        socket.socket.shutdown(sock, socket.SHUT_RDWR)
    except OSError:
        return False  # already closed
    logger.debug("Aborted upstream connection %s", sock)
    return True
