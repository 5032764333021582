"""HTTP server exposing the streaming proxy.

Routes:
    /get?uri=<url>      -> ProxyService.fetch
    /convert?uri=<url>  -> ProxyService.fetch_and_transcode

Every connection is served on its own thread. Responses are streamed with
chunked transfer encoding; when a request fails after output started the
connection is dropped without the terminating chunk so the client can tell
the body is incomplete.
"""

from __future__ import annotations

import logging
import signal
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Set, Tuple
from urllib.parse import parse_qs, urlsplit

from . import __version__
from .cancel import InflightRequests
from .config import Config
from .exceptions import PoddleError, RequestCancelled
from .proxy import FETCH, FETCH_AND_TRANSCODE, ProxyService

logger = logging.getLogger(__name__)

ROUTES = {
    "/get": FETCH,
    "/convert": FETCH_AND_TRANSCODE,
}
CORS_ALLOW_METHODS = "POST,GET,OPTIONS"
CORS_ALLOW_HEADERS = (
    "Accept,Content-Type,Content-Length,Accept-Encoding,X-CSRF-Token,Authorization"
)
# Grace period for force-closed requests to unwind after the drain deadline
FORCE_CLOSE_GRACE_SECONDS = 2.0


def _socket_timeout(seconds: float) -> Optional[float]:
    # 0 would make the socket non-blocking; treat it as "no timeout"
    return seconds if seconds > 0 else None


class _StreamingSink:
    """ResponseSink writing to a request handler's socket."""

    def __init__(self, handler: "ProxyRequestHandler") -> None:
        self._handler = handler
        self._started = False
        self._chunked = handler.request_version != "HTTP/1.0"

    @property
    def started(self) -> bool:
        return self._started

    def start(self, status: int, headers: Dict[str, str]) -> None:
        handler = self._handler
        handler.send_response(status)
        for name, value in headers.items():
            handler.send_header(name, value)
        if self._chunked:
            handler.send_header("Transfer-Encoding", "chunked")
        else:
            # HTTP/1.0: the end of the body is signalled by closing the connection
            handler.close_connection = True
        handler.send_cors_headers()
        self._started = True
        self._send(handler.end_headers)

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        if self._chunked:
            data = b"%x\r\n%s\r\n" % (len(chunk), chunk)
        else:
            data = chunk
        self._send(lambda: self._handler.wfile.write(data))

    def finish(self) -> None:
        if self._chunked:
            self._send(lambda: self._handler.wfile.write(b"0\r\n\r\n"))
        self._send(self._handler.wfile.flush)

    @staticmethod
    def _send(op: Any) -> None:
        try:
            op()
        except OSError as exc:
            raise RequestCancelled(f"client disconnected: {exc}") from exc


class ProxyRequestHandler(BaseHTTPRequestHandler):
    """Request handler for the proxy routes."""

    protocol_version = "HTTP/1.1"
    server_version = f"poddle/{__version__}"
    server: "ProxyHTTPServer"

    def setup(self) -> None:
        super().setup()
        self.server.track_connection(self.connection)

    def finish(self) -> None:
        try:
            super().finish()
        finally:
            self.server.untrack_connection(self.connection)

    def handle_one_request(self) -> None:
        # Waiting for the next request on a keep-alive connection
        self.connection.settimeout(_socket_timeout(self.server.cfg.idle_timeout))
        super().handle_one_request()

    def parse_request(self) -> bool:
        self.connection.settimeout(_socket_timeout(self.server.cfg.read_timeout))
        return super().parse_request()

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)

    def log_error(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.info("%s - %s", self.address_string(), format % args)

    def _operation(self) -> Optional[str]:
        path = urlsplit(self.path).path
        if len(path) > 1:
            path = path.rstrip("/")
        return ROUTES.get(path)

    def send_cors_headers(self, preflight: bool = False) -> None:
        origin = self.headers.get("Origin")
        if origin:
            self.send_header("Access-Control-Allow-Origin", origin)
            self.send_header("Vary", "Origin")
        if origin or preflight:
            self.send_header("Access-Control-Allow-Methods", CORS_ALLOW_METHODS)
            self.send_header("Access-Control-Allow-Headers", CORS_ALLOW_HEADERS)

    def send_plain(self, status: int, message: str) -> None:
        """Send a complete text/plain response."""
        body = f"{message}\n".encode("utf-8")
        try:
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("X-Content-Type-Options", "nosniff")
            self.send_header("Content-Length", str(len(body)))
            self.send_cors_headers()
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(body)
        except OSError as exc:
            logger.info("Could not send %d response: %s", status, exc)
            self.close_connection = True

    def do_OPTIONS(self) -> None:
        """Answer a CORS preflight without touching the proxy."""
        if self._operation() is None:
            self.send_plain(404, "not found")
            return
        self.send_response(200)
        self.send_cors_headers(preflight=True)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _dispatch(self) -> None:
        operation = self._operation()
        if self.command != "GET" and self.headers.get("Content-Length", "0") != "0":
            # The body is never read, so the connection cannot be reused
            self.close_connection = True
        if operation is None:
            self.send_plain(404, "not found")
            return

        params = parse_qs(urlsplit(self.path).query, keep_blank_values=True)
        raw_uri = params.get("uri", [None])[0]
        sink = _StreamingSink(self)
        inflight = self.server.inflight
        with inflight.track(f"{self.command} {self.path}") as scope:
            remove_callback = scope.add_callback(self._abort_connection)
            try:
                self.connection.settimeout(_socket_timeout(self.server.cfg.write_timeout))
                self.server.service.handle(operation, self.command, raw_uri, sink, scope)
            except PoddleError as exc:
                self._fail(sink, exc)
            except Exception:  # noqa: BLE001
                logger.exception("Unhandled error serving %s %s", self.command, self.path)
                self._fail(sink, PoddleError("internal server error", component="server"))
            finally:
                remove_callback()

    def _fail(self, sink: _StreamingSink, exc: PoddleError) -> None:
        if sink.started or isinstance(exc, RequestCancelled):
            # Drop the connection; an unterminated chunked body marks the failure
            self.close_connection = True
            return
        self.send_plain(exc.status_code, exc.message)

    def _abort_connection(self) -> None:
        try:
            self.connection.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed

    do_GET = _dispatch

    def __getattr__(self, name: str) -> Any:
        # Any other method (POST, TRACE, PROPFIND, ...) is answered by the
        # proxy with 405 rather than by BaseHTTPRequestHandler with 501
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)


class ProxyHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server carrying the proxy's shared state."""

    daemon_threads = True
    # Shutdown drains in-flight requests itself and then closes idle connections
    block_on_close = False

    def __init__(
        self,
        address: Tuple[str, int],
        cfg: Config,
        service: ProxyService,
        inflight: InflightRequests,
    ) -> None:
        self.cfg = cfg
        self.service = service
        self.inflight = inflight
        self._connections: Set[socket.socket] = set()
        self._connections_lock = threading.Lock()
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, ProxyRequestHandler)

    def track_connection(self, conn: socket.socket) -> None:
        with self._connections_lock:
            self._connections.add(conn)

    def untrack_connection(self, conn: socket.socket) -> None:
        with self._connections_lock:
            self._connections.discard(conn)

    def close_connections(self) -> int:
        """Shut down every open client connection; returns how many."""
        with self._connections_lock:
            connections = list(self._connections)
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # already closed by the peer
        return len(connections)


class ProxyServer:
    """Lifecycle wrapper: start, serve, and drain-then-force-close shutdown.

    Example:
        >>> server = ProxyServer(Config(addr="127.0.0.1:8080"))
        >>> server.serve_until_signal()
    """

    def __init__(self, cfg: Config, service: Optional[ProxyService] = None) -> None:
        self.cfg = cfg
        self.service = service if service is not None else ProxyService(cfg)
        self.inflight = InflightRequests()
        self._httpd: Optional[ProxyHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def server_address(self) -> Tuple[str, int]:
        if self._httpd is None:
            raise RuntimeError("server is not running")
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    def start(self) -> Tuple[str, int]:
        """Bind the listen address and serve on a background thread.

        Returns:
            The bound (host, port); useful when the configured port is 0
        """
        if self._httpd is not None:
            raise RuntimeError("server already started")
        self._httpd = ProxyHTTPServer(
            self.cfg.listen_address, self.cfg, self.service, self.inflight
        )
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="poddle-server", daemon=True
        )
        self._thread.start()
        host, port = self.server_address
        logger.info("Listening on %s:%d", host or "*", port)
        return host, port

    def shutdown(self) -> bool:
        """Stop accepting connections and drain in-flight requests.

        Requests still running after ``wait_timeout`` are cancelled, which
        kills their encoder processes and closes their sockets.

        Returns:
            True if every request finished before the deadline
        """
        httpd = self._httpd
        if httpd is None:
            return True
        logger.info("Shutting down; waiting up to %.1fs for %d requests", self.cfg.wait_timeout, len(self.inflight))
        httpd.shutdown()
        httpd.server_close()
        drained = self.inflight.wait_idle(self.cfg.wait_timeout)
        if not drained:
            grace_deadline = time.monotonic() + FORCE_CLOSE_GRACE_SECONDS
            cancelled = self.inflight.cancel_all(FORCE_CLOSE_GRACE_SECONDS)
            logger.warning("Drain deadline passed; force-closed %d in-flight requests", cancelled)
            self.inflight.wait_idle(max(0.0, grace_deadline - time.monotonic()))
        httpd.close_connections()
        if self._thread is not None:
            self._thread.join()
        self._httpd = None
        self._thread = None
        logger.info("Goodbye.")
        return drained

    def serve_until_signal(self) -> bool:
        """Serve until SIGINT or SIGTERM, then shut down gracefully."""
        stop = threading.Event()

        def _request_stop(signum: int, _frame: Any) -> None:
            logger.info("Received %s", signal.Signals(signum).name)
            stop.set()

        previous = {
            sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            self.start()
            while not stop.wait(0.5):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
        return self.shutdown()
