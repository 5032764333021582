"""Shared fixtures and test utilities for poddle tests.

This module contains:
- Test constants
- Helper functions for building feeds and configs
- Fake upstream responses, byte sources and response sinks
- Fake encoder scripts run with the current interpreter in place of ffmpeg
- A local upstream HTTP server for integration tests

All test files can import from this module after adding the tests directory
to ``sys.path``.
"""

import http.server
import sys
import threading
from typing import Dict, List, Optional, Tuple

import pytest

from poddle import config
from poddle.config_constants import ENV_VARS
from poddle.transcode import Transcoder

# Test constants
TEST_BASE_URL = "https://example.com"
TEST_FEED_URL = f"{TEST_BASE_URL}/feed.xml"
TEST_MEDIA_URL = f"{TEST_BASE_URL}/episode.mp3"
TEST_IMAGE_URL = f"{TEST_BASE_URL}/cover.jpg"
TEST_FEED_TITLE = "Test Feed"
TEST_EPISODE_TITLE = "Episode Title"
TEST_MEDIA_TYPE_MP3 = "audio/mpeg"
TEST_PUB_DATE = "Mon, 22 Apr 2019 00:00:00 -0000"
MISSING_ENCODER_PATH = "/nonexistent/bin/poddle-test-ffmpeg"
# Upper bound on how long a stalled upstream response hangs
STALL_SECONDS = 30

# Echoes stdin to stdout upper-cased, chunk by chunk
UPPERCASE_ENCODER_SCRIPT = (
    "import sys\n"
    "for chunk in iter(lambda: sys.stdin.buffer.read1(65536), b''):\n"
    "    sys.stdout.buffer.write(chunk.upper())\n"
    "    sys.stdout.buffer.flush()\n"
)
# Consumes its input, writes a little output, then fails
FAILING_ENCODER_SCRIPT = (
    "import sys\n"
    "sys.stdin.buffer.read()\n"
    "sys.stdout.buffer.write(b'partial')\n"
    "sys.stdout.buffer.flush()\n"
    "sys.exit(3)\n"
)
# Writes one chunk and then hangs until killed
HANGING_ENCODER_SCRIPT = (
    "import sys, time\n"
    "sys.stdout.buffer.write(b'started')\n"
    "sys.stdout.buffer.flush()\n"
    "time.sleep(60)\n"
)


@pytest.fixture(autouse=True)
def _isolate_poddle_environment(monkeypatch):
    """Keep the developer's environment from leaking into Config()."""
    for env_name in ENV_VARS.values():
        monkeypatch.delenv(env_name, raising=False)


# Test helper functions
def create_test_config(**overrides):
    """Create a Config suitable for tests.

    Args:
        **overrides: Fields to override from defaults

    Returns:
        Config with a loopback ephemeral listen address and short timeouts
    """
    defaults = {
        "addr": "127.0.0.1:0",
        "idle_timeout": 5,
        "read_timeout": 5,
        "write_timeout": 5,
        "wait_timeout": 2,
        "upstream_timeout": 5,
        "ffmpeg_path": MISSING_ENCODER_PATH,
        "log_level": "DEBUG",
    }
    defaults.update(overrides)
    return config.Config(**defaults)


def create_fake_transcoder(script: str = UPPERCASE_ENCODER_SCRIPT, **kwargs) -> Transcoder:
    """Transcoder running ``script`` with the current interpreter instead of ffmpeg."""
    return Transcoder(ffmpeg_path=sys.executable, args=["-c", script], **kwargs)


def build_rss_xml(
    items: Optional[List[str]] = None,
    title: str = TEST_FEED_TITLE,
    channel_extra: str = "",
) -> bytes:
    """Build an RSS 2.0 document.

    Args:
        items: Raw ``<item>`` element strings
        title: Channel title
        channel_extra: Additional raw channel-level XML

    Returns:
        Encoded XML document
    """
    items_xml = "\n".join(items or [])
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>{title}</title>
    {channel_extra}
    {items_xml}
  </channel>
</rss>""".encode(
        "utf-8"
    )


def build_rss_item(
    title: str = TEST_EPISODE_TITLE,
    pub_date: str = TEST_PUB_DATE,
    enclosure_url: str = TEST_MEDIA_URL,
    enclosure_type: str = TEST_MEDIA_TYPE_MP3,
    extra: str = "",
) -> str:
    return f"""<item>
      <title>{title}</title>
      <description>About {title}</description>
      <pubDate>{pub_date}</pubDate>
      <enclosure url="{enclosure_url}" length="1234" type="{enclosure_type}"/>
      {extra}
    </item>"""


class MockHTTPResponse:
    """Stand-in for a streamed ``requests.Response``."""

    def __init__(
        self,
        *,
        status_code=200,
        content=b"",
        headers=None,
        chunks=None,
        json_data=None,
        error_after=None,
        url="",
    ):
        self.status_code = status_code
        self.reason = "OK" if status_code == 200 else "Error"
        self.headers = headers or {}
        self.url = url
        self._chunks = chunks if chunks is not None else [content]
        self._json_data = json_data
        self._error_after = error_after
        self.close_count = 0

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def iter_content(self, chunk_size=1):
        for chunk in self._chunks:
            yield chunk
        if self._error_after is not None:
            raise self._error_after

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON object could be decoded")
        return self._json_data

    def close(self):
        self.close_count += 1


class RecordingSink:
    """ResponseSink that records everything written to it."""

    def __init__(self, fail_on_write: Optional[BaseException] = None):
        self.status: Optional[int] = None
        self.headers: Dict[str, str] = {}
        self.chunks: List[bytes] = []
        self.finished = False
        self._fail_on_write = fail_on_write

    @property
    def started(self) -> bool:
        return self.status is not None

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)

    def start(self, status, headers):
        assert self.status is None, "start() called twice"
        self.status = status
        self.headers = dict(headers)

    def write(self, chunk):
        assert self.started, "write() before start()"
        if self._fail_on_write is not None:
            raise self._fail_on_write
        self.chunks.append(chunk)

    def finish(self):
        self.finished = True


class ClosingSource:
    """Byte source that counts how often it is closed."""

    def __init__(self, chunks: List[bytes]):
        self._chunks = chunks
        self.close_count = 0

    def __iter__(self):
        return iter(self._chunks)

    def close(self):
        self.close_count += 1


class UpstreamRequestHandler(http.server.BaseHTTPRequestHandler):
    """Serves canned responses from ``server.routes``: path -> (status, type, body).

    Paths in ``server.stalled`` (path -> (type, head)) send their headers and
    ``head``, then stall until ``server.release`` is set.
    """

    protocol_version = "HTTP/1.1"

    def do_GET(self):
        path = self.path.split("?")[0]
        with self.server.lock:
            self.server.hits.append(path)
        if path in self.server.stalled:
            self._stall(*self.server.stalled[path])
            return
        status, content_type, body = self.server.routes.get(
            path, (404, "text/plain", b"not found")
        )
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _stall(self, content_type, head):
        self.close_connection = True
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        # Promise far more than is ever sent
        self.send_header("Content-Length", str(len(head) * 1000))
        self.end_headers()
        self.wfile.write(head)
        self.wfile.flush()
        self.server.release.wait(STALL_SECONDS)

    def log_message(self, format, *args):
        pass


class UpstreamServer:
    """Local upstream HTTP server on an ephemeral loopback port."""

    def __init__(
        self,
        routes: Dict[str, Tuple[int, str, bytes]],
        stalled: Optional[Dict[str, Tuple[str, bytes]]] = None,
    ):
        self.httpd = http.server.ThreadingHTTPServer(("127.0.0.1", 0), UpstreamRequestHandler)
        self.httpd.routes = routes
        self.httpd.stalled = stalled or {}
        self.httpd.release = threading.Event()
        self.httpd.hits = []
        self.httpd.lock = threading.Lock()
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}"

    @property
    def hits(self) -> List[str]:
        with self.httpd.lock:
            return list(self.httpd.hits)

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc_info):
        self.httpd.release.set()
        self.httpd.shutdown()
        self.httpd.server_close()
        self._thread.join(timeout=5)
