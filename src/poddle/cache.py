"""In-process response cache for the plain proxy.

Only successful (200) upstream responses are cached, keyed by upstream URI.
The cache is bounded by entry count (least recently used entries are evicted
first), by body size (larger bodies are never stored), and by age.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedResponse:
    """A stored upstream response.

    Attributes:
        content_type: Upstream Content-Type ("" if absent)
        body: Complete response body
        stored_at: Monotonic timestamp of insertion
    """

    content_type: str
    body: bytes
    stored_at: float


class ResponseCache:
    """Thread-safe LRU cache of upstream responses.

    The lock only guards dictionary operations; callers fetch upstream without
    holding it, so requests for different URIs never wait on each other's I/O.
    """

    def __init__(
        self,
        max_entries: int,
        max_body_bytes: int,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got: {max_entries}")
        self.max_entries = max_entries
        self.max_body_bytes = max_body_bytes
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, uri: str) -> Optional[CachedResponse]:
        """Return the fresh cached response for ``uri``, or None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(uri)
            if entry is None:
                logger.debug("Response cache miss: %s", uri)
                return None
            if now - entry.stored_at > self.ttl:
                del self._entries[uri]
                logger.debug("Response cache entry expired: %s", uri)
                return None
            self._entries.move_to_end(uri)
        logger.debug("Response cache hit: %s", uri)
        return entry

    def put(self, uri: str, content_type: str, body: bytes) -> bool:
        """Store a response body.

        Returns:
            True if the body was stored, False if it exceeds ``max_body_bytes``
        """
        if len(body) > self.max_body_bytes:
            logger.debug(
                "Not caching %s: body of %d bytes exceeds limit of %d",
                uri,
                len(body),
                self.max_body_bytes,
            )
            return False
        entry = CachedResponse(content_type=content_type, body=body, stored_at=self._clock())
        with self._lock:
            self._entries[uri] = entry
            self._entries.move_to_end(uri)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from response cache", evicted)
        logger.debug("Cached %d bytes for %s", len(body), uri)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
