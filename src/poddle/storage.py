"""Podcast persistence.

Storage is selected by DSN:

- unset, "", "memory" or ":memory:" -> in-process memory store
- "sqlite:<path>" / "sqlite3:<path>" -> embedded SQLite database at <path>
- "postgres://..." / "postgresql://..." -> PostgreSQL (DSN passed verbatim)

Podcasts are stored whole and replaced wholesale on re-ingestion.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import ConfigurationError
from .models import Podcast

logger = logging.getLogger(__name__)

DRIVER_MEMORY = "memory"
DRIVER_SQLITE = "sqlite"
DRIVER_POSTGRES = "postgres"

_MEMORY_DSNS = ("", "memory", ":memory:")
_SQLITE_PREFIX = re.compile(r"^sqlite3?:", re.IGNORECASE)
_POSTGRES_PREFIX = re.compile(r"^postgres(ql)?://", re.IGNORECASE)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS podcasts (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_podcasts_url ON podcasts (url);
"""


@dataclass(frozen=True)
class StorageConfig:
    """Resolved storage selection.

    Attributes:
        driver: One of "memory", "sqlite", "postgres"
        dsn: Driver-specific data source ("" for memory, the file path for
            sqlite, the full URL for postgres)
    """

    driver: str
    dsn: str


def resolve_storage(dsn: Optional[str]) -> StorageConfig:
    """Map a database DSN to a storage driver.

    Raises:
        ConfigurationError: If no driver matches the DSN
    """
    value = (dsn or "").strip()
    if value.lower() in _MEMORY_DSNS:
        return StorageConfig(driver=DRIVER_MEMORY, dsn="")
    if _SQLITE_PREFIX.match(value):
        path = value.split(":", 1)[1]
        if not path:
            raise ConfigurationError(
                f"sqlite DSN has no database path: {value!r}",
                config_key="database",
                suggestion="Use sqlite:<path>, e.g. sqlite:poddle.db",
            )
        return StorageConfig(driver=DRIVER_SQLITE, dsn=path)
    if _POSTGRES_PREFIX.match(value):
        return StorageConfig(driver=DRIVER_POSTGRES, dsn=value)
    raise ConfigurationError(
        f"unsupported database DSN: {value!r}",
        config_key="database",
        suggestion="Use sqlite:<path>, postgres://... or leave unset for in-memory storage",
    )


class PodcastRepository(ABC):
    """Store and retrieve Podcasts by id or feed URL."""

    def save(self, podcast: Podcast) -> Podcast:
        """Store a podcast, replacing any record with the same id or feed URL.

        Returns:
            The stored podcast with its ``id`` assigned
        """
        podcast_id = podcast.id
        if not podcast_id and podcast.url:
            existing = self.find_by_url(podcast.url)
            if existing is not None:
                podcast_id = existing.id
        if not podcast_id:
            podcast_id = uuid.uuid4().hex
        stored = replace(podcast, id=podcast_id)
        self._put(stored)
        logger.debug("Stored podcast %s (%s)", stored.id, stored.url or "no url")
        return stored

    @abstractmethod
    def _put(self, podcast: Podcast) -> None:
        ...

    @abstractmethod
    def get(self, podcast_id: str) -> Optional[Podcast]:
        """Return the podcast with ``podcast_id``, or None."""

    @abstractmethod
    def find_by_url(self, url: str) -> Optional[Podcast]:
        """Return the podcast ingested from feed ``url``, or None."""

    @abstractmethod
    def list(self) -> List[Podcast]:
        """Return every stored podcast."""

    def close(self) -> None:
        return None


class InMemoryPodcastRepository(PodcastRepository):
    """Process-local store; contents are lost on exit."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._podcasts: Dict[str, Podcast] = {}

    def _put(self, podcast: Podcast) -> None:
        with self._lock:
            self._podcasts[podcast.id] = podcast

    def get(self, podcast_id: str) -> Optional[Podcast]:
        with self._lock:
            return self._podcasts.get(podcast_id)

    def find_by_url(self, url: str) -> Optional[Podcast]:
        with self._lock:
            for podcast in self._podcasts.values():
                if podcast.url == url:
                    return podcast
        return None

    def list(self) -> List[Podcast]:
        with self._lock:
            return list(self._podcasts.values())


class SQLitePodcastRepository(PodcastRepository):
    """Embedded SQLite store keeping each podcast as a JSON document.

    Example:
        >>> repo = SQLitePodcastRepository("data/poddle.db")
        >>> stored = repo.save(podcast)
        >>> repo.get(stored.id) == stored
        True
    """

    def __init__(self, path: str) -> None:
        self.path = path
        if path != ":memory:":
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    @staticmethod
    def _decode(row: Optional[sqlite3.Row]) -> Optional[Podcast]:
        if row is None:
            return None
        data: Dict[str, Any] = json.loads(row["data"])
        return Podcast.from_dict(data)

    def _put(self, podcast: Podcast) -> None:
        data = json.dumps(podcast.to_dict(), ensure_ascii=False)
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO podcasts (id, url, data) VALUES (?, ?, ?)",
                (podcast.id, podcast.url, data),
            )

    def get(self, podcast_id: str) -> Optional[Podcast]:
        with self._transaction() as conn:
            row = conn.execute("SELECT data FROM podcasts WHERE id = ?", (podcast_id,)).fetchone()
        return self._decode(row)

    def find_by_url(self, url: str) -> Optional[Podcast]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data FROM podcasts WHERE url = ? LIMIT 1", (url,)
            ).fetchone()
        return self._decode(row)

    def list(self) -> List[Podcast]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT data FROM podcasts ORDER BY rowid").fetchall()
        return [p for p in (self._decode(row) for row in rows) if p is not None]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_repository(storage: StorageConfig) -> PodcastRepository:
    """Open the repository for a resolved storage selection.

    Raises:
        ConfigurationError: If the driver is not available in this build
    """
    if storage.driver == DRIVER_MEMORY:
        return InMemoryPodcastRepository()
    if storage.driver == DRIVER_SQLITE:
        logger.info("Using SQLite storage at %s", storage.dsn)
        return SQLitePodcastRepository(storage.dsn)
    raise ConfigurationError(
        f"storage driver {storage.driver!r} is not available",
        config_key="database",
        suggestion="Use sqlite:<path> or leave DATABASE unset for in-memory storage",
    )
