"""Canonical podcast data model.

Every ingestion path (feed parsing, search) converges to these value objects.
They are frozen: re-ingesting a podcast replaces it wholesale rather than
mutating fields.
"""

from __future__ import annotations

import mimetypes
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

# Timestamp used when a source date is missing or unparseable
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

mimetypes.init()


def mime_type_of(url: str) -> str:
    """Infer a MIME type from the file extension of a URL.

    Args:
        url: Absolute or relative URL (surrounding whitespace is ignored)

    Returns:
        MIME type such as "image/jpeg", or "" when the extension is unknown
    """
    url = (url or "").strip()
    if not url:
        return ""
    ext = posixpath.splitext(urlsplit(url).path)[1].lower()
    if not ext:
        return ""
    return mimetypes.types_map.get(ext, "")


def _format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return ZERO_TIME
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return ZERO_TIME
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Image:
    """Artwork descriptor.

    Attributes:
        url: Image URL.
        title: Optional image title from the feed.
        mime_type: MIME type derived from the URL extension ("" if unknown).
    """

    url: str = ""
    title: str = ""
    mime_type: str = ""

    @classmethod
    def from_url(cls, url: str, title: str = "") -> "Image":
        """Build an Image whose MIME type is derived from its URL."""
        url = (url or "").strip()
        return cls(url=url, title=(title or "").strip(), mime_type=mime_type_of(url))

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "title": self.title, "mime_type": self.mime_type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Image":
        return cls(
            url=data.get("url", ""),
            title=data.get("title", ""),
            mime_type=data.get("mime_type", ""),
        )


@dataclass(frozen=True)
class Version:
    """One deliverable rendition of an episode (the feed item's enclosure)."""

    url: str = ""
    mime_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "mime_type": self.mime_type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Version":
        return cls(url=data.get("url", ""), mime_type=data.get("mime_type", ""))


@dataclass(frozen=True)
class Episode:
    """A single podcast episode.

    Attributes:
        title: Episode title.
        description: Episode description, as published.
        published_at: Publication time in UTC, or ZERO_TIME if unknown.
        image: Episode artwork.
        versions: Deliverable renditions, in feed order.
    """

    title: str = ""
    description: str = ""
    published_at: datetime = ZERO_TIME
    image: Image = field(default_factory=Image)
    versions: Tuple[Version, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "published_at": _format_time(self.published_at),
            "image": self.image.to_dict(),
            "versions": [v.to_dict() for v in self.versions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Episode":
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            published_at=_parse_time(data.get("published_at")),
            image=Image.from_dict(data.get("image") or {}),
            versions=tuple(Version.from_dict(v) for v in data.get("versions") or []),
        )


@dataclass(frozen=True)
class Podcast:
    """A podcast and its episodes.

    Attributes:
        id: Identifier assigned by the persistence layer ("" until stored).
        url: Feed URL.
        title: Podcast title.
        language: Language code from the feed.
        description: Podcast description.
        published_at: Publication time in UTC, or ZERO_TIME if unknown.
        image: Podcast artwork.
        episodes: Episodes in source order. Always empty for search results.
    """

    id: str = ""
    url: str = ""
    title: str = ""
    language: str = ""
    description: str = ""
    published_at: datetime = ZERO_TIME
    image: Image = field(default_factory=Image)
    episodes: Tuple[Episode, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "language": self.language,
            "description": self.description,
            "published_at": _format_time(self.published_at),
            "image": self.image.to_dict(),
            "episodes": [e.to_dict() for e in self.episodes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Podcast":
        return cls(
            id=data.get("id", ""),
            url=data.get("url", ""),
            title=data.get("title", ""),
            language=data.get("language", ""),
            description=data.get("description", ""),
            published_at=_parse_time(data.get("published_at")),
            image=Image.from_dict(data.get("image") or {}),
            episodes=tuple(Episode.from_dict(e) for e in data.get("episodes") or []),
        )
