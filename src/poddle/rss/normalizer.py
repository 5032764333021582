"""Conversion of raw feeds into the canonical Podcast/Episode model."""

from __future__ import annotations

from datetime import datetime, timezone

from ..models import Episode, Image, Podcast, Version, ZERO_TIME
from .parser import RawFeed, RawImage, RawItem

# RFC 1123 with a numeric zone, e.g. "Mon, 02 Jan 2006 15:04:05 -0700"
RFC1123Z_FORMAT = "%a, %d %b %Y %H:%M:%S %z"


def parse_date(value: str) -> datetime:
    """Parse an RFC 1123 (numeric zone) date into a UTC datetime.

    Args:
        value: Date string as found in the feed

    Returns:
        UTC datetime, or ZERO_TIME if the value is empty or does not match
    """
    value = (value or "").strip()
    if not value:
        return ZERO_TIME
    try:
        parsed = datetime.strptime(value, RFC1123Z_FORMAT)
    except ValueError:
        return ZERO_TIME
    return parsed.astimezone(timezone.utc)


def _image(raw: RawImage) -> Image:
    return Image.from_url(raw.url, raw.title)


def _episode(item: RawItem) -> Episode:
    return Episode(
        title=item.title.strip(),
        description=item.description.strip(),
        published_at=parse_date(item.pub_date),
        image=_image(item.image),
        versions=(Version(url=item.enclosure.url.strip(), mime_type=item.enclosure.type.strip()),),
    )


def normalize(raw: RawFeed) -> Podcast:
    """Build a Podcast from a RawFeed.

    Best effort: an unparseable date becomes ZERO_TIME instead of failing, so
    one bad item never discards the rest of the feed. Callers that care should
    compare against the raw values and log.

    Args:
        raw: Parsed feed

    Returns:
        Podcast with one Episode (and one Version) per item, in feed order
    """
    return Podcast(
        url=raw.url.strip(),
        title=raw.title.strip(),
        language=raw.language.strip(),
        description=raw.description.strip(),
        published_at=parse_date(raw.pub_date),
        image=_image(raw.image),
        episodes=tuple(_episode(item) for item in raw.items),
    )
