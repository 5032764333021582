"""Feed ingestion: fetch, parse, normalize and optionally store a podcast."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from .config import Config
from .downloader import http_get
from .models import Podcast, ZERO_TIME
from .rss import normalize, parse_feed, RawFeed
from .storage import PodcastRepository

logger = logging.getLogger(__name__)

HttpGet = Callable[[str, str, float], Tuple[bytes, Optional[str]]]


def _warn_degraded_dates(raw: RawFeed, podcast: Podcast) -> None:
    """Log every non-empty feed date that normalized to ZERO_TIME."""
    if raw.pub_date.strip() and podcast.published_at == ZERO_TIME:
        logger.warning("Feed %s: unparseable pubDate %r", raw.url, raw.pub_date.strip())
    for index, (item, episode) in enumerate(zip(raw.items, podcast.episodes)):
        if item.pub_date.strip() and episode.published_at == ZERO_TIME:
            logger.warning(
                "Feed %s: item %d (%s) has unparseable pubDate %r",
                raw.url,
                index,
                episode.title or "untitled",
                item.pub_date.strip(),
            )


def fetch_podcast(url: str, cfg: Optional[Config] = None, http: Optional[HttpGet] = None) -> Podcast:
    """Fetch a feed and return it as a Podcast.

    Args:
        url: Feed URL
        cfg: Configuration (user agent, upstream timeout); defaults to ``Config()``
        http: Fetch function with the signature of ``downloader.http_get``

    Returns:
        The normalized Podcast (``id`` is empty until stored)

    Raises:
        UpstreamFailure: If the feed cannot be fetched
        MalformedFeed: If the document is not RSS
    """
    cfg = cfg or Config()
    get = http or http_get
    body, content_type = get(url, cfg.user_agent, cfg.upstream_timeout)
    logger.debug("Fetched feed %s (%d bytes, %s)", url, len(body), content_type or "no content-type")
    raw = parse_feed(body, url=url)
    podcast = normalize(raw)
    _warn_degraded_dates(raw, podcast)
    logger.info("Ingested feed %s: %r with %d episodes", url, podcast.title, len(podcast.episodes))
    return podcast


def ingest(
    url: str,
    cfg: Config,
    repository: PodcastRepository,
    http: Optional[HttpGet] = None,
) -> Podcast:
    """Fetch a feed and store the resulting Podcast.

    Returns:
        The stored Podcast with its ``id`` assigned
    """
    return repository.save(fetch_podcast(url, cfg, http=http))
