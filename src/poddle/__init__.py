# This project is intended for personal, non-commercial use only.
# See README and docs/legal.md for details.

"""Poddle - podcast feed ingestion, search, and a streaming media proxy.

This package provides:
- RSS feed parsing and normalization into a canonical Podcast/Episode model
- Podcast search through pluggable backends (iTunes by default)
- An HTTP server exposing a transparent proxy (``/get``) and a
  fetch-and-transcode proxy (``/convert``) backed by ffmpeg

Programmatic API Example:
    >>> import poddle
    >>>
    >>> cfg = poddle.Config(addr="127.0.0.1:8080")
    >>> podcast = poddle.fetch_podcast("https://example.com/feed.xml", cfg)
    >>> print(podcast.title, len(podcast.episodes))

CLI Usage:
    $ python -m poddle serve
    $ python -m poddle search "python podcasts"
    $ python -m poddle feed https://example.com/feed.xml
"""

from __future__ import annotations

from .config import Config, load_config_file
from .ingest import fetch_podcast
from .models import Episode, Image, Podcast, Version

__all__ = [
    "Config",
    "Episode",
    "Image",
    "Podcast",
    "Version",
    "fetch_podcast",
    "load_config_file",
    "__version__",
]

__version__ = "0.3.0"
