"""RSS feed parsing and normalization.

This module provides:
- RSS/XML parsing into a raw feed structure
- Normalization of raw feeds into the canonical Podcast model
"""

from .normalizer import normalize, parse_date, RFC1123Z_FORMAT
from .parser import parse_feed, RawEnclosure, RawFeed, RawImage, RawItem

__all__ = [
    # Parser
    "RawEnclosure",
    "RawFeed",
    "RawImage",
    "RawItem",
    "parse_feed",
    # Normalizer
    "RFC1123Z_FORMAT",
    "normalize",
    "parse_date",
]
