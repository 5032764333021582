"""Podcast search.

This module provides:
- SearchBackend protocol and the iTunes backend
- A registry/factory selecting the backend from configuration
- SearchClient, which performs one search round-trip
"""

from .base import SearchBackend
from .client import SearchClient
from .factory import create_search_backend, register_search_backend
from .itunes import ITUNES_SEARCH_URL, ITunesSearchBackend

__all__ = [
    "ITUNES_SEARCH_URL",
    "ITunesSearchBackend",
    "SearchBackend",
    "SearchClient",
    "create_search_backend",
    "register_search_backend",
]
