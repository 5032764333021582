"""Runs search round-trips against a SearchBackend."""

from __future__ import annotations

import logging
from typing import List, Optional

import requests

from ..config import Config
from ..downloader import get_http_session
from ..exceptions import SearchBackendError
from ..models import Podcast
from .base import SearchBackend
from .factory import create_search_backend

logger = logging.getLogger(__name__)


class SearchClient:
    """Sends backend-built search requests and parses the answers.

    Attributes:
        backend: Backend that builds requests and parses responses
        timeout: Connect/read timeout in seconds
        user_agent: User-Agent header added when the backend sets none
    """

    def __init__(
        self,
        backend: SearchBackend,
        timeout: float,
        user_agent: str,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.backend = backend
        self.timeout = timeout
        self.user_agent = user_agent
        self._session = session

    @classmethod
    def from_config(cls, cfg: Config) -> "SearchClient":
        """Build a client for the configured backend.

        Raises:
            ConfigurationError: If ``cfg.search_backend`` is unknown
        """
        return cls(
            create_search_backend(cfg),
            timeout=cfg.upstream_timeout,
            user_agent=cfg.user_agent,
        )

    def search(self, query: str) -> List[Podcast]:
        """Search podcasts matching ``query``.

        Raises:
            InvalidQuery: If the backend rejects the query
            SearchBackendError: On transport failure or an unusable answer
        """
        request = self.backend.build_request(query)
        request.headers.setdefault("User-Agent", self.user_agent)
        session = self._session or get_http_session()
        logger.debug("Searching %s: %s", self.backend.name, request.url)
        try:
            response = session.send(request, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SearchBackendError(
                f"request to {request.url} failed: {exc}", backend=self.backend.name
            ) from exc
        try:
            results = self.backend.parse_results(response)
        finally:
            response.close()
        logger.info("Search %r on %s returned %d podcasts", query, self.backend.name, len(results))
        return results
