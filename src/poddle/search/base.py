"""SearchBackend protocol definition.

This module defines the protocol that all podcast search backends must implement.
"""

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

import requests

from ..models import Podcast


@runtime_checkable
class SearchBackend(Protocol):
    """Protocol for podcast search backends.

    A backend only knows how to build a request for its service and how to
    read the answer; sending it is the job of ``SearchClient``.
    """

    name: str

    def build_request(self, query: str) -> requests.PreparedRequest:
        """Build the search request for a free-text query.

        Args:
            query: User-supplied search terms

        Returns:
            A prepared GET request

        Raises:
            InvalidQuery: If the query is empty or too long (no network I/O happens)
        """
        ...

    def parse_results(self, response: requests.Response) -> List[Podcast]:
        """Convert a backend response into Podcasts.

        Args:
            response: Response to a request built by ``build_request``

        Returns:
            Podcasts in result order, each without episodes

        Raises:
            SearchBackendError: On a non-200 status or an unexpected body
        """
        ...
