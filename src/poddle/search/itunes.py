"""iTunes Search API backend."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote_plus

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config_constants import MAX_SEARCH_QUERY_LENGTH
from ..exceptions import InvalidQuery, SearchBackendError
from ..models import Image, Podcast, ZERO_TIME

logger = logging.getLogger(__name__)

ITUNES_SEARCH_URL = "https://itunes.apple.com/search"


class ITunesResult(BaseModel):
    """One entry of the iTunes ``results`` array; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    collection_name: Optional[str] = Field(default=None, alias="collectionName")
    feed_url: Optional[str] = Field(default=None, alias="feedUrl")
    release_date: Optional[str] = Field(default=None, alias="releaseDate")
    artwork_url_600: Optional[str] = Field(default=None, alias="artworkUrl600")
    artwork_url_100: Optional[str] = Field(default=None, alias="artworkUrl100")
    artwork_url_60: Optional[str] = Field(default=None, alias="artworkUrl60")
    artwork_url_30: Optional[str] = Field(default=None, alias="artworkUrl30")

    def artwork_url(self) -> str:
        """Largest available artwork URL, or ""."""
        for candidate in (
            self.artwork_url_600,
            self.artwork_url_100,
            self.artwork_url_60,
            self.artwork_url_30,
        ):
            if candidate and candidate.strip():
                return candidate.strip()
        return ""


class ITunesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    result_count: int = Field(default=0, alias="resultCount")
    results: List[ITunesResult] = Field(default_factory=list)


def parse_release_date(value: Optional[str]) -> datetime:
    """Parse an iTunes ``releaseDate`` (ISO 8601) into UTC; ZERO_TIME if unusable."""
    value = (value or "").strip()
    if not value:
        return ZERO_TIME
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable iTunes releaseDate: %r", value)
        return ZERO_TIME
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class ITunesSearchBackend:
    """Podcast search against the public iTunes Search API."""

    name = "itunes"

    def __init__(self, search_url: str = ITUNES_SEARCH_URL) -> None:
        self.search_url = search_url

    def build_request(self, query: str) -> requests.PreparedRequest:
        query = query or ""
        # The limit applies to the query as received, surrounding whitespace included
        if len(query) > MAX_SEARCH_QUERY_LENGTH:
            raise InvalidQuery(
                f"q cannot be longer than {MAX_SEARCH_QUERY_LENGTH} characters"
            )
        term = query.strip()
        if not term:
            raise InvalidQuery("q cannot be blank")
        url = f"{self.search_url}?entity=podcast&term={quote_plus(term)}"
        return requests.Request("GET", url, headers={"Accept": "application/json"}).prepare()

    def parse_results(self, response: requests.Response) -> List[Podcast]:
        if response.status_code != 200:
            raise SearchBackendError(
                f"unexpected status {response.status_code} from {self.search_url}",
                backend=self.name,
                upstream_status=response.status_code,
            )
        try:
            payload = ITunesResponse.model_validate(response.json())
        except ValueError as exc:
            # ValidationError is a ValueError, as is a JSON decode failure
            reason = "unexpected response shape" if isinstance(exc, ValidationError) else "invalid JSON"
            raise SearchBackendError(f"{reason}: {exc}", backend=self.name) from exc

        podcasts = [self._to_podcast(entry) for entry in payload.results]
        logger.debug("iTunes returned %d results", len(podcasts))
        return podcasts

    @staticmethod
    def _to_podcast(entry: ITunesResult) -> Podcast:
        return Podcast(
            url=(entry.feed_url or "").strip(),
            title=(entry.collection_name or "").strip(),
            published_at=parse_release_date(entry.release_date),
            image=Image.from_url(entry.artwork_url()),
        )
