#!/usr/bin/env python3
"""Tests for the search adapter: iTunes backend, factory and client."""

import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from poddle.exceptions import ConfigurationError, InvalidQuery, SearchBackendError
from poddle.models import ZERO_TIME
from poddle.search import (
    create_search_backend,
    ITunesSearchBackend,
    register_search_backend,
    SearchBackend,
    SearchClient,
)
from poddle.search import factory

# Add tests directory to path for conftest import
tests_dir = Path(__file__).parent.parent.parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from conftest import create_test_config, MockHTTPResponse  # noqa: E402


def _itunes_payload(*results):
    return {"resultCount": len(results), "results": list(results)}


@pytest.mark.unit
class TestITunesBuildRequest(unittest.TestCase):
    """Tests for ITunesSearchBackend.build_request."""

    def setUp(self):
        self.backend = ITunesSearchBackend()

    def test_query_is_plus_encoded(self):
        request = self.backend.build_request("foo bar")
        self.assertEqual(
            request.url, "https://itunes.apple.com/search?entity=podcast&term=foo+bar"
        )
        self.assertEqual(request.method, "GET")
        self.assertEqual(request.headers["Accept"], "application/json")

    def test_special_characters_are_escaped(self):
        request = self.backend.build_request("a&b=c")
        self.assertTrue(request.url.endswith("term=a%26b%3Dc"))

    def test_empty_query(self):
        with self.assertRaises(InvalidQuery) as ctx:
            self.backend.build_request("")
        self.assertIn("q cannot be blank", str(ctx.exception))

    def test_whitespace_query(self):
        with self.assertRaises(InvalidQuery):
            self.backend.build_request("   ")

    def test_query_at_length_limit(self):
        request = self.backend.build_request("a" * 255)
        self.assertIn("a" * 255, request.url)

    def test_query_over_length_limit(self):
        with self.assertRaises(InvalidQuery) as ctx:
            self.backend.build_request("a" * 256)
        self.assertIn("longer than 255", str(ctx.exception))

    def test_padding_counts_toward_length_limit(self):
        with self.assertRaises(InvalidQuery) as ctx:
            self.backend.build_request("  " + "a" * 255 + "  ")
        self.assertIn("longer than 255", str(ctx.exception))

    def test_padded_query_is_sent_trimmed(self):
        request = self.backend.build_request("  news  ")
        self.assertTrue(request.url.endswith("term=news"))


@pytest.mark.unit
class TestITunesParseResults(unittest.TestCase):
    """Tests for ITunesSearchBackend.parse_results."""

    def setUp(self):
        self.backend = ITunesSearchBackend()

    def test_maps_fields(self):
        response = MockHTTPResponse(
            json_data=_itunes_payload(
                {
                    "collectionName": "  Python Show ",
                    "feedUrl": "https://example.com/feed.xml",
                    "releaseDate": "2019-04-22T07:00:00Z",
                    "artworkUrl600": "https://example.com/600.jpg",
                    "artworkUrl100": "https://example.com/100.jpg",
                    "trackCount": 42,
                }
            )
        )
        (podcast,) = self.backend.parse_results(response)

        self.assertEqual(podcast.title, "Python Show")
        self.assertEqual(podcast.url, "https://example.com/feed.xml")
        self.assertEqual(podcast.published_at, datetime(2019, 4, 22, 7, tzinfo=timezone.utc))
        self.assertEqual(podcast.image.url, "https://example.com/600.jpg")
        self.assertEqual(podcast.image.mime_type, "image/jpeg")
        self.assertEqual(podcast.episodes, ())

    def test_artwork_fallback_order(self):
        response = MockHTTPResponse(
            json_data=_itunes_payload(
                {"collectionName": "A", "artworkUrl600": "", "artworkUrl60": "https://e.com/60.png",
                 "artworkUrl30": "https://e.com/30.png"},
                {"collectionName": "B", "artworkUrl30": "https://e.com/30.png"},
                {"collectionName": "C"},
            )
        )
        results = self.backend.parse_results(response)

        self.assertEqual(results[0].image.url, "https://e.com/60.png")
        self.assertEqual(results[1].image.url, "https://e.com/30.png")
        self.assertEqual(results[2].image.url, "")

    def test_results_without_feed_url_are_kept(self):
        response = MockHTTPResponse(json_data=_itunes_payload({"collectionName": "No Feed"}))
        results = self.backend.parse_results(response)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].url, "")
        self.assertEqual(results[0].published_at, ZERO_TIME)

    def test_empty_results(self):
        self.assertEqual(self.backend.parse_results(MockHTTPResponse(json_data=_itunes_payload())), [])

    def test_non_200_status(self):
        with self.assertRaises(SearchBackendError) as ctx:
            self.backend.parse_results(MockHTTPResponse(status_code=503, json_data={}))
        self.assertEqual(ctx.exception.upstream_status, 503)

    def test_invalid_json(self):
        with self.assertRaises(SearchBackendError):
            self.backend.parse_results(MockHTTPResponse(json_data=None))

    def test_unexpected_shape(self):
        with self.assertRaises(SearchBackendError):
            self.backend.parse_results(MockHTTPResponse(json_data={"results": "nope"}))


@pytest.mark.unit
class TestSearchFactory(unittest.TestCase):
    """Tests for create_search_backend."""

    def test_default_config_selects_itunes(self):
        backend = create_search_backend(create_test_config())
        self.assertIsInstance(backend, ITunesSearchBackend)
        self.assertIsInstance(backend, SearchBackend)

    def test_name_is_case_insensitive(self):
        self.assertIsInstance(create_search_backend(" iTunes "), ITunesSearchBackend)

    def test_unknown_backend(self):
        with self.assertRaises(ConfigurationError) as ctx:
            create_search_backend("altavista")
        self.assertEqual(ctx.exception.config_key, "search_backend")
        self.assertIn("itunes", ctx.exception.suggestion)

    def test_registered_backend_is_selected(self):
        fake = MagicMock(spec=ITunesSearchBackend)
        register_search_backend("fake", lambda: fake)
        try:
            self.assertIs(create_search_backend(create_test_config(search_backend="fake")), fake)
        finally:
            factory._BACKENDS.pop("fake", None)


@pytest.mark.unit
class TestSearchClient(unittest.TestCase):
    """Tests for SearchClient.search."""

    def _session(self, response=None, error=None):
        session = MagicMock(spec=requests.Session)
        if error is not None:
            session.send.side_effect = error
        else:
            session.send.return_value = response
        return session

    def test_search_round_trip(self):
        response = MockHTTPResponse(
            json_data=_itunes_payload({"collectionName": "Show", "feedUrl": "https://e.com/f"})
        )
        session = self._session(response)
        client = SearchClient(ITunesSearchBackend(), timeout=3, user_agent="poddle-test", session=session)

        results = client.search("show")

        self.assertEqual([p.title for p in results], ["Show"])
        request = session.send.call_args.args[0]
        self.assertEqual(request.headers["User-Agent"], "poddle-test")
        self.assertEqual(session.send.call_args.kwargs["timeout"], 3)
        self.assertEqual(response.close_count, 1)

    def test_invalid_query_skips_network(self):
        session = self._session(MockHTTPResponse(json_data=_itunes_payload()))
        client = SearchClient(ITunesSearchBackend(), timeout=3, user_agent="ua", session=session)

        with self.assertRaises(InvalidQuery):
            client.search("")
        session.send.assert_not_called()

    def test_transport_error(self):
        session = self._session(error=requests.ConnectionError("refused"))
        client = SearchClient(ITunesSearchBackend(), timeout=3, user_agent="ua", session=session)

        with self.assertRaises(SearchBackendError) as ctx:
            client.search("show")
        self.assertEqual(ctx.exception.backend, "itunes")

    def test_from_config(self):
        cfg = create_test_config(upstream_timeout=7, user_agent="custom")
        client = SearchClient.from_config(cfg)
        self.assertIsInstance(client.backend, ITunesSearchBackend)
        self.assertEqual(client.timeout, 7)
        self.assertEqual(client.user_agent, "custom")
