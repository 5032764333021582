"""Pytest configuration for unit tests.

Unit tests must not touch the network: upstream hosts, search backends and
encoders are all replaced by fakes. This module blocks outbound network calls
for every test under ``tests/unit/`` so that a missing mock fails loudly
instead of reaching a real host.

Integration tests (``tests/integration/``) run real loopback servers and child
processes and are not affected.
"""

import socket
import sys
import urllib.request
from pathlib import Path
from unittest.mock import patch

import pytest
import requests

# Add parent tests directory to path to import from main conftest
parent_tests_dir = Path(__file__).parent.parent
if str(parent_tests_dir) not in sys.path:
    sys.path.insert(0, str(parent_tests_dir))


class NetworkCallDetectedError(Exception):
    """Raised when a unit test attempts to make a network call."""

    def __init__(self, library_name: str, call_type: str):
        self.library_name = library_name
        self.call_type = call_type
        super().__init__(
            f"Network call detected in unit test: {library_name}.{call_type}()\n"
            f"Unit tests must not make network calls. Use mocks instead.\n"
            f"If this test needs network access, it should be moved to integration/."
        )


def _create_network_blocker(library_name: str, call_type: str):
    """Create a function that blocks network calls and raises an error."""

    def blocker(*args, **kwargs):
        raise NetworkCallDetectedError(library_name, call_type)

    return blocker


def _is_unit_test(request) -> bool:
    """Check if the current test is in the unit/ directory."""
    nodeid = getattr(request.node, "nodeid", "")
    if "tests/integration/" in nodeid:
        return False
    if "tests/unit/" in nodeid:
        return True
    test_file = str(getattr(request.node, "path", "") or getattr(request.node, "fspath", ""))
    return "/tests/unit/" in test_file or "\\tests\\unit\\" in test_file


@pytest.fixture(autouse=True)
def block_network_io(request):
    """Automatically block network calls in unit tests."""
    if not _is_unit_test(request):
        yield
        return

    patchers = [
        patch.object(
            requests.Session, "send", _create_network_blocker("requests.Session", "send")
        ),
        patch.object(
            socket, "create_connection", _create_network_blocker("socket", "create_connection")
        ),
        patch.object(urllib.request, "urlopen", _create_network_blocker("urllib.request", "urlopen")),
    ]
    for patcher in patchers:
        patcher.start()
    try:
        yield
    finally:
        for patcher in reversed(patchers):
            patcher.stop()
