"""Command-line interface for poddle.

Commands:
    serve           Run the proxy server (default when no command is given)
    search QUERY    Search podcasts with the configured backend
    feed URL        Fetch a feed and print it as JSON, optionally storing it
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, cast, Dict, List, Optional, Sequence

from pydantic import ValidationError

from . import __version__, config
from .exceptions import PoddleError
from .ingest import fetch_podcast
from .logging_utils import apply_log_level
from .models import Podcast
from .search import SearchClient
from .server import ProxyServer
from .storage import open_repository

_LOGGER = logging.getLogger(__name__)

COMMANDS = ("serve", "search", "feed")

# CLI destinations mapped onto Config fields
_CONFIG_ARGS = {
    "database": "database",
    "ffmpeg_path": "ffmpeg_path",
    "search_backend": "search_backend",
    "addr": "addr",
    "log_level": "log_level",
    "log_file": "log_file",
}


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Options shared by every command; unset options fall back to env and defaults."""
    parser.add_argument("--config", default=None, help="Path to configuration file (JSON or YAML)")
    parser.add_argument(
        "-D",
        "--database",
        default=None,
        help="Database DSN: sqlite:<path>, postgres://... (default: in-memory)",
    )
    parser.add_argument("--ffmpeg-path", default=None, help="Path to the ffmpeg executable")
    parser.add_argument(
        "--search-backend", default=None, help="Search backend identifier (default: itunes)"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (e.g., DEBUG, INFO)")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="poddle",
        description="Podcast feed ingestion, search and streaming media proxy.",
    )
    parser.add_argument("--version", action="version", version=f"poddle {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the proxy server")
    _add_common_arguments(serve)
    serve.add_argument("--addr", default=None, help="Listen address host:port (default: :8080)")

    search = subparsers.add_parser("search", help="Search podcasts")
    _add_common_arguments(search)
    search.add_argument("query", nargs="+", help="Search terms")

    feed = subparsers.add_parser("feed", help="Fetch a feed and print it as JSON")
    _add_common_arguments(feed)
    feed.add_argument("url", help="Feed URL")
    feed.add_argument(
        "--store", action="store_true", help="Store the podcast in the configured database"
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments; ``serve`` is implied when no command is given."""
    args_list: List[str] = list(sys.argv[1:] if argv is None else argv)
    if not args_list or (
        args_list[0] not in COMMANDS and args_list[0] not in ("-h", "--help", "--version")
    ):
        args_list.insert(0, "serve")
    return build_parser().parse_args(args_list)


def _build_config(args: argparse.Namespace) -> config.Config:
    """Merge config file values and CLI overrides into a Config.

    CLI options win over the file; fields set by neither are taken from the
    environment or defaults by ``Config`` itself.

    Raises:
        ValueError: If the config file cannot be loaded
        ValidationError: If the merged values are invalid
    """
    payload: Dict[str, Any] = {}
    if args.config:
        payload.update(config.load_config_file(args.config))
    for dest, field_name in _CONFIG_ARGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            payload[field_name] = value
    return cast(config.Config, config.Config.model_validate(payload))


def _format_search_result(podcast: Podcast) -> str:
    return f"{podcast.title} [{podcast.url}]"


def _run_serve(cfg: config.Config, server_factory: Callable[[config.Config], Any]) -> int:
    server = server_factory(cfg)
    server.serve_until_signal()
    return 0


def _run_search(
    cfg: config.Config,
    query: str,
    client_factory: Callable[[config.Config], Any],
    log: logging.Logger,
) -> int:
    client = client_factory(cfg)
    results = client.search(query)
    for podcast in results:
        if not podcast.url:
            log.debug("Skipping result without feed URL: %s", podcast.title)
            continue
        print(_format_search_result(podcast))
    return 0


def _run_feed(
    cfg: config.Config,
    url: str,
    store: bool,
    fetch_fn: Callable[[str, config.Config], Podcast],
) -> int:
    podcast = fetch_fn(url, cfg)
    if store:
        repository = open_repository(cfg.storage)
        try:
            podcast = repository.save(podcast)
        finally:
            repository.close()
    print(json.dumps(podcast.to_dict(), indent=2, ensure_ascii=False))
    return 0


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    apply_log_level_fn: Optional[Callable[[str, Optional[str]], None]] = None,
    server_factory: Optional[Callable[[config.Config], Any]] = None,
    search_client_factory: Optional[Callable[[config.Config], Any]] = None,
    fetch_podcast_fn: Optional[Callable[[str, config.Config], Podcast]] = None,
    logger: Optional[logging.Logger] = None,
) -> int:
    """Entry point for the CLI; returns an exit status code."""
    log = logger or _LOGGER
    if apply_log_level_fn is None:
        apply_log_level_fn = apply_log_level
    if server_factory is None:
        server_factory = ProxyServer
    if search_client_factory is None:
        search_client_factory = SearchClient.from_config
    if fetch_podcast_fn is None:
        fetch_podcast_fn = fetch_podcast

    args = parse_args(argv)

    try:
        cfg = _build_config(args)
    except ValidationError as exc:
        log.error("Invalid configuration: %s", exc)
        return 1
    except ValueError as exc:
        log.error("Error: %s", exc)
        return 1

    apply_log_level_fn(cfg.log_level, cfg.log_file)

    try:
        if args.command == "search":
            return _run_search(cfg, " ".join(args.query), search_client_factory, log)
        if args.command == "feed":
            return _run_feed(cfg, args.url, args.store, fetch_podcast_fn)
        log.info("Starting poddle %s on %s", __version__, cfg.addr)
        return _run_serve(cfg, server_factory)
    except PoddleError as exc:
        log.error("%s", exc)
        return 1
    except OSError as exc:
        log.error("Error: %s", exc)
        return 1


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - script entry
    run()
