"""Factory for creating search backends.

Backends are looked up by identifier in a registry so new variants can be
added without touching ``SearchClient`` or the CLI.
"""

from __future__ import annotations

from typing import Callable, Dict, Union

from ..config import Config
from ..exceptions import ConfigurationError
from .base import SearchBackend
from .itunes import ITunesSearchBackend

_BACKENDS: Dict[str, Callable[[], SearchBackend]] = {
    "itunes": ITunesSearchBackend,
}


def register_search_backend(name: str, factory: Callable[[], SearchBackend]) -> None:
    """Register a backend factory under ``name`` (case-insensitive)."""
    _BACKENDS[name.strip().lower()] = factory


def create_search_backend(cfg_or_name: Union[Config, str]) -> SearchBackend:
    """Create the search backend selected by configuration.

    Args:
        cfg_or_name: Either a Config object (its ``search_backend`` is used) or
            a backend identifier such as "itunes"

    Returns:
        SearchBackend instance

    Raises:
        ConfigurationError: If the identifier is not registered

    Example:
        >>> from poddle import Config
        >>> backend = create_search_backend(Config(search_backend="itunes"))
    """
    if isinstance(cfg_or_name, Config):
        name = cfg_or_name.search_backend
    else:
        name = str(cfg_or_name)
    key = name.strip().lower()
    factory = _BACKENDS.get(key)
    if factory is None:
        raise ConfigurationError(
            f"unknown search backend: {name!r}",
            config_key="search_backend",
            suggestion=f"Use one of: {', '.join(sorted(_BACKENDS))}",
        )
    return factory()
