"""Configuration model, environment loading and config file parsing for poddle."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import config_constants

if TYPE_CHECKING:
    from .storage import StorageConfig

logger = logging.getLogger(__name__)


def _is_test_environment() -> bool:
    """Check if we're running in a test environment."""
    import sys

    if "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ:
        return True
    if os.environ.get("TESTING", "").lower() in ("1", "true", "yes"):
        return True
    return False


# Tests configure Config explicitly and never rely on .env files
if not _is_test_environment():
    try:
        load_dotenv(override=False)
    except (PermissionError, OSError):
        # If loading fails, continue without .env file
        pass

DEFAULT_LOG_LEVEL = config_constants.DEFAULT_LOG_LEVEL
DEFAULT_USER_AGENT = config_constants.DEFAULT_USER_AGENT
VALID_LOG_LEVELS = config_constants.VALID_LOG_LEVELS
DEFAULT_ADDR = config_constants.DEFAULT_ADDR
DEFAULT_FFMPEG_PATH = config_constants.DEFAULT_FFMPEG_PATH
DEFAULT_SEARCH_BACKEND = config_constants.DEFAULT_SEARCH_BACKEND
ENV_VARS = config_constants.ENV_VARS
DURATION_FIELDS = config_constants.DURATION_FIELDS

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style duration strings such as
    "90s", "1m30s", "500ms" or "2h".

    Raises:
        ValueError: If the value is not a valid, non-negative duration
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        try:
            seconds = float(text)
        except ValueError:
            if not text or _DURATION_PART.sub("", text) != "":
                raise ValueError(f"invalid duration: {value!r}") from None
            seconds = sum(
                float(amount) * _DURATION_UNITS[unit]
                for amount, unit in _DURATION_PART.findall(text)
            )
    if seconds < 0:
        raise ValueError(f"duration must be non-negative, got: {value!r}")
    return seconds


def parse_listen_address(addr: str) -> Tuple[str, int]:
    """Split a "host:port" listen address; an empty host binds all interfaces.

    Raises:
        ValueError: If the port is missing or not a valid port number
    """
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        raise ValueError(f"listen address must be host:port, got: {addr!r}")
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"invalid port in listen address: {addr!r}") from exc
    if not 0 <= port_number <= 65535:
        raise ValueError(f"port out of range in listen address: {addr!r}")
    return host, port_number


class Config(BaseModel):
    """Process-wide configuration for poddle.

    Built once at startup and passed explicitly into the proxy service, the
    server, the search client and feed ingestion. Values given explicitly win;
    otherwise the matching environment variable is used (see
    ``config_constants.ENV_VARS``); otherwise the default.

    Attributes:
        addr: Listen address ("host:port"; empty host binds all interfaces).
        idle_timeout: Seconds a keep-alive connection may wait for its next request.
        read_timeout: Seconds allowed for reading a request.
        write_timeout: Seconds a single response write may block.
        wait_timeout: Drain deadline in seconds for in-flight requests on shutdown.
        upstream_timeout: Connect/read timeout in seconds for upstream fetches.
        ffmpeg_path: Path to the ffmpeg executable used for transcoding.
        search_backend: Identifier of the search backend (e.g., "itunes").
        database: Storage DSN; unset selects the in-memory store.
        cache_enabled: Enable the response cache for the plain proxy.
        cache_ttl: Seconds a cached response stays fresh.
        cache_max_entries: Maximum number of cached responses.
        cache_max_body_bytes: Largest response body that is cached.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional log file path for file output.
        user_agent: User-Agent header sent upstream.
    """

    addr: str = Field(default=DEFAULT_ADDR)
    idle_timeout: float = Field(default=config_constants.DEFAULT_IDLE_TIMEOUT_SECONDS, ge=0)
    read_timeout: float = Field(default=config_constants.DEFAULT_READ_TIMEOUT_SECONDS, ge=0)
    write_timeout: float = Field(default=config_constants.DEFAULT_WRITE_TIMEOUT_SECONDS, ge=0)
    wait_timeout: float = Field(default=config_constants.DEFAULT_WAIT_TIMEOUT_SECONDS, ge=0)
    upstream_timeout: float = Field(
        default=config_constants.DEFAULT_UPSTREAM_TIMEOUT_SECONDS, gt=0
    )
    ffmpeg_path: str = Field(default=DEFAULT_FFMPEG_PATH)
    search_backend: str = Field(default=DEFAULT_SEARCH_BACKEND)
    database: Optional[str] = Field(default=None)
    cache_enabled: bool = Field(default=config_constants.DEFAULT_CACHE_ENABLED)
    cache_ttl: float = Field(default=config_constants.DEFAULT_CACHE_TTL_SECONDS, ge=0)
    cache_max_entries: int = Field(default=config_constants.DEFAULT_CACHE_MAX_ENTRIES, ge=1)
    cache_max_body_bytes: int = Field(
        default=config_constants.DEFAULT_CACHE_MAX_BODY_BYTES, ge=0
    )
    log_level: str = Field(default=DEFAULT_LOG_LEVEL)
    log_file: Optional[str] = Field(default=None)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _load_from_environment(cls, data: Any) -> Any:
        """Fill fields missing from ``data`` with their environment variables.

        An invalid duration in the environment is logged and ignored so the
        default applies; invalid explicit values still fail validation.
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for field_name, env_name in ENV_VARS.items():
            if data.get(field_name) is not None:
                continue
            env_value = os.getenv(env_name)
            if env_value is None or not env_value.strip():
                continue
            env_value = env_value.strip()
            if field_name in DURATION_FIELDS:
                try:
                    parse_duration(env_value)
                except ValueError as exc:
                    logger.warning(
                        "%s=%r is not a valid duration (%s); falling back to default",
                        env_name,
                        env_value,
                        exc,
                    )
                    continue
            data[field_name] = env_value
        return data

    @field_validator(*DURATION_FIELDS, mode="before")
    @classmethod
    def _parse_durations(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("cache_enabled", mode="before")
    @classmethod
    def _coerce_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(f"cache_enabled must be a boolean, got: {value!r}")
        return bool(value)

    @field_validator("addr", mode="after")
    @classmethod
    def _validate_addr(cls, value: str) -> str:
        parse_listen_address(value)
        return value.strip()

    @field_validator("ffmpeg_path", "search_backend", mode="before")
    @classmethod
    def _coerce_string(cls, value: Any) -> str:
        value_str = str(value).strip() if value is not None else ""
        if not value_str:
            raise ValueError("value must not be empty")
        return value_str

    @field_validator("search_backend", mode="after")
    @classmethod
    def _normalize_search_backend(cls, value: str) -> str:
        return value.lower()

    @field_validator("database", "log_file", mode="before")
    @classmethod
    def _strip_optional(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("database", mode="after")
    @classmethod
    def _validate_database(cls, value: Optional[str]) -> Optional[str]:
        """Reject DSNs no storage driver can open."""
        from .exceptions import ConfigurationError
        from .storage import resolve_storage

        try:
            resolve_storage(value)
        except ConfigurationError as exc:
            raise ValueError(exc.message) from exc
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        """Normalize log level value."""
        if value is None:
            return DEFAULT_LOG_LEVEL
        return str(value).strip().upper() or DEFAULT_LOG_LEVEL

    @field_validator("log_level", mode="after")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        """Validate log level is one of the valid levels."""
        if value not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got: {value}")
        return value

    @field_validator("user_agent", mode="before")
    @classmethod
    def _coerce_user_agent(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_USER_AGENT
        value_str = str(value).strip()
        return value_str or DEFAULT_USER_AGENT

    @property
    def listen_address(self) -> Tuple[str, int]:
        """The (host, port) pair to bind."""
        return parse_listen_address(self.addr)

    @property
    def storage(self) -> "StorageConfig":
        """The storage driver and DSN selected by ``database``."""
        from .storage import resolve_storage

        return resolve_storage(self.database)


def load_config_file(path: str) -> Dict[str, Any]:
    """Load configuration from a JSON or YAML file.

    The format is picked from the file extension (``.json``, ``.yaml`` or
    ``.yml``). The returned dictionary can be unpacked into ``Config``.

    Args:
        path: Path to configuration file; supports tilde expansion.

    Returns:
        Dictionary of configuration values

    Raises:
        ValueError: If the path is empty, missing, of an unknown format, or
            the file cannot be parsed into a mapping
        OSError: If the file cannot be read

    Example:
        >>> from poddle import Config, load_config_file
        >>> cfg = Config(**load_config_file("poddle.yaml"))
    """
    if not path:
        raise ValueError("Config path cannot be empty")

    cfg_path = Path(path).expanduser()
    if not cfg_path.exists():
        raise ValueError(f"Config file not found: {cfg_path}")

    suffix = cfg_path.suffix.lower()
    text = cfg_path.read_text(encoding="utf-8")

    if suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON config file {cfg_path}: {exc}") from exc
    elif suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML config file {cfg_path}: {exc}") from exc
    else:
        raise ValueError(f"Unsupported config file format: {suffix} (use .json, .yaml or .yml)")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {cfg_path} must contain a mapping at the top level")
    return data
