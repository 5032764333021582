"""Configuration constants for poddle.

All constants are re-exported from config.py for convenience.
"""

# General defaults
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; poddle)"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Server defaults
DEFAULT_ADDR = ":8080"
DEFAULT_IDLE_TIMEOUT_SECONDS = 60.0
DEFAULT_READ_TIMEOUT_SECONDS = 15.0
DEFAULT_WRITE_TIMEOUT_SECONDS = 8 * 60.0
# Drain deadline applied to in-flight requests on shutdown
DEFAULT_WAIT_TIMEOUT_SECONDS = 15.0
DEFAULT_UPSTREAM_TIMEOUT_SECONDS = 30.0

# External encoder
DEFAULT_FFMPEG_PATH = "ffmpeg"

# Search
DEFAULT_SEARCH_BACKEND = "itunes"
MAX_SEARCH_QUERY_LENGTH = 255

# Response cache (plain proxy only)
DEFAULT_CACHE_ENABLED = True
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_CACHE_MAX_ENTRIES = 128
DEFAULT_CACHE_MAX_BODY_BYTES = 1024 * 1024

# Environment variable names, keyed by Config field
ENV_VARS = {
    "addr": "ADDR",
    "idle_timeout": "IDLE_TIMEOUT",
    "read_timeout": "READ_TIMEOUT",
    "write_timeout": "WRITE_TIMEOUT",
    "wait_timeout": "WAIT_TIMEOUT",
    "upstream_timeout": "UPSTREAM_TIMEOUT",
    "ffmpeg_path": "FFMPEG_PATH",
    "search_backend": "SEARCH_BACKEND",
    "database": "DATABASE",
    "cache_enabled": "CACHE_ENABLED",
    "cache_ttl": "CACHE_TTL",
    "cache_max_entries": "CACHE_MAX_ENTRIES",
    "cache_max_body_bytes": "CACHE_MAX_BODY_BYTES",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "user_agent": "USER_AGENT",
}

DURATION_FIELDS = (
    "idle_timeout",
    "read_timeout",
    "write_timeout",
    "wait_timeout",
    "upstream_timeout",
    "cache_ttl",
)
