"""Custom exceptions for poddle.

Every error raised by the core carries the component that detected it, a
human-readable message, an optional suggestion, and the HTTP status the proxy
maps it to. Errors are local to one request, feed, or search call.

Exception Hierarchy:
    PoddleError (base)
    ├── ConfigurationError - Invalid startup configuration
    ├── InvalidRequest - Bad or missing request parameters (400)
    │   └── MethodNotAllowed - Non-GET request on a proxy route (405)
    ├── UpstreamFailure - Upstream transport error or non-2xx status (502)
    ├── ProcessError - Encoder failed to start, exited non-zero, or a pipe broke (500)
    ├── RequestCancelled - Client disconnected or server shutdown deadline hit
    ├── MalformedFeed - Structurally invalid RSS/XML
    ├── InvalidQuery - Search query rejected before any network interaction
    └── SearchBackendError - Search backend failed or answered in an unexpected shape
"""

from typing import Optional


class PoddleError(Exception):
    """Base exception for all poddle errors.

    Attributes:
        component: Name of the component that raised (e.g., "proxy", "transcode")
        message: Human-readable error message
        suggestion: Optional suggestion for resolving the error
        status_code: HTTP status the proxy answers with for this error
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        component: str = "poddle",
        suggestion: Optional[str] = None,
    ) -> None:
        self.component = component
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message with component and suggestion."""
        parts = [f"[{self.component}] {self.message}"]
        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")
        return " ".join(parts)


class ConfigurationError(PoddleError):
    """Raised when startup configuration cannot be used.

    Example:
        >>> raise ConfigurationError(
        ...     message="unsupported database DSN 'mysql://db'",
        ...     config_key="database",
        ...     suggestion="Use sqlite:<path> or postgres://...",
        ... )
    """

    def __init__(
        self,
        message: str,
        component: str = "config",
        config_key: Optional[str] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.config_key = config_key
        if config_key and config_key not in message:
            message = f"{message} (config key: {config_key})"
        super().__init__(message=message, component=component, suggestion=suggestion)


class InvalidRequest(PoddleError):
    """Raised when a proxy request has bad or missing parameters."""

    status_code = 400

    def __init__(self, message: str, component: str = "proxy") -> None:
        super().__init__(message=message, component=component)


class MethodNotAllowed(InvalidRequest):
    """Raised when a proxy route receives anything but GET."""

    status_code = 405

    def __init__(self, method: str, component: str = "proxy") -> None:
        self.method = method
        super().__init__(message="only GET allowed", component=component)


class UpstreamFailure(PoddleError):
    """Raised when the upstream resource cannot be fetched.

    Attributes:
        uri: The upstream URI that failed
        upstream_status: Upstream HTTP status, if a response was received
    """

    status_code = 502

    def __init__(
        self,
        uri: str,
        cause: str,
        upstream_status: Optional[int] = None,
        component: str = "downloader",
    ) -> None:
        self.uri = uri
        self.cause = cause
        self.upstream_status = upstream_status
        super().__init__(message=f"fetching {uri} failed: {cause}", component=component)


class ProcessError(PoddleError):
    """Raised when the external encoder fails.

    Attributes:
        returncode: Process exit status, or None if it never started
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        component: str = "transcode",
        suggestion: Optional[str] = None,
    ) -> None:
        self.returncode = returncode
        super().__init__(message=message, component=component, suggestion=suggestion)


class RequestCancelled(PoddleError):
    """Raised when a request is aborted by client disconnect or shutdown."""

    status_code = 503

    def __init__(self, message: str = "request cancelled", component: str = "proxy") -> None:
        super().__init__(message=message, component=component)


class MalformedFeed(PoddleError):
    """Raised when feed bytes are not structurally valid RSS/XML."""

    def __init__(self, message: str, component: str = "rss") -> None:
        super().__init__(message=message, component=component)


class InvalidQuery(PoddleError):
    """Raised when a search query is empty or too long."""

    status_code = 400

    def __init__(self, message: str, component: str = "search") -> None:
        super().__init__(message=message, component=component)


class SearchBackendError(PoddleError):
    """Raised when a search backend fails or returns an unexpected response.

    Attributes:
        backend: Identifier of the backend that failed
        upstream_status: HTTP status returned by the backend, if any
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        backend: str = "search",
        upstream_status: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.upstream_status = upstream_status
        super().__init__(message=message, component=f"search/{backend}")
