"""Shared error classes for the backlink verification engine."""

from __future__ import annotations


class BacklinkError(RuntimeError):
    """Base exception raised by the backlink engine."""

    def __init__(self, message: str, code: str = "BACKLINK_ERROR") -> None:
        super().__init__(message)
        self.code = code


class InvalidUrl(BacklinkError):
    """Raised when a URL cannot be parsed into an absolute http(s) URL."""

    def __init__(self, message: str, code: str = "400_INVALID_URL") -> None:
        super().__init__(message, code=code)


class FetchError(BacklinkError):
    """Raised when a source page cannot be retrieved."""

    kind = "fetch_error"

    def __init__(
        self,
        message: str,
        code: str = "520_FETCH_FAILED",
        *,
        status_code: int | None = None,
        elapsed_ms: int | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
        self.elapsed_ms = elapsed_ms


class NetworkError(FetchError):
    """Timeout, DNS, TLS or connection failure."""

    kind = "network_error"


class HttpError(FetchError):
    """The source page answered with a non-2xx status."""

    kind = "http_error"

    def __init__(self, status_code: int, *, elapsed_ms: int | None = None, reason: str = "") -> None:
        message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
        super().__init__(
            message,
            code=f"{status_code}_HTTP_STATUS",
            status_code=status_code,
            elapsed_ms=elapsed_ms,
        )


class ParseError(BacklinkError):
    """HTML could not be scanned for anchors."""

    def __init__(self, message: str, code: str = "422_HTML_PARSE_FAILED") -> None:
        super().__init__(message, code=code)


class BacklinkPersistenceError(BacklinkError):
    """Raised when the repository fails to save or retrieve backlinks."""
