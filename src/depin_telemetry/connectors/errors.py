"""
Error taxonomy and classification for network connectors.

Every transport failure is reduced to a typed ConnectorError carrying an
ErrorKind and a retryable flag:

- 5xx, timeouts, connection resets: TRANSIENT (retryable)
- 429: RATE_LIMITED (retryable, also a rate limiter backoff hint)
- 401/403: AUTH_FAILURE (not retryable)
- other 4xx, malformed payloads: VALIDATION_FAILURE (not retryable)

Only NotInitializedError and ConfigError escape a Ready connector; everything
else is absorbed by the tier chain.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import Any

import aiohttp
import orjson
import pydantic


class ErrorKind(str, Enum):
    """Typed failure categories."""

    TRANSIENT = "TRANSIENT"
    RATE_LIMITED = "RATE_LIMITED"
    AUTH_FAILURE = "AUTH_FAILURE"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    NOT_INITIALIZED = "NOT_INITIALIZED"
    CONFIG_ERROR = "CONFIG_ERROR"
    SCRAPER_UNAVAILABLE = "SCRAPER_UNAVAILABLE"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.TRANSIENT, ErrorKind.RATE_LIMITED})


class ConnectorError(Exception):
    """Base error for the acquisition layer."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        retryable: bool | None = None,
        status: int | None = None,
        retry_after_ms: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value}, message={str(self)!r})"


class NotInitializedError(ConnectorError):
    """Connector used before initialize() or after dispose()."""

    def __init__(self, message: str = "Connector not initialized", **kwargs: Any) -> None:
        super().__init__(message, ErrorKind.NOT_INITIALIZED, retryable=False, **kwargs)


class ConfigError(ConnectorError, ValueError):
    """Missing or invalid configuration. Fatal at initialization only."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, ErrorKind.CONFIG_ERROR, retryable=False, **kwargs)


class ScraperUnavailableError(ConnectorError):
    """Scrape fallback attempted without a configured scraper."""

    def __init__(self, message: str = "Scraper not available", **kwargs: Any) -> None:
        super().__init__(message, ErrorKind.SCRAPER_UNAVAILABLE, retryable=False, **kwargs)


def parse_retry_after_ms(headers: Any) -> int | None:
    """Parse a Retry-After header (seconds) into milliseconds."""
    if not headers:
        return None
    value = headers.get("Retry-After")
    if value is None:
        return None
    with contextlib.suppress(TypeError, ValueError):
        return int(float(value) * 1000)
    return None


def classify_status(
    status: int,
    *,
    retry_after_ms: int | None = None,
    message: str = "",
) -> ConnectorError:
    """
    Classify an HTTP error status.

    Args:
        status: HTTP status code (>= 400).
        retry_after_ms: Server-provided retry delay (Retry-After header).
        message: Optional response excerpt for diagnostics.

    Returns:
        ConnectorError with kind and retryable set per the status rules.
    """
    suffix = f": {message}" if message else ""

    if status == 429:
        return ConnectorError(
            f"Rate limit exceeded (429){suffix}",
            ErrorKind.RATE_LIMITED,
            status=status,
            retry_after_ms=retry_after_ms,
        )

    if status in (401, 403):
        reason = "invalid or expired credentials" if status == 401 else "insufficient permissions"
        return ConnectorError(
            f"Authentication failed ({status}) - {reason}{suffix}",
            ErrorKind.AUTH_FAILURE,
            status=status,
        )

    if status >= 500:
        return ConnectorError(
            f"Server error ({status}){suffix}",
            ErrorKind.TRANSIENT,
            status=status,
            retry_after_ms=retry_after_ms,
        )

    return ConnectorError(
        f"Request rejected ({status}){suffix}",
        ErrorKind.VALIDATION_FAILURE,
        status=status,
    )


def classify_error(exc: BaseException) -> ConnectorError:
    """
    Map a raw failure to a typed ConnectorError. Never raises.

    Already-typed ConnectorErrors are returned unchanged.
    """
    if isinstance(exc, ConnectorError):
        return exc

    # ContentTypeError subclasses ClientResponseError but signals an unparseable body
    if isinstance(exc, (orjson.JSONDecodeError, aiohttp.ContentTypeError, pydantic.ValidationError)):
        return ConnectorError(
            f"Malformed response payload: {exc}",
            ErrorKind.VALIDATION_FAILURE,
            details={"error_type": type(exc).__name__},
        )

    if isinstance(exc, aiohttp.ClientResponseError):
        classified = classify_status(
            exc.status,
            retry_after_ms=parse_retry_after_ms(exc.headers),
            message=exc.message,
        )
        classified.__cause__ = exc
        return classified

    # ServerTimeoutError is both a ClientError and a TimeoutError; check timeouts first
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ConnectorError(
            f"Request timed out: {exc}" if str(exc) else "Request timed out",
            ErrorKind.TRANSIENT,
            details={"error_type": type(exc).__name__},
        )

    if isinstance(exc, (aiohttp.ClientConnectionError, ConnectionError)):
        return ConnectorError(
            f"Network request failed: {exc}",
            ErrorKind.TRANSIENT,
            details={"error_type": type(exc).__name__},
        )

    if isinstance(exc, aiohttp.ClientError):
        return ConnectorError(
            f"Network request failed: {exc}",
            ErrorKind.TRANSIENT,
            details={"error_type": type(exc).__name__},
        )

    return ConnectorError(
        f"Unexpected failure: {exc}",
        ErrorKind.VALIDATION_FAILURE,
        details={"error_type": type(exc).__name__},
    )
