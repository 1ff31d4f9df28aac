"""Tests for error classification."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import aiohttp
import orjson
import pydantic
import pytest

from depin_telemetry.connectors.errors import (
    ConfigError,
    ConnectorError,
    ErrorKind,
    NotInitializedError,
    ScraperUnavailableError,
    classify_error,
    classify_status,
    parse_retry_after_ms,
)
from depin_telemetry.contracts.telemetry import NodeHealth


def _response_error(status: int, headers: dict[str, str] | None = None) -> aiohttp.ClientResponseError:
    return aiohttp.ClientResponseError(
        MagicMock(),
        (),
        status=status,
        message="upstream said no",
        headers=headers,
    )


class TestClassifyStatus:
    """HTTP status rules."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_transient(self, status: int) -> None:
        error = classify_status(status)
        assert error.kind is ErrorKind.TRANSIENT
        assert error.retryable is True
        assert error.status == status

    def test_429_is_rate_limited_with_retry_after(self) -> None:
        error = classify_status(429, retry_after_ms=2000)
        assert error.kind is ErrorKind.RATE_LIMITED
        assert error.retryable is True
        assert error.retry_after_ms == 2000

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures_not_retryable(self, status: int) -> None:
        error = classify_status(status)
        assert error.kind is ErrorKind.AUTH_FAILURE
        assert error.retryable is False

    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    def test_other_client_errors_are_validation_failures(self, status: int) -> None:
        error = classify_status(status)
        assert error.kind is ErrorKind.VALIDATION_FAILURE
        assert error.retryable is False

    def test_message_is_appended(self) -> None:
        error = classify_status(500, message="boom")
        assert "boom" in str(error)


class TestParseRetryAfter:
    def test_seconds_to_ms(self) -> None:
        assert parse_retry_after_ms({"Retry-After": "3"}) == 3000

    def test_fractional_seconds(self) -> None:
        assert parse_retry_after_ms({"Retry-After": "0.5"}) == 500

    def test_missing_or_garbage(self) -> None:
        assert parse_retry_after_ms(None) is None
        assert parse_retry_after_ms({}) is None
        assert parse_retry_after_ms({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None


class TestClassifyError:
    """Raw exceptions map to typed errors and classification never raises."""

    def test_connector_error_passes_through(self) -> None:
        original = ConnectorError("x", ErrorKind.AUTH_FAILURE)
        assert classify_error(original) is original

    def test_response_error_uses_status_and_retry_after(self) -> None:
        error = classify_error(_response_error(429, {"Retry-After": "7"}))
        assert error.kind is ErrorKind.RATE_LIMITED
        assert error.retry_after_ms == 7000
        assert isinstance(error.__cause__, aiohttp.ClientResponseError)

    def test_response_error_401(self) -> None:
        assert classify_error(_response_error(401)).kind is ErrorKind.AUTH_FAILURE

    def test_timeouts_are_transient(self) -> None:
        assert classify_error(asyncio.TimeoutError()).kind is ErrorKind.TRANSIENT
        assert classify_error(aiohttp.ServerTimeoutError("slow")).kind is ErrorKind.TRANSIENT

    def test_connection_errors_are_transient(self) -> None:
        assert classify_error(ConnectionResetError("reset")).kind is ErrorKind.TRANSIENT
        assert classify_error(aiohttp.ClientConnectionError("down")).kind is ErrorKind.TRANSIENT

    def test_malformed_json_is_validation_failure(self) -> None:
        with pytest.raises(orjson.JSONDecodeError) as exc_info:
            orjson.loads(b"{not json")
        error = classify_error(exc_info.value)
        assert error.kind is ErrorKind.VALIDATION_FAILURE
        assert error.retryable is False

    def test_pydantic_error_is_validation_failure(self) -> None:
        with pytest.raises(pydantic.ValidationError) as exc_info:
            NodeHealth(cpu=150, memory=0, storage=0, network=0)
        assert classify_error(exc_info.value).kind is ErrorKind.VALIDATION_FAILURE

    def test_content_type_error_is_validation_failure(self) -> None:
        exc = aiohttp.ContentTypeError(MagicMock(), (), status=200, message="text/html")
        assert classify_error(exc).kind is ErrorKind.VALIDATION_FAILURE

    def test_unknown_exception_is_validation_failure(self) -> None:
        error = classify_error(KeyError("missing"))
        assert error.kind is ErrorKind.VALIDATION_FAILURE
        assert error.details["error_type"] == "KeyError"


class TestErrorFamily:
    def test_not_initialized(self) -> None:
        error = NotInitializedError()
        assert error.kind is ErrorKind.NOT_INITIALIZED
        assert error.retryable is False

    def test_config_error_is_value_error(self) -> None:
        error = ConfigError("bad")
        assert isinstance(error, ValueError)
        assert isinstance(error, ConnectorError)
        assert error.kind is ErrorKind.CONFIG_ERROR

    def test_scraper_unavailable(self) -> None:
        assert ScraperUnavailableError().kind is ErrorKind.SCRAPER_UNAVAILABLE

    def test_explicit_retryable_override(self) -> None:
        error = ConnectorError("x", ErrorKind.TRANSIENT, retryable=False)
        assert error.retryable is False
