"""
Transport layer for live upstream calls.

Adapters describe a request as an HttpCall; a Transport executes it and
returns the decoded JSON payload. Errors surface as raw aiohttp/orjson
exceptions and are classified by the retry executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp
import orjson

logger = logging.getLogger(__name__)

USER_AGENT = "depin-telemetry/0.1"


@dataclass(frozen=True)
class HttpCall:
    """Transport-agnostic description of one upstream request."""

    method: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    json_body: dict[str, Any] | None = None


class Transport(Protocol):
    """Executes HttpCalls against one upstream."""

    async def request(self, call: HttpCall) -> Any: ...

    async def close(self) -> None: ...


class HttpTransport:
    """
    aiohttp-backed transport with bearer authentication.

    One session per transport, created lazily and closed by close().
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_ms: int = 30000,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_ms = timeout_ms
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            timeout = aiohttp.ClientTimeout(total=self._timeout_ms / 1000)
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(self, call: HttpCall) -> Any:
        """
        Execute a call and decode the JSON body.

        Returns:
            Decoded payload, or None for an empty body.

        Raises:
            aiohttp.ClientResponseError: On HTTP status >= 400.
            aiohttp.ClientError: On network errors.
            orjson.JSONDecodeError: On a malformed body.
        """
        url = f"{self._base_url}{call.path}"
        session = await self._get_session()

        async with session.request(
            call.method,
            url,
            params=call.params or None,
            data=orjson.dumps(call.json_body) if call.json_body is not None else None,
            headers={"Content-Type": "application/json"} if call.json_body is not None else None,
        ) as response:
            if response.status >= 400:
                text = await response.text()
                logger.warning(
                    "Upstream HTTP error",
                    extra={"status": response.status, "path": call.path, "body": text[:200]},
                )
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=text[:200],
                    headers=response.headers,
                )

            body = await response.read()
            if not body:
                return None
            return orjson.loads(body)
