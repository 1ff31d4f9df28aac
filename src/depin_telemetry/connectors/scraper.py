"""
Best-effort HTML extraction for when a network's API is unavailable.

Pages are fetched with aiohttp and fields are pulled out with a small
selector language (".class", ".outer .inner", "#id") matched by regex.
Nested elements with the same tag are not balanced; dashboards are expected
to mark leaf values with their own class.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html import unescape
from typing import TYPE_CHECKING

import aiohttp

from depin_telemetry.connectors.errors import ConnectorError, ErrorKind

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; depin-telemetry/0.1)"

_BLOCK_INDICATORS = (
    "captcha",
    "cf-chl",
    "/challenge",
    "attention required",
    "access denied",
    "verify you are human",
)

_TAG_STRIP = re.compile(r"<[^>]+>")
_SCRIPT_STYLE = re.compile(r"<(script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class ScrapeTarget:
    """Page path plus named selectors to extract from it."""

    path: str
    selectors: Mapping[str, str] = field(default_factory=dict)


def normalize_text(value: str) -> str:
    return " ".join(unescape(value).replace("\xa0", " ").split())


def extract_number(raw: str | None) -> float | None:
    """First number in raw, ignoring thousands separators."""
    if not raw:
        return None
    match = re.search(r"-?\d[\d,]*\.?\d*", raw)
    if not match:
        return None
    try:
        return float(match.group(0).replace(",", ""))
    except ValueError:
        return None


def looks_like_block_page(content: str) -> bool:
    low = content.lower()
    return any(marker in low for marker in _BLOCK_INDICATORS)


def _element_pattern(token: str) -> re.Pattern[str]:
    if token.startswith("#"):
        attr = rf'id\s*=\s*["\']{re.escape(token[1:])}["\']'
    elif token.startswith("."):
        attr = rf'class\s*=\s*["\'][^"\']*(?<![\w-]){re.escape(token[1:])}(?![\w-])[^"\']*["\']'
    else:
        raise ValueError(f"unsupported selector token: {token!r}")
    return re.compile(
        rf"<(?P<tag>[a-zA-Z][\w-]*)\b[^>]*{attr}[^>]*>(?P<inner>.*?)</(?P=tag)\s*>",
        re.IGNORECASE | re.DOTALL,
    )


def select_html(content: str, selector: str) -> str | None:
    """Inner HTML of the first element matching selector, or None."""
    scope = content
    for token in selector.split():
        match = _element_pattern(token).search(scope)
        if match is None:
            return None
        scope = match.group("inner")
    return scope


def select_text(content: str, selector: str) -> str | None:
    """Normalized text of the first element matching selector, or None."""
    inner = select_html(content, selector)
    if inner is None:
        return None
    return normalize_text(_TAG_STRIP.sub(" ", inner))


def extract_fields(content: str, selectors: Mapping[str, str]) -> dict[str, str | None]:
    """Apply each named selector to a page. Missing elements map to None."""
    cleaned = _SCRIPT_STYLE.sub("", content)
    return {name: select_text(cleaned, selector) for name, selector in selectors.items()}


class ScrapeFallback:
    """
    Fetches dashboard pages and extracts named fields.

    One attempt per call; the connector never retries a scrape.
    """

    def __init__(
        self,
        site_url: str,
        *,
        timeout_ms: int = 30000,
        headless: bool = True,
    ) -> None:
        self._site_url = site_url.rstrip("/")
        self._timeout_ms = timeout_ms
        # Pages are fetched without a browser; kept so configs stay portable
        self.headless = headless
        self._session: aiohttp.ClientSession | None = None
        self.pages_fetched = 0

    @property
    def site_url(self) -> str:
        return self._site_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": USER_AGENT}
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_page(self, path: str) -> str:
        """
        Fetch one page.

        Raises:
            aiohttp.ClientError: On network or HTTP errors.
            ConnectorError: If the page is an anti-bot challenge.
        """
        url = f"{self._site_url}{path}"
        session = await self._get_session()
        async with session.get(url) as response:
            response.raise_for_status()
            content = await response.text(errors="ignore")

        self.pages_fetched += 1
        if looks_like_block_page(content):
            raise ConnectorError(
                f"Blocked by anti-bot challenge at {path}",
                ErrorKind.VALIDATION_FAILURE,
                details={"path": path},
            )
        return content

    async def extract(self, target: ScrapeTarget) -> dict[str, str | None]:
        """Fetch target.path and apply its selectors."""
        content = await self.fetch_page(target.path)
        fields = extract_fields(content, target.selectors)
        logger.debug(
            "Scraped page",
            extra={
                "path": target.path,
                "found": sum(1 for v in fields.values() if v is not None),
                "wanted": len(fields),
            },
        )
        return fields
