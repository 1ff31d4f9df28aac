"""
Connector configuration.

ConnectorConfig is immutable; a Connector changes it only through an
explicit reconfigure(). Environment variables are read once, when the
config is built with from_env(), never per request.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

import orjson

from depin_telemetry.connectors.errors import ConfigError
from depin_telemetry.connectors.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class RateLimitPolicy:
    """Request quota per window."""

    requests: int = 60
    window_ms: int = 60000

    def __post_init__(self) -> None:
        if self.requests <= 0:
            raise ConfigError(f"rate limit requests must be > 0, got {self.requests}")
        if self.window_ms <= 0:
            raise ConfigError(f"rate limit window_ms must be > 0, got {self.window_ms}")


@dataclass(frozen=True)
class CachePolicy:
    enabled: bool = True
    ttl_s: float = 300.0
    max_entries: int = 1000
    eviction_interval_s: float = 60.0
    # Share one upstream fetch between concurrent identical misses
    coalesce_inflight: bool = True

    def __post_init__(self) -> None:
        if self.ttl_s <= 0:
            raise ConfigError(f"cache ttl_s must be > 0, got {self.ttl_s}")
        if self.max_entries <= 0:
            raise ConfigError(f"cache max_entries must be > 0, got {self.max_entries}")
        if self.eviction_interval_s <= 0:
            raise ConfigError(
                f"cache eviction_interval_s must be > 0, got {self.eviction_interval_s}"
            )


@dataclass(frozen=True)
class ScrapePolicy:
    enabled: bool = False
    headless: bool = True
    timeout_ms: int = 30000
    site_url: str | None = None  # Overrides the adapter's dashboard URL

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ConfigError(f"scrape timeout_ms must be > 0, got {self.timeout_ms}")


@dataclass(frozen=True)
class ConnectorConfig:
    """
    Settings for one network connector.

    Attributes:
        api_key: Credential enabling the live tier. Never logged or repr'd.
        base_url: API endpoint; adapters supply a default.
        timeout_ms: Bound on every transport call.
        use_synthetic: Explicit synthetic-data switch. None means synthetic
            only when the adapter requires a key and none is configured.
    """

    api_key: str | None = field(default=None, repr=False)
    base_url: str | None = None
    timeout_ms: int = 30000
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    rate_limit: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    cache: CachePolicy = field(default_factory=CachePolicy)
    scraper: ScrapePolicy = field(default_factory=ScrapePolicy)
    use_synthetic: bool | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.base_url is not None and not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def with_changes(self, **changes: Any) -> ConnectorConfig:
        """Copy with top-level fields replaced. Unknown fields raise ConfigError."""
        try:
            return replace(self, **changes)
        except TypeError as e:
            raise ConfigError(f"invalid config change: {e}") from e

    def fingerprint(self) -> str:
        """Stable digest of every setting, used for instance reuse."""
        body = orjson.dumps(asdict(self), option=orjson.OPT_SORT_KEYS, default=_encode)
        return hashlib.sha256(body).hexdigest()[:16]

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> ConnectorConfig:
        """
        Build from environment-style keys.

        Recognized keys: apiKey, baseUrl, timeoutMs, retryAttempts,
        retryBaseDelayMs, rateLimitRequests, rateLimitWindowMs, cacheEnabled,
        cacheTtlSeconds, scraperEnabled, scraperUrl, useSyntheticData.
        String values are coerced; absent keys keep their defaults.
        """
        defaults = cls()

        def get(key: str) -> Any:
            value = settings.get(key)
            return None if value is None or value == "" else value

        retry = defaults.retry
        if get("retryAttempts") is not None or get("retryBaseDelayMs") is not None:
            attempts = _as_int(get("retryAttempts"), "retryAttempts", retry.max_attempts)
            base_delay = _as_int(get("retryBaseDelayMs"), "retryBaseDelayMs", retry.base_delay_ms)
            retry = replace(
                retry,
                max_attempts=attempts,
                base_delay_ms=base_delay,
                max_delay_ms=max(retry.max_delay_ms, base_delay),
            )

        return cls(
            api_key=get("apiKey"),
            base_url=get("baseUrl"),
            timeout_ms=_as_int(get("timeoutMs"), "timeoutMs", defaults.timeout_ms),
            retry=retry,
            rate_limit=RateLimitPolicy(
                requests=_as_int(
                    get("rateLimitRequests"), "rateLimitRequests", defaults.rate_limit.requests
                ),
                window_ms=_as_int(
                    get("rateLimitWindowMs"), "rateLimitWindowMs", defaults.rate_limit.window_ms
                ),
            ),
            cache=replace(
                defaults.cache,
                enabled=_as_bool(get("cacheEnabled"), "cacheEnabled", defaults.cache.enabled),
                ttl_s=_as_float(get("cacheTtlSeconds"), "cacheTtlSeconds", defaults.cache.ttl_s),
            ),
            scraper=replace(
                defaults.scraper,
                enabled=_as_bool(get("scraperEnabled"), "scraperEnabled", defaults.scraper.enabled),
                site_url=get("scraperUrl"),
            ),
            use_synthetic=_as_bool(get("useSyntheticData"), "useSyntheticData", None),
        )

    @classmethod
    def from_env(cls, network: str, environ: Mapping[str, str] | None = None) -> ConnectorConfig:
        """
        Build from <NETWORK>_* variables plus the global USE_SYNTHETIC_DATA.

        Example for io.net: IONET_API_KEY, IONET_BASE_URL, IONET_TIMEOUT_MS,
        IONET_RETRY_ATTEMPTS, IONET_RETRY_BASE_DELAY_MS,
        IONET_RATE_LIMIT_REQUESTS, IONET_RATE_LIMIT_WINDOW_MS,
        IONET_CACHE_ENABLED, IONET_CACHE_TTL_SECONDS, IONET_SCRAPER_ENABLED,
        IONET_SCRAPER_URL.
        """
        env = os.environ if environ is None else environ
        prefix = network.upper().replace("-", "_").replace(".", "_")
        settings = {key: env.get(f"{prefix}_{suffix}") for key, suffix in _ENV_SUFFIXES.items()}
        settings["useSyntheticData"] = env.get(f"{prefix}_USE_SYNTHETIC_DATA") or env.get(
            "USE_SYNTHETIC_DATA"
        )
        return cls.from_settings(settings)


_ENV_SUFFIXES = {
    "apiKey": "API_KEY",
    "baseUrl": "BASE_URL",
    "timeoutMs": "TIMEOUT_MS",
    "retryAttempts": "RETRY_ATTEMPTS",
    "retryBaseDelayMs": "RETRY_BASE_DELAY_MS",
    "rateLimitRequests": "RATE_LIMIT_REQUESTS",
    "rateLimitWindowMs": "RATE_LIMIT_WINDOW_MS",
    "cacheEnabled": "CACHE_ENABLED",
    "cacheTtlSeconds": "CACHE_TTL_SECONDS",
    "scraperEnabled": "SCRAPER_ENABLED",
    "scraperUrl": "SCRAPER_URL",
}


def _encode(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(x.value if isinstance(x, Enum) else str(x) for x in obj)
    raise TypeError(f"unserializable config value: {type(obj).__name__}")


def _as_bool(value: Any, key: str, default: bool | None) -> Any:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from e


def _as_float(value: Any, key: str, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number, got {value!r}") from e
