"""Acquisition and resilience layer shared by every network connector."""

from depin_telemetry.connectors.cache import MISS, CacheStats, CacheStore, make_cache_key
from depin_telemetry.connectors.config import (
    CachePolicy,
    ConnectorConfig,
    RateLimitPolicy,
    ScrapePolicy,
)
from depin_telemetry.connectors.connector import Connector, ConnectorState
from depin_telemetry.connectors.errors import (
    ConfigError,
    ConnectorError,
    ErrorKind,
    NotInitializedError,
    ScraperUnavailableError,
    classify_error,
    classify_status,
)
from depin_telemetry.connectors.rate_limiter import RateLimiter, RateLimitInfo
from depin_telemetry.connectors.retry import RetryExecutor, RetryPolicy, compute_backoff_delay
from depin_telemetry.connectors.scraper import ScrapeFallback, ScrapeTarget
from depin_telemetry.connectors.synth import DeterministicSynthesizer, TelemetrySynthesizer
from depin_telemetry.connectors.tiers import ConnectorMetrics, Operation, TelemetryRequest

__all__ = [
    "MISS",
    "CacheStats",
    "CachePolicy",
    "CacheStore",
    "ConfigError",
    "Connector",
    "ConnectorConfig",
    "ConnectorError",
    "ConnectorMetrics",
    "ConnectorState",
    "DeterministicSynthesizer",
    "ErrorKind",
    "NotInitializedError",
    "Operation",
    "RateLimitInfo",
    "RateLimitPolicy",
    "RateLimiter",
    "RetryExecutor",
    "RetryPolicy",
    "ScrapeFallback",
    "ScrapePolicy",
    "ScrapeTarget",
    "ScraperUnavailableError",
    "TelemetryRequest",
    "TelemetrySynthesizer",
    "classify_error",
    "classify_status",
    "compute_backoff_delay",
    "make_cache_key",
]
