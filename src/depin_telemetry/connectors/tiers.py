"""
Source tiers and the request model they share.

A connector answers each TelemetryRequest by trying an ordered list of
tiers (live, scraped, synthetic) until one returns. Every tier exposes the
same fetch(request) call; the synthetic tier never raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from depin_telemetry.connectors.cache import make_cache_key
from depin_telemetry.connectors.errors import (
    ConnectorError,
    ErrorKind,
    ScraperUnavailableError,
)
from depin_telemetry.contracts.telemetry import OptimizationParams, SourceTier

if TYPE_CHECKING:
    from collections.abc import Callable

    from depin_telemetry.adapters.base import NetworkAdapter
    from depin_telemetry.connectors.retry import RetryExecutor, RetryPolicy
    from depin_telemetry.connectors.scraper import ScrapeFallback
    from depin_telemetry.connectors.synth import TelemetrySynthesizer
    from depin_telemetry.connectors.transport import HttpCall, Transport
    from depin_telemetry.contracts.telemetry import Period

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    """Logical telemetry operations an adapter can serve."""

    NODE_STATUS = "node_status"
    EARNINGS = "earnings"
    METRICS = "metrics"
    PRICING = "pricing"
    NODE_IDS = "node_ids"


@dataclass(frozen=True)
class TelemetryRequest:
    """One logical request, independent of the tier that answers it."""

    operation: Operation
    node_id: str | None = None
    period: Period | None = None
    params: OptimizationParams | None = None

    def cache_key(self) -> str:
        body: dict[str, Any] = {}
        if self.period is not None:
            body["period"] = self.period.model_dump(mode="json")
        if self.params is not None:
            body["params"] = self.params.model_dump(mode="json")
        return make_cache_key(self.operation.value, self.node_id or "*", body)


@dataclass(frozen=True)
class TierResult:
    """A value together with the tier that produced it."""

    tier: SourceTier
    value: Any


@dataclass
class ConnectorMetrics:
    """
    Plain counters for one connector, exported by MetricsExporter.

    Keys of results_by_tier / errors_by_kind / results_by_operation are
    low-cardinality enum values.
    """

    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    coalesced: int = 0
    transport_calls: int = 0
    retries: int = 0
    scrape_failures: int = 0
    rate_limit_hints: int = 0
    results_by_tier: Counter[str] = field(default_factory=Counter)
    results_by_operation: Counter[str] = field(default_factory=Counter)
    errors_by_kind: Counter[str] = field(default_factory=Counter)

    def record_error(self, error: ConnectorError) -> None:
        self.errors_by_kind[error.kind.value] += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "coalesced": self.coalesced,
            "transport_calls": self.transport_calls,
            "retries": self.retries,
            "scrape_failures": self.scrape_failures,
            "rate_limit_hints": self.rate_limit_hints,
            "results_by_tier": dict(self.results_by_tier),
            "results_by_operation": dict(self.results_by_operation),
            "errors_by_kind": dict(self.errors_by_kind),
        }


class Tier(Protocol):
    """A source of telemetry for a request."""

    name: SourceTier

    async def fetch(self, request: TelemetryRequest) -> Any: ...


@dataclass
class LiveTier:
    """Structured upstream API, under the retry policy and call timeout."""

    adapter: NetworkAdapter
    transport: Transport
    executor: RetryExecutor
    policy: RetryPolicy
    timeout_s: float
    metrics: ConnectorMetrics
    on_rate_limited: Callable[[ConnectorError], None] | None = None
    name: SourceTier = field(default=SourceTier.LIVE, init=False)

    async def call(self, http_call: HttpCall) -> Any:
        """Run one HttpCall under retry. Raises the final ConnectorError."""

        async def attempt() -> Any:
            self.metrics.transport_calls += 1
            return await asyncio.wait_for(self.transport.request(http_call), self.timeout_s)

        return await self.executor.execute(attempt, self.policy, on_error=self._on_error)

    def _on_error(self, error: ConnectorError, attempt: int) -> None:
        self.metrics.record_error(error)
        if self.policy.should_retry(error, attempt):
            self.metrics.retries += 1
        if error.kind is ErrorKind.RATE_LIMITED and self.on_rate_limited is not None:
            self.on_rate_limited(error)

    async def fetch(self, request: TelemetryRequest) -> Any:
        spec = self.adapter.operations.get(request.operation)
        if spec is None:
            raise ConnectorError(
                f"{self.adapter.name} has no live endpoint for {request.operation.value}",
                ErrorKind.VALIDATION_FAILURE,
            )
        payload = await self.call(spec.build(request))
        return spec.parse(payload, request)


@dataclass
class ScrapedTier:
    """Dashboard scrape, attempted once without retries."""

    adapter: NetworkAdapter
    scraper: ScrapeFallback | None
    timeout_s: float
    name: SourceTier = field(default=SourceTier.SCRAPED, init=False)

    async def fetch(self, request: TelemetryRequest) -> Any:
        if self.scraper is None:
            raise ScraperUnavailableError()

        spec = self.adapter.operations.get(request.operation)
        if spec is None or spec.scrape is None or spec.parse_scraped is None:
            raise ScraperUnavailableError(
                f"{self.adapter.name} has no scrape target for {request.operation.value}"
            )

        fields = await asyncio.wait_for(self.scraper.extract(spec.scrape(request)), self.timeout_s)
        return spec.parse_scraped(fields, request)


@dataclass
class SyntheticTier:
    """Deterministic synthetic telemetry. Terminal tier; never raises."""

    synthesizer: TelemetrySynthesizer
    name: SourceTier = field(default=SourceTier.SYNTHETIC, init=False)

    async def fetch(self, request: TelemetryRequest) -> Any:
        synth = self.synthesizer
        node_id = request.node_id

        if request.operation is Operation.NODE_STATUS:
            return synth.node_status(node_id) if node_id else synth.node_statuses()
        if request.operation is Operation.METRICS:
            return synth.metrics(node_id) if node_id else synth.metrics_list()
        if request.operation is Operation.EARNINGS:
            # Connector always supplies a period for earnings
            assert request.period is not None
            return synth.earnings(request.period, node_id)
        if request.operation is Operation.PRICING:
            return synth.pricing(request.params or OptimizationParams(), node_id)
        return synth.node_ids()
