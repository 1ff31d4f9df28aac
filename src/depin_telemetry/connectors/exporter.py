"""
Prometheus exporter for connector counters.

Labels are low-cardinality only: network, tier, operation, outcome and
error kind. Node ids, device ids and URLs never become labels.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from depin_telemetry.connectors.connector import Connector
    from depin_telemetry.connectors.tiers import ConnectorMetrics

FORBIDDEN_LABELS = frozenset(
    {
        "node_id",
        "device_id",
        "url",
        "path",
        "endpoint",
        "query",
        "api_key",
        "token",
        "request_id",
    }
)

# Scalar ConnectorMetrics fields exported as plain per-network counters
_SCALAR_COUNTERS: dict[str, tuple[str, str]] = {
    "requests": ("depin_requests", "Logical telemetry requests received"),
    "transport_calls": ("depin_transport_calls", "Live transport attempts, retries included"),
    "retries": ("depin_retries", "Live attempts repeated after a retryable failure"),
    "scrape_failures": ("depin_scrape_failures", "Scrape fallbacks that failed"),
    "rate_limit_hints": ("depin_rate_limit_hints", "429 responses applied as limiter backoff"),
}

_CACHE_OUTCOMES = {"hit": "cache_hits", "miss": "cache_misses", "coalesced": "coalesced"}


class MetricsExporter:
    """
    Maps each Connector's ConnectorMetrics into Prometheus.

    Counters are incremented by the delta since the previous update, so
    update() can be called on every scrape or on a timer.

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(connector_registry.connectors())
        # generate_latest(registry) -> bytes for /metrics
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._scalars = {
            attr: Counter(name, doc, ["network"], registry=self._registry)
            for attr, (name, doc) in _SCALAR_COUNTERS.items()
        }
        self._results = Counter(
            "depin_results",
            "Requests answered, by source tier",
            ["network", "tier"],
            registry=self._registry,
        )
        self._operations = Counter(
            "depin_operations",
            "Requests answered by the tier chain, by operation",
            ["network", "operation"],
            registry=self._registry,
        )
        self._cache = Counter(
            "depin_cache_lookups",
            "Cache lookups by outcome (hit, miss, coalesced)",
            ["network", "outcome"],
            registry=self._registry,
        )
        self._errors = Counter(
            "depin_errors",
            "Classified live tier failures, by error kind",
            ["network", "kind"],
            registry=self._registry,
        )
        self._ready = Gauge(
            "depin_connector_ready",
            "1 when the connector is READY",
            ["network"],
            registry=self._registry,
        )
        self._remaining = Gauge(
            "depin_rate_limit_remaining",
            "Tokens left in the rate limiter bucket",
            ["network"],
            registry=self._registry,
        )

        # Last seen value per (connector, series); counters are monotonic
        self._last: dict[tuple[str, str], int] = {}

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def update(self, connectors: Iterable[Connector]) -> None:
        """
        Sync every connector's counters and gauges.

        Pass every managed connector on each call; tracking for connectors
        no longer passed (removed or disposed and dropped) is released.
        """
        ready: dict[str, int] = {}
        seen: set[str] = set()
        for connector in connectors:
            network = connector.network
            source = f"{network}#{connector.instance_id}"
            seen.add(source)
            self._update_counters(network, source, connector.metrics)

            ready[network] = max(ready.get(network, 0), int(connector.is_ready))
            if connector.is_ready:
                self._remaining.labels(network=network).set(
                    connector.get_info().rate_limit.remaining
                )

        for network, value in ready.items():
            self._ready.labels(network=network).set(value)

        for key in [k for k in self._last if k[0] not in seen]:
            del self._last[key]

    def _update_counters(self, network: str, source: str, metrics: ConnectorMetrics) -> None:
        for attr, counter in self._scalars.items():
            self._inc(counter.labels(network=network), source, attr, getattr(metrics, attr))

        for outcome, attr in _CACHE_OUTCOMES.items():
            self._inc(
                self._cache.labels(network=network, outcome=outcome),
                source,
                attr,
                getattr(metrics, attr),
            )

        self._inc_each(self._results, "tier", network, source, metrics.results_by_tier)
        self._inc_each(
            self._operations, "operation", network, source, metrics.results_by_operation
        )
        self._inc_each(self._errors, "kind", network, source, metrics.errors_by_kind)

    def _inc_each(
        self,
        counter: Counter,
        label: str,
        network: str,
        source: str,
        values: Mapping[str, int],
    ) -> None:
        for value, count in values.items():
            self._inc(
                counter.labels(network=network, **{label: value}),
                source,
                f"{label}:{value}",
                count,
            )

    def _inc(self, child: Counter, source: str, series: str, current: int) -> None:
        key = (source, series)
        delta = current - self._last.get(key, 0)
        if delta > 0:
            child.inc(delta)
        self._last[key] = current

    def reset_counter_tracking(self) -> None:
        """Forget last seen values. Does not reset the Prometheus counters."""
        self._last.clear()


# Counters are exported with the _total suffix by prometheus_client
EXPORTED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        "depin_requests_total",
        "depin_transport_calls_total",
        "depin_retries_total",
        "depin_scrape_failures_total",
        "depin_rate_limit_hints_total",
        "depin_results_total",
        "depin_operations_total",
        "depin_cache_lookups_total",
        "depin_errors_total",
        "depin_connector_ready",
        "depin_rate_limit_remaining",
    }
)
