"""
Network adapter composition.

A NetworkAdapter is plain data: per-operation request builders and
response mappers, an optional dashboard scrape target, and the profile the
synthetic tier uses. One generic Connector runs every adapter.

The helpers below cover the REST payload shapes the supported networks
share (snake_case fields, list envelopes, ISO or epoch timestamps).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from depin_telemetry.connectors.errors import ConfigError
from depin_telemetry.connectors.scraper import ScrapeTarget, extract_number
from depin_telemetry.contracts.telemetry import (
    CapacitySpec,
    CpuSpec,
    Earnings,
    EarningsBreakdown,
    EarningsRate,
    GpuSpec,
    MarketPrices,
    NetworkQuality,
    NodeHealth,
    NodeLocation,
    NodeMetrics,
    NodeSpecs,
    NodeState,
    NodeStatus,
    Optimization,
    PerformanceMetrics,
    PricingStrategy,
    RecommendedPrices,
    Reputation,
    ResourceUtilization,
    SourceTier,
    StorageSpec,
    StorageType,
    Transaction,
    TransactionType,
)

if TYPE_CHECKING:
    from depin_telemetry.connectors.config import ConnectorConfig
    from depin_telemetry.connectors.synth import NetworkProfile
    from depin_telemetry.connectors.tiers import Operation, TelemetryRequest
    from depin_telemetry.connectors.transport import HttpCall
    from depin_telemetry.contracts.telemetry import Period

RequestBuilder = Callable[["TelemetryRequest"], "HttpCall"]
ResponseMapper = Callable[[Any, "TelemetryRequest"], Any]
ScrapeBuilder = Callable[["TelemetryRequest"], ScrapeTarget]
ScrapeMapper = Callable[[Mapping[str, "str | None"], "TelemetryRequest"], Any]


@dataclass(frozen=True)
class OperationSpec:
    """How one operation is served by the live and scraped tiers."""

    build: RequestBuilder
    parse: ResponseMapper
    scrape: ScrapeBuilder | None = None
    parse_scraped: ScrapeMapper | None = None


@dataclass(frozen=True)
class CredentialCheck:
    """Authenticated endpoint used by validate_credentials()."""

    build: Callable[[], HttpCall]
    permissions: tuple[str, ...] = ()
    limitations: tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkAdapter:
    """
    Per-network customization injected into a Connector.

    Attributes:
        name: Network identifier, also used as a metrics label.
        profile: Shape of synthetic telemetry for this network.
        default_base_url: API endpoint used when the config has none.
        requires_api_key: Live data needs a credential.
        requires_base_url: Live data needs an endpoint.
        dashboard_url: Site the scrape fallback reads from.
        operations: Live/scrape handling per operation. Operations absent
            here are always answered by the synthetic tier.
        credential_check: Endpoint proving a key is valid. None means the
            API is public.
        setup: Extra config checks run by initialize(); raise ConfigError.
    """

    name: str
    profile: NetworkProfile
    default_base_url: str | None = None
    requires_api_key: bool = True
    requires_base_url: bool = True
    dashboard_url: str | None = None
    operations: Mapping[Operation, OperationSpec] = field(default_factory=dict)
    credential_check: CredentialCheck | None = None
    setup: Callable[[ConnectorConfig], None] | None = None

    def resolve_base_url(self, config: ConnectorConfig) -> str | None:
        return config.base_url or self.default_base_url

    def resolve_site_url(self, config: ConnectorConfig) -> str | None:
        return config.scraper.site_url or self.dashboard_url

    def check_config(self, config: ConnectorConfig, *, live: bool) -> None:
        """
        Validate config for this network.

        Raises:
            ConfigError: If live data is demanded without a required key or
                endpoint, or adapter-specific setup rejects the config.
        """
        if live and self.requires_api_key and not config.has_api_key:
            raise ConfigError(f"{self.name} requires an API key for live data")
        if live and self.requires_base_url and not self.resolve_base_url(config):
            raise ConfigError(f"{self.name} requires a base URL")
        if self.setup is not None:
            self.setup(config)


# Payload helpers


def dig(payload: Any, path: str, default: Any = None) -> Any:
    """Nested lookup by dotted path; missing or null values give default."""
    current = payload
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


def first(payload: Any, *paths: str, default: Any = None) -> Any:
    """Value at the first path that is present."""
    for path in paths:
        value = dig(payload, path)
        if value is not None:
            return value
    return default


def num(payload: Any, *paths: str, default: float = 0.0) -> float:
    value = first(payload, *paths)
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def items(payload: Any, *keys: str) -> list[Any]:
    """List from a bare array or from the first matching envelope key."""
    if isinstance(payload, list):
        return payload
    for key in (*keys, "data", "items", "results"):
        value = dig(payload, key)
        if isinstance(value, list):
            return value
    return []


def parse_timestamp(value: Any, default: datetime | None = None) -> datetime:
    """
    Parse ISO-8601 strings or epoch seconds/milliseconds to aware UTC.

    Raises:
        ValueError: If value is missing and no default is given.
    """
    if value is None or value == "":
        if default is None:
            raise ValueError("missing timestamp")
        return default
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=UTC)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def period_days(period: Period) -> float:
    return max(period.duration / timedelta(days=1), 1 / 24)


def period_params(period: Period) -> dict[str, str]:
    return {"start": period.start.isoformat(), "end": period.end.isoformat()}


def one_or_many(
    payload: Any,
    request: TelemetryRequest,
    mapper: Callable[[Any], Any],
    *envelope_keys: str,
) -> Any:
    """Map a single record when a node id was requested, else a list."""
    if request.node_id:
        return mapper(payload)
    return [mapper(item) for item in items(payload, *envelope_keys)]


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


# Record builders shared by adapters


@dataclass(frozen=True)
class StatusFields:
    """Where each NodeStatus field lives in a network's node payload."""

    id: tuple[str, ...] = ("node_id", "id")
    name: tuple[str, ...] = ("name",)
    status: tuple[str, ...] = ("status",)
    uptime: tuple[str, ...] = ("uptime_seconds",)
    last_seen: tuple[str, ...] = ("last_seen",)
    cpu: tuple[str, ...] = ("cpu_usage",)
    memory: tuple[str, ...] = ("memory_usage",)
    storage: tuple[str, ...] = ("storage_usage",)
    network: tuple[str, ...] = ("network_speed",)
    version: tuple[str, ...] = ("version",)
    specs: str = "specs"
    gpu_memory: tuple[str, ...] = ("memory",)
    gpu_compute: tuple[str, ...] = ("compute_power",)


DEFAULT_STATUS_FIELDS = StatusFields()


def build_node_status(
    data: Any,
    *,
    display_name: str,
    fields: StatusFields = DEFAULT_STATUS_FIELDS,
    source: SourceTier = SourceTier.LIVE,
) -> NodeStatus:
    node_id = str(first(data, *fields.id, default=""))
    if not node_id:
        raise ValueError("node payload has no id")

    specs_data = dig(data, fields.specs)
    specs = None
    if isinstance(specs_data, Mapping):
        gpu_data = dig(specs_data, "gpu")
        specs = NodeSpecs(
            cpu=CpuSpec(
                cores=max(1, int(num(specs_data, "cpu_cores", default=1))),
                model=str(first(specs_data, "cpu_model", default="Unknown")),
                frequency_ghz=num(specs_data, "cpu_frequency"),
            ),
            memory=CapacitySpec(
                total_gb=num(specs_data, "memory_total", "ram_total", "memory_gb"),
                available_gb=num(specs_data, "memory_available", "ram_available"),
            ),
            storage=StorageSpec(
                total_gb=num(specs_data, "storage_total", "storage_gb"),
                available_gb=num(specs_data, "storage_available"),
                type=_storage_type(first(specs_data, "storage_type")),
            ),
            gpu=GpuSpec(
                model=str(first(gpu_data, "model", default="Unknown")),
                memory_gb=num(gpu_data, *fields.gpu_memory),
                compute_tflops=num(gpu_data, *fields.gpu_compute),
            )
            if isinstance(gpu_data, Mapping)
            else None,
        )

    location = dig(data, "location")
    return NodeStatus(
        id=node_id,
        name=str(first(data, *fields.name, default=f"{display_name} Node {node_id}")),
        status=NodeState.from_upstream(first(data, *fields.status)),
        uptime_s=int(num(data, *fields.uptime)),
        last_seen=parse_timestamp(first(data, *fields.last_seen), default=datetime.now(UTC)),
        health=NodeHealth(
            cpu=clamp_pct(num(data, *fields.cpu)),
            memory=clamp_pct(num(data, *fields.memory)),
            storage=clamp_pct(num(data, *fields.storage)),
            network=max(0.0, num(data, *fields.network)),
        ),
        location=NodeLocation(
            country=str(first(location, "country", default="Unknown")),
            region=str(first(location, "region", default="Unknown")),
            latitude=first(location, "lat", "latitude"),
            longitude=first(location, "lng", "longitude"),
        )
        if isinstance(location, Mapping)
        else None,
        version=_optional_str(first(data, *fields.version)),
        specs=specs,
        source=source,
    )


def _storage_type(raw: Any) -> StorageType:
    value = str(raw or "").lower()
    for member in StorageType:
        if member.value.lower() == value:
            return member
    return StorageType.SSD


def build_transactions(
    entries: list[Any],
    *,
    amount_scale: float = 1.0,
    description: Callable[[Any], str] | None = None,
) -> list[Transaction]:
    transactions = []
    for entry in entries:
        try:
            tx_type = TransactionType(first(entry, "type", default="earnings"))
        except ValueError:
            tx_type = TransactionType.EARNINGS
        transactions.append(
            Transaction(
                id=str(first(entry, "id", "tx_id", default="")),
                timestamp=parse_timestamp(first(entry, "timestamp", "created_at")),
                amount=num(entry, "amount", "points") * amount_scale,
                type=tx_type,
                description=description(entry) if description else str(
                    first(entry, "description", default="")
                ),
                tx_hash=first(entry, "tx_hash", "transaction_hash"),
            )
        )
    return transactions


def build_metrics(
    data: Any,
    node_id: str,
    *,
    totals: Any = None,
    source: SourceTier = SourceTier.LIVE,
) -> NodeMetrics:
    reputation = dig(data, "reputation")
    gpu = first(data, "gpu_utilization")
    total_nodes = num(reputation, "total_nodes", default=num(totals, "total_nodes", default=1))
    return NodeMetrics(
        node_id=node_id,
        performance=PerformanceMetrics(
            tasks_completed=int(num(data, "tasks_completed", "jobs_completed", "sessions_completed")),
            tasks_active=int(num(data, "tasks_active", "jobs_active", "active_sessions")),
            tasks_failed=int(num(data, "tasks_failed", "jobs_failed", "failed_sessions")),
            average_task_duration_s=num(
                data, "avg_task_duration", "avg_job_duration", "avg_session_duration"
            ),
            success_rate=clamp_pct(num(data, "success_rate")),
        ),
        resource_utilization=ResourceUtilization(
            cpu=clamp_pct(num(data, "cpu_utilization", "cpu_usage")),
            memory=clamp_pct(num(data, "memory_utilization", "memory_usage")),
            storage=clamp_pct(num(data, "storage_utilization", "storage_usage")),
            bandwidth=max(0.0, num(data, "bandwidth_utilization", "bandwidth_mbps")),
            gpu=clamp_pct(float(gpu)) if gpu is not None else None,
        ),
        earnings=EarningsRate(
            hourly=num(data, "earnings.hourly"),
            daily=num(data, "earnings.daily"),
            weekly=num(data, "earnings.weekly"),
            monthly=num(data, "earnings.monthly"),
        ),
        network=NetworkQuality(
            latency_ms=num(data, "network.latency", "ping_ms"),
            throughput_mbps=num(data, "network.throughput"),
            uptime=clamp_pct(num(data, "network.uptime", "uptime_percentage")),
        ),
        reputation=Reputation(
            score=num(reputation, "score"),
            rank=max(1, int(num(reputation, "rank", default=1))),
            total_nodes=max(1, int(total_nodes)),
        )
        if isinstance(reputation, Mapping)
        else None,
        source=source,
    )


def build_pricing(
    data: Any,
    *,
    recommended: str = "recommended",
    price_keys: Mapping[str, tuple[str, ...]] | None = None,
    market_keys: Mapping[str, tuple[str, ...]] | None = None,
    optimization: str = "optimization",
    default_suggestion: str = "No optimization available",
    default_confidence: float = 0.0,
    source: SourceTier = SourceTier.LIVE,
) -> PricingStrategy:
    keys = price_keys or {
        "cpu": ("cpu_price",),
        "memory": ("memory_price",),
        "storage": ("storage_price",),
        "bandwidth": ("bandwidth_price",),
        "gpu": ("gpu_price",),
    }
    market = market_keys or {
        "average": ("average",),
        "minimum": ("minimum",),
        "maximum": ("maximum",),
    }
    prices = dig(data, recommended, {})
    gpu = first(prices, *keys["gpu"])
    opt = dig(data, optimization, {})
    return PricingStrategy(
        recommended=RecommendedPrices(
            cpu=num(prices, *keys["cpu"]),
            memory=num(prices, *keys["memory"]),
            storage=num(prices, *keys["storage"]),
            bandwidth=num(prices, *keys["bandwidth"]),
            gpu=float(gpu) if gpu is not None else None,
        ),
        market=MarketPrices(
            average=num(data, *(f"market.{k}" for k in market["average"])),
            minimum=num(data, *(f"market.{k}" for k in market["minimum"])),
            maximum=num(data, *(f"market.{k}" for k in market["maximum"])),
        ),
        optimization=Optimization(
            suggestion=str(first(opt, "suggestion", default=default_suggestion)),
            expected_increase=num(opt, "expected_increase"),
            confidence_score=min(1.0, max(0.0, num(opt, "confidence", default=default_confidence))),
        ),
        source=source,
    )


def scraped_earnings(
    profile: NetworkProfile,
    field_name: str = "total_earnings",
) -> ScrapeMapper:
    """
    Mapper for a dashboard earnings total.

    The total is split by the network's usual breakdown shares. Raises
    ValueError when the page has no readable total, which moves the
    request on to the synthetic tier.
    """

    def parse(fields: Mapping[str, str | None], request: TelemetryRequest) -> Earnings:
        total = extract_number(fields.get(field_name))
        if total is None or total < 0:
            raise ValueError(f"no {field_name} on dashboard")
        assert request.period is not None
        days = period_days(request.period)
        return Earnings(
            period=request.period,
            total=total,
            currency=profile.currency,
            breakdown=EarningsBreakdown(
                **{name: round(total * share, 6) for name, share in profile.breakdown}
            ),
            transactions=[],
            projected_monthly=round(total * 30 / days, 6),
            projected_yearly=round(total * 365 / days, 6),
            source=SourceTier.SCRAPED,
        )

    return parse


def scraped_node_ids(field_name: str = "node_ids") -> ScrapeMapper:
    """Mapper for a whitespace- or comma-separated list of node ids."""

    def parse(fields: Mapping[str, str | None], request: TelemetryRequest) -> list[str]:
        raw = fields.get(field_name) or ""
        ids = [token for token in raw.replace(",", " ").split() if token]
        if not ids:
            raise ValueError("no node ids on dashboard")
        return ids

    return parse
