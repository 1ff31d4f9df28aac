"""
Canonical telemetry contracts.

Every network adapter produces these shapes regardless of which tier
satisfied the request. Only the `source` tag tells a live answer apart from
a scraped or synthetic one, and billing-adjacent consumers must check it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

import orjson
from pydantic import BaseModel, ConfigDict, Field, model_validator

R = TypeVar("R", bound="TelemetryRecord")


class SourceTier(str, Enum):
    """Tier that produced a record, in order of preference."""

    LIVE = "live"
    SCRAPED = "scraped"
    SYNTHETIC = "synthetic"


class NodeState(str, Enum):
    """Operational state of a node."""

    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    ERROR = "error"

    @classmethod
    def from_upstream(cls, raw: str | None) -> NodeState:
        """Map an upstream status string. Unknown values mean offline."""
        value = (raw or "").strip().lower()
        if value in ("active", "running", "online"):
            return cls.ONLINE
        if value in ("maintenance", "updating"):
            return cls.MAINTENANCE
        if value in ("error", "failed"):
            return cls.ERROR
        return cls.OFFLINE


class TelemetryRecord(BaseModel):
    """Base for immutable records with orjson round-tripping."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json"))

    @classmethod
    def from_json(cls: type[R], data: bytes | str) -> R:
        """Deserialize from JSON."""
        if isinstance(data, str):
            data = data.encode()
        return cls.model_validate(orjson.loads(data))


# Node status


class NodeHealth(TelemetryRecord):
    cpu: float = Field(..., ge=0, le=100, description="CPU usage (%)")
    memory: float = Field(..., ge=0, le=100, description="Memory usage (%)")
    storage: float = Field(..., ge=0, le=100, description="Storage usage (%)")
    network: float = Field(..., ge=0, description="Network throughput (Mbps)")


class NodeLocation(TelemetryRecord):
    country: str
    region: str
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class CpuSpec(TelemetryRecord):
    cores: int = Field(..., ge=1)
    model: str
    frequency_ghz: float = Field(..., ge=0)


class CapacitySpec(TelemetryRecord):
    total_gb: float = Field(..., ge=0)
    available_gb: float = Field(..., ge=0)


class StorageType(str, Enum):
    SSD = "SSD"
    HDD = "HDD"
    NVME = "NVMe"


class StorageSpec(CapacitySpec):
    type: StorageType = StorageType.SSD


class GpuSpec(TelemetryRecord):
    model: str
    memory_gb: float = Field(..., ge=0)
    compute_tflops: float = Field(..., ge=0)


class NodeSpecs(TelemetryRecord):
    cpu: CpuSpec
    memory: CapacitySpec
    storage: StorageSpec
    gpu: GpuSpec | None = None


class NodeStatus(TelemetryRecord):
    """
    Point-in-time status of one node.

    Attributes:
        id: Node identifier on the upstream network.
        name: Display name.
        status: Operational state.
        uptime_s: Seconds since the node last came online.
        last_seen: Last heartbeat (UTC).
        health: Resource usage snapshot.
        source: Tier that produced this record.
    """

    id: str = Field(..., min_length=1)
    name: str
    status: NodeState
    uptime_s: int = Field(..., ge=0)
    last_seen: datetime
    health: NodeHealth
    location: NodeLocation | None = None
    version: str | None = None
    specs: NodeSpecs | None = None
    source: SourceTier


# Earnings


class PeriodType(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    CUSTOM = "custom"


_PERIOD_SPANS: dict[PeriodType, timedelta] = {
    PeriodType.HOUR: timedelta(hours=1),
    PeriodType.DAY: timedelta(days=1),
    PeriodType.WEEK: timedelta(days=7),
    PeriodType.MONTH: timedelta(days=30),
    PeriodType.YEAR: timedelta(days=365),
}


class Period(TelemetryRecord):
    """Reporting window. end must not precede start."""

    start: datetime
    end: datetime
    type: PeriodType = PeriodType.CUSTOM

    @model_validator(mode="after")
    def validate_order(self) -> Period:
        if self.end < self.start:
            raise ValueError("period end precedes start")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @classmethod
    def last(cls, period_type: PeriodType | str, now: datetime) -> Period:
        """Trailing window of the given type ending at now."""
        period_type = PeriodType(period_type)
        span = _PERIOD_SPANS.get(period_type)
        if span is None:
            raise ValueError("custom periods need explicit start and end")
        return cls(start=now - span, end=now, type=period_type)


class EarningsBreakdown(TelemetryRecord):
    compute: float | None = None
    storage: float | None = None
    bandwidth: float | None = None
    staking: float | None = None
    rewards: float | None = None


class TransactionType(str, Enum):
    EARNINGS = "earnings"
    PENALTY = "penalty"
    BONUS = "bonus"
    STAKING_REWARD = "staking_reward"


class Transaction(TelemetryRecord):
    id: str
    timestamp: datetime
    amount: float
    type: TransactionType
    description: str = ""
    tx_hash: str | None = None


class Earnings(TelemetryRecord):
    """Earnings over a period, in the network's native currency."""

    period: Period
    total: float = Field(..., ge=0)
    currency: str = Field(..., min_length=1)
    breakdown: EarningsBreakdown = Field(default_factory=EarningsBreakdown)
    transactions: list[Transaction] = Field(default_factory=list)
    projected_monthly: float | None = None
    projected_yearly: float | None = None
    source: SourceTier


# Metrics


class PerformanceMetrics(TelemetryRecord):
    tasks_completed: int = Field(..., ge=0)
    tasks_active: int = Field(..., ge=0)
    tasks_failed: int = Field(..., ge=0)
    average_task_duration_s: float = Field(..., ge=0)
    success_rate: float = Field(..., ge=0, le=100, description="Percent of tasks succeeded")


class ResourceUtilization(TelemetryRecord):
    cpu: float = Field(..., ge=0, le=100)
    memory: float = Field(..., ge=0, le=100)
    storage: float = Field(..., ge=0, le=100)
    bandwidth: float = Field(..., ge=0)
    gpu: float | None = Field(default=None, ge=0, le=100)


class EarningsRate(TelemetryRecord):
    hourly: float = Field(..., ge=0)
    daily: float = Field(..., ge=0)
    weekly: float = Field(..., ge=0)
    monthly: float = Field(..., ge=0)


class NetworkQuality(TelemetryRecord):
    latency_ms: float = Field(..., ge=0)
    throughput_mbps: float = Field(..., ge=0)
    uptime: float = Field(..., ge=0, le=100, description="Uptime (%)")


class Reputation(TelemetryRecord):
    score: float = Field(..., ge=0)
    rank: int = Field(..., ge=1)
    total_nodes: int = Field(..., ge=1)


class NodeMetrics(TelemetryRecord):
    """Performance and utilization metrics for one node."""

    node_id: str = Field(..., min_length=1)
    performance: PerformanceMetrics
    resource_utilization: ResourceUtilization
    earnings: EarningsRate
    network: NetworkQuality
    reputation: Reputation | None = None
    source: SourceTier


# Pricing


class PriceStrategy(str, Enum):
    COMPETITIVE = "competitive"
    PREMIUM = "premium"
    BUDGET = "budget"


class MarketConditions(str, Enum):
    HIGH_DEMAND = "high_demand"
    NORMAL = "normal"
    LOW_DEMAND = "low_demand"


class OptimizationParams(TelemetryRecord):
    """Inputs to pricing optimization."""

    target_utilization: float = Field(default=80.0, ge=0, le=100)
    price_strategy: PriceStrategy = PriceStrategy.COMPETITIVE
    market_conditions: MarketConditions = MarketConditions.NORMAL
    historical_data: bool = False


class RecommendedPrices(TelemetryRecord):
    cpu: float = Field(..., ge=0)
    memory: float = Field(..., ge=0)
    storage: float = Field(..., ge=0)
    bandwidth: float = Field(..., ge=0)
    gpu: float | None = Field(default=None, ge=0)


class MarketPrices(TelemetryRecord):
    average: float = Field(..., ge=0)
    minimum: float = Field(..., ge=0)
    maximum: float = Field(..., ge=0)


class Optimization(TelemetryRecord):
    suggestion: str
    expected_increase: float = Field(..., description="Expected earnings change (%)")
    confidence_score: float = Field(..., ge=0, le=1)


class PricingStrategy(TelemetryRecord):
    """Recommended pricing with market context."""

    recommended: RecommendedPrices
    market: MarketPrices
    optimization: Optimization
    source: SourceTier


class NodeIdList(TelemetryRecord):
    """Node ids on an account, tagged with the tier that listed them."""

    ids: list[str]
    source: SourceTier


# Diagnostics


class CredentialReport(TelemetryRecord):
    valid: bool
    permissions: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthReport(TelemetryRecord):
    """Read-only connector diagnostic; never gates requests."""

    status: HealthState
    last_check: datetime
    latency_ms: float = Field(..., ge=0)
    errors: list[str] = Field(default_factory=list)


class RateLimitSnapshot(TelemetryRecord):
    remaining: float = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    reset_in_s: float = Field(..., ge=0)


class ConnectorInfo(TelemetryRecord):
    network: str
    state: str
    has_api_key: bool
    synthetic_only: bool
    cache_enabled: bool
    scraper_enabled: bool
    rate_limit: RateLimitSnapshot
    stats: dict[str, Any] = Field(default_factory=dict)
