"""
Deterministic synthetic telemetry.

The primitive is generate(device_id, metric_index, lo, hi): a value in
[lo, hi) that is a pure function of (device_id, metric_index). The seed is
the first 8 bytes of SHA-256 over "device_id:metric_index", so the output is
stable across processes (the builtin hash() is salted per process and is
never used).

TelemetrySynthesizer builds full records from that primitive with a fixed
index per field. Timestamps are offsets from EPOCH_ANCHOR or from the
requested period, so identical inputs produce byte-identical JSON.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import IntEnum
from typing import TYPE_CHECKING, TypeVar

from depin_telemetry.contracts.telemetry import (
    CapacitySpec,
    CpuSpec,
    Earnings,
    EarningsBreakdown,
    EarningsRate,
    GpuSpec,
    MarketConditions,
    MarketPrices,
    NetworkQuality,
    NodeHealth,
    NodeLocation,
    NodeMetrics,
    NodeSpecs,
    NodeState,
    NodeStatus,
    Optimization,
    OptimizationParams,
    PerformanceMetrics,
    PriceStrategy,
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
    from collections.abc import Sequence

    from depin_telemetry.contracts.telemetry import Period

T = TypeVar("T")

EPOCH_ANCHOR = datetime(2025, 1, 1, tzinfo=UTC)

_SEED_SPACE = float(2**64)


def derive_seed(device_id: str, metric_index: int) -> int:
    """64-bit seed for (device_id, metric_index)."""
    digest = hashlib.sha256(f"{device_id}:{metric_index}".encode()).digest()
    return int.from_bytes(digest[:8], "big")


@dataclass(frozen=True)
class DeterministicSynthesizer:
    """Stateless seeded value source. Safe to share across connectors."""

    def unit(self, device_id: str, metric_index: int) -> float:
        """Value in [0, 1)."""
        return derive_seed(device_id, metric_index) / _SEED_SPACE

    def generate(self, device_id: str, metric_index: int, lo: float, hi: float) -> float:
        """
        Value in [lo, hi) determined only by (device_id, metric_index).

        Raises:
            ValueError: If the range is empty (hi <= lo).
        """
        if hi <= lo:
            raise ValueError(f"empty range [{lo}, {hi})")
        value = lo + self.unit(device_id, metric_index) * (hi - lo)
        # Float rounding can land exactly on hi for very narrow ranges
        if value >= hi:
            value = math.nextafter(hi, lo)
        return value

    def integer(self, device_id: str, metric_index: int, lo: int, hi: int) -> int:
        """Integer in [lo, hi)."""
        if hi <= lo:
            raise ValueError(f"empty range [{lo}, {hi})")
        return lo + int(self.unit(device_id, metric_index) * (hi - lo))

    def choice(self, device_id: str, metric_index: int, options: Sequence[T]) -> T:
        if not options:
            raise ValueError("choice from empty sequence")
        return options[self.integer(device_id, metric_index, 0, len(options))]

    def chance(self, device_id: str, metric_index: int, probability: float) -> bool:
        return self.unit(device_id, metric_index) < probability

    def token(self, device_id: str, metric_index: int, length: int = 16) -> str:
        """Stable hex string, e.g. for transaction hashes."""
        digest = hashlib.sha256(f"{device_id}:{metric_index}:token".encode()).hexdigest()
        return digest[:length]


class Metric(IntEnum):
    """Fixed per-field indices. Append only: renumbering changes every output."""

    STATUS = 0
    UPTIME = 1
    LAST_SEEN = 2
    CPU_USAGE = 3
    MEMORY_USAGE = 4
    STORAGE_USAGE = 5
    NETWORK_MBPS = 6
    LOCATION = 7
    VERSION_MAJOR = 8
    VERSION_MINOR = 9
    VERSION_PATCH = 10
    CPU_CORES = 11
    CPU_MODEL = 12
    CPU_FREQUENCY = 13
    MEMORY_TOTAL = 14
    MEMORY_FREE = 15
    STORAGE_TOTAL = 16
    STORAGE_FREE = 17
    STORAGE_TYPE = 18
    GPU_MODEL = 19
    GPU_COMPUTE = 20
    DAILY_EARNINGS = 21
    TX_COUNT = 22
    TX_TYPE = 23
    TX_JITTER = 24
    TASKS_COMPLETED = 25
    TASKS_ACTIVE = 26
    TASKS_FAILED = 27
    TASK_DURATION = 28
    BANDWIDTH_USAGE = 29
    GPU_USAGE = 30
    LATENCY = 31
    THROUGHPUT = 32
    NETWORK_UPTIME = 33
    REPUTATION_SCORE = 34
    TOTAL_NODES = 35
    RANK = 36
    PRICE_CPU = 37
    PRICE_MEMORY = 38
    PRICE_STORAGE = 39
    PRICE_BANDWIDTH = 40
    PRICE_GPU = 41
    MARKET_SPREAD = 42
    EXPECTED_INCREASE = 43
    CONFIDENCE = 44


# Transaction indices are spaced so each transaction gets its own block
_TX_STRIDE = 100

_LOCATIONS: tuple[tuple[str, str, float, float], ...] = (
    ("US", "us-east", 39.04, -77.49),
    ("US", "us-west", 37.34, -121.89),
    ("DE", "eu-central", 50.11, 8.68),
    ("NL", "eu-west", 52.37, 4.90),
    ("SG", "ap-southeast", 1.35, 103.82),
    ("JP", "ap-northeast", 35.68, 139.69),
)
_CPU_MODELS = ("AMD EPYC 7763", "Intel Xeon Gold 6338", "AMD Ryzen 9 7950X", "Intel Core i9-13900K")
_CPU_CORES = (8, 16, 32, 64)
_MEMORY_SIZES_GB = (32, 64, 128, 256)
_STORAGE_SIZES_GB = (500, 1000, 2000, 4000)
_STORAGE_TYPES = (StorageType.NVME, StorageType.SSD, StorageType.HDD)
_GPU_MODELS: tuple[tuple[str, float, tuple[float, float]], ...] = (
    ("NVIDIA RTX 4090", 24.0, (75.0, 85.0)),
    ("NVIDIA RTX 3090", 24.0, (30.0, 38.0)),
    ("NVIDIA A100", 80.0, (15.0, 20.0)),
    ("NVIDIA H100", 80.0, (50.0, 67.0)),
)
_TX_TYPES = (
    TransactionType.EARNINGS,
    TransactionType.EARNINGS,
    TransactionType.EARNINGS,
    TransactionType.BONUS,
    TransactionType.STAKING_REWARD,
)

_STRATEGY_MULTIPLIER = {
    PriceStrategy.PREMIUM: 1.2,
    PriceStrategy.BUDGET: 0.8,
    PriceStrategy.COMPETITIVE: 1.0,
}
_DEMAND_MULTIPLIER = {
    MarketConditions.HIGH_DEMAND: 1.15,
    MarketConditions.LOW_DEMAND: 0.85,
    MarketConditions.NORMAL: 1.0,
}


@dataclass(frozen=True)
class NetworkProfile:
    """Per-network shape of synthetic telemetry."""

    network: str
    display_name: str
    currency: str
    id_prefix: str
    has_gpu: bool = False
    # Share of total earnings per breakdown field, summing to 1
    breakdown: tuple[tuple[str, float], ...] = (("compute", 0.8), ("rewards", 0.2))
    daily_earnings: tuple[float, float] = (1.0, 10.0)
    node_count: int = 3

    def __post_init__(self) -> None:
        total = sum(share for _, share in self.breakdown)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"breakdown shares must sum to 1, got {total}")
        lo, hi = self.daily_earnings
        if not 0 <= lo < hi:
            raise ValueError(f"invalid daily_earnings range {self.daily_earnings}")


@dataclass(frozen=True)
class TelemetrySynthesizer:
    """
    Builds canonical records for one network from seeded values.

    The device identity for a node is "<network>/<node_id>"; network-wide
    requests use "<network>/*".
    """

    profile: NetworkProfile
    synth: DeterministicSynthesizer = field(default_factory=DeterministicSynthesizer)

    def _device(self, node_id: str | None) -> str:
        return f"{self.profile.network}/{node_id or '*'}"

    def _gen(self, device: str, metric: int, lo: float, hi: float, digits: int = 2) -> float:
        return round(self.synth.generate(device, metric, lo, hi), digits)

    def node_ids(self) -> list[str]:
        return [f"{self.profile.id_prefix}-node-{i:03d}" for i in range(1, self.profile.node_count + 1)]

    def daily_rate(self, node_id: str | None) -> float:
        lo, hi = self.profile.daily_earnings
        return self.synth.generate(self._device(node_id), Metric.DAILY_EARNINGS, lo, hi)

    # Node status

    def node_status(self, node_id: str) -> NodeStatus:
        device = self._device(node_id)
        s = self.synth

        roll = s.unit(device, Metric.STATUS)
        if roll < 0.8:
            state = NodeState.ONLINE
        elif roll < 0.9:
            state = NodeState.MAINTENANCE
        elif roll < 0.95:
            state = NodeState.ERROR
        else:
            state = NodeState.OFFLINE

        country, region, lat, lon = s.choice(device, Metric.LOCATION, _LOCATIONS)
        version = ".".join(
            str(s.integer(device, metric, 0, 10))
            for metric in (Metric.VERSION_MAJOR, Metric.VERSION_MINOR, Metric.VERSION_PATCH)
        )

        return NodeStatus(
            id=node_id,
            name=f"{self.profile.display_name} {node_id}",
            status=state,
            uptime_s=s.integer(device, Metric.UPTIME, 3600, 30 * 86400),
            last_seen=EPOCH_ANCHOR + timedelta(seconds=s.integer(device, Metric.LAST_SEEN, 0, 3600)),
            health=NodeHealth(
                cpu=self._gen(device, Metric.CPU_USAGE, 10, 90),
                memory=self._gen(device, Metric.MEMORY_USAGE, 20, 85),
                storage=self._gen(device, Metric.STORAGE_USAGE, 10, 80),
                network=self._gen(device, Metric.NETWORK_MBPS, 50, 1000),
            ),
            location=NodeLocation(country=country, region=region, latitude=lat, longitude=lon),
            version=version,
            specs=self._specs(device),
            source=SourceTier.SYNTHETIC,
        )

    def _specs(self, device: str) -> NodeSpecs:
        s = self.synth
        memory_total = float(s.choice(device, Metric.MEMORY_TOTAL, _MEMORY_SIZES_GB))
        storage_total = float(s.choice(device, Metric.STORAGE_TOTAL, _STORAGE_SIZES_GB))

        gpu = None
        if self.profile.has_gpu:
            model, memory_gb, (lo, hi) = s.choice(device, Metric.GPU_MODEL, _GPU_MODELS)
            gpu = GpuSpec(
                model=model,
                memory_gb=memory_gb,
                compute_tflops=self._gen(device, Metric.GPU_COMPUTE, lo, hi, 1),
            )

        return NodeSpecs(
            cpu=CpuSpec(
                cores=s.choice(device, Metric.CPU_CORES, _CPU_CORES),
                model=s.choice(device, Metric.CPU_MODEL, _CPU_MODELS),
                frequency_ghz=self._gen(device, Metric.CPU_FREQUENCY, 2.4, 4.0, 1),
            ),
            memory=CapacitySpec(
                total_gb=memory_total,
                available_gb=round(memory_total * s.generate(device, Metric.MEMORY_FREE, 0.2, 0.8), 1),
            ),
            storage=StorageSpec(
                total_gb=storage_total,
                available_gb=round(storage_total * s.generate(device, Metric.STORAGE_FREE, 0.2, 0.8), 1),
                type=s.choice(device, Metric.STORAGE_TYPE, _STORAGE_TYPES),
            ),
            gpu=gpu,
        )

    def node_statuses(self) -> list[NodeStatus]:
        return [self.node_status(node_id) for node_id in self.node_ids()]

    # Earnings

    def earnings(self, period: Period, node_id: str | None = None) -> Earnings:
        device = self._device(node_id)
        s = self.synth

        daily = self.daily_rate(node_id)
        days = max(period.duration / timedelta(days=1), 1 / 24)
        total = round(daily * days, 4)

        breakdown = EarningsBreakdown(
            **{name: round(total * share, 4) for name, share in self.profile.breakdown}
        )

        count = s.integer(device, Metric.TX_COUNT, 2, 6)
        amount = round(total / count, 4)
        transactions = []
        for i in range(count):
            base = Metric.TX_TYPE + _TX_STRIDE * (i + 1)
            # Spread transactions evenly over the period with a small seeded offset
            fraction = (i + s.generate(device, base + 1, 0.25, 0.75)) / count
            tx_type = s.choice(device, base, _TX_TYPES)
            transactions.append(
                Transaction(
                    id=f"tx-{s.token(device, base, 12)}",
                    timestamp=period.start + period.duration * fraction,
                    amount=amount,
                    type=tx_type,
                    description=f"{self.profile.display_name} {tx_type.value.replace('_', ' ')}",
                    tx_hash=f"0x{s.token(device, base + 2, 64)}",
                )
            )

        return Earnings(
            period=period,
            total=total,
            currency=self.profile.currency,
            breakdown=breakdown,
            transactions=transactions,
            projected_monthly=round(daily * 30, 4),
            projected_yearly=round(daily * 365, 4),
            source=SourceTier.SYNTHETIC,
        )

    # Metrics

    def metrics(self, node_id: str) -> NodeMetrics:
        device = self._device(node_id)
        s = self.synth

        completed = s.integer(device, Metric.TASKS_COMPLETED, 100, 5000)
        failed = s.integer(device, Metric.TASKS_FAILED, 0, 50)
        daily = self.daily_rate(node_id)
        total_nodes = s.integer(device, Metric.TOTAL_NODES, 1000, 10000)

        return NodeMetrics(
            node_id=node_id,
            performance=PerformanceMetrics(
                tasks_completed=completed,
                tasks_active=s.integer(device, Metric.TASKS_ACTIVE, 0, 10),
                tasks_failed=failed,
                average_task_duration_s=self._gen(device, Metric.TASK_DURATION, 60, 3600, 1),
                success_rate=round(completed / (completed + failed) * 100, 2),
            ),
            resource_utilization=ResourceUtilization(
                cpu=self._gen(device, Metric.CPU_USAGE, 10, 90),
                memory=self._gen(device, Metric.MEMORY_USAGE, 20, 85),
                storage=self._gen(device, Metric.STORAGE_USAGE, 10, 80),
                bandwidth=self._gen(device, Metric.BANDWIDTH_USAGE, 10, 500),
                gpu=self._gen(device, Metric.GPU_USAGE, 30, 95) if self.profile.has_gpu else None,
            ),
            earnings=EarningsRate(
                hourly=round(daily / 24, 4),
                daily=round(daily, 4),
                weekly=round(daily * 7, 4),
                monthly=round(daily * 30, 4),
            ),
            network=NetworkQuality(
                latency_ms=self._gen(device, Metric.LATENCY, 10, 150, 1),
                throughput_mbps=self._gen(device, Metric.THROUGHPUT, 100, 1000, 1),
                uptime=self._gen(device, Metric.NETWORK_UPTIME, 95, 99.99),
            ),
            reputation=Reputation(
                score=self._gen(device, Metric.REPUTATION_SCORE, 70, 100, 1),
                rank=s.integer(device, Metric.RANK, 1, total_nodes + 1),
                total_nodes=total_nodes,
            ),
            source=SourceTier.SYNTHETIC,
        )

    def metrics_list(self) -> list[NodeMetrics]:
        return [self.metrics(node_id) for node_id in self.node_ids()]

    # Pricing

    def pricing(self, params: OptimizationParams, node_id: str | None = None) -> PricingStrategy:
        device = self._device(node_id)
        s = self.synth

        multiplier = (
            _STRATEGY_MULTIPLIER[params.price_strategy]
            * _DEMAND_MULTIPLIER[params.market_conditions]
        )

        def price(metric: Metric, lo: float, hi: float) -> float:
            return round(s.generate(device, metric, lo, hi) * multiplier, 4)

        recommended = RecommendedPrices(
            cpu=price(Metric.PRICE_CPU, 0.02, 0.08),
            memory=price(Metric.PRICE_MEMORY, 0.005, 0.02),
            storage=price(Metric.PRICE_STORAGE, 0.0001, 0.001),
            bandwidth=price(Metric.PRICE_BANDWIDTH, 0.01, 0.05),
            gpu=price(Metric.PRICE_GPU, 0.5, 2.5) if self.profile.has_gpu else None,
        )

        # Market reference tracks the headline resource of the network
        headline = recommended.gpu if recommended.gpu is not None else recommended.cpu
        average = headline / multiplier * s.generate(device, Metric.MARKET_SPREAD, 0.9, 1.1)

        if params.price_strategy is PriceStrategy.PREMIUM:
            suggestion = "Consider premium pricing for high-spec nodes"
            increase = (10.0, 20.0)
        elif params.price_strategy is PriceStrategy.BUDGET:
            suggestion = "Lower pricing by 10% to increase demand"
            increase = (5.0, 15.0)
        elif params.market_conditions is MarketConditions.HIGH_DEMAND:
            suggestion = "Increase pricing by 15% to match market average"
            increase = (10.0, 25.0)
        else:
            suggestion = "Current pricing is optimal"
            increase = (0.0, 5.0)

        confidence = s.generate(device, Metric.CONFIDENCE, 0.6, 0.9)
        if params.historical_data:
            confidence += 0.05

        return PricingStrategy(
            recommended=recommended,
            market=MarketPrices(
                average=round(average, 4),
                minimum=round(average * 0.7, 4),
                maximum=round(average * 1.4, 4),
            ),
            optimization=Optimization(
                suggestion=suggestion,
                expected_increase=self._gen(device, Metric.EXPECTED_INCREASE, *increase, 1),
                confidence_score=round(min(confidence, 1.0), 2),
            ),
            source=SourceTier.SYNTHETIC,
        )
