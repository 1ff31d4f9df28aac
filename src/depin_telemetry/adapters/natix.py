"""
Natix mapping network. Drivers run dashcam or phone devices that upload
street imagery and GPS traces; rewards are paid per accepted upload.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters.base import (
    CredentialCheck,
    NetworkAdapter,
    OperationSpec,
    StatusFields,
    build_node_status,
    build_transactions,
    clamp_pct,
    first,
    items,
    num,
    one_or_many,
    period_days,
    period_params,
    scraped_earnings,
)
from depin_telemetry.connectors.scraper import ScrapeTarget
from depin_telemetry.connectors.synth import NetworkProfile
from depin_telemetry.connectors.tiers import Operation
from depin_telemetry.connectors.transport import HttpCall
from depin_telemetry.contracts.telemetry import (
    Earnings,
    EarningsBreakdown,
    EarningsRate,
    NetworkQuality,
    NodeMetrics,
    PerformanceMetrics,
    Reputation,
    ResourceUtilization,
    SourceTier,
)

if TYPE_CHECKING:
    from depin_telemetry.connectors.tiers import TelemetryRequest

PROFILE = NetworkProfile(
    network="natix",
    display_name="Natix",
    currency="NATIX",
    id_prefix="NATIX-cam",
    has_gpu=False,
    breakdown=(("compute", 0.6), ("storage", 0.2), ("rewards", 0.2)),
    daily_earnings=(0.1, 20.0),
)

_FIELDS = StatusFields(
    id=("device_id", "id"),
    name=("device_name", "name"),
    uptime=("active_seconds", "uptime_seconds"),
    last_seen=("last_upload", "last_seen"),
    network=("upload_speed_mbps",),
    version=("app_version",),
)


def _devices_path(request: TelemetryRequest) -> str:
    return f"/v1/devices/{request.node_id}" if request.node_id else "/v1/devices"


def _status(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload,
        request,
        lambda device: build_node_status(device, display_name="Natix Device", fields=_FIELDS),
        "devices",
    )


def _as_pct(value: float) -> float:
    # Upstream reports some ratios as 0..1 and others as percentages
    return clamp_pct(value * 100 if 0 < value <= 1 else value)


def _earnings(payload: Any, request: TelemetryRequest) -> Earnings:
    assert request.period is not None
    total = num(payload, "total_earnings", "total")
    mapping = first(payload, "mapping_rewards")
    if mapping is None:
        breakdown = EarningsBreakdown(
            **{name: total * share for name, share in PROFILE.breakdown}
        )
    else:
        breakdown = EarningsBreakdown(
            compute=float(mapping),
            storage=num(payload, "storage_rewards"),
            rewards=num(payload, "bonus_rewards"),
        )
    days = period_days(request.period)
    return Earnings(
        period=request.period,
        total=total,
        currency=PROFILE.currency,
        breakdown=breakdown,
        transactions=build_transactions(
            items(payload, "rewards"),
            description=lambda e: f"Mapping trip: {num(e, 'distance_km'):g}km",
        ),
        projected_monthly=total * 30 / days,
        projected_yearly=total * 365 / days,
        source=SourceTier.LIVE,
    )


def _metrics(payload: Any, request: TelemetryRequest) -> Any:
    total_drivers = num(payload, "total_drivers", "total_nodes", default=1)

    def one(device: Any) -> NodeMetrics:
        node_id = str(first(device, "device_id", "id", default=request.node_id))
        trips = int(num(device, "trips_completed"))
        quality = first(device, "quality_score")
        return NodeMetrics(
            node_id=node_id,
            performance=PerformanceMetrics(
                tasks_completed=trips,
                tasks_active=int(num(device, "trips_active")),
                tasks_failed=int(num(device, "failed_uploads")),
                average_task_duration_s=num(device, "avg_trip_duration"),
                success_rate=_as_pct(num(device, "upload_success_rate")),
            ),
            resource_utilization=ResourceUtilization(
                cpu=clamp_pct(num(device, "cpu_usage")),
                memory=clamp_pct(num(device, "memory_usage")),
                storage=clamp_pct(num(device, "storage_usage")),
                bandwidth=max(0.0, num(device, "upload_speed_mbps")),
            ),
            earnings=EarningsRate(
                hourly=num(device, "earnings.hourly"),
                daily=num(device, "earnings.daily"),
                weekly=num(device, "earnings.weekly"),
                monthly=num(device, "earnings.monthly"),
            ),
            network=NetworkQuality(
                latency_ms=num(device, "ping_ms"),
                throughput_mbps=num(device, "upload_speed_mbps"),
                uptime=_as_pct(num(device, "uptime_percentage")),
            ),
            reputation=Reputation(
                score=_as_pct(float(quality)),
                rank=max(1, int(num(device, "contribution_rank", default=1))),
                total_nodes=max(1, int(total_drivers)),
            )
            if quality is not None
            else None,
            source=SourceTier.LIVE,
        )

    return one_or_many(payload, request, one, "devices")


def _node_ids(payload: Any, request: TelemetryRequest) -> list[str]:
    return [str(first(device, "device_id", "id")) for device in items(payload, "devices")]


ADAPTER = NetworkAdapter(
    name="natix",
    profile=PROFILE,
    default_base_url="https://api.natix.network",
    requires_api_key=True,
    dashboard_url="https://app.natix.network",
    operations={
        Operation.NODE_STATUS: OperationSpec(
            build=lambda r: HttpCall("GET", _devices_path(r)),
            parse=_status,
        ),
        Operation.EARNINGS: OperationSpec(
            build=lambda r: HttpCall("GET", "/v1/rewards", params=period_params(r.period)),
            parse=_earnings,
            scrape=lambda r: ScrapeTarget("/rewards", {"total_earnings": ".natix-balance"}),
            parse_scraped=scraped_earnings(PROFILE),
        ),
        Operation.METRICS: OperationSpec(
            build=lambda r: HttpCall("GET", _devices_path(r), params={"include": "trips"}),
            parse=_metrics,
        ),
        Operation.NODE_IDS: OperationSpec(
            build=lambda r: HttpCall("GET", "/v1/devices"),
            parse=_node_ids,
        ),
    },
    credential_check=CredentialCheck(
        build=lambda: HttpCall("GET", "/v1/account"),
        permissions=("read_devices", "read_rewards"),
        limitations=("Pricing is set by the network, not by drivers",),
    ),
)
