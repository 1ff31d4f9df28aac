"""Render Network GPU rendering nodes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters.base import (
    CredentialCheck,
    NetworkAdapter,
    OperationSpec,
    StatusFields,
    build_metrics,
    build_node_status,
    build_pricing,
    build_transactions,
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
    PricingStrategy,
    SourceTier,
)

if TYPE_CHECKING:
    from depin_telemetry.connectors.tiers import TelemetryRequest

PROFILE = NetworkProfile(
    network="render",
    display_name="Render",
    currency="RNDR",
    id_prefix="RNDR-gpu",
    has_gpu=True,
    breakdown=(("compute", 0.8), ("rewards", 0.2)),
    daily_earnings=(1.0, 20.0),
)

_FIELDS = StatusFields(
    last_seen=("last_ping", "updated_at"),
    version=("client_version",),
    specs="hardware",
    gpu_memory=("vram",),
    gpu_compute=("compute_capability",),
)


def _status(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload,
        request,
        lambda node: build_node_status(node, display_name="Render", fields=_FIELDS),
        "nodes",
    )


def _earnings(payload: Any, request: TelemetryRequest) -> Earnings:
    assert request.period is not None
    entries = items(payload, "earnings")
    total = num(payload, "total", default=sum(num(e, "amount") for e in entries))
    rewards = num(payload, "rewards")
    days = period_days(request.period)
    return Earnings(
        period=request.period,
        total=total,
        currency=PROFILE.currency,
        breakdown=EarningsBreakdown(compute=max(0.0, total - rewards), rewards=rewards),
        transactions=build_transactions(entries),
        projected_monthly=num(payload, "projections.monthly", default=total * 30 / days),
        projected_yearly=num(payload, "projections.yearly", default=total * 365 / days),
        source=SourceTier.LIVE,
    )


def _metrics(payload: Any, request: TelemetryRequest) -> Any:
    def one(job_stats: Any) -> Any:
        node_id = first(job_stats, "node_id", "id", default=request.node_id)
        return build_metrics(job_stats, str(node_id))

    return one_or_many(payload, request, one, "nodes", "jobs")


def _pricing(payload: Any, request: TelemetryRequest) -> PricingStrategy:
    return build_pricing(
        payload,
        recommended="pricing",
        price_keys={
            "cpu": ("cpu_hourly",),
            "memory": ("memory_hourly",),
            "storage": ("storage_hourly",),
            "bandwidth": ("bandwidth_gb",),
            "gpu": ("gpu_hourly",),
        },
        market_keys={
            "average": ("average_rate",),
            "minimum": ("min_rate",),
            "maximum": ("max_rate",),
        },
        optimization="recommendations",
        default_suggestion="Optimize GPU utilization for better rates",
        default_confidence=0.75,
    )


def _node_ids(payload: Any, request: TelemetryRequest) -> list[str]:
    return [str(first(node, "node_id", "id")) for node in items(payload, "nodes")]


def _pricing_params(request: TelemetryRequest) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if request.params is not None:
        params = {k: str(v) for k, v in request.params.model_dump(mode="json").items()}
    if request.node_id:
        params["node_id"] = request.node_id
    return params


ADAPTER = NetworkAdapter(
    name="render",
    profile=PROFILE,
    default_base_url="https://api.rendertoken.com",
    requires_api_key=True,
    dashboard_url="https://render.x.io",
    operations={
        Operation.NODE_STATUS: OperationSpec(
            build=lambda r: HttpCall(
                "GET", f"/api/v1/nodes/{r.node_id}" if r.node_id else "/api/v1/nodes"
            ),
            parse=_status,
        ),
        Operation.EARNINGS: OperationSpec(
            build=lambda r: HttpCall(
                "GET",
                "/api/v1/earnings",
                params={**period_params(r.period), **({"node_id": r.node_id} if r.node_id else {})},
            ),
            parse=_earnings,
            scrape=lambda r: ScrapeTarget("/dashboard", {"total_earnings": ".rndr-earnings"}),
            parse_scraped=scraped_earnings(PROFILE),
        ),
        Operation.METRICS: OperationSpec(
            build=lambda r: HttpCall(
                "GET", "/api/v1/jobs", params={"node_id": r.node_id} if r.node_id else {}
            ),
            parse=_metrics,
        ),
        Operation.PRICING: OperationSpec(
            build=lambda r: HttpCall("GET", "/api/v1/pricing", params=_pricing_params(r)),
            parse=_pricing,
        ),
        Operation.NODE_IDS: OperationSpec(
            build=lambda r: HttpCall("GET", "/api/v1/nodes"),
            parse=_node_ids,
        ),
    },
    credential_check=CredentialCheck(
        build=lambda: HttpCall("GET", "/api/v1/auth/verify"),
        permissions=("read_nodes", "read_earnings", "read_jobs"),
    ),
)
