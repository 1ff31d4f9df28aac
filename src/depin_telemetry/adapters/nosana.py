"""
Nosana CPU/AI inference network.

The Nosana node API is public: an API key is optional, so a connector with
no key still serves live data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters.base import (
    NetworkAdapter,
    OperationSpec,
    StatusFields,
    build_metrics,
    build_node_status,
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
from depin_telemetry.contracts.telemetry import Earnings, EarningsBreakdown, SourceTier

if TYPE_CHECKING:
    from depin_telemetry.connectors.tiers import TelemetryRequest

PROFILE = NetworkProfile(
    network="nosana",
    display_name="Nosana",
    currency="NOS",
    id_prefix="NOS-cpu",
    has_gpu=False,
    breakdown=(("compute", 0.7), ("staking", 0.3)),
    daily_earnings=(0.5, 10.0),
)

_FIELDS = StatusFields(
    id=("address", "node_id", "id"),
    status=("state", "status"),
    uptime=("uptime_seconds", "uptime"),
    last_seen=("last_seen", "updated_at"),
)


def _node_path(request: TelemetryRequest, suffix: str = "") -> str:
    if request.node_id:
        return f"/nodes/{request.node_id}{suffix}"
    return f"/nodes{suffix}"


def _earnings(payload: Any, request: TelemetryRequest) -> Earnings:
    assert request.period is not None
    jobs = items(payload, "jobs")
    job_total = sum(num(job, "amount", "price") for job in jobs)
    compute = num(payload, "job_earnings", default=job_total)
    staking = num(payload, "staking_rewards")
    total = num(payload, "total", "total_earnings", default=compute + staking)
    days = period_days(request.period)
    return Earnings(
        period=request.period,
        total=total,
        currency=PROFILE.currency,
        breakdown=EarningsBreakdown(compute=compute, staking=staking),
        transactions=build_transactions(
            jobs, description=lambda job: f"Job {first(job, 'id', default='')}".strip()
        ),
        projected_monthly=total * 30 / days,
        projected_yearly=total * 365 / days,
        source=SourceTier.LIVE,
    )


def _status(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload,
        request,
        lambda node: build_node_status(node, display_name="Nosana", fields=_FIELDS),
        "nodes",
    )


def _metrics(payload: Any, request: TelemetryRequest) -> Any:
    def one(data: Any) -> Any:
        node_id = first(data, "address", "node_id", default=request.node_id)
        return build_metrics(data, str(node_id))

    return one_or_many(payload, request, one, "nodes")


def _node_ids(payload: Any, request: TelemetryRequest) -> list[str]:
    return [str(first(node, "address", "node_id", "id")) for node in items(payload, "nodes")]


ADAPTER = NetworkAdapter(
    name="nosana",
    profile=PROFILE,
    default_base_url="https://dashboard.nosana.com/api",
    requires_api_key=False,
    dashboard_url="https://dashboard.nosana.com",
    operations={
        Operation.NODE_STATUS: OperationSpec(
            build=lambda r: HttpCall("GET", _node_path(r)),
            parse=_status,
        ),
        Operation.EARNINGS: OperationSpec(
            build=lambda r: HttpCall(
                "GET", _node_path(r, "/earnings"), params=period_params(r.period)
            ),
            parse=_earnings,
            scrape=lambda r: ScrapeTarget(
                f"/host/{r.node_id}" if r.node_id else "/host",
                {"total_earnings": ".earnings-total"},
            ),
            parse_scraped=scraped_earnings(PROFILE),
        ),
        Operation.METRICS: OperationSpec(
            build=lambda r: HttpCall("GET", _node_path(r, "/stats")),
            parse=_metrics,
        ),
        Operation.NODE_IDS: OperationSpec(
            build=lambda r: HttpCall("GET", "/nodes"),
            parse=_node_ids,
        ),
    },
)
