"""io.net GPU compute network."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters.base import (
    CredentialCheck,
    NetworkAdapter,
    OperationSpec,
    build_metrics,
    build_node_status,
    build_pricing,
    build_transactions,
    items,
    num,
    one_or_many,
    period_params,
    scraped_earnings,
    scraped_node_ids,
)
from depin_telemetry.connectors.scraper import ScrapeTarget
from depin_telemetry.connectors.synth import NetworkProfile
from depin_telemetry.connectors.tiers import Operation
from depin_telemetry.connectors.transport import HttpCall
from depin_telemetry.contracts.telemetry import Earnings, EarningsBreakdown, SourceTier

if TYPE_CHECKING:
    from depin_telemetry.connectors.tiers import TelemetryRequest

PROFILE = NetworkProfile(
    network="ionet",
    display_name="IO.NET",
    currency="IO",
    id_prefix="IO-gpu",
    has_gpu=True,
    breakdown=(("compute", 0.8), ("rewards", 0.2)),
    daily_earnings=(2.0, 25.0),
)


def _node_path(base: str, request: TelemetryRequest) -> str:
    return f"{base}/{request.node_id}" if request.node_id else base


def _status(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload, request, lambda node: build_node_status(node, display_name="IO.NET"), "nodes"
    )


def _earnings(payload: Any, request: TelemetryRequest) -> Earnings:
    assert request.period is not None
    return Earnings(
        period=request.period,
        total=num(payload, "total_earnings"),
        currency=PROFILE.currency,
        breakdown=EarningsBreakdown(
            compute=num(payload, "compute_earnings"),
            rewards=num(payload, "rewards"),
        ),
        transactions=build_transactions(items(payload, "transactions")),
        projected_monthly=payload.get("projected_monthly") if isinstance(payload, dict) else None,
        projected_yearly=payload.get("projected_yearly") if isinstance(payload, dict) else None,
        source=SourceTier.LIVE,
    )


def _metrics(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload,
        request,
        lambda data: build_metrics(data, str(data.get("node_id") or request.node_id or "")),
        "metrics",
    )


def _pricing_call(request: TelemetryRequest) -> HttpCall:
    body: dict[str, Any] = request.params.model_dump(mode="json") if request.params else {}
    if request.node_id:
        body["node_id"] = request.node_id
    return HttpCall("POST", "/api/v1/pricing", json_body=body)


def _node_ids(payload: Any, request: TelemetryRequest) -> list[str]:
    return [str(node.get("node_id") or node["id"]) for node in items(payload, "nodes")]


ADAPTER = NetworkAdapter(
    name="ionet",
    profile=PROFILE,
    default_base_url="https://api.io.net",
    requires_api_key=True,
    dashboard_url="https://cloud.io.net",
    operations={
        Operation.NODE_STATUS: OperationSpec(
            build=lambda r: HttpCall("GET", _node_path("/api/v1/nodes", r)),
            parse=_status,
        ),
        Operation.EARNINGS: OperationSpec(
            build=lambda r: HttpCall(
                "GET",
                "/api/v1/earnings",
                params={
                    **period_params(r.period),
                    **({"nodeId": r.node_id} if r.node_id else {}),
                },
            ),
            parse=_earnings,
            scrape=lambda r: ScrapeTarget(
                "/worker/earnings",
                {"total_earnings": ".total-earnings .amount"},
            ),
            parse_scraped=scraped_earnings(PROFILE),
        ),
        Operation.METRICS: OperationSpec(
            build=lambda r: HttpCall("GET", _node_path("/api/v1/metrics", r)),
            parse=_metrics,
        ),
        Operation.PRICING: OperationSpec(build=_pricing_call, parse=lambda p, r: build_pricing(p)),
        Operation.NODE_IDS: OperationSpec(
            build=lambda r: HttpCall("GET", "/api/v1/nodes"),
            parse=_node_ids,
            scrape=lambda r: ScrapeTarget("/worker/devices", {"node_ids": ".active-nodes-list"}),
            parse_scraped=scraped_node_ids(),
        ),
    },
    credential_check=CredentialCheck(
        build=lambda: HttpCall("GET", "/api/v1/auth/validate"),
        permissions=("read_nodes", "read_earnings", "read_metrics"),
    ),
)
