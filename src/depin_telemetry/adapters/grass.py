"""Grass bandwidth-sharing network. Earnings are reported in points."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters.base import (
    CredentialCheck,
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

# Estimated token value of one point
POINTS_TO_TOKENS = 0.001

PROFILE = NetworkProfile(
    network="grass",
    display_name="Grass",
    currency="GRASS",
    id_prefix="GRASS",
    has_gpu=False,
    breakdown=(("bandwidth", 0.9), ("rewards", 0.1)),
    daily_earnings=(0.1, 3.0),
)

_FIELDS = StatusFields(
    id=("id", "device_id"),
    last_seen=("last_active", "last_seen"),
    network=("bandwidth_mbps",),
    version=("app_version",),
)


def _devices_path(request: TelemetryRequest) -> str:
    return f"/api/v1/devices/{request.node_id}" if request.node_id else "/api/v1/devices"


def _status(payload: Any, request: TelemetryRequest) -> Any:
    return one_or_many(
        payload,
        request,
        lambda device: build_node_status(device, display_name="Grass Device", fields=_FIELDS),
        "devices",
    )


def _earnings(payload: Any, request: TelemetryRequest) -> Earnings:
    assert request.period is not None
    value = num(payload, "total_points") * POINTS_TO_TOKENS
    days = period_days(request.period)
    return Earnings(
        period=request.period,
        total=value,
        currency=PROFILE.currency,
        breakdown=EarningsBreakdown(bandwidth=value * 0.9, rewards=value * 0.1),
        transactions=build_transactions(
            items(payload, "earnings"),
            amount_scale=POINTS_TO_TOKENS,
            description=lambda e: f"Bandwidth sharing: {num(e, 'bandwidth_gb'):g}GB",
        ),
        projected_monthly=value * 30 / days,
        projected_yearly=value * 365 / days,
        source=SourceTier.LIVE,
    )


def _metrics(payload: Any, request: TelemetryRequest) -> Any:
    def one(device: Any) -> Any:
        node_id = first(device, "id", "device_id", default=request.node_id)
        return build_metrics(device, str(node_id), totals=payload)

    return one_or_many(payload, request, one, "devices")


def _node_ids(payload: Any, request: TelemetryRequest) -> list[str]:
    return [str(first(device, "id", "device_id")) for device in items(payload, "devices")]


ADAPTER = NetworkAdapter(
    name="grass",
    profile=PROFILE,
    default_base_url="https://api.grass.io",
    requires_api_key=True,
    dashboard_url="https://app.getgrass.io",
    operations={
        Operation.NODE_STATUS: OperationSpec(
            build=lambda r: HttpCall("GET", _devices_path(r)),
            parse=_status,
        ),
        Operation.EARNINGS: OperationSpec(
            build=lambda r: HttpCall("GET", "/api/v1/earnings", params=period_params(r.period)),
            parse=_earnings,
            scrape=lambda r: ScrapeTarget("/dashboard", {"total_earnings": ".earnings-display"}),
            parse_scraped=scraped_earnings(PROFILE),
        ),
        Operation.METRICS: OperationSpec(
            build=lambda r: HttpCall("GET", _devices_path(r), params={"include": "bandwidth"}),
            parse=_metrics,
        ),
        Operation.NODE_IDS: OperationSpec(
            build=lambda r: HttpCall("GET", "/api/v1/devices"),
            parse=_node_ids,
        ),
    },
    credential_check=CredentialCheck(
        build=lambda: HttpCall("GET", "/api/v1/user"),
        permissions=("read_user_data", "read_devices", "read_earnings"),
        limitations=("Cannot modify device settings via API",),
    ),
)
