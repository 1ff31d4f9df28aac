#!/usr/bin/env python3
"""
Poll one DePIN network and print tier-tagged JSON.

Config comes from <NETWORK>_* environment variables (IONET_API_KEY,
NOSANA_BASE_URL, ...) plus USE_SYNTHETIC_DATA. Without a key, key-requiring
networks answer with deterministic synthetic data.

Usage:
    python -m scripts.poll_network ionet status
    python -m scripts.poll_network nosana earnings --period week --node-id NOS-cpu-node-001
    python -m scripts.poll_network grass health --synthetic
    python -m scripts.poll_network render metrics --metrics-port 9108 --serve-s 30
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

import orjson
from prometheus_client.registry import CollectorRegistry

from depin_telemetry.adapters.registry import ADAPTERS, ConnectorRegistry, validate_config
from depin_telemetry.connectors.config import ConnectorConfig
from depin_telemetry.connectors.errors import ConnectorError
from depin_telemetry.connectors.exporter import MetricsExporter
from depin_telemetry.connectors.metrics_server import start_metrics_server, stop_metrics_server
from depin_telemetry.contracts.telemetry import (
    MarketConditions,
    OptimizationParams,
    Period,
    PeriodType,
    PriceStrategy,
)
from depin_telemetry.logging_config import setup_logging

logger = logging.getLogger(__name__)

OPERATIONS = ("status", "earnings", "metrics", "pricing", "health", "nodes", "info")


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


async def poll(args: argparse.Namespace, out: TextIO) -> int:
    config = ConnectorConfig.from_env(args.network)
    if args.synthetic:
        config = config.with_changes(use_synthetic=True)

    validation = validate_config(args.network, config)
    for warning in validation.warnings:
        logger.warning("Config warning", extra={"network": args.network, "detail": warning})
    if not validation.valid:
        for error in validation.errors:
            logger.error("Config error", extra={"network": args.network, "detail": error})
        return 2

    registry = ConnectorRegistry()
    prom_registry = CollectorRegistry()
    exporter = MetricsExporter(registry=prom_registry)
    runner = None

    try:
        connector = await registry.create_and_initialize(args.network, config)

        if args.operation == "status":
            result: Any = await connector.get_node_status(args.node_id)
        elif args.operation == "earnings":
            period = Period.last(PeriodType(args.period), datetime.now(UTC))
            result = await connector.get_earnings(period, args.node_id)
        elif args.operation == "metrics":
            result = await connector.get_metrics(args.node_id)
        elif args.operation == "pricing":
            params = OptimizationParams(
                target_utilization=args.target_utilization,
                price_strategy=PriceStrategy(args.strategy),
                market_conditions=MarketConditions(args.market),
            )
            result = await connector.optimize_pricing(params, args.node_id)
        elif args.operation == "health":
            result = await connector.get_health()
        elif args.operation == "nodes":
            result = await connector.list_node_ids()
        else:
            result = connector.get_info()

        option = orjson.OPT_INDENT_2 if args.pretty else 0
        out.write(orjson.dumps(_dump(result), option=option).decode() + "\n")
        out.flush()

        if args.metrics_port:
            exporter.update(registry.connectors())
            runner = await start_metrics_server(
                prom_registry,
                port=args.metrics_port,
                health_fn=lambda: {"status": "ok", **registry.stats()},
                ready_fn=registry.readiness,
                before_scrape=lambda: exporter.update(registry.connectors()),
            )
            await asyncio.sleep(args.serve_s)

    except ConnectorError as e:
        logger.error("Poll failed", extra={"network": args.network, "kind": e.kind.value})
        return 1
    finally:
        if runner is not None:
            await stop_metrics_server(runner)
        await registry.clear_all()

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Poll a DePIN network through the resilient connector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("network", choices=sorted(ADAPTERS), help="Network to poll")
    parser.add_argument("operation", choices=OPERATIONS, help="Operation to run")
    parser.add_argument("--node-id", default=None, help="Single node (default: all nodes)")
    parser.add_argument(
        "--period",
        choices=[p.value for p in PeriodType if p is not PeriodType.CUSTOM],
        default=PeriodType.DAY.value,
        help="Earnings period ending now (default: day)",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in PriceStrategy],
        default=PriceStrategy.COMPETITIVE.value,
        help="Pricing strategy (default: competitive)",
    )
    parser.add_argument(
        "--market",
        choices=[m.value for m in MarketConditions],
        default=MarketConditions.NORMAL.value,
        help="Market conditions (default: normal)",
    )
    parser.add_argument(
        "--target-utilization",
        type=float,
        default=80.0,
        help="Target utilization percent for pricing (default: 80)",
    )
    parser.add_argument(
        "--synthetic", action="store_true", help="Force deterministic synthetic data"
    )
    parser.add_argument("--pretty", action="store_true", help="Indent JSON output")
    parser.add_argument(
        "--metrics-port", type=int, default=0, help="Serve /metrics on this port (0 = off)"
    )
    parser.add_argument(
        "--serve-s", type=float, default=30.0, help="How long to serve /metrics (default: 30)"
    )
    parser.add_argument("--json-logs", action="store_true", help="JSON log lines on stderr")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.json_logs,
    )
    return asyncio.run(poll(args, sys.stdout))


if __name__ == "__main__":
    sys.exit(main())
