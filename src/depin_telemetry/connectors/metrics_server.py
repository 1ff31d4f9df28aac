"""
HTTP endpoints for scraping connector metrics.

GET /metrics serves generate_latest(registry). GET /healthz serves a JSON
summary, by default {"status": "ok"}. GET /readyz answers 503 while
ready_fn reports not ready.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import generate_latest

if TYPE_CHECKING:
    from prometheus_client.registry import CollectorRegistry

logger = logging.getLogger(__name__)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

HealthFn = Callable[[], dict[str, Any]]
ReadyFn = Callable[[], tuple[bool, dict[str, Any]]]


def _metrics_handler(registry: CollectorRegistry, before: Callable[[], None] | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        if before is not None:
            before()
        return web.Response(
            body=generate_latest(registry),
            content_type="text/plain; version=0.0.4",
            charset="utf-8",
        )

    return handler


def _healthz_handler(health_fn: HealthFn | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        info = health_fn() if health_fn is not None else {"status": "ok"}
        status = 503 if info.get("status") == "unhealthy" else 200
        return web.Response(
            body=orjson.dumps(info, default=str),
            status=status,
            content_type="application/json",
        )

    return handler


def _readyz_handler(ready_fn: ReadyFn | None) -> _Handler:
    async def handler(request: web.Request) -> web.Response:
        if ready_fn is None:
            ready, body = True, {"ready": True}
        else:
            ready, body = ready_fn()
        return web.Response(
            body=orjson.dumps(body, default=str),
            status=200 if ready else 503,
            content_type="application/json",
        )

    return handler


def create_metrics_app(
    registry: CollectorRegistry,
    *,
    health_fn: HealthFn | None = None,
    ready_fn: ReadyFn | None = None,
    before_scrape: Callable[[], None] | None = None,
) -> web.Application:
    """
    Build an aiohttp Application with /metrics and /healthz.

    Args:
        registry: Registry to serve.
        health_fn: Returns the /healthz body; status "unhealthy" answers 503.
        ready_fn: Returns (ready, body) for /readyz; not ready answers 503.
        before_scrape: Called before each /metrics render, e.g.
            ``lambda: exporter.update(registry.connectors())``.
    """
    app = web.Application()
    app.router.add_get("/metrics", _metrics_handler(registry, before_scrape))
    app.router.add_get("/healthz", _healthz_handler(health_fn))
    app.router.add_get("/readyz", _readyz_handler(ready_fn))
    return app


async def start_metrics_server(
    registry: CollectorRegistry,
    host: str = "127.0.0.1",
    port: int = 9108,
    *,
    health_fn: HealthFn | None = None,
    ready_fn: ReadyFn | None = None,
    before_scrape: Callable[[], None] | None = None,
) -> web.AppRunner:
    """Start serving; call stop_metrics_server(runner) on shutdown."""
    app = create_metrics_app(
        registry, health_fn=health_fn, ready_fn=ready_fn, before_scrape=before_scrape
    )
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Metrics server started", extra={"host": host, "port": port})
    return runner


async def stop_metrics_server(runner: web.AppRunner) -> None:
    await runner.cleanup()
    logger.info("Metrics server stopped")
