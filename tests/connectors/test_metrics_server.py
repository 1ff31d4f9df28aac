"""
Smoke tests for the /metrics, /healthz and /readyz HTTP endpoints.
"""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer
from prometheus_client import Counter
from prometheus_client.registry import CollectorRegistry

from depin_telemetry.adapters import ConnectorRegistry
from depin_telemetry.connectors.config import ConnectorConfig
from depin_telemetry.connectors.metrics_server import create_metrics_app


@pytest.fixture()
def registry() -> CollectorRegistry:
    """Registry with one sample counter."""
    reg = CollectorRegistry()
    Counter("depin_requests", "test counter", ["network"], registry=reg).labels(
        network="ionet"
    ).inc(3)
    return reg


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_content_type(self, registry: CollectorRegistry) -> None:
        app = create_metrics_app(registry)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/metrics")
            assert resp.status == 200
            assert resp.content_type == "text/plain"
            assert "version=0.0.4" in resp.headers.get("Content-Type", "")

    @pytest.mark.asyncio
    async def test_body_has_samples(self, registry: CollectorRegistry) -> None:
        app = create_metrics_app(registry)
        async with TestClient(TestServer(app)) as client:
            text = await (await client.get("/metrics")).text()
        assert "# TYPE depin_requests_total counter" in text
        assert 'depin_requests_total{network="ionet"} 3.0' in text

    @pytest.mark.asyncio
    async def test_before_scrape_runs_per_request(self, registry: CollectorRegistry) -> None:
        calls: list[int] = []
        app = create_metrics_app(registry, before_scrape=lambda: calls.append(1))
        async with TestClient(TestServer(app)) as client:
            await client.get("/metrics")
            await client.get("/metrics")
            await client.get("/healthz")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_path(self, registry: CollectorRegistry) -> None:
        app = create_metrics_app(registry)
        async with TestClient(TestServer(app)) as client:
            assert (await client.get("/nope")).status == 404


class TestHealthz:
    @pytest.mark.asyncio
    async def test_default(self) -> None:
        app = create_metrics_app(CollectorRegistry())
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/healthz")
            assert resp.status == 200
            assert resp.content_type == "application/json"
            assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_unhealthy_is_503(self) -> None:
        def health() -> dict[str, Any]:
            return {"status": "unhealthy", "errors": ["Invalid credentials"]}

        app = create_metrics_app(CollectorRegistry(), health_fn=health)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/healthz")
            assert resp.status == 503
            assert (await resp.json())["errors"] == ["Invalid credentials"]

    @pytest.mark.asyncio
    async def test_degraded_is_200(self) -> None:
        app = create_metrics_app(CollectorRegistry(), health_fn=lambda: {"status": "degraded"})
        async with TestClient(TestServer(app)) as client:
            assert (await client.get("/healthz")).status == 200


class TestReadyz:
    @pytest.mark.asyncio
    async def test_default_ready(self) -> None:
        app = create_metrics_app(CollectorRegistry())
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/readyz")
            assert resp.status == 200
            assert (await resp.json())["ready"] is True

    @pytest.mark.asyncio
    async def test_follows_connector_registry(self) -> None:
        connectors = ConnectorRegistry()
        app = create_metrics_app(CollectorRegistry(), ready_fn=connectors.readiness)
        async with TestClient(TestServer(app)) as client:
            # Nothing managed yet
            assert (await client.get("/readyz")).status == 503

            await connectors.create_and_initialize("ionet", ConnectorConfig())
            resp = await client.get("/readyz")
            assert resp.status == 200
            body = await resp.json()
            assert list(body["connectors"].values()) == ["ready"]

            await connectors.clear_all()
            assert (await client.get("/readyz")).status == 503
