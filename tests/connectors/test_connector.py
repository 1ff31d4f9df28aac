"""
Tests for the Connector state machine and tier chain.

Upstreams are replaced by a scripted FakeTransport; retries use a no-op
sleep and time-sensitive checks use an injected clock.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import pytest

from depin_telemetry.adapters import ionet, nosana
from depin_telemetry.connectors.config import CachePolicy, ConnectorConfig, RateLimitPolicy, ScrapePolicy
from depin_telemetry.connectors.connector import Connector, ConnectorState
from depin_telemetry.connectors.errors import (
    ConfigError,
    ConnectorError,
    ErrorKind,
    NotInitializedError,
    classify_status,
)
from depin_telemetry.connectors.retry import RetryPolicy
from depin_telemetry.connectors.scraper import ScrapeTarget
from depin_telemetry.connectors.transport import HttpCall
from depin_telemetry.contracts.telemetry import (
    HealthState,
    OptimizationParams,
    Period,
    PeriodType,
    PriceStrategy,
    SourceTier,
)

NODE = {
    "node_id": "n1",
    "name": "GPU box",
    "status": "running",
    "uptime_seconds": 3600,
    "last_seen": "2025-02-01T00:00:00Z",
    "cpu_usage": 50,
    "memory_usage": 40,
    "storage_usage": 30,
    "network_speed": 100,
}

WEEK = Period.last(PeriodType.WEEK, datetime(2025, 3, 8, tzinfo=UTC))


class FakeTransport:
    """Scripted upstream keyed by path. The last outcome for a path repeats."""

    def __init__(self, routes: dict[str, list[Any]] | None = None) -> None:
        self.routes = routes or {}
        self.calls: list[HttpCall] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def request(self, call: HttpCall) -> Any:
        self.calls.append(call)
        if self.gate is not None:
            await self.gate.wait()
        outcomes = self.routes.get(call.path)
        if not outcomes:
            raise classify_status(404)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


class FakeScraper:
    def __init__(self, fields: dict[str, str | None] | Exception) -> None:
        self.fields = fields
        self.targets: list[ScrapeTarget] = []
        self.closed = False

    async def extract(self, target: ScrapeTarget) -> dict[str, str | None]:
        self.targets.append(target)
        if isinstance(self.fields, Exception):
            raise self.fields
        return dict(self.fields)

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def no_sleep(seconds: float) -> None:
    return None


@asynccontextmanager
async def ready(connector: Connector) -> AsyncIterator[Connector]:
    await connector.initialize()
    try:
        yield connector
    finally:
        await connector.dispose()


def live_ionet(transport: FakeTransport, **config: Any) -> Connector:
    return Connector(
        ionet.ADAPTER,
        ConnectorConfig(api_key="io-key", **config),
        transport=transport,
        sleep=no_sleep,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self) -> None:
        connector = Connector(ionet.ADAPTER, ConnectorConfig())
        await connector.initialize()
        await connector.initialize()
        assert connector.state is ConnectorState.READY
        await connector.dispose()
        assert connector.state is ConnectorState.DISPOSED

    @pytest.mark.asyncio
    async def test_methods_before_initialize_raise(self) -> None:
        connector = Connector(ionet.ADAPTER, ConnectorConfig())
        with pytest.raises(NotInitializedError):
            await connector.get_node_status("n1")
        with pytest.raises(NotInitializedError):
            connector.get_info()

    @pytest.mark.asyncio
    async def test_every_method_raises_after_dispose(self) -> None:
        connector = Connector(ionet.ADAPTER, ConnectorConfig())
        await connector.initialize()
        await connector.dispose()
        await connector.dispose()

        calls = [
            connector.get_node_status("n1"),
            connector.get_node_status(),
            connector.get_earnings(WEEK),
            connector.get_metrics("n1"),
            connector.optimize_pricing(),
            connector.get_node_ids(),
            connector.list_node_ids(),
            connector.validate_credentials(),
            connector.get_health(),
            connector.reconfigure(timeout_ms=1000),
            connector.initialize(),
        ]
        for call in calls:
            with pytest.raises(NotInitializedError):
                await call
        with pytest.raises(NotInitializedError):
            connector.get_info()

    @pytest.mark.asyncio
    async def test_live_demanded_without_key_fails(self) -> None:
        connector = Connector(ionet.ADAPTER, ConnectorConfig(use_synthetic=False))
        with pytest.raises(ConfigError):
            await connector.initialize()
        assert connector.state is ConnectorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_failed_setup_can_be_retried(self) -> None:
        connector = Connector(ionet.ADAPTER, ConnectorConfig(use_synthetic=False))
        with pytest.raises(ConfigError):
            await connector.initialize()
        await connector.initialize(ConnectorConfig(api_key="k"))
        assert connector.is_ready
        await connector.dispose()

    @pytest.mark.asyncio
    async def test_adapter_setup_errors_are_config_errors(self) -> None:
        def reject(config: ConnectorConfig) -> None:
            raise RuntimeError("region not supported")

        adapter = dataclasses.replace(ionet.ADAPTER, setup=reject)
        connector = Connector(adapter, ConnectorConfig())
        with pytest.raises(ConfigError, match="region not supported"):
            await connector.initialize()
        assert connector.state is ConnectorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_dispose_closes_transport_and_cache(self) -> None:
        transport = FakeTransport()
        connector = live_ionet(transport)
        await connector.initialize()
        cache = connector._cache
        assert cache is not None and cache.eviction_running

        await connector.dispose()
        assert transport.closed
        assert not cache.eviction_running


class TestSyntheticOnly:
    """No credential on a key-requiring network."""

    @pytest.mark.asyncio
    async def test_no_key_serves_synthetic_without_transport(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        connector = Connector(ionet.ADAPTER, ConnectorConfig(), transport=transport)

        async with ready(connector):
            assert connector.synthetic_only
            status = await connector.get_node_status("n1")
            earnings = await connector.get_earnings(WEEK, "n1")
            metrics = await connector.get_metrics()
            pricing = await connector.optimize_pricing()

            assert transport.calls == []
            assert status.source is SourceTier.SYNTHETIC
            assert earnings.source is SourceTier.SYNTHETIC
            assert all(m.source is SourceTier.SYNTHETIC for m in metrics)
            assert pricing.source is SourceTier.SYNTHETIC

    @pytest.mark.asyncio
    async def test_synthetic_never_consumes_tokens(self) -> None:
        config = ConnectorConfig(rate_limit=RateLimitPolicy(requests=2, window_ms=60000))
        async with ready(Connector(ionet.ADAPTER, config)) as connector:
            for _ in range(10):
                await connector.get_node_status("n1")
            assert connector.get_info().rate_limit.remaining == 2

    @pytest.mark.asyncio
    async def test_synthetic_output_is_stable(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as a:
            async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as b:
                first = await a.get_earnings(WEEK, "n1")
                second = await b.get_earnings(WEEK, "n1")
        assert first.to_json() == second.to_json()

    @pytest.mark.asyncio
    async def test_explicit_synthetic_with_key(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", use_synthetic=True),
            transport=transport,
        )
        async with ready(connector):
            status = await connector.get_node_status("n1")
        assert status.source is SourceTier.SYNTHETIC
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_node_ids(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as connector:
            ids = await connector.get_node_ids()
            listing = await connector.list_node_ids()
        assert ids == ["IO-gpu-node-001", "IO-gpu-node-002", "IO-gpu-node-003"]
        assert listing.ids == ids
        assert listing.source is SourceTier.SYNTHETIC


class TestLiveTier:
    @pytest.mark.asyncio
    async def test_live_success(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")

        assert status.source is SourceTier.LIVE
        assert status.id == "n1"
        assert status.name == "GPU box"
        assert status.status.value == "online"
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_public_network_is_live_without_key(self) -> None:
        transport = FakeTransport({"/nodes": [{"nodes": [{"address": "abc", "state": "RUNNING"}]}]})
        connector = Connector(nosana.ADAPTER, ConnectorConfig(), transport=transport)
        async with ready(connector):
            assert not connector.synthetic_only
            statuses = await connector.get_node_status()
        assert [s.id for s in statuses] == ["abc"]
        assert statuses[0].source is SourceTier.LIVE

    @pytest.mark.asyncio
    async def test_pricing_posts_params(self) -> None:
        transport = FakeTransport(
            {
                "/api/v1/pricing": [
                    {
                        "recommended": {"cpu_price": 0.05, "gpu_price": 1.5},
                        "market": {"average": 1.4, "minimum": 1.0, "maximum": 2.0},
                        "optimization": {"suggestion": "Raise GPU price", "confidence": 0.8},
                    }
                ]
            }
        )
        async with ready(live_ionet(transport)) as connector:
            pricing = await connector.optimize_pricing(
                OptimizationParams(price_strategy=PriceStrategy.PREMIUM), "n1"
            )

        assert pricing.source is SourceTier.LIVE
        assert pricing.recommended.gpu == 1.5
        assert pricing.optimization.suggestion == "Raise GPU price"
        call = transport.calls[0]
        assert call.method == "POST"
        assert call.json_body is not None
        assert call.json_body["price_strategy"] == "premium"
        assert call.json_body["node_id"] == "n1"

    @pytest.mark.asyncio
    async def test_live_node_ids(self) -> None:
        transport = FakeTransport({"/api/v1/nodes": [{"nodes": [{"node_id": "a"}, {"id": "b"}]}]})
        async with ready(live_ionet(transport)) as connector:
            assert await connector.get_node_ids() == ["a", "b"]
            listing = await connector.list_node_ids()
        assert listing.ids == ["a", "b"]
        assert listing.source is SourceTier.LIVE


class TestFallback:
    """Every failure is absorbed; the synthetic tier always answers."""

    @pytest.mark.asyncio
    async def test_persistent_503_retries_then_synthetic(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(503)]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")
            stats = connector.get_info().stats

        assert len(transport.calls) == 3
        assert status.source is SourceTier.SYNTHETIC
        assert stats["retries"] == 2
        assert stats["errors_by_kind"] == {"TRANSIENT": 3}
        assert stats["results_by_tier"] == {"synthetic": 1}

    @pytest.mark.asyncio
    async def test_transient_then_success_is_live(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(502), NODE]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")
        assert status.source is SourceTier.LIVE
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(401)]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")
        assert len(transport.calls) == 1
        assert status.source is SourceTier.SYNTHETIC

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [{"unexpected": True}]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")
            stats = connector.get_info().stats
        assert status.source is SourceTier.SYNTHETIC
        assert len(transport.calls) == 1
        assert stats["results_by_tier"] == {"synthetic": 1}

    @pytest.mark.asyncio
    async def test_retry_budget_from_config(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(500)]})
        connector = live_ionet(transport, retry=RetryPolicy(max_attempts=5, base_delay_ms=0))
        async with ready(connector):
            await connector.get_node_status("n1")
        assert len(transport.calls) == 5

    @pytest.mark.asyncio
    async def test_call_timeout_is_transient(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        transport.gate = asyncio.Event()  # never set: every call hangs
        connector = live_ionet(
            transport, timeout_ms=20, retry=RetryPolicy(max_attempts=2, base_delay_ms=0)
        )
        async with ready(connector):
            status = await connector.get_node_status("n1")
            stats = connector.get_info().stats
        assert status.source is SourceTier.SYNTHETIC
        assert len(transport.calls) == 2
        assert stats["errors_by_kind"] == {"TRANSIENT": 2}

    @pytest.mark.asyncio
    async def test_unsupported_operation_logs_warning_with_key(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        transport = FakeTransport()
        connector = Connector(nosana.ADAPTER, ConnectorConfig(api_key="k"), transport=transport)
        with caplog.at_level(logging.WARNING, logger="depin_telemetry.connectors.connector"):
            async with ready(connector):
                pricing = await connector.optimize_pricing()

        assert pricing.source is SourceTier.SYNTHETIC
        assert transport.calls == []
        assert any("synthetic" in r.getMessage().lower() for r in caplog.records)


class TestScrapedTier:
    @pytest.mark.asyncio
    async def test_scrape_used_when_live_fails(self) -> None:
        transport = FakeTransport({"/api/v1/earnings": [classify_status(503)]})
        scraper = FakeScraper({"total_earnings": "1,234.50 IO"})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", scraper=ScrapePolicy(enabled=True)),
            transport=transport,
            scraper=scraper,  # type: ignore[arg-type]
            sleep=no_sleep,
        )
        async with ready(connector):
            earnings = await connector.get_earnings(WEEK)
            again = await connector.get_earnings(WEEK)

        assert earnings.source is SourceTier.SCRAPED
        assert earnings.total == 1234.5
        assert earnings.breakdown.compute == pytest.approx(1234.5 * 0.8)
        assert again.source is SourceTier.SCRAPED
        assert len(scraper.targets) == 1
        assert scraper.targets[0].path == "/worker/earnings"
        assert scraper.closed

    @pytest.mark.asyncio
    async def test_scrape_failure_counts_and_falls_through(self) -> None:
        transport = FakeTransport({"/api/v1/earnings": [classify_status(503)]})
        scraper = FakeScraper(ConnectorError("blocked", ErrorKind.VALIDATION_FAILURE))
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", scraper=ScrapePolicy(enabled=True)),
            transport=transport,
            scraper=scraper,  # type: ignore[arg-type]
            sleep=no_sleep,
        )
        async with ready(connector):
            earnings = await connector.get_earnings(WEEK)
            stats = connector.get_info().stats
        assert earnings.source is SourceTier.SYNTHETIC
        assert stats["scrape_failures"] == 1

    @pytest.mark.asyncio
    async def test_unparseable_dashboard_falls_through(self) -> None:
        transport = FakeTransport({"/api/v1/earnings": [classify_status(503)]})
        scraper = FakeScraper({"total_earnings": None})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", scraper=ScrapePolicy(enabled=True)),
            transport=transport,
            scraper=scraper,  # type: ignore[arg-type]
            sleep=no_sleep,
        )
        async with ready(connector):
            earnings = await connector.get_earnings(WEEK)
        assert earnings.source is SourceTier.SYNTHETIC

    @pytest.mark.asyncio
    async def test_disabled_scraper_is_skipped(self) -> None:
        transport = FakeTransport({"/api/v1/earnings": [classify_status(503)]})
        scraper = FakeScraper({"total_earnings": "10"})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k"),
            transport=transport,
            scraper=scraper,  # type: ignore[arg-type]
            sleep=no_sleep,
        )
        async with ready(connector):
            earnings = await connector.get_earnings(WEEK)
            assert connector.get_info().scraper_enabled is False
        assert earnings.source is SourceTier.SYNTHETIC
        assert scraper.targets == []


class TestCaching:
    @pytest.mark.asyncio
    async def test_hit_within_ttl_miss_after(self) -> None:
        clock = FakeClock()
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", cache=CachePolicy(ttl_s=60)),
            transport=transport,
            time_fn=clock,
        )
        async with ready(connector):
            await connector.get_node_status("n1")
            clock.now += 59
            cached = await connector.get_node_status("n1")
            assert len(transport.calls) == 1
            assert cached.source is SourceTier.LIVE

            clock.now += 2
            await connector.get_node_status("n1")
            assert len(transport.calls) == 2

            stats = connector.get_info().stats
        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 2

    @pytest.mark.asyncio
    async def test_cache_disabled_calls_every_time(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        connector = live_ionet(transport, cache=CachePolicy(enabled=False))
        async with ready(connector):
            for _ in range(3):
                await connector.get_node_status("n1")
            assert connector._cache is not None
            assert not connector._cache.eviction_running
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_distinct_requests_not_shared(self) -> None:
        transport = FakeTransport(
            {"/api/v1/nodes/n1": [NODE], "/api/v1/nodes/n2": [{**NODE, "node_id": "n2"}]}
        )
        async with ready(live_ionet(transport)) as connector:
            a = await connector.get_node_status("n1")
            b = await connector.get_node_status("n2")
        assert (a.id, b.id) == ("n1", "n2")
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_synthetic_results_not_cached(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(401), NODE]})
        async with ready(live_ionet(transport)) as connector:
            first = await connector.get_node_status("n1")
            second = await connector.get_node_status("n1")
        assert first.source is SourceTier.SYNTHETIC
        assert second.source is SourceTier.LIVE

    @pytest.mark.asyncio
    async def test_concurrent_misses_coalesce(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        transport.gate = asyncio.Event()

        async with ready(live_ionet(transport)) as connector:

            async def release() -> None:
                await asyncio.sleep(0.01)
                assert transport.gate is not None
                transport.gate.set()

            a, b, _ = await asyncio.gather(
                connector.get_node_status("n1"),
                connector.get_node_status("n1"),
                release(),
            )
            stats = connector.get_info().stats

        assert a == b
        assert len(transport.calls) == 1
        assert stats["coalesced"] == 1


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_one_token_per_logical_request(self) -> None:
        clock = FakeClock()
        transport = FakeTransport({"/api/v1/nodes/n1": [classify_status(503)]})
        connector = Connector(
            ionet.ADAPTER,
            ConnectorConfig(api_key="k", rate_limit=RateLimitPolicy(requests=10, window_ms=60000)),
            transport=transport,
            time_fn=clock,
            sleep=no_sleep,
        )
        async with ready(connector):
            await connector.get_node_status("n1")
            assert len(transport.calls) == 3
            assert connector.get_info().rate_limit.remaining == 9

    @pytest.mark.asyncio
    async def test_429_applies_backoff_hint(self) -> None:
        limited = classify_status(429, retry_after_ms=30000)
        transport = FakeTransport({"/api/v1/nodes/n1": [limited, NODE]})
        async with ready(live_ionet(transport)) as connector:
            status = await connector.get_node_status("n1")
            info = connector.get_info()

        assert status.source is SourceTier.LIVE
        assert info.stats["rate_limit_hints"] == 1
        assert info.rate_limit.remaining == 0
        assert info.rate_limit.reset_in_s >= 29

    @pytest.mark.asyncio
    async def test_huge_retry_after_falls_through_quickly(self) -> None:
        limited = classify_status(429, retry_after_ms=86_400_000)
        transport = FakeTransport({"/api/v1/nodes/n1": [limited, NODE]})
        connector = live_ionet(
            transport,
            retry=RetryPolicy(max_attempts=3, max_delay_ms=5000),
            rate_limit=RateLimitPolicy(requests=1, window_ms=1000),
        )
        async with ready(connector):
            status = await connector.get_node_status("n1")
            info = connector.get_info()

        assert status.source is SourceTier.SYNTHETIC
        assert len(transport.calls) == 1
        assert info.stats["retries"] == 0
        assert info.stats["rate_limit_hints"] == 1
        assert 4.9 <= info.rate_limit.reset_in_s <= 5.0


class TestCredentials:
    @pytest.mark.asyncio
    async def test_no_key(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as connector:
            report = await connector.validate_credentials()
        assert report.valid is False
        assert report.limitations == ["No API key provided"]

    @pytest.mark.asyncio
    async def test_valid_key(self) -> None:
        transport = FakeTransport({"/api/v1/auth/validate": [{"ok": True}]})
        async with ready(live_ionet(transport)) as connector:
            report = await connector.validate_credentials()
        assert report.valid is True
        assert "read_nodes" in report.permissions
        assert transport.calls[0].path == "/api/v1/auth/validate"

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        transport = FakeTransport({"/api/v1/auth/validate": [classify_status(401)]})
        async with ready(live_ionet(transport)) as connector:
            report = await connector.validate_credentials()
        assert report.valid is False
        assert report.limitations == ["Invalid or expired API key"]

    @pytest.mark.asyncio
    async def test_outage_is_not_reported_as_bad_key(self) -> None:
        transport = FakeTransport({"/api/v1/auth/validate": [classify_status(503)]})
        async with ready(live_ionet(transport)) as connector:
            report = await connector.validate_credentials()
        assert report.valid is False
        assert report.limitations == ["Credential check failed: TRANSIENT"]

    @pytest.mark.asyncio
    async def test_public_api(self) -> None:
        async with ready(Connector(nosana.ADAPTER, ConnectorConfig())) as connector:
            report = await connector.validate_credentials()
        assert report.valid is True


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        transport = FakeTransport({"/api/v1/auth/validate": [{"ok": True}]})
        async with ready(live_ionet(transport)) as connector:
            health = await connector.get_health()
        assert health.status is HealthState.HEALTHY
        assert health.errors == []
        assert health.latency_ms >= 0

    @pytest.mark.asyncio
    async def test_invalid_credentials_unhealthy(self) -> None:
        transport = FakeTransport({"/api/v1/auth/validate": [classify_status(403)]})
        async with ready(live_ionet(transport)) as connector:
            health = await connector.get_health()
        assert health.status is HealthState.UNHEALTHY
        assert "Invalid credentials" in health.errors

    @pytest.mark.asyncio
    async def test_missing_key_unhealthy(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as connector:
            health = await connector.get_health()
        assert health.status is HealthState.UNHEALTHY

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_degraded(self) -> None:
        clock = FakeClock()
        transport = FakeTransport({"/nodes/n1": [{"address": "n1", "state": "online"}]})
        connector = Connector(
            nosana.ADAPTER,
            ConnectorConfig(
                rate_limit=RateLimitPolicy(requests=10, window_ms=60000),
                cache=CachePolicy(enabled=False),
            ),
            transport=transport,
            time_fn=clock,
        )
        async with ready(connector):
            for _ in range(10):
                await connector.get_node_status("n1")
            health = await connector.get_health()
        assert health.status is HealthState.DEGRADED
        assert health.errors == ["Rate limit nearly exhausted"]


class TestInfoAndReconfigure:
    @pytest.mark.asyncio
    async def test_info_snapshot(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig())) as connector:
            await connector.get_node_status("n1")
            info = connector.get_info()
        assert info.network == "ionet"
        assert info.state == "ready"
        assert info.has_api_key is False
        assert info.synthetic_only is True
        assert info.cache_enabled is True
        assert info.rate_limit.limit == 60
        assert info.stats["requests"] == 1
        assert info.stats["results_by_operation"] == {"node_status": 1}

    @pytest.mark.asyncio
    async def test_reconfigure_switches_to_live(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        connector = Connector(ionet.ADAPTER, ConnectorConfig(), transport=transport)
        async with ready(connector):
            first = await connector.get_node_status("n1")
            await connector.reconfigure(api_key="new-key")
            second = await connector.get_node_status("n1")

            assert connector.config.api_key == "new-key"
            assert not transport.closed
        assert first.source is SourceTier.SYNTHETIC
        assert second.source is SourceTier.LIVE

    @pytest.mark.asyncio
    async def test_reconfigure_drops_cache(self) -> None:
        transport = FakeTransport({"/api/v1/nodes/n1": [NODE]})
        async with ready(live_ionet(transport)) as connector:
            await connector.get_node_status("n1")
            await connector.reconfigure(timeout_ms=5000)
            await connector.get_node_status("n1")
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_reconfigure_keeps_old_config(self) -> None:
        async with ready(Connector(ionet.ADAPTER, ConnectorConfig(api_key="k"))) as connector:
            with pytest.raises(ConfigError):
                await connector.reconfigure(api_key=None, use_synthetic=False)
            assert connector.config.api_key == "k"
            assert connector.is_ready
