"""
Connector: one instance per network, shared by every device on it.

States: UNINITIALIZED -> INITIALIZING -> READY -> DISPOSED (terminal).

Per-request flow once READY:
1. Rate limiter admission (skipped when the connector is synthetic-only).
2. Cache lookup; a hit returns without touching any tier.
3. Concurrent identical misses share one in-flight resolution.
4. Tiers in order: live (retried), scraped (single attempt), synthetic.
5. Live and scraped results are written through to the cache.

Only NotInitializedError and ConfigError escape; every other failure is
absorbed by the tier chain, so a READY connector always returns data.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from depin_telemetry.connectors.cache import MISS, CacheStore
from depin_telemetry.connectors.errors import (
    ConfigError,
    ConnectorError,
    ErrorKind,
    NotInitializedError,
    classify_error,
)
from depin_telemetry.connectors.rate_limiter import RateLimiter
from depin_telemetry.connectors.retry import RetryExecutor
from depin_telemetry.connectors.scraper import ScrapeFallback
from depin_telemetry.connectors.synth import TelemetrySynthesizer
from depin_telemetry.connectors.tiers import (
    ConnectorMetrics,
    LiveTier,
    Operation,
    ScrapedTier,
    SyntheticTier,
    TelemetryRequest,
    TierResult,
)
from depin_telemetry.connectors.transport import HttpTransport
from depin_telemetry.contracts.telemetry import (
    ConnectorInfo,
    CredentialReport,
    Earnings,
    HealthReport,
    HealthState,
    NodeIdList,
    NodeMetrics,
    NodeStatus,
    OptimizationParams,
    PricingStrategy,
    RateLimitSnapshot,
    SourceTier,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from depin_telemetry.adapters.base import NetworkAdapter
    from depin_telemetry.connectors.config import ConnectorConfig
    from depin_telemetry.connectors.tiers import Tier
    from depin_telemetry.connectors.transport import Transport
    from depin_telemetry.contracts.telemetry import Period

logger = logging.getLogger(__name__)

# Remaining tokens below this share of capacity report as degraded
RATE_LIMIT_DEGRADED_RATIO = 0.1

_instance_ids = itertools.count(1)


class ConnectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DISPOSED = "disposed"


class Connector:
    """
    Generic telemetry connector driven by a NetworkAdapter.

    Usage:
        connector = Connector(IONET, ConnectorConfig(api_key="..."))
        await connector.initialize()
        status = await connector.get_node_status("node-1")
        await connector.dispose()
    """

    def __init__(
        self,
        adapter: NetworkAdapter,
        config: ConnectorConfig,
        *,
        transport: Transport | None = None,
        scraper: ScrapeFallback | None = None,
        time_fn: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """
        Create an uninitialized connector.

        Args:
            adapter: Network-specific request building and mapping.
            config: Connector settings.
            transport: Live transport; an aiohttp HttpTransport by default.
            scraper: Scrape fallback; built from config when scraping is enabled.
            time_fn: Clock (seconds) for the rate limiter and cache, for testing.
            sleep: Retry backoff sleep, for testing.
        """
        self._adapter = adapter
        self._config = config
        self._injected_transport = transport
        self._injected_scraper = scraper
        self._time_fn = time_fn
        self._sleep = sleep or asyncio.sleep

        self._state = ConnectorState.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._synthetic_only = False
        self._limiter: RateLimiter | None = None
        self._cache: CacheStore | None = None
        self._transport: Transport | None = None
        self._scraper: ScrapeFallback | None = None
        self._tiers: list[Tier] = []
        self._live: LiveTier | None = None
        self._inflight: dict[str, asyncio.Task[TierResult]] = {}
        self._synthesizer = TelemetrySynthesizer(adapter.profile)
        self.instance_id = next(_instance_ids)
        self.metrics = ConnectorMetrics()

    @property
    def network(self) -> str:
        return self._adapter.name

    @property
    def state(self) -> ConnectorState:
        return self._state

    @property
    def config(self) -> ConnectorConfig:
        return self._config

    @property
    def synthetic_only(self) -> bool:
        return self._synthetic_only

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectorState.READY

    # Lifecycle

    async def initialize(self, config: ConnectorConfig | None = None) -> None:
        """
        Validate config and build owned resources. Idempotent once READY.

        Args:
            config: Replaces the constructor config before validation.

        Raises:
            ConfigError: On invalid config; the connector stays UNINITIALIZED.
            NotInitializedError: If the connector was disposed.
        """
        async with self._lock:
            if self._state is ConnectorState.READY:
                return
            if self._state is ConnectorState.DISPOSED:
                raise NotInitializedError("Connector disposed")

            self._state = ConnectorState.INITIALIZING
            try:
                await self._build(config or self._config)
            except ConfigError:
                self._state = ConnectorState.UNINITIALIZED
                raise
            except Exception as e:
                self._state = ConnectorState.UNINITIALIZED
                raise ConfigError(f"{self.network} setup failed: {e}") from e

            self._state = ConnectorState.READY
            logger.info(
                "Connector ready",
                extra={
                    "network": self.network,
                    "synthetic_only": self._synthetic_only,
                    "cache_enabled": self._config.cache.enabled,
                    "scraper_enabled": self._scraper is not None,
                },
            )

    def _resolve_synthetic_only(self, config: ConnectorConfig) -> bool:
        if config.use_synthetic is not None:
            return config.use_synthetic
        return self._adapter.requires_api_key and not config.has_api_key

    async def _build(self, config: ConnectorConfig) -> None:
        synthetic_only = self._resolve_synthetic_only(config)
        self._adapter.check_config(config, live=not synthetic_only)

        limiter = RateLimiter(
            config.rate_limit.requests,
            config.rate_limit.window_ms / 1000,
            _time_fn=self._time_fn,
        )
        cache = CacheStore(
            default_ttl_s=config.cache.ttl_s,
            max_entries=config.cache.max_entries,
            _time_fn=self._time_fn,
        )

        tiers: list[Tier] = []
        live = None
        transport: Transport | None = None
        scraper: ScrapeFallback | None = None
        if not synthetic_only:
            transport = self._injected_transport or self._make_transport(config)
            live = LiveTier(
                adapter=self._adapter,
                transport=transport,
                executor=RetryExecutor(sleep=self._sleep),
                policy=config.retry,
                timeout_s=config.timeout_ms / 1000,
                metrics=self.metrics,
                on_rate_limited=self._on_rate_limited,
            )
            scraper = self._make_scraper(config)
            tiers = [
                live,
                ScrapedTier(self._adapter, scraper, timeout_s=config.scraper.timeout_ms / 1000),
            ]
        tiers.append(SyntheticTier(self._synthesizer))

        self._config = config
        self._synthetic_only = synthetic_only
        self._limiter = limiter
        self._cache = cache
        self._transport = transport
        self._scraper = scraper
        self._live = live
        self._tiers = tiers

        if config.cache.enabled:
            cache.start_eviction(config.cache.eviction_interval_s)

    def _make_transport(self, config: ConnectorConfig) -> Transport:
        base_url = self._adapter.resolve_base_url(config)
        if base_url is None:
            raise ConfigError(f"{self.network} requires a base URL")
        return HttpTransport(base_url, api_key=config.api_key, timeout_ms=config.timeout_ms)

    def _make_scraper(self, config: ConnectorConfig) -> ScrapeFallback | None:
        if not config.scraper.enabled:
            return None
        if self._injected_scraper is not None:
            return self._injected_scraper
        site_url = self._adapter.resolve_site_url(config)
        if site_url is None:
            logger.warning("Scraper enabled without a site URL", extra={"network": self.network})
            return None
        return ScrapeFallback(
            site_url, timeout_ms=config.scraper.timeout_ms, headless=config.scraper.headless
        )

    async def reconfigure(self, **changes: Any) -> None:
        """
        Replace config fields and rebuild owned resources.

        In-flight requests finish on the resources they started with. Cached
        entries are dropped.

        Raises:
            ConfigError: If the new config is invalid; the old one stays active.
            NotInitializedError: If not READY.
        """
        self._require_ready()
        new_config = self._config.with_changes(**changes)

        async with self._lock:
            self._require_ready()
            old_cache, old_transport, old_scraper = self._cache, self._transport, self._scraper
            await self._build(new_config)
            if old_cache is not None:
                await old_cache.dispose()
            await self._close_owned(old_transport, old_scraper)

        logger.info(
            "Connector reconfigured",
            extra={"network": self.network, "fields": sorted(changes)},
        )

    async def _close_owned(
        self, transport: Transport | None, scraper: ScrapeFallback | None
    ) -> None:
        # Injected resources stay open across rebuilds; dispose() closes them
        if transport is not None and transport is not self._transport:
            await transport.close()
        if scraper is not None and scraper is not self._scraper:
            await scraper.close()

    async def dispose(self) -> None:
        """Release cache timers, sessions and scraper. Terminal; idempotent."""
        async with self._lock:
            if self._state is ConnectorState.DISPOSED:
                return
            self._state = ConnectorState.DISPOSED

            for task in list(self._inflight.values()):
                task.cancel()
            for task in list(self._inflight.values()):
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._inflight.clear()

            if self._cache is not None:
                await self._cache.dispose()
            if self._transport is not None:
                await self._transport.close()
            if self._scraper is not None:
                await self._scraper.close()
            self._tiers = []
            self._live = None

        logger.info("Connector disposed", extra={"network": self.network})

    def _require_ready(self) -> None:
        if self._state is not ConnectorState.READY:
            raise NotInitializedError(
                f"{self.network} connector is {self._state.value}, not ready"
            )

    # Request pipeline

    async def _request(self, request: TelemetryRequest) -> TierResult:
        self._require_ready()
        assert self._cache is not None and self._limiter is not None
        cache = self._cache
        self.metrics.requests += 1

        if not self._synthetic_only:
            await self._limiter.acquire()
            self._require_ready()

        key = request.cache_key()
        if not self._config.cache.enabled:
            return await self._resolve(request, key, cache=None)

        cached = cache.get(key)
        if cached is not MISS:
            self.metrics.cache_hits += 1
            self.metrics.results_by_tier[cached.tier.value] += 1
            logger.debug(
                "Cache hit",
                extra={"network": self.network, "operation": request.operation.value},
            )
            return cached
        self.metrics.cache_misses += 1

        if not self._config.cache.coalesce_inflight:
            return await self._resolve(request, key, cache=cache)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._resolve(request, key, cache=cache))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            self.metrics.coalesced += 1
        return await asyncio.shield(task)

    async def _resolve(
        self, request: TelemetryRequest, key: str, *, cache: CacheStore | None
    ) -> TierResult:
        tiers = self._tiers
        errors: list[ConnectorError] = []

        for tier in tiers[:-1]:
            try:
                value = await tier.fetch(request)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_error(exc)
                errors.append(error)
                if tier.name is SourceTier.SCRAPED and error.kind is not ErrorKind.SCRAPER_UNAVAILABLE:
                    self.metrics.scrape_failures += 1
                logger.log(
                    logging.DEBUG if error.kind is ErrorKind.SCRAPER_UNAVAILABLE else logging.INFO,
                    "Tier failed, falling back",
                    extra={
                        "network": self.network,
                        "operation": request.operation.value,
                        "tier": tier.name.value,
                        "kind": error.kind.value,
                        "error": str(error),
                    },
                )
                continue

            result = TierResult(tier.name, value)
            if cache is not None:
                cache.set(key, result)
            self._record(request, result)
            return result

        terminal = tiers[-1]
        result = TierResult(terminal.name, await terminal.fetch(request))
        if errors and self._config.has_api_key:
            logger.warning(
                "Serving synthetic data despite configured credential",
                extra={
                    "network": self.network,
                    "operation": request.operation.value,
                    "kinds": [e.kind.value for e in errors],
                },
            )
        self._record(request, result)
        return result

    def _record(self, request: TelemetryRequest, result: TierResult) -> None:
        self.metrics.results_by_tier[result.tier.value] += 1
        self.metrics.results_by_operation[request.operation.value] += 1

    def _on_rate_limited(self, error: ConnectorError) -> None:
        if self._limiter is None:
            return
        retry = self._config.retry
        delay_ms = min(error.retry_after_ms or retry.base_delay_ms, retry.max_delay_ms)
        self._limiter.apply_backoff_hint(delay_ms / 1000)
        self.metrics.rate_limit_hints += 1

    # Public operations

    async def get_node_status(self, node_id: str | None = None) -> NodeStatus | list[NodeStatus]:
        """Status of one node, or of every node on the account."""
        result = await self._request(TelemetryRequest(Operation.NODE_STATUS, node_id=node_id))
        return result.value

    async def get_earnings(self, period: Period, node_id: str | None = None) -> Earnings:
        result = await self._request(
            TelemetryRequest(Operation.EARNINGS, node_id=node_id, period=period)
        )
        return result.value

    async def get_metrics(self, node_id: str | None = None) -> NodeMetrics | list[NodeMetrics]:
        result = await self._request(TelemetryRequest(Operation.METRICS, node_id=node_id))
        return result.value

    async def optimize_pricing(
        self,
        params: OptimizationParams | None = None,
        node_id: str | None = None,
    ) -> PricingStrategy:
        result = await self._request(
            TelemetryRequest(
                Operation.PRICING, node_id=node_id, params=params or OptimizationParams()
            )
        )
        return result.value

    async def list_node_ids(self) -> NodeIdList:
        """Node ids on the account together with the tier that produced them."""
        result = await self._request(TelemetryRequest(Operation.NODE_IDS))
        return NodeIdList(ids=list(result.value), source=result.tier)

    async def get_node_ids(self) -> list[str]:
        """
        Node ids on the account, untagged.

        When the listing is not live the ids are synthetic and follow
        "<PREFIX>-node-NNN" (e.g. "IO-gpu-node-001"). Use list_node_ids()
        where the tier matters.
        """
        return (await self.list_node_ids()).ids

    async def validate_credentials(self) -> CredentialReport:
        """
        Call the network's credential endpoint.

        Live only: no cache, no scrape, no synthesis.
        """
        self._require_ready()
        check = self._adapter.credential_check

        if not self._config.has_api_key:
            if check is None:
                return CredentialReport(
                    valid=True, permissions=["read_public"], limitations=["Public API only"]
                )
            return CredentialReport(valid=False, limitations=["No API key provided"])

        if check is None or self._live is None:
            return CredentialReport(
                valid=True,
                permissions=["read_public"],
                limitations=["Credential not verified"],
            )

        assert self._limiter is not None
        await self._limiter.acquire()
        try:
            await self._live.call(check.build())
        except ConnectorError as e:
            if e.kind is ErrorKind.AUTH_FAILURE:
                limitation = "Invalid or expired API key"
            else:
                limitation = f"Credential check failed: {e.kind.value}"
            logger.info(
                "Credential validation failed",
                extra={"network": self.network, "kind": e.kind.value},
            )
            return CredentialReport(valid=False, limitations=[limitation])

        return CredentialReport(
            valid=True,
            permissions=list(check.permissions),
            limitations=list(check.limitations),
        )

    async def get_health(self) -> HealthReport:
        """
        healthy | degraded | unhealthy from credentials and rate limit headroom.

        Diagnostic only; never gates requests.
        """
        self._require_ready()
        assert self._limiter is not None
        started = time.perf_counter()
        errors: list[str] = []
        status = HealthState.HEALTHY

        report = await self.validate_credentials()
        if not report.valid:
            errors.append("Invalid credentials")
            errors.extend(report.limitations)
            status = HealthState.UNHEALTHY

        info = self._limiter.get_info()
        if info.remaining < info.limit * RATE_LIMIT_DEGRADED_RATIO:
            errors.append("Rate limit nearly exhausted")
            if status is HealthState.HEALTHY:
                status = HealthState.DEGRADED

        return HealthReport(
            status=status,
            last_check=datetime.now(UTC),
            latency_ms=round((time.perf_counter() - started) * 1000, 3),
            errors=errors,
        )

    def get_info(self) -> ConnectorInfo:
        """Diagnostic snapshot of configuration and counters."""
        self._require_ready()
        assert self._limiter is not None
        info = self._limiter.get_info()
        return ConnectorInfo(
            network=self.network,
            state=self._state.value,
            has_api_key=self._config.has_api_key,
            synthetic_only=self._synthetic_only,
            cache_enabled=self._config.cache.enabled,
            scraper_enabled=self._scraper is not None,
            rate_limit=RateLimitSnapshot(
                remaining=info.remaining, limit=info.limit, reset_in_s=info.reset_in_s
            ),
            stats=self.metrics.to_dict(),
        )
