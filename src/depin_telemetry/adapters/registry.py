"""
Connector factory.

One Connector per (network, config fingerprint): every device on a network
that shares a config shares the instance, its rate limit and its cache.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from depin_telemetry.adapters import grass, ionet, natix, nosana, render
from depin_telemetry.connectors.connector import Connector
from depin_telemetry.connectors.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from depin_telemetry.adapters.base import NetworkAdapter
    from depin_telemetry.connectors.config import ConnectorConfig

logger = logging.getLogger(__name__)

ADAPTERS: Mapping[str, NetworkAdapter] = {
    adapter.name: adapter
    for adapter in (ionet.ADAPTER, nosana.ADAPTER, grass.ADAPTER, render.ADAPTER, natix.ADAPTER)
}

# Sane ranges; values outside only warn
TIMEOUT_MS_RANGE = (1000, 300000)
RETRY_ATTEMPTS_RANGE = (1, 10)
RATE_LIMIT_REQUESTS_RANGE = (1, 10000)
RATE_LIMIT_WINDOW_MS_RANGE = (1000, 3600000)


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def get_adapter(network: str) -> NetworkAdapter:
    """
    Look up a network adapter by name (case-insensitive).

    Raises:
        ConfigError: If the network is not supported.
    """
    adapter = ADAPTERS.get(network.lower())
    if adapter is None:
        supported = ", ".join(sorted(ADAPTERS))
        raise ConfigError(f"Unsupported network: {network} (supported: {supported})")
    return adapter


def validate_config(network: str, config: ConnectorConfig) -> ConfigValidation:
    """Check a config against a network without building a connector."""
    errors: list[str] = []
    warnings: list[str] = []

    try:
        adapter = get_adapter(network)
    except ConfigError as e:
        return ConfigValidation(valid=False, errors=[str(e)])

    if adapter.requires_api_key and not config.has_api_key:
        if config.use_synthetic is False:
            errors.append(f"API key is required for {adapter.name} live data")
        else:
            warnings.append(f"No API key for {adapter.name}; synthetic data will be served")

    if not adapter.resolve_base_url(config):
        errors.append(f"Base URL is required for {adapter.name}")

    if config.scraper.enabled and not adapter.resolve_site_url(config):
        warnings.append("Scraper enabled but no site URL is known")

    checks = (
        ("timeoutMs", config.timeout_ms, TIMEOUT_MS_RANGE),
        ("retryAttempts", config.retry.max_attempts, RETRY_ATTEMPTS_RANGE),
        ("rateLimitRequests", config.rate_limit.requests, RATE_LIMIT_REQUESTS_RANGE),
        ("rateLimitWindowMs", config.rate_limit.window_ms, RATE_LIMIT_WINDOW_MS_RANGE),
    )
    for name, value, (lo, hi) in checks:
        if not lo <= value <= hi:
            warnings.append(f"{name} {value} outside recommended range {lo}-{hi}")

    return ConfigValidation(valid=not errors, errors=errors, warnings=warnings)


class ConnectorRegistry:
    """
    Creates and tracks connectors.

    Usage:
        registry = ConnectorRegistry()
        connector = await registry.create_and_initialize("ionet", config)
        ...
        await registry.clear_all()
    """

    def __init__(self, adapters: Mapping[str, NetworkAdapter] | None = None) -> None:
        self._adapters = dict(adapters if adapters is not None else ADAPTERS)
        self._instances: dict[tuple[str, str], Connector] = {}
        self._lock = asyncio.Lock()

    @property
    def networks(self) -> list[str]:
        return sorted(self._adapters)

    def _adapter(self, network: str) -> NetworkAdapter:
        adapter = self._adapters.get(network.lower())
        if adapter is None:
            raise ConfigError(f"Unsupported network: {network}")
        return adapter

    def create(self, network: str, config: ConnectorConfig, **kwargs: Any) -> Connector:
        """
        Return the connector for (network, config), creating it if needed.

        Extra keyword arguments go to the Connector constructor and only
        apply when a new instance is created.

        Raises:
            ConfigError: If the network is not supported.
        """
        adapter = self._adapter(network)
        key = (adapter.name, config.fingerprint())
        connector = self._instances.get(key)
        if connector is not None:
            return connector

        connector = Connector(adapter, config, **kwargs)
        self._instances[key] = connector
        logger.debug("Connector created", extra={"network": adapter.name})
        return connector

    async def create_and_initialize(
        self, network: str, config: ConnectorConfig, **kwargs: Any
    ) -> Connector:
        """Create (or reuse) and initialize. A failed setup is not kept."""
        async with self._lock:
            connector = self.create(network, config, **kwargs)
            try:
                await connector.initialize()
            except ConfigError:
                self._forget(connector)
                raise
            return connector

    def get(self, network: str, config: ConnectorConfig) -> Connector | None:
        adapter = self._adapters.get(network.lower())
        if adapter is None:
            return None
        return self._instances.get((adapter.name, config.fingerprint()))

    def connectors(self) -> list[Connector]:
        return list(self._instances.values())

    def _forget(self, connector: Connector) -> None:
        for key, existing in list(self._instances.items()):
            if existing is connector:
                del self._instances[key]

    async def remove(self, network: str, config: ConnectorConfig) -> bool:
        """Dispose and forget one connector. Returns False if none existed."""
        connector = self.get(network, config)
        if connector is None:
            return False
        self._forget(connector)
        await connector.dispose()
        return True

    async def clear_all(self) -> None:
        connectors = list(self._instances.values())
        self._instances.clear()
        results = await asyncio.gather(
            *(c.dispose() for c in connectors), return_exceptions=True
        )
        for connector, result in zip(connectors, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Connector dispose failed",
                    extra={"network": connector.network, "error": str(result)},
                )

    def stats(self) -> dict[str, Any]:
        by_network: dict[str, int] = {}
        for network, _ in self._instances:
            by_network[network] = by_network.get(network, 0) + 1
        return {
            "total_instances": len(self._instances),
            "supported_networks": self.networks,
            "instances_by_network": by_network,
            "ready": sum(1 for c in self._instances.values() if c.is_ready),
        }

    def readiness(self) -> tuple[bool, dict[str, Any]]:
        """(ready, body) for /readyz: ready once every managed connector is READY."""
        states = {
            f"{network}:{fingerprint[:8]}": connector.state.value
            for (network, fingerprint), connector in self._instances.items()
        }
        ready = bool(states) and all(s == "ready" for s in states.values())
        return ready, {"ready": ready, "connectors": states}
