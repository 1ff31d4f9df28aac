"""Per-network adapters: io.net, Nosana, Grass, Render and Natix."""

from depin_telemetry.adapters.base import CredentialCheck, NetworkAdapter, OperationSpec
from depin_telemetry.adapters.registry import (
    ADAPTERS,
    ConfigValidation,
    ConnectorRegistry,
    get_adapter,
    validate_config,
)

__all__ = [
    "ADAPTERS",
    "ConfigValidation",
    "ConnectorRegistry",
    "CredentialCheck",
    "NetworkAdapter",
    "OperationSpec",
    "get_adapter",
    "validate_config",
]
