"""HVACOps integration clients."""

from .ha_client import (
    EntityState,
    HAClient,
    HAClientError,
    HAConnectionError,
    ThermostatReading,
)

__all__ = [
    "EntityState",
    "HAClient",
    "HAClientError",
    "HAConnectionError",
    "ThermostatReading",
]
