"""Setpoint resolution for HVAC zones.

Turns a zone row (and its optional thermostat profile) into the effective
occupied/unoccupied setpoints and modes. Pure and synchronous: callers
batch-load profiles and pass them in.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from hvacops.models.enums import Phase, SetpointSource

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_OCCUPIED_HEAT_F = 68.0
DEFAULT_OCCUPIED_COOL_F = 76.0
DEFAULT_UNOCCUPIED_HEAT_F = 55.0
DEFAULT_UNOCCUPIED_COOL_F = 85.0
DEFAULT_FAN_MODE = "auto"
DEFAULT_HVAC_MODE = "auto"
DEFAULT_GUARDRAIL_MIN_F = 45.0
DEFAULT_GUARDRAIL_MAX_F = 95.0
DEFAULT_MANAGER_OFFSET_F = 4.0
DEFAULT_MANAGER_OVERRIDE_RESET_MIN = 120

_SETPOINT_FIELDS = (
    "occupied_heat_f",
    "occupied_cool_f",
    "unoccupied_heat_f",
    "unoccupied_cool_f",
)


class SetpointRow(Protocol):
    """Attributes shared by zone and profile rows."""

    occupied_heat_f: float | None
    occupied_cool_f: float | None
    unoccupied_heat_f: float | None
    unoccupied_cool_f: float | None
    occupied_fan_mode: str | None
    occupied_hvac_mode: str | None
    unoccupied_fan_mode: str | None
    unoccupied_hvac_mode: str | None
    fan_mode: str | None
    hvac_mode: str | None


@dataclass(frozen=True, slots=True)
class ResolvedSetpoints:
    occupied_heat_f: float
    occupied_cool_f: float
    unoccupied_heat_f: float
    unoccupied_cool_f: float
    occupied_fan_mode: str
    occupied_hvac_mode: str
    unoccupied_fan_mode: str
    unoccupied_hvac_mode: str
    guardrail_min_f: float
    guardrail_max_f: float
    manager_offset_up_f: float
    manager_offset_down_f: float
    manager_override_reset_minutes: int
    source: SetpointSource
    profile_name: str | None = None

    def heat_for(self, phase: Phase) -> float:
        return self.occupied_heat_f if phase == Phase.occupied else self.unoccupied_heat_f

    def cool_for(self, phase: Phase) -> float:
        return self.occupied_cool_f if phase == Phase.occupied else self.unoccupied_cool_f

    def hvac_mode_for(self, phase: Phase) -> str:
        return self.occupied_hvac_mode if phase == Phase.occupied else self.unoccupied_hvac_mode

    def fan_mode_for(self, phase: Phase) -> str:
        return self.occupied_fan_mode if phase == Phase.occupied else self.unoccupied_fan_mode

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def has_zone_values(zone: SetpointRow) -> bool:
    """True when the zone stores at least one of its own setpoints."""
    return any(getattr(zone, name, None) is not None for name in _SETPOINT_FIELDS)


def _zone_limits(zone: Any) -> dict[str, Any]:
    # Guardrails and manager offsets always come from the zone record
    return {
        "guardrail_min_f": float(_pick(getattr(zone, "guardrail_min_f", None), DEFAULT_GUARDRAIL_MIN_F)),
        "guardrail_max_f": float(_pick(getattr(zone, "guardrail_max_f", None), DEFAULT_GUARDRAIL_MAX_F)),
        "manager_offset_up_f": float(
            _pick(getattr(zone, "manager_offset_up_f", None), DEFAULT_MANAGER_OFFSET_F)
        ),
        "manager_offset_down_f": float(
            _pick(getattr(zone, "manager_offset_down_f", None), DEFAULT_MANAGER_OFFSET_F)
        ),
        "manager_override_reset_minutes": int(
            _pick(
                getattr(zone, "manager_override_reset_minutes", None),
                DEFAULT_MANAGER_OVERRIDE_RESET_MIN,
            )
        ),
    }


def _from_row(
    row: SetpointRow,
    zone: Any,
    source: SetpointSource,
    profile_name: str | None = None,
) -> ResolvedSetpoints:
    legacy_fan = getattr(row, "fan_mode", None)
    legacy_mode = getattr(row, "hvac_mode", None)
    return ResolvedSetpoints(
        occupied_heat_f=float(_pick(row.occupied_heat_f, DEFAULT_OCCUPIED_HEAT_F)),
        occupied_cool_f=float(_pick(row.occupied_cool_f, DEFAULT_OCCUPIED_COOL_F)),
        unoccupied_heat_f=float(_pick(row.unoccupied_heat_f, DEFAULT_UNOCCUPIED_HEAT_F)),
        unoccupied_cool_f=float(_pick(row.unoccupied_cool_f, DEFAULT_UNOCCUPIED_COOL_F)),
        occupied_fan_mode=_pick(getattr(row, "occupied_fan_mode", None), _pick(legacy_fan, DEFAULT_FAN_MODE)),
        occupied_hvac_mode=_pick(
            getattr(row, "occupied_hvac_mode", None), _pick(legacy_mode, DEFAULT_HVAC_MODE)
        ),
        unoccupied_fan_mode=_pick(
            getattr(row, "unoccupied_fan_mode", None), _pick(legacy_fan, DEFAULT_FAN_MODE)
        ),
        unoccupied_hvac_mode=_pick(
            getattr(row, "unoccupied_hvac_mode", None), _pick(legacy_mode, DEFAULT_HVAC_MODE)
        ),
        source=source,
        profile_name=profile_name,
        **_zone_limits(zone),
    )


def _defaults(zone: Any) -> ResolvedSetpoints:
    return ResolvedSetpoints(
        occupied_heat_f=DEFAULT_OCCUPIED_HEAT_F,
        occupied_cool_f=DEFAULT_OCCUPIED_COOL_F,
        unoccupied_heat_f=DEFAULT_UNOCCUPIED_HEAT_F,
        unoccupied_cool_f=DEFAULT_UNOCCUPIED_COOL_F,
        occupied_fan_mode=DEFAULT_FAN_MODE,
        occupied_hvac_mode=DEFAULT_HVAC_MODE,
        unoccupied_fan_mode=DEFAULT_FAN_MODE,
        unoccupied_hvac_mode=DEFAULT_HVAC_MODE,
        source=SetpointSource.default,
        **_zone_limits(zone),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_setpoints(zone: Any, profile: Any | None = None) -> ResolvedSetpoints:
    """Resolve a zone's effective setpoints.

    A profile-linked, non-overridden zone takes the profile's values when the
    profile is supplied. Otherwise the zone's own columns apply; a zone with
    none of its own setpoints falls back to the built-in defaults. Missing
    individual fields are filled from the defaults on every path, and legacy
    single ``fan_mode`` / ``hvac_mode`` columns back-fill the per-phase modes.
    """
    linked = getattr(zone, "profile_id", None) is not None
    overridden = bool(getattr(zone, "is_override", False))

    if linked and not overridden and profile is not None:
        return _from_row(profile, zone, SetpointSource.profile, getattr(profile, "name", None))

    if has_zone_values(zone):
        return _from_row(zone, zone, SetpointSource.zone_override)

    return _defaults(zone)


__all__ = [
    "DEFAULT_GUARDRAIL_MAX_F",
    "DEFAULT_GUARDRAIL_MIN_F",
    "ResolvedSetpoints",
    "has_zone_values",
    "resolve_setpoints",
]
