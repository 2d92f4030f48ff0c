"""Additive setpoint adjustments derived from live zone conditions.

Four independent factors (feels-like, smart start, occupancy and manager
deviation) each produce a capped signed offset in °F. The offsets sum into
one value applied equally to the heat and cool setpoints.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from hvacops.core.phase import PhaseInfo
from hvacops.models.schemas import ProfileAdjustments

logger = logging.getLogger(__name__)

MANAGER_NOISE_FLOOR_F = 0.5
SMART_START_STEP_F = 1.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(slots=True)
class AdjustmentFactor:
    name: str
    value: float
    reason: str
    reading: float | str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "heat_adj": self.value,
            "cool_adj": self.value,
            "value": self.reading,
            "reason": self.reason,
        }


@dataclass(slots=True)
class AdjustmentBreakdown:
    feels_like: AdjustmentFactor
    smart_start: AdjustmentFactor
    occupancy: AdjustmentFactor
    manager: AdjustmentFactor

    @property
    def total(self) -> float:
        return (
            self.feels_like.value
            + self.smart_start.value
            + self.occupancy.value
            + self.manager.value
        )

    @property
    def factors(self) -> list[AdjustmentFactor]:
        return [self.feels_like, self.smart_start, self.occupancy, self.manager]

    def to_factor_list(self) -> list[dict[str, Any]]:
        return [f.to_dict() for f in self.factors]


# ---------------------------------------------------------------------------
# Individual factors
# ---------------------------------------------------------------------------


def feels_like_adjustment(
    feels_like_f: float | None,
    zone_temp_f: float | None,
    settings: ProfileAdjustments,
) -> AdjustmentFactor:
    if not settings.feels_like_enabled:
        return AdjustmentFactor("feels_like", 0, "Disabled by profile", feels_like_f)
    if feels_like_f is None or zone_temp_f is None:
        return AdjustmentFactor("feels_like", 0, "No adjustment", feels_like_f)
    cap = settings.feels_like_max_adj_f
    value = clamp(round(feels_like_f - zone_temp_f), -cap, cap)
    if value == 0:
        return AdjustmentFactor("feels_like", 0, "No adjustment", feels_like_f)
    return AdjustmentFactor(
        "feels_like",
        value,
        f"Feels like {feels_like_f:g}°F vs actual {zone_temp_f:g}°F",
        feels_like_f,
    )


def smart_start_active(phase: PhaseInfo, offset_minutes: int | None) -> bool:
    """True inside the lead window ``[open - offset, open)`` on an open day."""
    if not offset_minutes or offset_minutes <= 0:
        return False
    if phase.is_closed or phase.open_mins is None:
        return False
    return phase.open_mins - offset_minutes <= phase.current_mins < phase.open_mins


def smart_start_adjustment(
    phase: PhaseInfo,
    offset_minutes: int | None,
    zone_temp_f: float | None,
    occupied_heat_f: float,
    occupied_cool_f: float,
    settings: ProfileAdjustments,
) -> AdjustmentFactor:
    """Nudge toward the occupied band while the pre-open lead window runs."""
    if not settings.smart_start_enabled:
        return AdjustmentFactor("smart_start", 0, "Disabled by profile", offset_minutes)
    if not smart_start_active(phase, offset_minutes) or zone_temp_f is None:
        return AdjustmentFactor("smart_start", 0, "Not active", offset_minutes)

    step = min(settings.smart_start_max_adj_f, SMART_START_STEP_F)
    value = 0.0
    if zone_temp_f < occupied_heat_f:
        value = step
    elif zone_temp_f > occupied_cool_f:
        value = -step
    return AdjustmentFactor(
        "smart_start", value, f"Smart start active, {offset_minutes}min lead", offset_minutes
    )


def occupancy_adjustment(
    occupancy_adj: int, occupied_sensor_count: int, settings: ProfileAdjustments
) -> AdjustmentFactor:
    if not settings.occupancy_enabled:
        return AdjustmentFactor("occupancy", 0, "Disabled by profile", occupied_sensor_count)
    value = max(-settings.occupancy_max_adj_f, float(occupancy_adj))
    if value < 0:
        reason = "No motion detected"
    elif occupied_sensor_count > 0:
        reason = f"{occupied_sensor_count} sensor(s) active"
    else:
        reason = "No sensors"
    return AdjustmentFactor("occupancy", value, reason, occupied_sensor_count)


def manager_override_expired(
    history: Sequence[tuple[datetime, float | None]],
    now: datetime,
    reset_minutes: int,
) -> bool:
    """True once the manager offset has stayed non-zero for ``reset_minutes``.

    ``history`` holds ``(recorded_at, manager_adj)`` pairs in ascending order.
    """
    if reset_minutes <= 0 or not history:
        return False
    run_start: datetime | None = None
    for recorded_at, adj in reversed(history):
        if not adj:
            break
        run_start = recorded_at
    if run_start is None:
        return False
    return now - run_start >= timedelta(minutes=reset_minutes)


def manager_adjustment(
    phase: PhaseInfo,
    thermostat: Any | None,
    expected_heat_f: float,
    offset_up_f: float,
    offset_down_f: float,
    *,
    expected_cool_f: float | None = None,
    expired: bool = False,
) -> AdjustmentFactor:
    """Deviation of the thermostat's own setpoint from the expected setpoint.

    Only counted while occupied. The baseline follows the device's active
    mode: the cool setpoint in ``cool``, the low target in ``heat_cool`` and
    the heat setpoint otherwise. Expected values are the profile setpoints
    plus the other three adjustments.
    """
    if not phase.is_occupied or thermostat is None:
        return AdjustmentFactor("manager", 0, "No override")
    mode = getattr(thermostat, "hvac_mode", None)
    expected = expected_heat_f
    if mode == "cool" and expected_cool_f is not None:
        actual = getattr(thermostat, "current_setpoint_f", None)
        expected = expected_cool_f
    elif mode == "heat_cool":
        actual = getattr(thermostat, "target_temp_low_f", None)
    else:
        actual = getattr(thermostat, "current_setpoint_f", None)
        if actual is None:
            actual = getattr(thermostat, "target_temp_low_f", None)
    if actual is None:
        return AdjustmentFactor("manager", 0, "No override")

    deviation = clamp(actual - expected, -offset_down_f, offset_up_f)
    if abs(deviation) < MANAGER_NOISE_FLOOR_F:
        return AdjustmentFactor("manager", 0, "No override", actual)
    if expired:
        logger.info("Manager override expired (thermostat at %s°F)", actual)
        return AdjustmentFactor("manager", 0, "Override expired", actual)
    deviation = round(deviation, 1)
    sign = "+" if deviation > 0 else ""
    return AdjustmentFactor("manager", deviation, f"Manager offset {sign}{deviation:g}°F", actual)


# ---------------------------------------------------------------------------
# Combined
# ---------------------------------------------------------------------------


def compute_adjustments(
    *,
    phase: PhaseInfo,
    settings: ProfileAdjustments,
    zone_temp_f: float | None,
    feels_like_f: float | None,
    occupancy_adj: int,
    occupied_sensor_count: int,
    smart_start_offset_min: int | None,
    profile_heat_f: float,
    profile_cool_f: float | None = None,
    occupied_heat_f: float,
    occupied_cool_f: float,
    thermostat: Any | None,
    offset_up_f: float,
    offset_down_f: float,
    manager_expired: bool = False,
) -> AdjustmentBreakdown:
    feels_like = feels_like_adjustment(feels_like_f, zone_temp_f, settings)
    smart_start = smart_start_adjustment(
        phase, smart_start_offset_min, zone_temp_f, occupied_heat_f, occupied_cool_f, settings
    )
    occupancy = occupancy_adjustment(occupancy_adj, occupied_sensor_count, settings)
    shared = feels_like.value + smart_start.value + occupancy.value
    manager = manager_adjustment(
        phase,
        thermostat,
        profile_heat_f + shared,
        offset_up_f,
        offset_down_f,
        expected_cool_f=None if profile_cool_f is None else profile_cool_f + shared,
        expired=manager_expired,
    )
    breakdown = AdjustmentBreakdown(feels_like, smart_start, occupancy, manager)
    logger.debug(
        "Adjustments: feels_like=%s smart_start=%s occupancy=%s manager=%s total=%s",
        feels_like.value,
        smart_start.value,
        occupancy.value,
        manager.value,
        breakdown.total,
    )
    return breakdown


__all__ = [
    "AdjustmentBreakdown",
    "AdjustmentFactor",
    "clamp",
    "compute_adjustments",
    "feels_like_adjustment",
    "manager_adjustment",
    "manager_override_expired",
    "occupancy_adjustment",
    "smart_start_active",
    "smart_start_adjustment",
]
