"""Desired thermostat state for a zone: resolved setpoints plus adjustments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from hvacops.config import Settings
from hvacops.core.adjustments import (
    AdjustmentBreakdown,
    compute_adjustments,
    manager_override_expired,
)
from hvacops.core.phase import PhaseInfo
from hvacops.core.push_engine import DesiredState
from hvacops.core.setpoint_resolver import ResolvedSetpoints, resolve_setpoints
from hvacops.core.zone_sampler import OccupancyReading, ZoneSensorReading
from hvacops.models.enums import SetpointSource
from hvacops.models.schemas import ProfileAdjustments
from hvacops.services.site_data import SiteDataStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ZonePlan:
    resolved: ResolvedSetpoints
    adjustments: AdjustmentBreakdown
    profile_heat_f: float
    profile_cool_f: float
    desired: DesiredState

    @property
    def profile_label(self) -> str:
        return self.resolved.profile_name or str(self.resolved.source)


def profile_adjustments(profile: Any | None, resolved: ResolvedSetpoints) -> ProfileAdjustments:
    """Feature toggles from the profile in use, defaults otherwise."""
    if profile is None or resolved.source != SetpointSource.profile:
        return ProfileAdjustments()
    return ProfileAdjustments.model_validate(profile.adjustments or {})


class ZonePlanner:
    def __init__(self, store: SiteDataStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def device_mode(self, mode: str) -> str:
        return self._settings.hvac_mode_map.get(mode, mode)

    def device_fan(self, fan: str | None) -> str | None:
        if not fan:
            return None
        return self._settings.fan_mode_map.get(fan, fan)

    async def plan(
        self,
        zone: Any,
        profile: Any | None,
        phase: PhaseInfo,
        reading: ZoneSensorReading,
        occupancy: OccupancyReading,
        thermostat: Any | None,
        smart_start_offset_min: int | None,
        now: datetime,
    ) -> ZonePlan:
        resolved = resolve_setpoints(zone, profile)
        features = profile_adjustments(profile, resolved)
        profile_heat = resolved.heat_for(phase.phase)
        profile_cool = resolved.cool_for(phase.phase)

        expired = False
        if phase.is_occupied and resolved.manager_override_reset_minutes > 0:
            since = now - timedelta(minutes=resolved.manager_override_reset_minutes + 15)
            history = await self._store.manager_history(zone.id, since)
            expired = manager_override_expired(
                history, now, resolved.manager_override_reset_minutes
            )

        breakdown = compute_adjustments(
            phase=phase,
            settings=features,
            zone_temp_f=reading.zone_temp_f,
            feels_like_f=reading.feels_like_temp_f,
            occupancy_adj=occupancy.occupancy_adj,
            occupied_sensor_count=occupancy.occupied_sensor_count,
            smart_start_offset_min=smart_start_offset_min,
            profile_heat_f=profile_heat,
            profile_cool_f=profile_cool,
            occupied_heat_f=resolved.occupied_heat_f,
            occupied_cool_f=resolved.occupied_cool_f,
            thermostat=thermostat,
            offset_up_f=resolved.manager_offset_up_f,
            offset_down_f=resolved.manager_offset_down_f,
            manager_expired=expired,
        )
        total = breakdown.total
        desired = DesiredState(
            hvac_mode=self.device_mode(resolved.hvac_mode_for(phase.phase)),
            heat_setpoint_f=profile_heat + total,
            cool_setpoint_f=profile_cool + total,
            fan_mode=self.device_fan(resolved.fan_mode_for(phase.phase)),
        )
        logger.debug(
            "Zone %s plan: %s heat=%s cool=%s (source=%s, adj=%s)",
            zone.name,
            desired.hvac_mode,
            desired.heat_setpoint_f,
            desired.cool_setpoint_f,
            resolved.source,
            total,
        )
        return ZonePlan(resolved, breakdown, profile_heat, profile_cool, desired)


__all__ = ["ZonePlan", "ZonePlanner", "profile_adjustments"]
