"""Per-zone setpoint snapshots.

After each enforcement cycle one ``zone_setpoint_logs`` row is written per
managed zone. The rows double as the history that cycle detection, smart
start ramp rates and manager override expiry read back.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from hvacops.config import Settings
from hvacops.core.phase import PhaseInfo
from hvacops.core.zone_sampler import AnomalyResult, ZoneSample, ZoneSampler
from hvacops.models.database import ZoneSetpointLog
from hvacops.models.schemas import AnomalyThresholds
from hvacops.services.site_data import SiteDataStore
from hvacops.services.zone_planner import ZonePlan, ZonePlanner

logger = logging.getLogger(__name__)


def build_log_row(
    site_id: uuid.UUID,
    zone: Any,
    phase: PhaseInfo,
    plan: ZonePlan,
    sample: ZoneSample,
    thermostat: Any | None,
    now: datetime,
) -> ZoneSetpointLog:
    adj = plan.adjustments
    eq = sample.equipment
    an = sample.anomalies
    return ZoneSetpointLog(
        site_id=site_id,
        zone_id=zone.id,
        recorded_at=now,
        phase=phase.phase,
        profile_heat_f=plan.profile_heat_f,
        profile_cool_f=plan.profile_cool_f,
        feels_like_adj=adj.feels_like.value,
        smart_start_adj=adj.smart_start.value,
        occupancy_adj=adj.occupancy.value,
        manager_adj=adj.manager.value,
        active_heat_f=plan.desired.heat_setpoint_f,
        active_cool_f=plan.desired.cool_setpoint_f,
        adjustment_factors=adj.to_factor_list(),
        zone_temp_f=sample.reading.zone_temp_f,
        zone_humidity=sample.reading.zone_humidity,
        feels_like_temp_f=sample.reading.feels_like_temp_f,
        reading_source=sample.reading.source,
        occupied_sensor_count=sample.occupancy.occupied_sensor_count,
        fan_mode=getattr(thermostat, "fan_mode", None),
        hvac_action=getattr(thermostat, "hvac_action", None),
        supply_temp_f=eq.supply_temp_f,
        return_temp_f=eq.return_temp_f,
        delta_t=eq.delta_t,
        power_kw=eq.power_kw,
        comp_on=eq.comp_on,
        compressor_current_a=eq.compressor_current_a,
        apparent_power_kva=eq.apparent_power_kva,
        reactive_power_kvar=eq.reactive_power_kvar,
        energy_kwh=eq.energy_kwh,
        energy_delta_kwh=an.energy_delta_kwh,
        line_voltage_v=eq.line_voltage_v,
        power_factor=eq.power_factor,
        frequency_hz=eq.frequency_hz,
        cabinet_door_open=eq.cabinet_door_open,
        water_leak=eq.water_leak,
        filter_pressure_pa=eq.filter_pressure_pa,
        condenser_coil_in_f=eq.condenser_coil_in_f,
        condenser_coil_out_f=eq.condenser_coil_out_f,
        evaporator_coil_in_f=eq.evaporator_coil_in_f,
        evaporator_coil_out_f=eq.evaporator_coil_out_f,
        running_state=an.running_state,
        coil_freeze=an.coil_freeze,
        filter_restriction=an.filter_restriction,
        refrigerant_low=an.refrigerant_low,
        short_cycling=an.short_cycling,
        long_cycle=an.long_cycle,
        idle_heat_gain=an.idle_heat_gain,
        delayed_temp_response=an.delayed_temp_response,
        efficiency_ratio=an.efficiency_ratio,
        cycle_count_1h=an.cycle_count_1h,
        continuous_run_min=an.continuous_run_min,
        anomaly_flags=list(an.anomaly_flags),
        anomaly_count=an.anomaly_count,
    )


class SetpointLogger:
    """Writes zone snapshots and keeps ``anomaly_events`` open/closed."""

    def __init__(self, store: SiteDataStore, settings: Settings) -> None:
        self._store = store
        self._sampler = ZoneSampler(store, settings.sensor_max_age_min)
        self._planner = ZonePlanner(store, settings)

    async def log_site(self, site: Any, phase: PhaseInfo, now: datetime) -> int:
        store = self._store
        zones = await store.thermostat_zones(site.id)
        profiles = await store.profiles_by_id(z.profile_id for z in zones)
        offsets = await store.smart_start_offsets(site.id, phase.local_date)
        written = 0
        for zone in zones:
            try:
                thermostat = await self._thermostat_for(site.id, zone)
                thresholds = AnomalyThresholds.model_validate(zone.anomaly_thresholds or {})
                sample = await self._sampler.sample(site.id, zone, thermostat, thresholds, now)
                plan = await self._planner.plan(
                    zone,
                    profiles.get(zone.profile_id) if zone.profile_id else None,
                    phase,
                    sample.reading,
                    sample.occupancy,
                    thermostat,
                    offsets.get(zone.id),
                    now,
                )
                store.add_setpoint_log(
                    build_log_row(site.id, zone, phase, plan, sample, thermostat, now)
                )
                await self._sync_anomaly_events(site.id, zone.id, sample.anomalies, now)
            except Exception:
                logger.exception("Setpoint snapshot for zone %s failed", zone.name)
                continue
            written += 1
        logger.info("Logged %d setpoint snapshot(s) for site %s", written, site.name)
        return written

    async def _thermostat_for(self, site_id: uuid.UUID, zone: Any) -> Any | None:
        device = await self._store.get_device(zone.thermostat_device_id)
        if device is None or not device.external_device_id:
            return None
        entity = await self._store.climate_entity(site_id, device.external_device_id)
        if entity is None:
            return None
        return await self._store.thermostat_state(site_id, entity.entity_id)

    async def _sync_anomaly_events(
        self, site_id: uuid.UUID, zone_id: uuid.UUID, anomalies: AnomalyResult, now: datetime
    ) -> None:
        open_events = await self._store.open_anomaly_events(zone_id)
        for flag in anomalies.anomaly_flags:
            if flag not in open_events:
                self._store.open_anomaly(site_id, zone_id, flag, now)
                logger.info("Anomaly %s started for zone %s", flag, zone_id)
        for anomaly_type, event in open_events.items():
            # Unknown (None) keeps the event open
            if getattr(anomalies, anomaly_type, None) is False:
                event.ended_at = now
                logger.info("Anomaly %s ended for zone %s", anomaly_type, zone_id)


__all__ = ["SetpointLogger", "build_log_row"]
