"""Site-level thermostat push orchestration.

For one site: check device API credentials and reachability, resolve the
phase, then push every managed thermostat zone in turn. Each zone gets a
read-back after a push and exactly one ``records_log`` audit row.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hvacops.config import Settings
from hvacops.core.phase import PhaseInfo, day_name, local_now, resolve_phase, site_zone
from hvacops.core.push_engine import (
    DeviceState,
    Guardrails,
    PushResult,
    Sleep,
    ThermostatPushEngine,
    fmt_temp,
)
from hvacops.core.zone_sampler import ZoneSampler
from hvacops.integrations.ha_client import HAClient, HAClientError
from hvacops.models.enums import Phase, RecordEventType
from hvacops.services.site_data import SiteDataStore
from hvacops.services.zone_planner import ZonePlanner

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], HAClient]


@dataclass(slots=True)
class ZonePushOutcome:
    zone_id: uuid.UUID
    zone_name: str
    entity_id: str
    result: PushResult
    phase: Phase

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "entity_id": self.entity_id,
            "pushed": self.result.pushed,
            "reason": self.result.reason,
            "actions": list(self.result.actions),
            "phase": self.phase,
        }


@dataclass(slots=True)
class SitePushOutcome:
    site_id: uuid.UUID
    trigger: str
    device_api_connected: bool = False
    results: list[ZonePushOutcome] = field(default_factory=list)
    phase: PhaseInfo | None = None

    @property
    def zones_pushed(self) -> int:
        return sum(1 for r in self.results if r.result.pushed)


def setpoint_label(desired: dict[str, Any]) -> str:
    mode = desired.get("hvac_mode")
    heat = desired.get("heat_setpoint_f")
    cool = desired.get("cool_setpoint_f")
    if mode == "heat" and heat is not None:
        return f"{fmt_temp(heat)}°F"
    if mode == "cool" and cool is not None:
        return f"{fmt_temp(cool)}°F"
    if mode == "heat_cool" and heat is not None and cool is not None:
        return f"{fmt_temp(heat)}-{fmt_temp(cool)}°F"
    return "off"


class SitePushService:
    """Pushes desired thermostat state for every managed zone of a site."""

    def __init__(
        self,
        store: SiteDataStore,
        settings: Settings,
        *,
        client_factory: ClientFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._settings = settings
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep
        self._sampler = ZoneSampler(store, settings.sensor_max_age_min)
        self._planner = ZonePlanner(store, settings)

    def _default_client(self, url: str, token: str) -> HAClient:
        return HAClient(
            url,
            token,
            timeout=self._settings.device_api_timeout_s,
            check_timeout=self._settings.device_api_check_timeout_s,
        )

    async def resolve_site_phase(self, site: Any, now: datetime) -> PhaseInfo:
        now_local = local_now(site_zone(site.timezone, self._settings.default_timezone), now)
        today = now_local.date()
        base = await self._store.store_hours(site.id, day_name(today))
        rule = await self._store.exception_rule(site.id, today)
        return resolve_phase(now_local, base, rule)

    # ------------------------------------------------------------------
    # Site
    # ------------------------------------------------------------------

    async def push_site(
        self,
        site_id: uuid.UUID,
        trigger: str,
        *,
        triggered_by: str | None = None,
        now: datetime | None = None,
    ) -> SitePushOutcome:
        now = now or datetime.now(UTC)
        outcome = SitePushOutcome(site_id=site_id, trigger=trigger)

        site = await self._store.get_site(site_id)
        if site is None:
            logger.warning("Push requested for unknown site %s", site_id)
            return outcome

        url = site.device_api_url or self._settings.device_api_url
        token = site.device_api_token or self._settings.device_api_token
        if not url or not token:
            logger.warning("Site %s has no device API credentials, skipping push", site.name)
            return outcome

        phase = await self.resolve_site_phase(site, now)
        outcome.phase = phase

        async with self._client_factory(url, token) as client:
            if not await client.check_connection():
                logger.error("Device API unreachable for site %s (trigger: %s)", site.name, trigger)
                self._store.add_record(
                    site_id=site.id,
                    org_id=site.org_id,
                    event_type=RecordEventType.thermostat_push_failed,
                    message=f"Device API push failed: device API unreachable (trigger: {trigger})",
                    event_date=phase.local_date,
                    created_at=now,
                    metadata={"trigger": trigger, "phase": str(phase.phase)},
                    created_by=triggered_by or "scheduler",
                )
                return outcome
            outcome.device_api_connected = True

            offsets = await self._store.smart_start_offsets(site.id, phase.local_date)
            zones = await self._store.thermostat_zones(site.id)
            profiles = await self._store.profiles_by_id(z.profile_id for z in zones)
            logger.info(
                "Pushing %d zone(s) for site %s (%s, trigger: %s)",
                len(zones),
                site.name,
                phase.phase,
                trigger,
            )

            for zone in zones:
                try:
                    async with self._store.savepoint():
                        zone_outcome = await self._push_zone(
                            client,
                            site,
                            zone,
                            profiles.get(zone.profile_id) if zone.profile_id else None,
                            phase,
                            offsets.get(zone.id),
                            trigger,
                            triggered_by,
                            now,
                        )
                except Exception as exc:
                    logger.exception("Push for zone %s failed", zone.name)
                    self._record_zone_failure(
                        site, zone, phase, trigger, triggered_by, now, f"error: {exc}"
                    )
                    continue
                if zone_outcome is not None:
                    outcome.results.append(zone_outcome)

        return outcome

    # ------------------------------------------------------------------
    # Zone
    # ------------------------------------------------------------------

    def _record_zone_failure(
        self,
        site: Any,
        zone: Any,
        phase: PhaseInfo,
        trigger: str,
        triggered_by: str | None,
        now: datetime,
        reason: str,
        *,
        device_id: uuid.UUID | None = None,
    ) -> None:
        self._store.add_record(
            site_id=site.id,
            org_id=site.org_id,
            equipment_id=zone.equipment_id,
            device_id=device_id,
            event_type=RecordEventType.thermostat_push_failed,
            message=f"{zone.name}: push failed, {reason} ({phase.phase}, trigger: {trigger})",
            event_date=phase.local_date,
            created_at=now,
            metadata={
                "trigger": trigger,
                "phase": str(phase.phase),
                "zone_id": str(zone.id),
                "error": reason,
            },
            created_by=triggered_by or "scheduler",
        )

    async def _push_zone(
        self,
        client: HAClient,
        site: Any,
        zone: Any,
        profile: Any | None,
        phase: PhaseInfo,
        smart_start_offset: int | None,
        trigger: str,
        triggered_by: str | None,
        now: datetime,
    ) -> ZonePushOutcome | None:
        store = self._store
        device = await store.get_device(zone.thermostat_device_id)
        if device is None or not device.external_device_id:
            logger.warning("Zone %s: thermostat device missing or unmapped", zone.name)
            self._record_zone_failure(
                site, zone, phase, trigger, triggered_by, now, "thermostat device not mapped"
            )
            return None
        entity = await store.climate_entity(site.id, device.external_device_id)
        if entity is None:
            logger.warning(
                "Zone %s: no climate entity for device %s", zone.name, device.external_device_id
            )
            self._record_zone_failure(
                site,
                zone,
                phase,
                trigger,
                triggered_by,
                now,
                "no climate entity",
                device_id=device.id,
            )
            return None
        entity_id = entity.entity_id

        state = await store.ensure_thermostat_state(site.id, entity_id, device.external_device_id)
        reading, occupancy = await self._sampler.read_sensors(
            site.id, zone.equipment_id, state, now
        )
        plan = await self._planner.plan(
            zone, profile, phase, reading, occupancy, state, smart_start_offset, now
        )

        engine = ThermostatPushEngine(
            client, mode_settle_delay_s=self._settings.mode_settle_delay_s, sleep=self._sleep
        )
        result = await engine.push(
            entity_id,
            DeviceState.from_row(state),
            plan.desired,
            Guardrails(plan.resolved.guardrail_min_f, plan.resolved.guardrail_max_f),
        )

        label = setpoint_label(result.desired_state)
        mode = result.desired_state.get("hvac_mode")
        if result.pushed:
            state.directive = f"Pushed {mode} {label} ({phase.phase}, profile: {plan.profile_label})"
        else:
            state.directive = state.directive or "No push needed"
        state.directive_generated_at = now

        if result.pushed:
            await self._sleep(self._settings.readback_delay_s)
            try:
                actual = await client.get_thermostat(entity_id)
            except HAClientError as exc:
                logger.warning("Zone %s: read-back failed: %s", zone.name, exc)
            else:
                state.hvac_mode = actual.hvac_mode
                state.hvac_action = actual.hvac_action
                state.fan_mode = actual.fan_mode
                state.current_temperature_f = actual.current_temperature_f
                state.current_humidity = actual.current_humidity
                state.current_setpoint_f = actual.current_setpoint_f
                state.target_temp_high_f = actual.target_temp_high_f
                state.target_temp_low_f = actual.target_temp_low_f
                state.last_synced_at = now
                logger.info(
                    "Zone %s read-back: mode=%s setpoint=%s low=%s high=%s fan=%s",
                    zone.name,
                    actual.hvac_mode,
                    actual.current_setpoint_f,
                    actual.target_temp_low_f,
                    actual.target_temp_high_f,
                    actual.fan_mode,
                )

        if result.pushed:
            message = (
                f"Pushed {mode} {label} to {zone.name} "
                f"({phase.phase}, profile: {plan.profile_label}, trigger: {trigger})"
            )
        else:
            message = f"{zone.name}: {result.reason} ({phase.phase}, trigger: {trigger})"
        store.add_record(
            site_id=site.id,
            org_id=site.org_id,
            equipment_id=zone.equipment_id,
            device_id=device.id,
            event_type=(
                RecordEventType.thermostat_push_failed
                if result.failed
                else RecordEventType.thermostat_push
            ),
            message=message,
            event_date=phase.local_date,
            created_at=now,
            metadata={
                "trigger": trigger,
                "phase": str(phase.phase),
                "push_result": result.to_dict(),
                "entity_id": entity_id,
            },
            created_by=triggered_by or "scheduler",
        )
        return ZonePushOutcome(zone.id, zone.name, entity_id, result, phase.phase)


__all__ = ["SitePushOutcome", "SitePushService", "ZonePushOutcome", "setpoint_label"]
