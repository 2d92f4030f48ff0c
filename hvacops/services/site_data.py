"""Persistence for site, zone and telemetry data.

One ``SiteDataStore`` wraps one ``AsyncSession``. Lookups are scoped to a
request or job run; nothing is cached between invocations.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from hvacops.core.smart_start import SmartStartResult
from hvacops.core.zone_sampler import (
    EquipmentSensorValue,
    LogPoint,
    SpaceSensors,
    WeightedSensor,
)
from hvacops.models.database import (
    AnomalyEvent,
    Device,
    EntityValue,
    EquipmentSensor,
    EquipmentServedSpace,
    HvacZone,
    RecordsLog,
    Site,
    SiteDailyHealth,
    SmartStartLog,
    Space,
    SpaceSensor,
    StoreHours,
    StoreHoursEvent,
    StoreHoursExceptionRule,
    ThermostatProfile,
    ThermostatState,
    ZoneSetpointLog,
)
from hvacops.models.enums import ControlScope, SpaceSensorType

logger = logging.getLogger(__name__)


class SiteDataStore:
    """Zones, profiles, store hours, telemetry, thermostat state and logs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    def savepoint(self) -> AsyncSessionTransaction:
        """SAVEPOINT scope; a failing unit of work rolls back only itself."""
        return self._session.begin_nested()

    # ------------------------------------------------------------------
    # Sites and zones
    # ------------------------------------------------------------------

    async def get_site(self, site_id: uuid.UUID) -> Site | None:
        return await self._session.get(Site, site_id)

    async def get_zone(self, zone_id: uuid.UUID) -> HvacZone | None:
        return await self._session.get(HvacZone, zone_id)

    async def managed_site_ids(self) -> list[uuid.UUID]:
        """Sites with at least one managed, thermostat-linked zone."""
        result = await self._session.execute(
            select(HvacZone.site_id)
            .where(
                HvacZone.control_scope == ControlScope.managed,
                HvacZone.thermostat_device_id.is_not(None),
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def thermostat_zones(self, site_id: uuid.UUID) -> list[HvacZone]:
        result = await self._session.execute(
            select(HvacZone)
            .where(
                HvacZone.site_id == site_id,
                HvacZone.control_scope == ControlScope.managed,
                HvacZone.thermostat_device_id.is_not(None),
            )
            .order_by(HvacZone.name)
        )
        return list(result.scalars().all())

    async def profiles_by_id(
        self, profile_ids: Iterable[uuid.UUID | None]
    ) -> dict[uuid.UUID, ThermostatProfile]:
        ids = {pid for pid in profile_ids if pid is not None}
        if not ids:
            return {}
        result = await self._session.execute(
            select(ThermostatProfile).where(ThermostatProfile.id.in_(ids))
        )
        return {p.id: p for p in result.scalars().all()}

    async def get_profile(self, profile_id: uuid.UUID | None) -> ThermostatProfile | None:
        if profile_id is None:
            return None
        return await self._session.get(ThermostatProfile, profile_id)

    # ------------------------------------------------------------------
    # Store hours
    # ------------------------------------------------------------------

    async def store_hours(self, site_id: uuid.UUID, day_of_week: str) -> StoreHours | None:
        result = await self._session.execute(
            select(StoreHours).where(
                StoreHours.site_id == site_id, StoreHours.day_of_week == day_of_week
            )
        )
        return result.scalars().first()

    async def exception_rule(
        self, site_id: uuid.UUID, on_date: date
    ) -> StoreHoursExceptionRule | None:
        """Rule of the first exception event materialised for ``on_date``."""
        result = await self._session.execute(
            select(StoreHoursExceptionRule)
            .join(StoreHoursEvent, StoreHoursEvent.rule_id == StoreHoursExceptionRule.id)
            .where(StoreHoursEvent.site_id == site_id, StoreHoursEvent.event_date == on_date)
            .order_by(StoreHoursEvent.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Devices and entities
    # ------------------------------------------------------------------

    async def get_device(self, device_id: uuid.UUID | None) -> Device | None:
        if device_id is None:
            return None
        return await self._session.get(Device, device_id)

    async def climate_entity(self, site_id: uuid.UUID, external_device_id: str) -> EntityValue | None:
        result = await self._session.execute(
            select(EntityValue)
            .where(
                EntityValue.site_id == site_id,
                EntityValue.external_device_id == external_device_id,
                or_(EntityValue.domain == "climate", EntityValue.entity_id.like("climate.%")),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def entity_states(
        self,
        site_id: uuid.UUID,
        entity_ids: Iterable[str],
        *,
        fresh_since: datetime | None = None,
    ) -> dict[str, str | None]:
        """Latest state per entity; with ``fresh_since``, unseen or older rows are left out."""
        ids = set(entity_ids)
        if not ids:
            return {}
        stmt = select(EntityValue.entity_id, EntityValue.last_state).where(
            EntityValue.site_id == site_id, EntityValue.entity_id.in_(ids)
        )
        if fresh_since is not None:
            stmt = stmt.where(EntityValue.last_seen_at >= fresh_since)
        result = await self._session.execute(stmt)
        return {entity_id: state for entity_id, state in result.all()}

    async def get_entity_value(self, site_id: uuid.UUID, entity_id: str) -> EntityValue | None:
        result = await self._session.execute(
            select(EntityValue).where(
                EntityValue.site_id == site_id, EntityValue.entity_id == entity_id
            )
        )
        return result.scalar_one_or_none()

    async def upsert_entity_value(
        self,
        site_id: uuid.UUID,
        entity_id: str,
        state: str,
        *,
        seen_at: datetime,
        **attrs: Any,
    ) -> tuple[str | None, EntityValue]:
        """Store the latest value; returns the previous state alongside the row."""
        row = await self.get_entity_value(site_id, entity_id)
        previous = row.last_state if row is not None else None
        if row is None:
            row = EntityValue(site_id=site_id, entity_id=entity_id)
            self._session.add(row)
        row.last_state = state
        row.last_seen_at = seen_at
        for key, value in attrs.items():
            if value is not None:
                setattr(row, key, value)
        return previous, row

    # ------------------------------------------------------------------
    # Sensors
    # ------------------------------------------------------------------

    async def served_space_sensors(
        self, site_id: uuid.UUID, equipment_id: uuid.UUID
    ) -> list[SpaceSensors]:
        result = await self._session.execute(
            select(Space)
            .join(EquipmentServedSpace, EquipmentServedSpace.space_id == Space.id)
            .where(EquipmentServedSpace.equipment_id == equipment_id, Space.site_id == site_id)
            .order_by(Space.name)
        )
        spaces = {s.id: SpaceSensors(s.id, s.name, s.hvac_zone_weight) for s in result.scalars()}
        if not spaces:
            return []

        sensors = await self._session.execute(
            select(SpaceSensor).where(
                SpaceSensor.space_id.in_(spaces.keys()), SpaceSensor.entity_id.is_not(None)
            )
        )
        for sensor in sensors.scalars():
            space = spaces[sensor.space_id]
            if sensor.sensor_type == SpaceSensorType.temperature:
                space.temperature.append(WeightedSensor(sensor.entity_id, sensor.weight))
            elif sensor.sensor_type == SpaceSensorType.humidity:
                space.humidity.append(WeightedSensor(sensor.entity_id, sensor.weight))
            elif sensor.sensor_type == SpaceSensorType.motion:
                space.motion.append(sensor.entity_id)
        return list(spaces.values())

    async def equipment_sensor_values(
        self, site_id: uuid.UUID, equipment_id: uuid.UUID
    ) -> list[EquipmentSensorValue]:
        sensors = (
            await self._session.execute(
                select(EquipmentSensor).where(
                    EquipmentSensor.equipment_id == equipment_id,
                    EquipmentSensor.entity_id.is_not(None),
                )
            )
        ).scalars().all()
        if not sensors:
            return []

        inverted = (
            await self._session.execute(
                select(Device.ct_inverted).where(
                    Device.equipment_id == equipment_id, Device.ct_inverted.is_(True)
                )
            )
        ).first() is not None
        states = await self.entity_states(site_id, (s.entity_id for s in sensors))
        return [
            EquipmentSensorValue(s.role, states.get(s.entity_id), inverted) for s in sensors
        ]

    # ------------------------------------------------------------------
    # Thermostat state
    # ------------------------------------------------------------------

    async def thermostat_state(self, site_id: uuid.UUID, entity_id: str) -> ThermostatState | None:
        result = await self._session.execute(
            select(ThermostatState).where(
                ThermostatState.site_id == site_id, ThermostatState.entity_id == entity_id
            )
        )
        return result.scalar_one_or_none()

    async def ensure_thermostat_state(
        self, site_id: uuid.UUID, entity_id: str, external_device_id: str | None
    ) -> ThermostatState:
        state = await self.thermostat_state(site_id, entity_id)
        if state is None:
            state = ThermostatState(
                site_id=site_id, entity_id=entity_id, external_device_id=external_device_id
            )
            self._session.add(state)
        return state

    # ------------------------------------------------------------------
    # Setpoint log history
    # ------------------------------------------------------------------

    async def recent_log_points(self, zone_id: uuid.UUID, since: datetime) -> list[LogPoint]:
        result = await self._session.execute(
            select(ZoneSetpointLog.recorded_at, ZoneSetpointLog.comp_on, ZoneSetpointLog.zone_temp_f)
            .where(ZoneSetpointLog.zone_id == zone_id, ZoneSetpointLog.recorded_at >= since)
            .order_by(ZoneSetpointLog.recorded_at)
        )
        return [LogPoint(*row) for row in result.all()]

    async def last_energy_reading(self, zone_id: uuid.UUID) -> float | None:
        result = await self._session.execute(
            select(ZoneSetpointLog.energy_kwh)
            .where(ZoneSetpointLog.zone_id == zone_id, ZoneSetpointLog.energy_kwh.is_not(None))
            .order_by(ZoneSetpointLog.recorded_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def zone_temperature_history(
        self, zone_id: uuid.UUID, since: datetime
    ) -> list[tuple[datetime, float]]:
        result = await self._session.execute(
            select(ZoneSetpointLog.recorded_at, ZoneSetpointLog.zone_temp_f)
            .where(
                ZoneSetpointLog.zone_id == zone_id,
                ZoneSetpointLog.recorded_at >= since,
                ZoneSetpointLog.zone_temp_f.is_not(None),
            )
            .order_by(ZoneSetpointLog.recorded_at)
        )
        return [(ts, temp) for ts, temp in result.all()]

    async def manager_history(
        self, zone_id: uuid.UUID, since: datetime
    ) -> list[tuple[datetime, float | None]]:
        result = await self._session.execute(
            select(ZoneSetpointLog.recorded_at, ZoneSetpointLog.manager_adj)
            .where(ZoneSetpointLog.zone_id == zone_id, ZoneSetpointLog.recorded_at >= since)
            .order_by(ZoneSetpointLog.recorded_at)
        )
        return [(ts, adj) for ts, adj in result.all()]

    def add_setpoint_log(self, row: ZoneSetpointLog) -> ZoneSetpointLog:
        self._session.add(row)
        return row

    # ------------------------------------------------------------------
    # Smart start
    # ------------------------------------------------------------------

    async def smart_start_offsets(self, site_id: uuid.UUID, on_date: date) -> dict[uuid.UUID, int]:
        result = await self._session.execute(
            select(SmartStartLog.zone_id, SmartStartLog.offset_used_minutes).where(
                SmartStartLog.site_id == site_id,
                SmartStartLog.date == on_date,
                SmartStartLog.offset_used_minutes > 0,
            )
        )
        return {zone_id: offset for zone_id, offset in result.all()}

    async def upsert_smart_start(
        self,
        *,
        site_id: uuid.UUID,
        zone_id: uuid.UUID,
        local_date: date,
        open_time: time,
        result: SmartStartResult,
    ) -> SmartStartLog:
        existing = await self._session.execute(
            select(SmartStartLog).where(
                SmartStartLog.zone_id == zone_id, SmartStartLog.date == local_date
            )
        )
        row = existing.scalar_one_or_none()
        if row is None:
            row = SmartStartLog(site_id=site_id, zone_id=zone_id, date=local_date)
            self._session.add(row)
        row.scheduled_open_time = open_time
        row.hvac_start_time = result.start_time
        row.offset_used_minutes = result.offset_minutes
        row.target_setpoint_f = result.target_setpoint_f
        row.confidence = result.confidence
        row.hit_guardrail = result.hit_guardrail
        row.calculation_detail = result.detail()
        return row

    # ------------------------------------------------------------------
    # Anomaly events
    # ------------------------------------------------------------------

    async def open_anomaly_events(self, zone_id: uuid.UUID) -> dict[str, AnomalyEvent]:
        result = await self._session.execute(
            select(AnomalyEvent).where(
                AnomalyEvent.zone_id == zone_id, AnomalyEvent.ended_at.is_(None)
            )
        )
        return {e.anomaly_type: e for e in result.scalars().all()}

    def open_anomaly(
        self, site_id: uuid.UUID, zone_id: uuid.UUID, anomaly_type: str, now: datetime
    ) -> AnomalyEvent:
        event = AnomalyEvent(
            site_id=site_id, zone_id=zone_id, anomaly_type=anomaly_type, started_at=now
        )
        self._session.add(event)
        return event

    # ------------------------------------------------------------------
    # Audit and health
    # ------------------------------------------------------------------

    def add_record(
        self,
        *,
        site_id: uuid.UUID,
        org_id: uuid.UUID | None,
        event_type: str,
        message: str,
        event_date: date,
        created_at: datetime,
        metadata: dict[str, Any] | None = None,
        equipment_id: uuid.UUID | None = None,
        device_id: uuid.UUID | None = None,
        created_by: str | None = None,
    ) -> RecordsLog:
        row = RecordsLog(
            site_id=site_id,
            org_id=org_id,
            equipment_id=equipment_id,
            device_id=device_id,
            event_type=event_type,
            event_date=event_date,
            source="device_push",
            message=message,
            metadata_=metadata or {},
            created_by=created_by,
            created_at=created_at,
        )
        self._session.add(row)
        return row

    async def daily_health(
        self, site_id: uuid.UUID, org_id: uuid.UUID | None, on_date: date
    ) -> SiteDailyHealth:
        result = await self._session.execute(
            select(SiteDailyHealth).where(
                SiteDailyHealth.site_id == site_id, SiteDailyHealth.date == on_date
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = SiteDailyHealth(
                site_id=site_id,
                org_id=org_id,
                date=on_date,
                runs_today=0,
                zones_pushed=0,
                zones_skipped=0,
                zones_failed=0,
                unreachable_runs=0,
            )
            self._session.add(row)
        return row


__all__ = ["SiteDataStore"]
