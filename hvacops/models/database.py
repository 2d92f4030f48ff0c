"""SQLAlchemy models and async engine manager for HVACOps."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime, time
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from hvacops.models.enums import (
    AlertEntityType,
    AlertSeverity,
    ConditionType,
    ControlScope,
    DeltaDirection,
    EvalPath,
    ExceptionRuleType,
    InstanceStatus,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
    Phase,
    ScopeLevel,
    ScopeMode,
    SensorRole,
    SpaceSensorType,
    TargetLevel,
    TargetValueType,
)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""


def uuid_pk() -> uuid.UUID:
    return uuid.uuid4()


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Sites and store hours
# ============================================================================


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    timezone: Mapped[str | None] = mapped_column(String(64))
    # Per-site device API credentials; fall back to settings when null
    device_api_url: Mapped[str | None] = mapped_column(String(255))
    device_api_token: Mapped[str | None] = mapped_column(Text())
    latitude: Mapped[float | None] = mapped_column(Float())
    longitude: Mapped[float | None] = mapped_column(Float())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    zones: Mapped[list[HvacZone]] = relationship(back_populates="site")


class StoreHours(Base):
    __tablename__ = "store_hours"
    __table_args__ = (UniqueConstraint("site_id", "day_of_week"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[str] = mapped_column(String(9), nullable=False)  # "monday".."sunday"
    open_time: Mapped[time | None] = mapped_column(Time())
    close_time: Mapped[time | None] = mapped_column(Time())
    is_closed: Mapped[bool] = mapped_column(Boolean(), default=False)


class StoreHoursExceptionRule(Base):
    __tablename__ = "store_hours_exception_rules"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(128))
    rule_type: Mapped[ExceptionRuleType] = mapped_column(
        SQLEnum(ExceptionRuleType, name="exception_rule_type_enum", native_enum=False),
        nullable=False,
    )
    effective_from_date: Mapped[date | None] = mapped_column(Date())
    effective_to_date: Mapped[date | None] = mapped_column(Date())
    # single-day rules
    is_closed: Mapped[bool | None] = mapped_column(Boolean())
    open_time: Mapped[time | None] = mapped_column(Time())
    close_time: Mapped[time | None] = mapped_column(Time())
    # date-range rules
    start_day_open: Mapped[time | None] = mapped_column(Time())
    start_day_close: Mapped[time | None] = mapped_column(Time())
    middle_days_open: Mapped[time | None] = mapped_column(Time())
    middle_days_close: Mapped[time | None] = mapped_column(Time())
    middle_days_closed: Mapped[bool] = mapped_column(Boolean(), default=False)
    end_day_open: Mapped[time | None] = mapped_column(Time())
    end_day_close: Mapped[time | None] = mapped_column(Time())


class StoreHoursEvent(Base):
    """A dated occurrence of an exception rule."""

    __tablename__ = "store_hours_events"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("store_hours_exception_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_date: Mapped[date] = mapped_column(Date(), nullable=False, index=True)

    rule: Mapped[StoreHoursExceptionRule] = relationship()


# ============================================================================
# Profiles, equipment, spaces
# ============================================================================


class ThermostatProfile(Base):
    __tablename__ = "thermostat_profiles"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True), index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_global: Mapped[bool] = mapped_column(Boolean(), default=False)

    occupied_heat_f: Mapped[float | None] = mapped_column(Float())
    occupied_cool_f: Mapped[float | None] = mapped_column(Float())
    unoccupied_heat_f: Mapped[float | None] = mapped_column(Float())
    unoccupied_cool_f: Mapped[float | None] = mapped_column(Float())
    occupied_fan_mode: Mapped[str | None] = mapped_column(String(32))
    occupied_hvac_mode: Mapped[str | None] = mapped_column(String(32))
    unoccupied_fan_mode: Mapped[str | None] = mapped_column(String(32))
    unoccupied_hvac_mode: Mapped[str | None] = mapped_column(String(32))
    # Legacy single-mode columns
    fan_mode: Mapped[str | None] = mapped_column(String(32))
    hvac_mode: Mapped[str | None] = mapped_column(String(32))

    # Validated through ProfileAdjustments
    adjustments: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Equipment(Base):
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    equipment_group: Mapped[str | None] = mapped_column(String(64), index=True)

    sensors: Mapped[list[EquipmentSensor]] = relationship(
        back_populates="equipment", cascade="all, delete-orphan"
    )


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    equipment_id: Mapped[uuid.UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("equipment.id", ondelete="SET NULL")
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Identifier of the device on the device API side
    external_device_id: Mapped[str | None] = mapped_column(String(128), index=True)
    ct_inverted: Mapped[bool] = mapped_column(Boolean(), default=False)


class Space(Base):
    __tablename__ = "spaces"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    hvac_zone_weight: Mapped[float | None] = mapped_column(Float())


class EquipmentServedSpace(Base):
    __tablename__ = "equipment_served_spaces"

    equipment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), primary_key=True
    )
    space_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("spaces.id", ondelete="CASCADE"), primary_key=True
    )


class SpaceSensor(Base):
    __tablename__ = "space_sensors"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    space_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("spaces.id", ondelete="CASCADE"), nullable=False
    )
    entity_id: Mapped[str | None] = mapped_column(String(255))
    sensor_type: Mapped[SpaceSensorType] = mapped_column(
        SQLEnum(SpaceSensorType, name="space_sensor_type_enum", native_enum=False), nullable=False
    )
    weight: Mapped[float | None] = mapped_column(Float())


class EquipmentSensor(Base):
    __tablename__ = "equipment_sensors"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    equipment_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    entity_id: Mapped[str | None] = mapped_column(String(255), index=True)
    label: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[SensorRole] = mapped_column(
        SQLEnum(SensorRole, name="sensor_role_enum", native_enum=False), nullable=False
    )

    equipment: Mapped[Equipment] = relationship(back_populates="sensors")


class EntityValue(Base):
    """Latest value of every synced device-API entity."""

    __tablename__ = "entity_values"
    __table_args__ = (UniqueConstraint("site_id", "entity_id"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    domain: Mapped[str | None] = mapped_column(String(64))
    external_device_id: Mapped[str | None] = mapped_column(String(128), index=True)
    friendly_name: Mapped[str | None] = mapped_column(String(255))
    unit_of_measurement: Mapped[str | None] = mapped_column(String(32))
    last_state: Mapped[str | None] = mapped_column(String(255))
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ============================================================================
# HVAC zones and thermostat state
# ============================================================================


class HvacZone(Base):
    __tablename__ = "hvac_zones"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    control_scope: Mapped[ControlScope] = mapped_column(
        SQLEnum(ControlScope, name="control_scope_enum", native_enum=False),
        default=ControlScope.managed,
    )
    equipment_id: Mapped[uuid.UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("equipment.id", ondelete="RESTRICT")
    )
    thermostat_device_id: Mapped[uuid.UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("devices.id", ondelete="SET NULL")
    )
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("thermostat_profiles.id", ondelete="SET NULL")
    )
    is_override: Mapped[bool] = mapped_column(Boolean(), default=False)

    occupied_heat_f: Mapped[float | None] = mapped_column(Float())
    occupied_cool_f: Mapped[float | None] = mapped_column(Float())
    unoccupied_heat_f: Mapped[float | None] = mapped_column(Float())
    unoccupied_cool_f: Mapped[float | None] = mapped_column(Float())
    occupied_fan_mode: Mapped[str | None] = mapped_column(String(32))
    occupied_hvac_mode: Mapped[str | None] = mapped_column(String(32))
    unoccupied_fan_mode: Mapped[str | None] = mapped_column(String(32))
    unoccupied_hvac_mode: Mapped[str | None] = mapped_column(String(32))
    fan_mode: Mapped[str | None] = mapped_column(String(32))
    hvac_mode: Mapped[str | None] = mapped_column(String(32))

    guardrail_min_f: Mapped[float | None] = mapped_column(Float())
    guardrail_max_f: Mapped[float | None] = mapped_column(Float())
    manager_offset_up_f: Mapped[float | None] = mapped_column(Float())
    manager_offset_down_f: Mapped[float | None] = mapped_column(Float())
    manager_override_reset_minutes: Mapped[int | None] = mapped_column(Integer())

    # Validated through AnomalyThresholds / SmartStartSettings
    anomaly_thresholds: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    smart_start_settings: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    site: Mapped[Site] = relationship(back_populates="zones")
    profile: Mapped[ThermostatProfile | None] = relationship()
    thermostat: Mapped[Device | None] = relationship()


class ThermostatState(Base):
    """Last-known device state; rewritten by read-back after every push."""

    __tablename__ = "thermostat_states"
    __table_args__ = (UniqueConstraint("site_id", "entity_id"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_device_id: Mapped[str | None] = mapped_column(String(128))
    hvac_mode: Mapped[str | None] = mapped_column(String(32))
    hvac_action: Mapped[str | None] = mapped_column(String(32))
    fan_mode: Mapped[str | None] = mapped_column(String(32))
    current_temperature_f: Mapped[float | None] = mapped_column(Float())
    current_humidity: Mapped[float | None] = mapped_column(Float())
    current_setpoint_f: Mapped[float | None] = mapped_column(Float())
    target_temp_high_f: Mapped[float | None] = mapped_column(Float())
    target_temp_low_f: Mapped[float | None] = mapped_column(Float())
    battery_level: Mapped[float | None] = mapped_column(Float())
    directive: Mapped[str | None] = mapped_column(Text())
    directive_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class ZoneSetpointLog(Base):
    """Per-cycle snapshot of a zone's setpoint math, telemetry and anomalies."""

    __tablename__ = "zone_setpoint_logs"
    __table_args__ = (Index("idx_zone_setpoint_logs_zone_recorded", "zone_id", "recorded_at"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    zone_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("hvac_zones.id", ondelete="CASCADE"), nullable=False
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    phase: Mapped[Phase] = mapped_column(
        SQLEnum(Phase, name="phase_enum", native_enum=False), nullable=False
    )

    profile_heat_f: Mapped[float | None] = mapped_column(Float())
    profile_cool_f: Mapped[float | None] = mapped_column(Float())
    feels_like_adj: Mapped[float] = mapped_column(Float(), default=0)
    smart_start_adj: Mapped[float] = mapped_column(Float(), default=0)
    occupancy_adj: Mapped[float] = mapped_column(Float(), default=0)
    manager_adj: Mapped[float] = mapped_column(Float(), default=0)
    active_heat_f: Mapped[float | None] = mapped_column(Float())
    active_cool_f: Mapped[float | None] = mapped_column(Float())
    adjustment_factors: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)

    zone_temp_f: Mapped[float | None] = mapped_column(Float())
    zone_humidity: Mapped[float | None] = mapped_column(Float())
    feels_like_temp_f: Mapped[float | None] = mapped_column(Float())
    reading_source: Mapped[str | None] = mapped_column(String(32))
    occupied_sensor_count: Mapped[int] = mapped_column(Integer(), default=0)
    fan_mode: Mapped[str | None] = mapped_column(String(32))
    hvac_action: Mapped[str | None] = mapped_column(String(32))

    supply_temp_f: Mapped[float | None] = mapped_column(Float())
    return_temp_f: Mapped[float | None] = mapped_column(Float())
    delta_t: Mapped[float | None] = mapped_column(Float())
    power_kw: Mapped[float | None] = mapped_column(Float())
    comp_on: Mapped[bool | None] = mapped_column(Boolean())
    compressor_current_a: Mapped[float | None] = mapped_column(Float())
    apparent_power_kva: Mapped[float | None] = mapped_column(Float())
    reactive_power_kvar: Mapped[float | None] = mapped_column(Float())
    energy_kwh: Mapped[float | None] = mapped_column(Float())
    energy_delta_kwh: Mapped[float | None] = mapped_column(Float())
    line_voltage_v: Mapped[float | None] = mapped_column(Float())
    power_factor: Mapped[float | None] = mapped_column(Float())
    frequency_hz: Mapped[float | None] = mapped_column(Float())
    cabinet_door_open: Mapped[bool | None] = mapped_column(Boolean())
    water_leak: Mapped[bool | None] = mapped_column(Boolean())
    filter_pressure_pa: Mapped[float | None] = mapped_column(Float())
    condenser_coil_in_f: Mapped[float | None] = mapped_column(Float())
    condenser_coil_out_f: Mapped[float | None] = mapped_column(Float())
    evaporator_coil_in_f: Mapped[float | None] = mapped_column(Float())
    evaporator_coil_out_f: Mapped[float | None] = mapped_column(Float())

    running_state: Mapped[bool | None] = mapped_column(Boolean())
    coil_freeze: Mapped[bool | None] = mapped_column(Boolean())
    filter_restriction: Mapped[bool | None] = mapped_column(Boolean())
    refrigerant_low: Mapped[bool | None] = mapped_column(Boolean())
    short_cycling: Mapped[bool | None] = mapped_column(Boolean())
    long_cycle: Mapped[bool | None] = mapped_column(Boolean())
    idle_heat_gain: Mapped[bool | None] = mapped_column(Boolean())
    delayed_temp_response: Mapped[bool | None] = mapped_column(Boolean())
    efficiency_ratio: Mapped[float | None] = mapped_column(Float())
    cycle_count_1h: Mapped[int | None] = mapped_column(Integer())
    continuous_run_min: Mapped[float | None] = mapped_column(Float())
    anomaly_flags: Mapped[list[str]] = mapped_column(JSONB, default=list)
    anomaly_count: Mapped[int] = mapped_column(Integer(), default=0)


class SmartStartLog(Base):
    __tablename__ = "smart_start_logs"
    __table_args__ = (UniqueConstraint("zone_id", "date"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    zone_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("hvac_zones.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date(), nullable=False)
    scheduled_open_time: Mapped[time | None] = mapped_column(Time())
    hvac_start_time: Mapped[time | None] = mapped_column(Time())
    offset_used_minutes: Mapped[int] = mapped_column(Integer(), default=0)
    target_setpoint_f: Mapped[float | None] = mapped_column(Float())
    confidence: Mapped[str | None] = mapped_column(String(16))
    hit_guardrail: Mapped[bool] = mapped_column(Boolean(), default=False)
    calculation_detail: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AnomalyEvent(Base):
    __tablename__ = "anomaly_events"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    zone_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("hvac_zones.id", ondelete="CASCADE"), nullable=False
    )
    anomaly_type: Mapped[str] = mapped_column(String(64), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RecordsLog(Base):
    """Durable audit trail of push cycles."""

    __tablename__ = "records_log"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True))
    site_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    equipment_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True))
    device_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True))
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    event_date: Mapped[date] = mapped_column(Date(), nullable=False)
    source: Mapped[str] = mapped_column(String(64), default="device_push")
    message: Mapped[str] = mapped_column(Text(), nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, default=dict)
    created_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )


class SiteDailyHealth(Base):
    __tablename__ = "site_daily_health"
    __table_args__ = (UniqueConstraint("site_id", "date"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    site_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    org_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True))
    date: Mapped[date] = mapped_column(Date(), nullable=False)
    device_api_reachable: Mapped[bool] = mapped_column(Boolean(), default=False)
    runs_today: Mapped[int] = mapped_column(Integer(), default=0)
    zones_pushed: Mapped[int] = mapped_column(Integer(), default=0)
    zones_skipped: Mapped[int] = mapped_column(Integer(), default=0)
    zones_failed: Mapped[int] = mapped_column(Integer(), default=0)
    unreachable_runs: Mapped[int] = mapped_column(Integer(), default=0)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


# ============================================================================
# Alerting
# ============================================================================


class AlertDefinition(Base):
    __tablename__ = "alert_definitions"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        SQLEnum(AlertSeverity, name="alert_severity_enum", native_enum=False),
        default=AlertSeverity.warning,
    )
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True)

    entity_type: Mapped[AlertEntityType] = mapped_column(
        SQLEnum(AlertEntityType, name="alert_entity_type_enum", native_enum=False),
        nullable=False,
    )
    entity_id: Mapped[str | None] = mapped_column(String(255))
    derived_metric: Mapped[str | None] = mapped_column(String(64))
    anomaly_type: Mapped[str | None] = mapped_column(String(64))
    equipment_type: Mapped[str | None] = mapped_column(String(64))
    sensor_role: Mapped[SensorRole | None] = mapped_column(
        SQLEnum(SensorRole, name="sensor_role_enum", native_enum=False, create_constraint=False)
    )

    condition_type: Mapped[ConditionType] = mapped_column(
        SQLEnum(ConditionType, name="condition_type_enum", native_enum=False), nullable=False
    )
    threshold_value: Mapped[float | None] = mapped_column(Float())
    target_value: Mapped[str | None] = mapped_column(String(255))
    target_value_type: Mapped[TargetValueType] = mapped_column(
        SQLEnum(TargetValueType, name="target_value_type_enum", native_enum=False),
        default=TargetValueType.string,
    )
    stale_minutes: Mapped[float | None] = mapped_column(Float())
    delta_value: Mapped[float | None] = mapped_column(Float())
    delta_direction: Mapped[DeltaDirection] = mapped_column(
        SQLEnum(DeltaDirection, name="delta_direction_enum", native_enum=False),
        default=DeltaDirection.any,
    )
    window_minutes: Mapped[float | None] = mapped_column(Float())
    sustain_minutes: Mapped[float] = mapped_column(Float(), default=0)

    scope_level: Mapped[ScopeLevel] = mapped_column(
        SQLEnum(ScopeLevel, name="scope_level_enum", native_enum=False),
        default=ScopeLevel.site,
    )
    scope_mode: Mapped[ScopeMode] = mapped_column(
        SQLEnum(ScopeMode, name="scope_mode_enum", native_enum=False), default=ScopeMode.all
    )
    scope_ids: Mapped[list[str]] = mapped_column(JSONB, default=list)
    eval_path: Mapped[EvalPath] = mapped_column(
        SQLEnum(EvalPath, name="eval_path_enum", native_enum=False), default=EvalPath.auto
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    eval_states: Mapped[list[AlertEvalState]] = relationship(
        back_populates="definition", cascade="all, delete-orphan"
    )
    instances: Mapped[list[AlertInstance]] = relationship(
        back_populates="definition", cascade="all, delete-orphan"
    )
    subscriptions: Mapped[list[AlertSubscription]] = relationship(
        back_populates="definition", cascade="all, delete-orphan"
    )


class AlertEvalState(Base):
    __tablename__ = "alert_eval_states"
    __table_args__ = (UniqueConstraint("alert_def_id", "target_level", "target_id"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    alert_def_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("alert_definitions.id", ondelete="CASCADE"), nullable=False
    )
    target_level: Mapped[TargetLevel] = mapped_column(
        SQLEnum(TargetLevel, name="target_level_enum", native_enum=False), nullable=False
    )
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    condition_met: Mapped[bool] = mapped_column(Boolean(), default=False)
    condition_true_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    fired: Mapped[bool] = mapped_column(Boolean(), default=False)
    last_value: Mapped[str | None] = mapped_column(String(255))
    last_value_numeric: Mapped[float | None] = mapped_column(Float())
    last_value_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    window_values: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    rolling_min: Mapped[float | None] = mapped_column(Float())
    rolling_max: Mapped[float | None] = mapped_column(Float())
    rolling_avg: Mapped[float | None] = mapped_column(Float())
    rolling_count: Mapped[int] = mapped_column(Integer(), default=0)
    last_evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    definition: Mapped[AlertDefinition] = relationship(back_populates="eval_states")


class AlertInstance(Base):
    __tablename__ = "alert_instances"
    __table_args__ = (
        # At most one active episode per (definition, target)
        Index(
            "uq_alert_instances_active",
            "alert_def_id",
            "target_level",
            "target_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    alert_def_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("alert_definitions.id", ondelete="CASCADE"), nullable=False
    )
    target_level: Mapped[TargetLevel] = mapped_column(
        SQLEnum(TargetLevel, name="target_level_enum", native_enum=False), nullable=False
    )
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[InstanceStatus] = mapped_column(
        SQLEnum(InstanceStatus, name="instance_status_enum", native_enum=False),
        default=InstanceStatus.active,
    )
    first_detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_min: Mapped[float | None] = mapped_column(Float())
    trigger_value: Mapped[str | None] = mapped_column(String(255))
    trigger_value_numeric: Mapped[float | None] = mapped_column(Float())
    peak_value: Mapped[float | None] = mapped_column(Float())
    last_value: Mapped[float | None] = mapped_column(Float())
    last_evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    context: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)

    definition: Mapped[AlertDefinition] = relationship(back_populates="instances")


class AlertSubscription(Base):
    __tablename__ = "alert_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    alert_def_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("alert_definitions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean(), default=True)
    dashboard_enabled: Mapped[bool] = mapped_column(Boolean(), default=True)
    email_enabled: Mapped[bool] = mapped_column(Boolean(), default=False)
    sms_enabled: Mapped[bool] = mapped_column(Boolean(), default=False)
    send_resolved: Mapped[bool] = mapped_column(Boolean(), default=True)
    repeat_enabled: Mapped[bool] = mapped_column(Boolean(), default=False)
    repeat_interval_min: Mapped[int | None] = mapped_column(Integer())
    max_repeats: Mapped[int | None] = mapped_column(Integer())
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean(), default=False)
    quiet_start: Mapped[time | None] = mapped_column(Time())
    quiet_end: Mapped[time | None] = mapped_column(Time())
    timezone: Mapped[str | None] = mapped_column(String(64))

    definition: Mapped[AlertDefinition] = relationship(back_populates="subscriptions")


class AlertNotification(Base):
    """Append-only delivery queue; consumed by an external delivery worker."""

    __tablename__ = "alert_notifications"

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    instance_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("alert_instances.id", ondelete="CASCADE"), nullable=False
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("alert_subscriptions.id", ondelete="SET NULL")
    )
    channel: Mapped[NotificationChannel] = mapped_column(
        SQLEnum(NotificationChannel, name="notification_channel_enum", native_enum=False),
        nullable=False,
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
    )
    status: Mapped[NotificationStatus] = mapped_column(
        SQLEnum(NotificationStatus, name="notification_status_enum", native_enum=False),
        default=NotificationStatus.pending,
    )
    recipient_user_id: Mapped[uuid.UUID | None] = mapped_column(PGUUID(as_uuid=True))
    recipient_address: Mapped[str | None] = mapped_column(String(255))
    title: Mapped[str] = mapped_column(Text(), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        SQLEnum(AlertSeverity, name="alert_severity_enum", native_enum=False),
        default=AlertSeverity.warning,
    )
    repeat_number: Mapped[int | None] = mapped_column(Integer())
    error: Mapped[str | None] = mapped_column(Text())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )


class UserContact(Base):
    """Delivery addresses for alert subscribers."""

    __tablename__ = "user_contacts"
    __table_args__ = (UniqueConstraint("user_id", "org_id"),)

    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid_pk)
    user_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    org_id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    email: Mapped[str | None] = mapped_column(String(256))
    phone_number: Mapped[str | None] = mapped_column(String(32))
    sms_verified: Mapped[bool] = mapped_column(Boolean(), default=False)


# ============================================================================
# Global engine and session management
# ============================================================================

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


_db_logger = logging.getLogger(__name__)


def get_engine() -> AsyncEngine:
    """Get the global async engine."""
    global _engine
    if _engine is None:
        from hvacops.config import get_settings

        settings = get_settings()

        _db_logger.info(
            "Creating engine -> %s:%s/%s",
            settings.db_host,
            settings.db_port,
            settings.db_name,
        )

        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            future=True,
            pool_size=5,
            max_overflow=10,
        )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db() -> None:
    """Initialize database - create all tables."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    _db_logger.info("Database schema ensured")


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
