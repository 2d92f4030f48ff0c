"""Zone state sampling: sensor aggregation, feels-like, occupancy and anomalies.

The aggregation and detection helpers are pure functions over already
loaded rows; :class:`ZoneSampler` wires them to a :class:`SiteDataStore`.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from hvacops.models.enums import ReadingSource, SensorRole
from hvacops.models.schemas import AnomalyThresholds

if TYPE_CHECKING:
    from hvacops.services.site_data import SiteDataStore

logger = logging.getLogger(__name__)

ACTIVE_MOTION_STATES = frozenset({"on", "true", "1", "detected"})
_DOOR_OPEN_STATES = frozenset({"on", "open", "true", "1"})
_LEAK_STATES = frozenset({"on", "wet", "true", "1", "detected"})
_OFF_STATES = frozenset({"off", "false", "0", "idle"})

# Roles whose sign flips on devices with a reversed current transformer
CT_ROLES = frozenset(
    {
        SensorRole.power_kw,
        SensorRole.compressor_current,
        SensorRole.compressor_status,
        SensorRole.apparent_power,
        SensorRole.reactive_power,
        SensorRole.energy_kwh,
    }
)

COMPRESSOR_ON_CURRENT_A = 0.5


# ============================================================================
# Input rows
# ============================================================================


@dataclass(slots=True)
class WeightedSensor:
    entity_id: str
    weight: float | None = None


@dataclass(slots=True)
class SpaceSensors:
    """Sensors of one space served by a zone's equipment."""

    space_id: uuid.UUID
    name: str
    zone_weight: float | None = None
    temperature: list[WeightedSensor] = field(default_factory=list)
    humidity: list[WeightedSensor] = field(default_factory=list)
    motion: list[str] = field(default_factory=list)


@dataclass(slots=True)
class EquipmentSensorValue:
    role: SensorRole
    state: str | None
    ct_inverted: bool = False


@dataclass(slots=True)
class LogPoint:
    """The slice of a setpoint-log row used by cycle and response detection."""

    recorded_at: datetime
    comp_on: bool | None
    zone_temp_f: float | None


# ============================================================================
# Results
# ============================================================================


@dataclass(slots=True)
class ZoneSensorReading:
    zone_temp_f: float | None
    zone_humidity: float | None
    feels_like_temp_f: float | None
    source: ReadingSource | None


@dataclass(slots=True)
class OccupancyReading:
    occupancy_adj: int = 0
    occupied_sensor_count: int = 0


@dataclass(slots=True)
class EquipmentReadings:
    supply_temp_f: float | None = None
    return_temp_f: float | None = None
    delta_t: float | None = None
    power_kw: float | None = None
    comp_on: bool | None = None
    compressor_current_a: float | None = None
    apparent_power_kva: float | None = None
    reactive_power_kvar: float | None = None
    energy_kwh: float | None = None
    line_voltage_v: float | None = None
    power_factor: float | None = None
    frequency_hz: float | None = None
    cabinet_door_open: bool | None = None
    water_leak: bool | None = None
    filter_pressure_pa: float | None = None
    condenser_coil_in_f: float | None = None
    condenser_coil_out_f: float | None = None
    evaporator_coil_in_f: float | None = None
    evaporator_coil_out_f: float | None = None


@dataclass(slots=True)
class AnomalyResult:
    running_state: bool | None = None
    coil_freeze: bool | None = None
    filter_restriction: bool | None = None
    refrigerant_low: bool | None = None
    short_cycling: bool | None = None
    long_cycle: bool | None = None
    idle_heat_gain: bool | None = None
    delayed_temp_response: bool | None = None
    efficiency_ratio: float | None = None
    cycle_count_1h: int | None = None
    continuous_run_min: float | None = None
    energy_delta_kwh: float | None = None
    anomaly_flags: list[str] = field(default_factory=list)

    @property
    def anomaly_count(self) -> int:
        return len(self.anomaly_flags)


@dataclass(slots=True)
class ZoneSample:
    reading: ZoneSensorReading
    occupancy: OccupancyReading
    equipment: EquipmentReadings
    anomalies: AnomalyResult


# ============================================================================
# Pure helpers
# ============================================================================


def parse_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (70.5 -> 71)."""
    return math.floor(value + 0.5)


def compute_feels_like(temp_f: float, humidity: float) -> int:
    """Indoor perceived temperature in whole °F.

    Below 80°F a linear humidity correction applies. From 80°F up the
    Rothfusz heat-index regression applies when humidity is at least 40%;
    drier air at that temperature feels like the actual temperature.
    """
    if temp_f < 80:
        return round_half_up(temp_f + (0.33 * (humidity / 100) * 6.105) - 4.0)
    if humidity < 40:
        return round_half_up(temp_f)
    t, rh = temp_f, humidity
    hi = (
        -42.379
        + 2.04901523 * t
        + 10.14333127 * rh
        - 0.22475541 * t * rh
        - 0.00683783 * t * t
        - 0.05481717 * rh * rh
        + 0.00122874 * t * t * rh
        + 0.00085282 * t * rh * rh
        - 0.00000199 * t * t * rh * rh
    )
    return round_half_up(hi)


def weighted_average(pairs: Iterable[tuple[float, float]]) -> float | None:
    """Weighted mean of ``(value, weight)`` pairs rounded to 0.1, or ``None``."""
    total_weight = 0.0
    weighted_sum = 0.0
    for value, weight in pairs:
        weighted_sum += value * weight
        total_weight += weight
    if total_weight <= 0:
        return None
    return round(weighted_sum / total_weight, 1)


def _weight(value: float | None) -> float:
    # Unset or zero weights count as 1.0
    return float(value) if value else 1.0


def space_average(
    sensors: Sequence[WeightedSensor], entity_states: dict[str, str | None]
) -> float | None:
    pairs: list[tuple[float, float]] = []
    for sensor in sensors:
        value = parse_float(entity_states.get(sensor.entity_id))
        if value is None:
            continue
        pairs.append((value, _weight(sensor.weight)))
    return weighted_average(pairs)


def aggregate_zone_reading(
    spaces: Sequence[SpaceSensors],
    entity_states: dict[str, str | None],
    thermostat: Any | None = None,
) -> ZoneSensorReading:
    """Two-level weighted average (sensors within a space, spaces within a zone).

    Falls back to the thermostat's own temperature/humidity when no space
    sensor resolves.
    """
    temp_pairs: list[tuple[float, float]] = []
    hum_pairs: list[tuple[float, float]] = []

    for space in spaces:
        zone_weight = 1.0 if space.zone_weight is None else float(space.zone_weight)
        avg_temp = space_average(space.temperature, entity_states)
        avg_hum = space_average(space.humidity, entity_states)
        logger.debug(
            "space=%s temp_sensors=%d avg_temp=%s hum_sensors=%d avg_hum=%s zone_weight=%s",
            space.name,
            len(space.temperature),
            avg_temp,
            len(space.humidity),
            avg_hum,
            zone_weight,
        )
        if avg_temp is not None:
            temp_pairs.append((avg_temp, zone_weight))
        if avg_hum is not None:
            hum_pairs.append((avg_hum, zone_weight))

    zone_temp = weighted_average(temp_pairs)
    zone_hum = weighted_average(hum_pairs)
    source: ReadingSource | None = None
    if zone_temp is not None or zone_hum is not None:
        source = ReadingSource.space_sensors

    if zone_temp is None and thermostat is not None:
        zone_temp = getattr(thermostat, "current_temperature_f", None)
        if zone_temp is not None:
            source = ReadingSource.thermostat
    if zone_hum is None and thermostat is not None:
        zone_hum = getattr(thermostat, "current_humidity", None)
        if zone_hum is not None and source is None:
            source = ReadingSource.thermostat

    feels_like = (
        float(compute_feels_like(zone_temp, zone_hum))
        if zone_temp is not None and zone_hum is not None
        else None
    )
    return ZoneSensorReading(zone_temp, zone_hum, feels_like, source)


def occupancy_from_states(motion_states: Sequence[str | None]) -> OccupancyReading:
    """-1 when motion sensors exist and none is active, otherwise 0."""
    if not motion_states:
        return OccupancyReading()
    active = sum(
        1 for state in motion_states if state is not None and state.lower() in ACTIVE_MOTION_STATES
    )
    return OccupancyReading(occupancy_adj=-1 if active == 0 else 0, occupied_sensor_count=active)


_NUMERIC_ROLE_FIELDS: dict[SensorRole, str] = {
    SensorRole.supply_air_temp: "supply_temp_f",
    SensorRole.return_air_temp: "return_temp_f",
    SensorRole.delta_t: "delta_t",
    SensorRole.power_kw: "power_kw",
    SensorRole.apparent_power: "apparent_power_kva",
    SensorRole.reactive_power: "reactive_power_kvar",
    SensorRole.energy_kwh: "energy_kwh",
    SensorRole.line_voltage: "line_voltage_v",
    SensorRole.power_factor: "power_factor",
    SensorRole.frequency: "frequency_hz",
    SensorRole.filter_pressure: "filter_pressure_pa",
    SensorRole.condenser_coil_in_temp: "condenser_coil_in_f",
    SensorRole.condenser_coil_out_temp: "condenser_coil_out_f",
    SensorRole.evaporator_coil_in_temp: "evaporator_coil_in_f",
    SensorRole.evaporator_coil_out_temp: "evaporator_coil_out_f",
}


def equipment_readings(values: Iterable[EquipmentSensorValue]) -> EquipmentReadings:
    """Map role-tagged equipment sensor values onto one telemetry record."""
    result = EquipmentReadings()
    for item in values:
        if not item.state:
            continue
        raw = item.state.lower()

        if item.role == SensorRole.cabinet_door:
            result.cabinet_door_open = raw in _DOOR_OPEN_STATES
            continue
        if item.role == SensorRole.water_leak:
            result.water_leak = raw in _LEAK_STATES
            continue
        if item.role == SensorRole.compressor_status and (
            raw in ACTIVE_MOTION_STATES or raw in _OFF_STATES
        ):
            result.comp_on = raw in ACTIVE_MOTION_STATES
            continue

        value = parse_float(item.state)
        if value is None:
            continue
        if item.ct_inverted and item.role in CT_ROLES:
            value = -value

        if item.role == SensorRole.compressor_current:
            result.compressor_current_a = value
            result.comp_on = value > COMPRESSOR_ON_CURRENT_A
        elif item.role == SensorRole.compressor_status:
            result.comp_on = value > COMPRESSOR_ON_CURRENT_A
        else:
            setattr(result, _NUMERIC_ROLE_FIELDS[item.role], value)

    if result.delta_t is None and result.supply_temp_f is not None and result.return_temp_f is not None:
        result.delta_t = round(result.return_temp_f - result.supply_temp_f, 1)
    return result


def history_window_minutes(thresholds: AnomalyThresholds) -> float:
    """How far back the log history must reach for :func:`detect_anomalies`."""
    return max(60.0, thresholds.long_cycle_min + 15, thresholds.delayed_response_min, 15.0)


def _since(history: Sequence[LogPoint], now: datetime, minutes: float) -> list[LogPoint]:
    cutoff = now - timedelta(minutes=minutes)
    return [p for p in history if p.recorded_at >= cutoff]


def detect_anomalies(
    equipment: EquipmentReadings,
    zone_temp_f: float | None,
    hvac_action: str | None,
    thresholds: AnomalyThresholds,
    history: Sequence[LogPoint],
    now: datetime,
    previous_energy_kwh: float | None = None,
) -> AnomalyResult:
    """Evaluate equipment anomaly flags.

    ``history`` holds earlier setpoint-log rows for the zone in ascending
    time order. Each flag stays ``None`` when its inputs are missing. Run
    and cycle durations are measured from the row timestamps.
    """
    result = AnomalyResult()
    flags = result.anomaly_flags

    if equipment.compressor_current_a is not None:
        result.running_state = (
            equipment.compressor_current_a > thresholds.compressor_current_threshold_a
        )
    elif hvac_action:
        result.running_state = hvac_action not in ("idle", "off")

    if equipment.supply_temp_f is not None:
        result.coil_freeze = equipment.supply_temp_f < thresholds.coil_freeze_temp_f
        if result.coil_freeze:
            flags.append("coil_freeze")

    if equipment.delta_t is not None and result.running_state is True:
        spread = abs(equipment.delta_t)
        result.filter_restriction = spread > thresholds.filter_restriction_delta_t_max
        if result.filter_restriction:
            flags.append("filter_restriction")
        result.refrigerant_low = spread < thresholds.refrigerant_low_delta_t_min
        if result.refrigerant_low:
            flags.append("refrigerant_low")

    if (
        equipment.delta_t is not None
        and equipment.power_kw is not None
        and equipment.power_kw > 0.01
    ):
        result.efficiency_ratio = round(abs(equipment.delta_t) / equipment.power_kw, 2)

    # Cycling
    last_hour = _since(history, now, 60)
    if len(last_hour) > 1:
        cycles = sum(
            1
            for prev, cur in zip(last_hour, last_hour[1:])
            if prev.comp_on is True and cur.comp_on is False
        )
        result.cycle_count_1h = cycles
        result.short_cycling = cycles > thresholds.short_cycle_count_1h
        if result.short_cycling:
            flags.append("short_cycling")

        # A compressor reading off right now ends the logged run
        run_start: datetime | None = None
        if equipment.comp_on is not False:
            for point in reversed(history):
                if point.comp_on is not True:
                    break
                run_start = point.recorded_at
        run_min = 0.0 if run_start is None else (now - run_start).total_seconds() / 60
        result.continuous_run_min = round(run_min, 1)
        result.long_cycle = run_min > thresholds.long_cycle_min
        if result.long_cycle:
            flags.append("long_cycle")

    if result.running_state is False and zone_temp_f is not None:
        window = _since(history, now, 15)
        if window and window[0].zone_temp_f is not None:
            rise = zone_temp_f - window[0].zone_temp_f
            result.idle_heat_gain = window[0].comp_on is False and rise > thresholds.idle_heat_gain_f
            if result.idle_heat_gain:
                flags.append("idle_heat_gain")

    if result.running_state is True and zone_temp_f is not None:
        window = _since(history, now, thresholds.delayed_response_min)
        if len(window) >= 3 and all(p.comp_on is True for p in window):
            first = window[0].zone_temp_f
            if first is not None:
                result.delayed_temp_response = abs(zone_temp_f - first) < 0.5
                if result.delayed_temp_response:
                    flags.append("delayed_temp_response")

    if equipment.energy_kwh is not None and previous_energy_kwh is not None:
        # Meter resets show up as negative deltas
        result.energy_delta_kwh = max(0.0, round(equipment.energy_kwh - previous_energy_kwh, 3))

    return result


# ============================================================================
# Store-backed sampler
# ============================================================================


class ZoneSampler:
    """Reads a zone's live telemetry and derives its sample."""

    def __init__(self, store: SiteDataStore, sensor_max_age_min: int | None = None) -> None:
        self._store = store
        self._max_age = sensor_max_age_min

    async def read_sensors(
        self,
        site_id: uuid.UUID,
        equipment_id: uuid.UUID | None,
        thermostat: Any | None,
        now: datetime | None = None,
    ) -> tuple[ZoneSensorReading, OccupancyReading]:
        spaces: list[SpaceSensors] = []
        if equipment_id is not None:
            spaces = await self._store.served_space_sensors(site_id, equipment_id)

        entity_ids: set[str] = set()
        for space in spaces:
            entity_ids.update(s.entity_id for s in space.temperature)
            entity_ids.update(s.entity_id for s in space.humidity)
            entity_ids.update(space.motion)
        states: dict[str, str | None] = {}
        if entity_ids:
            fresh_since = None
            if self._max_age and now is not None:
                fresh_since = now - timedelta(minutes=self._max_age)
            states = await self._store.entity_states(site_id, entity_ids, fresh_since=fresh_since)

        reading = aggregate_zone_reading(spaces, states, thermostat)
        motion_ids = [eid for space in spaces for eid in space.motion]
        occupancy = occupancy_from_states([states[eid] for eid in motion_ids if eid in states])
        logger.debug(
            "equipment=%s zone_temp_f=%s zone_humidity=%s source=%s feels_like=%s occupied_sensors=%d",
            equipment_id,
            reading.zone_temp_f,
            reading.zone_humidity,
            reading.source,
            reading.feels_like_temp_f,
            occupancy.occupied_sensor_count,
        )
        return reading, occupancy

    async def sample(
        self,
        site_id: uuid.UUID,
        zone: Any,
        thermostat: Any | None,
        thresholds: AnomalyThresholds,
        now: datetime,
    ) -> ZoneSample:
        reading, occupancy = await self.read_sensors(site_id, zone.equipment_id, thermostat, now)

        equipment = EquipmentReadings()
        if zone.equipment_id is not None:
            values = await self._store.equipment_sensor_values(site_id, zone.equipment_id)
            equipment = equipment_readings(values)

        since = now - timedelta(minutes=history_window_minutes(thresholds))
        history = await self._store.recent_log_points(zone.id, since)
        previous_energy = (
            await self._store.last_energy_reading(zone.id)
            if equipment.energy_kwh is not None
            else None
        )
        anomalies = detect_anomalies(
            equipment,
            reading.zone_temp_f,
            getattr(thermostat, "hvac_action", None),
            thresholds,
            history,
            now,
            previous_energy,
        )
        return ZoneSample(reading, occupancy, equipment, anomalies)


__all__ = [
    "AnomalyResult",
    "EquipmentReadings",
    "EquipmentSensorValue",
    "LogPoint",
    "OccupancyReading",
    "SpaceSensors",
    "WeightedSensor",
    "ZoneSample",
    "ZoneSampler",
    "ZoneSensorReading",
    "aggregate_zone_reading",
    "compute_feels_like",
    "detect_anomalies",
    "equipment_readings",
    "occupancy_from_states",
    "round_half_up",
    "weighted_average",
]
