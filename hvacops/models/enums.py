"""Domain enums for HVACOps database models."""

from enum import StrEnum


class Phase(StrEnum):
    occupied = "occupied"
    unoccupied = "unoccupied"


class SetpointSource(StrEnum):
    profile = "profile"
    zone_override = "zone_override"
    default = "default"


class ReadingSource(StrEnum):
    space_sensors = "space_sensors"
    thermostat = "thermostat"


class ControlScope(StrEnum):
    managed = "managed"
    monitored = "monitored"


class ExceptionRuleType(StrEnum):
    single_day = "single_day"
    date_range_daily = "date_range_daily"


class SpaceSensorType(StrEnum):
    temperature = "temperature"
    humidity = "humidity"
    motion = "motion"


class SensorRole(StrEnum):
    """Explicit purpose of a sensor mounted on a piece of equipment."""

    supply_air_temp = "supply_air_temp"
    return_air_temp = "return_air_temp"
    delta_t = "delta_t"
    power_kw = "power_kw"
    compressor_current = "compressor_current"
    compressor_status = "compressor_status"
    apparent_power = "apparent_power"
    reactive_power = "reactive_power"
    energy_kwh = "energy_kwh"
    line_voltage = "line_voltage"
    power_factor = "power_factor"
    frequency = "frequency"
    cabinet_door = "cabinet_door"
    water_leak = "water_leak"
    filter_pressure = "filter_pressure"
    condenser_coil_in_temp = "condenser_coil_in_temp"
    condenser_coil_out_temp = "condenser_coil_out_temp"
    evaporator_coil_in_temp = "evaporator_coil_in_temp"
    evaporator_coil_out_temp = "evaporator_coil_out_temp"


class RecordEventType(StrEnum):
    thermostat_push = "thermostat_push"
    thermostat_push_failed = "thermostat_push_failed"


class AlertEntityType(StrEnum):
    sensor = "sensor"
    derived = "derived"
    anomaly = "anomaly"


class ConditionType(StrEnum):
    above_threshold = "above_threshold"
    below_threshold = "below_threshold"
    changes_to = "changes_to"
    stale = "stale"
    rate_of_change = "rate_of_change"


class TargetValueType(StrEnum):
    string = "string"
    numeric = "numeric"
    boolean = "boolean"


class DeltaDirection(StrEnum):
    any = "any"
    increase = "increase"
    decrease = "decrease"


class EvalPath(StrEnum):
    auto = "auto"
    realtime = "realtime"
    cron = "cron"


class ScopeLevel(StrEnum):
    site = "site"
    equipment = "equipment"
    zone = "zone"


class ScopeMode(StrEnum):
    all = "all"
    include = "include"
    exclude = "exclude"


class TargetLevel(StrEnum):
    entity = "entity"
    zone = "zone"
    site = "site"


class AlertSeverity(StrEnum):
    info = "info"
    warning = "warning"
    critical = "critical"


class InstanceStatus(StrEnum):
    active = "active"
    resolved = "resolved"


class NotificationChannel(StrEnum):
    dashboard = "dashboard"
    email = "email"
    sms = "sms"


class NotificationType(StrEnum):
    fired = "fired"
    repeat = "repeat"
    resolved = "resolved"


class NotificationStatus(StrEnum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
