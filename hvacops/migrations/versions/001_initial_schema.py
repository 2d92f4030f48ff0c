"""Initial HVACOps schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from hvacops.models import enums

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _enum(enum_cls: type, name: str, **kw: object) -> sa.Enum:
    return sa.Enum(*[m.value for m in enum_cls], name=name, native_enum=False, **kw)


exception_rule_type_enum = _enum(enums.ExceptionRuleType, "exception_rule_type_enum")
space_sensor_type_enum = _enum(enums.SpaceSensorType, "space_sensor_type_enum")
sensor_role_enum = _enum(enums.SensorRole, "sensor_role_enum")
control_scope_enum = _enum(enums.ControlScope, "control_scope_enum")
phase_enum = _enum(enums.Phase, "phase_enum")
alert_severity_enum = _enum(enums.AlertSeverity, "alert_severity_enum")
alert_entity_type_enum = _enum(enums.AlertEntityType, "alert_entity_type_enum")
condition_type_enum = _enum(enums.ConditionType, "condition_type_enum")
target_value_type_enum = _enum(enums.TargetValueType, "target_value_type_enum")
delta_direction_enum = _enum(enums.DeltaDirection, "delta_direction_enum")
scope_level_enum = _enum(enums.ScopeLevel, "scope_level_enum")
scope_mode_enum = _enum(enums.ScopeMode, "scope_mode_enum")
eval_path_enum = _enum(enums.EvalPath, "eval_path_enum")
target_level_enum = _enum(enums.TargetLevel, "target_level_enum")
instance_status_enum = _enum(enums.InstanceStatus, "instance_status_enum")
notification_channel_enum = _enum(enums.NotificationChannel, "notification_channel_enum")
notification_type_enum = _enum(enums.NotificationType, "notification_type_enum")
notification_status_enum = _enum(enums.NotificationStatus, "notification_status_enum")


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _uuid(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable)


def _jsonb(name: str, default: str = "'{}'::jsonb") -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text(default),
    )


def _ts(name: str, nullable: bool = True) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True))
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _setpoint_columns() -> list[sa.Column]:
    columns = [
        sa.Column(name, sa.Float())
        for name in ("occupied_heat_f", "occupied_cool_f", "unoccupied_heat_f", "unoccupied_cool_f")
    ]
    columns += [
        sa.Column(name, sa.String(32))
        for name in (
            "occupied_fan_mode",
            "occupied_hvac_mode",
            "unoccupied_fan_mode",
            "unoccupied_hvac_mode",
            "fan_mode",
            "hvac_mode",
        )
    ]
    return columns


def upgrade() -> None:
    # ------------------------------------------------------------------
    # Sites and store hours
    # ------------------------------------------------------------------
    op.create_table(
        "sites",
        _id(),
        _uuid("org_id", nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("timezone", sa.String(64)),
        sa.Column("device_api_url", sa.String(255)),
        sa.Column("device_api_token", sa.Text()),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_sites_org_id", "sites", ["org_id"])

    op.create_table(
        "store_hours",
        _id(),
        _uuid("site_id", nullable=False),
        sa.Column("day_of_week", sa.String(9), nullable=False),
        sa.Column("open_time", sa.Time()),
        sa.Column("close_time", sa.Time()),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("site_id", "day_of_week"),
    )

    op.create_table(
        "store_hours_exception_rules",
        _id(),
        _uuid("site_id", nullable=False),
        sa.Column("name", sa.String(128)),
        sa.Column("rule_type", exception_rule_type_enum, nullable=False),
        sa.Column("effective_from_date", sa.Date()),
        sa.Column("effective_to_date", sa.Date()),
        sa.Column("is_closed", sa.Boolean()),
        sa.Column("open_time", sa.Time()),
        sa.Column("close_time", sa.Time()),
        sa.Column("start_day_open", sa.Time()),
        sa.Column("start_day_close", sa.Time()),
        sa.Column("middle_days_open", sa.Time()),
        sa.Column("middle_days_close", sa.Time()),
        sa.Column(
            "middle_days_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("end_day_open", sa.Time()),
        sa.Column("end_day_close", sa.Time()),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "store_hours_events",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("rule_id", nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["rule_id"], ["store_hours_exception_rules.id"], ondelete="CASCADE"
        ),
    )
    op.create_index("ix_store_hours_events_event_date", "store_hours_events", ["event_date"])

    # ------------------------------------------------------------------
    # Profiles, equipment, spaces
    # ------------------------------------------------------------------
    op.create_table(
        "thermostat_profiles",
        _id(),
        _uuid("org_id"),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_setpoint_columns(),
        _jsonb("adjustments"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_thermostat_profiles_org_id", "thermostat_profiles", ["org_id"])

    op.create_table(
        "equipment",
        _id(),
        _uuid("org_id", nullable=False),
        _uuid("site_id", nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("equipment_group", sa.String(64)),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_equipment_org_id", "equipment", ["org_id"])
    op.create_index("ix_equipment_equipment_group", "equipment", ["equipment_group"])

    op.create_table(
        "devices",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("equipment_id"),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("external_device_id", sa.String(128)),
        sa.Column("ct_inverted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_devices_external_device_id", "devices", ["external_device_id"])

    op.create_table(
        "spaces",
        _id(),
        _uuid("site_id", nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("hvac_zone_weight", sa.Float()),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "equipment_served_spaces",
        sa.Column("equipment_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("space_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["space_id"], ["spaces.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "space_sensors",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("space_id", nullable=False),
        sa.Column("entity_id", sa.String(255)),
        sa.Column("sensor_type", space_sensor_type_enum, nullable=False),
        sa.Column("weight", sa.Float()),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["space_id"], ["spaces.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "equipment_sensors",
        _id(),
        _uuid("equipment_id", nullable=False),
        sa.Column("entity_id", sa.String(255)),
        sa.Column("label", sa.String(255)),
        sa.Column("role", sensor_role_enum, nullable=False),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_equipment_sensors_entity_id", "equipment_sensors", ["entity_id"])

    op.create_table(
        "entity_values",
        _id(),
        _uuid("site_id", nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(64)),
        sa.Column("external_device_id", sa.String(128)),
        sa.Column("friendly_name", sa.String(255)),
        sa.Column("unit_of_measurement", sa.String(32)),
        sa.Column("last_state", sa.String(255)),
        _ts("last_seen_at"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("site_id", "entity_id"),
    )
    op.create_index("ix_entity_values_entity_id", "entity_values", ["entity_id"])
    op.create_index(
        "ix_entity_values_external_device_id", "entity_values", ["external_device_id"]
    )

    # ------------------------------------------------------------------
    # HVAC zones and thermostat state
    # ------------------------------------------------------------------
    op.create_table(
        "hvac_zones",
        _id(),
        _uuid("org_id", nullable=False),
        _uuid("site_id", nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column(
            "control_scope", control_scope_enum, nullable=False, server_default="managed"
        ),
        _uuid("equipment_id"),
        _uuid("thermostat_device_id"),
        _uuid("profile_id"),
        sa.Column("is_override", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_setpoint_columns(),
        sa.Column("guardrail_min_f", sa.Float()),
        sa.Column("guardrail_max_f", sa.Float()),
        sa.Column("manager_offset_up_f", sa.Float()),
        sa.Column("manager_offset_down_f", sa.Float()),
        sa.Column("manager_override_reset_minutes", sa.Integer()),
        _jsonb("anomaly_thresholds"),
        _jsonb("smart_start_settings"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["thermostat_device_id"], ["devices.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["profile_id"], ["thermostat_profiles.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_hvac_zones_org_id", "hvac_zones", ["org_id"])

    op.create_table(
        "thermostat_states",
        _id(),
        _uuid("site_id", nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("external_device_id", sa.String(128)),
        sa.Column("hvac_mode", sa.String(32)),
        sa.Column("hvac_action", sa.String(32)),
        sa.Column("fan_mode", sa.String(32)),
        sa.Column("current_temperature_f", sa.Float()),
        sa.Column("current_humidity", sa.Float()),
        sa.Column("current_setpoint_f", sa.Float()),
        sa.Column("target_temp_high_f", sa.Float()),
        sa.Column("target_temp_low_f", sa.Float()),
        sa.Column("battery_level", sa.Float()),
        sa.Column("directive", sa.Text()),
        _ts("directive_generated_at"),
        _ts("last_synced_at"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("site_id", "entity_id"),
    )

    op.create_table(
        "zone_setpoint_logs",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("zone_id", nullable=False),
        _ts("recorded_at", nullable=False),
        sa.Column("phase", phase_enum, nullable=False),
        sa.Column("profile_heat_f", sa.Float()),
        sa.Column("profile_cool_f", sa.Float()),
        *[
            sa.Column(name, sa.Float(), nullable=False, server_default=sa.text("0"))
            for name in ("feels_like_adj", "smart_start_adj", "occupancy_adj", "manager_adj")
        ],
        sa.Column("active_heat_f", sa.Float()),
        sa.Column("active_cool_f", sa.Float()),
        _jsonb("adjustment_factors", "'[]'::jsonb"),
        sa.Column("zone_temp_f", sa.Float()),
        sa.Column("zone_humidity", sa.Float()),
        sa.Column("feels_like_temp_f", sa.Float()),
        sa.Column("reading_source", sa.String(32)),
        sa.Column(
            "occupied_sensor_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("fan_mode", sa.String(32)),
        sa.Column("hvac_action", sa.String(32)),
        *[
            sa.Column(name, sa.Float())
            for name in (
                "supply_temp_f",
                "return_temp_f",
                "delta_t",
                "power_kw",
            )
        ],
        sa.Column("comp_on", sa.Boolean()),
        *[
            sa.Column(name, sa.Float())
            for name in (
                "compressor_current_a",
                "apparent_power_kva",
                "reactive_power_kvar",
                "energy_kwh",
                "energy_delta_kwh",
                "line_voltage_v",
                "power_factor",
                "frequency_hz",
            )
        ],
        sa.Column("cabinet_door_open", sa.Boolean()),
        sa.Column("water_leak", sa.Boolean()),
        *[
            sa.Column(name, sa.Float())
            for name in (
                "filter_pressure_pa",
                "condenser_coil_in_f",
                "condenser_coil_out_f",
                "evaporator_coil_in_f",
                "evaporator_coil_out_f",
            )
        ],
        *[
            sa.Column(name, sa.Boolean())
            for name in (
                "running_state",
                "coil_freeze",
                "filter_restriction",
                "refrigerant_low",
                "short_cycling",
                "long_cycle",
                "idle_heat_gain",
                "delayed_temp_response",
            )
        ],
        sa.Column("efficiency_ratio", sa.Float()),
        sa.Column("cycle_count_1h", sa.Integer()),
        sa.Column("continuous_run_min", sa.Float()),
        _jsonb("anomaly_flags", "'[]'::jsonb"),
        sa.Column("anomaly_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["zone_id"], ["hvac_zones.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "idx_zone_setpoint_logs_zone_recorded", "zone_setpoint_logs", ["zone_id", "recorded_at"]
    )

    op.create_table(
        "smart_start_logs",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("zone_id", nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("scheduled_open_time", sa.Time()),
        sa.Column("hvac_start_time", sa.Time()),
        sa.Column(
            "offset_used_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("target_setpoint_f", sa.Float()),
        sa.Column("confidence", sa.String(16)),
        sa.Column("hit_guardrail", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _jsonb("calculation_detail"),
        _ts("created_at", nullable=False),
        sa.ForeignKeyConstraint(["zone_id"], ["hvac_zones.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("zone_id", "date"),
    )
    op.create_index("ix_smart_start_logs_site_id", "smart_start_logs", ["site_id"])

    op.create_table(
        "anomaly_events",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("zone_id", nullable=False),
        sa.Column("anomaly_type", sa.String(64), nullable=False),
        _ts("started_at", nullable=False),
        _ts("ended_at"),
        sa.ForeignKeyConstraint(["zone_id"], ["hvac_zones.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "records_log",
        _id(),
        _uuid("org_id"),
        _uuid("site_id", nullable=False),
        _uuid("equipment_id"),
        _uuid("device_id"),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("source", sa.String(64), nullable=False, server_default="device_push"),
        sa.Column("message", sa.Text(), nullable=False),
        _jsonb("metadata"),
        sa.Column("created_by", sa.String(128)),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_records_log_site_id", "records_log", ["site_id"])
    op.create_index("ix_records_log_created_at", "records_log", ["created_at"])

    op.create_table(
        "site_daily_health",
        _id(),
        _uuid("site_id", nullable=False),
        _uuid("org_id"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "device_api_reachable", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default=sa.text("0"))
            for name in (
                "runs_today",
                "zones_pushed",
                "zones_skipped",
                "zones_failed",
                "unreachable_runs",
            )
        ],
        _ts("last_run_at"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("site_id", "date"),
    )

    # ------------------------------------------------------------------
    # Alerting
    # ------------------------------------------------------------------
    op.create_table(
        "alert_definitions",
        _id(),
        _uuid("org_id", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("severity", alert_severity_enum, nullable=False, server_default="warning"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("entity_type", alert_entity_type_enum, nullable=False),
        sa.Column("entity_id", sa.String(255)),
        sa.Column("derived_metric", sa.String(64)),
        sa.Column("anomaly_type", sa.String(64)),
        sa.Column("equipment_type", sa.String(64)),
        sa.Column("sensor_role", sensor_role_enum),
        sa.Column("condition_type", condition_type_enum, nullable=False),
        sa.Column("threshold_value", sa.Float()),
        sa.Column("target_value", sa.String(255)),
        sa.Column(
            "target_value_type", target_value_type_enum, nullable=False, server_default="string"
        ),
        sa.Column("stale_minutes", sa.Float()),
        sa.Column("delta_value", sa.Float()),
        sa.Column("delta_direction", delta_direction_enum, nullable=False, server_default="any"),
        sa.Column("window_minutes", sa.Float()),
        sa.Column("sustain_minutes", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("scope_level", scope_level_enum, nullable=False, server_default="site"),
        sa.Column("scope_mode", scope_mode_enum, nullable=False, server_default="all"),
        _jsonb("scope_ids", "'[]'::jsonb"),
        sa.Column("eval_path", eval_path_enum, nullable=False, server_default="auto"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_alert_definitions_org_id", "alert_definitions", ["org_id"])

    op.create_table(
        "alert_eval_states",
        _id(),
        _uuid("alert_def_id", nullable=False),
        sa.Column("target_level", target_level_enum, nullable=False),
        sa.Column("target_id", sa.String(255), nullable=False),
        sa.Column("condition_met", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("condition_true_since"),
        sa.Column("fired", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_value", sa.String(255)),
        sa.Column("last_value_numeric", sa.Float()),
        _ts("last_value_ts"),
        _jsonb("window_values", "'[]'::jsonb"),
        sa.Column("rolling_min", sa.Float()),
        sa.Column("rolling_max", sa.Float()),
        sa.Column("rolling_avg", sa.Float()),
        sa.Column("rolling_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("last_evaluated_at"),
        sa.ForeignKeyConstraint(["alert_def_id"], ["alert_definitions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("alert_def_id", "target_level", "target_id"),
    )

    op.create_table(
        "alert_instances",
        _id(),
        _uuid("org_id", nullable=False),
        _uuid("alert_def_id", nullable=False),
        sa.Column("target_level", target_level_enum, nullable=False),
        sa.Column("target_id", sa.String(255), nullable=False),
        sa.Column("target_name", sa.String(255)),
        sa.Column("status", instance_status_enum, nullable=False, server_default="active"),
        _ts("first_detected_at", nullable=False),
        _ts("fired_at", nullable=False),
        _ts("resolved_at"),
        sa.Column("duration_min", sa.Float()),
        sa.Column("trigger_value", sa.String(255)),
        sa.Column("trigger_value_numeric", sa.Float()),
        sa.Column("peak_value", sa.Float()),
        sa.Column("last_value", sa.Float()),
        _ts("last_evaluated_at"),
        _jsonb("context"),
        sa.ForeignKeyConstraint(["alert_def_id"], ["alert_definitions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_alert_instances_org_id", "alert_instances", ["org_id"])
    op.create_index(
        "uq_alert_instances_active",
        "alert_instances",
        ["alert_def_id", "target_level", "target_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "alert_subscriptions",
        _id(),
        _uuid("alert_def_id", nullable=False),
        _uuid("user_id", nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "dashboard_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("send_resolved", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("repeat_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("repeat_interval_min", sa.Integer()),
        sa.Column("max_repeats", sa.Integer()),
        sa.Column(
            "quiet_hours_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("quiet_start", sa.Time()),
        sa.Column("quiet_end", sa.Time()),
        sa.Column("timezone", sa.String(64)),
        sa.ForeignKeyConstraint(["alert_def_id"], ["alert_definitions.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "alert_notifications",
        _id(),
        _uuid("org_id", nullable=False),
        _uuid("instance_id", nullable=False),
        _uuid("subscription_id"),
        sa.Column("channel", notification_channel_enum, nullable=False),
        sa.Column("notification_type", notification_type_enum, nullable=False),
        sa.Column("status", notification_status_enum, nullable=False, server_default="pending"),
        _uuid("recipient_user_id"),
        sa.Column("recipient_address", sa.String(255)),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", alert_severity_enum, nullable=False, server_default="warning"),
        sa.Column("repeat_number", sa.Integer()),
        sa.Column("error", sa.Text()),
        _ts("sent_at"),
        _ts("created_at", nullable=False),
        sa.ForeignKeyConstraint(["instance_id"], ["alert_instances.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["subscription_id"], ["alert_subscriptions.id"], ondelete="SET NULL"
        ),
    )
    op.create_index("ix_alert_notifications_created_at", "alert_notifications", ["created_at"])

    op.create_table(
        "user_contacts",
        _id(),
        _uuid("user_id", nullable=False),
        _uuid("org_id", nullable=False),
        sa.Column("email", sa.String(256)),
        sa.Column("phone_number", sa.String(32)),
        sa.Column("sms_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("user_id", "org_id"),
    )


def downgrade() -> None:
    op.drop_table("user_contacts")
    op.drop_index("ix_alert_notifications_created_at", table_name="alert_notifications")
    op.drop_table("alert_notifications")
    op.drop_table("alert_subscriptions")
    op.drop_index("uq_alert_instances_active", table_name="alert_instances")
    op.drop_index("ix_alert_instances_org_id", table_name="alert_instances")
    op.drop_table("alert_instances")
    op.drop_table("alert_eval_states")
    op.drop_index("ix_alert_definitions_org_id", table_name="alert_definitions")
    op.drop_table("alert_definitions")
    op.drop_table("site_daily_health")
    op.drop_index("ix_records_log_created_at", table_name="records_log")
    op.drop_index("ix_records_log_site_id", table_name="records_log")
    op.drop_table("records_log")
    op.drop_table("anomaly_events")
    op.drop_index("ix_smart_start_logs_site_id", table_name="smart_start_logs")
    op.drop_table("smart_start_logs")
    op.drop_index("idx_zone_setpoint_logs_zone_recorded", table_name="zone_setpoint_logs")
    op.drop_table("zone_setpoint_logs")
    op.drop_table("thermostat_states")
    op.drop_index("ix_hvac_zones_org_id", table_name="hvac_zones")
    op.drop_table("hvac_zones")
    op.drop_index("ix_entity_values_external_device_id", table_name="entity_values")
    op.drop_index("ix_entity_values_entity_id", table_name="entity_values")
    op.drop_table("entity_values")
    op.drop_index("ix_equipment_sensors_entity_id", table_name="equipment_sensors")
    op.drop_table("equipment_sensors")
    op.drop_table("space_sensors")
    op.drop_table("equipment_served_spaces")
    op.drop_table("spaces")
    op.drop_index("ix_devices_external_device_id", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_equipment_equipment_group", table_name="equipment")
    op.drop_index("ix_equipment_org_id", table_name="equipment")
    op.drop_table("equipment")
    op.drop_index("ix_thermostat_profiles_org_id", table_name="thermostat_profiles")
    op.drop_table("thermostat_profiles")
    op.drop_index("ix_store_hours_events_event_date", table_name="store_hours_events")
    op.drop_table("store_hours_events")
    op.drop_table("store_hours_exception_rules")
    op.drop_table("store_hours")
    op.drop_index("ix_sites_org_id", table_name="sites")
    op.drop_table("sites")
