"""Pydantic schemas for HVACOps models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import Phase, SetpointSource

# ---------------------------------------------------------------------------
# JSONB configuration structs (validated when read from the database)
# ---------------------------------------------------------------------------


class AnomalyThresholds(BaseModel):
    """Per-zone anomaly detection thresholds; every unset field keeps its default."""

    model_config = ConfigDict(extra="forbid")

    coil_freeze_temp_f: float = 35
    delayed_response_min: float = 15
    idle_heat_gain_f: float = 2
    long_cycle_min: float = 120
    short_cycle_count_1h: int = 4
    filter_restriction_delta_t_max: float = 25
    refrigerant_low_delta_t_min: float = 5
    efficiency_ratio_min_pct: float = 40
    compressor_current_threshold_a: float = 1.0


class ProfileAdjustments(BaseModel):
    """Adjustment feature toggles and caps carried by a thermostat profile."""

    model_config = ConfigDict(extra="forbid")

    feels_like_enabled: bool = True
    feels_like_max_adj_f: float = Field(default=2, ge=0)
    smart_start_enabled: bool = True
    smart_start_max_adj_f: float = Field(default=1, ge=0)
    occupancy_enabled: bool = True
    occupancy_max_adj_f: float = Field(default=1, ge=0)


class SmartStartSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    buffer_degrees: float = 1
    humidity_multiplier: float = 1.0
    min_lead_minutes: int = Field(default=10, ge=0)
    max_lead_minutes: int = Field(default=90, ge=0)
    rate_override: float | None = Field(default=None, description="Fixed ramp rate in °F/min")


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class ResolvedSetpointsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    zone_id: uuid.UUID
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


class EntitySyncRequest(BaseModel):
    """A single entity value pushed from the device gateway."""

    model_config = ConfigDict(extra="forbid")

    site_id: uuid.UUID
    entity_id: str = Field(..., min_length=1, max_length=255)
    state: str = Field(..., max_length=255)
    domain: str | None = None
    external_device_id: str | None = None
    friendly_name: str | None = None
    unit_of_measurement: str | None = None
    observed_at: datetime | None = None


class EntitySyncResponse(BaseModel):
    entity_id: str
    previous_state: str | None = None
    state: str
    alerts_evaluated: int = 0


class SitePushRequest(BaseModel):
    trigger: str = Field(default="manual", min_length=1, max_length=64)
    triggered_by: str | None = Field(default=None, max_length=128)


class ZonePushResultResponse(BaseModel):
    zone_name: str
    zone_id: uuid.UUID
    entity_id: str
    pushed: bool
    reason: str
    actions: list[str] = Field(default_factory=list)
    phase: Phase | None = None


class SitePushResponse(BaseModel):
    site_id: uuid.UUID
    device_api_connected: bool
    trigger: str
    results: list[ZonePushResultResponse] = Field(default_factory=list)


class EnforcementSummary(BaseModel):
    sites_checked: int = 0
    sites_pushed: int = 0
    total_zones_pushed: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    duration_ms: int = 0


class AlertEvaluationSummary(BaseModel):
    orgs_evaluated: int = 0
    definitions_evaluated: int = 0
    targets_evaluated: int = 0
    alerts_fired: int = 0
    alerts_resolved: int = 0
    repeats_sent: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    duration_ms: int = 0
