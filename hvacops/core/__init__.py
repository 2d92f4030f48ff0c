"""Core control and alerting logic for HVACOps."""

from __future__ import annotations

from .alert_evaluator import AlertEvaluator, AlertTarget, Transition, apply_transition
from .phase import PhaseInfo, resolve_phase
from .push_engine import (
    DesiredState,
    DeviceState,
    Guardrails,
    PushResult,
    ThermostatPushEngine,
    push_thermostat_state,
)
from .setpoint_resolver import ResolvedSetpoints, resolve_setpoints
from .smart_start import SmartStartResult, compute_smart_start
from .zone_sampler import ZoneSample, ZoneSampler, compute_feels_like

__all__ = [
    "AlertEvaluator",
    "AlertTarget",
    "DesiredState",
    "DeviceState",
    "Guardrails",
    "PhaseInfo",
    "PushResult",
    "ResolvedSetpoints",
    "SmartStartResult",
    "ThermostatPushEngine",
    "Transition",
    "ZoneSample",
    "ZoneSampler",
    "apply_transition",
    "compute_feels_like",
    "compute_smart_start",
    "push_thermostat_state",
    "resolve_phase",
    "resolve_setpoints",
]
