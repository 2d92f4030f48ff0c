"""Pure alert condition evaluation.

Each evaluator returns an :class:`EvalOutcome`; nothing here touches the
database. Rate-of-change keeps its rolling window in the outcome so the
caller can persist it on the eval state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hvacops.models.enums import (
    AlertSeverity,
    ConditionType,
    DeltaDirection,
    EvalPath,
    ScopeLevel,
    ScopeMode,
    TargetValueType,
)

DEFAULT_QUIET_TZ = "America/Chicago"
REALTIME_CONDITIONS = frozenset({ConditionType.above_threshold, ConditionType.below_threshold, ConditionType.changes_to})


@dataclass(slots=True)
class EvalOutcome:
    condition_met: bool
    value: str | None
    numeric: float | None = None
    window: list[dict[str, Any]] | None = None
    rolling: dict[str, Any] = field(default_factory=dict)


def parse_numeric(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Condition evaluators
# ---------------------------------------------------------------------------


def _matches_target(value: str, target: str, value_type: TargetValueType) -> bool:
    if value_type == TargetValueType.numeric:
        a, b = parse_numeric(value), parse_numeric(target)
        return a is not None and b is not None and a == b
    if value_type == TargetValueType.boolean:
        return value.lower() == target.lower()
    return value == target


def evaluate_condition(
    definition: Any, value: str | None, previous: str | None = None
) -> EvalOutcome:
    """Threshold and ``changes_to`` conditions against a current value."""
    numeric = parse_numeric(value)
    condition = definition.condition_type

    if condition == ConditionType.above_threshold:
        met = numeric is not None and definition.threshold_value is not None and numeric > definition.threshold_value
        return EvalOutcome(met, value, numeric)
    if condition == ConditionType.below_threshold:
        met = numeric is not None and definition.threshold_value is not None and numeric < definition.threshold_value
        return EvalOutcome(met, value, numeric)
    if condition == ConditionType.changes_to:
        target = definition.target_value
        if value is None or target is None:
            return EvalOutcome(False, value, numeric)
        value_type = definition.target_value_type or TargetValueType.string
        now_matches = _matches_target(value, target, value_type)
        was_matching = previous is not None and _matches_target(previous, target, value_type)
        return EvalOutcome(now_matches and not was_matching, value, numeric)
    return EvalOutcome(False, value, numeric)


def evaluate_stale(definition: Any, last_value_ts: datetime | None, now: datetime) -> EvalOutcome:
    """Minutes since the eval state last saw a new value versus ``stale_minutes``."""
    if not definition.stale_minutes or last_value_ts is None:
        return EvalOutcome(False, "unknown")
    minutes = (now - last_value_ts).total_seconds() / 60
    return EvalOutcome(
        minutes >= definition.stale_minutes,
        f"{round(minutes)} min since last update",
        round(minutes, 1),
    )


def evaluate_rate_of_change(
    definition: Any,
    value: str | None,
    window: list[dict[str, Any]] | None,
    now: datetime,
) -> EvalOutcome:
    """Append to the rolling window, prune it and compare newest against oldest."""
    numeric = parse_numeric(value)
    window_minutes = definition.window_minutes or 0
    cutoff = now - timedelta(minutes=window_minutes)

    points = [
        p for p in (window or []) if datetime.fromisoformat(p["ts"]) >= cutoff
    ]
    if numeric is not None:
        points.append({"ts": now.isoformat(), "value": numeric})

    values = [p["value"] for p in points]
    rolling: dict[str, Any] = {"rolling_count": len(values)}
    if values:
        rolling.update(
            rolling_min=min(values),
            rolling_max=max(values),
            rolling_avg=round(sum(values) / len(values), 3),
        )

    if numeric is None or len(points) < 2 or definition.delta_value is None:
        return EvalOutcome(False, value, numeric, points, rolling)

    delta = points[-1]["value"] - points[0]["value"]
    met = abs(delta) >= definition.delta_value
    direction = definition.delta_direction or DeltaDirection.any
    if direction == DeltaDirection.increase:
        met = met and delta > 0
    elif direction == DeltaDirection.decrease:
        met = met and delta < 0
    return EvalOutcome(met, value, numeric, points, rolling)


# ---------------------------------------------------------------------------
# Routing and scope
# ---------------------------------------------------------------------------


def evaluates_realtime(definition: Any) -> bool:
    """Whether an entity change event should evaluate this definition."""
    path = definition.eval_path or EvalPath.auto
    if path == EvalPath.cron:
        return False
    if path == EvalPath.realtime:
        return True
    return definition.condition_type in REALTIME_CONDITIONS


def evaluates_on_cron(definition: Any) -> bool:
    path = definition.eval_path or EvalPath.auto
    if path == EvalPath.realtime:
        return False
    if path == EvalPath.cron:
        return True
    # auto: sensor threshold/changes_to run on the realtime path
    return not (
        definition.entity_type == "sensor" and definition.condition_type in REALTIME_CONDITIONS
    )


def matches_scope(
    definition: Any,
    *,
    site_id: str | None = None,
    equipment_id: str | None = None,
    zone_id: str | None = None,
) -> bool:
    mode = definition.scope_mode or ScopeMode.all
    ids = {str(i) for i in (definition.scope_ids or [])}
    if mode == ScopeMode.all or not ids:
        return True
    level = definition.scope_level or ScopeLevel.site
    candidate = {
        ScopeLevel.site: site_id,
        ScopeLevel.equipment: equipment_id,
        ScopeLevel.zone: zone_id,
    }.get(level)
    if candidate is None:
        return False
    inside = str(candidate) in ids
    return inside if mode == ScopeMode.include else not inside


# ---------------------------------------------------------------------------
# Notification helpers
# ---------------------------------------------------------------------------


def in_quiet_hours(subscription: Any, now: datetime) -> bool:
    """Quiet-hours window check in the subscription's timezone (wraps midnight)."""
    if not subscription.quiet_hours_enabled:
        return False
    start: time | None = subscription.quiet_start
    end: time | None = subscription.quiet_end
    if start is None or end is None:
        return False
    try:
        tz = ZoneInfo(subscription.timezone or DEFAULT_QUIET_TZ)
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo(DEFAULT_QUIET_TZ)
    local = now.astimezone(tz)
    current = local.hour * 60 + local.minute
    start_m = start.hour * 60 + start.minute
    end_m = end.hour * 60 + end.minute
    if start_m <= end_m:
        return start_m <= current < end_m
    return current >= start_m or current < end_m


_SEVERITY_TAGS = {
    AlertSeverity.critical: "[CRITICAL]",
    AlertSeverity.warning: "[WARNING]",
    AlertSeverity.info: "[INFO]",
}


def describe_condition(definition: Any, value: str | None) -> str:
    condition = definition.condition_type
    if condition == ConditionType.above_threshold:
        return f"value {value} is above {definition.threshold_value:g}"
    if condition == ConditionType.below_threshold:
        return f"value {value} is below {definition.threshold_value:g}"
    if condition == ConditionType.changes_to:
        return f"value changed to {definition.target_value}"
    if condition == ConditionType.stale:
        return f"no update for {value}"
    if condition == ConditionType.rate_of_change:
        return (
            f"value changed by at least {definition.delta_value:g} "
            f"within {definition.window_minutes:g} min (now {value})"
        )
    return f"condition met ({value})"


def render_fired(definition: Any, target_name: str | None, value: str | None) -> tuple[str, str]:
    tag = _SEVERITY_TAGS.get(definition.severity, "[INFO]")
    target = target_name or "Unknown target"
    title = f"{tag} {definition.name} - {target}"
    message = f"{definition.name}: {describe_condition(definition, value)}."
    return title, message


def render_resolved(definition: Any, target_name: str | None) -> tuple[str, str]:
    target = target_name or "Unknown target"
    return (
        f"Resolved: {definition.name} - {target}",
        f'The "{definition.name}" alert has been resolved.',
    )


__all__ = [
    "EvalOutcome",
    "evaluate_condition",
    "evaluate_rate_of_change",
    "evaluate_stale",
    "evaluates_on_cron",
    "evaluates_realtime",
    "in_quiet_hours",
    "matches_scope",
    "parse_numeric",
    "render_fired",
    "render_resolved",
]
