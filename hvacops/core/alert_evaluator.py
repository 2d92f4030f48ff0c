"""Alert evaluation engine.

Every (definition, target) pair owns an eval-state row that moves through
``idle -> pending -> fired -> idle``. Two entry points feed it:

* :meth:`AlertEvaluator.evaluate_entity_change` runs on a single entity
  value change (the realtime path).
* :meth:`AlertEvaluator.evaluate_org` re-derives current values for every
  target of every enabled definition (the cron path).

Instances are created behind a partial unique index, so a duplicate fire is
a no-op and never produces a second batch of notifications.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from hvacops.core.alert_conditions import (
    EvalOutcome,
    evaluate_condition,
    evaluate_rate_of_change,
    evaluate_stale,
    evaluates_on_cron,
    evaluates_realtime,
    matches_scope,
    parse_numeric,
)
from hvacops.models.enums import (
    AlertEntityType,
    ConditionType,
    NotificationType,
    TargetLevel,
)

if TYPE_CHECKING:
    from hvacops.services.alert_store import AlertStore
    from hvacops.services.notification_service import AlertNotifier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class Transition(StrEnum):
    none = "none"
    pending = "pending"
    fire = "fire"
    update = "update"
    resolve = "resolve"


def apply_transition(
    state: Any, condition_met: bool, now: datetime, sustain_minutes: float | None
) -> Transition:
    """Advance an eval state by one evaluation and report what must happen.

    Mutates ``condition_met``, ``condition_true_since`` and ``fired`` on
    ``state``. The caller performs the instance side effects.
    """
    sustain = sustain_minutes or 0

    if condition_met:
        if not state.condition_met:
            state.condition_met = True
            state.condition_true_since = now
            if sustain <= 0:
                state.fired = True
                return Transition.fire
            return Transition.pending
        if state.fired:
            return Transition.update
        since = state.condition_true_since or now
        if (now - since).total_seconds() / 60 >= sustain:
            state.fired = True
            return Transition.fire
        return Transition.pending

    was_fired = bool(state.fired)
    if not state.condition_met and not was_fired:
        return Transition.none
    state.condition_met = False
    state.condition_true_since = None
    state.fired = False
    return Transition.resolve if was_fired else Transition.none


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class AlertTarget:
    level: TargetLevel
    target_id: str
    site_id: uuid.UUID | None = None
    value: str | None = None


@dataclass(slots=True)
class EvaluationStats:
    definitions_evaluated: int = 0
    targets_evaluated: int = 0
    alerts_fired: int = 0
    alerts_resolved: int = 0

    def merge(self, other: EvaluationStats) -> None:
        self.definitions_evaluated += other.definitions_evaluated
        self.targets_evaluated += other.targets_evaluated
        self.alerts_fired += other.alerts_fired
        self.alerts_resolved += other.alerts_resolved


def instance_context(definition: Any, site_id: uuid.UUID | None) -> dict[str, Any]:
    return {
        "alert_name": definition.name,
        "entity_type": str(definition.entity_type),
        "entity_id": definition.entity_id,
        "derived_metric": definition.derived_metric,
        "anomaly_type": definition.anomaly_type,
        "condition_type": str(definition.condition_type),
        "threshold_value": definition.threshold_value,
        "target_value": definition.target_value,
        "delta_value": definition.delta_value,
        "site_id": str(site_id) if site_id else None,
    }


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class AlertEvaluator:
    """Runs alert definitions against their targets and records the outcome."""

    def __init__(self, store: AlertStore, notifier: AlertNotifier) -> None:
        self._store = store
        self._notifier = notifier

    # -- single target ---------------------------------------------------------

    async def evaluate_target(
        self,
        definition: Any,
        target: AlertTarget,
        now: datetime,
        *,
        realtime: bool = False,
        previous_value: str | None = None,
    ) -> Transition:
        state = await self._store.get_or_create_eval_state(
            definition.id, target.level, target.target_id
        )
        previous = previous_value if realtime else state.last_value
        value = target.value
        condition = definition.condition_type

        # Only a new or different value refreshes last_value_ts
        if value is not None and (realtime or value != state.last_value):
            state.last_value = value
            state.last_value_numeric = parse_numeric(value)
            state.last_value_ts = now

        outcome: EvalOutcome
        if condition == ConditionType.stale:
            outcome = evaluate_stale(definition, state.last_value_ts, now)
        elif condition == ConditionType.rate_of_change:
            outcome = evaluate_rate_of_change(definition, value, state.window_values, now)
            state.window_values = outcome.window or []
            state.rolling_count = outcome.rolling.get("rolling_count", 0)
            state.rolling_min = outcome.rolling.get("rolling_min")
            state.rolling_max = outcome.rolling.get("rolling_max")
            state.rolling_avg = outcome.rolling.get("rolling_avg")
        else:
            outcome = evaluate_condition(definition, value, previous)

        transition = apply_transition(state, outcome.condition_met, now, definition.sustain_minutes)
        state.last_evaluated_at = now

        if transition == Transition.fire:
            if not await self._fire(definition, target, outcome, now):
                transition = Transition.update
        elif transition == Transition.update:
            await self._update_active(definition, target, outcome, now)
        elif transition == Transition.resolve:
            if not await self._resolve(definition, target, now):
                transition = Transition.none
        elif transition == Transition.pending:
            logger.debug(
                'Pending: "%s" on %s since %s', definition.name, target.target_id, state.condition_true_since
            )
        return transition

    async def _fire(
        self, definition: Any, target: AlertTarget, outcome: EvalOutcome, now: datetime
    ) -> bool:
        target_name = await self._store.resolve_target_name(target.level, target.target_id)
        instance = await self._store.create_instance(
            org_id=definition.org_id,
            alert_def_id=definition.id,
            target_level=target.level,
            target_id=target.target_id,
            target_name=target_name,
            first_detected_at=now,
            fired_at=now,
            trigger_value=outcome.value,
            trigger_value_numeric=outcome.numeric,
            peak_value=abs(outcome.numeric) if outcome.numeric is not None else None,
            last_value=outcome.numeric,
            last_evaluated_at=now,
            context=instance_context(definition, target.site_id),
        )
        if instance is None:
            logger.debug('Duplicate fire ignored: "%s" on %s', definition.name, target.target_id)
            return False
        logger.info('FIRED: "%s" on %s (%s)', definition.name, target_name, outcome.value)
        await self._notifier.dispatch(definition, instance, NotificationType.fired, now)
        return True

    async def _update_active(
        self, definition: Any, target: AlertTarget, outcome: EvalOutcome, now: datetime
    ) -> None:
        if outcome.numeric is None:
            return
        instance = await self._store.active_instance(definition.id, target.level, target.target_id)
        if instance is None:
            return
        instance.last_value = outcome.numeric
        instance.peak_value = max(instance.peak_value or 0, abs(outcome.numeric))
        instance.last_evaluated_at = now

    async def _resolve(self, definition: Any, target: AlertTarget, now: datetime) -> bool:
        instance = await self._store.resolve_instance(
            definition.id, target.level, target.target_id, now
        )
        if instance is None:
            return False
        logger.info(
            'RESOLVED: "%s" on %s after %s min',
            definition.name,
            instance.target_name or target.target_id,
            instance.duration_min,
        )
        await self._notifier.dispatch(definition, instance, NotificationType.resolved, now)
        return True

    # -- realtime path ---------------------------------------------------------

    async def evaluate_entity_change(
        self,
        org_id: uuid.UUID,
        site_id: uuid.UUID,
        entity_id: str,
        old_value: str | None,
        new_value: str | None,
        now: datetime,
    ) -> EvaluationStats:
        stats = EvaluationStats()
        definitions = await self._store.sensor_definitions_for_entity(org_id, entity_id)
        for definition in definitions:
            if not evaluates_realtime(definition):
                continue
            if not matches_scope(definition, site_id=str(site_id)):
                continue
            target = AlertTarget(TargetLevel.entity, entity_id, site_id, new_value)
            try:
                async with self._store.savepoint():
                    transition = await self.evaluate_target(
                        definition, target, now, realtime=True, previous_value=old_value
                    )
            except Exception:
                logger.exception('Realtime evaluation of "%s" failed', definition.name)
                continue
            stats.definitions_evaluated += 1
            stats.targets_evaluated += 1
            self._count(stats, transition)
        return stats

    # -- cron path -------------------------------------------------------------

    async def resolve_targets(self, definition: Any) -> list[AlertTarget]:
        """Expand a definition into its current targets with their current values."""
        store = self._store
        entity_type = definition.entity_type

        if entity_type == AlertEntityType.sensor and definition.entity_id:
            value = await store.entity_value(definition.org_id, definition.entity_id)
            if value is None or not matches_scope(definition, site_id=str(value.site_id)):
                return []
            return [
                AlertTarget(TargetLevel.entity, definition.entity_id, value.site_id, value.last_state)
            ]

        if entity_type == AlertEntityType.sensor:
            if not definition.equipment_type or not definition.sensor_role:
                return []
            targets: list[AlertTarget] = []
            for equipment, sensor in await store.equipment_role_sensors(
                definition.org_id, definition.equipment_type, definition.sensor_role
            ):
                if not matches_scope(
                    definition, site_id=str(equipment.site_id), equipment_id=str(equipment.id)
                ):
                    continue
                value = await store.entity_value(definition.org_id, sensor.entity_id, equipment.site_id)
                targets.append(
                    AlertTarget(
                        TargetLevel.entity,
                        sensor.entity_id,
                        equipment.site_id,
                        value.last_state if value is not None else None,
                    )
                )
            return targets

        targets = []
        for zone in await store.org_zones(definition.org_id):
            if not matches_scope(
                definition,
                site_id=str(zone.site_id),
                equipment_id=str(zone.equipment_id) if zone.equipment_id else None,
                zone_id=str(zone.id),
            ):
                continue
            if entity_type == AlertEntityType.derived:
                value = await store.latest_zone_metric(zone.id, definition.derived_metric)
            else:
                value = "true" if await store.has_open_anomaly(zone.id, definition.anomaly_type) else "false"
            targets.append(AlertTarget(TargetLevel.zone, str(zone.id), zone.site_id, value))
        return targets

    async def evaluate_org(self, org_id: uuid.UUID, now: datetime) -> EvaluationStats:
        stats = EvaluationStats()
        for definition in await self._store.enabled_definitions(org_id):
            if not evaluates_on_cron(definition):
                continue
            stats.definitions_evaluated += 1
            try:
                targets = await self.resolve_targets(definition)
            except Exception:
                logger.exception('Target resolution for "%s" failed', definition.name)
                continue
            for target in targets:
                if target.value is None and definition.condition_type != ConditionType.stale:
                    continue
                try:
                    async with self._store.savepoint():
                        transition = await self.evaluate_target(definition, target, now)
                except Exception:
                    logger.exception(
                        'Evaluation of "%s" on %s failed', definition.name, target.target_id
                    )
                    continue
                stats.targets_evaluated += 1
                self._count(stats, transition)
        return stats

    @staticmethod
    def _count(stats: EvaluationStats, transition: Transition) -> None:
        if transition == Transition.fire:
            stats.alerts_fired += 1
        elif transition == Transition.resolve:
            stats.alerts_resolved += 1


__all__ = [
    "AlertEvaluator",
    "AlertTarget",
    "EvaluationStats",
    "Transition",
    "apply_transition",
    "instance_context",
]
