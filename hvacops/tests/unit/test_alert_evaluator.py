"""Tests for hvacops.core.alert_evaluator: the eval-state machine and its side effects."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from hvacops.core.alert_evaluator import (
    AlertEvaluator,
    AlertTarget,
    Transition,
    apply_transition,
)
from hvacops.models.enums import (
    AlertEntityType,
    AlertSeverity,
    ConditionType,
    NotificationType,
    TargetLevel,
)
from hvacops.services.alert_store import AlertStore
from hvacops.services.notification_service import AlertNotifier

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)
ORG = uuid.uuid4()
SITE = uuid.uuid4()
ENTITY = "sensor.rtu_1_supply_temp"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _state(**kw: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "last_value": None,
        "last_value_numeric": None,
        "last_value_ts": None,
        "condition_met": False,
        "condition_true_since": None,
        "fired": False,
        "window_values": [],
        "rolling_count": 0,
        "rolling_min": None,
        "rolling_max": None,
        "rolling_avg": None,
        "last_evaluated_at": None,
    }
    values.update(kw)
    return SimpleNamespace(**values)


def _definition(**kw: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "org_id": ORG,
        "name": "Supply air high",
        "severity": AlertSeverity.warning,
        "entity_type": AlertEntityType.sensor,
        "entity_id": ENTITY,
        "derived_metric": None,
        "anomaly_type": None,
        "condition_type": ConditionType.above_threshold,
        "threshold_value": 80.0,
        "target_value": None,
        "target_value_type": None,
        "delta_value": None,
        "stale_minutes": None,
        "window_minutes": None,
        "delta_direction": None,
        "sustain_minutes": None,
        "eval_path": None,
        "scope_mode": None,
        "scope_level": None,
        "scope_ids": None,
    }
    values.update(kw)
    return SimpleNamespace(**values)


@pytest.fixture()
def state() -> SimpleNamespace:
    return _state()


@pytest.fixture()
def store(state: SimpleNamespace) -> AsyncMock:
    mock = AsyncMock(spec=AlertStore)
    mock.get_or_create_eval_state.return_value = state
    mock.resolve_target_name.return_value = "RTU-1 Supply"
    mock.create_instance.side_effect = lambda **fields: SimpleNamespace(id=uuid.uuid4(), **fields)
    mock.savepoint.return_value.__aexit__.return_value = False
    return mock


@pytest.fixture()
def notifier() -> AsyncMock:
    return AsyncMock(spec=AlertNotifier)


@pytest.fixture()
def evaluator(store: AsyncMock, notifier: AsyncMock) -> AlertEvaluator:
    return AlertEvaluator(store, notifier)


def _target(value: str | None) -> AlertTarget:
    return AlertTarget(TargetLevel.entity, ENTITY, SITE, value)


# ===================================================================
# apply_transition
# ===================================================================


class TestApplyTransition:
    def test_immediate_fire_without_sustain(self) -> None:
        state = _state()
        assert apply_transition(state, True, NOW, None) == Transition.fire
        assert state.fired is True
        assert state.condition_true_since == NOW

    def test_pending_until_sustained(self) -> None:
        state = _state()
        assert apply_transition(state, True, NOW, 10) == Transition.pending
        assert apply_transition(state, True, NOW + timedelta(minutes=9), 10) == Transition.pending
        assert apply_transition(state, True, NOW + timedelta(minutes=10), 10) == Transition.fire
        assert apply_transition(state, True, NOW + timedelta(minutes=15), 10) == Transition.update

    def test_clearing_a_pending_state_is_silent(self) -> None:
        state = _state()
        apply_transition(state, True, NOW, 10)
        assert apply_transition(state, False, NOW, 10) == Transition.none
        assert state.condition_true_since is None

    def test_clearing_a_fired_state_resolves(self) -> None:
        state = _state(condition_met=True, condition_true_since=NOW, fired=True)
        assert apply_transition(state, False, NOW, None) == Transition.resolve
        assert (state.condition_met, state.fired) == (False, False)

    def test_idle_stays_idle(self) -> None:
        assert apply_transition(_state(), False, NOW, None) == Transition.none


# ===================================================================
# evaluate_target
# ===================================================================


class TestEvaluateTarget:
    async def test_sustained_condition_fires_exactly_once(
        self, evaluator: AlertEvaluator, store: AsyncMock, notifier: AsyncMock
    ) -> None:
        definition = _definition(sustain_minutes=10)
        transitions = [
            await evaluator.evaluate_target(definition, _target("85"), NOW + timedelta(minutes=m))
            for m in (0, 5, 10, 15, 20)
        ]

        assert transitions == [
            Transition.pending,
            Transition.pending,
            Transition.fire,
            Transition.update,
            Transition.update,
        ]
        store.create_instance.assert_awaited_once()
        assert store.create_instance.await_args.kwargs["fired_at"] == NOW + timedelta(minutes=10)
        notifier.dispatch.assert_awaited_once()
        assert notifier.dispatch.await_args.args[2] == NotificationType.fired

    async def test_duplicate_fire_creates_nothing(
        self, evaluator: AlertEvaluator, store: AsyncMock, notifier: AsyncMock
    ) -> None:
        store.create_instance.side_effect = None
        store.create_instance.return_value = None

        transition = await evaluator.evaluate_target(_definition(), _target("85"), NOW)

        assert transition == Transition.update
        notifier.dispatch.assert_not_awaited()

    async def test_fire_records_instance_fields(
        self, evaluator: AlertEvaluator, store: AsyncMock
    ) -> None:
        await evaluator.evaluate_target(_definition(), _target("-85"), NOW)

        fields = store.create_instance.await_args.kwargs
        assert fields["target_name"] == "RTU-1 Supply"
        assert fields["trigger_value"] == "-85"
        assert fields["peak_value"] == 85.0
        assert fields["context"]["site_id"] == str(SITE)

    async def test_update_tracks_peak(
        self, evaluator: AlertEvaluator, store: AsyncMock, state: SimpleNamespace
    ) -> None:
        state.condition_met, state.fired = True, True
        instance = SimpleNamespace(last_value=82.0, peak_value=86.0, last_evaluated_at=None)
        store.active_instance.return_value = instance

        await evaluator.evaluate_target(_definition(), _target("84"), NOW)

        assert (instance.last_value, instance.peak_value) == (84.0, 86.0)
        assert instance.last_evaluated_at == NOW

    async def test_resolve_notifies(
        self,
        evaluator: AlertEvaluator,
        store: AsyncMock,
        notifier: AsyncMock,
        state: SimpleNamespace,
    ) -> None:
        state.condition_met, state.fired = True, True
        store.resolve_instance.return_value = SimpleNamespace(target_name="RTU-1 Supply", duration_min=12)

        transition = await evaluator.evaluate_target(_definition(), _target("75"), NOW)

        assert transition == Transition.resolve
        assert notifier.dispatch.await_args.args[2] == NotificationType.resolved

    async def test_cron_refreshes_timestamp_only_on_new_value(
        self, evaluator: AlertEvaluator, state: SimpleNamespace
    ) -> None:
        earlier = NOW - timedelta(minutes=30)
        state.last_value, state.last_value_ts = "72", earlier

        await evaluator.evaluate_target(_definition(), _target("72"), NOW)
        assert state.last_value_ts == earlier

        await evaluator.evaluate_target(_definition(), _target("73"), NOW)
        assert state.last_value_ts == NOW

    async def test_rate_of_change_persists_window(
        self, evaluator: AlertEvaluator, state: SimpleNamespace
    ) -> None:
        definition = _definition(
            condition_type=ConditionType.rate_of_change, window_minutes=15, delta_value=5.0
        )
        for minute, value in ((0, "70"), (5, "74"), (10, "76")):
            last = await evaluator.evaluate_target(
                definition, _target(value), NOW + timedelta(minutes=minute)
            )

        assert last == Transition.fire
        assert state.rolling_count == 3
        assert state.rolling_max == 76.0
        assert len(state.window_values) == 3


# ===================================================================
# Entry points
# ===================================================================


class TestEntityChange:
    async def test_changes_to_uses_supplied_previous_value(
        self, evaluator: AlertEvaluator, store: AsyncMock, state: SimpleNamespace
    ) -> None:
        definition = _definition(
            condition_type=ConditionType.changes_to, target_value="off", threshold_value=None
        )
        store.sensor_definitions_for_entity.return_value = [definition]
        state.last_value = "off"

        stats = await evaluator.evaluate_entity_change(ORG, SITE, ENTITY, "on", "off", NOW)

        assert stats.definitions_evaluated == 1
        assert stats.alerts_fired == 1

    async def test_same_value_does_not_fire(
        self, evaluator: AlertEvaluator, store: AsyncMock
    ) -> None:
        definition = _definition(
            condition_type=ConditionType.changes_to, target_value="off", threshold_value=None
        )
        store.sensor_definitions_for_entity.return_value = [definition]

        stats = await evaluator.evaluate_entity_change(ORG, SITE, ENTITY, "off", "off", NOW)

        assert stats.alerts_fired == 0
        store.create_instance.assert_not_awaited()

    async def test_cron_only_definitions_are_skipped(
        self, evaluator: AlertEvaluator, store: AsyncMock
    ) -> None:
        store.sensor_definitions_for_entity.return_value = [
            _definition(condition_type=ConditionType.stale, stale_minutes=30)
        ]

        stats = await evaluator.evaluate_entity_change(ORG, SITE, ENTITY, "70", "71", NOW)

        assert stats.definitions_evaluated == 0
        store.get_or_create_eval_state.assert_not_awaited()

    async def test_one_failure_does_not_stop_others(
        self, evaluator: AlertEvaluator, store: AsyncMock, state: SimpleNamespace
    ) -> None:
        store.sensor_definitions_for_entity.return_value = [_definition(), _definition()]
        store.get_or_create_eval_state.side_effect = [RuntimeError("db"), state]

        stats = await evaluator.evaluate_entity_change(ORG, SITE, ENTITY, "70", "85", NOW)

        assert stats.definitions_evaluated == 1
        assert stats.alerts_fired == 1

    async def test_failing_target_rolls_back_its_savepoint(
        self, evaluator: AlertEvaluator, store: AsyncMock, notifier: AsyncMock
    ) -> None:
        store.sensor_definitions_for_entity.return_value = [_definition()]
        store.create_instance.side_effect = RuntimeError("connection reset")

        stats = await evaluator.evaluate_entity_change(ORG, SITE, ENTITY, "70", "85", NOW)

        assert stats.targets_evaluated == 0
        assert stats.alerts_fired == 0
        exit_args = store.savepoint.return_value.__aexit__.await_args.args
        assert exit_args[0] is RuntimeError
        notifier.dispatch.assert_not_awaited()


class TestEvaluateOrg:
    async def test_derived_metric_targets_each_zone(
        self, evaluator: AlertEvaluator, store: AsyncMock
    ) -> None:
        zone = SimpleNamespace(id=uuid.uuid4(), site_id=SITE, equipment_id=None)
        definition = _definition(
            entity_type=AlertEntityType.derived,
            entity_id=None,
            derived_metric="delta_t",
            condition_type=ConditionType.below_threshold,
            threshold_value=10.0,
        )
        store.enabled_definitions.return_value = [definition]
        store.org_zones.return_value = [zone]
        store.latest_zone_metric.return_value = "6.5"

        stats = await evaluator.evaluate_org(ORG, NOW)

        assert (stats.definitions_evaluated, stats.targets_evaluated, stats.alerts_fired) == (1, 1, 1)
        store.get_or_create_eval_state.assert_awaited_once_with(
            definition.id, TargetLevel.zone, str(zone.id)
        )

    async def test_anomaly_flag_targets(self, evaluator: AlertEvaluator, store: AsyncMock) -> None:
        zone = SimpleNamespace(id=uuid.uuid4(), site_id=SITE, equipment_id=None)
        definition = _definition(
            entity_type=AlertEntityType.anomaly,
            entity_id=None,
            anomaly_type="coil_freeze",
            condition_type=ConditionType.changes_to,
            target_value="true",
            threshold_value=None,
        )
        store.enabled_definitions.return_value = [definition]
        store.org_zones.return_value = [zone]
        store.has_open_anomaly.return_value = True

        targets = await evaluator.resolve_targets(definition)

        assert [(t.level, t.value) for t in targets] == [(TargetLevel.zone, "true")]

    async def test_realtime_sensor_definitions_skip_cron(
        self, evaluator: AlertEvaluator, store: AsyncMock
    ) -> None:
        store.enabled_definitions.return_value = [_definition()]

        stats = await evaluator.evaluate_org(ORG, NOW)

        assert stats.definitions_evaluated == 0
        store.entity_value.assert_not_awaited()
