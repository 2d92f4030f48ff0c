"""Database-backed tests for alert instance de-duplication and per-target rollback.

Skipped when PostgreSQL is not reachable.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import AsyncSession

from hvacops.core.alert_evaluator import AlertEvaluator
from hvacops.models.database import AlertDefinition
from hvacops.models.enums import AlertEntityType, ConditionType, InstanceStatus, TargetLevel
from hvacops.services.alert_store import AlertStore
from hvacops.services.notification_service import AlertNotifier

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)


async def _definition(session: AsyncSession) -> AlertDefinition:
    definition = AlertDefinition(
        org_id=uuid.uuid4(),
        name="Walk-in door open",
        entity_type=AlertEntityType.sensor,
        entity_id="binary_sensor.walk_in_door",
        condition_type=ConditionType.changes_to,
        target_value="on",
    )
    session.add(definition)
    await session.flush()
    return definition


def _fields(definition: AlertDefinition, at: datetime) -> dict[str, object]:
    return {
        "org_id": definition.org_id,
        "alert_def_id": definition.id,
        "target_level": TargetLevel.entity,
        "target_id": "binary_sensor.walk_in_door",
        "fired_at": at,
        "first_detected_at": at,
        "trigger_value": "on",
    }


class TestActiveInstanceUniqueness:
    async def test_duplicate_active_instance_is_refused(self, db_session: AsyncSession) -> None:
        store = AlertStore(db_session)
        definition = await _definition(db_session)

        first = await store.create_instance(**_fields(definition, NOW))
        second = await store.create_instance(**_fields(definition, NOW))

        assert first is not None
        assert second is None
        active = await store.active_instance(
            definition.id, TargetLevel.entity, "binary_sensor.walk_in_door"
        )
        assert active is not None and active.id == first.id

    async def test_new_episode_after_resolve(self, db_session: AsyncSession) -> None:
        store = AlertStore(db_session)
        definition = await _definition(db_session)

        await store.create_instance(**_fields(definition, NOW))
        resolved = await store.resolve_instance(
            definition.id, TargetLevel.entity, "binary_sensor.walk_in_door", NOW + timedelta(minutes=12)
        )
        assert resolved is not None
        assert resolved.status == InstanceStatus.resolved
        assert resolved.duration_min == 12.0
        await db_session.flush()

        again = await store.create_instance(**_fields(definition, NOW + timedelta(minutes=30)))
        assert again is not None

    async def test_eval_state_is_created_once(self, db_session: AsyncSession) -> None:
        store = AlertStore(db_session)
        definition = await _definition(db_session)

        state = await store.get_or_create_eval_state(
            definition.id, TargetLevel.entity, "binary_sensor.walk_in_door"
        )
        await db_session.flush()
        same = await store.get_or_create_eval_state(
            definition.id, TargetLevel.entity, "binary_sensor.walk_in_door"
        )

        assert same is state
        assert state.fired is False


class TestTargetRollback:
    async def test_failed_fire_leaves_state_unfired(self, db_session: AsyncSession) -> None:
        store = AlertStore(db_session)
        definition = AlertDefinition(
            org_id=uuid.uuid4(),
            name="Supply air high",
            entity_type=AlertEntityType.sensor,
            entity_id="sensor.rtu_1_supply_temp",
            condition_type=ConditionType.above_threshold,
            threshold_value=80.0,
        )
        db_session.add(definition)
        await db_session.flush()
        await store.get_or_create_eval_state(
            definition.id, TargetLevel.entity, "sensor.rtu_1_supply_temp"
        )
        await db_session.flush()
        notifier = AsyncMock(spec=AlertNotifier)
        notifier.dispatch.side_effect = RuntimeError("notification insert failed")

        stats = await AlertEvaluator(store, notifier).evaluate_entity_change(
            definition.org_id, uuid.uuid4(), "sensor.rtu_1_supply_temp", "70", "85", NOW
        )

        assert stats.alerts_fired == 0
        assert (
            await store.active_instance(
                definition.id, TargetLevel.entity, "sensor.rtu_1_supply_temp"
            )
            is None
        )
        state = await store.get_or_create_eval_state(
            definition.id, TargetLevel.entity, "sensor.rtu_1_supply_temp"
        )
        assert state.fired is False
        assert state.last_value is None
