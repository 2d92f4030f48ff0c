"""Persistence for the alert engine.

Wraps an ``AsyncSession`` with the queries the evaluator and notifier
need. The session is owned by the caller, which commits at the end of a
unit of work.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from hvacops.models.database import (
    AlertDefinition,
    AlertEvalState,
    AlertInstance,
    AlertNotification,
    AlertSubscription,
    AnomalyEvent,
    EntityValue,
    Equipment,
    EquipmentSensor,
    HvacZone,
    Site,
    UserContact,
    ZoneSetpointLog,
)
from hvacops.models.enums import (
    AlertEntityType,
    InstanceStatus,
    NotificationType,
    SensorRole,
    TargetLevel,
)

logger = logging.getLogger(__name__)

# Zone log columns an alert definition may watch as a derived metric
DERIVED_METRICS = frozenset(
    {
        "zone_temp_f",
        "zone_humidity",
        "feels_like_temp_f",
        "supply_temp_f",
        "return_temp_f",
        "delta_t",
        "power_kw",
        "compressor_current_a",
        "energy_delta_kwh",
        "line_voltage_v",
        "power_factor",
        "frequency_hz",
        "filter_pressure_pa",
        "efficiency_ratio",
        "cycle_count_1h",
        "continuous_run_min",
        "anomaly_count",
        "active_heat_f",
        "active_cool_f",
    }
)


def _validate_metric(metric: str | None) -> str:
    if metric not in DERIVED_METRICS:
        raise ValueError(f"Derived metric '{metric}' is not a zone log column")
    return metric


class AlertStore:
    """Alert definitions, eval state, instances, subscriptions and notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def savepoint(self) -> AsyncSessionTransaction:
        """Scope one target's evaluation; a failure rolls back only its own state."""
        return self._session.begin_nested()

    @property
    def session(self) -> AsyncSession:
        return self._session

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def org_ids(self) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(AlertDefinition.org_id).where(AlertDefinition.enabled.is_(True)).distinct()
        )
        return list(result.scalars().all())

    async def enabled_definitions(self, org_id: uuid.UUID) -> list[AlertDefinition]:
        result = await self._session.execute(
            select(AlertDefinition)
            .where(AlertDefinition.org_id == org_id, AlertDefinition.enabled.is_(True))
            .order_by(AlertDefinition.created_at)
        )
        return list(result.scalars().all())

    async def sensor_definitions_for_entity(
        self, org_id: uuid.UUID, entity_id: str
    ) -> list[AlertDefinition]:
        result = await self._session.execute(
            select(AlertDefinition).where(
                AlertDefinition.org_id == org_id,
                AlertDefinition.enabled.is_(True),
                AlertDefinition.entity_type == AlertEntityType.sensor,
                AlertDefinition.entity_id == entity_id,
            )
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Current values
    # ------------------------------------------------------------------

    async def entity_value(
        self, org_id: uuid.UUID, entity_id: str, site_id: uuid.UUID | None = None
    ) -> EntityValue | None:
        stmt = (
            select(EntityValue)
            .join(Site, Site.id == EntityValue.site_id)
            .where(Site.org_id == org_id, EntityValue.entity_id == entity_id)
        )
        if site_id is not None:
            stmt = stmt.where(EntityValue.site_id == site_id)
        result = await self._session.execute(stmt.order_by(EntityValue.last_seen_at.desc()).limit(1))
        return result.scalar_one_or_none()

    async def equipment_role_sensors(
        self, org_id: uuid.UUID, equipment_type: str, role: SensorRole
    ) -> list[tuple[Equipment, EquipmentSensor]]:
        """First sensor with ``role`` on each equipment unit of ``equipment_type``."""
        result = await self._session.execute(
            select(Equipment, EquipmentSensor)
            .join(EquipmentSensor, EquipmentSensor.equipment_id == Equipment.id)
            .where(
                Equipment.org_id == org_id,
                Equipment.equipment_group == equipment_type,
                EquipmentSensor.role == role,
                EquipmentSensor.entity_id.is_not(None),
            )
            .order_by(Equipment.id, EquipmentSensor.id)
        )
        seen: set[uuid.UUID] = set()
        pairs: list[tuple[Equipment, EquipmentSensor]] = []
        for equipment, sensor in result.all():
            if equipment.id in seen:
                continue
            seen.add(equipment.id)
            pairs.append((equipment, sensor))
        return pairs

    async def org_zones(self, org_id: uuid.UUID) -> list[HvacZone]:
        result = await self._session.execute(
            select(HvacZone).where(HvacZone.org_id == org_id).order_by(HvacZone.name)
        )
        return list(result.scalars().all())

    async def latest_zone_metric(self, zone_id: uuid.UUID, metric: str | None) -> str | None:
        column = getattr(ZoneSetpointLog, _validate_metric(metric))
        result = await self._session.execute(
            select(column)
            .where(ZoneSetpointLog.zone_id == zone_id)
            .order_by(ZoneSetpointLog.recorded_at.desc())
            .limit(1)
        )
        value = result.scalar_one_or_none()
        return None if value is None else str(value)

    async def has_open_anomaly(self, zone_id: uuid.UUID, anomaly_type: str | None) -> bool:
        result = await self._session.execute(
            select(func.count())
            .select_from(AnomalyEvent)
            .where(
                AnomalyEvent.zone_id == zone_id,
                AnomalyEvent.anomaly_type == anomaly_type,
                AnomalyEvent.ended_at.is_(None),
            )
        )
        return (result.scalar_one() or 0) > 0

    async def resolve_target_name(self, level: TargetLevel, target_id: str) -> str:
        if level == TargetLevel.entity:
            result = await self._session.execute(
                select(EquipmentSensor.label)
                .where(EquipmentSensor.entity_id == target_id, EquipmentSensor.label.is_not(None))
                .limit(1)
            )
            return result.scalar_one_or_none() or target_id
        model = HvacZone if level == TargetLevel.zone else Site
        try:
            key = uuid.UUID(target_id)
        except ValueError:
            return target_id
        row = await self._session.get(model, key)
        return row.name if row is not None else target_id

    # ------------------------------------------------------------------
    # Eval state and instances
    # ------------------------------------------------------------------

    async def get_or_create_eval_state(
        self, alert_def_id: uuid.UUID, level: TargetLevel, target_id: str
    ) -> AlertEvalState:
        result = await self._session.execute(
            select(AlertEvalState).where(
                AlertEvalState.alert_def_id == alert_def_id,
                AlertEvalState.target_level == level,
                AlertEvalState.target_id == target_id,
            )
        )
        state = result.scalar_one_or_none()
        if state is None:
            state = AlertEvalState(
                alert_def_id=alert_def_id,
                target_level=level,
                target_id=target_id,
                condition_met=False,
                fired=False,
                window_values=[],
                rolling_count=0,
            )
            self._session.add(state)
        return state

    async def active_instance(
        self, alert_def_id: uuid.UUID, level: TargetLevel, target_id: str
    ) -> AlertInstance | None:
        result = await self._session.execute(
            select(AlertInstance).where(
                AlertInstance.alert_def_id == alert_def_id,
                AlertInstance.target_level == level,
                AlertInstance.target_id == target_id,
                AlertInstance.status == InstanceStatus.active,
            )
        )
        return result.scalar_one_or_none()

    async def create_instance(self, **fields: Any) -> AlertInstance | None:
        """Insert an active instance; ``None`` when one is already active."""
        instance = AlertInstance(status=InstanceStatus.active, **fields)
        try:
            async with self._session.begin_nested():
                self._session.add(instance)
                await self._session.flush()
        except IntegrityError:
            logger.debug(
                "Active instance already exists for %s/%s",
                fields.get("alert_def_id"),
                fields.get("target_id"),
            )
            return None
        return instance

    async def resolve_instance(
        self, alert_def_id: uuid.UUID, level: TargetLevel, target_id: str, now: datetime
    ) -> AlertInstance | None:
        instance = await self.active_instance(alert_def_id, level, target_id)
        if instance is None:
            return None
        instance.status = InstanceStatus.resolved
        instance.resolved_at = now
        instance.duration_min = round((now - instance.fired_at).total_seconds() / 60, 1)
        instance.last_evaluated_at = now
        return instance

    async def active_instances(self, org_id: uuid.UUID) -> list[AlertInstance]:
        result = await self._session.execute(
            select(AlertInstance).where(
                AlertInstance.org_id == org_id, AlertInstance.status == InstanceStatus.active
            )
        )
        return list(result.scalars().all())

    async def get_definition(self, alert_def_id: uuid.UUID) -> AlertDefinition | None:
        return await self._session.get(AlertDefinition, alert_def_id)

    # ------------------------------------------------------------------
    # Subscriptions and notifications
    # ------------------------------------------------------------------

    async def subscriptions(self, alert_def_id: uuid.UUID) -> list[AlertSubscription]:
        result = await self._session.execute(
            select(AlertSubscription).where(
                AlertSubscription.alert_def_id == alert_def_id,
                AlertSubscription.enabled.is_(True),
            )
        )
        return list(result.scalars().all())

    async def repeat_subscriptions(self, alert_def_id: uuid.UUID) -> list[AlertSubscription]:
        return [s for s in await self.subscriptions(alert_def_id) if s.repeat_enabled]

    async def user_contact(self, user_id: uuid.UUID, org_id: uuid.UUID) -> UserContact | None:
        result = await self._session.execute(
            select(UserContact).where(UserContact.user_id == user_id, UserContact.org_id == org_id)
        )
        return result.scalar_one_or_none()

    async def repeat_count(self, instance_id: uuid.UUID, subscription_id: uuid.UUID) -> int:
        """Repeat rounds already sent; one round writes a row per channel."""
        result = await self._session.execute(
            select(func.max(AlertNotification.repeat_number))
            .where(
                AlertNotification.instance_id == instance_id,
                AlertNotification.subscription_id == subscription_id,
                AlertNotification.notification_type == NotificationType.repeat,
            )
        )
        return result.scalar_one() or 0

    async def last_notification(
        self, instance_id: uuid.UUID, subscription_id: uuid.UUID
    ) -> AlertNotification | None:
        result = await self._session.execute(
            select(AlertNotification)
            .where(
                AlertNotification.instance_id == instance_id,
                AlertNotification.subscription_id == subscription_id,
            )
            .order_by(AlertNotification.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def add_notification(self, notification: AlertNotification) -> AlertNotification:
        self._session.add(notification)
        return notification


__all__ = ["DERIVED_METRICS", "AlertStore"]
