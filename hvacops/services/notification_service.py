"""Alert notification fan-out for HVACOps.

Writes one ``alert_notifications`` row per (instance, subscription,
channel). Dashboard rows are marked sent immediately; email and SMS rows
are queued ``pending`` for the external delivery worker.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from hvacops.core.alert_conditions import in_quiet_hours, render_fired, render_resolved
from hvacops.models.database import AlertNotification
from hvacops.models.enums import NotificationChannel, NotificationStatus, NotificationType
from hvacops.services.alert_store import AlertStore

logger = logging.getLogger(__name__)

DEFAULT_REPEAT_INTERVAL_MIN = 60


class AlertNotifier:
    """Enqueue fired/resolved/repeat notifications for an alert instance.

    Usage::

        notifier = AlertNotifier(AlertStore(session))
        await notifier.dispatch(definition, instance, NotificationType.fired, now)
        await notifier.send_repeats(org_id, now)
    """

    def __init__(self, store: AlertStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _row(
        self,
        definition: Any,
        instance: Any,
        *,
        channel: NotificationChannel,
        notification_type: NotificationType,
        title: str,
        message: str,
        now: datetime,
        subscription: Any | None = None,
        address: str | None = None,
        repeat_number: int | None = None,
    ) -> AlertNotification:
        sent = channel == NotificationChannel.dashboard
        row = AlertNotification(
            id=uuid.uuid4(),
            org_id=instance.org_id,
            instance_id=instance.id,
            subscription_id=subscription.id if subscription is not None else None,
            channel=channel,
            notification_type=notification_type,
            status=NotificationStatus.sent if sent else NotificationStatus.pending,
            recipient_user_id=subscription.user_id if subscription is not None else None,
            recipient_address=address,
            title=title,
            message=message,
            severity=definition.severity,
            repeat_number=repeat_number,
            sent_at=now if sent else None,
            created_at=now,
        )
        return self._store.add_notification(row)

    async def _channel_rows(
        self,
        definition: Any,
        instance: Any,
        subscription: Any,
        *,
        notification_type: NotificationType,
        title: str,
        message: str,
        now: datetime,
        include_remote: bool = True,
        repeat_number: int | None = None,
    ) -> list[AlertNotification]:
        rows: list[AlertNotification] = []
        common = {
            "notification_type": notification_type,
            "title": title,
            "message": message,
            "now": now,
            "subscription": subscription,
            "repeat_number": repeat_number,
        }
        if subscription.dashboard_enabled:
            rows.append(
                self._row(definition, instance, channel=NotificationChannel.dashboard, **common)
            )
        if not include_remote or not (subscription.email_enabled or subscription.sms_enabled):
            return rows

        contact = await self._store.user_contact(subscription.user_id, instance.org_id)
        if contact is None:
            logger.warning("No contact details for user %s", subscription.user_id)
            return rows
        if subscription.email_enabled and contact.email:
            rows.append(
                self._row(
                    definition,
                    instance,
                    channel=NotificationChannel.email,
                    address=contact.email,
                    **common,
                )
            )
        if subscription.sms_enabled and contact.phone_number and contact.sms_verified:
            rows.append(
                self._row(
                    definition,
                    instance,
                    channel=NotificationChannel.sms,
                    address=contact.phone_number,
                    **common,
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        definition: Any,
        instance: Any,
        notification_type: NotificationType,
        now: datetime,
    ) -> list[AlertNotification]:
        if notification_type == NotificationType.resolved:
            title, message = render_resolved(definition, instance.target_name)
        else:
            title, message = render_fired(definition, instance.target_name, instance.trigger_value)

        subscriptions = await self._store.subscriptions(definition.id)
        if not subscriptions:
            # Still visible on the dashboard
            return [
                self._row(
                    definition,
                    instance,
                    channel=NotificationChannel.dashboard,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    now=now,
                )
            ]

        rows: list[AlertNotification] = []
        for sub in subscriptions:
            if notification_type == NotificationType.resolved and not sub.send_resolved:
                continue
            if in_quiet_hours(sub, now):
                logger.debug("Quiet hours for subscription %s, skipping", sub.id)
                continue
            rows.extend(
                await self._channel_rows(
                    definition,
                    instance,
                    sub,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    now=now,
                )
            )
        logger.info(
            "Queued %d %s notification(s) for instance %s", len(rows), notification_type, instance.id
        )
        return rows

    async def send_repeats(self, org_id: uuid.UUID, now: datetime) -> int:
        """Re-notify subscribers of still-active instances; returns rows written."""
        written = 0
        definitions: dict[uuid.UUID, Any] = {}
        for instance in await self._store.active_instances(org_id):
            definition = definitions.get(instance.alert_def_id)
            if definition is None:
                definition = await self._store.get_definition(instance.alert_def_id)
                if definition is None:
                    continue
                definitions[instance.alert_def_id] = definition

            for sub in await self._store.repeat_subscriptions(definition.id):
                count = await self._store.repeat_count(instance.id, sub.id)
                if sub.max_repeats is not None and count >= sub.max_repeats:
                    continue
                last = await self._store.last_notification(instance.id, sub.id)
                interval = sub.repeat_interval_min or DEFAULT_REPEAT_INTERVAL_MIN
                if last is not None and now - last.created_at < timedelta(minutes=interval):
                    continue

                repeat_number = count + 1
                title, message = render_fired(
                    definition, instance.target_name, instance.trigger_value
                )
                rows = await self._channel_rows(
                    definition,
                    instance,
                    sub,
                    notification_type=NotificationType.repeat,
                    title=f"[Repeat #{repeat_number}] {title}",
                    message=message,
                    now=now,
                    # Quiet hours only hold back email/SMS repeats
                    include_remote=not in_quiet_hours(sub, now),
                    repeat_number=repeat_number,
                )
                written += len(rows)
        if written:
            logger.info("Queued %d repeat notification(s) for org %s", written, org_id)
        return written


__all__ = ["DEFAULT_REPEAT_INTERVAL_MIN", "AlertNotifier"]
