"""Tests for the alert notification fan-out."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, time, timedelta
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from hvacops.models.enums import (
    AlertSeverity,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from hvacops.services.alert_store import AlertStore
from hvacops.services.notification_service import AlertNotifier

# 15:00 UTC is 10:00 in Chicago
NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)
ORG = uuid.uuid4()

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _subscription(**kw: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "user_id": uuid.uuid4(),
        "dashboard_enabled": True,
        "email_enabled": False,
        "sms_enabled": False,
        "send_resolved": True,
        "quiet_hours_enabled": False,
        "quiet_start": None,
        "quiet_end": None,
        "timezone": "America/Chicago",
        "repeat_interval_min": 30,
        "max_repeats": None,
    }
    values.update(kw)
    return SimpleNamespace(**values)


@pytest.fixture()
def definition() -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        name="Zone too cold",
        severity=AlertSeverity.critical,
        condition_type="below_threshold",
        threshold_value=60.0,
    )


@pytest.fixture()
def instance(definition: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        org_id=ORG,
        alert_def_id=definition.id,
        target_name="Sales Floor",
        trigger_value="58",
    )


@pytest.fixture()
def store(definition: SimpleNamespace) -> AsyncMock:
    mock = AsyncMock(spec=AlertStore)
    mock.add_notification.side_effect = lambda row: row
    mock.get_definition.return_value = definition
    mock.user_contact.return_value = SimpleNamespace(
        email="gm@example.com", phone_number="+15555550100", sms_verified=True
    )
    mock.repeat_count.return_value = 0
    mock.last_notification.return_value = None
    return mock


@pytest.fixture()
def notifier(store: AsyncMock) -> AlertNotifier:
    return AlertNotifier(store)


# ===================================================================
# dispatch
# ===================================================================


class TestDispatch:
    async def test_without_subscriptions_writes_dashboard_row(
        self, notifier: AlertNotifier, store: AsyncMock, definition: Any, instance: Any
    ) -> None:
        store.subscriptions.return_value = []

        rows = await notifier.dispatch(definition, instance, NotificationType.fired, NOW)

        assert len(rows) == 1
        row = rows[0]
        assert row.channel == NotificationChannel.dashboard
        assert row.status == NotificationStatus.sent
        assert row.sent_at == NOW
        assert row.title == "[CRITICAL] Zone too cold - Sales Floor"
        assert row.subscription_id is None

    async def test_all_channels(
        self, notifier: AlertNotifier, store: AsyncMock, definition: Any, instance: Any
    ) -> None:
        sub = _subscription(email_enabled=True, sms_enabled=True)
        store.subscriptions.return_value = [sub]

        rows = await notifier.dispatch(definition, instance, NotificationType.fired, NOW)

        by_channel = {r.channel: r for r in rows}
        assert set(by_channel) == {
            NotificationChannel.dashboard,
            NotificationChannel.email,
            NotificationChannel.sms,
        }
        assert by_channel[NotificationChannel.email].status == NotificationStatus.pending
        assert by_channel[NotificationChannel.email].recipient_address == "gm@example.com"
        assert by_channel[NotificationChannel.sms].sent_at is None
        assert all(r.recipient_user_id == sub.user_id for r in rows)

    async def test_unverified_phone_gets_no_sms(
        self, notifier: AlertNotifier, store: AsyncMock, definition: Any, instance: Any
    ) -> None:
        store.subscriptions.return_value = [_subscription(dashboard_enabled=False, sms_enabled=True)]
        store.user_contact.return_value = SimpleNamespace(
            email=None, phone_number="+15555550100", sms_verified=False
        )

        rows = await notifier.dispatch(definition, instance, NotificationType.fired, NOW)

        assert rows == []

    async def test_resolved_respects_send_resolved(
        self, notifier: AlertNotifier, store: AsyncMock, definition: Any, instance: Any
    ) -> None:
        store.subscriptions.return_value = [
            _subscription(send_resolved=False),
            _subscription(),
        ]

        rows = await notifier.dispatch(definition, instance, NotificationType.resolved, NOW)

        assert len(rows) == 1
        assert rows[0].title == "Resolved: Zone too cold - Sales Floor"

    async def test_quiet_hours_skip_subscription(
        self, notifier: AlertNotifier, store: AsyncMock, definition: Any, instance: Any
    ) -> None:
        store.subscriptions.return_value = [
            _subscription(quiet_hours_enabled=True, quiet_start=time(9), quiet_end=time(17))
        ]

        rows = await notifier.dispatch(definition, instance, NotificationType.fired, NOW)

        assert rows == []
        store.add_notification.assert_not_called()


# ===================================================================
# send_repeats
# ===================================================================


class TestSendRepeats:
    async def test_first_repeat(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [_subscription()]

        written = await notifier.send_repeats(ORG, NOW)

        assert written == 1
        row = store.add_notification.call_args.args[0]
        assert row.notification_type == NotificationType.repeat
        assert row.repeat_number == 1
        assert row.title.startswith("[Repeat #1] ")

    async def test_interval_not_elapsed(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [_subscription()]
        store.last_notification.return_value = SimpleNamespace(
            created_at=NOW - timedelta(minutes=10), repeat_number=1
        )

        assert await notifier.send_repeats(ORG, NOW) == 0

    async def test_numbering_continues(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [_subscription()]
        store.last_notification.return_value = SimpleNamespace(
            created_at=NOW - timedelta(minutes=45), repeat_number=2
        )
        store.repeat_count.return_value = 2

        await notifier.send_repeats(ORG, NOW)

        assert store.add_notification.call_args.args[0].repeat_number == 3

    async def test_max_repeats_reached(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [_subscription(max_repeats=3)]
        store.repeat_count.return_value = 3

        assert await notifier.send_repeats(ORG, NOW) == 0
        store.last_notification.assert_not_awaited()

    async def test_quiet_hours_keep_dashboard_only(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [
            _subscription(
                email_enabled=True,
                quiet_hours_enabled=True,
                quiet_start=time(9),
                quiet_end=time(17),
            )
        ]

        assert await notifier.send_repeats(ORG, NOW) == 1
        store.user_contact.assert_not_awaited()

    async def test_missing_definition_is_skipped(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        store.active_instances.return_value = [instance]
        store.get_definition.return_value = None

        assert await notifier.send_repeats(ORG, NOW) == 0
        store.repeat_subscriptions.assert_not_awaited()

    async def test_max_repeats_counts_rounds_not_channel_rows(
        self, notifier: AlertNotifier, store: AsyncMock, instance: Any
    ) -> None:
        written: list[Any] = []

        def add(row: Any) -> Any:
            written.append(row)
            return row

        def rounds(instance_id: uuid.UUID, subscription_id: uuid.UUID) -> int:
            numbers = [r.repeat_number for r in written if r.repeat_number is not None]
            return max(numbers, default=0)

        store.add_notification.side_effect = add
        store.repeat_count.side_effect = rounds
        store.last_notification.side_effect = lambda *_: written[-1] if written else None
        store.active_instances.return_value = [instance]
        store.repeat_subscriptions.return_value = [
            _subscription(email_enabled=True, sms_enabled=True, max_repeats=3)
        ]

        for hour in range(5):
            await notifier.send_repeats(ORG, NOW + timedelta(hours=hour))

        assert len(written) == 9
        assert sorted({r.repeat_number for r in written}) == [1, 2, 3]
        assert {r.channel for r in written} == {
            NotificationChannel.dashboard,
            NotificationChannel.email,
            NotificationChannel.sms,
        }
