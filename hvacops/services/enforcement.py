"""Scheduled jobs: thermostat enforcement and alert evaluation.

Both run against a session factory and open one session per unit of work
(a site, or an org) so a failure rolls back only that unit.
"""

from __future__ import annotations

import asyncio
import logging
import time as _time
import uuid
from datetime import UTC, datetime, time
from typing import Any

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hvacops.config import Settings
from hvacops.core.alert_evaluator import AlertEvaluator
from hvacops.core.phase import PhaseInfo
from hvacops.core.push_engine import REASON_AT_TARGET, Sleep
from hvacops.core.setpoint_resolver import resolve_setpoints
from hvacops.core.smart_start import SmartStartPlanner
from hvacops.core.zone_sampler import ZoneSampler
from hvacops.models.schemas import AlertEvaluationSummary, EnforcementSummary
from hvacops.services.alert_store import AlertStore
from hvacops.services.cycle_lock import SiteCycleLock
from hvacops.services.notification_service import AlertNotifier
from hvacops.services.setpoint_logger import SetpointLogger
from hvacops.services.site_data import SiteDataStore
from hvacops.services.site_push import ClientFactory, SitePushOutcome, SitePushService

logger = logging.getLogger(__name__)

ENFORCE_TRIGGER = "cron_enforce"


def _elapsed_ms(started: float) -> int:
    return int((_time.perf_counter() - started) * 1000)


# ---------------------------------------------------------------------------
# Thermostat enforcement
# ---------------------------------------------------------------------------


class ThermostatEnforcer:
    """Smart start, push, daily health and snapshots for every managed site."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings,
        *,
        redis_client: redis.Redis | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._session_maker = session_maker
        self._settings = settings
        self._lock = SiteCycleLock(redis_client, settings.site_lock_ttl_s)
        self._client_factory = client_factory
        self._sleep = sleep

    async def run(self, now: datetime | None = None) -> EnforcementSummary:
        now = now or datetime.now(UTC)
        started = _time.perf_counter()
        summary = EnforcementSummary()

        async with self._session_maker() as session:
            site_ids = await SiteDataStore(session).managed_site_ids()

        for site_id in site_ids:
            summary.sites_checked += 1
            async with self._lock.hold(site_id) as owned:
                if not owned:
                    continue
                try:
                    outcome = await self.enforce_site(site_id, now)
                except Exception as exc:
                    logger.exception("Enforcement for site %s failed", site_id)
                    summary.errors.append({"site_id": str(site_id), "error": str(exc)})
                    continue
            if outcome.zones_pushed:
                summary.sites_pushed += 1
                summary.total_zones_pushed += outcome.zones_pushed

        summary.duration_ms = _elapsed_ms(started)
        logger.info(
            "Enforcement: %d site(s) checked, %d pushed, %d zone(s) pushed, %d error(s) in %dms",
            summary.sites_checked,
            summary.sites_pushed,
            summary.total_zones_pushed,
            len(summary.errors),
            summary.duration_ms,
        )
        return summary

    async def enforce_site(self, site_id: uuid.UUID, now: datetime) -> SitePushOutcome:
        async with self._session_maker() as session:
            store = SiteDataStore(session)
            service = SitePushService(
                store, self._settings, client_factory=self._client_factory, sleep=self._sleep
            )
            site = await store.get_site(site_id)
            if site is None:
                return SitePushOutcome(site_id=site_id, trigger=ENFORCE_TRIGGER)

            phase = await service.resolve_site_phase(site, now)
            await self._plan_smart_start(store, site, phase, now)
            outcome = await service.push_site(site_id, ENFORCE_TRIGGER, now=now)
            await self._record_health(store, site, phase, outcome, now)
            # Push audit rows are durable before snapshots are attempted
            await session.commit()
            try:
                await SetpointLogger(store, self._settings).log_site(site, phase, now)
                await session.commit()
            except Exception:
                logger.exception("Setpoint snapshot for site %s failed", site.name)
                await session.rollback()
        return outcome

    async def _plan_smart_start(
        self, store: SiteDataStore, site: Any, phase: PhaseInfo, now: datetime
    ) -> None:
        # Only meaningful before today's opening
        if phase.is_closed or phase.open_mins is None or phase.current_mins >= phase.open_mins:
            return
        open_time = time(phase.open_mins // 60, phase.open_mins % 60)
        planner = SmartStartPlanner(store)
        sampler = ZoneSampler(store, self._settings.sensor_max_age_min)
        zones = await store.thermostat_zones(site.id)
        profiles = await store.profiles_by_id(z.profile_id for z in zones)
        for zone in zones:
            try:
                resolved = resolve_setpoints(
                    zone, profiles.get(zone.profile_id) if zone.profile_id else None
                )
                reading, _ = await sampler.read_sensors(site.id, zone.equipment_id, None, now)
                await planner.plan_zone(
                    site.id,
                    zone,
                    local_date=phase.local_date,
                    open_time=open_time,
                    occupied_heat_f=resolved.occupied_heat_f,
                    occupied_cool_f=resolved.occupied_cool_f,
                    indoor_temp_f=reading.zone_temp_f,
                    indoor_humidity=reading.zone_humidity,
                    outdoor_temp_f=None,
                    now=now,
                )
            except Exception:
                logger.exception("Smart start for zone %s failed", zone.name)

    async def _record_health(
        self,
        store: SiteDataStore,
        site: Any,
        phase: PhaseInfo,
        outcome: SitePushOutcome,
        now: datetime,
    ) -> None:
        health = await store.daily_health(site.id, site.org_id, phase.local_date)
        health.device_api_reachable = outcome.device_api_connected
        health.runs_today = (health.runs_today or 0) + 1
        if not outcome.device_api_connected:
            health.unreachable_runs = (health.unreachable_runs or 0) + 1
        for zone_outcome in outcome.results:
            result = zone_outcome.result
            if result.pushed:
                health.zones_pushed = (health.zones_pushed or 0) + 1
            elif result.reason == REASON_AT_TARGET:
                health.zones_skipped = (health.zones_skipped or 0) + 1
            else:
                health.zones_failed = (health.zones_failed or 0) + 1
        health.last_run_at = now


# ---------------------------------------------------------------------------
# Alert evaluation
# ---------------------------------------------------------------------------


class AlertEvaluationJob:
    """Cron path for every org with enabled definitions, then repeats."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def run(self, now: datetime | None = None) -> AlertEvaluationSummary:
        now = now or datetime.now(UTC)
        started = _time.perf_counter()
        summary = AlertEvaluationSummary()

        async with self._session_maker() as session:
            org_ids = await AlertStore(session).org_ids()

        for org_id in org_ids:
            try:
                async with self._session_maker() as session:
                    store = AlertStore(session)
                    notifier = AlertNotifier(store)
                    stats = await AlertEvaluator(store, notifier).evaluate_org(org_id, now)
                    repeats = await notifier.send_repeats(org_id, now)
                    await session.commit()
            except Exception as exc:
                logger.exception("Alert evaluation for org %s failed", org_id)
                summary.errors.append({"org_id": str(org_id), "error": str(exc)})
                continue
            summary.orgs_evaluated += 1
            summary.definitions_evaluated += stats.definitions_evaluated
            summary.targets_evaluated += stats.targets_evaluated
            summary.alerts_fired += stats.alerts_fired
            summary.alerts_resolved += stats.alerts_resolved
            summary.repeats_sent += repeats

        summary.duration_ms = _elapsed_ms(started)
        logger.info(
            "Alert evaluation: %d org(s), %d fired, %d resolved, %d repeat(s) in %dms",
            summary.orgs_evaluated,
            summary.alerts_fired,
            summary.alerts_resolved,
            summary.repeats_sent,
            summary.duration_ms,
        )
        return summary


__all__ = ["ENFORCE_TRIGGER", "AlertEvaluationJob", "ThermostatEnforcer"]
