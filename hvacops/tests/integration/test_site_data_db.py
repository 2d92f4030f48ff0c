"""Database-backed tests for sensor freshness filtering.

Skipped when PostgreSQL is not reachable.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from hvacops.models.database import EntityValue, Site
from hvacops.services.site_data import SiteDataStore

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)


class TestEntityStates:
    async def test_fresh_since_drops_stale_and_unseen(self, db_session: AsyncSession) -> None:
        site = Site(org_id=uuid.uuid4(), name="Store 12")
        db_session.add(site)
        await db_session.flush()
        db_session.add_all(
            [
                EntityValue(
                    site_id=site.id,
                    entity_id="sensor.fresh",
                    last_state="71",
                    last_seen_at=NOW - timedelta(minutes=5),
                ),
                EntityValue(
                    site_id=site.id,
                    entity_id="sensor.dead",
                    last_state="40",
                    last_seen_at=NOW - timedelta(days=3),
                ),
                EntityValue(site_id=site.id, entity_id="sensor.unseen", last_state="55"),
            ]
        )
        await db_session.flush()
        store = SiteDataStore(db_session)
        ids = {"sensor.fresh", "sensor.dead", "sensor.unseen"}

        fresh = await store.entity_states(
            site.id, ids, fresh_since=NOW - timedelta(minutes=60)
        )
        everything = await store.entity_states(site.id, ids)

        assert fresh == {"sensor.fresh": "71"}
        assert set(everything) == ids
