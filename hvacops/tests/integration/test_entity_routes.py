"""Integration tests for entity ingestion (/api/v1/entities)."""

from __future__ import annotations

from collections.abc import Generator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from httpx import AsyncClient

from hvacops.api.dependencies import get_db
from hvacops.api.main import app
from hvacops.core.alert_evaluator import EvaluationStats

SITE = SimpleNamespace(id=uuid4(), org_id=uuid4(), name="Store 12")

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_db() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture(autouse=True)
def _override_db(mock_db: AsyncMock) -> Generator[None]:
    app.dependency_overrides[get_db] = lambda: mock_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def store() -> Generator[AsyncMock]:
    with patch("hvacops.api.routes.entities.SiteDataStore") as store_cls:
        instance = AsyncMock()
        instance.get_site.return_value = SITE
        instance.upsert_entity_value.return_value = ("off", MagicMock())
        store_cls.return_value = instance
        yield instance


@pytest.fixture()
def evaluator() -> Generator[AsyncMock]:
    with patch("hvacops.api.routes.entities.AlertEvaluator") as evaluator_cls:
        instance = AsyncMock()
        instance.evaluate_entity_change.return_value = EvaluationStats(definitions_evaluated=2)
        evaluator_cls.return_value = instance
        yield instance


# ===================================================================
# POST /api/v1/entities/sync
# ===================================================================


class TestEntitySync:
    async def test_upserts_and_evaluates(
        self,
        client: AsyncClient,
        store: AsyncMock,
        evaluator: AsyncMock,
        mock_db: AsyncMock,
    ) -> None:
        resp = await client.post(
            "/api/v1/entities/sync",
            json={
                "site_id": str(SITE.id),
                "entity_id": "binary_sensor.walk_in_door",
                "state": "on",
                "friendly_name": "Walk-in door",
            },
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "entity_id": "binary_sensor.walk_in_door",
            "previous_state": "off",
            "state": "on",
            "alerts_evaluated": 2,
        }
        args, kwargs = store.upsert_entity_value.await_args
        assert args == (SITE.id, "binary_sensor.walk_in_door", "on")
        assert kwargs["domain"] == "binary_sensor"
        assert kwargs["friendly_name"] == "Walk-in door"

        ev_args = evaluator.evaluate_entity_change.await_args.args
        assert ev_args[:5] == (SITE.org_id, SITE.id, "binary_sensor.walk_in_door", "off", "on")
        mock_db.commit.assert_awaited_once()

    async def test_explicit_domain_and_timestamp(
        self, client: AsyncClient, store: AsyncMock, evaluator: AsyncMock
    ) -> None:
        resp = await client.post(
            "/api/v1/entities/sync",
            json={
                "site_id": str(SITE.id),
                "entity_id": "sensor.rtu_1_supply_temp",
                "state": "55.2",
                "domain": "sensor",
                "observed_at": "2026-10-14T15:00:00Z",
            },
        )

        assert resp.status_code == 200
        kwargs = store.upsert_entity_value.await_args.kwargs
        assert kwargs["seen_at"].isoformat() == "2026-10-14T15:00:00+00:00"

    async def test_unknown_site(
        self, client: AsyncClient, store: AsyncMock, evaluator: AsyncMock, mock_db: AsyncMock
    ) -> None:
        store.get_site.return_value = None

        resp = await client.post(
            "/api/v1/entities/sync",
            json={"site_id": str(uuid4()), "entity_id": "sensor.x", "state": "1"},
        )

        assert resp.status_code == 404
        evaluator.evaluate_entity_change.assert_not_awaited()
        mock_db.commit.assert_not_awaited()

    async def test_rejects_unknown_fields(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/entities/sync",
            json={"site_id": str(SITE.id), "entity_id": "sensor.x", "state": "1", "bogus": True},
        )
        assert resp.status_code == 422
