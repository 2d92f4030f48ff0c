"""Integration tests for the cron job routes (/api/v1/cron).

Jobs are patched out so the tests only exercise routing, bearer
authentication and response shaping.
"""

from __future__ import annotations

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient

from hvacops.api.dependencies import get_session_factory, get_settings_dependency
from hvacops.api.main import app
from hvacops.config import Settings
from hvacops.models.schemas import AlertEvaluationSummary, EnforcementSummary

AUTH = {"Authorization": "Bearer test-cron-secret"}

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(cron_secret="test-cron-secret")


@pytest.fixture()
def session_factory() -> MagicMock:
    return MagicMock()


@pytest.fixture(autouse=True)
def _override_deps(settings: Settings, session_factory: MagicMock) -> Generator[None]:
    app.dependency_overrides[get_settings_dependency] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield
    app.dependency_overrides.clear()


# ===================================================================
# Authentication
# ===================================================================


class TestCronAuth:
    async def test_missing_bearer_is_rejected(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/cron/thermostat-enforce")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid cron secret"

    async def test_wrong_secret_is_rejected(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/api/v1/cron/alerts-evaluate", headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401

    async def test_no_secret_configured_allows_all(self, client: AsyncClient) -> None:
        app.dependency_overrides[get_settings_dependency] = lambda: Settings(cron_secret="")
        with patch("hvacops.api.routes.cron.AlertEvaluationJob") as job_cls:
            job_cls.return_value.run = AsyncMock(return_value=AlertEvaluationSummary())
            resp = await client.get("/api/v1/cron/alerts-evaluate")
        assert resp.status_code == 200


# ===================================================================
# Jobs
# ===================================================================


class TestThermostatEnforce:
    @pytest.mark.parametrize("method", ["GET", "POST"])
    async def test_runs_enforcer(
        self,
        client: AsyncClient,
        settings: Settings,
        session_factory: MagicMock,
        method: str,
    ) -> None:
        summary = EnforcementSummary(sites_checked=3, sites_pushed=1, total_zones_pushed=2)
        with patch("hvacops.api.routes.cron.ThermostatEnforcer") as enforcer_cls:
            enforcer_cls.return_value.run = AsyncMock(return_value=summary)
            resp = await client.request(method, "/api/v1/cron/thermostat-enforce", headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["sites_checked"] == 3
        assert data["total_zones_pushed"] == 2
        assert data["errors"] == []
        enforcer_cls.assert_called_once_with(session_factory, settings, redis_client=None)


class TestAlertsEvaluate:
    async def test_runs_job(self, client: AsyncClient, session_factory: MagicMock) -> None:
        summary = AlertEvaluationSummary(orgs_evaluated=2, alerts_fired=1, repeats_sent=3)
        with patch("hvacops.api.routes.cron.AlertEvaluationJob") as job_cls:
            job_cls.return_value.run = AsyncMock(return_value=summary)
            resp = await client.post("/api/v1/cron/alerts-evaluate", headers=AUTH)

        assert resp.status_code == 200
        assert resp.json()["alerts_fired"] == 1
        assert resp.json()["repeats_sent"] == 3
        job_cls.assert_called_once_with(session_factory)
