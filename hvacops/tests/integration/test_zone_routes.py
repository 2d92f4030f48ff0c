"""Integration tests for zone API routes (/api/v1/zones).

Uses mocked database dependencies so tests run without a live database.
"""

from __future__ import annotations

from collections.abc import Generator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from httpx import AsyncClient

from hvacops.api.dependencies import get_db
from hvacops.api.main import app

# ---------------------------------------------------------------------------
# Test data factories
# ---------------------------------------------------------------------------


def _make_zone(**kw: object) -> SimpleNamespace:
    values: dict[str, object] = {
        "id": uuid4(),
        "profile_id": None,
        "is_override": False,
        "occupied_heat_f": None,
        "occupied_cool_f": None,
        "unoccupied_heat_f": None,
        "unoccupied_cool_f": None,
        "guardrail_min_f": 50.0,
        "guardrail_max_f": None,
        "manager_offset_up_f": 2.0,
        "manager_offset_down_f": None,
        "manager_override_reset_minutes": None,
    }
    values.update(kw)
    return SimpleNamespace(**values)


def _make_profile() -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid4(),
        name="Retail Standard",
        occupied_heat_f=69.0,
        occupied_cool_f=75.0,
        unoccupied_heat_f=60.0,
        unoccupied_cool_f=85.0,
        occupied_fan_mode="on",
        occupied_hvac_mode="auto",
        unoccupied_fan_mode="auto",
        unoccupied_hvac_mode="auto",
        fan_mode=None,
        hvac_mode=None,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_db() -> AsyncMock:
    """Create a mock async database session."""
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture(autouse=True)
def _override_db(mock_db: AsyncMock) -> Generator[None]:
    """Override the get_db dependency for every test, then clean up."""
    app.dependency_overrides[get_db] = lambda: mock_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def store() -> Generator[AsyncMock]:
    with patch("hvacops.api.routes.zones.SiteDataStore") as store_cls:
        instance = AsyncMock()
        store_cls.return_value = instance
        yield instance


# ===================================================================
# GET /api/v1/zones/{zone_id}/setpoints
# ===================================================================


class TestZoneSetpoints:
    async def test_not_found(self, client: AsyncClient, store: AsyncMock) -> None:
        store.get_zone.return_value = None

        resp = await client.get(f"/api/v1/zones/{uuid4()}/setpoints")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Zone not found"

    async def test_profile_values(self, client: AsyncClient, store: AsyncMock) -> None:
        profile = _make_profile()
        zone = _make_zone(profile_id=profile.id)
        store.get_zone.return_value = zone
        store.get_profile.return_value = profile

        resp = await client.get(f"/api/v1/zones/{zone.id}/setpoints")

        assert resp.status_code == 200
        data = resp.json()
        assert data["zone_id"] == str(zone.id)
        assert data["source"] == "profile"
        assert data["profile_name"] == "Retail Standard"
        assert data["occupied_heat_f"] == 69.0
        assert data["occupied_fan_mode"] == "on"
        # Limits always come from the zone
        assert data["guardrail_min_f"] == 50.0
        assert data["guardrail_max_f"] == 95.0
        assert data["manager_offset_up_f"] == 2.0
        store.get_profile.assert_awaited_once_with(profile.id)

    async def test_defaults_for_bare_zone(self, client: AsyncClient, store: AsyncMock) -> None:
        zone = _make_zone()
        store.get_zone.return_value = zone
        store.get_profile.return_value = None

        resp = await client.get(f"/api/v1/zones/{zone.id}/setpoints")

        assert resp.status_code == 200
        assert resp.json()["source"] == "default"

    async def test_invalid_uuid(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/zones/not-a-uuid/setpoints")
        assert resp.status_code == 422
