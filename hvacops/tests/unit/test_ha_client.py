"""Tests for hvacops.integrations.ha_client: connectivity check, commands, error mapping."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from hvacops.integrations.ha_client import (
    EntityState,
    HAAuthenticationError,
    HAClient,
    HAConnectionError,
    HANotFoundError,
    HAServiceError,
    ThermostatReading,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler) -> HAClient:
    return HAClient("http://gateway.test/", "token-123", transport=httpx.MockTransport(handler))


def _recording(status: int = 200, body: object = None) -> tuple[list[httpx.Request], Handler]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json=body if body is not None else [])

    return seen, handler


# ===================================================================
# Data models
# ===================================================================


class TestEntityState:
    def test_from_dict_and_domain(self) -> None:
        state = EntityState.from_dict(
            {"entity_id": "climate.rtu_1", "state": "heat", "attributes": None}
        )
        assert state.domain == "climate"
        assert state.attributes == {}
        assert state.state == "heat"

    def test_thermostat_reading_flattens_attributes(self) -> None:
        state = EntityState(
            entity_id="climate.rtu_1",
            state="heat_cool",
            attributes={
                "current_temperature": "71.5",
                "target_temp_low": 68,
                "target_temp_high": 74,
                "fan_mode": "Auto low",
                "hvac_action": "idle",
                "current_humidity": "bad",
            },
        )
        reading = ThermostatReading.from_entity_state(state)
        assert reading.hvac_mode == "heat_cool"
        assert reading.current_temperature_f == 71.5
        assert reading.target_temp_low_f == 68.0
        assert reading.target_temp_high_f == 74.0
        assert reading.current_setpoint_f is None
        assert reading.current_humidity is None
        assert reading.fan_mode == "Auto low"


# ===================================================================
# check_connection
# ===================================================================


class TestCheckConnection:
    async def test_ok_on_200(self) -> None:
        seen, handler = _recording(200, {"message": "API running."})
        async with _client(handler) as client:
            assert await client.check_connection() is True
        assert seen[0].url.path == "/api/"
        assert seen[0].headers["Authorization"] == "Bearer token-123"

    async def test_false_on_non_200(self) -> None:
        _, handler = _recording(503, {})
        async with _client(handler) as client:
            assert await client.check_connection() is False

    async def test_false_on_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            assert await client.check_connection() is False

    def test_missing_token_raises(self) -> None:
        client = HAClient("http://gateway.test", "")
        with pytest.raises(RuntimeError):
            client._ensure_client()


# ===================================================================
# Climate commands
# ===================================================================


class TestClimateCommands:
    async def test_set_hvac_mode_posts_service(self) -> None:
        seen, handler = _recording()
        async with _client(handler) as client:
            await client.set_hvac_mode("climate.rtu_1", "heat")
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/services/climate/set_hvac_mode"
        assert json.loads(seen[0].content) == {"entity_id": "climate.rtu_1", "hvac_mode": "heat"}

    async def test_set_temperature_single(self) -> None:
        seen, handler = _recording()
        async with _client(handler) as client:
            await client.set_temperature("climate.rtu_1", 70)
        assert json.loads(seen[0].content) == {"entity_id": "climate.rtu_1", "temperature": 70}

    async def test_set_temperature_pair(self) -> None:
        seen, handler = _recording()
        async with _client(handler) as client:
            await client.set_temperature(
                "climate.rtu_1", target_temp_low=68, target_temp_high=74
            )
        assert json.loads(seen[0].content) == {
            "entity_id": "climate.rtu_1",
            "target_temp_low": 68,
            "target_temp_high": 74,
        }

    async def test_set_temperature_requires_both_bounds(self) -> None:
        _, handler = _recording()
        async with _client(handler) as client:
            with pytest.raises(ValueError):
                await client.set_temperature("climate.rtu_1", target_temp_low=68)

    async def test_set_fan_mode(self) -> None:
        seen, handler = _recording()
        async with _client(handler) as client:
            await client.set_fan_mode("climate.rtu_1", "Low")
        assert seen[0].url.path == "/api/services/climate/set_fan_mode"

    async def test_get_thermostat(self) -> None:
        body = {
            "entity_id": "climate.rtu_1",
            "state": "cool",
            "attributes": {"temperature": 74, "current_temperature": 76},
        }
        seen, handler = _recording(200, body)
        async with _client(handler) as client:
            reading = await client.get_thermostat("climate.rtu_1")
        assert seen[0].url.path == "/api/states/climate.rtu_1"
        assert reading.hvac_mode == "cool"
        assert reading.current_setpoint_f == 74.0


# ===================================================================
# Error mapping
# ===================================================================


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("status", "exc"),
        [
            (401, HAAuthenticationError),
            (404, HANotFoundError),
            (400, HAServiceError),
            (500, HAServiceError),
        ],
    )
    async def test_status_codes(self, status: int, exc: type[Exception]) -> None:
        _, handler = _recording(status, {"message": "nope"})
        async with _client(handler) as client:
            with pytest.raises(exc):
                await client.set_hvac_mode("climate.rtu_1", "heat")

    async def test_timeout_maps_to_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(HAConnectionError):
                await client.set_fan_mode("climate.rtu_1", "Low")
