"""Tests for hvacops.core.smart_start: lead-time calculation and planning."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

from hvacops.core.smart_start import (
    SmartStartPlanner,
    compute_smart_start,
    current_trend,
    historical_ramp_rate,
    humidity_minutes,
)
from hvacops.models.schemas import SmartStartSettings
from hvacops.services.site_data import SiteDataStore

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
OPEN = time(9, 0)


def _rising(count: int, step_f: float = 1.0, every_min: int = 5) -> list[tuple[datetime, float]]:
    start = NOW - timedelta(minutes=every_min * count)
    return [(start + timedelta(minutes=every_min * i), 60 + step_f * i) for i in range(count)]


def _compute(**kw: object):  # type: ignore[no-untyped-def]
    params: dict[str, object] = {
        "open_time": OPEN,
        "occupied_heat_f": 68,
        "occupied_cool_f": 74,
        "indoor_temp_f": 62,
    }
    params.update(kw)
    return compute_smart_start(**params)  # type: ignore[arg-type]


# ===================================================================
# Ramp rate helpers
# ===================================================================


class TestRampRate:
    def test_historical_rate_from_heating_segments(self) -> None:
        rate = historical_ramp_rate(_rising(12), "heat")
        assert rate is not None
        assert abs(rate - 0.2) < 1e-9

    def test_cooling_segments_are_positive(self) -> None:
        rate = historical_ramp_rate(_rising(12, step_f=-0.5), "cool")
        assert rate is not None
        assert abs(rate - 0.1) < 1e-9

    def test_too_few_readings(self) -> None:
        assert historical_ramp_rate(_rising(5), "heat") is None

    def test_wrong_direction_yields_nothing(self) -> None:
        assert historical_ramp_rate(_rising(12), "cool") is None

    def test_gaps_are_ignored(self) -> None:
        assert historical_ramp_rate(_rising(12, every_min=30), "heat") is None

    def test_current_trend(self) -> None:
        readings = [(NOW - timedelta(minutes=5), 66.0), (NOW, 66.5)]
        assert current_trend(readings) == 0.1
        assert current_trend(readings[:1]) is None

    def test_humidity_minutes(self) -> None:
        assert humidity_minutes("heat", 75, 1.0) == 10
        assert humidity_minutes("cool", 70, 1.0) == 5
        assert humidity_minutes("heat", 20, 1.0) == -3
        assert humidity_minutes("heat", 75, 0.5) == 5
        assert humidity_minutes("cool", None, 1.0) == 0


# ===================================================================
# compute_smart_start
# ===================================================================


class TestComputeSmartStart:
    def test_default_heating_rate(self) -> None:
        result = _compute()
        assert result.mode == "heat"
        assert result.target_setpoint_f == 69
        assert result.rate_source == "default"
        assert result.offset_minutes == 47
        assert result.start_time == time(8, 13)
        assert result.confidence == "low"
        assert result.hit_guardrail is False

    def test_cold_outdoor_derates(self) -> None:
        result = _compute(outdoor_temp_f=20)
        assert result.rate_f_per_min == 0.09
        assert result.offset_minutes == 78

    def test_humidity_extends_lead(self) -> None:
        result = _compute(indoor_humidity=75)
        assert result.humidity_minutes == 10
        assert result.offset_minutes == 57
        assert result.confidence == "medium"

    def test_cooling(self) -> None:
        result = _compute(indoor_temp_f=80, indoor_humidity=70)
        assert result.mode == "cool"
        assert result.target_setpoint_f == 73
        assert result.offset_minutes == 75

    def test_clamped_to_max(self) -> None:
        result = _compute(indoor_temp_f=40)
        assert result.offset_minutes == 90
        assert result.hit_guardrail is True

    def test_already_at_target_uses_min_lead(self) -> None:
        result = _compute(indoor_temp_f=70)
        assert result.offset_minutes == 10
        assert result.start_time == time(8, 50)

    def test_rate_priority(self) -> None:
        override = _compute(
            settings=SmartStartSettings(rate_override=0.35), historical_rate=0.2, trend=0.1
        )
        assert (override.rate_source, override.offset_minutes) == ("override", 20)
        historical = _compute(historical_rate=0.2, trend=0.1, indoor_humidity=40, outdoor_temp_f=50)
        assert (historical.rate_source, historical.offset_minutes) == ("historical", 35)
        assert historical.confidence == "high"
        trend = _compute(trend=-0.1)
        assert (trend.rate_source, trend.rate_f_per_min) == ("current_trend", 0.1)

    def test_unknown_indoor_uses_default(self) -> None:
        result = _compute(indoor_temp_f=None)
        assert result.indoor_temp_f == 65.0

    def test_detail_is_serialisable(self) -> None:
        assert _compute().detail()["start_time"] == "08:13"


# ===================================================================
# SmartStartPlanner
# ===================================================================


class TestSmartStartPlanner:
    async def test_plan_zone_persists_result(self) -> None:
        store = AsyncMock(spec=SiteDataStore)
        store.zone_temperature_history.return_value = _rising(12)
        zone = SimpleNamespace(id=uuid.uuid4(), name="Sales Floor", smart_start_settings=None)
        site_id = uuid.uuid4()

        result = await SmartStartPlanner(store).plan_zone(
            site_id,
            zone,
            local_date=date(2026, 10, 14),
            open_time=OPEN,
            occupied_heat_f=68,
            occupied_cool_f=74,
            indoor_temp_f=62,
            indoor_humidity=None,
            outdoor_temp_f=None,
            now=NOW,
        )

        assert result.rate_source == "historical"
        assert result.offset_minutes == 35
        store.zone_temperature_history.assert_awaited_once_with(zone.id, NOW - timedelta(days=7))
        store.upsert_smart_start.assert_awaited_once_with(
            site_id=site_id,
            zone_id=zone.id,
            local_date=date(2026, 10, 14),
            open_time=OPEN,
            result=result,
        )
