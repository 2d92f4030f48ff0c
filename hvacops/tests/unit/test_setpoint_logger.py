"""Tests for hvacops.services.setpoint_logger."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from hvacops.config import Settings
from hvacops.core.adjustments import AdjustmentBreakdown, AdjustmentFactor
from hvacops.core.phase import PhaseInfo
from hvacops.core.push_engine import DesiredState
from hvacops.core.zone_sampler import (
    AnomalyResult,
    EquipmentReadings,
    OccupancyReading,
    ZoneSample,
    ZoneSensorReading,
)
from hvacops.models.enums import Phase, ReadingSource
from hvacops.services.setpoint_logger import SetpointLogger, build_log_row
from hvacops.services.site_data import SiteDataStore

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=UTC)
SITE = SimpleNamespace(id=uuid.uuid4(), name="Store 12")
PHASE = PhaseInfo(
    phase=Phase.occupied,
    local_date=date(2026, 10, 14),
    current_mins=600,
    open_mins=540,
    close_mins=1260,
    is_closed=False,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _zone(name: str = "Sales Floor") -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        name=name,
        profile_id=None,
        thermostat_device_id=uuid.uuid4(),
        equipment_id=uuid.uuid4(),
        anomaly_thresholds=None,
    )


def _sample(anomalies: AnomalyResult | None = None) -> ZoneSample:
    return ZoneSample(
        reading=ZoneSensorReading(71.0, 45.0, 70.0, ReadingSource.space_sensors),
        occupancy=OccupancyReading(occupancy_adj=0, occupied_sensor_count=2),
        equipment=EquipmentReadings(supply_temp_f=95.0, return_temp_f=70.0, delta_t=25.0),
        anomalies=anomalies or AnomalyResult(),
    )


def _plan() -> SimpleNamespace:
    factor = AdjustmentFactor("feels_like", -1.0, "Feels like 70°F vs actual 71°F", 70.0)
    zero = AdjustmentFactor("smart_start", 0, "Not active")
    return SimpleNamespace(
        adjustments=AdjustmentBreakdown(
            feels_like=factor,
            smart_start=zero,
            occupancy=AdjustmentFactor("occupancy", 0, "2 sensor(s) active"),
            manager=AdjustmentFactor("manager", 0, "No offset"),
        ),
        profile_heat_f=68.0,
        profile_cool_f=74.0,
        desired=DesiredState("heat", 67.0, 73.0, "auto"),
    )


@pytest.fixture()
def store() -> AsyncMock:
    mock = AsyncMock(spec=SiteDataStore)
    mock.profiles_by_id.return_value = {}
    mock.smart_start_offsets.return_value = {}
    mock.get_device.return_value = SimpleNamespace(external_device_id="dev-1")
    mock.climate_entity.return_value = SimpleNamespace(entity_id="climate.rtu_1")
    mock.thermostat_state.return_value = SimpleNamespace(fan_mode="auto", hvac_action="heating")
    mock.open_anomaly_events.return_value = {}
    return mock


def _logger(store: AsyncMock, samples: list[object]) -> SetpointLogger:
    service = SetpointLogger(store, Settings())
    service._sampler = AsyncMock()
    service._sampler.sample.side_effect = samples
    service._planner = AsyncMock()
    service._planner.plan.return_value = _plan()
    return service


# ===================================================================
# build_log_row
# ===================================================================


class TestBuildLogRow:
    def test_row_fields(self) -> None:
        zone = _zone()
        anomalies = AnomalyResult(coil_freeze=True, anomaly_flags=["coil_freeze"])
        row = build_log_row(
            SITE.id,
            zone,
            PHASE,
            _plan(),  # type: ignore[arg-type]
            _sample(anomalies),
            SimpleNamespace(fan_mode="auto", hvac_action="heating"),
            NOW,
        )

        assert row.zone_id == zone.id
        assert row.phase == Phase.occupied
        assert (row.active_heat_f, row.active_cool_f) == (67.0, 73.0)
        assert row.feels_like_adj == -1.0
        assert row.reading_source == ReadingSource.space_sensors
        assert row.occupied_sensor_count == 2
        assert row.delta_t == 25.0
        assert row.hvac_action == "heating"
        assert row.coil_freeze is True
        assert row.anomaly_flags == ["coil_freeze"]
        assert row.anomaly_count == 1
        assert [f["name"] for f in row.adjustment_factors] == [
            "feels_like",
            "smart_start",
            "occupancy",
            "manager",
        ]

    def test_missing_thermostat(self) -> None:
        row = build_log_row(
            SITE.id, _zone(), PHASE, _plan(), _sample(), None, NOW  # type: ignore[arg-type]
        )
        assert row.fan_mode is None
        assert row.hvac_action is None


# ===================================================================
# SetpointLogger
# ===================================================================


class TestLogSite:
    async def test_one_row_per_zone(self, store: AsyncMock) -> None:
        store.thermostat_zones.return_value = [_zone(), _zone("Stockroom")]

        written = await _logger(store, [_sample(), _sample()]).log_site(SITE, PHASE, NOW)

        assert written == 2
        assert store.add_setpoint_log.call_count == 2

    async def test_failing_zone_is_skipped(self, store: AsyncMock) -> None:
        store.thermostat_zones.return_value = [_zone("Broken"), _zone()]

        written = await _logger(store, [RuntimeError("sensor query"), _sample()]).log_site(
            SITE, PHASE, NOW
        )

        assert written == 1
        store.add_setpoint_log.assert_called_once()

    async def test_anomaly_events_open_and_close(self, store: AsyncMock) -> None:
        zone = _zone()
        store.thermostat_zones.return_value = [zone]
        short_cycle_event = SimpleNamespace(ended_at=None)
        unknown_event = SimpleNamespace(ended_at=None)
        store.open_anomaly_events.return_value = {
            "short_cycling": short_cycle_event,
            "refrigerant_low": unknown_event,
        }
        anomalies = AnomalyResult(
            coil_freeze=True, short_cycling=False, anomaly_flags=["coil_freeze"]
        )

        await _logger(store, [_sample(anomalies)]).log_site(SITE, PHASE, NOW)

        store.open_anomaly.assert_called_once_with(SITE.id, zone.id, "coil_freeze", NOW)
        assert short_cycle_event.ended_at == NOW
        # Unknown keeps the event open
        assert unknown_event.ended_at is None

    async def test_already_open_flag_is_not_reopened(self, store: AsyncMock) -> None:
        store.thermostat_zones.return_value = [_zone()]
        store.open_anomaly_events.return_value = {"coil_freeze": SimpleNamespace(ended_at=None)}
        anomalies = AnomalyResult(coil_freeze=True, anomaly_flags=["coil_freeze"])

        await _logger(store, [_sample(anomalies)]).log_site(SITE, PHASE, NOW)

        store.open_anomaly.assert_not_called()

    async def test_unmapped_thermostat_passes_none(self, store: AsyncMock) -> None:
        store.thermostat_zones.return_value = [_zone()]
        store.get_device.return_value = None
        service = _logger(store, [_sample()])

        await service.log_site(SITE, PHASE, NOW)

        assert service._sampler.sample.await_args.args[2] is None
        store.thermostat_state.assert_not_awaited()
