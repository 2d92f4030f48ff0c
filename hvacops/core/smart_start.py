"""Smart start: how long before opening a zone's HVAC should start recovering."""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from hvacops.core.zone_sampler import round_half_up
from hvacops.models.schemas import SmartStartSettings

if TYPE_CHECKING:
    from hvacops.services.site_data import SiteDataStore

logger = logging.getLogger(__name__)

DEFAULT_INDOOR_F = 65.0
DEFAULT_HEAT_RATE = 0.15  # °F/min
DEFAULT_COOL_RATE = 0.10
HISTORY_DAYS = 7

# Ramp-rate sampling limits
MIN_READINGS = 10
MIN_RATES = 5
MIN_STEP_MIN = 1.0
MAX_STEP_MIN = 15.0
MIN_SEGMENT_RATE = 0.05
MIN_USABLE_RATE = 0.01


@dataclass(slots=True)
class SmartStartResult:
    mode: str
    indoor_temp_f: float
    target_setpoint_f: float
    rate_f_per_min: float
    rate_source: str
    base_minutes: float
    humidity_minutes: int
    offset_minutes: int
    start_time: time
    confidence: str
    hit_guardrail: bool

    def detail(self) -> dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.strftime("%H:%M")
        return data


# ---------------------------------------------------------------------------
# Ramp rate
# ---------------------------------------------------------------------------


def historical_ramp_rate(
    readings: Sequence[tuple[datetime, float]], mode: str
) -> float | None:
    """Trimmed mean (10th to 90th percentile) of observed heating or cooling rates.

    ``readings`` are ``(recorded_at, zone_temp_f)`` pairs in ascending order.
    Only consecutive samples 1 to 15 minutes apart whose slope points the
    right way are used.
    """
    if len(readings) < MIN_READINGS:
        return None
    rates: list[float] = []
    for (t1, v1), (t2, v2) in zip(readings, readings[1:]):
        minutes = (t2 - t1).total_seconds() / 60
        if minutes < MIN_STEP_MIN or minutes > MAX_STEP_MIN:
            continue
        rate = (v2 - v1) / minutes
        if mode == "heat" and rate > MIN_SEGMENT_RATE:
            rates.append(rate)
        elif mode == "cool" and rate < -MIN_SEGMENT_RATE:
            rates.append(-rate)
    if len(rates) < MIN_RATES:
        return None
    rates.sort()
    n = len(rates)
    trimmed = rates[math.floor(n * 0.1) : math.ceil(n * 0.9)]
    if not trimmed:
        return None
    mean = sum(trimmed) / len(trimmed)
    return mean if mean > MIN_USABLE_RATE else None


def current_trend(readings: Sequence[tuple[datetime, float]]) -> float | None:
    """Slope in °F/min between the two most recent readings."""
    if len(readings) < 2:
        return None
    (t1, v1), (t2, v2) = readings[-2], readings[-1]
    minutes = (t2 - t1).total_seconds() / 60
    if minutes <= 0:
        return None
    return (v2 - v1) / minutes


def humidity_minutes(mode: str, humidity: float | None, multiplier: float) -> int:
    if humidity is None:
        return 0
    minutes = 0
    if mode == "heat" and humidity > 55:
        minutes = round_half_up((humidity - 55) / 10 * 5)
    elif mode == "cool" and humidity > 60:
        minutes = round_half_up((humidity - 60) / 10 * 5)
    elif mode == "heat" and humidity < 30:
        minutes = -round_half_up((30 - humidity) / 10 * 3)
    return round_half_up(minutes * multiplier)


def _shift(open_time: time, minutes: int) -> time:
    anchor = datetime.combine(date(2000, 1, 2), open_time)
    return (anchor - timedelta(minutes=minutes)).time()


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


def compute_smart_start(
    *,
    open_time: time,
    occupied_heat_f: float,
    occupied_cool_f: float,
    indoor_temp_f: float | None,
    indoor_humidity: float | None = None,
    outdoor_temp_f: float | None = None,
    historical_rate: float | None = None,
    trend: float | None = None,
    settings: SmartStartSettings | None = None,
) -> SmartStartResult:
    settings = settings or SmartStartSettings()
    indoor = DEFAULT_INDOOR_F if indoor_temp_f is None else indoor_temp_f
    midpoint = (occupied_heat_f + occupied_cool_f) / 2
    mode = "heat" if indoor < midpoint else "cool"
    if mode == "heat":
        target = occupied_heat_f + settings.buffer_degrees
        delta = max(0.0, target - indoor)
    else:
        target = occupied_cool_f - settings.buffer_degrees
        delta = max(0.0, indoor - target)

    if settings.rate_override:
        rate, source = settings.rate_override, "override"
    elif historical_rate is not None:
        rate, source = historical_rate, "historical"
    elif trend is not None and abs(trend) > MIN_USABLE_RATE:
        rate, source = abs(trend), "current_trend"
    else:
        rate = DEFAULT_HEAT_RATE if mode == "heat" else DEFAULT_COOL_RATE
        source = "default"
        if mode == "heat" and outdoor_temp_f is not None:
            spread = DEFAULT_INDOOR_F - outdoor_temp_f
            if spread > 40:
                rate *= 0.6
            elif spread > 20:
                rate *= 0.8

    base = delta / rate if rate > 0 else 0.0
    hum = humidity_minutes(mode, indoor_humidity, settings.humidity_multiplier)
    offset = int(
        max(settings.min_lead_minutes, min(settings.max_lead_minutes, round_half_up(base + hum)))
    )

    if source == "historical" and indoor_humidity is not None and outdoor_temp_f is not None:
        confidence = "high"
    elif source != "default" or indoor_humidity is not None:
        confidence = "medium"
    else:
        confidence = "low"

    result = SmartStartResult(
        mode=mode,
        indoor_temp_f=indoor,
        target_setpoint_f=target,
        rate_f_per_min=round(rate, 4),
        rate_source=source,
        base_minutes=round(base, 1),
        humidity_minutes=hum,
        offset_minutes=offset,
        start_time=_shift(open_time, offset),
        confidence=confidence,
        hit_guardrail=offset <= settings.min_lead_minutes or offset >= settings.max_lead_minutes,
    )
    logger.debug(
        "Smart start: mode=%s delta=%.1f rate=%.3f (%s) base=%.1f hum=%d -> %dmin",
        mode,
        delta,
        rate,
        source,
        base,
        hum,
        offset,
    )
    return result


class SmartStartPlanner:
    """Computes and records one smart-start plan per zone per local day."""

    def __init__(self, store: SiteDataStore) -> None:
        self._store = store

    async def plan_zone(
        self,
        site_id: uuid.UUID,
        zone: Any,
        *,
        local_date: date,
        open_time: time,
        occupied_heat_f: float,
        occupied_cool_f: float,
        indoor_temp_f: float | None,
        indoor_humidity: float | None,
        outdoor_temp_f: float | None,
        now: datetime,
    ) -> SmartStartResult:
        settings = SmartStartSettings.model_validate(zone.smart_start_settings or {})
        since = now - timedelta(days=HISTORY_DAYS)
        readings = await self._store.zone_temperature_history(zone.id, since)

        midpoint = (occupied_heat_f + occupied_cool_f) / 2
        indoor = DEFAULT_INDOOR_F if indoor_temp_f is None else indoor_temp_f
        mode = "heat" if indoor < midpoint else "cool"

        result = compute_smart_start(
            open_time=open_time,
            occupied_heat_f=occupied_heat_f,
            occupied_cool_f=occupied_cool_f,
            indoor_temp_f=indoor_temp_f,
            indoor_humidity=indoor_humidity,
            outdoor_temp_f=outdoor_temp_f,
            historical_rate=historical_ramp_rate(readings, mode),
            trend=current_trend(readings[-2:]),
            settings=settings,
        )
        await self._store.upsert_smart_start(
            site_id=site_id,
            zone_id=zone.id,
            local_date=local_date,
            open_time=open_time,
            result=result,
        )
        logger.info(
            "Smart start for zone %s on %s: start %s (%dmin, %s confidence)",
            zone.name,
            local_date,
            result.start_time.strftime("%H:%M"),
            result.offset_minutes,
            result.confidence,
        )
        return result


__all__ = [
    "SmartStartPlanner",
    "SmartStartResult",
    "compute_smart_start",
    "current_trend",
    "historical_ramp_rate",
    "humidity_minutes",
]
