"""Occupied/unoccupied phase resolution from store hours and exception rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hvacops.models.enums import ExceptionRuleType, Phase

logger = logging.getLogger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True, slots=True)
class StoreDay:
    open_time: time | None
    close_time: time | None
    is_closed: bool


@dataclass(frozen=True, slots=True)
class PhaseInfo:
    phase: Phase
    local_date: date
    current_mins: int
    open_mins: int | None
    close_mins: int | None
    is_closed: bool

    @property
    def is_occupied(self) -> bool:
        return self.phase == Phase.occupied


def to_minutes(value: time | None) -> int | None:
    if value is None:
        return None
    return value.hour * 60 + value.minute


def site_zone(tz_name: str | None, default: str = "America/Chicago") -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or default)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", tz_name, default)
        return ZoneInfo(default)


def local_now(tz: ZoneInfo, now: datetime | None = None) -> datetime:
    return (now or datetime.now(UTC)).astimezone(tz)


def day_name(day: date) -> str:
    return DAY_NAMES[day.weekday()]


def resolve_store_day(target: date, base_hours: Any | None, rule: Any | None) -> StoreDay:
    """Apply an exception rule (if any) on top of the base weekly hours."""
    open_time = getattr(base_hours, "open_time", None)
    close_time = getattr(base_hours, "close_time", None)
    is_closed = bool(getattr(base_hours, "is_closed", False))

    if rule is None:
        return StoreDay(open_time, close_time, is_closed)

    if rule.rule_type == ExceptionRuleType.date_range_daily:
        if target == rule.effective_from_date:
            return StoreDay(rule.start_day_open, rule.start_day_close, False)
        if target == rule.effective_to_date:
            return StoreDay(rule.end_day_open, rule.end_day_close, False)
        return StoreDay(
            rule.middle_days_open, rule.middle_days_close, bool(rule.middle_days_closed)
        )

    # single_day
    if rule.is_closed:
        return StoreDay(None, None, True)
    return StoreDay(
        rule.open_time if rule.open_time is not None else open_time,
        rule.close_time if rule.close_time is not None else close_time,
        is_closed if rule.is_closed is None else bool(rule.is_closed),
    )


def resolve_phase(now_local: datetime, base_hours: Any | None, rule: Any | None) -> PhaseInfo:
    """Occupied iff the store is open today and ``open <= now < close``."""
    today = now_local.date()
    store_day = resolve_store_day(today, base_hours, rule)
    current = now_local.hour * 60 + now_local.minute
    open_mins = to_minutes(store_day.open_time)
    close_mins = to_minutes(store_day.close_time)

    occupied = (
        not store_day.is_closed
        and open_mins is not None
        and close_mins is not None
        and open_mins <= current < close_mins
    )
    info = PhaseInfo(
        phase=Phase.occupied if occupied else Phase.unoccupied,
        local_date=today,
        current_mins=current,
        open_mins=open_mins,
        close_mins=close_mins,
        is_closed=store_day.is_closed,
    )
    logger.debug(
        "Phase: %s (time=%dmin open=%s close=%s closed=%s)",
        info.phase,
        current,
        open_mins,
        close_mins,
        store_day.is_closed,
    )
    return info


__all__ = [
    "PhaseInfo",
    "StoreDay",
    "day_name",
    "local_now",
    "resolve_phase",
    "resolve_store_day",
    "site_zone",
    "to_minutes",
]
