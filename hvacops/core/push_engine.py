"""Thermostat push engine.

Compares a thermostat's last known state with the desired state and issues
the ordered command sequence (mode, then temperature, then fan) needed to
converge. Guardrails are applied before anything else and always win.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from hvacops.integrations.ha_client import HAClient, HAClientError

logger = logging.getLogger(__name__)

GUARDRAIL_RECOVERY_OFFSET_F = 10.0
DEFAULT_MODE_SETTLE_S = 1.5

REASON_AT_TARGET = "Already at target"
REASON_GUARDRAIL = "Guardrail override applied"
REASON_UPDATED = "Setpoints updated"

Sleep = Callable[[float], Awaitable[Any]]


# ---------------------------------------------------------------------------
# State containers
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DeviceState:
    """Last known thermostat state, as read back from the device."""

    hvac_mode: str | None = None
    fan_mode: str | None = None
    current_temperature_f: float | None = None
    current_setpoint_f: float | None = None
    target_temp_high_f: float | None = None
    target_temp_low_f: float | None = None

    @classmethod
    def from_row(cls, row: Any | None) -> DeviceState:
        if row is None:
            return cls()
        return cls(
            hvac_mode=getattr(row, "hvac_mode", None),
            fan_mode=getattr(row, "fan_mode", None),
            current_temperature_f=getattr(row, "current_temperature_f", None),
            current_setpoint_f=getattr(row, "current_setpoint_f", None),
            target_temp_high_f=getattr(row, "target_temp_high_f", None),
            target_temp_low_f=getattr(row, "target_temp_low_f", None),
        )


@dataclass(slots=True)
class DesiredState:
    hvac_mode: str
    heat_setpoint_f: float
    cool_setpoint_f: float
    fan_mode: str | None = None


@dataclass(slots=True)
class Guardrails:
    min_f: float
    max_f: float


@dataclass(slots=True)
class PushResult:
    pushed: bool
    reason: str
    actions: list[str] = field(default_factory=list)
    previous_state: dict[str, Any] = field(default_factory=dict)
    desired_state: dict[str, Any] = field(default_factory=dict)
    guardrail_triggered: bool = False

    @property
    def failed(self) -> bool:
        return any(action.endswith(":FAILED") for action in self.actions)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def fmt_temp(value: float) -> str:
    """Render a setpoint without a trailing ``.0`` (70.0 -> "70")."""
    return f"{value:g}"


def apply_guardrails(
    desired: DesiredState, current_temp_f: float | None, guardrails: Guardrails
) -> tuple[DesiredState, bool]:
    """Force heat/cool recovery when the measured temperature hits a bound."""
    if current_temp_f is None:
        return desired, False
    if current_temp_f <= guardrails.min_f:
        logger.warning(
            "Guardrail: %s°F <= min %s°F, forcing heat at %s°F",
            current_temp_f,
            guardrails.min_f,
            guardrails.min_f + GUARDRAIL_RECOVERY_OFFSET_F,
        )
        return (
            replace(
                desired,
                hvac_mode="heat",
                heat_setpoint_f=guardrails.min_f + GUARDRAIL_RECOVERY_OFFSET_F,
            ),
            True,
        )
    if current_temp_f >= guardrails.max_f:
        logger.warning(
            "Guardrail: %s°F >= max %s°F, forcing cool at %s°F",
            current_temp_f,
            guardrails.max_f,
            guardrails.max_f - GUARDRAIL_RECOVERY_OFFSET_F,
        )
        return (
            replace(
                desired,
                hvac_mode="cool",
                cool_setpoint_f=guardrails.max_f - GUARDRAIL_RECOVERY_OFFSET_F,
            ),
            True,
        )
    return desired, False


def is_at_target(current: DeviceState, desired: DesiredState) -> bool:
    """Mode, fan (when one is desired) and the mode's setpoint(s) all match."""
    if current.hvac_mode != desired.hvac_mode:
        return False
    if desired.fan_mode and current.fan_mode != desired.fan_mode:
        return False
    mode = desired.hvac_mode
    if mode == "heat":
        return current.current_setpoint_f == desired.heat_setpoint_f
    if mode == "cool":
        return current.current_setpoint_f == desired.cool_setpoint_f
    if mode == "heat_cool":
        return (
            current.target_temp_high_f == desired.cool_setpoint_f
            and current.target_temp_low_f == desired.heat_setpoint_f
        )
    return True


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ThermostatPushEngine:
    """Issues the command sequence for one thermostat.

    ``sleep`` is injectable so the settle delay can be skipped in tests.
    """

    def __init__(
        self,
        client: HAClient,
        *,
        mode_settle_delay_s: float = DEFAULT_MODE_SETTLE_S,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settle = mode_settle_delay_s
        self._sleep = sleep

    async def push(
        self,
        entity_id: str,
        current: DeviceState,
        desired: DesiredState,
        guardrails: Guardrails,
    ) -> PushResult:
        logger.info(
            "[%s] current: mode=%s fan=%s temp=%s setpoint=%s low=%s high=%s",
            entity_id,
            current.hvac_mode,
            current.fan_mode,
            current.current_temperature_f,
            current.current_setpoint_f,
            current.target_temp_low_f,
            current.target_temp_high_f,
        )
        desired, guardrail_triggered = apply_guardrails(
            desired, current.current_temperature_f, guardrails
        )
        logger.info(
            "[%s] desired: mode=%s heat=%s cool=%s fan=%s guardrail=%s",
            entity_id,
            desired.hvac_mode,
            desired.heat_setpoint_f,
            desired.cool_setpoint_f,
            desired.fan_mode,
            guardrail_triggered,
        )

        result = PushResult(
            pushed=False,
            reason=REASON_AT_TARGET,
            previous_state=asdict(current),
            desired_state=asdict(desired),
            guardrail_triggered=guardrail_triggered,
        )
        if not guardrail_triggered and is_at_target(current, desired):
            logger.info("[%s] already at target, no push", entity_id)
            return result

        actions = result.actions

        if current.hvac_mode != desired.hvac_mode:
            ok = await self._attempt(
                entity_id, "set_hvac_mode", self._client.set_hvac_mode(entity_id, desired.hvac_mode)
            )
            actions.append(f"set_hvac_mode:{desired.hvac_mode if ok else 'FAILED'}")
            # Firmware applies mode changes asynchronously
            await self._sleep(self._settle)

        mode = desired.hvac_mode
        if mode in ("heat", "cool"):
            setpoint = desired.heat_setpoint_f if mode == "heat" else desired.cool_setpoint_f
            ok = await self._attempt(
                entity_id,
                "set_temperature",
                self._client.set_temperature(entity_id, setpoint),
            )
            actions.append(f"set_temperature:{fmt_temp(setpoint) if ok else 'FAILED'}")
        elif mode == "heat_cool":
            ok = await self._attempt(
                entity_id,
                "set_temperature",
                self._client.set_temperature(
                    entity_id,
                    target_temp_low=desired.heat_setpoint_f,
                    target_temp_high=desired.cool_setpoint_f,
                ),
            )
            label = f"{fmt_temp(desired.heat_setpoint_f)}-{fmt_temp(desired.cool_setpoint_f)}"
            actions.append(f"set_temperature:{label if ok else 'FAILED'}")

        if desired.fan_mode and current.fan_mode != desired.fan_mode:
            ok = await self._attempt(
                entity_id, "set_fan_mode", self._client.set_fan_mode(entity_id, desired.fan_mode)
            )
            actions.append(f"set_fan_mode:{desired.fan_mode if ok else 'FAILED'}")

        result.pushed = True
        result.reason = REASON_GUARDRAIL if guardrail_triggered else REASON_UPDATED
        logger.info("[%s] push complete: %s", entity_id, ", ".join(actions) or "no commands")
        return result

    async def _attempt(self, entity_id: str, label: str, call: Awaitable[Any]) -> bool:
        try:
            await call
        except HAClientError as exc:
            logger.error("[%s] %s failed: %s", entity_id, label, exc)
            return False
        except Exception:
            logger.exception("[%s] %s raised unexpectedly", entity_id, label)
            return False
        logger.info("[%s] %s ok", entity_id, label)
        return True


async def push_thermostat_state(
    client: HAClient,
    entity_id: str,
    current: DeviceState,
    desired: DesiredState,
    guardrails: Guardrails,
    *,
    mode_settle_delay_s: float = DEFAULT_MODE_SETTLE_S,
    sleep: Sleep = asyncio.sleep,
) -> PushResult:
    """Functional wrapper around :class:`ThermostatPushEngine`."""
    engine = ThermostatPushEngine(client, mode_settle_delay_s=mode_settle_delay_s, sleep=sleep)
    return await engine.push(entity_id, current, desired, guardrails)


__all__ = [
    "REASON_AT_TARGET",
    "REASON_GUARDRAIL",
    "REASON_UPDATED",
    "DesiredState",
    "DeviceState",
    "Guardrails",
    "PushResult",
    "Sleep",
    "ThermostatPushEngine",
    "apply_guardrails",
    "fmt_temp",
    "is_at_target",
    "push_thermostat_state",
]
