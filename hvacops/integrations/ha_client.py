"""Device API client for HVACOps.

Thin async wrapper around the home-automation REST API that fronts every
site's thermostats. Provides typed entity states, structured error
handling, and the three climate commands the push engine issues.
"""

from __future__ import annotations

import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HAClientError(Exception):
    """Base exception for all device API client errors."""


class HAConnectionError(HAClientError):
    """Raised when the client cannot reach the device API."""


class HAAuthenticationError(HAClientError):
    """Raised on 401 Unauthorized responses."""


class HANotFoundError(HAClientError):
    """Raised on 404 Not Found responses (bad entity / service)."""


class HAServiceError(HAClientError):
    """Raised when a service call fails (4xx / 5xx other than 401/404)."""


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class EntityState:
    """Snapshot of a single device API entity."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: str = ""
    last_updated: str = ""

    @property
    def domain(self) -> str:
        """Return the domain portion of the entity id (e.g. ``climate``)."""
        return self.entity_id.split(".", 1)[0]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityState:
        """Build an ``EntityState`` from a raw JSON dict."""
        return cls(
            entity_id=data.get("entity_id", ""),
            state=str(data.get("state", "")),
            attributes=data.get("attributes") or {},
            last_changed=data.get("last_changed", ""),
            last_updated=data.get("last_updated", ""),
        )


def _as_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class ThermostatReading:
    """Climate entity state flattened to the fields the push engine tracks."""

    hvac_mode: str
    current_temperature_f: float | None = None
    current_setpoint_f: float | None = None
    target_temp_high_f: float | None = None
    target_temp_low_f: float | None = None
    fan_mode: str | None = None
    current_humidity: float | None = None
    hvac_action: str | None = None

    @classmethod
    def from_entity_state(cls, state: EntityState) -> ThermostatReading:
        attrs = state.attributes
        return cls(
            hvac_mode=state.state,
            current_temperature_f=_as_float(attrs.get("current_temperature")),
            current_setpoint_f=_as_float(attrs.get("temperature")),
            target_temp_high_f=_as_float(attrs.get("target_temp_high")),
            target_temp_low_f=_as_float(attrs.get("target_temp_low")),
            fan_mode=attrs.get("fan_mode"),
            current_humidity=_as_float(attrs.get("current_humidity")),
            hvac_action=attrs.get("hvac_action"),
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HAClient:
    """Async REST wrapper for the device API.

    Usage::

        async with HAClient("http://gateway.local:8123", token="ey...") as client:
            if await client.check_connection():
                await client.set_hvac_mode("climate.rtu_1", "heat")
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 10.0,
        check_timeout: float = 5.0,
        verify_ssl: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._check_timeout = check_timeout
        self._verify_ssl = verify_ssl
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- async context manager ------------------------------------------------

    async def __aenter__(self) -> HAClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()

    # -- lifecycle ------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self._token:
                raise RuntimeError("Device API access token is required")
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
                verify=self._verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def check_connection(self) -> bool:
        """Return ``True`` when the API answers ``GET /api/`` with 200 within the check timeout."""
        client = self._ensure_client()
        try:
            response = await client.get("/api/", timeout=self._check_timeout)
        except httpx.HTTPError as exc:
            logger.warning("Device API check failed for %s: %s", self._base_url, exc)
            return False
        if response.status_code != 200:
            logger.warning(
                "Device API check for %s returned HTTP %d", self._base_url, response.status_code
            )
            return False
        return True

    async def disconnect(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            with suppress(Exception):
                await self._client.aclose()
            self._client = None
            logger.debug("Closed device API client for %s", self._base_url)

    # -- internal request helper ----------------------------------------------

    def _raise_for_status(
        self,
        response: httpx.Response,
        *,
        context: str = "",
    ) -> None:
        """Translate HTTP error codes into typed exceptions."""
        if response.is_success:
            return

        status = response.status_code
        detail = response.text[:300]
        prefix = f"[{context}] " if context else ""

        if status == 401:
            msg = f"{prefix}Authentication failed (401). Check the device API token."
            logger.error(msg)
            raise HAAuthenticationError(msg)
        if status == 404:
            msg = f"{prefix}Resource not found (404): {detail}"
            logger.warning(msg)
            raise HANotFoundError(msg)
        if 400 <= status < 500:
            msg = f"{prefix}Client error {status}: {detail}"
            logger.error(msg)
            raise HAServiceError(msg)
        # 5xx
        msg = f"{prefix}Server error {status}: {detail}"
        logger.error(msg)
        raise HAServiceError(msg)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        context: str = "",
    ) -> httpx.Response:
        """Send an HTTP request.

        Raises:
            HAConnectionError: On network-level failures and timeouts.
            HAAuthenticationError / HANotFoundError / HAServiceError: On HTTP errors.
        """
        client = self._ensure_client()
        logger.debug("%s %s (json=%s)", method, path, json is not None)

        try:
            response = await client.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            msg = f"Request to {path} timed out ({self._timeout}s)"
            logger.error(msg)
            raise HAConnectionError(msg) from exc
        except httpx.TransportError as exc:
            msg = f"Lost connection to device API: {exc}"
            logger.error(msg)
            raise HAConnectionError(msg) from exc

        self._raise_for_status(response, context=context or f"{method} {path}")
        return response

    # -- core API methods -----------------------------------------------------

    async def call_service(
        self,
        domain: str,
        service: str,
        data: dict[str, Any],
    ) -> Any:
        """Call a device API service; ``data`` carries ``entity_id`` inline.

        Returns:
            Parsed JSON response (usually a list of changed states) or ``None``.
        """
        path = f"/api/services/{domain}/{service}"
        logger.info("Calling service %s.%s -> %s", domain, service, data)

        response = await self._request(
            "POST", path, json=data, context=f"service:{domain}.{service}"
        )

        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return None

    async def get_state(self, entity_id: str) -> EntityState:
        """Fetch the current state of a single entity.

        Raises:
            HANotFoundError: If the entity does not exist.
        """
        response = await self._request(
            "GET", f"/api/states/{entity_id}", context=f"get_state({entity_id})"
        )
        state = EntityState.from_dict(response.json())
        logger.debug("State %s = %s", entity_id, state.state)
        return state

    async def get_thermostat(self, entity_id: str) -> ThermostatReading:
        return ThermostatReading.from_entity_state(await self.get_state(entity_id))

    # -- climate helpers ------------------------------------------------------

    async def set_hvac_mode(self, entity_id: str, mode: str) -> Any:
        """Set the HVAC mode on a climate entity."""
        return await self.call_service(
            "climate",
            "set_hvac_mode",
            {"entity_id": entity_id, "hvac_mode": mode},
        )

    async def set_temperature(
        self,
        entity_id: str,
        temperature: float | None = None,
        *,
        target_temp_low: float | None = None,
        target_temp_high: float | None = None,
    ) -> Any:
        """Set a single setpoint, or the low/high pair for a dual-setpoint mode."""
        data: dict[str, Any] = {"entity_id": entity_id}
        if temperature is not None:
            data["temperature"] = temperature
        else:
            if target_temp_low is None or target_temp_high is None:
                raise ValueError("Both target_temp_low and target_temp_high are required")
            data["target_temp_low"] = target_temp_low
            data["target_temp_high"] = target_temp_high
        return await self.call_service("climate", "set_temperature", data)

    async def set_fan_mode(self, entity_id: str, fan_mode: str) -> Any:
        return await self.call_service(
            "climate",
            "set_fan_mode",
            {"entity_id": entity_id, "fan_mode": fan_mode},
        )

    # -- dunder ---------------------------------------------------------------

    def __repr__(self) -> str:
        return f"<HAClient url={self._base_url!r}>"


__all__ = [
    "EntityState",
    "HAAuthenticationError",
    "HAClient",
    "HAClientError",
    "HAConnectionError",
    "HANotFoundError",
    "HAServiceError",
    "ThermostatReading",
]
