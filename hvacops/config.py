"""Application configuration powered by Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Final
from urllib.parse import quote_plus

from pydantic import AnyUrl, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_fan_mode_map() -> dict[str, str]:
    # Generic profile vocabulary -> thermostat fan presets
    return {"auto": "Auto low", "on": "Low", "circulate": "Circulation"}


def _default_hvac_mode_map() -> dict[str, str]:
    return {"auto": "heat_cool"}


class Settings(BaseSettings):
    """Centralized configuration object with environment fallbacks."""

    model_config = SettingsConfigDict(env_prefix="HVACOPS_", env_file=".env", extra="allow")

    # App
    app_name: str = "HVACOps"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8420
    debug: bool = False
    log_level: str = Field(default="info")

    # Database
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="hvacops")
    db_user: str = Field(default="hvacops")
    db_password: str = Field(default="hvacops")
    db_url: AnyUrl | str | None = Field(default=None)
    db_ssl: bool = Field(default=False)

    # Redis (per-site cycle lock; optional)
    redis_url: AnyUrl | str = Field(default="redis://localhost:6379/0")
    site_lock_ttl_s: int = Field(default=240)

    # Device API (site rows may carry their own url/token)
    device_api_url: str = Field(default="")
    device_api_token: str = Field(default="")
    device_api_timeout_s: float = Field(default=10.0)
    device_api_check_timeout_s: float = Field(default=5.0)
    mode_settle_delay_s: float = Field(default=1.5)
    readback_delay_s: float = Field(default=1.0)

    # Generic -> device vocabulary
    fan_mode_map: dict[str, str] = Field(default_factory=_default_fan_mode_map)
    hvac_mode_map: dict[str, str] = Field(default_factory=_default_hvac_mode_map)

    # Sites without an explicit timezone
    default_timezone: str = Field(default="America/Chicago")

    # Space sensors not seen within this window are ignored
    sensor_max_age_min: int = Field(default=60)

    # Cron endpoints (empty = open, dev mode)
    cron_secret: str = Field(default="")

    # In-process scheduler
    scheduler_enabled: bool = Field(default=False)
    enforce_interval_minutes: int = Field(default=5)
    alert_interval_minutes: int = Field(default=5)

    @field_validator("device_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Return a fully qualified async SQLAlchemy database URL."""

        if self.db_url:
            return str(self.db_url)
        return (
            f"postgresql+psycopg://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


SETTINGS: Final[Settings] = get_settings()
