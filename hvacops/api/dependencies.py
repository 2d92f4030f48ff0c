"""FastAPI dependency injection helpers."""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hvacops.config import SETTINGS, Settings
from hvacops.models.database import get_session_maker

# ---------------------------------------------------------------------------
# Settings dependency
# ---------------------------------------------------------------------------


def get_settings_dependency() -> Settings:
    return SETTINGS


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# ---------------------------------------------------------------------------
# Database dependency
# ---------------------------------------------------------------------------


async def get_db() -> AsyncGenerator[AsyncSession]:
    """Yield a single transactional async SQLAlchemy session."""

    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for jobs that open one session per unit of work."""
    return get_session_maker()


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


# ---------------------------------------------------------------------------
# Redis dependency
# ---------------------------------------------------------------------------


_shared_redis: redis.Redis | None = None


def set_shared_redis(client: redis.Redis | None) -> None:
    """Set the shared Redis client (called during app startup)."""
    global _shared_redis
    _shared_redis = client


def get_redis() -> redis.Redis | None:
    """Return the shared Redis client; ``None`` when Redis is unavailable."""
    return _shared_redis


RedisDep = Annotated[redis.Redis | None, Depends(get_redis)]


# ---------------------------------------------------------------------------
# Cron authentication
# ---------------------------------------------------------------------------


async def verify_cron_secret(
    settings: SettingsDep,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Require ``Authorization: Bearer <cron_secret>`` when a secret is configured."""
    secret = settings.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )


__all__ = [
    "RedisDep",
    "SessionFactoryDep",
    "SettingsDep",
    "get_db",
    "get_session_factory",
    "get_redis",
    "get_settings_dependency",
    "set_shared_redis",
    "verify_cron_secret",
]
