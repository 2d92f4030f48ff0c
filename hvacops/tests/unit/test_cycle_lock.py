"""Tests for the per-site Redis cycle lock."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from hvacops.services.cycle_lock import LOCK_PREFIX, SiteCycleLock

SITE = uuid.uuid4()
KEY = f"{LOCK_PREFIX}{SITE}"


@pytest.fixture()
def fake_redis() -> AsyncMock:
    """AsyncMock backed by a dict so SET NX / GET / DELETE behave."""
    data: dict[str, str] = {}
    client = AsyncMock()

    async def _set(key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in data:
            return None
        data[key] = value
        return True

    async def _get(key: str) -> str | None:
        return data.get(key)

    async def _delete(key: str) -> int:
        return 1 if data.pop(key, None) is not None else 0

    client.set.side_effect = _set
    client.get.side_effect = _get
    client.delete.side_effect = _delete
    client.data = data
    return client


class TestSiteCycleLock:
    async def test_without_redis_always_runs(self) -> None:
        async with SiteCycleLock(None).hold(SITE) as owned:
            assert owned is True

    async def test_acquire_and_release(self, fake_redis: AsyncMock) -> None:
        lock = SiteCycleLock(fake_redis, ttl_s=120)

        async with lock.hold(SITE) as owned:
            assert owned is True
            assert KEY in fake_redis.data

        assert KEY not in fake_redis.data
        assert fake_redis.set.await_args.kwargs == {"nx": True, "ex": 120}

    async def test_busy_site_is_skipped(self, fake_redis: AsyncMock) -> None:
        fake_redis.data[KEY] = "other-cycle"

        async with SiteCycleLock(fake_redis).hold(SITE) as owned:
            assert owned is False

        assert fake_redis.data[KEY] == "other-cycle"
        fake_redis.delete.assert_not_awaited()

    async def test_foreign_token_is_not_released(self, fake_redis: AsyncMock) -> None:
        async with SiteCycleLock(fake_redis).hold(SITE):
            # lock expired and was taken by another cycle
            fake_redis.data[KEY] = "other-cycle"

        assert fake_redis.data[KEY] == "other-cycle"

    async def test_released_when_body_raises(self, fake_redis: AsyncMock) -> None:
        with pytest.raises(RuntimeError):
            async with SiteCycleLock(fake_redis).hold(SITE):
                raise RuntimeError("push failed")

        assert KEY not in fake_redis.data

    async def test_redis_error_runs_unlocked(self, fake_redis: AsyncMock) -> None:
        fake_redis.set.side_effect = redis.ConnectionError("down")

        async with SiteCycleLock(fake_redis).hold(SITE) as owned:
            assert owned is True
