"""Per-site Redis lock so overlapping enforcement runs skip a busy site."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "hvacops:site-cycle:"


class SiteCycleLock:
    """``SET NX EX`` lock keyed by site id; a no-op without Redis."""

    def __init__(self, client: redis.Redis | None, ttl_s: int = 240) -> None:
        self._client = client
        self._ttl = ttl_s

    @asynccontextmanager
    async def hold(self, site_id: uuid.UUID) -> AsyncIterator[bool]:
        """Yield ``True`` when this caller owns the site for the cycle."""
        if self._client is None:
            yield True
            return

        key = f"{LOCK_PREFIX}{site_id}"
        token = uuid.uuid4().hex
        try:
            acquired = bool(await self._client.set(key, token, nx=True, ex=self._ttl))
        except redis.RedisError as exc:
            logger.warning("Site lock unavailable for %s, running unlocked: %s", site_id, exc)
            yield True
            return

        if not acquired:
            logger.info("Site %s is locked by another cycle, skipping", site_id)
            yield False
            return
        try:
            yield True
        finally:
            try:
                if await self._client.get(key) == token:
                    await self._client.delete(key)
            except redis.RedisError as exc:
                logger.warning("Failed to release site lock for %s: %s", site_id, exc)


__all__ = ["SiteCycleLock"]
