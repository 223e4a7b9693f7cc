"""Async Redis adapter for cross-process cooldown claims."""

from __future__ import annotations

from redis.asyncio import Redis


class RedisClaimAdapter:
    """Thin async Redis wrapper exposing ``SET NX EX`` claims."""

    def __init__(self, url: str):
        self.url = url
        self.client: Redis | None = None
        self.connected = False

    async def connect(self) -> None:
        self.client = Redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        self.connected = True

    async def disconnect(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        self.connected = False

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    async def claim(self, key: str, ttl_seconds: int, owner: str = "1") -> bool:
        """Take ``key`` for ``ttl_seconds`` unless someone else holds it."""
        if self.client is None:
            return True
        return bool(await self.client.set(key, owner, nx=True, ex=max(ttl_seconds, 1)))

    async def release(self, key: str) -> int:
        if self.client is None:
            return 0
        return await self.client.delete(key)
