"""Async MongoDB adapter for bucketed events, alerts and tenants."""

from __future__ import annotations

import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)


class MongoAdapter:
    """Owns the Motor client and hands out the engine's collections."""

    BUCKETS = "bucketed_events"
    ALERTS = "alerts"
    TENANTS = "tenants"

    def __init__(self, uri: str, db_name: str = "logwatch"):
        self.uri = uri
        self.db_name = db_name
        self.client: AsyncIOMotorClient | None = None
        self.connected = False

    @property
    def db(self):
        if self.client is None:
            raise RuntimeError("Mongo adapter not connected")
        return self.client[self.db_name]

    @property
    def buckets(self) -> Any:
        return self.db[self.BUCKETS]

    @property
    def alerts(self) -> Any:
        return self.db[self.ALERTS]

    @property
    def tenants(self) -> Any:
        return self.db[self.TENANTS]

    async def connect(self) -> None:
        # tz_aware keeps every datetime read back comparable with UTC clocks
        self.client = AsyncIOMotorClient(self.uri, tz_aware=True)
        await self.client.admin.command("ping")
        self.connected = True
        logger.info(f"Connected to MongoDB database {self.db_name}")

    async def disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
        self.connected = False

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            response = await self.client.admin.command("ping")
            return float(response.get("ok", 0)) == 1.0
        except Exception:
            return False
