"""Tenant configuration reads and atomic usage counters."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from contracts.tenant import TenantConfig, UsageCounters, next_utc_midnight

USAGE_FIELDS = {"daily_events", "daily_alerts", "total_test_alerts"}
_RESETTABLE = {
    "daily_events": "daily_events_reset_at",
    "daily_alerts": "daily_alerts_reset_at",
}


class TenantNotFoundError(LookupError):
    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id


class TenantRepository:
    """Read-only tenant configuration plus counter mutation via ``$inc``."""

    def __init__(self, collection: Any):
        self.collection = collection

    async def get_tenant(self, tenant_id: str) -> TenantConfig | None:
        doc = await self.collection.find_one({"_id": tenant_id})
        if doc is None:
            return None
        payload = {k: v for k, v in doc.items() if k != "_id"}
        payload["id"] = tenant_id
        return TenantConfig(**payload)

    async def require_tenant(self, tenant_id: str) -> TenantConfig:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    async def ensure_usage(self, tenant_id: str, now: datetime) -> None:
        """Initialize the usage sub-document if the tenant has none yet."""
        reset_at = next_utc_midnight(now)
        await self.collection.update_one(
            {"_id": tenant_id, "usage": {"$exists": False}},
            {
                "$set": {
                    "usage": UsageCounters(
                        daily_events_reset_at=reset_at,
                        daily_alerts_reset_at=reset_at,
                    ).model_dump()
                }
            },
        )

    async def reset_if_due(self, tenant_id: str, counter: str, now: datetime) -> bool:
        """
        Zero ``counter`` when its reset time has passed.

        The filter re-checks the reset timestamp so only one of several
        concurrent callers performs the reset.
        """
        reset_field = _RESETTABLE[counter]
        result = await self.collection.update_one(
            {"_id": tenant_id, f"usage.{reset_field}": {"$lte": now}},
            {
                "$set": {
                    f"usage.{counter}": 0,
                    f"usage.{reset_field}": next_utc_midnight(now),
                }
            },
        )
        return bool(result.modified_count)

    async def increment(self, tenant_id: str, counter: str, amount: int = 1) -> None:
        if counter not in USAGE_FIELDS:
            raise ValueError(f"Unknown usage counter: {counter}")
        await self.collection.update_one(
            {"_id": tenant_id}, {"$inc": {f"usage.{counter}": amount}}
        )
