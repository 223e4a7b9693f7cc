"""Subscription tiers, daily usage counters and quota decisions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from contracts.tenant import (
    UNLIMITED,
    SubscriptionLimits,
    SubscriptionTier,
    TenantConfig,
    UsageCounters,
)
from core.db.tenants import TenantRepository

logger = logging.getLogger(__name__)

SUBSCRIPTION_TIERS: dict[SubscriptionTier, SubscriptionLimits] = {
    SubscriptionTier.BASIC: SubscriptionLimits(
        team_members=2,
        daily_alerts=1,
        test_alerts=5,
        daily_events=500,
        phone_numbers=2,
        alert_rules=1,
        active_test_keys=1,
        active_prod_keys=1,
        event_bucket_minutes=60,
    ),
    SubscriptionTier.PRO: SubscriptionLimits(
        team_members=10,
        daily_alerts=100,
        test_alerts=UNLIMITED,
        daily_events=50000,
        phone_numbers=10,
        alert_rules=10,
        active_test_keys=5,
        active_prod_keys=5,
        event_bucket_minutes=20,
    ),
    SubscriptionTier.ENTERPRISE: SubscriptionLimits(
        team_members=UNLIMITED,
        daily_alerts=UNLIMITED,
        test_alerts=UNLIMITED,
        daily_events=UNLIMITED,
        phone_numbers=UNLIMITED,
        alert_rules=UNLIMITED,
        active_test_keys=UNLIMITED,
        active_prod_keys=UNLIMITED,
        event_bucket_minutes=5,
    ),
}


def is_within_limit(current: int, limit: int) -> bool:
    return limit == UNLIMITED or current < limit


@dataclass(slots=True)
class QuotaDecision:
    allowed: bool
    reason: str | None = None
    limit: int | None = None
    current: int | None = None


class QuotaExceededError(Exception):
    """A request would push the tenant past one of its subscription caps."""

    def __init__(self, reason: str, limit: int | None = None, current: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.limit = limit
        self.current = current

    @classmethod
    def from_decision(cls, decision: QuotaDecision) -> "QuotaExceededError":
        return cls(decision.reason or "Quota exceeded", decision.limit, decision.current)


class UsageQuota:
    """
    Quota checks over the tenant's usage counters.

    Counters live on the tenant document and only move through ``$inc`` and
    conditional resets, so concurrent requests never overwrite each other.
    Checks and increments are separate steps: two requests racing at the
    boundary can both pass the check and overshoot the cap by one.
    """

    def __init__(self, tenants: TenantRepository, clock: Any = None):
        self.tenants = tenants
        self.clock = clock or (lambda: datetime.now(UTC))

    @staticmethod
    def limits_for(tenant: TenantConfig) -> SubscriptionLimits:
        if tenant.subscription_limits is not None:
            return tenant.subscription_limits
        return SUBSCRIPTION_TIERS[SubscriptionTier(tenant.subscription_tier)]

    async def bucket_minutes_for(self, tenant_id: str) -> int:
        tenant = await self.tenants.require_tenant(tenant_id)
        return self.limits_for(tenant).event_bucket_minutes

    async def get_usage(self, tenant_id: str) -> tuple[TenantConfig, UsageCounters]:
        """Load the tenant with daily counters reset if their reset time has passed."""
        now = self.clock()
        tenant = await self.tenants.require_tenant(tenant_id)
        if "usage" not in tenant.model_fields_set:
            await self.tenants.ensure_usage(tenant_id, now)
            tenant = await self.tenants.require_tenant(tenant_id)

        reset = False
        for counter, reset_at in (
            ("daily_events", tenant.usage.daily_events_reset_at),
            ("daily_alerts", tenant.usage.daily_alerts_reset_at),
        ):
            if now >= reset_at and await self.tenants.reset_if_due(tenant_id, counter, now):
                logger.info(f"[QUOTA] Reset {counter} for {tenant_id}")
                reset = True
        if reset:
            tenant = await self.tenants.require_tenant(tenant_id)
        return tenant, tenant.usage

    async def can_send_event(self, tenant_id: str) -> QuotaDecision:
        tenant, usage = await self.get_usage(tenant_id)
        limits = self.limits_for(tenant)
        if not is_within_limit(usage.daily_events, limits.daily_events):
            return QuotaDecision(
                allowed=False,
                reason=f"Daily event limit reached ({limits.daily_events} events per day)",
                limit=limits.daily_events,
                current=usage.daily_events,
            )
        return QuotaDecision(allowed=True)

    async def can_send_alert(self, tenant_id: str, is_test: bool = False) -> QuotaDecision:
        tenant, usage = await self.get_usage(tenant_id)
        limits = self.limits_for(tenant)
        if is_test and not is_within_limit(usage.total_test_alerts, limits.test_alerts):
            return QuotaDecision(
                allowed=False,
                reason=f"Test alert limit reached ({limits.test_alerts} total test alerts)",
                limit=limits.test_alerts,
                current=usage.total_test_alerts,
            )
        if not is_within_limit(usage.daily_alerts, limits.daily_alerts):
            return QuotaDecision(
                allowed=False,
                reason=f"Daily alert limit reached ({limits.daily_alerts} alerts per day)",
                limit=limits.daily_alerts,
                current=usage.daily_alerts,
            )
        return QuotaDecision(allowed=True)

    async def increment_daily_events(self, tenant_id: str) -> None:
        await self.tenants.increment(tenant_id, "daily_events")

    async def increment_daily_alerts(self, tenant_id: str) -> None:
        await self.tenants.increment(tenant_id, "daily_alerts")

    async def increment_test_alerts(self, tenant_id: str) -> None:
        await self.tenants.increment(tenant_id, "total_test_alerts")

    async def snapshot(self, tenant_id: str) -> dict[str, Any]:
        """Counters and limits for the usage endpoint."""
        tenant, usage = await self.get_usage(tenant_id)
        return {
            "tenant_id": tenant_id,
            "subscription_tier": str(tenant.subscription_tier),
            "usage": usage.model_dump(mode="json"),
            "limits": self.limits_for(tenant).model_dump(),
        }
