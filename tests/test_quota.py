"""Tests for subscription tiers and usage counters."""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import FakeClock, FakeCollection, tenant_doc

from apps.usage.quota import (
    SUBSCRIPTION_TIERS,
    QuotaExceededError,
    QuotaDecision,
    UsageQuota,
    is_within_limit,
)
from contracts.tenant import UNLIMITED, SubscriptionTier
from core.db.tenants import TenantNotFoundError, TenantRepository


def _quota(docs, clock) -> tuple[UsageQuota, FakeCollection]:
    collection = FakeCollection(docs)
    return UsageQuota(TenantRepository(collection), clock=clock), collection


def test_tier_table():
    basic = SUBSCRIPTION_TIERS[SubscriptionTier.BASIC]
    assert (basic.daily_events, basic.daily_alerts, basic.test_alerts) == (500, 1, 5)
    assert basic.event_bucket_minutes == 60

    pro = SUBSCRIPTION_TIERS[SubscriptionTier.PRO]
    assert (pro.daily_events, pro.daily_alerts, pro.test_alerts) == (50000, 100, UNLIMITED)
    assert pro.event_bucket_minutes == 20

    enterprise = SUBSCRIPTION_TIERS[SubscriptionTier.ENTERPRISE]
    assert enterprise.daily_events == UNLIMITED
    assert enterprise.event_bucket_minutes == 5


@pytest.mark.parametrize(
    "current,limit,expected",
    [(0, 1, True), (1, 1, False), (10**9, UNLIMITED, True), (499, 500, True)],
)
def test_is_within_limit(current, limit, expected):
    assert is_within_limit(current, limit) is expected


@pytest.mark.asyncio
async def test_event_quota_denies_at_cap(clock):
    quota, _ = _quota(
        [tenant_doc(tier="basic", usage={"daily_events": 500}, now=clock.now)], clock
    )

    decision = await quota.can_send_event("t1")

    assert decision == QuotaDecision(
        allowed=False,
        reason="Daily event limit reached (500 events per day)",
        limit=500,
        current=500,
    )


@pytest.mark.asyncio
async def test_explicit_limits_override_tier(clock):
    doc = tenant_doc(tier="basic", usage={"daily_events": 500}, now=clock.now)
    doc["subscription_limits"] = {"daily_events": 1000, "event_bucket_minutes": 15}
    quota, _ = _quota([doc], clock)

    assert (await quota.can_send_event("t1")).allowed is True
    assert await quota.bucket_minutes_for("t1") == 15


@pytest.mark.asyncio
async def test_test_alert_limit_checked_before_daily(clock):
    quota, _ = _quota(
        [tenant_doc(tier="basic", usage={"total_test_alerts": 5}, now=clock.now)], clock
    )

    decision = await quota.can_send_alert("t1", is_test=True)
    assert decision.allowed is False
    assert decision.reason.startswith("Test alert limit reached")

    assert (await quota.can_send_alert("t1", is_test=False)).allowed is True


@pytest.mark.asyncio
async def test_daily_alert_limit(clock):
    quota, _ = _quota(
        [tenant_doc(tier="basic", usage={"daily_alerts": 1}, now=clock.now)], clock
    )
    decision = await quota.can_send_alert("t1")
    assert decision.allowed is False
    assert decision.limit == 1 and decision.current == 1


@pytest.mark.asyncio
async def test_counters_reset_at_next_utc_midnight(clock):
    quota, collection = _quota(
        [
            tenant_doc(
                tier="basic",
                usage={"daily_events": 500, "daily_alerts": 1, "total_test_alerts": 3},
                now=clock.now,
            )
        ],
        clock,
    )
    assert (await quota.can_send_event("t1")).allowed is False

    clock.now = datetime(2024, 3, 6, 0, 0, tzinfo=UTC)
    _, usage = await quota.get_usage("t1")

    assert usage.daily_events == 0
    assert usage.daily_alerts == 0
    assert usage.total_test_alerts == 3
    assert usage.daily_events_reset_at == datetime(2024, 3, 7, tzinfo=UTC)
    assert (await quota.can_send_event("t1")).allowed is True


@pytest.mark.asyncio
async def test_reset_happens_once_for_concurrent_callers(clock):
    collection = FakeCollection(
        [tenant_doc(usage={"daily_events": 7}, now=clock.now - timedelta(days=1))]
    )
    repo = TenantRepository(collection)

    first = await repo.reset_if_due("t1", "daily_events", clock.now)
    await repo.increment("t1", "daily_events")
    second = await repo.reset_if_due("t1", "daily_events", clock.now)

    assert (first, second) == (True, False)
    assert collection.docs[0]["usage"]["daily_events"] == 1


@pytest.mark.asyncio
async def test_missing_usage_is_initialized(clock):
    doc = tenant_doc(now=clock.now)
    del doc["usage"]
    quota, collection = _quota([doc], clock)

    _, usage = await quota.get_usage("t1")

    assert usage.daily_events == 0
    assert collection.docs[0]["usage"]["daily_events_reset_at"] == datetime(
        2024, 3, 6, tzinfo=UTC
    )


@pytest.mark.asyncio
async def test_increments_use_counters(clock):
    quota, collection = _quota([tenant_doc(now=clock.now)], clock)

    await quota.increment_daily_events("t1")
    await quota.increment_daily_events("t1")
    await quota.increment_daily_alerts("t1")
    await quota.increment_test_alerts("t1")

    usage = collection.docs[0]["usage"]
    assert (usage["daily_events"], usage["daily_alerts"], usage["total_test_alerts"]) == (2, 1, 1)


@pytest.mark.asyncio
async def test_unknown_counter_rejected(clock):
    with pytest.raises(ValueError):
        await TenantRepository(FakeCollection()).increment("t1", "bogus")


@pytest.mark.asyncio
async def test_unknown_tenant(clock):
    quota, _ = _quota([], clock)
    with pytest.raises(TenantNotFoundError):
        await quota.can_send_event("missing")


@pytest.mark.asyncio
async def test_snapshot(clock):
    quota, _ = _quota([tenant_doc(tier="pro", usage={"daily_events": 3}, now=clock.now)], clock)
    snapshot = await quota.snapshot("t1")
    assert snapshot["subscription_tier"] == "pro"
    assert snapshot["usage"]["daily_events"] == 3
    assert snapshot["limits"]["daily_alerts"] == 100


def test_quota_error_from_decision():
    error = QuotaExceededError.from_decision(
        QuotaDecision(allowed=False, reason="Daily alert limit reached", limit=1, current=1)
    )
    assert str(error) == "Daily alert limit reached"
    assert (error.limit, error.current) == (1, 1)
