"""Tenant configuration and usage contracts."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

from contracts.alerts import AlertConfig
from contracts.events import as_utc

UNLIMITED = -1


def next_utc_midnight(now: datetime) -> datetime:
    """Start of the UTC day following ``now``."""
    current = now.astimezone(UTC)
    tomorrow = current.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=UTC)


class SubscriptionTier(StrEnum):
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionLimits(BaseModel):
    """Per-tier caps. ``-1`` means unlimited."""

    team_members: int = 2
    daily_alerts: int = 1
    test_alerts: int = 5
    daily_events: int = 500
    phone_numbers: int = 2
    alert_rules: int = 1
    active_test_keys: int = 1
    active_prod_keys: int = 1
    event_bucket_minutes: int = Field(60, ge=1, le=1440)


class UsageCounters(BaseModel):
    daily_events: int = 0
    daily_events_reset_at: datetime = Field(
        default_factory=lambda: next_utc_midnight(datetime.now(UTC))
    )
    daily_alerts: int = 0
    daily_alerts_reset_at: datetime = Field(
        default_factory=lambda: next_utc_midnight(datetime.now(UTC))
    )
    total_test_alerts: int = 0

    @field_validator("daily_events_reset_at", "daily_alerts_reset_at")
    @classmethod
    def normalize_reset_times(cls, v: datetime) -> datetime:
        return as_utc(v)


class TenantConfig(BaseModel):
    """Tenant document as seen by the engine (read-only)."""

    id: str
    display_name: str = ""
    subscription_tier: SubscriptionTier = SubscriptionTier.BASIC
    subscription_limits: SubscriptionLimits | None = None
    alert_config: AlertConfig = Field(default_factory=AlertConfig)
    usage: UsageCounters = Field(default_factory=UsageCounters)
