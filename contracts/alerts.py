"""Alert rule and alert record contracts."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from contracts.events import LogType

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


class AlertStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    ACKNOWLEDGED = "acknowledged"


class NotificationType(StrEnum):
    TEXT = "text"
    CALL = "call"


class TriggerScope(StrEnum):
    GLOBAL = "global"
    MESSAGE = "message"
    TEST = "test"


class GlobalLimit(BaseModel):
    """Threshold over every event of the tenant in a sliding window."""

    enabled: bool = False
    window_minutes: int = Field(10, ge=1, le=1440)
    max_alerts: int = Field(10, ge=1, le=1000)
    log_types: list[LogType] = Field(default_factory=list)


class MessageRule(BaseModel):
    """Threshold over events carrying one exact message."""

    message: str = Field(min_length=1)
    window_minutes: int = Field(10, ge=1, le=1440)
    max_alerts: int = Field(10, ge=1, le=1000)
    log_types: list[LogType] = Field(default_factory=list)


class AlertRule(BaseModel):
    global_limit: GlobalLimit | None = None
    message_rules: list[MessageRule] = Field(default_factory=list)
    notification_type: NotificationType = NotificationType.TEXT


class AlertConfig(BaseModel):
    """Per-tenant alert configuration, edited out-of-band."""

    enabled: bool = False
    phone_numbers: list[str] = Field(default_factory=list)
    alert_rules: list[AlertRule] = Field(default_factory=list)

    @field_validator("phone_numbers")
    @classmethod
    def validate_phone_numbers(cls, v: list[str]) -> list[str]:
        for phone in v:
            if not PHONE_PATTERN.match(phone):
                raise ValueError(
                    f"Invalid phone number format: {phone}. "
                    "Use E.164 format (e.g., +1234567890)"
                )
        return v


class Alert(BaseModel):
    """Ledger record of one alert attempt."""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str
    status: AlertStatus = AlertStatus.PENDING
    notification_type: NotificationType = NotificationType.TEXT
    scope: TriggerScope = TriggerScope.GLOBAL
    rule_message: str | None = None
    message: str
    event_ids: list[str] = Field(default_factory=list)
    event_count: int = 0
    window_start: datetime
    window_end: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    sent_at: datetime | None = None
    sent_to: list[str] = Field(default_factory=list)
    error: str | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None

    @field_validator(
        "window_start",
        "window_end",
        "created_at",
        "sent_at",
        "acknowledged_at",
    )
    @classmethod
    def normalize_datetimes(cls, v: datetime | None) -> datetime | None:
        if v is None or v.tzinfo is not None:
            return v
        return v.replace(tzinfo=UTC)
