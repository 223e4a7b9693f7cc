"""Log event and bucket contracts."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogType(StrEnum):
    """Console method a log event was emitted with."""

    TEXT = "text"
    CALL = "call"
    CALL_TEXT = "callText"
    LOG = "log"
    WARN = "warn"
    ERROR = "error"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class LogEvent(BaseModel):
    """A single stored event. Never mutated after append."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str
    type: LogType = LogType.TEXT
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    meta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class EventBucket(BaseModel):
    """Time slot document holding every event of one tenant in that slot."""

    id: str
    tenant_id: str
    start: datetime
    end: datetime
    bucket_minutes: int
    events: list[LogEvent] = Field(default_factory=list)
    event_count: int = 0

    @field_validator("start", "end")
    @classmethod
    def normalize_bounds(cls, v: datetime) -> datetime:
        return as_utc(v)


class IngestRequest(BaseModel):
    """Body accepted by the log endpoint."""

    type: LogType = LogType.TEXT
    message: str = Field(min_length=1)
    timestamp: datetime | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class EventFilters(BaseModel):
    """Optional read-side filters for dashboard queries."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[str, ...] = ()
    log_types: tuple[LogType, ...] = ()

    def matches(self, event: LogEvent) -> bool:
        if self.log_types and event.type not in self.log_types:
            return False
        if self.messages and not any(m in event.message for m in self.messages):
            return False
        return True

    def cache_key(self) -> str:
        if not self.messages and not self.log_types:
            return "no-filters"
        return self.model_dump_json()
