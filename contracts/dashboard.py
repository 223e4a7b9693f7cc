"""Dashboard aggregate request contract."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from contracts.events import EventFilters, as_utc

VALID_STEP_MINUTES = (60, 120, 180, 240, 300, 360, 720, 1440)


class AggregateRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    step_minutes: int = 60
    filters: EventFilters = Field(default_factory=EventFilters)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_bounds(cls, v: datetime) -> datetime:
        return as_utc(v)
