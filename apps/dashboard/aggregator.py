"""
Range aggregator for the dashboard.

Turns a time range into dense per-step counts by log type, per-message
totals and the alerts created in the range. Raw events and alerts for a
``(tenant, start, end, filters)`` key are cached for a few minutes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any

from apps.dashboard.cache import TTLCache
from contracts.alerts import Alert
from contracts.dashboard import VALID_STEP_MINUTES, AggregateRequest
from contracts.events import EventFilters, LogEvent, LogType
from core.buckets import align_down, align_up
from core.db.alert_ledger import AlertLedger
from core.db.bucket_store import EventBucketStore
from otel_init import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

CHUNK = timedelta(hours=24)
MAX_RANGE = timedelta(days=14)
TOP_MESSAGES = 20
RECENT_ALERTS = 10


def _empty_counts() -> dict[str, int]:
    return {str(t): 0 for t in LogType}


def aggregate_by_step(
    events: list[LogEvent],
    step_minutes: int,
    start: datetime,
    end: datetime,
) -> dict[str, dict[str, int]]:
    """
    Count events per aligned step and log type.

    Keys are ISO-8601 step starts covering ``[align_down(start),
    align_up(end))`` in ascending order; every step is present even when
    empty. Events falling outside that span are ignored.
    """
    step = timedelta(minutes=step_minutes)
    current = align_down(start, step_minutes)
    stop = align_up(end, step_minutes)

    aggregated: dict[str, dict[str, int]] = {}
    while current < stop:
        aggregated[current.isoformat()] = _empty_counts()
        current += step

    skipped = 0
    for event in events:
        counts = aggregated.get(align_down(event.timestamp, step_minutes).isoformat())
        if counts is None:
            skipped += 1
            continue
        counts[str(event.type)] += 1
    if skipped:
        logger.debug(f"[AGGREGATE] Skipped {skipped} events outside time range")
    return aggregated


def aggregate_by_message(events: list[LogEvent]) -> list[dict[str, Any]]:
    """Per-message counts with the log types seen, most frequent first."""
    by_message: dict[str, dict[str, Any]] = {}
    for event in events:
        entry = by_message.setdefault(event.message, {"count": 0, "types": []})
        entry["count"] += 1
        if event.type not in entry["types"]:
            entry["types"].append(event.type)

    result = [
        {"message": message, "count": data["count"], "log_types": [str(t) for t in data["types"]]}
        for message, data in by_message.items()
    ]
    result.sort(key=lambda item: item["count"], reverse=True)
    return result


async def query_events_in_chunks(
    store: EventBucketStore,
    tenant_id: str,
    start: datetime,
    end: datetime,
    filters: EventFilters | None = None,
) -> list[LogEvent]:
    """Read ``[start, end]`` in 24 hour chunks and apply the dashboard filters."""
    events: list[LogEvent] = []
    current = start
    chunks = 0
    while current < end:
        chunk_end = min(current + CHUNK, end)
        chunk = await store.read_range(tenant_id, current, chunk_end)
        if filters is not None:
            chunk = [e for e in chunk if filters.matches(e)]
        events.extend(chunk)
        chunks += 1
        current = chunk_end + timedelta(microseconds=1)
    logger.debug(f"[AGGREGATE] {len(events)} events from {chunks} chunks for {tenant_id}")
    return events


class InvalidAggregateRequest(ValueError):
    """Range or step outside what the dashboard query accepts."""


class RangeAggregator:
    """Answers dashboard range queries from the bucket store and the ledger."""

    def __init__(
        self,
        store: EventBucketStore,
        ledger: AlertLedger,
        cache: TTLCache | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=300)

    @staticmethod
    def validate(request: AggregateRequest) -> None:
        if request.end_time <= request.start_time:
            raise InvalidAggregateRequest("end_time must be after start_time")
        if request.end_time - request.start_time > MAX_RANGE:
            raise InvalidAggregateRequest("Time range cannot exceed 2 weeks")
        if request.step_minutes not in VALID_STEP_MINUTES:
            raise InvalidAggregateRequest(
                f"Invalid step size {request.step_minutes}; "
                f"expected one of {list(VALID_STEP_MINUTES)}"
            )

    @staticmethod
    def cache_key(tenant_id: str, request: AggregateRequest) -> tuple[str, str, str, str]:
        return (
            tenant_id,
            request.start_time.isoformat(),
            request.end_time.isoformat(),
            request.filters.cache_key(),
        )

    async def load(
        self, tenant_id: str, request: AggregateRequest
    ) -> tuple[list[LogEvent], list[Alert]]:
        key = self.cache_key(tenant_id, request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"[AGGREGATE] Cache hit for {tenant_id}")
            return cached

        started = time.perf_counter()
        events, alerts = await asyncio.gather(
            query_events_in_chunks(
                self.store,
                tenant_id,
                request.start_time,
                request.end_time,
                request.filters,
            ),
            self.ledger.query_range(tenant_id, request.start_time, request.end_time),
        )
        logger.info(
            f"[AGGREGATE] Loaded {len(events)} events and {len(alerts)} alerts "
            f"for {tenant_id} in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        self.cache.set(key, (events, alerts))
        return events, alerts

    async def aggregate(self, tenant_id: str, request: AggregateRequest) -> dict[str, Any]:
        self.validate(request)

        with tracer.start_as_current_span("logwatch.dashboard.aggregate") as span:
            span.set_attribute("tenant.id", tenant_id)
            span.set_attribute("aggregate.step_minutes", request.step_minutes)

            events, alerts = await self.load(tenant_id, request)
            step = timedelta(minutes=request.step_minutes)

            time_series = []
            by_step = aggregate_by_step(
                events, request.step_minutes, request.start_time, request.end_time
            )
            for timestamp, counts in by_step.items():
                step_start = datetime.fromisoformat(timestamp)
                step_alerts = [
                    a for a in alerts if step_start <= a.created_at < step_start + step
                ]
                time_series.append(
                    {
                        "timestamp": timestamp,
                        **counts,
                        "alerts": len(step_alerts),
                        "alert_details": [a.model_dump(mode="json") for a in step_alerts],
                    }
                )

            messages = aggregate_by_message(events)
            recent = sorted(alerts, key=lambda a: a.created_at, reverse=True)[:RECENT_ALERTS]
            span.set_attribute("aggregate.events", len(events))

            return {
                "time_series": time_series,
                "message_aggregated": messages[:TOP_MESSAGES],
                "recent_alerts": [
                    {
                        "id": a.id,
                        "message": a.message,
                        "status": a.status,
                        "event_count": a.event_count,
                        "created_at": a.created_at.isoformat(),
                        "sent_to": a.sent_to,
                    }
                    for a in recent
                ],
                "summary": {
                    "total_events": len(events),
                    "total_alerts": len(alerts),
                    "unique_messages": len(messages),
                },
            }
