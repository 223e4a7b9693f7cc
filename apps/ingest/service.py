"""Event ingestion path: quota, append, evaluate, publish."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apps.alerts.evaluator import AlertEvaluator
from apps.usage.quota import QuotaExceededError, UsageQuota
from contracts.events import IngestRequest, LogEvent
from core.db.bucket_store import EventBucketStore
from core.nats.publisher import LiveTotalsPublisher
from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

events_ingested = meter.create_counter(
    "logwatch_events_ingested_total", description="Events stored", unit="1"
)
events_rejected = meter.create_counter(
    "logwatch_events_rejected_total", description="Events rejected by quota", unit="1"
)

LIVE_TOTAL_WINDOW = timedelta(hours=24)


class EventIngestionService:
    """
    Accepts one event for a tenant.

    The quota check runs before anything is written. Once the event is
    stored the request succeeds: alert evaluation and the live total publish
    are best effort and only logged on failure.
    """

    def __init__(
        self,
        store: EventBucketStore,
        quota: UsageQuota,
        evaluator: AlertEvaluator,
        publisher: LiveTotalsPublisher | None = None,
        clock: Any = None,
    ):
        self.store = store
        self.quota = quota
        self.evaluator = evaluator
        self.publisher = publisher
        self.clock = clock or (lambda: datetime.now(UTC))

    async def ingest(self, tenant_id: str, request: IngestRequest) -> LogEvent:
        with tracer.start_as_current_span("logwatch.ingest") as span:
            span.set_attribute("tenant.id", tenant_id)

            decision = await self.quota.can_send_event(tenant_id)
            if not decision.allowed:
                events_rejected.add(1)
                logger.info(f"[INGEST] Rejected event for {tenant_id}: {decision.reason}")
                raise QuotaExceededError.from_decision(decision)

            event = LogEvent(
                tenant_id=tenant_id,
                type=request.type,
                message=request.message,
                timestamp=request.timestamp or self.clock(),
                meta=request.meta,
            )
            bucket = await self.store.append(tenant_id, event)
            await self.quota.increment_daily_events(tenant_id)
            events_ingested.add(1, {"type": str(event.type)})
            span.set_attribute("event.id", event.id)
            span.set_attribute("event.bucket", bucket)

        await self.evaluate(tenant_id, event)
        await self.publish_total(tenant_id)
        return event

    async def evaluate(self, tenant_id: str, event: LogEvent) -> None:
        try:
            await self.evaluator.evaluate(tenant_id, event)
        except Exception:
            logger.exception(f"[INGEST] Alert evaluation failed for {tenant_id}")

    async def publish_total(self, tenant_id: str) -> None:
        if self.publisher is None or not self.publisher.enabled:
            return
        try:
            now = self.clock()
            total = await self.store.total_count(tenant_id, now - LIVE_TOTAL_WINDOW, now)
            await self.publisher.publish_total(tenant_id, total)
        except Exception:
            logger.exception(f"[INGEST] Live total publish failed for {tenant_id}")
