"""Notification dispatcher: fans one alert out to every destination."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from prometheus_client import CollectorRegistry, Counter

from contracts.alerts import Alert
from core.alerting.gateway import DeliveryResult, SmsGateway
from core.db.alert_ledger import AlertLedger
from otel_init import get_tracer

logger = logging.getLogger(__name__)

CALL_PREFIX = "URGENT CALL ALERT: "


def summarize_failures(results: list[DeliveryResult]) -> str:
    return ", ".join(f"{r.destination}: {r.error}" for r in results if not r.success)


class NotificationDispatcher:
    """
    Sends an alert to all destinations and records the outcome in the ledger.

    Partial success counts as sent: ``sent_to`` holds the destinations that
    accepted the message and ``error`` lists the ones that did not. The daily
    alert counter is incremented once per alert with at least one success.
    """

    def __init__(
        self,
        ledger: AlertLedger,
        gateway: SmsGateway,
        quota: Any = None,
        registry: CollectorRegistry | None = None,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.quota = quota
        self.tracer = get_tracer("core.alerting.manager")
        self.counter = Counter(
            "logwatch_alert_notifications_total",
            "Alert notifications by final status",
            ["status"],
            registry=registry,
        )

    async def deliver(
        self, destinations: list[str], message: str
    ) -> list[DeliveryResult]:
        """Send to every destination concurrently; each send is bounded by the gateway timeout."""
        return list(
            await asyncio.gather(
                *(self.gateway.send(destination, message) for destination in destinations)
            )
        )

    async def _fail(self, alert_id: str, error: str) -> Alert | None:
        self.counter.labels(status="failed").inc()
        logger.warning(f"[DISPATCH] Alert {alert_id} failed: {error}")
        return await self.ledger.mark_failed(alert_id, error)

    async def dispatch(
        self,
        alert_id: str,
        destinations: list[str],
        message: str,
        *,
        tenant_id: str,
    ) -> Alert | None:
        with self.tracer.start_as_current_span("logwatch.alert.dispatch") as span:
            span.set_attribute("alert.id", alert_id)
            span.set_attribute("alert.tenant_id", tenant_id)
            span.set_attribute("alert.destinations", len(destinations))

            if not destinations:
                return await self._fail(alert_id, "No phone numbers configured")
            if not self.gateway.configured:
                return await self._fail(alert_id, "SMS service not configured")

            results = await self.deliver(destinations, message)
            sent_to = [r.destination for r in results if r.success]
            span.set_attribute("alert.delivered", len(sent_to))

            if not sent_to:
                return await self._fail(
                    alert_id,
                    f"Failed to send to all numbers: {summarize_failures(results)}",
                )

            error = None
            if len(sent_to) < len(results):
                error = f"Partial failure: {summarize_failures(results)}"
                logger.warning(f"[DISPATCH] Alert {alert_id}: {error}")

            alert = await self.ledger.mark_sent(alert_id, sent_to, error)
            self.counter.labels(status="sent").inc()
            if self.quota is not None:
                await self.quota.increment_daily_alerts(tenant_id)
            logger.info(
                f"[DISPATCH] Alert {alert_id} sent to {len(sent_to)}/{len(results)} destinations"
            )
            return alert
