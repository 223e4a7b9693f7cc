"""Operator-facing alert operations: test alerts, history and acknowledgement."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from apps.usage.quota import QuotaExceededError, UsageQuota
from contracts.alerts import Alert, AlertStatus, TriggerScope
from core.alerting.manager import NotificationDispatcher, summarize_failures
from core.db.alert_ledger import AlertLedger
from core.db.tenants import TenantRepository

logger = logging.getLogger(__name__)


class SmsNotConfiguredError(RuntimeError):
    def __init__(self):
        super().__init__("SMS service not configured")


class AlertsNotConfiguredError(ValueError):
    pass


class AlertNotFoundError(LookupError):
    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class AlertStateError(ValueError):
    pass


class AlertService:
    def __init__(
        self,
        tenants: TenantRepository,
        ledger: AlertLedger,
        quota: UsageQuota,
        dispatcher: NotificationDispatcher,
        clock: Any = None,
    ):
        self.tenants = tenants
        self.ledger = ledger
        self.quota = quota
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(UTC))

    async def send_test_alert(self, tenant_id: str) -> dict[str, Any]:
        """
        Send a test message to every configured destination.

        Raises:
            TenantNotFoundError: unknown tenant.
            AlertsNotConfiguredError: alerts disabled or no destinations configured.
            QuotaExceededError: test or daily alert cap reached.
            SmsNotConfiguredError: the gateway has no credential.
        """
        tenant = await self.tenants.require_tenant(tenant_id)
        config = tenant.alert_config
        if not config.enabled:
            raise AlertsNotConfiguredError("Alerts are not enabled for this tenant")
        if not config.phone_numbers:
            raise AlertsNotConfiguredError("No phone numbers configured for alerts")

        decision = await self.quota.can_send_alert(tenant_id, is_test=True)
        if not decision.allowed:
            raise QuotaExceededError.from_decision(decision)
        if not self.dispatcher.gateway.configured:
            raise SmsNotConfiguredError()

        text = (
            f"Test alert from {tenant.display_name or tenant_id}. "
            "Your alerts are working correctly!"
        )
        results = await self.dispatcher.deliver(list(config.phone_numbers), text)
        sent_to = [r.destination for r in results if r.success]
        failed = len(sent_to) < len(results)

        now = self.clock()
        alert = await self.ledger.insert(
            Alert(
                tenant_id=tenant_id,
                status=AlertStatus.SENT if sent_to else AlertStatus.FAILED,
                scope=TriggerScope.TEST,
                message="Test Alert",
                window_start=now,
                window_end=now,
                created_at=now,
                sent_at=now,
                sent_to=sent_to,
                error=f"Failed: {summarize_failures(results)}" if failed else None,
            )
        )
        if sent_to:
            await self.quota.increment_test_alerts(tenant_id)
        logger.info(
            f"[TEST ALERT] tenant={tenant_id} delivered={len(sent_to)}/{len(results)}"
        )

        return {
            "success": True,
            "alert_id": alert.id,
            "results": [
                {
                    "phone_number": r.destination,
                    "success": r.success,
                    "error": r.error,
                    "quota_remaining": r.quota_remaining,
                }
                for r in results
            ],
        }

    async def history(
        self,
        tenant_id: str,
        *,
        limit: int = 50,
        cursor: str | None = None,
        status: AlertStatus | None = None,
    ) -> dict[str, Any]:
        await self.tenants.require_tenant(tenant_id)
        alerts, next_cursor, has_more = await self.ledger.history(
            tenant_id, limit=limit, cursor=cursor, status=status
        )
        return {
            "alerts": [a.model_dump(mode="json") for a in alerts],
            "next_cursor": next_cursor,
            "has_more": has_more,
        }

    async def acknowledge(self, tenant_id: str, alert_id: str, user_id: str) -> Alert:
        """
        Record that ``user_id`` has seen the alert.

        Raises:
            AlertNotFoundError: no such alert for this tenant.
            AlertStateError: the alert is still pending or already acknowledged.
        """
        alert = await self.ledger.get(alert_id)
        if alert is None or alert.tenant_id != tenant_id:
            raise AlertNotFoundError(alert_id)

        updated = await self.ledger.acknowledge(alert_id, user_id)
        if updated is None:
            raise AlertStateError(
                f"Alert {alert_id} cannot be acknowledged from status {alert.status}"
            )
        logger.info(f"[ACK] Alert {alert_id} acknowledged by {user_id}")
        return updated
