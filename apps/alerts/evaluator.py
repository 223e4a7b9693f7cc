"""
Alert evaluator.

Runs on the ingestion path after every stored event. For each rule of the
tenant it counts the events inside the rule window and, when the count
reaches the threshold, creates an alert through the cooldown guard and hands
it to the notification dispatcher.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apps.alerts.cooldown import CooldownGuard
from apps.usage.quota import UsageQuota
from contracts.alerts import (
    Alert,
    AlertRule,
    GlobalLimit,
    MessageRule,
    NotificationType,
    TriggerScope,
)
from contracts.events import LogEvent
from contracts.tenant import TenantConfig
from core.alerting.manager import CALL_PREFIX, NotificationDispatcher
from core.db.alert_ledger import AlertLedger
from core.db.bucket_store import EventBucketStore
from core.db.tenants import TenantRepository
from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

alert_checks = meter.create_counter(
    "logwatch_alert_checks_total",
    description="Threshold checks by scope and outcome",
    unit="1",
)


def _admits(log_types: list, event_type: str) -> bool:
    return not log_types or event_type in log_types


class AlertEvaluator:
    """Evaluates a tenant's alert rules against a newly stored event."""

    def __init__(
        self,
        tenants: TenantRepository,
        store: EventBucketStore,
        ledger: AlertLedger,
        cooldown: CooldownGuard,
        quota: UsageQuota,
        dispatcher: NotificationDispatcher,
        clock: Any = None,
    ):
        self.tenants = tenants
        self.store = store
        self.ledger = ledger
        self.cooldown = cooldown
        self.quota = quota
        self.dispatcher = dispatcher
        self.clock = clock or (lambda: datetime.now(UTC))

    async def evaluate(self, tenant_id: str, new_event: LogEvent) -> list[Alert]:
        """
        Check every rule of the tenant. Never raises.

        Returns the alerts created by this call, in their state after dispatch.
        """
        try:
            with tracer.start_as_current_span("logwatch.alert.evaluate") as span:
                span.set_attribute("tenant.id", tenant_id)
                span.set_attribute("event.type", str(new_event.type))

                tenant = await self.tenants.get_tenant(tenant_id)
                if tenant is None:
                    logger.warning(f"[EVALUATOR] Tenant not found: {tenant_id}")
                    return []

                config = tenant.alert_config
                if not config.enabled or not config.alert_rules:
                    return []

                now = self.clock()
                created: list[Alert] = []
                for index, rule in enumerate(config.alert_rules):
                    try:
                        created.extend(
                            await self._evaluate_rule(tenant, rule, new_event, now)
                        )
                    except Exception:
                        logger.exception(
                            f"[EVALUATOR] Rule {index} failed for tenant {tenant_id}"
                        )
                span.set_attribute("alerts.created", len(created))
                return created
        except Exception:
            logger.exception(f"[EVALUATOR] Evaluation failed for tenant {tenant_id}")
            return []

    async def _evaluate_rule(
        self,
        tenant: TenantConfig,
        rule: AlertRule,
        new_event: LogEvent,
        now: datetime,
    ) -> list[Alert]:
        created: list[Alert] = []

        limit = rule.global_limit
        if limit is not None and limit.enabled and _admits(limit.log_types, new_event.type):
            try:
                alert = await self._check_global(tenant, rule, limit, now)
                if alert is not None:
                    created.append(alert)
            except Exception:
                logger.exception(f"[EVALUATOR] Global check failed for {tenant.id}")

        for message_rule in rule.message_rules:
            if message_rule.message != new_event.message:
                continue
            if not _admits(message_rule.log_types, new_event.type):
                continue
            try:
                alert = await self._check_message(tenant, rule, message_rule, now)
                if alert is not None:
                    created.append(alert)
            except Exception:
                logger.exception(
                    f"[EVALUATOR] Message check '{message_rule.message}' failed for {tenant.id}"
                )
        return created

    async def _window(
        self, tenant_id: str, window_minutes: int, now: datetime
    ) -> tuple[datetime, list[LogEvent]]:
        """Events with ``now - window < timestamp <= now``."""
        window_start = now - timedelta(minutes=window_minutes)
        events = await self.store.read_range(tenant_id, window_start, now)
        return window_start, [e for e in events if e.timestamp > window_start]

    async def _check_global(
        self,
        tenant: TenantConfig,
        rule: AlertRule,
        limit: GlobalLimit,
        now: datetime,
    ) -> Alert | None:
        window_start, events = await self._window(tenant.id, limit.window_minutes, now)
        matching = [e for e in events if _admits(limit.log_types, e.type)]
        if len(matching) < limit.max_alerts:
            alert_checks.add(1, {"scope": "global", "outcome": "below_threshold"})
            return None

        return await self._fire(
            tenant,
            rule,
            scope=TriggerScope.GLOBAL,
            rule_message=None,
            text=(
                f"Global threshold exceeded: {len(matching)} events "
                f"in {limit.window_minutes} minutes"
            ),
            window_minutes=limit.window_minutes,
            window_start=window_start,
            now=now,
            events=matching,
        )

    async def _check_message(
        self,
        tenant: TenantConfig,
        rule: AlertRule,
        message_rule: MessageRule,
        now: datetime,
    ) -> Alert | None:
        window_start, events = await self._window(
            tenant.id, message_rule.window_minutes, now
        )
        matching = [
            e
            for e in events
            if e.message == message_rule.message
            and _admits(message_rule.log_types, e.type)
        ]
        if len(matching) < message_rule.max_alerts:
            alert_checks.add(1, {"scope": "message", "outcome": "below_threshold"})
            return None

        return await self._fire(
            tenant,
            rule,
            scope=TriggerScope.MESSAGE,
            rule_message=message_rule.message,
            text=(
                f'Message threshold exceeded for "{message_rule.message}": '
                f"{len(matching)} events in {message_rule.window_minutes} minutes"
            ),
            window_minutes=message_rule.window_minutes,
            window_start=window_start,
            now=now,
            events=matching,
        )

    async def _fire(
        self,
        tenant: TenantConfig,
        rule: AlertRule,
        *,
        scope: TriggerScope,
        rule_message: str | None,
        text: str,
        window_minutes: int,
        window_start: datetime,
        now: datetime,
        events: list[LogEvent],
    ) -> Alert | None:
        async with self.cooldown.claim(
            tenant.id, scope, rule_message, window_minutes
        ) as allowed:
            if not allowed:
                alert_checks.add(1, {"scope": str(scope), "outcome": "cooldown"})
                return None

            decision = await self.quota.can_send_alert(tenant.id, is_test=False)
            if not decision.allowed:
                alert_checks.add(1, {"scope": str(scope), "outcome": "quota"})
                logger.info(
                    f"[ALERT LIMIT REACHED] tenant={tenant.id} reason={decision.reason} "
                    f"limit={decision.limit} current={decision.current}"
                )
                await self.cooldown.release(tenant.id, scope, rule_message)
                return None

            alert = await self.ledger.insert(
                Alert(
                    tenant_id=tenant.id,
                    notification_type=rule.notification_type,
                    scope=scope,
                    rule_message=rule_message,
                    message=text,
                    event_ids=[e.id for e in events],
                    event_count=len(events),
                    window_start=window_start,
                    window_end=now,
                    created_at=now,
                )
            )

        alert_checks.add(1, {"scope": str(scope), "outcome": "fired"})
        logger.info(
            f"[ALERT TRIGGERED] id={alert.id} tenant={tenant.id} scope={scope} "
            f"type={alert.notification_type} count={alert.event_count}"
        )

        body = text
        if rule.notification_type == NotificationType.CALL:
            body = f"{CALL_PREFIX}{text}"
        dispatched = await self.dispatcher.dispatch(
            alert.id,
            list(tenant.alert_config.phone_numbers),
            body,
            tenant_id=tenant.id,
        )
        return dispatched or alert
