"""Cooldown guard: at most one alert per rule per cooldown interval."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

from contracts.alerts import TriggerScope
from core.db.alert_ledger import AlertLedger
from core.db.redis import RedisClaimAdapter

logger = logging.getLogger(__name__)

MAX_COOLDOWN_MINUTES = 60


class CooldownGuard:
    """
    Suppresses repeat alerts for the same trigger.

    The ledger is the source of truth. A message rule is cooling down when an
    alert for the same rule message was created within the cooldown interval;
    the global rule cools down after any rule alert for the tenant. Test
    alerts never count. ``claim`` serializes the
    check-then-create sequence per trigger so two concurrent evaluations
    cannot both create an alert. Within a process this is an asyncio lock;
    across processes it is a Redis ``SET NX EX`` claim when Redis is wired in.
    """

    def __init__(
        self,
        ledger: AlertLedger,
        redis: RedisClaimAdapter | None = None,
        max_cooldown_minutes: int = MAX_COOLDOWN_MINUTES,
        clock: Any = None,
    ):
        self.ledger = ledger
        self.redis = redis
        self.max_cooldown_minutes = max_cooldown_minutes
        self.clock = clock or (lambda: datetime.now(UTC))
        self._locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def cooldown_minutes(self, window_minutes: int) -> int:
        return min(window_minutes, self.max_cooldown_minutes)

    @staticmethod
    def claim_key(tenant_id: str, scope: TriggerScope, message: str | None) -> str:
        return f"cooldown:{tenant_id}:{scope}:{message or ''}"

    async def has_recent_alert(
        self,
        tenant_id: str,
        scope: TriggerScope,
        message: str | None,
        window_minutes: int,
    ) -> bool:
        since = self.clock() - timedelta(minutes=self.cooldown_minutes(window_minutes))
        if scope == TriggerScope.MESSAGE:
            recent = await self.ledger.find_recent(
                tenant_id, since, scope=scope, rule_message=message
            )
        else:
            # any rule alert for the tenant holds back the global check
            recent = await self.ledger.find_recent(tenant_id, since)
        return recent is not None

    def _lock_for(self, tenant_id: str, scope: TriggerScope, message: str | None) -> asyncio.Lock:
        key = (tenant_id, str(scope), message or "")
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def release(
        self, tenant_id: str, scope: TriggerScope, message: str | None
    ) -> None:
        """Drop the cross-process claim for a trigger that did not produce an alert."""
        if self.redis is not None:
            await self.redis.release(self.claim_key(tenant_id, scope, message))

    @asynccontextmanager
    async def claim(
        self,
        tenant_id: str,
        scope: TriggerScope,
        message: str | None,
        window_minutes: int,
    ) -> AsyncIterator[bool]:
        """
        Yield ``True`` when the caller may create an alert for this trigger.

        The alert must be inserted inside the ``async with`` block so the next
        holder of the lock sees it in the ledger.
        """
        async with self._lock_for(tenant_id, scope, message):
            if await self.has_recent_alert(tenant_id, scope, message, window_minutes):
                logger.info(
                    f"[COOLDOWN] Suppressed {scope} alert for {tenant_id}"
                    + (f" ({message})" if message else "")
                )
                yield False
                return

            if self.redis is not None:
                ttl = self.cooldown_minutes(window_minutes) * 60
                if not await self.redis.claim(
                    self.claim_key(tenant_id, scope, message), ttl
                ):
                    logger.info(
                        f"[COOLDOWN] {scope} trigger for {tenant_id} claimed by another worker"
                    )
                    yield False
                    return

            try:
                yield True
            except BaseException:
                await self.release(tenant_id, scope, message)
                raise
