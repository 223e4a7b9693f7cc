"""Publishes per-tenant live event totals for dashboards."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "logwatch.events.total"


class LiveTotalsPublisher:
    """
    Pushes the recomputed event total of a tenant after each ingestion.

    Subscribers listen on ``logwatch.events.total.<tenant_id>``. Without a
    NATS client every publish is a no-op.
    """

    def __init__(self, nats_client: Any = None, clock: Any = None):
        self.nats_client = nats_client
        self.clock = clock or (lambda: datetime.now(UTC))

    @property
    def enabled(self) -> bool:
        return self.nats_client is not None

    @staticmethod
    def subject_for(tenant_id: str) -> str:
        return f"{SUBJECT_PREFIX}.{tenant_id}"

    async def publish_total(self, tenant_id: str, total: int) -> bool:
        if self.nats_client is None:
            return False

        payload = {
            "type": "total",
            "tenant_id": tenant_id,
            "count": total,
            "timestamp": self.clock().isoformat(),
        }
        await self.nats_client.publish(
            self.subject_for(tenant_id),
            json.dumps(payload, separators=(",", ":")).encode(),
        )
        logger.debug(f"[LIVE] {tenant_id} total={total}")
        return True
