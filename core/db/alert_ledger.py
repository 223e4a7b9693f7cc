"""Alert ledger over the alerts collection."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from contracts.alerts import Alert, AlertStatus, TriggerScope
from contracts.events import as_utc

logger = logging.getLogger(__name__)

RULE_SCOPES = [TriggerScope.GLOBAL.value, TriggerScope.MESSAGE.value]


class AlertLedger:
    """Append-mostly record of alert attempts (pending -> sent/failed)."""

    def __init__(self, collection: Any, clock: Any = None):
        self.collection = collection
        self.clock = clock or (lambda: datetime.now(UTC))

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("id", unique=True)
        await self.collection.create_index(
            [
                ("tenant_id", 1),
                ("scope", 1),
                ("rule_message", 1),
                ("created_at", -1),
            ]
        )
        await self.collection.create_index(
            [("tenant_id", 1), ("created_at", -1), ("id", -1)]
        )

    @staticmethod
    def _to_alert(doc: dict[str, Any] | None) -> Alert | None:
        if doc is None:
            return None
        payload = {k: v for k, v in doc.items() if k != "_id"}
        return Alert(**payload)

    async def insert(self, alert: Alert) -> Alert:
        result = await self.collection.insert_one(alert.model_dump())
        if not result.acknowledged:
            raise RuntimeError(f"Alert {alert.id} was not persisted")
        return alert

    async def get(self, alert_id: str) -> Alert | None:
        return self._to_alert(await self.collection.find_one({"id": alert_id}))

    async def _update(self, alert_id: str, fields: dict[str, Any]) -> Alert | None:
        await self.collection.update_one({"id": alert_id}, {"$set": fields})
        return await self.get(alert_id)

    async def mark_sent(
        self, alert_id: str, sent_to: list[str], error: str | None = None
    ) -> Alert | None:
        return await self._update(
            alert_id,
            {
                "status": AlertStatus.SENT.value,
                "sent_at": self.clock(),
                "sent_to": list(sent_to),
                "error": error,
            },
        )

    async def mark_failed(self, alert_id: str, error: str) -> Alert | None:
        return await self._update(
            alert_id,
            {
                "status": AlertStatus.FAILED.value,
                "sent_at": self.clock(),
                "error": error,
            },
        )

    async def acknowledge(self, alert_id: str, user_id: str) -> Alert | None:
        """Mark a terminal alert as acknowledged; pending alerts are left alone."""
        result = await self.collection.update_one(
            {
                "id": alert_id,
                "status": {
                    "$in": [AlertStatus.SENT.value, AlertStatus.FAILED.value]
                },
            },
            {
                "$set": {
                    "status": AlertStatus.ACKNOWLEDGED.value,
                    "acknowledged_at": self.clock(),
                    "acknowledged_by": user_id,
                }
            },
        )
        if not result.modified_count:
            return None
        return await self.get(alert_id)

    async def find_recent(
        self,
        tenant_id: str,
        since: datetime,
        *,
        scope: TriggerScope | None = None,
        rule_message: str | None = None,
    ) -> Alert | None:
        """
        Newest alert for the tenant created at or after ``since``.

        Without ``scope`` every rule-triggered alert matches; test alerts never do.
        """
        query: dict[str, Any] = {
            "tenant_id": tenant_id,
            "created_at": {"$gte": as_utc(since)},
        }
        if scope is not None:
            query["scope"] = str(scope)
        else:
            query["scope"] = {"$in": RULE_SCOPES}
        if rule_message is not None:
            query["rule_message"] = rule_message

        cursor = self.collection.find(query).sort("created_at", -1).limit(1)
        docs = [doc async for doc in cursor]
        return self._to_alert(docs[0]) if docs else None

    async def query_range(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> list[Alert]:
        cursor = self.collection.find(
            {
                "tenant_id": tenant_id,
                "created_at": {"$gte": as_utc(start), "$lte": as_utc(end)},
            }
        ).sort("created_at", -1)
        return [self._to_alert(doc) async for doc in cursor]

    async def history(
        self,
        tenant_id: str,
        *,
        limit: int = 50,
        cursor: str | None = None,
        status: AlertStatus | None = None,
    ) -> tuple[list[Alert], str | None, bool]:
        """Newest-first page of alerts; ``cursor`` is the last id of the previous page."""
        if limit < 1:
            raise ValueError("limit must be a positive integer")

        query: dict[str, Any] = {"tenant_id": tenant_id}
        if status is not None:
            query["status"] = str(status)
        if cursor:
            anchor = await self.collection.find_one(
                {"id": cursor, "tenant_id": tenant_id}
            )
            if anchor is not None:
                # alerts fired by one event share created_at; id breaks the tie
                query["$or"] = [
                    {"created_at": {"$lt": anchor["created_at"]}},
                    {"created_at": anchor["created_at"], "id": {"$lt": anchor["id"]}},
                ]

        docs = (
            self.collection.find(query)
            .sort([("created_at", -1), ("id", -1)])
            .limit(limit)
        )
        alerts = [self._to_alert(doc) async for doc in docs]
        next_cursor = alerts[-1].id if alerts else None
        return alerts, next_cursor, len(alerts) == limit
