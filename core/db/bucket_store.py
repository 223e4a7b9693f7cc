"""Event bucket store over a document collection."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from contracts.events import EventBucket, LogEvent, as_utc
from core.buckets import bucket_bounds, bucket_id, bucket_range

logger = logging.getLogger(__name__)

GranularityResolver = Callable[[str], Awaitable[int]]


class EventBucketStore:
    """
    Append/read store keyed by bucket id.

    Each bucket document looks like::

        {"_id": "<tenant>_<YYYYMMDD>_<HHMM>", "tenant_id": ..., "start": ...,
         "end": ..., "bucket_minutes": ..., "events": [...], "event_count": n}

    Appends are a single upsert combining ``$push`` and ``$inc`` so concurrent
    writers to the same bucket never overwrite each other.
    """

    def __init__(self, collection: Any, granularity: GranularityResolver):
        self.collection = collection
        self.granularity = granularity

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("tenant_id", 1), ("start", 1)])

    async def append(self, tenant_id: str, event: LogEvent) -> str:
        bucket_minutes = await self.granularity(tenant_id)
        key = bucket_id(tenant_id, event.timestamp, bucket_minutes)
        start, end = bucket_bounds(event.timestamp, bucket_minutes)

        await self.collection.update_one(
            {"_id": key},
            {
                "$setOnInsert": {
                    "tenant_id": tenant_id,
                    "start": start,
                    "end": end,
                    "bucket_minutes": bucket_minutes,
                },
                "$push": {"events": event.model_dump(mode="python")},
                "$inc": {"event_count": 1},
            },
            upsert=True,
        )
        return key

    async def _fetch(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        bucket_minutes = await self.granularity(tenant_id)
        ids = bucket_range(tenant_id, start, end, bucket_minutes)
        if not ids:
            return []

        cursor = self.collection.find({"_id": {"$in": ids}})
        docs = [doc async for doc in cursor]
        if len(docs) < len(ids):
            logger.debug(
                f"{len(ids) - len(docs)} of {len(ids)} buckets empty for {tenant_id}"
            )
        docs.sort(key=lambda doc: as_utc(doc["start"]))
        return docs

    async def read_buckets(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> list[EventBucket]:
        """Buckets covering the range, with events trimmed to ``[start, end]``."""
        start_utc, end_utc = as_utc(start), as_utc(end)
        buckets: list[EventBucket] = []
        for doc in await self._fetch(tenant_id, start_utc, end_utc):
            events = [
                event
                for event in (LogEvent(**raw) for raw in doc.get("events", []))
                if start_utc <= event.timestamp <= end_utc
            ]
            buckets.append(
                EventBucket(
                    id=doc["_id"],
                    tenant_id=doc["tenant_id"],
                    start=doc["start"],
                    end=doc["end"],
                    bucket_minutes=doc["bucket_minutes"],
                    events=events,
                    event_count=len(events),
                )
            )
        return buckets

    async def read_range(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> list[LogEvent]:
        """Every stored event with ``start <= timestamp <= end``, oldest first."""
        events = [
            event
            for bucket in await self.read_buckets(tenant_id, start, end)
            for event in bucket.events
        ]
        events.sort(key=lambda event: event.timestamp)
        return events

    async def total_count(self, tenant_id: str, start: datetime, end: datetime) -> int:
        """Sum of stored ``event_count`` over the buckets covering the range."""
        return sum(
            int(doc.get("event_count", 0))
            for doc in await self._fetch(tenant_id, as_utc(start), as_utc(end))
        )
