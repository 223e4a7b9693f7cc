"""Tests for the event bucket store."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from conftest import FakeCollection

from contracts.events import LogEvent
from core.db.bucket_store import EventBucketStore


def _store(collection: FakeCollection, minutes: int = 60) -> EventBucketStore:
    async def granularity(tenant_id: str) -> int:
        return minutes

    return EventBucketStore(collection, granularity)


def _event(ts: datetime, message: str = "boom", **kwargs) -> LogEvent:
    return LogEvent(tenant_id="t1", message=message, timestamp=ts, **kwargs)


@pytest.mark.asyncio
async def test_append_creates_bucket_with_metadata():
    collection = FakeCollection()
    store = _store(collection, minutes=20)
    ts = datetime(2024, 3, 5, 12, 47, tzinfo=UTC)

    key = await store.append("t1", _event(ts))

    assert key == "t1_20240305_1240"
    doc = collection.docs[0]
    assert doc["_id"] == key
    assert doc["tenant_id"] == "t1"
    assert doc["start"] == datetime(2024, 3, 5, 12, 40, tzinfo=UTC)
    assert doc["end"] == datetime(2024, 3, 5, 13, 0, tzinfo=UTC)
    assert doc["bucket_minutes"] == 20
    assert doc["event_count"] == 1
    assert len(doc["events"]) == 1


@pytest.mark.asyncio
async def test_concurrent_appends_lose_nothing():
    collection = FakeCollection()
    store = _store(collection)
    base = datetime(2024, 3, 5, 12, 0, tzinfo=UTC)
    events = [_event(base + timedelta(seconds=i), message=f"m{i}") for i in range(50)]

    await asyncio.gather(*(store.append("t1", e) for e in events))

    assert len(collection.docs) == 1
    assert collection.docs[0]["event_count"] == 50
    stored = await store.read_range("t1", base, base + timedelta(minutes=59))
    assert sorted(e.id for e in stored) == sorted(e.id for e in events)


@pytest.mark.asyncio
async def test_read_range_trims_to_bounds_and_sorts():
    collection = FakeCollection()
    store = _store(collection)
    base = datetime(2024, 3, 5, 12, 0, tzinfo=UTC)
    for minutes in (50, 5, 30, 75, 130):
        await store.append("t1", _event(base + timedelta(minutes=minutes)))

    events = await store.read_range(
        "t1", base + timedelta(minutes=5), base + timedelta(minutes=75)
    )

    assert [e.timestamp for e in events] == [
        base + timedelta(minutes=m) for m in (5, 30, 50, 75)
    ]


@pytest.mark.asyncio
async def test_missing_buckets_read_as_empty():
    store = _store(FakeCollection())
    start = datetime(2024, 3, 5, 0, 0, tzinfo=UTC)
    assert await store.read_range("t1", start, start + timedelta(hours=6)) == []
    assert await store.read_buckets("t1", start, start + timedelta(hours=6)) == []


@pytest.mark.asyncio
async def test_tenants_do_not_share_buckets():
    collection = FakeCollection()
    store = _store(collection)
    ts = datetime(2024, 3, 5, 12, 0, tzinfo=UTC)
    await store.append("t1", _event(ts))
    await store.append("t2", LogEvent(tenant_id="t2", message="other", timestamp=ts))

    events = await store.read_range("t1", ts, ts)
    assert [e.tenant_id for e in events] == ["t1"]


@pytest.mark.asyncio
async def test_total_count_sums_event_counts():
    collection = FakeCollection()
    store = _store(collection)
    base = datetime(2024, 3, 5, 12, 0, tzinfo=UTC)
    for minutes in (0, 10, 70, 150):
        await store.append("t1", _event(base + timedelta(minutes=minutes)))

    assert await store.total_count("t1", base, base + timedelta(hours=3)) == 4
    assert await store.total_count("t1", base, base + timedelta(minutes=30)) == 2


@pytest.mark.asyncio
async def test_ensure_indexes():
    collection = FakeCollection()
    await _store(collection).ensure_indexes()
    assert collection.indexes == [([("tenant_id", 1), ("start", 1)], {})]
