"""Shared fakes: an in-memory Mongo-style collection, a gateway and a clock."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from apps.alerts.cooldown import CooldownGuard
from apps.alerts.evaluator import AlertEvaluator
from apps.usage.quota import UsageQuota
from contracts.tenant import next_utc_midnight
from core.alerting.gateway import DeliveryResult
from core.alerting.manager import NotificationDispatcher
from core.db.alert_ledger import AlertLedger
from core.db.bucket_store import EventBucketStore
from core.db.tenants import TenantRepository

_MISSING = object()


def _get_path(doc: dict[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(
        k.startswith("$") for k in condition
    ):
        for op, operand in condition.items():
            if op == "$exists":
                if (value is not _MISSING) != bool(operand):
                    return False
            elif op == "$in":
                if value is _MISSING or value not in operand:
                    return False
            elif value is _MISSING or value is None:
                return False
            elif op == "$gte" and not value >= operand:
                return False
            elif op == "$lte" and not value <= operand:
                return False
            elif op == "$gt" and not value > operand:
                return False
            elif op == "$lt" and not value < operand:
                return False
        return True
    return value is not _MISSING and value == condition


def matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(doc, branch) for branch in condition):
                return False
        elif not _matches_condition(_get_path(doc, key), condition):
            return False
    return True


@dataclass
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: Any = None


@dataclass
class InsertResult:
    inserted_id: Any
    acknowledged: bool = True


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]):
        self._docs = docs

    def sort(self, key: Any, direction: int = 1) -> "FakeCursor":
        keys = key if isinstance(key, list) else [(key, direction)]
        # stable sorts applied from the least significant key
        for path, order in reversed(keys):
            self._docs.sort(key=lambda d, p=path: _get_path(d, p), reverse=order < 0)
        return self

    def limit(self, n: int) -> "FakeCursor":
        self._docs = self._docs[:n]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield copy.deepcopy(doc)


class FakeCollection:
    """Just enough of a Motor collection for the stores under test."""

    def __init__(self, docs: list[dict[str, Any]] | None = None):
        self.docs: list[dict[str, Any]] = [copy.deepcopy(d) for d in docs or []]
        self.indexes: list[Any] = []
        self.find_calls = 0
        self._next_id = 0

    async def create_index(self, keys: Any, **kwargs: Any) -> str:
        self.indexes.append((keys, kwargs))
        return str(keys)

    async def insert_one(self, doc: dict[str, Any]) -> InsertResult:
        await asyncio.sleep(0)
        stored = copy.deepcopy(doc)
        if "_id" not in stored:
            self._next_id += 1
            stored["_id"] = self._next_id
        self.docs.append(stored)
        return InsertResult(inserted_id=stored["_id"])

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        for doc in self.docs:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        self.find_calls += 1
        return FakeCursor([d for d in self.docs if matches(d, query or {})])

    async def update_one(
        self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False
    ) -> UpdateResult:
        # yield first so concurrent callers interleave between operations
        await asyncio.sleep(0)
        target = next((d for d in self.docs if matches(d, query)), None)
        inserted = False
        if target is None:
            if not upsert:
                return UpdateResult(matched_count=0, modified_count=0)
            target = {k: v for k, v in query.items() if not isinstance(v, dict)}
            self.docs.append(target)
            inserted = True
            for path, value in update.get("$setOnInsert", {}).items():
                _set_path(target, path, copy.deepcopy(value))

        for path, value in update.get("$set", {}).items():
            _set_path(target, path, copy.deepcopy(value))
        for path, amount in update.get("$inc", {}).items():
            current = _get_path(target, path)
            _set_path(target, path, (0 if current is _MISSING else current) + amount)
        for path, value in update.get("$push", {}).items():
            current = _get_path(target, path)
            if current is _MISSING:
                current = []
                _set_path(target, path, current)
            current.append(copy.deepcopy(value))

        return UpdateResult(
            matched_count=0 if inserted else 1,
            modified_count=0 if inserted else 1,
            upserted_id=target.get("_id") if inserted else None,
        )


class FakeRedis:
    """Enough of ``redis.asyncio.Redis`` for ``SET NX EX`` claims."""

    def __init__(self):
        self.keys = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.keys:
            return None
        self.keys[key] = (value, ex)
        return True

    async def delete(self, key):
        return 1 if self.keys.pop(key, None) is not None else 0


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class FakeGateway:
    """Gateway double: per-destination outcomes, records every call."""

    configured: bool = True
    failures: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def send(self, destination: str, message: str) -> DeliveryResult:
        self.calls.append((destination, message))
        await asyncio.sleep(0)
        if destination in self.failures:
            return DeliveryResult(
                destination=destination, success=False, error=self.failures[destination]
            )
        return DeliveryResult(destination=destination, success=True)

    async def close(self) -> None:
        return None


def tenant_doc(
    tenant_id: str = "t1",
    *,
    tier: str = "pro",
    enabled: bool = True,
    phone_numbers: list[str] | None = None,
    rules: list[dict[str, Any]] | None = None,
    usage: dict[str, Any] | None = None,
    now: datetime | None = None,
    **extra: Any,
) -> dict[str, Any]:
    now = now or datetime.now(UTC)
    reset_at = next_utc_midnight(now)
    doc = {
        "_id": tenant_id,
        "display_name": "Acme",
        "subscription_tier": tier,
        "alert_config": {
            "enabled": enabled,
            "phone_numbers": ["+15550000001"] if phone_numbers is None else phone_numbers,
            "alert_rules": rules or [],
        },
        "usage": {
            "daily_events": 0,
            "daily_events_reset_at": reset_at,
            "daily_alerts": 0,
            "daily_alerts_reset_at": reset_at,
            "total_test_alerts": 0,
            **(usage or {}),
        },
    }
    doc.update(extra)
    return doc


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 5, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock(now: datetime) -> FakeClock:
    return FakeClock(now)


def build_engine(doc: dict[str, Any], clock: FakeClock, gateway: Any = None) -> Any:
    """Wire the alerting pipeline over fake collections for one tenant."""
    tenants = FakeCollection([doc])
    buckets = FakeCollection()
    alerts = FakeCollection()
    repo = TenantRepository(tenants)
    quota = UsageQuota(repo, clock=clock)
    store = EventBucketStore(buckets, quota.bucket_minutes_for)
    ledger = AlertLedger(alerts, clock=clock)
    gateway = gateway if gateway is not None else FakeGateway()
    registry = CollectorRegistry()
    dispatcher = NotificationDispatcher(ledger, gateway, quota=quota, registry=registry)
    cooldown = CooldownGuard(ledger, clock=clock)
    evaluator = AlertEvaluator(repo, store, ledger, cooldown, quota, dispatcher, clock=clock)
    return SimpleNamespace(
        tenants=tenants,
        buckets=buckets,
        alerts=alerts,
        repo=repo,
        quota=quota,
        store=store,
        ledger=ledger,
        gateway=gateway,
        registry=registry,
        dispatcher=dispatcher,
        cooldown=cooldown,
        evaluator=evaluator,
        clock=clock,
    )
