"""Dependency health for readiness checks and the NATS heartbeat subject."""

from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from typing import Any

from opentelemetry.trace import Status, StatusCode

from core.db.mongo import MongoAdapter
from core.db.redis import RedisClaimAdapter
from otel_init import get_tracer

HEARTBEAT_SUBJECT = "logwatch.heartbeat"


class HeartbeatService:
    """Reports Mongo (required) and Redis (optional) connectivity."""

    def __init__(
        self,
        *,
        version: str,
        mongo: MongoAdapter | None = None,
        redis: RedisClaimAdapter | None = None,
        response_budget_ms: float = 50.0,
    ):
        self.version = version
        self.mongo = mongo
        self.redis = redis
        self.response_budget_ms = response_budget_ms
        self.tracer = get_tracer(__name__)

    async def build_heartbeat(self) -> dict[str, Any]:
        start = time.perf_counter()

        with self.tracer.start_as_current_span("logwatch.heartbeat") as span:
            mongo_ok = self.mongo is not None and await self.mongo.ping()
            redis_state = "disabled"
            if self.redis is not None:
                redis_state = "connected" if await self.redis.ping() else "disconnected"
            elapsed_ms = (time.perf_counter() - start) * 1000.0

            ready = mongo_ok and redis_state != "disconnected"
            payload = {
                "status": "ready" if ready else "degraded",
                "timestamp": datetime.now(UTC).isoformat(),
                "version": self.version,
                "dependencies": {
                    "mongo": "connected" if mongo_ok else "disconnected",
                    "redis": redis_state,
                },
                "response_time_ms": elapsed_ms,
            }

            span.set_attribute("service.health.ready", ready)
            span.set_attribute("service.health.mongo", mongo_ok)
            span.set_attribute("service.health.redis", redis_state)
            span.set_attribute("service.health.response_time_ms", elapsed_ms)

            if elapsed_ms >= self.response_budget_ms:
                span.set_status(Status(StatusCode.ERROR, "heartbeat_response_over_budget"))

            return payload

    async def handle_request(self, msg: Any) -> None:
        payload = await self.build_heartbeat()
        await msg.respond(json.dumps(payload, separators=(",", ":")).encode())

    async def start(self, nats_client: Any) -> None:
        await nats_client.subscribe(HEARTBEAT_SUBJECT, cb=self.handle_request)
