"""
Logwatch - time-bucketed event store and threshold alert engine
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from nats import connect as nats_connect
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from apps.alerts.cooldown import CooldownGuard
from apps.alerts.evaluator import AlertEvaluator
from apps.alerts.service import (
    AlertNotFoundError,
    AlertsNotConfiguredError,
    AlertService,
    AlertStateError,
    SmsNotConfiguredError,
)
from apps.dashboard.aggregator import InvalidAggregateRequest, RangeAggregator
from apps.dashboard.cache import TTLCache
from apps.ingest.service import EventIngestionService
from apps.usage.quota import QuotaExceededError, UsageQuota
from contracts.alerts import AlertStatus
from contracts.dashboard import AggregateRequest
from contracts.events import IngestRequest
from core.alerting.gateway import SmsGateway
from core.alerting.manager import NotificationDispatcher
from core.config import AppConfig
from core.db.alert_ledger import AlertLedger
from core.db.bucket_store import EventBucketStore
from core.db.mongo import MongoAdapter
from core.db.redis import RedisClaimAdapter
from core.db.tenants import TenantNotFoundError, TenantRepository
from core.nats.heartbeat import HeartbeatService
from core.nats.publisher import LiveTotalsPublisher
from otel_init import attach_logging_handler, instrument_fastapi_app, setup_telemetry

config = AppConfig.from_env()

# Setup logging
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Logwatch",
    description="Time-bucketed event store and threshold alert engine",
    version="1.0.0",
)
app.state.config = config
app.state.mongo = None
app.state.redis = None
app.state.nats_client = None
app.state.heartbeat_service = None


def wire_services(
    state: Any,
    *,
    buckets: Any,
    alerts: Any,
    tenants: Any,
    gateway: SmsGateway,
    settings: AppConfig,
    redis: Optional[RedisClaimAdapter] = None,
    nats_client: Any = None,
    registry: Any = None,
) -> None:
    """Build the service graph over the given collections and attach it to ``state``."""
    tenant_repo = TenantRepository(tenants)
    quota = UsageQuota(tenant_repo)
    store = EventBucketStore(buckets, granularity=quota.bucket_minutes_for)
    ledger = AlertLedger(alerts)
    dispatcher = NotificationDispatcher(ledger, gateway, quota=quota, registry=registry)
    cooldown = CooldownGuard(
        ledger, redis=redis, max_cooldown_minutes=settings.max_cooldown_minutes
    )
    evaluator = AlertEvaluator(tenant_repo, store, ledger, cooldown, quota, dispatcher)

    state.tenants = tenant_repo
    state.quota = quota
    state.store = store
    state.ledger = ledger
    state.gateway = gateway
    state.dispatcher = dispatcher
    state.evaluator = evaluator
    state.ingestion = EventIngestionService(
        store, quota, evaluator, publisher=LiveTotalsPublisher(nats_client)
    )
    state.alert_service = AlertService(tenant_repo, ledger, quota, dispatcher)
    state.aggregator = RangeAggregator(
        store, ledger, cache=TTLCache(ttl_seconds=settings.aggregate_cache_ttl_seconds)
    )


@app.on_event("startup")
async def startup_event():
    """Run on startup."""
    setup_telemetry(service_name="logwatch", service_version=app.version)
    instrument_fastapi_app(app)
    attach_logging_handler()

    app.state.mongo = MongoAdapter(config.mongo_url, config.mongo_db)
    await app.state.mongo.connect()

    if config.redis_url:
        try:
            app.state.redis = RedisClaimAdapter(config.redis_url)
            await app.state.redis.connect()
            logger.info("Redis cooldown claims enabled")
        except Exception as exc:
            app.state.redis = None
            logger.warning(f"Redis cooldown claims disabled: {exc}")

    app.state.heartbeat_service = HeartbeatService(
        version=app.version, mongo=app.state.mongo, redis=app.state.redis
    )

    if config.nats_url:
        try:
            app.state.nats_client = await nats_connect(config.nats_url, connect_timeout=1)
            await app.state.heartbeat_service.start(app.state.nats_client)
            logger.info("NATS live totals and heartbeat active")
        except Exception as exc:
            app.state.nats_client = None
            logger.warning(f"NATS live totals disabled: {exc}")

    if not config.sms_api_key:
        logger.warning("TEXTBELT_API_KEY not set - alerts will be recorded as failed")

    wire_services(
        app.state,
        buckets=app.state.mongo.buckets,
        alerts=app.state.mongo.alerts,
        tenants=app.state.mongo.tenants,
        gateway=SmsGateway(
            config.sms_gateway_url, config.sms_api_key, config.sms_timeout_seconds
        ),
        settings=config,
        redis=app.state.redis,
        nats_client=app.state.nats_client,
        registry=REGISTRY,
    )
    await app.state.store.ensure_indexes()
    await app.state.ledger.ensure_indexes()

    logger.info("Logwatch service started")


@app.on_event("shutdown")
async def shutdown_event():
    """Close gateway, NATS, Redis and Mongo connections."""
    if getattr(app.state, "gateway", None) is not None:
        await app.state.gateway.close()
    if app.state.nats_client is not None:
        await app.state.nats_client.close()
    if app.state.redis is not None:
        await app.state.redis.disconnect()
    if app.state.mongo is not None:
        await app.state.mongo.disconnect()


@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    return JSONResponse(
        status_code=429,
        content={"error": exc.reason, "limit": exc.limit, "current": exc.current},
    )


@app.exception_handler(TenantNotFoundError)
async def tenant_not_found_handler(request: Request, exc: TenantNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(AlertNotFoundError)
async def alert_not_found_handler(request: Request, exc: AlertNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(AlertStateError)
async def alert_state_handler(request: Request, exc: AlertStateError):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(InvalidAggregateRequest)
@app.exception_handler(AlertsNotConfiguredError)
async def bad_request_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(SmsNotConfiguredError)
async def sms_not_configured_handler(request: Request, exc: SmsNotConfiguredError):
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.post("/api/v1/log")
async def log_event(
    body: IngestRequest, x_tenant_id: str = Header(..., alias="X-Tenant-Id")
):
    event = await app.state.ingestion.ingest(x_tenant_id, body)
    return {"status": "logged", "event_id": event.id}


@app.post("/api/v1/events/aggregate")
async def aggregate_events(
    body: AggregateRequest, x_tenant_id: str = Header(..., alias="X-Tenant-Id")
):
    await app.state.tenants.require_tenant(x_tenant_id)
    return await app.state.aggregator.aggregate(x_tenant_id, body)


@app.get("/api/v1/alerts/history")
async def alert_history(
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    limit: int = Query(50, ge=1, le=200),
    cursor: Optional[str] = None,
    status: Optional[AlertStatus] = None,
):
    return await app.state.alert_service.history(
        x_tenant_id, limit=limit, cursor=cursor, status=status
    )


@app.post("/api/v1/alerts/test")
async def send_test_alert(x_tenant_id: str = Header(..., alias="X-Tenant-Id")):
    return await app.state.alert_service.send_test_alert(x_tenant_id)


@app.post("/api/v1/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    x_user_id: str = Header("anonymous", alias="X-User-Id"),
):
    alert = await app.state.alert_service.acknowledge(x_tenant_id, alert_id, x_user_id)
    return alert.model_dump(mode="json")


@app.get("/api/v1/usage")
async def usage(x_tenant_id: str = Header(..., alias="X-Tenant-Id")):
    return await app.state.quota.snapshot(x_tenant_id)


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Readiness probe."""
    if app.state.heartbeat_service is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    payload = await app.state.heartbeat_service.build_heartbeat()
    return JSONResponse(
        status_code=200 if payload["status"] == "ready" else 503, content=payload
    )


@app.get("/metrics")
async def metrics():
    """Prometheus scrape endpoint."""
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "logwatch", "version": app.version, "status": "operational"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec
