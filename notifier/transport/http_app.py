# notifier/transport/http_app.py
"""
HTTP application: notification and subscription management plus the
background dispatcher.

    uvicorn notifier.transport.http_app:app

Operational endpoints:
    GET /health   liveness
    GET /ready    database probe
    GET /metrics  in-process counters, histograms and dispatcher state
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from notifier.api.errors import ServiceError
from notifier.api.models import NotificationRequest, Page, SubscriptionRequest
from notifier.api.service import NotificationService, SubscriptionService
from notifier.config import settings, validate_or_warn
from notifier.core.dispatch import SubscriptionProcessor
from notifier.core.domain import SenderType, Severity
from notifier.core.handlers.registry import HandlerRegistry, build_handlers
from notifier.infra.db_async import check_connection, close_pool, init_pool
from notifier.infra.logging_config import get_logger, setup_logging
from notifier.infra.metrics import get_metrics_collector
from notifier.infra.pg_notification_repo_async import AsyncPostgresNotificationRepository
from notifier.infra.pg_subscription_repo_async import AsyncPostgresSubscriptionRepository
from notifier.infra.scheduler import DispatchScheduler
from notifier.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)

# Initialize logging first
setup_logging(level=settings.log_level, use_json=settings.is_production)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_subscription_service(request: Request) -> SubscriptionService:
    return request.app.state.subscription_service


def page_size(size: int | None) -> int:
    if size is None:
        return settings.default_page_size
    return min(size, settings.max_page_size)


def paged_response(page: Page) -> JSONResponse:
    return JSONResponse(
        content=[item.model_dump(mode="json") for item in page.items],
        headers={"Content-Range": page.content_range},
    )


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting notifier: env={settings.app_env}")

    for warning in validate_or_warn(settings):
        logger.warning(f"Config: {warning}")

    await init_pool()
    logger.info("Database pool initialized")

    notifications = AsyncPostgresNotificationRepository()
    subscriptions = AsyncPostgresSubscriptionRepository()

    handlers = build_handlers()
    registry = HandlerRegistry(handlers)
    processor = SubscriptionProcessor(
        subscriptions=subscriptions,
        notifications=notifications,
        registry=registry,
        delivery_timeout=settings.dispatch_delivery_timeout_seconds,
    )

    fastapi_app.state.notification_service = NotificationService(notifications)
    fastapi_app.state.subscription_service = SubscriptionService(subscriptions, handlers)
    fastapi_app.state.processor = processor

    scheduler = None
    if settings.dispatch_enabled:
        scheduler = DispatchScheduler(processor.tick, interval=settings.dispatch_interval_seconds)
        await scheduler.start()
    else:
        logger.info("Dispatch scheduler skipped (dispatch_enabled=false)")
    fastapi_app.state.scheduler = scheduler

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    if scheduler is not None:
        await scheduler.stop()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Notifier",
    description="Notification storage with scheduled subscription delivery",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["Content-Range", "Location", "X-Request-ID"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Location", "X-Request-ID"],
    )

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Map service-layer errors to their HTTP status"""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


# ============================================================================
# OPERATIONAL ENDPOINTS
# ============================================================================

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/ready")
async def ready():
    if not await check_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": False})
    return {"status": "ready", "database": True}


@app.get("/metrics")
async def metrics(request: Request):
    processor: SubscriptionProcessor | None = getattr(request.app.state, "processor", None)
    scheduler: DispatchScheduler | None = getattr(request.app.state, "scheduler", None)
    dispatcher = {
        "handlers_endorsed": processor.registry.names() if processor else [],
        "handlers_initialized": processor.registry.initialized if processor else False,
        "scheduler_running": scheduler.running if scheduler else False,
        "ticks": scheduler.ticks if scheduler else 0,
        "skipped_periods": scheduler.skipped_periods if scheduler else 0,
    }
    return {**get_metrics_collector().get_metrics(), "dispatcher": dispatcher}


# ============================================================================
# NOTIFICATIONS
# ============================================================================

@app.post("/api/v1/notifications", status_code=201)
async def create_notifications(
    payload: list[dict] = Body(...),
    svc: NotificationService = Depends(get_notification_service),
):
    try:
        requests = [NotificationRequest(**item) for item in payload]
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    created = await svc.create(requests)
    return [n.model_dump(mode="json") for n in created]


@app.get("/api/v1/notifications")
async def search_notifications(
    recipient_id: str | None = None,
    sender_id: str | None = None,
    sender_type: SenderType | None = None,
    severity: Severity | None = None,
    recognized: bool | None = None,
    created_from: datetime | None = Query(None, alias="from"),
    created_until: datetime | None = Query(None, alias="until"),
    page: int = Query(0, ge=0),
    size: int | None = Query(None, ge=1),
    svc: NotificationService = Depends(get_notification_service),
):
    result = await svc.search(
        recipient_id=recipient_id,
        sender_id=sender_id,
        sender_type=sender_type,
        severity=severity,
        recognized=recognized,
        created_from=created_from,
        created_until=created_until,
        page=page,
        size=page_size(size),
    )
    return paged_response(result)


@app.get("/api/v1/notifications/{notification_id}")
async def get_notification(
    notification_id: int,
    svc: NotificationService = Depends(get_notification_service),
):
    return (await svc.get(notification_id)).model_dump(mode="json")


@app.patch("/api/v1/notifications/{notification_id}/recognized")
async def set_notification_recognized(
    notification_id: int,
    recognized: bool = Body(...),
    svc: NotificationService = Depends(get_notification_service),
):
    return (await svc.set_recognized(notification_id, recognized)).model_dump(mode="json")


@app.delete("/api/v1/notifications/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: int,
    svc: NotificationService = Depends(get_notification_service),
):
    await svc.delete(notification_id)
    return Response(status_code=204)


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

@app.get("/api/v1/subscriptions/handlers")
async def list_subscription_handlers(svc: SubscriptionService = Depends(get_subscription_service)):
    return [h.model_dump() for h in svc.handler_descriptions()]


@app.post("/api/v1/subscriptions", status_code=201)
async def create_subscription(
    request: Request,
    payload: dict = Body(...),
    svc: SubscriptionService = Depends(get_subscription_service),
):
    try:
        req = SubscriptionRequest(**payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    created = await svc.create(req)
    location = str(request.url_for("get_subscription", subscription_id=created.id))
    return JSONResponse(
        status_code=201,
        content=created.model_dump(mode="json"),
        headers={"Location": location},
    )


@app.get("/api/v1/subscriptions")
async def list_subscriptions(
    page: int = Query(0, ge=0),
    size: int | None = Query(None, ge=1),
    svc: SubscriptionService = Depends(get_subscription_service),
):
    return paged_response(await svc.list_page(page=page, size=page_size(size)))


@app.get("/api/v1/subscriptions/{subscription_id}", name="get_subscription")
async def get_subscription(
    subscription_id: int,
    svc: SubscriptionService = Depends(get_subscription_service),
):
    return (await svc.get(subscription_id)).model_dump(mode="json")


@app.put("/api/v1/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: int,
    payload: dict = Body(...),
    svc: SubscriptionService = Depends(get_subscription_service),
):
    try:
        req = SubscriptionRequest(**payload)
    except PydanticValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return (await svc.update(subscription_id, req)).model_dump(mode="json")


@app.delete("/api/v1/subscriptions/{subscription_id}", status_code=204)
async def delete_subscription(
    subscription_id: int,
    svc: SubscriptionService = Depends(get_subscription_service),
):
    await svc.delete(subscription_id)
    return Response(status_code=204)
