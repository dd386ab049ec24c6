import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import LOG_LEVEL, RATE_LIMIT_PER_MINUTE
from .db import engine
from .errors import QuickServeError, quickserve_error_handler
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .realtime import event_bus
from .redis_client import redis_client
from .routes import admin, bookings, categories, notifications, payments, reviews, users, workers

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("quickserve")

OPENAPI_TAGS = [
    {"name": "System", "description": "Operational endpoints."},
    {"name": "Users", "description": "The caller's own profile."},
    {"name": "Bookings", "description": "Booking creation and lifecycle transitions."},
    {"name": "Workers", "description": "Worker profiles, location and nearby search."},
    {"name": "Payments", "description": "Payment capture and provider webhooks."},
    {"name": "Reviews", "description": "Customer reviews of completed bookings."},
    {"name": "Notifications", "description": "In-app notifications."},
    {"name": "Categories", "description": "Service categories."},
    {"name": "Admin", "description": "Back-office operations."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # never crash the service if RabbitMQ is temporarily unavailable
    try:
        await event_bus.start()
    except Exception as e:
        logger.warning("RabbitMQ connect failed at startup; continuing without realtime events: %s", e)

    yield

    try:
        await event_bus.close()
    except Exception:
        logger.exception("error closing realtime publisher")
    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="QuickServe Booking Service", openapi_tags=OPENAPI_TAGS, lifespan=lifespan)

    app.add_middleware(RequestLoggingMiddleware)
    if redis_client is not None:
        app.add_middleware(RateLimitMiddleware, redis_client=redis_client, max_per_minute=RATE_LIMIT_PER_MINUTE)

    app.add_exception_handler(QuickServeError, quickserve_error_handler)

    app.include_router(users.router)
    app.include_router(bookings.router)
    app.include_router(workers.router)
    app.include_router(payments.router)
    app.include_router(reviews.router)
    app.include_router(notifications.router)
    app.include_router(categories.router)
    app.include_router(admin.router)

    @app.get("/health", tags=["System"])
    async def health():
        return {
            "status": "ok",
            "service": "quickserve",
            "events_enabled": event_bus.enabled,
            "rate_limit_enabled": redis_client is not None,
        }

    return app


app = create_app()
