import json
import logging
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger("quickserve.access")

UNLIMITED_PATHS = ("/docs", "/openapi.json", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(json.dumps({
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "duration_ms": round(duration_ms, 2),
            }))
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Id"] = request_id

        logger.info(json.dumps({
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "user_sub": getattr(request.state, "user_sub", None),
        }))
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed one-minute window per client IP, counted in redis."""

    def __init__(self, app, redis_client, max_per_minute: int = 120):
        super().__init__(app)
        self.redis_client = redis_client
        self.max_per_minute = max_per_minute

    async def dispatch(self, request: Request, call_next):
        if request.url.path in UNLIMITED_PATHS or request.url.path.startswith("/docs/"):
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"

        epoch_minute = int(time.time() // 60)
        key = f"rl:ip:{ip}:{epoch_minute}"

        try:
            count = await self.redis_client.incr(key)
            if count == 1:
                await self.redis_client.expire(key, 70)
        except Exception:
            # limiter outage must not take the API down
            logger.warning("rate limiter unavailable; allowing %s", request.url.path)
            return await call_next(request)

        if count > self.max_per_minute:
            return JSONResponse(status_code=429, content={"detail": "Too many requests", "code": "RATE_LIMITED"})

        return await call_next(request)
