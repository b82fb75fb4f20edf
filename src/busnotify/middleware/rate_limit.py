"""Rate limiting middleware — fixed one-minute windows in Redis.

Learn: Each client IP gets a counter per bucket per minute:
``busnotify:rl:{ip}:{bucket}:{minute}``. The admin send endpoint writes
one inbox row per matching user, so it has its own, much smaller bucket.

No Redis (tests, local dev without it) means no rate limiting.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from busnotify.realtime.pubsub import get_redis

logger = structlog.get_logger()

ADMIN_SEND_PATH = "/api/v1/notifications/admin/send"
KEY_PREFIX = "busnotify:rl"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP request budget, with a stricter budget for admin sends."""

    def __init__(self, app, default_rpm: int = 120, admin_send_rpm: int = 20):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.admin_send_rpm = admin_send_rpm

    def bucket_for(self, path: str) -> tuple[str, int]:
        if path.rstrip("/") == ADMIN_SEND_PATH:
            return "admin_send", self.admin_send_rpm
        return "api", self.default_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        # socket.io traffic is mounted in front of this app; only HTTP API hits here
        if not request.url.path.startswith("/api/"):
            return await call_next(request)

        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket, rpm = self.bucket_for(request.url.path)
        window = int(time.time() // 60)
        key = f"{KEY_PREFIX}:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception as e:
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("rate_limit.exceeded", client_ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
