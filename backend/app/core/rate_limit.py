"""
Rate limiting middleware
Sliding window per client IP, in memory.

- /api/v1/siigo/*: 30 requests every 2 minutes (each call can reach SIIGO)
- everything else: 100 requests per minute
- health, docs and webhook callbacks are not limited
"""
import time
import logging
from typing import Dict, Tuple
from collections import defaultdict

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-memory sliding window limiter; one process only"""

    def __init__(self, cleanup_interval: int = 60):
        # {identifier: [timestamp, ...]}
        self._requests: Dict[str, list] = defaultdict(list)
        self._last_cleanup = time.time()
        self._cleanup_interval = cleanup_interval

    def _cleanup_old_entries(self, window_seconds: int) -> None:
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - window_seconds * 2
        for identifier in list(self._requests.keys()):
            self._requests[identifier] = [ts for ts in self._requests[identifier] if ts > cutoff]
            if not self._requests[identifier]:
                del self._requests[identifier]

        self._last_cleanup = now

    def is_allowed(self, identifier: str, max_requests: int, window_seconds: int = 60) -> Tuple[bool, int, int]:
        """
        Register a request if the window has room.

        Returns:
            (is_allowed, remaining_requests, retry_after_seconds)
        """
        self._cleanup_old_entries(window_seconds)

        now = time.time()
        window_start = now - window_seconds
        in_window = [ts for ts in self._requests[identifier] if ts > window_start]

        if len(in_window) >= max_requests:
            retry_after = int(min(in_window) + window_seconds - now) + 1
            return False, 0, retry_after

        in_window.append(now)
        self._requests[identifier] = in_window
        return True, max_requests - len(in_window), 0

    def reset(self) -> None:
        self._requests.clear()


rate_limiter = RateLimiter()

# (path prefix, bucket, max requests, window seconds); first match wins
RATE_LIMITS = [
    ("/api/v1/siigo", "siigo", 30, 120),
    ("/", "general", 100, 60),
]

EXEMPT_PATHS = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

EXEMPT_PREFIXES = ("/api/webhooks/receive",)

LIMIT_MESSAGES = {
    "siigo": "Demasiadas solicitudes a SIIGO",
    "general": "Demasiadas solicitudes. Por favor, espere un momento antes de intentar nuevamente.",
}


def get_limit_for_path(path: str) -> Tuple[str, int, int]:
    for prefix, bucket, max_requests, window_seconds in RATE_LIMITS:
        if path.startswith(prefix):
            return bucket, max_requests, window_seconds
    return "general", 100, 60


def get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies RATE_LIMITS per client IP.

    Headers returned:
    - X-RateLimit-Limit / X-RateLimit-Remaining on allowed requests
    - Retry-After on 429 responses
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS or path.startswith(EXEMPT_PREFIXES) or request.method == "OPTIONS":
            return await call_next(request)

        bucket, limit, window_seconds = get_limit_for_path(path)
        client_ip = get_client_ip(request)

        is_allowed, remaining, retry_after = rate_limiter.is_allowed(
            identifier=f"{bucket}:{client_ip}",
            max_requests=limit,
            window_seconds=window_seconds,
        )

        if not is_allowed:
            logger.warning(f"Rate limit reached for {client_ip} on {path}")
            # JSONResponse instead of HTTPException so CORS headers still apply
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "message": LIMIT_MESSAGES[bucket],
                    "retryAfter": retry_after,
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
