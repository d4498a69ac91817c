"""
Per-process request rate limiting

Sliding window: every client keeps a log of its request timestamps for
the last window and is refused once the log is full. Sensitive routes
(login, storefront checkout) get their own tighter bucket per IP.
"""
import hashlib
import re
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.errors import ErrorCode, error_response

WINDOW_SECONDS = 60


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """
    In-memory sliding window limiter.

    State is per process; several workers each keep their own windows.
    """

    def __init__(self, window_seconds: int = WINDOW_SECONDS, sweep_interval: int = 60):
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._sweep_interval = sweep_interval
        self._last_sweep = time.monotonic()

    def _sweep(self, now: float):
        if now - self._last_sweep < self._sweep_interval:
            return
        cutoff = now - self.window_seconds
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str, limit: int, now: Optional[float] = None) -> RateLimitDecision:
        """Record one request for key unless the window is already full"""
        now = time.monotonic() if now is None else now
        self._sweep(now)

        hits = self._hits[key]
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= limit:
            retry_after = max(1, int(hits[0] + self.window_seconds - now) + 1)
            return RateLimitDecision(False, limit, 0, retry_after)

        hits.append(now)
        return RateLimitDecision(True, limit, limit - len(hits))

    def reset(self):
        self._hits.clear()


rate_limiter = RateLimiter()

EXEMPT_PATHS = {"/", "/health", "/docs", "/openapi.json", "/redoc"}

# Payment providers retry on their own schedule
EXEMPT_PREFIXES = ("/api/v1/webhooks/",)

# (bucket, path pattern, settings attribute) checked in order, keyed per IP
ROUTE_RULES = [
    ("login", re.compile(r"^/api/v1/auth/login$"), "RATE_LIMIT_LOGIN"),
    ("checkout", re.compile(r"^/api/v1/storefront/[^/]+/checkout$"), "RATE_LIMIT_CHECKOUT"),
]


def rate_limit_key(request: Request):
    """Returns (bucket key, limit) for a request"""
    ip = client_ip(request) or "unknown"
    path = request.url.path

    for bucket, pattern, setting in ROUTE_RULES:
        if pattern.match(path):
            return f"{bucket}:{ip}", getattr(settings, setting)

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:32]
        return f"jwt:{token_hash}", settings.RATE_LIMIT_AUTHENTICATED

    return f"ip:{ip}", settings.RATE_LIMIT_ANONYMOUS


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the limiter to every API request.

    Responses carry X-RateLimit-Limit / X-RateLimit-Remaining; a refused
    request gets the 429 error envelope with Retry-After.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or path in EXEMPT_PATHS or path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        key, limit = rate_limit_key(request)
        decision = rate_limiter.hit(key, limit)

        if not decision.allowed:
            # Returned (not raised) so the response still passes through CORS
            return error_response(
                429,
                ErrorCode.RATE_LIMIT_EXCEEDED,
                "Rate limit exceeded. Please slow down.",
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(decision.retry_after),
                    "Retry-After": str(decision.retry_after),
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
