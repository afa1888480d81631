from __future__ import annotations

from typing import Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pulsenet.limits import TokenBucket


class ApiKeyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_key: str | None):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if self.api_key and request.url.path != "/healthz":
            key = request.headers.get("x-api-key")
            if key != self.api_key:
                return JSONResponse({"detail": "Invalid API key"}, status_code=401)
        return await call_next(request)


class TokenBucketLimiter(BaseHTTPMiddleware):
    """In-memory token bucket per client IP.

    Not distributed-safe; for a single API process.
    """

    def __init__(self, app, capacity: int = 30, refill_rate: float = 10.0):
        super().__init__(app)
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.buckets: Dict[str, TokenBucket] = {}

    def _allow(self, ip: str) -> bool:
        bucket = self.buckets.get(ip)
        if bucket is None:
            bucket = self.buckets[ip] = TokenBucket(self.refill_rate, capacity=self.capacity)
        return bucket.try_acquire()

    async def dispatch(self, request: Request, call_next):
        ip = request.client.host if request.client else "anon"
        if not self._allow(ip):
            return JSONResponse({"detail": "Rate limit exceeded"}, status_code=429)
        return await call_next(request)
