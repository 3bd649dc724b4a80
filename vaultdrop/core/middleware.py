import time
from collections import defaultdict
from typing import Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit_per_minute: int = 60, path_limits: Optional[Dict[str, int]] = None):
        super().__init__(app)
        self.limit = limit_per_minute
        # Path fragment -> stricter per-minute limit, counted in its own bucket
        self.path_limits = path_limits or {}
        # In-memory: (IP, bucket) -> [timestamp1, timestamp2, ...]. One process only.
        self.requests = defaultdict(list)

    def _bucket_for(self, path: str):
        for fragment, limit in self.path_limits.items():
            if fragment in path:
                return fragment, limit
        return "*", self.limit

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        bucket, limit = self._bucket_for(request.url.path)
        key = (client_ip, bucket)
        self.requests[key] = [t for t in self.requests[key] if now - t < 60]

        if len(self.requests[key]) >= limit:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limited",
                    "detail": "Too many requests. Please try again later.",
                    "status_class": "retry",
                },
            )

        self.requests[key].append(now)
        return await call_next(request)
