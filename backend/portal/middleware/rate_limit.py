"""
Client Portal Backend — Rate Limiting Middleware
=================================================

What:  Per-IP sliding window limit on /api routes.
Why:   One dashboard request can cost QUERY_MAX_PAGES queries plus one call
       per distinct related page, all against a single Notion integration.

Each warm serverless instance keeps its own window, so the effective limit
is per instance.
"""

import logging
import time
from collections import deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from portal.config import settings
from portal.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


def client_ip_for(request: Request, trusted_hops: Optional[int] = None) -> str:
    """
    Caller IP as seen by the nearest trusted proxy.

    Each proxy appends the address it received the request from, so only
    the last `trusted_hops` X-Forwarded-For entries are trustworthy; the
    caller can put anything to their left. With no trusted proxies, or a
    header shorter than expected, the socket peer is used.
    """
    hops = settings.trusted_proxy_hops if trusted_hops is None else trusted_hops
    forwarded = [
        part.strip()
        for part in request.headers.get("X-Forwarded-For", "").split(",")
        if part.strip()
    ]
    if hops and len(forwarded) >= hops:
        return forwarded[-hops]
    return request.client.host if request.client else "unknown"


class SlidingWindow:
    """
    Timestamps of recent hits per key.

    hit() records the hit and returns None, or returns the seconds until
    the oldest hit leaves the window when the key is over its limit.
    """

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str, now: Optional[float] = None) -> Optional[int]:
        now = time.time() if now is None else now
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self.window:
            hits.popleft()

        if len(hits) >= self.limit:
            return int(hits[0] + self.window - now) + 1

        hits.append(now)
        return None

    def prune(self, now: Optional[float] = None) -> int:
        """Forget keys with no hit inside the window; returns how many."""
        now = time.time() if now is None else now
        stale = [k for k, hits in self._hits.items() if not hits or hits[-1] <= now - self.window]
        for key in stale:
            del self._hits[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Configuration (from settings):
        rate_limit_requests: hits allowed per IP per window (default: 300)
        rate_limit_window:   window in seconds (default: 3600)
    """

    PRUNE_ABOVE = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.window = SlidingWindow(settings.rate_limit_requests, settings.rate_limit_window)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Preflight requests carry no credentials and never reach Notion
        if not request.url.path.startswith("/api/") or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = client_ip_for(request)
        retry_after = self.window.hit(client_ip)

        if retry_after is not None:
            logger.warning(
                "Rate limit exceeded for IP %s (%d requests / %ds)",
                client_ip,
                self.window.limit,
                self.window.window,
            )
            # Raised errors do not reach the app's handlers from middleware
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": exc.context,
                },
                headers={"Retry-After": str(exc.retry_after)},
            )

        if len(self.window) > self.PRUNE_ABOVE:
            logger.debug("Pruned %d idle IPs from rate limit window", self.window.prune())

        return await call_next(request)
