"""CORS and per-client rate limiting middleware."""

import time
from collections import defaultdict, deque
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from poll_geo_api.core.config import Settings

_WINDOW_SECONDS = 60.0
_EXEMPT_PATH_SUFFIXES = ("/health",)


def get_client_ip(request: Request, trusted_headers: list[str]) -> str:
    """Identify the calling client, honoring proxy headers in priority order.

    For ``X-Forwarded-For`` the leftmost address is the original client.
    Falls back to the socket peer, or ``"unknown"``.
    """
    for header in trusted_headers:
        value = request.headers.get(header, "").strip()
        if not value:
            continue
        if header.lower() == "x-forwarded-for":
            return value.split(",")[0].strip()
        return value
    return request.client.host if request.client else "unknown"


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow map front-ends on other origins to read aggregates.

    Args:
        app: The FastAPI application.
        settings: Application settings.
    """
    kwargs: dict[str, Any] = {
        "allow_methods": ["GET", "PUT", "POST", "DELETE"],
        "allow_headers": ["*"],
    }
    if settings.cors_origin_list:
        kwargs["allow_origins"] = settings.cors_origin_list
    if settings.cors_origin_regex.strip():
        kwargs["allow_origin_regex"] = settings.cors_origin_regex.strip()
    app.add_middleware(CORSMiddleware, **kwargs)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window of requests per client IP, kept in memory."""

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 600,
        trusted_proxy_headers: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.trusted_proxy_headers = trusted_proxy_headers or []
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Reject the request with 429 once the client's window is full."""
        if request.url.path.endswith(_EXEMPT_PATH_SUFFIXES):
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxy_headers)
        now = time.monotonic()
        hits = self._hits[client_ip]
        while hits and hits[0] <= now - _WINDOW_SECONDS:
            hits.popleft()

        if len(hits) >= self.requests_per_minute:
            retry_after = max(1, int(_WINDOW_SECONDS - (now - hits[0])))
            return JSONResponse(
                {"detail": "Rate limit exceeded"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        return await call_next(request)
