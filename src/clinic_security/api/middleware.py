"""HTTP middleware: CORS, response hardening headers and per-IP throttling."""

import ipaddress
import math
import time
from collections import defaultdict, deque
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from clinic_security.core.config import Settings

_DEFAULT_TRUSTED_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def _parse_ip(value: str) -> str | None:
    candidate = value.strip()
    if not candidate:
        return None
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_client_ip(request: Request, trusted_headers: list[str] | None = None) -> str:
    """Resolve the address of the client that made the request.

    Trusted proxy headers are consulted in order and the first one holding a
    parseable IP wins. ``X-Forwarded-For`` contributes its leftmost hop.
    Values that are not IP addresses are ignored so a forged header cannot
    pollute audit records or location baselines.

    Args:
        request: The incoming request.
        trusted_headers: Header names to consult, highest priority first.
            ``None`` selects CF-Connecting-IP, X-Forwarded-For, X-Real-IP;
            an empty list disables header lookup entirely.

    Returns:
        The client IP, the socket peer when no header applies, or
        ``"unknown"`` when neither is available.
    """
    names = _DEFAULT_TRUSTED_HEADERS if trusted_headers is None else trusted_headers

    for name in names:
        raw = request.headers.get(name)
        if not raw:
            continue
        if name.lower() == "x-forwarded-for":
            raw = raw.split(",", 1)[0]
        ip = _parse_ip(raw)
        if ip is not None:
            return ip

    return request.client.host if request.client else "unknown"


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Attach CORS handling limited to the configured origins and origin regex."""
    options: dict[str, Any] = {
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type"],
    }
    if settings.cors_origin_list:
        options["allow_origins"] = settings.cors_origin_list
    regex = settings.cors_origin_regex.strip()
    if regex:
        options["allow_origin_regex"] = regex
    app.add_middleware(CORSMiddleware, **options)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp hardening headers onto every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers.update(_SECURITY_HEADERS)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding-window throttle keyed by client IP.

    Every request counts against the general bucket. ``POST`` requests to
    ``login_path`` additionally count against a separate login bucket with
    its own, usually lower, limit.
    """

    WINDOW_SECONDS = 60.0

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 60,
        trusted_proxy_headers: list[str] | None = None,
        login_requests_per_minute: int | None = None,
        login_path: str = "/api/v1/auth/login",
    ) -> None:
        super().__init__(app)
        self.limits = {"general": requests_per_minute}
        if login_requests_per_minute is not None:
            self.limits["login"] = login_requests_per_minute
        self.login_path = login_path
        self.trusted_proxy_headers = trusted_proxy_headers
        self._hits: dict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._next_sweep = 0.0

    def _buckets(self, request: Request) -> list[str]:
        buckets = ["general"]
        if "login" in self.limits and request.method == "POST" and request.url.path == self.login_path:
            buckets.append("login")
        return buckets

    def _retry_after(self, hits: deque[float], now: float) -> int:
        return max(1, math.ceil(self.WINDOW_SECONDS - (now - hits[0])))

    def _evict_idle(self, now: float, cutoff: float) -> None:
        """Forget clients with no hits inside the window; runs at most once per window."""
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.WINDOW_SECONDS
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        client_ip = get_client_ip(request, self.trusted_proxy_headers)
        now = time.monotonic()
        cutoff = now - self.WINDOW_SECONDS
        self._evict_idle(now, cutoff)
        buckets = self._buckets(request)

        for bucket in buckets:
            hits = self._hits[(bucket, client_ip)]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limits[bucket]:
                logger.warning(f"Rate limit exceeded for {client_ip} on {request.method} {request.url.path} ({bucket})")
                return JSONResponse(
                    status_code=429,
                    content={"success": False, "message": "Rate limit exceeded"},
                    headers={"Retry-After": str(self._retry_after(hits, now))},
                )

        for bucket in buckets:
            self._hits[(bucket, client_ip)].append(now)
        return await call_next(request)
