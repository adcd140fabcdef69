"""Request-level defenses for the task API.

``SecurityGuard`` is attached to each route as a dependency and runs its checks
in a fixed order, stopping at the first failure:

1. declared body size
2. origin allow-list
3. rate limit
4. same-origin check for state-changing methods
5. JSON content type for methods that carry a body

``SecurityHeadersMiddleware`` hardens every response on the way out.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import settings
from ..errors import (
    ForbiddenError,
    PayloadTooLargeError,
    RateLimitError,
    ValidationError,
    unexpected_exception_handler,
)
from .rate_limit import FixedWindowRateLimiter, api_rate_limiter
from .sanitize import DANGEROUS_KEY_PARTS

log = logging.getLogger(__name__)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'",
}
SERVER_HEADERS = ("server", "x-powered-by")


@dataclass(frozen=True)
class SecurityPolicy:
    """Per-route security configuration.

    ``allowed_origins`` overrides the configured allow-list when given.
    Rate-limit counters are keyed by ``scope`` and client together, so each
    endpoint spends its own budget rather than one shared per client.
    """

    scope: str
    rate_limit: int | None = None
    max_request_size: int | None = None
    enable_csrf: bool = False
    allowed_origins: tuple[str, ...] | None = None


def client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip() or "unknown"
    real_ip = request.headers.get("x-real-ip", "").strip()
    return real_ip or "unknown"


def is_same_origin(request: Request) -> bool:
    origin = request.headers.get("origin", "").strip()
    host = request.headers.get("host", "").strip()
    if not origin or not host:
        return False
    try:
        origin_host = urlsplit(origin).netloc
    except ValueError:
        return False
    return bool(origin_host) and origin_host.lower() == host.lower()


class SecurityGuard:
    """FastAPI dependency enforcing a ``SecurityPolicy``."""

    def __init__(self, policy: SecurityPolicy, limiter: FixedWindowRateLimiter | None = None):
        self.policy = policy
        self.limiter = limiter or api_rate_limiter

    async def __call__(self, request: Request, response: Response) -> None:
        self._check_size(request)
        self._check_origin(request)
        await self._check_rate_limit(request, response)
        self._check_csrf(request)
        self._check_content_type(request)

    def _check_size(self, request: Request) -> None:
        limit = self.policy.max_request_size
        if not limit:
            return
        raw = request.headers.get("content-length", "").strip()
        try:
            declared = int(raw)
        except ValueError:
            return
        if declared > limit:
            raise PayloadTooLargeError(
                "Request too large",
                details={"maxBytes": limit, "receivedBytes": declared},
            )

    def _check_origin(self, request: Request) -> None:
        allowed = self.policy.allowed_origins
        if allowed is None:
            allowed = settings.allowed_origins_list
        if not allowed:
            return
        origin = request.headers.get("origin")
        if origin and origin.rstrip("/") not in allowed:
            log.warning("Rejected request from disallowed origin %r", origin)
            raise ForbiddenError("Origin not allowed")

    async def _check_rate_limit(self, request: Request, response: Response) -> None:
        limit = self.policy.rate_limit
        if not limit or not settings.rate_limit_enabled:
            return
        client = client_id(request)
        decision = await self.limiter.hit(f"{self.policy.scope}:{client}", limit)
        if not decision.allowed:
            log.warning("Rate limit exceeded for %s on %s", client, self.policy.scope)
            raise RateLimitError(
                "Rate limit exceeded",
                details={"retryAfter": decision.retry_after},
                headers=decision.headers(),
            )
        response.headers.update(decision.headers())

    def _check_csrf(self, request: Request) -> None:
        if not self.policy.enable_csrf or not settings.csrf_enabled:
            return
        if request.method not in STATE_CHANGING_METHODS:
            return
        if not is_same_origin(request):
            log.warning("CSRF origin check failed for %s %s", request.method, request.url.path)
            raise ForbiddenError("CSRF token invalid or missing")

    def _check_content_type(self, request: Request) -> None:
        if request.method not in BODY_METHODS:
            return
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type.lower():
            raise ValidationError("Content-Type must be application/json")


def _has_dangerous_key(value: Any) -> bool:
    if isinstance(value, dict):
        for key, item in value.items():
            if key in DANGEROUS_KEY_PARTS or _has_dangerous_key(item):
                return True
    elif isinstance(value, list):
        return any(_has_dangerous_key(item) for item in value)
    return False


def validate_request_body(body: Any) -> None:
    """Reject non-object bodies and prototype-pollution keys at any depth."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a valid JSON object")
    if _has_dangerous_key(body):
        raise ValidationError("Request contains potentially dangerous keys")


async def read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        raise ValidationError("Request body must be a valid JSON object")
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Invalid JSON in request body") from exc


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers and strips server-identifying ones."""

    async def dispatch(self, request: Request, call_next):
        # Unhandled errors are rendered here so the 500 carries the headers too.
        try:
            response = await call_next(request)
        except Exception as exc:
            response = unexpected_exception_handler(request, exc)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        for name in SERVER_HEADERS:
            if name in response.headers:
                del response.headers[name]
        return response
