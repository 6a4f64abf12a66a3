"""
HTTP security for the gateway API.

- Shared-secret authentication (``apikey`` header or query parameter)
- CORS origin validation
- Security headers on every response
"""

import hmac
import logging
import os
from typing import Iterable, List

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest

logger = logging.getLogger(__name__)

API_KEY_HEADER = "apikey"
API_KEY_QUERY_PARAM = "apikey"


def require_api_key(request: Request) -> None:
    """
    FastAPI dependency enforcing the shared secret.

    The key is read from the ``apikey`` header, falling back to the
    ``apikey`` query parameter. An unset server key rejects every request.
    """
    expected = request.app.state.config.auth_key or ""
    provided = request.headers.get(API_KEY_HEADER) or request.query_params.get(API_KEY_QUERY_PARAM) or ""

    # Prevent header injection (newlines, carriage returns, null bytes)
    if "\n" in provided or "\r" in provided or "\x00" in provided:
        raise HTTPException(status_code=401, detail="Unauthorized")

    if not expected or not provided:
        raise HTTPException(status_code=401, detail="Unauthorized")

    # Constant-time comparison
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


def validate_cors_origins(origins: Iterable[str]) -> List[str]:
    """
    Filter configured CORS origins.

    Wildcards, non-http(s) origins and origins carrying a path, query,
    fragment or userinfo are rejected with a warning.
    """
    allowed = []
    for origin in origins:
        origin = origin.strip()
        if not origin:
            continue

        if origin == "*" or origin == "null":
            logger.warning(f"CORS origin '{origin}' is rejected. Use specific origins only.")
            continue

        if not (origin.startswith("http://") or origin.startswith("https://")):
            logger.warning(f"CORS origin '{origin}' must start with http:// or https://. Skipping.")
            continue

        domain_part = origin.split("://", 1)[1]
        if not domain_part or " " in domain_part:
            logger.warning(f"CORS origin '{origin}' has invalid format. Skipping.")
            continue

        if any(ch in domain_part for ch in "/#?@"):
            logger.warning(f"CORS origin '{origin}' contains path/fragment/query/userinfo. Skipping.")
            continue

        allowed.append(origin)
    return allowed


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all HTTP responses."""

    DEFAULT_CSP = (
        "default-src 'self'; "
        "script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
        "font-src 'self'; "
        "connect-src 'self'; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "form-action 'self'"
    )

    DOCS_CSP = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
        "img-src 'self' data: https://fastapi.tiangolo.com https://cdn.jsdelivr.net; "
        "font-src 'self' data: https://cdn.jsdelivr.net; "
        "connect-src 'self'; "
        "frame-ancestors 'none'"
    )

    async def dispatch(self, request: StarletteRequest, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=(), payment=(), usb=()"
        )

        is_https = (
            request.url.scheme == "https"
            or request.headers.get("x-forwarded-proto", "").lower() == "https"
            or os.getenv("FORCE_HTTPS", "false").lower() == "true"
        )
        if is_https:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if request.url.path in ("/docs", "/redoc", "/openapi.json"):
            response.headers["Content-Security-Policy"] = self.DOCS_CSP
        else:
            response.headers["Content-Security-Policy"] = self.DEFAULT_CSP

        # Pairing data must never be cached by intermediaries
        if request.url.path in ("/qr", "/instance/qr"):
            response.headers["Cache-Control"] = "no-store"

        return response
