"""
HTTP middleware: security headers and per-request tracing/logging.
"""

import time
import uuid

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from user_directory.core.config import get_settings
from user_directory.core.logging import get_logger, request_id_ctx

logger = get_logger("security")
_settings = get_settings()


# ── Security Headers ─────────────────────────────────────────────────────────

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        # HSTS in production only
        if _settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


# ── Request Tracing ──────────────────────────────────────────────────────────

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attach a request ID (honouring an incoming X-Request-ID) and log one line
    per request with method, path, status and duration.
    The ID is also stamped on every log record emitted while the request runs.
    """

    _QUIET_PATHS = {"/api/v1/health", "/api/v1/ping"}

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)

        try:
            started = time.perf_counter()
            response: Response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000

            response.headers["X-Request-ID"] = request_id
            if request.url.path not in self._QUIET_PATHS:
                logger.info(
                    "%s %s -> %d (%.1f ms)",
                    request.method,
                    request.url.path,
                    response.status_code,
                    elapsed_ms,
                )
            return response
        finally:
            request_id_ctx.reset(token)


# ── Apply all middleware ──────────────────────────────────────────────────────

def apply_security_middleware(app: FastAPI) -> None:
    """Register all HTTP middleware on the FastAPI application."""
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    logger.info("Security middleware applied (headers / request tracing)")
