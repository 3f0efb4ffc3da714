"""
CSI Portal - HTTP Middleware
Request correlation and timing, security headers and body size limits
"""

import time
from typing import Callable, Set, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from csi_portal.core.logging_config import (
    logger,
    set_request_id,
    set_user_id,
    generate_request_id,
)


# Probes and API docs are not worth a log line per hit
QUIET_PATHS: Set[str] = {
    "/health",
    "/",
    "/favicon.ico",
    "/docs",
    "/redoc",
    "/openapi.json",
}

# Public survey pages, rendered inside the iframe produced by the embed code
SURVEY_FRAME_PREFIXES: Tuple[str, ...] = (
    "/api/v1/responses/survey/",
)

# Multipart Excel uploads get the larger upload limit
UPLOAD_PATH_PREFIXES: Tuple[str, ...] = (
    "/api/v1/bulk-import/",
    "/api/v1/mappings/bulk-import",
)


def is_quiet_path(path: str) -> bool:
    return path in QUIET_PATHS or path.startswith("/static/")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an X-Request-ID (taken from the caller when sent)
    and reports its duration in X-Response-Time. Non-quiet requests are
    logged through ``logger.log_request`` plus a slow-request check.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)
        started = time.perf_counter()
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.log_error_with_context(
                exc,
                context=f"{request.method} {path}",
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            raise
        finally:
            set_user_id("")

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

        if not is_quiet_path(path):
            logger.log_request(
                request.method,
                path,
                response.status_code,
                elapsed_ms,
                client_ip=request.client.host if request.client else "unknown",
            )
            logger.log_performance(f"{request.method} {path}", elapsed_ms)

        set_request_id("")
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Hardening headers; only public survey pages may be framed"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if request.url.path.startswith(SURVEY_FRAME_PREFIXES):
            response.headers["Content-Security-Policy"] = "frame-ancestors *"
        else:
            response.headers["X-Frame-Options"] = "DENY"

        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects bodies over the limit with 413 before they are read.

    Excel upload routes use ``upload_max_size``; every other route uses
    ``max_size``.
    """

    def __init__(self, app: ASGIApp, max_size: int, upload_max_size: int):
        super().__init__(app)
        self.max_size = max_size
        self.upload_max_size = upload_max_size

    def limit_for(self, path: str) -> int:
        return self.upload_max_size if path.startswith(UPLOAD_PATH_PREFIXES) else self.max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length", "")
        limit = self.limit_for(request.url.path)

        if declared.isdigit() and int(declared) > limit:
            logger.warning(
                f"[HTTP] Rejected {request.method} {request.url.path}: "
                f"{declared} bytes exceeds {limit}"
            )
            return JSONResponse(
                status_code=413,
                content={
                    "success": False,
                    "error": {
                        "code": "PAYLOAD_TOO_LARGE",
                        "message": f"Request body too large. Maximum size is {limit // 1024} KB",
                        "details": {"max_size": limit},
                    },
                },
            )

        return await call_next(request)
