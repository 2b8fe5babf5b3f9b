"""HTTP middleware: shutdown gating, request ids, access logging, response headers."""

import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from .config import settings
from .logger import http_logger

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    # Swagger UI loads from jsDelivr; application.js is served from /static
    "Content-Security-Policy": "; ".join((
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
        "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
        "img-src 'self' data: https://cdn.jsdelivr.net",
    )),
}
HSTS = "max-age=31536000; includeSubDomains"

# Assigned by main.py; importing main from here would be circular
shutdown_manager = None


def set_shutdown_manager(manager):
    global shutdown_manager
    shutdown_manager = manager


async def graceful_shutdown_middleware(request: Request, call_next):
    """503 once shutdown has begun; otherwise count the request as in flight."""
    if shutdown_manager is None:
        return await call_next(request)

    if shutdown_manager.is_shutting_down:
        http_logger.warning(f"Refused {request.method} {request.url.path} during shutdown")
        return JSONResponse(
            status_code=503,
            content={
                "error": "SERVICE_UNAVAILABLE",
                "message": "Service is shutting down, retry shortly",
            },
            headers={"Retry-After": "10"},
        )

    shutdown_manager.request_started()
    try:
        return await call_next(request)
    finally:
        shutdown_manager.request_finished()


async def add_request_id_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """One access line per request; a raised error logs its traceback and propagates."""
    started = time.perf_counter()
    request_id = getattr(request.state, "request_id", "-")
    label = f"[{request_id}] {request.method} {request.url.path}"
    try:
        response = await call_next(request)
    except Exception:
        http_logger.exception(
            f"{label} failed after {time.perf_counter() - started:.3f}s",
            extra={"request_id": request_id},
        )
        raise
    http_logger.info(
        f"{label} -> {response.status_code} in {time.perf_counter() - started:.3f}s",
        extra={"request_id": request_id},
    )
    return response


async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    if settings.APP_ENV == "production":
        response.headers["Strict-Transport-Security"] = HSTS
    return response
