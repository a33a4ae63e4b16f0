import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from judge_gateway.code_service.validation import strip_spoofable_headers
from judge_gateway.config import Settings, get_cors_settings

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; connect-src 'self'; font-src 'self'; "
        "object-src 'none'; media-src 'self'; frame-src 'none'"
    ),
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
}


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


async def limit_body_size(request: Request, call_next):
    max_size = request.app.state.settings.max_body_size
    length = request.headers.get("content-length")
    if length is not None:
        try:
            too_large = int(length) > max_size
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid Content-Length header"})
        if too_large:
            return JSONResponse(
                status_code=413,
                content={"error": "Payload too large", "message": f"Request body exceeds {max_size} bytes"},
            )
    return await call_next(request)


async def sanitize_request(request: Request, call_next):
    # Clients must not choose the address they are rate limited by
    request.scope["headers"] = strip_spoofable_headers(request.scope["headers"])
    return await call_next(request)


async def request_logger(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    user = getattr(request.state, "user", None)
    logger.info(
        "%s %s - %s (%.0fms) ip=%s user=%s agent=%s",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        client_ip(request),
        user.id if user else "anonymous",
        request.headers.get("user-agent", "-"),
    )
    return response


async def general_rate_limit(request: Request, call_next):
    limiter = request.app.state.limiters["general"]
    result = await limiter.hit(client_ip(request))
    if not result.allowed:
        return JSONResponse(
            status_code=429,
            content={"error": limiter.message, "retryAfter": limiter.retry_after},
            headers={**result.headers(), "Retry-After": str(result.retry_after)},
        )
    request.state.rate_limit = result
    response = await call_next(request)
    for name, value in result.headers().items():
        response.headers.setdefault(name, value)
    return response


async def quota_monitor(request: Request, call_next):
    quota = request.app.state.quota
    try:
        ratio = await quota.usage_ratio()
        if ratio >= quota.limits.warningThreshold:
            logger.warning("Judging backend quota nearly exhausted: %.0f%% used", ratio * 100)
    except Exception:
        logger.warning("Quota monitor could not read usage", exc_info=True)
    return await call_next(request)


def setup_middleware(app: FastAPI, settings: Settings):
    # Starlette runs the last registered middleware first, so register inside-out
    app.middleware("http")(quota_monitor)
    app.middleware("http")(general_rate_limit)
    app.middleware("http")(request_logger)
    app.middleware("http")(sanitize_request)
    app.middleware("http")(limit_body_size)
    app.add_middleware(CORSMiddleware, **get_cors_settings(settings))
    app.middleware("http")(security_headers)
