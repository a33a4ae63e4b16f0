import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from judge_gateway.api import routes_system
from judge_gateway.code_service.api import routes_code
from judge_gateway.code_service.judge_client import JudgeClient
from judge_gateway.code_service.reporter import ResultReporter
from judge_gateway.code_service.test_runner import TestCaseRunner
from judge_gateway.config import Settings, get_settings, setup_logging
from judge_gateway.db.database import init_models
from judge_gateway.exceptions import GatewayError, RateLimited
from judge_gateway.kafka.kafka_manager import EXECUTION_TOPIC, send_event
from judge_gateway.limits.quota import QuotaLimits, QuotaTracker
from judge_gateway.limits.rate_limiter import create_rate_limiters
from judge_gateway.limits.store import CounterStore, InMemoryCounterStore
from judge_gateway.middleware import setup_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_models()
    except Exception:
        logger.error("Could not create execution log table, executions will not be recorded", exc_info=True)
    logger.info(
        "Gateway ready: env=%s judge=%s cors=%s max_code_size=%d",
        app.state.settings.environment,
        app.state.settings.judge0_url,
        app.state.settings.frontend_url,
        app.state.settings.max_code_size,
    )
    yield


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        body = exc.to_dict()
        if app.state.settings.is_production:
            body.pop("detail", None)
        headers = None
        if isinstance(exc, RateLimited):
            headers = {**exc.headers, "Retry-After": str(exc.retry_after_seconds)}
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"], "value": err.get("input")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = "Something went wrong" if app.state.settings.is_production else str(exc)
        return JSONResponse(status_code=500, content={"error": "Internal Server Error", "message": message})


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CounterStore] = None,
    judge_client: Optional[JudgeClient] = None,
    reporter: Optional[ResultReporter] = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or InMemoryCounterStore()

    app = FastAPI(title="Judge Gateway", lifespan=lifespan)
    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.limiters = create_rate_limiters(store)
    app.state.quota = QuotaTracker(store, QuotaLimits(
        maxDailyExecutions=settings.max_daily_executions,
        maxMonthlyExecutions=settings.max_monthly_executions,
        maxTotalExecutions=settings.max_total_executions,
        warningThreshold=settings.quota_warning_threshold,
    ))
    app.state.judge_client = judge_client or JudgeClient(settings)
    app.state.runner = TestCaseRunner(app.state.judge_client, app.state.quota, settings.max_concurrent_cases)
    app.state.reporter = reporter or ResultReporter(
        publish=send_event if settings.kafka_enabled else None,
        topic=EXECUTION_TOPIC,
    )

    setup_middleware(app, settings)
    register_exception_handlers(app)

    app.include_router(routes_code.router, prefix="/api")
    app.include_router(routes_system.router, prefix="/api")
    return app


setup_logging()

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
