import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from judge_gateway.code_service import schemas
from judge_gateway.code_service.languages import language_bindings
from judge_gateway.limits.quota import QuotaAnalytics
from judge_gateway.limits.rate_limiter import execution_identity
from judge_gateway.middleware import client_ip
from judge_gateway.security import CurrentUser, optional_user, require_user

router = APIRouter(tags=["System"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    return {
        "status": "healthy",
        "timestamp": _now_iso(),
        "uptime": round(time.monotonic() - state.started_at, 3),
        "environment": state.settings.environment,
    }


@router.get("/stats")
async def stats(request: Request, user: Optional[CurrentUser] = Depends(optional_user)):
    state = request.app.state
    general = getattr(request.state, "rate_limit", None)
    execution = await state.limiters["execution"].peek(
        execution_identity(user.id if user else None, client_ip(request))
    )
    usage = await state.quota.check_quota(user.id if user else None)
    return {
        "timestamp": _now_iso(),
        "user": {"id": user.id, "email": user.email} if user else None,
        "rateLimit": {
            "limit": general.limit if general else None,
            "remaining": general.remaining if general else None,
            "reset": general.retry_after if general else None,
        },
        "executionRateLimit": {
            "limit": execution.limit,
            "remaining": execution.remaining,
            "reset": execution.retry_after,
        },
        "quota": usage.model_dump(),
    }


@router.get("/languages", response_model=List[schemas.LanguageOut])
async def languages():
    return [schemas.LanguageOut(key=b.key, id=b.backend_id, name=b.name) for b in language_bindings()]


@router.get("/quota", response_model=schemas.QuotaOut)
async def quota_usage(request: Request, user: Optional[CurrentUser] = Depends(optional_user)):
    quota = request.app.state.quota
    usage = await quota.check_quota(user.id if user else None)
    return schemas.QuotaOut(usage=usage, limits=quota.get_limits())


@router.get("/quota/analytics", response_model=QuotaAnalytics)
async def quota_analytics(request: Request, user: CurrentUser = Depends(require_user)):
    return await request.app.state.quota.get_analytics()
