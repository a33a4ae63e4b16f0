import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from judge_gateway.exceptions import GatewayError, PayloadTooLarge, ValidationFailed
from judge_gateway.limits.rate_limiter import RateLimitResult, execution_identity
from judge_gateway.middleware import client_ip
from judge_gateway.security import CurrentUser, optional_user

from .. import schemas
from ..reporter import log_for_failure, log_for_report, log_for_run
from ..validation import sanitize_payload, validate_execution_request, validate_test_cases

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Code"])


async def read_json_body(request: Request):
    # Chunked uploads carry no Content-Length, so count what actually arrives
    max_size = request.app.state.settings.max_body_size
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            raise PayloadTooLarge(f"Request body exceeds {max_size} bytes")
    try:
        data = json.loads(body)
    except ValueError:
        raise ValidationFailed([{"field": "body", "message": "Request body must be valid JSON", "value": None}])
    return sanitize_payload(data)


async def execution_rate_limit(
    request: Request,
    response: Response,
    user: Optional[CurrentUser] = Depends(optional_user),
) -> RateLimitResult:
    # Authenticated callers get their own bucket, separate from their IP's
    identity = execution_identity(user.id if user else None, client_ip(request))
    result = await request.app.state.limiters["execution"].check(identity)
    response.headers.update(result.headers())
    return result


def _raise_if_invalid(errors):
    if errors:
        raise ValidationFailed([e.to_dict() for e in errors])


async def validated_run_request(request: Request, payload=Depends(read_json_body)) -> schemas.ExecutionRequest:
    settings = request.app.state.settings
    _raise_if_invalid(validate_execution_request(payload, settings.max_code_size, settings.max_stdin_size))
    return schemas.ExecutionRequest.model_validate(payload)


async def validated_test_request(request: Request, payload=Depends(read_json_body)) -> schemas.ExecuteWithTestsRequest:
    settings = request.app.state.settings
    test_cases = payload.get("testCases") if isinstance(payload, dict) else None
    if not isinstance(test_cases, list):
        raise ValidationFailed(
            [{"field": "testCases", "message": "testCases must be an array", "value": None}],
            error="testCases must be an array",
        )
    errors = validate_execution_request(
        payload, settings.max_code_size, settings.max_stdin_size, code_field="code"
    )
    errors += validate_test_cases(test_cases, settings.max_stdin_size, settings.max_test_cases)
    _raise_if_invalid(errors)
    return schemas.ExecuteWithTestsRequest.model_validate(payload)


@router.post("/run-code", response_model=schemas.ExecutionResult, dependencies=[Depends(execution_rate_limit)])
async def run_code(
    request: Request,
    user: Optional[CurrentUser] = Depends(optional_user),
    body: schemas.ExecutionRequest = Depends(validated_run_request),
):
    state = request.app.state
    user_id = user.id if user else None
    logger.info(
        "Code execution request: language=%s code_length=%d has_stdin=%s user=%s ip=%s",
        body.language, len(body.sourceCode), bool(body.stdin), user_id or "anonymous", client_ip(request),
    )

    await state.quota.ensure_available(user_id)
    try:
        result = await state.runner.run_single(
            body.sourceCode, body.language, body.stdin, body.expectedOutput, user_id=user_id
        )
    except GatewayError as e:
        logger.error("Code execution failed: language=%s error=%s user=%s", body.language, e.message, user_id or "anonymous")
        await state.reporter.record(log_for_failure(e, body.language, len(body.sourceCode), user_id))
        raise

    logger.info("Code execution successful: language=%s status=%s user=%s", body.language, result.status.description, user_id or "anonymous")
    await state.reporter.record(log_for_run(result, body.language, len(body.sourceCode), user_id))
    return result


@router.post(
    "/execute-with-tests",
    response_model=schemas.ExecuteWithTestsResponse,
    dependencies=[Depends(execution_rate_limit)],
)
async def execute_with_tests(
    request: Request,
    user: Optional[CurrentUser] = Depends(optional_user),
    body: schemas.ExecuteWithTestsRequest = Depends(validated_test_request),
):
    state = request.app.state
    user_id = user.id if user else None

    if body.testCases:
        await state.quota.ensure_available(user_id)
    report = await state.runner.run_all(body.code, body.language, body.testCases, user_id=user_id)
    await state.reporter.record(log_for_report(report, body.language, len(body.code), user_id))

    return schemas.ExecuteWithTestsResponse(results=report.outcomes(), summary=report.summary)
