"""Single-shot client for a Judge0-compatible judging backend."""
import base64
import logging
from typing import Optional

import httpx

from judge_gateway.config import Settings, get_settings
from judge_gateway.exceptions import (
    BackendAuthRequired,
    BackendForbidden,
    BackendRateLimited,
    BackendTimeout,
    BackendUnavailable,
    InvalidParameters,
    JudgeError,
    MalformedResponse,
    ServiceUnavailable,
    UnknownBackendError,
    ValidationFailed,
)

from .languages import backend_id_for
from .schemas import ExecutionResult
from .validation import FieldError

logger = logging.getLogger(__name__)

STATUS_ERRORS: dict[int, type[JudgeError]] = {
    400: InvalidParameters,
    401: BackendAuthRequired,
    403: BackendForbidden,
    429: BackendRateLimited,
    500: ServiceUnavailable,
}

STATUS_MESSAGES = {
    400: "Invalid submission parameters sent to the judging backend",
    401: "Judging backend requires a valid API key",
    403: "Judging backend refused the API key",
    429: "The judging backend is rate limiting this service (upstream limit, not the gateway's own)",
    500: "Judging backend is temporarily unavailable",
}


def _b64(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class JudgeClient:
    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.judge0_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if self.settings.judge0_api_key:
            self.headers["X-RapidAPI-Key"] = self.settings.judge0_api_key
            self.headers["X-RapidAPI-Host"] = self.settings.judge0_host or httpx.URL(self.base_url).host
        self.timeout = httpx.Timeout(self.settings.judge0_timeout, connect=5.0)
        self._transport = transport

    def _check_sizes(self, source_code, stdin, expected_output) -> None:
        max_code = self.settings.max_code_size
        max_stdin = self.settings.max_stdin_size
        errors: list[FieldError] = []
        if not isinstance(source_code, str) or not 1 <= len(source_code) <= max_code:
            errors.append(FieldError("sourceCode", f"Source code must be between 1 and {max_code} characters"))
        for field, value in (("stdin", stdin), ("expectedOutput", expected_output)):
            if value is not None and (not isinstance(value, str) or len(value) > max_stdin):
                errors.append(FieldError(field, f"{field} must be a string of at most {max_stdin} characters"))
        if errors:
            raise ValidationFailed([e.to_dict() for e in errors])

    def build_payload(self, source_code: str, language_id: int, stdin=None, expected_output=None) -> dict:
        payload = {
            "source_code": _b64(source_code),
            "language_id": language_id,
            "stdin": _b64(stdin),
            "expected_output": _b64(expected_output),
        }
        return {k: v for k, v in payload.items() if v is not None}

    async def _post(self, payload: dict) -> httpx.Response:
        url = f"{self.base_url}/submissions"
        params = {"base64_encoded": "true", "wait": "true"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.post(url, params=params, json=payload, headers=self.headers)
        except httpx.TimeoutException as e:
            raise BackendTimeout(
                f"Judging backend did not answer within {self.settings.judge0_timeout:g}s", detail=str(e)
            ) from e
        except httpx.RequestError as e:
            raise BackendUnavailable(f"Judging backend unreachable: {e}", detail=str(e)) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        code = response.status_code
        error_cls = STATUS_ERRORS.get(code, UnknownBackendError)
        message = STATUS_MESSAGES.get(code, f"Judging backend returned HTTP {code}")
        logger.warning("Judge0 responded %s: %s", code, response.text[:300])
        raise error_cls(message, detail=response.text[:500] or None)

    @staticmethod
    def _parse(response: httpx.Response) -> ExecutionResult:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(detail=f"Response is not JSON: {response.text[:200]}") from e
        status = data.get("status") if isinstance(data, dict) else None
        status_id = status.get("id") if isinstance(status, dict) else None
        if not isinstance(status_id, int) or isinstance(status_id, bool):
            raise MalformedResponse(detail="Response is missing a numeric status.id")
        try:
            return ExecutionResult.model_validate(data)
        except ValueError as e:
            raise MalformedResponse(detail=str(e)) from e

    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: Optional[str] = None,
        expected_output: Optional[str] = None,
    ) -> ExecutionResult:
        language_id = backend_id_for(language)
        self._check_sizes(source_code, stdin, expected_output)

        payload = self.build_payload(source_code, language_id, stdin, expected_output)
        logger.debug("Dispatching %s submission (%d chars) to %s", language, len(source_code), self.base_url)
        response = await self._post(payload)
        self._raise_for_status(response)
        return self._parse(response)
