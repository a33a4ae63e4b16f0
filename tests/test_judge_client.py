import asyncio

import httpx
import pytest

from conftest import b64, echo_stdin, judge0_result
from judge_gateway.code_service.judge_client import JudgeClient
from judge_gateway.exceptions import (
    BackendAuthRequired,
    BackendForbidden,
    BackendRateLimited,
    BackendTimeout,
    BackendUnavailable,
    InvalidParameters,
    MalformedResponse,
    RateLimited,
    ServiceUnavailable,
    UnknownBackendError,
    UnsupportedLanguage,
    ValidationFailed,
)


def respond_with(status_code, body=None, text=None):
    def respond(payload):
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code, json=body)

    return respond


def test_submission_payload_is_base64_encoded(make_judge):
    client, backend = make_judge(echo_stdin)
    result = asyncio.run(client.execute("print(input())", "python", stdin="hi"))

    assert backend.requests == [{
        "source_code": b64("print(input())"),
        "language_id": 71,
        "stdin": b64("hi"),
    }]
    # the client hands back what the backend sent, still encoded
    assert result.stdout == b64("hi")
    assert result.status.id == 3


def test_expected_output_is_forwarded(make_judge):
    client, backend = make_judge(echo_stdin)
    asyncio.run(client.execute("print(1)", "Python", expected_output="1"))
    assert backend.requests[0]["expected_output"] == b64("1")


def test_request_targets_waiting_submission_endpoint(settings):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=judge0_result("ok"))

    settings.judge0_api_key = "secret-key"
    client = JudgeClient(settings, transport=httpx.MockTransport(handler))
    asyncio.run(client.execute("print(1)", "python"))

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/submissions"
    assert request.url.params["base64_encoded"] == "true"
    assert request.url.params["wait"] == "true"
    assert request.headers["X-RapidAPI-Key"] == "secret-key"
    assert request.headers["X-RapidAPI-Host"] == "judge.test"


def test_no_rapidapi_headers_without_key(settings):
    client = JudgeClient(settings)
    assert "X-RapidAPI-Key" not in client.headers


def test_unsupported_language_never_reaches_backend(make_judge):
    client, backend = make_judge(echo_stdin)
    with pytest.raises(UnsupportedLanguage):
        asyncio.run(client.execute("print(1)", "brainfuck"))
    assert backend.calls == 0


def test_oversized_submission_never_reaches_backend(make_judge):
    client, backend = make_judge(echo_stdin, max_code_size=10, max_stdin_size=5)
    with pytest.raises(ValidationFailed) as excinfo:
        asyncio.run(client.execute("x" * 11, "python", stdin="toolong"))
    assert [d["field"] for d in excinfo.value.details] == ["sourceCode", "stdin"]
    assert backend.calls == 0


@pytest.mark.parametrize(
    "status_code, error_cls",
    [
        (400, InvalidParameters),
        (401, BackendAuthRequired),
        (403, BackendForbidden),
        (429, BackendRateLimited),
        (500, ServiceUnavailable),
        (418, UnknownBackendError),
    ],
)
def test_http_errors_map_to_judge_errors(make_judge, status_code, error_cls):
    client, _ = make_judge(respond_with(status_code, {"error": "nope"}))
    with pytest.raises(error_cls):
        asyncio.run(client.execute("print(1)", "python"))


def test_upstream_rate_limit_is_distinct_from_gateway_limit(make_judge):
    client, _ = make_judge(respond_with(429, {"message": "Too many requests"}))
    with pytest.raises(BackendRateLimited) as excinfo:
        asyncio.run(client.execute("print(1)", "python"))

    error = excinfo.value
    assert not isinstance(error, RateLimited)
    assert error.status_code == 503
    assert "upstream limit" in error.message


@pytest.mark.parametrize(
    "respond",
    [
        respond_with(200, {"stdout": None}),
        respond_with(200, {"status": {"id": "3"}}),
        respond_with(200, [1, 2, 3]),
        respond_with(200, text="<html>gateway error</html>"),
        respond_with(200, {"status": {"id": 3}, "memory": "lots"}),
    ],
)
def test_malformed_responses(make_judge, respond):
    client, _ = make_judge(respond)
    with pytest.raises(MalformedResponse):
        asyncio.run(client.execute("print(1)", "python"))


def test_numeric_time_is_kept_as_text(make_judge):
    client, _ = make_judge(respond_with(200, {**judge0_result("1"), "time": 0.042, "memory": 2048.0}))
    result = asyncio.run(client.execute("print(1)", "python"))
    assert result.time == "0.042"
    assert result.memory == 2048


def test_timeout_maps_to_backend_timeout(settings):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = JudgeClient(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(BackendTimeout) as excinfo:
        asyncio.run(client.execute("print(1)", "python"))
    assert excinfo.value.status_code == 504


def test_connection_error_maps_to_backend_unavailable(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = JudgeClient(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(BackendUnavailable):
        asyncio.run(client.execute("print(1)", "python"))
