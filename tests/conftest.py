import base64
import json

import httpx
import jwt
import pytest

from judge_gateway.code_service.judge_client import JudgeClient
from judge_gateway.config import Settings, get_settings
from judge_gateway.main import create_app


def b64(text):
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def unb64(text):
    return base64.b64decode(text).decode("utf-8") if text else ""


def judge0_result(stdout=None, status_id=3, description="Accepted", time="0.01", memory=1024,
                  stderr=None, compile_output=None):
    return {
        "stdout": b64(stdout) if stdout is not None else None,
        "stderr": b64(stderr) if stderr is not None else None,
        "compile_output": b64(compile_output) if compile_output is not None else None,
        "status": {"id": status_id, "description": description},
        "time": time,
        "memory": memory,
    }


def sum_first_line(payload):
    """Behaves like `print(sum(map(int, input().split())))`."""
    first_line = unb64(payload.get("stdin")).splitlines()[0]
    return httpx.Response(200, json=judge0_result(f"{sum(map(int, first_line.split()))}\n"))


def echo_stdin(payload):
    return httpx.Response(200, json=judge0_result(unb64(payload.get("stdin"))))


class RecordingBackend:
    """Judge0 stand-in for httpx.MockTransport that keeps every decoded request body."""

    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        return self.respond(payload)

    @property
    def calls(self):
        return len(self.requests)


class FakeReporter:
    def __init__(self):
        self.records = []

    async def record(self, log):
        self.records.append(log)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        judge0_url="http://judge.test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'executions.db'}",
    )


@pytest.fixture
def make_judge(settings):
    def _make(respond, **overrides):
        used = Settings(**{**settings.__dict__, **overrides})
        backend = RecordingBackend(respond)
        return JudgeClient(used, transport=httpx.MockTransport(backend)), backend

    return _make


@pytest.fixture
def make_app(settings):
    def _make(respond=echo_stdin, **overrides):
        used = Settings(**{**settings.__dict__, **overrides})
        backend = RecordingBackend(respond)
        client = JudgeClient(used, transport=httpx.MockTransport(backend))
        reporter = FakeReporter()
        app = create_app(settings=used, judge_client=client, reporter=reporter)
        return app, backend, reporter

    return _make


@pytest.fixture
def auth_header():
    def _make(user_id="42", email="dev@example.com", secret=None):
        token = jwt.encode(
            {"id": user_id, "email": email},
            secret or get_settings().jwt_secret,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return _make
