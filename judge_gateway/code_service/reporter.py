import logging
from typing import Callable, Optional

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from judge_gateway.db.database import AsyncSessionLocal
from judge_gateway.db.models import ExecutionLog

from .schemas import ExecutionResult
from .test_runner import RunReport

logger = logging.getLogger(__name__)


class ExecutionLogRecord(BaseModel):
    user_id: Optional[str] = None
    language: str
    code_length: int
    execution_time_ms: Optional[float] = None
    memory_usage_kb: Optional[int] = None
    status: str
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    test_cases_passed: Optional[int] = None
    total_test_cases: Optional[int] = None
    success_rate: Optional[float] = None
    error_message: Optional[str] = None


def _seconds_to_ms(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) * 1000 if value else None
    except ValueError:
        return None


def _user(user_id) -> Optional[str]:
    return str(user_id) if user_id is not None else None


def log_for_run(result: ExecutionResult, language: str, code_length: int, user_id=None) -> ExecutionLogRecord:
    return ExecutionLogRecord(
        user_id=_user(user_id),
        language=language,
        code_length=code_length,
        execution_time_ms=_seconds_to_ms(result.time),
        memory_usage_kb=result.memory,
        status=result.status.description or str(result.status.id),
        stdout=result.stdout,
        stderr=result.stderr,
        compile_output=result.compileOutput,
    )


def log_for_report(report: RunReport, language: str, code_length: int, user_id=None) -> ExecutionLogRecord:
    summary = report.summary
    errors = [r.error for r in report.results if r.error]
    if summary.totalTests and len(errors) == summary.totalTests:
        status = "Error"
    elif summary.passedTests == summary.totalTests:
        status = "Accepted"
    else:
        status = "Wrong Answer"
    return ExecutionLogRecord(
        user_id=_user(user_id),
        language=language,
        code_length=code_length,
        execution_time_ms=summary.totalTime * 1000,
        memory_usage_kb=summary.totalMemory,
        status=status,
        test_cases_passed=summary.passedTests,
        total_test_cases=summary.totalTests,
        success_rate=summary.successRate,
        error_message=errors[0] if errors else None,
    )


def log_for_failure(error: Exception, language: str, code_length: int, user_id=None) -> ExecutionLogRecord:
    return ExecutionLogRecord(
        user_id=_user(user_id),
        language=language,
        code_length=code_length,
        status="Error",
        error_message=str(error),
    )


class ResultReporter:
    """Best-effort audit trail of executions.

    ``record`` never raises: a failed insert or publish is logged and
    dropped so the caller's response is unaffected.
    """

    def __init__(self, session_factory=None, publish: Optional[Callable[[str, dict], None]] = None, topic: str = "code_executed"):
        self.session_factory = session_factory or AsyncSessionLocal
        self.publish = publish
        self.topic = topic

    async def _persist(self, log: ExecutionLogRecord) -> None:
        async with self.session_factory() as session:
            session.add(ExecutionLog(**log.model_dump()))
            await session.commit()

    async def record(self, log: ExecutionLogRecord) -> None:
        try:
            await self._persist(log)
        except Exception:
            logger.error("Failed to store execution log (%s, %s)", log.language, log.status, exc_info=True)

        if self.publish is None:
            return
        try:
            await run_in_threadpool(self.publish, self.topic, log.model_dump())
        except Exception:
            logger.error("Failed to publish execution event to %s", self.topic, exc_info=True)
