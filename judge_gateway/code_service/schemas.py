from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from judge_gateway.limits.quota import QuotaLimits, QuotaUsage


class ExecutionRequest(BaseModel):
    sourceCode: str
    language: str
    stdin: Optional[str] = None
    expectedOutput: Optional[str] = None


class TestCase(BaseModel):
    input: str
    expected: str


class ExecuteWithTestsRequest(BaseModel):
    code: str
    language: str
    testCases: List[TestCase]


class Status(BaseModel):
    id: int
    description: str = ""


class ExecutionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compileOutput: Optional[str] = Field(default=None, alias="compile_output")
    status: Status
    time: Optional[str] = None
    memory: Optional[int] = None

    @field_validator("time", mode="before")
    @classmethod
    def _time_as_text(cls, v):
        # Judge0 sends seconds as a decimal string, some deployments as a number
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("memory", mode="before")
    @classmethod
    def _memory_as_int(cls, v):
        if isinstance(v, float):
            return int(v)
        return v


class TestResult(ExecutionResult):
    # None when the case never got a verdict from the backend
    status: Optional[Status] = None
    testCase: TestCase
    passed: bool
    index: int
    actual: str = ""
    error: Optional[str] = None


class ResultsSummary(BaseModel):
    totalTests: int
    passedTests: int
    failedTests: int
    successRate: float
    totalTime: float
    totalMemory: int


class TestCaseOutcome(BaseModel):
    input: str
    expected: str
    actual: str
    passed: bool


class ExecuteWithTestsResponse(BaseModel):
    results: List[TestCaseOutcome]
    summary: ResultsSummary


class LanguageOut(BaseModel):
    key: str
    id: int
    name: str


class QuotaOut(BaseModel):
    usage: QuotaUsage
    limits: QuotaLimits
