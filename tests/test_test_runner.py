import asyncio
import json

import httpx
import pytest

from conftest import b64, echo_stdin, judge0_result, sum_first_line, unb64
from judge_gateway.code_service import schemas
from judge_gateway.code_service.judge_client import JudgeClient
from judge_gateway.code_service.test_runner import (
    TestCaseRunner,
    decode_output,
    normalize_output,
    outputs_match,
    summarize,
)
from judge_gateway.limits.quota import QuotaLimits, QuotaTracker
from judge_gateway.limits.store import InMemoryCounterStore

SUM_PROGRAM = "print(sum(map(int, input().split())))"


def cases(*pairs):
    return [schemas.TestCase(input=i, expected=e) for i, e in pairs]


@pytest.mark.parametrize(
    "value, expected",
    [
        (b64("hello\n"), "hello\n"),
        ("aGVs\nbG8=", "hello"),
        ("not base64!", "not base64!"),
        # valid base64 of bytes that are not UTF-8
        ("/w==", "/w=="),
        (None, None),
    ],
)
def test_decode_output(value, expected):
    assert decode_output(value) == expected


@pytest.mark.parametrize("actual", ["0 1\n", "0 1\r\n", "0 1", "  0 1\r", "\n0 1\n\n"])
def test_outputs_match_ignores_line_endings_and_outer_whitespace(actual):
    assert outputs_match(actual, "0 1")


def test_inner_whitespace_still_matters():
    assert not outputs_match("0  1", "0 1")
    assert normalize_output("a\r\nb\r\n") == "a\nb"
    assert normalize_output(None) == ""


def test_empty_case_list_runs_nothing(make_judge):
    client, backend = make_judge(echo_stdin)
    report = asyncio.run(TestCaseRunner(client).run_all(SUM_PROGRAM, "python", []))

    assert report.results == []
    assert report.summary == schemas.ResultsSummary(
        totalTests=0, passedTests=0, failedTests=0, successRate=0.0, totalTime=0.0, totalMemory=0
    )
    assert backend.calls == 0


def test_wrong_answer_reports_actual_output(make_judge):
    client, _ = make_judge(sum_first_line)
    report = asyncio.run(
        TestCaseRunner(client).run_all(SUM_PROGRAM, "python", cases(("2 7 11 15\n9", "0 1")))
    )

    assert [o.model_dump() for o in report.outcomes()] == [
        {"input": "2 7 11 15\n9", "expected": "0 1", "actual": "35", "passed": False}
    ]
    assert report.summary.successRate == 0.0


def test_results_keep_input_order_and_numbering(settings):
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        text = unb64(json.loads(request.content)["stdin"])
        in_flight += 1
        peak = max(peak, in_flight)
        # later cases finish first
        await asyncio.sleep(0.01 * (6 - int(text)))
        in_flight -= 1
        return httpx.Response(200, json=judge0_result(text + "\n"))

    client = JudgeClient(settings, transport=httpx.MockTransport(handler))
    runner = TestCaseRunner(client, max_concurrency=2)
    test_cases = cases(*((str(n), str(n)) for n in range(1, 6)))
    report = asyncio.run(runner.run_all("print(input())", "python", test_cases))

    assert [r.index for r in report.results] == [1, 2, 3, 4, 5]
    assert [r.testCase.input for r in report.results] == ["1", "2", "3", "4", "5"]
    assert all(r.passed for r in report.results)
    assert peak == 2


def test_failed_case_does_not_abort_the_run(make_judge):
    def respond(payload):
        if unb64(payload["stdin"]) == "boom":
            return httpx.Response(500, json={"error": "internal"})
        return echo_stdin(payload)

    client, backend = make_judge(respond)
    report = asyncio.run(
        TestCaseRunner(client).run_all("print(input())", "python", cases(("a", "a"), ("boom", "boom"), ("c", "x")))
    )

    first, failed, third = report.results
    assert first.passed
    assert (failed.passed, failed.actual, failed.status) == (False, "Error", None)
    assert "unavailable" in failed.error
    assert (third.passed, third.actual) == (False, "c")
    assert backend.calls == 3
    assert report.summary.passedTests == 1
    assert report.summary.failedTests == 2


def test_summary_totals():
    results = [
        schemas.TestResult(
            testCase=schemas.TestCase(input="1", expected="1"),
            passed=passed, index=i, time=time, memory=memory,
        )
        for i, (passed, time, memory) in enumerate(
            [(True, "0.5", 100), (False, "0.25", 50), (True, None, None), (False, "n/a", 10)],
            start=1,
        )
    ]
    summary = summarize(results)
    assert summary.totalTests == 4
    assert summary.passedTests == 2
    assert summary.successRate == 50.0
    assert summary.totalTime == pytest.approx(0.75)
    assert summary.totalMemory == 160


def test_every_dispatch_is_counted_against_quota(make_judge):
    def respond(payload):
        if unb64(payload.get("stdin")) == "boom":
            return httpx.Response(500)
        return echo_stdin(payload)

    client, _ = make_judge(respond)
    quota = QuotaTracker(InMemoryCounterStore())
    runner = TestCaseRunner(client, quota)

    async def scenario():
        await runner.run_all("print(input())", "python", cases(("a", "a"), ("boom", "x")), user_id="u1")
        await runner.run_single("print(1)", "python", user_id="u1")
        return await quota.check_quota("u1")

    assert asyncio.run(scenario()).totalExecutions == 3


def test_run_single_decodes_outputs(make_judge):
    client, _ = make_judge(lambda payload: httpx.Response(200, json=judge0_result(
        "out\n", stderr="warn\n", compile_output="note", status_id=4, description="Wrong Answer",
    )))
    result = asyncio.run(TestCaseRunner(client).run_single("print(1)", "python"))

    assert (result.stdout, result.stderr, result.compileOutput) == ("out\n", "warn\n", "note")
    assert result.status.description == "Wrong Answer"


def test_rerunning_gives_the_same_verdicts(make_judge):
    client, _ = make_judge(echo_stdin)
    runner = TestCaseRunner(client)
    test_cases = cases(("a", "a"), ("b", "c"))

    first = asyncio.run(runner.run_all("print(input())", "python", test_cases))
    second = asyncio.run(runner.run_all("print(input())", "python", test_cases))
    assert [r.passed for r in first.results] == [r.passed for r in second.results] == [True, False]


def test_exhausted_quota_fails_remaining_cases_without_dispatch(make_judge):
    client, backend = make_judge(echo_stdin)
    quota = QuotaTracker(InMemoryCounterStore(), QuotaLimits(maxDailyExecutions=2))
    runner = TestCaseRunner(client, quota, max_concurrency=1)

    report = asyncio.run(
        runner.run_all("print(input())", "python", cases(*((str(n), str(n)) for n in range(5))), user_id="u1")
    )

    assert backend.calls == 2
    assert [r.passed for r in report.results] == [True, True, False, False, False]
    assert all("quota" in r.error for r in report.results[2:])
    assert asyncio.run(quota.check_quota("u1")).totalExecutions == 2
