from __future__ import annotations

import pytest

from qa_flows.runner.engine.report import ReportAssembler
from qa_flows.runner.engine.types import StepResult


def _begin(total: int = 2) -> ReportAssembler:
    assembler = ReportAssembler()
    assembler.begin(flow_name="Login", flow_id="auth/login", run_id="auth-login-1-abcd", device="mobile", total_steps=total)
    return assembler


def test_counts_follow_step_results() -> None:
    assembler = _begin()
    assembler.add_step(StepResult(name="a", passed=True))
    assembler.add_step(StepResult(name="b", passed=False, errors=["x"]))

    report = assembler.finalize(1500)

    assert (report.passed, report.failed, report.duration) == (1, 1, 1500)
    assert not report.ok
    data = report.to_dict()
    assert data["totalSteps"] == 2
    assert data["stoppedEarly"] is False
    assert "stopReason" not in data


def test_early_stop_allows_missing_steps() -> None:
    assembler = _begin(total=3)
    assembler.add_step(StepResult(name="a", passed=False))
    assembler.stop_early('Step "a" failed')

    report = assembler.finalize(10)

    assert report.stopped_early
    assert report.to_dict()["stopReason"] == 'Step "a" failed'
    assert len(report.steps) == 1


def test_incomplete_report_without_early_stop_is_rejected() -> None:
    assembler = _begin(total=2)
    assembler.add_step(StepResult(name="a"))

    with pytest.raises(AssertionError):
        assembler.finalize(1)


def test_finalize_is_idempotent_and_closes_the_report() -> None:
    assembler = _begin(total=1)
    assembler.add_step(StepResult(name="a"))
    first = assembler.finalize(5)

    assert assembler.finalize(99).duration == first.duration == 5
    with pytest.raises(RuntimeError):
        assembler.add_step(StepResult(name="late"))


def test_requires_begin() -> None:
    assembler = ReportAssembler()

    assert not assembler.started
    with pytest.raises(RuntimeError):
        assembler.add_step(StepResult(name="a"))
