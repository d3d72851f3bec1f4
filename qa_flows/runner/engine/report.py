"""Accumulates step results into a finalized RunReport."""

from __future__ import annotations

from .types import RunReport, StepResult


class ReportAssembler:
    def __init__(self) -> None:
        self._report: RunReport | None = None
        self._finalized = False

    def begin(
        self,
        *,
        flow_name: str,
        flow_id: str,
        run_id: str,
        device: str,
        total_steps: int,
        screenshot_dir: str | None = None,
        browser_info: dict[str, str] | None = None,
    ) -> RunReport:
        self._report = RunReport(
            flow=flow_name,
            flow_id=flow_id,
            run_id=run_id,
            device=device,
            total_steps=int(total_steps),
            screenshot_dir=screenshot_dir,
            browser_info=browser_info,
        )
        self._finalized = False
        return self._report

    @property
    def report(self) -> RunReport:
        if self._report is None:
            raise RuntimeError("ReportAssembler.begin() was not called")
        return self._report

    @property
    def started(self) -> bool:
        return self._report is not None

    def add_step(self, result: StepResult) -> None:
        report = self.report
        if self._finalized:
            raise RuntimeError("report already finalized")
        report.steps.append(result)
        if result.passed:
            report.passed += 1
        else:
            report.failed += 1

    def stop_early(self, reason: str) -> None:
        report = self.report
        report.stopped_early = True
        report.stop_reason = reason

    def finalize(self, duration_ms: int) -> RunReport:
        report = self.report
        if not self._finalized:
            report.duration = max(0, int(duration_ms))
            self._finalized = True
        assert report.passed + report.failed == len(report.steps), "step counters out of sync"
        assert len(report.steps) <= report.total_steps, "more step results than declared steps"
        assert report.stopped_early or len(report.steps) == report.total_steps, (
            "incomplete report without an early stop"
        )
        return report


__all__ = ["ReportAssembler"]
