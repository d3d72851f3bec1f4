"""
Flow execution: dependency sub-runs, the per-step state machine and finalization.

Lifecycle of one `run_flow()` call:

    Initializing  resolve flow, validate and run dependencies, acquire a session
    Running(i)    navigate -> primitives -> named actions -> assertions -> capture
                  -> console -> notify -> fail-fast decision
    Completed / StoppedEarly
    Finalized     release session, compute duration, persist report, notify

The step body is one containment boundary; navigation, every primitive and every
assertion are additionally contained on their own so later work in the step still
runs. Only ConfigurationError crosses the boundary and aborts the run (after the
report has been finalized and persisted).
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import secrets
import time
from collections.abc import Callable
from contextlib import AbstractContextManager, ExitStack
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..redaction import redact_known_values, redact_url_brief
from .actions import ActionDispatcher, Evaluate, parse_action
from .artifacts import RunArtifacts
from .assertions import evaluate_assertion
from .dependencies import DependencyValidator
from .errors import ActionExecutionError, ConfigurationError, FlowRunnerError, InfrastructureError, ValidationError
from .events import EventChannel
from .interpolation import InterpolationContext, VariableInterpolator
from .policy import EffectivePolicy, RunOptions, resolve_policy, should_stop
from .report import ReportAssembler
from .store import DefinitionStore, ReportStore, safe_flow_id
from .types import AutomationDriver, DependencyValidation, FlowDefinition, RunReport, Step, StepResult, count_errors

if TYPE_CHECKING:
    from ..config import RunnerConfig

logger = logging.getLogger("qa_flows.runner.orchestrator")

DriverFactory = Callable[[dict[str, int], "RunnerConfig"], AbstractContextManager[AutomationDriver]]

NAVIGATION_WAIT_UNTIL = "networkidle"


@dataclass
class ExecutionContext:
    """State shared by one top-level run and all of its dependency sub-runs."""

    run_options: RunOptions = field(default_factory=RunOptions)
    executed: set[str] = field(default_factory=set)
    reports: dict[str, RunReport] = field(default_factory=dict)
    depth: int = 0

    def nested(self) -> ExecutionContext:
        # Same executed-set and report map; only the depth changes.
        return dataclasses.replace(self, depth=self.depth + 1)


@dataclass
class _StepOutcome:
    result: StepResult
    error: Exception | None = None

    @property
    def fatal(self) -> bool:
        return isinstance(self.error, ConfigurationError)


def new_run_id(flow_id: str) -> str:
    return f"{safe_flow_id(flow_id)}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"


def join_url(base_url: str, url: str) -> str:
    """Absolute URLs pass through; relative ones are appended to the base URL."""
    if url.startswith(("http://", "https://", "about:", "data:", "file:")) or not base_url:
        return url
    if url.startswith("/") and base_url.endswith("/"):
        return base_url[:-1] + url
    return base_url + url


class FlowRunner:
    def __init__(
        self,
        config: RunnerConfig,
        definitions: DefinitionStore,
        reports: ReportStore | None,
        *,
        driver_factory: DriverFactory,
        events: EventChannel | None = None,
        options: RunOptions | None = None,
    ) -> None:
        self.config = config
        self.definitions = definitions
        self.reports = reports
        self.driver_factory = driver_factory
        self.events = events
        self.options = options or RunOptions()
        self.validator = DependencyValidator(max_depth=config.max_dependency_depth)

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        if self.events is not None:
            self.events.publish(event_type, data)

    def _redact(self, text: str) -> str:
        return redact_known_values(text, self.config.secrets)

    # Dependencies

    def validate(self, flow_id: str) -> DependencyValidation:
        """Validate a flow's declared dependencies against every stored flow."""
        flow = self._require_flow(flow_id)
        return self.validator.validate(flow_id, flow.dependencies, self.definitions.dependency_map("flow"), "flow")

    def execution_plan(self, flow_id: str) -> list[str]:
        """Every flow that runs for `flow_id`, dependencies first, the flow itself last."""
        all_items = self.definitions.dependency_map("flow")
        closure = [flow_id, *self.validator.get_all_dependencies(flow_id, all_items)]
        subset = {fid: all_items.get(fid, []) for fid in closure if fid in all_items}
        return self.validator.get_execution_order(self.validator.build_graph(subset))

    def _require_flow(self, flow_id: str) -> FlowDefinition:
        try:
            flow = self.definitions.get_flow(flow_id)
        except ValueError as exc:
            raise ValidationError(f"Invalid flow id {flow_id!r}", errors=[str(exc)]) from exc
        if flow is None:
            raise ValidationError(f"Flow {flow_id} not found", errors=[f'flow "{flow_id}" does not exist'])
        return flow

    def _validate_plan(self, flow_id: str) -> None:
        """Validate every flow that would run for `flow_id` before any of them starts."""
        all_items = self.definitions.dependency_map("flow")
        for item_id in [flow_id, *self.validator.get_all_dependencies(flow_id, all_items)]:
            dependencies = all_items.get(item_id)
            if not dependencies:
                continue
            validation = self.validator.validate(item_id, dependencies, all_items, "flow")
            for warning in validation.warnings:
                logger.warning("flow %s: %s", item_id, warning)
            if not validation.valid:
                raise ValidationError(
                    f"Dependency validation failed: {', '.join(validation.errors)}",
                    errors=validation.errors,
                    warnings=validation.warnings,
                    details={"flowId": item_id, **({"circularPaths": validation.circular_paths} if validation.circular_paths else {})},
                )

    def _run_dependencies(self, flow: FlowDefinition, device: str, ctx: ExecutionContext) -> None:
        if not flow.dependencies:
            return
        direct = set(flow.dependencies)
        for dep_id in self.execution_plan(flow.id):
            if dep_id not in direct or dep_id in ctx.executed:
                continue
            logger.info("running dependency %s of %s", dep_id, flow.id)
            # The sub-run resolves its own dependencies through the same context.
            report = self.run_flow(dep_id, device, context=ctx.nested())
            ctx.executed.add(dep_id)
            ctx.reports[dep_id] = report
            if not report.ok:
                logger.warning("dependency %s did not pass (%s failed step(s))", dep_id, report.failed)

    # Entry point

    def run_flow(self, flow_id: str, device: str = "desktop", *, context: ExecutionContext | None = None) -> RunReport:
        """Run a flow (after its dependencies) and return the persisted report.

        Raises ValidationError before anything runs, InfrastructureError when no
        session can be acquired or released, and ConfigurationError when a step
        uses an unknown action or assertion type. The last two carry `.report`
        when steps had already started.
        """
        ctx = context or ExecutionContext(run_options=self.options)
        flow = self._require_flow(flow_id)
        if ctx.depth == 0:
            self._validate_plan(flow_id)
        viewport = self.config.viewport(device)
        self._run_dependencies(flow, device, ctx)
        report = self._execute(flow, device, viewport, ctx)
        ctx.executed.add(flow_id)
        return report

    def _interpolator(self, flow: FlowDefinition, options: RunOptions) -> VariableInterpolator:
        return VariableInterpolator(
            InterpolationContext(
                base_url=flow.base_url or self.config.base_url,
                email=self.config.email,
                password=self.config.password,
                custom_vars={**flow.variables, **options.variables},
                seed=options.seed,
            )
        )

    def _acquire(self, stack: ExitStack, viewport: dict[str, int]) -> AutomationDriver:
        try:
            return stack.enter_context(self.driver_factory(viewport, self.config))
        except InfrastructureError:
            raise
        except Exception as exc:
            raise InfrastructureError(f"Failed to acquire automation session: {exc}") from exc

    def _execute(
        self, flow: FlowDefinition, device: str, viewport: dict[str, int], ctx: ExecutionContext
    ) -> RunReport:
        run_id = new_run_id(flow.id)
        policy = resolve_policy(
            ctx.run_options,
            flow,
            default_fail_fast=self.config.fail_fast,
            default_monitor_console=self.config.monitor_console,
        )
        interpolator = self._interpolator(flow, ctx.run_options)
        started = time.monotonic()

        self._emit(
            "start",
            {
                "flowId": flow.id,
                "flowName": flow.name,
                "totalSteps": len(flow.steps),
                "device": device,
                "runId": run_id,
                "depth": ctx.depth,
            },
        )
        logger.info("run %s: flow %s on %s (%d steps, failFast=%s)", run_id, flow.id, device, len(flow.steps), policy.fail_fast)

        stack = ExitStack()
        try:
            driver = self._acquire(stack, viewport)
        except InfrastructureError as exc:
            stack.close()
            self._emit("error", {"flowId": flow.id, "runId": run_id, "error": str(exc)})
            raise

        artifacts = RunArtifacts(self.config.screenshots_dir, run_id)
        assembler = ReportAssembler()
        info = getattr(driver, "browser_info", None)
        assembler.begin(
            flow_name=flow.name,
            flow_id=flow.id,
            run_id=run_id,
            device=device,
            total_steps=len(flow.steps),
            screenshot_dir=artifacts.dir_name,
            browser_info=info() if callable(info) else None,
        )

        failure: FlowRunnerError | None = None
        try:
            self._run_steps(flow, driver, assembler, artifacts, policy, interpolator)
        except ConfigurationError as exc:
            failure = exc
        finally:
            try:
                stack.close()
            except Exception as exc:
                logger.error("run %s: failed to release automation session: %s", run_id, exc)
                if failure is None:
                    failure = InfrastructureError(f"Failed to release automation session: {exc}")
                    failure.__cause__ = exc

        report = assembler.finalize(int((time.monotonic() - started) * 1000))
        if self.reports is not None:
            self.reports.save(flow.id, report)

        if failure is not None:
            failure.report = report
            self._emit("error", {"flowId": flow.id, "runId": run_id, "error": str(failure), "report": report.to_dict()})
            raise failure

        logger.info(
            "run %s finished: %d passed, %d failed%s in %dms",
            run_id,
            report.passed,
            report.failed,
            f", stopped early ({report.stop_reason})" if report.stopped_early else "",
            report.duration,
        )
        self._emit("complete", {"report": report.to_dict()})
        return report

    # Steps

    def _run_steps(
        self,
        flow: FlowDefinition,
        driver: AutomationDriver,
        assembler: ReportAssembler,
        artifacts: RunArtifacts,
        policy: EffectivePolicy,
        interpolator: VariableInterpolator,
    ) -> None:
        dispatcher = ActionDispatcher(driver)
        for number, step in enumerate(flow.steps, start=1):
            self._emit("step_start", {"stepNumber": number, "stepName": step.name, "url": step.url or ""})
            outcome = self._execute_step(driver, dispatcher, flow, step, number, artifacts, interpolator)
            result = outcome.result
            assembler.add_step(result)

            if outcome.error is not None:
                self._emit("step_error", {"stepNumber": number, "stepName": step.name, "error": str(outcome.error)})
            else:
                self._emit("step_complete", {"stepNumber": number, "stepName": step.name, "result": result.to_dict()})

            if outcome.fatal:
                assembler.stop_early(f'Configuration error at step "{step.name}": {outcome.error}')
                raise outcome.error  # type: ignore[misc]

            if not result.passed:
                logger.warning(
                    "step %d (%s) failed: %s",
                    number,
                    step.name,
                    self._redact("; ".join(result.errors) or "assertion failed"),
                )

            decision = should_stop(step, result, policy)
            if decision.stop:
                assembler.stop_early(decision.reason or f'Step "{step.name}" failed')
                self._emit("early_stop", {"stepNumber": number, "stepName": step.name, "reason": decision.reason})
                logger.error("stopping flow %s at step %d: %s", flow.id, number, self._redact(decision.reason or ""))
                break

    def _execute_step(
        self,
        driver: AutomationDriver,
        dispatcher: ActionDispatcher,
        flow: FlowDefinition,
        step: Step,
        number: int,
        artifacts: RunArtifacts,
        interpolator: VariableInterpolator,
    ) -> _StepOutcome:
        started = time.monotonic()
        result = StepResult(name=step.name, url=step.url or "")
        outcome = _StepOutcome(result)

        with contextlib.suppress(Exception):
            # Messages from before this step belong to nobody.
            driver.drain_console()

        try:
            self._navigate(driver, flow, step, result, interpolator)
            self._run_primitives(dispatcher, step.primitives, result, interpolator)
            for action_id in step.actions:
                self._run_named_action(dispatcher, action_id, result, interpolator)
            self._run_assertions(driver, step, result, interpolator)
        except ConfigurationError as exc:
            result.fail(str(exc))
            outcome.error = exc
        except Exception as exc:
            logger.warning("step %d (%s) raised: %s", number, step.name, self._redact(str(exc)), exc_info=True)
            result.fail(str(exc) or type(exc).__name__)
            outcome.error = exc

        self._capture(driver, step, number, result, artifacts)

        try:
            result.console = list(driver.drain_console())
        except Exception as exc:
            logger.warning("step %d (%s): could not read console messages: %s", number, step.name, exc)
        result.console_errors = count_errors(result.console)
        result.duration = int((time.monotonic() - started) * 1000)
        return outcome

    def _navigate(
        self,
        driver: AutomationDriver,
        flow: FlowDefinition,
        step: Step,
        result: StepResult,
        interpolator: VariableInterpolator,
    ) -> None:
        if not step.url:
            with contextlib.suppress(Exception):
                result.url = driver.url()
            return

        url = join_url(flow.base_url or self.config.base_url, interpolator.interpolate_string(step.url))
        timeout = step.timeout or self.config.navigation_timeout
        logger.debug("navigate %s (timeout %sms)", redact_url_brief(url), timeout)
        try:
            driver.goto(url, {"waitUntil": NAVIGATION_WAIT_UNTIL, "timeout": timeout})
            current = driver.url()
        except Exception as exc:
            result.navigation_failed = True
            result.fail(f"Navigation failed: {exc}")
            return

        result.url = current
        if step.expected_url:
            expected = interpolator.interpolate_string(step.expected_url)
            if expected not in current:
                result.navigation_failed = True
                result.fail(f'Navigation failed: Expected URL to contain "{expected}", but got "{current}"')

    def _dispatch_all(
        self,
        dispatcher: ActionDispatcher,
        primitives: list[dict[str, Any]],
        result: StepResult,
        interpolator: VariableInterpolator,
        describe: Callable[[ActionExecutionError], str],
    ) -> None:
        for descriptor in primitives:
            # Unknown types and malformed descriptors raise ConfigurationError here.
            action = parse_action(interpolator.interpolate_object(descriptor))
            try:
                value = dispatcher.dispatch(action)
            except ActionExecutionError as exc:
                result.fail(describe(exc))
                continue
            if isinstance(action, Evaluate):
                result.evaluate_results.append(value)

    def _run_primitives(
        self,
        dispatcher: ActionDispatcher,
        primitives: list[dict[str, Any]],
        result: StepResult,
        interpolator: VariableInterpolator,
    ) -> None:
        self._dispatch_all(dispatcher, primitives, result, interpolator, lambda exc: f"Primitive execution failed: {exc}")

    def _run_named_action(
        self,
        dispatcher: ActionDispatcher,
        action_id: str,
        result: StepResult,
        interpolator: VariableInterpolator,
    ) -> None:
        try:
            definition = self.definitions.get_action(action_id)
        except ValueError:
            definition = None
        if definition is None:
            result.fail(f'Action "{action_id}" not found')
            return
        self._dispatch_all(
            dispatcher, definition.primitives, result, interpolator, lambda exc: f'Action "{action_id}" failed: {exc}'
        )

    def _run_assertions(
        self, driver: AutomationDriver, step: Step, result: StepResult, interpolator: VariableInterpolator
    ) -> None:
        for assertion in step.assertions:
            resolved = dataclasses.replace(assertion, expected=interpolator.interpolate_object(assertion.expected))
            outcome = evaluate_assertion(driver, resolved, timeout_ms=self.config.assertion_timeout)
            result.assertions.append(outcome)
            if not outcome.passed:
                result.passed = False

    def _capture(
        self, driver: AutomationDriver, step: Step, number: int, result: StepResult, artifacts: RunArtifacts
    ) -> None:
        if step.capture.wants_screenshot(result.passed):
            try:
                png = driver.screenshot({"fullPage": False})
                result.screenshots.append(artifacts.save_screenshot(number, step.name, png).path)
            except Exception as exc:
                result.fail(f"Screenshot capture failed: {exc}")
        if step.capture.html:
            try:
                result.html = driver.content()
            except Exception as exc:
                result.fail(f"HTML capture failed: {exc}")


__all__ = ["DriverFactory", "ExecutionContext", "FlowRunner", "join_url", "new_run_id"]
