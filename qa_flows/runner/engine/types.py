"""
Data model for flows, steps, assertions and run reports.

Definitions are authored as camelCase JSON; every record converts from that shape
via `from_dict()` and back via `to_dict()` so persisted reports stay readable by
other tooling.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import ConfigurationError

CAPTURE_ALWAYS = "always"
CAPTURE_NEVER = "never"
CAPTURE_ON_FAILURE = "on-failure"
_CAPTURE_MODES = {CAPTURE_ALWAYS, CAPTURE_NEVER, CAPTURE_ON_FAILURE}


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, str) and v.strip()]


def _dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [dict(v) for v in value if isinstance(v, dict)]


def _opt_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


@dataclass(slots=True)
class CapturePolicy:
    """When to capture artifacts for a step."""

    screenshot: str = CAPTURE_NEVER
    html: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> CapturePolicy:
        if not isinstance(raw, dict):
            return cls()
        shot = raw.get("screenshot")
        if shot is True:
            mode = CAPTURE_ALWAYS
        elif shot is None or shot is False:
            mode = CAPTURE_NEVER
        elif isinstance(shot, str) and shot.strip().lower() in _CAPTURE_MODES:
            mode = shot.strip().lower()
        else:
            raise ConfigurationError(
                f"Invalid screenshot capture policy: {shot!r} (use always, never or on-failure)",
                details={"screenshot": shot},
            )
        return cls(screenshot=mode, html=bool(raw.get("html")))

    def to_dict(self) -> dict[str, Any]:
        return {"screenshot": self.screenshot, "html": self.html}

    def wants_screenshot(self, passed: bool) -> bool:
        if self.screenshot == CAPTURE_ALWAYS:
            return True
        if self.screenshot == CAPTURE_ON_FAILURE:
            return not passed
        return False


@dataclass(slots=True)
class Assertion:
    type: str
    selector: str | None = None
    attribute: str | None = None
    expected: Any = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Assertion:
        return cls(
            type=str(raw.get("type") or ""),
            selector=raw.get("selector") if isinstance(raw.get("selector"), str) else None,
            attribute=raw.get("attribute") if isinstance(raw.get("attribute"), str) else None,
            expected=raw.get("expected"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.selector is not None:
            out["selector"] = self.selector
        if self.attribute is not None:
            out["attribute"] = self.attribute
        if self.expected is not None:
            out["expected"] = self.expected
        return out


@dataclass(slots=True)
class AssertionResult:
    assertion: Assertion
    passed: bool = False
    actual: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = self.assertion.to_dict()
        out["passed"] = self.passed
        if self.actual is not None:
            out["actual"] = self.actual
        if self.error:
            out["error"] = self.error
        return out


@dataclass(slots=True)
class Step:
    name: str
    url: str | None = None
    expected_url: str | None = None
    primitives: list[dict[str, Any]] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    assertions: list[Assertion] = field(default_factory=list)
    capture: CapturePolicy = field(default_factory=CapturePolicy)
    timeout: int | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Step:
        timeout = raw.get("timeout")
        return cls(
            name=str(raw.get("name") or "Unnamed step"),
            url=raw.get("url") if isinstance(raw.get("url"), str) and raw.get("url") else None,
            expected_url=raw.get("expectedUrl") if isinstance(raw.get("expectedUrl"), str) else None,
            primitives=_dict_list(raw.get("primitives")),
            actions=_str_list(raw.get("actions")),
            assertions=[Assertion.from_dict(a) for a in _dict_list(raw.get("assertions"))],
            capture=CapturePolicy.from_dict(raw.get("capture")),
            timeout=int(timeout) if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.url:
            out["url"] = self.url
        if self.expected_url:
            out["expectedUrl"] = self.expected_url
        if self.primitives:
            out["primitives"] = [dict(p) for p in self.primitives]
        if self.actions:
            out["actions"] = list(self.actions)
        if self.assertions:
            out["assertions"] = [a.to_dict() for a in self.assertions]
        out["capture"] = self.capture.to_dict()
        if self.timeout is not None:
            out["timeout"] = self.timeout
        return out


@dataclass(slots=True)
class FlowDefinition:
    id: str
    name: str
    steps: list[Step] = field(default_factory=list)
    description: str = ""
    base_url: str = ""
    dependencies: list[str] = field(default_factory=list)
    devices: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    fail_fast: bool | None = None
    monitor_console: bool | None = None
    variables: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, flow_id: str, raw: dict[str, Any]) -> FlowDefinition:
        variables = raw.get("variables")
        metadata = raw.get("metadata")
        return cls(
            id=flow_id,
            name=str(raw.get("name") or flow_id),
            steps=[Step.from_dict(s) for s in _dict_list(raw.get("steps"))],
            description=str(raw.get("description") or ""),
            base_url=str(raw.get("baseUrl") or ""),
            dependencies=_str_list(raw.get("dependencies")),
            devices=_str_list(raw.get("devices")),
            tags=_str_list(raw.get("tags")),
            fail_fast=_opt_bool(raw.get("failFast")),
            monitor_console=_opt_bool(raw.get("monitorConsole")),
            variables={str(k): str(v) for k, v in variables.items()} if isinstance(variables, dict) else {},
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "baseUrl": self.base_url,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.dependencies:
            out["dependencies"] = list(self.dependencies)
        if self.devices:
            out["devices"] = list(self.devices)
        if self.tags:
            out["tags"] = list(self.tags)
        if self.fail_fast is not None:
            out["failFast"] = self.fail_fast
        if self.monitor_console is not None:
            out["monitorConsole"] = self.monitor_console
        if self.variables:
            out["variables"] = dict(self.variables)
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


@dataclass(slots=True)
class ActionDefinition:
    """Reusable, named sequence of primitives (e.g. `auth/login`)."""

    id: str
    name: str
    primitives: list[dict[str, Any]] = field(default_factory=list)
    type: str = "interaction"
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    category: str | None = None

    @classmethod
    def from_dict(cls, action_id: str, raw: dict[str, Any]) -> ActionDefinition:
        return cls(
            id=action_id,
            name=str(raw.get("name") or action_id.rsplit("/", 1)[-1].replace("-", " ")),
            primitives=_dict_list(raw.get("primitives")),
            type=str(raw.get("type") or "interaction"),
            description=str(raw.get("description") or ""),
            dependencies=_str_list(raw.get("dependencies")),
            tags=_str_list(raw.get("tags")),
            category=raw.get("category") if isinstance(raw.get("category"), str) else None,
        )


@dataclass(slots=True)
class ConsoleMessage:
    type: str
    text: str
    timestamp: str = field(default_factory=now_iso)
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "text": self.text, "timestamp": self.timestamp}
        if self.location:
            out["location"] = self.location
        return out


def count_errors(messages: list[ConsoleMessage]) -> int:
    """Console errors only; uncaught page errors are not counted."""
    return sum(1 for m in messages if m.type == "error")


@dataclass(slots=True)
class StepResult:
    name: str
    url: str = ""
    passed: bool = True
    duration: int = 0
    assertions: list[AssertionResult] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    html: str | None = None
    console: list[ConsoleMessage] = field(default_factory=list)
    console_errors: int = 0
    errors: list[str] = field(default_factory=list)
    navigation_failed: bool = False
    evaluate_results: list[Any] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.errors.append(message)
        self.passed = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "url": self.url,
            "passed": self.passed,
            "duration": self.duration,
            "assertions": [a.to_dict() for a in self.assertions],
            "screenshots": list(self.screenshots),
            "html": self.html,
            "console": [m.to_dict() for m in self.console],
            "consoleErrors": self.console_errors,
            "errors": list(self.errors),
            "navigationFailed": self.navigation_failed,
        }
        if self.evaluate_results:
            out["evaluateResults"] = list(self.evaluate_results)
        return out


@dataclass(slots=True)
class RunReport:
    flow: str
    flow_id: str
    run_id: str
    device: str
    total_steps: int
    timestamp: str = field(default_factory=now_iso)
    steps: list[StepResult] = field(default_factory=list)
    passed: int = 0
    failed: int = 0
    stopped_early: bool = False
    stop_reason: str | None = None
    duration: int = 0
    screenshot_dir: str | None = None
    browser_info: dict[str, str] | None = None

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.stopped_early

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "flow": self.flow,
            "flowId": self.flow_id,
            "runId": self.run_id,
            "timestamp": self.timestamp,
            "device": self.device,
            "duration": self.duration,
            "steps": [s.to_dict() for s in self.steps],
            "passed": self.passed,
            "failed": self.failed,
            "totalSteps": self.total_steps,
            "stoppedEarly": self.stopped_early,
            "screenshotDir": self.screenshot_dir,
        }
        if self.stop_reason:
            out["stopReason"] = self.stop_reason
        if self.browser_info:
            out["browserInfo"] = dict(self.browser_info)
        return out


@dataclass(slots=True)
class DependencyNode:
    id: str
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    name: str = ""
    type: str = "flow"


@dataclass(slots=True)
class DependencyValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    circular_paths: list[list[str]] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}
        if self.circular_paths:
            out["circularPaths"] = [list(p) for p in self.circular_paths]
        return out


class AutomationDriver(Protocol):
    """Operations the orchestrator calls directly.

    Action operations (`click`, `fill`, `wait_for_url`, ...) are looked up by name by
    the dispatcher, so a driver only needs the ones its flows use.
    """

    def goto(self, url: str, options: dict[str, Any] | None = None) -> Any: ...

    def url(self) -> str: ...

    def content(self) -> str: ...

    def screenshot(self, options: dict[str, Any] | None = None) -> bytes: ...

    def wait_for_selector(self, selector: str, options: dict[str, Any] | None = None) -> Any: ...

    def text_content(self, selector: str) -> str | None: ...

    def input_value(self, selector: str) -> str: ...

    def get_attribute(self, selector: str, name: str) -> str | None: ...

    def count(self, selector: str) -> int: ...

    def drain_console(self) -> list[ConsoleMessage]: ...
