"""Error taxonomy for flow execution.

- ValidationError: definitions are inconsistent (missing/self/circular deps). Raised
  before any automation session exists.
- ConfigurationError: a definition asks for something the engine cannot do (unknown
  action/assertion type, bad capture policy, unknown device). Aborts the run.
- ActionExecutionError: one action failed at runtime. Recorded into the step result.
- InfrastructureError: the automation session could not be created or torn down.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import RunReport


class FlowRunnerError(Exception):
    """Base class for every error raised by the runner."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        # Set by the orchestrator when the run reached `Running` before failing.
        self.report: RunReport | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": True, "kind": type(self).__name__, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(FlowRunnerError):
    """Dependency or definition validation failed."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["errors"] = list(self.errors)
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out


class CircularDependencyError(ValidationError):
    """No execution order exists because the graph has a cycle."""


class ConfigurationError(FlowRunnerError):
    """A definition references an unknown action/assertion type or invalid setting."""


class UnsupportedActionError(ConfigurationError):
    def __init__(self, action_type: str, *, reason: str | None = None) -> None:
        msg = reason or f"Unknown or unsupported action type: {action_type}"
        super().__init__(msg, details={"actionType": action_type})
        self.action_type = action_type


class ActionExecutionError(FlowRunnerError):
    """An action reached the driver and the driver failed."""

    def __init__(self, action_type: str, reason: str) -> None:
        super().__init__(f'Failed to execute action "{action_type}": {reason}', details={"actionType": action_type})
        self.action_type = action_type
        self.reason = reason


class InfrastructureError(FlowRunnerError):
    """Automation session could not be acquired or released."""
