"""Flow execution engine: dependency resolution, interpolation, dispatch and orchestration."""

from .actions import ActionDispatcher, parse_action, supported_action_types
from .dependencies import DependencyValidator
from .errors import (
    ActionExecutionError,
    CircularDependencyError,
    ConfigurationError,
    FlowRunnerError,
    InfrastructureError,
    UnsupportedActionError,
    ValidationError,
)
from .events import EventChannel, RunEvent
from .interpolation import InterpolationContext, VariableInterpolator
from .orchestrator import ExecutionContext, FlowRunner
from .policy import RunOptions
from .report import ReportAssembler
from .store import FileDefinitionStore, MemoryDefinitionStore, ReportStore
from .types import FlowDefinition, RunReport, Step, StepResult

__all__ = [
    "ActionDispatcher",
    "ActionExecutionError",
    "CircularDependencyError",
    "ConfigurationError",
    "DependencyValidator",
    "EventChannel",
    "ExecutionContext",
    "FileDefinitionStore",
    "FlowDefinition",
    "FlowRunner",
    "FlowRunnerError",
    "InfrastructureError",
    "InterpolationContext",
    "MemoryDefinitionStore",
    "ReportAssembler",
    "ReportStore",
    "RunEvent",
    "RunOptions",
    "RunReport",
    "Step",
    "StepResult",
    "UnsupportedActionError",
    "ValidationError",
    "VariableInterpolator",
    "parse_action",
    "supported_action_types",
]
