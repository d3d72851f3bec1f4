"""Run options and the fail-fast decision evaluated after each step."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .types import FlowDefinition, Step, StepResult


def coerce_boolish(value: Any) -> tuple[bool | None, bool]:
    """Return (value, ok); `ok` is False when the input is not boolean-like."""
    if value is None:
        return None, True
    if isinstance(value, bool):
        return value, True
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value), True
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "1", "yes", "y", "on"}:
            return True, True
        if v in {"false", "0", "no", "n", "off"}:
            return False, True
    return None, False


@dataclass(frozen=True)
class RunOptions:
    """Caller overrides for one top-level run; unset fields defer to the flow."""

    fail_fast: bool | None = None
    monitor_console: bool | None = None
    variables: dict[str, str] = field(default_factory=dict)
    seed: int | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> RunOptions:
        raw = raw or {}
        fail_fast, ok = coerce_boolish(raw.get("failFast", raw.get("fail_fast")))
        if not ok:
            raise ValueError(f"failFast must be a boolean, got {raw.get('failFast')!r}")
        monitor, ok = coerce_boolish(raw.get("monitorConsole", raw.get("monitor_console")))
        if not ok:
            raise ValueError(f"monitorConsole must be a boolean, got {raw.get('monitorConsole')!r}")
        variables = raw.get("variables")
        seed = raw.get("seed")
        return cls(
            fail_fast=fail_fast,
            monitor_console=monitor,
            variables={str(k): str(v) for k, v in variables.items()} if isinstance(variables, dict) else {},
            seed=int(seed) if isinstance(seed, (int, float)) and not isinstance(seed, bool) else None,
        )


@dataclass(frozen=True)
class EffectivePolicy:
    fail_fast: bool
    monitor_console: bool


@dataclass(frozen=True)
class StopDecision:
    stop: bool
    reason: str | None = None


CONTINUE = StopDecision(stop=False)


def resolve_policy(
    options: RunOptions | None,
    flow: FlowDefinition,
    *,
    default_fail_fast: bool = False,
    default_monitor_console: bool = True,
) -> EffectivePolicy:
    """Caller override, then the flow's own setting, then the configured default."""
    options = options or RunOptions()
    fail_fast = options.fail_fast
    if fail_fast is None:
        fail_fast = flow.fail_fast if flow.fail_fast is not None else default_fail_fast
    monitor = options.monitor_console
    if monitor is None:
        monitor = flow.monitor_console if flow.monitor_console is not None else default_monitor_console
    return EffectivePolicy(fail_fast=bool(fail_fast), monitor_console=bool(monitor))


def should_stop(step: Step, result: StepResult, policy: EffectivePolicy) -> StopDecision:
    if not policy.fail_fast:
        return CONTINUE

    if not result.passed:
        if result.navigation_failed:
            return StopDecision(True, f'Navigation failed at step "{step.name}" - expected URL not reached')
        if result.errors:
            return StopDecision(True, f'Step "{step.name}" failed: {result.errors[0]}')
        failed = [a for a in result.assertions if not a.passed]
        if failed:
            first = failed[0].assertion
            return StopDecision(True, f'Step "{step.name}" failed assertion: {first.type} {first.selector or ""}'.rstrip())
        return StopDecision(True, f'Step "{step.name}" failed')

    if policy.monitor_console and step.url and result.console_errors > 0:
        return StopDecision(
            True,
            f'Console errors detected during navigation to "{step.url}" ({result.console_errors} error(s))',
        )

    return CONTINUE


__all__ = [
    "CONTINUE",
    "EffectivePolicy",
    "RunOptions",
    "StopDecision",
    "coerce_boolish",
    "resolve_policy",
    "should_stop",
]
