"""
Typed action descriptors and the dispatcher that turns them into driver calls.

Each authored action type (`"goto"`, `"waitForSelector"`, ...) has one frozen
dataclass. Field declaration order is the positional argument order of the driver
operation, so building a call never needs a per-type switch.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from ..redaction import redact_action
from .errors import ActionExecutionError, ConfigurationError, UnsupportedActionError

logger = logging.getLogger("qa_flows.runner.actions")

_SNAKE_PART_RE = re.compile(r"_([a-z])")


def _camel(name: str) -> str:
    return _SNAKE_PART_RE.sub(lambda m: m.group(1).upper(), name)


@dataclass(frozen=True, slots=True)
class Action:
    """Base class for typed actions."""

    kind: ClassVar[str] = ""
    operation: ClassVar[str] = ""
    noop: ClassVar[bool] = False

    def arguments(self) -> list[Any]:
        """Positional arguments in field order, trailing unset values trimmed."""
        args = [getattr(self, f.name) for f in dataclasses.fields(self)]
        while args and args[-1] is None:
            args.pop()
        return args


# authored type -> action class
ACTION_TYPES: dict[str, type[Action]] = {}


def register_action(kind: str, operation: str, *, noop: bool = False) -> Callable[[type[Action]], type[Action]]:
    def _wrap(cls: type[Action]) -> type[Action]:
        cls.kind = kind
        cls.operation = operation
        cls.noop = noop
        ACTION_TYPES[kind] = cls
        return cls

    return _wrap


def _alias(*names: str) -> dict[str, Any]:
    return {"aliases": names}


# Navigation


@register_action("goto", "goto")
@dataclass(frozen=True, slots=True)
class Goto(Action):
    url: str
    options: dict[str, Any] | None = None


@register_action("goBack", "go_back")
@dataclass(frozen=True, slots=True)
class GoBack(Action):
    options: dict[str, Any] | None = None


@register_action("goForward", "go_forward")
@dataclass(frozen=True, slots=True)
class GoForward(Action):
    options: dict[str, Any] | None = None


@register_action("reload", "reload")
@dataclass(frozen=True, slots=True)
class Reload(Action):
    options: dict[str, Any] | None = None


# Pointer


@register_action("click", "click")
@dataclass(frozen=True, slots=True)
class Click(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("dblclick", "dblclick")
@dataclass(frozen=True, slots=True)
class DblClick(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("hover", "hover")
@dataclass(frozen=True, slots=True)
class Hover(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("tap", "tap")
@dataclass(frozen=True, slots=True)
class Tap(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("dragAndDrop", "drag_and_drop")
@dataclass(frozen=True, slots=True)
class DragAndDrop(Action):
    source: str
    target: str
    options: dict[str, Any] | None = None


# Focus


@register_action("focus", "focus")
@dataclass(frozen=True, slots=True)
class Focus(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("blur", "blur")
@dataclass(frozen=True, slots=True)
class Blur(Action):
    selector: str


# Keyboard and forms


@register_action("type", "type")
@dataclass(frozen=True, slots=True)
class Type(Action):
    selector: str
    text: str
    options: dict[str, Any] | None = None


@register_action("fill", "fill")
@dataclass(frozen=True, slots=True)
class Fill(Action):
    selector: str
    value: str
    options: dict[str, Any] | None = None


@register_action("press", "press")
@dataclass(frozen=True, slots=True)
class Press(Action):
    selector: str
    key: str
    options: dict[str, Any] | None = None


@register_action("check", "check")
@dataclass(frozen=True, slots=True)
class Check(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("uncheck", "uncheck")
@dataclass(frozen=True, slots=True)
class Uncheck(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("selectOption", "select_option")
@dataclass(frozen=True, slots=True)
class SelectOption(Action):
    selector: str
    values: Any
    options: dict[str, Any] | None = None


@register_action("setInputFiles", "set_input_files")
@dataclass(frozen=True, slots=True)
class SetInputFiles(Action):
    selector: str
    files: Any
    options: dict[str, Any] | None = None


@register_action("dispatchEvent", "dispatch_event")
@dataclass(frozen=True, slots=True)
class DispatchEvent(Action):
    selector: str
    # `type` names the action itself, so the DOM event is authored as `eventType`.
    event_type: str = dataclasses.field(metadata=_alias("event"))
    event_init: dict[str, Any] | None = None
    options: dict[str, Any] | None = None


# Waiting


@register_action("waitForLoadState", "wait_for_load_state")
@dataclass(frozen=True, slots=True)
class WaitForLoadState(Action):
    state: str | None = None
    options: dict[str, Any] | None = None


@register_action("waitForTimeout", "wait_for_timeout")
@dataclass(frozen=True, slots=True)
class WaitForTimeout(Action):
    timeout: float


@register_action("waitForSelector", "wait_for_selector")
@dataclass(frozen=True, slots=True)
class WaitForSelector(Action):
    selector: str
    options: dict[str, Any] | None = None


@register_action("waitForFunction", "wait_for_function")
@dataclass(frozen=True, slots=True)
class WaitForFunction(Action):
    page_function: str
    arg: Any = None
    options: dict[str, Any] | None = None


@register_action("waitForURL", "wait_for_url")
@dataclass(frozen=True, slots=True)
class WaitForURL(Action):
    url: str
    options: dict[str, Any] | None = None


# Page


@register_action("evaluate", "evaluate")
@dataclass(frozen=True, slots=True)
class Evaluate(Action):
    page_function: str
    arg: Any = None


@register_action("content", "content")
@dataclass(frozen=True, slots=True)
class Content(Action):
    pass


@register_action("title", "title")
@dataclass(frozen=True, slots=True)
class Title(Action):
    pass


@register_action("url", "url")
@dataclass(frozen=True, slots=True)
class Url(Action):
    pass


@register_action("setViewportSize", "set_viewport_size")
@dataclass(frozen=True, slots=True)
class SetViewportSize(Action):
    viewport_size: dict[str, int]


@register_action("setExtraHTTPHeaders", "set_extra_http_headers")
@dataclass(frozen=True, slots=True)
class SetExtraHTTPHeaders(Action):
    headers: dict[str, str]


@register_action("setContent", "set_content")
@dataclass(frozen=True, slots=True)
class SetContent(Action):
    html: str
    options: dict[str, Any] | None = None


@register_action("bringToFront", "bring_to_front")
@dataclass(frozen=True, slots=True)
class BringToFront(Action):
    pass


# Capture is decided by the runner's capture policy, not by actions.


@register_action("screenshot", "screenshot", noop=True)
@dataclass(frozen=True, slots=True)
class Screenshot(Action):
    options: dict[str, Any] | None = None


@register_action("capture", "capture", noop=True)
@dataclass(frozen=True, slots=True)
class Capture(Action):
    options: dict[str, Any] | None = None


def _required(f: dataclasses.Field) -> bool:
    return f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING


def parse_action(descriptor: dict[str, Any]) -> Action:
    """Build the typed action for an authored `{type, ...fields}` record."""
    if not isinstance(descriptor, dict):
        raise ConfigurationError(f"Action descriptor must be an object, got {type(descriptor).__name__}")
    kind = descriptor.get("type")
    if not isinstance(kind, str) or not kind:
        raise ConfigurationError("Action descriptor is missing its type", details={"descriptor": redact_action(descriptor)})
    cls = ACTION_TYPES.get(kind)
    if cls is None:
        raise UnsupportedActionError(kind)

    values: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        keys = (_camel(f.name), f.name, *f.metadata.get("aliases", ()))
        value = next((descriptor[k] for k in keys if descriptor.get(k) is not None), None)
        if value is None and _required(f):
            raise ConfigurationError(
                f'Action "{kind}" is missing required field "{_camel(f.name)}"',
                details={"actionType": kind},
            )
        values[f.name] = value
    return cls(**values)


def supported_action_types() -> list[str]:
    return sorted(ACTION_TYPES)


def describe_action(kind: str) -> dict[str, Any]:
    cls = ACTION_TYPES.get(kind)
    if cls is None:
        raise UnsupportedActionError(kind)
    fields = dataclasses.fields(cls)
    return {
        "type": kind,
        "operation": cls.operation,
        "arguments": [_camel(f.name) for f in fields],
        "required": [_camel(f.name) for f in fields if _required(f)],
        "noop": cls.noop,
    }


class ActionDispatcher:
    """Invoke typed actions against a driver object exposing named operations."""

    def __init__(self, driver: Any) -> None:
        self.driver = driver

    def dispatch(self, action: Action | dict[str, Any]) -> Any:
        if not isinstance(action, Action):
            action = parse_action(action)
        if action.noop:
            logger.debug("%s is handled by the capture policy; skipped", action.kind)
            return None

        operation = getattr(self.driver, action.operation, None)
        if not callable(operation):
            raise UnsupportedActionError(action.kind)

        args = action.arguments()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("dispatch %s %s", action.kind, redact_action({"type": action.kind, **_named(action)}))
        try:
            return operation(*args)
        except Exception as exc:
            raise ActionExecutionError(action.kind, str(exc) or type(exc).__name__) from exc


def _named(action: Action) -> dict[str, Any]:
    return {_camel(f.name): getattr(action, f.name) for f in dataclasses.fields(action)}


__all__ = [
    "ACTION_TYPES",
    "Action",
    "ActionDispatcher",
    "describe_action",
    "parse_action",
    "register_action",
    "supported_action_types",
]
