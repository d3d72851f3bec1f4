from __future__ import annotations

import logging
from typing import Any

import pytest

from qa_flows.runner.engine.actions import (
    ActionDispatcher,
    DispatchEvent,
    Fill,
    describe_action,
    parse_action,
    supported_action_types,
)
from qa_flows.runner.engine.errors import ActionExecutionError, ConfigurationError, UnsupportedActionError


class RecordingDriver:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def fill(self, *args: Any) -> None:
        self.calls.append(("fill", args))

    def goto(self, *args: Any) -> dict[str, Any]:
        self.calls.append(("goto", args))
        return {"url": args[0]}

    def wait_for_timeout(self, *args: Any) -> None:
        self.calls.append(("wait_for_timeout", args))

    def dispatch_event(self, *args: Any) -> None:
        self.calls.append(("dispatch_event", args))

    def evaluate(self, *args: Any) -> Any:
        self.calls.append(("evaluate", args))
        return 42

    def click(self, *args: Any) -> None:
        raise RuntimeError("element is detached")


def test_parse_builds_typed_action() -> None:
    action = parse_action({"type": "fill", "selector": "#email", "value": "a@b.c"})

    assert isinstance(action, Fill)
    assert action.arguments() == ["#email", "a@b.c"]


def test_parse_accepts_snake_case_and_aliases() -> None:
    by_camel = parse_action({"type": "dispatchEvent", "selector": "#x", "eventType": "input", "eventInit": {"data": "z"}})
    by_alias = parse_action({"type": "dispatchEvent", "selector": "#x", "event": "input"})
    by_snake = parse_action({"type": "waitForFunction", "page_function": "() => true"})

    assert isinstance(by_camel, DispatchEvent)
    assert by_camel.arguments() == ["#x", "input", {"data": "z"}]
    assert by_alias.arguments() == ["#x", "input"]
    assert by_snake.arguments() == ["() => true"]


def test_unknown_action_type_is_a_configuration_error() -> None:
    with pytest.raises(UnsupportedActionError) as exc:
        parse_action({"type": "teleport", "selector": "#x"})

    assert isinstance(exc.value, ConfigurationError)
    assert exc.value.action_type == "teleport"
    assert "teleport" in exc.value.message


@pytest.mark.parametrize(
    "descriptor, needle",
    [
        ({"selector": "#x"}, "missing its type"),
        ({"type": "fill", "selector": "#x"}, '"value"'),
        ({"type": "goto"}, '"url"'),
        ("click #x", "must be an object"),
    ],
)
def test_malformed_descriptors(descriptor: Any, needle: str) -> None:
    with pytest.raises(ConfigurationError) as exc:
        parse_action(descriptor)

    assert needle in exc.value.message


def test_dispatch_calls_driver_with_positional_fields() -> None:
    driver = RecordingDriver()
    dispatcher = ActionDispatcher(driver)

    result = dispatcher.dispatch({"type": "goto", "url": "https://app.test/", "options": {"timeout": 5}})
    dispatcher.dispatch({"type": "waitForTimeout", "timeout": 250})
    dispatcher.dispatch({"type": "dispatchEvent", "selector": "#q", "eventType": "change"})

    assert result == {"url": "https://app.test/"}
    assert driver.calls == [
        ("goto", ("https://app.test/", {"timeout": 5})),
        ("wait_for_timeout", (250,)),
        ("dispatch_event", ("#q", "change")),
    ]


def test_dispatch_returns_evaluate_value() -> None:
    assert ActionDispatcher(RecordingDriver()).dispatch({"type": "evaluate", "pageFunction": "() => 42"}) == 42


def test_capture_actions_are_skipped() -> None:
    driver = RecordingDriver()

    assert ActionDispatcher(driver).dispatch({"type": "screenshot", "options": {"fullPage": True}}) is None
    assert ActionDispatcher(driver).dispatch({"type": "capture"}) is None
    assert driver.calls == []


def test_driver_failure_becomes_action_execution_error() -> None:
    with pytest.raises(ActionExecutionError) as exc:
        ActionDispatcher(RecordingDriver()).dispatch({"type": "click", "selector": "#gone"})

    assert exc.value.message == 'Failed to execute action "click": element is detached'
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_operation_missing_on_driver_is_unsupported() -> None:
    with pytest.raises(UnsupportedActionError):
        ActionDispatcher(RecordingDriver()).dispatch({"type": "hover", "selector": "#menu"})


def test_debug_log_redacts_typed_values(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="qa_flows.runner.actions"):
        ActionDispatcher(RecordingDriver()).dispatch({"type": "fill", "selector": "#pw", "value": "hunter22"})

    assert "hunter22" not in caplog.text
    assert "<redacted str len=8>" in caplog.text


def test_catalogue_describes_every_type() -> None:
    kinds = supported_action_types()

    assert {"goto", "click", "fill", "waitForURL", "setExtraHTTPHeaders", "evaluate"} <= set(kinds)
    assert describe_action("dragAndDrop") == {
        "type": "dragAndDrop",
        "operation": "drag_and_drop",
        "arguments": ["source", "target", "options"],
        "required": ["source", "target"],
        "noop": False,
    }
    assert describe_action("screenshot")["noop"] is True
    with pytest.raises(UnsupportedActionError):
        describe_action("nope")
