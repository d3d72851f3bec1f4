from __future__ import annotations

from qa_flows.runner.telemetry import ConsoleTelemetry, count_errors


def test_console_api_call_is_recorded_with_level() -> None:
    t = ConsoleTelemetry(max_events=50)
    t.ingest(
        {
            "method": "Runtime.consoleAPICalled",
            "params": {
                "type": "error",
                "args": [{"type": "string", "value": "boom"}, {"type": "number", "value": 7}],
                "stackTrace": {"callFrames": [{"url": "https://app.test/app.js?v=1", "lineNumber": 12}]},
            },
        }
    )
    t.ingest({"method": "Runtime.consoleAPICalled", "params": {"type": "warning", "args": [{"type": "undefined"}]}})

    messages = t.drain()
    assert [(m.type, m.text) for m in messages] == [("error", "boom 7"), ("warn", "<undefined>")]
    assert messages[0].location == "https://app.test/app.js:12"
    assert count_errors(messages) == 1
    assert t.drain() == []


def test_uncaught_exception_is_a_page_error_not_a_console_error() -> None:
    t = ConsoleTelemetry(max_events=50)
    t.ingest(
        {
            "method": "Runtime.exceptionThrown",
            "params": {
                "exceptionDetails": {
                    "text": "Uncaught",
                    "url": "https://example.com/app.js?token=secret#hash",
                    "lineNumber": 10,
                    "exception": {"description": "TypeError: x is undefined"},
                }
            },
        }
    )

    messages = t.drain()
    assert messages[0].type == "pageerror"
    assert messages[0].text == "TypeError: x is undefined"
    assert messages[0].location == "https://example.com/app.js:10"
    assert count_errors(messages) == 0


def test_log_entries_skip_console_api_duplicates() -> None:
    t = ConsoleTelemetry(max_events=50)
    t.ingest({"method": "Log.entryAdded", "params": {"entry": {"source": "console-api", "level": "error", "text": "dup"}}})
    t.ingest(
        {
            "method": "Log.entryAdded",
            "params": {"entry": {"source": "network", "level": "error", "text": "Failed to load resource: 404"}},
        }
    )

    messages = t.drain()
    assert [(m.type, m.text) for m in messages] == [("error", "Failed to load resource: 404")]


def test_buffer_is_bounded() -> None:
    t = ConsoleTelemetry(max_events=3)
    for n in range(5):
        t.ingest({"method": "Runtime.consoleAPICalled", "params": {"type": "log", "args": [{"type": "number", "value": n}]}})

    assert [m.text for m in t.drain()] == ["2", "3", "4"]
    assert t.dropped == 2


def test_dialog_open_and_close() -> None:
    t = ConsoleTelemetry()
    t.ingest({"method": "Page.javascriptDialogOpening", "params": {"type": "alert", "message": "Saved"}})
    assert t.dialog_open
    assert t.dialog_last and t.dialog_last["type"] == "alert"

    t.ingest({"method": "Page.javascriptDialogClosed", "params": {"result": False}})
    assert not t.dialog_open
    assert t.dialogs[-1]["accepted"] is False


def test_unrelated_and_malformed_events_are_ignored() -> None:
    t = ConsoleTelemetry()
    t.ingest({"method": "Network.requestWillBeSent", "params": {}})
    t.ingest("not-an-event")  # type: ignore[arg-type]

    assert t.drain() == []


def test_dialog_history_is_bounded() -> None:
    t = ConsoleTelemetry(max_dialogs=2)
    for n in range(3):
        t.ingest({"method": "Page.javascriptDialogOpening", "params": {"type": "alert", "message": f"m{n}"}})

    assert [d["message"] for d in t.dialogs] == ["m1", "m2"]
    assert t.dialog_last and t.dialog_last["message"] == "m2"
