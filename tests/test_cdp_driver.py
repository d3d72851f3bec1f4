from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import pytest

from qa_flows.runner.driver import CdpDriver, url_matches
from qa_flows.runner.driver import cdp as cdp_module
from qa_flows.runner.session import DriverError
from qa_flows.runner.telemetry import ConsoleTelemetry


class FakeSession:
    """BrowserSession stand-in; `answer(expression)` decides what page scripts return."""

    def __init__(self, answer=None) -> None:
        self.answer = answer or (lambda expression: None)
        self.expressions: list[str] = []
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.current_url = "https://app.test/"
        self.sent: dict[str, dict[str, Any]] = {}

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))

    def drain_events(self) -> int:
        return 0

    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        self.expressions.append(expression)
        return self.answer(expression)

    def get_url(self) -> str:
        return self.current_url

    def get_title(self) -> str:
        return "Fake"

    def navigate(self, url: str, *, wait_load: bool = True, timeout: float = 30.0) -> dict[str, Any]:
        self._record("navigate", url, wait_load=wait_load, timeout=timeout)
        self.current_url = url
        return {"frameId": "f"}

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        self._record("click", x, y, button=button, click_count=click_count)

    def type_text(self, text: str, *, delay_ms: int = 0) -> None:
        self._record("type_text", text, delay_ms=delay_ms)

    def press_key(self, combo: str) -> None:
        self._record("press_key", combo)

    def enable_domains(self, *domains: str) -> None:
        self._record("enable_domains", *domains)

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        self._record("send", method, params)
        return self.sent.get(method, {})

    def screenshot(self, *, full_page: bool = False, fmt: str = "png") -> str:
        self._record("screenshot", full_page=full_page)
        return base64.b64encode(b"\x89PNG fake").decode()

    def names(self) -> list[str]:
        return [name for name, _a, _k in self.calls]


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cdp_module.time, "sleep", lambda seconds: None)


def _driver(session: FakeSession, telemetry: ConsoleTelemetry | None = None) -> CdpDriver:
    return CdpDriver(session, telemetry or ConsoleTelemetry(), default_timeout_ms=1000)


@pytest.mark.parametrize(
    "pattern, current, expected",
    [
        ("https://app.test/done", "https://app.test/done", True),
        ("**/orders/*", "https://app.test/orders/17", True),
        ("https://app.test/done", "https://app.test/done?x=1", False),
        ("*/cart", "https://app.test/orders", False),
    ],
)
def test_url_matches(pattern: str, current: str, expected: bool) -> None:
    assert url_matches(pattern, current) is expected


def test_click_waits_until_element_is_visible() -> None:
    answers = iter([None, None, {"x": 10, "y": 20.5}])
    session = FakeSession(lambda expression: next(answers))

    _driver(session).click("#buy", {"button": "right"})

    assert session.calls == [("click", (10.0, 20.5), {"button": "right", "click_count": 1})]
    assert len(session.expressions) == 3
    assert '"#buy"' in session.expressions[0]


def test_dblclick_uses_two_clicks() -> None:
    session = FakeSession(lambda expression: {"x": 1, "y": 1})

    _driver(session).dblclick("#row")

    assert session.calls[0][2]["click_count"] == 2


def test_invisible_element_times_out_with_selector_in_message() -> None:
    session = FakeSession(lambda expression: None)

    with pytest.raises(DriverError, match='Timeout 0ms exceeded waiting for selector "#ghost" to be visible'):
        _driver(session).click("#ghost", {"timeout": 0})


def test_fill_surfaces_the_page_error_on_timeout() -> None:
    def _answer(expression: str) -> Any:
        raise DriverError("Error: No element matches selector: #email")

    with pytest.raises(DriverError) as exc:
        _driver(FakeSession(_answer)).fill("#email", "a@b.c", {"timeout": 0})

    assert "No element matches selector: #email" in str(exc.value)


def test_type_clicks_then_inserts_text() -> None:
    session = FakeSession(lambda expression: {"x": 5, "y": 5})

    _driver(session).type("#q", "laptops", {"delay": 20})

    assert session.names() == ["click", "type_text"]
    assert session.calls[1] == ("type_text", ("laptops",), {"delay_ms": 20})


def test_goto_waits_for_network_idle() -> None:
    session = FakeSession(lambda expression: True)

    result = _driver(session).goto("https://app.test/a", {"waitUntil": "networkidle", "timeout": 5000})

    assert result == {"url": "https://app.test/a"}
    assert session.calls[0] == ("navigate", ("https://app.test/a",), {"wait_load": False, "timeout": 5.0})
    assert "__qaNetworkIdle" in session.expressions[0]


def test_goto_defaults_to_load_event() -> None:
    session = FakeSession()

    _driver(session).goto("https://app.test/b")

    assert session.calls[0][2]["wait_load"] is True


def test_wait_for_selector_states() -> None:
    session = FakeSession(lambda expression: {"count": 1, "visible": False})
    driver = _driver(session)

    assert driver.wait_for_selector(".toast", {"state": "attached"})
    assert driver.wait_for_selector(".toast", {"state": "hidden"})
    with pytest.raises(DriverError):
        driver.wait_for_selector(".toast", {"state": "visible", "timeout": 0})


def test_wait_for_url_glob() -> None:
    session = FakeSession()
    session.current_url = "https://app.test/orders/17"

    assert _driver(session).wait_for_url("**/orders/*") == "https://app.test/orders/17"
    with pytest.raises(DriverError, match="Timeout 0ms"):
        _driver(session).wait_for_url("**/cart", {"timeout": 0})


def test_select_option_accepts_an_empty_selection() -> None:
    session = FakeSession(lambda expression: [])

    assert _driver(session).select_option("#size", []) == []


def test_evaluate_calls_function_source_with_argument() -> None:
    session = FakeSession(lambda expression: 3)

    assert _driver(session).evaluate("(n) => n + 1", 2) == 3
    assert session.expressions[-1] == "((n) => n + 1)(2)"


def test_set_input_files(tmp_path: Path) -> None:
    upload = tmp_path / "avatar.png"
    upload.write_bytes(b"x")
    session = FakeSession(lambda expression: True)
    session.sent = {"DOM.getDocument": {"root": {"nodeId": 1}}, "DOM.querySelector": {"nodeId": 42}}

    _driver(session).set_input_files("input[type=file]", str(upload))

    sent = [args for name, args, _k in session.calls if name == "send"]
    assert sent[-1] == ("DOM.setFileInputFiles", {"nodeId": 42, "files": [str(upload.resolve())]})
    assert ("enable_domains", ("DOM",), {}) in session.calls


def test_set_input_files_requires_existing_files(tmp_path: Path) -> None:
    with pytest.raises(DriverError, match="File not found"):
        _driver(FakeSession()).set_input_files("#f", [str(tmp_path / "missing.pdf")])


def test_screenshot_returns_png_bytes() -> None:
    session = FakeSession()

    assert _driver(session).screenshot({"fullPage": True}) == b"\x89PNG fake"
    assert session.calls[0] == ("screenshot", (), {"full_page": True})


def test_headers_and_viewport_use_cdp_commands() -> None:
    session = FakeSession()
    driver = _driver(session)

    driver.set_extra_http_headers({"X-Test": 1})  # type: ignore[dict-item]
    driver.set_viewport_size({"width": 800, "height": 600})

    sent = [args for name, args, _k in session.calls if name == "send"]
    assert sent[0] == ("Network.setExtraHTTPHeaders", {"headers": {"X-Test": "1"}})
    assert sent[1][0] == "Emulation.setDeviceMetricsOverride"
    assert sent[1][1]["width"] == 800


def test_queries_and_console_drain() -> None:
    telemetry = ConsoleTelemetry()
    telemetry.ingest({"method": "Runtime.consoleAPICalled", "params": {"type": "error", "args": [{"value": "x"}]}})

    def _answer(expression: str) -> Any:
        if "el ? el.textContent" in expression:
            return "Hello"
        if "String(el.value)" in expression:
            return "typed"
        return 3

    driver = _driver(FakeSession(_answer), telemetry)

    assert driver.count("li") == 3
    assert driver.text_content("h1") == "Hello"
    assert driver.input_value("#q") == "typed"
    assert [m.text for m in driver.drain_console()] == ["x"]
    assert driver.drain_console() == []
    assert driver.title() == "Fake"
