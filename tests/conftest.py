from __future__ import annotations

from collections.abc import Callable
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from qa_flows.runner.config import RunnerConfig
from qa_flows.runner.engine.events import EventChannel
from qa_flows.runner.engine.orchestrator import FlowRunner
from qa_flows.runner.engine.policy import RunOptions
from qa_flows.runner.engine.store import MemoryDefinitionStore, ReportStore
from qa_flows.runner.engine.types import ConsoleMessage


def png_bytes(width: int = 4, height: int = 3) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


class FakeDriver:
    """Scripted stand-in for a browser page; records every operation."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.current_url = "about:blank"
        self.redirects: dict[str, str] = {}
        self.console_on_goto: dict[str, list[ConsoleMessage]] = {}
        self.visible: set[str] = set()
        self.texts: dict[str, str] = {}
        self.values: dict[str, str] = {}
        self.attributes: dict[tuple[str, str], str] = {}
        self.counts: dict[str, int] = {}
        self.failing: dict[str, str] = {}
        self.evaluate_result: Any = None
        self.html = "<html><body>fake</body></html>"
        self._console: list[ConsoleMessage] = []

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.failing:
            raise RuntimeError(self.failing[name])

    def names(self) -> list[str]:
        return [name for name, _args in self.calls]

    def log_console(self, kind: str, text: str) -> None:
        self._console.append(ConsoleMessage(type=kind, text=text))

    # Navigation

    def goto(self, url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        self._record("goto", url, options)
        self.current_url = self.redirects.get(url, url)
        self._console.extend(self.console_on_goto.get(url, []))
        return {"url": self.current_url}

    def url(self) -> str:
        return self.current_url

    # Actions

    def click(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._record("click", selector, options)

    def fill(self, selector: str, value: str, options: dict[str, Any] | None = None) -> None:
        self._record("fill", selector, value, options)
        self.values[selector] = value

    def type(self, selector: str, text: str, options: dict[str, Any] | None = None) -> None:
        self._record("type", selector, text, options)
        self.values[selector] = self.values.get(selector, "") + text

    def press(self, selector: str, key: str, options: dict[str, Any] | None = None) -> None:
        self._record("press", selector, key, options)

    def check(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._record("check", selector, options)

    def dispatch_event(
        self,
        selector: str,
        event_type: str,
        event_init: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self._record("dispatch_event", selector, event_type, event_init, options)

    def wait_for_timeout(self, timeout: float) -> None:
        self._record("wait_for_timeout", timeout)

    def wait_for_url(self, url: str, options: dict[str, Any] | None = None) -> str:
        self._record("wait_for_url", url, options)
        return self.current_url

    def evaluate(self, page_function: str, arg: Any = None) -> Any:
        self._record("evaluate", page_function, arg)
        return self.evaluate_result

    # Queries

    def wait_for_selector(self, selector: str, options: dict[str, Any] | None = None) -> bool:
        opts = options or {}
        state = opts.get("state") or "visible"
        self._record("wait_for_selector", selector, opts)
        visible = selector in self.visible
        if (state == "visible") != visible:
            raise TimeoutError(f'Timeout {opts.get("timeout")}ms exceeded waiting for selector "{selector}" to be {state}')
        return True

    def text_content(self, selector: str) -> str | None:
        return self.texts.get(selector)

    def input_value(self, selector: str) -> str:
        if selector not in self.values:
            raise RuntimeError(f"No element matches selector: {selector}")
        return self.values[selector]

    def get_attribute(self, selector: str, name: str) -> str | None:
        return self.attributes.get((selector, name))

    def count(self, selector: str) -> int:
        return self.counts.get(selector, 0)

    # Capture

    def screenshot(self, options: dict[str, Any] | None = None) -> bytes:
        self._record("screenshot", options)
        return png_bytes()

    def content(self) -> str:
        self._record("content")
        return self.html

    def drain_console(self) -> list[ConsoleMessage]:
        out = list(self._console)
        self._console.clear()
        return out

    def browser_info(self) -> dict[str, str]:
        return {"product": "FakeBrowser/1.0"}


@pytest.fixture()
def png() -> bytes:
    return png_bytes()


@pytest.fixture()
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture()
def driver_factory(fake_driver: FakeDriver) -> Callable[..., Any]:
    sessions: list[dict[str, Any]] = []

    @contextmanager
    def _factory(viewport: dict[str, int], config: RunnerConfig):
        session: dict[str, Any] = {"viewport": dict(viewport), "closed": False}
        sessions.append(session)
        try:
            yield fake_driver
        finally:
            session["closed"] = True

    _factory.sessions = sessions  # type: ignore[attr-defined]
    return _factory


@pytest.fixture()
def runner_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RunnerConfig:
    for name in ("QA_BASE_URL", "QA_HEADLESS", "QA_FAIL_FAST", "QA_MONITOR_CONSOLE", "QA_CDP_PORT", "QA_BROWSER_MODE"):
        monkeypatch.delenv(name, raising=False)
    return RunnerConfig.from_dict(
        {"baseUrl": "https://app.test", "auth": {"credentials": {"email": "qa@app.test", "password": "hunter22"}}},
        project_root=tmp_path,
    )


@pytest.fixture()
def make_runner(runner_config: RunnerConfig, driver_factory: Callable[..., Any]) -> Callable[..., FlowRunner]:
    def _make(
        flows: dict[str, dict[str, Any]],
        actions: dict[str, dict[str, Any]] | None = None,
        *,
        options: RunOptions | None = None,
        events: EventChannel | None = None,
        factory: Callable[..., Any] | None = None,
    ) -> FlowRunner:
        return FlowRunner(
            runner_config,
            MemoryDefinitionStore(flows, actions),
            ReportStore(runner_config.reports_dir, runner_config.screenshots_dir),
            driver_factory=factory or driver_factory,
            events=events,
            options=options,
        )

    return _make
