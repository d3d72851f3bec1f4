"""
Default automation driver: maps driver operations onto CDP commands and page scripts.

`open_session(viewport, config)` is the driver factory the runner expects. Each
session gets its own browser context and target, so concurrent runs against the
same Chrome do not share cookies or storage.
"""

from __future__ import annotations

import base64
import contextlib
import dataclasses
import fnmatch
import logging
import secrets
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from ..config import RunnerConfig
from ..engine.errors import InfrastructureError
from ..engine.types import ConsoleMessage
from ..http_client import HttpClientError, cdp_endpoint, get_json
from ..launcher import BrowserLauncher
from ..redaction import redact_url_brief
from ..session import BrowserSession, CdpConnection, DriverError
from ..telemetry import ConsoleTelemetry
from . import scripts

logger = logging.getLogger("qa_flows.runner.driver")

_POLL_INTERVAL = 0.1
_LOAD_STATES = {"load", "domcontentloaded", "networkidle", "commit"}


def _opts(options: dict[str, Any] | None) -> dict[str, Any]:
    return options if isinstance(options, dict) else {}


def url_matches(pattern: str, current: str) -> bool:
    """Exact match, or a glob when the pattern contains `*`/`?`."""
    if pattern == current:
        return True
    if any(ch in pattern for ch in "*?"):
        return fnmatch.fnmatchcase(current, pattern.replace("**", "*"))
    return False


class CdpDriver:
    """AutomationDriver over one BrowserSession."""

    def __init__(
        self,
        session: BrowserSession,
        telemetry: ConsoleTelemetry,
        *,
        default_timeout_ms: int = 30000,
        slow_mo_ms: int = 0,
        browser_info: dict[str, str] | None = None,
    ) -> None:
        self.session = session
        self.telemetry = telemetry
        self.default_timeout_ms = int(default_timeout_ms)
        self.slow_mo_ms = int(slow_mo_ms)
        self._browser_info = dict(browser_info or {})

    # Helpers

    def _timeout_ms(self, options: dict[str, Any] | None) -> int:
        raw = _opts(options).get("timeout")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw >= 0:
            return int(raw)
        return self.default_timeout_ms

    def _slow(self) -> None:
        if self.slow_mo_ms > 0:
            time.sleep(self.slow_mo_ms / 1000.0)

    def _eval(self, expression: str) -> Any:
        self.session.drain_events()
        return self.session.eval_js(expression)

    def _poll(self, probe: Callable[[], Any], timeout_ms: int, what: str) -> Any:
        """Call `probe` until it returns a truthy value or the timeout expires."""
        deadline = time.time() + timeout_ms / 1000.0
        last_error: Exception | None = None
        while True:
            try:
                value = probe()
            except DriverError as exc:
                value, last_error = None, exc
            if value:
                return value
            if time.time() >= deadline:
                suffix = f" ({last_error})" if last_error is not None else ""
                raise DriverError(f"Timeout {timeout_ms}ms exceeded waiting for {what}{suffix}")
            time.sleep(_POLL_INTERVAL)

    def _center(self, selector: str, options: dict[str, Any] | None) -> tuple[float, float]:
        point = self._poll(
            lambda: self._eval(scripts.element_center(selector)),
            self._timeout_ms(options),
            f'selector "{selector}" to be visible',
        )
        return float(point["x"]), float(point["y"])

    def _wait_load_state(self, state: str, timeout_ms: int) -> None:
        if state == "commit":
            return
        if state == "networkidle":
            self._poll(lambda: self._eval(scripts.NETWORK_IDLE), timeout_ms, "network idle")
            return
        ready = {"load": ("complete",), "domcontentloaded": ("interactive", "complete")}[state]
        self._poll(lambda: self._eval(scripts.READY_STATE) in ready, timeout_ms, f'load state "{state}"')

    # Navigation

    def goto(self, url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        self._slow()
        opts = _opts(options)
        timeout_ms = self._timeout_ms(opts)
        wait_until = opts.get("waitUntil") if opts.get("waitUntil") in _LOAD_STATES else "load"
        logger.debug("goto %s (waitUntil=%s)", redact_url_brief(url), wait_until)
        self.session.navigate(url, wait_load=wait_until == "load", timeout=timeout_ms / 1000.0)
        if wait_until in {"domcontentloaded", "networkidle"}:
            self._wait_load_state(wait_until, timeout_ms)
        return {"url": self.url()}

    def go_back(self, options: dict[str, Any] | None = None) -> bool:
        self._slow()
        return self.session.history_go(-1, timeout=self._timeout_ms(options) / 1000.0)

    def go_forward(self, options: dict[str, Any] | None = None) -> bool:
        self._slow()
        return self.session.history_go(1, timeout=self._timeout_ms(options) / 1000.0)

    def reload(self, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self.session.reload(timeout=self._timeout_ms(options) / 1000.0)

    # Pointer

    def click(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        opts = _opts(options)
        x, y = self._center(selector, opts)
        count = opts.get("clickCount") if isinstance(opts.get("clickCount"), int) else 1
        self.session.click(x, y, button=str(opts.get("button") or "left"), click_count=count)

    def dblclick(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self.click(selector, {**_opts(options), "clickCount": 2})

    def hover(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        x, y = self._center(selector, options)
        self.session.move_mouse(x, y)

    def tap(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        x, y = self._center(selector, options)
        self.session.tap(x, y)

    def drag_and_drop(self, source: str, target: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        sx, sy = self._center(source, options)
        tx, ty = self._center(target, options)
        self.session.drag(sx, sy, tx, ty)

    def focus(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self._poll(lambda: self._eval(scripts.focus(selector)), self._timeout_ms(options), f'selector "{selector}"')

    def blur(self, selector: str) -> None:
        self._slow()
        self._eval(scripts.blur(selector))

    # Keyboard and forms

    def type(self, selector: str, text: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        opts = _opts(options)
        self.click(selector, opts)
        delay = opts.get("delay") if isinstance(opts.get("delay"), (int, float)) else 0
        self.session.type_text(str(text), delay_ms=int(delay))

    def fill(self, selector: str, value: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self._poll(
            lambda: self._eval(scripts.fill(selector, str(value))),
            self._timeout_ms(options),
            f'selector "{selector}"',
        )

    def press(self, selector: str, key: str, options: dict[str, Any] | None = None) -> None:
        self.focus(selector, options)
        self.session.press_key(key)

    def check(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self._poll(lambda: self._eval(scripts.set_checked(selector, True)), self._timeout_ms(options), f'selector "{selector}"')

    def uncheck(self, selector: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self._poll(
            lambda: self._eval(scripts.set_checked(selector, False)) is False,
            self._timeout_ms(options),
            f'selector "{selector}" to be unchecked',
        )

    def select_option(self, selector: str, values: Any, options: dict[str, Any] | None = None) -> list[str]:
        self._slow()
        wanted = list(values) if isinstance(values, (list, tuple)) else [values]
        # Probe result is wrapped so an empty selection still counts as done.
        _, selected = self._poll(
            lambda: ("ok", self._eval(scripts.select_options(selector, wanted))),
            self._timeout_ms(options),
            f'selector "{selector}"',
        )
        return list(selected or [])

    def set_input_files(self, selector: str, files: Any, options: dict[str, Any] | None = None) -> None:
        self._slow()
        paths = [files] if isinstance(files, str) else list(files or [])
        resolved = [str(Path(p).expanduser().resolve()) for p in paths]
        for path in resolved:
            if not Path(path).is_file():
                raise DriverError(f"File not found: {path}")
        marker = secrets.token_hex(4)
        self._poll(
            lambda: self._eval(scripts.file_input_marker(selector, marker)),
            self._timeout_ms(options),
            f'selector "{selector}"',
        )
        self.session.enable_domains("DOM")
        root = self.session.send("DOM.getDocument", {"depth": 0})
        root_id = (root.get("root") or {}).get("nodeId")
        found = self.session.send("DOM.querySelector", {"nodeId": root_id, "selector": f'[data-qa-file-target="{marker}"]'})
        node_id = found.get("nodeId")
        if not node_id:
            raise DriverError(f'File input "{selector}" is not reachable from the main document')
        self.session.send("DOM.setFileInputFiles", {"nodeId": node_id, "files": resolved})

    def dispatch_event(
        self,
        selector: str,
        event_type: str,
        event_init: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self._slow()
        self._poll(
            lambda: self._eval(scripts.dispatch_event(selector, event_type, event_init)),
            self._timeout_ms(options),
            f'selector "{selector}"',
        )

    # Waiting

    def wait_for_load_state(self, state: str | None = None, options: dict[str, Any] | None = None) -> None:
        state = state or "load"
        if state not in _LOAD_STATES:
            raise DriverError(f"Unknown load state: {state}")
        self._wait_load_state(state, self._timeout_ms(options))

    def wait_for_timeout(self, timeout: float) -> None:
        time.sleep(max(0.0, float(timeout)) / 1000.0)

    def wait_for_selector(self, selector: str, options: dict[str, Any] | None = None) -> bool:
        opts = _opts(options)
        state = opts.get("state") or "visible"

        def _probe() -> bool:
            info = self._eval(scripts.selector_state(selector)) or {}
            found = int(info.get("count") or 0) > 0
            visible = bool(info.get("visible"))
            return {
                "attached": found,
                "detached": not found,
                "visible": visible,
                "hidden": not visible,
            }.get(state, visible)

        return self._poll(_probe, self._timeout_ms(opts), f'selector "{selector}" to be {state}')

    def wait_for_function(self, page_function: str, arg: Any = None, options: dict[str, Any] | None = None) -> Any:
        expression = scripts.call_function(page_function, arg)
        return self._poll(lambda: self._eval(expression), self._timeout_ms(options), "function to return a truthy value")

    def wait_for_url(self, url: str, options: dict[str, Any] | None = None) -> str:
        return self._poll(
            lambda: (lambda current: current if url_matches(url, current) else None)(self.url()),
            self._timeout_ms(options),
            f"URL {redact_url_brief(url)}",
        )

    # Page

    def evaluate(self, page_function: str, arg: Any = None) -> Any:
        self._slow()
        return self._eval(scripts.call_function(page_function, arg))

    def content(self) -> str:
        return self._eval(scripts.CONTENT) or ""

    def title(self) -> str:
        return self.session.get_title()

    def url(self) -> str:
        return self.session.get_url()

    def set_viewport_size(self, viewport_size: dict[str, int]) -> None:
        self.session.send(
            "Emulation.setDeviceMetricsOverride",
            {
                "width": int(viewport_size["width"]),
                "height": int(viewport_size["height"]),
                "deviceScaleFactor": 1,
                "mobile": False,
            },
        )

    def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        self.session.enable_domains("Network")
        self.session.send("Network.setExtraHTTPHeaders", {"headers": {str(k): str(v) for k, v in headers.items()}})

    def set_content(self, html: str, options: dict[str, Any] | None = None) -> None:
        self._slow()
        self._eval(scripts.set_content(html))
        self._wait_load_state("load", self._timeout_ms(options))

    def bring_to_front(self) -> None:
        self.session.send("Page.bringToFront")

    def screenshot(self, options: dict[str, Any] | None = None) -> bytes:
        data = self.session.screenshot(full_page=bool(_opts(options).get("fullPage")))
        if not data:
            raise DriverError("Page.captureScreenshot returned no data")
        return base64.b64decode(data)

    # Queries used by assertions

    def text_content(self, selector: str) -> str | None:
        return self._eval(scripts.text_content(selector))

    def input_value(self, selector: str) -> str:
        return str(self._eval(scripts.input_value(selector)))

    def get_attribute(self, selector: str, name: str) -> str | None:
        return self._eval(scripts.get_attribute(selector, name))

    def count(self, selector: str) -> int:
        return int(self._eval(scripts.count(selector)) or 0)

    def drain_console(self) -> list[ConsoleMessage]:
        with contextlib.suppress(DriverError):
            self.session.drain_events()
        return self.telemetry.drain()

    def browser_info(self) -> dict[str, str]:
        return dict(self._browser_info)


def _page_ws_url(port: int, target_id: str) -> str:
    try:
        targets = get_json(cdp_endpoint(port, "json/list"), timeout=2.0)
    except HttpClientError:
        targets = []
    for target in targets if isinstance(targets, list) else []:
        if isinstance(target, dict) and target.get("id") == target_id and target.get("webSocketDebuggerUrl"):
            return str(target["webSocketDebuggerUrl"])
    return f"ws://127.0.0.1:{int(port)}/devtools/page/{target_id}"


@contextlib.contextmanager
def open_session(viewport: dict[str, int], config: RunnerConfig) -> Iterator[CdpDriver]:
    """Acquire an isolated page (own browser context) sized to `viewport`."""
    # The launcher picks its own port in launch mode, so each session works on its own copy.
    config = dataclasses.replace(config)
    launcher = BrowserLauncher(config)
    launch = launcher.ensure_running()
    ready = launcher.cdp_ready() if config.mode == "attach" else launch.started
    if not ready:
        launcher.stop()
        raise InfrastructureError(
            f"Browser is not reachable: {launch.message}",
            details={"port": config.cdp_port, "mode": config.mode},
        )

    browser: CdpConnection | None = None
    session: BrowserSession | None = None
    context_id: str | None = None
    target_id: str | None = None
    try:
        try:
            version = launcher.cdp_version()
            browser = CdpConnection(launcher.browser_ws_url(), timeout=config.http_timeout)
            context_id = browser.send("Target.createBrowserContext", {"disposeOnDetach": True}).get("browserContextId")
            target_id = browser.send(
                "Target.createTarget", {"url": "about:blank", "browserContextId": context_id}
            ).get("targetId")
            if not target_id:
                raise DriverError("Target.createTarget returned no targetId")

            telemetry = ConsoleTelemetry()
            page = CdpConnection(_page_ws_url(config.cdp_port, target_id), timeout=config.http_timeout)
            session = BrowserSession(page, target_id, telemetry=telemetry)
            session.enable_domains("Page", "Runtime", "Log")
            session.send(
                "Emulation.setDeviceMetricsOverride",
                {"width": int(viewport["width"]), "height": int(viewport["height"]), "deviceScaleFactor": 1, "mobile": False},
            )
        except (DriverError, RuntimeError) as exc:
            raise InfrastructureError(f"Failed to open browser session: {exc}") from exc

        info = {
            "name": str(version.get("Browser") or "chromium").split("/", 1)[0],
            "version": str(version.get("Browser") or "").split("/", 1)[-1],
            "userAgent": str(version.get("User-Agent") or ""),
        }
        logger.info("browser session opened: target=%s viewport=%sx%s", target_id, viewport["width"], viewport["height"])
        yield CdpDriver(
            session,
            telemetry,
            default_timeout_ms=config.navigation_timeout,
            slow_mo_ms=config.slow_mo,
            browser_info=info,
        )
    finally:
        if session is not None:
            session.close()
        if browser is not None:
            # Teardown failures are logged, not raised.
            if target_id:
                with contextlib.suppress(DriverError):
                    browser.send("Target.closeTarget", {"targetId": target_id})
            if context_id:
                try:
                    browser.send("Target.disposeBrowserContext", {"browserContextId": context_id})
                except DriverError as exc:
                    logger.warning("failed to dispose browser context %s: %s", context_id, exc)
            browser.close()
        launcher.stop()


__all__ = ["CdpDriver", "open_session", "url_matches"]
