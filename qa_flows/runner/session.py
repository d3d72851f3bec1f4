"""
CDP connection and page session used by the default automation driver.

- CdpConnection: one DevTools websocket, command/response matching, bounded event queue
- BrowserSession: page-level helpers (domains, navigation, JS evaluation, input, screenshots)
"""

from __future__ import annotations

import json
import logging
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import websocket

from .http_client import HttpClientError
from .redaction import redact_url_brief

if TYPE_CHECKING:
    from .telemetry import ConsoleTelemetry

logger = logging.getLogger("qa_flows.runner.session")


class DriverError(HttpClientError):
    """A CDP command failed or timed out."""


def _is_timeout(exc: Exception) -> bool:
    return isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in str(exc).lower()


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws_url: str, timeout: float = 5.0) -> None:
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except (OSError, websocket.WebSocketException) as exc:
            raise DriverError(f"CDP websocket connect failed: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # Events that arrive while waiting for a response are kept for later waits.
        self._event_queue: list[dict[str, Any]] = []
        self._max_event_queue = 2000
        self._event_sink: Callable[[dict[str, Any]], None] | None = None

    def set_event_sink(self, sink: Callable[[dict[str, Any]], None] | None) -> None:
        """Attach a sink called for every received CDP event."""
        self._event_sink = sink

    def _notify(self, event: dict[str, Any]) -> None:
        sink = self._event_sink
        if sink is None:
            return
        try:
            sink(event)
        except Exception:  # noqa: BLE001
            logger.debug("event sink failed for %s", event.get("method"), exc_info=True)

    def _push_event(self, event: dict[str, Any]) -> None:
        self._notify(event)
        self._event_queue.append(event)
        if len(self._event_queue) > self._max_event_queue:
            del self._event_queue[: len(self._event_queue) - self._max_event_queue]

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for i, ev in enumerate(self._event_queue):
            if ev.get("method") == event_name:
                self._event_queue.pop(i)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def clear_events(self, event_name: str | None = None) -> None:
        if event_name is None:
            self._event_queue.clear()
        else:
            self._event_queue = [ev for ev in self._event_queue if ev.get("method") != event_name]

    def _recv(self, remaining: float) -> dict[str, Any] | None:
        """Receive one message; None on a short socket timeout or undecodable frame."""
        try:
            self.ws.settimeout(min(0.5, max(0.0, remaining)))
            raw = self.ws.recv()
        except Exception as exc:  # noqa: BLE001
            if _is_timeout(exc):
                return None
            raise DriverError(str(exc)) from exc
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _is_event(data: dict[str, Any]) -> bool:
        return isinstance(data.get("method"), str) and "id" not in data

    def drain_events(self, *, max_messages: int = 50) -> int:
        """Move already-buffered events into the queue without blocking."""
        drained = 0
        for _ in range(max(0, int(max_messages))):
            try:
                self.ws.settimeout(0.0)
                raw = self.ws.recv()
            except Exception:  # noqa: BLE001
                break
            try:
                data = json.loads(raw)
            except (TypeError, json.JSONDecodeError):
                continue
            if isinstance(data, dict) and self._is_event(data):
                self._push_event(data)
                drained += 1
                continue
            # Unexpected response; stop before consuming more.
            break
        return drained

    def send_nowait(self, method: str, params: dict[str, Any] | None = None) -> int:
        """Send a command without waiting; its response is discarded when it arrives."""
        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise DriverError(f"{method}: {exc}") from exc
        return msg_id

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send a CDP command and wait for its response."""
        msg_id = self.send_nowait(method, params)
        return self._recv_until(msg_id, method, self.timeout if timeout is None else timeout)

    def _recv_until(self, expected_id: int, method: str, timeout: float) -> dict[str, Any]:
        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise DriverError(f"{method}: CDP response timed out")
            data = self._recv(remaining)
            if data is None:
                continue
            if self._is_event(data):
                self._push_event(data)
                continue
            if data.get("id") == expected_id:
                if "error" in data:
                    err = data["error"]
                    message = err.get("message") if isinstance(err, dict) else err
                    raise DriverError(f"{method}: {message}")
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for a specific CDP event; returns its params or None on timeout."""
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued
        deadline = time.time() + timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return None
            data = self._recv(remaining)
            if data is None or not self._is_event(data):
                continue
            if data.get("method") == event_name:
                self._notify(data)
                params = data.get("params")
                return params if isinstance(params, dict) else {}
            self._push_event(data)

    def close(self) -> None:
        # Raw socket shutdown; websocket-client's close handshake can hang on a wedged page.
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(OSError):
                sock.close()


_KEY_CODES = {
    "Enter": 13,
    "Tab": 9,
    "Escape": 27,
    "Backspace": 8,
    "Delete": 46,
    "Space": 32,
    "ArrowUp": 38,
    "ArrowDown": 40,
    "ArrowLeft": 37,
    "ArrowRight": 39,
    "Home": 36,
    "End": 35,
    "PageUp": 33,
    "PageDown": 34,
}

_MODIFIER_BITS = {"Alt": 1, "Control": 2, "Meta": 4, "Shift": 8}


def parse_key_combo(combo: str) -> tuple[str, int]:
    """Split `Control+Shift+A` into the key and the CDP modifier bitmask."""
    parts = [p for p in str(combo).split("+") if p] or [str(combo)]
    modifiers = 0
    for part in parts[:-1]:
        modifiers |= _MODIFIER_BITS.get(part, 0)
    return parts[-1], modifiers


class BrowserSession:
    """
    Page-level operations over one CDP target connection.

    Use as a context manager for automatic cleanup.
    """

    def __init__(
        self,
        connection: CdpConnection,
        target_id: str,
        *,
        telemetry: ConsoleTelemetry | None = None,
        auto_dismiss_dialogs: bool = True,
    ) -> None:
        self.conn = connection
        self.target_id = target_id
        self.telemetry = telemetry
        self.auto_dismiss_dialogs = auto_dismiss_dialogs
        self._enabled: set[str] = set()
        connection.set_event_sink(self._on_event)

    def _on_event(self, event: dict[str, Any]) -> None:
        if self.telemetry is not None:
            self.telemetry.ingest(event)
        if self.auto_dismiss_dialogs and event.get("method") == "Page.javascriptDialogOpening":
            params = event.get("params") if isinstance(event.get("params"), dict) else {}
            # beforeunload is accepted so navigation can proceed; everything else is dismissed.
            accept = params.get("type") == "beforeunload"
            logger.info("auto-%s %s dialog", "accepting" if accept else "dismissing", params.get("type") or "js")
            self.conn.send_nowait("Page.handleJavaScriptDialog", {"accept": accept})

    def __enter__(self) -> BrowserSession:
        self.enable_domains("Page", "Runtime")
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    def enable_domains(self, *domains: str) -> None:
        """Enable CDP domains once per session."""
        for domain in domains:
            if domain in self._enabled:
                continue
            self.conn.send(f"{domain}.enable")
            self._enabled.add(domain)

    def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        return self.conn.send(method, params, timeout=timeout)

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        return self.conn.wait_for_event(event_name, timeout=timeout)

    def drain_events(self) -> int:
        return self.conn.drain_events()

    # Navigation

    def navigate(self, url: str, *, wait_load: bool = True, timeout: float = 30.0) -> dict[str, Any]:
        """Navigate and (optionally) wait for the load event.

        Raises DriverError when the browser reports a navigation error or the load
        event does not arrive in time.
        """
        self.enable_domains("Page")
        self.conn.clear_events("Page.loadEventFired")
        result = self.conn.send("Page.navigate", {"url": url}, timeout=timeout)
        error_text = result.get("errorText")
        if isinstance(error_text, str) and error_text:
            raise DriverError(f"{error_text} at {redact_url_brief(url)}")
        # Same-document navigations have no loaderId and fire no load event.
        if wait_load and result.get("loaderId"):
            if self.conn.wait_for_event("Page.loadEventFired", timeout) is None:
                raise DriverError(f"Timeout {int(timeout * 1000)}ms exceeded waiting for load of {redact_url_brief(url)}")
        return result

    def wait_load(self, timeout: float = 10.0) -> bool:
        return self.conn.wait_for_event("Page.loadEventFired", timeout) is not None

    def reload(self, *, ignore_cache: bool = False, timeout: float = 30.0) -> None:
        self.enable_domains("Page")
        self.conn.clear_events("Page.loadEventFired")
        self.conn.send("Page.reload", {"ignoreCache": ignore_cache})
        if not self.wait_load(timeout):
            raise DriverError(f"Timeout {int(timeout * 1000)}ms exceeded waiting for reload")

    def history_go(self, delta: int, *, timeout: float = 30.0) -> bool:
        """Move through session history; False when there is no such entry."""
        history = self.conn.send("Page.getNavigationHistory")
        entries = history.get("entries") if isinstance(history.get("entries"), list) else []
        index = history.get("currentIndex")
        if not isinstance(index, int):
            return False
        target = index + int(delta)
        if target < 0 or target >= len(entries):
            return False
        entry = entries[target] if isinstance(entries[target], dict) else {}
        self.conn.clear_events("Page.loadEventFired")
        self.conn.send("Page.navigateToHistoryEntry", {"entryId": entry.get("id")})
        self.wait_load(timeout)
        return True

    # JavaScript

    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        """Evaluate JavaScript and return the value (undefined and null become None)."""
        if not self.auto_dismiss_dialogs and self.telemetry is not None and self.telemetry.dialog_open:
            raise DriverError("Blocking JS dialog is open")
        self.enable_domains("Page", "Runtime")
        result = self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout=timeout,
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            raise DriverError(str(exc.get("description") or details.get("text") or "JavaScript evaluation failed"))
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined" or (value.get("type") == "object" and value.get("subtype") == "null"):
            return None
        return value.get("value")

    def get_url(self) -> str:
        return self.eval_js("window.location.href") or ""

    def get_title(self) -> str:
        return self.eval_js("document.title") or ""

    # Mouse input

    def _mouse_event(self, event_type: str, x: float, y: float, button: str = "none", click_count: int = 0) -> None:
        self.conn.send(
            "Input.dispatchMouseEvent",
            {"type": event_type, "x": x, "y": y, "button": button, "clickCount": click_count},
        )

    def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        self._mouse_event("mouseMoved", x, y)
        for n in range(1, click_count + 1):
            self._mouse_event("mousePressed", x, y, button, n)
            self._mouse_event("mouseReleased", x, y, button, n)

    def move_mouse(self, x: float, y: float) -> None:
        self._mouse_event("mouseMoved", x, y)

    def drag(self, from_x: float, from_y: float, to_x: float, to_y: float, steps: int = 10) -> None:
        steps = max(1, int(steps))
        self._mouse_event("mouseMoved", from_x, from_y)
        self._mouse_event("mousePressed", from_x, from_y, "left", 1)
        for i in range(1, steps + 1):
            progress = i / steps
            self.conn.send(
                "Input.dispatchMouseEvent",
                {
                    "type": "mouseMoved",
                    "x": from_x + (to_x - from_x) * progress,
                    "y": from_y + (to_y - from_y) * progress,
                    "button": "left",
                    "buttons": 1,
                },
            )
            time.sleep(0.01)
        self._mouse_event("mouseReleased", to_x, to_y, "left", 1)

    def tap(self, x: float, y: float) -> None:
        points = [{"x": x, "y": y}]
        self.conn.send("Input.dispatchTouchEvent", {"type": "touchStart", "touchPoints": points})
        self.conn.send("Input.dispatchTouchEvent", {"type": "touchEnd", "touchPoints": []})

    # Keyboard input

    def press_key(self, combo: str) -> None:
        """Press a key or a `Modifier+Key` combination."""
        key, modifiers = parse_key_combo(combo)
        key_code = _KEY_CODES.get(key, ord(key[0].upper()) if len(key) == 1 else 0)
        code = f"Key{key.upper()}" if len(key) == 1 and key.isalpha() else key
        base = {"key": key, "code": code, "windowsVirtualKeyCode": key_code, "modifiers": modifiers}
        down = {"type": "keyDown", **base}
        if len(key) == 1 and not modifiers & ~_MODIFIER_BITS["Shift"]:
            down["text"] = key
        elif key == "Enter":
            down["text"] = "\r"
        self.conn.send("Input.dispatchKeyEvent", down)
        self.conn.send("Input.dispatchKeyEvent", {"type": "keyUp", **base})

    def type_text(self, text: str, *, delay_ms: int = 0) -> None:
        """Type text; one insertText command unless a per-character delay is requested."""
        if not text:
            return
        if delay_ms <= 0:
            self.conn.send("Input.insertText", {"text": str(text)})
            return
        for ch in str(text):
            self.conn.send("Input.dispatchKeyEvent", {"type": "char", "text": ch})
            time.sleep(delay_ms / 1000.0)

    # Screenshots

    def screenshot(self, *, full_page: bool = False, fmt: str = "png") -> str:
        """Capture a screenshot; returns base64 data."""
        params: dict[str, Any] = {"format": fmt, "fromSurface": True}
        if full_page:
            params["captureBeyondViewport"] = True
        result = self.conn.send("Page.captureScreenshot", params)
        return str(result.get("data") or "")


__all__ = ["BrowserSession", "CdpConnection", "DriverError", "parse_key_combo"]
