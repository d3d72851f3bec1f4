"""Console telemetry collected from CDP events (no page injection).

Buffers are bounded; the driver drains them at step boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .engine.types import ConsoleMessage, count_errors, now_iso
from .redaction import redact_url_brief

_LEVELS = {"log", "info", "warn", "error", "debug"}


def _str(x: Any, *, max_len: int = 500) -> str:
    s = str(x)
    if len(s) <= max_len:
        return s
    return s[:max_len] + f"… <truncated len={len(s)}>"


def _remote_obj_to_str(obj: Any) -> str:
    """Short string for a CDP RemoteObject."""
    if not isinstance(obj, dict):
        return _str(obj)
    for k in ("value", "unserializableValue", "description"):
        if obj.get(k) is not None:
            return _str(obj.get(k))
    typ = obj.get("type")
    subtype = obj.get("subtype")
    return _str(f"<{typ}{('/' + subtype) if subtype else ''}>")


def _location(params: dict[str, Any]) -> str | None:
    url = params.get("url")
    line = params.get("lineNumber")
    frames = (params.get("stackTrace") or {}).get("callFrames") if isinstance(params.get("stackTrace"), dict) else None
    if (not isinstance(url, str) or not url) and isinstance(frames, list) and frames and isinstance(frames[0], dict):
        url = frames[0].get("url")
        line = frames[0].get("lineNumber")
    if not isinstance(url, str) or not url:
        return None
    loc = redact_url_brief(url)
    return f"{loc}:{line}" if isinstance(line, int) else loc


def _normalize_level(raw: Any) -> str:
    level = raw if isinstance(raw, str) else "log"
    if level == "warning":
        level = "warn"
    elif level in {"verbose", "trace", "dir", "table"}:
        level = "debug"
    elif level == "assert":
        level = "error"
    return level if level in _LEVELS else "log"


@dataclass(slots=True)
class ConsoleTelemetry:
    """Bounded console/exception/dialog buffers for one page target."""

    max_events: int = 500
    max_dialogs: int = 50

    console: list[ConsoleMessage] = field(default_factory=list)
    dialogs: list[dict[str, Any]] = field(default_factory=list)
    dropped: int = 0

    dialog_open: bool = False
    dialog_last: dict[str, Any] | None = None

    def _push(self, message: ConsoleMessage) -> None:
        self.console.append(message)
        if len(self.console) > self.max_events:
            over = len(self.console) - self.max_events
            del self.console[:over]
            self.dropped += over

    def _push_dialog(self, record: dict[str, Any]) -> None:
        self.dialogs.append(record)
        if len(self.dialogs) > self.max_dialogs:
            del self.dialogs[: len(self.dialogs) - self.max_dialogs]

    def ingest(self, event: dict[str, Any]) -> None:
        """Ingest a raw CDP event dict."""
        if not isinstance(event, dict):
            return
        method = event.get("method")
        params = event.get("params") if isinstance(event.get("params"), dict) else {}

        if method == "Runtime.consoleAPICalled":
            args = params.get("args")
            text = " ".join(_remote_obj_to_str(a) for a in args[:8]) if isinstance(args, list) else ""
            self._push(ConsoleMessage(type=_normalize_level(params.get("type")), text=text, location=_location(params)))
            return

        if method == "Runtime.exceptionThrown":
            details = params.get("exceptionDetails") if isinstance(params.get("exceptionDetails"), dict) else {}
            msg = details.get("text") or "Uncaught exception"
            exception = details.get("exception")
            if isinstance(exception, dict):
                msg = exception.get("description") or exception.get("value") or msg
            # Uncaught page errors are kept apart from console.error and not counted as errors.
            self._push(ConsoleMessage(type="pageerror", text=_str(msg, max_len=1200), location=_location(details)))
            return

        if method == "Log.entryAdded":
            entry = params.get("entry") if isinstance(params.get("entry"), dict) else {}
            # console-API entries are already reported via Runtime.consoleAPICalled.
            if entry.get("source") == "console-api":
                return
            level = _normalize_level(entry.get("level"))
            self._push(ConsoleMessage(type=level, text=_str(entry.get("text") or ""), location=_location(entry)))
            return

        if method == "Page.javascriptDialogOpening":
            record: dict[str, Any] = {"timestamp": now_iso(), "event": "open"}
            if isinstance(params.get("type"), str):
                record["type"] = params["type"]
            if isinstance(params.get("message"), str) and params["message"]:
                record["message"] = _str(params["message"], max_len=800)
            self.dialog_open = True
            self.dialog_last = record
            self._push_dialog(record)
            return

        if method == "Page.javascriptDialogClosed":
            self.dialog_open = False
            record = {"timestamp": now_iso(), "event": "closed"}
            if isinstance(params.get("result"), bool):
                record["accepted"] = params["result"]
            self._push_dialog(record)
            return

    def drain(self) -> list[ConsoleMessage]:
        """Return and clear buffered console messages."""
        out = list(self.console)
        self.console.clear()
        return out


__all__ = ["ConsoleTelemetry", "count_errors"]
