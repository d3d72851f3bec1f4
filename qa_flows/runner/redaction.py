"""Redaction helpers for log lines.

Action descriptors carry typed text, passwords and headers; URLs may carry tokens.
Everything the runner logs about an action or a navigation goes through here
first. Stored reports are not redacted.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_KEYS = {
    "secret",
    "password",
    "pass",
    "pwd",
    "token",
    "auth",
    "authorization",
    "cookie",
    "set-cookie",
    "api-key",
    "api_key",
    "apikey",
    "x-api-key",
    "x-auth-token",
    "access_token",
    "refresh_token",
    "session",
}

_SENSITIVE_PARTS = ("password", "secret", "token", "apikey", "api_key", "api-key")

# Placeholders are not secrets; keep them readable.
_PLACEHOLDER_RE = re.compile(r"\$\{[^}]+\}")

# Action kinds whose free-text fields are user input.
_TEXT_FIELDS = {
    "type": {"text"},
    "fill": {"value"},
    "setContent": {"html"},
}


def is_sensitive_key(key: str) -> bool:
    lk = (key or "").strip().lower()
    if not lk:
        return False
    if lk in _SENSITIVE_KEYS:
        return True
    return any(part in lk for part in _SENSITIVE_PARTS)


def _is_placeholder(value: Any) -> bool:
    return isinstance(value, str) and _PLACEHOLDER_RE.fullmatch(value.strip()) is not None


def redacted_summary(value: Any) -> str:
    if value is None:
        return "<redacted>"
    if isinstance(value, (bytes, bytearray)):
        return f"<redacted bytes len={len(value)}>"
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    if isinstance(value, (list, tuple, set)):
        return f"<redacted list len={len(value)}>"
    if isinstance(value, dict):
        return f"<redacted dict keys={len(value)}>"
    return "<redacted>"


def _redact_pairs(raw: str) -> str | None:
    pairs = parse_qsl(raw, keep_blank_values=True)
    out: list[tuple[str, str]] = []
    changed = False
    for k, v in pairs:
        if is_sensitive_key(k) and v and not _is_placeholder(v):
            out.append((k, "<redacted>"))
            changed = True
        else:
            out.append((k, v))
    return urlencode(out, doseq=True) if changed else None


def redact_url(url: str) -> str:
    """Redact sensitive query/fragment parameters and drop `user:pass@` userinfo.

    Returns the input unchanged when there is nothing to redact.
    """
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    netloc, query, fragment = parts.netloc, parts.query, parts.fragment
    changed = False
    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True
    if query:
        new_query = _redact_pairs(query)
        if new_query is not None:
            query = new_query
            changed = True
    if fragment and "=" in fragment:
        new_fragment = _redact_pairs(fragment)
        if new_fragment is not None:
            fragment = new_fragment
            changed = True

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, parts.path, query, fragment))


def redact_url_brief(url: str) -> str:
    """Scheme, host and path only."""
    if not isinstance(url, str) or not url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc.split("@", 1)[1] if "@" in parts.netloc else parts.netloc
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def redact_headers(headers: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in (headers or {}).items():
        lk = str(k).lower()
        if is_sensitive_key(lk) or lk.startswith("authorization") or lk.startswith("cookie"):
            out[k] = redacted_summary(v)
        else:
            out[k] = v
    return out


def _redact_any(value: Any, *, kind: str, key: str | None) -> Any:
    if isinstance(value, dict):
        if (key or "").lower() == "headers":
            return redact_headers(value)
        return {k: _redact_any(v, kind=kind, key=str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_any(v, kind=kind, key=key) for v in value]

    lk = (key or "").lower()
    if isinstance(value, str) and lk == "url":
        return redact_url(value)
    if lk in _TEXT_FIELDS.get(kind, set()) and not _is_placeholder(value):
        return redacted_summary(value)
    if is_sensitive_key(lk):
        return redacted_summary(value)
    return value


def redact_action(descriptor: dict[str, Any]) -> dict[str, Any]:
    """Copy of an action descriptor that is safe to log."""
    if not isinstance(descriptor, dict):
        return {}
    kind = str(descriptor.get("type") or "")
    return _redact_any(descriptor, kind=kind, key=None)


def redact_known_values(text: str, secrets: Iterable[str]) -> str:
    """Replace literal occurrences of configured secrets (e.g. the stored password)."""
    if not isinstance(text, str) or not text:
        return text
    for secret in secrets:
        if isinstance(secret, str) and len(secret) >= 4:
            text = text.replace(secret, "<redacted>")
    return text


__all__ = [
    "is_sensitive_key",
    "redact_action",
    "redact_headers",
    "redact_known_values",
    "redact_url",
    "redact_url_brief",
    "redacted_summary",
]
