from __future__ import annotations

import json
import urllib.parse
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def cdp_endpoint(port: int, path: str) -> str:
    return f"http://127.0.0.1:{int(port)}/{path.lstrip('/')}"


def get_json(url: str, *, timeout: float = 2.0, method: str = "GET") -> Any:
    """Fetch a JSON document from the local DevTools HTTP endpoint."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    req = Request(url, headers={"User-Agent": "qa-flows-runner/1.0"}, method=method)
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = resp.read()
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
    try:
        return json.loads(payload.decode(errors="replace"))
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON from {url}") from exc
