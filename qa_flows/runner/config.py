from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .engine.errors import ConfigurationError
from .engine.policy import coerce_boolish

CONFIG_CANDIDATES = ("qa.config.json", ".qaflows/config.json")

DEFAULT_VIEWPORTS: dict[str, dict[str, int]] = {
    "desktop": {"width": 1920, "height": 1080},
    "mobile": {"width": 375, "height": 667},
    "tablet": {"width": 768, "height": 1024},
}

DEFAULT_BINARY_CANDIDATES: list[str] = [
    # Prefer Chromium; snap builds ignore --user-data-dir, so they go last.
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/opt/chromium/chromium",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "C:\\Program Files\\Chromium\\Application\\chrome.exe",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    "/snap/bin/chromium",
]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_bool(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    value, ok = coerce_boolish(raw)
    if not ok:
        raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")
    return value


def _opt_bool(raw: dict[str, Any], key: str, default: bool) -> bool:
    value, ok = coerce_boolish(raw.get(key))
    if not ok:
        raise ConfigurationError(f"config field {key!r} must be a boolean, got {raw.get(key)!r}")
    return default if value is None else value


def _opt_int(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigurationError(f"config field {key!r} must be a number")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"config field {key!r} must be a number, got {value!r}") from exc


@dataclass
class RunnerConfig:
    project_root: Path
    test_dir: Path
    screenshots_dir: Path
    reports_dir: Path
    actions_dir: Path
    flows_dir: Path
    base_url: str = ""
    email: str = ""
    password: str = ""
    viewports: dict[str, dict[str, int]] = field(default_factory=lambda: {k: dict(v) for k, v in DEFAULT_VIEWPORTS.items()})
    headless: bool = True
    slow_mo: int = 0
    navigation_timeout: int = 30000
    assertion_timeout: int = 5000
    fail_fast: bool = False
    monitor_console: bool = True
    max_dependency_depth: int = 5
    binary_path: str = "google-chrome"
    profile_path: str = ""
    cdp_port: int = 9222
    mode: str = "launch"
    extra_flags: list[str] = field(default_factory=list)
    http_timeout: float = 5.0
    source: str | None = None

    @staticmethod
    def normalize_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"attach", "connect", "external"}:
            return "attach"
        return "launch"

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("QA_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return "google-chrome"

    @classmethod
    def load(cls, project_root: str | Path | None = None) -> RunnerConfig:
        """Read `qa.config.json` (or `.qaflows/config.json`) and apply `QA_*` overrides.

        A project without a config file runs on defaults.
        """
        root = Path(project_root or os.environ.get("QA_PROJECT_ROOT") or os.getcwd()).expanduser().resolve()
        raw: dict[str, Any] = {}
        source: str | None = None
        for name in CONFIG_CANDIDATES:
            path = root / name
            if path.is_file():
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except json.JSONDecodeError as exc:
                    raise ConfigurationError(f"Malformed JSON in {path}: {exc}") from exc
                if not isinstance(data, dict):
                    raise ConfigurationError(f"Expected a JSON object in {path}")
                raw, source = data, str(path)
                break
        return cls.from_dict(raw, project_root=root, source=source)

    @classmethod
    def from_dict(cls, raw: dict[str, Any], *, project_root: Path, source: str | None = None) -> RunnerConfig:
        def _dir(key: str, default: Path) -> Path:
            value = raw.get(key)
            path = Path(expand_path(value)) if isinstance(value, str) and value.strip() else default
            return path if path.is_absolute() else project_root / path

        test_dir = _dir("testDir", Path(".qaflows"))

        auth = raw.get("auth") if isinstance(raw.get("auth"), dict) else {}
        creds = auth.get("credentials") if isinstance(auth.get("credentials"), dict) else {}

        viewports = {k: dict(v) for k, v in DEFAULT_VIEWPORTS.items()}
        user_viewports = raw.get("viewports")
        if isinstance(user_viewports, dict):
            for name, vp in user_viewports.items():
                if not isinstance(vp, dict) or "width" not in vp or "height" not in vp:
                    raise ConfigurationError(f"viewport {name!r} needs width and height")
                viewports[str(name)] = {"width": int(vp["width"]), "height": int(vp["height"])}

        browser = raw.get("browser") if isinstance(raw.get("browser"), dict) else {}
        cdp = raw.get("cdp") if isinstance(raw.get("cdp"), dict) else {}
        flags = cdp.get("flags")

        config = cls(
            project_root=project_root,
            test_dir=test_dir,
            screenshots_dir=_dir("screenshotsDir", test_dir / "screenshots"),
            reports_dir=_dir("reportsDir", test_dir / "reports"),
            actions_dir=_dir("actionsDir", test_dir / "actions"),
            flows_dir=_dir("flowsDir", test_dir / "flows"),
            base_url=str(raw.get("baseUrl") or ""),
            email=str(creds.get("email") or ""),
            password=str(creds.get("password") or ""),
            viewports=viewports,
            headless=_opt_bool(browser, "headless", True),
            slow_mo=_opt_int(browser, "slowMo", 0),
            navigation_timeout=_opt_int(browser, "timeout", 30000),
            assertion_timeout=_opt_int(raw, "assertionTimeout", 5000),
            fail_fast=_opt_bool(raw, "failFast", False),
            monitor_console=_opt_bool(raw, "monitorConsole", True),
            max_dependency_depth=_opt_int(raw, "maxDependencyDepth", 5),
            binary_path=expand_path(cdp["binary"]) if isinstance(cdp.get("binary"), str) else cls.detect_binary(),
            profile_path=expand_path(cdp["profile"]) if isinstance(cdp.get("profile"), str) else "",
            cdp_port=_opt_int(cdp, "port", 9222),
            mode=cls.normalize_mode(cdp.get("mode")),
            extra_flags=[str(f) for f in flags if str(f).strip()] if isinstance(flags, list) else [],
            source=source,
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        base_url = os.environ.get("QA_BASE_URL")
        if base_url:
            self.base_url = base_url
        headless = _env_bool("QA_HEADLESS")
        if headless is not None:
            self.headless = headless
        fail_fast = _env_bool("QA_FAIL_FAST")
        if fail_fast is not None:
            self.fail_fast = fail_fast
        monitor = _env_bool("QA_MONITOR_CONSOLE")
        if monitor is not None:
            self.monitor_console = monitor
        binary = os.environ.get("QA_BROWSER_BINARY")
        if binary:
            self.binary_path = expand_path(binary)
        port = os.environ.get("QA_CDP_PORT")
        if port:
            try:
                self.cdp_port = int(port)
            except ValueError as exc:
                raise ConfigurationError(f"QA_CDP_PORT must be an integer, got {port!r}") from exc
        mode = os.environ.get("QA_BROWSER_MODE")
        if mode:
            self.mode = self.normalize_mode(mode)
        flags_raw = os.environ.get("QA_BROWSER_FLAGS", "")
        if flags_raw:
            self.extra_flags = [flag for flag in flags_raw.split(",") if flag.strip()]

    def viewport(self, device: str) -> dict[str, int]:
        vp = self.viewports.get(device)
        if vp is None:
            raise ConfigurationError(
                f"Unknown device {device!r}",
                details={"device": device, "known": sorted(self.viewports)},
            )
        return dict(vp)

    def ensure_directories(self) -> None:
        for path in (self.test_dir, self.screenshots_dir, self.reports_dir, self.actions_dir, self.flows_dir):
            path.mkdir(parents=True, exist_ok=True)

    @property
    def secrets(self) -> list[str]:
        return [s for s in (self.password,) if s]
