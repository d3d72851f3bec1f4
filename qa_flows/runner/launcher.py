from __future__ import annotations

import contextlib
import logging
import shutil
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import Any

from .config import RunnerConfig, expand_path
from .http_client import HttpClientError, cdp_endpoint, get_json

logger = logging.getLogger("qa_flows.runner.launcher")


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str


class BrowserLauncher:
    """Owns (launch mode) or locates (attach mode) the Chromium behind the CDP port."""

    def __init__(self, config: RunnerConfig) -> None:
        self.config = config
        self.process: subprocess.Popen | None = None
        self._temp_profile: str | None = None

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            get_json(cdp_endpoint(self.config.cdp_port, "json/version"), timeout=timeout)
        except HttpClientError:
            return False
        return True

    def _profile_dir(self) -> str:
        if self.config.profile_path:
            return expand_path(self.config.profile_path)
        if self._temp_profile is None:
            self._temp_profile = tempfile.mkdtemp(prefix="qa-flows-profile-")
        return self._temp_profile

    def _build_common_flags(self) -> list[str]:
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={self._profile_dir()}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-dev-shm-usage",
        ]
        if self.config.headless:
            flags.append("--headless=new")
        return flags

    def build_launch_command(self, extra: list[str] | None = None) -> list[str]:
        flags = self._build_common_flags() + self.config.extra_flags
        if extra:
            flags.extend(extra)
        return [self.config.binary_path, *flags]

    def ensure_running(self, timeout: float = 10.0) -> LaunchResult:
        if self.config.mode == "attach":
            if self.cdp_ready():
                return LaunchResult([], False, "Attached to existing Chrome on CDP port")
            return LaunchResult(
                [],
                False,
                f"Attach mode: no Chrome listening on CDP port {self.config.cdp_port} "
                "(start Chrome with --remote-debugging-port)",
            )

        # Each launch owns its browser on a fresh port; a listening Chrome is never reused.
        self.config.cdp_port = self.find_free_port()

        cmd = self.build_launch_command()
        try:
            self.process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc))

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.process.poll() is not None:
                return LaunchResult(cmd, False, f"Chrome exited with code {self.process.returncode}")
            if self.cdp_ready():
                logger.info("Chrome launched on CDP port %s", self.config.cdp_port)
                return LaunchResult(cmd, True, "Chrome launched")
            time.sleep(0.1)
        return LaunchResult(cmd, False, "Chrome launch timed out")

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Best-effort stop of the launcher-owned Chrome process."""
        proc = self.process
        if proc is None:
            return False
        if proc.poll() is None:
            with contextlib.suppress(OSError):
                proc.terminate()
            try:
                proc.wait(timeout=max(0.1, float(timeout)))
            except subprocess.TimeoutExpired:
                with contextlib.suppress(OSError):
                    proc.kill()
        self.process = None
        if self._temp_profile is not None:
            shutil.rmtree(self._temp_profile, ignore_errors=True)
            self._temp_profile = None
        return True

    def cdp_version(self, timeout: float = 0.8) -> dict[str, Any]:
        try:
            payload = get_json(cdp_endpoint(self.config.cdp_port, "json/version"), timeout=timeout)
        except HttpClientError as exc:
            raise RuntimeError(f"CDP not reachable on port {self.config.cdp_port}: {exc}") from exc
        return payload if isinstance(payload, dict) else {}

    def browser_ws_url(self) -> str:
        url = self.cdp_version().get("webSocketDebuggerUrl")
        if not isinstance(url, str) or not url:
            raise RuntimeError("CDP /json/version did not report a browser websocket URL")
        return url

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]
