"""Per-run artifact directory for step screenshots."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError

from .types import now_iso

logger = logging.getLogger("qa_flows.runner.artifacts")

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", (text or "").lower()).strip("-")


def run_dir_name(run_id: str) -> str:
    return f"run-{run_id}"


@dataclass(frozen=True)
class ScreenshotRef:
    path: str
    bytes: int
    width: int | None = None
    height: int | None = None


class RunArtifacts:
    """Artifacts for one run live under `<screenshots_root>/run-<run_id>/`.

    Returned paths are relative to the screenshots root so reports stay portable.
    """

    def __init__(self, screenshots_root: Path, run_id: str) -> None:
        self.root = Path(screenshots_root)
        self.run_id = run_id
        self.dir_name = run_dir_name(run_id)
        self.directory = self.root / self.dir_name
        self.directory.mkdir(parents=True, exist_ok=True)

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def screenshot_name(self, step_number: int, step_name: str) -> str:
        slug = slugify(step_name) or "step"
        return f"{int(step_number)}-{slug}.png"

    def save_screenshot(self, step_number: int, step_name: str, png: bytes) -> ScreenshotRef:
        path = self.directory / self.screenshot_name(step_number, step_name)
        path.write_bytes(png)

        width: int | None = None
        height: int | None = None
        try:
            with Image.open(BytesIO(png)) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("screenshot %s is not a readable image: %s", path.name, exc)

        meta: dict[str, Any] = {
            "step": int(step_number),
            "name": step_name,
            "mimeType": "image/png",
            "bytes": len(png),
            "createdAt": now_iso(),
            **({"width": width, "height": height} if width is not None else {}),
        }
        path.with_suffix(".meta.json").write_text(json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8")
        return ScreenshotRef(path=self._relative(path), bytes=len(png), width=width, height=height)


__all__ = ["RunArtifacts", "ScreenshotRef", "run_dir_name", "slugify"]
