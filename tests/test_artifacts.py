from __future__ import annotations

import json
from pathlib import Path

from qa_flows.runner.engine.artifacts import RunArtifacts, run_dir_name, slugify


def test_slugify() -> None:
    assert slugify("Open the Login page!") == "open-the-login-page"
    assert slugify("  ") == ""


def test_screenshot_is_written_with_metadata(tmp_path: Path, png: bytes) -> None:
    artifacts = RunArtifacts(tmp_path, "login-1-abcd")

    ref = artifacts.save_screenshot(2, "Submit form", png)

    assert artifacts.dir_name == run_dir_name("login-1-abcd") == "run-login-1-abcd"
    assert ref.path == "run-login-1-abcd/2-submit-form.png"
    assert (tmp_path / ref.path).read_bytes() == png
    meta = json.loads((tmp_path / "run-login-1-abcd" / "2-submit-form.meta.json").read_text(encoding="utf-8"))
    assert (meta["width"], meta["height"]) == (4, 3)
    assert meta["bytes"] == len(png) == ref.bytes


def test_unreadable_image_still_saves(tmp_path: Path) -> None:
    artifacts = RunArtifacts(tmp_path, "r")

    ref = artifacts.save_screenshot(1, "???", b"not a png")

    assert ref.path == "run-r/1-step.png"
    assert ref.width is None
    meta = json.loads((tmp_path / "run-r" / "1-step.meta.json").read_text(encoding="utf-8"))
    assert "width" not in meta
