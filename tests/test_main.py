from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path

import pytest

from qa_flows.runner import main as cli


@pytest.fixture()
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in ("QA_PROJECT_ROOT", "QA_BASE_URL", "QA_FAIL_FAST", "QA_MONITOR_CONSOLE", "QA_HEADLESS"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "qa.config.json").write_text(json.dumps({"baseUrl": "https://app.test"}), encoding="utf-8")
    flows = tmp_path / ".qaflows" / "flows"
    flows.mkdir(parents=True)
    (flows / "login.json").write_text(json.dumps({"name": "Login", "steps": [{"name": "Open", "url": "/login"}]}), encoding="utf-8")
    (flows / "checkout.json").write_text(
        json.dumps({"name": "Checkout", "dependencies": ["login"], "steps": [{"name": "Pay"}]}), encoding="utf-8"
    )
    return tmp_path


def _install_fake_session(monkeypatch: pytest.MonkeyPatch, fake_driver) -> None:
    @contextmanager
    def _open(viewport, config):
        yield fake_driver

    monkeypatch.setattr(cli, "open_session", _open)


def test_primitives_lists_action_types(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--project-root", str(project), "primitives"]) == 0

    kinds = [item["type"] for item in json.loads(capsys.readouterr().out)]
    assert "goto" in kinds and "waitForURL" in kinds


def test_graph_and_validate(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--project-root", str(project), "graph", "checkout"]) == 0
    assert json.loads(capsys.readouterr().out) == {"order": ["login", "checkout"]}

    assert cli.main(["--project-root", str(project), "validate"]) == 0
    assert json.loads(capsys.readouterr().out)["checkout"]["valid"] is True


def test_validate_reports_a_cycle(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    flows = project / ".qaflows" / "flows"
    (flows / "login.json").write_text(json.dumps({"name": "Login", "dependencies": ["checkout"]}), encoding="utf-8")

    assert cli.main(["--project-root", str(project), "validate", "login"]) == 1
    assert json.loads(capsys.readouterr().out)["login"]["circularPaths"] == [["login", "checkout", "login"]]


def test_run_persists_reports(project: Path, monkeypatch: pytest.MonkeyPatch, fake_driver, capsys) -> None:
    _install_fake_session(monkeypatch, fake_driver)

    code = cli.main(["--project-root", str(project), "run", "checkout", "--json", "--var", "coupon=SAVE10"])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["flowId"] == "checkout"
    assert report["passed"] == 1
    assert len(list((project / ".qaflows" / "reports").glob("flow-*.json"))) == 2

    assert cli.main(["--project-root", str(project), "reports", "--flow", "login"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert [item["flowId"] for item in listed] == ["login"]


def test_run_unknown_flow_exits_with_error_payload(project: Path, monkeypatch: pytest.MonkeyPatch, fake_driver, capsys) -> None:
    _install_fake_session(monkeypatch, fake_driver)

    assert cli.main(["--project-root", str(project), "run", "nope"]) == 2

    payload = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert payload["kind"] == "ValidationError"
    assert payload["message"] == "Flow nope not found"


def test_vars_preview(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--project-root", str(project), "vars", "${baseUrl}/x ${nope}"]) == 0

    preview = json.loads(capsys.readouterr().out)
    assert preview["interpolated"] == "https://app.test/x ${nope}"
    assert preview["variables"] == ["baseUrl", "nope"]


def test_bad_var_argument(project: Path) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--project-root", str(project), "run", "login", "--var", "novalue"])


def test_invalid_flow_id_is_a_validation_error(project: Path, monkeypatch: pytest.MonkeyPatch, fake_driver, capsys) -> None:
    _install_fake_session(monkeypatch, fake_driver)

    assert cli.main(["--project-root", str(project), "run", "../outside"]) == 2

    payload = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert payload["kind"] == "ValidationError"
    assert payload["message"] == "Invalid flow id '../outside'"


def test_invalid_report_id_is_a_validation_error(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--project-root", str(project), "reports", "--delete", "../x"]) == 2

    assert json.loads(capsys.readouterr().err.strip().splitlines()[-1])["kind"] == "ValidationError"


def test_vars_preview_resolves_the_password_without_echoing_it(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = {"baseUrl": "https://app.test", "auth": {"credentials": {"email": "qa@app.test", "password": "hunter22"}}}
    (project / "qa.config.json").write_text(json.dumps(config), encoding="utf-8")

    assert cli.main(["--project-root", str(project), "vars", "${credentials.email}:${credentials.password}"]) == 0

    out = capsys.readouterr().out
    assert json.loads(out)["interpolated"] == "qa@app.test:<redacted>"
    assert "hunter22" not in out
