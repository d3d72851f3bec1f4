"""
Definition and report persistence.

Flows live in `<flows_dir>/**/<id>.json` (files ending in `.example.json` are
templates and skipped), reusable actions in `<actions_dir>/**/<id>.action.json`.
Ids are the `/`-separated path relative to the directory, without the suffix.
Reports are flat JSON files named `flow-<flow id>-<run suffix>.json`.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .errors import ConfigurationError
from .types import ActionDefinition, FlowDefinition, RunReport, now_iso

logger = logging.getLogger("qa_flows.runner.store")

FLOW_SUFFIX = ".json"
EXAMPLE_SUFFIX = ".example.json"
ACTION_SUFFIX = ".action.json"

_DEFINITION_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_. -]*(?:/[A-Za-z0-9_][A-Za-z0-9_. -]*)*$")
_REPORT_ID_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,255}$")


def safe_flow_id(flow_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "-", flow_id or "flow").strip("-") or "flow"


def _validate_definition_id(item_id: str) -> str:
    if not isinstance(item_id, str) or not _DEFINITION_ID_RE.match(item_id) or ".." in item_id:
        raise ValueError(f"invalid definition id: {item_id!r}")
    return item_id


def _validate_report_id(report_id: str) -> str:
    if not isinstance(report_id, str) or not _REPORT_ID_RE.match(report_id):
        raise ValueError("invalid report id")
    return report_id


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Malformed JSON in {path}: {exc}", details={"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a JSON object in {path}", details={"path": str(path)})
    return data


class DefinitionStore(Protocol):
    def get_flow(self, flow_id: str) -> FlowDefinition | None: ...

    def list_flows(self) -> list[FlowDefinition]: ...

    def get_action(self, action_id: str) -> ActionDefinition | None: ...

    def list_actions(self) -> list[ActionDefinition]: ...

    def dependency_map(self, kind: str = "flow") -> dict[str, list[str]]: ...


class FileDefinitionStore:
    """Read-only view over the flows and actions directories.

    Files are re-read on every call so edits are picked up between runs.
    """

    def __init__(self, flows_dir: Path, actions_dir: Path) -> None:
        self.flows_dir = Path(flows_dir)
        self.actions_dir = Path(actions_dir)

    def _flow_paths(self) -> list[tuple[str, Path]]:
        if not self.flows_dir.is_dir():
            return []
        out: list[tuple[str, Path]] = []
        for path in sorted(self.flows_dir.rglob(f"*{FLOW_SUFFIX}")):
            name = path.name
            if name.endswith(EXAMPLE_SUFFIX) or name.endswith(ACTION_SUFFIX) or not path.is_file():
                continue
            rel = path.relative_to(self.flows_dir).as_posix()
            out.append((rel[: -len(FLOW_SUFFIX)], path))
        return out

    def _action_paths(self) -> list[tuple[str, Path]]:
        if not self.actions_dir.is_dir():
            return []
        out: list[tuple[str, Path]] = []
        for path in sorted(self.actions_dir.rglob(f"*{ACTION_SUFFIX}")):
            if path.is_file():
                rel = path.relative_to(self.actions_dir).as_posix()
                out.append((rel[: -len(ACTION_SUFFIX)], path))
        return out

    def get_flow(self, flow_id: str) -> FlowDefinition | None:
        path = self.flows_dir / f"{_validate_definition_id(flow_id)}{FLOW_SUFFIX}"
        if not path.is_file():
            return None
        return FlowDefinition.from_dict(flow_id, _read_json(path))

    def list_flows(self) -> list[FlowDefinition]:
        return [FlowDefinition.from_dict(fid, _read_json(path)) for fid, path in self._flow_paths()]

    def get_action(self, action_id: str) -> ActionDefinition | None:
        path = self.actions_dir / f"{_validate_definition_id(action_id)}{ACTION_SUFFIX}"
        if not path.is_file():
            return None
        return ActionDefinition.from_dict(action_id, _read_json(path))

    def list_actions(self) -> list[ActionDefinition]:
        return [ActionDefinition.from_dict(aid, _read_json(path)) for aid, path in self._action_paths()]

    def dependency_map(self, kind: str = "flow") -> dict[str, list[str]]:
        items: Iterable[FlowDefinition | ActionDefinition]
        items = self.list_actions() if kind == "action" else self.list_flows()
        return {item.id: list(item.dependencies) for item in items}


class MemoryDefinitionStore:
    """Dict-backed definitions, for embedding the runner and for tests."""

    def __init__(
        self,
        flows: Mapping[str, FlowDefinition | dict[str, Any]] | None = None,
        actions: Mapping[str, ActionDefinition | dict[str, Any]] | None = None,
    ) -> None:
        self._flows: dict[str, FlowDefinition] = {}
        self._actions: dict[str, ActionDefinition] = {}
        for fid, flow in (flows or {}).items():
            self.add_flow(fid, flow)
        for aid, action in (actions or {}).items():
            self.add_action(aid, action)

    def add_flow(self, flow_id: str, flow: FlowDefinition | dict[str, Any]) -> FlowDefinition:
        if isinstance(flow, dict):
            flow = FlowDefinition.from_dict(flow_id, flow)
        self._flows[flow_id] = flow
        return flow

    def add_action(self, action_id: str, action: ActionDefinition | dict[str, Any]) -> ActionDefinition:
        if isinstance(action, dict):
            action = ActionDefinition.from_dict(action_id, action)
        self._actions[action_id] = action
        return action

    def get_flow(self, flow_id: str) -> FlowDefinition | None:
        return self._flows.get(flow_id)

    def list_flows(self) -> list[FlowDefinition]:
        return list(self._flows.values())

    def get_action(self, action_id: str) -> ActionDefinition | None:
        return self._actions.get(action_id)

    def list_actions(self) -> list[ActionDefinition]:
        return list(self._actions.values())

    def dependency_map(self, kind: str = "flow") -> dict[str, list[str]]:
        source = self._actions if kind == "action" else self._flows
        return {item_id: list(item.dependencies) for item_id, item in source.items()}


@dataclass(frozen=True)
class ReportFile:
    id: str
    flow_id: str
    flow_name: str
    path: str
    report: dict[str, Any]
    created_at: str

    @property
    def passed(self) -> bool:
        return int(self.report.get("failed") or 0) == 0 and not self.report.get("stoppedEarly")

    def to_dict(self, *, include_report: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "flowId": self.flow_id,
            "flowName": self.flow_name,
            "path": self.path,
            "createdAt": self.created_at,
            "passed": self.report.get("passed"),
            "failed": self.report.get("failed"),
            "stoppedEarly": bool(self.report.get("stoppedEarly")),
        }
        if include_report:
            out["report"] = self.report
        return out


class ReportStore:
    def __init__(self, reports_dir: Path, screenshots_dir: Path) -> None:
        self.reports_dir = Path(reports_dir)
        self.screenshots_dir = Path(screenshots_dir)

    def _path(self, report_id: str) -> Path:
        return self.reports_dir / f"{_validate_report_id(report_id)}.json"

    def _load(self, path: Path) -> ReportFile | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("skipping unreadable report %s: %s", path.name, exc)
            return None
        if not isinstance(data, dict):
            return None
        return ReportFile(
            id=path.name[: -len(".json")],
            flow_id=str(data.get("flowId") or ""),
            flow_name=str(data.get("flow") or ""),
            path=str(path),
            report=data,
            created_at=str(data.get("timestamp") or now_iso()),
        )

    def save(self, flow_id: str, report: RunReport) -> ReportFile:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        safe = safe_flow_id(flow_id)
        prefix = f"{safe_flow_id(report.flow_id)}-"
        suffix = report.run_id[len(prefix) :] if report.run_id.startswith(prefix) else safe_flow_id(report.run_id)
        report_id = f"flow-{safe}-{suffix}"
        path = self._path(report_id)
        data = report.to_dict()
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("report saved: %s", path)
        return ReportFile(
            id=report_id,
            flow_id=flow_id,
            flow_name=report.flow,
            path=str(path),
            report=data,
            created_at=report.timestamp,
        )

    def list(self, flow_id: str | None = None) -> list[ReportFile]:
        """Reports, newest first; optionally only those of one flow."""
        if not self.reports_dir.is_dir():
            return []
        items: list[tuple[str, float, ReportFile]] = []
        for path in self.reports_dir.glob("*.json"):
            rf = self._load(path)
            if rf is None:
                continue
            if flow_id is not None and rf.flow_id != flow_id:
                continue
            try:
                mtime = path.stat().st_mtime
            except OSError:
                mtime = 0.0
            items.append((rf.created_at, mtime, rf))
        items.sort(key=lambda t: (t[0], t[1]), reverse=True)
        return [rf for _created, _mtime, rf in items]

    def get(self, report_id: str) -> ReportFile | None:
        path = self._path(report_id)
        if not path.is_file():
            return None
        return self._load(path)

    def delete(self, report_id: str) -> bool:
        """Remove a report and its run's screenshot directory."""
        rf = self.get(report_id)
        if rf is None:
            return False
        Path(rf.path).unlink(missing_ok=True)
        shot_dir = rf.report.get("screenshotDir")
        if isinstance(shot_dir, str) and shot_dir:
            self._remove_run_dir(shot_dir)
        return True

    def _remove_run_dir(self, dir_name: str) -> None:
        target = (self.screenshots_dir / dir_name).resolve()
        root = self.screenshots_dir.resolve()
        if root not in target.parents:
            logger.warning("refusing to delete screenshot dir outside %s: %s", root, dir_name)
            return
        if target.is_dir():
            shutil.rmtree(target, ignore_errors=True)

    def clear_old(self, flow_id: str, keep: int = 1) -> int:
        """Delete all but the `keep` newest reports of a flow; returns the count removed."""
        reports = self.list(flow_id)
        stale = reports[max(0, int(keep)) :]
        for rf in stale:
            self.delete(rf.id)
        return len(stale)


__all__ = [
    "ACTION_SUFFIX",
    "DefinitionStore",
    "EXAMPLE_SUFFIX",
    "FLOW_SUFFIX",
    "FileDefinitionStore",
    "MemoryDefinitionStore",
    "ReportFile",
    "ReportStore",
    "safe_flow_id",
]
