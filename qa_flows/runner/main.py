"""
Command line entry point: `python -m qa_flows.runner.main <command>`.

Commands:
- run <flow>        run a flow (dependencies first) and persist its report
- validate [flow]   check dependency declarations
- graph [flow]      print the execution order
- reports           list, delete or prune stored reports
- primitives        list supported action types
- vars [text]       list interpolation variables or preview a template
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from .config import RunnerConfig
from .driver import open_session
from .engine.actions import describe_action, supported_action_types
from .engine.dependencies import DependencyValidator, format_circular_paths
from .engine.errors import FlowRunnerError, ValidationError
from .engine.events import EventChannel, RunEvent
from .engine.interpolation import InterpolationContext, available_variables, preview_interpolation
from .engine.orchestrator import FlowRunner
from .engine.policy import RunOptions
from .engine.store import FileDefinitionStore, ReportStore
from .redaction import redact_known_values

logger = logging.getLogger("qa_flows.runner")


def _print_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"--var expects NAME=VALUE, got {pair!r}")
        out[key.strip()] = value
    return out


def _log_event(event: RunEvent) -> None:
    data = event.data
    if event.type == "start":
        logger.info("▶ %s (%s steps, %s)", data.get("flowName"), data.get("totalSteps"), data.get("device"))
    elif event.type == "step_complete":
        result = data.get("result") or {}
        mark = "✓" if result.get("passed") else "✗"
        logger.info("  %s %s. %s (%sms)", mark, data.get("stepNumber"), data.get("stepName"), result.get("duration"))
    elif event.type == "step_error":
        logger.error("  ✗ %s. %s: %s", data.get("stepNumber"), data.get("stepName"), data.get("error"))
    elif event.type == "early_stop":
        logger.error("  stopping: %s", data.get("reason"))


def _stores(config: RunnerConfig) -> tuple[FileDefinitionStore, ReportStore]:
    return (
        FileDefinitionStore(config.flows_dir, config.actions_dir),
        ReportStore(config.reports_dir, config.screenshots_dir),
    )


def cmd_run(args: argparse.Namespace, config: RunnerConfig) -> int:
    if args.headed:
        config.headless = False
    config.ensure_directories()
    definitions, reports = _stores(config)
    options = RunOptions(
        fail_fast=args.fail_fast,
        monitor_console=args.monitor_console,
        variables=_parse_vars(args.var),
        seed=args.seed,
    )
    events = EventChannel()
    events.subscribe_callback(_log_event)
    runner = FlowRunner(config, definitions, reports, driver_factory=open_session, events=events, options=options)
    try:
        report = runner.run_flow(args.flow, args.device)
    finally:
        events.close()
    if args.json:
        _print_json(report.to_dict())
    else:
        logger.info(
            "%s: %d/%d passed%s",
            report.flow,
            report.passed,
            report.total_steps,
            f" (stopped early: {report.stop_reason})" if report.stopped_early else "",
        )
    return 0 if report.ok else 1


def cmd_validate(args: argparse.Namespace, config: RunnerConfig) -> int:
    definitions, _ = _stores(config)
    validator = DependencyValidator(max_depth=config.max_dependency_depth)
    all_items = definitions.dependency_map("flow")
    ids = [args.flow] if args.flow else list(all_items)
    results: dict[str, Any] = {}
    ok = True
    for flow_id in ids:
        validation = validator.validate(flow_id, all_items.get(flow_id, []), all_items, "flow")
        results[flow_id] = validation.to_dict()
        ok = ok and validation.valid
        if validation.circular_paths:
            logger.error("%s: %s", flow_id, format_circular_paths(validation.circular_paths))
    _print_json(results)
    return 0 if ok else 1


def cmd_graph(args: argparse.Namespace, config: RunnerConfig) -> int:
    definitions, reports = _stores(config)
    if args.flow:
        runner = FlowRunner(config, definitions, reports, driver_factory=open_session)
        order = runner.execution_plan(args.flow)
    else:
        validator = DependencyValidator(max_depth=config.max_dependency_depth)
        order = validator.get_execution_order(validator.build_graph(definitions.dependency_map("flow")))
    _print_json({"order": order})
    return 0


def cmd_reports(args: argparse.Namespace, config: RunnerConfig) -> int:
    _, reports = _stores(config)
    if args.delete:
        try:
            deleted = reports.delete(args.delete)
        except ValueError as exc:
            raise ValidationError(f"Invalid report id {args.delete!r}", errors=[str(exc)]) from exc
        _print_json({"deleted": deleted, "id": args.delete})
        return 0 if deleted else 1
    if args.clear:
        removed = reports.clear_old(args.clear, keep=args.keep)
        _print_json({"removed": removed, "flowId": args.clear, "kept": args.keep})
        return 0
    _print_json([rf.to_dict() for rf in reports.list(args.flow)])
    return 0


def cmd_primitives(args: argparse.Namespace, config: RunnerConfig) -> int:
    _print_json([describe_action(kind) for kind in supported_action_types()])
    return 0


def cmd_vars(args: argparse.Namespace, config: RunnerConfig) -> int:
    if not args.text:
        _print_json(available_variables())
        return 0
    context = InterpolationContext(base_url=config.base_url, email=config.email, password=config.password, seed=args.seed)
    preview = preview_interpolation(args.text, context)
    # The password resolves but is never echoed.
    preview["interpolated"] = redact_known_values(preview["interpolated"], config.secrets)
    _print_json(preview)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qa-flows", description="Run declarative browser test flows.")
    parser.add_argument("--project-root", help="directory holding qa.config.json (default: cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run a flow and its dependencies")
    run.add_argument("flow")
    run.add_argument("--device", default="desktop")
    run.add_argument("--fail-fast", dest="fail_fast", action="store_true", default=None)
    run.add_argument("--no-fail-fast", dest="fail_fast", action="store_false")
    run.add_argument("--no-monitor-console", dest="monitor_console", action="store_false", default=None)
    run.add_argument("--var", action="append", default=[], metavar="NAME=VALUE")
    run.add_argument("--seed", type=int)
    run.add_argument("--headed", action="store_true")
    run.add_argument("--json", action="store_true", help="print the report as JSON")
    run.set_defaults(handler=cmd_run)

    validate = sub.add_parser("validate", help="validate dependencies")
    validate.add_argument("flow", nargs="?")
    validate.set_defaults(handler=cmd_validate)

    graph = sub.add_parser("graph", help="print execution order")
    graph.add_argument("flow", nargs="?")
    graph.set_defaults(handler=cmd_graph)

    reports = sub.add_parser("reports", help="list or delete reports")
    reports.add_argument("--flow")
    reports.add_argument("--delete", metavar="REPORT_ID")
    reports.add_argument("--clear", metavar="FLOW_ID", help="delete all but the newest --keep reports")
    reports.add_argument("--keep", type=int, default=1)
    reports.set_defaults(handler=cmd_reports)

    primitives = sub.add_parser("primitives", help="list supported action types")
    primitives.set_defaults(handler=cmd_primitives)

    variables = sub.add_parser("vars", help="list variables or preview interpolation")
    variables.add_argument("text", nargs="?")
    variables.add_argument("--seed", type=int)
    variables.set_defaults(handler=cmd_vars)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        config = RunnerConfig.load(args.project_root)
        return args.handler(args, config)
    except FlowRunnerError as exc:
        logger.error("%s", exc.message)
        sys.stderr.write(json.dumps(exc.to_dict(), ensure_ascii=False) + "\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
