from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import HarnessConfig
from .errors import ScenarioError
from .harness import ERROR, FAILED, ScenarioRunner
from .health import PreflightChecker
from .logging_config import configure_logging
from .scenario import Scenario, ScenarioManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def _load_config(path: Optional[str]) -> HarnessConfig:
    if not path:
        return HarnessConfig()
    config = HarnessConfig.load(path)
    if config is None:
        raise ScenarioError(f"Could not load config: {path}")
    return config


def _resolve_scenario(name: str, config: HarnessConfig, cwd: Optional[str]) -> Scenario:
    scenario = ScenarioManager(config.scenario_dir).get(name)
    if scenario is None:
        raise ScenarioError(f"Unknown scenario: {name}")
    if cwd:
        scenario = scenario.with_cwd(cwd)
    return scenario


def _cmd_run(args: argparse.Namespace, config: HarnessConfig) -> int:
    scenario = _resolve_scenario(args.scenario, config, args.cwd)
    if args.timeout is not None:
        scenario.timeout = args.timeout

    result = ScenarioRunner(config).run(scenario)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"[{result.status.upper()}] {result.scenario} "
              f"({result.steps_run}/{len(scenario.steps)} steps, {result.duration_s:.1f}s)")
        if result.failure:
            if result.failed_step:
                print(f"  Step: {result.failed_step}")
            print(f"  {result.failure}")
            for line in result.transcript[-10:]:
                print(f"  | {line}")

    if result.status == FAILED:
        return EXIT_FAILED
    if result.status == ERROR:
        return EXIT_ERROR
    return EXIT_OK


def _cmd_check(args: argparse.Namespace, config: HarnessConfig) -> int:
    scenario = _resolve_scenario(args.scenario, config, args.cwd)
    report = PreflightChecker(scenario).run_all()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for c in report.checks:
            mark = "ok" if c.healthy else "FAIL"
            print(f"  {mark:4} {c.name}: {c.message}")

    return EXIT_OK if report.healthy else EXIT_FAILED


def _cmd_list(args: argparse.Namespace, config: HarnessConfig) -> int:
    manager = ScenarioManager(config.scenario_dir)
    for name in manager.list_available():
        print(name)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Harness config file (JSON or YAML)")
    common.add_argument("--verbose", action="store_true", help="Enable debug logging")
    common.add_argument("--log-dir", help="Also write rotating log files here")

    ap = argparse.ArgumentParser(
        prog="watchprobe",
        description="Drive a watch-mode build/test process and check its output",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", parents=[common], help="Run a scenario")
    run.add_argument("scenario", help="Preset name, scenario name or scenario file")
    run.add_argument("--cwd", help="Override the scenario working directory")
    run.add_argument("--timeout", type=float, help="Overall timeout in seconds")
    run.add_argument("--json", action="store_true", help="Print the result as JSON")
    run.set_defaults(func=_cmd_run)

    check = sub.add_parser("check", parents=[common], help="Run preflight checks for a scenario")
    check.add_argument("scenario", help="Preset name, scenario name or scenario file")
    check.add_argument("--cwd", help="Override the scenario working directory")
    check.add_argument("--json", action="store_true", help="Print the report as JSON")
    check.set_defaults(func=_cmd_check)

    lst = sub.add_parser("list", parents=[common], help="List available scenarios")
    lst.set_defaults(func=_cmd_list)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = _load_config(args.config)
    except ScenarioError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    level = "DEBUG" if args.verbose else config.log_level
    configure_logging(level=level, log_dir=args.log_dir or config.log_dir)

    try:
        return args.func(args, config)
    except ScenarioError as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
