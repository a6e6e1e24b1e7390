"""
Scenario runner.

Runs a scenario end to end against a live watch process:
platform guard, fixture cleanup, setup commands, the ordered steps,
and a cleanup that always terminates the process tree.
"""
from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import HarnessConfig
from .errors import (
    ExpectationError,
    LineReaderClosed,
    LineTimeout,
    ProcessStartError,
    ScenarioError,
    SetupError,
    TerminationError,
)
from .logging_config import log_event
from .process import WatchProcess
from .scenario import Scenario
from .steps import StepContext

logger = logging.getLogger(__name__)

PASSED = "passed"
FAILED = "failed"
ERROR = "error"
SKIPPED = "skipped"


@dataclass
class ScenarioResult:
    """Outcome of one scenario run."""
    scenario: str
    status: str
    steps_run: int = 0
    lines_consumed: int = 0
    failure: Optional[str] = None
    failed_step: Optional[str] = None
    transcript: List[str] = field(default_factory=list)
    returncode: Optional[int] = None
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        return self.status in (PASSED, SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "status": self.status,
            "steps_run": self.steps_run,
            "lines_consumed": self.lines_consumed,
            "failure": self.failure,
            "failed_step": self.failed_step,
            "transcript": list(self.transcript),
            "returncode": self.returncode,
            "duration_s": round(self.duration_s, 3),
        }

    def raise_for_status(self) -> None:
        """Re-raise a failed or errored run (for use inside test functions)."""
        if self.status == FAILED:
            raise ExpectationError(self._describe())
        if self.status == ERROR:
            raise ScenarioError(self._describe())

    def _describe(self) -> str:
        where = f" at step '{self.failed_step}'" if self.failed_step else ""
        tail = "\n".join(self.transcript[-10:])
        return f"{self.scenario}{where}: {self.failure}\nLast output:\n{tail}"


class ScenarioRunner:
    """
    Runs scenarios with a shared harness configuration.

    Example:
        >>> runner = ScenarioRunner()
        >>> result = runner.run(get_preset("watcher"))
        >>> result.raise_for_status()
    """

    def __init__(self, config: Optional[HarnessConfig] = None):
        self.config = config or HarnessConfig()

    def run(self, scenario: Scenario) -> ScenarioResult:
        """Run a scenario and report the outcome. Never raises for test failures."""
        if scenario.should_skip():
            log_event(logger, "scenario_skip", "Skipped on this platform", scenario=scenario.name)
            return ScenarioResult(scenario=scenario.name, status=SKIPPED)

        start = time.perf_counter()
        result = ScenarioResult(scenario=scenario.name, status=PASSED)
        process: Optional[WatchProcess] = None
        ctx: Optional[StepContext] = None

        try:
            try:
                self.config.validate()
            except ValueError as e:
                raise ScenarioError(f"Invalid harness config: {e}") from e

            self._remove_trigger_files(scenario)
            self._run_setup(scenario)

            process = WatchProcess(
                scenario.command,
                cwd=scenario.cwd,
                env=scenario.env,
                stderr=self.config.stderr,
                interrupt_signal=self.config.signal_number(),
                terminate_grace=self.config.terminate_grace,
            )
            reader = process.start()

            timeout = scenario.timeout if scenario.timeout is not None else self.config.scenario_timeout
            ctx = StepContext(
                reader=reader,
                cwd=scenario.cwd,
                process=process,
                line_timeout=(
                    scenario.line_timeout if scenario.line_timeout is not None
                    else self.config.line_timeout
                ),
                deadline=time.monotonic() + timeout if timeout is not None else None,
            )

            for step in scenario.steps:
                result.failed_step = step.describe()
                step.run(ctx)
                result.steps_run += 1
            result.failed_step = None

        except (ExpectationError, LineReaderClosed, LineTimeout) as e:
            result.status = FAILED
            result.failure = str(e)
        except (SetupError, ProcessStartError, TerminationError, ScenarioError) as e:
            result.status = ERROR
            result.failure = str(e)
        finally:
            self._cleanup(scenario, process, result)

        if ctx is not None:
            result.transcript = list(ctx.consumed)
            result.lines_consumed = len(ctx.consumed)
        result.duration_s = time.perf_counter() - start

        log_event(
            logger,
            "scenario_end",
            f"{result.status}: {result.failure}" if result.failure else result.status,
            level=logging.INFO if result.success else logging.ERROR,
            scenario=scenario.name,
            step=result.failed_step,
            latency_ms=result.duration_s * 1000,
        )
        return result

    def _run_setup(self, scenario: Scenario) -> None:
        env = None
        if scenario.env:
            env = dict(os.environ)
            env.update(scenario.env)

        for cmd in scenario.setup_commands:
            log_event(logger, "setup", " ".join(cmd), scenario=scenario.name)
            try:
                completed = subprocess.run(
                    cmd,
                    cwd=scenario.cwd,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                raise SetupError(f"Setup command {cmd!r} failed to start: {e}") from e

            if completed.returncode != 0:
                output = (completed.stdout or "").strip()[-2000:]
                raise SetupError(
                    f"Setup command {cmd!r} exited with {completed.returncode}\n{output}"
                )

    def _cleanup(
        self,
        scenario: Scenario,
        process: Optional[WatchProcess],
        result: ScenarioResult,
    ) -> None:
        if process is not None:
            if process.reader is not None:
                process.reader.close()
            try:
                result.returncode = process.terminate()
            except TerminationError as e:
                logger.error(f"Failed to terminate watch process: {e}")
                if result.status == PASSED:
                    result.status = ERROR
                    result.failure = str(e)

        try:
            self._remove_trigger_files(scenario)
        except ScenarioError as e:
            logger.error(str(e))
            if result.status == PASSED:
                result.status = ERROR
                result.failure = str(e)

    def _remove_trigger_files(self, scenario: Scenario) -> None:
        for path in scenario.trigger_files:
            target = path if os.path.isabs(path) else os.path.join(scenario.cwd, path)
            if not os.path.exists(target):
                continue
            try:
                os.remove(target)
            except OSError as e:
                raise ScenarioError(f"Cannot remove trigger file {target}: {e}") from e
            logger.debug(f"Removed trigger file {target}")


def run_scenario(scenario: Scenario, config: Optional[HarnessConfig] = None) -> ScenarioResult:
    """Run a scenario with a one-off runner."""
    return ScenarioRunner(config).run(scenario)
