"""
Preflight checks for a scenario.

Verifies that a scenario can run here before spawning anything:
- Python version
- Platform guard
- Fixture directory
- Watch and setup executables
"""
from __future__ import annotations

import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .scenario import Scenario

logger = logging.getLogger(__name__)


@dataclass
class CheckStatus:
    """Status of a preflight check."""
    name: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0
    details: Dict = field(default_factory=dict)


@dataclass
class PreflightReport:
    """Overall preflight result."""
    healthy: bool
    checks: List[CheckStatus]
    timestamp: str

    def to_dict(self) -> Dict:
        return {
            "healthy": self.healthy,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": c.name,
                    "healthy": c.healthy,
                    "message": c.message,
                    "latency_ms": round(c.latency_ms, 2),
                    **c.details,
                }
                for c in self.checks
            ],
        }


def _resolve_executable(executable: str, cwd: str) -> Optional[str]:
    """Find an executable on PATH, or as a path relative to cwd."""
    if os.sep in executable or (os.altsep and os.altsep in executable):
        path = executable if os.path.isabs(executable) else os.path.join(cwd, executable)
        return path if os.path.isfile(path) and os.access(path, os.X_OK) else None
    return shutil.which(executable)


class PreflightChecker:
    """
    Runs preflight checks for one scenario.

    Example:
        >>> checker = PreflightChecker(get_preset("watcher"))
        >>> report = checker.run_all()
        >>> print(report.healthy)
    """

    def __init__(self, scenario: Scenario, platform: Optional[str] = None):
        self.scenario = scenario
        self.platform = platform or sys.platform
        self._checks: Dict[str, Callable[[], CheckStatus]] = {}
        self._add_default_checks()

    def _add_default_checks(self) -> None:
        self.add_check("python_version", self._check_python_version)
        self.add_check("platform", self._check_platform)
        self.add_check("cwd", self._check_cwd)
        self.add_check("command", self._check_command)
        self.add_check("setup", self._check_setup)

    def add_check(self, name: str, check_fn: Callable[[], CheckStatus]) -> None:
        """Add a preflight check."""
        self._checks[name] = check_fn

    def run_check(self, name: str) -> CheckStatus:
        """Run a single check. Errors are reported, not raised."""
        if name not in self._checks:
            return CheckStatus(name=name, healthy=False, message=f"Unknown check: {name}")

        start = time.perf_counter()
        try:
            status = self._checks[name]()
            status.latency_ms = (time.perf_counter() - start) * 1000
            return status
        except Exception as e:
            logger.warning(f"Preflight check {name} raised: {e}")
            return CheckStatus(
                name=name,
                healthy=False,
                message=f"Check failed: {e}",
                latency_ms=(time.perf_counter() - start) * 1000,
            )

    def run_all(self) -> PreflightReport:
        """Run all checks."""
        checks = [self.run_check(name) for name in self._checks]
        return PreflightReport(
            healthy=all(c.healthy for c in checks),
            checks=checks,
            timestamp=datetime.now().isoformat(),
        )

    def _check_python_version(self) -> CheckStatus:
        version = sys.version_info
        required = (3, 9)
        return CheckStatus(
            name="python_version",
            healthy=version >= required,
            message=f"Python {version.major}.{version.minor}.{version.micro}",
            details={"required": f"{required[0]}.{required[1]}+"},
        )

    def _check_platform(self) -> CheckStatus:
        skipped = self.scenario.should_skip(self.platform)
        return CheckStatus(
            name="platform",
            healthy=not skipped,
            message=f"Scenario skipped on {self.platform}" if skipped else self.platform,
            details={"skip_platforms": list(self.scenario.skip_platforms)},
        )

    def _check_cwd(self) -> CheckStatus:
        cwd = self.scenario.cwd
        ok = os.path.isdir(cwd)
        return CheckStatus(
            name="cwd",
            healthy=ok,
            message=os.path.abspath(cwd) if ok else f"Not a directory: {cwd}",
        )

    def _check_command(self) -> CheckStatus:
        executable = self.scenario.command[0]
        found = _resolve_executable(executable, self.scenario.cwd)
        return CheckStatus(
            name="command",
            healthy=found is not None,
            message=found or f"Executable not found: {executable}",
        )

    def _check_setup(self) -> CheckStatus:
        missing = []
        for cmd in self.scenario.setup_commands:
            if cmd and _resolve_executable(cmd[0], self.scenario.cwd) is None:
                missing.append(cmd[0])
        return CheckStatus(
            name="setup",
            healthy=not missing,
            message=(
                f"Missing: {', '.join(sorted(set(missing)))}" if missing
                else f"{len(self.scenario.setup_commands)} setup command(s)"
            ),
        )


def run_preflight(scenario: Scenario) -> PreflightReport:
    """Run every preflight check for a scenario."""
    return PreflightChecker(scenario).run_all()
