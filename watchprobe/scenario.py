"""
Scenario definitions for watch-mode runs.

A scenario names the watch command, where to run it, how to prepare
the fixture, and the ordered steps to check its output. Scenarios can
be loaded from YAML/JSON files or taken from the built-in presets.
"""
from __future__ import annotations

import json
import logging
import os
import sys
import textwrap
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import yaml

from .errors import ScenarioError
from .steps import ExpectLine, SkipLines, Step, Terminate, WriteFile, parse_steps

logger = logging.getLogger(__name__)

SCENARIO_EXTENSIONS = (".yaml", ".yml", ".json")


def _seconds(data: Dict[str, Any], key: str) -> Optional[float]:
    """Read an optional positive number of seconds."""
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ScenarioError(f"{key} must be a number of seconds, got {value!r}")
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ScenarioError(f"{key} must be a number of seconds, got {value!r}") from None
    if seconds <= 0:
        raise ScenarioError(f"{key} must be positive, got {value!r}")
    return seconds


@dataclass
class Scenario:
    """
    One watch-mode run and its expected output.

    Attributes:
        name: Scenario identifier
        command: argv of the watch command
        cwd: Working directory (the fixture package)
        steps: Ordered steps run against the process output
        setup_commands: argv lists run to completion before spawning
        trigger_files: Files removed before and after the run
        skip_platforms: sys.platform prefixes on which the run is skipped
        env: Extra environment variables for every command
        timeout: Overall seconds for the run (None = harness default)
        line_timeout: Seconds to wait per line (None = harness default)
        description: Free text shown by the CLI
    """
    name: str
    command: List[str]
    cwd: str = "."
    steps: List[Step] = field(default_factory=list)
    setup_commands: List[List[str]] = field(default_factory=list)
    trigger_files: List[str] = field(default_factory=list)
    skip_platforms: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    line_timeout: Optional[float] = None
    description: str = ""

    def should_skip(self, platform: Optional[str] = None) -> bool:
        """True if the scenario must not run on this platform."""
        platform = platform or sys.platform
        return any(platform.startswith(p) for p in self.skip_platforms)

    def with_cwd(self, cwd: str) -> "Scenario":
        return replace(self, cwd=cwd)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "command": list(self.command),
            "cwd": self.cwd,
            "steps": [s.to_dict() for s in self.steps],
            "setup_commands": [list(c) for c in self.setup_commands],
            "trigger_files": list(self.trigger_files),
            "skip_platforms": list(self.skip_platforms),
            "env": dict(self.env),
            "timeout": self.timeout,
            "line_timeout": self.line_timeout,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scenario":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise ScenarioError("Scenario must be a mapping")

        for key in ("name", "command"):
            if key not in data:
                raise ScenarioError(f"Scenario is missing '{key}'")

        command = data["command"]
        if isinstance(command, str):
            command = command.split()
        if not command:
            raise ScenarioError("Scenario command must not be empty")

        setup = []
        for cmd in data.get("setup_commands") or []:
            setup.append(cmd.split() if isinstance(cmd, str) else list(cmd))

        return cls(
            name=str(data["name"]),
            command=[str(c) for c in command],
            cwd=data.get("cwd", "."),
            steps=parse_steps(data.get("steps") or []),
            setup_commands=setup,
            trigger_files=list(data.get("trigger_files") or []),
            skip_platforms=list(data.get("skip_platforms") or []),
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            timeout=_seconds(data, "timeout"),
            line_timeout=_seconds(data, "line_timeout"),
            description=data.get("description", ""),
        )

    def save(self, path: str) -> None:
        """Save scenario to YAML or JSON depending on extension."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if path.endswith((".yaml", ".yml")):
                yaml.safe_dump(self.to_dict(), f, sort_keys=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "Scenario":
        """
        Load a scenario file.

        A relative cwd is resolved against the file's directory.

        Raises:
            ScenarioError: File missing or malformed
        """
        if not os.path.exists(path):
            raise ScenarioError(f"Scenario file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content)
            else:
                data = json.loads(content)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ScenarioError(f"Failed to read scenario {path}: {e}") from e

        scenario = cls.from_dict(data)
        if not os.path.isabs(scenario.cwd):
            base = os.path.dirname(os.path.abspath(path))
            scenario.cwd = os.path.normpath(os.path.join(base, scenario.cwd))
        return scenario


# Source written into the fixture to force an incremental rebuild
NEW_TEST_SOURCE = textwrap.dedent("""
    import { suite, test } from "mocha-typescript";
    @suite
    class Test2 {
        @test
        method2() {
          throw "not implemented";
        }
    }
""")

WATCHER_FIXTURE = os.path.join("test", "it", "fixtures", "packages", "watcher")
WATCHER_TRIGGER = os.path.join("test", "new.ts")


def watcher_steps(trigger: str = WATCHER_TRIGGER) -> List[Step]:
    """Expected output of a TypeScript + mocha watch run before and after an edit."""
    return [
        # blank, "> module-usage@1.0.0 watch", "> mocha-typescript-watch", blank
        SkipLines(4),
        ExpectLine("Found 0 errors. Watching for file changes."),
        ExpectLine("Run mocha."),
        SkipLines(2),
        ExpectLine("Test1"),
        SkipLines(3),
        ExpectLine("1 passing"),

        WriteFile(trigger, NEW_TEST_SOURCE),

        SkipLines(1),
        ExpectLine("File change detected. Starting incremental compilation..."),
        ExpectLine("Found 0 errors. Watching for file changes."),
        ExpectLine("Run mocha."),
        SkipLines(2),
        ExpectLine("Test2"),
        ExpectLine("method2"),
        SkipLines(1),
        ExpectLine("Test1"),
        ExpectLine("method"),
        SkipLines(2),
        ExpectLine("1 passing"),
        ExpectLine("1 failing"),
        Terminate(),
    ]


def watcher_scenario(
    cwd: str = WATCHER_FIXTURE,
    install_types_mocha: bool = False,
    command: Optional[List[str]] = None,
) -> Scenario:
    """Build the watcher scenario, optionally installing @types/mocha first."""
    setup = [["npm", "install"]]
    if install_types_mocha:
        setup.append(["npm", "install", "--no-save", "@types/mocha"])

    return Scenario(
        name="watcher-types-mocha" if install_types_mocha else "watcher",
        command=command or ["npm", "run", "watch"],
        cwd=cwd,
        steps=watcher_steps(),
        setup_commands=setup,
        trigger_files=[WATCHER_TRIGGER],
        skip_platforms=["win32"],
        timeout=90.0,
        description=(
            "can run watcher with @types/mocha" if install_types_mocha
            else "can run watcher"
        ),
    )


# Built-in scenario presets
PRESETS: Dict[str, Scenario] = {
    "watcher": watcher_scenario(),
    "watcher-types-mocha": watcher_scenario(install_types_mocha=True),
}


def get_preset(name: str) -> Optional[Scenario]:
    """Get a built-in scenario by name (a fresh copy)."""
    preset = PRESETS.get(name.lower())
    if preset is None:
        return None
    return Scenario.from_dict(preset.to_dict())


def list_presets() -> List[str]:
    """List available preset names."""
    return list(PRESETS.keys())


class ScenarioManager:
    """
    Resolves scenarios by name from a directory and the presets.

    Example:
        >>> manager = ScenarioManager("./scenarios")
        >>> manager.get("watcher")        # built-in preset
        >>> manager.get("my_package")     # ./scenarios/my_package.yaml
    """

    def __init__(self, scenario_dir: str = "./scenarios"):
        self.scenario_dir = scenario_dir
        self._cache: Dict[str, Scenario] = {}

    def get(self, name: str) -> Optional[Scenario]:
        """
        Get a scenario by name or path.

        Checks in order:
        1. Existing file path
        2. Cache
        3. scenario_dir/name.yaml, .yml or .json
        4. Built-in presets

        Raises:
            ScenarioError: A matching file exists but is malformed
        """
        if os.path.isfile(name):
            return Scenario.load(name)

        key = name.lower()
        if key in self._cache:
            return self._cache[key]

        for ext in SCENARIO_EXTENSIONS:
            path = os.path.join(self.scenario_dir, f"{key}{ext}")
            if os.path.exists(path):
                scenario = Scenario.load(path)
                self._cache[key] = scenario
                return scenario

        preset = get_preset(key)
        if preset:
            self._cache[key] = preset
            return preset

        return None

    def list_available(self) -> List[str]:
        """List presets plus scenario files in scenario_dir."""
        available = set(list_presets())

        if os.path.isdir(self.scenario_dir):
            for f in os.listdir(self.scenario_dir):
                if f.endswith(SCENARIO_EXTENSIONS):
                    available.add(os.path.splitext(f)[0])

        return sorted(available)
