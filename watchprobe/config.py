"""
Harness configuration.

Timeouts, signal handling and logging defaults for scenario runs.
Loaded from JSON or YAML files; every field has a usable default.
"""
from __future__ import annotations

import json
import logging
import os
import signal
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import yaml

from .process import STDERR_MODES

logger = logging.getLogger(__name__)


@dataclass
class HarnessConfig:
    """
    Settings shared by every scenario run.

    Attributes:
        line_timeout: Max seconds to wait for a single line (None = no limit)
        scenario_timeout: Max seconds for a whole scenario (None = no limit)
        terminate_grace: Seconds between interrupt and SIGKILL
        interrupt_signal: Signal name sent to the process group
        stderr: How child stderr is handled (inherit, discard, merge)
        log_level: Root log level
        log_dir: Directory for log files (None = console only)
        scenario_dir: Directory searched for named scenario files
    """
    line_timeout: Optional[float] = None
    scenario_timeout: Optional[float] = 90.0
    terminate_grace: float = 10.0
    interrupt_signal: str = "SIGINT"
    stderr: str = "inherit"
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    scenario_dir: str = "./scenarios"

    def signal_number(self) -> int:
        """Resolve interrupt_signal to a signal number."""
        name = str(self.interrupt_signal).upper()
        if not name.startswith("SIG"):
            name = "SIG" + name
        try:
            return int(getattr(signal, name))
        except AttributeError:
            raise ValueError(f"Unknown signal: {self.interrupt_signal}") from None

    def validate(self) -> None:
        """
        Check values that would only fail once a scenario starts.

        Raises:
            ValueError: Unknown signal or stderr mode
        """
        self.signal_number()
        if self.stderr not in STDERR_MODES:
            raise ValueError(f"stderr must be one of {STDERR_MODES}, got {self.stderr!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HarnessConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def save(self, path: str) -> None:
        """Save config to JSON file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> Optional["HarnessConfig"]:
        """Load config from JSON or YAML file."""
        if not os.path.exists(path):
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()

            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)

            if not isinstance(data, dict):
                raise ValueError("top level must be a mapping")

            config = cls.from_dict(data)
            config.validate()
            return config

        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return None
