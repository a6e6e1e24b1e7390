"""
Scenario steps and output expectations.

A scenario is a flat list of steps run in order against one watch
process. Reading steps consume lines from the process output; file
steps edit the fixture to trigger a rebuild.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import ExpectationError, LineTimeout, ScenarioError
from .line_reader import LineReader

logger = logging.getLogger(__name__)


def assert_contains(text: str, fragment: str) -> None:
    """Raise ExpectationError unless fragment occurs in text."""
    if fragment not in text:
        raise ExpectationError(f"Expected '{text}' to include '{fragment}'.")


@dataclass
class StepContext:
    """State shared by all steps of one scenario run."""
    reader: LineReader
    cwd: str
    process: Any = None
    line_timeout: Optional[float] = None
    deadline: Optional[float] = None  # time.monotonic() value
    consumed: List[str] = field(default_factory=list)

    def read_line(self) -> str:
        """Read the next output line, honouring the line timeout and deadline."""
        timeout = self.line_timeout
        if self.deadline is not None:
            remaining = self.deadline - time.monotonic()
            if remaining <= 0:
                raise LineTimeout("Scenario deadline exceeded")
            timeout = remaining if timeout is None else min(timeout, remaining)

        line = self.reader.next_line(timeout=timeout)
        self.consumed.append(line)
        logger.debug(f"< {line}")
        return line

    def resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.cwd, path)


@dataclass
class SkipLines:
    """Consume lines without checking them."""
    count: int = 1

    def run(self, ctx: StepContext) -> None:
        for _ in range(self.count):
            ctx.read_line()

    def describe(self) -> str:
        return f"skip {self.count}"

    def to_dict(self) -> Dict[str, Any]:
        return {"skip": self.count}


@dataclass
class ExpectLine:
    """Consume one line; it must contain the fragment."""
    fragment: str

    def run(self, ctx: StepContext) -> None:
        assert_contains(ctx.read_line(), self.fragment)

    def describe(self) -> str:
        return f"expect {self.fragment!r}"

    def to_dict(self) -> Dict[str, Any]:
        return {"expect": self.fragment}


@dataclass
class WriteFile:
    """Write a file under the scenario cwd to trigger a rebuild."""
    path: str
    content: str = ""

    def run(self, ctx: StepContext) -> None:
        target = ctx.resolve(self.path)
        try:
            os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                f.write(self.content)
        except OSError as e:
            raise ScenarioError(f"Cannot write {target}: {e}") from e
        logger.info(f"Wrote {self.path}", extra={"event": "file_write"})

    def describe(self) -> str:
        return f"write {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        return {"write": {"path": self.path, "content": self.content}}


@dataclass
class RemoveFile:
    """Remove a file under the scenario cwd if it exists."""
    path: str

    def run(self, ctx: StepContext) -> None:
        target = ctx.resolve(self.path)
        if os.path.exists(target):
            try:
                os.remove(target)
            except OSError as e:
                raise ScenarioError(f"Cannot remove {target}: {e}") from e
            logger.info(f"Removed {self.path}", extra={"event": "file_remove"})

    def describe(self) -> str:
        return f"remove {self.path}"

    def to_dict(self) -> Dict[str, Any]:
        return {"remove": self.path}


@dataclass
class Terminate:
    """Stop the watch process now."""

    def run(self, ctx: StepContext) -> None:
        if ctx.process is not None:
            ctx.process.terminate()

    def describe(self) -> str:
        return "terminate"

    def to_dict(self) -> Dict[str, Any]:
        return {"terminate": True}


Step = Union[SkipLines, ExpectLine, WriteFile, RemoveFile, Terminate]


def parse_step(data: Union[str, Dict[str, Any]]) -> Step:
    """
    Build a step from its mapping form.

    Accepted forms:
        "Run mocha."                        -> expect
        {"expect": "Run mocha."}
        {"skip": 2}
        {"write": {"path": "a.ts", "content": "..."}}
        {"remove": "a.ts"}
        {"terminate": true}
    """
    if isinstance(data, str):
        return ExpectLine(data)

    if not isinstance(data, dict) or len(data) != 1:
        raise ScenarioError(f"Step must be a string or single-key mapping: {data!r}")

    kind, value = next(iter(data.items()))

    if kind == "expect":
        if not isinstance(value, str):
            raise ScenarioError(f"expect needs a string, got {value!r}")
        return ExpectLine(value)

    if kind == "skip":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ScenarioError(f"skip needs a non-negative integer, got {value!r}")
        return SkipLines(value)

    if kind == "write":
        if not isinstance(value, dict) or "path" not in value:
            raise ScenarioError(f"write needs a mapping with 'path', got {value!r}")
        path, content = value["path"], value.get("content", "")
        if not isinstance(path, str) or not isinstance(content, str):
            raise ScenarioError(f"write needs string 'path' and 'content', got {value!r}")
        return WriteFile(path=path, content=content)

    if kind == "remove":
        if not isinstance(value, str):
            raise ScenarioError(f"remove needs a path, got {value!r}")
        return RemoveFile(value)

    if kind == "terminate":
        return Terminate()

    raise ScenarioError(f"Unknown step type: {kind!r}")


def parse_steps(items: List[Any]) -> List[Step]:
    return [parse_step(item) for item in items]
