"""
Exception hierarchy for watchprobe.

Library code raises these; the harness turns them into results and the
CLI turns results into exit codes.
"""
from __future__ import annotations


class WatchprobeError(Exception):
    """Base class for all watchprobe errors."""


class LineReaderClosed(WatchprobeError):
    """The output stream closed while a line was still expected."""

    def __init__(self, message: str = "Line reader closed."):
        super().__init__(message)


class LineTimeout(WatchprobeError, TimeoutError):
    """No line arrived within the allotted time."""


class ExpectationError(WatchprobeError, AssertionError):
    """An output line did not contain the expected text."""


class ProcessStartError(WatchprobeError):
    """The watch process could not be launched."""


class TerminationError(WatchprobeError):
    """The watch process (or part of its tree) could not be stopped."""


class ScenarioError(WatchprobeError):
    """A scenario definition is malformed or cannot be run."""


class SetupError(ScenarioError):
    """A setup command exited with a non-zero status."""
