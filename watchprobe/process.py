"""
Watch process controller.

Spawns the external watch command as the leader of its own process
group and stops the whole tree on terminate:
- Interrupt signal to the group (Ctrl+C equivalent)
- SIGKILL escalation after a grace period
- Waits until every descendant is gone
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from typing import Dict, List, Optional, Sequence

import psutil

from .errors import ProcessStartError, TerminationError
from .line_reader import LineReader

logger = logging.getLogger(__name__)

STDERR_MODES = ("inherit", "discard", "merge")

_IS_POSIX = os.name == "posix"


def is_alive(proc: psutil.Process) -> bool:
    """True if proc still runs. Zombies count as exited."""
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


def _wait_gone(procs: List[psutil.Process], timeout: float) -> List[psutil.Process]:
    """Poll until every process has exited; return those still alive."""
    deadline = time.monotonic() + timeout
    alive = [p for p in procs if is_alive(p)]
    while alive and time.monotonic() < deadline:
        time.sleep(0.05)
        alive = [p for p in alive if is_alive(p)]
    return alive


class WatchProcess:
    """
    Controller for a single watch-mode child process.

    Example:
        >>> proc = WatchProcess(["npm", "run", "watch"], cwd="fixtures/watcher")
        >>> reader = proc.start()
        >>> reader.next_line()
        >>> proc.terminate()  # SIGINT to the group, waits for exit
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: str,
        env: Optional[Dict[str, str]] = None,
        stderr: str = "inherit",
        interrupt_signal: int = signal.SIGINT,
        terminate_grace: float = 10.0,
    ):
        """
        Initialize the controller.

        Args:
            command: argv of the watch command (run without a shell)
            cwd: Working directory for the process
            env: Extra environment variables layered over os.environ
            stderr: "inherit", "discard" or "merge" (into stdout)
            interrupt_signal: Signal sent to the process group first
            terminate_grace: Seconds to wait before escalating to SIGKILL
        """
        if not command:
            raise ValueError("command must not be empty")
        if stderr not in STDERR_MODES:
            raise ValueError(f"stderr must be one of {STDERR_MODES}, got {stderr!r}")

        self.command = list(command)
        self.cwd = cwd
        self.env = dict(env or {})
        self.stderr = stderr
        self.interrupt_signal = interrupt_signal
        self.terminate_grace = terminate_grace

        self._popen: Optional[subprocess.Popen] = None
        self._reader: Optional[LineReader] = None
        self._started = False
        self.returncode: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid if self._popen else None

    @property
    def reader(self) -> Optional[LineReader]:
        return self._reader

    def is_running(self) -> bool:
        """Check if the leader process is still alive."""
        return self._popen is not None and self._popen.poll() is None

    def start(self) -> LineReader:
        """
        Spawn the process and return a reader over its stdout.

        Raises:
            ProcessStartError: Launch failed or already started
        """
        if self._started:
            raise ProcessStartError("Process already started")

        env = None
        if self.env:
            env = dict(os.environ)
            env.update(self.env)

        stderr_target = {
            "inherit": None,
            "discard": subprocess.DEVNULL,
            "merge": subprocess.STDOUT,
        }[self.stderr]

        popen_kwargs = {
            "cwd": self.cwd,
            "env": env,
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": stderr_target,
            "text": True,
            "encoding": "utf-8",
            "errors": "replace",
            "bufsize": 1,
        }
        # New process group so the interrupt reaches the whole tree
        if _IS_POSIX:
            popen_kwargs["start_new_session"] = True
        else:
            popen_kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)

        try:
            self._popen = subprocess.Popen(self.command, **popen_kwargs)
        except (OSError, ValueError) as e:
            raise ProcessStartError(f"Failed to start {self.command!r} in {self.cwd}: {e}") from e

        self._started = True
        self._reader = LineReader(self._popen.stdout, name=os.path.basename(self.command[0]))
        logger.info(
            f"Started {' '.join(self.command)} (pid {self._popen.pid})",
            extra={"pid": self._popen.pid, "event": "process_start"},
        )
        return self._reader

    def terminate(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Stop the process tree and wait until nothing is left alive.

        Args:
            timeout: Grace period override in seconds

        Returns:
            Return code of the leader process (None if never started)

        Raises:
            TerminationError: Signalling failed or a process survived SIGKILL
        """
        if self._popen is None:
            return self.returncode

        grace = self.terminate_grace if timeout is None else timeout
        popen = self._popen
        pid = popen.pid
        start = time.perf_counter()

        descendants = self._descendants(pid)

        if popen.poll() is None:
            self._signal_group(pid, self.interrupt_signal)
            try:
                popen.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"pid {pid} ignored signal {self.interrupt_signal}, sending SIGKILL",
                    extra={"pid": pid, "event": "process_kill"},
                )
                self._kill_group(pid)
                try:
                    popen.wait(timeout=grace)
                except subprocess.TimeoutExpired as e:
                    raise TerminationError(f"pid {pid} survived SIGKILL") from e
        elif descendants:
            # Leader is gone but its children may still hold the group
            self._signal_group(pid, self.interrupt_signal)

        self._reap(descendants, grace)

        self.returncode = popen.returncode
        self._popen = None

        pumped_out = True
        if self._reader is not None:
            pumped_out = self._reader.join(timeout=grace)
            self._reader.close()
        if popen.stdout is not None and pumped_out:
            popen.stdout.close()
        elif not pumped_out:
            logger.warning(f"stdout of pid {pid} still open after exit, leaving pipe to the reader thread")

        logger.info(
            f"Terminated pid {pid} with code {self.returncode}",
            extra={
                "pid": pid,
                "event": "process_exit",
                "latency_ms": (time.perf_counter() - start) * 1000,
            },
        )
        return self.returncode

    def _descendants(self, pid: int) -> List[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    def _signal_group(self, pid: int, sig: int) -> None:
        try:
            if _IS_POSIX:
                os.killpg(pid, sig)
            else:
                self._popen.send_signal(sig)
        except ProcessLookupError:
            pass
        except OSError as e:
            raise TerminationError(f"Failed to signal process group {pid}: {e}") from e

    def _kill_group(self, pid: int) -> None:
        if _IS_POSIX:
            self._signal_group(pid, signal.SIGKILL)
        else:
            self._popen.kill()

    def _reap(self, procs: List[psutil.Process], grace: float) -> None:
        """Wait for descendants to exit, killing stragglers."""
        if not procs:
            return

        alive = _wait_gone(procs, grace)
        if not alive:
            return

        logger.warning(f"Killing {len(alive)} leftover child process(es)")
        for p in alive:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                raise TerminationError(f"Cannot kill child pid {p.pid}: {e}") from e

        alive = _wait_gone(alive, grace)
        if alive:
            pids = ", ".join(str(p.pid) for p in alive)
            raise TerminationError(f"Child processes still alive: {pids}")

    def __enter__(self) -> "WatchProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()
