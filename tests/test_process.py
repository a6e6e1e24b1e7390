"""
Tests for the watch process controller.

These spawn real Python child processes; process groups and signals
are POSIX-only.
"""
import signal
import sys
import textwrap
import time

import psutil
import pytest

from watchprobe.errors import LineReaderClosed, ProcessStartError
from watchprobe.process import WatchProcess, is_alive

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")


def python_cmd(source: str):
    return [sys.executable, "-c", textwrap.dedent(source)]


SLEEPER = python_cmd("""
    import time
    print("ready", flush=True)
    time.sleep(60)
""")


class TestStart:
    """Test spawning."""

    def test_reads_stdout_lines(self, tmp_path):
        proc = WatchProcess(
            python_cmd("print('one'); print('two', flush=True)"),
            cwd=str(tmp_path),
        )
        reader = proc.start()

        assert reader.next_line(timeout=10) == "one"
        assert reader.next_line(timeout=10) == "two"
        with pytest.raises(LineReaderClosed):
            reader.next_line(timeout=10)
        proc.terminate()

    def test_runs_in_cwd(self, tmp_path):
        proc = WatchProcess(python_cmd("import os; print(os.getcwd(), flush=True)"), cwd=str(tmp_path))
        reader = proc.start()

        assert reader.next_line(timeout=10) == str(tmp_path.resolve())
        proc.terminate()

    def test_env_is_layered(self, tmp_path):
        proc = WatchProcess(
            python_cmd("import os; print(os.environ['WATCHPROBE_TEST'], 'PATH' in os.environ, flush=True)"),
            cwd=str(tmp_path),
            env={"WATCHPROBE_TEST": "yes"},
        )
        reader = proc.start()

        assert reader.next_line(timeout=10) == "yes True"
        proc.terminate()

    def test_merge_stderr(self, tmp_path):
        proc = WatchProcess(
            python_cmd("import sys; sys.stderr.write('oops\\n'); sys.stderr.flush()"),
            cwd=str(tmp_path),
            stderr="merge",
        )
        reader = proc.start()

        assert reader.next_line(timeout=10) == "oops"
        proc.terminate()

    def test_missing_executable(self, tmp_path):
        proc = WatchProcess(["definitely-not-a-real-command-xyz"], cwd=str(tmp_path))

        with pytest.raises(ProcessStartError):
            proc.start()

    def test_start_twice(self, tmp_path):
        proc = WatchProcess(SLEEPER, cwd=str(tmp_path))
        proc.start()
        try:
            with pytest.raises(ProcessStartError):
                proc.start()
        finally:
            proc.terminate()

    def test_invalid_arguments(self, tmp_path):
        with pytest.raises(ValueError):
            WatchProcess([], cwd=str(tmp_path))
        with pytest.raises(ValueError):
            WatchProcess(SLEEPER, cwd=str(tmp_path), stderr="tee")


class TestTerminate:
    """Test graceful termination."""

    def test_interrupt_stops_process(self, tmp_path):
        proc = WatchProcess(SLEEPER, cwd=str(tmp_path), stderr="discard")
        reader = proc.start()
        assert reader.next_line(timeout=10) == "ready"
        assert proc.is_running()

        code = proc.terminate()

        assert code is not None
        assert not proc.is_running()
        assert proc.returncode == code
        assert reader.closed

    def test_clean_interrupt_exit_code(self, tmp_path):
        proc = WatchProcess(
            python_cmd("""
                import sys, time
                print("ready", flush=True)
                try:
                    time.sleep(60)
                except KeyboardInterrupt:
                    sys.exit(0)
            """),
            cwd=str(tmp_path),
        )
        proc.start().next_line(timeout=10)

        assert proc.terminate() == 0

    def test_escalates_to_kill(self, tmp_path):
        proc = WatchProcess(
            python_cmd("""
                import signal, time
                signal.signal(signal.SIGINT, signal.SIG_IGN)
                print("ready", flush=True)
                time.sleep(60)
            """),
            cwd=str(tmp_path),
            terminate_grace=0.5,
        )
        proc.start().next_line(timeout=10)

        code = proc.terminate()

        assert code == -signal.SIGKILL
        assert not proc.is_running()

    def test_kills_whole_tree(self, tmp_path):
        proc = WatchProcess(
            python_cmd("""
                import subprocess, sys, time
                child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
                print(child.pid, flush=True)
                time.sleep(60)
            """),
            cwd=str(tmp_path),
            stderr="discard",
            terminate_grace=2.0,
        )
        grandchild_pid = int(proc.start().next_line(timeout=10))
        grandchild = psutil.Process(grandchild_pid)

        proc.terminate()

        assert not is_alive(grandchild)

    def test_terminate_is_idempotent(self, tmp_path):
        proc = WatchProcess(SLEEPER, cwd=str(tmp_path), stderr="discard")
        proc.start().next_line(timeout=10)

        first = proc.terminate()
        second = proc.terminate()

        assert first == second

    def test_terminate_never_started(self, tmp_path):
        proc = WatchProcess(SLEEPER, cwd=str(tmp_path))
        assert proc.terminate() is None

    def test_terminate_after_exit(self, tmp_path):
        proc = WatchProcess(python_cmd("print('bye', flush=True)"), cwd=str(tmp_path))
        reader = proc.start()
        reader.next_line(timeout=10)
        reader.join(10)
        deadline = time.monotonic() + 10
        while proc.is_running() and time.monotonic() < deadline:
            time.sleep(0.01)

        assert proc.terminate() == 0

    def test_context_manager(self, tmp_path):
        with WatchProcess(SLEEPER, cwd=str(tmp_path), stderr="discard") as proc:
            proc.start().next_line(timeout=10)
            pid = proc.pid

        assert not proc.is_running()
        assert not psutil.pid_exists(pid) or not is_alive(psutil.Process(pid))
