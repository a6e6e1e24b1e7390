"""
Tests for the line reader.
"""
import io
import os
import threading
import time

import pytest

from watchprobe.errors import LineReaderClosed, LineTimeout
from watchprobe.line_reader import LineReader


@pytest.fixture
def pipe():
    """A (reader stream, writer stream) text pipe."""
    rfd, wfd = os.pipe()
    r = os.fdopen(rfd, "r", encoding="utf-8")
    w = os.fdopen(wfd, "w", encoding="utf-8")
    yield r, w
    if not w.closed:
        w.close()
    # Reader thread exits on EOF once the writer is closed
    time.sleep(0.05)
    r.close()


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestLineReader:
    """Test FIFO line delivery."""

    def test_lines_in_order(self):
        reader = LineReader(io.StringIO("first\nsecond\nthird\n"))

        assert reader.next_line() == "first"
        assert reader.next_line() == "second"
        assert reader.next_line() == "third"

    def test_end_of_stream_raises_closed(self):
        reader = LineReader(io.StringIO("only\n"))

        assert reader.next_line() == "only"
        with pytest.raises(LineReaderClosed, match="Line reader closed."):
            reader.next_line()
        assert reader.eof

    def test_strips_line_endings(self):
        reader = LineReader(io.StringIO("windows\r\nunix\nlast"))

        assert reader.next_line() == "windows"
        assert reader.next_line() == "unix"
        assert reader.next_line() == "last"

    def test_blank_lines_are_lines(self):
        reader = LineReader(io.StringIO("\n\nx\n"))

        assert [reader.next_line() for _ in range(3)] == ["", "", "x"]

    def test_waits_for_line(self, pipe):
        r, w = pipe
        reader = LineReader(r)
        got = []

        t = threading.Thread(target=lambda: got.append(reader.next_line(timeout=2.0)))
        t.start()
        time.sleep(0.05)
        assert got == []

        w.write("arrived\n")
        w.flush()
        t.join(2.0)

        assert got == ["arrived"]

    def test_buffered_line_returned_immediately(self, pipe):
        r, w = pipe
        reader = LineReader(r)
        w.write("a\nb\n")
        w.flush()
        assert wait_for(lambda: reader.pending() == 2)

        assert reader.next_line(timeout=0) == "a"
        assert reader.pending() == 1

    def test_timeout(self, pipe):
        r, _ = pipe
        reader = LineReader(r)

        with pytest.raises(LineTimeout):
            reader.next_line(timeout=0.05)

    def test_timeout_is_timeout_error(self, pipe):
        r, _ = pipe
        reader = LineReader(r)

        with pytest.raises(TimeoutError):
            reader.next_line(timeout=0.01)


class TestLineReaderClose:
    """Test closing semantics."""

    def test_close_fails_pending_read(self, pipe):
        r, _ = pipe
        reader = LineReader(r)
        errors = []

        def read():
            try:
                reader.next_line()
            except LineReaderClosed as e:
                errors.append(e)

        t = threading.Thread(target=read)
        t.start()
        time.sleep(0.05)
        reader.close()
        t.join(2.0)

        assert not t.is_alive()
        assert len(errors) == 1
        assert str(errors[0]) == "Line reader closed."

    def test_buffered_lines_survive_close(self, pipe):
        r, w = pipe
        reader = LineReader(r)
        w.write("kept\n")
        w.flush()
        assert wait_for(lambda: reader.pending() == 1)

        reader.close()

        assert reader.next_line() == "kept"
        with pytest.raises(LineReaderClosed):
            reader.next_line()

    def test_lines_after_close_are_dropped(self, pipe):
        r, w = pipe
        reader = LineReader(r)
        reader.close()

        w.write("late\n")
        w.flush()
        time.sleep(0.05)

        assert reader.pending() == 0
        assert reader.closed

    def test_close_is_idempotent(self):
        reader = LineReader(io.StringIO(""))
        reader.close()
        reader.close()
        assert reader.closed


class TestLineReaderHistory:
    """Test history and iteration."""

    def test_history_keeps_consumed_lines(self):
        reader = LineReader(io.StringIO("a\nb\n"))
        reader.next_line()
        reader.next_line()
        reader.join(1.0)

        assert reader.history == ["a", "b"]

    def test_iteration_until_closed(self):
        reader = LineReader(io.StringIO("x\ny\nz\n"))

        assert list(reader) == ["x", "y", "z"]

    def test_join_after_eof(self):
        reader = LineReader(io.StringIO("x\n"))
        assert reader.join(1.0)
