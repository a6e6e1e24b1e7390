"""
Line-oriented reader over a live text stream.

A daemon thread pumps lines from the stream into a FIFO buffer.
Consumers pull one line at a time with next_line(), which returns
immediately when a line is buffered and otherwise blocks until one
arrives or the stream closes.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Deque, Iterator, List, Optional, TextIO

from .errors import LineReaderClosed, LineTimeout

logger = logging.getLogger(__name__)


class LineReader:
    """
    Thread-backed FIFO over the lines of a text stream.

    Example:
        >>> reader = LineReader(proc.stdout)
        >>> reader.next_line()              # blocks until a line arrives
        'Found 0 errors. Watching for file changes.'
        >>> reader.close()                  # pending reads now fail
    """

    def __init__(self, stream: TextIO, name: str = "stdout", start: bool = True):
        """
        Initialize the reader.

        Args:
            stream: Text stream to read (e.g. a Popen stdout pipe)
            name: Label used in logs and the pump thread name
            start: Start pumping immediately
        """
        self.stream = stream
        self.name = name

        self._buffer: Deque[str] = deque()
        self._history: List[str] = []
        self._lock = threading.Lock()
        self._line_ready = threading.Condition(self._lock)
        self._closed = False
        self._eof = False
        self._thread: Optional[threading.Thread] = None

        if start:
            self.start()

    def start(self) -> None:
        """Start the pump thread."""
        if self._thread is not None:
            return

        self._thread = threading.Thread(
            target=self._pump,
            name=f"LineReader-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _pump(self) -> None:
        try:
            for raw in self.stream:
                line = raw.rstrip("\r\n")
                with self._lock:
                    if self._closed:
                        continue
                    self._buffer.append(line)
                    self._history.append(line)
                    self._line_ready.notify_all()
        except ValueError:
            # Stream was closed underneath us (I/O on closed file)
            pass
        except OSError as e:
            logger.warning(f"LineReader {self.name}: read failed: {e}")
        finally:
            with self._lock:
                self._eof = True
                self._closed = True
                self._line_ready.notify_all()
            logger.debug(f"LineReader {self.name}: stream ended")

    def next_line(self, timeout: Optional[float] = None) -> str:
        """
        Remove and return the next line.

        Args:
            timeout: Max seconds to wait (None waits forever)

        Raises:
            LineReaderClosed: The reader closed with no buffered line left
            LineTimeout: No line arrived within timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._lock:
            while not self._buffer:
                if self._closed:
                    raise LineReaderClosed()

                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise LineTimeout(
                            f"No line from {self.name} within {timeout:.1f}s"
                        )
                self._line_ready.wait(remaining)

            return self._buffer.popleft()

    def close(self) -> None:
        """Close the reader; pending and future reads on an empty buffer fail."""
        with self._lock:
            self._closed = True
            self._line_ready.notify_all()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the pump thread to finish. Returns True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def eof(self) -> bool:
        """True once the underlying stream has ended."""
        with self._lock:
            return self._eof

    @property
    def history(self) -> List[str]:
        """Every line received so far, consumed or not."""
        with self._lock:
            return list(self._history)

    def pending(self) -> int:
        """Number of buffered, unconsumed lines."""
        with self._lock:
            return len(self._buffer)

    def __iter__(self) -> Iterator[str]:
        while True:
            try:
                yield self.next_line()
            except LineReaderClosed:
                return
