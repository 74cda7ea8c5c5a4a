"""
Monitor subprocess backend.

Runs btmon (or replays a captured btmon log) and queues its output lines for
the ingestion loop. A reader thread owns the pipe; the ingestion thread only
drains the queue and inspects the supervision state.
"""

from __future__ import annotations

import gzip
import logging
import queue
import shutil
import subprocess
import threading
import time
from collections import deque
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from .constants import (
    MONITOR_COMMAND,
    MONITOR_QUEUE_PUT_TIMEOUT,
    MONITOR_QUEUE_SIZE,
    MONITOR_RESTART_WINDOW,
    SUBPROCESS_GRACE_PERIOD,
)
from .models import RawLine

logger = logging.getLogger('btrecon.monitor')

GZIP_MAGIC = b'\x1f\x8b'


class MonitorState(str, Enum):
    """Supervision states of the monitor source."""
    IDLE = 'idle'
    STARTING = 'starting'
    RUNNING = 'running'
    EXITED_CLEAN = 'exited_clean'
    EXITED_ERROR = 'exited_error'

    def __str__(self) -> str:
        return self.value


def open_replay(path: str | Path):
    """Open a captured monitor log, plain text or gzip."""
    path = Path(path)
    with open(path, 'rb') as f:
        magic = f.read(2)
    if magic == GZIP_MAGIC:
        return gzip.open(path, 'rt', encoding='utf-8', errors='replace')
    return open(path, 'r', encoding='utf-8', errors='replace')


class MonitorProcess:
    """
    Line source backed by ``btmon -T -i <dev>`` or a replay file.

    Lines are numbered in arrival order across restarts. The state only
    moves to an exited state after every line of that run has been queued,
    so a caller that reads the state before draining never loses output.
    """

    def __init__(
        self,
        bt_device: str = 'hci0',
        replay_file: Optional[str] = None,
        command: str = MONITOR_COMMAND,
        grace_period: float = SUBPROCESS_GRACE_PERIOD,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        queue_size: int = MONITOR_QUEUE_SIZE,
        raw_log: Optional[logging.Logger] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the monitor.

        Args:
            bt_device: Adapter to monitor (e.g. hci0).
            replay_file: Captured btmon output to read instead of a live adapter.
            command: Monitor executable.
            grace_period: Seconds to wait after terminate before killing.
            popen: Process factory (injectable for tests).
            queue_size: Lines buffered before the reader waits for the consumer.
            raw_log: Logger receiving every raw monitor line (btmon raw log).
            log: Logger to use.
        """
        self._bt_device = bt_device
        self._replay_file = replay_file
        self._command = command
        self._grace_period = grace_period
        self._popen = popen
        self._raw_log = raw_log
        self._log = log or logger

        self._process: Optional[subprocess.Popen] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lines: queue.Queue[RawLine] = queue.Queue(maxsize=queue_size)
        self._seq = 0
        self._state = MonitorState.IDLE
        self._exit_code: Optional[int] = None
        self._starts = 0

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def is_replay(self) -> bool:
        return self._replay_file is not None

    @property
    def has_exited(self) -> bool:
        return self._state in (MonitorState.EXITED_CLEAN, MonitorState.EXITED_ERROR)

    @property
    def starts(self) -> int:
        """Number of times the source has been started."""
        return self._starts

    def is_available(self) -> bool:
        """Check if the monitor executable is available on the system."""
        if self.is_replay:
            return Path(self._replay_file).is_file()
        return shutil.which(self._command) is not None

    def build_command(self) -> list[str]:
        return [self._command, '-T', '-i', self._bt_device]

    def start(self) -> bool:
        """
        Start (or restart) the line source.

        Returns:
            True if the source is running, False if it could not be started.
        """
        if self._state in (MonitorState.STARTING, MonitorState.RUNNING):
            return True

        self._state = MonitorState.STARTING
        self._exit_code = None
        self._stop_event.clear()
        self._starts += 1

        try:
            if self.is_replay:
                source = open_replay(self._replay_file)
                self._log.info(f"Replaying monitor output from {self._replay_file}")
            else:
                cmd = self.build_command()
                self._process = self._popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    text=True,
                    encoding='utf-8',
                    errors='replace',
                    bufsize=1,
                )
                source = self._process.stdout
                self._log.info(f"Monitor started: {' '.join(cmd)}")
        except FileNotFoundError:
            self._log.error(f"{self._replay_file or self._command} not found")
            self._fail(127)
            return False
        except PermissionError:
            self._log.error(f"{self._command} requires appropriate permissions (try running as root)")
            self._fail(126)
            return False
        except OSError as e:
            self._log.error(f"Failed to start monitor: {e}")
            self._fail(1)
            return False

        self._reader_thread = threading.Thread(
            target=self._read_output,
            args=(source,),
            daemon=True,
            name='monitor-reader',
        )
        self._state = MonitorState.RUNNING
        self._reader_thread.start()
        return True

    def _fail(self, exit_code: int) -> None:
        self._exit_code = exit_code
        self._process = None
        self._state = MonitorState.EXITED_ERROR

    def _read_output(self, source: Iterable[str]) -> None:
        """Background thread: queue every line until EOF or stop."""
        error: Optional[Exception] = None
        try:
            for text in source:
                if self._stop_event.is_set():
                    break
                text = text.rstrip('\r\n')
                if self._raw_log is not None:
                    self._raw_log.info(text)
                self._seq += 1
                line = RawLine(seq=self._seq, text=text, received_at=datetime.now())
                if not self._enqueue(line):
                    break
        except (OSError, ValueError) as e:
            error = e
            self._log.error(f"Monitor reader error: {e}")
        finally:
            if self.is_replay:
                close = getattr(source, 'close', None)
                if close is not None:
                    close()

        exit_code = self._wait_for_exit() if not self.is_replay else 0
        if error is not None and not exit_code:
            exit_code = 1
        self._exit_code = exit_code

        if exit_code == 0:
            self._state = MonitorState.EXITED_CLEAN
            self._log.info("Monitor output ended")
        else:
            self._state = MonitorState.EXITED_ERROR
            self._log.warning(f"Monitor exited with code {exit_code}")

    def _enqueue(self, line: RawLine) -> bool:
        """Block until the consumer makes room. Returns False if stopped first."""
        while not self._stop_event.is_set():
            try:
                self._lines.put(line, timeout=MONITOR_QUEUE_PUT_TIMEOUT)
                return True
            except queue.Full:
                continue
        return False

    def _wait_for_exit(self) -> int:
        process = self._process
        if process is None:
            return 0
        try:
            return process.wait(timeout=self._grace_period)
        except subprocess.TimeoutExpired:
            self._log.warning("Monitor closed its output but did not exit, killing")
            process.kill()
            return process.wait(timeout=1.0)

    def drain(self, max_lines: Optional[int] = None) -> list[RawLine]:
        """Return queued lines without blocking."""
        lines: list[RawLine] = []
        while max_lines is None or len(lines) < max_lines:
            try:
                lines.append(self._lines.get_nowait())
            except queue.Empty:
                break
        return lines

    def wait_for_lines(self, timeout: float, max_lines: Optional[int] = None) -> list[RawLine]:
        """Block up to ``timeout`` seconds for the first line, then drain."""
        try:
            first = self._lines.get(timeout=timeout)
        except queue.Empty:
            return []
        rest = self.drain(None if max_lines is None else max_lines - 1)
        return [first, *rest]

    def stop(self) -> None:
        """Stop the source: terminate, wait the grace period, then kill."""
        self._stop_event.set()

        process = self._process
        if process is not None:
            try:
                process.terminate()
                process.wait(timeout=self._grace_period)
            except subprocess.TimeoutExpired:
                self._log.warning("Monitor process did not terminate, killing")
                process.kill()
                process.wait(timeout=1.0)
            except OSError as e:
                self._log.error(f"Error stopping monitor process: {e}")
            finally:
                self._process = None

        if self._reader_thread is not None:
            self._reader_thread.join(timeout=self._grace_period)
            self._reader_thread = None

        if not self.has_exited:
            self._state = MonitorState.EXITED_CLEAN
        self._log.info("Monitor stopped")


class RestartPolicy:
    """
    Allows a limited number of monitor restarts within a time window.

    With the defaults, a single failure is restarted and a second failure
    within the window is fatal.
    """

    def __init__(
        self,
        max_restarts: int = 1,
        window: float = MONITOR_RESTART_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_restarts = max_restarts
        self.window = window
        self._clock = clock
        self._failures: deque[float] = deque()

    @property
    def recent_failures(self) -> int:
        self._expire(self._clock())
        return len(self._failures)

    def _expire(self, now: float) -> None:
        while self._failures and now - self._failures[0] > self.window:
            self._failures.popleft()

    def record_failure(self) -> bool:
        """
        Record a monitor failure.

        Returns:
            True if another restart is allowed, False if the failure is fatal.
        """
        now = self._clock()
        self._expire(now)
        self._failures.append(now)
        return len(self._failures) <= self.max_restarts

    def reset(self) -> None:
        self._failures.clear()
