"""
Command runner and subprocess helpers.

All one-shot external commands (address enumeration, active scans,
discovery) go through execute(), which never raises for command failures:
a missing binary or a timeout is reported as a non-zero exit code.
"""

from __future__ import annotations

import re
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from utils.logging import get_logger

logger = get_logger('btrecon.process')

EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127

_MAC_SCAN_RE = re.compile(r'((?:[0-9a-f]{2}[:-]){5}[0-9a-f]{2})', re.IGNORECASE)

# Commands started by execute() that are still running
_running: set[subprocess.Popen] = set()
_running_lock = threading.Lock()


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a one-shot command."""
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def execute(cmd: str, args: Sequence[str] = (), timeout: Optional[float] = None) -> CommandResult:
    """
    Run a command to completion.

    Args:
        cmd: Executable name.
        args: Arguments.
        timeout: Seconds before the command is killed.

    Returns:
        CommandResult with captured output and exit code.
    """
    argv = [cmd, *args]
    try:
        process = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors='replace',
        )
    except FileNotFoundError:
        logger.debug(f"Command not found: {cmd}")
        return CommandResult(stdout='', stderr=f'{cmd}: command not found', exit_code=EXIT_NOT_FOUND)
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"Command failed to run: {' '.join(argv)}: {e}")
        return CommandResult(stdout='', stderr=str(e), exit_code=1)

    with _running_lock:
        _running.add(process)
    try:
        stdout, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.debug(f"Command timed out after {timeout}s: {' '.join(argv)}")
        process.kill()
        stdout, _ = process.communicate()
        return CommandResult(stdout=stdout or '', stderr='timeout', exit_code=EXIT_TIMEOUT)
    finally:
        with _running_lock:
            _running.discard(process)

    return CommandResult(stdout=stdout or '', stderr=stderr or '', exit_code=process.returncode)


def running_count() -> int:
    """Number of commands started by execute() that have not finished."""
    with _running_lock:
        return len(_running)


def terminate_running(grace_period: float) -> int:
    """
    Stop every command still running under execute().

    Each one is sent SIGTERM, and whatever is left after ``grace_period``
    seconds is killed. The callers blocked in execute() then return with
    the signal's exit code.

    Returns:
        Number of commands that were signalled.
    """
    with _running_lock:
        processes = list(_running)

    for process in processes:
        try:
            process.terminate()
        except OSError as e:
            logger.debug(f"Could not terminate {process.args[0]}: {e}")

    deadline = time.monotonic() + grace_period
    for process in processes:
        try:
            process.wait(timeout=max(0.0, deadline - time.monotonic()))
        except subprocess.TimeoutExpired:
            logger.warning(f"{process.args[0]} did not terminate, killing")
            process.kill()

    if processes:
        logger.info(f"Terminated {len(processes)} running command(s)")
    return len(processes)


def find_addresses(output: str) -> list[str]:
    """Extract every hardware address in command output, uppercased."""
    return [match.upper().replace('-', ':') for match in _MAC_SCAN_RE.findall(output)]
