"""
Scan scheduler.

Drives the monitor -> chunker -> parser -> tracker pipeline on the ingestion
thread, and runs status sweeps, active info scans and discovery from a
timer thread. Blocking commands go to a small worker pool so ingestion is
never held up by an active scan.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from utils.process import CommandResult, execute, find_addresses, terminate_running

from .chunker import Chunker
from .constants import (
    ACTIVE_SCAN_BACKOFF_BASE,
    ACTIVE_SCAN_BACKOFF_MAX,
    ACTIVE_SCAN_MAX_RETRIES,
    ADDRESS_TYPE_RANDOM,
    BTMGMT_TIMEOUT,
    HCITOOL_TIMEOUT,
    LOOP_IDLE_WAIT,
    MAX_COMMAND_WORKERS,
    NULL_ADDRESS,
    SUBPROCESS_GRACE_PERIOD,
    SUBPROCESS_TIMEOUT_SHORT,
)
from .exceptions import BtReconError, HardwareIdentityError, MonitorFailedError
from .models import Chunk, Device, RawLine, StatusChange
from .monitor import MonitorProcess, MonitorState, RestartPolicy
from .parser import parse, parse_leinfo_output, parse_name_output
from .tracker import DeviceTracker

if TYPE_CHECKING:
    from config import ScanConfig

logger = logging.getLogger('btrecon.scheduler')

EVENT_SOURCE = 'btrecon'

Runner = Callable[..., CommandResult]


def enumerate_local_address(bt_device: str, runner: Runner = execute) -> str:
    """
    Read the hardware address of the local adapter.

    Raises:
        HardwareIdentityError: if the adapter cannot be queried.
    """
    result = runner('hciconfig', [bt_device], timeout=SUBPROCESS_TIMEOUT_SHORT)
    if result.ok:
        for line in result.stdout.splitlines():
            if 'BD Address' not in line:
                continue
            for address in find_addresses(line):
                if address != NULL_ADDRESS:
                    return address

    detail = result.stderr.strip() or f'exit code {result.exit_code}'
    raise HardwareIdentityError(f"Unable to determine the address of {bt_device} ({detail})")


class ScanScheduler:
    """
    Orchestrates passive ingestion and active probing.

    ``run()`` blocks on the calling thread until ``stop()`` is called, the
    replay file ends or a fatal error occurs; in the last case
    ``fatal_error`` holds the cause.
    """

    def __init__(
        self,
        config: ScanConfig,
        tracker: DeviceTracker,
        monitor: Optional[MonitorProcess] = None,
        telemetry: Any = None,
        runner: Runner = execute,
        chunker: Optional[Chunker] = None,
        restart_policy: Optional[RestartPolicy] = None,
        max_retries: int = ACTIVE_SCAN_MAX_RETRIES,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.tracker = tracker
        self.monitor = monitor or MonitorProcess(
            bt_device=config.bt_device,
            replay_file=config.replay_file,
        )
        self.chunker = chunker or Chunker()
        self.telemetry = telemetry
        self.restart_policy = restart_policy or RestartPolicy()
        self.fatal_error: Optional[BtReconError] = None

        self._runner = runner
        self._max_retries = max_retries
        self._clock = clock
        self._monotonic = monotonic
        self._log = log or logger

        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._timer_thread: Optional[threading.Thread] = None
        self._in_flight: set[str] = set()
        self._discovery_running = False
        self._next_run: dict[str, float] = {}

        self._stats = {
            'records_parsed': 0,
            'records_empty': 0,
            'info_scans_ok': 0,
            'info_scans_failed': 0,
            'discoveries': 0,
            'monitor_restarts': 0,
        }

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def is_running(self) -> bool:
        return self._executor is not None and not self._stop_event.is_set()

    @property
    def stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        stats['in_flight'] = len(self._in_flight)
        stats['monitor_state'] = str(self.monitor.state)
        stats['fatal_error'] = str(self.fatal_error) if self.fatal_error else None
        return stats

    def _count(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[key] += amount

    def _send_event(self, key: str, title: str, message: str, severity: str) -> None:
        if self.telemetry is None:
            return
        self.telemetry.send_event(EVENT_SOURCE, {
            'key': key,
            'title': title,
            'message': message,
            'severity': severity,
        })

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """Run until stopped. Fatal errors are recorded, not raised."""
        self._executor = ThreadPoolExecutor(
            max_workers=MAX_COMMAND_WORKERS,
            thread_name_prefix='btrecon-scan',
        )
        try:
            self._startup()
            self._timer_thread = threading.Thread(
                target=self._timer_loop,
                daemon=True,
                name='btrecon-timer',
            )
            self._timer_thread.start()

            while not self._stop_event.is_set():
                self.run_once()
        except BtReconError as e:
            self._fail(e)
        finally:
            self._shutdown()

    def _startup(self) -> None:
        if not self.config.replay_file:
            address = enumerate_local_address(self.config.bt_device, self._runner)
            self.tracker.local_address = address
            self._log.info(f"Local adapter {self.config.bt_device} is {address}")

        self._send_event(
            'btrecon_start',
            'btrecon started',
            f"Monitoring {self.config.replay_file or self.config.bt_device}",
            'INFO',
        )

        if not self.monitor.start():
            self._handle_monitor_exit()

    def stop(self) -> None:
        """Request a cooperative stop; safe to call from any thread."""
        if not self._stop_event.is_set():
            self._log.info("Stop requested")
        self._stop_event.set()

    def _shutdown(self) -> None:
        self._stop_event.set()

        try:
            for chunk in self._flush():
                self._process_chunk(chunk)
        except BtReconError as e:
            self._fail(e)

        self.monitor.stop()

        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            terminate_running(SUBPROCESS_GRACE_PERIOD)

        if self._timer_thread is not None and self._timer_thread is not threading.current_thread():
            self._timer_thread.join(timeout=SUBPROCESS_GRACE_PERIOD)
            self._timer_thread = None

        if self.fatal_error is None:
            self._send_event('btrecon_stop', 'btrecon stopped', 'Clean shutdown', 'INFO')
        self._log.info("Scheduler stopped")

    def _fail(self, error: BtReconError) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
            self._log.error(f"Fatal: {error}")
            self._send_event('btrecon_fatal', type(error).__name__, str(error), 'FATAL')
        self._stop_event.set()

    # =========================================================================
    # INGESTION
    # =========================================================================

    def run_once(self, timeout: float = LOOP_IDLE_WAIT) -> int:
        """
        One pass of the ingestion loop.

        Returns:
            Number of monitor lines consumed.
        """
        exited = self.monitor.has_exited
        if exited:
            lines = self.monitor.drain()
        else:
            lines = self.monitor.wait_for_lines(timeout)

        for line in lines:
            self.ingest_line(line)

        if exited:
            self._handle_monitor_exit()
        return len(lines)

    def ingest_line(self, line: RawLine | str) -> None:
        for chunk in self.chunker.feed(line):
            self._process_chunk(chunk)

    def _flush(self) -> list[Chunk]:
        chunk = self.chunker.flush()
        return [chunk] if chunk is not None else []

    def _process_chunk(self, chunk: Chunk) -> Optional[str]:
        record = parse(chunk)
        if record.is_empty:
            self._count('records_empty')
            return None
        self._count('records_parsed')
        return self.tracker.observe(record, chunk.received_at)

    def _handle_monitor_exit(self) -> None:
        for chunk in self._flush():
            self._process_chunk(chunk)

        if self._stop_event.is_set():
            return

        if self.monitor.state == MonitorState.EXITED_CLEAN and self.monitor.is_replay:
            self._log.info("Replay finished")
            self._stop_event.set()
            return

        exit_code = self.monitor.exit_code
        if not self.restart_policy.record_failure():
            raise MonitorFailedError(
                f"Monitor exited with code {exit_code} again within "
                f"{self.restart_policy.window:.0f}s"
            )

        self._count('monitor_restarts')
        self._log.warning(f"Monitor exited with code {exit_code}, restarting")
        self._send_event(
            'monitor_restart',
            'Monitor restarted',
            f"Monitor exited with code {exit_code}",
            'WARN',
        )
        self.monitor.start()

    # =========================================================================
    # TIMER
    # =========================================================================

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(LOOP_IDLE_WAIT * 10):
            try:
                self.tick()
            except BtReconError as e:
                self._fail(e)

    def _due(self, name: str, interval: int, now: float) -> bool:
        next_run = self._next_run.get(name)
        if next_run is not None and now < next_run:
            return False
        self._next_run[name] = now + interval
        return True

    def tick(self) -> None:
        """Run whichever periodic tasks are due."""
        now = self._monotonic()

        if self._due('sweep', self.config.sweep_interval, now):
            self.run_sweep()

        if self.config.info_scan_enabled and self._due('info_scan', self.config.info_scan_rate, now):
            self.dispatch_info_scans()

        if self.config.discovery_interval and self._due('discovery', self.config.discovery_interval, now):
            self.dispatch_discovery()

    def run_sweep(self, now: Optional[datetime] = None) -> list[StatusChange]:
        changes = self.tracker.sweep(now or self._clock())
        if changes:
            self._log.info(f"Sweep: {len(changes)} status change(s)")
        return changes

    # =========================================================================
    # ACTIVE SCANS
    # =========================================================================

    def _submit(self, fn: Callable, *args) -> bool:
        if self._executor is None or self._stop_event.is_set():
            return False
        try:
            self._executor.submit(fn, *args)
        except RuntimeError:
            # Pool already shut down
            return False
        return True

    def dispatch_info_scans(self, now: Optional[datetime] = None) -> int:
        """
        Queue info scans for devices due a refresh.

        Returns:
            Number of scans queued.
        """
        now = now or self._clock()
        queued = 0
        for device in self.tracker.devices_due_for_refresh(now, self.config.info_scan_rate):
            with self._lock:
                if device.address in self._in_flight:
                    continue
                self._in_flight.add(device.address)

            self.tracker.mark_refreshed(device.address, now)
            if self._submit(self._info_scan, device):
                queued += 1
            else:
                with self._lock:
                    self._in_flight.discard(device.address)
        return queued

    def info_command(self, device: Device) -> tuple[str, list[str]]:
        """Command used to query a device: name for classic, leinfo for LE."""
        dev = self.config.bt_device
        if device.classic_mode or not device.le_mode:
            return 'hcitool', ['-i', dev, 'name', device.address]
        args = ['-i', dev, 'leinfo']
        if device.address_type == ADDRESS_TYPE_RANDOM:
            args.append('--random')
        args.append(device.address)
        return 'hcitool', args

    def _info_scan(self, device: Device) -> None:
        try:
            cmd, args = self.info_command(device)
            result = self.run_with_retry(cmd, args, HCITOOL_TIMEOUT)
            if result is None:
                self._count('info_scans_failed')
                if not self._stop_event.is_set():
                    self._log.warning(f"Info scan of {device.address} failed after {self._max_retries} retries")
                    self._send_event(
                        'info_scan_failed',
                        'Info scan failed',
                        f"{' '.join([cmd, *args])} failed after {self._max_retries} retries",
                        'WARN',
                    )
                return

            self._count('info_scans_ok')
            if device.classic_mode or not device.le_mode:
                record = parse_name_output(device.address, result.stdout)
            else:
                record = parse_leinfo_output(
                    device.address,
                    result.stdout,
                    random=device.address_type == ADDRESS_TYPE_RANDOM,
                )
            if not record.is_empty:
                self.tracker.observe(record, self._clock())
        except BtReconError as e:
            self._fail(e)
        finally:
            with self._lock:
                self._in_flight.discard(device.address)

    def run_with_retry(self, cmd: str, args: list[str], timeout: float) -> Optional[CommandResult]:
        """
        Run a command, retrying failures with exponential backoff.

        Returns:
            The successful result, or None once retries are exhausted or a
            stop was requested during backoff.
        """
        delay = ACTIVE_SCAN_BACKOFF_BASE
        for attempt in range(self._max_retries + 1):
            if self._stop_event.is_set():
                return None
            result = self._runner(cmd, args, timeout=timeout)
            if result.ok:
                return result
            if attempt == self._max_retries:
                break
            self._log.debug(
                f"{cmd} exited with {result.exit_code}, retrying in {delay:.0f}s "
                f"({attempt + 1}/{self._max_retries})"
            )
            if self._stop_event.wait(delay):
                return None
            delay = min(delay * 2, ACTIVE_SCAN_BACKOFF_MAX)
        return None

    def dispatch_discovery(self) -> bool:
        """Queue a discovery command unless one is already running."""
        with self._lock:
            if self._discovery_running:
                return False
            self._discovery_running = True
        if not self._submit(self._discover):
            with self._lock:
                self._discovery_running = False
            return False
        return True

    def _discover(self) -> None:
        try:
            args = ['--index', str(self.config.adapter_index), 'find']
            result = self._runner('btmgmt', args, timeout=BTMGMT_TIMEOUT)
            self._count('discoveries')
            if not result.ok:
                self._log.debug(f"btmgmt find exited with {result.exit_code}: {result.stderr.strip()}")
        finally:
            with self._lock:
                self._discovery_running = False
