"""Unit tests for the monitor subprocess backend."""

import gzip
import io
import subprocess
import time

import pytest
from unittest.mock import MagicMock

from utils.bluetooth.monitor import MonitorProcess, MonitorState, RestartPolicy

from conftest import INQUIRY_EVENT, lines_of


def wait_for_exit(monitor, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not monitor.has_exited and time.monotonic() < deadline:
        time.sleep(0.01)
    assert monitor.has_exited


@pytest.fixture
def replay_file(tmp_path):
    path = tmp_path / 'capture.log'
    path.write_text(INQUIRY_EVENT)
    return path


class TestReplay:
    """Tests for replay-file sources."""

    def test_replay_plain_file(self, replay_file):
        monitor = MonitorProcess(replay_file=str(replay_file))
        assert monitor.is_available()
        assert monitor.start()

        wait_for_exit(monitor)
        lines = monitor.drain()

        assert [line.text for line in lines] == INQUIRY_EVENT.splitlines()
        assert [line.seq for line in lines] == list(range(1, len(lines) + 1))
        assert monitor.state == MonitorState.EXITED_CLEAN
        assert monitor.exit_code == 0

    def test_replay_gzip_file(self, tmp_path):
        path = tmp_path / 'capture.log.gz'
        with gzip.open(path, 'wt', encoding='utf-8') as f:
            f.write(INQUIRY_EVENT)

        monitor = MonitorProcess(replay_file=str(path))
        monitor.start()
        wait_for_exit(monitor)

        texts = [line.text for line in monitor.drain() if line.text.strip()]
        assert texts == lines_of(INQUIRY_EVENT)

    def test_missing_replay_file(self, tmp_path):
        monitor = MonitorProcess(replay_file=str(tmp_path / 'missing.log'))

        assert not monitor.is_available()
        assert monitor.start() is False
        assert monitor.state == MonitorState.EXITED_ERROR
        assert monitor.exit_code == 127

    def test_drain_limit(self, replay_file):
        monitor = MonitorProcess(replay_file=str(replay_file))
        monitor.start()
        wait_for_exit(monitor)

        assert len(monitor.drain(max_lines=3)) == 3
        assert len(monitor.drain()) == len(INQUIRY_EVENT.splitlines()) - 3
        assert monitor.wait_for_lines(timeout=0.01) == []

    def test_small_queue_delivers_every_line(self, replay_file):
        monitor = MonitorProcess(replay_file=str(replay_file), queue_size=2)
        monitor.start()

        lines = []
        deadline = time.monotonic() + 5.0
        while not monitor.has_exited and time.monotonic() < deadline:
            lines.extend(monitor.wait_for_lines(timeout=0.05))
        lines.extend(monitor.drain())

        assert [line.text for line in lines] == INQUIRY_EVENT.splitlines()
        assert [line.seq for line in lines] == list(range(1, len(lines) + 1))

    def test_stop_with_full_queue(self, replay_file):
        monitor = MonitorProcess(replay_file=str(replay_file), queue_size=1)
        monitor.start()

        deadline = time.monotonic() + 5.0
        while monitor._lines.qsize() < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        monitor.stop()

        assert monitor.has_exited
        assert len(monitor.drain()) == 1

    def test_raw_log_receives_lines(self, replay_file):
        raw_log = MagicMock()
        monitor = MonitorProcess(replay_file=str(replay_file), raw_log=raw_log)
        monitor.start()
        wait_for_exit(monitor)

        assert [c.args[0] for c in raw_log.info.call_args_list] == INQUIRY_EVENT.splitlines()


class TestLiveProcess:
    """Tests for the btmon subprocess."""

    def test_build_command(self):
        monitor = MonitorProcess(bt_device='hci1')
        assert monitor.build_command() == ['btmon', '-T', '-i', 'hci1']

    def test_lines_then_error_exit(self):
        process = MagicMock()
        process.stdout = io.StringIO('= Note: Linux version 6.1.0\n> HCI Event: Inquiry Result (0x02) plen 15\n')
        process.wait.return_value = 1
        popen = MagicMock(return_value=process)

        monitor = MonitorProcess(bt_device='hci0', popen=popen)
        assert monitor.start()
        wait_for_exit(monitor)

        assert popen.call_args[0][0] == ['btmon', '-T', '-i', 'hci0']
        assert len(monitor.drain()) == 2
        assert monitor.state == MonitorState.EXITED_ERROR
        assert monitor.exit_code == 1
        assert monitor.starts == 1

    def test_missing_binary(self):
        popen = MagicMock(side_effect=FileNotFoundError('btmon'))
        monitor = MonitorProcess(popen=popen)

        assert monitor.start() is False
        assert monitor.state == MonitorState.EXITED_ERROR
        assert monitor.exit_code == 127

    def test_stop_kills_after_grace_period(self):
        process = MagicMock()
        process.wait.side_effect = [subprocess.TimeoutExpired('btmon', 0.1), 0]
        monitor = MonitorProcess(grace_period=0.1)
        monitor._process = process

        monitor.stop()

        process.terminate.assert_called_once()
        process.kill.assert_called_once()
        assert monitor.has_exited


class TestRestartPolicy:
    """Tests for RestartPolicy."""

    def test_single_restart_then_fatal(self):
        now = [100.0]
        policy = RestartPolicy(clock=lambda: now[0])

        assert policy.record_failure() is True
        now[0] += 30
        assert policy.record_failure() is False

    def test_failures_outside_window_forgotten(self):
        now = [100.0]
        policy = RestartPolicy(window=60.0, clock=lambda: now[0])

        assert policy.record_failure() is True
        now[0] += 61
        assert policy.recent_failures == 0
        assert policy.record_failure() is True

    def test_reset(self):
        policy = RestartPolicy()
        policy.record_failure()
        policy.reset()
        assert policy.record_failure() is True
