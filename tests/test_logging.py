"""Tests for the logging helpers and data logs."""

import logging

import pytest

from utils.logging import (
    CHUNK_LOGGER,
    close_file_loggers,
    get_chunk_logger,
    get_logger,
    get_raw_logger,
    get_rssi_logger,
)


@pytest.fixture(autouse=True)
def release_files():
    yield
    close_file_loggers()


def test_get_logger_namespaces():
    assert get_logger('tracker').name == 'btrecon.tracker'
    assert get_logger('btrecon.mqtt').name == 'btrecon.mqtt'
    assert get_logger('btrecon').name == 'btrecon'


class TestDataLogs:
    """Tests for the RSSI, raw monitor and chunk log files."""

    def test_disabled_without_path(self):
        assert get_rssi_logger(None) is None
        assert get_raw_logger('') is None
        assert get_chunk_logger(False) is None

    def test_rssi_log_writes_bare_lines(self, tmp_path):
        path = tmp_path / 'rssi.log'
        rssi_log = get_rssi_logger(str(path))

        rssi_log.info('1704110400 00:25:00:AA:BB:CC -60')
        close_file_loggers()

        assert path.read_text() == '1704110400 00:25:00:AA:BB:CC -60\n'
        assert rssi_log.propagate is False

    def test_raw_log_reopened_on_new_path(self, tmp_path):
        first, second = tmp_path / 'first.log', tmp_path / 'second.log'
        get_raw_logger(str(first)).info('> HCI Event: Inquiry Complete (0x01) plen 1')
        raw_log = get_raw_logger(str(second))
        raw_log.info('        Status: Success (0x00)')
        close_file_loggers()

        assert len(raw_log.handlers) == 0
        assert first.read_text() == '> HCI Event: Inquiry Complete (0x01) plen 1\n'
        assert second.read_text() == '        Status: Success (0x00)\n'

    def test_chunk_log_file_only(self, tmp_path):
        path = tmp_path / 'btmon.log'
        chunk_log = get_chunk_logger(False, str(path))

        chunk_log.debug('> HCI Event: Inquiry Complete (0x01) plen 1')
        close_file_loggers()

        assert chunk_log.name == CHUNK_LOGGER
        assert chunk_log.propagate is False
        assert chunk_log.level == logging.DEBUG
        assert path.read_text().startswith('> HCI Event')
