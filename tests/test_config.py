"""Tests for configuration loading."""

from datetime import timedelta

import pytest

import config
from config import ScanConfig, normalize_info_scan_rate


class TestEnvHelpers:
    """Tests for environment parsing helpers."""

    def test_int_fallback(self, monkeypatch):
        monkeypatch.setenv('BTRECON_SWEEP_INTERVAL', 'soon')
        assert config._get_env_int('SWEEP_INTERVAL', 30) == 30

        monkeypatch.setenv('BTRECON_SWEEP_INTERVAL', '45')
        assert config._get_env_int('SWEEP_INTERVAL', 30) == 45

    def test_bool(self, monkeypatch):
        monkeypatch.setenv('BTRECON_AGGRESSIVE_RSSI', 'yes')
        assert config._get_env_bool('AGGRESSIVE_RSSI', False) is True

        monkeypatch.setenv('BTRECON_AGGRESSIVE_RSSI', '0')
        assert config._get_env_bool('AGGRESSIVE_RSSI', True) is False

        monkeypatch.delenv('BTRECON_AGGRESSIVE_RSSI')
        assert config._get_env_bool('AGGRESSIVE_RSSI', True) is True

    def test_list(self, monkeypatch):
        monkeypatch.setenv('BTRECON_IGNORE_MAC', 'aa:bb:cc:dd:ee:ff, ,11:22:33:44:55:66')
        assert config._get_env_list('IGNORE_MAC') == ['aa:bb:cc:dd:ee:ff', '11:22:33:44:55:66']


class TestScanConfig:
    """Tests for ScanConfig."""

    @pytest.mark.parametrize('rate,expected', [
        (240, 240),
        (-60, 60),
        (10, 45),
        (0, 0),
    ])
    def test_info_scan_rate_normalized(self, rate, expected):
        assert normalize_info_scan_rate(rate) == expected
        assert ScanConfig.build(info_scan_rate=rate).info_scan_rate == expected

    def test_filter_lists_normalized(self):
        cfg = ScanConfig.build(
            inc_filter_mac=['aa:bb:cc:dd:ee:ff'],
            ignore_mac=[' 11:22:33:44:55:66 '],
            exc_filter_prox=['2F234454-CF6D-4A0F-ADF2-F4911BA9FFA6-1'],
        )

        assert cfg.inc_filter_mac == frozenset({'AA:BB:CC:DD:EE:FF'})
        assert cfg.ignore_mac == frozenset({'11:22:33:44:55:66'})
        assert cfg.exc_filter_prox == frozenset({'2f234454-cf6d-4a0f-adf2-f4911ba9ffa6-1'})

    def test_default_thresholds(self):
        cfg = ScanConfig.build()

        assert cfg.info_scan_enabled
        assert cfg.offline_after == timedelta(minutes=12)
        assert cfg.old_after == timedelta(hours=24)

    def test_thresholds_when_info_scan_disabled(self):
        cfg = ScanConfig.build(info_scan_rate=0)

        assert not cfg.info_scan_enabled
        assert cfg.base_interval == 240
        assert cfg.offline_after == timedelta(minutes=12)

    def test_empty_replay_file_is_none(self):
        assert ScanConfig.build(replay_file='').replay_file is None

    @pytest.mark.parametrize('device,index', [('hci0', 0), ('hci1', 1), ('usb', 0)])
    def test_adapter_index(self, device, index):
        assert ScanConfig.build(bt_device=device).adapter_index == index

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setattr(config, 'BT_DEVICE', 'hci2')
        monkeypatch.setattr(config, 'INFO_SCAN_RATE', 20)

        cfg = ScanConfig.from_env(discovery_interval=0)

        assert cfg.bt_device == 'hci2'
        assert cfg.info_scan_rate == 45
        assert cfg.discovery_interval == 0

    def test_frozen(self):
        cfg = ScanConfig.build()
        with pytest.raises(AttributeError):
            cfg.bt_device = 'hci9'
