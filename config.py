"""
Configuration for btrecon.

Module-level values are read from BTRECON_* environment variables with
defaults; invalid values fall back to the default. ScanConfig is the
immutable value handed to every pipeline component at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional

from utils.bluetooth.constants import (
    DEFAULT_DISCOVERY_INTERVAL,
    DEFAULT_INFO_SCAN_RATE,
    DEFAULT_SWEEP_INTERVAL,
    MIN_INFO_SCAN_RATE,
    OFFLINE_INTERVAL_MULTIPLIER,
    OLD_INTERVAL_MULTIPLIER,
)

ENV_PREFIX = 'BTRECON_'


def _get_env(name: str, default: str) -> str:
    return os.environ.get(f'{ENV_PREFIX}{name}', default)


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(_get_env(name, str(default)))
    except ValueError:
        return default


def _get_env_bool(name: str, default: bool) -> bool:
    value = _get_env(name, '').strip().lower()
    if not value:
        return default
    return value in ('1', 'true', 'yes', 'on')


def _get_env_list(name: str) -> list[str]:
    value = _get_env(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


# Adapter and monitor
BT_DEVICE = _get_env('BT_DEVICE', 'hci0')
REPLAY_FILE = _get_env('REPLAY_FILE', '')

# Scheduling
INFO_SCAN_RATE = _get_env_int('INFO_SCAN_RATE', DEFAULT_INFO_SCAN_RATE)
SWEEP_INTERVAL = _get_env_int('SWEEP_INTERVAL', DEFAULT_SWEEP_INTERVAL)
DISCOVERY_INTERVAL = _get_env_int('DISCOVERY_INTERVAL', DEFAULT_DISCOVERY_INTERVAL)
AGGRESSIVE_RSSI = _get_env_bool('AGGRESSIVE_RSSI', False)

# Filters
INC_FILTER_MAC = _get_env_list('INC_FILTER_MAC')
INC_FILTER_PROX = _get_env_list('INC_FILTER_PROX')
EXC_FILTER_MAC = _get_env_list('EXC_FILTER_MAC')
EXC_FILTER_PROX = _get_env_list('EXC_FILTER_PROX')
IGNORE_MAC = _get_env_list('IGNORE_MAC')

# Diagnostics
LOG_LEVEL = _get_env('LOG_LEVEL', 'INFO').upper()
LOG_FILE = _get_env('LOG_FILE', '')
CHUNKER_DEBUG = _get_env_bool('CHUNKER_DEBUG', False)

# Data logs (unset disables): RSSI samples, used and raw monitor output
RSSI_LOG = _get_env('RSSI_LOG', '')
BTMON_LOG = _get_env('BTMON_LOG', '')
BTMON_RAWLOG = _get_env('BTMON_RAWLOG', '')

# Storage
DB_PATH = _get_env('DB_PATH', 'btrecon.db')
NO_DB = _get_env_bool('NO_DB', False)

# Read API (0 disables)
API_HOST = _get_env('API_HOST', '127.0.0.1')
API_PORT = _get_env_int('API_PORT', 0)


def _upper_set(values: Iterable[str]) -> frozenset[str]:
    return frozenset(value.strip().upper() for value in values if value.strip())


def _lower_set(values: Iterable[str]) -> frozenset[str]:
    return frozenset(value.strip().lower() for value in values if value.strip())


def normalize_info_scan_rate(rate: int) -> int:
    """Negative rates become positive, non-zero rates below the minimum are raised."""
    rate = abs(int(rate))
    if 0 < rate < MIN_INFO_SCAN_RATE:
        return MIN_INFO_SCAN_RATE
    return rate


@dataclass(frozen=True)
class ScanConfig:
    """Read-only runtime configuration."""
    bt_device: str = 'hci0'
    info_scan_rate: int = DEFAULT_INFO_SCAN_RATE
    sweep_interval: int = DEFAULT_SWEEP_INTERVAL
    discovery_interval: int = DEFAULT_DISCOVERY_INTERVAL
    aggressive_rssi: bool = False
    inc_filter_mac: frozenset[str] = frozenset()
    inc_filter_prox: frozenset[str] = frozenset()
    exc_filter_mac: frozenset[str] = frozenset()
    exc_filter_prox: frozenset[str] = frozenset()
    ignore_mac: frozenset[str] = frozenset()
    chunker_debug: bool = False
    replay_file: Optional[str] = None

    @classmethod
    def build(cls, **values) -> 'ScanConfig':
        """Create a config, normalizing rates and filter lists."""
        if 'info_scan_rate' in values:
            values['info_scan_rate'] = normalize_info_scan_rate(values['info_scan_rate'])
        for key in ('inc_filter_mac', 'exc_filter_mac', 'ignore_mac'):
            if key in values:
                values[key] = _upper_set(values[key])
        for key in ('inc_filter_prox', 'exc_filter_prox'):
            if key in values:
                values[key] = _lower_set(values[key])
        if not values.get('replay_file'):
            values['replay_file'] = None
        return cls(**values)

    @classmethod
    def from_env(cls, **overrides) -> 'ScanConfig':
        """Create a config from the module-level environment values."""
        values = {
            'bt_device': BT_DEVICE,
            'info_scan_rate': INFO_SCAN_RATE,
            'sweep_interval': SWEEP_INTERVAL,
            'discovery_interval': DISCOVERY_INTERVAL,
            'aggressive_rssi': AGGRESSIVE_RSSI,
            'inc_filter_mac': INC_FILTER_MAC,
            'inc_filter_prox': INC_FILTER_PROX,
            'exc_filter_mac': EXC_FILTER_MAC,
            'exc_filter_prox': EXC_FILTER_PROX,
            'ignore_mac': IGNORE_MAC,
            'chunker_debug': CHUNKER_DEBUG,
            'replay_file': REPLAY_FILE,
        }
        values.update(overrides)
        return cls.build(**values)

    @property
    def info_scan_enabled(self) -> bool:
        return self.info_scan_rate > 0

    @property
    def base_interval(self) -> int:
        """Interval the status thresholds are derived from (seconds)."""
        return self.info_scan_rate or DEFAULT_INFO_SCAN_RATE

    @property
    def offline_after(self) -> timedelta:
        return timedelta(seconds=self.base_interval * OFFLINE_INTERVAL_MULTIPLIER)

    @property
    def old_after(self) -> timedelta:
        return timedelta(seconds=self.base_interval * OLD_INTERVAL_MULTIPLIER)

    @property
    def adapter_index(self) -> int:
        """Numeric index of the adapter (hci1 -> 1)."""
        digits = ''.join(c for c in self.bt_device if c.isdigit())
        return int(digits) if digits else 0
