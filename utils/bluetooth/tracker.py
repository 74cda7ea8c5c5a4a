"""
Device tracker for parsed Bluetooth records.

Maintains the per-address catalog: filtering, monotonic merge, range
estimation, the status state machine and write-through persistence.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from .constants import (
    MAX_INFO_SCANS_PER_CYCLE,
    STATUS_NEW,
    STATUS_OFFLINE,
    STATUS_OLD,
    STATUS_ONLINE,
)
from .distance import DistanceEstimator
from .models import AttributeRecord, Device, StatusChange, merge_record

if TYPE_CHECKING:
    from config import ScanConfig

logger = logging.getLogger('btrecon.tracker')


class DeviceTracker:
    """
    Folds attribute records into the device catalog.

    The catalog lock guards the address map and counters; a per-address lock
    serializes observe() and the sweep for the same device. Store and
    telemetry collaborators are optional so the tracker can run detached.
    """

    def __init__(
        self,
        config: ScanConfig,
        store: Any = None,
        telemetry: Any = None,
        local_address: Optional[str] = None,
        estimator: Optional[DistanceEstimator] = None,
        rssi_log: Optional[logging.Logger] = None,
        log: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._store = store
        self._telemetry = telemetry
        self._local_address = local_address.upper() if local_address else None
        self._estimator = estimator or DistanceEstimator()
        self._rssi_log = rssi_log
        self._log = log or logger

        self._devices: dict[str, Device] = {}
        self._lock = threading.Lock()
        self._address_locks: dict[str, threading.Lock] = {}

        self._stats = {
            'observed': 0,
            'filtered': 0,
            'created': 0,
            'status_changes': 0,
            'sweeps': 0,
        }

    @property
    def local_address(self) -> Optional[str]:
        return self._local_address

    @local_address.setter
    def local_address(self, value: Optional[str]) -> None:
        self._local_address = value.upper() if value else None

    @property
    def stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
            stats['devices'] = len(self._devices)
        return stats

    @property
    def device_count(self) -> int:
        """Number of tracked devices."""
        with self._lock:
            return len(self._devices)

    def _address_lock(self, address: str) -> threading.Lock:
        with self._lock:
            lock = self._address_locks.get(address)
            if lock is None:
                lock = self._address_locks[address] = threading.Lock()
            return lock

    def _count(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._stats[key] += amount

    # =========================================================================
    # FILTERING
    # =========================================================================

    def accepts(self, record: AttributeRecord, device: Optional[Device] = None) -> bool:
        """
        Decide whether a record may touch the catalog.

        When any inclusive list is configured, the record must match one of
        them (by address, or by proximity identifier prefix). Exclusive lists
        and the ignore list always win.
        """
        config = self._config
        address = record.address
        if address is None:
            return False

        if address == self._local_address or address in config.ignore_mac:
            return False

        proximity_id = record.proximity_id or (device.proximity_id if device else None)

        if config.inc_filter_mac or config.inc_filter_prox:
            included = address in config.inc_filter_mac or _prefix_match(
                proximity_id, config.inc_filter_prox
            )
            if not included:
                return False

        if address in config.exc_filter_mac:
            return False
        if _prefix_match(proximity_id, config.exc_filter_prox):
            return False

        return True

    # =========================================================================
    # OBSERVE
    # =========================================================================

    def observe(self, record: AttributeRecord, observed_at: Optional[datetime] = None) -> Optional[str]:
        """
        Merge one record into the catalog.

        Args:
            record: Parsed attributes; an empty record is a no-op.
            observed_at: Observation time (defaults to now).

        Returns:
            Address of the affected device, or None when nothing changed.
        """
        if record.address is None:
            return None

        observed_at = observed_at or datetime.now()
        address = record.address

        with self._lock:
            existing = self._devices.get(address)
        if not self.accepts(record, existing):
            self._count('filtered')
            self._log.debug(f"Filtered record for {address}")
            return None

        with self._address_lock(address):
            with self._lock:
                device = self._devices.get(address)
                created = device is None
                if created:
                    device = Device(address=address, first_seen=observed_at, last_seen=observed_at)
                    self._devices[address] = device
                    self._stats['created'] += 1
                self._stats['observed'] += 1

            newer = observed_at >= device.last_seen
            merge_record(device, record, observed_at)

            # Range follows the same rule as last_rssi: older sightings only fill a gap
            if (
                record.rssi is not None
                and record.tx_power is not None
                and (newer or device.range_m is None)
            ):
                distance = self._estimator.estimate_distance(record.rssi, record.tx_power)
                device.range_m = distance
                device.range_band = str(self._estimator.classify_proximity_band(distance))

            self._persist(device)

        if created:
            self._log.info(f"New device {address} ({device.vendor or 'Unknown'})")

        if self._rssi_log is not None and record.rssi is not None:
            self._rssi_log.info(f"{int(observed_at.timestamp())} {address} {record.rssi}")

        if self._config.aggressive_rssi and record.rssi is not None and self._telemetry is not None:
            self._telemetry.publish_rssi(address, record.rssi, observed_at)

        return address

    def _persist(self, device: Device) -> None:
        if self._store is not None:
            self._store.upsert(device)

    # =========================================================================
    # STATUS SWEEP
    # =========================================================================

    def _next_status(self, device: Device, now: datetime) -> str:
        age = now - device.last_seen
        if age > self._config.old_after:
            return STATUS_OLD
        if age > self._config.offline_after:
            return STATUS_OFFLINE
        if device.fresh:
            return STATUS_ONLINE
        return device.status

    def sweep(self, now: Optional[datetime] = None) -> list[StatusChange]:
        """
        Re-evaluate the status of every device.

        Returns the transitions made; running it again over an unchanged
        catalog returns nothing.
        """
        now = now or datetime.now()
        changes: list[tuple[StatusChange, Device]] = []

        with self._lock:
            devices = list(self._devices.values())

        for device in devices:
            with self._address_lock(device.address):
                previous = device.status
                current = self._next_status(device, now)
                device.fresh = False
                if current == previous:
                    continue
                device.status = current
                self._persist(device)
                changes.append((
                    StatusChange(address=device.address, previous=previous, current=current, at=now),
                    self._snapshot(device),
                ))

        with self._lock:
            self._stats['sweeps'] += 1
            self._stats['status_changes'] += len(changes)

        for change, snapshot in changes:
            self._log.debug(f"{change.address}: {change.previous} -> {change.current}")
            if self._telemetry is not None:
                self._telemetry.publish_status(change, snapshot)

        return [change for change, _ in changes]

    # =========================================================================
    # CATALOG
    # =========================================================================

    def load(self) -> int:
        """
        Populate the catalog from the store.

        Returns:
            Number of devices loaded.
        """
        if self._store is None:
            return 0

        loaded = self._store.all()
        with self._lock:
            for device in loaded:
                device.ignored = device.address in self._config.ignore_mac
                self._devices[device.address] = device

        self._log.info(f"Loaded {len(loaded)} devices from catalog")
        return len(loaded)

    @staticmethod
    def _snapshot(device: Device) -> Device:
        return dataclasses.replace(device, service_uuids=set(device.service_uuids))

    def get_device(self, address: str) -> Optional[Device]:
        """Get a copy of a device by address."""
        with self._lock:
            device = self._devices.get(address.upper())
            return self._snapshot(device) if device else None

    def get_all_devices(self, status: Optional[str] = None) -> list[Device]:
        """Get copies of all tracked devices, optionally by status."""
        with self._lock:
            return [
                self._snapshot(device) for device in self._devices.values()
                if status is None or device.status == status
            ]

    def devices_due_for_refresh(
        self,
        now: datetime,
        rate: int,
        limit: int = MAX_INFO_SCANS_PER_CYCLE,
    ) -> list[Device]:
        """
        Devices that should get an active info scan.

        Candidates are not old, not ignored, lack a name or services and
        were not scanned within the last ``rate`` seconds. Most recently
        seen first.
        """
        cutoff = now - timedelta(seconds=rate)
        with self._lock:
            candidates = [
                self._snapshot(device) for device in self._devices.values()
                if device.status != STATUS_OLD
                and not device.ignored
                and (device.last_info_scan is None or device.last_info_scan < cutoff)
                and (not device.name or not device.service_uuids)
            ]
        candidates.sort(key=lambda d: d.last_seen, reverse=True)
        return candidates[:limit]

    def mark_refreshed(self, address: str, now: datetime) -> None:
        """Record the time of an active info scan."""
        with self._lock:
            device = self._devices.get(address)
        if device is None:
            return
        with self._address_lock(address):
            device.last_info_scan = now
            self._persist(device)

    def status_counts(self) -> dict[str, int]:
        counts = {STATUS_NEW: 0, STATUS_ONLINE: 0, STATUS_OFFLINE: 0, STATUS_OLD: 0}
        with self._lock:
            for device in self._devices.values():
                counts[device.status] = counts.get(device.status, 0) + 1
        return counts


def _prefix_match(value: Optional[str], prefixes: frozenset[str]) -> bool:
    if not value or not prefixes:
        return False
    return any(value.startswith(prefix) for prefix in prefixes)
