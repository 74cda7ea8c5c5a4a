"""
Read-only device catalog API.

Serves the tracker's catalog and pipeline counters as JSON.
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import Blueprint, Response, jsonify, request

from utils.bluetooth import (
    STATUS_NEW,
    STATUS_OFFLINE,
    STATUS_OLD,
    STATUS_ONLINE,
    StoreUnavailableError,
    normalize_address,
)
from utils.bluetooth.scheduler import ScanScheduler
from utils.database import get_sync_version

logger = logging.getLogger('btrecon.api')

devices_bp = Blueprint('devices', __name__, url_prefix='/api')

VALID_STATUSES = (STATUS_NEW, STATUS_ONLINE, STATUS_OFFLINE, STATUS_OLD)

_scheduler: Optional[ScanScheduler] = None


def set_scheduler(scheduler: Optional[ScanScheduler]) -> None:
    global _scheduler
    _scheduler = scheduler


def get_scheduler() -> Optional[ScanScheduler]:
    return _scheduler


def _unavailable() -> tuple[Response, int]:
    return jsonify({'error': 'Scanner not running'}), 503


@devices_bp.route('/devices', methods=['GET'])
def list_devices():
    """
    List catalog devices.

    Query parameters:
        - status: Only devices in this status ('new', 'online', 'offline', 'old')

    Returns:
        JSON array of devices, most recently seen first.
    """
    scheduler = get_scheduler()
    if scheduler is None:
        return _unavailable()

    status = request.args.get('status')
    if status is not None and status not in VALID_STATUSES:
        return jsonify({'error': f'Invalid status. Must be one of: {VALID_STATUSES}'}), 400

    devices = scheduler.tracker.get_all_devices(status=status)
    devices.sort(key=lambda d: d.last_seen, reverse=True)
    return jsonify([device.to_dict() for device in devices])


@devices_bp.route('/devices/<address>', methods=['GET'])
def get_device(address: str):
    """Get a single device by hardware address."""
    scheduler = get_scheduler()
    if scheduler is None:
        return _unavailable()

    canonical = normalize_address(address)
    if canonical is None:
        return jsonify({'error': 'Invalid address'}), 400

    device = scheduler.tracker.get_device(canonical)
    if not device:
        return jsonify({'error': 'Device not found'}), 404

    return jsonify(device.to_dict())


@devices_bp.route('/stats', methods=['GET'])
def get_stats():
    """Pipeline counters, status breakdown and sync version."""
    scheduler = get_scheduler()
    if scheduler is None:
        return _unavailable()

    try:
        sync_version = get_sync_version()
    except StoreUnavailableError as e:
        logger.warning(f"Sync version unavailable: {e}")
        sync_version = None

    return jsonify({
        'chunker': scheduler.chunker.stats,
        'tracker': scheduler.tracker.stats,
        'scheduler': scheduler.stats,
        'statuses': scheduler.tracker.status_counts(),
        'sync_version': sync_version,
    })
