"""
SQLite persistence for btrecon.

Holds the device catalog, key/value settings and the sync version. A single
connection is shared between threads and every use is serialized through
get_db(). Any sqlite error surfaces as StoreUnavailableError.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

import config
from utils.bluetooth.exceptions import StoreUnavailableError
from utils.bluetooth.models import Device
from utils.logging import get_logger

logger = get_logger('btrecon.database')

DB_PATH = Path(config.DB_PATH)
DB_DIR = DB_PATH.parent

# sqlite path for a catalog that lives only as long as the process
MEMORY_DB = ':memory:'

_db_lock = threading.RLock()
_connection: Optional[sqlite3.Connection] = None


def _get_connection() -> sqlite3.Connection:
    global _connection
    if _connection is None:
        if not is_memory_db():
            DB_DIR.mkdir(parents=True, exist_ok=True)
        _connection = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        _connection.row_factory = sqlite3.Row
    return _connection


def is_memory_db() -> bool:
    return str(DB_PATH) == MEMORY_DB


def use_database(path: str) -> None:
    """Point the module at another database file, or MEMORY_DB."""
    global DB_PATH, DB_DIR
    close_db()
    DB_PATH = Path(path)
    DB_DIR = DB_PATH.parent


@contextmanager
def get_db() -> Iterator[sqlite3.Connection]:
    """Yield the shared connection, committing on success."""
    with _db_lock:
        try:
            conn = _get_connection()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open {DB_PATH}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailableError(f"Catalog store error: {e}") from e
        except Exception:
            conn.rollback()
            raise


def init_db() -> None:
    """Create tables and verify the database is usable."""
    with get_db() as conn:
        result = conn.execute('PRAGMA integrity_check').fetchone()
        if result is None or result[0] != 'ok':
            raise StoreUnavailableError(f"{DB_PATH} failed integrity check")

        conn.execute('PRAGMA synchronous = OFF')
        conn.execute('PRAGMA journal_mode = MEMORY')

        conn.execute('''
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        conn.execute('''
            CREATE TABLE IF NOT EXISTS sync_version (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        conn.execute('''
            CREATE TABLE IF NOT EXISTS bt_devices (
                address TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                address_type TEXT,
                classic_address TEXT,
                le_address TEXT,
                name TEXT,
                vendor TEXT,
                company TEXT,
                classic_mode BOOLEAN DEFAULT 0,
                le_mode BOOLEAN DEFAULT 0,
                class_of_device INTEGER,
                service_uuids TEXT DEFAULT '[]',
                proximity_uuid TEXT,
                major INTEGER,
                minor INTEGER,
                last_rssi INTEGER,
                last_tx_power INTEGER,
                range_m REAL,
                range_band TEXT,
                ignored BOOLEAN DEFAULT 0,
                first_seen TIMESTAMP NOT NULL,
                last_seen TIMESTAMP NOT NULL,
                last_info_scan TIMESTAMP
            )
        ''')

        conn.execute('''
            CREATE INDEX IF NOT EXISTS idx_bt_devices_status
            ON bt_devices(status)
        ''')

    logger.info(f"Database initialized at {DB_PATH}")


def close_db() -> None:
    """Close the shared connection."""
    global _connection
    with _db_lock:
        if _connection is not None:
            _connection.close()
            _connection = None


# =============================================================================
# SETTINGS
# =============================================================================


def get_setting(key: str, default: Any = None) -> Any:
    """Get a setting value, decoded to its stored type."""
    with get_db() as conn:
        row = conn.execute('SELECT value FROM settings WHERE key = ?', (key,)).fetchone()
    if row is None:
        return default
    try:
        return json.loads(row['value'])
    except ValueError:
        return row['value']


def set_setting(key: str, value: Any) -> None:
    """Store a setting value (any JSON-serializable type)."""
    with get_db() as conn:
        conn.execute('''
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        ''', (key, json.dumps(value)))


def delete_setting(key: str) -> bool:
    """Delete a setting. Returns True if it existed."""
    with get_db() as conn:
        cursor = conn.execute('DELETE FROM settings WHERE key = ?', (key,))
        return cursor.rowcount > 0


def get_all_settings() -> dict[str, Any]:
    """Get all settings as a dict."""
    with get_db() as conn:
        rows = conn.execute('SELECT key, value FROM settings').fetchall()
    return {row['key']: json.loads(row['value']) for row in rows}


# =============================================================================
# SYNC VERSION
# =============================================================================


def get_sync_version() -> int:
    """Current sync generation (0 before the first bump)."""
    with get_db() as conn:
        row = conn.execute('SELECT version FROM sync_version WHERE id = 1').fetchone()
    return row['version'] if row else 0


def bump_sync_version() -> int:
    """Advance the sync generation; called once per process start."""
    with get_db() as conn:
        conn.execute('''
            INSERT INTO sync_version (id, version, updated_at)
            VALUES (1, 1, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET version = version + 1, updated_at = CURRENT_TIMESTAMP
        ''')
        row = conn.execute('SELECT version FROM sync_version WHERE id = 1').fetchone()
    return row['version']


# =============================================================================
# DEVICE CATALOG
# =============================================================================

_DEVICE_COLUMNS = (
    'address', 'status', 'address_type', 'classic_address', 'le_address',
    'name', 'vendor', 'company', 'classic_mode', 'le_mode', 'class_of_device',
    'service_uuids', 'proximity_uuid', 'major', 'minor', 'last_rssi',
    'last_tx_power', 'range_m', 'range_band', 'ignored', 'first_seen',
    'last_seen', 'last_info_scan',
)


def _to_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def device_to_row(device: Device) -> tuple:
    return (
        device.address,
        device.status,
        device.address_type,
        device.classic_address,
        device.le_address,
        device.name,
        device.vendor,
        device.company,
        int(device.classic_mode),
        int(device.le_mode),
        device.class_of_device,
        json.dumps(sorted(device.service_uuids)),
        device.proximity_uuid,
        device.major,
        device.minor,
        device.last_rssi,
        device.last_tx_power,
        device.range_m,
        device.range_band,
        int(device.ignored),
        _to_timestamp(device.first_seen),
        _to_timestamp(device.last_seen),
        _to_timestamp(device.last_info_scan),
    )


def row_to_device(row: sqlite3.Row) -> Device:
    return Device(
        address=row['address'],
        first_seen=_from_timestamp(row['first_seen']),
        last_seen=_from_timestamp(row['last_seen']),
        status=row['status'],
        address_type=row['address_type'],
        classic_address=row['classic_address'],
        le_address=row['le_address'],
        name=row['name'],
        vendor=row['vendor'],
        company=row['company'],
        classic_mode=bool(row['classic_mode']),
        le_mode=bool(row['le_mode']),
        class_of_device=row['class_of_device'],
        service_uuids=set(json.loads(row['service_uuids'] or '[]')),
        proximity_uuid=row['proximity_uuid'],
        major=row['major'],
        minor=row['minor'],
        last_rssi=row['last_rssi'],
        last_tx_power=row['last_tx_power'],
        range_m=row['range_m'],
        range_band=row['range_band'],
        ignored=bool(row['ignored']),
        fresh=False,
        last_info_scan=_from_timestamp(row['last_info_scan']),
    )


class CatalogStore:
    """Upsert-by-address storage for catalog devices."""

    def upsert(self, device: Device) -> None:
        placeholders = ', '.join('?' for _ in _DEVICE_COLUMNS)
        updates = ', '.join(f'{col} = excluded.{col}' for col in _DEVICE_COLUMNS[1:])
        with get_db() as conn:
            conn.execute(
                f'INSERT INTO bt_devices ({", ".join(_DEVICE_COLUMNS)}) VALUES ({placeholders}) '
                f'ON CONFLICT(address) DO UPDATE SET {updates}',
                device_to_row(device),
            )

    def get(self, address: str) -> Optional[Device]:
        with get_db() as conn:
            row = conn.execute('SELECT * FROM bt_devices WHERE address = ?', (address,)).fetchone()
        return row_to_device(row) if row else None

    def all(self) -> list[Device]:
        with get_db() as conn:
            rows = conn.execute('SELECT * FROM bt_devices ORDER BY address').fetchall()
        return [row_to_device(row) for row in rows]

    def count(self) -> int:
        with get_db() as conn:
            row = conn.execute('SELECT COUNT(*) AS n FROM bt_devices').fetchone()
        return row['n']
