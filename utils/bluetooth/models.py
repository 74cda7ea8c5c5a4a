"""
Data models for the Bluetooth monitor pipeline.

RawLine and Chunk carry monitor output through the chunker, AttributeRecord
is what the parser extracts from one chunk, and Device is the catalog entry
the tracker maintains per address.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .constants import (
    PROXIMITY_UNKNOWN,
    STATUS_NEW,
)


@dataclass(frozen=True)
class RawLine:
    """One line of monitor output."""
    seq: int
    text: str
    received_at: datetime


@dataclass
class Chunk:
    """Ordered lines belonging to one logical protocol event."""
    kind: str
    lines: list[RawLine] = field(default_factory=list)
    complete: bool = True

    @property
    def header(self) -> str:
        return self.lines[0].text if self.lines else ''

    @property
    def text_lines(self) -> list[str]:
        return [line.text for line in self.lines]

    @property
    def received_at(self) -> Optional[datetime]:
        """Arrival time of the header line."""
        return self.lines[0].received_at if self.lines else None

    def __len__(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class AttributeRecord:
    """
    Normalized device attributes extracted from a single chunk.

    Every field is optional. A record with no address carries nothing the
    tracker can act on.
    """
    address: Optional[str] = None
    address_type: Optional[str] = None
    name: Optional[str] = None
    vendor: Optional[str] = None
    company: Optional[str] = None
    classic: bool = False
    le: bool = False
    class_of_device: Optional[int] = None
    service_uuids: frozenset[str] = frozenset()
    rssi: Optional[int] = None
    tx_power: Optional[int] = None
    proximity_uuid: Optional[str] = None
    major: Optional[int] = None
    minor: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_RECORD

    @property
    def proximity_id(self) -> Optional[str]:
        """iBeacon identity as ``uuid-major-minor`` (lowercase), if advertised."""
        return format_proximity_id(self.proximity_uuid, self.major, self.minor)

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'address_type': self.address_type,
            'name': self.name,
            'vendor': self.vendor,
            'company': self.company,
            'classic': self.classic,
            'le': self.le,
            'class_of_device': self.class_of_device,
            'service_uuids': sorted(self.service_uuids),
            'rssi': self.rssi,
            'tx_power': self.tx_power,
            'proximity_uuid': self.proximity_uuid,
            'major': self.major,
            'minor': self.minor,
        }


EMPTY_RECORD = AttributeRecord()


@dataclass
class Device:
    """A catalog entry, keyed by canonical hardware address."""
    address: str
    first_seen: datetime
    last_seen: datetime
    status: str = STATUS_NEW

    address_type: Optional[str] = None
    classic_address: Optional[str] = None
    le_address: Optional[str] = None

    name: Optional[str] = None
    vendor: Optional[str] = None
    company: Optional[str] = None

    classic_mode: bool = False
    le_mode: bool = False
    class_of_device: Optional[int] = None
    service_uuids: set[str] = field(default_factory=set)

    proximity_uuid: Optional[str] = None
    major: Optional[int] = None
    minor: Optional[int] = None

    last_rssi: Optional[int] = None
    last_tx_power: Optional[int] = None
    range_m: Optional[float] = None
    range_band: str = PROXIMITY_UNKNOWN

    ignored: bool = False

    # Observed since the previous sweep
    fresh: bool = True
    last_info_scan: Optional[datetime] = None

    @property
    def proximity_id(self) -> Optional[str]:
        return format_proximity_id(self.proximity_uuid, self.major, self.minor)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'address': self.address,
            'address_type': self.address_type,
            'classic_address': self.classic_address,
            'le_address': self.le_address,
            'name': self.name,
            'vendor': self.vendor,
            'company': self.company,
            'classic_mode': self.classic_mode,
            'le_mode': self.le_mode,
            'class_of_device': self.class_of_device,
            'service_uuids': sorted(self.service_uuids),
            'proximity_uuid': self.proximity_uuid,
            'major': self.major,
            'minor': self.minor,
            'last_rssi': self.last_rssi,
            'last_tx_power': self.last_tx_power,
            'range_m': round(self.range_m, 2) if self.range_m is not None else None,
            'range_band': self.range_band,
            'first_seen': self.first_seen.isoformat(),
            'last_seen': self.last_seen.isoformat(),
            'status': self.status,
            'ignored': self.ignored,
            'last_info_scan': self.last_info_scan.isoformat() if self.last_info_scan else None,
        }


@dataclass(frozen=True)
class StatusChange:
    """A status transition produced by the tracker sweep."""
    address: str
    previous: str
    current: str
    at: datetime

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'previous': self.previous,
            'current': self.current,
            'at': self.at.isoformat(),
        }


def format_proximity_id(
    uuid: Optional[str],
    major: Optional[int],
    minor: Optional[int],
) -> Optional[str]:
    if not uuid:
        return None
    parts = [uuid.lower()]
    if major is not None:
        parts.append(str(major))
        if minor is not None:
            parts.append(str(minor))
    return '-'.join(parts)


# Scalar attributes copied from a record onto its device (record field, device field)
_SCALAR_FIELDS = (
    ('address_type', 'address_type'),
    ('name', 'name'),
    ('vendor', 'vendor'),
    ('company', 'company'),
    ('class_of_device', 'class_of_device'),
    ('proximity_uuid', 'proximity_uuid'),
    ('major', 'major'),
    ('minor', 'minor'),
    ('rssi', 'last_rssi'),
    ('tx_power', 'last_tx_power'),
)


def merge_record(device: Device, record: AttributeRecord, observed_at: datetime) -> None:
    """
    Merge a record into a device, field by field.

    Scalars take the record's value when it is present and the observation
    is not older than the device's last sighting (an older observation may
    only fill fields that are still unset). Service identifiers accumulate,
    classification bits are sticky, last_seen only moves forward and
    first_seen only moves back.
    """
    newer = observed_at >= device.last_seen

    for record_field, device_field in _SCALAR_FIELDS:
        value = getattr(record, record_field)
        if value is None:
            continue
        if newer or getattr(device, device_field) is None:
            setattr(device, device_field, value)

    if record.classic:
        device.classic_mode = True
        device.classic_address = record.address
    if record.le:
        device.le_mode = True
        device.le_address = record.address

    device.service_uuids |= record.service_uuids

    device.last_seen = max(device.last_seen, observed_at)
    device.first_seen = min(device.first_seen, observed_at)
    device.fresh = True
