"""
Parser for btmon chunks.

Turns one chunk into an AttributeRecord using an ordered table of field
extractors. Each extractor is a (field, pattern, normalizer, mode) entry
applied to every body line; scalar fields keep the last match in the chunk,
set fields take the union of all matches.

Example chunk:
> HCI Event: LE Meta Event (0x3e) plen 43
      LE Advertising Report (0x02)
        Num reports: 1
        Event type: Connectable undirected - ADV_IND (0x00)
        Address type: Random (0x01)
        Address: 5C:3E:1B:2A:10:F7 (Resolvable)
        Data length: 31
        Company: Apple, Inc. (76)
          Type: iBeacon (2)
          UUID: 2f234454-cf6d-4a0f-adf2-f4911ba9ffa6
          Version: 1.2
          TX power: -59 dB
        RSSI: -70 dBm (0xba)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .constants import (
    ADDRESS_TYPE_PUBLIC,
    ADDRESS_TYPE_RANDOM,
    CHUNK_KIND_COMMAND,
    CHUNK_KIND_NOTE,
    CLASSIC_CHUNK_KINDS,
    LE_CHUNK_KINDS,
    NULL_ADDRESS,
    OUI_VENDORS,
    RSSI_MAX,
    RSSI_MIN,
    TX_POWER_MAX,
    TX_POWER_MIN,
    UNKNOWN_VENDOR,
)
from .models import EMPTY_RECORD, AttributeRecord, Chunk

MODE_SCALAR = 'scalar'
MODE_SET = 'set'

TRANSPORT_CLASSIC = 'classic'
TRANSPORT_LE = 'le'

# Chunks that never describe a remote device's presence
_SKIPPED_KINDS = frozenset({CHUNK_KIND_COMMAND, CHUNK_KIND_NOTE})

_MAC_RE = re.compile(r'^([0-9A-Fa-f]{2})([:-]?)([0-9A-Fa-f]{2})(?:\2([0-9A-Fa-f]{2})){4}$')
_HEX_PAIR_RE = re.compile(r'[0-9A-Fa-f]{2}')

_RANDOM_ANNOTATIONS = ('Resolvable', 'Static', 'Non-Resolvable', 'Random')

_STATUS_RE = re.compile(r'^Status:\s*(.+?)\s*\((0x[0-9a-fA-F]{2})\)$')


@dataclass(frozen=True)
class FieldExtractor:
    """One row of the extraction table."""
    field: str
    pattern: re.Pattern
    normalize: Callable[[re.Match], Any]
    mode: str = MODE_SCALAR


def normalize_address(value: Optional[str]) -> Optional[str]:
    """
    Normalize a hardware address to uppercase, colon-delimited form.

    Returns None for malformed input and the all-zero address.
    """
    if not value:
        return None
    value = value.strip()
    if not _MAC_RE.match(value):
        return None
    address = ':'.join(_HEX_PAIR_RE.findall(value)).upper()
    if address == NULL_ADDRESS:
        return None
    return address


def lookup_vendor(address: str, address_type: Optional[str] = None) -> str:
    """Resolve the vendor of an address from its OUI prefix."""
    if address_type == ADDRESS_TYPE_RANDOM:
        return UNKNOWN_VENDOR
    return OUI_VENDORS.get(address[:8].upper(), UNKNOWN_VENDOR)


def _in_range(value: int, low: int, high: int) -> Optional[int]:
    return value if low <= value <= high else None


def _address(match: re.Match) -> Optional[str]:
    return normalize_address(match.group(1))


def _address_type_from_annotation(match: re.Match) -> Optional[str]:
    annotation = match.group(2)
    if not annotation:
        return None
    if annotation.startswith(_RANDOM_ANNOTATIONS):
        return ADDRESS_TYPE_RANDOM
    return ADDRESS_TYPE_PUBLIC


def _address_type(match: re.Match) -> str:
    return ADDRESS_TYPE_RANDOM if match.group(1).lower() == 'random' else ADDRESS_TYPE_PUBLIC


def _name(match: re.Match) -> Optional[str]:
    name = match.group(1).replace('\x00', '').strip()
    if not name or name == '(null)':
        return None
    return name


def _rssi(match: re.Match) -> Optional[int]:
    return _in_range(int(match.group(1)), RSSI_MIN, RSSI_MAX)


def _tx_power(match: re.Match) -> Optional[int]:
    return _in_range(int(match.group(1)), TX_POWER_MIN, TX_POWER_MAX)


def _company(match: re.Match) -> Optional[str]:
    company = match.group(1).strip()
    return company or None


def _class_of_device(match: re.Match) -> int:
    return int(match.group(1), 16)


def _uuid16(match: re.Match) -> str:
    return f'0x{match.group(1).lower()}'


def _uuid128(match: re.Match) -> str:
    return match.group(1).lower()


def _proximity_uuid(match: re.Match) -> str:
    return match.group(1).lower()


def _major(match: re.Match) -> int:
    return int(match.group(1))


def _minor(match: re.Match) -> int:
    return int(match.group(2))


_ADDRESS_VALUE = r'([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})(?:\s*\(([^)]*)\))?'

EXTRACTORS: tuple[FieldExtractor, ...] = (
    # Addresses
    FieldExtractor('address', re.compile(r'^(?:LE |BR/EDR |Peer )?[Aa]ddress:\s*' + _ADDRESS_VALUE), _address),
    FieldExtractor('address_type', re.compile(r'^(?:LE |Peer )?[Aa]ddress:\s*' + _ADDRESS_VALUE), _address_type_from_annotation),
    FieldExtractor('address_type', re.compile(r'^(?:Peer )?[Aa]ddress type:\s*(Random|Public)\b'), _address_type),
    FieldExtractor('transport', re.compile(r'^LE Address:\s*([0-9A-Fa-f:]{17})'), lambda m: TRANSPORT_LE),
    FieldExtractor('transport', re.compile(r'^BR/EDR Address:\s*([0-9A-Fa-f:]{17})'), lambda m: TRANSPORT_CLASSIC),
    # Identity
    FieldExtractor('name', re.compile(r'^Name(?: \((?:complete|short)\))?:\s*(.*)$'), _name),
    FieldExtractor('company', re.compile(r'^Company:\s*(.+?)\s*\(\d+\)$'), _company),
    FieldExtractor('class_of_device', re.compile(r'^Class:\s*0x([0-9a-fA-F]{6})\b'), _class_of_device),
    # Signal
    FieldExtractor('rssi', re.compile(r'^RSSI:\s*(-?\d+)\s*dBm'), _rssi),
    FieldExtractor('tx_power', re.compile(r'^TX power:\s*(-?\d+)\s*dBm?\b'), _tx_power),
    # Services
    FieldExtractor('service_uuids', re.compile(r'^[^:]+\s\(0x([0-9a-fA-F]{4}(?:[0-9a-fA-F]{4})?)\)$'), _uuid16, MODE_SET),
    FieldExtractor(
        'service_uuids',
        re.compile(r'^[^:]+\s\(([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\)$'),
        _uuid128,
        MODE_SET,
    ),
    # iBeacon proximity identifiers
    FieldExtractor(
        'proximity_uuid',
        re.compile(r'^UUID:\s*([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})$'),
        _proximity_uuid,
    ),
    FieldExtractor('major', re.compile(r'^Version:\s*(\d+)\.(\d+)$'), _major),
    FieldExtractor('minor', re.compile(r'^Version:\s*(\d+)\.(\d+)$'), _minor),
)

_RECORD_FIELDS = frozenset(AttributeRecord.__dataclass_fields__)


def extract_fields(
    lines: list[str],
    extractors: tuple[FieldExtractor, ...] = EXTRACTORS,
) -> dict[str, Any]:
    """
    Apply the extractor table to lines.

    Returns:
        Dict of field name to value; set fields hold a set of all matches.
    """
    values: dict[str, Any] = {}
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        for extractor in extractors:
            match = extractor.pattern.match(line)
            if not match:
                continue
            value = extractor.normalize(match)
            if value is None:
                continue
            if extractor.mode == MODE_SET:
                values.setdefault(extractor.field, set()).add(value)
            else:
                values[extractor.field] = value
    return values


def _reports_failure(lines: list[str]) -> bool:
    for raw in lines:
        match = _STATUS_RE.match(raw.strip())
        if match and match.group(2).lower() != '0x00':
            return True
    return False


def parse(chunk: Chunk) -> AttributeRecord:
    """
    Parse a chunk into an AttributeRecord.

    Never raises for unrecognized content; such chunks produce an empty
    record. The result depends only on the chunk's kind and line text.
    """
    if chunk.kind in _SKIPPED_KINDS or len(chunk.lines) < 2:
        return EMPTY_RECORD

    body = chunk.text_lines[1:]
    if _reports_failure(body):
        return EMPTY_RECORD

    values = extract_fields(body)
    address = values.get('address')
    if address is None:
        return EMPTY_RECORD

    address_type = values.get('address_type')
    transport = values.pop('transport', None)

    classic = le = False
    if transport == TRANSPORT_LE:
        le = True
    elif transport == TRANSPORT_CLASSIC:
        classic = True
    elif chunk.kind in CLASSIC_CHUNK_KINDS:
        classic = True
    elif chunk.kind in LE_CHUNK_KINDS or address_type == ADDRESS_TYPE_RANDOM:
        le = True

    if 'proximity_uuid' not in values:
        values.pop('major', None)
        values.pop('minor', None)

    if 'service_uuids' in values:
        values['service_uuids'] = frozenset(values['service_uuids'])

    fields = {key: value for key, value in values.items() if key in _RECORD_FIELDS}
    return AttributeRecord(
        classic=classic,
        le=le,
        vendor=lookup_vendor(address, address_type),
        **fields,
    )


def parse_name_output(address: str, stdout: str) -> AttributeRecord:
    """
    Parse ``hcitool name <address>`` output.

    The tool prints the remote name on a line of its own, or nothing when
    the device did not answer.
    """
    canonical = normalize_address(address)
    if canonical is None:
        return EMPTY_RECORD
    for raw in stdout.splitlines():
        name = raw.replace('\x00', '').strip()
        if name and name != '(null)':
            return AttributeRecord(
                address=canonical,
                address_type=ADDRESS_TYPE_PUBLIC,
                name=name,
                classic=True,
                vendor=lookup_vendor(canonical),
            )
    return EMPTY_RECORD


def parse_leinfo_output(address: str, stdout: str, random: bool = False) -> AttributeRecord:
    """
    Parse ``hcitool leinfo <address>`` output.

    A connection handle in the output means the device answered; the
    record then only confirms its presence.
    """
    canonical = normalize_address(address)
    if canonical is None or not re.search(r'^\s*Handle:', stdout, re.MULTILINE):
        return EMPTY_RECORD
    address_type = ADDRESS_TYPE_RANDOM if random else ADDRESS_TYPE_PUBLIC
    return AttributeRecord(
        address=canonical,
        address_type=address_type,
        le=True,
        vendor=lookup_vendor(canonical, address_type),
    )
