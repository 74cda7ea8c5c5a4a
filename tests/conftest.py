"""Shared fixtures for btrecon tests."""

from datetime import datetime

import pytest

from config import ScanConfig
from utils import database
from utils.bluetooth.chunker import classify_header
from utils.bluetooth.models import Chunk, RawLine


INQUIRY_EVENT = """\
> HCI Event: Extended Inquiry Result (0x2f) plen 255
        Num responses: 1
        Address: 00:25:00:AA:BB:CC (OUI 00-25-00)
        Page scan repetition mode: R1 (0x01)
        Page period mode: P0 (0x00)
        Class: 0x5a020c
          Major class: Phone (cellular, cordless, payphone, modem)
        Clock offset: 0x1234
        RSSI: -60 dBm (0xc4)
        Name (complete): Alice's iPhone
        16-bit Service UUIDs (complete): 2 entries
          Audio Source (0x110a)
          Audio Sink (0x110b)
"""

IBEACON_EVENT = """\
> HCI Event: LE Meta Event (0x3e) plen 43
      LE Advertising Report (0x02)
        Num reports: 1
        Event type: Non connectable undirected - ADV_NONCONN_IND (0x03)
        Address type: Random (0x01)
        Address: 5C:3E:1B:2A:10:F7 (Resolvable)
        Data length: 30
        Company: Apple, Inc. (76)
          Type: iBeacon (2)
          UUID: 2F234454-CF6D-4A0F-ADF2-F4911BA9FFA6
          Version: 1.2
          TX power: -59 dB
        RSSI: -70 dBm (0xba)
"""

COMMAND_EVENT = """\
< HCI Command: Remote Name Request (0x01|0x0019) plen 10
        Address: 00:25:00:AA:BB:CC (OUI 00-25-00)
        Page scan repetition mode: R2 (0x02)
"""


def lines_of(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.strip()]


def make_chunk(text: str, received_at: datetime = None) -> Chunk:
    """Build a chunk directly from btmon text, header first."""
    received_at = received_at or datetime(2024, 1, 1, 12, 0, 0)
    lines = [
        RawLine(seq=i, text=line, received_at=received_at)
        for i, line in enumerate(lines_of(text), start=1)
    ]
    return Chunk(kind=classify_header(lines[0].text), lines=lines)


@pytest.fixture
def scan_config():
    """Default scan configuration (info scans every 240s)."""
    return ScanConfig.build(discovery_interval=0)


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the database module at a fresh temporary file."""
    database.close_db()
    monkeypatch.setattr(database, 'DB_PATH', tmp_path / 'btrecon.db')
    monkeypatch.setattr(database, 'DB_DIR', tmp_path)
    database.init_db()
    yield database
    database.close_db()
