"""Unit tests for the btmon chunk parser."""

import pytest

from utils.bluetooth.constants import ADDRESS_TYPE_PUBLIC, ADDRESS_TYPE_RANDOM, UNKNOWN_VENDOR
from utils.bluetooth.models import EMPTY_RECORD
from utils.bluetooth.parser import (
    lookup_vendor,
    normalize_address,
    parse,
    parse_leinfo_output,
    parse_name_output,
)

from conftest import COMMAND_EVENT, IBEACON_EVENT, INQUIRY_EVENT, make_chunk


class TestNormalizeAddress:
    """Tests for address normalization."""

    @pytest.mark.parametrize('value,expected', [
        ('aa:bb:cc:dd:ee:ff', 'AA:BB:CC:DD:EE:FF'),
        ('AA-BB-CC-DD-EE-FF', 'AA:BB:CC:DD:EE:FF'),
        ('aabbccddeeff', 'AA:BB:CC:DD:EE:FF'),
        (' 00:25:00:aa:bb:cc ', '00:25:00:AA:BB:CC'),
    ])
    def test_valid(self, value, expected):
        assert normalize_address(value) == expected

    @pytest.mark.parametrize('value', [
        None,
        '',
        '00:00:00:00:00:00',
        'AA:BB:CC:DD:EE',
        'AA:BB-CC:DD:EE:FF',
        'GG:BB:CC:DD:EE:FF',
    ])
    def test_invalid(self, value):
        assert normalize_address(value) is None


class TestLookupVendor:
    """Tests for OUI vendor lookup."""

    def test_known_prefix(self):
        assert lookup_vendor('00:25:00:AA:BB:CC') == 'Apple, Inc.'

    def test_unknown_prefix(self):
        assert lookup_vendor('FE:ED:FA:00:00:01') == UNKNOWN_VENDOR

    def test_random_address_never_looked_up(self):
        assert lookup_vendor('00:25:00:AA:BB:CC', ADDRESS_TYPE_RANDOM) == UNKNOWN_VENDOR


class TestParseInquiry:
    """Tests for classic inquiry chunks."""

    def test_inquiry_record(self):
        record = parse(make_chunk(INQUIRY_EVENT))

        assert record.address == '00:25:00:AA:BB:CC'
        assert record.address_type == ADDRESS_TYPE_PUBLIC
        assert record.classic is True
        assert record.le is False
        assert record.name == "Alice's iPhone"
        assert record.rssi == -60
        assert record.class_of_device == 0x5a020c
        assert record.service_uuids == frozenset({'0x110a', '0x110b'})
        assert record.vendor == 'Apple, Inc.'
        assert record.tx_power is None
        assert record.proximity_uuid is None

    def test_parse_is_deterministic(self):
        assert parse(make_chunk(INQUIRY_EVENT)) == parse(make_chunk(INQUIRY_EVENT))

    def test_remote_name_complete(self):
        record = parse(make_chunk("""\
> HCI Event: Remote Name Req Complete (0x07) plen 255
        Status: Success (0x00)
        Address: 00:1B:66:01:02:03 (OUI 00-1B-66)
        Name: MOMENTUM TW
"""))

        assert record.address == '00:1B:66:01:02:03'
        assert record.name == 'MOMENTUM TW'
        assert record.classic is True
        assert record.vendor == 'Sennheiser electronic GmbH & Co. KG'

    def test_failed_status_yields_empty(self):
        record = parse(make_chunk("""\
> HCI Event: Remote Name Req Complete (0x07) plen 255
        Status: Page Timeout (0x04)
        Address: 00:1B:66:01:02:03 (OUI 00-1B-66)
        Name:
"""))
        assert record == EMPTY_RECORD


class TestParseLowEnergy:
    """Tests for LE advertising chunks."""

    def test_ibeacon_record(self):
        record = parse(make_chunk(IBEACON_EVENT))

        assert record.address == '5C:3E:1B:2A:10:F7'
        assert record.address_type == ADDRESS_TYPE_RANDOM
        assert record.le is True
        assert record.classic is False
        assert record.vendor == UNKNOWN_VENDOR
        assert record.company == 'Apple, Inc.'
        assert record.proximity_uuid == '2f234454-cf6d-4a0f-adf2-f4911ba9ffa6'
        assert record.major == 1
        assert record.minor == 2
        assert record.tx_power == -59
        assert record.rssi == -70
        assert record.proximity_id == '2f234454-cf6d-4a0f-adf2-f4911ba9ffa6-1-2'

    def test_version_without_beacon_uuid_ignored(self):
        record = parse(make_chunk("""\
> HCI Event: LE Meta Event (0x3e) plen 20
      LE Advertising Report (0x02)
        Address: 11:22:33:44:55:66 (OUI 11-22-33)
        Version: 4.2
        RSSI: -80 dBm (0xb0)
"""))
        assert record.major is None
        assert record.minor is None
        assert record.le is True

    def test_128bit_service_uuid(self):
        record = parse(make_chunk("""\
> HCI Event: LE Meta Event (0x3e) plen 40
      LE Advertising Report (0x02)
        Address: 11:22:33:44:55:66 (OUI 11-22-33)
        128-bit Service UUIDs (complete): 1 entry
          Vendor specific (6E400001-B5A3-F393-E0A9-E50E24DCCA9E)
        16-bit Service UUIDs (complete): 1 entry
          Battery Service (0x180f)
"""))
        assert record.service_uuids == frozenset({
            '6e400001-b5a3-f393-e0a9-e50e24dcca9e',
            '0x180f',
        })

    def test_mgmt_device_found_le_address(self):
        record = parse(make_chunk("""\
@ MGMT Event: Device Found (0x0012) plen 23
        LE Address: 11:22:33:44:55:66 (Public)
        RSSI: -45 dBm (0xd3)
        Flags: 0x00000000
        Data length: 9
        Name (complete): Tag
"""))
        assert record.le is True
        assert record.classic is False
        assert record.name == 'Tag'
        assert record.address_type == ADDRESS_TYPE_PUBLIC

    def test_mgmt_device_found_bredr_address(self):
        record = parse(make_chunk("""\
@ MGMT Event: Device Found (0x0012) plen 23
        BR/EDR Address: 00:25:00:AA:BB:CC (OUI 00-25-00)
        RSSI: -55 dBm (0xc9)
"""))
        assert record.classic is True
        assert record.le is False


class TestParseEdgeCases:
    """Tests for content that must not produce attributes."""

    def test_header_only_chunk_is_empty(self):
        assert parse(make_chunk('> HCI Event: Inquiry Result (0x02) plen 15\n')) == EMPTY_RECORD

    def test_header_without_known_fields_is_empty(self):
        record = parse(make_chunk("""\
> HCI Event: Command Complete (0x0e) plen 4
        Write Scan Enable (0x03|0x001a) ncmd 1
"""))
        assert record.is_empty

    def test_command_chunk_skipped(self):
        assert parse(make_chunk(COMMAND_EVENT)) == EMPTY_RECORD

    def test_null_address_discarded(self):
        record = parse(make_chunk("""\
> HCI Event: Inquiry Result (0x02) plen 15
        Address: 00:00:00:00:00:00 (OUI 00-00-00)
        RSSI: -60 dBm (0xc4)
"""))
        assert record == EMPTY_RECORD

    @pytest.mark.parametrize('rssi_line', [
        'RSSI: 127 dBm (0x7f)',
        'RSSI: -128 dBm (0x80)',
        'RSSI: invalid (0x99)',
    ])
    def test_unavailable_rssi_dropped(self, rssi_line):
        record = parse(make_chunk(f"""\
> HCI Event: Inquiry Result (0x02) plen 15
        Address: 00:25:00:AA:BB:CC (OUI 00-25-00)
        {rssi_line}
"""))
        assert record.address == '00:25:00:AA:BB:CC'
        assert record.rssi is None

    def test_unavailable_tx_power_dropped(self):
        record = parse(make_chunk("""\
> HCI Event: LE Meta Event (0x3e) plen 20
      LE Advertising Report (0x02)
        Address: 11:22:33:44:55:66 (OUI 11-22-33)
        TX power: 127 dBm
"""))
        assert record.tx_power is None

    def test_null_name_dropped_and_nul_stripped(self):
        record = parse(make_chunk("""\
> HCI Event: Extended Inquiry Result (0x2f) plen 255
        Address: 00:25:00:AA:BB:CC (OUI 00-25-00)
        Name (complete): (null)
"""))
        assert record.name is None

        record = parse(make_chunk(
            '> HCI Event: Extended Inquiry Result (0x2f) plen 255\n'
            '        Address: 00:25:00:AA:BB:CC (OUI 00-25-00)\n'
            '        Name (short): Speaker\x00\x00\n'
        ))
        assert record.name == 'Speaker'

    def test_last_scalar_match_wins(self):
        record = parse(make_chunk("""\
> HCI Event: LE Meta Event (0x3e) plen 40
      LE Advertising Report (0x02)
        Address: 11:22:33:44:55:66 (OUI 11-22-33)
        RSSI: -80 dBm (0xb0)
        RSSI: -75 dBm (0xb5)
"""))
        assert record.rssi == -75


class TestActiveScanOutput:
    """Tests for parsing hcitool output."""

    def test_name_output(self):
        record = parse_name_output('00:25:00:aa:bb:cc', "Alice's iPhone\n")

        assert record.address == '00:25:00:AA:BB:CC'
        assert record.name == "Alice's iPhone"
        assert record.classic is True
        assert record.vendor == 'Apple, Inc.'

    def test_name_output_empty(self):
        assert parse_name_output('00:25:00:AA:BB:CC', '\n') == EMPTY_RECORD
        assert parse_name_output('00:25:00:AA:BB:CC', '(null)\n') == EMPTY_RECORD

    def test_leinfo_output(self):
        stdout = (
            'Requesting connection to 5C:3E:1B:2A:10:F7\n'
            'Handle: 64 (0x0040)\n'
            'LMP Version: 5.0 (0x9) LMP Subversion: 0x1\n'
        )
        record = parse_leinfo_output('5C:3E:1B:2A:10:F7', stdout, random=True)

        assert record.address == '5C:3E:1B:2A:10:F7'
        assert record.le is True
        assert record.address_type == ADDRESS_TYPE_RANDOM

    def test_leinfo_without_connection(self):
        stdout = 'Requesting connection to 5C:3E:1B:2A:10:F7\nCould not create connection: Input/output error\n'
        assert parse_leinfo_output('5C:3E:1B:2A:10:F7', stdout) == EMPTY_RECORD
