"""
Bluetooth monitor pipeline for btrecon.

Turns btmon output into a device catalog: the chunker splits the line
stream into events, the parser extracts attributes, and the tracker merges
them per address and runs the status state machine.
"""

from .chunker import Chunker, classify_header, is_header
from .constants import (
    # Statuses
    STATUS_NEW,
    STATUS_ONLINE,
    STATUS_OFFLINE,
    STATUS_OLD,
    # Proximity bands
    PROXIMITY_IMMEDIATE,
    PROXIMITY_NEAR,
    PROXIMITY_FAR,
    PROXIMITY_UNKNOWN,
    # Address types
    ADDRESS_TYPE_PUBLIC,
    ADDRESS_TYPE_RANDOM,
)
from .distance import DistanceEstimator, ProximityBand
from .exceptions import (
    BtReconError,
    HardwareIdentityError,
    MonitorFailedError,
    StoreUnavailableError,
)
from .models import (
    EMPTY_RECORD,
    AttributeRecord,
    Chunk,
    Device,
    RawLine,
    StatusChange,
    merge_record,
)
from .parser import (
    FieldExtractor,
    lookup_vendor,
    normalize_address,
    parse,
    parse_leinfo_output,
    parse_name_output,
)
from .tracker import DeviceTracker

__all__ = [
    # Chunker
    'Chunker',
    'classify_header',
    'is_header',

    # Parser
    'FieldExtractor',
    'lookup_vendor',
    'normalize_address',
    'parse',
    'parse_leinfo_output',
    'parse_name_output',

    # Tracker
    'DeviceTracker',

    # Models
    'EMPTY_RECORD',
    'AttributeRecord',
    'Chunk',
    'Device',
    'RawLine',
    'StatusChange',
    'merge_record',

    # Distance estimation
    'DistanceEstimator',
    'ProximityBand',

    # Errors
    'BtReconError',
    'HardwareIdentityError',
    'MonitorFailedError',
    'StoreUnavailableError',

    # Constants
    'STATUS_NEW',
    'STATUS_ONLINE',
    'STATUS_OFFLINE',
    'STATUS_OLD',
    'PROXIMITY_IMMEDIATE',
    'PROXIMITY_NEAR',
    'PROXIMITY_FAR',
    'PROXIMITY_UNKNOWN',
    'ADDRESS_TYPE_PUBLIC',
    'ADDRESS_TYPE_RANDOM',
]
