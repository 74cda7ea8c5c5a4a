"""
Bluetooth-specific constants for the monitor pipeline.
"""

from __future__ import annotations

# =============================================================================
# MONITOR / CHUNKER SETTINGS
# =============================================================================

# btmon output lines that open a new logical event
CHUNK_HEADER_PREFIXES = (
    '> HCI Event:',
    '< HCI Command:',
    '@ MGMT Event:',
    '@ MGMT Command:',
    '> ACL Data',
    '< ACL Data',
    '= ',
)

# Force-close limits protecting the pipeline from runaway input
MAX_CHUNK_LINES = 256
MAX_LINE_LENGTH = 4096

# Discriminators assigned to chunks from their header line
CHUNK_KIND_INQUIRY = 'inquiry_result'
CHUNK_KIND_EXTENDED_INQUIRY = 'extended_inquiry_result'
CHUNK_KIND_REMOTE_NAME = 'remote_name'
CHUNK_KIND_CONNECT = 'connect_complete'
CHUNK_KIND_LE_META = 'le_meta'
CHUNK_KIND_DEVICE_FOUND = 'device_found'
CHUNK_KIND_COMMAND = 'command'
CHUNK_KIND_ACL = 'acl_data'
CHUNK_KIND_NOTE = 'note'
CHUNK_KIND_OTHER = 'other'

CLASSIC_CHUNK_KINDS = frozenset({
    CHUNK_KIND_INQUIRY,
    CHUNK_KIND_EXTENDED_INQUIRY,
    CHUNK_KIND_REMOTE_NAME,
    CHUNK_KIND_CONNECT,
})

LE_CHUNK_KINDS = frozenset({
    CHUNK_KIND_LE_META,
})

# Monitor command (btmon with timestamps)
MONITOR_COMMAND = 'btmon'

# Grace period before a terminated subprocess is killed (seconds)
SUBPROCESS_GRACE_PERIOD = 3.0

# A second monitor failure within this window is fatal (seconds)
MONITOR_RESTART_WINDOW = 60.0

# Monitor line queue capacity; the reader blocks when it is full
MONITOR_QUEUE_SIZE = 10000

# How long the reader waits for queue space before rechecking for a stop (seconds)
MONITOR_QUEUE_PUT_TIMEOUT = 0.5

# =============================================================================
# SCHEDULER SETTINGS
# =============================================================================

# Active info scan cadence (seconds); anything lower than the minimum is raised
DEFAULT_INFO_SCAN_RATE = 240
MIN_INFO_SCAN_RATE = 45

# Status sweep cadence (seconds)
DEFAULT_SWEEP_INTERVAL = 30

# Discovery command cadence (seconds)
DEFAULT_DISCOVERY_INTERVAL = 30

# Bounded worker pool for blocking commands
MAX_COMMAND_WORKERS = 2

# Maximum devices dispatched for an info scan per cadence
MAX_INFO_SCANS_PER_CYCLE = 8

# Active scan retry policy
ACTIVE_SCAN_MAX_RETRIES = 3
ACTIVE_SCAN_BACKOFF_BASE = 1.0
ACTIVE_SCAN_BACKOFF_MAX = 30.0

# Scheduler loop idle wait when the monitor had nothing to deliver (seconds)
LOOP_IDLE_WAIT = 0.1

# hcitool command timeout
HCITOOL_TIMEOUT = 15.0

# btmgmt command timeout
BTMGMT_TIMEOUT = 20.0

# Generic subprocess timeout (short operations)
SUBPROCESS_TIMEOUT_SHORT = 5.0

# =============================================================================
# STATUS STATE MACHINE
# =============================================================================

STATUS_NEW = 'new'
STATUS_ONLINE = 'online'
STATUS_OFFLINE = 'offline'
STATUS_OLD = 'old'

# Thresholds are multiples of the base scan interval
OFFLINE_INTERVAL_MULTIPLIER = 3
OLD_INTERVAL_MULTIPLIER = 360

# =============================================================================
# FIELD VALIDATION
# =============================================================================

RSSI_MIN = -127
RSSI_MAX = 20

TX_POWER_MIN = -100
TX_POWER_MAX = 20

NULL_ADDRESS = '00:00:00:00:00:00'

UNKNOWN_VENDOR = 'Unknown'

# =============================================================================
# ADDRESS TYPE CLASSIFICATIONS
# =============================================================================

ADDRESS_TYPE_PUBLIC = 'public'
ADDRESS_TYPE_RANDOM = 'random'

# =============================================================================
# DISTANCE ESTIMATION SETTINGS
# =============================================================================

# Path-loss exponent (free space)
DISTANCE_PATH_LOSS_EXPONENT = 2.0

DISTANCE_MIN_M = 0.1
DISTANCE_MAX_M = 100.0

PROXIMITY_IMMEDIATE = 'immediate'  # < 1m
PROXIMITY_NEAR = 'near'           # 1-3m
PROXIMITY_FAR = 'far'             # 3-10m
PROXIMITY_UNKNOWN = 'unknown'

# =============================================================================
# VENDOR PREFIXES (OUI -> manufacturer, common Bluetooth vendors)
# =============================================================================

OUI_VENDORS = {
    '00:1A:7D': 'cyber-blue(HK)Ltd',
    '00:02:72': 'CC&C Technologies, Inc.',
    '00:15:83': 'IVT corporation',
    '00:1B:DC': 'Vencer Co., Ltd.',
    '00:25:00': 'Apple, Inc.',
    '28:CF:E9': 'Apple, Inc.',
    '3C:15:C2': 'Apple, Inc.',
    '40:98:AD': 'Apple, Inc.',
    '70:3E:AC': 'Apple, Inc.',
    'AC:BC:32': 'Apple, Inc.',
    'F0:D1:A9': 'Apple, Inc.',
    '00:12:47': 'Samsung Electronics Co.,Ltd',
    '08:D4:6A': 'Samsung Electronics Co.,Ltd',
    '5C:F6:DC': 'Samsung Electronics Co.,Ltd',
    'A0:0B:BA': 'Samsung Electro-Mechanics(Thailand)',
    '00:0D:44': 'Bose Corporation',
    '04:52:C7': 'Bose Corporation',
    '00:1F:20': 'Logitech Europe SA',
    '00:13:EF': 'Kingjon Digital Technology Co.,Ltd',
    '00:1E:7C': 'Taiwick Limited',
    '00:1D:43': 'Shenzhen G-link Digital Technology Co., Ltd.',
    '00:0A:95': 'Apple, Inc.',
    '00:16:94': 'Sennheiser Communications A/S',
    '00:18:09': 'CRESYN',
    '00:1B:66': 'Sennheiser electronic GmbH & Co. KG',
    '00:23:78': 'GN Netcom A/S',
    '50:C2:ED': 'GN Audio A/S',
    '00:02:5B': 'Cambridge Silicon Radio',
    '00:1A:11': 'Google, Inc.',
    '3C:5A:B4': 'Google, Inc.',
    'F4:F5:D8': 'Google, Inc.',
    '00:50:F2': 'Microsoft Corporation',
    '7C:1E:52': 'Microsoft',
    '00:0F:86': 'BlackBerry RTS',
    '00:17:E9': 'Texas Instruments',
    'B8:27:EB': 'Raspberry Pi Foundation',
    'DC:A6:32': 'Raspberry Pi Trading Ltd',
    '24:0A:C4': 'Espressif Inc.',
    '30:AE:A4': 'Espressif Inc.',
    'F4:CF:A2': 'Espressif Inc.',
    '64:A2:F9': 'OnePlus Technology (Shenzhen) Co., Ltd',
    '00:1D:BA': 'Sony Corporation',
    '30:17:C8': 'Sony Corporation',
    '00:21:3C': 'AliphCom',
    '00:22:A0': 'APTIV SERVICES US, LLC',
    '00:26:7E': 'PARROT SA',
    'A0:14:3D': 'PARROT SA',
    '9C:8C:6E': 'Samsung Electronics Co.,Ltd',
    'E4:E0:C5': 'Samsung Electronics Co.,Ltd',
    'C8:FF:28': 'Liteon Technology Corporation',
    '00:1F:E1': 'Hon Hai Precision Ind. Co.,Ltd.',
    '00:24:7C': 'Nokia Danmark A/S',
    '00:0B:E4': 'Hosiden Corporation',
    'D8:0F:99': 'Hon Hai Precision Ind. Co.,Ltd.',
    '44:65:0D': 'Amazon Technologies Inc.',
    'F0:27:2D': 'Amazon Technologies Inc.',
    '00:07:80': 'Bluegiga Technologies OY',
    '88:6B:0F': 'Bluegiga Technologies OY',
    '00:1B:35': 'ChongQing JINOU Science & Technology Development CO.,Ltd',
    'C0:28:8D': 'Logitech, Inc',
    'E0:E5:CF': 'Texas Instruments',
    'D0:39:72': 'Texas Instruments',
    'F4:B8:5E': 'Texas Instruments',
    '00:60:37': 'NXP Semiconductors',
    'F0:5C:D5': 'Apple, Inc.',
    '04:4B:ED': 'Apple, Inc.',
}
