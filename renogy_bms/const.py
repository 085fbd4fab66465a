"""Constants for the Renogy BMS Modbus library."""

from __future__ import annotations

from enum import IntEnum


class FunctionCode(IntEnum):
    """Modbus function codes understood by the Renogy BMS."""

    READ_HOLDING_REGISTERS = 0x03
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_REGISTERS = 0x10
    # Vendor specific
    RESTORE_FACTORY_DEFAULT = 0x78
    CLEAR_HISTORY = 0x79


EXCEPTION_FLAG = 0x80

# Unit address 0 is reserved for broadcast writes
BROADCAST_ADDRESS = 0
MAX_UNIT_ADDRESS = 247

# Modbus limits for a single request
MAX_READ_REGISTERS = 125
MAX_WRITE_REGISTERS = 123

# Serial defaults
DEFAULT_BAUD_RATE = 9600
DEFAULT_BYTESIZE = 8
DEFAULT_PARITY = "N"
DEFAULT_STOPBITS = 1
DEFAULT_SERIAL_TIMEOUT = 1.0

# BT-2 adapter
BT2_NAME_PREFIX = "BT-TH-"
BT2_WRITE_CHAR_UUID = "0000ffd1-0000-1000-8000-00805f9b34fb"
BT2_NOTIFY_CHAR_UUID = "0000fff1-0000-1000-8000-00805f9b34fb"
DEFAULT_ADAPTER = "hci0"
DEFAULT_BT2_TIMEOUT = 5.0
DEFAULT_BT2_IDLE_TIMEOUT = 1.0
DEFAULT_SCAN_TIMEOUT = 5.0
# ATT_MTU 23 minus the 3 byte write header
DEFAULT_BLE_CHUNK_SIZE = 20
ATT_HEADER_SIZE = 3

# Battery addresses probed by default
BT2_SCAN_RANGE = range(0x30, 0x40)
SERIAL_SCAN_RANGE = range(0x01, 0x11)

# Device control registers and magic values
SHUTDOWN_REGISTER = 5222
LOCK_CONTROL_REGISTER = 5224
TEST_READY_REGISTER = 5225
SHUTDOWN_VALUE = 1
LOCK_VALUE = 0x5A5A
UNLOCK_VALUE = 0xA5A5
TEST_BEGIN_VALUE = 0x5A5A
TEST_END_VALUE = 0xA5A5
CUSTOM_COMMAND_PAYLOAD = b"\x00\x00\x00\x01"

# Power settings / ACP ranges
MAX_POWER_PERCENT = 100
MIN_ACP_VALUE = 1
MAX_ACP_VALUE = 254

# Retry defaults
DEFAULT_RETRY = 3
DEFAULT_RETRY_DELAY = 0.5
