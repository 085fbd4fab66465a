"""Modbus exception codes and the pymodbus exception hierarchy.

The library's own errors derive from the pymodbus exceptions re-exported here
so callers already handling ``ModbusException`` keep working.
"""

from __future__ import annotations

from enum import IntEnum

from pymodbus.exceptions import (
    ConnectionException,
    ModbusException,
    ModbusIOException,
)


class ModbusExceptionCode(IntEnum):
    """Exception codes a Modbus slave may report."""

    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    NEGATIVE_ACKNOWLEDGE = 0x07
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_FAILED_TO_RESPOND = 0x0B

    @property
    def description(self) -> str:
        """Return a human readable description, e.g. ``Illegal function (01h)``."""

        return f"{self.name.replace('_', ' ').capitalize()} ({self.value:02X}h)"


def exception_code_from_int(code: int) -> ModbusExceptionCode | None:
    """Return the matching exception code or ``None`` if it is not standard."""

    try:
        return ModbusExceptionCode(code)
    except ValueError:
        return None


__all__ = [
    "ConnectionException",
    "ModbusException",
    "ModbusExceptionCode",
    "ModbusIOException",
    "exception_code_from_int",
]
