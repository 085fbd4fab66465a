"""Modbus RTU protocol data unit codec."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .const import (
    EXCEPTION_FLAG,
    MAX_READ_REGISTERS,
    MAX_WRITE_REGISTERS,
    FunctionCode,
)
from .exceptions import (
    CrcMismatchError,
    InvalidDataError,
    InvalidRegisterRangeError,
    ModbusExceptionError,
)
from .modbus_exceptions import exception_code_from_int
from .modbus_helpers import MIN_FRAME_LENGTH, append_crc, crc16, format_frame, words_to_bytes

_LOGGER = logging.getLogger(__name__)


def _check_u16(value: int, what: str) -> int:
    if not 0 <= int(value) <= 0xFFFF:
        raise InvalidRegisterRangeError(f"{what} {value} does not fit in 16 bits")
    return int(value)


@dataclass(frozen=True, slots=True)
class Pdu:
    """A single Modbus request or response addressed to one unit."""

    address: int
    function_code: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.address <= 0xFF:
            raise InvalidDataError(f"unit address {self.address} out of range")
        if not 0 <= self.function_code <= 0xFF:
            raise InvalidDataError(f"function code {self.function_code} out of range")
        object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def is_write_operation(self) -> bool:
        """Return True if the function code modifies device state."""

        return self.function_code != FunctionCode.READ_HOLDING_REGISTERS

    def serialize(self) -> bytes:
        """Return the RTU frame: unit, function, payload and CRC (low byte first)."""

        return append_crc(bytes([self.address, self.function_code]) + self.payload)

    @classmethod
    def deserialize(cls, frame: bytes | bytearray) -> Pdu:
        """Parse an RTU response frame.

        Raises ``CrcMismatchError`` when the checksum disagrees and
        ``ModbusExceptionError`` when the device reported an exception.
        """

        if len(frame) < MIN_FRAME_LENGTH:
            raise InvalidDataError(f"frame too short ({len(frame)} bytes): {format_frame(frame)}")

        data = bytes(frame[:-2])
        expected = crc16(data)
        actual = frame[-2] | (frame[-1] << 8)
        if expected != actual:
            _LOGGER.debug("CRC mismatch on frame %s", format_frame(frame))
            raise CrcMismatchError(expected, actual)

        address, function = data[0], data[1]
        if function & EXCEPTION_FLAG:
            if len(data) < 3:
                raise InvalidDataError("exception response without exception code")
            code = exception_code_from_int(data[2])
            if code is None:
                raise InvalidDataError(f"unknown Modbus exception code 0x{data[2]:02X}")
            raise ModbusExceptionError(code, function_code=function & ~EXCEPTION_FLAG)

        return cls(address, function, data[2:])

    # ------------------------------------------------------------------
    # Request builders
    # ------------------------------------------------------------------

    @classmethod
    def read_holding_registers(cls, unit: int, address: int, quantity: int) -> Pdu:
        if not 1 <= quantity <= MAX_READ_REGISTERS:
            raise InvalidRegisterRangeError(
                f"cannot read {quantity} registers (1-{MAX_READ_REGISTERS} allowed)"
            )
        payload = _check_u16(address, "address").to_bytes(2, "big") + quantity.to_bytes(2, "big")
        return cls(unit, FunctionCode.READ_HOLDING_REGISTERS, payload)

    @classmethod
    def write_single_register(cls, unit: int, address: int, value: int) -> Pdu:
        payload = _check_u16(address, "address").to_bytes(2, "big") + _check_u16(
            value, "value"
        ).to_bytes(2, "big")
        return cls(unit, FunctionCode.WRITE_SINGLE_REGISTER, payload)

    @classmethod
    def write_multiple_registers(cls, unit: int, address: int, values: Sequence[int]) -> Pdu:
        quantity = len(values)
        if not 1 <= quantity <= MAX_WRITE_REGISTERS:
            raise InvalidRegisterRangeError(
                f"cannot write {quantity} registers (1-{MAX_WRITE_REGISTERS} allowed)"
            )
        words = [_check_u16(v, "value") for v in values]
        payload = (
            _check_u16(address, "address").to_bytes(2, "big")
            + quantity.to_bytes(2, "big")
            + bytes([quantity * 2])
            + words_to_bytes(words)
        )
        return cls(unit, FunctionCode.WRITE_MULTIPLE_REGISTERS, payload)

    def __repr__(self) -> str:
        return (
            f"Pdu(address=0x{self.address:02X}, function_code=0x{self.function_code:02X}, "
            f"payload={self.payload.hex(' ')!r})"
        )
