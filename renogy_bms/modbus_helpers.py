"""Utility helpers for Modbus RTU framing."""

from __future__ import annotations

import logging

from .const import EXCEPTION_FLAG, FunctionCode

_LOGGER = logging.getLogger(__name__)

# Smallest RTU frame: unit + function + CRC
MIN_FRAME_LENGTH = 4
EXCEPTION_FRAME_LENGTH = 5
WRITE_ECHO_FRAME_LENGTH = 8


def crc16(data: bytes | bytearray) -> int:
    """Return the Modbus CRC-16 of ``data`` (poly 0xA001, init 0xFFFF)."""

    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc


def append_crc(data: bytes | bytearray) -> bytes:
    """Return ``data`` followed by its CRC, low byte first."""

    crc = crc16(data)
    return bytes(data) + bytes([crc & 0xFF, (crc >> 8) & 0xFF])


def frame_crc_ok(frame: bytes | bytearray) -> bool:
    """Return True if the trailing two bytes of ``frame`` are a valid CRC."""

    if len(frame) < MIN_FRAME_LENGTH:
        return False
    actual = frame[-2] | (frame[-1] << 8)
    return crc16(frame[:-2]) == actual


def expected_frame_length(buffer: bytes | bytearray) -> int | None:
    """Return the total length of the response frame starting at ``buffer``.

    ``None`` means the length cannot be known yet (not enough bytes) or the
    function code has no fixed response shape; callers then fall back to a
    CRC check over the accumulated bytes.
    """

    if len(buffer) < 2:
        return None
    function = buffer[1]
    if function & EXCEPTION_FLAG:
        return EXCEPTION_FRAME_LENGTH
    if function == FunctionCode.READ_HOLDING_REGISTERS:
        if len(buffer) < 3:
            return None
        return 3 + buffer[2] + 2
    if function in (FunctionCode.WRITE_SINGLE_REGISTER, FunctionCode.WRITE_MULTIPLE_REGISTERS):
        return WRITE_ECHO_FRAME_LENGTH
    return None


def frame_complete(buffer: bytes | bytearray) -> bool:
    """Return True if ``buffer`` holds a structurally complete response frame."""

    expected = expected_frame_length(buffer)
    if expected is not None:
        return len(buffer) >= expected
    return frame_crc_ok(buffer)


def format_frame(frame: bytes | bytearray) -> str:
    """Return ``frame`` as spaced hex for log messages."""

    return bytes(frame).hex(" ")


def words_to_bytes(words: list[int] | tuple[int, ...]) -> bytes:
    """Pack 16-bit register words big-endian."""

    return b"".join((word & 0xFFFF).to_bytes(2, "big") for word in words)


def bytes_to_words(data: bytes | bytearray) -> list[int]:
    """Unpack big-endian 16-bit register words."""

    if len(data) % 2:
        raise ValueError(f"odd byte count {len(data)} for register data")
    return [int.from_bytes(data[i : i + 2], "big") for i in range(0, len(data), 2)]
