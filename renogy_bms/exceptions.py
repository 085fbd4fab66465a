"""Custom exceptions for the Renogy BMS library."""

from __future__ import annotations

from .modbus_exceptions import (
    ConnectionException,
    ModbusException,
    ModbusExceptionCode,
    ModbusIOException,
)


class RenogyError(ModbusException):
    """Base exception for the Renogy BMS library."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidDataError(RenogyError):
    """Malformed frame or a response that does not match the request."""


class CrcMismatchError(RenogyError):
    """Response frame failed the CRC check."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"CRC mismatch: expected 0x{expected:04X}, got 0x{actual:04X}")
        self.expected = expected
        self.actual = actual


class ModbusExceptionError(RenogyError):
    """The device answered with a Modbus exception response."""

    def __init__(self, code: ModbusExceptionCode, function_code: int | None = None) -> None:
        super().__init__(f"Modbus exception: {code.description}")
        self.code = code
        self.function_code = function_code

    @property
    def retryable(self) -> bool:
        """Return whether the device asked us to try again later."""

        return self.code is ModbusExceptionCode.SLAVE_DEVICE_BUSY


class InvalidRegisterRangeError(RenogyError, ValueError):
    """Register index or value outside of the register's valid domain."""


class ValueTypeMismatchError(RenogyError, TypeError):
    """Value variant does not match the register's codec."""


class UnsupportedOperationError(RenogyError):
    """Operation is not supported for this register or address."""


class NotConnectedError(RenogyError, ConnectionException):
    """Transport used after it was closed or the link was lost."""


class TransportTimeoutError(RenogyError, ModbusIOException):
    """No complete response arrived within the allowed time."""


class TransportBusyError(RenogyError):
    """A request is already in flight on this transport."""


class DeviceControlError(RenogyError):
    """A device command (or command sequence) did not complete."""


def is_retryable(exc: BaseException) -> bool:
    """Return True if ``exc`` is transient by convention.

    Only a ``SLAVE_DEVICE_BUSY`` exception response qualifies; every other
    failure is permanent for the given call.
    """

    if isinstance(exc, DeviceControlError) and exc.__cause__ is not None:
        return is_retryable(exc.__cause__)
    return isinstance(exc, ModbusExceptionError) and exc.retryable
