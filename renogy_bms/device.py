"""Device commands and settings of the Renogy BMS."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .const import (
    CUSTOM_COMMAND_PAYLOAD,
    LOCK_CONTROL_REGISTER,
    LOCK_VALUE,
    MAX_ACP_VALUE,
    MAX_POWER_PERCENT,
    MIN_ACP_VALUE,
    SHUTDOWN_REGISTER,
    SHUTDOWN_VALUE,
    TEST_BEGIN_VALUE,
    TEST_END_VALUE,
    TEST_READY_REGISTER,
    UNLOCK_VALUE,
    FunctionCode,
)
from .exceptions import InvalidRegisterRangeError
from .modbus_pdu import Pdu


class DeviceCommand(Enum):
    """Operations the BMS performs on request."""

    RESTORE_FACTORY_DEFAULT = "restore_factory_default"
    CLEAR_HISTORY = "clear_history"
    SHUTDOWN = "shutdown"
    LOCK = "lock"
    UNLOCK = "unlock"
    TEST_BEGIN = "test_begin"
    TEST_END = "test_end"

    @property
    def function_code(self) -> FunctionCode:
        return _CUSTOM_FUNCTIONS.get(self, FunctionCode.WRITE_SINGLE_REGISTER)

    @property
    def is_custom(self) -> bool:
        """Return True for commands sent as a vendor function code."""
        return self in _CUSTOM_FUNCTIONS

    @property
    def register_write(self) -> tuple[int, int] | None:
        """Return ``(register, value)`` for commands that write a register."""
        return _REGISTER_WRITES.get(self)

    @property
    def requires_unlock(self) -> bool:
        """Return True if the device must be unlocked before this command."""
        return self in (DeviceCommand.RESTORE_FACTORY_DEFAULT, DeviceCommand.CLEAR_HISTORY)

    def create_pdu(self, unit: int) -> Pdu:
        """Return the request executing this command on ``unit``."""

        if self.is_custom:
            return Pdu(unit, self.function_code, CUSTOM_COMMAND_PAYLOAD)
        register, value = _REGISTER_WRITES[self]
        return Pdu.write_single_register(unit, register, value)


_CUSTOM_FUNCTIONS = {
    DeviceCommand.RESTORE_FACTORY_DEFAULT: FunctionCode.RESTORE_FACTORY_DEFAULT,
    DeviceCommand.CLEAR_HISTORY: FunctionCode.CLEAR_HISTORY,
}

_REGISTER_WRITES = {
    DeviceCommand.SHUTDOWN: (SHUTDOWN_REGISTER, SHUTDOWN_VALUE),
    DeviceCommand.LOCK: (LOCK_CONTROL_REGISTER, LOCK_VALUE),
    DeviceCommand.UNLOCK: (LOCK_CONTROL_REGISTER, UNLOCK_VALUE),
    DeviceCommand.TEST_BEGIN: (TEST_READY_REGISTER, TEST_BEGIN_VALUE),
    DeviceCommand.TEST_END: (TEST_READY_REGISTER, TEST_END_VALUE),
}


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class PowerSettings:
    """Charge and discharge power limits in percent (0-100)."""

    charge_percent: int
    discharge_percent: int

    def __post_init__(self) -> None:
        for name in ("charge_percent", "discharge_percent"):
            value = getattr(self, name)
            if not self.is_valid_percent(value):
                raise InvalidRegisterRangeError(
                    f"{name} must be an integer between 0 and {MAX_POWER_PERCENT}, got {value!r}"
                )

    @staticmethod
    def is_valid_percent(value: int) -> bool:
        return _is_int(value) and 0 <= value <= MAX_POWER_PERCENT


@dataclass(frozen=True, slots=True)
class AcpConfig:
    """ACP broadcast, configure and handshake settings (each 1-254)."""

    broadcast: int
    configure: int
    shake: int

    def __post_init__(self) -> None:
        for name in ("broadcast", "configure", "shake"):
            value = getattr(self, name)
            if not self.is_valid_acp_value(value):
                raise InvalidRegisterRangeError(
                    f"ACP {name} must be an integer between {MIN_ACP_VALUE} and {MAX_ACP_VALUE}, "
                    f"got {value!r}"
                )

    @staticmethod
    def is_valid_acp_value(value: int) -> bool:
        return _is_int(value) and MIN_ACP_VALUE <= value <= MAX_ACP_VALUE


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """Identity strings reported by the BMS."""

    serial_number: str
    manufacture_version: str
    mainline_version: str
    communication_protocol_version: str
    battery_name: str
    software_version: str
    manufacturer_name: str
    unique_identification_code: int
