"""Device command execution and register access for a single BMS unit."""

from __future__ import annotations

import logging

from .const import CUSTOM_COMMAND_PAYLOAD, MAX_UNIT_ADDRESS
from .device import AcpConfig, DeviceCommand, DeviceInfo, PowerSettings
from .exceptions import (
    DeviceControlError,
    InvalidRegisterRangeError,
    RenogyError,
    UnsupportedOperationError,
)
from .modbus_retry import call_with_retry
from .modbus_retry_policy import RetryPolicy
from .modbus_transport import BaseModbusTransport
from .registers import Register, RegisterName, get_register
from .values import Integer, Percentage, Text, Value

_LOGGER = logging.getLogger(__name__)

_IDENTITY_REGISTERS = (
    RegisterName.SN_NUMBER,
    RegisterName.MANUFACTURE_VERSION,
    RegisterName.MAINLINE_VERSION,
    RegisterName.COMMUNICATION_PROTOCOL_VERSION,
    RegisterName.BATTERY_NAME,
    RegisterName.SOFTWARE_VERSION,
    RegisterName.MANUFACTURER_NAME,
)


async def execute_command(
    transport: BaseModbusTransport, unit: int, command: DeviceCommand
) -> bytes:
    """Send ``command`` to ``unit`` once.

    Returns the response payload of vendor commands (``b""`` for register
    writes).  Any failure is raised as ``DeviceControlError`` with the
    original error as ``__cause__``.
    """

    _LOGGER.debug("Executing %s on unit %s", command.name, unit)
    try:
        if command.is_custom:
            return await transport.send_custom(unit, command.function_code, CUSTOM_COMMAND_PAYLOAD)
        register, value = command.register_write
        await transport.write_single_register(unit, register, value)
        return b""
    except RenogyError as err:
        raise DeviceControlError(f"{command.name} failed on unit {unit}: {err}") from err


class DeviceController:
    """High level access to one BMS unit on a transport.

    Commands that need the configuration lock opened are wrapped in an
    Unlock / command / Lock sequence.  Each request is retried according to
    ``retry_policy``; only transient errors are retried.
    """

    def __init__(
        self,
        transport: BaseModbusTransport,
        unit: int,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not 0 <= unit <= MAX_UNIT_ADDRESS:
            raise InvalidRegisterRangeError(f"unit address {unit} out of range")
        self.transport = transport
        self.unit = unit
        self.retry_policy = retry_policy or RetryPolicy()

    async def _send(self, command: DeviceCommand) -> bytes:
        return await call_with_retry(
            self.retry_policy, execute_command, self.transport, self.unit, command
        )

    async def execute(self, command: DeviceCommand) -> bytes:
        """Run ``command``, unlocking the device first where required."""

        if not command.requires_unlock:
            return await self._send(command)

        await self._send(DeviceCommand.UNLOCK)
        try:
            result = await self._send(command)
        except DeviceControlError as err:
            _LOGGER.error("%s failed on unit %s: %s", command.name, self.unit, err)
            await self._relock(raise_errors=False)
            raise
        await self._relock(raise_errors=True)
        return result

    async def _relock(self, *, raise_errors: bool) -> None:
        try:
            await self._send(DeviceCommand.LOCK)
        except DeviceControlError as err:
            _LOGGER.error("Could not re-lock unit %s: %s", self.unit, err)
            if raise_errors:
                raise

    # ------------------------------------------------------------------
    # Register access
    # ------------------------------------------------------------------
    async def read(self, register: Register | RegisterName | str, index: int | None = None) -> Value:
        """Read and decode one register."""

        if not isinstance(register, Register):
            register = get_register(register, index)
        if not register.is_readable:
            raise UnsupportedOperationError(f"{register} is write-only")
        words = await call_with_retry(
            self.retry_policy,
            self.transport.read_holding_registers,
            self.unit,
            register.address,
            register.quantity,
        )
        return register.parse_value(words)

    async def write(
        self,
        register: Register | RegisterName | str,
        value: Value,
        index: int | None = None,
    ) -> None:
        """Encode and write ``value`` to a writable register."""

        if not isinstance(register, Register):
            register = get_register(register, index)
        if not register.is_writable:
            raise UnsupportedOperationError(f"{register} is read-only")
        words = register.encode_words(value)
        await self._write_words(register.address, words)

    async def _write_words(self, address: int, words: list[int]) -> None:
        if len(words) == 1:
            await call_with_retry(
                self.retry_policy,
                self.transport.write_single_register,
                self.unit,
                address,
                words[0],
            )
        else:
            await call_with_retry(
                self.retry_policy,
                self.transport.write_multiple_registers,
                self.unit,
                address,
                words,
            )

    async def _read_block(self, names: tuple[RegisterName, ...]) -> list[Value]:
        """Read adjacent single-slot registers with one request."""

        registers = [get_register(name) for name in names]
        first = registers[0]
        quantity = sum(reg.quantity for reg in registers)
        words = await call_with_retry(
            self.retry_policy,
            self.transport.read_holding_registers,
            self.unit,
            first.address,
            quantity,
        )
        values = []
        offset = 0
        for reg in registers:
            values.append(reg.parse_value(words[offset : offset + reg.quantity]))
            offset += reg.quantity
        return values

    async def _write_block(self, names: tuple[RegisterName, ...], values: list[Value]) -> None:
        registers = [get_register(name) for name in names]
        words: list[int] = []
        for reg, value in zip(registers, values):
            words.extend(reg.encode_words(value))
        await self._write_words(registers[0].address, words)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    async def apply_power_settings(self, settings: PowerSettings) -> None:
        """Write charge and discharge power settings in one request."""

        await self._write_block(
            (RegisterName.CHARGE_POWER_SETTING, RegisterName.DISCHARGE_POWER_SETTING),
            [Percentage(settings.charge_percent), Percentage(settings.discharge_percent)],
        )
        _LOGGER.info("Applied %s to unit %s", settings, self.unit)

    async def read_power_settings(self) -> PowerSettings:
        charge, discharge = await self._read_block(
            (RegisterName.CHARGE_POWER_SETTING, RegisterName.DISCHARGE_POWER_SETTING)
        )
        return PowerSettings(int(charge.magnitude), int(discharge.magnitude))

    async def apply_acp_config(self, config: AcpConfig) -> None:
        """Write the three ACP settings in one request."""

        await self._write_block(
            (RegisterName.ACP_BROADCAST, RegisterName.ACP_CONFIGURE, RegisterName.ACP_SHAKE),
            [Integer(config.broadcast), Integer(config.configure), Integer(config.shake)],
        )
        _LOGGER.info("Applied %s to unit %s", config, self.unit)

    async def read_acp_config(self) -> AcpConfig:
        broadcast, configure, shake = await self._read_block(
            (RegisterName.ACP_BROADCAST, RegisterName.ACP_CONFIGURE, RegisterName.ACP_SHAKE)
        )
        return AcpConfig(broadcast.magnitude, configure.magnitude, shake.magnitude)

    async def read_device_info(self) -> DeviceInfo:
        """Read the identity block and unique identification code."""

        texts = await self._read_block(_IDENTITY_REGISTERS)
        code = await self.read(RegisterName.UNIQUE_IDENTIFICATION_CODE)
        strings = [value.value for value in texts if isinstance(value, Text)]
        return DeviceInfo(*strings, unique_identification_code=code.magnitude)
