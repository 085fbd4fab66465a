"""Battery snapshot queries and bus discovery."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntFlag

from .alarms import CellAlarms, ChargeDischargeStatus, OtherAlarmInfo, Status1, Status2, Status3
from .exceptions import RenogyError
from .modbus_transport import BaseModbusTransport
from .registers import Register, RegisterName, get_register
from .values import CellAlarmSet, StatusFlags, Text, Value

_LOGGER = logging.getLogger(__name__)

_MAX_CELLS = 16
_MAX_SENSORS = 2


@dataclass(slots=True)
class BatteryInfo:
    """Snapshot of one battery module."""

    unit: int
    serial: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    model: str = ""
    software_version: str = ""
    manufacturer: str = ""
    cell_count: int = 0
    cell_voltages: list[float] = field(default_factory=list)
    cell_temperatures: list[float] = field(default_factory=list)
    bms_temperature: float | None = None
    environment_temperatures: list[float] = field(default_factory=list)
    heater_temperatures: list[float] = field(default_factory=list)
    module_voltage: float = 0.0
    current: float = 0.0
    remaining_capacity: float = 0.0
    total_capacity: float = 0.0
    cycle_count: int = 0
    charge_voltage_limit: float | None = None
    discharge_voltage_limit: float | None = None
    charge_current_limit: float | None = None
    discharge_current_limit: float | None = None
    status1: Status1 | None = None
    status2: Status2 | None = None
    status3: Status3 | None = None
    other_alarm_info: OtherAlarmInfo | None = None
    cell_voltage_alarms: CellAlarms | None = None
    cell_temperature_alarms: CellAlarms | None = None
    charge_discharge_status: ChargeDischargeStatus | None = None

    @property
    def soc_percent(self) -> float:
        """Return state of charge derived from remaining and total capacity."""

        if self.total_capacity <= 0:
            return 0.0
        return self.remaining_capacity / self.total_capacity * 100.0

    @property
    def power(self) -> float:
        return self.module_voltage * self.current


async def _read(
    transport: BaseModbusTransport, unit: int, register: Register
) -> Value | None:
    try:
        words = await transport.read_holding_registers(unit, register.address, register.quantity)
        return register.parse_value(words)
    except RenogyError as err:
        _LOGGER.debug("Reading %s from unit %s failed: %s", register, unit, err)
        return None


async def _read_named(
    transport: BaseModbusTransport, unit: int, name: RegisterName
) -> Value | None:
    return await _read(transport, unit, get_register(name))


async def _read_indexed(
    transport: BaseModbusTransport, unit: int, name: RegisterName, count: int
) -> list[float]:
    """Read ``count`` slots of an indexed register in one request."""

    if count <= 0:
        return []
    first = get_register(name, 1)
    try:
        words = await transport.read_holding_registers(unit, first.address, count)
    except RenogyError as err:
        _LOGGER.debug("Reading %d x %s from unit %s failed: %s", count, name.value, unit, err)
        return []
    return [
        get_register(name, index).parse_value([word]).magnitude
        for index, word in enumerate(words, start=1)
    ]


async def _read_text(transport: BaseModbusTransport, unit: int, name: RegisterName) -> str | None:
    value = await _read_named(transport, unit, name)
    if not isinstance(value, Text):
        return None
    return value.value.strip("\x00")


async def _read_number(
    transport: BaseModbusTransport, unit: int, name: RegisterName
) -> float | int | None:
    value = await _read_named(transport, unit, name)
    return None if value is None else value.magnitude


async def _read_flags(
    transport: BaseModbusTransport, unit: int, name: RegisterName
) -> IntFlag | None:
    value = await _read_named(transport, unit, name)
    return value.flags if isinstance(value, StatusFlags) else None


async def _read_alarms(
    transport: BaseModbusTransport, unit: int, name: RegisterName
) -> CellAlarms | None:
    value = await _read_named(transport, unit, name)
    return value.alarms if isinstance(value, CellAlarmSet) else None


async def query_battery(transport: BaseModbusTransport, unit: int) -> BatteryInfo | None:
    """Read a full snapshot of battery ``unit``.

    The serial number and cell count are mandatory; ``None`` is returned when
    either cannot be read.  Every other field is best effort and keeps its
    default when the read fails.
    """

    serial = await _read_text(transport, unit, RegisterName.SN_NUMBER)
    if serial is None:
        return None
    cell_count = await _read_number(transport, unit, RegisterName.CELL_COUNT)
    if cell_count is None:
        return None

    info = BatteryInfo(unit=unit, serial=serial, cell_count=int(cell_count))
    info.model = await _read_text(transport, unit, RegisterName.BATTERY_NAME) or ""
    info.software_version = await _read_text(transport, unit, RegisterName.SOFTWARE_VERSION) or ""
    info.manufacturer = await _read_text(transport, unit, RegisterName.MANUFACTURER_NAME) or ""

    info.cell_voltages = await _read_indexed(
        transport, unit, RegisterName.CELL_VOLTAGE, min(info.cell_count, _MAX_CELLS)
    )
    info.module_voltage = await _read_number(transport, unit, RegisterName.MODULE_VOLTAGE) or 0.0
    info.current = await _read_number(transport, unit, RegisterName.CURRENT) or 0.0
    info.remaining_capacity = (
        await _read_number(transport, unit, RegisterName.REMAINING_CAPACITY) or 0.0
    )
    info.total_capacity = await _read_number(transport, unit, RegisterName.TOTAL_CAPACITY) or 0.0
    info.cycle_count = int(await _read_number(transport, unit, RegisterName.CYCLE_NUMBER) or 0)

    temp_count = await _read_number(transport, unit, RegisterName.CELL_TEMPERATURE_COUNT) or 0
    info.cell_temperatures = await _read_indexed(
        transport, unit, RegisterName.CELL_TEMPERATURE, min(int(temp_count), _MAX_CELLS)
    )
    info.bms_temperature = await _read_number(transport, unit, RegisterName.BMS_TEMPERATURE)
    env_count = await _read_number(transport, unit, RegisterName.ENVIRONMENT_TEMPERATURE_COUNT) or 0
    info.environment_temperatures = await _read_indexed(
        transport, unit, RegisterName.ENVIRONMENT_TEMPERATURE, min(int(env_count), _MAX_SENSORS)
    )
    heater_count = await _read_number(transport, unit, RegisterName.HEATER_TEMPERATURE_COUNT) or 0
    info.heater_temperatures = await _read_indexed(
        transport, unit, RegisterName.HEATER_TEMPERATURE, min(int(heater_count), _MAX_SENSORS)
    )

    info.charge_voltage_limit = await _read_number(
        transport, unit, RegisterName.CHARGE_VOLTAGE_LIMIT
    )
    info.discharge_voltage_limit = await _read_number(
        transport, unit, RegisterName.DISCHARGE_VOLTAGE_LIMIT
    )
    info.charge_current_limit = await _read_number(
        transport, unit, RegisterName.CHARGE_CURRENT_LIMIT
    )
    info.discharge_current_limit = await _read_number(
        transport, unit, RegisterName.DISCHARGE_CURRENT_LIMIT
    )

    info.status1 = await _read_flags(transport, unit, RegisterName.STATUS1)
    info.status2 = await _read_flags(transport, unit, RegisterName.STATUS2)
    info.status3 = await _read_flags(transport, unit, RegisterName.STATUS3)
    info.other_alarm_info = await _read_flags(transport, unit, RegisterName.OTHER_ALARM_INFO)
    info.charge_discharge_status = await _read_flags(
        transport, unit, RegisterName.CHARGE_DISCHARGE_STATUS
    )
    info.cell_voltage_alarms = await _read_alarms(
        transport, unit, RegisterName.CELL_VOLTAGE_ALARM_INFO
    )
    info.cell_temperature_alarms = await _read_alarms(
        transport, unit, RegisterName.CELL_TEMPERATURE_ALARM_INFO
    )
    return info


async def discover_batteries(
    transport: BaseModbusTransport, units: Iterable[int] | None = None
) -> list[BatteryInfo]:
    """Probe ``units`` in order, stopping at the first one that does not answer.

    ``units`` defaults to the transport's usual address range (0x30-0x3F
    behind a BT-2 hub, 0x01-0x10 on a serial bus).
    """

    if units is None:
        units = transport.default_scan_range()
    found: list[BatteryInfo] = []
    for unit in units:
        info = await query_battery(transport, unit)
        if info is None:
            _LOGGER.debug("No battery at unit 0x%02X, stopping scan", unit)
            break
        _LOGGER.info("Found battery %s (%s) at unit 0x%02X", info.model, info.serial, unit)
        found.append(info)
    return found
