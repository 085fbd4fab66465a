# mypy: ignore-errors
"""Shared fakes for the Renogy BMS test-suite."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from renogy_bms.alarms import AlarmKind, CellAlarms, Status1, Status2
from renogy_bms.const import LOCK_CONTROL_REGISTER, LOCK_VALUE, FunctionCode
from renogy_bms.exceptions import TransportTimeoutError
from renogy_bms.modbus_helpers import append_crc, bytes_to_words, frame_crc_ok, words_to_bytes
from renogy_bms.modbus_transport import BaseModbusTransport
from renogy_bms.registers import RegisterName, get_register
from renogy_bms.values import (
    CellAlarmSet,
    ElectricCharge,
    ElectricCurrent,
    ElectricPotential,
    Integer,
    StatusFlags,
    Text,
    ThermodynamicTemperature,
)


class DummyWriter:
    """Stand-in for ``asyncio.StreamWriter`` recording written bytes.

    ``on_write`` is called with every written chunk, allowing a test to feed
    the response into the paired reader only after the request went out.
    """

    def __init__(self, on_write=None) -> None:
        self.buffer = bytearray()
        self.on_write = on_write
        self._closed = False

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)
        if self.on_write is not None:
            self.on_write(bytes(data))

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self._closed = True

    async def wait_closed(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self._closed


class FakeBleakClient:
    """Minimal ``BleakClient`` double.

    Once a complete request frame has been written, ``responder`` is called
    with it and returns the notification fragments to deliver.  Fragments
    are delivered from the event loop, ``interval`` seconds apart.
    """

    def __init__(self, responder=None, *, mtu_size: int | None = 23, interval: float = 0.0):
        self.responder = responder
        self.mtu_size = mtu_size
        self.interval = interval
        self.writes: list[bytes] = []
        self.requests: list[bytes] = []
        self.callback = None
        self.notify_uuid = None
        self.write_uuid = None
        self.disconnected = False
        self._pending = bytearray()

    async def start_notify(self, uuid, callback) -> None:
        self.notify_uuid = uuid
        self.callback = callback

    async def stop_notify(self, uuid) -> None:
        self.callback = None

    async def disconnect(self) -> None:
        self.disconnected = True

    async def write_gatt_char(self, uuid, data, response=False) -> None:
        self.write_uuid = uuid
        self.writes.append(bytes(data))
        self._pending.extend(data)
        if not frame_crc_ok(self._pending):
            return
        frame = bytes(self._pending)
        self._pending.clear()
        self.requests.append(frame)
        if self.responder is None:
            return
        loop = asyncio.get_running_loop()
        for i, fragment in enumerate(self.responder(frame) or []):
            loop.call_later(self.interval * i, self.notify, fragment)

    def notify(self, fragment: bytes) -> None:
        if self.callback is not None:
            self.callback(None, bytearray(fragment))


@dataclass
class SimulatedUnit:
    """Register store and state of one simulated battery module."""

    registers: dict[int, int] = field(default_factory=dict)
    locked: bool = True
    busy_responses: int = 0
    executed: list[int] = field(default_factory=list)

    def set(self, name: str, value, index: int | None = None) -> None:
        register = get_register(name, index)
        for offset, word in enumerate(register.encode_words(value)):
            self.registers[register.address + offset] = word


def make_battery(serial="2203RBT0001", cells=4) -> SimulatedUnit:
    """Return a simulated battery with every telemetry register populated."""

    unit = SimulatedUnit()
    unit.set(RegisterName.SN_NUMBER, Text(serial))
    unit.set(RegisterName.BATTERY_NAME, Text("RBT100LFP12S"))
    unit.set(RegisterName.SOFTWARE_VERSION, Text("V1.0"))
    unit.set(RegisterName.MANUFACTURER_NAME, Text("RENOGY"))
    unit.set(RegisterName.CELL_COUNT, Integer(cells))
    for index in range(1, cells + 1):
        unit.set(RegisterName.CELL_VOLTAGE, ElectricPotential(3.2 + index / 10), index)
    unit.set(RegisterName.CELL_TEMPERATURE_COUNT, Integer(2))
    unit.set(RegisterName.CELL_TEMPERATURE, ThermodynamicTemperature(21.5), 1)
    unit.set(RegisterName.CELL_TEMPERATURE, ThermodynamicTemperature(-1.0), 2)
    unit.set(RegisterName.BMS_TEMPERATURE, ThermodynamicTemperature(25.0))
    unit.set(RegisterName.ENVIRONMENT_TEMPERATURE_COUNT, Integer(1))
    unit.set(RegisterName.ENVIRONMENT_TEMPERATURE, ThermodynamicTemperature(18.0), 1)
    unit.set(RegisterName.HEATER_TEMPERATURE_COUNT, Integer(0))
    unit.set(RegisterName.CURRENT, ElectricCurrent(-2.5))
    unit.set(RegisterName.MODULE_VOLTAGE, ElectricPotential(13.2))
    unit.set(RegisterName.REMAINING_CAPACITY, ElectricCharge(50.0))
    unit.set(RegisterName.TOTAL_CAPACITY, ElectricCharge(100.0))
    unit.set(RegisterName.CYCLE_NUMBER, Integer(12))
    unit.set(RegisterName.CHARGE_VOLTAGE_LIMIT, ElectricPotential(14.4))
    unit.set(RegisterName.DISCHARGE_VOLTAGE_LIMIT, ElectricPotential(10.0))
    unit.set(RegisterName.CHARGE_CURRENT_LIMIT, ElectricCurrent(50.0))
    unit.set(RegisterName.DISCHARGE_CURRENT_LIMIT, ElectricCurrent(-100.0))
    unit.set(RegisterName.STATUS1, StatusFlags(Status1.CHARGE_MOSFET | Status1.DISCHARGE_MOSFET))
    unit.set(RegisterName.STATUS2, StatusFlags(Status2.HEATER_ON))
    unit.set(
        RegisterName.CELL_VOLTAGE_ALARM_INFO,
        CellAlarmSet(CellAlarms.from_bits(AlarmKind.VOLTAGE, 1 << 17)),
    )
    return unit


def exception_frame(unit: int, function: int, code: int) -> bytes:
    return append_crc(bytes([unit, function | 0x80, code]))


class SimulatedBus(BaseModbusTransport):
    """In-memory bus of simulated BMS units answering at the frame level.

    Vendor commands (factory reset, clear history) are refused with a
    slave device failure while the unit is locked.
    """

    def __init__(self, units: dict[int, SimulatedUnit] | None = None) -> None:
        super().__init__(timeout=1.0)
        self.units = units if units is not None else {}
        self.frames: list[bytes] = []

    def default_scan_range(self) -> range:
        return range(0x30, 0x40)

    async def _transceive(self, frame, request, *, expect_reply):
        self.frames.append(frame)
        unit = self.units.get(request.address)
        if not expect_reply:
            for sim in self.units.values():
                self._apply(sim, request.function_code, request.payload)
            return b""
        if unit is None:
            raise TransportTimeoutError("no reply")
        if unit.busy_responses:
            unit.busy_responses -= 1
            return exception_frame(request.address, request.function_code, 0x06)
        return self._respond(unit, request.address, request.function_code, request.payload)

    def _apply(self, sim: SimulatedUnit, function: int, payload: bytes) -> None:
        address = int.from_bytes(payload[0:2], "big")
        if function == FunctionCode.WRITE_SINGLE_REGISTER:
            self._store(sim, address, [int.from_bytes(payload[2:4], "big")])
        elif function == FunctionCode.WRITE_MULTIPLE_REGISTERS:
            self._store(sim, address, bytes_to_words(payload[5:]))

    def _store(self, sim: SimulatedUnit, address: int, words: list[int]) -> None:
        for offset, word in enumerate(words):
            if address + offset == LOCK_CONTROL_REGISTER:
                sim.locked = word == LOCK_VALUE
            sim.registers[address + offset] = word

    def _respond(self, sim: SimulatedUnit, unit: int, function: int, payload: bytes) -> bytes:
        if function == FunctionCode.READ_HOLDING_REGISTERS:
            address = int.from_bytes(payload[0:2], "big")
            quantity = int.from_bytes(payload[2:4], "big")
            addresses = range(address, address + quantity)
            if any(addr not in sim.registers for addr in addresses):
                return exception_frame(unit, function, 0x02)
            data = words_to_bytes([sim.registers[addr] for addr in addresses])
            return append_crc(bytes([unit, function, len(data)]) + data)
        if function == FunctionCode.WRITE_SINGLE_REGISTER:
            self._apply(sim, function, payload)
            return append_crc(bytes([unit, function]) + payload)
        if function == FunctionCode.WRITE_MULTIPLE_REGISTERS:
            self._apply(sim, function, payload)
            return append_crc(bytes([unit, function]) + payload[:4])
        if function in (FunctionCode.RESTORE_FACTORY_DEFAULT, FunctionCode.CLEAR_HISTORY):
            if sim.locked:
                return exception_frame(unit, function, 0x04)
            sim.executed.append(function)
            return append_crc(bytes([unit, function]) + payload)
        return exception_frame(unit, function, 0x01)

    async def _reset_connection(self) -> None:
        return None


@pytest.fixture
def dummy_writer():
    return DummyWriter()


@pytest.fixture
def sim_unit():
    return SimulatedUnit()


@pytest.fixture
def sim_bus(sim_unit):
    return SimulatedBus({0x30: sim_unit})
