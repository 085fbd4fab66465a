"""Asyncio client for Renogy battery management systems over Modbus RTU."""

from __future__ import annotations

from .bt2_transport import AssemblerState, Bt2Transport, FrameAssembler, discover_bt2_devices
from .config import Bt2Config, SerialConfig
from .device import AcpConfig, DeviceCommand, DeviceInfo, PowerSettings
from .device_control import DeviceController, execute_command
from .exceptions import (
    CrcMismatchError,
    DeviceControlError,
    InvalidDataError,
    InvalidRegisterRangeError,
    ModbusExceptionError,
    NotConnectedError,
    RenogyError,
    TransportBusyError,
    TransportTimeoutError,
    UnsupportedOperationError,
    ValueTypeMismatchError,
    is_retryable,
)
from .modbus_exceptions import ModbusExceptionCode
from .modbus_helpers import crc16
from .modbus_pdu import Pdu
from .modbus_retry import call_with_retry
from .modbus_retry_policy import RetryPolicy
from .modbus_transport import BaseModbusTransport, SerialModbusTransport
from .query import BatteryInfo, discover_batteries, query_battery
from .registers import Register, RegisterName, all_registers, get_register
from .system_summary import SystemAlarms, SystemSummary
from .values import (
    CellAlarmSet,
    ElectricCharge,
    ElectricCurrent,
    ElectricPotential,
    Integer,
    Percentage,
    StatusFlags,
    Text,
    ThermodynamicTemperature,
    Unit,
    Value,
)

__all__ = [
    "AcpConfig",
    "AssemblerState",
    "BaseModbusTransport",
    "BatteryInfo",
    "Bt2Config",
    "Bt2Transport",
    "CellAlarmSet",
    "CrcMismatchError",
    "DeviceCommand",
    "DeviceControlError",
    "DeviceController",
    "DeviceInfo",
    "ElectricCharge",
    "ElectricCurrent",
    "ElectricPotential",
    "FrameAssembler",
    "Integer",
    "InvalidDataError",
    "InvalidRegisterRangeError",
    "ModbusExceptionCode",
    "ModbusExceptionError",
    "NotConnectedError",
    "Pdu",
    "Percentage",
    "PowerSettings",
    "Register",
    "RegisterName",
    "RenogyError",
    "RetryPolicy",
    "SerialConfig",
    "SerialModbusTransport",
    "StatusFlags",
    "SystemAlarms",
    "SystemSummary",
    "Text",
    "ThermodynamicTemperature",
    "TransportBusyError",
    "TransportTimeoutError",
    "Unit",
    "UnsupportedOperationError",
    "Value",
    "ValueTypeMismatchError",
    "all_registers",
    "call_with_retry",
    "crc16",
    "discover_batteries",
    "discover_bt2_devices",
    "execute_command",
    "get_register",
    "is_retryable",
    "query_battery",
]
