"""Loader for the Renogy BMS register map.

This module reads the bundled ``renogy_bms_registers.json`` file, validates it
against :mod:`.schema` and exposes the register table as immutable
descriptors.  Each descriptor carries its codec as data (kind, scale,
signedness, bounds) and converts raw register words to and from the tagged
:mod:`~renogy_bms.values` variants.

Indexed registers (cell voltages, cell temperatures, environment and heater
sensors) are stored once with their base address; ``get_register`` resolves a
concrete slot as ``base + (index - 1) * length``.
"""

from __future__ import annotations

import importlib.resources as resources
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path

from ..alarms import FLAG_SETS, AlarmKind, CellAlarms
from ..exceptions import (
    InvalidDataError,
    InvalidRegisterRangeError,
    ValueTypeMismatchError,
)
from ..modbus_helpers import bytes_to_words, words_to_bytes
from ..values import (
    CellAlarmSet,
    ElectricCharge,
    ElectricCurrent,
    ElectricPotential,
    Integer,
    Percentage,
    StatusFlags,
    Text,
    ThermodynamicTemperature,
    Value,
)
from .schema import RegisterKind, RegisterList

_LOGGER = logging.getLogger(__name__)

# Path to the bundled register definition file.  Tests patch this constant to
# supply temporary files, therefore it must be a module level variable.
_REGISTERS_PATH = Path(
    str(resources.files(__package__).joinpath("renogy_bms_registers.json"))
)


def get_registers_path() -> Path:
    """Return resolved path to the bundled register definitions JSON file."""
    return _REGISTERS_PATH.resolve()


class RegisterName(str, Enum):
    """Closed set of registers known to the BMS."""

    CELL_COUNT = "cell_count"
    CELL_VOLTAGE = "cell_voltage"
    CELL_TEMPERATURE_COUNT = "cell_temperature_count"
    CELL_TEMPERATURE = "cell_temperature"
    BMS_TEMPERATURE = "bms_temperature"
    ENVIRONMENT_TEMPERATURE_COUNT = "environment_temperature_count"
    ENVIRONMENT_TEMPERATURE = "environment_temperature"
    HEATER_TEMPERATURE_COUNT = "heater_temperature_count"
    HEATER_TEMPERATURE = "heater_temperature"
    CURRENT = "current"
    MODULE_VOLTAGE = "module_voltage"
    REMAINING_CAPACITY = "remaining_capacity"
    TOTAL_CAPACITY = "total_capacity"
    CYCLE_NUMBER = "cycle_number"
    CHARGE_VOLTAGE_LIMIT = "charge_voltage_limit"
    DISCHARGE_VOLTAGE_LIMIT = "discharge_voltage_limit"
    CHARGE_CURRENT_LIMIT = "charge_current_limit"
    DISCHARGE_CURRENT_LIMIT = "discharge_current_limit"
    CELL_VOLTAGE_ALARM_INFO = "cell_voltage_alarm_info"
    CELL_TEMPERATURE_ALARM_INFO = "cell_temperature_alarm_info"
    OTHER_ALARM_INFO = "other_alarm_info"
    STATUS1 = "status1"
    STATUS2 = "status2"
    STATUS3 = "status3"
    CHARGE_DISCHARGE_STATUS = "charge_discharge_status"
    SN_NUMBER = "sn_number"
    MANUFACTURE_VERSION = "manufacture_version"
    MAINLINE_VERSION = "mainline_version"
    COMMUNICATION_PROTOCOL_VERSION = "communication_protocol_version"
    BATTERY_NAME = "battery_name"
    SOFTWARE_VERSION = "software_version"
    MANUFACTURER_NAME = "manufacturer_name"
    CELL_OVER_VOLTAGE_LIMIT = "cell_over_voltage_limit"
    CELL_HIGH_VOLTAGE_LIMIT = "cell_high_voltage_limit"
    CELL_LOW_VOLTAGE_LIMIT = "cell_low_voltage_limit"
    CELL_UNDER_VOLTAGE_LIMIT = "cell_under_voltage_limit"
    CHARGE_OVER_TEMPERATURE_LIMIT = "charge_over_temperature_limit"
    CHARGE_HIGH_TEMPERATURE_LIMIT = "charge_high_temperature_limit"
    CHARGE_LOW_TEMPERATURE_LIMIT = "charge_low_temperature_limit"
    CHARGE_UNDER_TEMPERATURE_LIMIT = "charge_under_temperature_limit"
    CHARGE_OVER2_CURRENT_LIMIT = "charge_over2_current_limit"
    CHARGE_OVER1_CURRENT_LIMIT = "charge_over1_current_limit"
    CHARGE_HIGH_CURRENT_LIMIT = "charge_high_current_limit"
    MODULE_OVER_VOLTAGE_LIMIT = "module_over_voltage_limit"
    MODULE_HIGH_VOLTAGE_LIMIT = "module_high_voltage_limit"
    MODULE_LOW_VOLTAGE_LIMIT = "module_low_voltage_limit"
    MODULE_UNDER_VOLTAGE_LIMIT = "module_under_voltage_limit"
    DISCHARGE_OVER_TEMPERATURE_LIMIT = "discharge_over_temperature_limit"
    DISCHARGE_HIGH_TEMPERATURE_LIMIT = "discharge_high_temperature_limit"
    DISCHARGE_LOW_TEMPERATURE_LIMIT = "discharge_low_temperature_limit"
    DISCHARGE_UNDER_TEMPERATURE_LIMIT = "discharge_under_temperature_limit"
    DISCHARGE_OVER2_CURRENT_LIMIT = "discharge_over2_current_limit"
    DISCHARGE_OVER1_CURRENT_LIMIT = "discharge_over1_current_limit"
    DISCHARGE_HIGH_CURRENT_LIMIT = "discharge_high_current_limit"
    SHUTDOWN_COMMAND = "shutdown_command"
    DEVICE_ID = "device_id"
    LOCK_CONTROL = "lock_control"
    TEST_READY = "test_ready"
    UNIQUE_IDENTIFICATION_CODE = "unique_identification_code"
    CHARGE_POWER_SETTING = "charge_power_setting"
    DISCHARGE_POWER_SETTING = "discharge_power_setting"
    ACP_BROADCAST = "acp_broadcast"
    ACP_CONFIGURE = "acp_configure"
    ACP_SHAKE = "acp_shake"


# Value variant accepted by each codec kind
_VALUE_TYPES: dict[RegisterKind, type] = {
    RegisterKind.INTEGER: Integer,
    RegisterKind.VOLTAGE: ElectricPotential,
    RegisterKind.CURRENT: ElectricCurrent,
    RegisterKind.CHARGE: ElectricCharge,
    RegisterKind.TEMPERATURE: ThermodynamicTemperature,
    RegisterKind.PERCENT: Percentage,
    RegisterKind.TEXT: Text,
    RegisterKind.FLAGS: StatusFlags,
    RegisterKind.CELL_ALARMS: CellAlarmSet,
}

_SCALED_KINDS = {
    RegisterKind.VOLTAGE,
    RegisterKind.CURRENT,
    RegisterKind.CHARGE,
    RegisterKind.TEMPERATURE,
    RegisterKind.PERCENT,
}


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RegisterDef:
    """Definition of a single (possibly indexed) register."""

    name: RegisterName
    address: int
    length: int
    access: str
    kind: RegisterKind
    scale: float = 1
    signed: bool = False
    index_min: int | None = None
    index_max: int | None = None
    min: float | None = None
    max: float | None = None
    flags: str | None = None
    alarm: AlarmKind | None = None
    description: str | None = None

    @property
    def is_indexed(self) -> bool:
        return self.index_min is not None

    @property
    def is_readable(self) -> bool:
        return "R" in self.access

    @property
    def is_writable(self) -> bool:
        return "W" in self.access

    @property
    def value_type(self) -> type:
        """Return the value variant this register decodes to."""
        return _VALUE_TYPES[self.kind]

    def _raw_bounds(self) -> tuple[int, int]:
        bits = 16 * self.length
        if self.signed:
            return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        return 0, (1 << bits) - 1

    # ------------------------------------------------------------------
    # Value helpers
    # ------------------------------------------------------------------
    def decode(self, words: Sequence[int]) -> Value:
        """Decode raw register ``words`` into a value variant."""

        if len(words) != self.length:
            raise InvalidDataError(
                f"{self.name.value} expects {self.length} words, got {len(words)}"
            )
        data = words_to_bytes(list(words))

        if self.kind is RegisterKind.TEXT:
            return Text(data.rstrip(b"\x00").decode("ascii", errors="replace"))

        raw = int.from_bytes(data, "big", signed=self.signed)

        if self.kind is RegisterKind.FLAGS:
            return StatusFlags(FLAG_SETS[self.flags](raw))
        if self.kind is RegisterKind.CELL_ALARMS:
            return CellAlarmSet(CellAlarms.from_bits(self.alarm, raw))
        if self.kind is RegisterKind.INTEGER:
            return Integer(raw)

        # Decimal keeps 33 * 0.1 at exactly 3.3
        magnitude = float(Decimal(raw) * Decimal(str(self.scale)))
        return self.value_type(magnitude)

    def encode(self, value: Value) -> list[int]:
        """Encode ``value`` into the raw register words."""

        if not isinstance(value, self.value_type):
            raise ValueTypeMismatchError(
                f"{self.name.value} expects {self.value_type.__name__}, "
                f"got {type(value).__name__}"
            )

        if self.kind is RegisterKind.TEXT:
            try:
                data = value.value.encode("ascii")
            except UnicodeEncodeError as err:
                raise InvalidRegisterRangeError(
                    f"{self.name.value} only accepts ASCII text"
                ) from err
            if len(data) > self.length * 2:
                raise InvalidRegisterRangeError(
                    f"{value.value!r} does not fit in {self.length} registers"
                )
            return bytes_to_words(data.ljust(self.length * 2, b"\x00"))

        if self.kind is RegisterKind.FLAGS:
            flag_cls = FLAG_SETS[self.flags]
            if not isinstance(value.flags, flag_cls):
                raise ValueTypeMismatchError(
                    f"{self.name.value} expects {flag_cls.__name__} flags"
                )
            raw = int(value.flags)
        elif self.kind is RegisterKind.CELL_ALARMS:
            if value.alarms.kind is not self.alarm:
                raise ValueTypeMismatchError(
                    f"{self.name.value} expects {self.alarm.value} alarms"
                )
            raw = value.alarms.to_bits()
        else:
            magnitude = Decimal(str(value.magnitude))
            if not magnitude.is_finite():
                raise InvalidRegisterRangeError(
                    f"{value.magnitude} is not a finite value for {self.name.value}"
                )
            if self.min is not None and magnitude < Decimal(str(self.min)):
                raise InvalidRegisterRangeError(
                    f"{value.magnitude} is below minimum {self.min} for {self.name.value}"
                )
            if self.max is not None and magnitude > Decimal(str(self.max)):
                raise InvalidRegisterRangeError(
                    f"{value.magnitude} is above maximum {self.max} for {self.name.value}"
                )
            if self.kind in _SCALED_KINDS:
                magnitude = magnitude / Decimal(str(self.scale))
            raw = int(magnitude.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        low, high = self._raw_bounds()
        if not low <= raw <= high:
            raise InvalidRegisterRangeError(
                f"{value.magnitude} does not fit in {self.name.value} ({low}..{high} raw)"
            )
        return bytes_to_words(raw.to_bytes(self.length * 2, "big", signed=self.signed))


@dataclass(frozen=True, slots=True)
class Register:
    """A concrete register: a definition plus the slot index, if any."""

    definition: RegisterDef
    index: int | None = None

    def __post_init__(self) -> None:
        definition = self.definition
        if definition.is_indexed:
            if self.index is None:
                raise InvalidRegisterRangeError(
                    f"{definition.name.value} requires an index "
                    f"({definition.index_min}-{definition.index_max})"
                )
            if not definition.index_min <= self.index <= definition.index_max:
                raise InvalidRegisterRangeError(
                    f"index {self.index} out of range for {definition.name.value} "
                    f"({definition.index_min}-{definition.index_max})"
                )
        elif self.index is not None:
            raise InvalidRegisterRangeError(f"{definition.name.value} is not indexed")

    @property
    def name(self) -> RegisterName:
        return self.definition.name

    @property
    def address(self) -> int:
        """Return the wire address of this register."""
        if self.index is None:
            return self.definition.address
        return self.definition.address + (self.index - 1) * self.definition.length

    @property
    def quantity(self) -> int:
        return self.definition.length

    @property
    def is_readable(self) -> bool:
        return self.definition.is_readable

    @property
    def is_writable(self) -> bool:
        return self.definition.is_writable

    def parse_value(self, data: Sequence[int] | bytes | bytearray) -> Value:
        """Decode register words (or the raw big-endian payload bytes)."""

        if isinstance(data, (bytes, bytearray)):
            try:
                data = bytes_to_words(data)
            except ValueError as err:
                raise InvalidDataError(str(err)) from err
        return self.definition.decode(data)

    def encode_words(self, value: Value) -> list[int]:
        return self.definition.encode(value)

    def serialize_value(self, value: Value) -> bytes:
        """Return ``value`` encoded as big-endian register bytes."""
        return words_to_bytes(self.encode_words(value))

    def __str__(self) -> str:
        if self.index is None:
            return self.name.value
        return f"{self.name.value}[{self.index}]"


# ---------------------------------------------------------------------------
# Register loading helpers
# ---------------------------------------------------------------------------


def _load_registers_from_file(path: Path) -> list[RegisterDef]:
    """Load and validate register definitions from ``path``."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as err:
        raise RuntimeError(f"Register definition file missing: {path}") from err
    except (OSError, json.JSONDecodeError) as err:
        raise RuntimeError(f"Failed to read register definitions from {path}") from err

    items = raw.get("registers", raw) if isinstance(raw, dict) else raw
    parsed_items = RegisterList.model_validate(items).root

    names = {parsed.name for parsed in parsed_items}
    expected = {member.value for member in RegisterName}
    if names != expected:
        missing = sorted(expected - names)
        unknown = sorted(names - expected)
        raise RuntimeError(
            f"Register map {path} does not match the register set "
            f"(missing: {missing}, unknown: {unknown})"
        )

    registers = [
        RegisterDef(
            name=RegisterName(parsed.name),
            address=parsed.address,
            length=parsed.length,
            access=parsed.access,
            kind=parsed.kind,
            scale=parsed.scale,
            signed=parsed.signed,
            index_min=parsed.index.min if parsed.index else None,
            index_max=parsed.index.max if parsed.index else None,
            min=parsed.min,
            max=parsed.max,
            flags=parsed.flags,
            alarm=parsed.alarm,
            description=parsed.description,
        )
        for parsed in parsed_items
    ]
    _LOGGER.debug("Loaded %d register definitions from %s", len(registers), path)
    return registers


@lru_cache(maxsize=4)
def _load_cached(path: Path) -> tuple[RegisterDef, ...]:
    return tuple(_load_registers_from_file(path))


def load_registers(json_path: Path | str | None = None) -> list[RegisterDef]:
    """Return register definitions from ``json_path`` or the bundled file."""

    path = Path(json_path) if json_path is not None else _REGISTERS_PATH
    return list(_load_cached(path))


@lru_cache(maxsize=1)
def _register_map() -> dict[RegisterName, RegisterDef]:
    return {reg.name: reg for reg in load_registers()}


def clear_cache() -> None:
    """Clear the register definition caches."""
    _load_cached.cache_clear()
    _register_map.cache_clear()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_register_definition(name: RegisterName | str) -> RegisterDef:
    """Return the definition for ``name``.

    Raises ``KeyError`` for names outside the register set.
    """

    try:
        key = RegisterName(name)
    except ValueError as err:
        raise KeyError(name) from err
    return _register_map()[key]


def get_register(name: RegisterName | str, index: int | None = None) -> Register:
    """Return the concrete register ``name`` (slot ``index`` when indexed)."""

    return Register(get_register_definition(name), index)


def all_registers() -> list[RegisterDef]:
    """Return every register definition ordered by address."""

    return sorted(_register_map().values(), key=lambda reg: reg.address)


def register_at(address: int) -> Register | None:
    """Return the register whose first word sits at ``address``, if any."""

    for definition in _register_map().values():
        slots = (
            definition.index_max - definition.index_min + 1 if definition.is_indexed else 1
        )
        offset = address - definition.address
        if offset < 0 or offset >= slots * definition.length or offset % definition.length:
            continue
        if definition.is_indexed:
            return Register(definition, 1 + offset // definition.length)
        return Register(definition)
    return None
