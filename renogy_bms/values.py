"""Tagged physical quantities read from and written to registers.

Every register decodes to exactly one of the variants below and only accepts
the same variant when encoding.  Magnitudes are plain floats/ints in the SI
(or battery-customary) unit named by ``unit``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Union

from .alarms import CellAlarms


class Unit(str, Enum):
    """Units carried by values."""

    VOLT = "V"
    AMPERE = "A"
    AMPERE_HOUR = "Ah"
    CELSIUS = "°C"
    PERCENT = "%"
    NONE = ""


@dataclass(frozen=True, slots=True)
class ElectricPotential:
    volts: float
    unit = Unit.VOLT

    @property
    def magnitude(self) -> float:
        return self.volts


@dataclass(frozen=True, slots=True)
class ElectricCurrent:
    amperes: float
    unit = Unit.AMPERE

    @property
    def magnitude(self) -> float:
        return self.amperes


@dataclass(frozen=True, slots=True)
class ElectricCharge:
    """Battery capacity in ampere-hours."""

    ampere_hours: float
    unit = Unit.AMPERE_HOUR

    @property
    def magnitude(self) -> float:
        return self.ampere_hours


@dataclass(frozen=True, slots=True)
class ThermodynamicTemperature:
    celsius: float
    unit = Unit.CELSIUS

    @property
    def magnitude(self) -> float:
        return self.celsius

    @property
    def fahrenheit(self) -> float:
        return round(self.celsius * 9 / 5 + 32, 2)


@dataclass(frozen=True, slots=True)
class Percentage:
    percent: float
    unit = Unit.PERCENT

    @property
    def magnitude(self) -> float:
        return self.percent


@dataclass(frozen=True, slots=True)
class Integer:
    """Raw register word(s), counts and identifiers."""

    value: int
    unit = Unit.NONE

    @property
    def magnitude(self) -> int:
        return self.value


@dataclass(frozen=True, slots=True)
class Text:
    value: str
    unit = Unit.NONE

    @property
    def magnitude(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class StatusFlags:
    """Multi-bit status register decoded into named flags."""

    flags: IntFlag
    unit = Unit.NONE

    @property
    def magnitude(self) -> int:
        return int(self.flags)

    def names(self) -> list[str]:
        """Return the names of all set flags in declaration order."""

        cls = type(self.flags)
        return [member.name for member in cls if member.value and member in self.flags]


@dataclass(frozen=True, slots=True)
class CellAlarmSet:
    """Per-cell alarm register value."""

    alarms: CellAlarms
    unit = Unit.NONE

    @property
    def magnitude(self) -> int:
        return self.alarms.to_bits()


Value = Union[
    ElectricPotential,
    ElectricCurrent,
    ElectricCharge,
    ThermodynamicTemperature,
    Percentage,
    Integer,
    Text,
    StatusFlags,
    CellAlarmSet,
]
