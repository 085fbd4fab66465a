"""Status and alarm bitfields reported by the BMS."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntFlag

CELL_SLOTS = 16


class CellAlarm(str, Enum):
    """Alarm state of a single cell in a per-cell alarm register."""

    NORMAL = "normal"
    OVER = "over"
    UNDER = "under"


class AlarmKind(str, Enum):
    """Quantity a per-cell alarm register refers to."""

    VOLTAGE = "voltage"
    TEMPERATURE = "temperature"


@dataclass(frozen=True, slots=True)
class CellAlarms:
    """Per-cell alarm states decoded from a 32-bit register pair.

    Bit ``16 + i`` flags cell ``i + 1`` as over the limit, bit ``i`` as under.
    """

    kind: AlarmKind
    alarms: tuple[CellAlarm, ...]

    @classmethod
    def from_bits(cls, kind: AlarmKind, value: int) -> CellAlarms:
        alarms = []
        for i in range(CELL_SLOTS):
            if (value >> (i + 16)) & 1:
                alarms.append(CellAlarm.OVER)
            elif (value >> i) & 1:
                alarms.append(CellAlarm.UNDER)
            else:
                alarms.append(CellAlarm.NORMAL)
        return cls(kind, tuple(alarms))

    def to_bits(self) -> int:
        value = 0
        for i, alarm in enumerate(self.alarms):
            if alarm is CellAlarm.OVER:
                value |= 1 << (i + 16)
            elif alarm is CellAlarm.UNDER:
                value |= 1 << i
        return value

    def active(self) -> dict[int, CellAlarm]:
        """Return ``{cell_number: alarm}`` for cells not in the normal state."""

        return {i + 1: a for i, a in enumerate(self.alarms) if a is not CellAlarm.NORMAL}


class OtherAlarmInfo(IntFlag):
    BMS_OVER_TEMPERATURE = 1 << 31
    BMS_UNDER_TEMPERATURE = 1 << 30
    ENV_OVER_TEMPERATURE = 1 << 29
    ENV_UNDER_TEMPERATURE = 1 << 28
    HEATER_OVER_TEMPERATURE = 1 << 27
    HEATER_UNDER_TEMPERATURE = 1 << 26
    CHARGE_OVER_CURRENT = 1 << 21
    DISCHARGE_OVER_CURRENT = 1 << 19


class Status1(IntFlag):
    MODULE_UNDER_VOLTAGE = 1 << 15
    CHARGE_OVER_TEMP = 1 << 14
    CHARGE_UNDER_TEMP = 1 << 13
    DISCHARGE_OVER_TEMP = 1 << 12
    DISCHARGE_UNDER_TEMP = 1 << 11
    DISCHARGE_OVER_CURRENT1 = 1 << 10
    CHARGE_OVER_CURRENT1 = 1 << 9
    CELL_OVER_VOLTAGE = 1 << 8
    CELL_UNDER_VOLTAGE = 1 << 7
    MODULE_OVER_VOLTAGE = 1 << 6
    DISCHARGE_OVER_CURRENT2 = 1 << 5
    CHARGE_OVER_CURRENT2 = 1 << 4
    USING_BATTERY_MODULE_POWER = 1 << 3
    DISCHARGE_MOSFET = 1 << 2
    CHARGE_MOSFET = 1 << 1
    SHORT_CIRCUIT = 1 << 0


class Status2(IntFlag):
    EFFECTIVE_CHARGE_CURRENT = 1 << 15
    EFFECTIVE_DISCHARGE_CURRENT = 1 << 14
    HEATER_ON = 1 << 13
    FULLY_CHARGED = 1 << 11
    BUZZER = 1 << 8
    DISCHARGE_HIGH_TEMP_WARN = 1 << 7
    DISCHARGE_LOW_TEMP_WARN = 1 << 6
    CHARGE_HIGH_TEMP_WARN = 1 << 5
    CHARGE_LOW_TEMP_WARN = 1 << 4
    MODULE_HIGH_VOLTAGE_WARN = 1 << 3
    MODULE_LOW_VOLTAGE_WARN = 1 << 2
    CELL_HIGH_VOLTAGE_WARN = 1 << 1
    CELL_LOW_VOLTAGE_WARN = 1 << 0


# Bit i set: voltage error on cell i + 1
Status3 = IntFlag("Status3", {f"CELL_{i + 1}_VOLTAGE_ERROR": 1 << i for i in range(CELL_SLOTS)})


class ChargeDischargeStatus(IntFlag):
    CHARGE_ENABLE = 1 << 7
    DISCHARGE_ENABLE = 1 << 6
    CHARGE_IMMEDIATE = 1 << 5
    CHARGE_IMMEDIATE2 = 1 << 4
    FULL_CHARGE_REQUEST = 1 << 3


# Names used by the register map to select a flag class
FLAG_SETS: dict[str, type[IntFlag]] = {
    "other_alarm_info": OtherAlarmInfo,
    "status1": Status1,
    "status2": Status2,
    "status3": Status3,
    "charge_discharge_status": ChargeDischargeStatus,
}
